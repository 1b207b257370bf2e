#!/usr/bin/env python3
"""Create or promote an admin identity for the job board.

Usage:
    ADMIN_EMAIL=admin@example.com ADMIN_PASSWORD=ChangeMe-123 python scripts/bootstrap_admin.py
    python scripts/bootstrap_admin.py --email admin@example.com --password ChangeMe-123 --name "Site Admin"

Environment Variables:
    ADMIN_EMAIL, ADMIN_PASSWORD, ADMIN_NAME: defaults for the CLI flags
    DATABASE_URL: PostgreSQL connection string (memory store is used when unset)
"""
from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

MIN_PASSWORD_LENGTH = 6
MAX_PASSWORD_LENGTH = 100


def bootstrap_admin(email: str, password: str, name: str, dry_run: bool = False) -> dict:
    """Create an admin identity, or promote and reactivate an existing one.

    Returns:
        dict with identity_id, email and status
        ('created', 'promoted', 'already_admin' or 'dry_run')
    """
    # Deferred so env defaults set by main() are visible to Settings
    from jobgate.service.runtime import get_runtime
    from jobgate.storage.models import Role

    runtime = get_runtime()
    existing = runtime.store.get_identity_by_email(email)

    if existing:
        if existing.role == Role.ADMIN and existing.active:
            print(f"{email} is already an active admin (id: {existing.id})")
            return {"identity_id": existing.id, "email": email, "status": "already_admin"}
        if dry_run:
            print(f"[DRY RUN] Would promote {email} to admin")
            return {"identity_id": existing.id, "email": email, "status": "dry_run"}
        runtime.store.update_identity(existing.id, role=Role.ADMIN, active=True)
        print(f"Promoted {email} to admin (id: {existing.id})")
        return {"identity_id": existing.id, "email": email, "status": "promoted"}

    if dry_run:
        print(f"[DRY RUN] Would create admin {email}")
        return {"identity_id": None, "email": email, "status": "dry_run"}

    identity = runtime.store.create_identity(
        email,
        name,
        secret_hash=runtime.verifier.hash(password),
        role=Role.ADMIN,
        active=True,
    )
    print(f"Created admin {email} (id: {identity.id})")
    return {"identity_id": identity.id, "email": email, "status": "created"}


def main():
    parser = argparse.ArgumentParser(
        description="Bootstrap an admin identity",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--email", default=os.environ.get("ADMIN_EMAIL"))
    parser.add_argument("--password", default=os.environ.get("ADMIN_PASSWORD"))
    parser.add_argument("--name", default=os.environ.get("ADMIN_NAME", "Administrator"))
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args()

    if not args.email:
        parser.error("--email or ADMIN_EMAIL is required")
    if not args.password:
        parser.error("--password or ADMIN_PASSWORD is required")
    if not MIN_PASSWORD_LENGTH <= len(args.password) <= MAX_PASSWORD_LENGTH:
        parser.error(
            f"password must be {MIN_PASSWORD_LENGTH}-{MAX_PASSWORD_LENGTH} characters"
        )

    if not os.environ.get("DATABASE_URL"):
        os.environ["USE_MEMORY_STORE"] = "true"
        print("Note: using the in-memory store (set DATABASE_URL for persistence)")

    try:
        result = bootstrap_admin(args.email.strip().lower(), args.password, args.name, args.dry_run)
    except Exception as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    if result["status"] == "created":
        print("\nAdmin created. Sign in at /v1/auth/login with the supplied password.")


if __name__ == "__main__":
    main()
