from __future__ import annotations

import uuid
from typing import Any, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from jobgate.logging import get_logger
from jobgate.storage.errors import ConstraintViolation
from jobgate.storage.models import DEFAULT_ROLE, Identity, Role, normalize_email

_IDENTITY_COLUMNS = "id, email, name, secret_hash, role, is_active, created_at, updated_at"


def _escape_like(value: str) -> str:
    """Make ``value`` match literally inside a LIKE pattern."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class PostgresStore:
    """Postgres-backed identity store."""

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 10) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=min_size,
            max_size=max_size,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create the ``app_identity`` table and its email index if missing."""

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS app_identity (
                    id UUID PRIMARY KEY,
                    email TEXT NOT NULL,
                    name TEXT NOT NULL,
                    secret_hash TEXT,
                    role TEXT NOT NULL DEFAULT 'seeker'
                        CHECK (role IN ('seeker', 'employer', 'admin')),
                    is_active BOOLEAN NOT NULL DEFAULT TRUE,
                    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """
            )
            conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS app_identity_email_key "
                "ON app_identity (lower(email))"
            )

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    @staticmethod
    def _identity_from_row(row: dict[str, Any]) -> Identity:
        return Identity(
            id=str(row["id"]),
            email=row["email"],
            name=row.get("name") or "",
            secret_hash=row.get("secret_hash") or None,
            role=Role.parse(row.get("role") or DEFAULT_ROLE),
            active=bool(row.get("is_active", True)),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def create_identity(
        self,
        email: str,
        name: str,
        *,
        secret_hash: Optional[str] = None,
        role: Role | str = DEFAULT_ROLE,
        active: bool = True,
    ) -> Identity:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"""
                    INSERT INTO app_identity (id, email, name, secret_hash, role, is_active)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    RETURNING {_IDENTITY_COLUMNS}
                    """,
                    (
                        str(uuid.uuid4()),
                        normalize_email(email),
                        name,
                        secret_hash or None,
                        Role.parse(role).value,
                        active,
                    ),
                ).fetchone()
        except errors.UniqueViolation:
            raise ConstraintViolation("email already exists", {"field": "email"})
        return self._identity_from_row(row)

    def get_identity(self, identity_id: str) -> Optional[Identity]:
        try:
            uuid.UUID(str(identity_id))
        except ValueError:
            return None
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_IDENTITY_COLUMNS} FROM app_identity WHERE id = %s",
                (identity_id,),
            ).fetchone()
        return self._identity_from_row(row) if row else None

    def get_identity_by_email(self, email: str) -> Optional[Identity]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_IDENTITY_COLUMNS} FROM app_identity WHERE lower(email) = %s",
                (normalize_email(email),),
            ).fetchone()
        return self._identity_from_row(row) if row else None

    def update_identity(
        self,
        identity_id: str,
        *,
        role: Role | str | None = None,
        active: Optional[bool] = None,
        name: Optional[str] = None,
        secret_hash: Optional[str] = None,
    ) -> Optional[Identity]:
        assignments: list[str] = []
        params: list[Any] = []
        if role is not None:
            assignments.append("role = %s")
            params.append(Role.parse(role).value)
        if active is not None:
            assignments.append("is_active = %s")
            params.append(active)
        if name is not None:
            assignments.append("name = %s")
            params.append(name)
        if secret_hash:
            assignments.append("secret_hash = %s")
            params.append(secret_hash)
        if not assignments:
            return self.get_identity(identity_id)
        assignments.append("updated_at = now()")
        params.append(identity_id)
        with self._connect() as conn:
            row = conn.execute(
                f"UPDATE app_identity SET {', '.join(assignments)} WHERE id = %s "
                f"RETURNING {_IDENTITY_COLUMNS}",
                tuple(params),
            ).fetchone()
        return self._identity_from_row(row) if row else None

    @staticmethod
    def _filter_clause(
        role: Role | str | None, search: Optional[str]
    ) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if role is not None:
            clauses.append("role = %s")
            params.append(Role.parse(role).value)
        if search:
            pattern = f"%{_escape_like(search.strip().lower())}%"
            clauses.append(
                "(lower(email) LIKE %s ESCAPE '\\' OR lower(name) LIKE %s ESCAPE '\\')"
            )
            params.extend([pattern, pattern])
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def list_identities(
        self,
        *,
        role: Role | str | None = None,
        search: Optional[str] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Identity]:
        where, params = self._filter_clause(role, search)
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_IDENTITY_COLUMNS} FROM app_identity {where} "
                "ORDER BY created_at DESC LIMIT %s OFFSET %s",
                (*params, limit, offset),
            ).fetchall()
        return [self._identity_from_row(row) for row in rows]

    def count_identities(
        self, *, role: Role | str | None = None, search: Optional[str] = None
    ) -> int:
        where, params = self._filter_clause(role, search)
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT count(*) AS total FROM app_identity {where}", tuple(params)
            ).fetchone()
        return int(row["total"]) if row else 0
