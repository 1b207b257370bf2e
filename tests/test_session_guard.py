"""Session resolution from the access/refresh cookie pair, and role gating."""

from unittest.mock import MagicMock

import pytest

from jobgate.service.errors import Forbidden, Unauthorized
from jobgate.service.session_guard import ResolvedIdentity, RoleGate, SessionGuard
from jobgate.service.tokens import TokenCodec
from jobgate.storage.memory import MemoryStore
from jobgate.storage.models import Role


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def codec(clock):
    return TokenCodec(
        "guard-access", "guard-refresh", access_ttl_seconds=900, refresh_ttl_seconds=3600, clock=clock
    )


@pytest.fixture
def store():
    return MagicMock(wraps=MemoryStore())


@pytest.fixture
def guard(codec, store):
    return SessionGuard(codec, store)


@pytest.fixture
def employer(store):
    return store.create_identity("boss@example.com", "Boss", secret_hash="x", role=Role.EMPLOYER)


class TestAuthenticate:
    def test_valid_access_token_skips_the_store(self, guard, codec, store, employer):
        store.reset_mock()
        result = guard.authenticate(codec.issue_access(employer.id, Role.EMPLOYER), None)

        assert result.identity == ResolvedIdentity(employer.id, Role.EMPLOYER)
        assert result.rotated is None
        store.get_identity.assert_not_called()

    def test_access_role_is_trusted_until_expiry(self, guard, codec, store, employer):
        token = codec.issue_access(employer.id, Role.EMPLOYER)
        store.update_identity(employer.id, role=Role.SEEKER)

        assert guard.authenticate(token, None).identity.role is Role.EMPLOYER

    def test_expired_access_falls_back_to_refresh(self, guard, codec, clock, employer):
        access = codec.issue_access(employer.id, Role.EMPLOYER)
        refresh = codec.issue_refresh(employer.id, Role.EMPLOYER)
        clock.now += 901

        result = guard.authenticate(access, refresh)

        assert result.identity.id == employer.id
        assert result.rotated is not None
        assert codec.verify_access(result.rotated.access).sub == employer.id
        assert codec.verify_refresh(result.rotated.refresh).sub == employer.id

    def test_missing_access_uses_refresh(self, guard, codec, employer):
        result = guard.authenticate(None, codec.issue_refresh(employer.id, Role.EMPLOYER))
        assert result.rotated is not None

    def test_rotation_picks_up_role_change(self, guard, codec, store, employer):
        refresh = codec.issue_refresh(employer.id, Role.EMPLOYER)
        store.update_identity(employer.id, role=Role.ADMIN)

        result = guard.authenticate(None, refresh)

        assert result.identity.role is Role.ADMIN
        assert codec.verify_access(result.rotated.access).role is Role.ADMIN

    def test_no_tokens_is_unauthorized(self, guard, store):
        store.reset_mock()
        with pytest.raises(Unauthorized) as excinfo:
            guard.authenticate(None, None)
        assert excinfo.value.clear_cookies is False
        assert store.method_calls == []

    def test_invalid_refresh_asks_to_clear_cookies(self, guard):
        with pytest.raises(Unauthorized) as excinfo:
            guard.authenticate("garbage", "also-garbage")
        assert excinfo.value.clear_cookies is True

    def test_expired_refresh_asks_to_clear_cookies(self, guard, codec, clock, employer):
        refresh = codec.issue_refresh(employer.id, Role.EMPLOYER)
        clock.now += 3600
        with pytest.raises(Unauthorized) as excinfo:
            guard.authenticate(None, refresh)
        assert excinfo.value.clear_cookies is True

    def test_access_token_presented_as_refresh_is_rejected(self, guard, codec, employer):
        access = codec.issue_access(employer.id, Role.EMPLOYER)
        with pytest.raises(Unauthorized):
            guard.authenticate(None, access)

    def test_deleted_identity_is_unauthorized(self, guard, codec):
        refresh = codec.issue_refresh("no-such-identity", Role.SEEKER)
        with pytest.raises(Unauthorized) as excinfo:
            guard.authenticate(None, refresh)
        assert excinfo.value.clear_cookies is False

    def test_deactivated_identity_cannot_refresh(self, guard, codec, store, employer):
        refresh = codec.issue_refresh(employer.id, Role.EMPLOYER)
        store.update_identity(employer.id, active=False)
        with pytest.raises(Unauthorized) as excinfo:
            guard.authenticate(None, refresh)
        assert excinfo.value.clear_cookies is False


class TestRoleGate:
    def test_allowed_role_passes(self):
        caller = ResolvedIdentity("u1", Role.ADMIN)
        assert RoleGate.require(caller, [Role.ADMIN]) is caller

    def test_any_of_several_roles(self):
        caller = ResolvedIdentity("u1", Role.EMPLOYER)
        assert RoleGate.require(caller, ["employer", "admin"]) is caller

    def test_wrong_role_is_forbidden(self):
        with pytest.raises(Forbidden) as excinfo:
            RoleGate.require(ResolvedIdentity("u1", Role.SEEKER), [Role.EMPLOYER, Role.ADMIN])
        assert excinfo.value.status_code == 403
        assert excinfo.value.detail == {"required": ["admin", "employer"]}

    def test_anonymous_is_unauthorized(self):
        with pytest.raises(Unauthorized):
            RoleGate.require(None, [Role.SEEKER])
