"""Integration tests for the cookie-based authentication flow.

Covers:
- Registration and login
- Session resolution on /auth/me, including silent refresh
- Explicit refresh and logout
- Google sign-in callback redirects
"""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from jobgate import app as app_module
from jobgate.service.cookies import ACCESS_COOKIE, REFRESH_COOKIE
from jobgate.service.runtime import get_runtime
from jobgate.service.tokens import TokenCodec
from jobgate.storage.models import Role


@pytest.fixture
def client():
    """Create a test client for the API."""
    return TestClient(app_module.app, follow_redirects=False)


@pytest.fixture
def user_email():
    return "seeker@example.com"


@pytest.fixture
def user_password():
    return "Seeker-pass-1"


def _register(client, email, password, name="Test User", role="seeker"):
    return client.post(
        "/v1/auth/register",
        json={"email": email, "password": password, "name": name, "role": role},
    )


def _set_cookie_headers(response):
    return response.headers.get_list("set-cookie")


def _expired_tokens(identity_id, role):
    """Tokens signed with the live secrets but issued far in the past."""
    settings = get_runtime().settings
    past = TokenCodec(
        settings.jwt_access_secret,
        settings.jwt_refresh_secret,
        clock=lambda: time.time() - 30 * 24 * 3600,
    )
    return past.issue_pair(identity_id, role)


class TestRegister:
    def test_register_sets_cookies_and_returns_user(self, client, user_email, user_password):
        response = _register(client, user_email, user_password)

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "ok"
        user = body["data"]["user"]
        assert user["email"] == user_email
        assert user["role"] == "seeker"
        assert user["has_password"] is True
        assert "password" not in user
        cookies = " ".join(_set_cookie_headers(response)).lower()
        assert "access_token=" in cookies and "refresh_token=" in cookies
        assert "httponly" in cookies

    def test_register_as_employer(self, client):
        response = _register(client, "boss@example.com", "Boss-pass-1", role="employer")
        assert response.json()["data"]["user"]["role"] == "employer"

    def test_register_rejects_admin_role(self, client):
        response = _register(client, "root@example.com", "Root-pass-1", role="admin")
        assert response.status_code == 422
        assert response.json()["error"]["code"] == "validation_error"

    @pytest.mark.parametrize(
        "payload",
        [
            {"email": "not-an-email", "password": "secret1", "name": "Valid"},
            {"email": "a@example.com", "password": "12345", "name": "Valid"},
            {"email": "a@example.com", "password": "secret1", "name": " x "},
        ],
    )
    def test_register_validates_input(self, client, payload):
        response = client.post("/v1/auth/register", json=payload)
        assert response.status_code == 422
        assert isinstance(response.json()["error"]["details"], list)

    def test_register_duplicate_email(self, client, user_email, user_password):
        _register(client, user_email, user_password)
        response = _register(client, user_email.upper(), user_password)
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "conflict"


class TestLogin:
    def test_login_then_me(self, client, user_email, user_password):
        _register(client, user_email, user_password)
        client.cookies.clear()

        login = client.post("/v1/auth/login", json={"email": user_email, "password": user_password})
        assert login.status_code == 200

        me = client.get("/v1/auth/me")
        assert me.status_code == 200
        assert me.json()["data"]["user"]["email"] == user_email

    def test_login_failures_share_message(self, client, user_email, user_password):
        _register(client, user_email, user_password)
        client.cookies.clear()

        unknown = client.post("/v1/auth/login", json={"email": "ghost@example.com", "password": "x"})
        wrong = client.post("/v1/auth/login", json={"email": user_email, "password": "wrong"})

        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json()["error"] == wrong.json()["error"]
        assert wrong.json()["error"]["code"] == "invalid_credentials"

    def test_login_disabled_account(self, client, user_email, user_password):
        registered = _register(client, user_email, user_password).json()["data"]["user"]
        get_runtime().store.update_identity(registered["id"], active=False)

        response = client.post("/v1/auth/login", json={"email": user_email, "password": user_password})

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "account_disabled"

    def test_login_federated_account(self, client):
        get_runtime().store.create_identity("fed@example.com", "Fed")

        response = client.post("/v1/auth/login", json={"email": "fed@example.com", "password": "whatever"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "federated_account"

    def test_login_rate_limited(self, client, monkeypatch):
        monkeypatch.setenv("LOGIN_RATE_LIMIT_PER_MINUTE", "2")
        from jobgate.service.runtime import reset_runtime_for_tests

        reset_runtime_for_tests()
        payload = {"email": "limited@example.com", "password": "whatever"}

        statuses = [client.post("/v1/auth/login", json=payload).status_code for _ in range(3)]

        assert statuses == [401, 401, 429]


class TestSession:
    def test_me_without_cookies(self, client):
        response = client.get("/v1/auth/me")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "unauthorized"

    def test_expired_access_is_silently_refreshed(self, client, user_email, user_password):
        user = _register(client, user_email, user_password).json()["data"]["user"]
        refresh = client.cookies.get(REFRESH_COOKIE)
        expired = _expired_tokens(user["id"], Role.SEEKER)
        client.cookies.clear()
        client.cookies.set(ACCESS_COOKIE, expired.access)
        client.cookies.set(REFRESH_COOKIE, refresh)

        response = client.get("/v1/auth/me")

        assert response.status_code == 200
        rotated = _set_cookie_headers(response)
        assert any(header.startswith("access_token=") for header in rotated)
        assert any(header.startswith("refresh_token=") for header in rotated)

    def test_invalid_refresh_clears_cookies(self, client):
        client.cookies.set(ACCESS_COOKIE, "garbage")
        client.cookies.set(REFRESH_COOKIE, "garbage")

        response = client.get("/v1/auth/me")

        assert response.status_code == 401
        cleared = [header.lower() for header in _set_cookie_headers(response)]
        assert any(h.startswith("access_token=") and "max-age=0" in h for h in cleared)
        assert any(h.startswith("refresh_token=") and "max-age=0" in h for h in cleared)

    def test_expired_refresh_is_unauthorized(self, client, user_email, user_password):
        user = _register(client, user_email, user_password).json()["data"]["user"]
        expired = _expired_tokens(user["id"], Role.SEEKER)
        client.cookies.clear()
        client.cookies.set(ACCESS_COOKIE, expired.access)
        client.cookies.set(REFRESH_COOKIE, expired.refresh)

        assert client.get("/v1/auth/me").status_code == 401

    def test_refresh_for_deactivated_identity_sets_no_cookies(self, client, user_email, user_password):
        user = _register(client, user_email, user_password).json()["data"]["user"]
        refresh = client.cookies.get(REFRESH_COOKIE)
        get_runtime().store.update_identity(user["id"], active=False)
        expired = _expired_tokens(user["id"], Role.SEEKER)
        client.cookies.clear()
        client.cookies.set(ACCESS_COOKIE, expired.access)
        client.cookies.set(REFRESH_COOKIE, refresh)

        response = client.get("/v1/auth/me")

        assert response.status_code == 401
        assert _set_cookie_headers(response) == []

    def test_forbidden_after_refresh_still_rotates_cookies(self, client, user_email, user_password):
        user = _register(client, user_email, user_password).json()["data"]["user"]
        refresh = client.cookies.get(REFRESH_COOKIE)
        expired = _expired_tokens(user["id"], Role.SEEKER)
        client.cookies.clear()
        client.cookies.set(ACCESS_COOKIE, expired.access)
        client.cookies.set(REFRESH_COOKIE, refresh)

        response = client.get("/v1/admin/users")

        assert response.status_code == 403
        rotated = _set_cookie_headers(response)
        assert any(header.startswith("access_token=") for header in rotated)
        assert any(header.startswith("refresh_token=") for header in rotated)
        assert all("max-age=0" not in header.lower() for header in rotated)

    def test_refresh_endpoint_rotates(self, client, user_email, user_password):
        _register(client, user_email, user_password)

        response = client.post("/v1/auth/refresh")

        assert response.status_code == 200
        assert response.json()["data"]["user"]["email"] == user_email
        assert len(_set_cookie_headers(response)) == 2

    def test_refresh_endpoint_without_cookie(self, client):
        assert client.post("/v1/auth/refresh").status_code == 401

    def test_logout_clears_cookies(self, client, user_email, user_password):
        _register(client, user_email, user_password)

        response = client.post("/v1/auth/logout")

        assert response.status_code == 200
        cleared = [header.lower() for header in _set_cookie_headers(response)]
        assert len(cleared) == 2
        assert all("max-age=0" in header for header in cleared)
        assert client.get("/v1/auth/me").status_code == 401


class TestGoogleCallback:
    def _callback(self, client, email, **userinfo):
        runtime = get_runtime()
        state = asyncio.run(runtime.google.states.issue("google"))
        runtime.google.register_code("test-code", {"email": email, **userinfo})
        return client.get("/v1/auth/google/callback", params={"code": "test-code", "state": state})

    def test_new_identity_lands_on_home(self, client):
        response = self._callback(client, "new@gmail.com", name="New")

        assert response.status_code == 302
        assert response.headers["location"] == "http://localhost:3000/"
        assert len(_set_cookie_headers(response)) == 2
        identity = get_runtime().store.get_identity_by_email("new@gmail.com")
        assert identity.is_federated_only

    @pytest.mark.parametrize("role,path", [(Role.EMPLOYER, "/dashboard"), (Role.ADMIN, "/admin")])
    def test_existing_identity_lands_by_role(self, client, role, path):
        get_runtime().store.create_identity("member@example.com", "Member", role=role)

        response = self._callback(client, "member@example.com")

        assert response.headers["location"] == f"http://localhost:3000{path}"

    def test_invalid_state_redirects_with_error(self, client):
        response = client.get("/v1/auth/google/callback", params={"code": "c", "state": "forged"})
        assert response.status_code == 302
        assert response.headers["location"] == "http://localhost:3000/login?error=auth_failed"
        assert _set_cookie_headers(response) == []

    def test_provider_error_redirects(self, client):
        response = client.get("/v1/auth/google/callback", params={"error": "access_denied"})
        assert response.headers["location"].endswith("/login?error=auth_failed")

    def test_disabled_identity_redirects_with_error(self, client):
        runtime = get_runtime()
        identity = runtime.store.create_identity("off@example.com", "Off")
        runtime.store.update_identity(identity.id, active=False)

        response = self._callback(client, "off@example.com")

        assert response.headers["location"].endswith("/login?error=auth_failed")

    def test_start_requires_configuration(self, client):
        response = client.get("/v1/auth/google")
        assert response.status_code == 503

    def test_start_redirects_to_google(self, client, monkeypatch):
        monkeypatch.setenv("GOOGLE_CLIENT_ID", "cid")
        monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "csecret")
        from jobgate.service.runtime import reset_runtime_for_tests

        reset_runtime_for_tests()

        response = client.get("/v1/auth/google")

        assert response.status_code == 302
        assert response.headers["location"].startswith("https://accounts.google.com/")


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    body = response.json()
    assert body["checks"]["store"]["status"] == "healthy"
    assert body["checks"]["redis"]["status"] == "not_configured"
    assert response.headers["X-Request-ID"]
