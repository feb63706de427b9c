"""
tests/test_admin_auth_routes.py -- Integration tests for /api/v1/admin/*.

These tests exercise the full stack: FastAPI routing -> request validation ->
AdminGuard -> AdminStore / JWT -> Envelope serialization.

Coverage:
  - login: success envelope, expires_in and exp match the configured TTL,
    invalid credentials, validation failures
  - register: 201 with admin + token, duplicate email (alone and next to
    other field errors), confirmation mismatch, short password, passwords
    past bcrypt's 72-byte limit, token usable immediately
  - me: success, token_absent, token_invalid, token_expired, admin_not_found,
    ?token= query parameter
  - logout: always 200; me() afterwards fails with token_invalid
  - refresh: new token differs, old token blacklisted, expired-in-window
    accepted, past-window rejected
  - login rate limit: 429 envelope with Retry-After
  - store failure during login: 401 envelope

Fixtures used (from conftest.py):
  - api_client: (client, token, admin_id, store)
  - token_factory: signs arbitrary claims with the app key
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy.exc import OperationalError

from api.limiter import limiter
from auth.tokens import now_ts
from core.config import get_settings

# Created by the api_client fixture in conftest.py.
ADMIN_EMAIL = "testadmin@example.com"
ADMIN_PASSWORD = "testpass123"


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _login(client: TestClient) -> str:
    resp = client.post("/api/v1/admin/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]["_token"]


class TestLogin:
    def test_login_valid_credentials(self, api_client) -> None:
        """Correct credentials return the success envelope with a bearer token."""
        client, _token, _admin_id, _store = api_client
        resp = client.post("/api/v1/admin/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["status"] is True
        assert body["message"] == "logged in successfully"
        assert body["error"] == ""
        assert body["data"]["token_type"] == "Bearer"
        assert body["data"]["_token"]
        assert resp.headers["Cache-Control"] == "no-store"

    def test_login_expiry_matches_configured_ttl(self, api_client) -> None:
        """expires_in and the token's own exp both equal the configured TTL."""
        client, _token, _admin_id, _store = api_client
        settings = get_settings()
        resp = client.post("/api/v1/admin/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
        data = resp.json()["data"]
        assert data["expires_in"] == settings.jwt_ttl_minutes * 60
        claims = jwt.get_unverified_claims(data["_token"])
        assert claims["exp"] - claims["nbf"] == settings.jwt_ttl_minutes * 60

    def test_login_wrong_password(self, api_client) -> None:
        client, _token, _admin_id, _store = api_client
        resp = client.post("/api/v1/admin/login", json={"email": ADMIN_EMAIL, "password": "wrongpassword"})
        assert resp.status_code == 400
        body = resp.json()
        assert body["status"] is False
        assert body["error"] == "invalid_credentials"

    def test_login_unknown_email_same_error(self, api_client) -> None:
        """Unknown email and wrong password are indistinguishable."""
        client, _token, _admin_id, _store = api_client
        resp = client.post("/api/v1/admin/login", json={"email": "nobody@example.com", "password": "whatever"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "invalid_credentials"

    def test_login_missing_password(self, api_client) -> None:
        client, _token, _admin_id, _store = api_client
        resp = client.post("/api/v1/admin/login", json={"email": ADMIN_EMAIL})
        assert resp.status_code == 400
        body = resp.json()
        assert body["status"] is False
        assert "password" in body["error"]

    def test_login_malformed_email(self, api_client) -> None:
        client, _token, _admin_id, _store = api_client
        resp = client.post("/api/v1/admin/login", json={"email": "not-an-email", "password": "x"})
        assert resp.status_code == 400
        assert resp.json()["error"]["email"] == ["The email must be a valid email address."]


class TestRegister:
    def test_register_creates_admin_and_token(self, api_client) -> None:
        """201 with the new admin (no password hash) and a token that works for me()."""
        client, _token, _admin_id, _store = api_client
        resp = client.post(
            "/api/v1/admin/register",
            json={
                "name": "New Admin",
                "email": "new.admin@example.com",
                "password": "hunter22",
                "password_confirmation": "hunter22",
            },
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["status"] is True
        assert body["message"] == "signed up successfully"
        admin = body["data"]["admin"]
        assert admin["email"] == "new.admin@example.com"
        assert admin["name"] == "New Admin"
        assert "hashed_password" not in admin
        assert "password" not in admin
        assert body["data"]["expires_in"] == get_settings().jwt_ttl_seconds

        me = client.get("/api/v1/admin/me", headers=_bearer(body["data"]["_token"]))
        assert me.status_code == 200
        assert me.json()["data"]["admin"]["id"] == admin["id"]

    def test_register_duplicate_email_fails_validation(self, api_client) -> None:
        client, _token, _admin_id, _store = api_client
        resp = client.post(
            "/api/v1/admin/register",
            json={
                "name": "Copycat",
                "email": ADMIN_EMAIL,
                "password": "hunter22",
                "password_confirmation": "hunter22",
            },
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["status"] is False
        assert body["error"] == {"email": ["The email has already been taken."]}

    def test_register_duplicate_email_reported_with_other_errors(self, api_client) -> None:
        """A taken email is listed next to the other failing fields, not after them."""
        client, _token, _admin_id, _store = api_client
        resp = client.post(
            "/api/v1/admin/register",
            json={
                "name": "Copycat",
                "email": ADMIN_EMAIL,
                "password": "abc",
                "password_confirmation": "abc",
            },
        )
        assert resp.status_code == 400
        error = resp.json()["error"]
        assert error["email"] == ["The email has already been taken."]
        assert "password" in error

    @pytest.mark.parametrize("password", ["p" * 100, "é" * 40])
    def test_register_password_longer_than_72_bytes(self, api_client, password) -> None:
        """bcrypt cannot hash more than 72 bytes; that is a field error, not a 500."""
        client, _token, _admin_id, store = api_client
        resp = client.post(
            "/api/v1/admin/register",
            json={
                "name": "Verbose",
                "email": "verbose@example.com",
                "password": password,
                "password_confirmation": password,
            },
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["password"] == ["The password may not be longer than 72 bytes."]
        assert store.email_exists("verbose@example.com") is False

    def test_register_confirmation_mismatch(self, api_client) -> None:
        client, _token, _admin_id, _store = api_client
        resp = client.post(
            "/api/v1/admin/register",
            json={
                "name": "Typo",
                "email": "typo@example.com",
                "password": "hunter22",
                "password_confirmation": "hunter23",
            },
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["password_confirmation"] == ["The password confirmation does not match."]

    def test_register_missing_confirmation(self, api_client) -> None:
        client, _token, _admin_id, _store = api_client
        resp = client.post(
            "/api/v1/admin/register",
            json={"name": "Lazy", "email": "lazy@example.com", "password": "hunter22"},
        )
        assert resp.status_code == 400
        assert "password_confirmation" in resp.json()["error"]

    def test_register_short_password(self, api_client) -> None:
        client, _token, _admin_id, _store = api_client
        resp = client.post(
            "/api/v1/admin/register",
            json={
                "name": "Short",
                "email": "short@example.com",
                "password": "abc",
                "password_confirmation": "abc",
            },
        )
        assert resp.status_code == 400
        assert "password" in resp.json()["error"]

    def test_register_name_too_long(self, api_client) -> None:
        client, _token, _admin_id, _store = api_client
        resp = client.post(
            "/api/v1/admin/register",
            json={
                "name": "x" * 256,
                "email": "long@example.com",
                "password": "hunter22",
                "password_confirmation": "hunter22",
            },
        )
        assert resp.status_code == 400
        assert "name" in resp.json()["error"]


class TestMe:
    def test_me_authenticated(self, api_client) -> None:
        client, token, admin_id, _store = api_client
        resp = client.get("/api/v1/admin/me", headers=_bearer(token))
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["message"] == "success"
        assert body["data"]["admin"]["id"] == admin_id
        assert body["data"]["admin"]["email"] == ADMIN_EMAIL

    def test_me_token_query_parameter(self, api_client) -> None:
        client, token, admin_id, _store = api_client
        resp = client.get("/api/v1/admin/me", params={"token": token})
        assert resp.status_code == 200
        assert resp.json()["data"]["admin"]["id"] == admin_id

    def test_me_without_token(self, api_client) -> None:
        client, _token, _admin_id, _store = api_client
        resp = client.get("/api/v1/admin/me")
        assert resp.status_code == 400
        body = resp.json()
        assert body["status"] is False
        assert body["error"] == "token_absent"

    def test_me_garbage_token(self, api_client) -> None:
        client, _token, _admin_id, _store = api_client
        resp = client.get("/api/v1/admin/me", headers=_bearer("not.a.jwt"))
        assert resp.status_code == 400
        assert resp.json()["error"] == "token_invalid"

    def test_me_expired_token(self, api_client, token_factory) -> None:
        client, _token, admin_id, _store = api_client
        now = now_ts()
        expired = token_factory(sub=str(admin_id), iat=now - 7200, nbf=now - 7200, exp=now - 3600)
        resp = client.get("/api/v1/admin/me", headers=_bearer(expired))
        assert resp.status_code == 401
        assert resp.json()["error"] == "token_expired"

    def test_me_admin_not_found(self, api_client, token_factory) -> None:
        """A well-formed token for an id with no admin row is a 404, not a token error."""
        client, _token, _admin_id, _store = api_client
        resp = client.get("/api/v1/admin/me", headers=_bearer(token_factory(sub="999999")))
        assert resp.status_code == 404
        assert resp.json()["error"] == "admin_not_found"


class TestLogout:
    def test_logout_without_token_still_succeeds(self, api_client) -> None:
        client, _token, _admin_id, _store = api_client
        resp = client.post("/api/v1/admin/logout")
        assert resp.status_code == 200
        body = resp.json()
        assert body == {"message": "logout successfully", "data": {}, "error": "", "status": True}

    def test_logout_with_garbage_token_still_succeeds(self, api_client) -> None:
        client, _token, _admin_id, _store = api_client
        resp = client.post("/api/v1/admin/logout", headers=_bearer("garbage"))
        assert resp.status_code == 200

    def test_me_after_logout_fails(self, api_client) -> None:
        client, _token, _admin_id, _store = api_client
        token = _login(client)
        assert client.get("/api/v1/admin/me", headers=_bearer(token)).status_code == 200

        assert client.post("/api/v1/admin/logout", headers=_bearer(token)).status_code == 200

        resp = client.get("/api/v1/admin/me", headers=_bearer(token))
        assert resp.status_code == 401
        assert resp.json()["error"] == "token_invalid"


class TestRefresh:
    def test_refresh_returns_different_token(self, api_client) -> None:
        client, _token, admin_id, _store = api_client
        token = _login(client)
        resp = client.post("/api/v1/admin/refresh", headers=_bearer(token))
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["message"] == "refresh token successfully"
        new_token = body["data"]["_token"]
        assert new_token != token
        assert body["data"]["expires_in"] == get_settings().jwt_ttl_seconds

        me = client.get("/api/v1/admin/me", headers=_bearer(new_token))
        assert me.status_code == 200
        assert me.json()["data"]["admin"]["id"] == admin_id

    def test_refreshed_token_keeps_original_iat(self, api_client) -> None:
        client, _token, _admin_id, _store = api_client
        token = _login(client)
        new_token = client.post("/api/v1/admin/refresh", headers=_bearer(token)).json()["data"]["_token"]
        assert jwt.get_unverified_claims(new_token)["iat"] == jwt.get_unverified_claims(token)["iat"]

    def test_old_token_unusable_after_refresh(self, api_client) -> None:
        client, _token, _admin_id, _store = api_client
        token = _login(client)
        assert client.post("/api/v1/admin/refresh", headers=_bearer(token)).status_code == 200

        assert client.get("/api/v1/admin/me", headers=_bearer(token)).json()["error"] == "token_invalid"
        again = client.post("/api/v1/admin/refresh", headers=_bearer(token))
        assert again.status_code == 401
        assert again.json()["error"] == "token_invalid"

    def test_refresh_expired_token_within_window(self, api_client, token_factory) -> None:
        client, _token, admin_id, _store = api_client
        now = now_ts()
        expired = token_factory(sub=str(admin_id), iat=now - 7200, nbf=now - 7200, exp=now - 3600)
        resp = client.post("/api/v1/admin/refresh", headers=_bearer(expired))
        assert resp.status_code == 200, resp.text
        assert client.get("/api/v1/admin/me", headers=_bearer(resp.json()["data"]["_token"])).status_code == 200

    def test_refresh_past_window(self, api_client, token_factory) -> None:
        client, _token, admin_id, _store = api_client
        now = now_ts()
        too_old = now - get_settings().jwt_refresh_ttl_seconds - 60
        stale = token_factory(sub=str(admin_id), iat=too_old, nbf=too_old, exp=too_old + 3600)
        resp = client.post("/api/v1/admin/refresh", headers=_bearer(stale))
        assert resp.status_code == 401
        assert resp.json()["error"] == "token_expired"

    def test_refresh_without_token(self, api_client) -> None:
        client, _token, _admin_id, _store = api_client
        resp = client.post("/api/v1/admin/refresh")
        assert resp.status_code == 400
        assert resp.json()["error"] == "token_absent"


class TestLoginRateLimit:
    def test_eleventh_login_in_a_minute_is_rejected(self, api_client) -> None:
        client, _token, _admin_id, _store = api_client
        limiter.reset()
        limiter.enabled = True
        try:
            for _ in range(10):
                resp = client.post("/api/v1/admin/login", json={"email": ADMIN_EMAIL, "password": "wrongpassword"})
                assert resp.status_code == 400
            resp = client.post("/api/v1/admin/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
        finally:
            limiter.enabled = False
            limiter.reset()

        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "60"
        body = resp.json()
        assert body["status"] is False
        assert body["error"] == "rate_limited"
        assert body["data"] == {}


class TestAuthProviderFailure:
    def test_login_store_failure_is_401_envelope(self, api_client, monkeypatch) -> None:
        client, _token, _admin_id, store = api_client

        def db_down(email):
            raise OperationalError("SELECT", {}, Exception("db down"))

        monkeypatch.setattr(store, "get_by_email", db_down)
        resp = client.post("/api/v1/admin/login", json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD})
        assert resp.status_code == 401
        body = resp.json()
        assert body["status"] is False
        assert body["error"] == "Authentication provider is unavailable."
        assert body["message"] == "Authentication failed."
