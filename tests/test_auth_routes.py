"""
tests/test_auth_routes.py -- Integration tests for the /auth/* gateway endpoints.

These tests exercise the full stack: FastAPI routing -> validated()/require_session
dependencies -> AuthDelegate -> AuthEngine/ProfileStore -> public mapper ->
ErrorResponse envelope. The client fixture gives every test its own database.

Coverage:
  - register: 201 shape, per-rule validation details, duplicate email, malformed
    or over-nested JSON
  - login: cookie + session returned, "Invalid credentials" for every credential failure
  - logout / refresh / me: 401 without a valid cookie, cookie invalidated on logout,
    sliding refresh forwards a new cookie
  - PUT /auth/me: gate before validation, partial update, email conflict
  - DELETE /auth/me: cascade + clearing cookie
  - forgot/reset password: identical message for unknown emails, single-use token
  - The end-to-end alice scenario
  - CORS preflight for the configured origin

Fixtures used (from conftest.py):
  - client: TestClient over the full app; keeps a cookie jar
  - stores: (AuthStore, ProfileStore) behind that client
  - sent_resets: (email, url, token) for each reset link the engine issued
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from auth.store import AuthStore, utcnow
from conftest import REGISTRATION, register_and_login, session_cookie

ALICE = REGISTRATION
BOB = {"email": "bob@example.com", "password": "Hunter22x", "name": "Bob"}

USER_KEYS = {"id", "email", "emailVerified", "name", "image", "createdAt", "updatedAt"}
SESSION_KEYS = {"id", "userId", "expiresAt", "ipAddress", "userAgent", "createdAt", "updatedAt"}


def _parse(ts: str) -> datetime:
    return datetime.fromisoformat(ts.replace("Z", "+00:00"))


def _with_cookie(value: str) -> dict[str, str]:
    return {"cookie": f"auth-session={value}"}


class TestRegister:
    def test_success(self, client: TestClient) -> None:
        resp = client.post("/auth/register", json=ALICE)
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["message"] == "Registration successful"
        assert set(data["user"]) == USER_KEYS
        assert data["user"]["email"] == "alice@example.com"
        assert data["user"]["name"] == "Alice"
        assert data["user"]["emailVerified"] is False
        assert "set-cookie" not in resp.headers, "registration must not sign the user in"
        assert "Passw0rd1" not in resp.text

    def test_duplicate_email(self, client: TestClient) -> None:
        assert client.post("/auth/register", json=ALICE).status_code == 201
        resp = client.post("/auth/register", json={**ALICE, "email": "ALICE@example.com"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "User already exists"}

    def test_missing_fields(self, client: TestClient) -> None:
        resp = client.post("/auth/register", json={})
        assert resp.status_code == 400
        assert resp.json() == {
            "error": "Validation failed",
            "details": ["email: Required", "password: Required", "name: Required"],
        }

    def test_one_detail_per_violated_rule(self, client: TestClient) -> None:
        resp = client.post("/auth/register", json={"email": "nope", "password": "short", "name": "R2D2"})
        assert resp.status_code == 400
        details = resp.json()["details"]
        assert details == [
            "email: Invalid email address",
            "password: Must be between 8 and 128 characters",
            "password: Must contain at least one uppercase letter",
            "password: Must contain at least one digit",
            "name: May only contain letters, spaces, hyphens and apostrophes",
        ]
        assert len(details) == len(set(details))

    def test_malformed_json(self, client: TestClient) -> None:
        resp = client.post(
            "/auth/register",
            content=b'{"email": "alice@example.com",',
            headers={"content-type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid JSON format", "details": ["Request body must be valid JSON"]}

    def test_deeply_nested_json(self, client: TestClient) -> None:
        resp = client.post("/auth/login", content=b"[" * 100000, headers={"content-type": "application/json"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid JSON format", "details": ["Request body must be valid JSON"]}

    def test_empty_body(self, client: TestClient) -> None:
        resp = client.post("/auth/register")
        assert resp.status_code == 400
        assert resp.json()["error"] == "Invalid JSON format"

    def test_non_object_json(self, client: TestClient) -> None:
        resp = client.post("/auth/register", json=["alice@example.com"])
        assert resp.status_code == 400
        assert resp.json() == {"error": "Validation failed", "details": ["body: Expected object"]}


class TestLogin:
    def test_success_sets_cookie(self, client: TestClient) -> None:
        client.post("/auth/register", json=ALICE)
        before = datetime.now(timezone.utc)
        resp = client.post("/auth/login", json={"email": ALICE["email"], "password": ALICE["password"]})
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["message"] == "Login successful"
        assert set(data["user"]) == USER_KEYS
        assert set(data["session"]) == SESSION_KEYS
        assert data["session"]["userId"] == data["user"]["id"]
        assert _parse(data["session"]["expiresAt"]) > before

        cookie = resp.headers["set-cookie"]
        assert cookie.startswith("auth-session=")
        assert "HttpOnly" in cookie
        assert "samesite=lax" in cookie.lower()
        assert resp.headers["cache-control"] == "no-store"
        assert session_cookie(resp) not in resp.text, "the session token only travels in the cookie"

    def test_wrong_password(self, client: TestClient) -> None:
        client.post("/auth/register", json=ALICE)
        resp = client.post("/auth/login", json={"email": ALICE["email"], "password": "Wrong0ne!"})
        assert resp.status_code == 401
        assert resp.json() == {"error": "Invalid credentials"}
        assert "set-cookie" not in resp.headers

    def test_unknown_email_is_indistinguishable(self, client: TestClient) -> None:
        client.post("/auth/register", json=ALICE)
        wrong = client.post("/auth/login", json={"email": ALICE["email"], "password": "Wrong0ne!"})
        unknown = client.post("/auth/login", json={"email": "ghost@example.com", "password": "Wrong0ne!"})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()

    def test_validation(self, client: TestClient) -> None:
        resp = client.post("/auth/login", json={"email": "alice", "password": ""})
        assert resp.status_code == 400
        assert resp.json()["details"] == ["email: Invalid email address", "password: Must not be empty"]


class TestSessionEndpoints:
    def test_me_requires_cookie(self, client: TestClient) -> None:
        resp = client.get("/auth/me", headers={"authorization": "Bearer something"})
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}

    def test_me_rejects_forged_cookie(self, client: TestClient) -> None:
        value = register_and_login(client)
        client.cookies.clear()
        token = value.rsplit(".", 1)[0]
        resp = client.get("/auth/me", headers=_with_cookie(f"{token}.{'0' * 64}"))
        assert resp.status_code == 401

    def test_me_with_cookie(self, client: TestClient) -> None:
        register_and_login(client)
        resp = client.get("/auth/me")
        assert resp.status_code == 200
        assert resp.json()["user"]["email"] == "alice@example.com"

    def test_logout_invalidates_cookie(self, client: TestClient) -> None:
        value = register_and_login(client)
        resp = client.post("/auth/logout")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Logout successful"}
        assert "Max-Age=0" in resp.headers["set-cookie"]

        client.cookies.clear()
        assert client.get("/auth/me", headers=_with_cookie(value)).status_code == 401

    def test_logout_requires_session(self, client: TestClient) -> None:
        resp = client.post("/auth/logout")
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}

    def test_refresh_requires_session(self, client: TestClient) -> None:
        assert client.post("/auth/refresh").status_code == 401

    def test_refresh_returns_session(self, client: TestClient) -> None:
        register_and_login(client)
        resp = client.post("/auth/refresh")
        assert resp.status_code == 200
        data = resp.json()
        assert set(data) == {"user", "session"}
        assert set(data["session"]) == SESSION_KEYS
        assert "set-cookie" not in resp.headers, "a fresh session is not re-issued"

    def test_refresh_extends_aged_session(self, client: TestClient, stores: tuple[AuthStore, object]) -> None:
        auth_store, _ = stores
        register_and_login(client)
        session_id = client.post("/auth/refresh").json()["session"]["id"]
        # Default policy: 7-day sessions, refreshed once a day old.
        aged = utcnow() + timedelta(days=6) - timedelta(minutes=5)
        auth_store.extend_session(session_id, aged)

        resp = client.post("/auth/refresh")
        assert resp.status_code == 200
        assert resp.headers["set-cookie"].startswith("auth-session=")
        assert resp.headers["cache-control"] == "no-store"
        assert _parse(resp.json()["session"]["expiresAt"]) > aged + timedelta(hours=23)

    def test_expired_session(self, client: TestClient, stores: tuple[AuthStore, object]) -> None:
        auth_store, _ = stores
        register_and_login(client)
        session_id = client.post("/auth/refresh").json()["session"]["id"]
        auth_store.extend_session(session_id, utcnow() - timedelta(seconds=1))
        assert client.get("/auth/me").status_code == 401


class TestUpdateMe:
    def test_requires_session_before_validation(self, client: TestClient) -> None:
        """An unauthenticated empty body is a 401, not a 400."""
        assert client.put("/auth/me", json={}).status_code == 401
        resp = client.put("/auth/me", content=b"{oops", headers={"content-type": "application/json"})
        assert resp.status_code == 401

    def test_empty_body(self, client: TestClient) -> None:
        register_and_login(client)
        resp = client.put("/auth/me", json={})
        assert resp.status_code == 400
        assert resp.json() == {
            "error": "Validation failed",
            "details": ["body: At least one field must be provided"],
        }

    def test_name_only_leaves_email(self, client: TestClient) -> None:
        register_and_login(client)
        before = client.get("/auth/me").json()["user"]
        resp = client.put("/auth/me", json={"name": "New Name"})
        assert resp.status_code == 200
        user = resp.json()["user"]
        assert user["name"] == "New Name"
        assert user["email"] == before["email"]
        assert user["createdAt"] == before["createdAt"]
        assert _parse(user["updatedAt"]) >= _parse(before["updatedAt"])

    def test_email_change(self, client: TestClient) -> None:
        register_and_login(client)
        resp = client.put("/auth/me", json={"email": "Alice.New@Example.com"})
        assert resp.status_code == 200
        assert resp.json()["user"]["email"] == "alice.new@example.com"

        client.cookies.clear()
        login = client.post("/auth/login", json={"email": "alice.new@example.com", "password": ALICE["password"]})
        assert login.status_code == 200

    def test_email_conflict(self, client: TestClient) -> None:
        assert client.post("/auth/register", json=BOB).status_code == 201
        register_and_login(client)
        resp = client.put("/auth/me", json={"email": "bob@example.com"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Email already in use"}
        assert client.get("/auth/me").json()["user"]["email"] == "alice@example.com"

    def test_invalid_name(self, client: TestClient) -> None:
        register_and_login(client)
        resp = client.put("/auth/me", json={"name": "R2D2"})
        assert resp.status_code == 400
        assert resp.json()["details"] == ["name: May only contain letters, spaces, hyphens and apostrophes"]


class TestDeleteMe:
    def test_deletes_account_and_clears_cookie(self, client: TestClient) -> None:
        value = register_and_login(client)
        resp = client.delete("/auth/me")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Account deleted successfully"}
        assert "Max-Age=0" in resp.headers["set-cookie"]

        client.cookies.clear()
        assert client.get("/auth/me", headers=_with_cookie(value)).status_code == 401
        login = client.post("/auth/login", json={"email": ALICE["email"], "password": ALICE["password"]})
        assert login.status_code == 401

    def test_requires_session(self, client: TestClient) -> None:
        assert client.delete("/auth/me").status_code == 401

    def test_email_can_be_reused(self, client: TestClient) -> None:
        register_and_login(client)
        client.delete("/auth/me")
        assert client.post("/auth/register", json=ALICE).status_code == 201


class TestPasswordReset:
    def test_identical_message_for_known_and_unknown(self, client: TestClient, sent_resets: list) -> None:
        client.post("/auth/register", json=ALICE)
        known = client.post("/auth/forgot-password", json={"email": ALICE["email"]})
        unknown = client.post("/auth/forgot-password", json={"email": "ghost@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json() == {
            "message": "If an account exists for that email, a password reset link has been sent"
        }
        assert [email for email, _url, _token in sent_resets] == [ALICE["email"]]

    def test_forgot_password_validation(self, client: TestClient) -> None:
        resp = client.post("/auth/forgot-password", json={"email": "not-an-email"})
        assert resp.status_code == 400
        assert resp.json()["details"] == ["email: Invalid email address"]

    def test_reset_flow(self, client: TestClient, sent_resets: list) -> None:
        client.post("/auth/register", json=ALICE)
        client.post("/auth/forgot-password", json={"email": ALICE["email"]})
        token = sent_resets[0][2]

        resp = client.post("/auth/reset-password", json={"token": token, "password": "N3wPassword"})
        assert resp.status_code == 200
        assert resp.json() == {"message": "Password has been reset"}

        old = client.post("/auth/login", json={"email": ALICE["email"], "password": ALICE["password"]})
        assert old.status_code == 401
        new = client.post("/auth/login", json={"email": ALICE["email"], "password": "N3wPassword"})
        assert new.status_code == 200

        reused = client.post("/auth/reset-password", json={"token": token, "password": "An0therPassword"})
        assert reused.status_code == 400
        assert reused.json() == {"error": "Invalid or expired token"}

    def test_unknown_token(self, client: TestClient) -> None:
        resp = client.post("/auth/reset-password", json={"token": "bogus", "password": "N3wPassword"})
        assert resp.status_code == 400
        assert resp.json() == {"error": "Invalid or expired token"}

    def test_weak_new_password(self, client: TestClient) -> None:
        resp = client.post("/auth/reset-password", json={"token": "bogus", "password": "weak"})
        assert resp.status_code == 400
        assert resp.json()["error"] == "Validation failed"


class TestEndToEnd:
    def test_alice_lifecycle(self, client: TestClient) -> None:
        """register -> login -> me -> update -> delete -> me with the old cookie is 401."""
        resp = client.post(
            "/auth/register", json={"email": "alice@example.com", "password": "Passw0rd1", "name": "Alice"}
        )
        assert resp.status_code == 201

        resp = client.post("/auth/login", json={"email": "alice@example.com", "password": "Passw0rd1"})
        assert resp.status_code == 200
        value = session_cookie(resp)
        client.cookies.clear()
        cookie = _with_cookie(value)

        resp = client.get("/auth/me", headers=cookie)
        assert resp.status_code == 200
        assert resp.json()["user"]["email"] == "alice@example.com"

        resp = client.put("/auth/me", json={"name": "Alice B"}, headers=cookie)
        assert resp.status_code == 200
        assert resp.json()["user"]["name"] == "Alice B"

        resp = client.delete("/auth/me", headers=cookie)
        assert resp.status_code == 200

        client.cookies.clear()
        resp = client.get("/auth/me", headers=cookie)
        assert resp.status_code == 401


class TestCors:
    def test_preflight_allows_configured_origin(self, client: TestClient) -> None:
        resp = client.options(
            "/auth/login",
            headers={
                "origin": "http://localhost:3000",
                "access-control-request-method": "POST",
                "access-control-request-headers": "content-type",
            },
        )
        assert resp.status_code == 200
        assert resp.headers["access-control-allow-origin"] == "http://localhost:3000"
        assert resp.headers["access-control-allow-credentials"] == "true"

    def test_preflight_rejects_other_origin(self, client: TestClient) -> None:
        resp = client.options(
            "/auth/login",
            headers={"origin": "https://evil.example", "access-control-request-method": "POST"},
        )
        assert "access-control-allow-origin" not in resp.headers
