"""End-to-end tests of the auth HTTP API."""

from functools import partial

import pytest
from fastapi.testclient import TestClient

from main import create_app
from models.helpers import TokenType, UserRole
from services.rate_limiter import MemoryRateLimiter

from conftest import TEST_PASSWORD

ATTACKER = {"X-Forwarded-For": "1.2.3.4"}


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def login(client, email="student@campus.io", password=TEST_PASSWORD, headers=None):
    return client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password},
        headers=headers or {},
    )


class TestRegistration:
    def test_register_then_duplicate(self, client):
        payload = {"email": "a@x.com", "password": TEST_PASSWORD, "full_name": "Ada"}

        created = client.post("/api/v1/auth/register", json=payload)
        duplicate = client.post("/api/v1/auth/register", json=payload)

        assert created.status_code == 201
        body = created.json()
        assert body["access_token"] and body["refresh_token"]
        assert body["token_type"] == "Bearer"
        assert body["expires_in"] == 900
        assert body["user"]["email"] == "a@x.com"
        assert body["user"]["role"] == "STUDENT"
        assert body["user"]["profile"]["fullName"] == "Ada"

        assert duplicate.status_code == 409
        assert duplicate.json() == {"detail": "User already exists"}

    @pytest.mark.parametrize(
        "password",
        ["Sh0rt!", "alllowercase1!", "NoDigits!!xx", "NoSpecial123"],
    )
    def test_weak_passwords_are_rejected(self, client, password):
        response = client.post(
            "/api/v1/auth/register",
            json={"email": "a@x.com", "password": password, "full_name": "Ada"},
        )

        assert response.status_code == 422


class TestLogin:
    def test_login_issues_verifiable_tokens_and_cookies(self, client, register_user, app, repository):
        register_user()

        response = login(client)

        assert response.status_code == 200
        body = response.json()
        claims = app.state.token_codec.verify(body["access_token"], TokenType.ACCESS)
        assert claims.email == "student@campus.io"

        cookies = response.headers.get_list("set-cookie")
        access_cookie = next(c for c in cookies if c.startswith("accessToken="))
        refresh_cookie = next(c for c in cookies if c.startswith("refreshToken="))
        assert "HttpOnly" in access_cookie and "HttpOnly" in refresh_cookie
        assert "Max-Age=900" in access_cookie
        assert "Max-Age=604800" in refresh_cookie
        assert "samesite=lax" in access_cookie.lower()
        assert "Secure" not in access_cookie

    def test_wrong_password(self, client, register_user):
        register_user()

        response = login(client, password="Wrong!Passw0rd")

        assert response.status_code == 401
        assert response.json() == {"detail": "Invalid credentials"}

    def test_sixth_attempt_is_rate_limited(self, client, register_user, clock):
        register_user()

        statuses = [login(client, password="nope", headers=ATTACKER).status_code for _ in range(5)]
        limited = login(client, headers=ATTACKER)

        assert statuses == [401] * 5
        assert limited.status_code == 429
        assert limited.json()["retry_after"] == 900
        assert limited.headers["Retry-After"] == "900"

        # Other clients are unaffected
        assert login(client, headers={"X-Forwarded-For": "5.6.7.8"}).status_code == 200

        clock.advance(901)
        assert login(client, headers=ATTACKER).status_code == 200

    def test_admin_reset_lifts_the_block(self, client, register_user, repository):
        admin = register_user(email="admin@campus.io")
        client.portal.call(partial(repository.update_user, admin["user"]["id"], role=UserRole.ADMIN))
        register_user()
        for _ in range(6):
            login(client, password="nope", headers=ATTACKER)
        assert login(client, headers=ATTACKER).status_code == 429

        reset = client.post(
            "/api/v1/admin/rate-limits/1.2.3.4/reset", headers=bearer(admin["access_token"])
        )

        assert reset.status_code == 200
        assert login(client, headers=ATTACKER).status_code == 200

    def test_success_starts_a_fresh_budget(self, client, register_user):
        register_user()
        for _ in range(4):
            login(client, password="nope", headers=ATTACKER)

        assert login(client, headers=ATTACKER).status_code == 200
        assert login(client, password="nope", headers=ATTACKER).status_code == 401


class TestRefresh:
    def test_old_refresh_token_cannot_be_replayed(self, client, register_user):
        tokens = register_user()

        rotated = client.post(
            "/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
        )
        replay = client.post(
            "/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
        )

        assert rotated.status_code == 200
        assert rotated.json()["refresh_token"] != tokens["refresh_token"]
        assert replay.status_code == 401
        assert replay.headers["WWW-Authenticate"] == "Bearer"

    def test_refresh_from_cookie(self, client, register_user):
        register_user()

        response = client.post("/api/v1/auth/refresh")

        assert response.status_code == 200
        assert client.cookies.get("refreshToken") == response.json()["refresh_token"]

    def test_body_takes_precedence_over_cookie(self, client, register_user):
        register_user()

        response = client.post("/api/v1/auth/refresh", json={"refresh_token": "bogus"})

        assert response.status_code == 401

    def test_without_any_token(self, client):
        assert client.post("/api/v1/auth/refresh").status_code == 401


class TestLogout:
    def test_logout_is_always_successful(self, client, register_user):
        tokens = register_user()

        first = client.post("/api/v1/auth/logout", json={"refresh_token": tokens["refresh_token"]})
        again = client.post("/api/v1/auth/logout", json={"refresh_token": tokens["refresh_token"]})
        unknown = client.post("/api/v1/auth/logout", json={"refresh_token": "never-issued"})

        assert [first.status_code, again.status_code, unknown.status_code] == [200, 200, 200]
        assert (
            client.post(
                "/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
            ).status_code
            == 401
        )

    def test_logout_clears_cookies(self, client, register_user):
        register_user()
        assert client.cookies.get("accessToken")

        client.post("/api/v1/auth/logout")

        assert client.cookies.get("accessToken") is None
        assert client.cookies.get("refreshToken") is None

    def test_logout_everywhere(self, client, register_user, repository):
        tokens = register_user()
        for _ in range(3):
            login(client)

        response = client.post("/api/v1/auth/logout-all", headers=bearer(tokens["access_token"]))

        assert response.status_code == 200
        remaining = client.portal.call(
            repository.list_user_refresh_tokens, tokens["user"]["id"]
        )
        assert remaining == []

    def test_logout_everywhere_requires_authentication(self, client):
        assert client.post("/api/v1/auth/logout-all").status_code == 401


class TestCredentialChanges:
    def test_change_password_invalidates_refresh_tokens(self, client, register_user):
        tokens = register_user()

        changed = client.patch(
            "/api/v1/users/me/password",
            json={"current_password": TEST_PASSWORD, "new_password": "N3w!Passw0rd#"},
            headers=bearer(tokens["access_token"]),
        )
        refresh = client.post(
            "/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
        )

        assert changed.status_code == 200
        assert refresh.status_code == 401
        assert login(client, password="N3w!Passw0rd#").status_code == 200

    def test_change_email_keeps_refresh_tokens(self, client, register_user):
        tokens = register_user()

        changed = client.patch(
            "/api/v1/users/me/email",
            json={"password": TEST_PASSWORD, "new_email": "moved@campus.io"},
            headers=bearer(tokens["access_token"]),
        )

        assert changed.status_code == 200
        assert changed.json()["user"]["email"] == "moved@campus.io"
        assert changed.json()["refresh_token"] is None
        assert (
            client.post(
                "/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]}
            ).status_code
            == 200
        )

    def test_change_email_conflict(self, client, register_user):
        tokens = register_user()
        register_user(email="taken@campus.io")

        response = client.patch(
            "/api/v1/users/me/email",
            json={"password": TEST_PASSWORD, "new_email": "taken@campus.io"},
            headers=bearer(tokens["access_token"]),
        )

        assert response.status_code == 409


class TestCurrentUser:
    def test_me_with_bearer_token(self, client, register_user):
        tokens = register_user()
        client.cookies.clear()

        response = client.get("/api/v1/auth/me", headers=bearer(tokens["access_token"]))

        assert response.status_code == 200
        assert response.json()["id"] == tokens["user"]["id"]
        assert response.json()["profile"]["completion"] == 11

    def test_me_with_cookie(self, client, register_user):
        register_user()

        assert client.get("/api/v1/auth/me").status_code == 200

    def test_me_without_token(self, client):
        assert client.get("/api/v1/auth/me").status_code == 401

    def test_deactivated_user_is_forbidden(self, client, register_user, repository):
        tokens = register_user()
        client.portal.call(partial(repository.update_user, tokens["user"]["id"], is_active=False))

        response = client.get("/api/v1/auth/me", headers=bearer(tokens["access_token"]))

        assert response.status_code == 403

    def test_onboarding(self, client, register_user):
        tokens = register_user()

        response = client.post(
            "/api/v1/auth/onboarding",
            json={"education_level": "masters", "major": "Physics", "goals": ["scholarship"]},
            headers=bearer(tokens["access_token"]),
        )

        assert response.status_code == 200
        profile = response.json()["profile"]
        assert profile["educationLevel"] == "MASTERS"
        assert profile["goals"] == ["scholarship"]


class TestAdmin:
    def test_non_admin_is_forbidden(self, client, register_user):
        tokens = register_user()

        response = client.post(
            "/api/v1/admin/rate-limits/1.2.3.4/reset", headers=bearer(tokens["access_token"])
        )

        assert response.status_code == 403

    def test_deactivating_an_account_ends_its_sessions(self, client, register_user, repository):
        admin = register_user(email="admin@campus.io")
        client.portal.call(partial(repository.update_user, admin["user"]["id"], role=UserRole.ADMIN))
        student = register_user()

        response = client.patch(
            f"/api/v1/admin/users/{student['user']['id']}",
            json={"is_active": False},
            headers=bearer(admin["access_token"]),
        )

        assert response.status_code == 200
        assert (
            client.post(
                "/api/v1/auth/refresh", json={"refresh_token": student["refresh_token"]}
            ).status_code
            == 401
        )
        assert login(client).status_code == 403

    def test_unknown_account(self, client, register_user, repository):
        admin = register_user(email="admin@campus.io")
        client.portal.call(partial(repository.update_user, admin["user"]["id"], role=UserRole.ADMIN))

        response = client.patch(
            "/api/v1/admin/users/does-not-exist",
            json={"is_active": False},
            headers=bearer(admin["access_token"]),
        )

        assert response.status_code == 404


class TestGlobalRateLimit:
    def test_api_traffic_is_limited(self, settings, repository, login_limiter, clock):
        app = create_app(
            settings=settings,
            repository=repository,
            login_limiter=login_limiter,
            global_limiter=MemoryRateLimiter(points=3, duration=900, clock=clock),
        )

        with TestClient(app) as client:
            statuses = [client.get("/api/v1/auth/me").status_code for _ in range(4)]
            health = client.get("/health")

        assert statuses[:3] == [401, 401, 401]
        assert statuses[3] == 429
        assert health.status_code == 200

    def test_rate_limit_headers(self, client):
        response = client.get("/api/v1/auth/me")

        assert response.headers["X-RateLimit-Limit"] == "100"
        assert response.headers["X-RateLimit-Remaining"] == "99"


class TestProductionCookies:
    def test_cookies_are_strict_and_secure(self, settings, repository, login_limiter, global_limiter):
        app = create_app(
            settings=settings.model_copy(update={"environment": "production"}),
            repository=repository,
            login_limiter=login_limiter,
            global_limiter=global_limiter,
        )

        with TestClient(app, base_url="https://testserver") as client:
            response = client.post(
                "/api/v1/auth/register",
                json={"email": "a@x.com", "password": TEST_PASSWORD, "full_name": "Ada"},
            )

        cookie = next(
            c for c in response.headers.get_list("set-cookie") if c.startswith("refreshToken=")
        )
        assert response.status_code == 201
        assert "Secure" in cookie
        assert "samesite=strict" in cookie.lower()


class TestErrorEnvelope:
    def test_unexpected_errors_are_generic_in_production(self, settings, repository, login_limiter, global_limiter):
        app = create_app(
            settings=settings.model_copy(update={"environment": "production"}),
            repository=repository,
            login_limiter=login_limiter,
            global_limiter=global_limiter,
        )

        async def explode(email):
            raise RuntimeError("database exploded with secrets")

        repository.get_user_by_email = explode

        with TestClient(app, raise_server_exceptions=False) as client:
            response = login(client)

        assert response.status_code == 500
        assert response.json() == {"detail": "An unexpected error occurred"}
