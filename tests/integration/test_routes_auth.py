"""Signup, login, logout and password routes."""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest

from kmarket.exceptions import IdentityProviderUnavailableError
from kmarket.identity.memory import InMemoryIdentityProvider
from kmarket.types import Role

_SIGNUP = {
    "email": "Owner@Example.com",
    "password": "pw-123456",
    "name": "Sato",
    "company_name": "Kanto Crane",
    "company_type": "SUPPLY",
    "region": "Kanagawa",
    "locality": "Yokohama",
    "phone": "045-000-0000",
}

COOKIE = "kmarket-access-token"


@pytest.mark.integration
class TestSignup:
    @pytest.mark.asyncio
    async def test_signup_provisions_and_signs_in(self, client, store, auth_backend) -> None:
        resp = await client.post("/api/auth/signup", json=_SIGNUP)

        assert resp.status_code == 201
        data = resp.json()
        assert data["signed_in"] is True
        token = resp.cookies.get(COOKIE)
        assert token in auth_backend.tokens

        profile = await store.profiles.get(data["user_id"])
        assert profile.role == Role.TENANT_ADMIN
        assert profile.tenant_id == data["tenant_id"]

        me = await client.get("/api/me", headers={"Authorization": f"Bearer {token}"})
        assert me.json()["status"] == "resolved"
        assert me.json()["tenant"]["name"] == "Kanto Crane"

    @pytest.mark.asyncio
    async def test_signup_validation_error_names_the_field(self, client, auth_backend) -> None:
        resp = await client.post("/api/auth/signup", json={**_SIGNUP, "phone": "  "})
        assert resp.status_code == 400
        assert resp.json()["detail"]["field"] == "phone"
        assert auth_backend.accounts == {}

    @pytest.mark.asyncio
    async def test_duplicate_email_is_rejected(self, client) -> None:
        assert (await client.post("/api/auth/signup", json=_SIGNUP)).status_code == 201
        resp = await client.post("/api/auth/signup", json={**_SIGNUP, "company_name": "Other"})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_unreachable_identity_provider_is_503(self, client, auth_backend) -> None:
        down = AsyncMock(side_effect=IdentityProviderUnavailableError("connection refused"))
        with patch.object(InMemoryIdentityProvider, "create_user_as_admin", down):
            resp = await client.post("/api/auth/signup", json=_SIGNUP)

        assert resp.status_code == 503
        assert "connection refused" not in resp.text
        assert auth_backend.accounts == {}


@pytest.mark.integration
class TestLoginLogout:
    @pytest.mark.asyncio
    async def test_login_sets_http_only_cookie(self, client, seed) -> None:
        company = await seed.company()
        await seed.user("owner@example.com", tenant_id=company.id)

        resp = await client.post(
            "/api/auth/login", json={"email": "OWNER@example.com", "password": "correct-horse-1"}
        )

        assert resp.status_code == 200
        set_cookie = resp.headers["set-cookie"]
        assert set_cookie.startswith(f"{COOKIE}=")
        assert "HttpOnly" in set_cookie

    @pytest.mark.asyncio
    async def test_wrong_password(self, client, seed) -> None:
        await seed.user("owner@example.com", tenant_id=None, with_profile=False)
        resp = await client.post(
            "/api/auth/login", json={"email": "owner@example.com", "password": "wrong"}
        )
        assert resp.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_credentials(self, client) -> None:
        resp = await client.post("/api/auth/login", json={"email": " ", "password": ""})
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_logout_revokes_token(self, client, seed, auth_backend) -> None:
        company = await seed.company()
        user = await seed.user("owner@example.com", tenant_id=company.id)

        resp = await client.post("/api/auth/logout", headers=user.headers)

        assert resp.status_code == 200
        assert user.token not in auth_backend.tokens
        me = await client.get("/api/me", headers=user.headers)
        assert me.json()["authenticated"] is False

    @pytest.mark.asyncio
    async def test_logout_without_session_is_ok(self, client) -> None:
        resp = await client.post("/api/auth/logout")
        assert resp.status_code == 200


@pytest.mark.integration
class TestPasswords:
    @pytest.mark.asyncio
    async def test_reset_uses_configured_redirect(self, client, seed, auth_backend) -> None:
        await seed.user("owner@example.com", tenant_id=None, with_profile=False)
        resp = await client.post("/api/auth/password-reset", json={"email": "owner@example.com"})
        assert resp.status_code == 200
        assert auth_backend.reset_emails == [
            ("owner@example.com", "http://localhost:3000/auth/reset-password")
        ]

    @pytest.mark.asyncio
    async def test_reset_for_unknown_email_looks_the_same(self, client) -> None:
        resp = await client.post("/api/auth/password-reset", json={"email": "nobody@example.com"})
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_change_password(self, client, seed) -> None:
        user = await seed.user("owner@example.com", tenant_id=None, with_profile=False)
        resp = await client.post(
            "/api/auth/password", json={"new_password": "brand-new-pass"}, headers=user.headers
        )
        assert resp.status_code == 200

        login = await client.post(
            "/api/auth/login", json={"email": "owner@example.com", "password": "brand-new-pass"}
        )
        assert login.status_code == 200

    @pytest.mark.asyncio
    async def test_change_password_too_short(self, client, seed) -> None:
        user = await seed.user("owner@example.com", tenant_id=None, with_profile=False)
        resp = await client.post(
            "/api/auth/password", json={"new_password": "short"}, headers=user.headers
        )
        assert resp.status_code == 400

    @pytest.mark.asyncio
    async def test_change_password_without_session(self, client) -> None:
        resp = await client.post("/api/auth/password", json={"new_password": "brand-new-pass"})
        assert resp.status_code == 401
