"""GoTrueIdentityProvider against a mocked auth REST API."""

from __future__ import annotations

import json
import time
from typing import Any

import httpx
import jwt
import pytest

from kmarket.config.settings import Settings
from kmarket.exceptions import (
    IdentityProviderError,
    IdentityProviderUnavailableError,
    SessionMissingError,
)
from kmarket.identity.gotrue import GoTrueIdentityProvider

JWT_SECRET = "test-jwt-secret-that-is-long-enough-for-hs256"

_USER = {"id": "user-1", "email": "owner@example.com", "user_metadata": {"display_name": "Owner"}}


def _settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "identity_mode": "gotrue",
        "gotrue_url": "https://auth.test/auth/v1",
        "gotrue_anon_key": "anon-key",
        "gotrue_service_role_key": "service-key",
    }
    values.update(overrides)
    return Settings(**values)


class _Recorder:
    """MockTransport handler that records requests and replies from a route table."""

    def __init__(self, routes: dict[tuple[str, str], httpx.Response]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.routes.get((request.method, request.url.path))
        if response is None:
            return httpx.Response(404, json={"msg": "no route"})
        return response


def _provider(
    handler: Any, token: str | None = None, **settings: Any
) -> GoTrueIdentityProvider:
    return GoTrueIdentityProvider(
        _settings(**settings), access_token=token, transport=httpx.MockTransport(handler)
    )


@pytest.mark.unit
class TestConstruction:
    def test_requires_url_and_anon_key(self) -> None:
        with pytest.raises(ValueError, match="GOTRUE_URL"):
            GoTrueIdentityProvider(_settings(gotrue_url=None))


@pytest.mark.unit
class TestCurrentSession:
    @pytest.mark.asyncio
    async def test_missing_token_makes_no_request(self) -> None:
        recorder = _Recorder({})
        with pytest.raises(SessionMissingError):
            await _provider(recorder).get_current_session()
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_session_from_user_endpoint(self) -> None:
        recorder = _Recorder({("GET", "/auth/v1/user"): httpx.Response(200, json=_USER)})
        session = await _provider(recorder, token="tok").get_current_session()

        assert session.subject_id == "user-1"
        assert session.display_name == "Owner"
        sent = recorder.requests[0]
        assert sent.headers["apikey"] == "anon-key"
        assert sent.headers["authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_session_not_found_code_is_session_missing(self) -> None:
        body = {"error_code": "session_not_found", "msg": "Session does not exist"}
        recorder = _Recorder({("GET", "/auth/v1/user"): httpx.Response(403, json=body)})
        with pytest.raises(SessionMissingError):
            await _provider(recorder, token="tok").get_current_session()

    @pytest.mark.asyncio
    async def test_other_errors_are_session_errors(self) -> None:
        body = {"code": "bad_jwt", "msg": "invalid JWT"}
        recorder = _Recorder({("GET", "/auth/v1/user"): httpx.Response(401, json=body)})
        with pytest.raises(IdentityProviderError) as exc_info:
            await _provider(recorder, token="tok").get_current_session()
        assert not isinstance(exc_info.value, SessionMissingError)
        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "invalid JWT"

    @pytest.mark.asyncio
    async def test_unreachable_provider_is_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(IdentityProviderUnavailableError):
            await _provider(handler, token="tok").get_current_session()

    @pytest.mark.asyncio
    async def test_valid_jwt_is_verified_locally(self) -> None:
        token = jwt.encode(
            {"sub": "user-1", "aud": "authenticated", "exp": int(time.time()) + 60},
            JWT_SECRET,
            algorithm="HS256",
        )
        recorder = _Recorder({("GET", "/auth/v1/user"): httpx.Response(200, json=_USER)})
        session = await _provider(
            recorder, token=token, gotrue_jwt_secret=JWT_SECRET
        ).get_current_session()
        assert session.subject_id == "user-1"

    @pytest.mark.asyncio
    async def test_expired_jwt_fails_without_request(self) -> None:
        token = jwt.encode(
            {"sub": "user-1", "aud": "authenticated", "exp": int(time.time()) - 60},
            JWT_SECRET,
            algorithm="HS256",
        )
        recorder = _Recorder({})
        with pytest.raises(IdentityProviderError) as exc_info:
            await _provider(
                recorder, token=token, gotrue_jwt_secret=JWT_SECRET
            ).get_current_session()
        assert not isinstance(exc_info.value, SessionMissingError)
        assert recorder.requests == []


@pytest.mark.unit
class TestPasswordFlows:
    @pytest.mark.asyncio
    async def test_sign_in_binds_token(self) -> None:
        body = {"access_token": "new-token", "expires_in": 3600, "user": _USER}
        recorder = _Recorder({("POST", "/auth/v1/token"): httpx.Response(200, json=body)})
        provider = _provider(recorder)

        session = await provider.sign_in_with_password("owner@example.com", "pw-123456")

        assert session.access_token == "new-token"
        assert provider.access_token == "new-token"
        assert recorder.requests[0].url.params["grant_type"] == "password"

    @pytest.mark.asyncio
    async def test_bad_credentials(self) -> None:
        body = {"error": "invalid_grant", "error_description": "Invalid login credentials"}
        recorder = _Recorder({("POST", "/auth/v1/token"): httpx.Response(400, json=body)})
        with pytest.raises(IdentityProviderError, match="Invalid login credentials"):
            await _provider(recorder).sign_in_with_password("owner@example.com", "nope")

    @pytest.mark.asyncio
    async def test_recover_sends_redirect(self) -> None:
        recorder = _Recorder({("POST", "/auth/v1/recover"): httpx.Response(200, json={})})
        await _provider(recorder).send_password_reset_email(
            "owner@example.com", "https://app.test/auth/reset-password"
        )
        sent = recorder.requests[0]
        assert sent.url.params["redirect_to"] == "https://app.test/auth/reset-password"
        assert json.loads(sent.content) == {"email": "owner@example.com"}

    @pytest.mark.asyncio
    async def test_update_password_without_session(self) -> None:
        with pytest.raises(SessionMissingError):
            await _provider(_Recorder({})).update_password("new-password")

    @pytest.mark.asyncio
    async def test_sign_out_clears_token_even_without_server_session(self) -> None:
        body = {"error_code": "session_not_found", "msg": "gone"}
        recorder = _Recorder({("POST", "/auth/v1/logout"): httpx.Response(403, json=body)})
        provider = _provider(recorder, token="tok")
        await provider.sign_out()
        assert provider.access_token is None


@pytest.mark.unit
class TestAdminCalls:
    @pytest.mark.asyncio
    async def test_create_user_confirms_email_with_service_key(self) -> None:
        recorder = _Recorder({("POST", "/auth/v1/admin/users"): httpx.Response(200, json=_USER)})
        user = await _provider(recorder).create_user_as_admin("owner@example.com", "pw-123456")

        assert user.id == "user-1"
        sent = recorder.requests[0]
        assert sent.headers["authorization"] == "Bearer service-key"
        assert json.loads(sent.content)["email_confirm"] is True

    @pytest.mark.asyncio
    async def test_admin_call_without_service_key(self) -> None:
        provider = _provider(_Recorder({}), gotrue_service_role_key=None)
        with pytest.raises(IdentityProviderError, match="SERVICE_ROLE_KEY"):
            await provider.delete_user_as_admin("user-1")

    @pytest.mark.asyncio
    async def test_delete_user(self) -> None:
        recorder = _Recorder({("DELETE", "/auth/v1/admin/users/user-1"): httpx.Response(200)})
        await _provider(recorder).delete_user_as_admin("user-1")
        assert len(recorder.requests) == 1

    @pytest.mark.asyncio
    async def test_lookup_by_email_is_case_insensitive(self) -> None:
        users = [{"id": "user-0", "email": "other@example.com"}, _USER]
        recorder = _Recorder(
            {("GET", "/auth/v1/admin/users"): httpx.Response(200, json={"users": users})}
        )
        user = await _provider(recorder).get_user_by_email_as_admin("OWNER@example.com")
        assert user is not None
        assert user.id == "user-1"

    @pytest.mark.asyncio
    async def test_lookup_by_email_not_found(self) -> None:
        recorder = _Recorder(
            {("GET", "/auth/v1/admin/users"): httpx.Response(200, json={"users": []})}
        )
        assert await _provider(recorder).get_user_by_email_as_admin("x@example.com") is None
