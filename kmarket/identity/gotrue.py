"""GoTrue-compatible identity provider over HTTP."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import jwt
import structlog

from kmarket.exceptions import (
    IdentityProviderError,
    IdentityProviderUnavailableError,
    SessionMissingError,
)
from kmarket.models.domain import AuthUser, Session

if TYPE_CHECKING:
    from kmarket.config.settings import Settings

logger = structlog.get_logger(__name__)

# Error codes GoTrue uses when the caller simply has no live session
_SESSION_MISSING_CODES = frozenset({"session_not_found", "no_authorization"})

# Admin user listing page size and page cap for email lookups
_ADMIN_PAGE_SIZE = 200
_ADMIN_MAX_PAGES = 50


def _to_user(payload: dict[str, Any]) -> AuthUser:
    return AuthUser(
        id=str(payload["id"]),
        email=payload.get("email"),
        user_metadata=payload.get("user_metadata") or {},
    )


def _error_from_response(resp: httpx.Response) -> IdentityProviderError:
    """Build the right exception from a GoTrue error body."""
    try:
        body: dict[str, Any] = resp.json()
    except ValueError:
        body = {}
    code = str(body.get("error_code") or body.get("code") or "")
    message = str(
        body.get("msg")
        or body.get("error_description")
        or body.get("message")
        or body.get("error")
        or f"Identity provider returned {resp.status_code}"
    )
    if code in _SESSION_MISSING_CODES:
        return SessionMissingError(message)
    return IdentityProviderError(message, status_code=resp.status_code)


class GoTrueIdentityProvider:
    """Identity provider bound to one caller's access token.

    User-level calls send the anon key plus the caller's bearer token;
    admin calls send the service-role key. When ``gotrue_jwt_secret`` is set
    the token is verified locally before the user record is fetched.
    """

    def __init__(
        self,
        settings: Settings,
        access_token: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not settings.gotrue_url or not settings.gotrue_anon_key:
            msg = "GOTRUE_URL and GOTRUE_ANON_KEY must be configured"
            raise ValueError(msg)
        self._base_url = settings.gotrue_url.rstrip("/")
        self._anon_key = settings.gotrue_anon_key
        self._service_key = settings.gotrue_service_role_key
        self._jwt_secret = settings.gotrue_jwt_secret
        self._timeout = settings.gotrue_timeout
        self._transport = transport
        self._access_token = access_token

    @property
    def access_token(self) -> str | None:
        return self._access_token

    # --- session -----------------------------------------------------------

    async def get_current_session(self) -> Session:
        token = self._access_token
        if not token:
            raise SessionMissingError
        if self._jwt_secret:
            self._verify_token(token)
        payload = await self._request("GET", "/user", token=token)
        user = _to_user(payload)
        return Session(
            subject_id=user.id,
            email=user.email,
            user_metadata=user.user_metadata,
            access_token=token,
        )

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        payload = await self._request(
            "POST",
            "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        user = _to_user(payload["user"])
        self._access_token = payload["access_token"]
        logger.info("identity_signed_in", user_id=user.id)
        return Session(
            subject_id=user.id,
            email=user.email,
            user_metadata=user.user_metadata,
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_in=payload.get("expires_in"),
        )

    async def sign_up(self, email: str, password: str) -> AuthUser:
        body = {"email": email, "password": password}
        payload = await self._request("POST", "/signup", json=body)
        # Autoconfirm projects answer with a session wrapping the user
        return _to_user(payload.get("user", payload))

    async def sign_out(self) -> None:
        token = self._access_token
        self._access_token = None
        if not token:
            return
        try:
            await self._request("POST", "/logout", token=token)
        except SessionMissingError:
            logger.debug("identity_sign_out_without_session")

    async def send_password_reset_email(self, email: str, redirect_url: str) -> None:
        await self._request(
            "POST",
            "/recover",
            params={"redirect_to": redirect_url},
            json={"email": email},
        )

    async def update_password(self, new_password: str) -> AuthUser:
        token = self._require_token()
        payload = await self._request("PUT", "/user", token=token, json={"password": new_password})
        return _to_user(payload)

    async def update_user_metadata(self, fields: dict[str, Any]) -> AuthUser:
        token = self._require_token()
        payload = await self._request("PUT", "/user", token=token, json={"data": fields})
        return _to_user(payload)

    # --- admin -------------------------------------------------------------

    async def create_user_as_admin(self, email: str, password: str) -> AuthUser:
        payload = await self._request(
            "POST",
            "/admin/users",
            admin=True,
            json={"email": email, "password": password, "email_confirm": True},
        )
        user = _to_user(payload)
        logger.info("identity_user_created", user_id=user.id)
        return user

    async def delete_user_as_admin(self, user_id: str) -> None:
        await self._request("DELETE", f"/admin/users/{user_id}", admin=True)
        logger.info("identity_user_deleted", user_id=user_id)

    async def get_user_by_email_as_admin(self, email: str) -> AuthUser | None:
        wanted = email.strip().lower()
        for page in range(1, _ADMIN_MAX_PAGES + 1):
            payload = await self._request(
                "GET",
                "/admin/users",
                admin=True,
                params={"page": page, "per_page": _ADMIN_PAGE_SIZE},
            )
            users = payload.get("users", [])
            for raw in users:
                if str(raw.get("email", "")).lower() == wanted:
                    return _to_user(raw)
            if len(users) < _ADMIN_PAGE_SIZE:
                break
        return None

    # --- plumbing ----------------------------------------------------------

    def _require_token(self) -> str:
        if not self._access_token:
            raise SessionMissingError
        return self._access_token

    def _verify_token(self, token: str) -> None:
        """Reject expired or tampered tokens before spending a network call."""
        try:
            jwt.decode(
                token,
                self._jwt_secret,
                algorithms=["HS256"],
                audience="authenticated",
            )
        except jwt.PyJWTError as exc:
            logger.info("identity_token_rejected", error=str(exc))
            raise IdentityProviderError(f"invalid JWT: {exc}", status_code=401) from exc

    async def _request(
        self,
        method: str,
        path: str,
        *,
        token: str | None = None,
        admin: bool = False,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if admin:
            if not self._service_key:
                msg = "GOTRUE_SERVICE_ROLE_KEY is not configured"
                raise IdentityProviderError(msg)
            headers = {"apikey": self._service_key, "Authorization": f"Bearer {self._service_key}"}
        else:
            headers = {"apikey": self._anon_key}
            if token:
                headers["Authorization"] = f"Bearer {token}"

        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                resp = await client.request(method, path, headers=headers, json=json, params=params)
        except httpx.TransportError as exc:
            logger.warning("identity_provider_unreachable", path=path, error=str(exc))
            raise IdentityProviderUnavailableError(str(exc)) from exc

        if resp.status_code >= 400:
            raise _error_from_response(resp)
        if not resp.content:
            return {}
        try:
            body: dict[str, Any] = resp.json()
        except ValueError as exc:
            msg = "Identity provider returned a malformed response"
            raise IdentityProviderError(msg, status_code=resp.status_code) from exc
        return body
