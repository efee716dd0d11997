"""In-process identity provider for development and tests."""

from __future__ import annotations

import hmac
import secrets
import uuid
from dataclasses import dataclass, field
from typing import Any

import structlog

from kmarket.exceptions import IdentityProviderError, SessionMissingError
from kmarket.models.domain import AuthUser, Session

logger = structlog.get_logger(__name__)

_TOKEN_TTL = 3600


@dataclass
class _Account:
    id: str
    email: str
    password: str
    user_metadata: dict[str, Any] = field(default_factory=dict)

    def to_user(self) -> AuthUser:
        return AuthUser(id=self.id, email=self.email, user_metadata=dict(self.user_metadata))


class InMemoryAuthBackend:
    """Shared account and token tables behind every InMemoryIdentityProvider."""

    def __init__(self) -> None:
        self.accounts: dict[str, _Account] = {}
        self.tokens: dict[str, str] = {}  # access token -> account id
        self.reset_emails: list[tuple[str, str]] = []  # (email, redirect_url)

    def find_by_email(self, email: str) -> _Account | None:
        wanted = email.strip().lower()
        for account in self.accounts.values():
            if account.email == wanted:
                return account
        return None

    def create_account(self, email: str, password: str) -> _Account:
        normalized = email.strip().lower()
        if not normalized or not password:
            msg = "Email and password are required"
            raise IdentityProviderError(msg, status_code=400)
        if self.find_by_email(normalized):
            msg = "A user with this email address has already been registered"
            raise IdentityProviderError(msg, status_code=422)
        account = _Account(id=str(uuid.uuid4()), email=normalized, password=password)
        self.accounts[account.id] = account
        return account

    def issue_token(self, account: _Account) -> str:
        token = secrets.token_urlsafe(32)
        self.tokens[token] = account.id
        return token

    def session_for(self, token: str, account: _Account) -> Session:
        return Session(
            subject_id=account.id,
            email=account.email,
            user_metadata=dict(account.user_metadata),
            access_token=token,
            expires_in=_TOKEN_TTL,
        )


class InMemoryIdentityProvider:
    """Identity provider bound to one caller's access token."""

    def __init__(self, backend: InMemoryAuthBackend, access_token: str | None = None) -> None:
        self._backend = backend
        self._access_token = access_token

    @property
    def access_token(self) -> str | None:
        return self._access_token

    async def get_current_session(self) -> Session:
        token = self._access_token
        if not token:
            raise SessionMissingError
        account_id = self._backend.tokens.get(token)
        if account_id is None:
            msg = "invalid JWT: unable to parse or verify signature"
            raise IdentityProviderError(msg, status_code=401)
        account = self._backend.accounts.get(account_id)
        if account is None:
            msg = "User from sub claim in JWT does not exist"
            raise IdentityProviderError(msg, status_code=403)
        return self._backend.session_for(token, account)

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        account = self._backend.find_by_email(email)
        if account is None or not hmac.compare_digest(account.password, password):
            msg = "Invalid login credentials"
            raise IdentityProviderError(msg, status_code=400)
        token = self._backend.issue_token(account)
        self._access_token = token
        logger.info("identity_signed_in", user_id=account.id)
        return self._backend.session_for(token, account)

    async def sign_up(self, email: str, password: str) -> AuthUser:
        return self._backend.create_account(email, password).to_user()

    async def sign_out(self) -> None:
        if self._access_token:
            self._backend.tokens.pop(self._access_token, None)
        self._access_token = None

    async def send_password_reset_email(self, email: str, redirect_url: str) -> None:
        # Unknown addresses succeed silently so the endpoint cannot probe accounts.
        if self._backend.find_by_email(email):
            self._backend.reset_emails.append((email.strip().lower(), redirect_url))

    async def update_password(self, new_password: str) -> AuthUser:
        account = await self._current_account()
        account.password = new_password
        return account.to_user()

    async def update_user_metadata(self, fields: dict[str, Any]) -> AuthUser:
        account = await self._current_account()
        account.user_metadata.update(fields)
        return account.to_user()

    async def create_user_as_admin(self, email: str, password: str) -> AuthUser:
        account = self._backend.create_account(email, password)
        logger.info("identity_user_created", user_id=account.id)
        return account.to_user()

    async def delete_user_as_admin(self, user_id: str) -> None:
        if self._backend.accounts.pop(user_id, None) is None:
            msg = "User not found"
            raise IdentityProviderError(msg, status_code=404)
        for token in [t for t, uid in self._backend.tokens.items() if uid == user_id]:
            del self._backend.tokens[token]
        logger.info("identity_user_deleted", user_id=user_id)

    async def get_user_by_email_as_admin(self, email: str) -> AuthUser | None:
        account = self._backend.find_by_email(email)
        return account.to_user() if account else None

    async def _current_account(self) -> _Account:
        session = await self.get_current_session()
        return self._backend.accounts[session.subject_id]
