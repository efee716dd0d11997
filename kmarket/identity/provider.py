"""Identity provider contract.

Implementations are request-scoped: each instance is bound to the caller's
access token (or to none), the same way a server-side auth client is built
per request from the incoming cookies.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from kmarket.models.domain import AuthUser, Session


class IdentityAdmin(Protocol):
    """Privileged account operations (service credentials)."""

    async def create_user_as_admin(self, email: str, password: str) -> AuthUser: ...

    async def delete_user_as_admin(self, user_id: str) -> None: ...

    async def get_user_by_email_as_admin(self, email: str) -> AuthUser | None: ...


class IdentityProvider(IdentityAdmin, Protocol):
    """Session and account operations delegated to the external provider.

    ``get_current_session`` raises ``SessionMissingError`` when the caller
    has no session and ``IdentityProviderError`` for every other failure.
    """

    @property
    def access_token(self) -> str | None: ...

    async def get_current_session(self) -> Session: ...

    async def sign_in_with_password(self, email: str, password: str) -> Session: ...

    async def sign_up(self, email: str, password: str) -> AuthUser: ...

    async def sign_out(self) -> None: ...

    async def send_password_reset_email(self, email: str, redirect_url: str) -> None: ...

    async def update_password(self, new_password: str) -> AuthUser: ...

    async def update_user_metadata(self, fields: dict[str, Any]) -> AuthUser: ...
