"""Role-based access control dependencies."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

from fastapi import Depends

from kmarket.authz.roles import CallerContext, enforce_role
from kmarket.config.settings import get_settings
from kmarket.identity.resolver import ResolvedIdentity
from kmarket.types import Role
from kmarket.web.dependencies import get_identity


def require_role(role: Role) -> Callable[..., Awaitable[CallerContext]]:
    """Build a dependency that admits only callers holding ``role``.

    Callers who fail the gate get a redirect before the route body runs.
    """

    async def _require_role(
        identity: ResolvedIdentity = Depends(get_identity),
    ) -> CallerContext:
        settings = get_settings()
        return enforce_role(
            identity,
            role,
            sign_in_path=settings.sign_in_path,
            home_path=settings.home_path,
        )

    return _require_role


require_platform_admin = require_role(Role.PLATFORM_ADMIN)
