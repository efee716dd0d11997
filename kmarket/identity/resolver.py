"""Resolve the caller's session, profile and company into one identity.

Every surface that needs to know who is calling goes through
``ProfileResolver.resolve``. The result records which layer failed so a
caller can tell "not logged in" from "logged in but setup incomplete" from
"logged in but the company record is unreachable".
"""

from __future__ import annotations

from typing import TYPE_CHECKING, assert_never

import structlog
from pydantic import BaseModel

from kmarket.exceptions import (
    IdentityProviderError,
    IdentityProviderUnavailableError,
    SessionMissingError,
    StorageError,
)
from kmarket.models.domain import Profile, Session, Tenant
from kmarket.types import ResolutionStatus, Role

if TYPE_CHECKING:
    from kmarket.identity.provider import IdentityProvider
    from kmarket.storage.store import PrivilegedStore

logger = structlog.get_logger(__name__)

PROFILE_MISSING_MESSAGE = "User profile has not been provisioned"
TENANT_UNLINKED_MESSAGE = "User profile is not linked to a company"
TENANT_MISSING_MESSAGE = "Company not found"


class ResolvedIdentity(BaseModel):
    """Request-scoped projection of session + profile + company."""

    model_config = {"frozen": True}

    status: ResolutionStatus
    session: Session | None = None
    profile: Profile | None = None
    tenant: Tenant | None = None
    error: str | None = None

    @property
    def authenticated(self) -> bool:
        """True when the identity provider recognises the caller."""
        return self.session is not None

    @property
    def profile_missing(self) -> bool:
        return self.status == ResolutionStatus.PROFILE_MISSING

    @property
    def is_resolved(self) -> bool:
        return self.status == ResolutionStatus.RESOLVED

    @property
    def is_active_member(self) -> bool:
        """Resolved, active, and attached to a company."""
        return (
            self.is_resolved
            and self.profile is not None
            and self.profile.is_active
            and self.tenant is not None
        )

    @property
    def subject_id(self) -> str | None:
        return self.session.subject_id if self.session else None

    @property
    def role(self) -> Role | None:
        return self.profile.role if self.profile else None

    @property
    def tenant_id(self) -> str | None:
        return self.tenant.id if self.tenant else None

    @property
    def avatar_url(self) -> str | None:
        return self.session.avatar_url if self.session else None

    @property
    def display_name(self) -> str | None:
        if self.session and self.session.display_name:
            return self.session.display_name
        return self.profile.name if self.profile else None

    @property
    def remediation(self) -> str | None:
        return remediation_for(self.status)


def remediation_for(status: ResolutionStatus) -> str | None:
    """User-facing next step for each resolution outcome."""
    match status:
        case ResolutionStatus.RESOLVED | ResolutionStatus.NO_SESSION:
            return None
        case ResolutionStatus.SESSION_ERROR:
            return "Your session could not be verified. Please sign in again."
        case ResolutionStatus.PROFILE_MISSING:
            return "Account setup is incomplete. Contact an administrator to finish setup."
        case ResolutionStatus.PROFILE_ERROR:
            return "Your profile could not be loaded. Retry, or contact an administrator."
        case ResolutionStatus.TENANT_ERROR:
            return "Your company record could not be loaded. Contact an administrator."
        case _:
            assert_never(status)


class ProfileResolver:
    """Read-only resolution of the current caller. Safe to call repeatedly."""

    def __init__(self, identity: IdentityProvider, store: PrivilegedStore) -> None:
        self._identity = identity
        self._store = store

    async def resolve(self) -> ResolvedIdentity:
        try:
            session = await self._identity.get_current_session()
        except SessionMissingError:
            return ResolvedIdentity(status=ResolutionStatus.NO_SESSION)
        except IdentityProviderUnavailableError:
            raise
        except IdentityProviderError as exc:
            logger.info("identity_session_error", error=exc.message)
            return ResolvedIdentity(status=ResolutionStatus.SESSION_ERROR, error=exc.message)

        scoped = self._store.scoped(session.subject_id)
        try:
            profile = await scoped.get_profile(session.subject_id)
        except StorageError as exc:
            logger.warning("identity_profile_error", subject_id=session.subject_id, error=str(exc))
            return ResolvedIdentity(
                status=ResolutionStatus.PROFILE_ERROR,
                session=session,
                error=str(exc),
            )

        if profile is None:
            logger.warning("identity_profile_missing", subject_id=session.subject_id)
            return ResolvedIdentity(
                status=ResolutionStatus.PROFILE_MISSING,
                session=session,
                error=PROFILE_MISSING_MESSAGE,
            )

        if profile.tenant_id is None:
            if profile.role == Role.PLATFORM_ADMIN:
                return ResolvedIdentity(
                    status=ResolutionStatus.RESOLVED, session=session, profile=profile
                )
            logger.warning("identity_profile_unlinked", subject_id=session.subject_id)
            return ResolvedIdentity(
                status=ResolutionStatus.TENANT_ERROR,
                session=session,
                profile=profile,
                error=TENANT_UNLINKED_MESSAGE,
            )

        try:
            tenant = await scoped.get_tenant(profile.tenant_id)
        except StorageError as exc:
            logger.warning("identity_tenant_error", tenant_id=profile.tenant_id, error=str(exc))
            return ResolvedIdentity(
                status=ResolutionStatus.TENANT_ERROR,
                session=session,
                profile=profile,
                error=str(exc),
            )

        if tenant is None:
            logger.warning("identity_tenant_missing", tenant_id=profile.tenant_id)
            return ResolvedIdentity(
                status=ResolutionStatus.TENANT_ERROR,
                session=session,
                profile=profile,
                error=TENANT_MISSING_MESSAGE,
            )

        return ResolvedIdentity(
            status=ResolutionStatus.RESOLVED,
            session=session,
            profile=profile,
            tenant=tenant,
        )


class IdentityCache:
    """Memoises one resolution for the surface that owns it.

    Call ``invalidate`` whenever the caller's auth state changes (sign-in,
    sign-out, password or metadata update).
    """

    def __init__(self, resolver: ProfileResolver) -> None:
        self._resolver = resolver
        self._value: ResolvedIdentity | None = None

    async def get(self) -> ResolvedIdentity:
        if self._value is None:
            self._value = await self._resolver.resolve()
        return self._value

    def invalidate(self) -> None:
        self._value = None
