"""Role gate for whole surfaces (e.g. the platform admin console)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, assert_never

import structlog

from kmarket.exceptions import RedirectRequired
from kmarket.types import ResolutionStatus, Role

if TYPE_CHECKING:
    from kmarket.identity.resolver import ResolvedIdentity

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CallerContext:
    """What a gated surface gets to know about its caller."""

    subject_id: str
    email: str | None
    role: Role
    tenant_id: str | None = None


def enforce_role(
    identity: ResolvedIdentity,
    required: Role,
    *,
    sign_in_path: str,
    home_path: str,
) -> CallerContext:
    """Return the caller context or raise ``RedirectRequired``.

    No session, an unreadable profile, or a missing profile all send the
    caller to sign-in. A profile with another role, or a deactivated one,
    goes to the home surface without saying what was required.
    """
    match identity.status:
        case ResolutionStatus.NO_SESSION | ResolutionStatus.SESSION_ERROR:
            raise RedirectRequired(sign_in_path)
        case ResolutionStatus.PROFILE_MISSING | ResolutionStatus.PROFILE_ERROR:
            raise RedirectRequired(sign_in_path)
        case ResolutionStatus.TENANT_ERROR | ResolutionStatus.RESOLVED:
            pass
        case _:
            assert_never(identity.status)

    profile = identity.profile
    session = identity.session
    if profile is None or session is None:
        raise RedirectRequired(sign_in_path)

    if profile.role != required or not profile.is_active:
        logger.info("role_gate_denied", subject_id=session.subject_id)
        raise RedirectRequired(home_path)

    return CallerContext(
        subject_id=session.subject_id,
        email=session.email,
        role=profile.role,
        tenant_id=profile.tenant_id,
    )
