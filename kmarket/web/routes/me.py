"""Current caller: resolved identity and self-service profile edits."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from kmarket.audit.logger import AuditLogger
from kmarket.exceptions import IdentityProviderError, IdentityProviderUnavailableError
from kmarket.identity.provider import IdentityProvider
from kmarket.identity.resolver import IdentityCache, ResolvedIdentity
from kmarket.storage.store import PrivilegedStore
from kmarket.web.dependencies import (
    client_ip,
    get_audit_logger,
    get_identity,
    get_identity_cache,
    get_identity_provider,
    get_store,
    request_id,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/me", tags=["me"])


def identity_payload(identity: ResolvedIdentity) -> dict[str, Any]:
    """Public view of a resolution, including which layer failed."""
    return {
        "status": identity.status,
        "authenticated": identity.authenticated,
        "profile_missing": identity.profile_missing,
        "error": identity.error,
        "remediation": identity.remediation,
        "subject_id": identity.subject_id,
        "email": identity.session.email if identity.session else None,
        "display_name": identity.display_name,
        "avatar_url": identity.avatar_url,
        "role": identity.role,
        "profile": identity.profile.model_dump(mode="json") if identity.profile else None,
        "tenant": identity.tenant.model_dump(mode="json") if identity.tenant else None,
    }


@router.get("")
async def get_me(identity: ResolvedIdentity = Depends(get_identity)) -> dict[str, Any]:
    return identity_payload(identity)


class UpdateMeRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)


@router.patch("")
async def update_me(
    body: UpdateMeRequest,
    request: Request,
    identity: ResolvedIdentity = Depends(get_identity),
    provider: IdentityProvider = Depends(get_identity_provider),
    cache: IdentityCache = Depends(get_identity_cache),
    store: PrivilegedStore = Depends(get_store),
    audit_logger: AuditLogger = Depends(get_audit_logger),
) -> dict[str, Any]:
    """Rename the caller's own profile and mirror it into account metadata."""
    if identity.subject_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    if identity.profile is None:
        raise HTTPException(status_code=404, detail=identity.error or "Profile not found")

    name = body.name.strip()
    if not name:
        raise HTTPException(status_code=422, detail="Name must not be blank")

    updated = await store.scoped(identity.subject_id).update_own_name(name)
    if updated is None:
        raise HTTPException(status_code=404, detail="Profile not found")

    try:
        await provider.update_user_metadata({"display_name": name})
    except IdentityProviderUnavailableError:
        raise
    except IdentityProviderError as exc:
        # The profile row is authoritative; metadata is a display copy
        logger.warning("profile_metadata_sync_failed", error=exc.message)

    cache.invalidate()
    await audit_logger.log(
        action="profile.updated",
        user_id=identity.subject_id,
        company_id=identity.tenant_id,
        resource_type="profile",
        resource_id=identity.subject_id,
        details={"name": name},
        ip_address=client_ip(request),
        request_id=request_id(request),
    )
    return updated.model_dump(mode="json")
