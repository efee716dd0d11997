"""Company contact details, editable by the company's own admin."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from kmarket.audit.logger import AuditLogger
from kmarket.authz.ownership import OwnershipGuard
from kmarket.identity.resolver import ResolvedIdentity
from kmarket.storage.store import PrivilegedStore
from kmarket.types import DenyReason, Role
from kmarket.web.dependencies import (
    client_ip,
    get_audit_logger,
    get_identity,
    get_ownership_guard,
    get_store,
    request_id,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/company", tags=["company"])


class UpdateCompanyRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=200)
    region: str | None = Field(default=None, min_length=1, max_length=100)
    locality: str | None = Field(default=None, min_length=1, max_length=100)
    phone: str | None = Field(default=None, min_length=1, max_length=40)


@router.patch("")
async def update_company(
    body: UpdateCompanyRequest,
    request: Request,
    identity: ResolvedIdentity = Depends(get_identity),
    guard: OwnershipGuard = Depends(get_ownership_guard),
    store: PrivilegedStore = Depends(get_store),
    audit_logger: AuditLogger = Depends(get_audit_logger),
) -> dict[str, Any]:
    """Update the caller's own company. The company id is never taken from the request."""
    denied = guard.check_caller(identity)
    if denied is not None:
        status = 401 if denied.reason == DenyReason.NOT_AUTHENTICATED else 403
        raise HTTPException(status_code=status, detail=denied.message)
    if identity.role != Role.TENANT_ADMIN:
        raise HTTPException(status_code=403, detail="Company admin access required")

    tenant_id = identity.tenant_id
    if tenant_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")

    updates = {k: v.strip() for k, v in body.model_dump(exclude_none=True).items()}
    if any(not v for v in updates.values()):
        raise HTTPException(status_code=422, detail="Fields must not be blank")

    tenant = await store.companies.update(tenant_id, **updates)
    if tenant is None:
        raise HTTPException(status_code=404, detail="Company not found")

    logger.info("company_updated", company_id=tenant.id, fields=sorted(updates))

    await audit_logger.log(
        action="company.updated",
        user_id=identity.subject_id or "",
        company_id=tenant.id,
        resource_type="company",
        resource_id=tenant.id,
        details={"fields": sorted(updates)},
        ip_address=client_ip(request),
        request_id=request_id(request),
    )
    return tenant.model_dump(mode="json")
