"""Platform admin console. Every route here is gated on PLATFORM_ADMIN."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from kmarket.audit.logger import AuditLogger
from kmarket.authz.roles import CallerContext
from kmarket.exceptions import StorageError
from kmarket.models.domain import Profile, Tenant
from kmarket.storage.store import PrivilegedStore
from kmarket.types import TenantStatus
from kmarket.web.auth.rbac import require_platform_admin
from kmarket.web.dependencies import client_ip, get_audit_logger, get_store, request_id

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])

USER_LIST_LIMIT = 500

# Company status/type reported for users with no (readable) company
NO_COMPANY = "NONE"

ALL = "all"


@router.get("")
async def admin_dashboard(
    caller: CallerContext = Depends(require_platform_admin),
) -> dict[str, Any]:
    return {
        "caller": {"subject_id": caller.subject_id, "email": caller.email, "role": caller.role},
        "sections": [
            {"name": "users", "path": "/admin/users", "available": True},
            {"name": "companies", "path": None, "available": False},
            {"name": "listings", "path": None, "available": False},
        ],
    }


# ---------------------------------------------------------------------------
# Registered users
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class UserFilters:
    q: str = ""
    role: str = ALL
    active: str = ALL
    company_status: str = ALL
    company_type: str = ALL


class AdminUserRow(BaseModel):
    id: str
    name: str
    role: str
    is_active: bool
    created_at: str | None = None
    company: dict[str, Any] | None = None
    listing_count: int = 0


def build_user_rows(
    profiles: list[Profile],
    companies: dict[str, Tenant],
    published_counts: dict[str, int],
) -> list[AdminUserRow]:
    rows = []
    for profile in profiles:
        company = companies.get(profile.tenant_id) if profile.tenant_id else None
        rows.append(
            AdminUserRow(
                id=profile.id,
                name=profile.name,
                role=str(profile.role),
                is_active=profile.is_active,
                created_at=profile.created_at.isoformat() if profile.created_at else None,
                company=company.model_dump(mode="json") if company else None,
                listing_count=published_counts.get(company.id, 0) if company else 0,
            )
        )
    return rows


def _matches(row: AdminUserRow, filters: UserFilters) -> bool:
    if filters.role != ALL and row.role != filters.role:
        return False
    if filters.active == "true" and not row.is_active:
        return False
    if filters.active == "false" and row.is_active:
        return False

    company = row.company or {}
    if filters.company_status not in (ALL, company.get("status", NO_COMPANY)):
        return False
    if filters.company_type not in (ALL, company.get("tenant_type", NO_COMPANY)):
        return False

    if filters.q:
        haystack = " ".join(
            str(part or "")
            for part in (
                row.name,
                company.get("name"),
                company.get("region"),
                company.get("locality"),
                row.id,
            )
        ).lower()
        if filters.q.lower() not in haystack:
            return False
    return True


def filter_user_rows(rows: list[AdminUserRow], filters: UserFilters) -> list[AdminUserRow]:
    return [row for row in rows if _matches(row, filters)]


@router.get("/users")
async def list_users(
    q: str = "",
    role: str = ALL,
    active: str = ALL,
    company_status: str = Query(default=ALL, alias="companyStatus"),
    company_type: str = Query(default=ALL, alias="companyType"),
    _caller: CallerContext = Depends(require_platform_admin),
    store: PrivilegedStore = Depends(get_store),
) -> dict[str, Any]:
    """Newest registered users with their company and its published listing count.

    The profile read is required. Company and listing-count reads are
    secondary: a failure there is reported in ``errors`` and the page
    still renders with what was loaded.
    """
    filters = UserFilters(
        q=q.strip(),
        role=role.strip() or ALL,
        active=active.strip() or ALL,
        company_status=company_status.strip() or ALL,
        company_type=company_type.strip() or ALL,
    )

    profiles = await store.profiles.list_recent(limit=USER_LIST_LIMIT)
    company_ids = sorted({p.tenant_id for p in profiles if p.tenant_id})

    errors: list[str] = []
    companies: dict[str, Tenant] = {}
    try:
        companies = {t.id: t for t in await store.companies.list_by_ids(company_ids)}
    except StorageError as exc:
        logger.warning("admin_users_companies_failed", error=str(exc))
        errors.append(f"Companies could not be loaded: {exc}")

    counts: dict[str, int] = {}
    try:
        counts = await store.listings.count_published_by_company(company_ids)
    except StorageError as exc:
        logger.warning("admin_users_listing_counts_failed", error=str(exc))
        errors.append(f"Listing counts could not be loaded: {exc}")

    rows = build_user_rows(profiles, companies, counts)
    shown = filter_user_rows(rows, filters)
    return {
        "users": [row.model_dump() for row in shown],
        "shown": len(shown),
        "total": len(rows),
        "limit": USER_LIST_LIMIT,
        "filters": {
            "q": filters.q,
            "role": filters.role,
            "active": filters.active,
            "companyStatus": filters.company_status,
            "companyType": filters.company_type,
        },
        "errors": errors,
    }


# ---------------------------------------------------------------------------
# Company status
# ---------------------------------------------------------------------------


class CompanyStatusRequest(BaseModel):
    status: TenantStatus


@router.post("/companies/{company_id}/status")
async def set_company_status(
    company_id: str,
    body: CompanyStatusRequest,
    request: Request,
    caller: CallerContext = Depends(require_platform_admin),
    store: PrivilegedStore = Depends(get_store),
    audit_logger: AuditLogger = Depends(get_audit_logger),
) -> dict[str, Any]:
    tenant = await store.companies.set_status(company_id, body.status)
    if tenant is None:
        raise HTTPException(status_code=404, detail="Company not found")
    await audit_logger.log(
        action="company.status_changed",
        user_id=caller.subject_id,
        company_id=tenant.id,
        resource_type="company",
        resource_id=tenant.id,
        details={"status": tenant.status},
        ip_address=client_ip(request),
        request_id=request_id(request),
    )
    return tenant.model_dump(mode="json")
