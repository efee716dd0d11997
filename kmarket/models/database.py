"""SQLModel database table models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlmodel import Field, SQLModel

from kmarket.types import ListingCategory, ListingStatus, Role, TenantStatus


def _utc_now() -> datetime:
    """Return current UTC time as naive datetime for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def _new_uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Tenants and profiles
# ---------------------------------------------------------------------------


class Company(SQLModel, table=True):
    __tablename__ = "companies"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    name: str
    company_type: str  # DEMAND | SUPPLY | BOTH
    status: str = Field(default=TenantStatus.ACTIVE)
    region: str | None = None
    locality: str | None = None
    phone: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class UserProfile(SQLModel, table=True):
    """Business profile keyed by the identity provider's subject id."""

    __tablename__ = "users"

    id: str = Field(primary_key=True)
    name: str = ""
    role: str = Field(default=Role.TENANT_MEMBER)
    company_id: str | None = Field(default=None, foreign_key="companies.id", index=True)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=_utc_now, index=True)
    updated_at: datetime = Field(default_factory=_utc_now)


# ---------------------------------------------------------------------------
# Tenant-owned resources
# ---------------------------------------------------------------------------


class Machine(SQLModel, table=True):
    __tablename__ = "machines"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    owner_company_id: str = Field(foreign_key="companies.id", index=True)
    status: str = Field(default=ListingStatus.PUBLISHED, index=True)
    category: str = Field(default=ListingCategory.HEAVY_MACHINERY)
    name: str
    manufacturer: str = ""
    model: str = ""
    location: str = ""
    price_rental: int | None = None
    price_sale: int | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    company_id: str | None = Field(default=None, index=True)
    user_id: str = ""
    action: str = Field(index=True)
    resource_type: str = ""
    resource_id: str = ""
    details_json: str = "{}"
    ip_address: str = ""
    request_id: str = ""
    created_at: datetime = Field(default_factory=_utc_now)
