"""Immutable snapshots handed out by the store and the identity provider."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from kmarket.types import ListingCategory, ListingStatus, Role, TenantStatus, TenantType


class AuthUser(BaseModel):
    """An account as the identity provider reports it."""

    model_config = {"frozen": True}

    id: str
    email: str | None = None
    user_metadata: dict[str, Any] = {}


class Session(BaseModel):
    """An authenticated caller. Opaque beyond these attributes."""

    model_config = {"frozen": True}

    subject_id: str
    email: str | None = None
    user_metadata: dict[str, Any] = {}
    access_token: str | None = Field(default=None, repr=False, exclude=True)
    refresh_token: str | None = Field(default=None, repr=False, exclude=True)
    expires_in: int | None = None

    @property
    def avatar_url(self) -> str | None:
        value = self.user_metadata.get("avatar_url")
        return str(value) if value else None

    @property
    def display_name(self) -> str | None:
        value = self.user_metadata.get("display_name")
        return str(value) if value else None


class Profile(BaseModel):
    model_config = {"frozen": True}

    id: str  # same value as Session.subject_id
    name: str
    role: Role
    tenant_id: str | None = None
    is_active: bool = True
    created_at: datetime | None = None


class Tenant(BaseModel):
    model_config = {"frozen": True}

    id: str
    name: str
    tenant_type: TenantType
    status: TenantStatus
    region: str | None = None
    locality: str | None = None
    phone: str | None = None


class Listing(BaseModel):
    model_config = {"frozen": True}

    id: str
    owner_tenant_id: str
    status: ListingStatus
    category: ListingCategory
    name: str
    manufacturer: str = ""
    model: str = ""
    location: str = ""
    price_rental: int | None = None
    price_sale: int | None = None
