"""Supplier listing routes. Every mutation goes through the ownership guard."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response
from pydantic import BaseModel, Field

from kmarket.audit.logger import AuditLogger
from kmarket.authz.ownership import Deny, ListingMutations
from kmarket.identity.resolver import ResolvedIdentity
from kmarket.models.domain import Listing
from kmarket.storage.store import PrivilegedStore
from kmarket.types import DenyReason, ListingCategory
from kmarket.web.dependencies import (
    client_ip,
    get_audit_logger,
    get_identity,
    get_listing_mutations,
    get_store,
    request_id,
)

router = APIRouter(tags=["listings"])

# One answer for "does not exist" and "not yours"
LISTING_NOT_FOUND = "Listing not found"

# Fields a client may clear by sending null
_NULLABLE_FIELDS = frozenset({"price_rental", "price_sale"})


def denial_to_http(deny: Deny) -> HTTPException:
    """Map an ownership denial onto a status code without leaking existence."""
    if deny.reason == DenyReason.NOT_AUTHENTICATED:
        return HTTPException(status_code=401, detail=deny.message)
    if deny.reason == DenyReason.TENANT_INACTIVE:
        return HTTPException(status_code=403, detail=deny.message)
    return HTTPException(status_code=404, detail=LISTING_NOT_FOUND)


class CreateListingRequest(BaseModel):
    category: ListingCategory = ListingCategory.HEAVY_MACHINERY
    name: str = Field(min_length=1, max_length=200)
    manufacturer: str = ""
    model: str = ""
    location: str = ""
    price_rental: int | None = Field(default=None, ge=0)
    price_sale: int | None = Field(default=None, ge=0)


class UpdateListingRequest(BaseModel):
    category: ListingCategory | None = None
    name: str | None = Field(default=None, min_length=1, max_length=200)
    manufacturer: str | None = None
    model: str | None = None
    location: str | None = None
    price_rental: int | None = Field(default=None, ge=0)
    price_sale: int | None = Field(default=None, ge=0)


class ListingResponse(BaseModel):
    id: str
    owner_tenant_id: str
    status: str
    category: str
    name: str
    manufacturer: str = ""
    model: str = ""
    location: str = ""
    price_rental: int | None = None
    price_sale: int | None = None


def _dump(listing: Listing) -> dict[str, Any]:
    return listing.model_dump(mode="json")


async def _audit_listing(
    audit_logger: AuditLogger,
    request: Request,
    identity: ResolvedIdentity,
    action: str,
    listing: Listing,
    details: dict[str, Any] | None = None,
) -> None:
    await audit_logger.log(
        action=action,
        user_id=identity.subject_id or "",
        company_id=listing.owner_tenant_id,
        resource_type="listing",
        resource_id=listing.id,
        details=details,
        ip_address=client_ip(request),
        request_id=request_id(request),
    )


# ---------------------------------------------------------------------------
# Caller's own listings
# ---------------------------------------------------------------------------


@router.get("/api/supplier/listings", response_model=list[ListingResponse])
async def list_own_listings(
    identity: ResolvedIdentity = Depends(get_identity),
    store: PrivilegedStore = Depends(get_store),
) -> list[dict[str, Any]]:
    tenant_id = identity.tenant_id
    if not identity.is_active_member or identity.subject_id is None or tenant_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    listings = await store.scoped(identity.subject_id).list_tenant_listings(tenant_id)
    return [_dump(item) for item in listings]


@router.post("/api/supplier/listings", status_code=201, response_model=ListingResponse)
async def create_listing(
    body: CreateListingRequest,
    request: Request,
    identity: ResolvedIdentity = Depends(get_identity),
    mutations: ListingMutations = Depends(get_listing_mutations),
    audit_logger: AuditLogger = Depends(get_audit_logger),
) -> dict[str, Any]:
    decision = await mutations.create(identity, body.model_dump())
    if isinstance(decision, Deny):
        raise denial_to_http(decision)
    await _audit_listing(audit_logger, request, identity, "listing.created", decision.listing)
    return _dump(decision.listing)


# ---------------------------------------------------------------------------
# Single listing
# ---------------------------------------------------------------------------


@router.get("/api/listings/{listing_id}", response_model=ListingResponse)
async def get_listing(
    listing_id: str,
    identity: ResolvedIdentity = Depends(get_identity),
    store: PrivilegedStore = Depends(get_store),
) -> dict[str, Any]:
    if identity.subject_id is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    listing = await store.scoped(identity.subject_id).get_listing(listing_id)
    if listing is None:
        raise HTTPException(status_code=404, detail=LISTING_NOT_FOUND)
    return _dump(listing)


@router.patch("/api/listings/{listing_id}", response_model=ListingResponse)
async def update_listing(
    listing_id: str,
    body: UpdateListingRequest,
    request: Request,
    identity: ResolvedIdentity = Depends(get_identity),
    mutations: ListingMutations = Depends(get_listing_mutations),
    audit_logger: AuditLogger = Depends(get_audit_logger),
) -> dict[str, Any]:
    fields = {
        key: value
        for key, value in body.model_dump(exclude_unset=True).items()
        if value is not None or key in _NULLABLE_FIELDS
    }
    decision = await mutations.update_fields(identity, listing_id, fields)
    if isinstance(decision, Deny):
        raise denial_to_http(decision)
    await _audit_listing(
        audit_logger,
        request,
        identity,
        "listing.updated",
        decision.listing,
        details={"fields": sorted(fields)},
    )
    return _dump(decision.listing)


@router.post("/api/listings/{listing_id}/toggle-status", response_model=ListingResponse)
async def toggle_listing_status(
    listing_id: str,
    request: Request,
    identity: ResolvedIdentity = Depends(get_identity),
    mutations: ListingMutations = Depends(get_listing_mutations),
    audit_logger: AuditLogger = Depends(get_audit_logger),
) -> dict[str, Any]:
    """Flip PUBLISHED/STOPPED. The target comes from the stored status, never the request."""
    decision = await mutations.toggle_status(identity, listing_id)
    if isinstance(decision, Deny):
        raise denial_to_http(decision)
    await _audit_listing(
        audit_logger,
        request,
        identity,
        "listing.status_toggled",
        decision.listing,
        details={"status": decision.listing.status},
    )
    return _dump(decision.listing)


@router.delete("/api/listings/{listing_id}", status_code=204)
async def delete_listing(
    listing_id: str,
    request: Request,
    identity: ResolvedIdentity = Depends(get_identity),
    mutations: ListingMutations = Depends(get_listing_mutations),
    audit_logger: AuditLogger = Depends(get_audit_logger),
) -> Response:
    decision = await mutations.delete(identity, listing_id)
    if isinstance(decision, Deny):
        raise denial_to_http(decision)
    await _audit_listing(audit_logger, request, identity, "listing.deleted", decision.listing)
    return Response(status_code=204)
