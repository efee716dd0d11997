"""Tenant ownership guard for mutations on company-owned listings.

Ownership is always decided from a fresh read of the listing through the
privileged store. Owner ids supplied by the client are never consulted, and
the write that follows a successful check is itself conditional on the
owner, so the check and the write cannot drift apart.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, assert_never

import structlog

from kmarket.types import DenyReason, ListingStatus, TenantStatus

if TYPE_CHECKING:
    from kmarket.identity.resolver import ResolvedIdentity
    from kmarket.models.domain import Listing
    from kmarket.storage.store import PrivilegedStore

logger = structlog.get_logger(__name__)

_DENY_MESSAGES = {
    DenyReason.NOT_AUTHENTICATED: "Sign in as an active company member to change listings.",
    DenyReason.NOT_FOUND: "Listing not found.",
    DenyReason.FORBIDDEN: "This listing belongs to another company.",
    DenyReason.TENANT_INACTIVE: "Your company is inactive. Listings cannot be changed.",
}


@dataclass(frozen=True, slots=True)
class Allow:
    listing: Listing


@dataclass(frozen=True, slots=True)
class Deny:
    reason: DenyReason

    @property
    def message(self) -> str:
        return _DENY_MESSAGES[self.reason]


Decision = Allow | Deny


def next_status(current: ListingStatus) -> ListingStatus:
    """The only transition a toggle may make from ``current``."""
    match current:
        case ListingStatus.PUBLISHED:
            return ListingStatus.STOPPED
        case ListingStatus.STOPPED:
            return ListingStatus.PUBLISHED
        case _:
            assert_never(current)


def authorize_owner_mutation(caller_tenant_id: str | None, listing: Listing | None) -> Decision:
    """Decide a mutation from the caller's company and the stored listing."""
    if caller_tenant_id is None:
        return Deny(DenyReason.NOT_AUTHENTICATED)
    if listing is None:
        return Deny(DenyReason.NOT_FOUND)
    if listing.owner_tenant_id != caller_tenant_id:
        return Deny(DenyReason.FORBIDDEN)
    return Allow(listing)


class OwnershipGuard:
    def __init__(self, store: PrivilegedStore, *, block_inactive_tenants: bool = False) -> None:
        self._store = store
        self._block_inactive_tenants = block_inactive_tenants

    def check_caller(self, identity: ResolvedIdentity) -> Deny | None:
        """Return a denial if ``identity`` may not mutate anything at all."""
        if not identity.is_active_member or identity.tenant is None:
            return Deny(DenyReason.NOT_AUTHENTICATED)
        if self._block_inactive_tenants and identity.tenant.status == TenantStatus.INACTIVE:
            return Deny(DenyReason.TENANT_INACTIVE)
        return None

    async def authorize(self, identity: ResolvedIdentity, listing_id: str) -> Decision:
        denied = self.check_caller(identity)
        if denied is not None:
            self._log_denial(identity, listing_id, denied)
            return denied

        listing = await self._store.listings.get(listing_id)
        decision = authorize_owner_mutation(identity.tenant_id, listing)
        if isinstance(decision, Deny):
            self._log_denial(identity, listing_id, decision)
        return decision

    @staticmethod
    def _log_denial(identity: ResolvedIdentity, listing_id: str, deny: Deny) -> None:
        logger.debug(
            "ownership_denied",
            listing_id=listing_id,
            subject_id=identity.subject_id,
            tenant_id=identity.tenant_id,
            reason=deny.reason,
        )


class ListingMutations:
    """Ownership-checked writes. Each method re-reads and re-checks ownership."""

    def __init__(self, guard: OwnershipGuard, store: PrivilegedStore) -> None:
        self._guard = guard
        self._store = store

    async def create(self, identity: ResolvedIdentity, fields: dict[str, Any]) -> Decision:
        denied = self._guard.check_caller(identity)
        if denied is not None:
            return denied
        tenant_id = identity.tenant_id
        if tenant_id is None:
            return Deny(DenyReason.NOT_AUTHENTICATED)
        listing = await self._store.listings.create(tenant_id, **fields)
        return Allow(listing)

    async def toggle_status(self, identity: ResolvedIdentity, listing_id: str) -> Decision:
        """Flip PUBLISHED/STOPPED based on the stored status only."""
        decision = await self._guard.authorize(identity, listing_id)
        if isinstance(decision, Deny):
            return decision

        listing = decision.listing
        target = next_status(listing.status)
        if not await self._store.listings.set_status(listing.id, listing.owner_tenant_id, target):
            # Deleted or re-owned between the read and the write
            return Deny(DenyReason.NOT_FOUND)
        logger.info(
            "listing_status_toggled",
            listing_id=listing.id,
            tenant_id=listing.owner_tenant_id,
            status=target,
        )
        return Allow(listing.model_copy(update={"status": target}))

    async def update_fields(
        self, identity: ResolvedIdentity, listing_id: str, fields: dict[str, Any]
    ) -> Decision:
        decision = await self._guard.authorize(identity, listing_id)
        if isinstance(decision, Deny):
            return decision

        owner = decision.listing.owner_tenant_id
        updated = await self._store.listings.update_fields(listing_id, owner, **fields)
        if updated is None:
            return Deny(DenyReason.NOT_FOUND)
        return Allow(updated)

    async def delete(self, identity: ResolvedIdentity, listing_id: str) -> Decision:
        decision = await self._guard.authorize(identity, listing_id)
        if isinstance(decision, Deny):
            return decision

        listing = decision.listing
        if not await self._store.listings.delete(listing.id, listing.owner_tenant_id):
            return Deny(DenyReason.NOT_FOUND)
        return Allow(listing)
