"""Store facades at two trust levels.

``PrivilegedStore`` bypasses row rules and is reserved for provisioning, the
ownership guard's authoritative reads and writes, and platform-admin views.
``ScopedStore`` acts on behalf of one caller and enforces row rules itself,
so reads through it behave like an ambient-session client against a store
with row-level security.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from kmarket.exceptions import AccessDeniedError
from kmarket.storage.repositories.companies import DatabaseCompanyRepository
from kmarket.storage.repositories.listings import DatabaseListingRepository
from kmarket.storage.repositories.profiles import DatabaseProfileRepository
from kmarket.types import ListingStatus

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from kmarket.models.domain import Listing, Profile, Tenant

logger = structlog.get_logger(__name__)


class PrivilegedStore:
    """All repositories, no row rules."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.companies = DatabaseCompanyRepository(engine)
        self.profiles = DatabaseProfileRepository(engine)
        self.listings = DatabaseListingRepository(engine)

    def scoped(self, subject_id: str) -> ScopedStore:
        """Return a store that acts on behalf of ``subject_id``."""
        return ScopedStore(self, subject_id)


class ScopedStore:
    """Row-rule-enforcing reads and self-service writes for one caller."""

    def __init__(self, store: PrivilegedStore, subject_id: str) -> None:
        self._store = store
        self.subject_id = subject_id

    async def get_profile(self, user_id: str) -> Profile | None:
        if user_id != self.subject_id:
            logger.debug("row_rule_denied", table="users", subject_id=self.subject_id)
            msg = "permission denied for table users"
            raise AccessDeniedError(msg)
        return await self._store.profiles.get(user_id)

    async def get_tenant(self, tenant_id: str) -> Tenant | None:
        await self._require_membership(tenant_id, table="companies")
        return await self._store.companies.get(tenant_id)

    async def list_tenant_listings(self, tenant_id: str) -> list[Listing]:
        await self._require_membership(tenant_id, table="machines")
        return await self._store.listings.list_for_company(tenant_id)

    async def get_listing(self, listing_id: str) -> Listing | None:
        """Published listings are visible to everyone; others only to their owner."""
        listing = await self._store.listings.get(listing_id)
        if listing is None or listing.status == ListingStatus.PUBLISHED:
            return listing
        own = await self._store.profiles.get(self.subject_id)
        if own is None or own.tenant_id != listing.owner_tenant_id:
            return None
        return listing

    async def update_own_name(self, name: str) -> Profile | None:
        return await self._store.profiles.update_name(self.subject_id, name)

    async def _require_membership(self, tenant_id: str, *, table: str) -> None:
        own = await self._store.profiles.get(self.subject_id)
        if own is None or own.tenant_id != tenant_id:
            logger.debug("row_rule_denied", table=table, subject_id=self.subject_id)
            msg = f"permission denied for table {table}"
            raise AccessDeniedError(msg)
