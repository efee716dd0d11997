"""Listing (machine) repository, PostgreSQL-backed."""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import delete, update
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from kmarket.models.database import Machine, _utc_now
from kmarket.models.domain import Listing
from kmarket.storage.database import storage_errors
from kmarket.types import ListingCategory, ListingStatus

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)

# Business fields a tenant may edit. Ownership and status are never in here.
EDITABLE_FIELDS = frozenset(
    {
        "category",
        "name",
        "manufacturer",
        "model",
        "location",
        "price_rental",
        "price_sale",
    }
)


def _to_domain(machine: Machine) -> Listing:
    return Listing(
        id=machine.id,
        owner_tenant_id=machine.owner_company_id,
        status=ListingStatus(machine.status),
        category=ListingCategory(machine.category),
        name=machine.name,
        manufacturer=machine.manufacturer,
        model=machine.model,
        location=machine.location,
        price_rental=machine.price_rental,
        price_sale=machine.price_sale,
    )


class DatabaseListingRepository:
    """PostgreSQL-backed listing store.

    Writes take the expected owner and only touch rows that still match it,
    so a write never lands on a listing whose owner changed since the read.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def create(self, owner_company_id: str, /, **fields: Any) -> Listing:
        values = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
        async with storage_errors("listing create"), AsyncSession(self._engine) as session:
            machine = Machine(owner_company_id=owner_company_id, **values)
            session.add(machine)
            await session.commit()
            await session.refresh(machine)
            logger.info("listing_created", listing_id=machine.id, company_id=owner_company_id)
            return _to_domain(machine)

    async def get(self, listing_id: str) -> Listing | None:
        async with storage_errors("listing lookup"), AsyncSession(self._engine) as session:
            machine = await session.get(Machine, listing_id)
            return _to_domain(machine) if machine else None

    async def list_for_company(self, company_id: str) -> list[Listing]:
        async with storage_errors("listing list"), AsyncSession(self._engine) as session:
            stmt = (
                select(Machine)
                .where(col(Machine.owner_company_id) == company_id)
                .order_by(col(Machine.created_at).desc())
            )
            result = await session.execute(stmt)
            return [_to_domain(m) for m in result.scalars().all()]

    async def count_published_by_company(self, company_ids: list[str]) -> dict[str, int]:
        if not company_ids:
            return {}
        async with storage_errors("listing count"), AsyncSession(self._engine) as session:
            stmt = (
                select(Machine.owner_company_id)
                .where(
                    col(Machine.owner_company_id).in_(company_ids),
                    col(Machine.status) == ListingStatus.PUBLISHED,
                )
                .limit(10000)
            )
            result = await session.execute(stmt)
            return dict(Counter(owner for (owner,) in result.all()))

    async def set_status(
        self, listing_id: str, owner_company_id: str, status: ListingStatus
    ) -> bool:
        """Write ``status`` if the listing is still owned by ``owner_company_id``."""
        return await self._update_owned(listing_id, owner_company_id, {"status": status})

    async def update_fields(
        self, listing_id: str, owner_company_id: str, /, **fields: Any
    ) -> Listing | None:
        values = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
        if values and not await self._update_owned(listing_id, owner_company_id, values):
            return None
        listing = await self.get(listing_id)
        if listing is None or listing.owner_tenant_id != owner_company_id:
            return None
        return listing

    async def delete(self, listing_id: str, owner_company_id: str) -> bool:
        async with storage_errors("listing delete"), AsyncSession(self._engine) as session:
            stmt = delete(Machine).where(
                col(Machine.id) == listing_id,
                col(Machine.owner_company_id) == owner_company_id,
            )
            result = await session.execute(stmt)
            await session.commit()
            deleted = bool(result.rowcount)
            if deleted:
                logger.info("listing_deleted", listing_id=listing_id, company_id=owner_company_id)
            return deleted

    async def _update_owned(
        self, listing_id: str, owner_company_id: str, values: dict[str, Any]
    ) -> bool:
        async with storage_errors("listing update"), AsyncSession(self._engine) as session:
            stmt = (
                update(Machine)
                .where(
                    col(Machine.id) == listing_id,
                    col(Machine.owner_company_id) == owner_company_id,
                )
                .values(**values, updated_at=_utc_now())
            )
            result = await session.execute(stmt)
            await session.commit()
            return bool(result.rowcount)
