"""Company (tenant) repository, PostgreSQL-backed."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from kmarket.models.database import Company, _utc_now
from kmarket.models.domain import Tenant
from kmarket.storage.database import storage_errors
from kmarket.types import TenantStatus, TenantType

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)

_CONTACT_FIELDS = frozenset({"name", "region", "locality", "phone"})


def _to_domain(company: Company) -> Tenant:
    return Tenant(
        id=company.id,
        name=company.name,
        tenant_type=TenantType(company.company_type),
        status=TenantStatus(company.status),
        region=company.region,
        locality=company.locality,
        phone=company.phone,
    )


class DatabaseCompanyRepository:
    """PostgreSQL-backed company store."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def create(
        self,
        name: str,
        company_type: TenantType,
        region: str | None,
        locality: str | None,
        phone: str | None,
        status: TenantStatus = TenantStatus.ACTIVE,
    ) -> Tenant:
        async with storage_errors("company create"), AsyncSession(self._engine) as session:
            company = Company(
                name=name,
                company_type=company_type,
                status=status,
                region=region,
                locality=locality,
                phone=phone,
            )
            session.add(company)
            await session.commit()
            await session.refresh(company)
            logger.info("company_created", company_id=company.id, company_type=company_type)
            return _to_domain(company)

    async def get(self, company_id: str) -> Tenant | None:
        async with storage_errors("company lookup"), AsyncSession(self._engine) as session:
            company = await session.get(Company, company_id)
            return _to_domain(company) if company else None

    async def list_by_ids(self, company_ids: list[str]) -> list[Tenant]:
        if not company_ids:
            return []
        async with storage_errors("company list"), AsyncSession(self._engine) as session:
            stmt = select(Company).where(col(Company.id).in_(company_ids)).limit(1000)
            result = await session.execute(stmt)
            return [_to_domain(c) for c in result.scalars().all()]

    async def update(self, company_id: str, **updates: Any) -> Tenant | None:
        """Update contact fields. Unknown keys are ignored."""
        async with storage_errors("company update"), AsyncSession(self._engine) as session:
            company = await session.get(Company, company_id)
            if not company:
                return None
            for key, value in updates.items():
                if key in _CONTACT_FIELDS:
                    setattr(company, key, value)
            company.updated_at = _utc_now()
            session.add(company)
            await session.commit()
            await session.refresh(company)
            return _to_domain(company)

    async def set_status(self, company_id: str, status: TenantStatus) -> Tenant | None:
        async with storage_errors("company status update"), AsyncSession(self._engine) as session:
            company = await session.get(Company, company_id)
            if not company:
                return None
            company.status = status
            company.updated_at = _utc_now()
            session.add(company)
            await session.commit()
            await session.refresh(company)
            logger.info("company_status_changed", company_id=company_id, status=status)
            return _to_domain(company)

    async def delete(self, company_id: str) -> bool:
        async with storage_errors("company delete"), AsyncSession(self._engine) as session:
            company = await session.get(Company, company_id)
            if not company:
                return False
            await session.delete(company)
            await session.commit()
            logger.info("company_deleted", company_id=company_id)
            return True
