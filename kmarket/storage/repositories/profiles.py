"""User profile repository, PostgreSQL-backed."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select
from sqlmodel.ext.asyncio.session import AsyncSession

from kmarket.models.database import UserProfile, _utc_now
from kmarket.models.domain import Profile
from kmarket.storage.database import storage_errors
from kmarket.types import Role

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = structlog.get_logger(__name__)


def _to_domain(row: UserProfile) -> Profile:
    return Profile(
        id=row.id,
        name=row.name,
        role=Role(row.role),
        tenant_id=row.company_id,
        is_active=row.is_active,
        created_at=row.created_at,
    )


class DatabaseProfileRepository:
    """PostgreSQL-backed profile store, one row per identity-provider subject."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def get(self, user_id: str) -> Profile | None:
        async with storage_errors("profile lookup"), AsyncSession(self._engine) as session:
            row = await session.get(UserProfile, user_id)
            return _to_domain(row) if row else None

    async def upsert(
        self,
        user_id: str,
        *,
        name: str,
        role: Role,
        company_id: str | None,
        is_active: bool = True,
    ) -> Profile:
        """Insert or overwrite the profile keyed by ``user_id``.

        Retrying with the same subject id never produces a second row.
        """
        async with storage_errors("profile upsert"):
            try:
                return await self._upsert_once(user_id, name, role, company_id, is_active)
            except IntegrityError:
                # Lost an insert race for the same id; the row exists now.
                logger.info("profile_upsert_retry", user_id=user_id)
                return await self._upsert_once(user_id, name, role, company_id, is_active)

    async def _upsert_once(
        self,
        user_id: str,
        name: str,
        role: Role,
        company_id: str | None,
        is_active: bool,
    ) -> Profile:
        async with AsyncSession(self._engine) as session:
            row = await session.get(UserProfile, user_id)
            if row is None:
                row = UserProfile(
                    id=user_id,
                    name=name,
                    role=role,
                    company_id=company_id,
                    is_active=is_active,
                )
            else:
                row.name = name
                row.role = role
                row.company_id = company_id
                row.is_active = is_active
                row.updated_at = _utc_now()
            session.add(row)
            await session.commit()
            await session.refresh(row)
            logger.info("profile_upserted", user_id=user_id, company_id=company_id, role=role)
            return _to_domain(row)

    async def update_name(self, user_id: str, name: str) -> Profile | None:
        async with storage_errors("profile update"), AsyncSession(self._engine) as session:
            row = await session.get(UserProfile, user_id)
            if not row:
                return None
            row.name = name
            row.updated_at = _utc_now()
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return _to_domain(row)

    async def list_recent(self, limit: int = 500) -> list[Profile]:
        """Return profiles newest first."""
        async with storage_errors("profile list"), AsyncSession(self._engine) as session:
            stmt = (
                select(UserProfile)
                .order_by(col(UserProfile.created_at).desc())
                .limit(limit)
            )
            result = await session.execute(stmt)
            return [_to_domain(r) for r in result.scalars().all()]
