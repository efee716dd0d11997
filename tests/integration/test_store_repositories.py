"""Repositories and store trust levels against an in-memory SQLite engine."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from kmarket.exceptions import AccessDeniedError
from kmarket.types import ListingStatus, Role, TenantStatus, TenantType


@pytest.mark.integration
class TestCompanyRepository:
    @pytest.mark.asyncio
    async def test_create_defaults_to_active(self, seed) -> None:
        company = await seed.company()
        assert company.status == TenantStatus.ACTIVE
        assert company.tenant_type == TenantType.SUPPLY
        assert await seed.store.companies.get(company.id) == company

    @pytest.mark.asyncio
    async def test_update_only_touches_contact_fields(self, seed) -> None:
        company = await seed.company()
        updated = await seed.store.companies.update(
            company.id, phone="06-1111-2222", status="INACTIVE", company_type="DEMAND"
        )
        assert updated is not None
        assert updated.phone == "06-1111-2222"
        assert updated.status == TenantStatus.ACTIVE
        assert updated.tenant_type == TenantType.SUPPLY

    @pytest.mark.asyncio
    async def test_set_status_and_delete(self, seed) -> None:
        company = await seed.company()
        inactive = await seed.store.companies.set_status(company.id, TenantStatus.INACTIVE)
        assert inactive is not None
        assert inactive.status == TenantStatus.INACTIVE

        assert await seed.store.companies.delete(company.id) is True
        assert await seed.store.companies.get(company.id) is None
        assert await seed.store.companies.delete(company.id) is False

    @pytest.mark.asyncio
    async def test_list_by_ids(self, seed) -> None:
        first = await seed.company(name="A")
        await seed.company(name="B")
        found = await seed.store.companies.list_by_ids([first.id, "missing"])
        assert [c.id for c in found] == [first.id]
        assert await seed.store.companies.list_by_ids([]) == []


@pytest.mark.integration
class TestProfileRepository:
    @pytest.mark.asyncio
    async def test_upsert_is_keyed_by_subject(self, seed) -> None:
        company = await seed.company()
        profiles = seed.store.profiles
        await profiles.upsert("user-1", name="Sato", role=Role.TENANT_ADMIN, company_id=company.id)
        again = await profiles.upsert(
            "user-1", name="Sato Taro", role=Role.TENANT_ADMIN, company_id=company.id
        )

        assert again.name == "Sato Taro"
        assert [p.id for p in await profiles.list_recent()] == ["user-1"]

    @pytest.mark.asyncio
    async def test_timestamps_are_stored_as_naive_utc(self, seed) -> None:
        company = await seed.company()
        profile = await seed.store.profiles.upsert(
            "user-1", name="Sato", role=Role.TENANT_ADMIN, company_id=company.id
        )
        assert profile.created_at is not None
        assert profile.created_at.tzinfo is None
        assert abs(profile.created_at - datetime.now(UTC).replace(tzinfo=None)) < timedelta(
            minutes=1
        )

    @pytest.mark.asyncio
    async def test_update_name(self, seed) -> None:
        company = await seed.company()
        user = await seed.user("owner@example.com", tenant_id=company.id)
        renamed = await seed.store.profiles.update_name(user.id, "Hanako")
        assert renamed is not None
        assert renamed.name == "Hanako"
        assert await seed.store.profiles.update_name("missing", "x") is None

    @pytest.mark.asyncio
    async def test_list_recent_respects_limit(self, seed) -> None:
        company = await seed.company()
        for i in range(3):
            await seed.user(f"user{i}@example.com", tenant_id=company.id)
        assert len(await seed.store.profiles.list_recent(limit=2)) == 2


@pytest.mark.integration
class TestListingRepository:
    @pytest.mark.asyncio
    async def test_create_ignores_ownership_and_status_fields(self, seed) -> None:
        company = await seed.company()
        listing = await seed.store.listings.create(
            company.id, name="Crane", owner_tenant_id="other", status="STOPPED"
        )
        assert listing.owner_tenant_id == company.id
        assert listing.status == ListingStatus.PUBLISHED

    @pytest.mark.asyncio
    async def test_conditional_writes_need_matching_owner(self, seed) -> None:
        company = await seed.company()
        listing = await seed.listing(company.id)
        listings = seed.store.listings

        assert await listings.set_status(listing.id, "other", ListingStatus.STOPPED) is False
        assert await listings.update_fields(listing.id, "other", name="Hijacked") is None
        assert await listings.delete(listing.id, "other") is False
        assert await listings.get(listing.id) == listing

        assert await listings.set_status(listing.id, company.id, ListingStatus.STOPPED) is True
        updated = await listings.update_fields(listing.id, company.id, price_rental=50000)
        assert updated is not None
        assert updated.status == ListingStatus.STOPPED
        assert updated.price_rental == 50000

    @pytest.mark.asyncio
    async def test_count_published_by_company(self, seed) -> None:
        first = await seed.company(name="A")
        second = await seed.company(name="B")
        await seed.listing(first.id)
        await seed.listing(first.id)
        stopped = await seed.listing(first.id)
        await seed.store.listings.set_status(stopped.id, first.id, ListingStatus.STOPPED)

        counts = await seed.store.listings.count_published_by_company([first.id, second.id])
        assert counts == {first.id: 2}


@pytest.mark.integration
class TestScopedStore:
    @pytest.mark.asyncio
    async def test_reads_only_own_profile(self, seed) -> None:
        company = await seed.company()
        me = await seed.user("me@example.com", tenant_id=company.id)
        other = await seed.user("other@example.com", tenant_id=company.id)
        scoped = seed.store.scoped(me.id)

        assert (await scoped.get_profile(me.id)).id == me.id
        with pytest.raises(AccessDeniedError):
            await scoped.get_profile(other.id)

    @pytest.mark.asyncio
    async def test_reads_only_own_company(self, seed) -> None:
        mine = await seed.company(name="Mine")
        theirs = await seed.company(name="Theirs")
        me = await seed.user("me@example.com", tenant_id=mine.id)
        scoped = seed.store.scoped(me.id)

        assert (await scoped.get_tenant(mine.id)) == mine
        with pytest.raises(AccessDeniedError):
            await scoped.get_tenant(theirs.id)
        with pytest.raises(AccessDeniedError):
            await scoped.list_tenant_listings(theirs.id)

    @pytest.mark.asyncio
    async def test_stopped_listings_hidden_from_other_companies(self, seed) -> None:
        mine = await seed.company(name="Mine")
        theirs = await seed.company(name="Theirs")
        me = await seed.user("me@example.com", tenant_id=mine.id)
        published = await seed.listing(theirs.id)
        stopped = await seed.listing(theirs.id)
        await seed.store.listings.set_status(stopped.id, theirs.id, ListingStatus.STOPPED)
        own_stopped = await seed.listing(mine.id)
        await seed.store.listings.set_status(own_stopped.id, mine.id, ListingStatus.STOPPED)
        scoped = seed.store.scoped(me.id)

        assert await scoped.get_listing(published.id) is not None
        assert await scoped.get_listing(stopped.id) is None
        assert await scoped.get_listing(own_stopped.id) is not None
