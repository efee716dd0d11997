"""Shared test fixtures."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

from kmarket.config.settings import get_settings
from kmarket.identity.memory import InMemoryAuthBackend, InMemoryIdentityProvider
from kmarket.models.domain import Listing, Tenant
from kmarket.storage.database import init_db
from kmarket.storage.store import PrivilegedStore
from kmarket.types import Role, TenantStatus, TenantType
from kmarket.web.app import create_app
from kmarket.web.dependencies import get_auth_backend, get_db_engine

PASSWORD = "correct-horse-1"


@pytest.fixture(autouse=True)
def _test_settings(monkeypatch: pytest.MonkeyPatch):
    """Memory identity mode and a throwaway database URL for every test."""
    monkeypatch.setenv("IDENTITY_MODE", "memory")
    monkeypatch.setenv("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
    monkeypatch.setenv("RATE_LIMIT_PER_MINUTE", "1000")
    monkeypatch.setenv("AUTH_RATE_LIMIT_PER_MINUTE", "1000")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
async def async_engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def store(async_engine: AsyncEngine) -> PrivilegedStore:
    return PrivilegedStore(async_engine)


@pytest.fixture()
def auth_backend() -> InMemoryAuthBackend:
    return InMemoryAuthBackend()


@dataclass(frozen=True)
class SeededUser:
    id: str
    email: str
    token: str
    tenant_id: str | None

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


class Seeder:
    """Writes companies, accounts, profiles and listings straight into the stores."""

    def __init__(self, store: PrivilegedStore, backend: InMemoryAuthBackend) -> None:
        self.store = store
        self.backend = backend

    async def company(
        self,
        name: str = "Acme Rental",
        company_type: TenantType = TenantType.SUPPLY,
        status: TenantStatus = TenantStatus.ACTIVE,
    ) -> Tenant:
        return await self.store.companies.create(
            name=name,
            company_type=company_type,
            region="Tokyo",
            locality="Minato",
            phone="03-0000-0000",
            status=status,
        )

    async def user(
        self,
        email: str,
        *,
        tenant_id: str | None,
        role: Role = Role.TENANT_ADMIN,
        name: str = "Taro",
        is_active: bool = True,
        with_profile: bool = True,
    ) -> SeededUser:
        account = self.backend.create_account(email, PASSWORD)
        if with_profile:
            await self.store.profiles.upsert(
                account.id, name=name, role=role, company_id=tenant_id, is_active=is_active
            )
        return SeededUser(
            id=account.id,
            email=account.email,
            token=self.backend.issue_token(account),
            tenant_id=tenant_id,
        )

    async def listing(self, tenant_id: str, **fields: Any) -> Listing:
        fields.setdefault("name", "ZX200 excavator")
        return await self.store.listings.create(tenant_id, **fields)

    def provider_for(self, user: SeededUser | None) -> InMemoryIdentityProvider:
        return InMemoryIdentityProvider(self.backend, access_token=user.token if user else None)


@pytest.fixture()
def seed(store: PrivilegedStore, auth_backend: InMemoryAuthBackend) -> Seeder:
    return Seeder(store, auth_backend)


@pytest.fixture()
def app(async_engine: AsyncEngine, auth_backend: InMemoryAuthBackend):
    """Fresh app wired to the test engine and identity backend."""
    application = create_app()
    application.dependency_overrides[get_db_engine] = lambda: async_engine
    application.dependency_overrides[get_auth_backend] = lambda: auth_backend
    return application


@pytest.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="https://test") as http:
        yield http
