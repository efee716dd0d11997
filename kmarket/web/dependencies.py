"""FastAPI dependency injection and shared state.

Everything request-scoped (identity provider client, resolved identity)
is built per request. The only process-wide state is the database engine
and, in memory mode, the in-process account table.
"""

from __future__ import annotations

import structlog
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncEngine

from kmarket.audit.logger import AuditLogger
from kmarket.authz.ownership import ListingMutations, OwnershipGuard
from kmarket.config.settings import get_settings
from kmarket.identity.gotrue import GoTrueIdentityProvider
from kmarket.identity.memory import InMemoryAuthBackend, InMemoryIdentityProvider
from kmarket.identity.provider import IdentityProvider
from kmarket.identity.resolver import IdentityCache, ProfileResolver, ResolvedIdentity
from kmarket.provisioning.service import ProvisioningService
from kmarket.storage.database import get_engine
from kmarket.storage.store import PrivilegedStore

# Accounts for IDENTITY_MODE=memory live for the life of the process
_memory_backend = InMemoryAuthBackend()


def get_auth_backend() -> InMemoryAuthBackend:
    return _memory_backend


def get_db_engine() -> AsyncEngine:
    return get_engine()


def get_store(engine: AsyncEngine = Depends(get_db_engine)) -> PrivilegedStore:
    return PrivilegedStore(engine)


def get_audit_logger(engine: AsyncEngine = Depends(get_db_engine)) -> AuditLogger:
    return AuditLogger(engine)


def read_access_token(request: Request) -> str | None:
    """Session cookie first, then an ``Authorization: Bearer`` header."""
    settings = get_settings()
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        return token
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:] or None
    return None


def get_identity_provider(
    request: Request,
    backend: InMemoryAuthBackend = Depends(get_auth_backend),
) -> IdentityProvider:
    """Identity provider client bound to this request's access token."""
    settings = get_settings()
    token = read_access_token(request)
    if settings.identity_mode == "gotrue":
        return GoTrueIdentityProvider(settings, access_token=token)
    return InMemoryIdentityProvider(backend, access_token=token)


def get_identity_cache(
    request: Request,
    identity: IdentityProvider = Depends(get_identity_provider),
    store: PrivilegedStore = Depends(get_store),
) -> IdentityCache:
    """One resolution per request, shared by every dependency that asks."""
    cache: IdentityCache | None = getattr(request.state, "identity_cache", None)
    if cache is None:
        cache = IdentityCache(ProfileResolver(identity, store))
        request.state.identity_cache = cache
    return cache


async def get_identity(cache: IdentityCache = Depends(get_identity_cache)) -> ResolvedIdentity:
    identity = await cache.get()
    if identity.subject_id:
        structlog.contextvars.bind_contextvars(subject_id=identity.subject_id)
    return identity


def get_ownership_guard(store: PrivilegedStore = Depends(get_store)) -> OwnershipGuard:
    settings = get_settings()
    return OwnershipGuard(store, block_inactive_tenants=settings.block_inactive_tenant_writes)


def get_listing_mutations(
    guard: OwnershipGuard = Depends(get_ownership_guard),
    store: PrivilegedStore = Depends(get_store),
) -> ListingMutations:
    return ListingMutations(guard, store)


def get_provisioning_service(
    identity: IdentityProvider = Depends(get_identity_provider),
    store: PrivilegedStore = Depends(get_store),
) -> ProvisioningService:
    settings = get_settings()
    return ProvisioningService(
        identity, store, password_min_length=settings.password_min_length
    )


def client_ip(request: Request) -> str:
    return request.client.host if request.client else ""


def request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "") or request.headers.get("x-request-id", "")
