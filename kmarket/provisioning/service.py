"""Account provisioning: identity account, company and profile as one unit.

The three records live in stores with no shared transaction, so each step
that fails after an earlier one succeeded undoes the earlier ones in
reverse creation order. Compensation failures are logged and never replace
the original failure.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel

from kmarket.exceptions import (
    IdentityProviderError,
    IdentityProviderUnavailableError,
    StorageError,
)
from kmarket.types import Role, TenantType

if TYPE_CHECKING:
    from kmarket.identity.provider import IdentityAdmin
    from kmarket.models.domain import Profile
    from kmarket.storage.store import PrivilegedStore

logger = structlog.get_logger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ProvisioningStage(StrEnum):
    VALIDATION = "validation"
    ACCOUNT = "account"
    TENANT = "tenant"
    PROFILE = "profile"


class SignupCredentials(BaseModel):
    email: str
    password: str


class ProfileFields(BaseModel):
    name: str


class TenantFields(BaseModel):
    name: str
    tenant_type: str
    region: str
    locality: str
    phone: str


@dataclass(frozen=True, slots=True)
class Created:
    user_id: str
    tenant_id: str


@dataclass(frozen=True, slots=True)
class Failed:
    error: str
    stage: ProvisioningStage
    field: str | None = None


ProvisioningResult = Created | Failed


@dataclass(frozen=True, slots=True)
class _ValidSignup:
    email: str
    password: str
    user_name: str
    tenant_name: str
    tenant_type: TenantType
    region: str
    locality: str
    phone: str


def _invalid(field: str, message: str) -> Failed:
    return Failed(error=message, stage=ProvisioningStage.VALIDATION, field=field)


def validate_signup(
    credentials: SignupCredentials,
    profile: ProfileFields,
    tenant: TenantFields,
    *,
    password_min_length: int = 8,
) -> _ValidSignup | Failed:
    """Normalise and check every field before anything is written."""
    email = credentials.email.strip().lower()
    if not email:
        return _invalid("email", "Email is required")
    if not _EMAIL_RE.match(email):
        return _invalid("email", "Email address is not valid")
    if not credentials.password:
        return _invalid("password", "Password is required")
    if len(credentials.password) < password_min_length:
        return _invalid(
            "password", f"Password must be at least {password_min_length} characters"
        )

    required = {
        "user_name": profile.name.strip(),
        "tenant_name": tenant.name.strip(),
        "phone": tenant.phone.strip(),
        "region": tenant.region.strip(),
        "locality": tenant.locality.strip(),
    }
    for field, value in required.items():
        if not value:
            return _invalid(field, f"{field} is required")

    try:
        tenant_type = TenantType(tenant.tenant_type.strip().upper())
    except ValueError:
        return _invalid("tenant_type", "tenant_type must be one of DEMAND, SUPPLY, BOTH")

    return _ValidSignup(
        email=email,
        password=credentials.password,
        tenant_type=tenant_type,
        **required,
    )


class ProvisioningService:
    def __init__(
        self,
        identity: IdentityAdmin,
        store: PrivilegedStore,
        *,
        password_min_length: int = 8,
    ) -> None:
        self._identity = identity
        self._store = store
        self._password_min_length = password_min_length

    async def provision_tenant_and_profile(
        self,
        credentials: SignupCredentials,
        profile_fields: ProfileFields,
        tenant_fields: TenantFields,
    ) -> ProvisioningResult:
        checked = validate_signup(
            credentials,
            profile_fields,
            tenant_fields,
            password_min_length=self._password_min_length,
        )
        if isinstance(checked, Failed):
            logger.info("provisioning_rejected", field=checked.field)
            return checked

        # 1) identity-provider account
        try:
            user = await self._identity.create_user_as_admin(checked.email, checked.password)
        except IdentityProviderUnavailableError:
            # Nothing written yet; the caller maps this to a retryable outage
            raise
        except IdentityProviderError as exc:
            logger.info("provisioning_account_failed", error=exc.message)
            return Failed(error=exc.message, stage=ProvisioningStage.ACCOUNT)

        # 2) company
        try:
            tenant = await self._store.companies.create(
                name=checked.tenant_name,
                company_type=checked.tenant_type,
                region=checked.region,
                locality=checked.locality,
                phone=checked.phone,
            )
        except StorageError as exc:
            logger.warning("provisioning_tenant_failed", user_id=user.id, error=str(exc))
            await self._compensate(user_id=user.id)
            return Failed(error=str(exc), stage=ProvisioningStage.TENANT)
        except Exception:
            await self._compensate(user_id=user.id)
            raise

        # 3) profile, linked to both
        try:
            await self.link_profile(user.id, tenant.id, checked.user_name)
        except StorageError as exc:
            logger.warning(
                "provisioning_profile_failed",
                user_id=user.id,
                tenant_id=tenant.id,
                error=str(exc),
            )
            await self._compensate(user_id=user.id, tenant_id=tenant.id)
            return Failed(error=str(exc), stage=ProvisioningStage.PROFILE)
        except Exception:
            await self._compensate(user_id=user.id, tenant_id=tenant.id)
            raise

        logger.info("provisioning_completed", user_id=user.id, tenant_id=tenant.id)
        return Created(user_id=user.id, tenant_id=tenant.id)

    async def link_profile(self, user_id: str, tenant_id: str, name: str) -> Profile:
        """Upsert the founding admin profile. Safe to repeat for the same user."""
        return await self._store.profiles.upsert(
            user_id,
            name=name,
            role=Role.TENANT_ADMIN,
            company_id=tenant_id,
            is_active=True,
        )

    async def _compensate(self, *, user_id: str, tenant_id: str | None = None) -> None:
        """Undo earlier steps newest first. Best effort."""
        if tenant_id is not None:
            try:
                await self._store.companies.delete(tenant_id)
            except StorageError as exc:
                logger.warning(
                    "provisioning_compensation_failed",
                    step="tenant",
                    tenant_id=tenant_id,
                    error=str(exc),
                )
        try:
            await self._identity.delete_user_as_admin(user_id)
        except IdentityProviderError as exc:
            logger.warning(
                "provisioning_compensation_failed",
                step="account",
                user_id=user_id,
                error=exc.message,
            )
        else:
            logger.info("provisioning_compensated", user_id=user_id, tenant_id=tenant_id)
