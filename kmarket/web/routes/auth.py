"""Authentication routes: signup with company provisioning, login, logout, passwords."""

from __future__ import annotations

import asyncio
from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, Response
from pydantic import BaseModel

from kmarket.audit.logger import AuditLogger
from kmarket.config.settings import get_settings
from kmarket.exceptions import IdentityProviderError, IdentityProviderUnavailableError
from kmarket.identity.provider import IdentityProvider
from kmarket.identity.resolver import IdentityCache
from kmarket.provisioning.service import (
    Failed,
    ProfileFields,
    ProvisioningService,
    ProvisioningStage,
    SignupCredentials,
    TenantFields,
)
from kmarket.web.dependencies import (
    client_ip,
    get_audit_logger,
    get_identity_cache,
    get_identity_provider,
    get_provisioning_service,
    request_id,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def _set_session_cookie(response: Response, token: str) -> None:
    settings = get_settings()
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=not settings.debug,
        samesite="lax",
        max_age=settings.session_max_age,
    )


# ---------------------------------------------------------------------------
# Signup (account + company + profile)
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    email: str
    password: str
    name: str
    company_name: str
    company_type: str
    region: str
    locality: str
    phone: str


@router.post("/signup", status_code=201)
async def signup(
    body: SignupRequest,
    request: Request,
    response: Response,
    service: ProvisioningService = Depends(get_provisioning_service),
    identity: IdentityProvider = Depends(get_identity_provider),
    cache: IdentityCache = Depends(get_identity_cache),
    audit_logger: AuditLogger = Depends(get_audit_logger),
) -> dict[str, Any]:
    """Provision a new company with its first admin, then sign them in."""
    # Shielded so a dropped connection cannot stop the rollback halfway
    result = await asyncio.shield(
        service.provision_tenant_and_profile(
            SignupCredentials(email=body.email, password=body.password),
            ProfileFields(name=body.name),
            TenantFields(
                name=body.company_name,
                tenant_type=body.company_type,
                region=body.region,
                locality=body.locality,
                phone=body.phone,
            ),
        )
    )
    if isinstance(result, Failed):
        if result.stage in (ProvisioningStage.VALIDATION, ProvisioningStage.ACCOUNT):
            raise HTTPException(
                status_code=400,
                detail={"message": result.error, "field": result.field},
            )
        raise HTTPException(status_code=500, detail={"message": "Signup failed. Please retry."})

    await audit_logger.log(
        action="auth.signup",
        user_id=result.user_id,
        company_id=result.tenant_id,
        resource_type="company",
        resource_id=result.tenant_id,
        ip_address=client_ip(request),
        request_id=request_id(request),
    )

    signed_in = False
    try:
        session = await identity.sign_in_with_password(body.email.strip().lower(), body.password)
    except IdentityProviderUnavailableError:
        raise
    except IdentityProviderError as exc:
        logger.warning("signup_sign_in_failed", user_id=result.user_id, error=exc.message)
    else:
        if session.access_token:
            _set_session_cookie(response, session.access_token)
            signed_in = True
        cache.invalidate()

    return {"user_id": result.user_id, "tenant_id": result.tenant_id, "signed_in": signed_in}


# ---------------------------------------------------------------------------
# Password login / logout
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    email: str
    password: str


@router.post("/login")
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    identity: IdentityProvider = Depends(get_identity_provider),
    cache: IdentityCache = Depends(get_identity_cache),
    audit_logger: AuditLogger = Depends(get_audit_logger),
) -> dict[str, str]:
    if not body.email.strip() or not body.password:
        raise HTTPException(status_code=400, detail="Email and password required")

    try:
        session = await identity.sign_in_with_password(body.email.strip().lower(), body.password)
    except IdentityProviderUnavailableError:
        raise
    except IdentityProviderError as exc:
        logger.info("login_failed", error=exc.message)
        raise HTTPException(status_code=401, detail="Invalid email or password") from exc

    if session.access_token:
        _set_session_cookie(response, session.access_token)
    cache.invalidate()
    await audit_logger.log(
        action="auth.login",
        user_id=session.subject_id,
        ip_address=client_ip(request),
        request_id=request_id(request),
    )
    logger.info("user_logged_in", user_id=session.subject_id)
    return {"status": "ok", "user_id": session.subject_id}


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    identity: IdentityProvider = Depends(get_identity_provider),
    cache: IdentityCache = Depends(get_identity_cache),
    audit_logger: AuditLogger = Depends(get_audit_logger),
) -> dict[str, str]:
    subject_id = ""
    try:
        subject_id = (await identity.get_current_session()).subject_id
        await identity.sign_out()
    except IdentityProviderError as exc:
        # The cookie is cleared regardless; a stale token needs no server-side logout
        logger.info("logout_without_session", error=exc.message)

    settings = get_settings()
    response.delete_cookie(settings.session_cookie_name)
    cache.invalidate()
    if subject_id:
        await audit_logger.log(
            action="auth.logout",
            user_id=subject_id,
            ip_address=client_ip(request),
            request_id=request_id(request),
        )
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Password reset and change
# ---------------------------------------------------------------------------


class PasswordResetRequest(BaseModel):
    email: str


@router.post("/password-reset")
async def request_password_reset(
    body: PasswordResetRequest,
    identity: IdentityProvider = Depends(get_identity_provider),
) -> dict[str, str]:
    """Send a reset link. Answers the same whether or not the address exists."""
    email = body.email.strip().lower()
    if not email:
        raise HTTPException(status_code=400, detail="Email required")

    settings = get_settings()
    try:
        await identity.send_password_reset_email(email, settings.password_reset_redirect_url)
    except IdentityProviderUnavailableError:
        raise
    except IdentityProviderError as exc:
        raise HTTPException(status_code=400, detail=exc.message) from exc
    return {"status": "ok"}


class PasswordChangeRequest(BaseModel):
    new_password: str


@router.post("/password")
async def change_password(
    body: PasswordChangeRequest,
    request: Request,
    identity: IdentityProvider = Depends(get_identity_provider),
    cache: IdentityCache = Depends(get_identity_cache),
    audit_logger: AuditLogger = Depends(get_audit_logger),
) -> dict[str, str]:
    settings = get_settings()
    if len(body.new_password) < settings.password_min_length:
        raise HTTPException(
            status_code=400,
            detail=f"Password must be at least {settings.password_min_length} characters",
        )

    try:
        user = await identity.update_password(body.new_password)
    except IdentityProviderUnavailableError:
        raise
    except IdentityProviderError as exc:
        if exc.status_code in (401, 403):
            raise HTTPException(status_code=401, detail="Not authenticated") from exc
        raise HTTPException(status_code=400, detail=exc.message) from exc

    cache.invalidate()
    await audit_logger.log(
        action="auth.password_changed",
        user_id=user.id,
        ip_address=client_ip(request),
        request_id=request_id(request),
    )
    return {"status": "ok"}
