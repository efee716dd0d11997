"""Enums for kmarket."""

from enum import StrEnum


class Role(StrEnum):
    TENANT_ADMIN = "TENANT_ADMIN"
    TENANT_MEMBER = "TENANT_MEMBER"
    PLATFORM_ADMIN = "PLATFORM_ADMIN"


class TenantType(StrEnum):
    DEMAND = "DEMAND"
    SUPPLY = "SUPPLY"
    BOTH = "BOTH"


class TenantStatus(StrEnum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class ListingStatus(StrEnum):
    PUBLISHED = "PUBLISHED"
    STOPPED = "STOPPED"


class ListingCategory(StrEnum):
    HEAVY_MACHINERY = "HEAVY_MACHINERY"
    DUMP = "DUMP"
    ATTACHMENT = "ATTACHMENT"


class ResolutionStatus(StrEnum):
    """Outcome of resolving the caller's identity, layer by layer."""

    NO_SESSION = "no_session"
    SESSION_ERROR = "session_error"
    PROFILE_MISSING = "profile_missing"
    PROFILE_ERROR = "profile_error"
    TENANT_ERROR = "tenant_error"
    RESOLVED = "resolved"


class DenyReason(StrEnum):
    NOT_AUTHENTICATED = "not_authenticated"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    TENANT_INACTIVE = "tenant_inactive"
