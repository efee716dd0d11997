"""Exception hierarchy for kmarket."""


class KmarketError(Exception):
    """Base exception for all kmarket errors."""


class IdentityProviderError(KmarketError):
    """Raised when the identity provider reports a failure."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class SessionMissingError(IdentityProviderError):
    """Raised when there is no session to read. Expected for anonymous callers."""

    def __init__(self, message: str = "Auth session missing") -> None:
        super().__init__(message, status_code=401)


class IdentityProviderUnavailableError(IdentityProviderError):
    """Raised when the identity provider cannot be reached at all."""


class StorageError(KmarketError):
    """Raised when storage operations fail."""


class AccessDeniedError(StorageError):
    """Raised when a store-level row rule blocks a read or write."""


class ConfigError(KmarketError):
    """Raised when configuration is invalid."""


class RedirectRequired(KmarketError):  # noqa: N818
    """Raised by blocking guards to short-circuit a request into a redirect."""

    def __init__(self, location: str) -> None:
        super().__init__(location)
        self.location = location
