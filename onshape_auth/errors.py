"""Exception taxonomy for the signing and request layer."""
from typing import List, Optional


class OnshapeAuthError(Exception):
    """Base class for every error raised by this package."""
    pass


class ConfigurationError(OnshapeAuthError):
    """Missing or invalid credentials, or an auth type that cannot be resolved.

    Always raised before any network call is attempted.
    """
    pass


class SigningError(OnshapeAuthError):
    """Canonicalization or HMAC failed on otherwise valid configuration."""
    pass


class TransportError(OnshapeAuthError):
    """DNS failure, timeout or connection reset. Not retried here."""
    pass


class ApiError(OnshapeAuthError):
    """Non-2xx response that is not an authentication failure."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"API request failed ({self.status_code}): {self.message}"


class AuthenticationError(ApiError):
    """401/403 from the vendor, or a failed token exchange.

    `hints` carries scheme-specific diagnostics. They are built so that they
    never contain a full secret or token.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        hints: Optional[List[str]] = None
    ):
        super().__init__(message, status_code)
        self.hints = list(hints or [])

    def __str__(self) -> str:
        base = super().__str__()
        if not self.hints:
            return base
        return base + "\n" + "\n".join(f"  HINT: {h}" for h in self.hints)
