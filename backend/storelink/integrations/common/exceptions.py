"""
Provider API exceptions shared by every platform client.
"""

from typing import Optional, Dict, Any


class ProviderError(Exception):
    """Base exception for provider API errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        response: Optional[Dict[str, Any]] = None,
        provider: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.response = response or {}
        self.provider = provider

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, status_code={self.status_code})"

    @property
    def retryable(self) -> bool:
        return False


class ProviderAuthError(ProviderError):
    """Raised when the provider rejects credentials (401/403)."""

    def __init__(
        self,
        message: str = "Authentication failed - token may be invalid or expired",
        status_code: int = 401,
        **kwargs,
    ):
        super().__init__(message, status_code=status_code, **kwargs)


class ProviderNotFoundError(ProviderError):
    """Raised when a requested resource is not found (404)."""

    def __init__(self, message: str = "Resource not found", **kwargs):
        super().__init__(message, status_code=404, **kwargs)


class TransientProviderError(ProviderError):
    """Network failure, 5xx or 429. Safe to retry with backoff."""

    @property
    def retryable(self) -> bool:
        return True


class ProviderRateLimitError(TransientProviderError):
    """Raised when API rate limit is exceeded (429)."""

    def __init__(
        self,
        message: str = "Rate limit exceeded - please retry after a delay",
        retry_after: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(message, status_code=429, **kwargs)
        self.retry_after = retry_after


class ProviderConnectionError(TransientProviderError):
    """Raised on timeouts and network errors."""

    def __init__(
        self,
        message: str = "Connection error - unable to reach provider API",
        **kwargs,
    ):
        super().__init__(message, **kwargs)


class TokenExchangeError(ProviderError):
    """Raised when an authorization code or refresh token is rejected."""
    pass


class ProviderDataIncomplete(ProviderError):
    """Profile fetch succeeded but required fields are missing."""

    def __init__(self, message: str, missing_fields: Optional[list] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.missing_fields = missing_fields or []
