"""IPO Lens error hierarchy.

Provides domain-specific exceptions with recovery strategies.
"""

from __future__ import annotations

from typing import Optional


class IpoLensError(Exception):
    """Base exception for all IPO Lens errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for logging/monitoring
        retryable: Whether operation can be safely retried
        recovery_hint: Suggested recovery action
    """

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        retryable: bool = False,
        recovery_hint: Optional[str] = None,
    ):
        self.message = message
        self.code = code
        self.retryable = retryable
        self.recovery_hint = recovery_hint
        super().__init__(message)

    def __str__(self) -> str:
        base = f"[{self.code}] {self.message}"
        if self.recovery_hint:
            base += f" ({self.recovery_hint})"
        return base


class ValidationError(IpoLensError):
    """Raised when input data fails validation."""

    def __init__(
        self,
        message: str,
        details: Optional[dict] = None,
        recovery_hint: Optional[str] = None,
    ):
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            retryable=False,
            recovery_hint=recovery_hint or "Review request parameters",
        )
        self.details = details or {}


class SourceFetchError(IpoLensError):
    """Raised when a provider cannot be reached or answers with an error status.

    Examples:
        - Connection refused or timed out
        - HTTP 403 from bot protection
        - HTTP 5xx from the provider
    """

    def __init__(
        self,
        source: str,
        message: str,
        status_code: Optional[int] = None,
        retryable: bool = True,
    ):
        super().__init__(
            f"{source}: {message}",
            code="SOURCE_FETCH_ERROR",
            retryable=retryable,
            recovery_hint=f"Check {source} availability",
        )
        self.source = source
        self.status_code = status_code


class SourceParseError(IpoLensError):
    """Raised when a provider's markup or payload does not have the expected shape."""

    def __init__(self, source: str, message: str):
        super().__init__(
            f"{source}: {message}",
            code="SOURCE_PARSE_ERROR",
            retryable=False,
            recovery_hint=f"Provider {source} may have changed its layout",
        )
        self.source = source


class PersistenceError(IpoLensError):
    """Raised when a storage write fails during a sync transaction."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(
            message,
            code="PERSISTENCE_ERROR",
            retryable=retryable,
            recovery_hint="Check database connectivity and disk space",
        )


class SyncInProgressError(IpoLensError):
    """Raised when a sync is requested while another one is still running."""

    def __init__(self, message: str = "A sync run is already in progress"):
        super().__init__(
            message,
            code="SYNC_IN_PROGRESS",
            retryable=True,
            recovery_hint="Retry after the current run finishes",
        )


class AnalysisProviderError(IpoLensError):
    """Raised on AI provider failures (bad credentials, quota, malformed reply)."""

    def __init__(self, provider: str, message: str):
        super().__init__(
            f"{provider}: {message}",
            code="ANALYSIS_PROVIDER_ERROR",
            retryable=True,
            recovery_hint=f"Check {provider} API key and quota",
        )
        self.provider = provider


class ConfigError(IpoLensError):
    """Raised on configuration errors."""

    def __init__(self, message: str, recovery_hint: Optional[str] = None):
        super().__init__(
            message,
            code="CONFIG_ERROR",
            retryable=False,
            recovery_hint=recovery_hint or "Check environment variables and config files",
        )
