"""Provider error taxonomy.

Every provider raises only these types. The registry converts them, and any
unexpected exception, into `FailureRecord` values so multi-provider operations
never leak provider-specific errors.
"""

from typing import Optional, Sequence

from app.conduit.core.types import FailureRecord


class ProviderError(Exception):
    """Base class for provider failures.

    Attributes:
        provider: Name of the provider that failed.
        kind: Stable machine-readable tag used in failure records.
    """

    kind = "error"

    def __init__(self, message: str, provider: str):
        super().__init__(message)
        self.provider = provider

    def to_failure(self) -> FailureRecord:
        return FailureRecord(provider=self.provider, kind=self.kind, message=str(self))


class ResourceNotFoundError(ProviderError):
    """The provider does not hold the requested resource."""

    kind = "not_found"

    def __init__(self, resource_id: str, provider: str, category: Optional[str] = None):
        where = f"{category}/{resource_id}" if category else resource_id
        super().__init__(f"Resource not found: {where}", provider)
        self.resource_id = resource_id
        self.category = category


class RateLimitedError(ProviderError):
    """Local or remote quota exhausted; retry after `retry_after` seconds."""

    kind = "rate_limited"

    def __init__(self, provider: str, retry_after: float, message: Optional[str] = None):
        super().__init__(message or f"Rate limit exceeded, retry after {retry_after:.1f}s", provider)
        self.retry_after = retry_after


class ProviderUnavailableError(ProviderError):
    """Transport failure or provider not usable."""

    kind = "unavailable"

    def __init__(self, message: str, provider: str, cause: Optional[BaseException] = None):
        super().__init__(message, provider)
        self.cause = cause


class ProviderAuthenticationError(ProviderError):
    """Credentials rejected. Terminal, never retried."""

    kind = "authentication"


class AllProvidersFailedError(ProviderUnavailableError):
    """Every candidate provider failed; `failures` lists each reason."""

    def __init__(self, message: str, failures: Sequence[FailureRecord]):
        detail = "; ".join(f"{f.provider}: {f.kind} ({f.message})" for f in failures)
        super().__init__(f"{message}: {detail}" if detail else message, provider="registry")
        self.failures = tuple(failures)


def to_failure(provider: str, exc: BaseException) -> FailureRecord:
    """Normalize any exception raised by a provider call."""
    if isinstance(exc, ProviderError):
        return exc.to_failure()
    if isinstance(exc, TimeoutError):
        return FailureRecord(provider=provider, kind="timeout", message="Provider call timed out")
    return FailureRecord(provider=provider, kind="unexpected", message=str(exc) or type(exc).__name__)
