"""Contract every resource provider satisfies.

Providers are plain classes that structurally match `ResourceProvider`; they
share behaviour through composition (`StatsRecorder`, `ExpiringCache`,
`scoring`) rather than a common superclass.
"""

import time
from typing import Optional, Protocol, runtime_checkable

from app.conduit.core.types import (
    ProviderHealth,
    ProviderStats,
    RemoteResource,
    RemoteResourceIndex,
    ResourceCategory,
    SearchOptions,
    SearchResponse,
)


@runtime_checkable
class ResourceProvider(Protocol):
    """Interface that all resource providers must implement.

    Attributes:
        name: Unique provider name used by the registry.
        priority: Lower values are consulted first.
        enabled: Whether the registry may route calls to this provider.

    `fetch_resource` raises `ResourceNotFoundError`, `RateLimitedError`,
    `ProviderUnavailableError` or `ProviderAuthenticationError`. Every call
    records exactly one stats entry and checks the provider cache before any
    network access.
    """

    name: str
    priority: int
    enabled: bool

    async def initialize(self) -> None:
        """Validate configuration and reach the backend once."""
        ...

    async def shutdown(self) -> None:
        """Release clients and caches."""
        ...

    async def fetch_index(self) -> RemoteResourceIndex:
        ...

    async def fetch_resource(self, resource_id: str, category: ResourceCategory) -> RemoteResource:
        ...

    async def search(self, query: str, options: Optional[SearchOptions] = None) -> SearchResponse:
        ...

    async def health_check(self) -> ProviderHealth:
        ...

    def get_stats(self) -> ProviderStats:
        ...

    def reset_stats(self) -> None:
        ...


def elapsed_ms(started: float) -> float:
    """Milliseconds since a `time.perf_counter()` reading."""
    return (time.perf_counter() - started) * 1000
