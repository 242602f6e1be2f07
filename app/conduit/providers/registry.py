"""Provider registry: priority routing, fan-out, health checks and failover.

Every call into a provider is bounded by ``provider_timeout`` and any error it
raises is normalized to a `FailureRecord` at this boundary, so callers of the
multi-provider operations only ever see `AllProvidersFailedError`.
"""

import asyncio
import threading
import time
from typing import Awaitable, Callable, Optional, TypeVar

from app.config import RegistrySettings
from app.conduit.core.logging_config import get_logger
from app.conduit.core.types import (
    AggregateStats,
    FailureRecord,
    ProviderEvent,
    ProviderEventType,
    ProviderHealth,
    ProviderStats,
    RemoteResource,
    RemoteResourceIndex,
    ResourceCategory,
    SearchOptions,
    SearchResponse,
    SearchResult,
)

from .base import ResourceProvider, elapsed_ms
from .errors import (
    AllProvidersFailedError,
    ProviderError,
    ProviderUnavailableError,
    ResourceNotFoundError,
    to_failure,
)
from .scoring import build_facets

T = TypeVar("T")

EventListener = Callable[[ProviderEvent], None]

logger = get_logger(__name__)


class ProviderRegistry:
    """Owns the configured providers and routes calls between them.

    Args:
        settings: Health check interval, failure threshold, auto-disable flag
            and per-provider timeout.
    """

    def __init__(self, settings: Optional[RegistrySettings] = None):
        self.settings = settings or RegistrySettings()
        self._providers: dict[str, ResourceProvider] = {}
        self._health: dict[str, ProviderHealth] = {}
        self._auto_disabled: set[str] = set()
        self._listeners: list[EventListener] = []
        self._lock = threading.Lock()
        self._health_task: Optional[asyncio.Task] = None

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    async def register(self, provider: ResourceProvider) -> None:
        """Initialize and add a provider.

        Raises:
            ValueError: If a provider with the same name is registered.
            ProviderError: If the provider fails to initialize; it is not added.
        """
        if not isinstance(provider, ResourceProvider):
            raise TypeError(f"{provider!r} does not implement ResourceProvider")
        if provider.name in self._providers:
            raise ValueError(f"Provider '{provider.name}' is already registered")

        await provider.initialize()
        self._providers[provider.name] = provider
        logger.info(
            "Provider registered",
            provider=provider.name,
            priority=provider.priority,
            enabled=provider.enabled,
        )
        self._emit("provider-registered", provider.name, priority=provider.priority)

    async def unregister(self, name: str) -> bool:
        provider = self._providers.pop(name, None)
        if provider is None:
            return False
        with self._lock:
            self._health.pop(name, None)
            self._auto_disabled.discard(name)
        await provider.shutdown()
        logger.info("Provider unregistered", provider=name)
        self._emit("provider-unregistered", name)
        return True

    def get_provider(self, name: str) -> Optional[ResourceProvider]:
        return self._providers.get(name)

    def get_providers(self, enabled_only: bool = False) -> list[ResourceProvider]:
        """Providers ordered by priority (lowest first); ties keep registration order."""
        providers = [p for p in self._providers.values() if p.enabled or not enabled_only]
        return sorted(providers, key=lambda p: p.priority)

    def enable(self, name: str) -> bool:
        provider = self._providers.get(name)
        if provider is None:
            return False
        with self._lock:
            self._auto_disabled.discard(name)
            health = self._health.get(name)
            if health is not None:
                health.consecutive_failures = 0
        if not provider.enabled:
            provider.enabled = True
            logger.info("Provider enabled", provider=name)
            self._emit("provider-enabled", name)
        return True

    def disable(self, name: str, reason: str = "manual") -> bool:
        provider = self._providers.get(name)
        if provider is None:
            return False
        if provider.enabled:
            provider.enabled = False
            logger.warning("Provider disabled", provider=name, reason=reason)
            self._emit("provider-disabled", name, reason=reason)
        return True

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event_type: ProviderEventType, provider: str, **data) -> None:
        event = ProviderEvent(type=event_type, provider=provider, data=data)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Provider event listener failed", event=event_type)

    # -------------------------------------------------------------------------
    # Single-provider operations
    # -------------------------------------------------------------------------

    def _require(self, name: str) -> ResourceProvider:
        provider = self._providers.get(name)
        if provider is None:
            raise ProviderUnavailableError(f"Provider '{name}' not found", name)
        if not provider.enabled:
            raise ProviderUnavailableError(f"Provider '{name}' is disabled", name)
        return provider

    async def _call(self, provider: ResourceProvider, op: Callable[[], Awaitable[T]]) -> T:
        """Run one provider call under the timeout, reporting real failures."""
        try:
            return await asyncio.wait_for(op(), timeout=self.settings.provider_timeout)
        except ResourceNotFoundError:
            raise
        except asyncio.TimeoutError:
            self._emit("provider-error", provider.name, kind="timeout")
            raise ProviderUnavailableError(
                f"Provider '{provider.name}' timed out after {self.settings.provider_timeout}s",
                provider.name,
            )
        except ProviderError as exc:
            self._emit("provider-error", provider.name, kind=exc.kind, message=str(exc))
            raise

    async def fetch_index(self, name: str) -> RemoteResourceIndex:
        provider = self._require(name)
        return await self._call(provider, provider.fetch_index)

    async def fetch_resource(self, name: str, resource_id: str, category: ResourceCategory) -> RemoteResource:
        provider = self._require(name)
        return await self._call(provider, lambda: provider.fetch_resource(resource_id, category))

    async def search(self, name: str, query: str, options: Optional[SearchOptions] = None) -> SearchResponse:
        provider = self._require(name)
        return await self._call(provider, lambda: provider.search(query, options))

    # -------------------------------------------------------------------------
    # Multi-provider operations
    # -------------------------------------------------------------------------

    async def fetch_resource_any(self, resource_id: str, category: ResourceCategory) -> RemoteResource:
        """Return the resource from the first provider, in priority order, that has it.

        Raises:
            AllProvidersFailedError: No enabled provider produced the resource.
        """
        failures: list[FailureRecord] = []
        for provider in self.get_providers(enabled_only=True):
            try:
                resource = await self._call(
                    provider, lambda p=provider: p.fetch_resource(resource_id, category)
                )
            except Exception as exc:
                failures.append(to_failure(provider.name, exc))
                logger.debug(
                    "Provider could not serve resource",
                    provider=provider.name,
                    resource_id=resource_id,
                    reason=failures[-1].kind,
                )
                continue
            return resource
        raise AllProvidersFailedError(
            f"Resource {category}/{resource_id} unavailable from all providers", failures
        )

    async def fetch_all_indexes(self) -> tuple[dict[str, RemoteResourceIndex], list[FailureRecord]]:
        providers = self.get_providers(enabled_only=True)
        results = await asyncio.gather(
            *(self._call(p, p.fetch_index) for p in providers), return_exceptions=True
        )
        indexes: dict[str, RemoteResourceIndex] = {}
        failures: list[FailureRecord] = []
        for provider, result in zip(providers, results):
            if isinstance(result, BaseException):
                failures.append(to_failure(provider.name, result))
            else:
                indexes[provider.name] = result
        return indexes, failures

    async def search_all(self, query: str, options: Optional[SearchOptions] = None) -> SearchResponse:
        """Search every enabled provider concurrently and merge the rankings.

        Duplicate ids keep the higher-scoring entry; ties favour the provider
        with the better priority.
        """
        started = time.perf_counter()
        options = options or SearchOptions()
        providers = self.get_providers(enabled_only=True)
        # Each provider returns enough results to fill the merged window.
        per_provider = options.model_copy(
            update={"max_results": options.max_results + options.offset, "offset": 0}
        )
        results = await asyncio.gather(
            *(self._call(p, lambda p=p: p.search(query, per_provider)) for p in providers),
            return_exceptions=True,
        )

        best: dict[str, SearchResult] = {}
        total_matches = 0
        failures: list[FailureRecord] = []
        for provider, result in zip(providers, results):
            if isinstance(result, BaseException):
                failures.append(to_failure(provider.name, result))
                continue
            total_matches += result.total_matches
            for item in result.results:
                current = best.get(item.resource.id)
                if current is None or item.score > current.score:
                    best[item.resource.id] = item

        merged = sorted(best.values(), key=lambda r: r.score, reverse=True)
        window = merged[options.offset:options.offset + options.max_results]
        return SearchResponse(
            results=tuple(window),
            total_matches=total_matches,
            query=query,
            search_time_ms=elapsed_ms(started),
            facets=build_facets(merged),
            failures=tuple(failures),
        )

    # -------------------------------------------------------------------------
    # Health
    # -------------------------------------------------------------------------

    async def check_health(self, name: str) -> ProviderHealth:
        """Run one provider's health routine and apply the failover policy.

        Unhealthy results increment the consecutive-failure count, healthy
        results reset it and re-enable an auto-disabled provider. Degraded
        results leave the count unchanged.
        """
        provider = self._providers.get(name)
        if provider is None:
            raise ProviderUnavailableError(f"Provider '{name}' not found", name)

        started = time.perf_counter()
        try:
            health = await asyncio.wait_for(
                provider.health_check(), timeout=self.settings.provider_timeout
            )
        except asyncio.TimeoutError:
            health = ProviderHealth.unhealthy(name, "Health check timed out", elapsed_ms(started))
        except Exception as exc:
            health = ProviderHealth.unhealthy(name, str(exc) or type(exc).__name__, elapsed_ms(started))

        with self._lock:
            previous = self._health.get(name)
            failures = previous.consecutive_failures if previous else 0
            if health.status == "unhealthy":
                failures += 1
            elif health.status == "healthy":
                failures = 0
            health.consecutive_failures = failures
            self._health[name] = health
            should_disable = (
                self.settings.auto_disable_unhealthy
                and provider.enabled
                and failures >= self.settings.max_consecutive_failures
            )
            should_enable = (
                health.status == "healthy" and not provider.enabled and name in self._auto_disabled
            )
            if should_disable:
                self._auto_disabled.add(name)

        if previous is None or previous.status != health.status:
            logger.info(
                "Provider health changed",
                provider=name,
                previous=previous.status if previous else None,
                status=health.status,
            )
            self._emit(
                "provider-health-changed",
                name,
                previous=previous.status if previous else None,
                status=health.status,
            )
        if should_disable:
            self.disable(name, reason=f"{failures} consecutive failed health checks")
        elif should_enable:
            self.enable(name)
        return health

    async def check_all_health(self) -> dict[str, ProviderHealth]:
        names = list(self._providers)
        results = await asyncio.gather(*(self.check_health(n) for n in names))
        return dict(zip(names, results))

    def get_health(self, name: Optional[str] = None):
        """Last recorded health for one provider, or for all when name is None."""
        with self._lock:
            if name is not None:
                return self._health.get(name)
            return dict(self._health)

    def start_health_checks(self) -> None:
        if self._health_task is not None and not self._health_task.done():
            return
        self._health_task = asyncio.create_task(self._health_loop())
        logger.info("Health checks started", interval=self.settings.health_check_interval)

    async def stop_health_checks(self) -> None:
        task, self._health_task = self._health_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _health_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.health_check_interval)
            try:
                await self.check_all_health()
            except Exception:
                logger.exception("Health check round failed")

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def get_provider_stats(self, name: str) -> Optional[ProviderStats]:
        provider = self._providers.get(name)
        return provider.get_stats() if provider else None

    def get_all_stats(self) -> dict[str, ProviderStats]:
        return {p.name: p.get_stats() for p in self.get_providers()}

    def get_aggregate_stats(self) -> AggregateStats:
        stats = list(self.get_all_stats().values())
        health = self.get_health()
        timed = [s.avg_response_time_ms for s in stats if s.avg_response_time_ms > 0]
        return AggregateStats(
            total_providers=len(self._providers),
            enabled_providers=sum(1 for p in self._providers.values() if p.enabled),
            healthy_providers=sum(1 for h in health.values() if h.status == "healthy"),
            total_requests=sum(s.total_requests for s in stats),
            successful_requests=sum(s.successful_requests for s in stats),
            failed_requests=sum(s.failed_requests for s in stats),
            cached_requests=sum(s.cached_requests for s in stats),
            resources_fetched=sum(s.resources_fetched for s in stats),
            tokens_fetched=sum(s.tokens_fetched for s in stats),
            avg_response_time_ms=sum(timed) / len(timed) if timed else 0.0,
        )

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------

    async def shutdown(self) -> None:
        await self.stop_health_checks()
        for name in list(self._providers):
            try:
                await self.unregister(name)
            except Exception:
                logger.exception("Provider shutdown failed", provider=name)
        self._listeners.clear()
