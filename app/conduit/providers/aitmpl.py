"""Community template catalog provider (aitmpl.com).

The catalog is a single ``components.json`` document listing agents, commands,
hooks, MCP servers, settings, skills and templates, usually with their
markdown bodies inline. Requests pass through a local dual-window token
bucket before touching the network, regardless of the remote service's own
limits.
"""

import asyncio
import math
import random
import time
from typing import Any, Callable, Iterable, Optional, Sequence

import httpx

from app.config import AitmplProviderSettings
from app.conduit.core.logging_config import get_logger
from app.conduit.core.types import (
    ProviderHealth,
    ProviderStats,
    RateLimitInfo,
    RemoteResource,
    RemoteResourceIndex,
    ResourceCategory,
    SearchOptions,
    SearchResponse,
)

from .base import elapsed_ms
from .cache import ExpiringCache
from .errors import (
    ProviderError,
    ProviderUnavailableError,
    RateLimitedError,
    ResourceNotFoundError,
)
from .frontmatter import as_list, parse_frontmatter
from .rate_limit import DualWindowLimiter
from .scoring import RELEVANCE_FLOOR, rank
from .stats import StatsRecorder

# Catalog component type -> resource category.
CATEGORY_MAPPING: dict[str, str] = {
    "agent": "agent",
    "skill": "skill",
    "command": "workflow",
    "template": "example",
    "mcp": "pattern",
    "hook": "pattern",
    "setting": "pattern",
}

MIN_ESTIMATED_TOKENS = 100
BACKOFF_BASE_SECONDS = 1.0
BACKOFF_MAX_SECONDS = 60.0

_CATALOG_KEY = "__catalog__"


def normalize_type(raw: Any) -> Optional[str]:
    """Map ``agents``/``Agent``/``agent`` to the singular catalog type."""
    if not raw:
        return None
    value = str(raw).strip().lower()
    if value in CATEGORY_MAPPING:
        return value
    if value.endswith("s") and value[:-1] in CATEGORY_MAPPING:
        return value[:-1]
    return None


def iter_components(payload: Any) -> Iterable[tuple[dict, Optional[str]]]:
    """Yield ``(component, type_hint)`` pairs from any supported catalog shape.

    Accepted shapes: a bare list, ``{"components": [...]}``, or a mapping of
    type name to list (``{"agents": [...], "commands": [...]}``).
    """
    if isinstance(payload, list):
        for item in payload:
            if isinstance(item, dict):
                yield item, None
        return
    if not isinstance(payload, dict):
        return
    if isinstance(payload.get("components"), list):
        yield from iter_components(payload["components"])
        return
    for key, items in payload.items():
        if isinstance(items, list):
            hint = normalize_type(key)
            for item in items:
                if isinstance(item, dict):
                    yield item, hint


class AitmplProvider:
    """Serve resources from the community template catalog.

    Attributes:
        name: Always ``"aitmpl"``.
        priority: 10, between local files and GitHub.
        enabled: Routing flag toggled by the registry.
    """

    name = "aitmpl"
    priority = 10

    def __init__(
        self,
        api_url: str,
        categories: Sequence[str] = (),
        cache_ttl: float = 24 * 3600,
        resource_cache_ttl: float = 7 * 24 * 3600,
        requests_per_minute: int = 60,
        requests_per_hour: int = 1000,
        timeout: float = 30.0,
        retry_attempts: int = 3,
        retry_backoff: float = BACKOFF_BASE_SECONDS,
        cache_size: int = 500,
        enabled: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.api_url = api_url.rstrip("/")
        self.categories = frozenset(categories)
        self.enabled = enabled
        self.cache_ttl = cache_ttl
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff
        self.limiter = DualWindowLimiter(requests_per_minute, requests_per_hour, clock)
        self._client = httpx.AsyncClient(
            headers={"Accept": "application/json", "User-Agent": "conduit-resource-provider"},
            timeout=timeout,
            transport=transport,
        )
        self._cache: ExpiringCache[object] = ExpiringCache(resource_cache_ttl, cache_size, clock)
        self._stats = StatsRecorder(self.name)
        self._logger = get_logger(__name__, provider=self.name)

    @classmethod
    def from_settings(cls, settings: AitmplProviderSettings, **kwargs) -> "AitmplProvider":
        return cls(
            api_url=settings.api_url,
            categories=settings.categories,
            cache_ttl=settings.cache_ttl,
            resource_cache_ttl=settings.resource_cache_ttl,
            requests_per_minute=settings.requests_per_minute,
            requests_per_hour=settings.requests_per_hour,
            timeout=settings.timeout,
            retry_attempts=settings.retry_attempts,
            cache_size=settings.cache_size,
            enabled=settings.enabled,
            **kwargs,
        )

    @property
    def catalog_url(self) -> str:
        return f"{self.api_url}/components.json"

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        catalog = await self._catalog()
        self._logger.info("AITMPL provider initialized", components=len(catalog))

    async def shutdown(self) -> None:
        self._cache.clear()
        await self._client.aclose()

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def fetch_index(self) -> RemoteResourceIndex:
        started = time.perf_counter()
        cached = self._cache.get(_CATALOG_KEY) is not None
        try:
            catalog = await self._catalog()
        except ProviderError:
            self._stats.record_failure(elapsed_ms(started))
            raise
        index = RemoteResourceIndex.build(self.name, [r.metadata for r in catalog.values()])
        if cached:
            self._stats.record_cache_hit()
        else:
            self._stats.record_success(elapsed_ms(started), resources=index.total_count)
        return index

    async def fetch_resource(self, resource_id: str, category: ResourceCategory) -> RemoteResource:
        started = time.perf_counter()
        key = (category, resource_id)
        cached = self._cache.get(key)
        if cached is not None:
            self._stats.record_cache_hit(resources=1, tokens=cached.estimated_tokens)
            return cached

        try:
            catalog = await self._catalog()
        except ProviderError:
            self._stats.record_failure(elapsed_ms(started))
            raise
        resource = catalog.get(key)
        if resource is None:
            self._stats.record_success(elapsed_ms(started))
            raise ResourceNotFoundError(resource_id, self.name, category)

        self._cache.set(key, resource)
        self._stats.record_success(
            elapsed_ms(started), resources=1, tokens=resource.estimated_tokens
        )
        return resource

    async def search(self, query: str, options: Optional[SearchOptions] = None) -> SearchResponse:
        started = time.perf_counter()
        try:
            catalog = await self._catalog()
        except ProviderError:
            self._stats.record_failure(elapsed_ms(started))
            raise
        response = rank(
            query, (r.metadata for r in catalog.values()), options,
            started=started, default_min_score=RELEVANCE_FLOOR,
        )
        self._stats.record_success(elapsed_ms(started))
        return response

    async def health_check(self) -> ProviderHealth:
        started = time.perf_counter()
        try:
            response = await self._request(self.catalog_url)
        except RateLimitedError as exc:
            return ProviderHealth(
                provider=self.name,
                status="degraded",
                response_time_ms=elapsed_ms(started),
                error=str(exc),
            )
        except ProviderError as exc:
            return ProviderHealth.unhealthy(self.name, str(exc), elapsed_ms(started))

        if response.status_code != 200:
            return ProviderHealth(
                provider=self.name,
                status="unhealthy",
                response_time_ms=elapsed_ms(started),
                error=f"HTTP {response.status_code}",
            )
        minute_left, _ = self.limiter.remaining()
        status = "degraded" if minute_left < self.limiter.minute.capacity * 0.1 else "healthy"
        return ProviderHealth(
            provider=self.name,
            status=status,
            response_time_ms=elapsed_ms(started),
            error="Local rate limit nearly exhausted" if status == "degraded" else None,
        )

    def get_stats(self) -> ProviderStats:
        minute_left, _ = self.limiter.remaining()
        return self._stats.snapshot(
            rate_limit=RateLimitInfo(limit=self.limiter.minute.capacity, remaining=minute_left)
        )

    def reset_stats(self) -> None:
        self._stats.reset()

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------

    async def _catalog(self) -> dict[tuple[str, str], RemoteResource]:
        cached = self._cache.get(_CATALOG_KEY)
        if cached is not None:
            return cached

        response = await self._request(self.catalog_url)
        if response.status_code == 404:
            raise ProviderUnavailableError(f"Catalog not found at {self.catalog_url}", self.name)
        if response.status_code != 200:
            raise ProviderUnavailableError(
                f"Catalog request failed with HTTP {response.status_code}", self.name
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise ProviderUnavailableError("Catalog is not valid JSON", self.name, exc)

        catalog: dict[tuple[str, str], RemoteResource] = {}
        for component, hint in iter_components(payload):
            resource = self._to_resource(component, hint)
            if resource is not None:
                catalog.setdefault((resource.category, resource.id), resource)
        self._cache.set(_CATALOG_KEY, catalog, ttl=self.cache_ttl)
        self._logger.debug("Loaded catalog", components=len(catalog))
        return catalog

    def _to_resource(self, component: dict, hint: Optional[str]) -> Optional[RemoteResource]:
        component_type = normalize_type(component.get("type")) or hint
        name = str(component.get("name") or "").strip()
        if component_type is None or not name:
            return None
        category = CATEGORY_MAPPING[component_type]
        if self.categories and category not in self.categories:
            return None

        meta, body = parse_frontmatter(str(component.get("content") or ""))
        tags = as_list(component.get("tags") or component.get("keywords") or meta.get("tags"))
        if component.get("category"):
            tags.append(str(component["category"]))
        return RemoteResource(
            id=name,
            category=category,
            title=str(component.get("title") or meta.get("name") or name),
            description=str(component.get("description") or meta.get("description") or ""),
            tags=tags,
            capabilities=as_list(meta.get("capabilities")),
            use_when=as_list(meta.get("useWhen") or meta.get("use_when")),
            estimated_tokens=max(MIN_ESTIMATED_TOKENS, math.ceil(len(body) / 4)),
            version=str(component["version"]) if component.get("version") else None,
            source=self.name,
            source_uri=f"aitmpl://{component_type}/{name}",
            content=body or str(component.get("description") or name),
        )

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    def _backoff(self, attempt: int) -> float:
        delay = min(self.retry_backoff * (2 ** attempt), BACKOFF_MAX_SECONDS)
        return delay * (0.5 + random.random() / 2)

    async def _request(self, url: str) -> httpx.Response:
        """GET through the local limiter, with retries.

        Raises:
            RateLimitedError: Local bucket empty, or the server asked for a
                longer pause than the backoff cap.
            ProviderUnavailableError: Retries exhausted.
        """
        last_error = ""
        for attempt in range(self.retry_attempts + 1):
            wait = self.limiter.try_acquire()
            if wait > 0:
                raise RateLimitedError(self.name, wait, f"Local rate limit reached, retry after {wait:.1f}s")
            try:
                response = await self._client.get(url)
            except httpx.TransportError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
            else:
                if response.status_code == 429:
                    retry_after = _retry_after(response, default=self._backoff(attempt))
                    if retry_after > BACKOFF_MAX_SECONDS or attempt >= self.retry_attempts:
                        raise RateLimitedError(self.name, retry_after)
                    await asyncio.sleep(retry_after)
                    continue
                if response.status_code < 500:
                    return response
                last_error = f"HTTP {response.status_code}"

            if attempt < self.retry_attempts:
                await asyncio.sleep(self._backoff(attempt))

        raise ProviderUnavailableError(
            f"AITMPL request failed after {self.retry_attempts + 1} attempts: {last_error}", self.name
        )


def _retry_after(response: httpx.Response, default: float) -> float:
    try:
        return max(0.0, float(response.headers["retry-after"]))
    except (KeyError, ValueError):
        return default
