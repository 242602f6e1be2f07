"""Filesystem resource provider.

Resources are markdown files under per-category directories of a root path::

    resources/
        agents/typescript-developer.md
        skills/testing/pytest-fixtures.md
        guides/...        (served as the ``pattern`` category)

The resource id is the file path relative to its category directory, without
the ``.md`` suffix.
"""

import time
from datetime import timedelta
from pathlib import Path
from typing import Callable, Optional

from app.config import LocalProviderSettings
from app.conduit.core.logging_config import get_logger
from app.conduit.core.types import (
    ProviderHealth,
    ProviderStats,
    RemoteResource,
    RemoteResourceIndex,
    ResourceCategory,
    SearchOptions,
    SearchResponse,
    utc_now,
)

from .base import elapsed_ms
from .cache import ExpiringCache
from .errors import ProviderUnavailableError, ResourceNotFoundError
from .frontmatter import markdown_resource
from .scoring import RELEVANCE_FLOOR, rank
from .stats import StatsRecorder

# Directory name -> category. Order decides lookup precedence.
CATEGORY_DIRECTORIES: dict[str, str] = {
    "agents": "agent",
    "skills": "skill",
    "examples": "example",
    "patterns": "pattern",
    "guides": "pattern",
    "workflows": "workflow",
}

RECENT_ERROR_WINDOW = timedelta(minutes=5)
_INDEX_KEY = "__index__"


class LocalProvider:
    """Serve resources from a local directory tree.

    Attributes:
        name: Always ``"local"``.
        priority: 0, the most trusted and cheapest source.
        enabled: Routing flag toggled by the registry.
    """

    name = "local"
    priority = 0

    def __init__(
        self,
        resources_path: str,
        cache_ttl: float = 4 * 3600,
        index_cache_ttl: float = 24 * 3600,
        cache_size: int = 200,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.root = Path(resources_path)
        self.enabled = enabled
        self.index_cache_ttl = index_cache_ttl
        self._cache: ExpiringCache[object] = ExpiringCache(cache_ttl, cache_size, clock)
        self._stats = StatsRecorder(self.name)
        self._logger = get_logger(__name__, provider=self.name)

    @classmethod
    def from_settings(cls, settings: LocalProviderSettings) -> "LocalProvider":
        return cls(
            resources_path=settings.resolved_path(),
            cache_ttl=settings.cache_ttl,
            index_cache_ttl=settings.index_cache_ttl,
            cache_size=settings.cache_size,
            enabled=settings.enabled,
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        if not self.root.is_dir():
            raise ProviderUnavailableError(
                f"Resources directory not found: {self.root}", self.name
            )
        self._logger.info("Local provider initialized", path=str(self.root))

    async def shutdown(self) -> None:
        self._cache.clear()

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def fetch_index(self) -> RemoteResourceIndex:
        started = time.perf_counter()
        cached = self._cache.get(_INDEX_KEY)
        if cached is not None:
            self._stats.record_cache_hit()
            return cached
        try:
            index = self._scan()
        except OSError as exc:
            self._stats.record_failure(elapsed_ms(started))
            raise ProviderUnavailableError(f"Failed to scan {self.root}: {exc}", self.name, exc)
        self._stats.record_success(elapsed_ms(started), resources=index.total_count)
        return index

    async def fetch_resource(self, resource_id: str, category: ResourceCategory) -> RemoteResource:
        started = time.perf_counter()
        key = (category, resource_id)
        cached = self._cache.get(key)
        if cached is not None:
            self._stats.record_cache_hit(resources=1, tokens=cached.estimated_tokens)
            return cached

        located = self._locate(resource_id, category)
        if located is None:
            # A lookup miss is a completed request, not a backend failure.
            self._stats.record_success(elapsed_ms(started))
            raise ResourceNotFoundError(resource_id, self.name, category)
        try:
            resource = self._load(*located, resource_id, category)
        except OSError as exc:
            self._stats.record_failure(elapsed_ms(started))
            raise ProviderUnavailableError(f"Failed to read {located[0]}: {exc}", self.name, exc)

        self._cache.set(key, resource)
        self._stats.record_success(
            elapsed_ms(started), resources=1, tokens=resource.estimated_tokens
        )
        return resource

    async def search(self, query: str, options: Optional[SearchOptions] = None) -> SearchResponse:
        started = time.perf_counter()
        try:
            index = self._cache.get(_INDEX_KEY) or self._scan()
        except OSError as exc:
            self._stats.record_failure(elapsed_ms(started))
            raise ProviderUnavailableError(f"Failed to scan {self.root}: {exc}", self.name, exc)
        response = rank(query, index.resources, options, started=started, default_min_score=RELEVANCE_FLOOR)
        self._stats.record_success(elapsed_ms(started))
        return response

    async def health_check(self) -> ProviderHealth:
        started = time.perf_counter()
        if not self.root.is_dir():
            return ProviderHealth.unhealthy(
                self.name, f"Resources directory not found: {self.root}", elapsed_ms(started)
            )

        rate = self._stats.success_rate
        last_error = self._stats.last_error_at
        status, error = "healthy", None
        if rate < 0.5:
            status, error = "unhealthy", f"Success rate {rate:.0%}"
        elif rate < 0.9:
            status, error = "degraded", f"Success rate {rate:.0%}"
        elif last_error is not None and utc_now() - last_error < RECENT_ERROR_WINDOW:
            status, error = "degraded", "Recent read error"
        return ProviderHealth(
            provider=self.name,
            status=status,
            response_time_ms=elapsed_ms(started),
            reachable=True,
            authenticated=True,
            error=error,
        )

    def get_stats(self) -> ProviderStats:
        return self._stats.snapshot()

    def reset_stats(self) -> None:
        self._stats.reset()

    # -------------------------------------------------------------------------
    # Filesystem helpers
    # -------------------------------------------------------------------------

    def _scan(self) -> RemoteResourceIndex:
        resources = []
        for directory, category in CATEGORY_DIRECTORIES.items():
            base = self.root / directory
            if not base.is_dir():
                continue
            for path in sorted(base.rglob("*.md")):
                resource_id = path.relative_to(base).with_suffix("").as_posix()
                try:
                    resources.append(self._load(path, directory, resource_id, category).metadata)
                except (OSError, ValueError) as exc:
                    self._logger.warning(
                        "Skipping unreadable resource", path=str(path), error=str(exc)
                    )
        index = RemoteResourceIndex.build(self.name, resources)
        self._cache.set(_INDEX_KEY, index, ttl=self.index_cache_ttl)
        self._logger.debug("Indexed local resources", count=index.total_count)
        return index

    def _locate(self, resource_id: str, category: str) -> Optional[tuple[Path, str]]:
        root = self.root.resolve()
        for directory, dir_category in CATEGORY_DIRECTORIES.items():
            if dir_category != category:
                continue
            candidate = (self.root / directory / f"{resource_id}.md").resolve()
            if not candidate.is_relative_to(root):
                return None
            if candidate.is_file():
                return candidate, directory
        return None

    def _load(self, path: Path, directory: str, resource_id: str, category: str) -> RemoteResource:
        return markdown_resource(
            path.read_text(encoding="utf-8"),
            resource_id=resource_id,
            category=category,
            source=self.name,
            source_uri=f"local://{directory}/{resource_id}",
        )
