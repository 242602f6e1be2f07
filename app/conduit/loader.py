"""Resource loading with token accounting.

`ResourceLoader` is the single entry point the host runtime calls to pull a
resource into an agent's context. It asks the registry for the resource and
records one usage event per load. The first load of a resource is billed as
fresh input; later loads of the same resource are billed as prompt-cache
reads. Accounting is best effort: a missing or failing token system never
fails a load.
"""

import uuid
from collections import Counter
from typing import Optional, Sequence

from app.config import Settings
from app.conduit.core.logging_config import get_logger
from app.conduit.core.types import (
    RemoteResource,
    ResourceCategory,
    SearchOptions,
    TokenUsageRecord,
)
from app.conduit.providers import (
    AitmplProvider,
    GitHubProvider,
    LocalProvider,
    ProviderError,
    ProviderRegistry,
    ResourceProvider,
)
from app.conduit.providers.scoring import RELEVANCE_FLOOR
from app.conduit.tokens import TokenSystem

logger = get_logger(__name__)


def build_providers(settings: Settings) -> list[ResourceProvider]:
    """Instantiate every provider enabled in settings."""
    providers: list[ResourceProvider] = []
    if settings.LOCAL_PROVIDER.enabled:
        providers.append(LocalProvider.from_settings(settings.LOCAL_PROVIDER))
    if settings.AITMPL_PROVIDER.enabled:
        providers.append(AitmplProvider.from_settings(settings.AITMPL_PROVIDER))
    if settings.GITHUB_PROVIDER.enabled:
        providers.append(GitHubProvider.from_settings(settings.GITHUB_PROVIDER))
    return providers


async def create_registry(
    settings: Settings,
    providers: Optional[Sequence[ResourceProvider]] = None,
) -> ProviderRegistry:
    """Build a registry and register providers, skipping any that fail to start."""
    registry = ProviderRegistry(settings.REGISTRY)
    for provider in providers if providers is not None else build_providers(settings):
        try:
            await registry.register(provider)
        except ProviderError as exc:
            logger.error(
                "Provider failed to initialize, skipping",
                provider=provider.name,
                kind=exc.kind,
                error=str(exc),
            )
            await provider.shutdown()
    return registry


class ResourceLoader:
    """Fetches resources through the registry and records their token cost.

    Args:
        registry: Provider registry to load from.
        tokens: Token system; loads still work when it is None.
    """

    def __init__(self, registry: ProviderRegistry, tokens: Optional[TokenSystem] = None):
        self.registry = registry
        self.tokens = tokens
        self._seen: set[tuple[str, str]] = set()
        self._catalog_sizes: dict[str, int] = {}

    async def refresh_catalog(self) -> dict[str, int]:
        """Count known resources per category across all provider indexes."""
        indexes, failures = await self.registry.fetch_all_indexes()
        sizes: Counter = Counter()
        for index in indexes.values():
            sizes.update(index.stats.by_category)
        self._catalog_sizes = dict(sizes)
        for failure in failures:
            logger.warning("Index unavailable", provider=failure.provider, kind=failure.kind)
        return self._catalog_sizes

    def catalog_size(self, category: str) -> int:
        return self._catalog_sizes.get(category, 0)

    async def load(
        self,
        resource_id: str,
        category: ResourceCategory,
        session_id: Optional[str] = None,
        resource_count: Optional[int] = None,
    ) -> RemoteResource:
        """Load one resource from the best available provider.

        Args:
            resource_id: Resource identifier.
            category: Resource category.
            session_id: Session to attribute the usage to.
            resource_count: Resources that would otherwise have been preloaded;
                defaults to the known catalog size of the category.

        Raises:
            AllProvidersFailedError: No provider could serve the resource.
        """
        resource = await self.registry.fetch_resource_any(resource_id, category)
        if resource_count is None:
            resource_count = self.catalog_size(category) or 1
        self._record([resource], session_id, resource_count)
        logger.debug("Resource loaded", resource_id=resource_id, category=category, source=resource.source)
        return resource

    async def load_matching(
        self,
        query: str,
        max_results: int = 3,
        session_id: Optional[str] = None,
        categories: Sequence[ResourceCategory] = (),
    ) -> list[RemoteResource]:
        """Load the best search matches for a query as one accounted event.

        The baseline counts every candidate match, modelling the cost of
        preloading all of them instead of the few actually loaded. Candidates
        must clear `RELEVANCE_FLOOR` on every provider.
        """
        response = await self.registry.search_all(
            query,
            SearchOptions(
                max_results=max_results,
                categories=tuple(categories),
                min_score=RELEVANCE_FLOOR,
            ),
        )
        loaded: list[RemoteResource] = []
        for result in response.results:
            meta = result.resource
            try:
                loaded.append(await self.registry.fetch_resource(meta.source, meta.id, meta.category))
            except ProviderError as exc:
                logger.warning("Matched resource could not be loaded", resource_id=meta.id, error=str(exc))
        if loaded:
            self._record(loaded, session_id, max(response.total_matches, len(loaded)))
        return loaded

    def _record(
        self,
        resources: Sequence[RemoteResource],
        session_id: Optional[str],
        resource_count: int,
    ) -> Optional[TokenUsageRecord]:
        fresh = cached = 0
        for resource in resources:
            key = (resource.category, resource.id)
            if key in self._seen:
                cached += resource.estimated_tokens
            else:
                fresh += resource.estimated_tokens
                self._seen.add(key)

        if self.tokens is None:
            return None
        categories = {r.category for r in resources}
        metadata = {
            "category": categories.pop() if len(categories) == 1 else None,
            "resource_uri": resources[0].source_uri if len(resources) == 1 else None,
            "resource_count": resource_count,
        }
        try:
            return self.tokens.record(
                f"resource-{uuid.uuid4().hex}",
                {"input_tokens": fresh, "cache_read_input_tokens": cached},
                metadata,
                session_id,
            )
        except Exception:
            logger.warning("Usage tracking failed, load continues", exc_info=True)
            return None

    async def shutdown(self) -> None:
        await self.registry.shutdown()
        self._seen.clear()
