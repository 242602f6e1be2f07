"""
Public API for Conduit's type system.

Only concrete types and string literals are exported. Internal enums stay
private to their modules.
"""

# ═══════════════════════════════════════════════════════════════════════════
# 1. BASE MODELS
# ═══════════════════════════════════════════════════════════════════════════
from .base import CanonicalModel, StateModel, utc_now

# ═══════════════════════════════════════════════════════════════════════════
# 2. RESOURCES & SEARCH
# ═══════════════════════════════════════════════════════════════════════════
from .resources import (
    RESOURCE_CATEGORIES,
    FailureRecord,
    IndexStats,
    RemoteResource,
    RemoteResourceIndex,
    RemoteResourceMetadata,
    ResourceCategory,
    SearchFacets,
    SearchOptions,
    SearchResponse,
    SearchResult,
)

# ═══════════════════════════════════════════════════════════════════════════
# 3. PROVIDER HEALTH
# ═══════════════════════════════════════════════════════════════════════════
from .health import (
    AggregateStats,
    HealthStatus,
    ProviderEvent,
    ProviderEventType,
    ProviderHealth,
    ProviderStats,
    RateLimitInfo,
)

# ═══════════════════════════════════════════════════════════════════════════
# 4. TOKEN ACCOUNTING
# ═══════════════════════════════════════════════════════════════════════════
from .usage import (
    TIME_PERIODS,
    BaselineStrategy,
    CacheMetrics,
    CategoryBreakdown,
    CategoryMetrics,
    CategorySavings,
    CostSavingsReport,
    EfficiencySnapshot,
    OverallMetrics,
    RankMetric,
    ResourceRanking,
    Session,
    StorageStats,
    TimePeriod,
    TokenUsageRecord,
    TrendDirection,
    TrendMetrics,
    TrendReport,
    UsageSummary,
)

__all__ = [
    "CanonicalModel",
    "StateModel",
    "utc_now",
    "RESOURCE_CATEGORIES",
    "FailureRecord",
    "IndexStats",
    "RemoteResource",
    "RemoteResourceIndex",
    "RemoteResourceMetadata",
    "ResourceCategory",
    "SearchFacets",
    "SearchOptions",
    "SearchResponse",
    "SearchResult",
    "AggregateStats",
    "HealthStatus",
    "ProviderEvent",
    "ProviderEventType",
    "ProviderHealth",
    "ProviderStats",
    "RateLimitInfo",
    "TIME_PERIODS",
    "BaselineStrategy",
    "CacheMetrics",
    "CategoryBreakdown",
    "CategoryMetrics",
    "CategorySavings",
    "CostSavingsReport",
    "EfficiencySnapshot",
    "OverallMetrics",
    "RankMetric",
    "ResourceRanking",
    "Session",
    "StorageStats",
    "TimePeriod",
    "TokenUsageRecord",
    "TrendDirection",
    "TrendMetrics",
    "TrendReport",
    "UsageSummary",
]
