"""Token accounting types: usage records, sessions and computed snapshots.

Records are immutable once created. A session is the only mutable structure;
it grows additively as records for new message ids arrive.
"""

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import ConfigDict, Field, computed_field, field_serializer, model_validator

from .base import CanonicalModel, StateModel, utc_now


# ═══════════════════════════════════════════════════════════════════════════
# INTERNAL ENUMS (Not exported in __init__.py)
# ═══════════════════════════════════════════════════════════════════════════

class _TimePeriod(str, Enum):
    LAST_HOUR = "last_hour"
    LAST_DAY = "last_day"
    LAST_WEEK = "last_week"
    LAST_MONTH = "last_month"
    ALL_TIME = "all_time"


TimePeriod = Literal["last_hour", "last_day", "last_week", "last_month", "all_time"]

TIME_PERIODS: tuple[str, ...] = tuple(p.value for p in _TimePeriod)

TrendDirection = Literal["improving", "declining", "stable"]

RankMetric = Literal["efficiency", "savings", "tokens"]

BaselineStrategy = Literal["no_jit", "no_cache", "custom"]


# ═══════════════════════════════════════════════════════════════════════════
# USAGE RECORDS
# ═══════════════════════════════════════════════════════════════════════════

class TokenUsageRecord(CanonicalModel):
    """One tracked usage event.

    Attributes:
        message_id: Unique key of the event.
        timestamp: When the event was tracked.
        input_tokens: Uncached prompt tokens.
        output_tokens: Generated tokens.
        cache_read_tokens: Prompt tokens served from the prompt cache.
        cache_creation_tokens: Prompt tokens written to the prompt cache.
        total_tokens: Sum of the four token types.
        baseline_tokens: Tokens the same work would have cost without the
            mechanism being measured.
        tokens_saved: ``max(0, baseline_tokens - total_tokens)``.
        efficiency_percentage: Share of the baseline avoided, 0 to 100.
        cost_usd: Price of the actual usage.
        cost_savings_usd: Price difference against the baseline.
        category: Resource category, when the event was a resource load.
        resource_uri: Source URI of the loaded resource.

    Raises:
        ValueError: If the totals are inconsistent with the components.
    """
    message_id: str = Field(min_length=1)
    timestamp: datetime = Field(default_factory=utc_now)
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    cache_read_tokens: int = Field(default=0, ge=0)
    cache_creation_tokens: int = Field(default=0, ge=0)
    total_tokens: int = Field(default=0, ge=0)
    baseline_tokens: int = Field(default=0, ge=0)
    tokens_saved: int = Field(default=0, ge=0)
    efficiency_percentage: float = Field(default=0.0, ge=0, le=100)
    cost_usd: float = Field(default=0.0, ge=0)
    cost_savings_usd: float = Field(default=0.0, ge=0)
    category: Optional[str] = None
    resource_uri: Optional[str] = None

    @model_validator(mode='after')
    def validate_token_math(self) -> 'TokenUsageRecord':
        calculated = (
            self.input_tokens + self.output_tokens
            + self.cache_read_tokens + self.cache_creation_tokens
        )
        if self.total_tokens != calculated:
            raise ValueError(
                f"Token math mismatch: components sum to {calculated}, "
                f"but total_tokens={self.total_tokens}"
            )
        expected_saved = max(0, self.baseline_tokens - self.total_tokens)
        if self.tokens_saved != expected_saved:
            raise ValueError(
                f"tokens_saved={self.tokens_saved} does not match "
                f"max(0, baseline - total)={expected_saved}"
            )
        return self


class Session(StateModel):
    """A logical grouping of usage records with running totals.

    The tracked id set keeps O(1) membership; it is emitted as an array.
    """
    # Serialized bodies carry the computed totals; they are dropped on re-validation.
    model_config = ConfigDict(extra='ignore')

    session_id: str
    start_time: datetime = Field(default_factory=utc_now)
    end_time: Optional[datetime] = None
    tracked_message_ids: set[str] = Field(default_factory=set)
    usage_records: list[TokenUsageRecord] = Field(default_factory=list)
    total_tokens: int = 0
    total_baseline_tokens: int = 0
    total_tokens_saved: int = 0
    total_cost_usd: float = 0.0
    total_cost_savings_usd: float = 0.0

    @computed_field(alias="messageCount")
    @property
    def message_count(self) -> int:
        return len(self.tracked_message_ids)

    @computed_field(alias="sessionEfficiency")
    @property
    def session_efficiency(self) -> float:
        if self.total_baseline_tokens <= 0:
            return 0.0
        return self.total_tokens_saved / self.total_baseline_tokens * 100

    @field_serializer("tracked_message_ids")
    def serialize_tracked_ids(self, ids: set[str]) -> list[str]:
        return sorted(ids)

    def absorb(self, record: TokenUsageRecord) -> bool:
        """Add a record's contribution if its message id is new here.

        Returns:
            True if the session changed.
        """
        if record.message_id in self.tracked_message_ids:
            return False
        self.tracked_message_ids.add(record.message_id)
        self.usage_records.append(record)
        self.total_tokens += record.total_tokens
        self.total_baseline_tokens += record.baseline_tokens
        self.total_tokens_saved += record.tokens_saved
        self.total_cost_usd += record.cost_usd
        self.total_cost_savings_usd += record.cost_savings_usd
        return True


# ═══════════════════════════════════════════════════════════════════════════
# AGGREGATES
# ═══════════════════════════════════════════════════════════════════════════

class ResourceRanking(CanonicalModel):
    """Per-resource totals merged across every load of the same URI."""
    resource_uri: str
    category: str
    load_count: int
    total_tokens: int
    baseline_tokens: int
    tokens_saved: int
    efficiency: float
    cost_usd: float
    cost_savings_usd: float


class CategoryMetrics(CanonicalModel):
    category: str
    load_count: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_tokens: int = 0
    total_tokens: int = 0
    baseline_tokens: int = 0
    tokens_saved: int = 0
    efficiency: float = 0.0
    cost_usd: float = 0.0
    cost_savings_usd: float = 0.0
    top_resources: tuple[ResourceRanking, ...] = ()


class OverallMetrics(CanonicalModel):
    total_messages: int = 0
    total_tokens: int = 0
    baseline_tokens: int = 0
    tokens_saved: int = 0
    efficiency: float = 0.0
    cost_usd: float = 0.0
    cost_savings_usd: float = 0.0


class CacheMetrics(CanonicalModel):
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    cache_read_tokens: int = 0
    cache_creation_tokens: int = 0
    cache_tokens_saved: int = 0


class TrendMetrics(CanonicalModel):
    efficiency_delta: float = 0.0
    tokens_saved_delta: int = 0
    cost_savings_delta: float = 0.0
    direction: TrendDirection = "stable"


class EfficiencySnapshot(CanonicalModel):
    """Point-in-time aggregate over one window; computed, never stored."""
    timestamp: datetime = Field(default_factory=utc_now)
    period: str
    overall: OverallMetrics = Field(default_factory=OverallMetrics)
    by_category: tuple[CategoryMetrics, ...] = ()
    cache: CacheMetrics = Field(default_factory=CacheMetrics)
    trend: TrendMetrics = Field(default_factory=TrendMetrics)
    top_performers: tuple[ResourceRanking, ...] = ()
    needs_optimization: tuple[ResourceRanking, ...] = ()


# ═══════════════════════════════════════════════════════════════════════════
# FACADE VIEWS
# ═══════════════════════════════════════════════════════════════════════════

class UsageSummary(CanonicalModel):
    """Flattened dashboard view of one window."""
    period: str
    total_messages: int
    total_tokens: int
    tokens_saved: int
    efficiency: float
    cost_usd: float
    cost_savings_usd: float
    cache_hit_rate: float
    unique_resources: int
    top_category: str
    timestamp: datetime = Field(default_factory=utc_now)


class CategorySavings(CanonicalModel):
    category: str
    cost_usd: float
    baseline_cost_usd: float
    cost_savings_usd: float
    savings_percentage: float


class CostSavingsReport(CanonicalModel):
    period: str
    total_cost_usd: float
    baseline_cost_usd: float
    total_cost_savings_usd: float
    savings_percentage: float
    efficiency: float
    tokens_saved: int
    by_category: tuple[CategorySavings, ...] = ()
    timestamp: datetime = Field(default_factory=utc_now)


class CategoryBreakdown(CanonicalModel):
    period: str
    categories: tuple[CategoryMetrics, ...] = ()
    timestamp: datetime = Field(default_factory=utc_now)


class TrendReport(CanonicalModel):
    period: str
    trend: TrendMetrics
    overall: OverallMetrics
    timestamp: datetime = Field(default_factory=utc_now)


class StorageStats(CanonicalModel):
    total_records: int
    total_sessions: int
    max_records: int
    oldest_record: Optional[datetime] = None
    newest_record: Optional[datetime] = None
    memory_usage_bytes: int = 0
