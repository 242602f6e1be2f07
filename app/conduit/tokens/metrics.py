"""Time-windowed views over the token store."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from app.conduit.core.types import (
    CategoryBreakdown,
    CategoryMetrics,
    CategorySavings,
    CostSavingsReport,
    EfficiencySnapshot,
    RankMetric,
    ResourceRanking,
    Session,
    StorageStats,
    TimePeriod,
    TokenUsageRecord,
    TrendReport,
    UsageSummary,
    utc_now,
)

from . import efficiency
from .store import TokenStore

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

PERIOD_DURATIONS: dict[str, Optional[timedelta]] = {
    "last_hour": timedelta(hours=1),
    "last_day": timedelta(days=1),
    "last_week": timedelta(weeks=1),
    "last_month": timedelta(days=30),
    "all_time": None,
}

DEFAULT_PERIOD: TimePeriod = "last_hour"
CUSTOM_PERIOD = "custom"


def resolve_window(
    period: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> tuple[datetime, datetime]:
    """Turn a named period or an explicit range into a half-open window.

    An explicit bound always wins over the period. A missing start falls back
    to the epoch and a missing end to ``now``.

    Raises:
        ValueError: If the period is not one of the known names.
    """
    now = now or utc_now()
    if start is not None or end is not None:
        return start or EPOCH, end or now
    period = period or DEFAULT_PERIOD
    if period not in PERIOD_DURATIONS:
        raise ValueError(f"Unknown period '{period}'")
    duration = PERIOD_DURATIONS[period]
    # The end is nudged past now so records stamped this instant are included.
    window_end = now + timedelta(microseconds=1)
    if duration is None:
        return EPOCH, window_end
    return now - duration, window_end


class TokenMetrics:
    """Facade combining the store with the efficiency functions."""

    def __init__(self, store: TokenStore):
        self.store = store

    def _window(self, period, start, end) -> tuple[str, list[TokenUsageRecord], list[TokenUsageRecord]]:
        label = CUSTOM_PERIOD if start is not None or end is not None else (period or DEFAULT_PERIOD)
        window_start, window_end = resolve_window(period, start, end)
        current = self.store.get_usage_in_range(window_start, window_end)
        previous: list[TokenUsageRecord] = []
        if window_start > EPOCH:
            span = window_end - window_start
            previous = self.store.get_usage_in_range(window_start - span, window_start)
        return label, current, previous

    def get_efficiency_snapshot(
        self,
        period: Optional[TimePeriod] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> EfficiencySnapshot:
        label, current, previous = self._window(period, start, end)
        return efficiency.generate_snapshot(current, label, previous)

    def calculate_session_efficiency(self, session_id: str) -> Optional[Session]:
        return self.store.get_session(session_id)

    def get_by_category(
        self,
        period: Optional[TimePeriod] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> CategoryBreakdown:
        label, current, _ = self._window(period, start, end)
        return CategoryBreakdown(period=label, categories=tuple(efficiency.group_by_category(current)))

    def get_cost_savings(
        self,
        period: Optional[TimePeriod] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> CostSavingsReport:
        label, current, _ = self._window(period, start, end)
        overall = efficiency.calculate_overall(current)
        baseline_cost = overall.cost_usd + overall.cost_savings_usd
        categories = sorted(
            (_category_savings(c) for c in efficiency.group_by_category(current)),
            key=lambda c: c.cost_savings_usd,
            reverse=True,
        )
        return CostSavingsReport(
            period=label,
            total_cost_usd=overall.cost_usd,
            baseline_cost_usd=baseline_cost,
            total_cost_savings_usd=overall.cost_savings_usd,
            savings_percentage=(
                overall.cost_savings_usd / baseline_cost * 100 if baseline_cost > 0 else 0.0
            ),
            efficiency=overall.efficiency,
            tokens_saved=overall.tokens_saved,
            by_category=tuple(categories),
        )

    def get_top_resources(
        self,
        rank_by: RankMetric = "efficiency",
        limit: int = 10,
        period: Optional[TimePeriod] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[ResourceRanking]:
        _, current, _ = self._window(period, start, end)
        return efficiency.get_top_resources(current, rank_by, limit)

    def get_trend(
        self,
        period: Optional[TimePeriod] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> TrendReport:
        snapshot = self.get_efficiency_snapshot(period, start, end)
        return TrendReport(period=snapshot.period, trend=snapshot.trend, overall=snapshot.overall)

    def get_summary(
        self,
        period: Optional[TimePeriod] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> UsageSummary:
        label, current, _ = self._window(period, start, end)
        overall = efficiency.calculate_overall(current)
        categories = efficiency.group_by_category(current)
        return UsageSummary(
            period=label,
            total_messages=overall.total_messages,
            total_tokens=overall.total_tokens,
            tokens_saved=overall.tokens_saved,
            efficiency=overall.efficiency,
            cost_usd=overall.cost_usd,
            cost_savings_usd=overall.cost_savings_usd,
            cache_hit_rate=efficiency.calculate_cache_metrics(current).hit_rate,
            unique_resources=len({r.resource_uri for r in current if r.resource_uri}),
            # Categories arrive sorted by tokens saved.
            top_category=categories[0].category if categories else "none",
        )

    def get_storage_stats(self) -> StorageStats:
        return self.store.get_stats()


def _category_savings(metrics: CategoryMetrics) -> CategorySavings:
    baseline_cost = metrics.cost_usd + metrics.cost_savings_usd
    return CategorySavings(
        category=metrics.category,
        cost_usd=metrics.cost_usd,
        baseline_cost_usd=baseline_cost,
        cost_savings_usd=metrics.cost_savings_usd,
        savings_percentage=metrics.cost_savings_usd / baseline_cost * 100 if baseline_cost > 0 else 0.0,
    )
