"""Efficiency math over slices of usage records.

Every function here is pure: it reads only its arguments, so callers may
pass any slice (a time window, a session, a category) and compose results.
Empty input always produces zero-valued output.
"""

from typing import Iterable, Optional, Sequence

from app.conduit.core.types import (
    CacheMetrics,
    CategoryMetrics,
    EfficiencySnapshot,
    OverallMetrics,
    RankMetric,
    ResourceRanking,
    TokenUsageRecord,
    TrendMetrics,
)

UNCATEGORIZED = "uncategorized"
TREND_THRESHOLD = 1.0
# A cache read is billed at a tenth of a regular input token.
CACHE_SAVINGS_MULTIPLIER = 9
LOW_EFFICIENCY_THRESHOLD = 30.0
TOP_PERFORMERS_LIMIT = 5
NEEDS_OPTIMIZATION_LIMIT = 5
CATEGORY_TOP_RESOURCES = 5


def calculate_efficiency(actual: float, baseline: float) -> float:
    """Share of the baseline avoided, in percent.

    >>> calculate_efficiency(1500, 4000)
    62.5
    """
    if baseline <= 0 or actual >= baseline:
        return 0.0
    return (baseline - actual) / baseline * 100


def calculate_savings(actual: int, baseline: int) -> int:
    return max(0, baseline - actual)


def calculate_overall(records: Sequence[TokenUsageRecord]) -> OverallMetrics:
    total = sum(r.total_tokens for r in records)
    baseline = sum(r.baseline_tokens for r in records)
    return OverallMetrics(
        total_messages=len(records),
        total_tokens=total,
        baseline_tokens=baseline,
        tokens_saved=sum(r.tokens_saved for r in records),
        efficiency=calculate_efficiency(total, baseline),
        cost_usd=sum(r.cost_usd for r in records),
        cost_savings_usd=sum(r.cost_savings_usd for r in records),
    )


def get_top_resources(
    records: Iterable[TokenUsageRecord],
    rank_by: RankMetric = "efficiency",
    limit: int = 10,
) -> list[ResourceRanking]:
    """Merge loads by resource URI, then rank.

    Efficiency is recomputed from the summed totals of each resource rather
    than averaged per load. Records without a URI are ignored.
    """
    merged: dict[str, dict] = {}
    for record in records:
        if not record.resource_uri:
            continue
        entry = merged.setdefault(record.resource_uri, {
            "category": record.category or UNCATEGORIZED,
            "load_count": 0,
            "total_tokens": 0,
            "baseline_tokens": 0,
            "tokens_saved": 0,
            "cost_usd": 0.0,
            "cost_savings_usd": 0.0,
        })
        entry["load_count"] += 1
        entry["total_tokens"] += record.total_tokens
        entry["baseline_tokens"] += record.baseline_tokens
        entry["tokens_saved"] += record.tokens_saved
        entry["cost_usd"] += record.cost_usd
        entry["cost_savings_usd"] += record.cost_savings_usd

    rankings = [
        ResourceRanking(
            resource_uri=uri,
            efficiency=calculate_efficiency(e["total_tokens"], e["baseline_tokens"]),
            **e,
        )
        for uri, e in merged.items()
    ]
    key = {
        "efficiency": lambda r: r.efficiency,
        "savings": lambda r: r.tokens_saved,
        "tokens": lambda r: r.total_tokens,
    }[rank_by]
    rankings.sort(key=key, reverse=True)
    return rankings[:limit]


def group_by_category(records: Iterable[TokenUsageRecord]) -> list[CategoryMetrics]:
    """Per-category totals, ordered by tokens saved (highest first)."""
    groups: dict[str, list[TokenUsageRecord]] = {}
    for record in records:
        groups.setdefault(record.category or UNCATEGORIZED, []).append(record)

    metrics = []
    for category, items in groups.items():
        cache_read = sum(r.cache_read_tokens for r in items)
        cache_creation = sum(r.cache_creation_tokens for r in items)
        total = sum(r.total_tokens for r in items)
        baseline = sum(r.baseline_tokens for r in items)
        metrics.append(CategoryMetrics(
            category=category,
            load_count=len(items),
            input_tokens=sum(r.input_tokens for r in items),
            output_tokens=sum(r.output_tokens for r in items),
            cache_read_tokens=cache_read,
            cache_creation_tokens=cache_creation,
            cache_tokens=cache_read + cache_creation,
            total_tokens=total,
            baseline_tokens=baseline,
            tokens_saved=sum(r.tokens_saved for r in items),
            efficiency=calculate_efficiency(total, baseline),
            cost_usd=sum(r.cost_usd for r in items),
            cost_savings_usd=sum(r.cost_savings_usd for r in items),
            top_resources=tuple(get_top_resources(items, "tokens", CATEGORY_TOP_RESOURCES)),
        ))
    metrics.sort(key=lambda m: m.tokens_saved, reverse=True)
    return metrics


def calculate_cache_metrics(records: Sequence[TokenUsageRecord]) -> CacheMetrics:
    hits = sum(1 for r in records if r.cache_read_tokens > 0)
    cache_read = sum(r.cache_read_tokens for r in records)
    return CacheMetrics(
        hits=hits,
        misses=len(records) - hits,
        hit_rate=hits / len(records) if records else 0.0,
        cache_read_tokens=cache_read,
        cache_creation_tokens=sum(r.cache_creation_tokens for r in records),
        cache_tokens_saved=cache_read * CACHE_SAVINGS_MULTIPLIER,
    )


def calculate_trend(current: OverallMetrics, previous: OverallMetrics) -> TrendMetrics:
    """Deltas between two windows; a move of more than one point sets the direction."""
    delta = current.efficiency - previous.efficiency
    if delta > TREND_THRESHOLD:
        direction = "improving"
    elif delta < -TREND_THRESHOLD:
        direction = "declining"
    else:
        direction = "stable"
    return TrendMetrics(
        efficiency_delta=delta,
        tokens_saved_delta=current.tokens_saved - previous.tokens_saved,
        cost_savings_delta=current.cost_savings_usd - previous.cost_savings_usd,
        direction=direction,
    )


def generate_snapshot(
    records: Sequence[TokenUsageRecord],
    period: str,
    previous_records: Optional[Sequence[TokenUsageRecord]] = None,
) -> EfficiencySnapshot:
    """Assemble the full snapshot for one window.

    Without previous records (or with an empty previous window) the trend
    is zero and stable.
    """
    overall = calculate_overall(records)
    if previous_records:
        trend = calculate_trend(overall, calculate_overall(previous_records))
    else:
        trend = TrendMetrics()

    ranked = get_top_resources(records, "efficiency", limit=len(records) or 1)
    needs_optimization = sorted(
        (r for r in ranked if r.efficiency < LOW_EFFICIENCY_THRESHOLD),
        key=lambda r: r.efficiency,
    )
    return EfficiencySnapshot(
        period=period,
        overall=overall,
        by_category=tuple(group_by_category(records)),
        cache=calculate_cache_metrics(records),
        trend=trend,
        top_performers=tuple(ranked[:TOP_PERFORMERS_LIMIT]),
        needs_optimization=tuple(needs_optimization[:NEEDS_OPTIMIZATION_LIMIT]),
    )


# ═══════════════════════════════════════════════════════════════════════════
# FORMATTING
# ═══════════════════════════════════════════════════════════════════════════

def format_efficiency(efficiency: float) -> str:
    if efficiency >= 70:
        label = "excellent"
    elif efficiency >= 50:
        label = "good"
    elif efficiency >= LOW_EFFICIENCY_THRESHOLD:
        label = "fair"
    else:
        label = "poor"
    return f"{efficiency:.1f}% ({label})"


def format_cost(cost: float) -> str:
    if cost < 0.01:
        return f"${cost:.4f}"
    return f"${cost:.2f}"


def format_tokens(tokens: int) -> str:
    if tokens >= 1_000_000:
        return f"{tokens / 1_000_000:.2f}M"
    if tokens >= 1_000:
        return f"{tokens / 1_000:.1f}K"
    return str(tokens)
