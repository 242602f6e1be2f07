"""Test suite for per-event token accounting.

Covers baseline strategies, cost arithmetic, deduplication, disabled
tracking, malformed counters and runtime reconfiguration.
"""
import threading
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace

import pytest

from app.config import CostRates, TokenTrackingSettings
from app.conduit.tokens.tracker import (
    NormalizedUsage,
    TokenTracker,
    calculate_cost,
    normalize_usage,
)


@pytest.fixture
def tracker() -> TokenTracker:
    """Provide a tracker on default settings (no_jit, dedup on)."""
    return TokenTracker(TokenTrackingSettings())


# ═══════════════════════════════════════════════════════════════════════════
# BASELINE & EFFICIENCY
# ═══════════════════════════════════════════════════════════════════════════

def test_no_jit_baseline_counts_preloaded_resources(tracker: TokenTracker):
    """1000 in + 500 out with 5 resources at 500 tokens each saves 2500 of 4000."""
    record = tracker.track("m1", {"input_tokens": 1000, "output_tokens": 500}, {"resource_count": 5})

    assert record.total_tokens == 1500
    assert record.baseline_tokens == 4000
    assert record.tokens_saved == 2500
    assert record.efficiency_percentage == pytest.approx(62.5)


def test_no_cache_baseline_multiplies_cache_reads():
    tracker = TokenTracker(TokenTrackingSettings(baseline_strategy="no_cache"))
    record = tracker.track("m1", {"input_tokens": 100, "output_tokens": 50, "cache_read_input_tokens": 200})

    assert record.baseline_tokens == 100 + 50 + 200 * 10
    assert record.tokens_saved == record.baseline_tokens - 350


def test_custom_baseline_uses_supplied_function():
    tracker = TokenTracker(
        TokenTrackingSettings(baseline_strategy="custom"),
        baseline_fn=lambda usage, count: usage.total * 3,
    )
    record = tracker.track("m1", {"input_tokens": 100})

    assert record.baseline_tokens == 300
    assert record.tokens_saved == 200


def test_custom_baseline_without_function_falls_back_to_input_plus_output():
    tracker = TokenTracker(TokenTrackingSettings(baseline_strategy="custom"))
    record = tracker.track("m1", {"input_tokens": 100, "output_tokens": 20})

    assert record.baseline_tokens == 120
    assert record.tokens_saved == 0
    assert record.efficiency_percentage == 0.0


def test_savings_never_negative(tracker: TokenTracker):
    """Actual usage above the baseline clamps savings to zero."""
    record = tracker.track("m1", {"input_tokens": 10, "cache_creation_input_tokens": 5000})

    assert record.baseline_tokens == 10
    assert record.tokens_saved == 0
    assert record.cost_savings_usd == 0.0


# ═══════════════════════════════════════════════════════════════════════════
# COST
# ═══════════════════════════════════════════════════════════════════════════

def test_cost_at_default_rates():
    """1M input and 100k output at $3/M and $15/M cost $4.50."""
    usage = NormalizedUsage(input=1_000_000, output=100_000)
    assert calculate_cost(usage, CostRates()) == pytest.approx(4.50)


def test_cost_prices_each_token_type():
    usage = NormalizedUsage(cache_read=1_000_000, cache_creation=1_000_000)
    assert calculate_cost(usage, CostRates()) == pytest.approx(0.30 + 3.75)


def test_record_cost_savings_priced_at_input_rate(tracker: TokenTracker):
    record = tracker.track("m1", {"input_tokens": 1000, "output_tokens": 500}, {"resource_count": 5})

    assert record.cost_usd == pytest.approx(1000 * 3 / 1e6 + 500 * 15 / 1e6)
    assert record.cost_savings_usd == pytest.approx(max(0.0, 4000 * 3 / 1e6 - record.cost_usd))


# ═══════════════════════════════════════════════════════════════════════════
# DEDUPLICATION & NO-OPS
# ═══════════════════════════════════════════════════════════════════════════

def test_duplicate_message_id_is_ignored(tracker: TokenTracker):
    assert tracker.track("m1", {"input_tokens": 10}) is not None
    assert tracker.track("m1", {"input_tokens": 99}) is None
    assert tracker.has_tracked("m1")
    assert tracker.tracked_count == 1


def test_concurrent_tracking_of_one_id_yields_one_record(tracker: TokenTracker):
    workers = 8
    barrier = threading.Barrier(workers)

    def track_once(_):
        barrier.wait()
        return tracker.track("shared", {"input_tokens": 10})

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(track_once, range(workers)))

    assert sum(r is not None for r in results) == 1
    assert tracker.tracked_count == 1


def test_deduplication_off_tracks_repeats():
    tracker = TokenTracker(TokenTrackingSettings(deduplication=False))
    first = tracker.track("m1", {"input_tokens": 10})
    second = tracker.track("m1", {"input_tokens": 10})

    assert first is not None and second is not None
    assert tracker.has_tracked("m1")


def test_clear_tracked_allows_reuse(tracker: TokenTracker):
    tracker.track("m1", {"input_tokens": 10})
    tracker.clear_tracked()
    assert tracker.track("m1", {"input_tokens": 10}) is not None


def test_disabled_tracking_returns_none():
    tracker = TokenTracker(TokenTrackingSettings(enabled=False))
    assert tracker.track("m1", {"input_tokens": 10}) is None
    assert tracker.tracked_count == 0


@pytest.mark.parametrize("raw", [
    None,
    {},
    {"input_tokens": -5, "output_tokens": "lots"},
    {"input_tokens": None, "output_tokens": True},
])
def test_malformed_counters_become_zero(tracker: TokenTracker, raw):
    """Missing, negative or non-numeric counters never raise."""
    record = tracker.track("m1", raw)
    assert record.total_tokens == 0
    assert record.efficiency_percentage == 0.0


def test_normalize_reads_camel_case_and_attributes():
    assert normalize_usage({"inputTokens": 7, "cacheReadTokens": 3}) == NormalizedUsage(input=7, cache_read=3)
    usage = normalize_usage(SimpleNamespace(input_tokens=4, output_tokens=2))
    assert (usage.input, usage.output, usage.total) == (4, 2, 6)


def test_metadata_carried_into_record(tracker: TokenTracker):
    record = tracker.track("m1", {"input_tokens": 1}, {
        "category": "agent",
        "resourceUri": "local://agents/typescript-developer",
        "resourceCount": "2",
    })
    assert record.category == "agent"
    assert record.resource_uri == "local://agents/typescript-developer"
    assert record.baseline_tokens == 1 + 2 * 500


def test_update_config_switches_strategy(tracker: TokenTracker):
    updated = tracker.update_config(baseline_strategy="no_cache", cache_multiplier=4)

    assert updated.baseline_strategy == "no_cache"
    record = tracker.track("m1", {"cache_read_input_tokens": 100})
    assert record.baseline_tokens == 400
