"""Test suite for time-windowed metrics over the token store."""
from datetime import datetime, timedelta, timezone

import pytest

from app.conduit.core.types import utc_now
from app.conduit.tokens.metrics import EPOCH, TokenMetrics, resolve_window
from app.conduit.tokens.store import TokenStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestResolveWindow:
    """Named periods and explicit ranges both become half-open windows."""

    def test_named_period(self) -> None:
        start, end = resolve_window("last_day", now=NOW)
        assert start == NOW - timedelta(days=1)
        assert end > NOW

    def test_default_is_last_hour(self) -> None:
        start, _ = resolve_window(now=NOW)
        assert start == NOW - timedelta(hours=1)

    def test_all_time_starts_at_epoch(self) -> None:
        assert resolve_window("all_time", now=NOW)[0] == EPOCH

    def test_explicit_bounds_win(self) -> None:
        start = NOW - timedelta(minutes=10)
        assert resolve_window("last_week", start=start, now=NOW) == (start, NOW)
        assert resolve_window(end=start, now=NOW) == (EPOCH, start)

    def test_unknown_period_rejected(self) -> None:
        with pytest.raises(ValueError, match="Unknown period"):
            resolve_window("fortnight", now=NOW)


@pytest.fixture
def metrics(record_factory) -> TokenMetrics:
    """Metrics over a store with two recent loads and one from two hours ago."""
    store = TokenStore()
    now = utc_now()
    store.save_usage(record_factory(
        "old", 800, 1000, category="skill", resource_uri="u://skill",
        timestamp=now - timedelta(minutes=90), cost=0.01, cost_savings=0.001,
    ))
    store.save_usage(record_factory(
        "a1", 100, 1000, category="agent", resource_uri="u://agent",
        timestamp=now - timedelta(minutes=5), cost=0.02, cost_savings=0.02,
    ), "s1")
    store.save_usage(record_factory(
        "a2", 100, 500, cache_read=50, category="agent", resource_uri="u://agent",
        timestamp=now - timedelta(minutes=1), cost=0.01, cost_savings=0.01,
    ), "s1")
    return TokenMetrics(store)


def test_snapshot_covers_only_the_window(metrics: TokenMetrics):
    snapshot = metrics.get_efficiency_snapshot("last_hour")

    assert snapshot.period == "last_hour"
    assert snapshot.overall.total_messages == 2
    assert snapshot.overall.baseline_tokens == 1500
    assert snapshot.trend.direction == "improving"


def test_all_time_has_no_previous_window(metrics: TokenMetrics):
    snapshot = metrics.get_efficiency_snapshot("all_time")
    assert snapshot.overall.total_messages == 3
    assert snapshot.trend.efficiency_delta == 0.0


def test_custom_range_labelled_custom(metrics: TokenMetrics):
    start = utc_now() - timedelta(hours=3)
    snapshot = metrics.get_efficiency_snapshot(start=start, end=start + timedelta(hours=2))
    assert snapshot.period == "custom"
    assert snapshot.overall.total_messages == 1


def test_summary(metrics: TokenMetrics):
    summary = metrics.get_summary("last_day")

    assert summary.total_messages == 3
    assert summary.unique_resources == 2
    assert summary.top_category == "agent"
    assert summary.cache_hit_rate == pytest.approx(1 / 3)


def test_summary_of_empty_window():
    summary = TokenMetrics(TokenStore()).get_summary()
    assert summary.total_messages == 0
    assert summary.top_category == "none"


def test_cost_savings_report(metrics: TokenMetrics):
    report = metrics.get_cost_savings("last_hour")

    assert report.total_cost_usd == pytest.approx(0.03)
    assert report.baseline_cost_usd == pytest.approx(0.06)
    assert report.savings_percentage == pytest.approx(50.0)
    assert [c.category for c in report.by_category] == ["agent"]


def test_by_category_and_top_resources(metrics: TokenMetrics):
    breakdown = metrics.get_by_category("last_day")
    assert [c.category for c in breakdown.categories] == ["agent", "skill"]

    top = metrics.get_top_resources("tokens", limit=1, period="last_day")
    assert top[0].resource_uri == "u://skill"


def test_session_and_storage(metrics: TokenMetrics):
    session = metrics.calculate_session_efficiency("s1")
    assert session.message_count == 2
    assert metrics.calculate_session_efficiency("nope") is None
    assert metrics.get_storage_stats().total_records == 3
