"""Shared builders for token accounting tests."""
from datetime import datetime
from typing import Optional

import pytest

from app.conduit.core.types import TokenUsageRecord, utc_now


def build_record(
    message_id: str,
    input_tokens: int = 0,
    baseline: int = 0,
    *,
    cache_read: int = 0,
    category: Optional[str] = "agent",
    resource_uri: Optional[str] = None,
    timestamp: Optional[datetime] = None,
    cost: float = 0.0,
    cost_savings: float = 0.0,
) -> TokenUsageRecord:
    """Build a record whose derived fields are consistent with its inputs."""
    total = input_tokens + cache_read
    saved = max(0, baseline - total)
    return TokenUsageRecord(
        message_id=message_id,
        timestamp=timestamp or utc_now(),
        input_tokens=input_tokens,
        cache_read_tokens=cache_read,
        total_tokens=total,
        baseline_tokens=baseline,
        tokens_saved=saved,
        efficiency_percentage=saved / baseline * 100 if baseline else 0.0,
        cost_usd=cost,
        cost_savings_usd=cost_savings,
        category=category,
        resource_uri=resource_uri,
    )


@pytest.fixture
def record_factory():
    """Return the consistent-record builder."""
    return build_record
