"""Per-event token accounting: deduplication, baseline and cost.

`TokenTracker.track` turns a raw usage payload into a `TokenUsageRecord`.
It returns None for intentional no-ops (tracking disabled, duplicate message
id) and never raises on malformed counters: anything missing, negative or
non-numeric counts as zero.
"""

import threading
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from app.config import CostRates, TokenTrackingSettings
from app.conduit.core.logging_config import get_logger
from app.conduit.core.types import TokenUsageRecord

TOKENS_PER_MILLION = 1_000_000

logger = get_logger(__name__)

# Accepted spellings for each token type in incoming usage payloads.
_USAGE_KEYS: dict[str, tuple[str, ...]] = {
    "input": ("input_tokens", "inputTokens"),
    "output": ("output_tokens", "outputTokens"),
    "cache_read": ("cache_read_input_tokens", "cache_read_tokens", "cacheReadTokens", "cacheReadInputTokens"),
    "cache_creation": (
        "cache_creation_input_tokens", "cache_creation_tokens",
        "cacheCreationTokens", "cacheCreationInputTokens",
    ),
}


@dataclass(frozen=True)
class NormalizedUsage:
    """Sanitized token counts of one event."""
    input: int = 0
    output: int = 0
    cache_read: int = 0
    cache_creation: int = 0

    @property
    def total(self) -> int:
        return self.input + self.output + self.cache_read + self.cache_creation


BaselineFn = Callable[[NormalizedUsage, int], int]


def _count(value: Any) -> int:
    if isinstance(value, bool):
        return 0
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(0, number)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value).strip() or None


def normalize_usage(raw: Any) -> NormalizedUsage:
    """Read the four token counters from a mapping or an attribute object."""
    if raw is None:
        return NormalizedUsage()
    values = {}
    for field, keys in _USAGE_KEYS.items():
        found = None
        for key in keys:
            found = raw.get(key) if isinstance(raw, Mapping) else getattr(raw, key, None)
            if found is not None:
                break
        values[field] = _count(found)
    return NormalizedUsage(**values)


def calculate_cost(usage: NormalizedUsage, rates: CostRates) -> float:
    """USD cost: each token type priced independently per million tokens."""
    return (
        usage.input / TOKENS_PER_MILLION * rates.input
        + usage.output / TOKENS_PER_MILLION * rates.output
        + usage.cache_read / TOKENS_PER_MILLION * rates.cache_read
        + usage.cache_creation / TOKENS_PER_MILLION * rates.cache_creation
    )


class TokenTracker:
    """Builds usage records and guards against double counting.

    Args:
        settings: Tracking configuration (strategy, dedup, rates).
        baseline_fn: Baseline for the ``custom`` strategy; defaults to
            input + output when not supplied.
    """

    def __init__(self, settings: Optional[TokenTrackingSettings] = None,
                 baseline_fn: Optional[BaselineFn] = None):
        self._settings = settings or TokenTrackingSettings()
        self._baseline_fn = baseline_fn
        self._tracked: set[str] = set()
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    @property
    def config(self) -> TokenTrackingSettings:
        return self._settings

    def update_config(self, baseline_fn: Optional[BaselineFn] = None, **changes: Any) -> TokenTrackingSettings:
        """Apply partial configuration changes, re-validating the result."""
        merged = {**self._settings.model_dump(), **changes}
        self._settings = TokenTrackingSettings.model_validate(merged)
        if baseline_fn is not None:
            self._baseline_fn = baseline_fn
        logger.info("Token tracking reconfigured", changes=sorted(changes))
        return self._settings

    # -------------------------------------------------------------------------
    # Deduplication
    # -------------------------------------------------------------------------

    def _claim(self, message_id: str) -> bool:
        """Insert-if-absent; True when this call inserted the id."""
        with self._lock:
            if message_id in self._tracked:
                return False
            self._tracked.add(message_id)
            return True

    def has_tracked(self, message_id: str) -> bool:
        return message_id in self._tracked

    @property
    def tracked_count(self) -> int:
        return len(self._tracked)

    def clear_tracked(self) -> None:
        with self._lock:
            self._tracked.clear()

    # -------------------------------------------------------------------------
    # Tracking
    # -------------------------------------------------------------------------

    def calculate_baseline(self, usage: NormalizedUsage, resource_count: int = 0) -> int:
        strategy = self._settings.baseline_strategy
        if strategy == "no_jit":
            return (
                usage.input + usage.output
                + resource_count * self._settings.assumed_tokens_per_resource
            )
        if strategy == "no_cache":
            return (
                usage.input + usage.output
                + round(usage.cache_read * self._settings.cache_multiplier)
            )
        if self._baseline_fn is not None:
            return _count(self._baseline_fn(usage, resource_count))
        return usage.input + usage.output

    def track(
        self,
        message_id: str,
        raw_usage: Any,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Optional[TokenUsageRecord]:
        """Create the usage record for one event.

        Args:
            message_id: Unique event key.
            raw_usage: Usage payload with ``input_tokens``, ``output_tokens``,
                ``cache_read_input_tokens`` and ``cache_creation_input_tokens``
                (camelCase spellings are also read).
            metadata: Optional ``category``, ``resource_uri`` and
                ``resource_count``.

        Returns:
            The new record, or None when tracking is disabled or the message id
            was already tracked.
        """
        if not self._settings.enabled or not message_id:
            return None
        if not self._claim(message_id) and self._settings.deduplication:
            logger.debug("Duplicate usage event ignored", message_id=message_id)
            return None

        metadata = metadata or {}
        usage = normalize_usage(raw_usage)
        resource_count = _count(metadata.get("resource_count", metadata.get("resourceCount")))
        rates = self._settings.cost_rates

        total = usage.total
        baseline = self.calculate_baseline(usage, resource_count)
        saved = max(0, baseline - total)
        cost = calculate_cost(usage, rates)
        baseline_cost = baseline / TOKENS_PER_MILLION * rates.input

        record = TokenUsageRecord(
            message_id=message_id,
            input_tokens=usage.input,
            output_tokens=usage.output,
            cache_read_tokens=usage.cache_read,
            cache_creation_tokens=usage.cache_creation,
            total_tokens=total,
            baseline_tokens=baseline,
            tokens_saved=saved,
            efficiency_percentage=saved / baseline * 100 if baseline > 0 else 0.0,
            cost_usd=cost,
            cost_savings_usd=max(0.0, baseline_cost - cost),
            category=_text(metadata.get("category")),
            resource_uri=_text(metadata.get("resource_uri", metadata.get("resourceUri"))),
        )
        logger.debug(
            "Usage tracked",
            message_id=message_id,
            total_tokens=total,
            baseline_tokens=baseline,
            efficiency=round(record.efficiency_percentage, 2),
        )
        return record
