"""Token accounting: tracker, store, efficiency math and the metrics facade.

`TokenSystem` bundles the three stateful parts. It is built once at process
start by `create_token_system` and handed to whoever records or reads usage.
"""

import asyncio
from typing import Any, Mapping, Optional

from app.config import TokenTrackingSettings
from app.conduit.core.logging_config import get_logger
from app.conduit.core.types import TokenUsageRecord

from .errors import TokenSubsystemUnavailable
from .metrics import TokenMetrics
from .store import TokenStore
from .tracker import BaselineFn, TokenTracker

logger = get_logger(__name__)


class TokenSystem:
    """Tracker, store and metrics sharing one configuration and lifetime."""

    def __init__(self, tracker: TokenTracker, store: TokenStore, metrics: TokenMetrics,
                 settings: TokenTrackingSettings):
        self.tracker = tracker
        self.store = store
        self.metrics = metrics
        self.settings = settings
        self._cleanup_task: Optional[asyncio.Task] = None

    def record(
        self,
        message_id: str,
        raw_usage: Any,
        metadata: Optional[Mapping[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> Optional[TokenUsageRecord]:
        """Track one event and persist the record when one is produced."""
        record = self.tracker.track(message_id, raw_usage, metadata)
        if record is not None:
            self.store.save_usage(record, session_id)
        return record

    def start_cleanup(self) -> None:
        """Start periodic retention cleanup when enabled in settings."""
        if not self.settings.auto_cleanup or self._cleanup_task is not None:
            return
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.cleanup_interval)
            self.store.cleanup()

    async def shutdown(self) -> None:
        task, self._cleanup_task = self._cleanup_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Token system shut down", records=self.store.total_count)
        self.store.clear()
        self.tracker.clear_tracked()


def create_token_system(
    settings: Optional[TokenTrackingSettings] = None,
    baseline_fn: Optional[BaselineFn] = None,
) -> TokenSystem:
    settings = settings or TokenTrackingSettings()
    tracker = TokenTracker(settings, baseline_fn)
    store = TokenStore(max_records=settings.max_records, retention_days=settings.retention_days)
    logger.info(
        "Token system created",
        enabled=settings.enabled,
        baseline_strategy=settings.baseline_strategy,
        max_records=settings.max_records,
    )
    return TokenSystem(tracker, store, TokenMetrics(store), settings)


__all__ = [
    "TokenMetrics",
    "TokenStore",
    "TokenSubsystemUnavailable",
    "TokenSystem",
    "TokenTracker",
    "create_token_system",
]
