"""In-memory usage ledger with session grouping.

The ledger is a bounded ring: once ``max_records`` is reached each append
evicts the oldest record. Session totals are updated when a record is saved
and are never recomputed from the ledger, so eviction leaves them intact.
"""

import threading
from collections import deque
from datetime import datetime, timedelta
from typing import Optional

from app.conduit.core.logging_config import get_logger
from app.conduit.core.types import Session, StorageStats, TokenUsageRecord, utc_now

BYTES_PER_RECORD_ESTIMATE = 500

logger = get_logger(__name__)


class TokenStore:
    """Append-only, process-local store of usage records.

    Args:
        max_records: Ledger capacity before the oldest records are evicted.
        retention_days: Age limit applied by `cleanup`.
    """

    def __init__(self, max_records: int = 10_000, retention_days: float = 7):
        self.max_records = max_records
        self.retention = timedelta(days=retention_days)
        self._records: deque[TokenUsageRecord] = deque(maxlen=max_records)
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def save_usage(self, record: TokenUsageRecord, session_id: Optional[str] = None) -> None:
        """Append a record and fold it into its session, if any."""
        with self._lock:
            self._records.append(record)
            if session_id:
                session = self._sessions.get(session_id)
                if session is None:
                    session = self._sessions[session_id] = Session(session_id=session_id)
                session.absorb(record)

    def end_session(self, session_id: str) -> Optional[Session]:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None and session.end_time is None:
                session.end_time = utc_now()
            return session

    def cleanup(self, now: Optional[datetime] = None) -> int:
        """Drop ledger records older than the retention window.

        Returns:
            Number of records removed.
        """
        cutoff = (now or utc_now()) - self.retention
        with self._lock:
            before = len(self._records)
            kept = [r for r in self._records if r.timestamp >= cutoff]
            self._records = deque(kept, maxlen=self.max_records)
            removed = before - len(kept)
        if removed:
            logger.info("Expired usage records removed", removed=removed)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._sessions.clear()

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_recent_usage(self, limit: int = 100, category: Optional[str] = None) -> list[TokenUsageRecord]:
        """Newest records first, optionally for one category."""
        with self._lock:
            records = list(self._records)
        result = []
        for record in reversed(records):
            if category is None or record.category == category:
                result.append(record)
                if len(result) >= limit:
                    break
        return result

    def get_usage_in_range(
        self,
        start: datetime,
        end: datetime,
        category: Optional[str] = None,
    ) -> list[TokenUsageRecord]:
        """Records with ``start <= timestamp < end``, in insertion order."""
        with self._lock:
            records = list(self._records)
        return [
            r for r in records
            if start <= r.timestamp < end and (category is None or r.category == category)
        ]

    def get_all_usage(self) -> list[TokenUsageRecord]:
        with self._lock:
            return list(self._records)

    def get_session(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def get_all_sessions(self) -> list[Session]:
        with self._lock:
            return list(self._sessions.values())

    @property
    def total_count(self) -> int:
        return len(self._records)

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def get_stats(self) -> StorageStats:
        with self._lock:
            oldest = self._records[0].timestamp if self._records else None
            newest = self._records[-1].timestamp if self._records else None
            return StorageStats(
                total_records=len(self._records),
                total_sessions=len(self._sessions),
                max_records=self.max_records,
                oldest_record=oldest,
                newest_record=newest,
                memory_usage_bytes=len(self._records) * BYTES_PER_RECORD_ESTIMATE,
            )
