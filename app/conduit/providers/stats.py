"""Per-provider request statistics."""

import threading
from collections import deque
from datetime import datetime
from typing import Optional

from app.conduit.core.types import ProviderStats, RateLimitInfo, utc_now

RESPONSE_TIME_WINDOW = 100


class StatsRecorder:
    """Counts requests for one provider.

    Each provider operation calls exactly one of `record_success`,
    `record_cache_hit` or `record_failure`. Counters only grow until `reset`.
    """

    def __init__(self, provider: str):
        self.provider = provider
        self._lock = threading.Lock()
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self.total_requests = 0
            self.successful_requests = 0
            self.failed_requests = 0
            self.cached_requests = 0
            self.resources_fetched = 0
            self.tokens_fetched = 0
            self.last_error_at: Optional[datetime] = None
            self._response_times: deque[float] = deque(maxlen=RESPONSE_TIME_WINDOW)
            self.reset_at = utc_now()

    def record_success(self, duration_ms: float, resources: int = 0, tokens: int = 0) -> None:
        with self._lock:
            self.total_requests += 1
            self.successful_requests += 1
            self.resources_fetched += resources
            self.tokens_fetched += tokens
            self._response_times.append(duration_ms)

    def record_cache_hit(self, resources: int = 0, tokens: int = 0) -> None:
        with self._lock:
            self.total_requests += 1
            self.successful_requests += 1
            self.cached_requests += 1
            self.resources_fetched += resources
            self.tokens_fetched += tokens

    def record_failure(self, duration_ms: float) -> None:
        with self._lock:
            self.total_requests += 1
            self.failed_requests += 1
            self.last_error_at = utc_now()
            self._response_times.append(duration_ms)

    @property
    def success_rate(self) -> float:
        if self.total_requests == 0:
            return 1.0
        return self.successful_requests / self.total_requests

    def snapshot(self, rate_limit: Optional[RateLimitInfo] = None) -> ProviderStats:
        with self._lock:
            times = list(self._response_times)
            return ProviderStats(
                provider=self.provider,
                total_requests=self.total_requests,
                successful_requests=self.successful_requests,
                failed_requests=self.failed_requests,
                cached_requests=self.cached_requests,
                resources_fetched=self.resources_fetched,
                tokens_fetched=self.tokens_fetched,
                avg_response_time_ms=sum(times) / len(times) if times else 0.0,
                cache_hit_rate=(
                    self.cached_requests / self.total_requests if self.total_requests else 0.0
                ),
                uptime=self.success_rate,
                rate_limit=rate_limit,
                stats_reset_at=self.reset_at,
            )
