"""Provider health, statistics and registry event types."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import Field

from .base import CanonicalModel, StateModel, utc_now


# ═══════════════════════════════════════════════════════════════════════════
# INTERNAL ENUMS (Not exported in __init__.py)
# ═══════════════════════════════════════════════════════════════════════════

class _HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class _ProviderEventType(str, Enum):
    REGISTERED = "provider-registered"
    UNREGISTERED = "provider-unregistered"
    ENABLED = "provider-enabled"
    DISABLED = "provider-disabled"
    ERROR = "provider-error"
    HEALTH_CHANGED = "provider-health-changed"


HealthStatus = Literal["healthy", "degraded", "unhealthy"]

ProviderEventType = Literal[
    "provider-registered",
    "provider-unregistered",
    "provider-enabled",
    "provider-disabled",
    "provider-error",
    "provider-health-changed",
]


# ═══════════════════════════════════════════════════════════════════════════
# HEALTH & STATS
# ═══════════════════════════════════════════════════════════════════════════

class ProviderHealth(StateModel):
    """Result of a provider health routine.

    Attributes:
        provider: Provider name.
        status: Overall verdict.
        last_check: When the check ran.
        response_time_ms: Round-trip time of the probe.
        reachable: Whether the backend answered at all.
        authenticated: Whether credentials were accepted (True when none needed).
        consecutive_failures: Maintained by the registry across checks.
        error: Failure message for degraded or unhealthy verdicts.
    """
    provider: str
    status: HealthStatus
    last_check: datetime = Field(default_factory=utc_now)
    response_time_ms: float = 0.0
    reachable: bool = True
    authenticated: bool = True
    consecutive_failures: int = Field(default=0, ge=0)
    error: Optional[str] = None

    @classmethod
    def unhealthy(cls, provider: str, error: str, response_time_ms: float = 0.0) -> "ProviderHealth":
        return cls(
            provider=provider,
            status=_HealthStatus.UNHEALTHY.value,
            reachable=False,
            authenticated=False,
            response_time_ms=response_time_ms,
            error=error,
        )


class RateLimitInfo(StateModel):
    limit: int
    remaining: int
    reset_at: Optional[datetime] = None


class ProviderStats(StateModel):
    """Counters and derived rates for one provider."""
    provider: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    cached_requests: int = 0
    resources_fetched: int = 0
    tokens_fetched: int = 0
    avg_response_time_ms: float = 0.0
    cache_hit_rate: float = 0.0
    uptime: float = 1.0
    rate_limit: Optional[RateLimitInfo] = None
    stats_reset_at: datetime = Field(default_factory=utc_now)


class AggregateStats(CanonicalModel):
    total_providers: int
    enabled_providers: int
    healthy_providers: int
    total_requests: int
    successful_requests: int
    failed_requests: int
    cached_requests: int
    resources_fetched: int
    tokens_fetched: int
    avg_response_time_ms: float


# ═══════════════════════════════════════════════════════════════════════════
# EVENTS
# ═══════════════════════════════════════════════════════════════════════════

class ProviderEvent(CanonicalModel):
    """Notification emitted by the registry to observability listeners."""
    type: ProviderEventType
    provider: str
    timestamp: datetime = Field(default_factory=utc_now)
    data: dict[str, Any] = Field(default_factory=dict)
