"""FastAPI dependencies resolving shared state from ``app.state``."""

from typing import Optional

from fastapi import HTTPException, Query, Request, status

from app.conduit.core.types import TIME_PERIODS, TimePeriod
from app.conduit.loader import ResourceLoader
from app.conduit.tokens import TokenSubsystemUnavailable, TokenSystem
from app.conduit.tokens.metrics import DEFAULT_PERIOD


class ProviderSubsystemUnavailable(RuntimeError):
    """Raised when the provider registry was not built."""

    def __init__(self, message: str = "Provider system not initialized"):
        super().__init__(message)


def get_token_system(request: Request) -> TokenSystem:
    """Return the token system built by the lifespan.

    Raises:
        TokenSubsystemUnavailable: If startup failed to build it.
    """
    tokens = getattr(request.app.state, "token_system", None)
    if tokens is None:
        raise TokenSubsystemUnavailable()
    return tokens


def get_loader(request: Request) -> ResourceLoader:
    loader = getattr(request.app.state, "loader", None)
    if loader is None:
        raise ProviderSubsystemUnavailable()
    return loader


def resolve_period(
    period: Optional[str] = Query(default=None, description="One of " + ", ".join(TIME_PERIODS)),
) -> TimePeriod:
    """Validate the ``period`` query parameter; absent means ``last_hour``."""
    if period is None or period == "":
        return DEFAULT_PERIOD
    if period not in TIME_PERIODS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid period '{period}'. Expected one of: {', '.join(TIME_PERIODS)}",
        )
    return period
