"""Read-only token accounting endpoints."""

from fastapi import APIRouter, Depends, HTTPException, status

from app.conduit.core.types import (
    CategoryBreakdown,
    CostSavingsReport,
    EfficiencySnapshot,
    Session,
    TimePeriod,
    TrendReport,
    UsageSummary,
)
from app.conduit.tokens import TokenSystem

from .dependencies import get_token_system, resolve_period

router = APIRouter(prefix="/tokens", tags=["tokens"])


@router.get("/efficiency", response_model=EfficiencySnapshot)
async def efficiency_snapshot(
    period: TimePeriod = Depends(resolve_period),
    tokens: TokenSystem = Depends(get_token_system),
) -> EfficiencySnapshot:
    """Full efficiency snapshot for the period, with trend against the prior window."""
    return tokens.metrics.get_efficiency_snapshot(period)


@router.get("/summary", response_model=UsageSummary)
async def usage_summary(
    period: TimePeriod = Depends(resolve_period),
    tokens: TokenSystem = Depends(get_token_system),
) -> UsageSummary:
    return tokens.metrics.get_summary(period)


@router.get("/by-category", response_model=CategoryBreakdown)
async def usage_by_category(
    period: TimePeriod = Depends(resolve_period),
    tokens: TokenSystem = Depends(get_token_system),
) -> CategoryBreakdown:
    return tokens.metrics.get_by_category(period)


@router.get("/cost-savings", response_model=CostSavingsReport)
async def cost_savings(
    period: TimePeriod = Depends(resolve_period),
    tokens: TokenSystem = Depends(get_token_system),
) -> CostSavingsReport:
    return tokens.metrics.get_cost_savings(period)


@router.get("/trends", response_model=TrendReport)
async def trends(
    period: TimePeriod = Depends(resolve_period),
    tokens: TokenSystem = Depends(get_token_system),
) -> TrendReport:
    return tokens.metrics.get_trend(period)


@router.get("/sessions/{session_id}", response_model=Session)
async def session_detail(
    session_id: str,
    tokens: TokenSystem = Depends(get_token_system),
) -> Session:
    """Session totals and records.

    Raises:
        HTTPException: 404 when the session id is unknown.
    """
    session = tokens.metrics.calculate_session_efficiency(session_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session {session_id} not found",
        )
    return session
