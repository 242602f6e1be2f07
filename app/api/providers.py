"""Provider health and statistics passthrough."""

from fastapi import APIRouter, Depends, HTTPException, status

from app.conduit.core.types import AggregateStats, ProviderHealth, ProviderStats
from app.conduit.core.types.base import CanonicalModel
from app.conduit.loader import ResourceLoader

from .dependencies import get_loader

router = APIRouter(prefix="/providers", tags=["providers"])


class ProviderStatsReport(CanonicalModel):
    aggregate: AggregateStats
    providers: dict[str, ProviderStats]


def _known(loader: ResourceLoader, name: str) -> None:
    if loader.registry.get_provider(name) is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Provider {name} not found",
        )


@router.get("/health", response_model=dict[str, ProviderHealth])
async def all_provider_health(loader: ResourceLoader = Depends(get_loader)) -> dict[str, ProviderHealth]:
    """Run a health check on every registered provider."""
    return await loader.registry.check_all_health()


@router.get("/stats", response_model=ProviderStatsReport)
async def all_provider_stats(loader: ResourceLoader = Depends(get_loader)) -> ProviderStatsReport:
    return ProviderStatsReport(
        aggregate=loader.registry.get_aggregate_stats(),
        providers=loader.registry.get_all_stats(),
    )


@router.get("/{name}/health", response_model=ProviderHealth)
async def provider_health(name: str, loader: ResourceLoader = Depends(get_loader)) -> ProviderHealth:
    _known(loader, name)
    return await loader.registry.check_health(name)


@router.get("/{name}/stats", response_model=ProviderStats)
async def provider_stats(name: str, loader: ResourceLoader = Depends(get_loader)) -> ProviderStats:
    _known(loader, name)
    return loader.registry.get_provider_stats(name)
