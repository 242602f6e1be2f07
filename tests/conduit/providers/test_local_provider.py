"""Test suite for the filesystem resource provider."""
import shutil
from pathlib import Path

import pytest
import pytest_asyncio

from app.conduit.core.types import SearchOptions
from app.conduit.providers import LocalProvider, ProviderUnavailableError, ResourceNotFoundError


@pytest_asyncio.fixture
async def provider(resources_dir: Path):
    """Provide an initialized provider over the sample resource tree."""
    local = LocalProvider(str(resources_dir))
    await local.initialize()
    yield local
    await local.shutdown()


@pytest.mark.asyncio
async def test_initialize_requires_existing_root(tmp_path: Path):
    with pytest.raises(ProviderUnavailableError, match="not found"):
        await LocalProvider(str(tmp_path / "missing")).initialize()


@pytest.mark.asyncio
async def test_index_covers_category_directories(provider: LocalProvider):
    index = await provider.fetch_index()

    assert index.provider == "local"
    assert index.total_count == 3
    assert index.stats.by_category == {"agent": 1, "skill": 1, "pattern": 1}
    assert {r.id for r in index.resources} == {
        "typescript-developer", "testing/pytest-fixtures", "error-handling",
    }


@pytest.mark.asyncio
async def test_fetch_resource_reads_front_matter(provider: LocalProvider):
    resource = await provider.fetch_resource("typescript-developer", "agent")

    assert resource.title == "TypeScript Developer"
    assert resource.tags == ("typescript", "node")
    assert resource.use_when == ("typescript project setup",)
    assert resource.estimated_tokens == 800
    assert resource.source_uri == "local://agents/typescript-developer"
    assert resource.content.startswith("# TypeScript Developer")


@pytest.mark.asyncio
async def test_nested_and_aliased_directories(provider: LocalProvider):
    skill = await provider.fetch_resource("testing/pytest-fixtures", "skill")
    assert skill.tags == ("python", "testing")

    guide = await provider.fetch_resource("error-handling", "pattern")
    assert guide.title == "Error Handling"
    assert guide.source_uri == "local://guides/error-handling"


@pytest.mark.asyncio
async def test_repeat_fetch_is_served_from_cache(provider: LocalProvider, resources_dir: Path):
    await provider.fetch_resource("typescript-developer", "agent")
    (resources_dir / "agents" / "typescript-developer.md").unlink()

    again = await provider.fetch_resource("typescript-developer", "agent")

    assert again.estimated_tokens == 800
    stats = provider.get_stats()
    assert stats.cached_requests == 1
    assert stats.resources_fetched == 2


@pytest.mark.asyncio
@pytest.mark.parametrize("resource_id,category", [
    ("missing", "agent"),
    ("typescript-developer", "skill"),
    ("../../../etc/passwd", "agent"),
])
async def test_missing_resources_raise_not_found(provider: LocalProvider, resource_id, category):
    with pytest.raises(ResourceNotFoundError):
        await provider.fetch_resource(resource_id, category)
    # Misses do not count against the provider.
    assert provider.get_stats().failed_requests == 0


@pytest.mark.asyncio
async def test_search_ranks_by_keywords(provider: LocalProvider):
    response = await provider.search("python testing fixtures", SearchOptions(min_score=10))

    assert [r.resource.id for r in response.results] == ["testing/pytest-fixtures"]
    assert response.results[0].resource.source == "local"


@pytest.mark.asyncio
async def test_search_drops_unrelated_resources_by_default(provider: LocalProvider):
    """Every resource here is small, but a size bonus alone is not a match."""
    response = await provider.search("quantum chemistry")

    assert response.results == ()
    assert response.total_matches == 0

    explicit = await provider.search("quantum chemistry", SearchOptions(min_score=0))
    assert explicit.total_matches == 3


@pytest.mark.asyncio
async def test_health_tracks_root_directory(provider: LocalProvider, resources_dir: Path):
    assert (await provider.health_check()).status == "healthy"

    shutil.rmtree(resources_dir)
    health = await provider.health_check()

    assert health.status == "unhealthy"
    assert "not found" in health.error


@pytest.mark.asyncio
async def test_reset_stats(provider: LocalProvider):
    await provider.fetch_index()
    provider.reset_stats()
    assert provider.get_stats().total_requests == 0
