"""Test configuration and shared fixtures.

Provide isolated settings, a resource tree on disk, an HTTP client running the
real lifespan, and an in-memory provider double for registry-level tests.
"""
import asyncio
from pathlib import Path
from typing import Generator, Optional
from unittest import mock

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.config import Settings
from app.conduit.core.types import (
    ProviderHealth,
    ProviderStats,
    RemoteResource,
    RemoteResourceIndex,
    SearchOptions,
    SearchResponse,
)
from app.conduit.providers.errors import ResourceNotFoundError
from app.conduit.providers.scoring import rank

# ==============================================================================
# RESOURCE TREE
# ==============================================================================

AGENT_DOC = """---
title: TypeScript Developer
description: Writes strict TypeScript.
tags: [TypeScript, Node]
capabilities:
  - type-safe refactoring
useWhen:
  - typescript project setup
estimatedTokens: 800
---
# TypeScript Developer

Use strict mode everywhere.
"""

SKILL_DOC = """---
title: Pytest Fixtures
tags: python, testing
capabilities: [fixture design]
---
Prefer small fixtures composed together.
"""

GUIDE_DOC = """# Error Handling

No front matter here; the title comes from the heading.
"""


def write_resource_tree(root: Path) -> Path:
    (root / "agents").mkdir(parents=True)
    (root / "skills" / "testing").mkdir(parents=True)
    (root / "guides").mkdir(parents=True)
    (root / "agents" / "typescript-developer.md").write_text(AGENT_DOC, encoding="utf-8")
    (root / "skills" / "testing" / "pytest-fixtures.md").write_text(SKILL_DOC, encoding="utf-8")
    (root / "guides" / "error-handling.md").write_text(GUIDE_DOC, encoding="utf-8")
    return root


@pytest.fixture
def resources_dir(tmp_path: Path) -> Path:
    """Provide a fresh resource tree with one agent, one nested skill and one guide."""
    return write_resource_tree(tmp_path / "resources")


# ==============================================================================
# CONFIGURATION FIXTURES
# ==============================================================================

@pytest.fixture(scope="session")
def mock_settings(tmp_path_factory: pytest.TempPathFactory) -> Settings:
    """Provide isolated test configuration without external dependencies.

    Returns:
        Settings: Development configuration with only the local provider
            enabled, background health checks off, and no env file.
    """
    root = write_resource_tree(tmp_path_factory.mktemp("app") / "resources")
    return Settings(
        ENVIRONMENT="development",
        LOG_LEVEL="debug",
        LOCAL_PROVIDER={"enabled": True, "resources_path": str(root)},
        GITHUB_PROVIDER={"enabled": False},
        AITMPL_PROVIDER={"enabled": False},
        REGISTRY={"enable_health_checks": False},
        _env_file=None,  # Bypass local environment file
    )


@pytest.fixture(scope="function")
def client(mock_settings: Settings, monkeypatch: pytest.MonkeyPatch) -> Generator[TestClient, None, None]:
    """Provide an HTTP test client running the real lifespan on test settings.

    Args:
        mock_settings: Isolated test configuration.
        monkeypatch: Used to point the lifespan at the test settings.

    Yields:
        TestClient: FastAPI test client with a fresh token system and registry.
    """
    monkeypatch.setattr("app.main.get_settings", lambda: mock_settings)
    with TestClient(app) as test_client:
        yield test_client


# ==============================================================================
# PROVIDER DOUBLE
# ==============================================================================

class FakeProvider:
    """In-memory provider satisfying the ResourceProvider protocol.

    Attributes:
        health_statuses: Statuses returned by successive health checks; the
            last one repeats.
        error: Raised by every fetch when set.
        delay: Seconds each fetch sleeps before answering.
    """

    def __init__(self, name: str, priority: int = 0, resources: Optional[list[RemoteResource]] = None):
        self.name = name
        self.priority = priority
        self.enabled = True
        self.resources = {(r.category, r.id): r for r in resources or []}
        self.health_statuses: list[str] = ["healthy"]
        self.error: Optional[Exception] = None
        self.delay = 0.0
        self.initialized = False
        self.shut_down = False
        self.fetch_calls = 0

    async def initialize(self) -> None:
        self.initialized = True

    async def shutdown(self) -> None:
        self.shut_down = True

    async def _maybe_fail(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error

    async def fetch_index(self) -> RemoteResourceIndex:
        await self._maybe_fail()
        return RemoteResourceIndex.build(self.name, [r.metadata for r in self.resources.values()])

    async def fetch_resource(self, resource_id: str, category: str) -> RemoteResource:
        self.fetch_calls += 1
        await self._maybe_fail()
        try:
            return self.resources[(category, resource_id)]
        except KeyError:
            raise ResourceNotFoundError(resource_id, self.name, category)

    async def search(self, query: str, options: Optional[SearchOptions] = None) -> SearchResponse:
        await self._maybe_fail()
        return rank(query, [r.metadata for r in self.resources.values()], options)

    async def health_check(self) -> ProviderHealth:
        status = self.health_statuses.pop(0) if len(self.health_statuses) > 1 else self.health_statuses[0]
        return ProviderHealth(provider=self.name, status=status)

    def get_stats(self) -> ProviderStats:
        return ProviderStats(provider=self.name)

    def reset_stats(self) -> None:
        pass


def make_resource(resource_id: str, category: str = "agent", source: str = "fake",
                  tokens: int = 400, tags: tuple[str, ...] = ()) -> RemoteResource:
    return RemoteResource(
        id=resource_id,
        category=category,
        title=resource_id.title(),
        tags=tags,
        estimated_tokens=tokens,
        source=source,
        source_uri=f"{source}://{category}/{resource_id}",
        content=f"Body of {resource_id}",
    )


@pytest.fixture
def fake_provider_factory():
    """Return the FakeProvider class for building provider doubles."""
    return FakeProvider


@pytest.fixture
def resource_factory():
    """Return a helper building RemoteResource values."""
    return make_resource


# ==============================================================================
# MOCKING HELPERS
# ==============================================================================

@pytest.fixture
def mock_fs_open():
    """Provide mock for file system operations.

    Yields:
        Mock: Patched builtins.open to intercept secret file reads.
    """
    with mock.patch("builtins.open", mock.mock_open(read_data="file-token\n")) as mock_file:
        yield mock_file
