"""Test suite for the GitHub repository provider.

HTTP traffic is served by ``httpx.MockTransport`` so no request leaves the
process.
"""
import httpx
import pytest

from app.config import RepoSpec
from app.conduit.providers import (
    GitHubProvider,
    ProviderAuthenticationError,
    ProviderUnavailableError,
    RateLimitedError,
    ResourceNotFoundError,
)
from app.conduit.providers.github import detect_layout, is_resource_path

TREE = {
    "truncated": False,
    "tree": [
        {"path": "agents", "type": "tree"},
        {"path": "agents/ts-dev.md", "type": "blob", "size": 400},
        {"path": "skills/testing/pytest-fixtures.md", "type": "blob", "size": 1000},
        {"path": "docs/setup.md", "type": "blob", "size": 80},
        {"path": "docs/internal/release-process.md", "type": "blob", "size": 120},
        {"path": "README.md", "type": "blob", "size": 50},
        {"path": "scripts/build.sh", "type": "blob", "size": 10},
    ],
}

FLAT_TREE = {
    "truncated": False,
    "tree": [
        {"path": "caching-tips.md", "type": "blob", "size": 80},
        {"path": "docs/setup.md", "type": "blob", "size": 40},
        {"path": "README.md", "type": "blob", "size": 50},
    ],
}

TEMPLATES_TREE = {
    "truncated": False,
    "tree": [
        {"path": "commands/deploy.md", "type": "blob", "size": 200},
        {"path": "hooks/pre-commit.md", "type": "blob", "size": 120},
        {"path": "mcps/postgres.md", "type": "blob", "size": 300},
    ],
}

RAW_AGENT = """---
title: TS Dev
tags: [typescript]
---
# TS Dev
Strict mode.
"""

RATE_LIMIT = {"resources": {"core": {"limit": 5000, "remaining": 4999, "reset": 1900000000}}}


class GitHubStub:
    """Route table for the mock transport; records every request."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.overrides: dict[str, list[httpx.Response]] = {}
        self.rate_limit = RATE_LIMIT

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        queued = self.overrides.get(path)
        if queued:
            return queued.pop(0) if len(queued) > 1 else queued[0]
        if request.url.host == "raw.githubusercontent.com":
            if path == "/acme/pack/main/agents/ts-dev.md":
                return httpx.Response(200, text=RAW_AGENT)
            return httpx.Response(404, text="404: Not Found")
        if path == "/user":
            return httpx.Response(200, json={"login": "octo"})
        if path == "/rate_limit":
            return httpx.Response(200, json=self.rate_limit)
        if path == "/repos/acme/pack/git/trees/main":
            return httpx.Response(200, json=TREE)
        return httpx.Response(404, json={"message": "Not Found"})

    def calls(self, path: str) -> int:
        return sum(1 for r in self.requests if r.url.path == path)


@pytest.fixture
def stub() -> GitHubStub:
    return GitHubStub()


def make_provider(stub: GitHubStub, **kwargs) -> GitHubProvider:
    params = {
        "repos": [RepoSpec.model_validate("acme/pack")],
        "token": "ghp_test",
        "retry_backoff": 0,
        "transport": httpx.MockTransport(stub),
    }
    params.update(kwargs)
    return GitHubProvider(**params)


# ═══════════════════════════════════════════════════════════════════════════
# LAYOUT HELPERS
# ═══════════════════════════════════════════════════════════════════════════

@pytest.mark.parametrize("paths,layout", [
    (["agents/a.md", "skills/x/b.md"], "nested-category"),
    (["a.md", "docs/b.md"], "flat"),
    (["agents/a.md", "docs/b.md"], "mixed"),
])
def test_detect_layout(paths, layout):
    assert detect_layout(paths) == layout


def test_resource_paths_skip_repository_boilerplate():
    assert is_resource_path("agents/a.md")
    assert not is_resource_path("README.md")
    assert not is_resource_path("docs/CHANGELOG.md")
    assert not is_resource_path("scripts/build.sh")


# ═══════════════════════════════════════════════════════════════════════════
# LIFECYCLE
# ═══════════════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
async def test_initialize_verifies_token_and_reads_quota(stub: GitHubStub):
    provider = make_provider(stub)
    await provider.initialize()

    assert stub.requests[0].headers["Authorization"] == "Bearer ghp_test"
    assert stub.calls("/user") == 1
    assert provider.get_stats().rate_limit.remaining == 4999
    await provider.shutdown()


@pytest.mark.asyncio
async def test_initialize_without_repos_disables_provider(stub: GitHubStub):
    provider = make_provider(stub, repos=[])
    await provider.initialize()

    assert provider.enabled is False
    assert stub.requests == []
    await provider.shutdown()


@pytest.mark.asyncio
async def test_rejected_token_is_terminal(stub: GitHubStub):
    stub.overrides["/user"] = [httpx.Response(401, json={"message": "Bad credentials"})]
    provider = make_provider(stub)

    with pytest.raises(ProviderAuthenticationError):
        await provider.initialize()
    assert stub.calls("/user") == 1
    await provider.shutdown()


# ═══════════════════════════════════════════════════════════════════════════
# INDEX & RESOURCES
# ═══════════════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
async def test_index_built_from_tree(stub: GitHubStub):
    provider = make_provider(stub)
    index = await provider.fetch_index()
    by_id = {r.id: r for r in index.resources}

    assert set(by_id) == {
        "acme/pack/agents/ts-dev.md",
        "acme/pack/skills/testing/pytest-fixtures.md",
    }
    agent = by_id["acme/pack/agents/ts-dev.md"]
    assert agent.category == "agent"
    assert agent.estimated_tokens == 100
    assert agent.source_uri == "https://github.com/acme/pack/blob/main/agents/ts-dev.md"

    skill = by_id["acme/pack/skills/testing/pytest-fixtures.md"]
    assert skill.category == "skill"
    assert skill.tags == ("testing", "pytest", "fixtures")

    await provider.fetch_index()
    assert stub.calls("/repos/acme/pack/git/trees/main") == 1
    await provider.shutdown()


@pytest.mark.asyncio
async def test_structured_repository_skips_files_outside_category_directories(stub: GitHubStub):
    """docs/ sits next to agents/ and skills/, so its markdown is not a resource."""
    provider = make_provider(stub)
    index = await provider.fetch_index()

    assert not [r.id for r in index.resources if "/docs/" in r.id]
    assert index.total_count == 2
    await provider.shutdown()


@pytest.mark.asyncio
async def test_flat_repository_indexes_every_markdown_file(stub: GitHubStub):
    stub.overrides["/repos/acme/pack/git/trees/main"] = [httpx.Response(200, json=FLAT_TREE)]
    provider = make_provider(stub)
    index = await provider.fetch_index()

    assert sorted((r.id, r.category) for r in index.resources) == [
        ("acme/pack/caching-tips.md", "pattern"),
        ("acme/pack/docs/setup.md", "pattern"),
    ]
    await provider.shutdown()


@pytest.mark.asyncio
async def test_commands_directory_maps_to_skills(stub: GitHubStub):
    stub.overrides["/repos/acme/pack/git/trees/main"] = [httpx.Response(200, json=TEMPLATES_TREE)]
    provider = make_provider(stub)
    index = await provider.fetch_index()

    assert {r.id: r.category for r in index.resources} == {
        "acme/pack/commands/deploy.md": "skill",
        "acme/pack/hooks/pre-commit.md": "pattern",
        "acme/pack/mcps/postgres.md": "example",
    }
    await provider.shutdown()


@pytest.mark.asyncio
async def test_fetch_resource_downloads_raw_body(stub: GitHubStub):
    provider = make_provider(stub)
    resource = await provider.fetch_resource("acme/pack/agents/ts-dev.md", "agent")

    assert resource.title == "TS Dev"
    assert resource.tags == ("typescript",)
    assert resource.content.startswith("# TS Dev")
    assert resource.source_uri == "https://github.com/acme/pack/blob/main/agents/ts-dev.md"
    await provider.shutdown()


@pytest.mark.asyncio
async def test_branch_override_used_for_raw_url(stub: GitHubStub):
    provider = make_provider(stub, repos=[RepoSpec.model_validate({"repo": "acme/pack", "branch": {"name": "dev"}})])
    with pytest.raises(ResourceNotFoundError):
        await provider.fetch_resource("acme/pack/agents/ts-dev.md", "agent")

    assert stub.requests[-1].url.path == "/acme/pack/dev/agents/ts-dev.md"
    await provider.shutdown()


@pytest.mark.asyncio
@pytest.mark.parametrize("resource_id", ["acme/pack/agents/missing.md", "not-a-full-id"])
async def test_missing_resources_raise_not_found(stub: GitHubStub, resource_id):
    provider = make_provider(stub)
    with pytest.raises(ResourceNotFoundError):
        await provider.fetch_resource(resource_id, "agent")
    assert provider.get_stats().failed_requests == 0
    await provider.shutdown()


@pytest.mark.asyncio
async def test_search_over_tree_metadata(stub: GitHubStub):
    provider = make_provider(stub)
    response = await provider.search("pytest fixtures")

    assert response.results[0].resource.id == "acme/pack/skills/testing/pytest-fixtures.md"
    await provider.shutdown()


# ═══════════════════════════════════════════════════════════════════════════
# RETRIES & QUOTA
# ═══════════════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
async def test_server_errors_are_retried(stub: GitHubStub):
    path = "/repos/acme/pack/git/trees/main"
    stub.overrides[path] = [httpx.Response(502), httpx.Response(200, json=TREE)]
    provider = make_provider(stub)

    index = await provider.fetch_index()

    assert index.total_count == 2
    assert stub.calls(path) == 2
    await provider.shutdown()


@pytest.mark.asyncio
async def test_persistent_server_errors_become_unavailable(stub: GitHubStub):
    path = "/repos/acme/pack/git/trees/main"
    stub.overrides[path] = [httpx.Response(503)]
    provider = make_provider(stub, retry_attempts=2)

    with pytest.raises(ProviderUnavailableError, match="after 3 attempts"):
        await provider.fetch_index()
    assert stub.calls(path) == 3
    assert provider.get_stats().failed_requests == 1
    await provider.shutdown()


@pytest.mark.asyncio
async def test_long_rate_limit_pause_raises(stub: GitHubStub):
    stub.overrides["/repos/acme/pack/git/trees/main"] = [
        httpx.Response(403, headers={"x-ratelimit-remaining": "0", "x-ratelimit-limit": "60", "retry-after": "3600"}),
    ]
    provider = make_provider(stub)

    with pytest.raises(RateLimitedError) as exc_info:
        await provider.fetch_index()
    assert exc_info.value.retry_after == 3600
    assert provider.get_stats().rate_limit.remaining == 0
    await provider.shutdown()


@pytest.mark.asyncio
async def test_short_rate_limit_pause_is_waited_out(stub: GitHubStub):
    path = "/repos/acme/pack/git/trees/main"
    stub.overrides[path] = [httpx.Response(429, headers={"retry-after": "0"}), httpx.Response(200, json=TREE)]
    provider = make_provider(stub)

    assert (await provider.fetch_index()).total_count == 2
    await provider.shutdown()


# ═══════════════════════════════════════════════════════════════════════════
# HEALTH
# ═══════════════════════════════════════════════════════════════════════════

@pytest.mark.asyncio
async def test_health_reports_quota(stub: GitHubStub):
    provider = make_provider(stub)
    assert (await provider.health_check()).status == "healthy"

    stub.rate_limit = {"resources": {"core": {"limit": 5000, "remaining": 100}}}
    health = await provider.health_check()
    assert health.status == "degraded"
    assert "100/5000" in health.error
    await provider.shutdown()


@pytest.mark.asyncio
async def test_health_reports_bad_credentials(stub: GitHubStub):
    stub.overrides["/rate_limit"] = [httpx.Response(401)]
    provider = make_provider(stub)

    health = await provider.health_check()

    assert health.status == "unhealthy"
    assert health.authenticated is False
    await provider.shutdown()
