"""GitHub repository resource provider.

Indexes markdown files from one or more repositories using the git trees API
and downloads bodies from raw.githubusercontent.com. Three repository layouts
are recognised from the tree alone:

    nested-category  every resource sits under a category directory
                     (``agents/``, ``skills/``, ``workflows/`` ...)
    flat             no category directories; everything is a ``pattern``
    mixed            both of the above in one repository

Resource ids are ``{owner}/{repo}/{path}``.
"""

import asyncio
import math
import time
from datetime import datetime, timezone
from pathlib import PurePosixPath
from typing import Callable, Literal, Optional, Sequence

import httpx

from app.config import GitHubProviderSettings, RepoSpec
from app.conduit.core.logging_config import get_logger
from app.conduit.core.types import (
    ProviderHealth,
    ProviderStats,
    RateLimitInfo,
    RemoteResource,
    RemoteResourceIndex,
    RemoteResourceMetadata,
    ResourceCategory,
    SearchOptions,
    SearchResponse,
)

from .base import elapsed_ms
from .cache import ExpiringCache
from .errors import (
    ProviderAuthenticationError,
    ProviderError,
    ProviderUnavailableError,
    RateLimitedError,
    ResourceNotFoundError,
)
from .frontmatter import markdown_resource
from .scoring import rank
from .stats import StatsRecorder

API_BASE_URL = "https://api.github.com"
RAW_BASE_URL = "https://raw.githubusercontent.com"
MAX_BACKOFF_SECONDS = 10.0
DEGRADED_QUOTA_RATIO = 0.1

# Top-level directory -> category, covering the known community layouts.
CATEGORY_DIRECTORIES: dict[str, str] = {
    "agents": "agent",
    "skills": "skill",
    "workflows": "workflow",
    "patterns": "pattern",
    "examples": "example",
    "guides": "pattern",
    "best-practices": "pattern",
    "commands": "skill",
    "hooks": "pattern",
    "settings": "pattern",
    "mcps": "example",
    "plugins": "example",
}
DEFAULT_CATEGORY = "pattern"
IGNORED_FILES = frozenset({"readme.md", "changelog.md", "license.md", "contributing.md"})

Layout = Literal["nested-category", "flat", "mixed"]

_INDEX_KEY = "__index__"


def category_directory(path: str) -> Optional[str]:
    """Return the first path segment that names a known category directory."""
    for part in PurePosixPath(path).parts[:-1]:
        if part.lower() in CATEGORY_DIRECTORIES:
            return part.lower()
    return None


def detect_layout(paths: Sequence[str]) -> Layout:
    """Classify a repository from the paths of its markdown files."""
    categorized = sum(1 for p in paths if category_directory(p) is not None)
    if categorized == 0:
        return "flat"
    if categorized == len(paths):
        return "nested-category"
    return "mixed"


def is_resource_path(path: str) -> bool:
    name = PurePosixPath(path).name.lower()
    return name.endswith(".md") and name not in IGNORED_FILES


class GitHubProvider:
    """Serve resources from GitHub repositories.

    Attributes:
        name: Always ``"github"``.
        priority: 15, consulted after local files and the community catalog.
        enabled: Routing flag; cleared on initialize when no repos are set.
    """

    name = "github"
    priority = 15

    def __init__(
        self,
        repos: Sequence[RepoSpec],
        token: Optional[str] = None,
        default_branch: str = "main",
        cache_ttl: float = 24 * 3600,
        resource_cache_ttl: float = 7 * 24 * 3600,
        tree_cache_ttl: float = 3600,
        timeout: float = 30.0,
        retry_attempts: int = 3,
        retry_backoff: float = 1.0,
        enabled: bool = True,
        api_base_url: str = API_BASE_URL,
        raw_base_url: str = RAW_BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.repos = list(repos)
        self.enabled = enabled
        self.default_branch = default_branch
        self.cache_ttl = cache_ttl
        self.resource_cache_ttl = resource_cache_ttl
        self.tree_cache_ttl = tree_cache_ttl
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff
        self.api_base_url = api_base_url.rstrip("/")
        self.raw_base_url = raw_base_url.rstrip("/")
        self._token = token

        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": "conduit-resource-provider",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(headers=headers, timeout=timeout, transport=transport)
        self._cache: ExpiringCache[object] = ExpiringCache(resource_cache_ttl, 1000, clock)
        self._stats = StatsRecorder(self.name)
        self._rate_limit: Optional[RateLimitInfo] = None
        self._logger = get_logger(__name__, provider=self.name)

    @classmethod
    def from_settings(cls, settings: GitHubProviderSettings, **kwargs) -> "GitHubProvider":
        return cls(
            repos=settings.repos,
            token=settings.resolved_token(),
            default_branch=settings.branch,
            cache_ttl=settings.cache_ttl,
            resource_cache_ttl=settings.resource_cache_ttl,
            tree_cache_ttl=settings.tree_cache_ttl,
            timeout=settings.timeout,
            retry_attempts=settings.retry_attempts,
            enabled=settings.enabled,
            **kwargs,
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        if not self.repos:
            self.enabled = False
            self._logger.warning("No repositories configured, provider disabled")
            return

        if self._token:
            response = await self._request(f"{self.api_base_url}/user")
            if response.status_code != 200:
                raise ProviderUnavailableError(
                    f"Token check failed with HTTP {response.status_code}", self.name
                )

        try:
            await self._refresh_rate_limit()
        except ProviderError as exc:
            self._logger.warning("Could not read rate limit", error=str(exc))

        self._logger.info(
            "GitHub provider initialized",
            repos=[r.full_name for r in self.repos],
            authenticated=bool(self._token),
        )

    async def shutdown(self) -> None:
        self._cache.clear()
        await self._client.aclose()

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def fetch_index(self) -> RemoteResourceIndex:
        started = time.perf_counter()
        cached = self._cache.get(_INDEX_KEY)
        if cached is not None:
            self._stats.record_cache_hit()
            return cached
        try:
            index = await self._build_index()
        except ProviderError:
            self._stats.record_failure(elapsed_ms(started))
            raise
        self._stats.record_success(elapsed_ms(started), resources=index.total_count)
        return index

    async def fetch_resource(self, resource_id: str, category: ResourceCategory) -> RemoteResource:
        started = time.perf_counter()
        key = (category, resource_id)
        cached = self._cache.get(key)
        if cached is not None:
            self._stats.record_cache_hit(resources=1, tokens=cached.estimated_tokens)
            return cached

        parts = resource_id.split("/", 2)
        if len(parts) < 3 or not all(parts):
            self._stats.record_success(elapsed_ms(started))
            raise ResourceNotFoundError(resource_id, self.name, category)
        owner, repo, path = parts
        branch = self._branch_for(owner, repo)

        try:
            response = await self._request(f"{self.raw_base_url}/{owner}/{repo}/{branch}/{path}")
        except ProviderError:
            self._stats.record_failure(elapsed_ms(started))
            raise
        if response.status_code == 404:
            self._stats.record_success(elapsed_ms(started))
            raise ResourceNotFoundError(resource_id, self.name, category)
        if response.status_code != 200:
            self._stats.record_failure(elapsed_ms(started))
            raise ProviderUnavailableError(
                f"Unexpected HTTP {response.status_code} for {resource_id}", self.name
            )

        resource = markdown_resource(
            response.text,
            resource_id=resource_id,
            category=category,
            source=self.name,
            source_uri=f"https://github.com/{owner}/{repo}/blob/{branch}/{path}",
        )
        self._cache.set(key, resource)
        self._stats.record_success(
            elapsed_ms(started), resources=1, tokens=resource.estimated_tokens
        )
        return resource

    async def search(self, query: str, options: Optional[SearchOptions] = None) -> SearchResponse:
        started = time.perf_counter()
        try:
            index = self._cache.get(_INDEX_KEY) or await self._build_index()
        except ProviderError:
            self._stats.record_failure(elapsed_ms(started))
            raise
        response = rank(query, index.resources, options, started=started)
        self._stats.record_success(elapsed_ms(started))
        return response

    async def health_check(self) -> ProviderHealth:
        started = time.perf_counter()
        try:
            response = await self._client.get(f"{self.api_base_url}/rate_limit")
        except httpx.HTTPError as exc:
            return ProviderHealth.unhealthy(self.name, f"GitHub unreachable: {exc}", elapsed_ms(started))

        duration = elapsed_ms(started)
        if response.status_code == 401:
            return ProviderHealth(
                provider=self.name,
                status="unhealthy",
                response_time_ms=duration,
                reachable=True,
                authenticated=False,
                error="Authentication failed",
            )
        if response.status_code != 200:
            return ProviderHealth(
                provider=self.name,
                status="unhealthy",
                response_time_ms=duration,
                reachable=True,
                authenticated=bool(self._token),
                error=f"HTTP {response.status_code}",
            )

        self._store_rate_limit_payload(response.json())
        status, error = "healthy", None
        quota = self._rate_limit
        if quota is not None and quota.limit and quota.remaining < quota.limit * DEGRADED_QUOTA_RATIO:
            status, error = "degraded", f"Rate limit low: {quota.remaining}/{quota.limit}"
        return ProviderHealth(
            provider=self.name,
            status=status,
            response_time_ms=duration,
            reachable=True,
            authenticated=bool(self._token),
            error=error,
        )

    def get_stats(self) -> ProviderStats:
        return self._stats.snapshot(rate_limit=self._rate_limit)

    def reset_stats(self) -> None:
        self._stats.reset()

    # -------------------------------------------------------------------------
    # Indexing
    # -------------------------------------------------------------------------

    async def _build_index(self) -> RemoteResourceIndex:
        results = await asyncio.gather(
            *(self._scan_repo(repo) for repo in self.repos), return_exceptions=True
        )
        resources: list[RemoteResourceMetadata] = []
        errors: list[BaseException] = []
        for repo, result in zip(self.repos, results):
            if isinstance(result, BaseException):
                self._logger.warning("Repository scan failed", repo=repo.full_name, error=str(result))
                errors.append(result)
            else:
                resources.extend(result)
        if errors and len(errors) == len(self.repos):
            first = errors[0]
            if isinstance(first, ProviderError):
                raise first
            raise ProviderUnavailableError(f"Repository scan failed: {first}", self.name, first)

        index = RemoteResourceIndex.build(self.name, resources)
        self._cache.set(_INDEX_KEY, index, ttl=self.cache_ttl)
        return index

    async def _scan_repo(self, repo: RepoSpec) -> list[RemoteResourceMetadata]:
        branch = repo.branch or self.default_branch
        tree = await self._tree(repo, branch)
        blobs = [
            entry for entry in tree
            if entry.get("type") == "blob" and is_resource_path(entry.get("path", ""))
        ]
        layout = detect_layout([b["path"] for b in blobs])
        if layout != "flat":
            # Structured repositories only publish files under category directories.
            blobs = [b for b in blobs if category_directory(b["path"]) is not None]
        self._logger.debug("Scanned repository", repo=repo.full_name, layout=layout, files=len(blobs))

        resources = []
        for blob in blobs:
            path = blob["path"]
            directory = category_directory(path)
            category = CATEGORY_DIRECTORIES[directory] if directory else DEFAULT_CATEGORY
            pure = PurePosixPath(path)
            folders = [p.lower() for p in pure.parts[:-1] if p.lower() != directory]
            resources.append(RemoteResourceMetadata(
                id=f"{repo.owner}/{repo.repo}/{path}",
                category=category,
                title=pure.stem.replace("-", " ").replace("_", " ").title(),
                tags=[*folders, *pure.stem.lower().replace("_", "-").split("-")],
                estimated_tokens=math.ceil(int(blob.get("size") or 0) / 4),
                source=self.name,
                source_uri=f"https://github.com/{repo.owner}/{repo.repo}/blob/{branch}/{path}",
            ))
        return resources

    async def _tree(self, repo: RepoSpec, branch: str) -> list[dict]:
        key = ("tree", repo.full_name, branch)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        url = f"{self.api_base_url}/repos/{repo.owner}/{repo.repo}/git/trees/{branch}?recursive=1"
        response = await self._request(url)
        if response.status_code == 404:
            raise ProviderUnavailableError(
                f"Repository or branch not found: {repo.full_name}@{branch}", self.name
            )
        if response.status_code != 200:
            raise ProviderUnavailableError(
                f"Tree request for {repo.full_name} failed with HTTP {response.status_code}", self.name
            )
        payload = response.json()
        if payload.get("truncated"):
            self._logger.warning("Repository tree truncated", repo=repo.full_name)
        tree = list(payload.get("tree", []))
        self._cache.set(key, tree, ttl=self.tree_cache_ttl)
        return tree

    def _branch_for(self, owner: str, repo: str) -> str:
        for spec in self.repos:
            if spec.owner == owner and spec.repo == repo and spec.branch:
                return spec.branch
        return self.default_branch

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def _request(self, url: str) -> httpx.Response:
        """GET with retries.

        Transport errors and 5xx responses are retried with exponential
        backoff. A quota reset close enough to wait for is waited out;
        otherwise `RateLimitedError` is raised. HTTP 401 is terminal.
        """
        last_error: str = ""
        for attempt in range(self.retry_attempts + 1):
            try:
                response = await self._client.get(url)
            except httpx.TransportError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
            else:
                self._update_rate_limit(response.headers)
                if response.status_code == 401:
                    raise ProviderAuthenticationError("GitHub rejected the API token", self.name)
                retry_after = self._rate_limited_for(response)
                if retry_after is not None:
                    if retry_after > MAX_BACKOFF_SECONDS or attempt >= self.retry_attempts:
                        raise RateLimitedError(self.name, retry_after)
                    await asyncio.sleep(retry_after)
                    continue
                if response.status_code < 500:
                    return response
                last_error = f"HTTP {response.status_code}"

            if attempt < self.retry_attempts:
                delay = min(self.retry_backoff * (2 ** attempt), MAX_BACKOFF_SECONDS)
                self._logger.debug("Retrying GitHub request", url=url, attempt=attempt + 1, delay=delay)
                await asyncio.sleep(delay)

        raise ProviderUnavailableError(
            f"GitHub request failed after {self.retry_attempts + 1} attempts: {last_error}", self.name
        )

    def _rate_limited_for(self, response: httpx.Response) -> Optional[float]:
        """Seconds to wait if the response signals quota exhaustion, else None."""
        if response.status_code == 429 or (
            response.status_code == 403 and response.headers.get("x-ratelimit-remaining") == "0"
        ):
            retry_after = response.headers.get("retry-after")
            if retry_after is not None:
                try:
                    return max(0.0, float(retry_after))
                except ValueError:
                    pass
            if self._rate_limit is not None and self._rate_limit.reset_at is not None:
                delta = (self._rate_limit.reset_at - datetime.now(timezone.utc)).total_seconds()
                return max(0.0, delta)
            return 60.0
        return None

    def _update_rate_limit(self, headers: httpx.Headers) -> None:
        try:
            remaining = int(headers["x-ratelimit-remaining"])
            limit = int(headers["x-ratelimit-limit"])
        except (KeyError, ValueError):
            return
        reset = headers.get("x-ratelimit-reset")
        self._rate_limit = RateLimitInfo(
            limit=limit,
            remaining=remaining,
            reset_at=datetime.fromtimestamp(int(reset), tz=timezone.utc) if reset and reset.isdigit() else None,
        )

    async def _refresh_rate_limit(self) -> None:
        response = await self._request(f"{self.api_base_url}/rate_limit")
        if response.status_code == 200:
            self._store_rate_limit_payload(response.json())

    def _store_rate_limit_payload(self, payload: dict) -> None:
        core = payload.get("resources", {}).get("core") or payload.get("rate")
        if not core:
            return
        self._rate_limit = RateLimitInfo(
            limit=int(core.get("limit", 0)),
            remaining=int(core.get("remaining", 0)),
            reset_at=datetime.fromtimestamp(int(core["reset"]), tz=timezone.utc) if core.get("reset") else None,
        )
