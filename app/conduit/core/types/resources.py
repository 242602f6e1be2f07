"""Resource types exchanged between providers, the registry and the loader."""

from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import Field, field_validator

from .base import CanonicalModel, utc_now


# ═══════════════════════════════════════════════════════════════════════════
# INTERNAL ENUMS (Not exported in __init__.py)
# ═══════════════════════════════════════════════════════════════════════════

class _ResourceCategory(str, Enum):
    """Internal enum used to enumerate categories; APIs use the literal."""
    AGENT = "agent"
    SKILL = "skill"
    EXAMPLE = "example"
    PATTERN = "pattern"
    WORKFLOW = "workflow"


ResourceCategory = Literal["agent", "skill", "example", "pattern", "workflow"]

RESOURCE_CATEGORIES: tuple[str, ...] = tuple(c.value for c in _ResourceCategory)


# ═══════════════════════════════════════════════════════════════════════════
# RESOURCES
# ═══════════════════════════════════════════════════════════════════════════

class RemoteResourceMetadata(CanonicalModel):
    """Index entry describing one resource without its body.

    Attributes:
        id: Provider-scoped identifier, unique within its category.
        category: Resource category.
        title: Human readable title.
        description: One-paragraph summary.
        tags: Lowercased topic tags used for matching.
        capabilities: Free-text capability statements.
        use_when: Situations in which the resource applies.
        estimated_tokens: Approximate size of the body once loaded.
        version: Optional version string from front matter.
        source: Name of the provider that produced the entry.
        source_uri: Canonical location of the resource at its source.
    """
    id: str = Field(min_length=1)
    category: ResourceCategory
    title: str = ""
    description: str = ""
    tags: tuple[str, ...] = ()
    capabilities: tuple[str, ...] = ()
    use_when: tuple[str, ...] = ()
    estimated_tokens: int = Field(default=0, ge=0)
    version: Optional[str] = None
    source: str
    source_uri: str

    @field_validator("tags", mode="before")
    @classmethod
    def lowercase_tags(cls, v):
        if isinstance(v, str):
            v = [v]
        # Order-preserving dedupe; tags behave as a set.
        return tuple(dict.fromkeys(str(t).strip().lower() for t in v or () if str(t).strip()))


class RemoteResource(RemoteResourceMetadata):
    """A fully fetched resource: metadata plus content."""
    content: str
    dependencies: tuple[str, ...] = ()
    related: tuple[str, ...] = ()

    @property
    def metadata(self) -> RemoteResourceMetadata:
        return RemoteResourceMetadata.model_validate(
            self.model_dump(exclude={"content", "dependencies", "related"})
        )


class IndexStats(CanonicalModel):
    by_category: dict[str, int] = Field(default_factory=dict)
    total_tokens: int = 0
    avg_tokens: int = 0


class RemoteResourceIndex(CanonicalModel):
    """Complete catalog of a provider at fetch time."""
    provider: str
    total_count: int = Field(ge=0)
    resources: tuple[RemoteResourceMetadata, ...] = ()
    stats: IndexStats = Field(default_factory=IndexStats)
    timestamp: datetime = Field(default_factory=utc_now)
    version: str = "1.0.0"

    @classmethod
    def build(cls, provider: str, resources: list[RemoteResourceMetadata],
              version: str = "1.0.0") -> "RemoteResourceIndex":
        """Assemble an index and its per-category statistics."""
        by_category: dict[str, int] = {}
        total_tokens = 0
        for item in resources:
            by_category[item.category] = by_category.get(item.category, 0) + 1
            total_tokens += item.estimated_tokens
        avg = round(total_tokens / len(resources)) if resources else 0
        return cls(
            provider=provider,
            total_count=len(resources),
            resources=tuple(resources),
            stats=IndexStats(by_category=by_category, total_tokens=total_tokens, avg_tokens=avg),
            version=version,
        )


# ═══════════════════════════════════════════════════════════════════════════
# SEARCH
# ═══════════════════════════════════════════════════════════════════════════

class SearchOptions(CanonicalModel):
    """Search filters shared by every provider.

    Attributes:
        categories: Restrict to these categories; a match earns a bonus.
        required_tags: Every listed tag must be present.
        min_score: Results scoring below this are dropped. Unset means the
            provider default applies.
        max_results: Upper bound on returned results.
        offset: Results to skip after ranking.
    """
    categories: tuple[ResourceCategory, ...] = ()
    required_tags: tuple[str, ...] = ()
    min_score: Optional[int] = Field(default=None, ge=0)
    max_results: int = Field(default=50, gt=0)
    offset: int = Field(default=0, ge=0)


class SearchResult(CanonicalModel):
    resource: RemoteResourceMetadata
    score: int = Field(ge=0)
    match_reasons: tuple[str, ...] = ()


class SearchFacets(CanonicalModel):
    categories: dict[str, int] = Field(default_factory=dict)
    tags: dict[str, int] = Field(default_factory=dict)


class FailureRecord(CanonicalModel):
    """Uniform description of one provider's failure inside a fan-out call."""
    provider: str
    kind: str
    message: str


class SearchResponse(CanonicalModel):
    results: tuple[SearchResult, ...] = ()
    total_matches: int = 0
    query: str
    search_time_ms: float = 0.0
    facets: SearchFacets = Field(default_factory=SearchFacets)
    failures: tuple[FailureRecord, ...] = ()
