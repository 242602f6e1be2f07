"""Keyword search scoring shared by every provider.

score = 10 per tag match + 8 per capability match + 5 per use-when match
        + 15 if the category was requested + 5 if the resource is small

A small resource earns 5 points without matching anything, so providers
that only want relevant results rank with a floor of `RELEVANCE_FLOOR`.
"""

import re
import time
from typing import Iterable, Optional, Sequence

from app.conduit.core.types import (
    RemoteResourceMetadata,
    SearchFacets,
    SearchOptions,
    SearchResponse,
    SearchResult,
)

TAG_WEIGHT = 10
CAPABILITY_WEIGHT = 8
USE_WHEN_WEIGHT = 5
CATEGORY_BONUS = 15
SMALL_RESOURCE_BONUS = 5
SMALL_RESOURCE_TOKENS = 1000

# Floor applied by providers whose results must match at least one keyword.
RELEVANCE_FLOOR = 10

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "from", "as", "is", "was", "are", "were", "be", "been",
    "being", "have", "has", "had", "do", "does", "did", "will", "would",
    "should", "could", "may", "might", "must", "can", "i", "you", "he", "she",
    "it", "we", "they", "this", "that", "these", "those", "what", "which",
    "who", "when", "where", "why", "how", "need", "want", "use", "using",
})

_NON_WORD = re.compile(r"[^\w\s-]")


def extract_keywords(query: str) -> list[str]:
    """Lowercase, strip punctuation, drop stop words and single letters, dedupe."""
    words = _NON_WORD.sub(" ", query.lower()).split()
    return list(dict.fromkeys(w for w in words if len(w) > 1 and w not in STOP_WORDS))


def _matches(keyword: str, values: Iterable[str]) -> bool:
    return any(keyword in value.lower() for value in values)


def score_resource(
    resource: RemoteResourceMetadata,
    keywords: Sequence[str],
    options: SearchOptions,
) -> Optional[SearchResult]:
    """Score one resource, or return None when a filter excludes it."""
    if options.categories and resource.category not in options.categories:
        return None
    if options.required_tags:
        tags = set(resource.tags)
        if not all(tag.lower() in tags for tag in options.required_tags):
            return None

    score = 0
    reasons: list[str] = []
    for keyword in keywords:
        if _matches(keyword, resource.tags):
            score += TAG_WEIGHT
            reasons.append(f"tag:{keyword}")
        if _matches(keyword, resource.capabilities):
            score += CAPABILITY_WEIGHT
            reasons.append(f"capability:{keyword}")
        if _matches(keyword, resource.use_when):
            score += USE_WHEN_WEIGHT
            reasons.append(f"use-when:{keyword}")
    if options.categories:
        score += CATEGORY_BONUS
        reasons.append(f"category:{resource.category}")
    if resource.estimated_tokens < SMALL_RESOURCE_TOKENS:
        score += SMALL_RESOURCE_BONUS
        reasons.append("small")
    return SearchResult(resource=resource, score=score, match_reasons=tuple(reasons))


def build_facets(results: Iterable[SearchResult]) -> SearchFacets:
    categories: dict[str, int] = {}
    tags: dict[str, int] = {}
    for result in results:
        categories[result.resource.category] = categories.get(result.resource.category, 0) + 1
        for tag in result.resource.tags:
            tags[tag] = tags.get(tag, 0) + 1
    return SearchFacets(categories=categories, tags=tags)


def rank(
    query: str,
    resources: Iterable[RemoteResourceMetadata],
    options: Optional[SearchOptions] = None,
    started: Optional[float] = None,
    default_min_score: int = 0,
) -> SearchResponse:
    """Score, filter and rank resources into a response.

    `default_min_score` applies when the options leave `min_score` unset.
    Sorting is stable, so equal scores keep their index order.
    """
    options = options or SearchOptions()
    min_score = default_min_score if options.min_score is None else options.min_score
    started = time.perf_counter() if started is None else started
    keywords = extract_keywords(query)

    scored = []
    for resource in resources:
        result = score_resource(resource, keywords, options)
        if result is not None and result.score >= min_score:
            scored.append(result)
    scored.sort(key=lambda r: r.score, reverse=True)

    window = scored[options.offset:options.offset + options.max_results]
    return SearchResponse(
        results=tuple(window),
        total_matches=len(scored),
        query=query,
        search_time_ms=(time.perf_counter() - started) * 1000,
        facets=build_facets(scored),
    )
