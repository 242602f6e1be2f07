"""YAML front matter splitting for markdown resources."""

import math
import re
from typing import Any, Optional

import yaml

from app.conduit.core.types import RemoteResource

_FRONTMATTER = re.compile(r"\A---[ \t]*\r?\n(.*?)\r?\n---[ \t]*(?:\r?\n|\Z)", re.DOTALL)


def parse_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Split a markdown document into its front matter mapping and body.

    Documents without front matter, or whose front matter is not a YAML
    mapping, yield an empty mapping and the full text as body.
    """
    match = _FRONTMATTER.match(text)
    if not match:
        return {}, text
    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError:
        return {}, text
    if not isinstance(data, dict):
        return {}, text
    return data, text[match.end():]


def as_list(value: Any) -> list[str]:
    """Coerce a front matter value (scalar, comma string or list) to strings."""
    if value is None:
        return []
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(item).strip() for item in value if str(item).strip()]
    return [str(value)]


def estimate_tokens(text: str) -> int:
    """Rough token count: four characters per token, rounded up."""
    return math.ceil(len(text) / 4)


def _first_heading(body: str) -> Optional[str]:
    for line in body.splitlines():
        if line.startswith("# "):
            return line[2:].strip()
    return None


def markdown_resource(
    text: str,
    *,
    resource_id: str,
    category: str,
    source: str,
    source_uri: str,
) -> RemoteResource:
    """Build a resource from a markdown document with optional front matter."""
    meta, body = parse_frontmatter(text)
    try:
        estimated = int(meta["estimatedTokens"])
    except (KeyError, TypeError, ValueError):
        estimated = estimate_tokens(body)
    return RemoteResource(
        id=resource_id,
        category=category,
        title=str(meta.get("title") or meta.get("name") or _first_heading(body) or resource_id),
        description=str(meta.get("description") or ""),
        tags=as_list(meta.get("tags")),
        capabilities=as_list(meta.get("capabilities")),
        use_when=as_list(meta.get("useWhen") or meta.get("use_when")),
        estimated_tokens=max(0, estimated),
        version=str(meta["version"]) if meta.get("version") is not None else None,
        source=source,
        source_uri=source_uri,
        content=body,
        dependencies=as_list(meta.get("dependencies")),
        related=as_list(meta.get("related")),
    )
