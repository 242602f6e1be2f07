"""Shared base configuration for Conduit's data structures.

Two flavours of model exist. `CanonicalModel` is frozen and strict: resource
metadata, usage records and computed snapshots never change after creation.
`StateModel` is mutable and reserved for the few records that are updated in
place by their owner (provider health, provider stats, sessions).

Both serialize with camelCase aliases so JSON bodies read ``inputTokens`` and
``costUsd`` while Python code keeps snake_case attribute names.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


# ═══════════════════════════════════════════════════════════════════════════
# BASE CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════

class CanonicalModel(BaseModel):
    """Immutable base for values that are fixed once produced.

    Configuration:
        frozen: Prevents modification after creation.
        extra: Rejects unknown fields so provider payloads cannot leak in.
        str_strip_whitespace: Normalizes string inputs automatically.
        alias_generator: camelCase on the wire, snake_case in Python.
    """
    model_config = ConfigDict(
        frozen=True,
        extra='forbid',
        str_strip_whitespace=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class StateModel(BaseModel):
    """Mutable base for records owned and updated by a single component."""
    model_config = ConfigDict(
        extra='forbid',
        validate_assignment=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


def utc_now() -> datetime:
    """Timezone-aware current time; every timestamp in the system is UTC."""
    return datetime.now(timezone.utc)
