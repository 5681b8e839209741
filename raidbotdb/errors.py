"""
Error taxonomy for the soundboard database.

NotFound, Conflict and MalformedData are raised by the store itself.
Transport and protocol failures are redis-py exceptions and propagate
unchanged; ``BackingStoreError`` names their common base class so callers
can catch them without importing redis.
"""

from __future__ import annotations

from typing import Any, Optional

from redis.exceptions import RedisError

BackingStoreError = RedisError


class SoundboardError(Exception):
    """Base class for errors raised by raidbotdb operations."""

    pass


class NotFound(SoundboardError, LookupError):
    """A sound, category or join-sound mapping does not exist."""

    def __init__(self, kind: str, key: Any):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")


class Conflict(SoundboardError):
    """A sound name (case-insensitive) is already taken by another sound."""

    def __init__(self, name: str, existing_id: Optional[int] = None):
        self.name = name
        self.existing_id = existing_id
        owner = f" (sound {existing_id})" if existing_id is not None else ""
        super().__init__(f"Sound name already in use: {name!r}{owner}")


class MalformedData(SoundboardError, ValueError):
    """A stored record could not be decoded."""

    pass
