"""
Name normalization and search pattern building.

Provides the pure helpers behind the name index:
  1. normalize_name() — the case-insensitive key a sound name is indexed under.
  2. search_pattern() — turn a user query into an SSCAN MATCH glob.

Both are deterministic and stdlib-only; the store applies them on every
write and search.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Tuple

logger = logging.getLogger(__name__)

# Redis glob metacharacters (stringmatchlen): * ? [ ] ^ and the escape itself
_GLOB_SPECIAL_RE = re.compile(r"([\\*?\[\]^])")


def normalize_name(name: str) -> str:
    """Return the index key for a sound name.

    Raises ValueError on empty or whitespace-only names, which could never
    be searched for.

    Examples:
        >>> normalize_name("AirHorn")
        'airhorn'
    """
    if not isinstance(name, str) or not name.strip():
        raise ValueError(f"Sound name must be a non-empty string, got {name!r}")
    return name.lower()


def escape_glob(text: str) -> str:
    """Escape Redis glob metacharacters so they match literally."""
    return _GLOB_SPECIAL_RE.sub(r"\\\1", text)


def search_pattern(query: str) -> str:
    """Build a MATCH pattern for a case-insensitive substring search.

    The query is lowercased and split on whitespace; each segment must occur
    in order, anything may sit between them. An empty query matches every
    name.

    Examples:
        >>> search_pattern("Boo")
        '*boo*'
        >>> search_pattern("air  horn")
        '*air*horn*'
        >>> search_pattern("what?")
        '*what\\\\?*'
    """
    segments = [escape_glob(s) for s in query.lower().split()]
    if not segments:
        return "*"
    return "*" + "*".join(segments) + "*"


def name_sort_key(name: str, item_id: int) -> Tuple[Any, ...]:
    """Sort key: name first (case-sensitive lexical), id breaks ties."""
    return (name, item_id)
