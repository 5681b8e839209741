"""
Redis key layout.

Every key the store touches is built here so the Python side and the Lua
scripts agree. The scripts receive ``KeyLayout.prefix`` as ARGV[1] and
concatenate the same suffixes.
"""

from __future__ import annotations

from typing import Union

Id = Union[int, str]


class KeyLayout:
    """Key names under an optional prefix (``"bot"`` -> ``"bot:sounds"``)."""

    def __init__(self, prefix: str = ""):
        if prefix and not prefix.endswith(":"):
            prefix = prefix + ":"
        self.prefix = prefix

    # -- Allocator counters
    @property
    def sound_counter(self) -> str:
        return f"{self.prefix}sounds:id"

    @property
    def category_counter(self) -> str:
        return f"{self.prefix}categories:id"

    # -- Global sets
    @property
    def sounds(self) -> str:
        return f"{self.prefix}sounds"

    @property
    def categories(self) -> str:
        return f"{self.prefix}categories"

    # -- Primary records
    def sound(self, sound_id: Id) -> str:
        return f"{self.prefix}sounds:{sound_id}"

    def category_name(self, category_id: Id) -> str:
        return f"{self.prefix}categories:{category_id}:name"

    # -- Membership projections
    def category_members(self, category_id: Id) -> str:
        return f"{self.prefix}categories:{category_id}:members"

    def sound_categories(self, sound_id: Id) -> str:
        return f"{self.prefix}sounds:{sound_id}:categories"

    # -- Name index
    @property
    def name_scan(self) -> str:
        return f"{self.prefix}soundnames"

    def name_forward(self, lname: str) -> str:
        return f"{self.prefix}soundnames:{lname}"

    def name_reverse(self, sound_id: Id) -> str:
        return f"{self.prefix}sounds:{sound_id}:name"

    # -- Join sounds
    @property
    def joinsounds(self) -> str:
        return f"{self.prefix}joinsounds"

    def counter(self, kind: str) -> str:
        """Counter key for an id kind ("sound" or "category")."""
        if kind == "sound":
            return self.sound_counter
        if kind == "category":
            return self.category_counter
        raise ValueError(f"Unknown id kind: {kind!r}")
