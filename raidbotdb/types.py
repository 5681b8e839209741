"""
Soundboard Data Model

Sounds and categories as returned by the query engine. Records are plain
dataclasses decoded from Redis replies; a category's member count is never
stored, it is filled in from the live membership set at query time.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Literal, Mapping, Optional, Union

from raidbotdb.errors import MalformedData

Number = Union[int, float]
IdKind = Literal["sound", "category"]

VALID_ID_KINDS: set = {"sound", "category"}

# Fields every stored sound hash must carry
_SOUND_FIELDS = ("name", "length", "file")


def parse_id(value: Any, what: str = "id") -> int:
    """Decode an id coming back from Redis. Raises MalformedData."""
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise MalformedData(f"Invalid {what}: {value!r}") from None
    if parsed < 1:
        raise MalformedData(f"Invalid {what}: {value!r}")
    return parsed


def parse_number(value: Any, what: str = "length") -> Number:
    """Decode a stored numeric field, keeping integers integral."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    try:
        return int(value)
    except (TypeError, ValueError):
        pass
    try:
        return float(value)
    except (TypeError, ValueError):
        raise MalformedData(f"Invalid {what}: {value!r}") from None


def check_id(value: Any, what: str = "id") -> int:
    """Validate a caller-supplied id. Raises ValueError."""
    if isinstance(value, bool):
        raise ValueError(f"{what} must be a positive integer, got {value!r}")
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{what} must be a positive integer, got {value!r}") from None
    if parsed < 1 or str(parsed) != str(value).strip():
        raise ValueError(f"{what} must be a positive integer, got {value!r}")
    return parsed


def pairs_to_dict(flat: List[Any]) -> Dict[str, Any]:
    """Fold a flat HGETALL-style reply [k1, v1, k2, v2, ...] into a dict."""
    if len(flat) % 2:
        raise MalformedData(f"Odd-length field list: {flat!r}")
    return {flat[i]: flat[i + 1] for i in range(0, len(flat), 2)}


# ---------------------------------------------------------------------------
# Sound
# ---------------------------------------------------------------------------

@dataclass
class Sound:
    """A playable sound. ``id`` is assigned by the store and never reused."""

    id: int
    name: str
    length: Number
    file: str
    owner: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-safe dict."""
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> Sound:
        """Deserialize from a dict, e.g. a relay payload."""
        try:
            return cls(
                id=parse_id(d["id"]),
                name=str(d["name"]),
                length=parse_number(d["length"]),
                file=str(d["file"]),
                owner=d.get("owner"),
            )
        except KeyError as exc:
            raise MalformedData(f"Sound payload missing field {exc}") from None

    @classmethod
    def from_hash(cls, sound_id: Any, fields: Mapping[str, Any]) -> Sound:
        """Build a Sound from its stored field map.

        Raises:
            MalformedData: if a required field is missing or does not decode.
        """
        missing = [f for f in _SOUND_FIELDS if f not in fields]
        if missing:
            raise MalformedData(
                f"Sound {sound_id} record missing field(s): {', '.join(missing)}"
            )
        owner = fields.get("owner")
        return cls(
            id=parse_id(sound_id, "sound id"),
            name=fields["name"],
            length=parse_number(fields["length"]),
            file=fields["file"],
            owner=owner if owner else None,
        )


# ---------------------------------------------------------------------------
# Category
# ---------------------------------------------------------------------------

@dataclass
class Category:
    """A named group of sounds with its live member count."""

    id: int
    name: str
    membercount: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-safe dict."""
        return asdict(self)

    @classmethod
    def from_reply(cls, reply: List[Any]) -> Category:
        """Decode a ``[id, name, count]`` triple returned by a read script."""
        if len(reply) != 3:
            raise MalformedData(f"Unexpected category reply: {reply!r}")
        cid, name, count = reply
        if not name:
            raise MalformedData(f"Category {cid} has no name record")
        return cls(
            id=parse_id(cid, "category id"),
            name=name,
            membercount=int(count),
        )
