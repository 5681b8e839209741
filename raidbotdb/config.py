"""
Soundboard Configuration

Configuration dataclasses for raidbotdb: Redis connection, key namespace
and pub/sub relay settings. Includes load_config() for reading a JSON
config file with silent fallback to compiled defaults.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class ValidationError(ValueError):
    """Raised when config values are out of valid range."""

    pass


def _check_range(
    errors: List[str], name: str, value, lo, hi, typ=None,
) -> None:
    """Append an error message if value is out of [lo, hi] or wrong type."""
    if typ is not None and (isinstance(value, bool) or not isinstance(value, typ)):
        expected = (
            typ.__name__ if isinstance(typ, type)
            else "/".join(t.__name__ for t in typ)
        )
        errors.append(f"{name}: expected {expected}, got {type(value).__name__}")
        return
    if value < lo or value > hi:
        errors.append(f"{name}: {value} not in [{lo}, {hi}]")


# Key prefixes end up inside Lua-built key names; keep them to a safe charset.
_KEY_PREFIX_PATTERN = re.compile(r"^[A-Za-z0-9_.\-:]*$")
_URL_SCHEMES = ("redis://", "rediss://", "unix://")


@dataclass
class RedisConfig:
    """Connection and key namespace for the soundboard store."""
    url: str = "redis://localhost:6379/0"
    db: Optional[int] = None
    connection_name: str = "raidbotdb"
    key_prefix: str = ""
    socket_timeout: Optional[float] = None

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        if not self.url.startswith(_URL_SCHEMES):
            errors.append(
                f"redis.url: unsupported scheme in {self.url!r} "
                f"(expected one of {', '.join(_URL_SCHEMES)})"
            )
        if self.db is not None:
            _check_range(errors, "redis.db", self.db, 0, 15, int)
        if not _KEY_PREFIX_PATTERN.match(self.key_prefix):
            errors.append(
                f"redis.key_prefix: {self.key_prefix!r}: "
                "only [A-Za-z0-9_.-:] characters allowed"
            )
        if self.socket_timeout is not None:
            _check_range(errors, "redis.socket_timeout",
                         self.socket_timeout, 0.01, 3600.0, (int, float))
        return errors


@dataclass
class RelayConfig:
    """Pub/sub relay configuration."""
    connection_name: str = "raidbotdb-relay"
    poll_interval: float = 0.05

    def validate(self) -> List[str]:
        """Return list of validation error messages (empty = valid)."""
        errors: List[str] = []
        _check_range(errors, "relay.poll_interval",
                     self.poll_interval, 0.001, 10.0, (int, float))
        return errors


@dataclass
class SoundboardConfig:
    """Top-level raidbotdb configuration."""
    redis: RedisConfig = field(default_factory=RedisConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> SoundboardConfig:
        """Build config from a nested dict (e.g. JSON)."""
        kwargs: Dict[str, Any] = {}
        if "redis" in d:
            kwargs["redis"] = RedisConfig(**d["redis"])
        if "relay" in d:
            kwargs["relay"] = RelayConfig(**d["relay"])
        return cls(**kwargs)

    def validate(self) -> List[str]:
        """Validate all config sections. Returns list of error messages."""
        errors: List[str] = []
        errors.extend(self.redis.validate())
        errors.extend(self.relay.validate())
        return errors


def load_config(
    path: Optional[str] = None, *, strict: bool = False,
) -> SoundboardConfig:
    """Load config from a JSON file. Returns defaults if file missing/invalid.

    Args:
        path: Path to config.json. If None, returns compiled defaults.
        strict: If True, raise ValidationError on invalid config values.

    Returns:
        SoundboardConfig with values from file or defaults.

    Raises:
        ValidationError: If strict=True and config values are out of range.
    """
    if path is None:
        cfg = SoundboardConfig()
    else:
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
            cfg = SoundboardConfig.from_dict(data)
        except (FileNotFoundError, json.JSONDecodeError, TypeError, KeyError):
            cfg = SoundboardConfig()

    if strict:
        errors = cfg.validate()
        if errors:
            raise ValidationError(
                f"Config validation failed: {'; '.join(errors)}"
            )

    return cfg
