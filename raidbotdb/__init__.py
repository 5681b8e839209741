"""
raidbotdb — Soundboard database on Redis.

Sounds, categories and per-user join sounds with consistent secondary
indexes (mirrored membership sets, case-insensitive name index) kept by
server-side scripts, plus a pub/sub relay for cross-process events.
"""

__version__ = "0.3.0"

from raidbotdb.types import Sound, Category
from raidbotdb.errors import (
    BackingStoreError,
    Conflict,
    MalformedData,
    NotFound,
    SoundboardError,
)
from raidbotdb.store import SoundboardStore, connect
from raidbotdb.relay import ChannelSubscription, PubSubRelay
from raidbotdb.config import SoundboardConfig, load_config

__all__ = [
    "__version__",
    "Sound",
    "Category",
    "SoundboardError",
    "NotFound",
    "Conflict",
    "MalformedData",
    "BackingStoreError",
    "SoundboardStore",
    "connect",
    "PubSubRelay",
    "ChannelSubscription",
    "SoundboardConfig",
    "load_config",
]
