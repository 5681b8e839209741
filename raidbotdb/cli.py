"""
raidbotdb CLI — Soundboard Database Commands

Commands:
    raidbotdb init                                  — create id counters (idempotent)
    raidbotdb stats                                 — store metrics
    raidbotdb search "query"                        — substring search on names
    raidbotdb sound add NAME --length L --file F    — create a sound
    raidbotdb sound list|show|rename|rm|categories  — inspect and edit sounds
    raidbotdb category add|list|show|rm             — manage categories
    raidbotdb category add-sound|remove-sound       — edit membership
    raidbotdb joinsound set|get|rm|list             — per-user join sounds
    raidbotdb publish CHANNEL JSON                  — publish a relay message
    raidbotdb listen CHANNEL [CHANNEL ...]          — print relay messages

Environment variables:
    RAIDBOT_REDIS_URL   Redis URL (default: redis://localhost:6379/0)
    RAIDBOT_PREFIX      Key prefix (default: none)
    RAIDBOT_CONFIG      Path to a JSON config file

Precedence (invariant):
    CLI --flag  >  RAIDBOT_* env var  >  config file  >  compiled default

Exit codes:
    0  Success (including idempotent no-op)
    1  Operational error (not found, name conflict, bad args or config)
    2  Internal failure (backing store error, unexpected exception)
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any, List, Optional

from raidbotdb.config import SoundboardConfig, ValidationError, load_config
from raidbotdb.errors import SoundboardError
from raidbotdb.relay import PubSubRelay
from raidbotdb.store import SoundboardStore, connect
from raidbotdb.types import Category, Sound, parse_number

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Env parsing and resolvers
# ---------------------------------------------------------------------------


def _env_str(name: str, default: str) -> str:
    """Parse string env var with fallback."""
    return os.environ.get(name, default)


def _resolve_config(args: argparse.Namespace) -> SoundboardConfig:
    """Resolve config: --config > RAIDBOT_CONFIG > defaults, then apply
    --url/RAIDBOT_REDIS_URL and --prefix/RAIDBOT_PREFIX overrides."""
    path = getattr(args, "config", None) or _env_str("RAIDBOT_CONFIG", "") or None
    cfg = load_config(path)
    url = getattr(args, "url", None) or _env_str("RAIDBOT_REDIS_URL", "")
    if url:
        cfg.redis.url = url
    prefix = getattr(args, "prefix", None)
    if prefix is None:
        prefix = os.environ.get("RAIDBOT_PREFIX")
    if prefix is not None:
        cfg.redis.key_prefix = prefix
    errors = cfg.validate()
    if errors:
        raise ValidationError(f"Config validation failed: {'; '.join(errors)}")
    return cfg


def _open_store(cfg: SoundboardConfig) -> SoundboardStore:
    """Open a SoundboardStore on its own connection."""
    return SoundboardStore(connect(cfg.redis), key_prefix=cfg.redis.key_prefix)


def _open_relay(cfg: SoundboardConfig) -> PubSubRelay:
    """Open a PubSubRelay on its own connection."""
    client = connect(cfg.redis, client_name=cfg.relay.connection_name)
    return PubSubRelay(client, poll_interval=cfg.relay.poll_interval)


# ---------------------------------------------------------------------------
# Output helpers (respect --quiet and --json)
# ---------------------------------------------------------------------------

_quiet = False


def _info(msg: str) -> None:
    """Print progress to stderr (suppressed by --quiet)."""
    if not _quiet:
        print(msg, file=sys.stderr)


def _warn(msg: str) -> None:
    """Print warning to stderr (always visible)."""
    print(msg, file=sys.stderr)


def _want_json(args: argparse.Namespace) -> bool:
    return bool(getattr(args, "json", False))


def _emit_json(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _print_sounds(sounds: List[Sound], args: argparse.Namespace) -> None:
    if _want_json(args):
        _emit_json([s.to_dict() for s in sounds])
        return
    if not sounds:
        _info("No sounds.")
        return
    for s in sounds:
        owner = f"  owner={s.owner}" if s.owner else ""
        print(f"  {s.id:>5}  {s.name:30s}  {s.length:>8}  {s.file}{owner}")


def _print_categories(categories: List[Category], args: argparse.Namespace) -> None:
    if _want_json(args):
        _emit_json([c.to_dict() for c in categories])
        return
    if not categories:
        _info("No categories.")
        return
    for c in categories:
        print(f"  {c.id:>5}  {c.name:30s}  {c.membercount} sound(s)")


def _print_sound(sound: Sound, args: argparse.Namespace) -> None:
    if _want_json(args):
        _emit_json(sound.to_dict())
        return
    print(f"ID:     {sound.id}")
    print(f"Name:   {sound.name}")
    print(f"Length: {sound.length}")
    print(f"File:   {sound.file}")
    print(f"Owner:  {sound.owner or '(none)'}")


# ===========================================================================
# Commands: store
# ===========================================================================


async def cmd_init(store: SoundboardStore, args: argparse.Namespace) -> None:
    """Create the id counters if they are missing."""
    created = await store.initialize()
    _info("Counters initialized." if created else "Counters already present.")


async def cmd_stats(store: SoundboardStore, args: argparse.Namespace) -> None:
    """Show store statistics."""
    stats = await store.stats()
    if _want_json(args):
        stats["status"] = "ok"
        _emit_json(stats)
        return
    print("Soundboard Statistics")
    print("=" * 40)
    print(f"  Sounds:       {stats['sounds']}")
    print(f"  Categories:   {stats['categories']}")
    print(f"  Join sounds:  {stats['joinsounds']}")
    print(f"  Last ids:     sound={stats['last_sound_id']} "
          f"category={stats['last_category_id']}")
    if stats["key_prefix"]:
        print(f"  Key prefix:   {stats['key_prefix']}")


async def cmd_search(store: SoundboardStore, args: argparse.Namespace) -> None:
    """Search sounds by name."""
    sounds = await store.search_sounds(args.query)
    # Scan order is arbitrary; sort for stable output
    sounds.sort(key=lambda s: (s.name.lower(), s.id))
    if not sounds and not _want_json(args):
        _info("No results found.")
        return
    _print_sounds(sounds, args)


# -- sound ------------------------------------------------------------------


async def cmd_sound_add(store: SoundboardStore, args: argparse.Namespace) -> None:
    sound = await store.create_sound(args.name, args.length, args.file, args.owner)
    if _want_json(args):
        _emit_json(sound.to_dict())
    else:
        print(sound.id)
        _info(f"Created sound {sound.id}: {sound.name}")


async def cmd_sound_list(store: SoundboardStore, args: argparse.Namespace) -> None:
    _print_sounds(await store.get_sounds(), args)


async def cmd_sound_show(store: SoundboardStore, args: argparse.Namespace) -> None:
    _print_sound(await store.get_sound_by_id(args.id), args)


async def cmd_sound_rename(store: SoundboardStore, args: argparse.Namespace) -> None:
    sound = await store.rename_sound(args.id, args.name)
    _info(f"Renamed sound {sound.id} to {sound.name}")
    if _want_json(args):
        _emit_json(sound.to_dict())


async def cmd_sound_rm(store: SoundboardStore, args: argparse.Namespace) -> None:
    dropped = await store.delete_sound(args.id)
    _info(f"Deleted sound {args.id}")
    if dropped:
        _info(f"  Empty categories removed: {', '.join(map(str, dropped))}")
    if _want_json(args):
        _emit_json({"deleted": args.id, "categories_removed": dropped})


async def cmd_sound_categories(store: SoundboardStore, args: argparse.Namespace) -> None:
    categories = await store.get_categories_for_sound(args.id)
    categories.sort(key=lambda c: (c.name, c.id))
    _print_categories(categories, args)


# -- category ---------------------------------------------------------------


async def cmd_category_add(store: SoundboardStore, args: argparse.Namespace) -> None:
    category = await store.create_category(args.name)
    if _want_json(args):
        _emit_json(category.to_dict())
    else:
        print(category.id)
        _info(f"Created category {category.id}: {category.name}")


async def cmd_category_list(store: SoundboardStore, args: argparse.Namespace) -> None:
    _print_categories(await store.get_categories(), args)


async def cmd_category_show(store: SoundboardStore, args: argparse.Namespace) -> None:
    _print_sounds(await store.get_sounds_in_category(args.id), args)


async def cmd_category_rm(store: SoundboardStore, args: argparse.Namespace) -> None:
    unlinked = await store.delete_category(args.id)
    _info(f"Deleted category {args.id} ({unlinked} sound(s) unlinked)")


async def cmd_category_add_sound(store: SoundboardStore, args: argparse.Namespace) -> None:
    added = await store.add_sound_to_category(args.sound_id, args.category_id)
    if not added:
        _info(f"Sound {args.sound_id} already in category {args.category_id}")


async def cmd_category_remove_sound(store: SoundboardStore, args: argparse.Namespace) -> None:
    removed = await store.remove_sound_from_category(args.category_id, args.sound_id)
    if not removed:
        _info(f"Sound {args.sound_id} was not in category {args.category_id}")


# -- joinsound --------------------------------------------------------------


async def cmd_joinsound_set(store: SoundboardStore, args: argparse.Namespace) -> None:
    await store.set_joinsound(args.user, args.sound_id)
    _info(f"Join sound for {args.user} set to {args.sound_id}")


async def cmd_joinsound_get(store: SoundboardStore, args: argparse.Namespace) -> None:
    _print_sound(await store.get_joinsound(args.user), args)


async def cmd_joinsound_rm(store: SoundboardStore, args: argparse.Namespace) -> None:
    if not await store.remove_joinsound(args.user):
        _info(f"No join sound set for {args.user}")


async def cmd_joinsound_list(store: SoundboardStore, args: argparse.Namespace) -> None:
    mapping = await store.get_joinsounds()
    if _want_json(args):
        _emit_json(mapping)
        return
    for user, sid in sorted(mapping.items()):
        print(f"  {user:30s}  {sid}")


# ===========================================================================
# Commands: relay
# ===========================================================================


async def cmd_publish(relay: PubSubRelay, args: argparse.Namespace) -> None:
    """Publish a JSON payload on a channel."""
    try:
        payload = json.loads(args.payload)
    except json.JSONDecodeError as e:
        raise ValueError(f"Payload is not valid JSON: {e}") from None
    receivers = await relay.send(args.channel, payload)
    _info(f"Published on {args.channel} ({receivers} receiver(s))")


async def cmd_listen(relay: PubSubRelay, args: argparse.Namespace) -> None:
    """Print incoming messages as JSON lines until interrupted."""
    queue: asyncio.Queue = asyncio.Queue()
    for channel in args.channels:
        await relay.on(channel, lambda payload, ch=channel: queue.put_nowait((ch, payload)))
    relay.start()
    _info(f"Listening on {', '.join(args.channels)} (Ctrl+C to stop)")
    received = 0
    while args.count is None or received < args.count:
        channel, payload = await queue.get()
        print(json.dumps({"channel": channel, "payload": payload}, ensure_ascii=False),
              flush=True)
        received += 1


# ===========================================================================
# Dispatch
# ===========================================================================


async def _execute(args: argparse.Namespace) -> None:
    """Open the store or relay the command needs, run it, close it."""
    cfg = _resolve_config(args)
    if getattr(args, "uses_relay", False):
        relay = _open_relay(cfg)
        try:
            await args.func(relay, args)
        finally:
            await relay.close()
    else:
        store = _open_store(cfg)
        try:
            await args.func(store, args)
        finally:
            await store.close()


def _build_parser() -> argparse.ArgumentParser:
    # Shared parent with flags that work on all subcommands; SUPPRESS keeps
    # subparser defaults from overriding values given before the command.
    _url_default = _env_str("RAIDBOT_REDIS_URL", "redis://localhost:6379/0")
    _common = argparse.ArgumentParser(add_help=False)
    _common.add_argument(
        "--url", default=argparse.SUPPRESS,
        help=f"Redis URL (default: {_url_default})",
    )
    _common.add_argument(
        "--prefix", default=argparse.SUPPRESS,
        help="Key prefix (default: RAIDBOT_PREFIX or none)",
    )
    _common.add_argument(
        "--config", default=argparse.SUPPRESS,
        help="JSON config file (default: RAIDBOT_CONFIG)",
    )
    _common.add_argument(
        "--quiet", "-q", action="store_true", default=argparse.SUPPRESS,
        help="Suppress stderr progress messages",
    )
    _common.add_argument(
        "--json", action="store_true", default=argparse.SUPPRESS,
        help="Machine-readable JSON output",
    )
    _common.add_argument(
        "-v", "--verbose", action="store_true", default=argparse.SUPPRESS,
        help="Enable verbose logging",
    )

    parser = argparse.ArgumentParser(
        prog="raidbotdb",
        description="raidbotdb — soundboard database on Redis",
        parents=[_common],
    )
    sub = parser.add_subparsers(dest="command", help="Available commands")

    # -- init / stats / search ---------------------------------------------
    p = sub.add_parser("init", parents=[_common], help="Create id counters")
    p.set_defaults(func=cmd_init)

    p = sub.add_parser("stats", parents=[_common], help="Store statistics")
    p.set_defaults(func=cmd_stats)

    p = sub.add_parser("search", parents=[_common], help="Search sounds by name")
    p.add_argument("query", help="Substring; spaces separate wildcard segments")
    p.set_defaults(func=cmd_search)

    # -- sound -------------------------------------------------------------
    p_sound = sub.add_parser("sound", parents=[_common], help="Manage sounds")
    s_sub = p_sound.add_subparsers(dest="action", help="Sound actions")

    p = s_sub.add_parser("add", parents=[_common], help="Create a sound")
    p.add_argument("name", help="Display name (unique, case-insensitive)")
    p.add_argument("--length", type=parse_number, required=True, help="Duration in seconds")
    p.add_argument("--file", required=True, help="Storage reference of the audio file")
    p.add_argument("--owner", default=None, help="Creator identifier")
    p.set_defaults(func=cmd_sound_add)

    p = s_sub.add_parser("list", parents=[_common], help="List all sounds by name")
    p.set_defaults(func=cmd_sound_list)

    p = s_sub.add_parser("show", parents=[_common], help="Show one sound")
    p.add_argument("id", type=int, help="Sound id")
    p.set_defaults(func=cmd_sound_show)

    p = s_sub.add_parser("rename", parents=[_common], help="Rename a sound")
    p.add_argument("id", type=int, help="Sound id")
    p.add_argument("name", help="New display name")
    p.set_defaults(func=cmd_sound_rename)

    p = s_sub.add_parser("rm", parents=[_common], help="Delete a sound (cascades)")
    p.add_argument("id", type=int, help="Sound id")
    p.set_defaults(func=cmd_sound_rm)

    p = s_sub.add_parser("categories", parents=[_common], help="Categories of a sound")
    p.add_argument("id", type=int, help="Sound id")
    p.set_defaults(func=cmd_sound_categories)

    # -- category ----------------------------------------------------------
    p_cat = sub.add_parser("category", parents=[_common], help="Manage categories")
    c_sub = p_cat.add_subparsers(dest="action", help="Category actions")

    p = c_sub.add_parser("add", parents=[_common], help="Create a category")
    p.add_argument("name", help="Category name")
    p.set_defaults(func=cmd_category_add)

    p = c_sub.add_parser("list", parents=[_common], help="List categories by name")
    p.set_defaults(func=cmd_category_list)

    p = c_sub.add_parser("show", parents=[_common], help="Sounds in a category")
    p.add_argument("id", type=int, help="Category id")
    p.set_defaults(func=cmd_category_show)

    p = c_sub.add_parser("rm", parents=[_common], help="Delete a category")
    p.add_argument("id", type=int, help="Category id")
    p.set_defaults(func=cmd_category_rm)

    p = c_sub.add_parser("add-sound", parents=[_common], help="Add a sound to a category")
    p.add_argument("category_id", type=int, help="Category id")
    p.add_argument("sound_id", type=int, help="Sound id")
    p.set_defaults(func=cmd_category_add_sound)

    p = c_sub.add_parser(
        "remove-sound", parents=[_common],
        help="Remove a sound from a category (empty categories are deleted)",
    )
    p.add_argument("category_id", type=int, help="Category id")
    p.add_argument("sound_id", type=int, help="Sound id")
    p.set_defaults(func=cmd_category_remove_sound)

    # -- joinsound ---------------------------------------------------------
    p_join = sub.add_parser("joinsound", parents=[_common], help="Per-user join sounds")
    j_sub = p_join.add_subparsers(dest="action", help="Join sound actions")

    p = j_sub.add_parser("set", parents=[_common], help="Assign a join sound")
    p.add_argument("user", help="User identifier")
    p.add_argument("sound_id", type=int, help="Sound id")
    p.set_defaults(func=cmd_joinsound_set)

    p = j_sub.add_parser("get", parents=[_common], help="Show a user's join sound")
    p.add_argument("user", help="User identifier")
    p.set_defaults(func=cmd_joinsound_get)

    p = j_sub.add_parser("rm", parents=[_common], help="Remove a user's join sound")
    p.add_argument("user", help="User identifier")
    p.set_defaults(func=cmd_joinsound_rm)

    p = j_sub.add_parser("list", parents=[_common], help="List all join sounds")
    p.set_defaults(func=cmd_joinsound_list)

    # -- relay -------------------------------------------------------------
    p = sub.add_parser("publish", parents=[_common], help="Publish a JSON message")
    p.add_argument("channel", help="Channel name")
    p.add_argument("payload", help="JSON payload")
    p.set_defaults(func=cmd_publish, uses_relay=True)

    p = sub.add_parser("listen", parents=[_common], help="Print messages from channels")
    p.add_argument("channels", nargs="+", help="Channel names")
    p.add_argument("--count", type=int, default=None, help="Exit after N messages")
    p.set_defaults(func=cmd_listen, uses_relay=True)

    return parser


# ===========================================================================
# Entry point
# ===========================================================================


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point: raidbotdb <command> [args]."""
    global _quiet

    parser = _build_parser()
    args = parser.parse_args(argv)

    _quiet = getattr(args, "quiet", False)

    if getattr(args, "verbose", False):
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(name)s %(levelname)s %(message)s",
        )
    else:
        logging.basicConfig(level=logging.WARNING)

    if not getattr(args, "func", None):
        parser.print_help()
        sys.exit(1)

    try:
        asyncio.run(_execute(args))
    except (SoundboardError, ValueError) as e:
        # ValidationError and bad ids are ValueErrors too
        _warn(f"Error: {e}")
        sys.exit(1)
    except BrokenPipeError:
        devnull = os.open(os.devnull, os.O_WRONLY)
        os.dup2(devnull, sys.stdout.fileno())
        sys.exit(0)
    except KeyboardInterrupt:
        sys.exit(0)
    except Exception as e:
        _warn(f"Internal error: {e}")
        if getattr(args, "verbose", False):
            import traceback
            traceback.print_exc(file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
