"""
Soundboard Store — Redis Persistent Backend

Structures (see keys.py for the exact key names):
    sounds / categories          - global id sets
    sounds:<id>                  - sound record (hash: name, length, file, owner)
    categories:<id>:name         - category name
    categories:<id>:members      - membership, indexed by category
    sounds:<id>:categories       - membership, indexed by sound
    soundnames                   - lowercased names (scan set for search)
    soundnames:<lname>           - name index, forward (lname -> id)
    sounds:<id>:name             - name index, reverse (id -> lname)
    joinsounds                   - hash user -> sound id
    sounds:id / categories:id    - id allocator counters

Atomicity: every composite mutation is a single Lua script (when it reads
before writing) or a single MULTI/EXEC batch. There is no cross-operation
locking; two composite operations interleave at operation granularity.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Optional

from redis.asyncio import Redis

from raidbotdb.errors import Conflict, MalformedData, NotFound
from raidbotdb.keys import KeyLayout
from raidbotdb.query import name_sort_key, normalize_name, search_pattern
from raidbotdb.types import (
    VALID_ID_KINDS,
    Category,
    IdKind,
    Number,
    Sound,
    check_id,
    pairs_to_dict,
    parse_id,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Lua scripts
# ---------------------------------------------------------------------------
# ARGV[1] is always the key prefix ("" or "<prefix>:"). Keys are built inside
# the scripts, so none are declared through KEYS. Status codes: -1 = sound
# missing, -2 = category missing, -3 = name conflict (followed by the owner).
# ---------------------------------------------------------------------------

_CREATE_SOUND_LUA = """
local P, name, lname = ARGV[1], ARGV[2], ARGV[3]
local owner = redis.call('GET', P .. 'soundnames:' .. lname)
if owner then
    return {-3, owner}
end
local id = redis.call('INCR', P .. 'sounds:id')
local key = P .. 'sounds:' .. id
redis.call('HSET', key, 'name', name, 'length', ARGV[4], 'file', ARGV[5])
if ARGV[6] ~= '' then
    redis.call('HSET', key, 'owner', ARGV[6])
end
redis.call('SADD', P .. 'sounds', id)
redis.call('SADD', P .. 'soundnames', lname)
redis.call('SET', P .. 'soundnames:' .. lname, id)
redis.call('SET', key .. ':name', lname)
return {id}
"""

_ADD_SOUND_TO_CATEGORY_LUA = """
local P, sid, cid = ARGV[1], ARGV[2], ARGV[3]
if redis.call('SISMEMBER', P .. 'sounds', sid) == 0 then
    return -1
end
if redis.call('SISMEMBER', P .. 'categories', cid) == 0 then
    return -2
end
redis.call('SADD', P .. 'sounds:' .. sid .. ':categories', cid)
return redis.call('SADD', P .. 'categories:' .. cid .. ':members', sid)
"""

_REMOVE_SOUND_FROM_CATEGORY_LUA = """
local P, cid, sid = ARGV[1], ARGV[2], ARGV[3]
local members = P .. 'categories:' .. cid .. ':members'
if redis.call('SREM', members, sid) == 0 then
    return 0
end
redis.call('SREM', P .. 'sounds:' .. sid .. ':categories', cid)
if redis.call('SCARD', members) == 0 then
    redis.call('SREM', P .. 'categories', cid)
    redis.call('DEL', members, P .. 'categories:' .. cid .. ':name')
    return 2
end
return 1
"""

_DELETE_SOUND_LUA = """
local P, sid = ARGV[1], ARGV[2]
if redis.call('SREM', P .. 'sounds', sid) == 0 then
    return -1
end
local key = P .. 'sounds:' .. sid
local result = {0}
for _, cid in ipairs(redis.call('SMEMBERS', key .. ':categories')) do
    local members = P .. 'categories:' .. cid .. ':members'
    redis.call('SREM', members, sid)
    if redis.call('SCARD', members) == 0 then
        redis.call('SREM', P .. 'categories', cid)
        redis.call('DEL', members, P .. 'categories:' .. cid .. ':name')
        table.insert(result, cid)
    end
end
local lname = redis.call('GET', key .. ':name')
if lname then
    redis.call('SREM', P .. 'soundnames', lname)
    if redis.call('GET', P .. 'soundnames:' .. lname) == sid then
        redis.call('DEL', P .. 'soundnames:' .. lname)
    end
end
redis.call('DEL', key, key .. ':categories', key .. ':name')
local joins = redis.call('HGETALL', P .. 'joinsounds')
for i = 1, #joins, 2 do
    if joins[i + 1] == sid then
        redis.call('HDEL', P .. 'joinsounds', joins[i])
        result[1] = result[1] + 1
    end
end
return result
"""

_DELETE_CATEGORY_LUA = """
local P, cid = ARGV[1], ARGV[2]
if redis.call('SREM', P .. 'categories', cid) == 0 then
    return -2
end
local members = P .. 'categories:' .. cid .. ':members'
local sids = redis.call('SMEMBERS', members)
for _, sid in ipairs(sids) do
    redis.call('SREM', P .. 'sounds:' .. sid .. ':categories', cid)
end
redis.call('DEL', members, P .. 'categories:' .. cid .. ':name')
return #sids
"""

_RENAME_SOUND_LUA = """
local P, sid, name, lname = ARGV[1], ARGV[2], ARGV[3], ARGV[4]
if redis.call('SISMEMBER', P .. 'sounds', sid) == 0 then
    return {-1}
end
local owner = redis.call('GET', P .. 'soundnames:' .. lname)
if owner and owner ~= sid then
    return {-3, owner}
end
local key = P .. 'sounds:' .. sid
local old = redis.call('GET', key .. ':name')
if old then
    redis.call('SREM', P .. 'soundnames', old)
    redis.call('DEL', P .. 'soundnames:' .. old)
end
redis.call('HSET', key, 'name', name)
redis.call('SADD', P .. 'soundnames', lname)
redis.call('SET', P .. 'soundnames:' .. lname, sid)
redis.call('SET', key .. ':name', lname)
return {1}
"""

_SET_JOINSOUND_LUA = """
local P, user, sid = ARGV[1], ARGV[2], ARGV[3]
if redis.call('SISMEMBER', P .. 'sounds', sid) == 0 then
    return -1
end
redis.call('HSET', P .. 'joinsounds', user, sid)
return 1
"""

# -- Read scripts (one consistent snapshot per call) ------------------------

_GET_CATEGORIES_LUA = """
local P = ARGV[1]
local out = {}
for _, cid in ipairs(redis.call('SMEMBERS', P .. 'categories')) do
    local name = redis.call('GET', P .. 'categories:' .. cid .. ':name')
    local count = redis.call('SCARD', P .. 'categories:' .. cid .. ':members')
    table.insert(out, {cid, name or '', count})
end
return out
"""

_GET_CATEGORIES_FOR_SOUND_LUA = """
local P, sid = ARGV[1], ARGV[2]
if redis.call('SISMEMBER', P .. 'sounds', sid) == 0 then
    return -1
end
local out = {}
for _, cid in ipairs(redis.call('SMEMBERS', P .. 'sounds:' .. sid .. ':categories')) do
    local name = redis.call('GET', P .. 'categories:' .. cid .. ':name')
    local count = redis.call('SCARD', P .. 'categories:' .. cid .. ':members')
    table.insert(out, {cid, name or '', count})
end
return out
"""

_GET_SOUNDS_IN_CATEGORY_LUA = """
local P, cid = ARGV[1], ARGV[2]
if redis.call('SISMEMBER', P .. 'categories', cid) == 0 then
    return -2
end
local out = {}
for _, sid in ipairs(redis.call('SMEMBERS', P .. 'categories:' .. cid .. ':members')) do
    table.insert(out, {sid, redis.call('HGETALL', P .. 'sounds:' .. sid)})
end
return out
"""

_GET_SOUNDS_LUA = """
local P = ARGV[1]
local out = {}
for _, sid in ipairs(redis.call('SMEMBERS', P .. 'sounds')) do
    local key = P .. 'sounds:' .. sid
    local lname = redis.call('GET', key .. ':name')
    table.insert(out, {sid, lname or '', redis.call('HGETALL', key)})
end
return out
"""

_SCRIPTS: Dict[str, str] = {
    "create_sound": _CREATE_SOUND_LUA,
    "add_sound_to_category": _ADD_SOUND_TO_CATEGORY_LUA,
    "remove_sound_from_category": _REMOVE_SOUND_FROM_CATEGORY_LUA,
    "delete_sound": _DELETE_SOUND_LUA,
    "delete_category": _DELETE_CATEGORY_LUA,
    "rename_sound": _RENAME_SOUND_LUA,
    "set_joinsound": _SET_JOINSOUND_LUA,
    "get_categories": _GET_CATEGORIES_LUA,
    "get_categories_for_sound": _GET_CATEGORIES_FOR_SOUND_LUA,
    "get_sounds_in_category": _GET_SOUNDS_IN_CATEGORY_LUA,
    "get_sounds": _GET_SOUNDS_LUA,
}

_SOUND_MISSING = -1
_CATEGORY_MISSING = -2
_NAME_CONFLICT = -3


def connect(config, client_name: Optional[str] = None) -> Redis:
    """Open an asyncio Redis client from a ``RedisConfig``.

    Replies are decoded to ``str``; the store and relay rely on it.
    """
    options: Dict[str, Any] = {"decode_responses": True}
    if config.db is not None:
        options["db"] = config.db
    name = client_name or config.connection_name
    if name:
        options["client_name"] = name
    if config.socket_timeout is not None:
        options["socket_timeout"] = config.socket_timeout
    return Redis.from_url(config.url, **options)


def _check_category_name(name: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValueError(f"Category name must be a non-empty string, got {name!r}")
    return name


def _check_length(length: Any) -> Number:
    if isinstance(length, bool) or not isinstance(length, (int, float)):
        raise ValueError(f"Sound length must be a number, got {length!r}")
    if not math.isfinite(length) or length < 0:
        raise ValueError(f"Sound length must be a finite, non-negative number, got {length!r}")
    return length


def _check_file(file: Any) -> str:
    if not isinstance(file, str) or not file:
        raise ValueError(f"Sound file must be a non-empty string, got {file!r}")
    return file


# ---------------------------------------------------------------------------
# SoundboardStore
# ---------------------------------------------------------------------------

class SoundboardStore:
    """
    Redis-backed store for sounds, categories and join sounds.

    The store owns the client it is given: ``close()`` (or leaving an
    ``async with`` block) closes it.
    """

    def __init__(self, client: Redis, key_prefix: str = ""):
        """Wrap an asyncio Redis client.

        Args:
            client: ``redis.asyncio.Redis`` created with
                ``decode_responses=True``.
            key_prefix: Namespace prepended to every key, so several
                soundboards can share one Redis database.
        """
        self._client = client
        self._keys = KeyLayout(key_prefix)
        self._scripts = {
            name: client.register_script(source)
            for name, source in _SCRIPTS.items()
        }
        logger.debug(f"SoundboardStore ready (prefix={self._keys.prefix!r})")

    @classmethod
    def from_config(cls, config) -> SoundboardStore:
        """Build a store with its own connection from a ``RedisConfig``."""
        client = connect(config)
        logger.info(
            f"SoundboardStore connecting: {config.url} "
            f"(db={config.db}, prefix={config.key_prefix!r})"
        )
        return cls(client, key_prefix=config.key_prefix)

    @property
    def client(self) -> Redis:
        return self._client

    @property
    def keys(self) -> KeyLayout:
        return self._keys

    async def close(self) -> None:
        """Close the underlying Redis connection pool."""
        await self._client.aclose()

    async def __aenter__(self) -> SoundboardStore:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _run(self, script: str, *args: Any) -> Any:
        """Evaluate one of the registered scripts with the prefix as ARGV[1]."""
        return await self._scripts[script](args=[self._keys.prefix, *args])

    # -- Identifier allocation ---------------------------------------------

    async def initialize(self) -> bool:
        """Create both id counters at 0 if they do not exist yet.

        Safe to run against a live database: existing counters are left
        untouched, so ids are never handed out twice.

        Returns True if at least one counter was created.
        """
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.set(self._keys.sound_counter, 0, nx=True)
            pipe.set(self._keys.category_counter, 0, nx=True)
            created = await pipe.execute()
        fresh = any(created)
        logger.info(f"Counters initialized (created={fresh})")
        return fresh

    async def next_id(self, kind: IdKind) -> int:
        """Atomically allocate the next id of *kind* ("sound" or "category")."""
        if kind not in VALID_ID_KINDS:
            raise ValueError(f"Unknown id kind: {kind!r}")
        return int(await self._client.incr(self._keys.counter(kind)))

    async def last_id(self, kind: IdKind) -> int:
        """Last id allocated for *kind*, 0 if none yet."""
        if kind not in VALID_ID_KINDS:
            raise ValueError(f"Unknown id kind: {kind!r}")
        value = await self._client.get(self._keys.counter(kind))
        if value is None:
            return 0
        try:
            return int(value)
        except ValueError:
            raise MalformedData(f"Invalid {kind} counter: {value!r}") from None

    # -- Write operations --------------------------------------------------

    async def create_sound(
        self,
        name: str,
        length: Number,
        file: str,
        owner: Optional[str] = None,
    ) -> Sound:
        """
        Create a sound and index its name.

        Raises:
            Conflict: another sound already uses this name (case-insensitive).
        """
        lname = normalize_name(name)
        _check_length(length)
        _check_file(file)
        owner = str(owner) if owner is not None and owner != "" else None
        reply = await self._run(
            "create_sound", name, lname, length, file, owner or "",
        )
        if reply[0] == _NAME_CONFLICT:
            raise Conflict(name, parse_id(reply[1], "sound id"))
        sound = Sound(
            id=parse_id(reply[0], "sound id"),
            name=name, length=length, file=file, owner=owner,
        )
        logger.debug(f"Created sound {sound.id}: {name!r}")
        return sound

    async def create_category(self, name: str) -> Category:
        """Create an empty category."""
        _check_category_name(name)
        cid = await self.next_id("category")
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.sadd(self._keys.categories, cid)
            pipe.set(self._keys.category_name(cid), name)
            await pipe.execute()
        logger.debug(f"Created category {cid}: {name!r}")
        return Category(id=cid, name=name, membercount=0)

    async def add_sound_to_category(self, sound_id: int, category_id: int) -> bool:
        """
        Link a sound and a category in both membership projections.

        Returns True if the pair is new, False if it already existed.

        Raises:
            NotFound: the sound or the category does not exist.
        """
        sid = check_id(sound_id, "sound id")
        cid = check_id(category_id, "category id")
        status = await self._run("add_sound_to_category", sid, cid)
        if status == _SOUND_MISSING:
            raise NotFound("sound", sid)
        if status == _CATEGORY_MISSING:
            raise NotFound("category", cid)
        logger.debug(f"Sound {sid} added to category {cid} (new={bool(status)})")
        return bool(status)

    async def remove_sound_from_category(self, category_id: int, sound_id: int) -> bool:
        """
        Unlink a sound from a category.

        A category left without members is deleted in the same script.
        Returns False if the sound was not in the category.
        """
        cid = check_id(category_id, "category id")
        sid = check_id(sound_id, "sound id")
        status = await self._run("remove_sound_from_category", cid, sid)
        if status == 2:
            logger.info(f"Category {cid} removed: last member {sid} left")
        return status > 0

    async def delete_sound(self, sound_id: int) -> List[int]:
        """
        Delete a sound and everything that depends on it.

        Cascades: membership in every category, categories emptied by the
        removal, name index entries, join sounds pointing at the sound.

        Returns the ids of the categories that were removed.

        Raises:
            NotFound: the sound does not exist.
        """
        sid = check_id(sound_id, "sound id")
        reply = await self._run("delete_sound", sid)
        if reply == _SOUND_MISSING:
            raise NotFound("sound", sid)
        cleared, dropped = reply[0], [parse_id(c, "category id") for c in reply[1:]]
        if dropped:
            logger.info(f"Sound {sid} deleted; empty categories removed: {dropped}")
        else:
            logger.debug(f"Sound {sid} deleted")
        if cleared:
            logger.debug(f"Cleared {cleared} join sound(s) pointing at {sid}")
        return dropped

    async def delete_category(self, category_id: int) -> int:
        """
        Delete a category and unlink it from its sounds.

        Sound records are left untouched. Returns the number of sounds that
        were members.

        Raises:
            NotFound: the category does not exist.
        """
        cid = check_id(category_id, "category id")
        status = await self._run("delete_category", cid)
        if status == _CATEGORY_MISSING:
            raise NotFound("category", cid)
        logger.debug(f"Category {cid} deleted ({status} member(s) unlinked)")
        return status

    async def rename_sound(self, sound_id: int, new_name: str) -> Sound:
        """
        Rename a sound, swapping its name index entries in one script.

        Raises:
            NotFound: the sound does not exist.
            Conflict: another sound already uses the new name.
        """
        sid = check_id(sound_id, "sound id")
        lname = normalize_name(new_name)
        reply = await self._run("rename_sound", sid, new_name, lname)
        if reply[0] == _SOUND_MISSING:
            raise NotFound("sound", sid)
        if reply[0] == _NAME_CONFLICT:
            raise Conflict(new_name, parse_id(reply[1], "sound id"))
        logger.debug(f"Sound {sid} renamed to {new_name!r}")
        return await self.get_sound_by_id(sid)

    # -- Query operations --------------------------------------------------

    async def get_sound_by_id(self, sound_id: int) -> Sound:
        """Read a single sound.

        Raises:
            NotFound: the sound does not exist.
        """
        sid = check_id(sound_id, "sound id")
        fields = await self._client.hgetall(self._keys.sound(sid))
        if not fields:
            raise NotFound("sound", sid)
        return Sound.from_hash(sid, fields)

    async def get_sounds(self) -> List[Sound]:
        """All sounds, ordered by lowercased name from the reverse index."""
        rows = await self._run("get_sounds")
        keyed = []
        for sid, lname, flat in rows:
            sound = Sound.from_hash(sid, pairs_to_dict(flat))
            if not lname:
                raise MalformedData(f"Sound {sid} has no name index entry")
            keyed.append((name_sort_key(lname, sound.id), sound))
        keyed.sort(key=lambda pair: pair[0])
        return [sound for _, sound in keyed]

    async def get_categories(self) -> List[Category]:
        """All categories ordered by name, each with its live member count."""
        rows = await self._run("get_categories")
        categories = [Category.from_reply(row) for row in rows]
        categories.sort(key=lambda c: name_sort_key(c.name, c.id))
        return categories

    async def get_sounds_in_category(self, category_id: int) -> List[Sound]:
        """Sounds of a category, ordered by name.

        Raises:
            NotFound: the category does not exist.
        """
        cid = check_id(category_id, "category id")
        rows = await self._run("get_sounds_in_category", cid)
        if rows == _CATEGORY_MISSING:
            raise NotFound("category", cid)
        sounds = []
        for sid, flat in rows:
            if not flat:
                raise MalformedData(f"Category {cid} lists missing sound {sid}")
            sounds.append(Sound.from_hash(sid, pairs_to_dict(flat)))
        sounds.sort(key=lambda s: name_sort_key(s.name, s.id))
        return sounds

    async def get_categories_for_sound(self, sound_id: int) -> List[Category]:
        """Categories containing a sound (unordered), with live member counts.

        Raises:
            NotFound: the sound does not exist.
        """
        sid = check_id(sound_id, "sound id")
        rows = await self._run("get_categories_for_sound", sid)
        if rows == _SOUND_MISSING:
            raise NotFound("sound", sid)
        return [Category.from_reply(row) for row in rows]

    async def search_sounds(self, query: str) -> List[Sound]:
        """
        Case-insensitive substring search over sound names.

        Whitespace in *query* separates segments that must appear in order
        ("air horn" matches "airhorn" and "air-horn"). Results come back in
        scan order, which is unspecified.
        """
        pattern = search_pattern(query)
        names = [
            name async for name in
            self._client.sscan_iter(self._keys.name_scan, match=pattern)
        ]
        if not names:
            return []
        ids = await self._client.mget([self._keys.name_forward(n) for n in names])
        live = []
        seen = set()
        for lname, sid in zip(names, ids):
            # Renamed or deleted after the scan; SSCAN may also repeat names
            if sid is None or sid in seen:
                continue
            seen.add(sid)
            live.append(sid)
        async with self._client.pipeline(transaction=True) as pipe:
            for sid in live:
                pipe.hgetall(self._keys.sound(sid))
            records = await pipe.execute()
        results = [
            Sound.from_hash(sid, fields)
            for sid, fields in zip(live, records)
            if fields
        ]
        logger.debug(f"search {query!r} ({pattern}) -> {len(results)} hit(s)")
        return results

    async def get_sounds_number(self) -> int:
        """Number of sounds in the store."""
        return int(await self._client.scard(self._keys.sounds))

    # -- Join sounds -------------------------------------------------------

    async def set_joinsound(self, user: str, sound_id: int) -> None:
        """Assign a join sound to *user*, replacing any previous one.

        Raises:
            NotFound: the sound does not exist.
        """
        if not isinstance(user, str) or not user:
            raise ValueError(f"User identifier must be a non-empty string, got {user!r}")
        sid = check_id(sound_id, "sound id")
        status = await self._run("set_joinsound", user, sid)
        if status == _SOUND_MISSING:
            raise NotFound("sound", sid)
        logger.debug(f"Join sound for {user!r} set to {sid}")

    async def get_joinsound(self, user: str) -> Sound:
        """The join sound assigned to *user*.

        Raises:
            NotFound: no join sound is set for the user.
        """
        sid = await self._client.hget(self._keys.joinsounds, user)
        if sid is None:
            raise NotFound("joinsound", user)
        fields = await self._client.hgetall(self._keys.sound(sid))
        if not fields:
            raise NotFound("joinsound", user)
        return Sound.from_hash(sid, fields)

    async def remove_joinsound(self, user: str) -> bool:
        """Drop *user*'s join sound. Returns False if none was set."""
        removed = await self._client.hdel(self._keys.joinsounds, user)
        return bool(removed)

    async def get_joinsounds(self) -> Dict[str, int]:
        """Every join sound assignment, user -> sound id."""
        raw = await self._client.hgetall(self._keys.joinsounds)
        return {user: parse_id(sid, "sound id") for user, sid in raw.items()}

    # -- Stats -------------------------------------------------------------

    async def stats(self) -> Dict[str, Any]:
        """Summary statistics for the store."""
        async with self._client.pipeline(transaction=True) as pipe:
            pipe.scard(self._keys.sounds)
            pipe.scard(self._keys.categories)
            pipe.hlen(self._keys.joinsounds)
            pipe.get(self._keys.sound_counter)
            pipe.get(self._keys.category_counter)
            sounds, categories, joinsounds, last_sound, last_category = (
                await pipe.execute()
            )
        return {
            "sounds": int(sounds),
            "categories": int(categories),
            "joinsounds": int(joinsounds),
            "last_sound_id": int(last_sound or 0),
            "last_category_id": int(last_category or 0),
            "key_prefix": self._keys.prefix,
        }
