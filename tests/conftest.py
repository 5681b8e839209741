"""
Shared fixtures: an in-process Redis (fakeredis, with Lua) per test.

Store operations are coroutines; tests describe a scenario as an
``async def scenario(store)`` and hand it to ``run_store``, which runs it
on a fresh event loop against the test's fake server.
"""

import asyncio

import fakeredis
import pytest

from raidbotdb.store import SoundboardStore


@pytest.fixture
def server():
    """One fake Redis server per test; clients made from it share data."""
    return fakeredis.FakeServer()


@pytest.fixture
def make_client(server):
    """Factory for asyncio clients bound to the test's fake server."""
    def factory():
        return fakeredis.FakeAsyncRedis(server=server, decode_responses=True)
    return factory


@pytest.fixture
def run_store(make_client):
    """Run ``scenario(store)`` to completion and return its result."""
    def run(scenario, key_prefix=""):
        async def main():
            store = SoundboardStore(make_client(), key_prefix=key_prefix)
            try:
                return await scenario(store)
            finally:
                await store.close()
        return asyncio.run(main())
    return run
