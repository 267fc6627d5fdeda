"""Shared fixtures: fresh keys, ciphers and a ready-to-use server simulator factory."""
import asyncio

import pytest

from arenalink.client.resolver import StaticRoundResolver
from arenalink.client.session import join
from arenalink.crypto.aead import AEADCipher
from arenalink.crypto.primitives import new_key
from arenalink.server.simulator import GameServerSimulator


@pytest.fixture
def key() -> bytes:
    return new_key()


@pytest.fixture
def cipher(key) -> AEADCipher:
    return AEADCipher(key)


@pytest.fixture
def run():
    """Run a coroutine to completion on a fresh event loop."""
    def _run(coro):
        return asyncio.run(coro)
    return _run


@pytest.fixture
def join_sim():
    """Join a running simulator with its own round information."""
    async def _join(sim: GameServerSimulator, **kwargs):
        return await join(sim.ticket, StaticRoundResolver(sim.round_info()), **kwargs)
    return _join
