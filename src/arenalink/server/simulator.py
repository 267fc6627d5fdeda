"""In-process game server speaking the server side of the protocol.

Used for local development (``arenalink serve``) and by the test-suite. The
fault knobs let a test make the server misbehave in one specific way.
"""
from __future__ import annotations
import asyncio
import secrets
from typing import Any, Callable, Dict, List, Optional

import structlog

from arenalink.client.errors import ArenaLinkError
from arenalink.client.framing import read_frame, write_frame
from arenalink.client.resolver import RoundInfo
from arenalink.client.state import SessionState
from arenalink.crypto.aead import AEADCipher
from arenalink.crypto.primitives import b64e, new_key, raw_b64e
from arenalink.protocol.constants import (
    ANGLES, CLIENTHELLO_PREFIX, DIRECTIONS, FRAME_DELIMITER, PT_AGREECONN, PT_ATTACK,
    PT_CLIENTHELLO, PT_DEFEND, PT_HEALTH, PT_INITIALPC, PT_LOGIN, PT_MOVE, PT_RADAR,
    PT_ROTATE, PT_SCOUT, PT_SERVERHELLO, PT_UNDEFEND, PT_WATCH, SERVERHELLO_PREFIX,
)
from arenalink.protocol.envelope import Envelope, decode_envelope
from arenalink.protocol.phases import Phase
from arenalink.protocol.validation import json_dumps_compact

logger = structlog.get_logger(__name__)

Handler = Callable[[Any], Any]


class CommandRejected(Exception):
    """Raised by a handler to answer with an ``error`` field."""


def _rotate(obj):
    if not isinstance(obj, dict) or obj.get("angle") not in ANGLES:
        raise CommandRejected("invalid angle")
    return {}


def _move(obj):
    if not isinstance(obj, dict) or obj.get("direction") not in DIRECTIONS:
        raise CommandRejected("invalid direction")
    return {}


def _scout(obj):
    if not isinstance(obj, dict) or not isinstance(obj.get("distance"), int):
        raise CommandRejected("invalid distance")
    return {"counter": 0}


DEFAULT_HANDLERS: Dict[str, Handler] = {
    PT_ROTATE: _rotate,
    PT_MOVE: _move,
    PT_ATTACK: lambda obj: {"health": 90},
    PT_RADAR: lambda obj: {"counter": 0},
    PT_WATCH: lambda obj: {"health_matrix": [[0] * 11 for _ in range(11)]},
    PT_SCOUT: _scout,
    PT_DEFEND: lambda obj: {},
    PT_UNDEFEND: lambda obj: {},
    PT_HEALTH: lambda obj: {"value": 100},
}


class GameServerSimulator:
    def __init__(self, ticket: str = "T", key: Optional[bytes] = None,
                 initial_pc: Optional[int] = None, host: str = "127.0.0.1", port: int = 0,
                 handlers: Optional[Dict[str, Handler]] = None,
                 challenge_echo: Optional[str] = None, pc_offset: int = 0,
                 omit_pc: bool = False, corrupt_responses: bool = False,
                 response_delay: float = 0.0):
        self.ticket = ticket
        self.key = key or new_key()
        self.cipher = AEADCipher(self.key)
        self.initial_pc = secrets.randbelow(1 << 16) if initial_pc is None else initial_pc
        self.host = host
        self.port = port
        self.handlers = {**DEFAULT_HANDLERS, **(handlers or {})}

        # fault knobs, applied to command responses after agreeconn
        self.challenge_echo = challenge_echo
        self.pc_offset = pc_offset
        self.omit_pc = omit_pc
        self.corrupt_responses = corrupt_responses
        self.response_delay = response_delay

        self.received: List[Envelope] = []
        self.completed_handshakes = 0
        self._server: Optional[asyncio.AbstractServer] = None
        self._conn_tasks: set = set()
        self._writers: set = set()

    def round_info(self) -> RoundInfo:
        return RoundInfo(ticket=self.ticket, aes_key=b64e(self.key),
                         host_ipv4=self.host, port=self.port)

    async def start(self):
        self._server = await asyncio.start_server(self._on_connection, self.host, self.port)
        self.port = self._server.sockets[0].getsockname()[1]
        logger.info("simulator_listening", host=self.host, port=self.port)

    async def stop(self):
        if self._server is None:
            return
        self._server.close()
        # handlers end on EOF once their peer is closed
        for writer in list(self._writers):
            writer.close()
        if self._conn_tasks:
            _, pending = await asyncio.wait(set(self._conn_tasks), timeout=1.0)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        await self._server.wait_closed()
        self._server = None

    async def serve_forever(self):
        if self._server is None:
            await self.start()
        await self._server.serve_forever()

    async def __aenter__(self) -> GameServerSimulator:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.stop()

    async def _on_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self._conn_tasks.add(asyncio.current_task())
        self._writers.add(writer)
        peer = writer.get_extra_info("peername")
        state = SessionState(phase=Phase.LOGGING_IN, cipher=self.cipher)
        try:
            await self._serve(state, reader, writer)
        except ArenaLinkError as e:
            logger.info("simulator_connection_ended", peer=peer, phase=state.phase.name, reason=str(e))
        finally:
            self._conn_tasks.discard(asyncio.current_task())
            self._writers.discard(writer)
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass

    async def _read(self, state: SessionState, reader) -> Optional[Envelope]:
        raw = await read_frame(state, reader)
        try:
            return decode_envelope(raw)
        except ValueError:
            return None

    async def _send(self, state: SessionState, writer, packet: Dict[str, Any]):
        await write_frame(state, writer, json_dumps_compact(packet).encode("utf-8"))

    async def _serve(self, state: SessionState, reader, writer):
        env = await self._read(state, reader)
        if env is None or env.type != PT_LOGIN:
            await self._send(state, writer, {"type": "unknown", "error": "expected login"})
            return
        ticket = env.obj.get("roundticket") if isinstance(env.obj, dict) else None
        if ticket != self.ticket:
            await self._send(state, writer, {"type": "forbidden", "error": "invalid roundticket"})
            return
        await self._send(state, writer, {"type": PT_LOGIN, "obj": {}})

        state.phase = Phase.CLIENT_HELLO_SENT
        env = await self._read(state, reader)
        cipher_text = env.obj.get("cipher") if env and env.type == PT_CLIENTHELLO and isinstance(env.obj, dict) else None
        if not isinstance(cipher_text, str):
            await self._send(state, writer, {"type": "unknown", "error": "expected clienthello"})
            return
        plain = self.cipher.open_b64(cipher_text)
        if not plain.startswith(CLIENTHELLO_PREFIX):
            await self._send(state, writer, {"type": "forbidden", "error": "invalid clienthello"})
            return
        echo = self.challenge_echo if self.challenge_echo is not None else plain[len(CLIENTHELLO_PREFIX):]
        await self._send(state, writer, {
            "type": PT_SERVERHELLO,
            "obj": {"cipher": self.cipher.seal_b64(SERVERHELLO_PREFIX + echo)},
        })

        state.phase = Phase.READY
        state.pc = self.initial_pc
        await self._send(state, writer, {"type": PT_INITIALPC, "pc": state.pc})

        env = await self._read(state, reader)
        expected_pc = state.next_pc()
        if env is None or env.type != PT_AGREECONN or env.pc != expected_pc:
            await self._send(state, writer, {"type": "forbidden", "error": "agreeconn failed"})
            return
        await self._send(state, writer, {"type": PT_AGREECONN, "pc": state.pc, "obj": {}})
        self.completed_handshakes += 1
        logger.info("simulator_handshake_complete", pc=state.pc)

        while True:
            try:
                env = await self._read(state, reader)
            except ArenaLinkError:
                return
            expected_pc = state.next_pc()
            if env is None:
                await self._respond(state, writer, {"type": "unknown", "error": "invalid packet"})
                continue
            self.received.append(env)
            if env.pc != expected_pc:
                await self._respond(state, writer, {"type": "forbidden", "error": "pc mismatch"})
                continue
            handler = self.handlers.get(env.type)
            if handler is None:
                await self._respond(state, writer, {"type": "unknown", "error": f"unknown packet type: {env.type}"})
                continue
            try:
                response = {"type": env.type, "obj": handler(env.obj)}
            except CommandRejected as e:
                response = {"type": env.type, "error": str(e)}
            await self._respond(state, writer, response)

    async def _respond(self, state: SessionState, writer, packet: Dict[str, Any]):
        if self.response_delay:
            await asyncio.sleep(self.response_delay)
        if not self.omit_pc:
            packet = {**packet, "pc": state.pc + self.pc_offset}
        if self.corrupt_responses:
            sealed = bytearray(self.cipher.seal(json_dumps_compact(packet).encode("utf-8")))
            sealed[-1] ^= 0x01
            writer.write(raw_b64e(bytes(sealed)) + FRAME_DELIMITER)
            await writer.drain()
            return
        await self._send(state, writer, packet)
