"""Newline-delimited wire frames.

Plain phases put the payload on the wire as-is. Encrypted phases put
``base64(nonce || ciphertext)`` (unpadded) between the payload boundaries.
The codec never looks inside the payload.
"""
from __future__ import annotations
import asyncio
from typing import Optional

from arenalink.crypto.primitives import raw_b64d, raw_b64e
from arenalink.protocol.constants import FRAME_DELIMITER

from .errors import DecodeError, FramingError, SessionClosedError, TransportError
from .state import SessionState


def _require_cipher(state: SessionState):
    if state.cipher is None:
        raise SessionClosedError("cipher state discarded", stage=state.phase.name)
    return state.cipher


def encode_frame(state: SessionState, payload: bytes) -> bytes:
    if state.encrypted:
        payload = raw_b64e(_require_cipher(state).seal(payload))
    return payload + FRAME_DELIMITER


def decode_frame(state: SessionState, line: bytes) -> bytes:
    if line.endswith(FRAME_DELIMITER):
        line = line[:-len(FRAME_DELIMITER)]
    if not state.encrypted:
        return line
    try:
        sealed = raw_b64d(line)
    except ValueError as e:
        raise DecodeError(f"invalid frame encoding: {e}", stage=state.phase.name) from e
    return _require_cipher(state).open(sealed)


async def write_frame(state: SessionState, writer: asyncio.StreamWriter, payload: bytes,
                      timeout: Optional[float] = None) -> None:
    frame = encode_frame(state, payload)
    try:
        writer.write(frame)
        await asyncio.wait_for(writer.drain(), timeout)
    except asyncio.TimeoutError as e:
        raise TransportError("write timed out", stage=state.phase.name) from e
    except (ConnectionError, OSError) as e:
        raise TransportError(f"write failed: {e}", stage=state.phase.name) from e


async def read_frame(state: SessionState, reader: asyncio.StreamReader,
                     timeout: Optional[float] = None) -> bytes:
    try:
        line = await asyncio.wait_for(reader.readuntil(FRAME_DELIMITER), timeout)
    except asyncio.IncompleteReadError as e:
        raise FramingError("stream closed before frame delimiter", stage=state.phase.name,
                           actual=len(e.partial)) from e
    except asyncio.LimitOverrunError as e:
        raise FramingError("frame exceeds maximum size", stage=state.phase.name,
                           actual=e.consumed) from e
    except asyncio.TimeoutError as e:
        raise TransportError("read timed out", stage=state.phase.name) from e
    except (ConnectionError, OSError) as e:
        raise TransportError(f"read failed: {e}", stage=state.phase.name) from e
    return decode_frame(state, line)
