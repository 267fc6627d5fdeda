from __future__ import annotations
import base64
import binascii
import secrets
from arenalink.protocol.constants import CHALLENGE_BITS, KEY_BYTES, MAX_B64_LENGTH


def b64e(b: bytes) -> str:
    return base64.b64encode(b).decode("ascii")


def b64d(s: str) -> bytes:
    if len(s) > MAX_B64_LENGTH:
        raise ValueError(f"Base64 too long: {len(s)} > {MAX_B64_LENGTH}")
    return base64.b64decode(s, validate=True)


def raw_b64e(b: bytes) -> bytes:
    """Standard alphabet, padding stripped (the game server's wire form)."""
    return base64.b64encode(b).rstrip(b"=")


def raw_b64d(s: bytes | str) -> bytes:
    if isinstance(s, str):
        s = s.encode("ascii")
    if len(s) > MAX_B64_LENGTH:
        raise ValueError(f"Base64 too long: {len(s)} > {MAX_B64_LENGTH}")
    if s.endswith(b"=") or len(s) % 4 == 1:
        raise ValueError("Invalid unpadded base64 length")
    try:
        return base64.b64decode(s + b"=" * (-len(s) % 4), validate=True)
    except binascii.Error as e:
        raise ValueError(f"Invalid base64: {e}") from e


def new_challenge() -> int:
    return secrets.randbits(CHALLENGE_BITS)


def new_key() -> bytes:
    return secrets.token_bytes(KEY_BYTES)
