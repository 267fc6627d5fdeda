"""The universal ``{type, pc, obj, error}`` packet shape and its codecs."""
from __future__ import annotations
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

from .constants import PC_MODULUS
from .validation import bounded_json_loads, json_dumps_compact

_UNSET = object()


class Envelope(BaseModel):
    type: str
    pc: Optional[int] = Field(default=None, ge=0, lt=PC_MODULUS)
    obj: Any = None
    error: Optional[str] = None


def encode_envelope(type_: str, obj: Any = _UNSET, pc: Optional[int] = None) -> bytes:
    """Serialize an outgoing packet, omitting fields the sender does not set."""
    packet: Dict[str, Any] = {"type": type_}
    if pc is not None:
        packet["pc"] = pc
    if obj is not _UNSET:
        packet["obj"] = obj
    return json_dumps_compact(packet).encode("utf-8")


def decode_envelope(raw: bytes) -> Envelope:
    """Parse a received packet.

    Raises ``ValueError`` for anything that is not a JSON object of the
    envelope shape; callers translate that into their own error type.
    """
    try:
        parsed = bounded_json_loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        raise ValueError(f"invalid json: {e}") from e
    if not isinstance(parsed, dict):
        raise ValueError("packet must be json object")
    try:
        return Envelope.model_validate(parsed)
    except ValidationError as e:
        raise ValueError(f"invalid envelope: {e.errors()[0]['msg']}") from e
