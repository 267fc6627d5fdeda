from __future__ import annotations
import json
from typing import Any, Dict

from .constants import MAX_FRAME_BYTES, MAX_JSON_DEPTH, MAX_JSON_KEYS


def _limit_keys(members: Dict[str, Any]) -> Dict[str, Any]:
    if len(members) > MAX_JSON_KEYS:
        raise ValueError(f"object has {len(members)} keys, limit is {MAX_JSON_KEYS}")
    return members


def bounded_json_loads(payload: str | bytes, max_bytes: int = MAX_FRAME_BYTES) -> Any:
    """Parse one frame payload, refusing oversized, over-wide or over-nested JSON."""
    if len(payload) > max_bytes:
        raise ValueError(f"payload of {len(payload)} bytes exceeds {max_bytes}")
    parsed = json.loads(payload, object_hook=_limit_keys)

    pending = [(parsed, 0)]
    while pending:
        node, depth = pending.pop()
        if depth > MAX_JSON_DEPTH:
            raise ValueError(f"json nested deeper than {MAX_JSON_DEPTH}")
        if isinstance(node, dict):
            pending.extend((child, depth + 1) for child in node.values())
        elif isinstance(node, list):
            pending.extend((child, depth + 1) for child in node)
    return parsed


def json_dumps_compact(o: Any) -> str:
    return json.dumps(o, ensure_ascii=False, separators=(",", ":"))
