from __future__ import annotations
from enum import Enum, auto


class Phase(Enum):
    DISCONNECTED = auto()
    CONNECTING = auto()
    LOGGING_IN = auto()
    CLIENT_HELLO_SENT = auto()
    SERVER_HELLO_VERIFIED = auto()
    SYNCING_COUNTER = auto()
    AGREEING = auto()
    READY = auto()
    CLOSED = auto()


# Phases in which every frame on the wire is sealed and base64 encoded
ENCRYPTED_PHASES = frozenset({
    Phase.SERVER_HELLO_VERIFIED,
    Phase.SYNCING_COUNTER,
    Phase.AGREEING,
    Phase.READY,
})
