from __future__ import annotations
from typing import Any, Optional


class ArenaLinkError(Exception):
    """Base class. ``stage`` names the handshake phase or command that failed."""

    def __init__(self, message: str, *, stage: Optional[str] = None,
                 expected: Any = None, actual: Any = None):
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.expected = expected
        self.actual = actual

    def __str__(self) -> str:
        parts = [self.message]
        if self.stage:
            parts.insert(0, f"[{self.stage}]")
        if self.expected is not None or self.actual is not None:
            parts.append(f"(expected={self.expected!r}, actual={self.actual!r})")
        return " ".join(parts)


class ResolverError(ArenaLinkError):
    pass


class TransportError(ArenaLinkError):
    pass


class SessionClosedError(TransportError):
    pass


class FramingError(ArenaLinkError):
    pass


class DecodeError(ArenaLinkError):
    pass


class AuthenticationError(ArenaLinkError):
    pass


class HandshakeVerificationError(ArenaLinkError):
    pass


class ProtocolError(ArenaLinkError):
    pass


class ServerRejection(ArenaLinkError):
    pass
