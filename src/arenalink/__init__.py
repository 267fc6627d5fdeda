from arenalink.client.config import ClientConfig
from arenalink.client.errors import (
    ArenaLinkError, AuthenticationError, DecodeError, FramingError, HandshakeVerificationError,
    ProtocolError, ResolverError, ServerRejection, SessionClosedError, TransportError,
)
from arenalink.client.player import Player
from arenalink.client.resolver import HttpRoundResolver, RoundInfo, RoundResolver, StaticRoundResolver
from arenalink.client.session import Session, join
from arenalink.crypto.aead import AEADCipher
from arenalink.protocol.envelope import Envelope
from arenalink.protocol.phases import Phase

__version__ = "1.0.0"

__all__ = [
    "AEADCipher", "ArenaLinkError", "AuthenticationError", "ClientConfig", "DecodeError",
    "Envelope", "FramingError", "HandshakeVerificationError", "HttpRoundResolver", "Phase",
    "Player", "ProtocolError", "ResolverError", "RoundInfo", "RoundResolver", "ServerRejection",
    "Session", "SessionClosedError", "StaticRoundResolver", "TransportError", "join",
]
