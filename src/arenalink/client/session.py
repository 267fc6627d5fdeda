from __future__ import annotations
import asyncio
import contextlib
import hmac
from typing import Any, Optional, Tuple

import structlog

from arenalink.crypto.aead import AEADCipher
from arenalink.crypto.primitives import new_challenge
from arenalink.protocol.constants import (
    CLIENTHELLO_PREFIX, PT_AGREECONN, PT_CLIENTHELLO, PT_INITIALPC, PT_LOGIN,
    PT_SERVERHELLO, REJECTION_TYPES, SERVERHELLO_PREFIX,
)
from arenalink.protocol.envelope import Envelope, decode_envelope, encode_envelope
from arenalink.protocol.phases import Phase

from .config import ClientConfig
from .errors import (
    AuthenticationError, DecodeError, FramingError, HandshakeVerificationError,
    ProtocolError, ResolverError, ServerRejection, SessionClosedError, TransportError,
)
from .framing import read_frame, write_frame
from .player import Player
from .resolver import HttpRoundResolver, RoundResolver
from .state import SessionState

# After any of these the channel can no longer be trusted or framed. A
# cancelled exchange may leave its reply queued on the stream.
_FATAL_ERRORS = (AuthenticationError, HandshakeVerificationError, FramingError, TransportError,
                 asyncio.CancelledError)


class Session:
    """One encrypted, counter-guarded connection to a game server.

    Built by :func:`join`. Commands go through :meth:`request`, which holds a
    lock across the whole send/receive round trip so a shared session never
    interleaves two exchanges. ``send_command`` and ``recv_and_validate`` are
    the unlocked halves; callers using them directly must serialize
    themselves.
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                 cipher: AEADCipher, config: Optional[ClientConfig] = None, logger=None):
        self.config = config or ClientConfig()
        self.logger = logger or structlog.get_logger(__name__)
        self._reader: Optional[asyncio.StreamReader] = reader
        self._writer: Optional[asyncio.StreamWriter] = writer
        self.state = SessionState(phase=Phase.CONNECTING, cipher=cipher)
        self.player: Optional[Player] = None
        self._lock = asyncio.Lock()

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def encrypted(self) -> bool:
        return self.state.encrypted

    @property
    def pc(self) -> int:
        return self.state.pc

    @property
    def closed(self) -> bool:
        return self.state.closed

    def _stage(self) -> str:
        return self.state.phase.name.lower()

    def _ensure_open(self):
        if self.state.closed or self._writer is None or self._reader is None:
            raise SessionClosedError("session is closed")

    @contextlib.asynccontextmanager
    async def _fatal_guard(self):
        try:
            yield
        except _FATAL_ERRORS as e:
            if not self.state.closed:
                self.logger.error("session_aborted", stage=self._stage(),
                                  error_type=type(e).__name__, error=str(e))
                await self.close()
            raise

    # -- wire ---------------------------------------------------------------

    async def _read_envelope(self) -> Tuple[bytes, Envelope]:
        self._ensure_open()
        raw = await read_frame(self.state, self._reader, self.config.io_timeout)
        try:
            return raw, decode_envelope(raw)
        except ValueError as e:
            raise DecodeError(str(e), stage=self._stage()) from e

    def _check_type(self, envelope: Envelope, expected_type: str):
        if envelope.type == expected_type:
            return
        if envelope.error is not None and envelope.type in REJECTION_TYPES:
            self.logger.warning("server_rejection", stage=self._stage(), expected=expected_type,
                                type=envelope.type, error=envelope.error)
            raise ServerRejection(envelope.error, stage=expected_type, actual=envelope.type)
        raise ProtocolError("unexpected packet", stage=expected_type,
                            expected=expected_type, actual=envelope.type)

    def _check_pc(self, envelope: Envelope, expected_type: str):
        if envelope.pc is None:
            raise ProtocolError("missing pc", stage=expected_type, expected=self.state.pc)
        if envelope.pc != self.state.pc:
            self.logger.warning("pc_mismatch", stage=expected_type,
                                expected=self.state.pc, actual=envelope.pc)
            raise ProtocolError("pc mismatch", stage=expected_type,
                                expected=self.state.pc, actual=envelope.pc)

    async def _send_command(self, type_: str, body: Any = None):
        self._ensure_open()
        pc = self.state.next_pc() if self.state.encrypted else None
        await write_frame(self.state, self._writer, encode_envelope(type_, body, pc=pc),
                          self.config.io_timeout)

    async def _recv(self, expected_type: str) -> Tuple[bytes, Envelope]:
        raw, envelope = await self._read_envelope()
        self._check_type(envelope, expected_type)
        if self.state.encrypted:
            self._check_pc(envelope, expected_type)
        return raw, envelope

    # -- correlator ---------------------------------------------------------

    async def send_command(self, type_: str, body: Any = None) -> None:
        async with self._fatal_guard():
            await self._send_command(type_, body)

    async def recv_and_validate(self, expected_type: str) -> bytes:
        async with self._fatal_guard():
            raw, _ = await self._recv(expected_type)
        return raw

    async def request(self, type_: str, body: Any = None) -> Envelope:
        self._ensure_open()
        async with self._lock:
            async with self._fatal_guard():
                await self._send_command(type_, body)
                _, envelope = await self._recv(type_)
        return envelope

    # -- handshake ----------------------------------------------------------

    async def _handshake(self, ticket: str):
        st = self.state

        st.phase = Phase.LOGGING_IN
        await self._send_command(PT_LOGIN, {"roundticket": ticket})
        _, envelope = await self._recv(PT_LOGIN)
        if envelope.error is not None:
            raise ServerRejection(envelope.error, stage=self._stage())
        self.logger.debug("login_accepted")

        st.phase = Phase.CLIENT_HELLO_SENT
        st.challenge = new_challenge()
        # Envelope stays plain here; only obj.cipher is sealed.
        await self._send_command(PT_CLIENTHELLO,
                                 {"cipher": st.cipher.seal_b64(f"{CLIENTHELLO_PREFIX}{st.challenge}")})

        _, envelope = await self._recv(PT_SERVERHELLO)
        cipher_text = envelope.obj.get("cipher") if isinstance(envelope.obj, dict) else None
        if not isinstance(cipher_text, str):
            raise ProtocolError("serverhello without obj.cipher", stage=self._stage())
        plain = st.cipher.open_b64(cipher_text)
        expected = f"{SERVERHELLO_PREFIX}{st.challenge}"
        if not hmac.compare_digest(plain.encode("utf-8"), expected.encode("utf-8")):
            raise HandshakeVerificationError("server hello does not echo the challenge",
                                             stage=self._stage(), expected=expected, actual=plain)
        st.challenge = None
        st.phase = Phase.SERVER_HELLO_VERIFIED
        self.logger.debug("server_hello_verified")

        st.phase = Phase.SYNCING_COUNTER
        _, envelope = await self._read_envelope()
        self._check_type(envelope, PT_INITIALPC)
        if envelope.pc is None:
            raise ProtocolError("missing pc", stage=self._stage())
        st.pc = envelope.pc

        st.phase = Phase.AGREEING
        await self._send_command(PT_AGREECONN, {})
        await self._recv(PT_AGREECONN)

        st.phase = Phase.READY
        self.player = Player(self)
        self.logger.info("session_ready", pc=st.pc)

    # -- lifecycle ----------------------------------------------------------

    async def close(self):
        writer = self._writer
        self._writer = None
        self._reader = None
        already_closed = self.state.closed
        self.state.cleanup()
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError):
            pass
        if not already_closed:
            self.logger.info("session_closed")

    async def __aenter__(self) -> Session:
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


async def join(token: str, resolver: Optional[RoundResolver] = None,
               config: Optional[ClientConfig] = None, logger=None) -> Session:
    """Exchange ``token`` for round information and run the full handshake.

    Returns a ``READY`` session with its :class:`Player` attached. Any failure
    closes the transport and raises; there is no partially joined session.
    """
    config = config or ClientConfig()
    log = logger or structlog.get_logger(__name__)
    resolver = resolver or HttpRoundResolver(config.resolver_url)

    info = await resolver.resolve(token)
    if info.error:
        raise ResolverError(info.error, stage="resolve")
    try:
        cipher = AEADCipher(info.key_bytes())
    except ValueError as e:
        raise ResolverError(str(e), stage="resolve") from e
    host, port = info.address(config.prefer_ipv6)

    log.info("connecting", host=host, port=port)
    try:
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(host, port, limit=config.max_frame_bytes), config.io_timeout)
    except asyncio.TimeoutError as e:
        raise TransportError("connect timed out", stage="connecting") from e
    except OSError as e:
        raise TransportError(f"dial failed: {e}", stage="connecting") from e

    session = Session(reader, writer, cipher, config=config, logger=log)
    try:
        await session._handshake(info.ticket)
    except BaseException as e:
        log.error("handshake_failed", stage=session._stage(), error_type=type(e).__name__, error=str(e))
        await session.close()
        raise
    return session
