import asyncio
import json

import pytest
from structlog.testing import capture_logs

from arenalink.client.config import ClientConfig
from arenalink.client.errors import (
    AuthenticationError, FramingError, HandshakeVerificationError, ProtocolError, ResolverError,
    ServerRejection, SessionClosedError, TransportError,
)
from arenalink.client.framing import encode_frame
from arenalink.client.resolver import RoundInfo, StaticRoundResolver
from arenalink.client.session import join
from arenalink.client.state import SessionState
from arenalink.crypto.aead import AEADCipher
from arenalink.crypto.primitives import b64e
from arenalink.protocol.phases import Phase
from arenalink.server.simulator import GameServerSimulator


async def _scripted_server(replies, received=None):
    """A server that answers each received line with the next scripted reply.

    A reply is a plain frame body, ``None`` for silence, or a callable that
    gets the received line and returns the exact bytes to write.
    """
    async def handle(reader, writer):
        for reply in replies:
            line = await reader.readline()
            if not line:
                break
            if received is not None:
                received.append(line)
            if callable(reply):
                writer.write(reply(line))
                await writer.drain()
            elif reply is not None:
                writer.write(reply + b"\n")
                await writer.drain()
        await reader.read()
        writer.close()

    return await asyncio.start_server(handle, "127.0.0.1", 0)


def _round_info_for(server, key: bytes) -> RoundInfo:
    return RoundInfo(ticket="T", aes_key=b64e(key), host_ipv4="127.0.0.1",
                     port=server.sockets[0].getsockname()[1])


def _sealed(key: bytes, *payloads: bytes) -> bytes:
    state = SessionState(phase=Phase.READY, cipher=AEADCipher(key))
    return b"".join(encode_frame(state, payload) for payload in payloads)


def _answer_clienthello(key: bytes, *sealed_packets: bytes, hello_key: bytes = None, with_cipher: bool = True):
    """Reply with a plain serverhello echoing the client challenge, then sealed packets."""
    def reply(line: bytes) -> bytes:
        challenge = AEADCipher(key).open_b64(json.loads(line)["obj"]["cipher"]).split(":")[1]
        obj = {"cipher": AEADCipher(hello_key or key).seal_b64(f"serverhello:{challenge}")} if with_cipher else {}
        hello = json.dumps({"type": "serverhello", "obj": obj}).encode() + b"\n"
        return hello + _sealed(key, *sealed_packets)
    return reply


def test_join_reaches_ready(run, join_sim):
    async def scenario():
        async with GameServerSimulator(initial_pc=41) as sim:
            session = await join_sim(sim)
            try:
                assert session.phase is Phase.READY
                assert session.encrypted
                assert session.pc == 42
                assert session.player is not None
                assert sim.completed_handshakes == 1
            finally:
                await session.close()

    run(scenario())


def test_rotate_end_to_end(run, key):
    async def scenario():
        async with GameServerSimulator(ticket="T", key=key, initial_pc=7) as sim:
            info = RoundInfo(ticket="T", aes_key=b64e(key), host_ipv4="127.0.0.1", port=sim.port)
            async with await join("authtoken", StaticRoundResolver(info)) as session:
                before = session.pc
                await session.player.rotate("left")
                assert session.pc == before + 1
            assert sim.received[-1].type == "rotate"
            assert sim.received[-1].obj == {"angle": "left"}
            assert sim.received[-1].pc == before + 1

    run(scenario())


def test_counter_advances_once_per_round_trip(run, join_sim):
    async def scenario():
        async with GameServerSimulator(initial_pc=1000) as sim:
            async with await join_sim(sim) as session:
                for _ in range(5):
                    await session.player.radar()
                assert session.pc == 1000 + 1 + 5
            assert [env.pc for env in sim.received] == [1002, 1003, 1004, 1005, 1006]

    run(scenario())


def test_counter_wraps_at_32_bits(run, join_sim):
    async def scenario():
        async with GameServerSimulator(initial_pc=2 ** 32 - 2) as sim:
            async with await join_sim(sim) as session:
                assert session.pc == 2 ** 32 - 1
                await session.player.defend()
                assert session.pc == 0

    run(scenario())


def test_pc_mismatch_is_not_resynchronized(run, join_sim):
    async def scenario():
        async with GameServerSimulator(initial_pc=10, pc_offset=1) as sim:
            async with await join_sim(sim) as session:
                with pytest.raises(ProtocolError) as excinfo:
                    await session.player.radar()
                assert excinfo.value.message == "pc mismatch"
                assert excinfo.value.expected == 12
                assert excinfo.value.actual == 13
                assert session.pc == 12
                assert not session.closed

    run(scenario())


def test_missing_pc_is_protocol_error(run, join_sim):
    async def scenario():
        async with GameServerSimulator(omit_pc=True) as sim:
            async with await join_sim(sim) as session:
                with pytest.raises(ProtocolError, match="missing pc"):
                    await session.player.get_health()

    run(scenario())


def test_stale_challenge_echo_fails_handshake(run, join_sim):
    async def scenario():
        async with GameServerSimulator(challenge_echo="12345") as sim:
            with pytest.raises(HandshakeVerificationError):
                await join_sim(sim)
            assert sim.completed_handshakes == 0

    run(scenario())


def test_key_mismatch_makes_server_hang_up(run, key):
    async def scenario():
        async with GameServerSimulator() as sim:
            info = sim.round_info().model_copy(update={"aes_key": b64e(key)})
            with pytest.raises((FramingError, TransportError)):
                await join("token", StaticRoundResolver(info))

    run(scenario())


def test_tampered_response_force_closes_session(run, join_sim):
    async def scenario():
        async with GameServerSimulator(corrupt_responses=True) as sim:
            session = await join_sim(sim)
            with pytest.raises(AuthenticationError):
                await session.player.attack()
            assert session.closed
            assert session.phase is Phase.CLOSED
            with pytest.raises(SessionClosedError):
                await session.player.attack()

    run(scenario())


def test_wrong_ticket_is_server_rejection(run):
    async def scenario():
        async with GameServerSimulator(ticket="expected") as sim:
            info = sim.round_info().model_copy(update={"ticket": "stale"})
            with pytest.raises(ServerRejection, match="invalid roundticket"):
                await join("token", StaticRoundResolver(info))

    run(scenario())


def test_unknown_command_is_rejected_and_session_survives(run, join_sim):
    async def scenario():
        async with GameServerSimulator() as sim:
            async with await join_sim(sim) as session:
                with pytest.raises(ServerRejection, match="unknown packet type"):
                    await session.request("dance", {})
                await session.player.move("north")
                assert not session.closed

    run(scenario())


def test_request_returns_envelope_with_error(run, join_sim):
    async def scenario():
        async with GameServerSimulator() as sim:
            async with await join_sim(sim) as session:
                envelope = await session.request("rotate", {"angle": "up"})
                assert envelope.type == "rotate"
                assert envelope.error == "invalid angle"

    run(scenario())


def test_unexpected_packet_during_login(run, key):
    async def scenario():
        server = await _scripted_server([b'{"type":"serverhello"}'])
        async with server:
            info = _round_info_for(server, key)
            with pytest.raises(ProtocolError, match="unexpected packet") as excinfo:
                await join("token", StaticRoundResolver(info))
            assert excinfo.value.expected == "login"
            assert excinfo.value.actual == "serverhello"

    run(scenario())


def test_silent_server_times_out(run, key):
    async def scenario():
        server = await _scripted_server([None])
        async with server:
            info = _round_info_for(server, key)
            with pytest.raises(TransportError, match="timed out"):
                await join("token", StaticRoundResolver(info), config=ClientConfig(io_timeout=0.1))

    run(scenario())


def test_dial_failure_is_transport_error(run, join_sim):
    async def scenario():
        sim = GameServerSimulator()
        await sim.start()
        await sim.stop()
        with pytest.raises(TransportError):
            await join_sim(sim)

    run(scenario())


def test_resolver_error_surfaces(run):
    resolver = StaticRoundResolver(RoundInfo(error="round already started"))
    with pytest.raises(ResolverError, match="round already started"):
        run(join("token", resolver))


def test_short_key_is_resolver_error(run):
    info = RoundInfo(ticket="T", aes_key=b64e(b"\x01" * 16), host_ipv4="127.0.0.1", port=9)
    with pytest.raises(ResolverError, match="wrong length"):
        run(join("token", StaticRoundResolver(info)))


def test_close_is_idempotent_and_final(run, join_sim):
    async def scenario():
        async with GameServerSimulator() as sim:
            session = await join_sim(sim)
            player = session.player
            await session.close()
            await session.close()
            assert session.closed
            assert not player.active
            assert session.state.cipher is None
            with pytest.raises(SessionClosedError):
                await player.rotate("right")
            with pytest.raises(SessionClosedError):
                await session.send_command("radar")
            with pytest.raises(SessionClosedError):
                await session.recv_and_validate("radar")

    run(scenario())


def test_concurrent_callers_are_serialized(run, join_sim):
    async def scenario():
        async with GameServerSimulator(initial_pc=0) as sim:
            async with await join_sim(sim) as session:
                results = await asyncio.gather(*(session.player.radar() for _ in range(8)))
                assert results == [0] * 8
                assert session.pc == 1 + 8

    run(scenario())


def test_send_and_recv_halves(run, join_sim):
    async def scenario():
        async with GameServerSimulator(initial_pc=3) as sim:
            async with await join_sim(sim) as session:
                await session.send_command("health")
                raw = await session.recv_and_validate("health")
                assert b'"value":100' in raw
                assert session.pc == 5

    run(scenario())


def test_clienthello_envelope_is_plain_with_sealed_cipher_field(run, key):
    async def scenario():
        received = []
        server = await _scripted_server([b'{"type":"login"}', None], received)
        async with server:
            info = _round_info_for(server, key)
            with pytest.raises(TransportError):
                await join("token", StaticRoundResolver(info), config=ClientConfig(io_timeout=0.2))
        return received

    login, clienthello = [json.loads(line) for line in run(scenario())]
    assert login == {"type": "login", "obj": {"roundticket": "T"}}
    assert clienthello["type"] == "clienthello"
    assert "pc" not in clienthello
    plain = AEADCipher(key).open_b64(clienthello["obj"]["cipher"])
    prefix, challenge = plain.split(":")
    assert prefix == "clienthello"
    assert 0 <= int(challenge) < 2 ** 64


def test_initialpc_without_pc_fails_join(run, key):
    async def scenario():
        server = await _scripted_server([
            b'{"type":"login"}',
            _answer_clienthello(key, b'{"type":"initialpc"}'),
        ])
        async with server:
            with pytest.raises(ProtocolError, match="missing pc"):
                await join("token", StaticRoundResolver(_round_info_for(server, key)))

    run(scenario())


def test_serverhello_without_cipher_fails_join(run, key):
    async def scenario():
        server = await _scripted_server([b'{"type":"login"}', _answer_clienthello(key, with_cipher=False)])
        async with server:
            with pytest.raises(ProtocolError, match="obj.cipher"):
                await join("token", StaticRoundResolver(_round_info_for(server, key)))

    run(scenario())


def test_serverhello_sealed_with_other_key_closes_transport(run, key):
    async def scenario():
        received = []
        server = await _scripted_server(
            [b'{"type":"login"}', _answer_clienthello(key, hello_key=bytes(32))], received)
        async with server:
            with capture_logs() as logs:
                with pytest.raises(AuthenticationError):
                    await join("token", StaticRoundResolver(_round_info_for(server, key)))
        events = [entry["event"] for entry in logs]
        assert "handshake_failed" in events
        assert events[-1] == "session_closed"
        assert len(received) == 2

    run(scenario())


def test_agreeconn_with_wrong_pc_fails_join(run, key):
    async def scenario():
        server = await _scripted_server([
            b'{"type":"login"}',
            _answer_clienthello(key, b'{"type":"initialpc","pc":5}'),
            lambda line: _sealed(key, b'{"type":"agreeconn","pc":9,"obj":{}}'),
        ])
        async with server:
            with pytest.raises(ProtocolError, match="pc mismatch") as excinfo:
                await join("token", StaticRoundResolver(_round_info_for(server, key)))
            assert excinfo.value.expected == 6
            assert excinfo.value.actual == 9

    run(scenario())


def test_cancelled_request_closes_session(run, join_sim):
    async def scenario():
        async with GameServerSimulator(initial_pc=10, response_delay=0.2) as sim:
            session = await join_sim(sim)
            player = session.player
            with pytest.raises(asyncio.TimeoutError):
                await asyncio.wait_for(player.radar(), 0.05)
            assert session.closed
            assert session.state.cipher is None
            with pytest.raises(SessionClosedError):
                await player.radar()

    run(scenario())


def test_player_stays_attached_after_close(run, join_sim):
    async def scenario():
        async with GameServerSimulator() as sim:
            session = await join_sim(sim)
            await session.close()
            assert session.player is not None
            with pytest.raises(SessionClosedError):
                await session.player.get_health()

    run(scenario())


def test_simulator_stop_hangs_up_on_connected_clients(run, join_sim):
    async def scenario():
        sim = GameServerSimulator()
        await sim.start()
        session = await join_sim(sim)
        await sim.stop()
        with pytest.raises((FramingError, TransportError)):
            await session.player.radar()
        assert session.closed

    run(scenario())
