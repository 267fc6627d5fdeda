# arenalink: encrypted, counter-guarded client for real-time game servers
# AES-256-GCM framed JSON over TCP, token based round entry

from __future__ import annotations

import argparse
import asyncio
import secrets
import sys

import structlog

from arenalink.client.config import ClientConfig
from arenalink.client.errors import ArenaLinkError, AuthenticationError
from arenalink.client.session import join
from arenalink.crypto.aead import AEADCipher
from arenalink.crypto.primitives import b64e, new_key, raw_b64d, raw_b64e
from arenalink.protocol.constants import ANGLES, DEFAULT_IO_TIMEOUT_S, DEFAULT_RESOLVER_URL
from arenalink.util.deps import check_dependencies

logger = structlog.get_logger("arenalink")


def configure_logging():
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ]
    )


def security_self_check():
    checks = []

    checks.append(("Python >= 3.9", sys.version_info >= (3, 9)))

    try:
        test = [secrets.randbits(16) for _ in range(10)]
        checks.append(("Random source", len(set(test)) > 1))
    except Exception:
        checks.append(("Random source", False))

    cipher = AEADCipher(new_key())
    sealed = cipher.seal(b"self-check")
    checks.append(("AEAD round trip", cipher.open(sealed) == b"self-check"))
    checks.append(("AEAD nonce freshness", cipher.seal(b"x")[:12] != cipher.seal(b"x")[:12]))

    tampered = bytearray(sealed)
    tampered[-1] ^= 0x80
    try:
        cipher.open(bytes(tampered))
        checks.append(("AEAD tamper detection", False))
    except AuthenticationError:
        checks.append(("AEAD tamper detection", True))

    checks.append(("Base64 unpadded encode", raw_b64e(b"ab") == b"YWI"))

    try:
        raw_b64d("invalid!@#$")
        checks.append(("Base64 strict decode (invalid)", False))
    except ValueError:
        checks.append(("Base64 strict decode (invalid)", True))

    all_ok = all(ok for _, ok in checks)
    for name, ok in checks:
        (logger.info if ok else logger.error)("security_check", check=name, status=("OK" if ok else "FAILED"))

    if not all_ok:
        raise RuntimeError("Security self-check failed")
    logger.info("security_self_check_passed")
    return True


async def run_dev_server(host: str, port: int, api_port: int, token: str, ticket: str):
    import uvicorn
    from arenalink.server.roundentry import build_roundentry_app
    from arenalink.server.simulator import GameServerSimulator

    sim = GameServerSimulator(ticket=ticket, host=host, port=port)
    await sim.start()
    app = build_roundentry_app({token: sim.round_info()})
    server = uvicorn.Server(uvicorn.Config(app, host=host, port=api_port, log_config=None))
    logger.info("starting_dev_server", host=host, game_port=sim.port, api_port=api_port)
    print(f"Round entry API: http://{host}:{api_port}  token: {token}")
    try:
        await asyncio.gather(sim.serve_forever(), server.serve())
    finally:
        await sim.stop()


async def run_join(token: str, config: ClientConfig, rotate: str | None = None):
    async with await join(token, config=config) as session:
        if rotate:
            await session.player.rotate(rotate)
        health = await session.player.get_health()
        print(f"Joined (pc={session.pc}), health={health}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="arenalink game client")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("check", help="Run security self-check")
    subparsers.add_parser("gen-key", help="Generate a base64 AES-256 key")

    serve_parser = subparsers.add_parser("serve", help="Run a local game server and round-entry API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=9999)
    serve_parser.add_argument("--api-port", type=int, default=8000)
    serve_parser.add_argument("--token", default=None, help="authtoken to register (random if omitted)")
    serve_parser.add_argument("--ticket", default=None)

    join_parser = subparsers.add_parser("join", help="Join a round with an authtoken")
    join_parser.add_argument("--token", required=True)
    join_parser.add_argument("--resolver-url", default=DEFAULT_RESOLVER_URL)
    join_parser.add_argument("--timeout", type=float, default=DEFAULT_IO_TIMEOUT_S)
    join_parser.add_argument("--ipv6", action="store_true", help="Prefer the server's IPv6 address")
    join_parser.add_argument("--rotate", choices=sorted(ANGLES))

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    ok, missing = check_dependencies(server=(args.command == "serve"))
    if not ok:
        print("ERROR: Missing dependencies:")
        for dep in missing:
            print(f"  - {dep}")
        print(f"\nInstall with:\npip install {' '.join(missing)}")
        sys.exit(1)

    configure_logging()

    if args.command == "check":
        security_self_check()
        print("✓ Security self-check passed")
        return

    if args.command == "gen-key":
        print(b64e(new_key()))
        return

    if args.command == "serve":
        security_self_check()
        token = args.token or secrets.token_urlsafe(12)
        ticket = args.ticket or secrets.token_hex(8)
        try:
            asyncio.run(run_dev_server(args.host, args.port, args.api_port, token, ticket))
        except KeyboardInterrupt:
            logger.info("dev_server_shutdown", reason="keyboard_interrupt")
        return

    if args.command == "join":
        config = ClientConfig(resolver_url=args.resolver_url, io_timeout=args.timeout, prefer_ipv6=args.ipv6)
        try:
            asyncio.run(run_join(args.token, config, args.rotate))
        except KeyboardInterrupt:
            logger.info("client_shutdown", reason="keyboard_interrupt")
        except ArenaLinkError as e:
            logger.error("join_failed", error_type=type(e).__name__, error=str(e))
            print(f"Error: {e}")
            sys.exit(1)


if __name__ == "__main__":
    main()
