from __future__ import annotations
from typing import Optional, Protocol, Tuple

import httpx
import structlog
from pydantic import AliasChoices, BaseModel, Field, ValidationError

from arenalink.crypto.primitives import b64d
from arenalink.protocol.constants import (
    CONNECTINFO_PATH, DEFAULT_RESOLVER_TIMEOUT_S, DEFAULT_RESOLVER_URL, KEY_BYTES,
)

from .errors import ResolverError

logger = structlog.get_logger(__name__)


class RoundInfo(BaseModel):
    ticket: str = ""
    aes_key: str = ""
    host_ipv4: str = Field(default="", validation_alias=AliasChoices("host_ipv4", "ipv4"))
    host_ipv6: str = Field(default="", validation_alias=AliasChoices("host_ipv6", "ipv6"))
    port: int = Field(default=0, ge=0, le=65535)
    error: Optional[str] = None

    def key_bytes(self) -> bytes:
        try:
            key = b64d(self.aes_key)
        except ValueError as e:
            raise ResolverError(f"aes_key is not valid base64: {e}", stage="resolve") from e
        if len(key) != KEY_BYTES:
            raise ResolverError("aes_key has wrong length", stage="resolve",
                                expected=KEY_BYTES, actual=len(key))
        return key

    def address(self, prefer_ipv6: bool = False) -> Tuple[str, int]:
        order = (self.host_ipv6, self.host_ipv4) if prefer_ipv6 else (self.host_ipv4, self.host_ipv6)
        host = next((h for h in order if h), "")
        if not host or not self.port:
            raise ResolverError("round information has no server address", stage="resolve")
        return host, self.port


class RoundResolver(Protocol):
    async def resolve(self, token: str) -> RoundInfo:
        ...


class StaticRoundResolver:
    """Hands out one fixed :class:`RoundInfo`, e.g. for a local server."""

    def __init__(self, round_info: RoundInfo):
        self.round_info = round_info

    async def resolve(self, token: str) -> RoundInfo:
        if self.round_info.error:
            raise ResolverError(self.round_info.error, stage="resolve")
        return self.round_info


class HttpRoundResolver:
    """Exchanges an authtoken for round information over the public API."""

    def __init__(self, base_url: str = DEFAULT_RESOLVER_URL,
                 timeout: float = DEFAULT_RESOLVER_TIMEOUT_S,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def resolve(self, token: str) -> RoundInfo:
        url = self.base_url + CONNECTINFO_PATH.format(token=token)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            try:
                resp = await client.get(url)
            except httpx.HTTPError as e:
                raise ResolverError(f"connectinfo request failed: {e}", stage="resolve") from e

        try:
            data = resp.json()
        except ValueError as e:
            raise ResolverError(f"connectinfo returned invalid json (HTTP {resp.status_code})",
                                stage="resolve") from e
        if not isinstance(data, dict):
            raise ResolverError("connectinfo response must be json object", stage="resolve")

        try:
            info = RoundInfo.model_validate(data)
        except ValidationError as e:
            raise ResolverError(f"connectinfo response malformed: {e.errors()[0]['msg']}",
                                stage="resolve") from e

        if info.error:
            logger.warning("round_info_rejected", status=resp.status_code, error=info.error)
            raise ResolverError(info.error, stage="resolve")
        if resp.status_code >= 400:
            raise ResolverError(f"connectinfo returned HTTP {resp.status_code}", stage="resolve")

        logger.info("round_info_resolved", host_ipv4=info.host_ipv4, host_ipv6=info.host_ipv6, port=info.port)
        return info
