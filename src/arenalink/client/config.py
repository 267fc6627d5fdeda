from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
from arenalink.protocol.constants import DEFAULT_IO_TIMEOUT_S, DEFAULT_RESOLVER_URL, MAX_FRAME_BYTES


@dataclass(frozen=True)
class ClientConfig:
    resolver_url: str = DEFAULT_RESOLVER_URL
    # None disables timeouts; reads then block until the server answers
    io_timeout: Optional[float] = DEFAULT_IO_TIMEOUT_S
    prefer_ipv6: bool = False
    max_frame_bytes: int = MAX_FRAME_BYTES

    def __post_init__(self):
        if self.io_timeout is not None and self.io_timeout <= 0:
            raise ValueError("io_timeout must be positive or None")
        if self.max_frame_bytes < 64:
            raise ValueError("max_frame_bytes too small")
