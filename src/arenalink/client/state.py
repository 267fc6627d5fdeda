from __future__ import annotations
from dataclasses import dataclass
from typing import Optional
from arenalink.crypto.aead import AEADCipher
from arenalink.protocol.constants import PC_MODULUS
from arenalink.protocol.phases import ENCRYPTED_PHASES, Phase


@dataclass
class SessionState:
    phase: Phase = Phase.DISCONNECTED
    cipher: Optional[AEADCipher] = None
    pc: int = 0
    challenge: Optional[int] = None

    @property
    def encrypted(self) -> bool:
        return self.phase in ENCRYPTED_PHASES

    @property
    def closed(self) -> bool:
        return self.phase is Phase.CLOSED

    def next_pc(self) -> int:
        self.pc = (self.pc + 1) % PC_MODULUS
        return self.pc

    def cleanup(self):
        self.cipher = None
        self.challenge = None
        self.pc = 0
        self.phase = Phase.CLOSED
