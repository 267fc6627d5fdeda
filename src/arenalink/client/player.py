from __future__ import annotations
from typing import TYPE_CHECKING, Any, List

from pydantic import BaseModel, ValidationError

from arenalink.protocol.constants import (
    ANGLES, DIRECTIONS, PT_ATTACK, PT_DEFEND, PT_HEALTH, PT_MOVE, PT_RADAR,
    PT_ROTATE, PT_SCOUT, PT_UNDEFEND, PT_WATCH,
)
from arenalink.protocol.envelope import Envelope

from .errors import ProtocolError, ServerRejection

if TYPE_CHECKING:
    from .session import Session


class AttackResult(BaseModel):
    health: int


class CounterResult(BaseModel):
    counter: int


class WatchResult(BaseModel):
    health_matrix: List[List[int]]


class HealthResult(BaseModel):
    value: int


class Player:
    """The controllable character of a joined session.

    Every method is one request/response round trip through the owning
    session. Once the session is closed all methods raise
    ``SessionClosedError``.
    """

    def __init__(self, session: Session):
        self.session = session

    async def _call(self, type_: str, body: Any = None) -> Envelope:
        envelope = await self.session.request(type_, body)
        if envelope.error is not None:
            raise ServerRejection(envelope.error, stage=type_)
        return envelope

    @staticmethod
    def _result(envelope: Envelope, model, name: str):
        try:
            return model.model_validate(envelope.obj)
        except ValidationError as e:
            raise ProtocolError(f"invalid {name}-response packet", stage=name) from e

    async def rotate(self, angle: str) -> None:
        if angle not in ANGLES:
            raise ValueError(f"angle must be one of {sorted(ANGLES)}")
        await self._call(PT_ROTATE, {"angle": angle})

    async def move(self, direction: str) -> None:
        if direction not in DIRECTIONS:
            raise ValueError(f"direction must be one of {sorted(DIRECTIONS)}")
        await self._call(PT_MOVE, {"direction": direction})

    async def attack(self) -> int:
        """Attack the block the player is facing; returns the enemy's remaining health."""
        envelope = await self._call(PT_ATTACK)
        return self._result(envelope, AttackResult, "attack").health

    async def radar(self) -> int:
        envelope = await self._call(PT_RADAR)
        return self._result(envelope, CounterResult, "radar").counter

    async def watch(self) -> List[List[int]]:
        envelope = await self._call(PT_WATCH)
        return self._result(envelope, WatchResult, "watch").health_matrix

    async def scout(self, distance: int) -> int:
        if isinstance(distance, bool) or not isinstance(distance, int) or distance <= 0:
            raise ValueError("distance must be a positive int")
        envelope = await self._call(PT_SCOUT, {"distance": distance})
        return self._result(envelope, CounterResult, "scout").counter

    async def defend(self) -> None:
        await self._call(PT_DEFEND)

    async def undefend(self) -> None:
        await self._call(PT_UNDEFEND)

    async def get_health(self) -> int:
        envelope = await self._call(PT_HEALTH)
        return self._result(envelope, HealthResult, "health").value

    @property
    def active(self) -> bool:
        return not self.session.closed
