"""Estados y transiciones del ciclo de vida de un comando."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class CommandState(str, Enum):
    PENDING = "pending"
    DISPATCHED = "dispatched"
    ACKNOWLEDGED = "acknowledged"
    EXPIRED = "expired"
    SUPERSEDED = "superseded"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


class CommandAction(str, Enum):
    START = "start"
    STOP = "stop"


class TriggeredBy(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"
    SYSTEM = "system"


TERMINAL_STATES = frozenset(
    {CommandState.ACKNOWLEDGED, CommandState.EXPIRED, CommandState.SUPERSEDED}
)

# Toda UPDATE de estado lleva "WHERE state = <origen>"; esta tabla es la
# única fuente de qué orígenes son válidos para cada destino.
ALLOWED_TRANSITIONS = {
    CommandState.DISPATCHED: CommandState.PENDING,
    CommandState.SUPERSEDED: CommandState.PENDING,
    CommandState.ACKNOWLEDGED: CommandState.DISPATCHED,
    CommandState.EXPIRED: CommandState.DISPATCHED,
}


def required_source(target: CommandState) -> CommandState:
    return ALLOWED_TRANSITIONS[target]


def can_transition(current: CommandState, target: CommandState) -> bool:
    return ALLOWED_TRANSITIONS.get(target) == current


@dataclass(frozen=True)
class Command:
    id: int
    actuator_id: int
    device_id: str
    binding: Optional[str]
    action: CommandAction
    duration_minutes: Optional[int]
    state: CommandState
    triggered_by: TriggeredBy
    created_at: datetime
    dispatched_at: Optional[datetime] = None
    acknowledged_at: Optional[datetime] = None
    expired_at: Optional[datetime] = None
    superseded_at: Optional[datetime] = None
    superseded_by: Optional[int] = None
