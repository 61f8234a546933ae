"""Command Queue, Command Log y barrido de expiración."""

from .command_log import CommandLog
from .queue import AckResult, CommandQueue, EnqueueResult, pump_binding, pump_label
from .states import Command, CommandAction, CommandState, TriggeredBy
from .sweeper import CommandExpirySweeper, run_expiry_sweep

__all__ = [
    "AckResult",
    "Command",
    "CommandAction",
    "CommandExpirySweeper",
    "CommandLog",
    "CommandQueue",
    "CommandState",
    "EnqueueResult",
    "TriggeredBy",
    "pump_binding",
    "pump_label",
    "run_expiry_sweep",
]
