"""Endpoint de emisión de comandos de bomba (operador / dashboard)."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from common.db import get_db

from ..auth import require_operator_key
from ..commands import Command, CommandQueue, pump_label
from ..schemas import CommandOut, PumpCommandIn, PumpCommandResult
from ..transactions import unit_of_work

router = APIRouter(tags=["commands"])
logger = logging.getLogger(__name__)


def command_out(command: Command) -> CommandOut:
    return CommandOut(
        id=command.id,
        pump_id=pump_label(command.binding),
        action=command.action.value,
        duration_minutes=command.duration_minutes,
        state=command.state.value,
        triggered_by=command.triggered_by.value,
        created_at=command.created_at,
    )


@router.post(
    "/pump-command",
    response_model=PumpCommandResult,
    dependencies=[Depends(require_operator_key)],
)
def issue_pump_command(
    payload: PumpCommandIn,
    db: Session = Depends(get_db),
    x_account_id: str | None = Header(default=None, alias="X-Account-Id"),
):
    """Encola un comando para que el dispositivo lo recoja en su próximo poll.

    Si ya había un comando pending para esa bomba queda ``superseded``;
    sus ids vuelven en ``superseded``.
    """
    with unit_of_work(db, "pump_command"):
        result = CommandQueue(db).enqueue_for_device(
            payload.device_id,
            payload.pump_id,
            payload.action,
            duration_minutes=payload.duration_minutes,
            triggered_by=payload.triggered_by,
            account_id=x_account_id,
        )

    return PumpCommandResult(
        command=command_out(result.command),
        superseded=result.superseded_ids,
    )
