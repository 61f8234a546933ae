"""Endpoints de poll/ack para el firmware y consultas del operador."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from common.clock import utc_now
from common.db import get_db

from ..auth import require_device_key, require_operator_key
from ..commands import CommandLog, CommandQueue, pump_label
from ..rate_limiter import get_client_ip, get_rate_limiter
from ..registry import DeviceRegistry
from ..schemas import (
    AckIn,
    AckResult,
    ActuatorLogOut,
    CommandDetail,
    PolledCommand,
    PolledCommands,
)
from ..transactions import unit_of_work

router = APIRouter(tags=["commands"])
logger = logging.getLogger(__name__)


@router.get(
    "/commands",
    response_model=PolledCommands,
    dependencies=[Depends(require_device_key)],
)
def poll_commands(
    request: Request,
    device_id: str = Query(..., min_length=1, max_length=64),
    db: Session = Depends(get_db),
):
    """Poll del dispositivo: devuelve y marca dispatched sus comandos pending.

    Un comando se entrega una sola vez; si el dispositivo pierde la
    respuesta, el comando termina expired y el operador decide re-emitir.
    """
    get_rate_limiter().check_all(device_id=device_id, ip=get_client_ip(request))

    now = utc_now()
    registry = DeviceRegistry(db)
    with unit_of_work(db, "poll"):
        commands = CommandQueue(db, registry=registry).poll(device_id, now=now)
        registry.touch_last_seen(device_id, now)

    return PolledCommands(
        commands=[
            PolledCommand(
                id=c.id,
                pump_id=pump_label(c.binding),
                action=c.action.value,
                duration_minutes=c.duration_minutes,
            )
            for c in commands
        ]
    )


@router.post(
    "/commands/{command_id}/ack",
    response_model=AckResult,
    dependencies=[Depends(require_device_key)],
)
def acknowledge_command(
    command_id: int,
    request: Request,
    payload: AckIn,
    db: Session = Depends(get_db),
):
    """Confirmación de ejecución. Idempotente: reenviar el ack no cambia nada.

    Un comando de otro dispositivo responde 404 COMMAND_NOT_FOUND.
    """
    get_rate_limiter().check_all(device_id=payload.device_id, ip=get_client_ip(request))

    with unit_of_work(db, "ack"):
        result = CommandQueue(db).acknowledge(
            command_id, utc_now(), device_id=payload.device_id
        )

    return AckResult(command_id=result.command_id, state=result.state.value, changed=result.changed)


@router.get(
    "/commands/{command_id}",
    response_model=CommandDetail,
    dependencies=[Depends(require_operator_key)],
)
def get_command(command_id: int, db: Session = Depends(get_db)):
    """Estado de un comando (p.ej. para mostrar 'expired' en el dashboard)."""
    command = CommandQueue(db).get(command_id)
    return CommandDetail(
        id=command.id,
        pump_id=pump_label(command.binding),
        action=command.action.value,
        duration_minutes=command.duration_minutes,
        state=command.state.value,
        triggered_by=command.triggered_by.value,
        created_at=command.created_at,
        device_id=command.device_id,
        actuator_id=command.actuator_id,
        dispatched_at=command.dispatched_at,
        acknowledged_at=command.acknowledged_at,
        expired_at=command.expired_at,
        superseded_at=command.superseded_at,
        superseded_by=command.superseded_by,
    )


@router.get(
    "/actuators/{actuator_id}/logs",
    response_model=list[ActuatorLogOut],
    dependencies=[Depends(require_operator_key)],
)
def actuator_history(
    actuator_id: int,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Historial de acciones (actuator_logs), más recientes primero."""
    return [ActuatorLogOut(**row) for row in CommandLog(db).history(actuator_id, limit=limit)]
