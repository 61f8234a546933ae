"""Endpoint de push de telemetría desde el dispositivo."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from common.clock import utc_now
from common.db import get_db

from ..auth import require_device_key
from ..ingest import ActuatorStateReconciler, TelemetryIngestor
from ..rate_limiter import get_client_ip, get_rate_limiter
from ..registry import DeviceRegistry
from ..schemas import SensorDataIn, SensorDataResult
from ..transactions import unit_of_work

router = APIRouter(tags=["devices"])
logger = logging.getLogger(__name__)


@router.post(
    "/sensor-data",
    response_model=SensorDataResult,
    dependencies=[Depends(require_device_key)],
)
def push_sensor_data(
    payload: SensorDataIn,
    request: Request,
    db: Session = Depends(get_db),
):
    """Lecturas de sensores + estado reportado de bombas.

    FLUJO:
    - Rate limiting por IP y dispositivo
    - Resolver dispositivo (404 UNKNOWN_DEVICE si no está registrado)
    - Insertar en lote las lecturas con binding; el resto va a ``skipped``
    - Espejar el estado de las bombas reportadas
    - Todo en una transacción: o se guarda el paquete entero o nada
    """
    received_at = utc_now()

    get_rate_limiter().check_all(device_id=payload.device_id, ip=get_client_ip(request))

    registry = DeviceRegistry(db)
    with unit_of_work(db, "sensor_data"):
        ingest_result = TelemetryIngestor(db, registry).ingest(
            payload.device_id,
            {"sensors": payload.sensors, "timestamp": payload.timestamp},
            received_at=received_at,
        )

        actuators_updated: list[str] = []
        actuators_skipped: list[str] = []
        if payload.actuators:
            reconcile_result = ActuatorStateReconciler(db, registry).reconcile(
                payload.device_id, payload.actuators, now=received_at
            )
            actuators_updated = reconcile_result.updated
            actuators_skipped = reconcile_result.skipped

        registry.touch_last_seen(payload.device_id, received_at)

    logger.info(
        "INGEST COMPLETE device=%s readings=%d skipped=%d actuators=%d",
        payload.device_id,
        ingest_result.stored_count,
        len(ingest_result.skipped),
        len(actuators_updated),
    )
    return SensorDataResult(
        stored_count=ingest_result.stored_count,
        skipped=ingest_result.skipped,
        actuators_updated=actuators_updated,
        actuators_skipped=actuators_skipped,
    )
