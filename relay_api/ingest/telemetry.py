"""Telemetry Ingestor: payload del dispositivo → lecturas de sensores.

FLUJO:
1. Validar el sobre (sensors no vacío, valores numéricos, timestamp opcional)
2. Resolver el dispositivo (fail closed si no existe)
3. Resolver cada campo contra el índice de bindings del dispositivo
4. Un único INSERT multi-fila con todas las lecturas resueltas

Los campos sin binding NO abortan el payload: van a ``skipped``.
Los valores se guardan tal cual llegan (sin conversión, redondeo ni
chequeo de rango físico; eso es responsabilidad de capas superiores).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Mapping, Optional

from sqlalchemy import insert
from sqlalchemy.orm import Session

from common.clock import as_utc, utc_now
from common.schema import sensor_readings

from ..errors import ValidationError, translate_store_errors
from ..metrics import READINGS_TOTAL, count_on_commit
from ..registry import DeviceRegistry, resolve_sensor

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    stored_count: int
    skipped: List[str] = field(default_factory=list)


def _is_number(value: Any) -> bool:
    # bool es subclase de int, pero un true/false no es una lectura
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_timestamp(raw: Any) -> Optional[datetime]:
    """Acepta datetime, ISO-8601 (con o sin 'Z') o None. Naive = UTC."""
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return as_utc(raw)
    if isinstance(raw, str):
        try:
            return as_utc(datetime.fromisoformat(raw.strip().replace("Z", "+00:00")))
        except ValueError as e:
            raise ValidationError(f"Invalid timestamp: {raw!r}") from e
    raise ValidationError("timestamp must be an ISO-8601 string")


def validate_sensor_values(sensors: Any) -> Mapping[str, float]:
    if not isinstance(sensors, Mapping) or not sensors:
        raise ValidationError("sensors must be a non-empty object")
    for name, value in sensors.items():
        if not isinstance(name, str) or not name:
            raise ValidationError("sensor names must be non-empty strings")
        if not _is_number(value):
            raise ValidationError(f"sensor {name} must be numeric")
    return sensors


class TelemetryIngestor:
    def __init__(self, db: Session, registry: Optional[DeviceRegistry] = None) -> None:
        self._db = db
        self._registry = registry or DeviceRegistry(db)

    def ingest(
        self,
        device_id: str,
        payload: Mapping[str, Any],
        *,
        received_at: Optional[datetime] = None,
    ) -> IngestResult:
        """Ingesta un payload de sensores dentro de la transacción del caller.

        Args:
            device_id: identificador opaco del dispositivo
            payload: {"sensors": {nombre: número}, "timestamp"?: ISO/datetime}
            received_at: hora de recepción (default: ahora)

        Returns:
            IngestResult con lecturas guardadas y campos omitidos

        Raises:
            ValidationError: sobre malformado (no se guarda nada)
            UnknownDevice: dispositivo sin registro (no se guarda nada)
            TransientStoreError: timeout o caída del storage
        """
        if not isinstance(device_id, str) or not device_id.strip():
            raise ValidationError("device_id is required")
        if not isinstance(payload, Mapping):
            raise ValidationError("payload must be an object")

        values = validate_sensor_values(payload.get("sensors"))
        received_at = as_utc(received_at) or utc_now()
        reading_ts = parse_timestamp(payload.get("timestamp")) or received_at

        bindings = self._registry.resolve_device(device_id)

        rows: list[dict] = []
        skipped: list[str] = []
        for name, value in values.items():
            sensor = resolve_sensor(bindings, name)
            if sensor is None:
                skipped.append(name)
                continue
            rows.append(
                {
                    "sensor_id": sensor.sensor_id,
                    "value": value,
                    "unit": sensor.unit,
                    "timestamp": reading_ts,
                    "created_at": received_at,
                }
            )

        if rows:
            with translate_store_errors("ingest_readings"):
                self._db.execute(insert(sensor_readings), rows)

        count_on_commit(self._db, READINGS_TOTAL.labels(status="stored"), len(rows))
        if skipped:
            count_on_commit(self._db, READINGS_TOTAL.labels(status="skipped"), len(skipped))
            logger.warning(
                "INGEST_SKIPPED_FIELDS device=%s fields=%s", device_id, ",".join(skipped)
            )

        return IngestResult(stored_count=len(rows), skipped=skipped)
