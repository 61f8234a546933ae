"""Resolución de device_id a sus sensores/actuadores.

Índice por (device_id, binding): cada canal físico del payload
("soil_moisture_1", "pump_1", ...) se resuelve contra los registros del
propio dispositivo, nunca contra una búsqueda global por tipo.

Mantiene un caché LRU con TTL en memoria para el hot path: cada ingesta
y cada poll pasa por aquí. El caché guarda solo los mapas de bindings;
la fila del dispositivo (existencia y cuenta dueña) se lee en cada
llamada, así que desaprovisionar un dispositivo corta el acceso de
inmediato.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from common.clock import utc_now
from common.config import get_settings
from common.schema import actuators, devices, sensors

from ..errors import UnknownDevice, translate_store_errors

logger = logging.getLogger(__name__)

# Unidad por tipo cuando el sensor no trae una propia.
DEFAULT_UNITS = {
    "soil_moisture": "%",
    "volume": "ml",
}


@dataclass(frozen=True)
class SensorBinding:
    sensor_id: int
    binding: str
    kind: str
    unit: Optional[str]


@dataclass(frozen=True)
class ActuatorBinding:
    actuator_id: int
    binding: str
    kind: str


@dataclass(frozen=True)
class DeviceBindings:
    device_id: str
    account_id: str
    sensors: Dict[str, SensorBinding] = field(default_factory=dict)
    actuators: Dict[str, ActuatorBinding] = field(default_factory=dict)


_CACHE: "OrderedDict[str, Tuple[DeviceBindings, datetime]]" = OrderedDict()
_CACHE_LOCK = threading.Lock()


def _cache_get(device_id: str, now: datetime) -> Optional[DeviceBindings]:
    with _CACHE_LOCK:
        cached = _CACHE.get(device_id)
        if cached is None:
            return None
        bindings, expires_at = cached
        if expires_at > now:
            _CACHE.move_to_end(device_id)
            return bindings
        _CACHE.pop(device_id, None)
        return None


def _cache_put(device_id: str, bindings: DeviceBindings, now: datetime) -> None:
    settings = get_settings()
    expires_at = now + timedelta(seconds=settings.registry_cache_ttl_seconds)
    with _CACHE_LOCK:
        # Evitar memory leak: eliminar entradas más antiguas si excede límite
        while len(_CACHE) >= settings.registry_cache_max_size:
            _CACHE.popitem(last=False)
        _CACHE[device_id] = (bindings, expires_at)


def clear_cache() -> None:
    """Limpia el caché de resolución (útil para testing y tras aprovisionar)."""
    with _CACHE_LOCK:
        _CACHE.clear()


def get_cache_stats() -> dict:
    settings = get_settings()
    with _CACHE_LOCK:
        size = len(_CACHE)
    return {
        "size": size,
        "max_size": settings.registry_cache_max_size,
        "ttl_seconds": settings.registry_cache_ttl_seconds,
    }


class DeviceRegistry:
    """Solo lecturas: las bindings las crea el aprovisionamiento."""

    def __init__(self, db: Session) -> None:
        self._db = db

    def resolve_device(self, device_id: str) -> DeviceBindings:
        """Resuelve el dispositivo y todas sus bindings.

        Raises:
            UnknownDevice: si no existe o no tiene cuenta dueña (fail closed)
        """
        now = utc_now()
        with translate_store_errors("resolve_device"):
            device_row = self._db.execute(
                select(devices.c.device_id, devices.c.account_id).where(
                    devices.c.device_id == device_id
                )
            ).first()

        if device_row is None or not device_row.account_id:
            logger.warning("UNKNOWN_DEVICE device=%s", device_id)
            raise UnknownDevice(device_id)

        cached = _cache_get(device_id, now)
        if cached is not None and cached.account_id == str(device_row.account_id):
            return cached

        with translate_store_errors("resolve_device_bindings"):
            sensor_rows = self._db.execute(
                select(sensors.c.id, sensors.c.binding, sensors.c.kind, sensors.c.unit).where(
                    sensors.c.device_id == device_id
                )
            ).all()
            actuator_rows = self._db.execute(
                select(actuators.c.id, actuators.c.binding, actuators.c.kind).where(
                    actuators.c.device_id == device_id
                )
            ).all()

        bindings = DeviceBindings(
            device_id=device_id,
            account_id=str(device_row.account_id),
            sensors={
                r.binding: SensorBinding(
                    sensor_id=int(r.id),
                    binding=r.binding,
                    kind=r.kind,
                    unit=r.unit or DEFAULT_UNITS.get(r.kind),
                )
                for r in sensor_rows
            },
            actuators={
                r.binding: ActuatorBinding(actuator_id=int(r.id), binding=r.binding, kind=r.kind)
                for r in actuator_rows
            },
        )
        _cache_put(device_id, bindings, now)
        logger.debug(
            "Resolved device=%s sensors=%d actuators=%d",
            device_id,
            len(bindings.sensors),
            len(bindings.actuators),
        )
        return bindings

    def resolve_device_for_account(self, device_id: str, account_id: Optional[str]) -> DeviceBindings:
        """Como resolve_device, pero exige que pertenezca a ``account_id`` si viene."""
        bindings = self.resolve_device(device_id)
        if account_id is not None and bindings.account_id != account_id:
            logger.warning(
                "DEVICE_ACCOUNT_MISMATCH device=%s expected_account=%s", device_id, account_id
            )
            raise UnknownDevice(device_id)
        return bindings

    def touch_last_seen(self, device_id: str, now: Optional[datetime] = None) -> None:
        with translate_store_errors("touch_last_seen"):
            self._db.execute(
                update(devices)
                .where(devices.c.device_id == device_id)
                .values(last_seen_at=now or utc_now())
            )


def resolve_sensor(bindings: DeviceBindings, name: str) -> Optional[SensorBinding]:
    return bindings.sensors.get(name)


def resolve_actuator(bindings: DeviceBindings, name: str) -> Optional[ActuatorBinding]:
    """Acepta el binding exacto o el alias con sufijo ``_status`` del firmware."""
    found = bindings.actuators.get(name)
    if found is None and name.endswith("_status"):
        found = bindings.actuators.get(name[: -len("_status")])
    return found
