"""Actuator State Reconciler.

Espeja en ``actuators`` el estado que reporta el dispositivo. No es una
acción auditada: no escribe actuator_logs ni toca actuator_commands.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from datetime import datetime
from typing import Any, List, Mapping, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from common.clock import as_utc, utc_now
from common.schema import actuators

from ..errors import ValidationError, translate_store_errors
from ..registry import DeviceRegistry, resolve_actuator

logger = logging.getLogger(__name__)


class ActuatorStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    UNKNOWN = "unknown"


@dataclass
class ReconcileResult:
    updated: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


class ActuatorStateReconciler:
    def __init__(self, db: Session, registry: Optional[DeviceRegistry] = None) -> None:
        self._db = db
        self._registry = registry or DeviceRegistry(db)

    def reconcile(
        self,
        device_id: str,
        reported_state: Mapping[str, Any],
        now: Optional[datetime] = None,
    ) -> ReconcileResult:
        """Aplica {nombre: bool} sobre los actuadores del dispositivo.

        last_activated solo se mueve cuando el actuador ENTRA en active;
        un reporte repetido de "encendida" no la reescribe.
        """
        if not isinstance(reported_state, Mapping):
            raise ValidationError("actuators must be an object")
        for name, value in reported_state.items():
            if not isinstance(value, bool):
                raise ValidationError(f"actuator {name} must be a boolean")

        result = ReconcileResult()
        if not reported_state:
            return result

        now = as_utc(now) or utc_now()
        bindings = self._registry.resolve_device(device_id)

        for name, is_on in reported_state.items():
            actuator = resolve_actuator(bindings, name)
            if actuator is None:
                result.skipped.append(name)
                continue

            with translate_store_errors("reconcile_actuator"):
                if is_on:
                    # Transición a active: estampar last_activated
                    self._db.execute(
                        update(actuators)
                        .where(actuators.c.id == actuator.actuator_id)
                        .where(actuators.c.status != ActuatorStatus.ACTIVE.value)
                        .values(status=ActuatorStatus.ACTIVE.value, last_activated=now, updated_at=now)
                    )
                else:
                    self._db.execute(
                        update(actuators)
                        .where(actuators.c.id == actuator.actuator_id)
                        .where(actuators.c.status != ActuatorStatus.INACTIVE.value)
                        .values(status=ActuatorStatus.INACTIVE.value, updated_at=now)
                    )
            result.updated.append(actuator.binding)

        if result.skipped:
            logger.warning(
                "RECONCILE_SKIPPED device=%s actuators=%s", device_id, ",".join(result.skipped)
            )
        logger.debug("RECONCILE device=%s updated=%s", device_id, result.updated)
        return result
