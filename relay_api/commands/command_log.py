"""Command Log: historial inmutable de acciones sobre actuadores.

Solo el Command Queue escribe aquí. Las filas nunca se actualizan ni se
borran; el dashboard las lee para mostrar historial.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import insert, select
from sqlalchemy.orm import Session

from common.clock import utc_now
from common.schema import actuator_logs

from ..errors import translate_store_errors

logger = logging.getLogger(__name__)


class CommandLog:
    def __init__(self, db: Session) -> None:
        self._db = db

    def record(
        self,
        *,
        actuator_id: int,
        command_id: Optional[int],
        action: str,
        duration_minutes: Optional[int],
        triggered_by: str,
        timestamp: Optional[datetime] = None,
        volume_ml: Optional[float] = None,
    ) -> int:
        now = utc_now()
        with translate_store_errors("actuator_log_insert"):
            result = self._db.execute(
                insert(actuator_logs).values(
                    actuator_id=actuator_id,
                    command_id=command_id,
                    action=action,
                    duration_minutes=duration_minutes,
                    volume_ml=volume_ml,
                    triggered_by=triggered_by,
                    timestamp=timestamp or now,
                    created_at=now,
                )
            )
        log_id = int(result.inserted_primary_key[0])
        logger.info(
            "ACTUATOR_LOG id=%s actuator=%s command=%s action=%s by=%s",
            log_id, actuator_id, command_id, action, triggered_by,
        )
        return log_id

    def history(self, actuator_id: int, limit: int = 50) -> list[dict]:
        """Últimas entradas del actuador, más recientes primero."""
        with translate_store_errors("actuator_log_history"):
            rows = self._db.execute(
                select(actuator_logs)
                .where(actuator_logs.c.actuator_id == actuator_id)
                .order_by(actuator_logs.c.timestamp.desc(), actuator_logs.c.id.desc())
                .limit(limit)
            ).mappings().all()
        return [dict(r) for r in rows]
