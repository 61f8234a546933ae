"""Schedule runner: riegos programados → comandos ``triggered_by=scheduled``.

Cada horario vencido (``is_active`` y ``next_run <= now``) produce UN
comando start con la duración del horario, aunque se hayan perdido
varias ejecuciones mientras el runner estuvo caído: next_run se
adelanta hasta quedar en el futuro.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from common.clock import as_utc, utc_now
from common.schema import irrigation_schedules
from relay_api.commands import CommandQueue, TriggeredBy
from relay_api.errors import RelayError

logger = logging.getLogger(__name__)


def next_run_after(previous: datetime, frequency_days: int, now: datetime) -> datetime:
    """Primer múltiplo de frequency_days desde previous estrictamente > now."""
    step = timedelta(days=max(1, int(frequency_days)))
    candidate = previous + step
    if candidate <= now:
        missed = (now - candidate) // step + 1
        candidate = candidate + step * missed
    return candidate


def _load_due(db: Session, now: datetime) -> list:
    return db.execute(
        select(
            irrigation_schedules.c.id,
            irrigation_schedules.c.actuator_id,
            irrigation_schedules.c.duration_minutes,
            irrigation_schedules.c.frequency_days,
            irrigation_schedules.c.next_run,
        )
        .where(irrigation_schedules.c.is_active.is_(True))
        .where(irrigation_schedules.c.next_run.is_not(None))
        .where(irrigation_schedules.c.next_run <= now)
        .order_by(irrigation_schedules.c.next_run, irrigation_schedules.c.id)
    ).all()


def _run_schedule(db: Session, row, now: datetime) -> Optional[int]:
    """Reclama el horario (CAS sobre next_run) y encola. Devuelve command_id."""
    previous = row.next_run
    upcoming = next_run_after(as_utc(previous), row.frequency_days, now)

    claimed = db.execute(
        update(irrigation_schedules)
        .where(irrigation_schedules.c.id == row.id)
        .where(irrigation_schedules.c.next_run == previous)
        .values(last_run=now, next_run=upcoming)
    )
    if claimed.rowcount == 0:
        # Otro runner ya lo tomó
        return None

    result = CommandQueue(db).enqueue(
        row.actuator_id,
        "start",
        duration_minutes=row.duration_minutes,
        triggered_by=TriggeredBy.SCHEDULED,
        now=now,
    )
    logger.info(
        "SCHEDULE_FIRED schedule=%s actuator=%s command=%s next_run=%s",
        row.id, row.actuator_id, result.command.id, upcoming.isoformat(),
    )
    return result.command.id


def run_once(session_factory: Callable[[], Session], now: Optional[datetime] = None) -> int:
    """Una pasada: cada horario en su propia transacción. Devuelve comandos emitidos."""
    now = as_utc(now) or utc_now()

    db = session_factory()
    try:
        due = _load_due(db, now)
    finally:
        db.close()

    fired = 0
    for row in due:
        db = session_factory()
        try:
            if _run_schedule(db, row, now) is not None:
                fired += 1
            db.commit()
        except RelayError as e:
            db.rollback()
            logger.error("SCHEDULE_FAILED schedule=%s code=%s err=%s", row.id, e.code, e)
        finally:
            db.close()

    logger.info("Schedules due=%d fired=%d", len(due), fired)
    return fired
