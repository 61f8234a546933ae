"""Métricas Prometheus del relay.

Solo agregados: nunca device_id ni valores de lecturas como labels.

Lo que ocurre dentro de una transacción (lecturas guardadas, transiciones
de comandos) se cuenta recién cuando esa transacción commitea; si hace
rollback, los incrementos pendientes se descartan.
"""

from __future__ import annotations

from functools import partial
from typing import Callable

from prometheus_client import Counter, Histogram
from sqlalchemy import event
from sqlalchemy.orm import Session

READINGS_TOTAL = Counter(
    "relay_readings_total",
    "Sensor fields received by the telemetry ingestor",
    ["status"],  # stored, skipped
)

COMMAND_TRANSITIONS_TOTAL = Counter(
    "relay_command_transitions_total",
    "Actuator command lifecycle transitions",
    ["to"],  # pending, dispatched, acknowledged, expired, superseded
)

REQUEST_ERRORS_TOTAL = Counter(
    "relay_request_errors_total",
    "Error responses returned by the gateway",
    ["code"],
)

POLL_BATCH_SIZE = Histogram(
    "relay_poll_batch_size",
    "Commands returned per device poll",
    buckets=(0, 1, 2, 5, 10, 25),
)

_PENDING_KEY = "relay_pending_metrics"


def on_commit(db: Session, update: Callable[[], None]) -> None:
    """Registra un update de métrica que se aplica al commit de ``db``."""
    db.info.setdefault(_PENDING_KEY, []).append(update)


def count_on_commit(db: Session, counter, amount: float = 1) -> None:
    if amount:
        on_commit(db, partial(counter.inc, amount))


@event.listens_for(Session, "after_commit")
def _apply_pending_metrics(session: Session) -> None:
    for update in session.info.pop(_PENDING_KEY, []):
        update()


@event.listens_for(Session, "after_soft_rollback")
def _discard_pending_metrics(session: Session, previous_transaction) -> None:
    session.info.pop(_PENDING_KEY, None)
