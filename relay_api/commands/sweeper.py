"""Barrido periódico de comandos dispatched sin ack.

Corre en su propio thread con su propia sesión. Es seguro en paralelo
con polls y acks: el UPDATE de expire solo toca filas que siguen en
dispatched, así que si un ack commitea primero el barrido no las ve.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from sqlalchemy.orm import Session

from common.clock import utc_now
from common.config import get_settings

from ..errors import TransientStoreError
from .queue import CommandQueue

logger = logging.getLogger(__name__)


def run_expiry_sweep(session_factory: Callable[[], Session]) -> int:
    """Una pasada completa en su propia transacción. Devuelve expirados."""
    db = session_factory()
    try:
        expired = CommandQueue(db).expire(utc_now())
        db.commit()
        return expired
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


class CommandExpirySweeper:
    """Thread de barrido con intervalo fijo."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        interval_seconds: Optional[float] = None,
    ):
        self._session_factory = session_factory
        self._interval = (
            interval_seconds
            if interval_seconds is not None
            else get_settings().command_sweep_interval_seconds
        )
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        # Métricas
        self._total_runs = 0
        self._total_expired = 0
        self._total_errors = 0

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._sweep_loop, name="command-expiry-sweeper", daemon=True
        )
        self._thread.start()
        logger.info("CommandExpirySweeper started interval=%.1fs", self._interval)

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None
        logger.info(
            "CommandExpirySweeper stopped. Stats: runs=%d expired=%d errors=%d",
            self._total_runs, self._total_expired, self._total_errors,
        )

    def run_once(self) -> int:
        self._total_runs += 1
        try:
            expired = run_expiry_sweep(self._session_factory)
        except TransientStoreError:
            # Storage caído: se intenta en el próximo tick, no antes.
            self._total_errors += 1
            logger.warning("CommandExpirySweeper store unavailable, skipping tick")
            return 0
        self._total_expired += expired
        return expired

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                self.run_once()
            except Exception:
                self._total_errors += 1
                logger.exception("CommandExpirySweeper sweep failed")

    def get_stats(self) -> dict:
        return {
            "running": self._thread is not None and self._thread.is_alive(),
            "interval_seconds": self._interval,
            "total_runs": self._total_runs,
            "total_expired": self._total_expired,
            "total_errors": self._total_errors,
        }
