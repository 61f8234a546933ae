"""CLI entry point for the irrigation schedule runner."""

from __future__ import annotations

import argparse
import logging
import time

from common.db import session_factory

from .config import ScheduleRunnerConfig
from .runner import run_once

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )

    p = argparse.ArgumentParser(description="Irrigation schedule runner (scheduled pump commands)")
    p.add_argument("--sleep-seconds", type=float, default=60.0)
    p.add_argument("--once", action="store_true", help="run a single iteration and exit")
    args = p.parse_args(argv)

    cfg = ScheduleRunnerConfig(sleep_seconds=args.sleep_seconds, once=bool(args.once))
    factory = session_factory()
    logger.info("Schedule runner started sleep=%.1fs", cfg.sleep_seconds)

    while True:
        try:
            run_once(factory)
            if cfg.once:
                return
            logger.info("Iteración completada, esperando %.1fs...", cfg.sleep_seconds)
            time.sleep(cfg.sleep_seconds)
        except Exception as e:
            logger.error("Error en iteración: %s", e)
            if cfg.once:
                raise
            logger.info("Continuando con siguiente iteración...")
            time.sleep(cfg.sleep_seconds)
