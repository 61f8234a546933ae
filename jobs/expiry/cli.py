"""CLI entry point for the command expiry sweep."""

from __future__ import annotations

import argparse
import logging
import time

from common.db import session_factory
from relay_api.commands import run_expiry_sweep

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )

    p = argparse.ArgumentParser(description="Expire dispatched commands without ack")
    p.add_argument("--sleep-seconds", type=float, default=30.0)
    p.add_argument("--once", action="store_true", help="run a single sweep and exit")
    args = p.parse_args(argv)

    factory = session_factory()
    logger.info("Command expiry job started sleep=%.1fs once=%s", args.sleep_seconds, args.once)

    while True:
        try:
            expired = run_expiry_sweep(factory)
            logger.info("Barrido completado, expirados=%d", expired)
            if args.once:
                return
        except Exception as e:
            logger.error("Error en barrido: %s", e)
            if args.once:
                raise
            logger.info("Continuando con siguiente iteración...")
        time.sleep(args.sleep_seconds)
