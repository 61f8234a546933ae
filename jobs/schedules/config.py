"""Schedule runner configuration."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ScheduleRunnerConfig:
    """Configuración del runner de riego programado."""
    sleep_seconds: float
    once: bool
