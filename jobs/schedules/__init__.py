"""Scheduled irrigation package: emite comandos desde irrigation_schedules.

Modules:
- config: ScheduleRunnerConfig dataclass
- runner: run_once / next_run_after
- cli: CLI entry point (main)
"""

from .config import ScheduleRunnerConfig
from .runner import next_run_after, run_once
from .cli import main

__all__ = ["ScheduleRunnerConfig", "next_run_after", "run_once", "main"]
