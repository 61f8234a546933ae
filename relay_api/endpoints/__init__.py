"""Módulo de endpoints HTTP.

Contiene todos los endpoints del gateway organizados por función.
"""

from .health import router as health_router
from .sensor_data import router as sensor_data_router
from .pump_command import router as pump_command_router
from .commands import router as commands_router

__all__ = [
    "health_router",
    "sensor_data_router",
    "pump_command_router",
    "commands_router",
]
