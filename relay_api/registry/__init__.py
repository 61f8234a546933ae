"""Device Registry: device_id → bindings de sensores y actuadores."""

from .device_registry import (
    ActuatorBinding,
    DeviceBindings,
    DeviceRegistry,
    SensorBinding,
    clear_cache,
    get_cache_stats,
    resolve_actuator,
    resolve_sensor,
)

__all__ = [
    "ActuatorBinding",
    "DeviceBindings",
    "DeviceRegistry",
    "SensorBinding",
    "clear_cache",
    "get_cache_stats",
    "resolve_actuator",
    "resolve_sensor",
]
