"""Módulo de autenticación para endpoints del gateway.

- Device Key: firmware (sensor-data, poll, ack)
- API Key: operador (pump-command, consultas)
"""

from .api_key import require_operator_key
from .device_key import require_device_key

__all__ = [
    "require_device_key",
    "require_operator_key",
]
