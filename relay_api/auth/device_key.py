"""Autenticación de dispositivos por X-Device-Key.

Los ESP32 solo manejan un header fijo; la identidad del dispositivo
(device_id → cuenta) la resuelve el Device Registry y falla cerrado.
"""

from __future__ import annotations

from fastapi import Header

from common.config import get_settings

from .api_key import check_shared_key


def require_device_key(
    x_device_key: str | None = Header(default=None, alias="X-Device-Key"),
) -> None:
    """Dependency: endpoints que llama el firmware (push, poll, ack)."""
    check_shared_key(x_device_key, get_settings().device_api_key, key_name="DEVICE_API_KEY")
