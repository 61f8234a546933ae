"""Rate limiting del gateway de dispositivos.

Dos alcances, ambos por minuto:
- device: push + poll + ack de un mismo device_id
- ip: todo lo que llega desde una IP de origen (varios ESP32 detrás de un NAT)

Un ESP32 con el loop de poll roto no debe poder saturar el storage.

Configuración via env vars (ver common.config):
- RATE_LIMIT_DEVICE_PER_MIN (default: 120)
- RATE_LIMIT_GLOBAL_PER_MIN (default: 1000)
- RATE_LIMIT_ENABLED (default: 1)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Dict, Optional, Tuple

from fastapi import Request

from common.config import get_settings

from .errors import RateLimited

logger = logging.getLogger(__name__)

_WINDOW_SECONDS = 60


@dataclass
class RateLimitConfig:
    device_per_min: int = 120
    global_per_min: int = 1000
    enabled: bool = True

    @classmethod
    def from_settings(cls) -> "RateLimitConfig":
        settings = get_settings()
        return cls(
            device_per_min=settings.rate_limit_device_per_min,
            global_per_min=settings.rate_limit_global_per_min,
            enabled=settings.rate_limit_enabled,
        )


@dataclass
class _Window:
    start: float
    count: int = 0
    previous: int = 0


class SlidingWindowCounter:
    """Ventana deslizante aproximada (ventana actual + anterior ponderada).

    Memoria O(keys): no guarda timestamps individuales.
    """

    def __init__(self, window_seconds: int = _WINDOW_SECONDS):
        self._window_seconds = window_seconds
        self._lock = Lock()
        self._windows: Dict[str, _Window] = {}

    def hit(self, key: str, limit: int, now: Optional[float] = None) -> Tuple[bool, int]:
        """Registra un request y devuelve (allowed, conteo_aproximado)."""
        now = time.time() if now is None else now
        start = now - (now % self._window_seconds)

        with self._lock:
            window = self._windows.get(key)
            if window is None:
                window = self._windows[key] = _Window(start=start)
            elif window.start < start:
                contiguous = window.start == start - self._window_seconds
                window.previous = window.count if contiguous else 0
                window.count = 0
                window.start = start

            window.count += 1
            carried = window.previous * (1 - (now - start) / self._window_seconds)
            approx = int(carried) + window.count

        if approx > limit:
            logger.warning("RATE_LIMIT_EXCEEDED key=%s approx_count=%d limit=%d", key, approx, limit)
            return False, approx
        return True, approx

    def prune(self, max_age_seconds: int = 300, now: Optional[float] = None) -> int:
        cutoff = (time.time() if now is None else now) - max_age_seconds
        with self._lock:
            stale = [k for k, w in self._windows.items() if w.start < cutoff]
            for k in stale:
                del self._windows[k]
        return len(stale)


class DeviceRateLimiter:
    def __init__(self, config: Optional[RateLimitConfig] = None):
        self.config = config or RateLimitConfig.from_settings()
        self._devices = SlidingWindowCounter()
        self._ips = SlidingWindowCounter()
        self._next_prune = time.time() + _WINDOW_SECONDS

    def check_all(self, *, device_id: Optional[str] = None, ip: Optional[str] = None) -> None:
        """Raises RateLimited si se excede cualquiera de los dos límites."""
        if not self.config.enabled:
            return

        now = time.time()
        if now >= self._next_prune:
            removed = self._devices.prune(now=now) + self._ips.prune(now=now)
            if removed:
                logger.debug("RATE_LIMIT_CLEANUP removed=%d entries", removed)
            self._next_prune = now + _WINDOW_SECONDS

        # IP primero (más amplio)
        if ip and not self._ips.hit(f"ip:{ip}", self.config.global_per_min, now)[0]:
            raise RateLimited("Rate limit exceeded for client address", _WINDOW_SECONDS)
        if device_id and not self._devices.hit(f"device:{device_id}", self.config.device_per_min, now)[0]:
            raise RateLimited(
                f"Rate limit exceeded for device. Max {self.config.device_per_min}/min.",
                _WINDOW_SECONDS,
            )


# Singleton global para la aplicación
_rate_limiter: Optional[DeviceRateLimiter] = None


def get_rate_limiter() -> DeviceRateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = DeviceRateLimiter()
        logger.info(
            "RATE_LIMITER_INIT enabled=%s device=%d/min ip=%d/min",
            _rate_limiter.config.enabled,
            _rate_limiter.config.device_per_min,
            _rate_limiter.config.global_per_min,
        )
    return _rate_limiter


def reset_rate_limiter() -> None:
    global _rate_limiter
    _rate_limiter = None


def get_client_ip(request: Request) -> str:
    """IP de origen; el primer salto de X-Forwarded-For si hay proxy."""
    for header in ("X-Forwarded-For", "X-Real-IP"):
        value = request.headers.get(header)
        if value:
            return value.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
