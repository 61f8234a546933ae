"""Autenticación por API Key para endpoints de operador (dashboard).

SECURITY: En producción, OPERATOR_API_KEY debe estar configurado.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import Header, HTTPException

from common.config import get_settings


logger = logging.getLogger(__name__)


def check_shared_key(provided: str | None, expected: str | None, *, key_name: str) -> None:
    """Compara una key compartida; sin key configurada = modo desarrollo.

    Raises:
        HTTPException(401) si falta o no coincide
        HTTPException(500) si falta la key en producción
    """
    if not expected:
        if get_settings().is_production:
            logger.error("CRITICAL: %s not configured in production!", key_name)
            raise HTTPException(
                status_code=500,
                detail="Server misconfiguration: API key not set",
            )
        logger.debug("%s not set - allowing unauthenticated access (DEV ONLY)", key_name)
        return

    if not provided:
        raise HTTPException(status_code=401, detail="API key required")

    if not hmac.compare_digest(provided.encode(), expected.encode()):
        logger.warning("Invalid %s attempt from request", key_name)
        raise HTTPException(status_code=401, detail="Invalid API key")


def require_operator_key(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> None:
    """Dependency: operador/dashboard emitiendo o consultando comandos."""
    check_shared_key(x_api_key, get_settings().operator_api_key, key_name="OPERATOR_API_KEY")
