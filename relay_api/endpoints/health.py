"""Health, readiness y métricas."""

import logging

from fastapi import APIRouter, HTTPException, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy import text

from common.db import get_engine

router = APIRouter(tags=["health"])
logger = logging.getLogger(__name__)


@router.get("/health")
def health():
    """Liveness: ok mientras el proceso esté vivo."""
    return {"status": "ok"}


@router.get("/ready")
def ready():
    """Readiness: verifica conectividad con la BD."""
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return {"status": "ready"}
    except Exception:
        # No exponer detalles del error al cliente
        logger.exception("Readiness check failed")
        raise HTTPException(status_code=503, detail="not ready")


@router.get("/metrics")
def metrics():
    """Prometheus exposition format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
