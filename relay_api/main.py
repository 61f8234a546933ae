from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from common.config import get_settings
from common.db import get_engine, session_factory
from common.schema import ensure_schema

from .body_limit import BodySizeLimitMiddleware
from .commands import CommandExpirySweeper
from .endpoints import (
    commands_router,
    health_router,
    pump_command_router,
    sensor_data_router,
)
from .error_handlers import install_error_handlers

logger = logging.getLogger(__name__)

# Headers que envía el dashboard web (cliente supabase-js)
_CORS_ALLOW_HEADERS = [
    "authorization",
    "x-client-info",
    "apikey",
    "content-type",
    "x-api-key",
    "x-account-id",
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    ensure_schema(get_engine())

    sweeper = None
    if settings.command_sweep_enabled:
        sweeper = CommandExpirySweeper(
            session_factory(), interval_seconds=settings.command_sweep_interval_seconds
        )
        sweeper.start()
    app.state.expiry_sweeper = sweeper

    logger.info(
        "Relay gateway started env=%s ack_deadline=%.0fs log_mode=%s max_body=%d",
        settings.environment,
        settings.command_ack_deadline_seconds,
        settings.command_log_mode,
        settings.max_body_bytes,
    )
    try:
        yield
    finally:
        if sweeper is not None:
            sweeper.stop()


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title="IoT Telemetry & Command Relay", version="0.1.0", lifespan=lifespan)

    install_error_handlers(app)

    app.add_middleware(BodySizeLimitMiddleware, max_body_bytes=settings.max_body_bytes)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=_CORS_ALLOW_HEADERS,
    )

    app.include_router(health_router)
    app.include_router(sensor_data_router)
    app.include_router(pump_command_router)
    app.include_router(commands_router)

    # Rutas que usa el firmware ya desplegado (/esp32-data/...)
    for router in (sensor_data_router, pump_command_router, commands_router):
        app.include_router(router, prefix="/esp32-data", include_in_schema=False)
    return app


app = create_app()
