"""Esquema relacional del relay de telemetría y comandos.

Definido con SQLAlchemy Core para que el mismo código corra sobre
PostgreSQL (producción) y SQLite (desarrollo y tests).

Tablas de solo lectura para este servicio (las escribe el
aprovisionamiento): devices, sensors, irrigation_schedules (salvo
next_run/last_run). El resto lo mantiene el relay.
"""

from __future__ import annotations

import logging

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    text,
    true,
)
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

metadata = MetaData()


devices = Table(
    "devices",
    metadata,
    Column("device_id", String(64), primary_key=True),
    Column("account_id", String(64), nullable=True),
    Column("name", String(128), nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=True),
    Column("last_seen_at", DateTime(timezone=True), nullable=True),
)


sensors = Table(
    "sensors",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("device_id", String(64), ForeignKey("devices.device_id"), nullable=False),
    Column("binding", String(64), nullable=False),
    Column("kind", String(32), nullable=False),
    Column("unit", String(16), nullable=True),
    Column("account_id", String(64), nullable=True),
    Column("name", String(128), nullable=True),
    UniqueConstraint("device_id", "binding", name="uq_sensors_device_binding"),
)


sensor_readings = Table(
    "sensor_readings",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("sensor_id", Integer, ForeignKey("sensors.id"), nullable=False),
    Column("value", Float, nullable=False),
    Column("unit", String(16), nullable=True),
    Column("timestamp", DateTime(timezone=True), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Index("ix_sensor_readings_sensor_ts", "sensor_id", "timestamp", "id"),
)


actuators = Table(
    "actuators",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("device_id", String(64), ForeignKey("devices.device_id"), nullable=False),
    Column("binding", String(64), nullable=False),
    Column("kind", String(32), nullable=False, server_default="water_pump"),
    Column("status", String(16), nullable=False, server_default="unknown"),
    Column("last_activated", DateTime(timezone=True), nullable=True),
    Column("account_id", String(64), nullable=True),
    Column("name", String(128), nullable=True),
    Column("updated_at", DateTime(timezone=True), nullable=True),
    UniqueConstraint("device_id", "binding", name="uq_actuators_device_binding"),
)


actuator_commands = Table(
    "actuator_commands",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("actuator_id", Integer, ForeignKey("actuators.id"), nullable=False),
    Column("device_id", String(64), nullable=False),
    Column("action", String(8), nullable=False),
    Column("duration_minutes", Integer, nullable=True),
    Column("state", String(16), nullable=False),
    Column("triggered_by", String(16), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("dispatched_at", DateTime(timezone=True), nullable=True),
    Column("acknowledged_at", DateTime(timezone=True), nullable=True),
    Column("expired_at", DateTime(timezone=True), nullable=True),
    Column("superseded_at", DateTime(timezone=True), nullable=True),
    Column("superseded_by", Integer, nullable=True),
    Column("dispatch_token", String(36), nullable=True),
    Index("ix_actuator_commands_device_state", "device_id", "state"),
    Index("ix_actuator_commands_state_dispatched", "state", "dispatched_at"),
    Index("ix_actuator_commands_dispatch_token", "dispatch_token"),
    # A lo sumo un comando pending por actuador.
    Index(
        "uq_actuator_commands_one_pending",
        "actuator_id",
        unique=True,
        sqlite_where=text("state = 'pending'"),
        postgresql_where=text("state = 'pending'"),
    ),
)


actuator_logs = Table(
    "actuator_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("actuator_id", Integer, ForeignKey("actuators.id"), nullable=False),
    Column("command_id", Integer, nullable=True),
    Column("action", String(8), nullable=False),
    Column("duration_minutes", Integer, nullable=True),
    Column("volume_ml", Float, nullable=True),
    Column("triggered_by", String(16), nullable=True),
    Column("timestamp", DateTime(timezone=True), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Index("ix_actuator_logs_actuator_ts", "actuator_id", "timestamp"),
)


irrigation_schedules = Table(
    "irrigation_schedules",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("actuator_id", Integer, ForeignKey("actuators.id"), nullable=False),
    Column("zone_name", String(128), nullable=True),
    Column("duration_minutes", Integer, nullable=False, server_default="30"),
    Column("frequency_days", Integer, nullable=False, server_default="1"),
    Column("is_active", Boolean, nullable=False, server_default=true()),
    Column("next_run", DateTime(timezone=True), nullable=True),
    Column("last_run", DateTime(timezone=True), nullable=True),
    Column("account_id", String(64), nullable=True),
)


def ensure_schema(engine: Engine) -> None:
    """Crea las tablas que falten. Idempotente."""
    logger.info("[DB] Ensuring relay schema exists")
    metadata.create_all(engine)
