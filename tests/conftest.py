"""Fixtures compartidas: SQLite temporal con un dispositivo aprovisionado."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import insert

from common.config import get_settings
from common.db import build_engine, session_factory, set_engine
from common.schema import actuators, devices, ensure_schema, sensors
from relay_api.rate_limiter import reset_rate_limiter
from relay_api.registry import clear_cache

DEVICE_ID = "esp32-riego-01"
ACCOUNT_ID = "acct-7f3a"


@pytest.fixture
def relay_env(tmp_path, monkeypatch):
    """Entorno aislado: sin .env, sin keys, sin barrido en background."""
    monkeypatch.setenv("RELAY_ENV_FILE", str(tmp_path / "missing.env"))
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'relay.db'}")
    monkeypatch.setenv("ENVIRONMENT", "development")
    monkeypatch.setenv("COMMAND_SWEEP_ENABLED", "0")
    for name in (
        "DEVICE_API_KEY",
        "OPERATOR_API_KEY",
        "COMMAND_LOG_MODE",
        "COMMAND_ACK_DEADLINE_SECONDS",
        "MAX_BODY_BYTES",
        "RATE_LIMIT_ENABLED",
        "RATE_LIMIT_DEVICE_PER_MIN",
        "RATE_LIMIT_GLOBAL_PER_MIN",
    ):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def engine(relay_env):
    eng = build_engine(get_settings())
    ensure_schema(eng)
    set_engine(eng)
    clear_cache()
    reset_rate_limiter()
    yield eng
    set_engine(None)
    clear_cache()
    reset_rate_limiter()
    eng.dispose()


@pytest.fixture
def seeded(engine):
    """Un ESP32 con dos sensores de humedad, caudalímetro y dos bombas."""
    ids = {"device_id": DEVICE_ID, "account_id": ACCOUNT_ID}
    with engine.begin() as conn:
        conn.execute(insert(devices).values(device_id=DEVICE_ID, account_id=ACCOUNT_ID, name="Huerta"))
        # Registrado pero sin cuenta dueña: debe fallar cerrado
        conn.execute(insert(devices).values(device_id="esp32-huerfano", account_id=None))

        for binding, kind in (
            ("soil_moisture_1", "soil_moisture"),
            ("soil_moisture_2", "soil_moisture"),
            ("water_volume", "volume"),
        ):
            result = conn.execute(
                insert(sensors).values(
                    device_id=DEVICE_ID, binding=binding, kind=kind, account_id=ACCOUNT_ID
                )
            )
            ids[binding] = int(result.inserted_primary_key[0])

        for binding in ("pump_1", "pump_2"):
            result = conn.execute(
                insert(actuators).values(
                    device_id=DEVICE_ID,
                    binding=binding,
                    kind="water_pump",
                    status="unknown",
                    account_id=ACCOUNT_ID,
                )
            )
            ids[binding] = int(result.inserted_primary_key[0])
    return ids


@pytest.fixture
def db(seeded):
    session = session_factory()()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def client(seeded):
    from relay_api.main import create_app

    with TestClient(create_app()) as c:
        yield c
