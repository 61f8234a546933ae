from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


def _default_env_file() -> str:
    # .env junto al repo; las variables reales del entorno siempre ganan.
    repo_root = Path(__file__).resolve().parents[1]
    return str(repo_root / ".env")


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    database_url: str
    store_timeout_seconds: float
    db_pool_size: int

    command_ack_deadline_seconds: float
    command_sweep_interval_seconds: float
    command_sweep_enabled: bool
    command_log_mode: str
    default_pump_duration_minutes: int

    max_body_bytes: int

    registry_cache_ttl_seconds: int
    registry_cache_max_size: int

    rate_limit_device_per_min: int
    rate_limit_global_per_min: int
    rate_limit_enabled: bool

    device_api_key: str | None
    operator_api_key: str | None
    environment: str

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def get_settings() -> Settings:
    # Load env file (if present) but still allow overriding via real environment variables.
    env_file = os.getenv("RELAY_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    database_url = os.getenv("DATABASE_URL", "sqlite:///./relay.db")
    store_timeout_seconds = float(os.getenv("STORE_TIMEOUT_SECONDS", "5"))
    db_pool_size = int(os.getenv("DB_POOL_SIZE", "10"))

    # Ventana para que el dispositivo confirme un comando ya entregado.
    command_ack_deadline_seconds = float(os.getenv("COMMAND_ACK_DEADLINE_SECONDS", "600"))
    command_sweep_interval_seconds = float(os.getenv("COMMAND_SWEEP_INTERVAL_SECONDS", "30"))
    command_sweep_enabled = _env_flag("COMMAND_SWEEP_ENABLED", "1")

    # "enqueue": log optimista al emitir (comportamiento histórico)
    # "ack": log solo cuando el dispositivo confirma
    command_log_mode = os.getenv("COMMAND_LOG_MODE", "enqueue").strip().lower()
    if command_log_mode not in ("enqueue", "ack"):
        raise ValueError(f"COMMAND_LOG_MODE must be 'enqueue' or 'ack', got {command_log_mode!r}")

    default_pump_duration_minutes = int(os.getenv("DEFAULT_PUMP_DURATION_MINUTES", "5"))

    # Los ESP32 mandan cuerpos chicos; cualquier cosa mayor es un error o abuso.
    max_body_bytes = int(os.getenv("MAX_BODY_BYTES", "16384"))

    registry_cache_ttl_seconds = int(os.getenv("REGISTRY_CACHE_TTL_SECONDS", "300"))
    registry_cache_max_size = int(os.getenv("REGISTRY_CACHE_MAX_SIZE", "10000"))

    rate_limit_device_per_min = int(os.getenv("RATE_LIMIT_DEVICE_PER_MIN", "120"))
    rate_limit_global_per_min = int(os.getenv("RATE_LIMIT_GLOBAL_PER_MIN", "1000"))
    rate_limit_enabled = _env_flag("RATE_LIMIT_ENABLED", "1")

    environment = os.getenv("ENVIRONMENT", "development").strip().lower()

    return Settings(
        database_url=database_url,
        store_timeout_seconds=store_timeout_seconds,
        db_pool_size=db_pool_size,
        command_ack_deadline_seconds=command_ack_deadline_seconds,
        command_sweep_interval_seconds=command_sweep_interval_seconds,
        command_sweep_enabled=command_sweep_enabled,
        command_log_mode=command_log_mode,
        default_pump_duration_minutes=default_pump_duration_minutes,
        max_body_bytes=max_body_bytes,
        registry_cache_ttl_seconds=registry_cache_ttl_seconds,
        registry_cache_max_size=registry_cache_max_size,
        rate_limit_device_per_min=rate_limit_device_per_min,
        rate_limit_global_per_min=rate_limit_global_per_min,
        rate_limit_enabled=rate_limit_enabled,
        device_api_key=os.getenv("DEVICE_API_KEY") or None,
        operator_api_key=os.getenv("OPERATOR_API_KEY") or None,
        environment=environment,
    )
