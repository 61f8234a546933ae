from __future__ import annotations

from typing import Iterator, Optional
import logging

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from .config import Settings, get_settings


logger = logging.getLogger(__name__)

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def _timeout_ms(settings: Settings) -> int:
    return int(settings.store_timeout_seconds * 1000)


def build_engine(settings: Settings) -> Engine:
    """Crea el engine aplicando el timeout acotado de storage.

    - SQLite: busy timeout del driver (espera por el lock de escritura)
    - PostgreSQL: connect_timeout + statement_timeout por conexión
    - Todos: pool_timeout para no colgarse esperando una conexión libre
    """
    url = make_url(settings.database_url)
    timeout_s = settings.store_timeout_seconds

    if url.get_backend_name() == "sqlite":
        engine = create_engine(
            url,
            connect_args={"timeout": timeout_s, "check_same_thread": False},
            future=True,
        )

        @event.listens_for(engine, "connect")
        def _sqlite_pragmas(dbapi_conn, _record):  # pragma: no cover - trivial
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    connect_args = {}
    if url.get_backend_name() == "postgresql":
        connect_args = {
            "connect_timeout": max(1, int(timeout_s)),
            "options": f"-c statement_timeout={_timeout_ms(settings)}",
        }

    return create_engine(
        url,
        connect_args=connect_args,
        pool_pre_ping=True,
        pool_recycle=300,
        pool_size=settings.db_pool_size,
        pool_timeout=timeout_s,
        future=True,
    )


def get_engine() -> Engine:
    global _engine
    if _engine is not None:
        return _engine

    settings = get_settings()
    url = make_url(settings.database_url)

    # Log básico de parámetros de conexión (sin contraseña)
    logger.info(
        "[DB] Crear engine backend=%s host=%s db=%s timeout=%.1fs",
        url.get_backend_name(),
        url.host,
        url.database,
        settings.store_timeout_seconds,
    )

    _engine = build_engine(settings)

    # Test de conexión: ayuda a ver en logs si el servicio realmente llega a la BD
    try:
        with _engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        logger.info("[DB] Test de conexión OK")
    except Exception:
        logger.exception("[DB] Test de conexión FALLÓ")

    return _engine


def set_engine(engine: Optional[Engine]) -> None:
    """Reemplaza el engine global (tests y jobs con su propia conexión)."""
    global _engine, _session_factory
    _engine = engine
    _session_factory = None


def session_factory() -> sessionmaker:
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=get_engine(), autocommit=False, autoflush=False, future=True
        )
    return _session_factory


def get_db() -> Iterator[Session]:
    db = session_factory()()
    try:
        yield db
    finally:
        db.close()
