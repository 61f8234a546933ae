"""Taxonomía de errores del relay.

Cada error conoce su código del vocabulario fijo que ve el dispositivo y
su status HTTP. El gateway nunca devuelve el texto de una excepción de
storage: solo ``code`` + ``message`` de esta tabla.
"""

from __future__ import annotations

import contextlib
import logging
from typing import Iterator

from sqlalchemy.exc import DBAPIError, OperationalError, TimeoutError as PoolTimeoutError

logger = logging.getLogger(__name__)


class RelayError(Exception):
    """Base de todos los errores de dominio del relay."""

    code = "INTERNAL_ERROR"
    http_status = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(RelayError):
    code = "VALIDATION_ERROR"
    http_status = 400
    default_message = "Malformed request"


class UnknownDevice(RelayError):
    code = "UNKNOWN_DEVICE"
    http_status = 404
    default_message = "Unknown device"

    def __init__(self, device_id: str):
        self.device_id = device_id
        super().__init__(f"Device {device_id} is not registered")


class UnknownBinding(RelayError):
    """Canal físico sin sensor/actuador asociado.

    Es una falla parcial: se registra en ``skipped`` y no llega al cliente
    como error.
    """

    code = "UNKNOWN_BINDING"
    http_status = 404
    default_message = "Unknown binding"

    def __init__(self, device_id: str, binding: str):
        self.device_id = device_id
        self.binding = binding
        super().__init__(f"Device {device_id} has no binding {binding}")


class UnknownActuator(RelayError):
    code = "UNKNOWN_ACTUATOR"
    http_status = 404
    default_message = "Unknown actuator"


class CommandNotFound(RelayError):
    code = "COMMAND_NOT_FOUND"
    http_status = 404
    default_message = "Command not found"

    def __init__(self, command_id: int):
        self.command_id = command_id
        super().__init__(f"Command {command_id} not found")


class PreconditionFailed(RelayError):
    code = "PRECONDITION_FAILED"
    http_status = 409
    default_message = "Command is not in the required state"


class TransientStoreError(RelayError):
    """Storage no disponible o timeout. El cliente reintenta su request."""

    code = "STORE_UNAVAILABLE"
    http_status = 503
    default_message = "Storage temporarily unavailable, retry later"


class PayloadTooLarge(RelayError):
    code = "PAYLOAD_TOO_LARGE"
    http_status = 413
    default_message = "Request body too large"


class RateLimited(RelayError):
    code = "RATE_LIMITED"
    http_status = 429
    default_message = "Rate limit exceeded"

    def __init__(self, message: str | None = None, retry_after_seconds: int = 60):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message)


@contextlib.contextmanager
def translate_store_errors(operation: str) -> Iterator[None]:
    """Convierte fallas de conexión/timeout de SQLAlchemy en TransientStoreError.

    Errores de programación (IntegrityError, ProgrammingError) se propagan
    tal cual y terminan como INTERNAL_ERROR. Nunca reintenta.
    """
    try:
        yield
    except (OperationalError, PoolTimeoutError) as e:
        logger.warning("STORE_TRANSIENT op=%s err=%s", operation, type(e).__name__)
        raise TransientStoreError() from e
    except DBAPIError as e:
        if e.connection_invalidated:
            logger.warning("STORE_CONNECTION_LOST op=%s", operation)
            raise TransientStoreError() from e
        raise
