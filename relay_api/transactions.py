from __future__ import annotations

import contextlib
from typing import Iterator

from sqlalchemy.orm import Session

from .errors import translate_store_errors


@contextlib.contextmanager
def unit_of_work(db: Session, operation: str) -> Iterator[Session]:
    """Commit al salir sin error, rollback ante cualquier excepción.

    Un request = una transacción: si algo falla antes del commit no queda
    ninguna escritura parcial.
    """
    try:
        yield db
        with translate_store_errors(f"{operation}_commit"):
            db.commit()
    except Exception:
        db.rollback()
        raise
