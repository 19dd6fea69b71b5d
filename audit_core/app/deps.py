from typing import Generator

from fastapi import HTTPException

from .db import SessionLocal
from .services import (
    AuditError, AuditNotFoundError, AuditItemNotFoundError,
)


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def to_http_error(exc: AuditError) -> HTTPException:
    """Map a service-layer error onto the HTTP status the API reports."""
    if isinstance(exc, (AuditNotFoundError, AuditItemNotFoundError)):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))
