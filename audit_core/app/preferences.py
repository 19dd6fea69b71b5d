import json
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from . import models, schemas
from .deps import get_db, to_http_error
from .services import AuditError, get_audit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/audits", tags=["preferences"])


def load_preferences(db: Session, audit_id: int) -> schemas.GridPreferences:
    """Stored grid settings overlaid on the defaults."""
    row = db.query(models.GridPreference).filter(models.GridPreference.audit_id == audit_id).first()
    prefs = schemas.GridPreferences()
    if row is None:
        return prefs

    try:
        stored = json.loads(row.value)
    except ValueError:
        logger.warning("Discarding unreadable grid preferences for audit %s", audit_id)
        return prefs

    columns = prefs.columns.dict()
    columns.update({
        k: bool(v) for k, v in (stored.get("columns") or {}).items() if k in columns
    })
    return schemas.GridPreferences(
        columns=schemas.GridColumns(**columns),
        bin_lock=stored.get("bin_lock"),
    )


@router.get("/{audit_id}/preferences", response_model=schemas.GridPreferences)
def get_preferences(audit_id: int, db: Session = Depends(get_db)):
    try:
        get_audit(db, audit_id)
    except AuditError as e:
        raise to_http_error(e)
    return load_preferences(db, audit_id)


@router.put("/{audit_id}/preferences", response_model=schemas.GridPreferences)
def save_preferences(audit_id: int, prefs_in: schemas.GridPreferencesUpdate, db: Session = Depends(get_db)):
    """
    Merge the sent settings into the stored ones. Columns not mentioned keep
    their current visibility; ``bin_lock`` is replaced when sent (blank clears it).
    """
    try:
        get_audit(db, audit_id)
    except AuditError as e:
        raise to_http_error(e)

    prefs = load_preferences(db, audit_id)
    changes = prefs_in.dict(exclude_unset=True)

    columns = prefs.columns.dict()
    if changes.get("columns"):
        columns.update({k: v for k, v in changes["columns"].items() if v is not None})
    bin_lock = changes["bin_lock"] if "bin_lock" in changes else prefs.bin_lock

    merged = schemas.GridPreferences(columns=schemas.GridColumns(**columns), bin_lock=bin_lock)

    row = db.query(models.GridPreference).filter(models.GridPreference.audit_id == audit_id).first()
    if row is None:
        row = models.GridPreference(audit_id=audit_id, value="{}")
        db.add(row)
    row.value = json.dumps(merged.dict())
    db.commit()

    return merged
