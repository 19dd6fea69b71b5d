import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from . import models, schemas
from .deps import get_db, to_http_error
from .services import (
    AuditError, apply_item_update, get_audit, get_item,
    next_found_status, set_found_status,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["audit items"])


@router.patch("/audit-items/{item_id}", response_model=schemas.ItemSavedOut)
def update_audit_item(item_id: int, item_in: schemas.AuditItemUpdate, db: Session = Depends(get_db)):
    """
    Save one grid row. Count variance, found and review fields are derived
    server-side from what was sent.
    """
    try:
        item = get_item(db, item_id)
    except AuditError as e:
        raise to_http_error(e)

    try:
        apply_item_update(item, item_in.dict(exclude_unset=True))
        db.commit()
    except Exception:
        db.rollback()
        raise
    return schemas.ItemSavedOut(id=item.id)


@router.patch("/audits/{audit_id}/items", response_model=schemas.ItemsSavedOut)
def update_audit_items(audit_id: int, batch: schemas.AuditItemBatchUpdate, db: Session = Depends(get_db)):
    """Save several grid rows at once; either every row is saved or none is."""
    try:
        get_audit(db, audit_id)
    except AuditError as e:
        raise to_http_error(e)

    ids = [row.id for row in batch.items]
    items = {
        i.id: i for i in db.query(models.AuditItem).filter(
            models.AuditItem.audit_id == audit_id,
            models.AuditItem.id.in_(ids),
        ).all()
    }
    missing = [i for i in ids if i not in items]
    if missing:
        raise HTTPException(
            status_code=404,
            detail=f"Audit items not found in this audit: {', '.join(str(i) for i in missing)}",
        )

    now = datetime.utcnow()
    try:
        for row in batch.items:
            changes = row.dict(exclude_unset=True)
            changes.pop("id", None)
            apply_item_update(items[row.id], changes, now=now)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Saved %d row(s) on audit %s", len(ids), audit_id)
    return schemas.ItemsSavedOut(ids=ids)


@router.post("/audit-items/{item_id}/toggle-found", response_model=schemas.AuditItemOut)
def toggle_found(item_id: int, db: Session = Depends(get_db)):
    """Advance the manual found status: unset -> FOUND -> MISSING -> unset."""
    try:
        item = get_item(db, item_id)
    except AuditError as e:
        raise to_http_error(e)

    set_found_status(item, next_found_status(item.found_status), item.found_bin, datetime.utcnow())
    db.commit()
    db.refresh(item)
    return item
