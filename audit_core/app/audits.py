import logging
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Form, HTTPException, Query, Response
from fastapi.responses import RedirectResponse
from sqlalchemy import case, func
from sqlalchemy.orm import Session

from . import models, schemas
from .deps import get_db, to_http_error
from .services import AuditError, get_audit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/audits", tags=["audits"])

TRAIL_LIMIT = 500

TEXT_FILTERS = (
    "item_code", "description", "pref_vendor", "expected_bin",
    "serials_raw", "asset_id", "notes",
)


@router.post("", status_code=303)
def create_audit(name: str = Form(""), notes: Optional[str] = Form(None), db: Session = Depends(get_db)):
    """Create an audit from the "new audit" form and redirect to its page."""
    name = (name or "").strip()
    if not name:
        raise HTTPException(status_code=400, detail="Name is required")
    notes = (notes or "").strip() or None

    audit = models.Audit(name=name, notes=notes)
    db.add(audit)
    db.commit()
    db.refresh(audit)
    logger.info("Created audit %s (%s)", audit.id, audit.name)
    # 303 = redirect after POST
    return RedirectResponse(url=f"/audits/{audit.id}", status_code=303)


@router.delete("", status_code=204)
def delete_audit(id: Optional[int] = Query(None), db: Session = Depends(get_db)):
    if id is None:
        raise HTTPException(status_code=400, detail="Missing id")
    try:
        audit = get_audit(db, id)
    except AuditError as e:
        raise to_http_error(e)
    db.delete(audit)
    db.commit()
    logger.info("Deleted audit %s", id)
    return Response(status_code=204)


@router.get("", response_model=List[schemas.AuditOut])
def list_audits(db: Session = Depends(get_db)):
    """All audits, newest first, with their row counts."""
    rows = db.query(
        models.Audit, func.count(models.AuditItem.id)
    ).outerjoin(
        models.AuditItem, models.AuditItem.audit_id == models.Audit.id
    ).group_by(
        models.Audit.id
    ).order_by(
        models.Audit.created_at.desc(), models.Audit.id.desc()
    ).all()

    return [
        schemas.AuditOut(
            id=audit.id, name=audit.name, notes=audit.notes,
            created_at=audit.created_at, item_count=count,
        )
        for audit, count in rows
    ]


@router.get("/{audit_id}", response_model=schemas.AuditDetailOut)
def get_audit_detail(audit_id: int, db: Session = Depends(get_db)):
    try:
        audit = get_audit(db, audit_id)
    except AuditError as e:
        raise to_http_error(e)

    total, found, review = db.query(
        func.count(models.AuditItem.id),
        func.coalesce(func.sum(case((models.AuditItem.found.is_(True), 1), else_=0)), 0),
        func.coalesce(func.sum(case((models.AuditItem.review_flag.is_(True), 1), else_=0)), 0),
    ).filter(models.AuditItem.audit_id == audit_id).one()

    return schemas.AuditDetailOut(
        id=audit.id, name=audit.name, notes=audit.notes, created_at=audit.created_at,
        item_count=total, found_count=found, review_count=review,
    )


@router.get("/{audit_id}/items", response_model=schemas.AuditItemListOut)
def list_audit_items(
    audit_id: int,
    item_code: Optional[str] = Query(None),
    description: Optional[str] = Query(None),
    pref_vendor: Optional[str] = Query(None),
    expected_bin: Optional[str] = Query(None),
    serials_raw: Optional[str] = Query(None),
    asset_id: Optional[str] = Query(None),
    notes: Optional[str] = Query(None),
    found: Literal["all", "found", "missing", "blank"] = Query("all"),
    review: Literal["all", "review", "blank"] = Query("all"),
    on_hand_min: Optional[float] = Query(None),
    on_hand_max: Optional[float] = Query(None),
    physical_count_min: Optional[float] = Query(None),
    physical_count_max: Optional[float] = Query(None),
    count_variance_min: Optional[float] = Query(None),
    count_variance_max: Optional[float] = Query(None),
    db: Session = Depends(get_db),
):
    """
    Audit rows in creation order. Filters mirror the grid: text filters are
    case-insensitive "contains"; a numeric bound excludes rows where that
    value is empty.
    """
    try:
        get_audit(db, audit_id)
    except AuditError as e:
        raise to_http_error(e)

    query = db.query(models.AuditItem).filter(models.AuditItem.audit_id == audit_id)

    text_values = {
        "item_code": item_code, "description": description, "pref_vendor": pref_vendor,
        "expected_bin": expected_bin, "serials_raw": serials_raw, "asset_id": asset_id,
        "notes": notes,
    }
    for field in TEXT_FILTERS:
        value = text_values[field]
        if value and value.strip():
            query = query.filter(getattr(models.AuditItem, field).ilike(f"%{value.strip()}%"))

    for column, low, high in (
        (models.AuditItem.on_hand, on_hand_min, on_hand_max),
        (models.AuditItem.physical_count, physical_count_min, physical_count_max),
        (models.AuditItem.count_variance, count_variance_min, count_variance_max),
    ):
        if low is None and high is None:
            continue
        query = query.filter(column.is_not(None))
        if low is not None:
            query = query.filter(column >= low)
        if high is not None:
            query = query.filter(column <= high)

    if found == "found":
        query = query.filter(models.AuditItem.found_status == models.FoundStatus.FOUND)
    elif found == "missing":
        query = query.filter(models.AuditItem.found_status == models.FoundStatus.MISSING)
    elif found == "blank":
        query = query.filter(models.AuditItem.found_status.is_(None))

    if review == "review":
        query = query.filter(models.AuditItem.review_flag.is_(True))
    elif review == "blank":
        query = query.filter(models.AuditItem.review_flag.is_(False))

    items = query.order_by(models.AuditItem.created_at.asc(), models.AuditItem.id.asc()).all()
    return schemas.AuditItemListOut(items=[schemas.AuditItemOut.from_orm(i) for i in items])


@router.get("/{audit_id}/events", response_model=List[schemas.ScanEventOut])
def list_scan_events(
    audit_id: int,
    limit: int = Query(TRAIL_LIMIT, ge=1, le=TRAIL_LIMIT),
    db: Session = Depends(get_db),
):
    """Scan trail, most recent first."""
    try:
        get_audit(db, audit_id)
    except AuditError as e:
        raise to_http_error(e)

    rows = db.query(
        models.ScanEvent, models.AuditItem.item_code, models.AuditItem.asset_id
    ).outerjoin(
        models.AuditItem, models.ScanEvent.audit_item_id == models.AuditItem.id
    ).filter(
        models.ScanEvent.audit_id == audit_id
    ).order_by(
        models.ScanEvent.created_at.desc(), models.ScanEvent.id.desc()
    ).limit(limit).all()

    return [
        schemas.ScanEventOut(
            id=event.id,
            audit_item_id=event.audit_item_id,
            token=event.token,
            type=event.type,
            status=event.status,
            current_bin=event.current_bin,
            expected_bin=event.expected_bin,
            found_bin=event.found_bin,
            message=event.message,
            created_at=event.created_at,
            item_code=item_code,
            item_asset_id=item_asset_id,
        )
        for event, item_code, item_asset_id in rows
    ]
