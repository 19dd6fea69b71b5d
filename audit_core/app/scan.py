import logging
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from . import schemas
from .deps import get_db, to_http_error
from .models import ScanStatus
from .services import AuditError, InvalidScanError, ScanReconciler, ScanResult, extract_tokens

logger = logging.getLogger(__name__)

router = APIRouter(tags=["scan"])


def _serialize_results(results: List[ScanResult]) -> List[schemas.ScanResultOut]:
    return [
        schemas.ScanResultOut(
            token=r.token,
            type=r.type,
            status=r.status,
            audit_item_id=r.audit_item_id,
            message=r.message,
        )
        for r in results
    ]


@router.post("/audits/{audit_id}/scan", response_model=schemas.ScanResponse)
def scan_audit(audit_id: int, scan_in: schemas.ScanRequest, db: Session = Depends(get_db)):
    """
    Reconcile one scanner read against the audit.

    The text may hold several asset IDs / serials, or a label URL. Every
    token gets a result and a trail entry, asset IDs first.
    """
    tokens = extract_tokens(scan_in.text)
    reconciler = ScanReconciler(db, audit_id, current_bin=scan_in.current_bin)
    try:
        results = reconciler.reconcile(tokens.asset_ids, tokens.serials)
    except AuditError as e:
        raise to_http_error(e)

    return schemas.ScanResponse(
        audit_id=audit_id,
        tokens=schemas.ScanTokensOut(asset_ids=tokens.asset_ids, serials=tokens.serials),
        results=_serialize_results(results),
    )


def _legacy_tokens(scan_in: schemas.LegacyScanRequest):
    """Explicit assetId/serialTokens win over the raw text."""
    if scan_in.audit_id is None:
        raise InvalidScanError("Missing auditId")
    if scan_in.mode == "bin" and not (scan_in.bin_lock or "").strip():
        raise InvalidScanError("Bin mode requires a binLock")

    serials = [s.strip() for s in scan_in.serial_tokens if s and s.strip()]
    if scan_in.asset_id or serials:
        asset_ids = [scan_in.asset_id.strip()] if scan_in.asset_id else []
        serials = list(dict.fromkeys(serials))
    else:
        asset_ids, serials = extract_tokens(scan_in.raw)

    if not asset_ids and not serials:
        raise InvalidScanError("Scan did not contain an Asset ID or any serials")
    return asset_ids, serials


@router.post("/scan", response_model=schemas.LegacyScanResponse)
def legacy_scan(scan_in: schemas.LegacyScanRequest, db: Session = Depends(get_db)):
    """
    Older scanner entry point, kept for existing clients.

    Runs through the same reconciler as /audits/{id}/scan, with the bin lock
    as the current bin.
    """
    logger.debug("Legacy scan request: auditId=%s mode=%s", scan_in.audit_id, scan_in.mode)
    try:
        asset_ids, serials = _legacy_tokens(scan_in)
        reconciler = ScanReconciler(db, scan_in.audit_id, current_bin=scan_in.bin_lock)
        results = reconciler.reconcile(asset_ids, serials)
    except AuditError as e:
        raise to_http_error(e)

    matched = sum(1 for r in results if r.status != ScanStatus.NOT_FOUND)
    return schemas.LegacyScanResponse(
        message=f"Scan processed. Matched: {matched}, Not matched: {len(results) - matched}",
        results=_serialize_results(results),
    )
