"""
Scan Reconciliation Service
===========================
Resolves scanned asset IDs and serial numbers against the rows of one audit:

- marks rows (and individual serials) found
- flags rows found in a bin other than the expected one for review
- writes one ScanEvent per token, matched or not

Each token runs in its own transaction: the row lock, the row update and
the trail entry commit together. A failure rolls back the current token
and propagates; tokens already processed stay committed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from ..models import AuditItem, ItemSerial, ScanEvent, FoundStatus, ScanType, ScanStatus
from .item_service import get_audit, to_string_or_none

logger = logging.getLogger(__name__)

BLANK_BIN = "(blank)"

MSG_ASSET_NOT_FOUND = "No row with this Asset ID in this audit."
MSG_SERIAL_NOT_FOUND = "No row with this Serial in this audit."
MSG_FOUND = "Found."
MSG_FOUND_WRONG_BIN = "Found (wrong bin → flagged review + note added)."
MSG_SERIAL_WAITING = "Serial matched; waiting for other serials in the row."
MSG_SERIAL_COMPLETE = "Serial matched; all serials found (row marked found)."
MSG_SERIAL_COMPLETE_WRONG_BIN = "Serial matched; all serials found (wrong bin → flagged review + note added)."


@dataclass
class ScanResult:
    token: str
    type: ScanType
    status: ScanStatus
    audit_item_id: Optional[int] = None
    message: Optional[str] = None


# =============================================================================
# BIN MISMATCH HELPERS
# =============================================================================

def is_bin_mismatch(current_bin: Optional[str], expected_bin: Optional[str]) -> bool:
    """Only a declared bin that differs from a known expected bin counts."""
    return bool(current_bin) and bool(expected_bin) and current_bin != expected_bin


def build_bin_note(expected_bin: Optional[str], found_bin: str) -> str:
    return f"Bin mismatch: expected {expected_bin or BLANK_BIN}; found {found_bin}"


def build_review_reason(expected_bin: Optional[str], found_bin: str) -> str:
    return f"Expected bin: {expected_bin or BLANK_BIN} | Found bin: {found_bin}"


def append_note(existing: Optional[str], note: str) -> str:
    """Append on a new line unless the same note text is already there."""
    if not existing or not existing.strip():
        return note
    if note in existing:
        return existing
    return f"{existing}\n{note}"


def mark_item_found(item: AuditItem, current_bin: Optional[str], now: datetime) -> bool:
    """
    Scan-driven UNSET/MISSING -> FOUND transition.

    Returns True when the row was found in the wrong bin and has been
    flagged for review.
    """
    mismatch = is_bin_mismatch(current_bin, item.expected_bin)

    item.found = True
    item.found_status = FoundStatus.FOUND
    item.found_at = now
    item.found_bin = current_bin

    if mismatch:
        item.review_flag = True
        item.review_reason = build_review_reason(item.expected_bin, current_bin)
        item.notes = append_note(item.notes, build_bin_note(item.expected_bin, current_bin))
        logger.warning(
            "Audit item %s found in bin %s, expected %s; flagged for review",
            item.id, current_bin, item.expected_bin,
        )
    return mismatch


# =============================================================================
# RECONCILER
# =============================================================================

class ScanReconciler:
    """Reconciles one scan request against a single audit."""

    def __init__(self, db: Session, audit_id: int, current_bin: Optional[str] = None, now: Optional[datetime] = None):
        self.db = db
        self.audit_id = audit_id
        self.current_bin = to_string_or_none(current_bin)
        self.now = now or datetime.utcnow()

    def reconcile(self, asset_ids: Iterable[str], serials: Iterable[str]) -> List[ScanResult]:
        """
        Process asset IDs first, then serials, in the given order.

        Raises:
            AuditNotFoundError: if the audit does not exist
        """
        get_audit(self.db, self.audit_id)

        results = []
        for token in asset_ids:
            results.append(self._run_in_transaction(self.reconcile_asset_id, token))
        for token in serials:
            results.append(self._run_in_transaction(self.reconcile_serial, token))

        logger.info(
            "Scan on audit %s (bin=%s): %d token(s), %d matched",
            self.audit_id, self.current_bin, len(results),
            sum(1 for r in results if r.status != ScanStatus.NOT_FOUND),
        )
        return results

    def _run_in_transaction(self, handler, token: str) -> ScanResult:
        try:
            result = handler(token)
            self.db.commit()
            return result
        except Exception:
            self.db.rollback()
            raise

    def reconcile_asset_id(self, token: str) -> ScanResult:
        item = self.db.query(AuditItem).filter(
            AuditItem.audit_id == self.audit_id,
            AuditItem.asset_id == token,
        ).order_by(AuditItem.id).populate_existing().with_for_update().first()

        if not item:
            return self._record(token, ScanType.ASSET_ID, ScanStatus.NOT_FOUND, message=MSG_ASSET_NOT_FOUND)

        if item.found_status == FoundStatus.FOUND:
            return self._record(
                token, ScanType.ASSET_ID, ScanStatus.ALREADY_FOUND, item=item,
                expected_bin=item.expected_bin, found_bin=item.found_bin,
            )

        mismatch = mark_item_found(item, self.current_bin, self.now)
        return self._record(
            token, ScanType.ASSET_ID, ScanStatus.FOUND, item=item,
            expected_bin=item.expected_bin, found_bin=self.current_bin,
            message=MSG_FOUND_WRONG_BIN if mismatch else MSG_FOUND,
        )

    def reconcile_serial(self, token: str) -> ScanResult:
        serial = self.db.query(ItemSerial).join(
            AuditItem, ItemSerial.audit_item_id == AuditItem.id
        ).filter(
            AuditItem.audit_id == self.audit_id,
            ItemSerial.serial == token,
        ).order_by(ItemSerial.id).populate_existing().with_for_update(of=ItemSerial).first()

        if not serial:
            return self._record(token, ScanType.SERIAL, ScanStatus.NOT_FOUND, message=MSG_SERIAL_NOT_FOUND)

        # siblings are read only after the parent row is locked
        item = self.db.query(AuditItem).filter(
            AuditItem.id == serial.audit_item_id
        ).populate_existing().with_for_update().one()
        siblings = self.db.query(ItemSerial).filter(
            ItemSerial.audit_item_id == item.id
        ).populate_existing().all()

        if not serial.found:
            serial.found = True
            serial.found_at = self.now

        if item.found_status == FoundStatus.FOUND:
            return self._record(
                token, ScanType.SERIAL, ScanStatus.ALREADY_FOUND, item=item,
                expected_bin=item.expected_bin, found_bin=item.found_bin,
            )

        if not all(s.found for s in siblings):
            return self._record(
                token, ScanType.SERIAL, ScanStatus.FOUND, item=item,
                expected_bin=item.expected_bin, found_bin=self.current_bin,
                message=MSG_SERIAL_WAITING,
            )

        mismatch = mark_item_found(item, self.current_bin, self.now)
        return self._record(
            token, ScanType.SERIAL, ScanStatus.FOUND, item=item,
            expected_bin=item.expected_bin, found_bin=self.current_bin,
            message=MSG_SERIAL_COMPLETE_WRONG_BIN if mismatch else MSG_SERIAL_COMPLETE,
        )

    def _record(
        self,
        token: str,
        scan_type: ScanType,
        status: ScanStatus,
        item: Optional[AuditItem] = None,
        expected_bin: Optional[str] = None,
        found_bin: Optional[str] = None,
        message: Optional[str] = None,
    ) -> ScanResult:
        event = ScanEvent(
            audit_id=self.audit_id,
            audit_item_id=item.id if item else None,
            token=token,
            type=scan_type,
            status=status,
            current_bin=self.current_bin,
            expected_bin=expected_bin,
            found_bin=found_bin,
            message=message,
            created_at=self.now,
        )
        self.db.add(event)
        return ScanResult(
            token=token,
            type=scan_type,
            status=status,
            audit_item_id=item.id if item else None,
            message=message,
        )
