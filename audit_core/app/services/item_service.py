"""
Audit row editing: value normalisation, derived fields and serial upserts.
Shared by the spreadsheet import, the grid PATCH endpoints and the scan
reconciler.
"""

import math
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from ..models import Audit, AuditItem, ItemSerial, FoundStatus
from .exceptions import AuditNotFoundError, AuditItemNotFoundError
from .tokens import split_serials

DEFAULT_REVIEW_REASON = "Needs review"

TEXT_FIELDS = (
    "item_code", "description", "pref_vendor", "expected_bin",
    "serials_raw", "asset_id", "notes",
)
NUMBER_FIELDS = (
    "on_hand", "physical_count", "current_on_hand_value", "current_value_variance",
)


# =============================================================================
# VALUE HELPERS
# =============================================================================

def to_string_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    text = str(value).strip()
    return text or None


def to_number_or_none(value: Any) -> Optional[float]:
    """Lenient numeric parse: blanks, text and NaN/inf all become None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def compute_count_variance(on_hand: Optional[float], physical_count: Optional[float]) -> Optional[float]:
    """Count Variance = On Hand - Physical Count, unknown if either side is."""
    if on_hand is None or physical_count is None:
        return None
    return on_hand - physical_count


def resolve_review_reason(review_flag: bool, review_reason: Optional[str]) -> Optional[str]:
    if not review_flag:
        return None
    return to_string_or_none(review_reason) or DEFAULT_REVIEW_REASON


# =============================================================================
# LOOKUPS
# =============================================================================

def get_audit(db: Session, audit_id: int) -> Audit:
    audit = db.query(Audit).filter(Audit.id == audit_id).first()
    if not audit:
        raise AuditNotFoundError("Audit not found")
    return audit


def get_item(db: Session, item_id: int) -> AuditItem:
    item = db.query(AuditItem).filter(AuditItem.id == item_id).first()
    if not item:
        raise AuditItemNotFoundError("Audit item not found")
    return item


# =============================================================================
# MUTATIONS
# =============================================================================

def upsert_serials(item: AuditItem, serials: Iterable[str]) -> List[ItemSerial]:
    """
    Attach serials to a row, skipping any the row already has.

    Works on unsaved rows too: serials are appended through the relationship
    and flushed together with the parent.
    """
    existing = {s.serial for s in item.serials}
    created = []
    for serial in serials:
        if serial in existing:
            continue
        row = ItemSerial(serial=serial, found=False)
        item.serials.append(row)
        existing.add(serial)
        created.append(row)
    return created


def prune_serials(item: AuditItem, listed: Iterable[str]) -> List[ItemSerial]:
    """Drop serials no longer listed on the row, unless a scan already found them."""
    keep = set(listed)
    removed = [s for s in item.serials if s.serial not in keep and not s.found]
    for serial in removed:
        item.serials.remove(serial)
    return removed


def build_item(audit_id: int, values: Dict[str, Any]) -> AuditItem:
    """New audit row from loosely typed values (spreadsheet cells)."""
    on_hand = to_number_or_none(values.get("on_hand"))
    physical_count = to_number_or_none(values.get("physical_count"))
    item = AuditItem(
        audit_id=audit_id,
        on_hand=on_hand,
        physical_count=physical_count,
        count_variance=compute_count_variance(on_hand, physical_count),
        current_on_hand_value=to_number_or_none(values.get("current_on_hand_value")),
        current_value_variance=to_number_or_none(values.get("current_value_variance")),
        found=False,
        found_status=None,
        review_flag=False,
        review_reason=None,
    )
    for field in TEXT_FIELDS:
        setattr(item, field, to_string_or_none(values.get(field)))
    upsert_serials(item, split_serials(item.serials_raw))
    return item


def set_found_status(
    item: AuditItem,
    status: Optional[FoundStatus],
    found_bin: Optional[str],
    now: datetime,
) -> None:
    """Manual found toggle; found, found_at and found_bin follow the status."""
    if status == FoundStatus.FOUND:
        if item.found_status != FoundStatus.FOUND or item.found_at is None:
            item.found_at = now
        item.found = True
        item.found_bin = to_string_or_none(found_bin)
    else:
        item.found = False
        item.found_at = None
        item.found_bin = None
    item.found_status = status


def next_found_status(current: Optional[FoundStatus]) -> Optional[FoundStatus]:
    """Grid toggle cycle: unset -> FOUND -> MISSING -> unset."""
    if current is None:
        return FoundStatus.FOUND
    if current == FoundStatus.FOUND:
        return FoundStatus.MISSING
    return None


def apply_item_update(item: AuditItem, changes: Dict[str, Any], now: Optional[datetime] = None) -> AuditItem:
    """
    Apply a partial grid edit to a row and recompute the derived fields.

    ``changes`` holds only the fields the client sent. A supplied
    ``count_variance`` is ignored, it is always recomputed.
    """
    now = now or datetime.utcnow()

    for field in TEXT_FIELDS:
        if field in changes:
            setattr(item, field, to_string_or_none(changes[field]))
    for field in NUMBER_FIELDS:
        if field in changes:
            setattr(item, field, to_number_or_none(changes[field]))

    item.count_variance = compute_count_variance(item.on_hand, item.physical_count)

    if "found_status" in changes:
        set_found_status(item, changes["found_status"], changes.get("found_bin", item.found_bin), now)
    elif "found_bin" in changes and item.found_status == FoundStatus.FOUND:
        item.found_bin = to_string_or_none(changes["found_bin"])

    if "review_flag" in changes or "review_reason" in changes:
        flag = bool(changes.get("review_flag", item.review_flag))
        item.review_flag = flag
        item.review_reason = resolve_review_reason(flag, changes.get("review_reason", item.review_reason))

    if "serials_raw" in changes:
        listed = split_serials(item.serials_raw)
        prune_serials(item, listed)
        upsert_serials(item, listed)

    return item
