"""
Services package initialization.
Business logic layer for inventory audit operations.
"""

from .exceptions import (
    AuditError,
    AuditNotFoundError,
    AuditItemNotFoundError,
    SpreadsheetError,
    InvalidScanError,
)
from .tokens import ExtractedTokens, extract_tokens, split_serials
from .item_service import (
    compute_count_variance,
    resolve_review_reason,
    apply_item_update,
    next_found_status,
    set_found_status,
    build_item,
    upsert_serials,
    get_audit,
    get_item,
)
from .reconcile_service import ScanReconciler, ScanResult

__all__ = [
    'AuditError',
    'AuditNotFoundError',
    'AuditItemNotFoundError',
    'SpreadsheetError',
    'InvalidScanError',
    'ExtractedTokens',
    'extract_tokens',
    'split_serials',
    'compute_count_variance',
    'resolve_review_reason',
    'apply_item_update',
    'next_found_status',
    'set_found_status',
    'build_item',
    'upsert_serials',
    'get_audit',
    'get_item',
    'ScanReconciler',
    'ScanResult',
]
