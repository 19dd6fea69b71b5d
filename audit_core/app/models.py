"""
Inventory Audit Data Models
===========================
Audits own the expected inventory rows imported from a spreadsheet, the
per-row serial numbers and the append-only scan trail.

Deleting an audit removes everything below it, both through the ORM
cascades and through ON DELETE CASCADE foreign keys.
"""

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, Text, Boolean, Float,
    Enum as SQLEnum, Index, UniqueConstraint
)
from sqlalchemy.orm import relationship
from .db import Base


# =============================================================================
# ENUMS
# =============================================================================

class FoundStatus(str, Enum):
    """Manual/scan found state of an audit row. NULL in the DB means unset."""
    FOUND = "FOUND"
    MISSING = "MISSING"


class ScanType(str, Enum):
    ASSET_ID = "ASSET_ID"
    SERIAL = "SERIAL"


class ScanStatus(str, Enum):
    FOUND = "FOUND"
    ALREADY_FOUND = "ALREADY_FOUND"
    NOT_FOUND = "NOT_FOUND"


# =============================================================================
# AUDITS
# =============================================================================

class Audit(Base):
    __tablename__ = "audits"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    items = relationship(
        "AuditItem", back_populates="audit",
        cascade="all, delete-orphan", order_by="AuditItem.id",
    )
    scan_events = relationship(
        "ScanEvent", back_populates="audit", cascade="all, delete-orphan",
    )
    preference = relationship(
        "GridPreference", back_populates="audit", uselist=False,
        cascade="all, delete-orphan",
    )


class AuditItem(Base):
    __tablename__ = "audit_items"
    id = Column(Integer, primary_key=True, index=True)
    audit_id = Column(Integer, ForeignKey("audits.id", ondelete="CASCADE"), nullable=False)

    # Columns mirrored from the audit spreadsheet
    item_code = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    pref_vendor = Column(String, nullable=True)
    on_hand = Column(Float, nullable=True)
    physical_count = Column(Float, nullable=True)
    count_variance = Column(Float, nullable=True)  # on_hand - physical_count
    expected_bin = Column(String, nullable=True)
    serials_raw = Column(Text, nullable=True)
    asset_id = Column(String, nullable=True)
    notes = Column(Text, nullable=True)
    current_on_hand_value = Column(Float, nullable=True)
    current_value_variance = Column(Float, nullable=True)

    # Reconciliation state
    found = Column(Boolean, nullable=False, default=False)
    found_status = Column(SQLEnum(FoundStatus), nullable=True)
    found_at = Column(DateTime, nullable=True)
    found_bin = Column(String, nullable=True)
    review_flag = Column(Boolean, nullable=False, default=False)
    review_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    audit = relationship("Audit", back_populates="items")
    serials = relationship(
        "ItemSerial", back_populates="audit_item",
        cascade="all, delete-orphan", order_by="ItemSerial.id",
    )

    __table_args__ = (
        Index("ix_audit_items_audit_asset", "audit_id", "asset_id"),
    )


class ItemSerial(Base):
    __tablename__ = "item_serials"
    id = Column(Integer, primary_key=True, index=True)
    audit_item_id = Column(Integer, ForeignKey("audit_items.id", ondelete="CASCADE"), nullable=False)
    serial = Column(String, nullable=False)
    found = Column(Boolean, nullable=False, default=False)
    found_at = Column(DateTime, nullable=True)

    audit_item = relationship("AuditItem", back_populates="serials")

    __table_args__ = (
        UniqueConstraint("audit_item_id", "serial", name="uq_item_serial"),
        Index("ix_item_serials_serial", "serial"),
    )


class ScanEvent(Base):
    """Append-only trail entry, one per scanned token."""
    __tablename__ = "scan_events"
    id = Column(Integer, primary_key=True, index=True)
    audit_id = Column(Integer, ForeignKey("audits.id", ondelete="CASCADE"), nullable=False)
    audit_item_id = Column(Integer, ForeignKey("audit_items.id", ondelete="CASCADE"), nullable=True)
    token = Column(String, nullable=False)
    type = Column(SQLEnum(ScanType), nullable=False)
    status = Column(SQLEnum(ScanStatus), nullable=False)
    current_bin = Column(String, nullable=True)
    expected_bin = Column(String, nullable=True)
    found_bin = Column(String, nullable=True)
    message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    audit = relationship("Audit", back_populates="scan_events")
    audit_item = relationship("AuditItem")

    __table_args__ = (
        Index("ix_scan_events_audit_created", "audit_id", "created_at"),
    )


class GridPreference(Base):
    """Per-audit grid settings (column visibility, bin lock) stored as JSON text."""
    __tablename__ = "grid_preferences"
    id = Column(Integer, primary_key=True, index=True)
    audit_id = Column(Integer, ForeignKey("audits.id", ondelete="CASCADE"), nullable=False, unique=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    audit = relationship("Audit", back_populates="preference")
