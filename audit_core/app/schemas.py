from typing import Optional, List, Literal
from datetime import datetime
from pydantic import BaseModel, Field, validator

from .models import FoundStatus, ScanType, ScanStatus


def _blank_to_none(v):
    if isinstance(v, str) and v.strip() == "":
        return None
    return v


# =============================================================================
# AUDITS
# =============================================================================

class AuditOut(BaseModel):
    id: int
    name: str
    notes: Optional[str] = None
    created_at: datetime
    item_count: int = 0

    class Config:
        from_attributes = True


class AuditDetailOut(AuditOut):
    found_count: int = 0
    review_count: int = 0


# =============================================================================
# AUDIT ITEMS
# =============================================================================

class AuditItemOut(BaseModel):
    id: int
    audit_id: int
    item_code: Optional[str] = None
    description: Optional[str] = None
    pref_vendor: Optional[str] = None
    on_hand: Optional[float] = None
    physical_count: Optional[float] = None
    count_variance: Optional[float] = None
    expected_bin: Optional[str] = None
    serials_raw: Optional[str] = None
    asset_id: Optional[str] = None
    notes: Optional[str] = None
    current_on_hand_value: Optional[float] = None
    current_value_variance: Optional[float] = None
    found: bool
    found_status: Optional[FoundStatus] = None
    found_at: Optional[datetime] = None
    found_bin: Optional[str] = None
    review_flag: bool
    review_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class AuditItemListOut(BaseModel):
    ok: bool = True
    items: List[AuditItemOut]


class AuditItemUpdate(BaseModel):
    """Editable grid fields. Only the keys sent are applied."""
    item_code: Optional[str] = None
    description: Optional[str] = None
    pref_vendor: Optional[str] = None
    on_hand: Optional[float] = None
    physical_count: Optional[float] = None
    count_variance: Optional[float] = None  # accepted for round-trips, always recomputed
    expected_bin: Optional[str] = None
    serials_raw: Optional[str] = None
    asset_id: Optional[str] = None
    notes: Optional[str] = None
    current_on_hand_value: Optional[float] = None
    current_value_variance: Optional[float] = None
    found_status: Optional[FoundStatus] = None
    found_bin: Optional[str] = None
    review_flag: Optional[bool] = None
    review_reason: Optional[str] = None

    class Config:
        extra = "forbid"

    @validator(
        "on_hand", "physical_count", "count_variance", "current_on_hand_value",
        "current_value_variance", "found_status", pre=True,
    )
    def blank_is_null(cls, v):
        return _blank_to_none(v)

    @validator("review_flag")
    def review_flag_not_null(cls, v):
        if v is None:
            raise ValueError("review_flag must be true or false")
        return v


class AuditItemBatchRow(AuditItemUpdate):
    id: int


class AuditItemBatchUpdate(BaseModel):
    items: List[AuditItemBatchRow] = Field(..., min_length=1)

    class Config:
        extra = "forbid"


class ItemSavedOut(BaseModel):
    ok: bool = True
    id: int


class ItemsSavedOut(BaseModel):
    ok: bool = True
    ids: List[int]


# =============================================================================
# SCANNING
# =============================================================================

class ScanRequest(BaseModel):
    text: str = ""
    current_bin: Optional[str] = Field(None, alias="currentBin")

    class Config:
        extra = "forbid"
        populate_by_name = True


class ScanResultOut(BaseModel):
    token: str
    type: ScanType
    status: ScanStatus
    audit_item_id: Optional[int] = Field(None, alias="auditItemId")
    message: Optional[str] = None

    class Config:
        from_attributes = True
        populate_by_name = True


class ScanTokensOut(BaseModel):
    asset_ids: List[str] = Field(default_factory=list, alias="assetIds")
    serials: List[str] = Field(default_factory=list)

    class Config:
        populate_by_name = True


class ScanResponse(BaseModel):
    ok: bool = True
    audit_id: int = Field(..., alias="auditId")
    tokens: ScanTokensOut
    results: List[ScanResultOut]

    class Config:
        populate_by_name = True


class LegacyScanRequest(BaseModel):
    """Body of the older single-endpoint scanner (POST /scan)."""
    raw: str = ""
    audit_id: Optional[int] = Field(None, alias="auditId")
    mode: Literal["mass", "bin"] = "mass"
    bin_lock: Optional[str] = Field(None, alias="binLock")
    asset_id: Optional[str] = Field(None, alias="assetId")
    serial_tokens: List[str] = Field(default_factory=list, alias="serialTokens")

    class Config:
        extra = "forbid"
        populate_by_name = True

    @validator("audit_id", "bin_lock", "asset_id", pre=True)
    def blank_is_null(cls, v):
        return _blank_to_none(v)


class LegacyScanResponse(BaseModel):
    message: str
    results: List[ScanResultOut]


class ScanEventOut(BaseModel):
    id: int
    audit_item_id: Optional[int] = None
    token: str
    type: ScanType
    status: ScanStatus
    current_bin: Optional[str] = None
    expected_bin: Optional[str] = None
    found_bin: Optional[str] = None
    message: Optional[str] = None
    created_at: datetime
    item_code: Optional[str] = None
    item_asset_id: Optional[str] = None

    class Config:
        from_attributes = True


# =============================================================================
# GRID PREFERENCES
# =============================================================================

class GridColumns(BaseModel):
    """Column visibility of the audit grid; every column shown by default."""
    item_code: bool = True
    description: bool = True
    pref_vendor: bool = True
    on_hand: bool = True
    physical_count: bool = True
    count_variance: bool = True
    expected_bin: bool = True
    serials_raw: bool = True
    asset_id: bool = True
    notes: bool = True
    current_on_hand_value: bool = True
    current_value_variance: bool = True
    found: bool = True
    review: bool = True

    class Config:
        extra = "forbid"


class GridColumnsUpdate(BaseModel):
    item_code: Optional[bool] = None
    description: Optional[bool] = None
    pref_vendor: Optional[bool] = None
    on_hand: Optional[bool] = None
    physical_count: Optional[bool] = None
    count_variance: Optional[bool] = None
    expected_bin: Optional[bool] = None
    serials_raw: Optional[bool] = None
    asset_id: Optional[bool] = None
    notes: Optional[bool] = None
    current_on_hand_value: Optional[bool] = None
    current_value_variance: Optional[bool] = None
    found: Optional[bool] = None
    review: Optional[bool] = None

    class Config:
        extra = "forbid"


class GridPreferences(BaseModel):
    columns: GridColumns = Field(default_factory=GridColumns)
    bin_lock: Optional[str] = None

    class Config:
        extra = "forbid"


class GridPreferencesUpdate(BaseModel):
    columns: Optional[GridColumnsUpdate] = None
    bin_lock: Optional[str] = None

    class Config:
        extra = "forbid"

    @validator("bin_lock", pre=True)
    def blank_is_null(cls, v):
        return _blank_to_none(v)
