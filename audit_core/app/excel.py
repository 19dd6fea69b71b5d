import logging
import re
from io import BytesIO
from typing import Any, Dict, List

import pandas as pd
from fastapi import APIRouter, UploadFile, File, HTTPException, Depends
from fastapi.responses import RedirectResponse, StreamingResponse
from sqlalchemy.orm import Session

from . import models
from .deps import get_db, to_http_error
from .services import AuditError, SpreadsheetError, build_item, get_audit

logger = logging.getLogger(__name__)

router = APIRouter(tags=["excel"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
EXPORT_SHEET_NAME = "Audit Items"
MAX_FILE_NAME_LENGTH = 80

# Spreadsheet header -> AuditItem field. Every header must be present on import.
REQUIRED_HEADERS: Dict[str, str] = {
    "Item": "item_code",
    "Description": "description",
    "Pref. Vendor": "pref_vendor",
    "On Hand": "on_hand",
    "Physical Count": "physical_count",
    "Count Variance": "count_variance",
    "Bin Numbers": "expected_bin",
    "Serial/Lot Numbers": "serials_raw",
    "Asset ID": "asset_id",
    "Notes": "notes",
    "Current On Hand Value": "current_on_hand_value",
    "Current Value Variance": "current_value_variance",
}

# Display-only columns appended on export; ignored on import.
EXPORT_EXTRA_HEADERS = ["Found Status", "Found", "Found Bin", "Needs Review", "Review Reason"]


def _to_native(value: Any):
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass
    if hasattr(value, "item"):
        try:
            return value.item()
        except (TypeError, ValueError):
            return value
    return value


def read_first_sheet(content: bytes, filename: str) -> pd.DataFrame:
    """
    Read the first sheet of an .xlsx file (or a .csv file) as text-preserving
    cells. Numbers typed into Excel come back as int/float, everything else
    as the raw string; blanks are empty strings.
    """
    filename_lower = filename.lower()

    if filename_lower.endswith(".xlsx"):
        try:
            return pd.read_excel(
                BytesIO(content), sheet_name=0, engine="openpyxl",
                dtype=object, keep_default_na=False, na_values=[],
            )
        except Exception as exc:
            raise SpreadsheetError(f"Failed to read Excel file: {exc}")

    if filename_lower.endswith(".csv"):
        for encoding in ("utf-8", "latin-1", "cp1252"):
            try:
                return pd.read_csv(
                    BytesIO(content), encoding=encoding,
                    dtype=str, keep_default_na=False, na_values=[],
                )
            except UnicodeDecodeError:
                continue
            except Exception as exc:
                raise SpreadsheetError(f"Failed to read CSV file: {exc}")
        raise SpreadsheetError("Failed to read CSV file: unsupported text encoding")

    raise SpreadsheetError("Only .xlsx and .csv files are supported")


def missing_headers(columns: List[Any]) -> List[str]:
    present = {str(c).strip() for c in columns}
    return [h for h in REQUIRED_HEADERS if h not in present]


def _cell(value: Any) -> Any:
    value = _to_native(value)
    # whole-number floats (e.g. an Asset ID typed as a number) keep their digits
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _is_blank_row(values: Dict[str, Any]) -> bool:
    return all(v is None or str(v).strip() == "" for v in values.values())


def import_rows(db: Session, audit_id: int, df: pd.DataFrame) -> int:
    """
    Create one AuditItem per data row, with its serials.

    Count Variance in the sheet is ignored and recomputed. Importing the same
    sheet twice duplicates the rows (serials stay unique per row).
    """
    missing = missing_headers(df.columns.tolist())
    if missing:
        raise SpreadsheetError(f"Missing required headers: {', '.join(missing)}")

    df = df.rename(columns=lambda c: str(c).strip())
    created = 0
    for _, row in df.iterrows():
        values = {field: _cell(row[header]) for header, field in REQUIRED_HEADERS.items()}
        if _is_blank_row(values):
            continue
        db.add(build_item(audit_id, values))
        created += 1
    return created


@router.post("/audits/{audit_id}/import", status_code=303)
async def import_audit_items(audit_id: int, file: UploadFile = File(None), db: Session = Depends(get_db)):
    """Import expected inventory rows from the audit spreadsheet."""
    try:
        get_audit(db, audit_id)
    except AuditError as e:
        raise to_http_error(e)

    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded.")

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")

    try:
        df = read_first_sheet(content, file.filename)
        created = import_rows(db, audit_id, df)
        db.commit()
    except SpreadsheetError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))
    except Exception:
        db.rollback()
        raise

    logger.info("Imported %d row(s) from %s into audit %s", created, file.filename, audit_id)
    return RedirectResponse(url=f"/audits/{audit_id}", status_code=303)


def safe_file_name(name: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9\-_\s]", "", name or "").strip()
    cleaned = re.sub(r"\s+", "_", cleaned)[:MAX_FILE_NAME_LENGTH]
    return cleaned or "audit"


def _blank(value):
    return "" if value is None else value


def export_row(item: models.AuditItem) -> Dict[str, Any]:
    row = {header: _blank(getattr(item, field)) for header, field in REQUIRED_HEADERS.items()}
    row.update({
        "Found Status": item.found_status.value if item.found_status else "",
        "Found": "YES" if item.found else "NO",
        "Found Bin": _blank(item.found_bin),
        "Needs Review": "YES" if item.review_flag else "NO",
        "Review Reason": _blank(item.review_reason),
    })
    return row


def build_workbook(items: List[models.AuditItem]) -> BytesIO:
    columns = list(REQUIRED_HEADERS) + EXPORT_EXTRA_HEADERS
    df = pd.DataFrame([export_row(i) for i in items], columns=columns)

    output = BytesIO()
    with pd.ExcelWriter(output, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name=EXPORT_SHEET_NAME)
        # text starting with "=" stays text, never a formula
        for row in writer.sheets[EXPORT_SHEET_NAME].iter_rows():
            for cell in row:
                if isinstance(cell.value, str) and cell.value.startswith("="):
                    cell.data_type = "s"
    output.seek(0)
    return output


@router.get("/audits/{audit_id}/export")
def export_audit_items(audit_id: int, db: Session = Depends(get_db)):
    """Download the audit rows as an .xlsx workbook."""
    try:
        audit = get_audit(db, audit_id)
    except AuditError as e:
        raise to_http_error(e)

    items = db.query(models.AuditItem).filter(
        models.AuditItem.audit_id == audit_id
    ).order_by(models.AuditItem.created_at.asc(), models.AuditItem.id.asc()).all()

    output = build_workbook(items)
    file_name = f"{safe_file_name(audit.name)}_{audit.id}.xlsx"
    logger.info("Exported %d row(s) from audit %s", len(items), audit_id)

    return StreamingResponse(
        output,
        media_type=XLSX_MEDIA_TYPE,
        headers={
            "Content-Disposition": f'attachment; filename="{file_name}"',
            "Cache-Control": "no-store",
        },
    )


@router.get("/excel/template")
def get_excel_template():
    """Describe the spreadsheet layout the import expects."""
    return {
        "required_headers": list(REQUIRED_HEADERS),
        "export_extra_headers": EXPORT_EXTRA_HEADERS,
        "notes": [
            "Only the first sheet is read.",
            "Count Variance is recalculated as On Hand - Physical Count.",
            "Serial/Lot Numbers may be separated by spaces, commas, periods or semicolons.",
        ],
    }
