# datavision/excel_service.py
"""
Spreadsheet preview extraction.

Reads the first sheet of an .xlsx (openpyxl) or .xls (xlrd) workbook and keeps
the header row plus up to MAX_SAMPLE_ROWS data rows. The preview only bounds the
size of the analysis prompt; it is illustrative, not a full data load.

Empty cells stay None. A numeric zero stays 0: downstream an absent meter reading
is a data-quality defect while a zero reading is valid.
"""

import io
import logging
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Iterable, List

import openpyxl
import xlrd

from datavision.entities import MAX_SAMPLE_ROWS, CellValue, SpreadsheetPreview
from datavision.exceptions import EmptySheetError, InputFormatError, SpreadsheetParseError

logger = logging.getLogger("datavision_backend")

ALLOWED_EXTENSIONS = (".xlsx", ".xls")

_XLSX_MAGIC = b"PK\x03\x04"  # ZIP container (OOXML)
_XLS_MAGIC = b"\xd0\xcf\x11\xe0"  # OLE2 compound document


def validate_upload_name(filename: str | None) -> str:
    """Reject anything that is not named like an Excel workbook."""
    name = (filename or "").strip()
    if not name.lower().endswith(ALLOWED_EXTENSIONS):
        raise InputFormatError(
            f"Unsupported file '{name or '<unnamed>'}': please upload an Excel file (.xlsx, .xls)"
        )
    return name


def extract_preview(file_bytes: bytes) -> SpreadsheetPreview:
    """
    Build a SpreadsheetPreview from raw workbook bytes.

    Raises SpreadsheetParseError when the bytes are not a workbook and
    EmptySheetError when the first sheet has no rows.
    """
    content = bytes(file_bytes or b"")
    if content.startswith(_XLSX_MAGIC):
        sheet_name, rows = _read_xlsx_first_sheet(content)
    elif content.startswith(_XLS_MAGIC):
        sheet_name, rows = _read_xls_first_sheet(content)
    else:
        raise SpreadsheetParseError("File is not a readable Excel workbook")

    if not rows:
        raise EmptySheetError("File appears to be empty")

    headers = ["" if v is None else str(v) for v in rows[0]]
    data_rows = rows[1:]
    preview = SpreadsheetPreview(
        headers=headers,
        sample_rows=data_rows[:MAX_SAMPLE_ROWS],
        sheet_name=sheet_name,
        total_rows=len(data_rows),
    )
    logger.debug(
        "extract_preview: sheet=%r headers=%d data_rows=%d sampled=%d",
        sheet_name, len(headers), len(data_rows), len(preview.sample_rows),
    )
    return preview


def _read_xlsx_first_sheet(content: bytes) -> tuple[str, List[List[CellValue]]]:
    try:
        wb = openpyxl.load_workbook(io.BytesIO(content), read_only=True, data_only=True)
    except Exception as exc:
        raise SpreadsheetParseError(f"Could not open .xlsx workbook: {exc}") from exc

    try:
        if not wb.worksheets:
            return "", []
        ws = wb.worksheets[0]
        rows = _collect_rows(ws.iter_rows(values_only=True))
        return ws.title, rows
    except Exception as exc:
        raise SpreadsheetParseError(f"Could not read .xlsx sheet: {exc}") from exc
    finally:
        wb.close()


def _read_xls_first_sheet(content: bytes) -> tuple[str, List[List[CellValue]]]:
    try:
        wb = xlrd.open_workbook(file_contents=content)
    except Exception as exc:
        raise SpreadsheetParseError(f"Could not open .xls workbook: {exc}") from exc

    if wb.nsheets == 0:
        return "", []

    ws = wb.sheet_by_index(0)
    raw_rows = []
    for r in range(ws.nrows):
        raw_rows.append([_xls_cell_value(cell, wb.datemode) for cell in ws.row(r)])
    return ws.name, _collect_rows(raw_rows)


def _xls_cell_value(cell, datemode: int) -> Any:
    if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK, xlrd.XL_CELL_ERROR):
        return None
    if cell.ctype == xlrd.XL_CELL_BOOLEAN:
        return bool(cell.value)
    if cell.ctype == xlrd.XL_CELL_DATE:
        return xlrd.xldate.xldate_as_datetime(cell.value, datemode)
    return cell.value


def _collect_rows(raw_rows: Iterable[Iterable[Any]]) -> List[List[CellValue]]:
    """
    Normalise cells and trim trailing empty cells. A blank row inside the sheet
    stays as [] so the sample keeps its position; blank rows before the header
    and after the last data row are dropped.
    """
    rows: List[List[CellValue]] = []
    for raw in raw_rows:
        row = [_normalize_cell(v) for v in raw]
        while row and row[-1] is None:
            row.pop()
        if row or rows:
            rows.append(row)
    while rows and not rows[-1]:
        rows.pop()
    return rows


def _normalize_cell(value: Any) -> CellValue:
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    return str(value)
