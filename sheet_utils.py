import csv
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from io import BytesIO, StringIO
from pathlib import PurePath
from typing import Any, Iterator, Optional

from openpyxl import load_workbook

IMPORT_COLUMNS = (
    "budget_heading",
    "outcome",
    "activity",
    "budget_line",
    "description",
    "partner",
    "date",
    "amount",
    "currency",
    "usd_to_etb_rate",
    "eur_to_etb_rate",
)
REQUIRED_IMPORT_COLUMNS = IMPORT_COLUMNS[:8]
SUPPORTED_EXTENSIONS = (".xlsx", ".csv")

_CATEGORY_PREFIX = re.compile(r"^\s*\d+\s*\.\s*")


def normalize_category(label: Optional[str]) -> str:
    """Strip a leading ``<digits>.`` numbering from a budget heading."""
    return _CATEGORY_PREFIX.sub("", (label or "").strip()).strip()


def parse_amount(value: object) -> Decimal:
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        amount = Decimal(str(value))
    else:
        clean = str(value or "").strip().replace(" ", "").replace(",", "")
        if not clean:
            raise ValueError("Amount is required")
        try:
            amount = Decimal(clean)
        except InvalidOperation as exc:
            raise ValueError("Amount must be a number") from exc
    if not amount.is_finite():
        raise ValueError("Amount must be a number")
    return amount


def cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value == int(value):
        return str(int(value))
    return str(value).strip()


def _normalize_header(value: Any) -> str:
    return cell_text(value).lower()


class SheetFormatError(ValueError):
    pass


def _rows_from_csv(content: bytes) -> Iterator[list[Any]]:
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise SheetFormatError("Could not read the CSV file; save it as UTF-8") from exc
    yield from csv.reader(StringIO(text))


def _rows_from_xlsx(content: bytes) -> Iterator[list[Any]]:
    try:
        wb = load_workbook(BytesIO(content), read_only=True, data_only=True)
    except Exception as exc:
        raise SheetFormatError("Could not read the Excel file") from exc
    try:
        for row in wb.active.iter_rows(values_only=True):
            yield list(row)
    finally:
        wb.close()


def read_sheet(filename: str, content: bytes) -> tuple[list[str], list[tuple[int, dict[str, str]]]]:
    """Return the normalized header row and ``(row_number, values)`` pairs.

    Row numbers follow the spreadsheet: the header is row 1. Fully blank
    rows are dropped.
    """
    extension = PurePath(filename or "").suffix.lower()
    if extension == ".csv":
        raw_rows = _rows_from_csv(content)
    elif extension == ".xlsx":
        raw_rows = _rows_from_xlsx(content)
    else:
        raise SheetFormatError(
            "Invalid file type. Please upload an Excel (.xlsx) or CSV file; "
            "older .xls workbooks must be re-saved as .xlsx"
        )

    headers: list[str] = []
    rows: list[tuple[int, dict[str, str]]] = []
    for idx, raw in enumerate(raw_rows, start=1):
        if idx == 1:
            headers = [_normalize_header(v) for v in raw]
            continue
        values = [cell_text(v) for v in raw]
        if not any(values):
            continue
        record = {
            header: values[pos] if pos < len(values) else ""
            for pos, header in enumerate(headers)
            if header in IMPORT_COLUMNS
        }
        rows.append((idx, record))

    missing = [col for col in REQUIRED_IMPORT_COLUMNS if col not in headers]
    if missing:
        raise SheetFormatError(
            "Missing required columns: " + ", ".join(missing)
        )
    return headers, rows
