from datetime import date
from decimal import Decimal
from io import BytesIO

import pytest
from openpyxl import Workbook

from periods import LedgerScope, calendar_quarter, parse_iso_date
from models import LedgerRow, PeriodName
from sheet_utils import SheetFormatError, normalize_category, parse_amount, read_sheet


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("2. Operational support costs", "Operational support costs"),
        ("1. Administrative costs", "Administrative costs"),
        ("  3 .  Travel  ", "Travel"),
        ("10.Equipment", "Equipment"),
        ("  Administrative costs ", "Administrative costs"),
        ("Phase 2. Rollout", "Phase 2. Rollout"),
    ],
)
def test_normalize_category(raw: str, expected: str) -> None:
    assert normalize_category(raw) == expected


def test_parse_amount() -> None:
    assert parse_amount("1,234.50") == Decimal("1234.50")
    assert parse_amount(300) == Decimal("300")
    assert parse_amount(12.5) == Decimal("12.5")
    with pytest.raises(ValueError):
        parse_amount("twelve")
    with pytest.raises(ValueError):
        parse_amount("")


def test_parse_iso_date_rejects_other_formats() -> None:
    assert parse_iso_date("2025-02-14") == date(2025, 2, 14)
    with pytest.raises(ValueError):
        parse_iso_date("14/02/2025")


def test_calendar_quarter_and_scope() -> None:
    assert calendar_quarter(date(2025, 3, 31)) == PeriodName.q1
    assert calendar_quarter(date(2025, 4, 1)) == PeriodName.q2
    assert calendar_quarter(date(2025, 12, 31)) == PeriodName.q4
    assert len(LedgerScope(2025).where(LedgerRow)) == 1
    assert len(LedgerScope(2025, "Adama").where(LedgerRow)) == 2


def test_read_csv_matches_headers_case_insensitively() -> None:
    content = (
        "Budget_Heading,OUTCOME,Activity,Budget_Line,Description,Partner,Date,Amount,Notes\n"
        "1. Administrative costs,O1,A1,L1,Rent,P1,2025-01-10,100,ignored\n"
        ",,,,,,,,\n"
        "Travel,O2,A2,L2,Flights,P2,2025-02-10,250.5,\n"
    ).encode("utf-8")
    headers, rows = read_sheet("upload.CSV", content)
    assert "budget_heading" in headers
    assert [number for number, _ in rows] == [2, 4]
    assert rows[0][1]["budget_heading"] == "1. Administrative costs"
    assert rows[1][1]["amount"] == "250.5"
    assert "notes" not in rows[0][1]


def test_read_xlsx_converts_cells() -> None:
    wb = Workbook()
    ws = wb.active
    ws.append(["BUDGET_HEADING", "Outcome", "Activity", "Budget_Line", "Description", "Partner", "Date", "Amount", "Currency"])
    ws.append(["Travel", "O", "A", "L", "D", "P", date(2025, 5, 2), 300.0, "etb"])
    buffer = BytesIO()
    wb.save(buffer)

    _, rows = read_sheet("book.xlsx", buffer.getvalue())
    number, values = rows[0]
    assert number == 2
    assert values["date"] == "2025-05-02"
    assert values["amount"] == "300"
    assert values["currency"] == "etb"


def test_read_sheet_rejects_bad_input() -> None:
    with pytest.raises(SheetFormatError, match=r"re-saved as \.xlsx"):
        read_sheet("upload.xls", b"whatever")
    with pytest.raises(SheetFormatError, match="amount"):
        read_sheet(
            "upload.csv",
            b"budget_heading,outcome,activity,budget_line,description,partner,date\n",
        )


def test_read_csv_rejects_non_utf8_bytes() -> None:
    content = "budget_heading,outcome\nCaf\u00e9,x\n".encode("cp1252") + b"\xff\xfe\n"
    with pytest.raises(SheetFormatError, match="Could not read the CSV file"):
        read_sheet("batch.csv", content)
