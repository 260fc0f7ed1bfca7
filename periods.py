from dataclasses import dataclass
from datetime import date
from typing import Any, Optional

from sqlalchemy.sql.elements import ColumnElement

from models import QUARTER_PERIODS, PeriodName


@dataclass(frozen=True)
class LedgerScope:
    """Year plus optional cluster that every ledger statement filters on.

    ``where`` accepts the mapped class or an ``aliased`` copy of it so the
    same predicate can be used in an outer UPDATE and its correlated
    subqueries.
    """

    year: int
    cluster: Optional[str] = None

    def where(self, entity: Any) -> list[ColumnElement[bool]]:
        clauses: list[ColumnElement[bool]] = [entity.year == self.year]
        if self.cluster:
            clauses.append(entity.cluster == self.cluster)
        return clauses

    def describe(self) -> str:
        if self.cluster:
            return f"year={self.year} cluster={self.cluster}"
        return f"year={self.year}"


def calendar_quarter(on_date: date) -> PeriodName:
    return QUARTER_PERIODS[(on_date.month - 1) // 3]


def parse_iso_date(value: Optional[str]) -> date:
    value = (value or "").strip()
    if not value:
        raise ValueError("Date is required")
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ValueError("Invalid date format. Please use YYYY-MM-DD") from exc
