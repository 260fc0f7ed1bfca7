from datetime import date
from decimal import Decimal
from typing import Optional

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from models import QUARTER_PERIODS, TOTAL_CATEGORY, LedgerRow, PeriodName

QUARTER_BOUNDS = (
    ((1, 1), (3, 31)),
    ((4, 1), (6, 30)),
    ((7, 1), (9, 30)),
    ((10, 1), (12, 31)),
)


def _dec(value) -> Decimal:
    return Decimal(str(value))


def seed_ledger(
    session: Session,
    year: int,
    categories: dict[str, list[tuple]],
    *,
    cluster: Optional[str] = None,
    currency: str = "ETB",
    certified: str = "uncertified",
) -> dict[tuple[str, str], int]:
    """Create quarter, Annual Total and Total rows; quarters are (budget, actual, forecast)."""
    ids: dict[tuple[str, str], int] = {}
    total = [Decimal("0"), Decimal("0"), Decimal("0")]
    for category, quarters in categories.items():
        annual = [Decimal("0"), Decimal("0"), Decimal("0")]
        for period, (start, end), values in zip(QUARTER_PERIODS, QUARTER_BOUNDS, quarters):
            budget, actual, forecast = (_dec(v) for v in values)
            row = LedgerRow(
                year=year,
                category_name=category,
                cluster=cluster,
                period_name=period.value,
                budget=budget,
                actual=actual,
                forecast=forecast,
                actual_plus_forecast=actual + forecast,
                variance_percentage=Decimal("0"),
                currency=currency,
                certified=certified,
                start_date=date(year, *start),
                end_date=date(year, *end),
            )
            session.add(row)
            session.flush()
            ids[(category, period.value)] = row.id
            annual = [annual[0] + budget, annual[1] + actual, annual[2] + forecast]
        row = LedgerRow(
            year=year,
            category_name=category,
            cluster=cluster,
            period_name=PeriodName.annual_total.value,
            budget=annual[0],
            actual=annual[1],
            forecast=annual[2],
            actual_plus_forecast=annual[1] + annual[2],
            currency=currency,
            certified=certified,
        )
        session.add(row)
        session.flush()
        ids[(category, PeriodName.annual_total.value)] = row.id
        total = [total[0] + annual[0], total[1] + annual[1], total[2] + annual[2]]
    row = LedgerRow(
        year=year,
        category_name=TOTAL_CATEGORY,
        cluster=cluster,
        period_name=PeriodName.total.value,
        budget=total[0],
        actual=total[1],
        forecast=total[2],
        actual_plus_forecast=total[1] + total[2],
        currency=currency,
        certified=certified,
    )
    session.add(row)
    session.commit()
    ids[(TOTAL_CATEGORY, PeriodName.total.value)] = row.id
    return ids


def fresh_row(session: Session, row_id: int) -> LedgerRow:
    stmt = (
        select(LedgerRow)
        .where(LedgerRow.id == row_id)
        .execution_options(populate_existing=True)
    )
    return session.scalars(stmt).one()


@pytest.fixture
def engine():
    eng = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(eng)
    return eng


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def seed():
    return seed_ledger


@pytest.fixture
def reload_row():
    return fresh_row
