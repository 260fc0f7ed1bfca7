from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base, SchemaFeatures, detect_schema_features
from schemas import TransactionIn
from services import TransactionService

LEGACY_PREVIEW_DDL = """
CREATE TABLE budget_preview (
    "PreviewID" INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER,
    cluster VARCHAR(100),
    source VARCHAR(10) NOT NULL,
    budget_heading VARCHAR(255) NOT NULL,
    outcome TEXT,
    activity TEXT,
    budget_line TEXT,
    description TEXT,
    partner TEXT,
    pv_number VARCHAR(100),
    entry_date DATE NOT NULL,
    amount NUMERIC(12, 2) NOT NULL,
    currency VARCHAR(3) NOT NULL,
    quarter_period VARCHAR(20),
    category_name VARCHAR(255),
    original_budget NUMERIC(12, 2),
    remaining_budget NUMERIC(12, 2),
    actual_spent NUMERIC(12, 2),
    forecast_amount NUMERIC(12, 2),
    variance_percentage NUMERIC(5, 2),
    budget_id INTEGER REFERENCES budget_data (id),
    created_at DATETIME NOT NULL,
    updated_at DATETIME NOT NULL
)
"""


@pytest.fixture
def legacy_engine():
    eng = create_engine("sqlite:///:memory:")
    tables = [t for t in Base.metadata.sorted_tables if t.name != "budget_preview"]
    Base.metadata.create_all(eng, tables=tables)
    with eng.begin() as conn:
        conn.exec_driver_sql(LEGACY_PREVIEW_DDL)
    return eng


def test_current_schema_has_custom_rate_columns(engine) -> None:
    assert detect_schema_features(engine) == SchemaFeatures(custom_rate_columns=True)


def test_empty_database_assumes_current_schema() -> None:
    assert detect_schema_features(create_engine("sqlite:///:memory:")).custom_rate_columns


def test_legacy_schema_is_detected(legacy_engine) -> None:
    assert detect_schema_features(legacy_engine).custom_rate_columns is False


def test_legacy_schema_still_records_transactions(legacy_engine, seed, reload_row) -> None:
    features = detect_schema_features(legacy_engine)
    with Session(legacy_engine) as session:
        ids = seed(session, 2025, {"Travel": [(1000, 0, 1000)] * 4})
        service = TransactionService(session, features=features)

        out = service.submit(
            TransactionIn(
                budget_heading="3. Travel",
                outcome="O",
                activity="A",
                budget_line="L",
                description="Flight",
                partner="P",
                entry_date=date(2025, 7, 3),
                amount=Decimal("400"),
                use_custom_rate=True,
                usd_to_etb=Decimal("70"),
            )
        )

        record = service.get(out.insert_id)
        assert record.budget_id == ids[("Travel", "Q3")]
        assert record.actual_spent == Decimal("400")
        assert record.use_custom_rate is False
        assert record.usd_to_etb is None
        assert reload_row(session, ids[("Travel", "Q3")]).forecast == Decimal("600")
