from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base

MONEY = Numeric(18, 10)
PERCENT = Numeric(10, 6)
RATE = Numeric(18, 8)


class CurrencyCode(str, Enum):
    etb = "ETB"
    usd = "USD"
    eur = "EUR"


class PeriodName(str, Enum):
    q1 = "Q1"
    q2 = "Q2"
    q3 = "Q3"
    q4 = "Q4"
    annual_total = "Annual Total"
    total = "Total"


QUARTER_PERIODS = (PeriodName.q1, PeriodName.q2, PeriodName.q3, PeriodName.q4)
TOTAL_CATEGORY = "Total"


class CertificationStatus(str, Enum):
    certified = "certified"
    uncertified = "uncertified"


class RecordSource(str, Enum):
    form = "form"
    import_ = "import"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class LedgerRow(Base, TimestampMixin):
    __tablename__ = "budget_data"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    year: Mapped[int] = mapped_column("year2", Integer, nullable=False)
    category_name: Mapped[str] = mapped_column(String(255), nullable=False)
    cluster: Mapped[Optional[str]] = mapped_column(String(100))
    period_name: Mapped[str] = mapped_column(String(20), nullable=False)
    budget: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    actual: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    forecast: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    actual_plus_forecast: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    variance_percentage: Mapped[Optional[Decimal]] = mapped_column(PERCENT)
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default=CurrencyCode.etb.value
    )
    certified: Mapped[str] = mapped_column(
        String(20), nullable=False, default=CertificationStatus.uncertified.value
    )
    start_date: Mapped[Optional[date]] = mapped_column(Date)
    end_date: Mapped[Optional[date]] = mapped_column(Date)

    records: Mapped[list["TransactionRecord"]] = relationship(
        "TransactionRecord", back_populates="ledger_row"
    )

    __table_args__ = (
        UniqueConstraint(
            "year2",
            "category_name",
            "cluster",
            "period_name",
            name="uq_budget_data_scope_period",
        ),
        Index("ix_budget_data_year_cluster", "year2", "cluster"),
        Index(
            "ix_budget_data_year_category_period",
            "year2",
            "category_name",
            "period_name",
        ),
    )


class TransactionRecord(Base, TimestampMixin):
    __tablename__ = "budget_preview"

    id: Mapped[int] = mapped_column("PreviewID", Integer, primary_key=True)
    user_id: Mapped[Optional[int]] = mapped_column(Integer)
    cluster: Mapped[Optional[str]] = mapped_column(String(100))
    source: Mapped[str] = mapped_column(
        String(10), nullable=False, default=RecordSource.form.value
    )
    budget_heading: Mapped[str] = mapped_column(String(255), nullable=False)
    outcome: Mapped[Optional[str]] = mapped_column(Text)
    activity: Mapped[Optional[str]] = mapped_column(Text)
    budget_line: Mapped[Optional[str]] = mapped_column(Text)
    description: Mapped[Optional[str]] = mapped_column(Text)
    partner: Mapped[Optional[str]] = mapped_column(Text)
    pv_number: Mapped[Optional[str]] = mapped_column(String(100))
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default=CurrencyCode.etb.value
    )
    quarter_period: Mapped[Optional[str]] = mapped_column(String(20))
    category_name: Mapped[Optional[str]] = mapped_column(String(255))
    original_budget: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    remaining_budget: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    actual_spent: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    forecast_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY)
    variance_percentage: Mapped[Optional[Decimal]] = mapped_column(PERCENT)
    budget_id: Mapped[Optional[int]] = mapped_column(ForeignKey("budget_data.id"))
    use_custom_rate: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    usd_to_etb: Mapped[Optional[Decimal]] = mapped_column(RATE)
    eur_to_etb: Mapped[Optional[Decimal]] = mapped_column(RATE)

    ledger_row: Mapped[Optional["LedgerRow"]] = relationship(
        "LedgerRow", back_populates="records"
    )

    __table_args__ = (
        Index("ix_budget_preview_budget_id", "budget_id"),
        Index("ix_budget_preview_cluster_date", "cluster", "entry_date"),
    )


class Cluster(Base, TimestampMixin):
    __tablename__ = "clusters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    custom_currency_enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )

    rates: Mapped[list["CurrencyRate"]] = relationship(
        "CurrencyRate", back_populates="cluster", cascade="all, delete-orphan"
    )


class CurrencyRate(Base, TimestampMixin):
    __tablename__ = "currency_rates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    cluster_id: Mapped[int] = mapped_column(ForeignKey("clusters.id"), nullable=False)
    from_currency: Mapped[str] = mapped_column(String(3), nullable=False)
    to_currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default=CurrencyCode.etb.value
    )
    exchange_rate: Mapped[Decimal] = mapped_column(RATE, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    cluster: Mapped["Cluster"] = relationship("Cluster", back_populates="rates")

    __table_args__ = (
        UniqueConstraint(
            "cluster_id",
            "from_currency",
            "to_currency",
            name="uq_currency_rate_cluster_pair",
        ),
    )
