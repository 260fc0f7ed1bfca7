from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Mapping, Optional

from pydantic import ValidationError
from sqlalchemy import MetaData, Table, case, func, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from config import get_settings
from database import CUSTOM_RATE_COLUMNS, SchemaFeatures
from fx_rates import (
    ClusterCurrencyConfig,
    CurrencyRates,
    CustomRateRequest,
    EffectiveRates,
    coerce_currency,
    convert,
    effective_rates,
    parse_rate,
)
from models import (
    QUARTER_PERIODS,
    TOTAL_CATEGORY,
    CertificationStatus,
    Cluster,
    CurrencyCode,
    CurrencyRate,
    LedgerRow,
    PeriodName,
    RecordSource,
    TransactionRecord,
)
from periods import LedgerScope, calendar_quarter, parse_iso_date
from schemas import (
    BudgetCheckIn,
    BudgetCheckOut,
    ClusterRatesIn,
    ImportResultOut,
    SubmissionOut,
    TransactionIn,
    TransactionRecordOut,
)
from sheet_utils import SheetFormatError, normalize_category, parse_amount, read_sheet

logger = logging.getLogger(__name__)

QUARTER_VALUES = [p.value for p in QUARTER_PERIODS]
PERIOD_ORDER = {p.value: idx for idx, p in enumerate(PeriodName)}
SYNC = {"synchronize_session": False}

FIELD_LABELS = {
    "budget_heading": "Budget Heading",
    "outcome": "Outcome",
    "activity": "Activity",
    "budget_line": "Budget Line",
    "description": "Description",
    "partner": "Partner",
    "date": "Date",
    "amount": "Amount",
}
TRUTHY = {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class RequestContext:
    user_id: int = 1
    cluster: Optional[str] = None


class LedgerError(Exception):
    status_code = 400

    def __init__(self, message: str, debug: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.debug = debug


class InvalidSubmission(LedgerError, ValueError):
    pass


class QuarterNotFound(LedgerError, LookupError):
    status_code = 404


class LedgerUpdateFailed(LedgerError):
    status_code = 500


def _text(fields: Mapping[str, object], key: str) -> str:
    value = fields.get(key)
    return "" if value is None else str(value).strip()


def build_transaction(
    fields: Mapping[str, object],
    *,
    currency: CurrencyCode = CurrencyCode.etb,
    date_key: str = "date",
) -> TransactionIn:
    """Validate raw form or sheet values, reporting every bad field at once."""
    missing: list[str] = []
    for key in ("budget_heading", "outcome", "activity", "budget_line", "description", "partner"):
        if not _text(fields, key):
            missing.append(FIELD_LABELS[key])

    entry_date: Optional[date] = None
    try:
        entry_date = parse_iso_date(_text(fields, date_key))
    except ValueError:
        missing.append(FIELD_LABELS["date"])

    amount: Optional[Decimal] = None
    try:
        amount = parse_amount(fields.get("amount"))
        if amount <= 0:
            raise ValueError("Amount must be positive")
    except ValueError:
        missing.append(FIELD_LABELS["amount"])

    if missing:
        raise InvalidSubmission("Missing or invalid fields: " + ", ".join(missing))

    try:
        return TransactionIn(
            budget_heading=_text(fields, "budget_heading"),
            outcome=_text(fields, "outcome"),
            activity=_text(fields, "activity"),
            budget_line=_text(fields, "budget_line"),
            description=_text(fields, "description"),
            partner=_text(fields, "partner"),
            entry_date=entry_date,
            amount=amount,
            currency=currency,
            pv_number=_text(fields, "pv_number") or None,
            use_custom_rate=_text(fields, "use_custom_rate").lower() in TRUTHY,
            usd_to_etb=parse_rate(fields.get("usd_to_etb")),
            eur_to_etb=parse_rate(fields.get("eur_to_etb")),
        )
    except ValidationError as exc:
        raise InvalidSubmission("Invalid transaction", debug=str(exc)) from exc


class CurrencyRateService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _cluster(self, name: str) -> Optional[Cluster]:
        return self.session.scalar(select(Cluster).where(Cluster.name == name))

    def config_for(self, cluster_name: Optional[str]) -> ClusterCurrencyConfig:
        defaults = CurrencyRates.defaults()
        if not cluster_name:
            return ClusterCurrencyConfig(cluster=None, rates=defaults)
        cluster = self._cluster(cluster_name)
        if not cluster:
            return ClusterCurrencyConfig(cluster=cluster_name, rates=defaults)

        rows = self.session.execute(
            select(CurrencyRate.from_currency, CurrencyRate.exchange_rate).where(
                CurrencyRate.cluster_id == cluster.id,
                CurrencyRate.to_currency == CurrencyCode.etb.value,
                CurrencyRate.is_active.is_(True),
            )
        ).all()
        stored = {row.from_currency.upper(): row.exchange_rate for row in rows}
        rates = CurrencyRates(
            usd_to_etb=Decimal(stored.get(CurrencyCode.usd.value) or defaults.usd_to_etb),
            eur_to_etb=Decimal(stored.get(CurrencyCode.eur.value) or defaults.eur_to_etb),
        )
        return ClusterCurrencyConfig(
            cluster=cluster.name,
            rates=rates,
            custom_rates_enabled=bool(cluster.custom_currency_enabled),
        )

    def set_rates(self, cluster_name: str, data: ClusterRatesIn) -> ClusterCurrencyConfig:
        name = cluster_name.strip()
        if not name:
            raise InvalidSubmission("Cluster name cannot be empty")
        cluster = self._cluster(name)
        if not cluster:
            cluster = Cluster(name=name)
            self.session.add(cluster)
        cluster.custom_currency_enabled = data.custom_currency_enabled
        self.session.flush()

        wanted = {
            CurrencyCode.usd.value: data.usd_to_etb,
            CurrencyCode.eur.value: data.eur_to_etb,
        }
        existing = {
            rate.from_currency: rate
            for rate in self.session.scalars(
                select(CurrencyRate).where(
                    CurrencyRate.cluster_id == cluster.id,
                    CurrencyRate.to_currency == CurrencyCode.etb.value,
                )
            )
        }
        for code, value in wanted.items():
            rate = existing.get(code)
            if rate is None:
                rate = CurrencyRate(
                    cluster_id=cluster.id,
                    from_currency=code,
                    to_currency=CurrencyCode.etb.value,
                    exchange_rate=value,
                )
                self.session.add(rate)
            else:
                rate.exchange_rate = value
                rate.is_active = True
        self.session.commit()
        logger.info(
            f"cluster_rates_set: cluster={name} usd_to_etb={data.usd_to_etb} "
            f"eur_to_etb={data.eur_to_etb} custom={data.custom_currency_enabled}"
        )
        return self.config_for(name)


class QuarterResolver:
    def __init__(self, session: Session, *, calendar_fallback: Optional[bool] = None) -> None:
        self.session = session
        if calendar_fallback is None:
            calendar_fallback = get_settings().quarter_calendar_fallback
        self.calendar_fallback = calendar_fallback

    def resolve(
        self, year: int, category: str, cluster: Optional[str], on_date: date
    ) -> LedgerRow:
        scope = LedgerScope(year, cluster)
        stmt = (
            select(LedgerRow)
            .where(
                *scope.where(LedgerRow),
                LedgerRow.category_name == category,
                LedgerRow.period_name.in_(QUARTER_VALUES),
                LedgerRow.start_date <= on_date,
                LedgerRow.end_date >= on_date,
            )
            .order_by(LedgerRow.id)
            .limit(2)
        )
        matches = self.session.scalars(stmt).all()
        if len(matches) > 1:
            logger.warning(
                f"quarter_overlap: {scope.describe()} category={category} date={on_date}"
            )
        if matches:
            return matches[0]

        if self.calendar_fallback:
            fallback = self.session.scalar(
                select(LedgerRow)
                .where(
                    *scope.where(LedgerRow),
                    LedgerRow.category_name == category,
                    LedgerRow.period_name == calendar_quarter(on_date).value,
                )
                .order_by(LedgerRow.id)
                .limit(1)
            )
            if fallback:
                logger.info(
                    f"quarter_calendar_fallback: {scope.describe()} category={category} "
                    f"date={on_date} period={fallback.period_name}"
                )
                return fallback

        detail = f"No budget period found for date {on_date}, category {category}, year {year}"
        if cluster:
            detail += f", cluster {cluster}"
        raise QuarterNotFound("No budget period found for the transaction date", debug=detail)


class LedgerAggregator:
    """Applies one transaction to a quarter row and refreshes every rollup in scope.

    Each step is a single UPDATE so concurrent writers never read-modify-write
    in Python. The caller owns the database transaction.
    """

    def __init__(self, session: Session, scope: LedgerScope) -> None:
        self.session = session
        self.scope = scope

    def apply(self, quarter_row: LedgerRow, amount: Decimal) -> LedgerRow:
        row_id = quarter_row.id
        category = quarter_row.category_name
        self._update_quarter(row_id, amount)
        self._recompute_annual(category)
        self._recompute_total()
        self._refresh_actual_plus_forecast()
        self.recompute_variance()
        self._set_certification(CertificationStatus.uncertified)
        logger.info(
            f"ledger_apply: {self.scope.describe()} category={category} "
            f"period={quarter_row.period_name} amount={amount}"
        )
        return self.reload(row_id)

    def reload(self, row_id: int) -> LedgerRow:
        stmt = (
            select(LedgerRow)
            .where(LedgerRow.id == row_id)
            .execution_options(populate_existing=True)
        )
        return self.session.scalars(stmt).one()

    def certify(self) -> int:
        return self._set_certification(CertificationStatus.certified)

    def _update_quarter(self, row_id: int, amount: Decimal) -> None:
        new_actual = func.coalesce(LedgerRow.actual, 0) + amount
        remaining = func.coalesce(LedgerRow.forecast, 0) - amount
        new_forecast = case((remaining > 0, remaining), else_=0)
        result = self.session.execute(
            update(LedgerRow)
            .where(LedgerRow.id == row_id)
            .values(
                actual=new_actual,
                forecast=new_forecast,
                actual_plus_forecast=new_actual + new_forecast,
            ),
            execution_options=SYNC,
        )
        if result.rowcount != 1:
            raise LedgerUpdateFailed(
                "Failed to update budget data", debug=f"quarter row {row_id} not updated"
            )

    def _sum_of(self, source, column: str, *criteria):
        col = getattr(source, column)
        # Correlated to the rollup row's own cluster; a cluster-less scope spans all clusters.
        return (
            select(func.coalesce(func.sum(func.coalesce(col, 0)), 0))
            .where(
                *self.scope.where(source),
                source.cluster.is_not_distinct_from(LedgerRow.cluster),
                *criteria,
            )
            .scalar_subquery()
        )

    def _recompute_annual(self, category: str) -> None:
        quarters = aliased(LedgerRow)
        criteria = (
            quarters.category_name == category,
            quarters.period_name.in_(QUARTER_VALUES),
        )
        self.session.execute(
            update(LedgerRow)
            .where(
                *self.scope.where(LedgerRow),
                LedgerRow.category_name == category,
                LedgerRow.period_name == PeriodName.annual_total.value,
            )
            .values(
                budget=self._sum_of(quarters, "budget", *criteria),
                actual=self._sum_of(quarters, "actual", *criteria),
                forecast=self._sum_of(quarters, "forecast", *criteria),
            ),
            execution_options=SYNC,
        )

    def _recompute_total(self) -> None:
        annuals = aliased(LedgerRow)
        criteria = (
            annuals.period_name == PeriodName.annual_total.value,
            annuals.category_name != TOTAL_CATEGORY,
        )
        self.session.execute(
            update(LedgerRow)
            .where(
                *self.scope.where(LedgerRow),
                LedgerRow.category_name == TOTAL_CATEGORY,
                LedgerRow.period_name == PeriodName.total.value,
            )
            .values(
                budget=self._sum_of(annuals, "budget", *criteria),
                actual=self._sum_of(annuals, "actual", *criteria),
                forecast=self._sum_of(annuals, "forecast", *criteria),
            ),
            execution_options=SYNC,
        )

    def _refresh_actual_plus_forecast(self) -> None:
        self.session.execute(
            update(LedgerRow)
            .where(*self.scope.where(LedgerRow))
            .values(
                actual_plus_forecast=func.coalesce(LedgerRow.actual, 0)
                + func.coalesce(LedgerRow.forecast, 0)
            ),
            execution_options=SYNC,
        )

    def recompute_variance(self) -> None:
        budget = LedgerRow.budget
        actual = func.coalesce(LedgerRow.actual, 0)
        variance = case(
            (budget > 0, func.round((budget - actual) * 100.0 / budget, 2)),
            ((budget == 0) & (actual > 0), -100),
            else_=0,
        )
        self.session.execute(
            update(LedgerRow)
            .where(*self.scope.where(LedgerRow))
            .values(variance_percentage=variance),
            execution_options=SYNC,
        )

    def _set_certification(self, status: CertificationStatus) -> int:
        result = self.session.execute(
            update(LedgerRow)
            .where(*self.scope.where(LedgerRow))
            .values(certified=status.value),
            execution_options=SYNC,
        )
        return result.rowcount or 0


class TransactionRecorder:
    def __init__(self, session: Session, features: Optional[SchemaFeatures] = None) -> None:
        self.session = session
        self.features = features or SchemaFeatures()
        self.table = TransactionRecord.__table__

    def _columns(self):
        if self.features.custom_rate_columns:
            return list(self.table.c)
        return [col for col in self.table.c if col.name not in CUSTOM_RATE_COLUMNS]

    def _insert_target(self) -> Table:
        if self.features.custom_rate_columns:
            return self.table
        # Older databases: reflect the live table so absent columns are never rendered.
        return Table(self.table.name, MetaData(), autoload_with=self.session.connection())

    def record(self, fields: Mapping[str, object], budget_id: Optional[int]) -> int:
        target = self._insert_target()
        now = datetime.utcnow()
        values = {"created_at": now, "updated_at": now, **fields, "budget_id": budget_id}
        result = self.session.execute(
            insert(target).values(**{k: v for k, v in values.items() if k in target.c})
        )
        return int(result.inserted_primary_key[0])

    def sync(self, record_id: int, row: LedgerRow) -> None:
        self.session.execute(
            update(TransactionRecord)
            .where(TransactionRecord.id == record_id)
            .values(
                budget_id=row.id,
                original_budget=row.budget,
                actual_spent=row.actual,
                forecast_amount=row.forecast,
                remaining_budget=row.forecast,
                variance_percentage=row.variance_percentage,
            ),
            execution_options=SYNC,
        )

    def get(self, record_id: int) -> TransactionRecordOut:
        columns = self._columns()
        row = self.session.execute(
            select(*columns).where(TransactionRecord.id == record_id)
        ).first()
        if row is None:
            raise LookupError("Transaction not found")
        data = {col.name: row._mapping[col] for col in columns}
        data["id"] = data.pop("PreviewID")
        return TransactionRecordOut(**data)


@dataclass(frozen=True)
class AppliedTransaction:
    record_id: int
    ledger_row: LedgerRow
    amount_converted: Decimal
    currency: CurrencyCode


class TransactionService:
    def __init__(
        self,
        session: Session,
        context: Optional[RequestContext] = None,
        features: Optional[SchemaFeatures] = None,
    ) -> None:
        self.session = session
        self.context = context or RequestContext()
        self.features = features or SchemaFeatures()

    def _rates(self, request: CustomRateRequest) -> EffectiveRates:
        config = CurrencyRateService(self.session).config_for(self.context.cluster)
        applied = effective_rates(config, request)
        if request.use_custom_rate and not applied.custom_applied:
            logger.info(
                f"custom_rates_ignored: cluster={self.context.cluster} "
                f"enabled={config.custom_rates_enabled}"
            )
        return applied

    def apply(
        self,
        data: TransactionIn,
        rates: EffectiveRates,
        *,
        source: RecordSource = RecordSource.form,
    ) -> AppliedTransaction:
        """Record and aggregate one transaction without committing."""
        category = normalize_category(data.budget_heading)
        year = data.entry_date.year
        quarter = QuarterResolver(self.session).resolve(
            year, category, self.context.cluster, data.entry_date
        )
        ledger_currency = coerce_currency(quarter.currency, CurrencyCode.etb)
        amount = convert(data.amount, data.currency, ledger_currency, rates.rates)

        recorder = TransactionRecorder(self.session, self.features)
        record_id = recorder.record(
            {
                "user_id": self.context.user_id,
                "cluster": self.context.cluster,
                "source": source.value,
                "budget_heading": data.budget_heading,
                "outcome": data.outcome,
                "activity": data.activity,
                "budget_line": data.budget_line,
                "description": data.description,
                "partner": data.partner,
                "pv_number": data.pv_number,
                "entry_date": data.entry_date,
                "amount": amount,
                "currency": ledger_currency.value,
                "quarter_period": quarter.period_name,
                "category_name": category,
                "original_budget": quarter.budget,
                "remaining_budget": quarter.forecast,
                "actual_spent": quarter.actual,
                "forecast_amount": quarter.forecast,
                "variance_percentage": quarter.variance_percentage,
                "use_custom_rate": rates.custom_applied,
                "usd_to_etb": rates.usd_to_etb if rates.custom_applied else None,
                "eur_to_etb": rates.eur_to_etb if rates.custom_applied else None,
            },
            quarter.id,
        )
        aggregator = LedgerAggregator(self.session, LedgerScope(year, self.context.cluster))
        updated = aggregator.apply(quarter, amount)
        recorder.sync(record_id, updated)
        return AppliedTransaction(
            record_id=record_id,
            ledger_row=updated,
            amount_converted=amount,
            currency=ledger_currency,
        )

    def submit(self, data: TransactionIn) -> SubmissionOut:
        rates = self._rates(
            CustomRateRequest(
                use_custom_rate=data.use_custom_rate,
                usd_to_etb=data.usd_to_etb,
                eur_to_etb=data.eur_to_etb,
            )
        )
        try:
            applied = self.apply(data, rates)
            self.session.commit()
        except LedgerError:
            self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("transaction_submit_failed")
            raise LedgerUpdateFailed("Failed to update budget data", debug=str(exc)) from exc

        return SubmissionOut(
            message="Transaction saved successfully",
            insert_id=applied.record_id,
            budget_id=applied.ledger_row.id,
            quarter_period=applied.ledger_row.period_name,
            amount_converted=float(applied.amount_converted),
            amount_etb=float(data.amount),
            currency=applied.currency.value,
            currency_rates=rates.rates.as_dict(),
            use_custom_rate=rates.custom_applied,
        )

    def check_budget(self, data: BudgetCheckIn) -> BudgetCheckOut:
        rates = self._rates(
            CustomRateRequest(
                use_custom_rate=data.use_custom_rate,
                usd_to_etb=data.usd_to_etb,
                eur_to_etb=data.eur_to_etb,
            )
        ).rates
        category = normalize_category(data.budget_heading)
        quarter = QuarterResolver(self.session).resolve(
            data.year, category, self.context.cluster, data.on_date
        )
        currency = coerce_currency(quarter.currency, CurrencyCode.etb)
        available = max((quarter.budget or Decimal("0")) - (quarter.actual or Decimal("0")), Decimal("0"))
        entered = convert(data.amount, CurrencyCode.etb, currency, rates)
        return BudgetCheckOut(
            budget_available=float(available),
            budget_available_etb=float(convert(available, currency, CurrencyCode.etb, rates)),
            entered_amount=float(entered),
            entered_amount_etb=float(data.amount),
            currency=currency.value,
            currency_rates=rates.as_dict(),
        )

    def get(self, record_id: int) -> TransactionRecordOut:
        return TransactionRecorder(self.session, self.features).get(record_id)


class ImportService:
    """Bulk import: per-row validation failures are skipped, storage failures abort."""

    def __init__(
        self,
        session: Session,
        context: Optional[RequestContext] = None,
        features: Optional[SchemaFeatures] = None,
    ) -> None:
        self.session = session
        self.context = context or RequestContext()
        self.features = features or SchemaFeatures()

    def import_file(self, filename: str, content: bytes) -> ImportResultOut:
        try:
            _, rows = read_sheet(filename, content)
        except SheetFormatError as exc:
            raise InvalidSubmission(str(exc)) from exc

        transactions = TransactionService(self.session, self.context, self.features)
        config = CurrencyRateService(self.session).config_for(self.context.cluster)
        imported: list[dict[str, str]] = []
        errors: list[str] = []
        try:
            for row_number, raw in rows:
                try:
                    # Sheet amounts default to USD when the currency cell is blank or unknown.
                    currency = coerce_currency(raw.get("currency"), CurrencyCode.usd)
                    data = build_transaction(raw, currency=currency)
                    usd = parse_rate(raw.get("usd_to_etb_rate"))
                    eur = parse_rate(raw.get("eur_to_etb_rate"))
                    rates = effective_rates(
                        config,
                        CustomRateRequest(
                            use_custom_rate=usd is not None or eur is not None,
                            usd_to_etb=usd,
                            eur_to_etb=eur,
                        ),
                    )
                    transactions.apply(data, rates, source=RecordSource.import_)
                except (InvalidSubmission, QuarterNotFound) as exc:
                    errors.append(f"Row {row_number}: {exc.message}")
                    logger.info(f"import_row_skipped: row={row_number} reason={exc.message}")
                    continue
                imported.append(dict(raw, currency=currency.value))
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("import_failed")
            raise LedgerUpdateFailed(
                "Error importing transactions", debug=str(exc)
            ) from exc
        except LedgerUpdateFailed:
            self.session.rollback()
            raise

        message = f"Successfully imported {len(imported)} transactions"
        if errors:
            message += f" with {len(errors)} errors"
        logger.info(
            f"import_done: cluster={self.context.cluster} imported={len(imported)} "
            f"errors={len(errors)}"
        )
        return ImportResultOut(
            success=True,
            message=message,
            imported_count=len(imported),
            errors=errors,
            imported_data=imported,
        )


class LedgerService:
    def __init__(self, session: Session, context: Optional[RequestContext] = None) -> None:
        self.session = session
        self.context = context or RequestContext()

    def rows_for_year(self, year: int) -> list[LedgerRow]:
        scope = LedgerScope(year, self.context.cluster)
        rows = self.session.scalars(
            select(LedgerRow).where(*scope.where(LedgerRow))
        ).all()
        return sorted(
            rows,
            key=lambda r: (
                r.category_name == TOTAL_CATEGORY,
                r.category_name,
                PERIOD_ORDER.get(r.period_name, len(PERIOD_ORDER)),
            ),
        )

    def certify(self, year: int) -> int:
        scope = LedgerScope(year, self.context.cluster)
        try:
            count = LedgerAggregator(self.session, scope).certify()
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("certify_failed")
            raise LedgerUpdateFailed("Failed to certify budget", debug=str(exc)) from exc
        logger.info(f"ledger_certified: {scope.describe()} rows={count}")
        return count
