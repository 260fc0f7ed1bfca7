from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import CurrencyCode


class TransactionIn(BaseModel):
    budget_heading: str = Field(..., min_length=1, max_length=255)
    outcome: str = Field(..., min_length=1)
    activity: str = Field(..., min_length=1)
    budget_line: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    partner: str = Field(..., min_length=1)
    entry_date: date
    amount: Decimal = Field(..., gt=0)
    # Currency the amount is denominated in; form entry is always ETB.
    currency: CurrencyCode = CurrencyCode.etb
    pv_number: Optional[str] = Field(default=None, max_length=100)
    use_custom_rate: bool = False
    usd_to_etb: Optional[Decimal] = None
    eur_to_etb: Optional[Decimal] = None


class BudgetCheckIn(BaseModel):
    budget_heading: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(..., ge=0)
    on_date: date
    year: int = Field(..., ge=1970, le=3000)
    use_custom_rate: bool = False
    usd_to_etb: Optional[Decimal] = None
    eur_to_etb: Optional[Decimal] = None


class BudgetCheckOut(BaseModel):
    success: bool = True
    budget_available: float
    budget_available_etb: float
    entered_amount: float
    entered_amount_etb: float
    currency: str
    currency_rates: dict[str, float]


class SubmissionOut(BaseModel):
    success: bool = True
    message: str
    insert_id: int
    budget_id: int
    quarter_period: str
    amount_converted: float
    amount_etb: float
    currency: str
    currency_rates: dict[str, float]
    use_custom_rate: bool


class ImportResultOut(BaseModel):
    success: bool
    message: str
    imported_count: int
    errors: list[str] = Field(default_factory=list)
    imported_data: list[dict[str, str]] = Field(default_factory=list)


class ClusterRatesIn(BaseModel):
    usd_to_etb: Decimal = Field(..., gt=0)
    eur_to_etb: Decimal = Field(..., gt=0)
    custom_currency_enabled: bool = False


class LedgerRowOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    year: int
    category_name: str
    cluster: Optional[str]
    period_name: str
    budget: Optional[Decimal]
    actual: Optional[Decimal]
    forecast: Optional[Decimal]
    actual_plus_forecast: Optional[Decimal]
    variance_percentage: Optional[Decimal]
    currency: str
    certified: str
    start_date: Optional[date]
    end_date: Optional[date]


class TransactionRecordOut(BaseModel):
    id: int
    user_id: Optional[int]
    cluster: Optional[str]
    source: str
    budget_heading: str
    outcome: Optional[str]
    activity: Optional[str]
    budget_line: Optional[str]
    description: Optional[str]
    partner: Optional[str]
    pv_number: Optional[str]
    entry_date: date
    amount: Decimal
    currency: str
    quarter_period: Optional[str]
    category_name: Optional[str]
    original_budget: Optional[Decimal]
    remaining_budget: Optional[Decimal]
    actual_spent: Optional[Decimal]
    forecast_amount: Optional[Decimal]
    variance_percentage: Optional[Decimal]
    budget_id: Optional[int]
    use_custom_rate: bool = False
    usd_to_etb: Optional[Decimal] = None
    eur_to_etb: Optional[Decimal] = None
