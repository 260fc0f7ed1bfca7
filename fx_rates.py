from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional, Union

from config import get_settings
from models import CurrencyCode

RATE_KEYS = {
    CurrencyCode.usd: "USD_to_ETB",
    CurrencyCode.eur: "EUR_to_ETB",
}

Number = Union[Decimal, int, float, str]


def _to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


@dataclass(frozen=True)
class CurrencyRates:
    usd_to_etb: Decimal = Decimal("55.0")
    eur_to_etb: Decimal = Decimal("60.0")

    @classmethod
    def defaults(cls) -> "CurrencyRates":
        settings = get_settings()
        return cls(
            usd_to_etb=settings.default_usd_to_etb,
            eur_to_etb=settings.default_eur_to_etb,
        )

    @classmethod
    def from_mapping(cls, rates: Optional[Mapping[str, Number]]) -> "CurrencyRates":
        base = cls()
        if not rates:
            return base
        usd = rates.get(RATE_KEYS[CurrencyCode.usd])
        eur = rates.get(RATE_KEYS[CurrencyCode.eur])
        return cls(
            usd_to_etb=_to_decimal(usd) if usd is not None else base.usd_to_etb,
            eur_to_etb=_to_decimal(eur) if eur is not None else base.eur_to_etb,
        )

    def to_etb_rate(self, currency: CurrencyCode) -> Decimal:
        if currency == CurrencyCode.etb:
            return Decimal("1")
        if currency == CurrencyCode.usd:
            return self.usd_to_etb
        return self.eur_to_etb

    def as_dict(self) -> dict[str, float]:
        return {
            RATE_KEYS[CurrencyCode.usd]: float(self.usd_to_etb),
            RATE_KEYS[CurrencyCode.eur]: float(self.eur_to_etb),
        }


@dataclass(frozen=True)
class ClusterCurrencyConfig:
    cluster: Optional[str]
    rates: CurrencyRates
    custom_rates_enabled: bool = False


@dataclass(frozen=True)
class CustomRateRequest:
    use_custom_rate: bool = False
    usd_to_etb: Optional[Decimal] = None
    eur_to_etb: Optional[Decimal] = None


@dataclass(frozen=True)
class EffectiveRates:
    rates: CurrencyRates
    custom_applied: bool
    usd_to_etb: Optional[Decimal] = None
    eur_to_etb: Optional[Decimal] = None


def coerce_currency(
    value: Optional[str], fallback: CurrencyCode = CurrencyCode.etb
) -> CurrencyCode:
    try:
        return CurrencyCode((value or "").strip().upper())
    except ValueError:
        return fallback


def parse_rate(value: object) -> Optional[Decimal]:
    """Positive decimal rate, or None for blank / non-numeric / non-positive input."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    try:
        rate = Decimal(text)
    except InvalidOperation:
        return None
    if not rate.is_finite() or rate <= 0:
        return None
    return rate


def convert(
    amount: Number,
    from_currency: Union[CurrencyCode, str],
    to_currency: Union[CurrencyCode, str],
    rates: Union[CurrencyRates, Mapping[str, Number], None] = None,
) -> Decimal:
    """Convert through ETB: source -> ETB by its rate, ETB -> target by the inverse.

    No rounding is applied; storage columns carry the precision.
    """
    value = _to_decimal(amount)
    source = CurrencyCode(from_currency)
    target = CurrencyCode(to_currency)
    if source == target:
        return value
    if not isinstance(rates, CurrencyRates):
        rates = CurrencyRates.from_mapping(rates)
    etb_amount = value * rates.to_etb_rate(source)
    if target == CurrencyCode.etb:
        return etb_amount
    return etb_amount / rates.to_etb_rate(target)


def effective_rates(
    config: ClusterCurrencyConfig, request: Optional[CustomRateRequest]
) -> EffectiveRates:
    """Apply request rates only when the cluster allows it and the caller asked."""
    if not request or not request.use_custom_rate or not config.custom_rates_enabled:
        return EffectiveRates(rates=config.rates, custom_applied=False)
    rates = config.rates
    if request.usd_to_etb is not None and request.usd_to_etb > 0:
        rates = replace(rates, usd_to_etb=request.usd_to_etb)
    if request.eur_to_etb is not None and request.eur_to_etb > 0:
        rates = replace(rates, eur_to_etb=request.eur_to_etb)
    return EffectiveRates(
        rates=rates,
        custom_applied=True,
        usd_to_etb=request.usd_to_etb,
        eur_to_etb=request.eur_to_etb,
    )
