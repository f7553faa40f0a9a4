from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping, Protocol

from cashflow_engine.errors import UnsupportedCurrencyError
from cashflow_engine.models import coerce_amount

BASE_CURRENCY = "EUR"

DEFAULT_RATES: dict[str, Decimal] = {
    "EUR": Decimal("1"),
    "USD": Decimal("0.93"),
    "GBP": Decimal("1.18"),
    "BTC": Decimal("65000"),
    "RON": Decimal("0.20"),
}


class RateProvider(Protocol):
    def get_rate(self, currency: str) -> Decimal:
        ...


@dataclass(frozen=True)
class StaticRateProvider:
    """Deterministic, in-memory FX rates.

    Rates are expressed as EUR per 1 unit of the currency.
    """

    rates: Mapping[str, Decimal] = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self,
            "rates",
            {
                normalize_currency(code): coerce_amount(rate)
                for code, rate in (self.rates or DEFAULT_RATES).items()
            },
        )

    def get_rate(self, currency: str) -> Decimal:
        normalized = normalize_currency(currency)
        try:
            return self.rates[normalized]
        except KeyError as exc:
            raise UnsupportedCurrencyError(f"Unsupported currency: {normalized}") from exc


def convert_amount(
    amount: Decimal | int | float | str,
    source_currency: str,
    target_currency: str,
    rate_provider: RateProvider | None = None,
) -> Decimal:
    """Convert a monetary amount between currencies through the EUR base."""
    provider = rate_provider or StaticRateProvider()
    normalized_source = normalize_currency(source_currency)
    normalized_target = normalize_currency(target_currency)
    coerced_amount = coerce_amount(amount)

    if normalized_source == normalized_target:
        return coerced_amount

    amount_in_eur = coerced_amount * provider.get_rate(normalized_source)
    return amount_in_eur / provider.get_rate(normalized_target)


def to_eur(
    amount: Decimal | int | float | str,
    currency: str,
    rate_provider: RateProvider | None = None,
) -> Decimal:
    return convert_amount(amount, currency, BASE_CURRENCY, rate_provider)


def normalize_currency(value: str) -> str:
    normalized = value.strip().upper()
    if len(normalized) != 3 or not normalized.isalpha():
        raise ValueError("Currency must be a 3-letter code.")
    return normalized
