from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from cashflow_engine.currency_conversion import RateProvider, StaticRateProvider, to_eur
from cashflow_engine.date_utils import add_months, iter_days
from cashflow_engine.models import (
    Account,
    Bill,
    BillStatus,
    BillType,
    FinancialGoal,
    ForecastItem,
    ForecastItemKind,
    ForecastPoint,
    GoalType,
    Occurrence,
    Transaction,
    TransactionType,
    ZERO,
    coerce_amount,
)

logger = logging.getLogger(__name__)

LOWEST_BALANCE_PERIODS: Tuple[Tuple[str, int], ...] = (
    ("Next 7 Days", 7),
    ("Next 30 Days", 30),
    ("Next 90 Days", 90),
    ("Next Year", 365),
)


class ForecastHorizon:
    THREE_MONTHS = "3M"
    SIX_MONTHS = "6M"
    END_OF_YEAR = "EOY"
    ONE_YEAR = "1Y"
    values = {THREE_MONTHS, SIX_MONTHS, END_OF_YEAR, ONE_YEAR}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().upper()
        if normalized not in cls.values:
            raise ValueError("Forecast horizon must be one of 3M, 6M, EOY, or 1Y.")
        return normalized


@dataclass(frozen=True)
class BalanceProjection:
    points: List[ForecastPoint] = field(default_factory=list)
    lowest_point: Optional[ForecastPoint] = None
    warnings: List[str] = field(default_factory=list)
    items: List[ForecastItem] = field(default_factory=list)

    @property
    def goes_negative(self) -> bool:
        return self.lowest_point is not None and self.lowest_point.balance < ZERO


@dataclass(frozen=True)
class LowestBalanceForecast:
    period: str
    days: int
    lowest_balance: Optional[Decimal]
    date: Optional[date]


def horizon_end_date(horizon: str, today: date) -> date:
    normalized = ForecastHorizon.validate(horizon)
    if normalized == ForecastHorizon.THREE_MONTHS:
        return add_months(today, 3, today.day)
    if normalized == ForecastHorizon.SIX_MONTHS:
        return add_months(today, 6, today.day)
    if normalized == ForecastHorizon.END_OF_YEAR:
        return date(today.year, 12, 31)
    return add_months(today, 12, today.day)


def current_balance(
    accounts: Iterable[Account], rate_provider: Optional[RateProvider] = None
) -> Decimal:
    provider = rate_provider or StaticRateProvider()
    return sum((to_eur(account.balance, account.currency, provider) for account in accounts), ZERO)


def project(
    accounts: Sequence[Account],
    transactions: Iterable[Transaction],
    occurrences: Iterable[Occurrence],
    horizon_end: date,
    today: Optional[date] = None,
    window_start: Optional[date] = None,
    rate_provider: Optional[RateProvider] = None,
    bills: Iterable[Bill] = (),
    goals: Iterable[FinancialGoal] = (),
) -> BalanceProjection:
    """Daily EUR balance of an account set from ``window_start`` to ``horizon_end``.

    Days up to ``today`` are reconstructed backwards from the accounts'
    stored balances using posted transactions; later days roll the balance
    forward with projected occurrences, unpaid bills and one-time goals.
    Today's point is the stored balance.
    """
    today = today or date.today()
    window_start = min(window_start or today, today)
    provider = rate_provider or StaticRateProvider()

    if not accounts:
        return BalanceProjection(warnings=["No accounts selected for the forecast."])
    if horizon_end < today:
        message = (
            f"Forecast horizon {horizon_end.isoformat()} is before today "
            f"({today.isoformat()}); nothing to project."
        )
        logger.warning(message)
        return BalanceProjection(warnings=[message])

    account_ids = {account.id for account in accounts}
    opening = current_balance(accounts, provider)

    history = _historical_points(
        opening, transactions, account_ids, window_start, today, provider
    )
    items = [
        item
        for item in forecast_items(occurrences, account_ids, bills, goals)
        if today < item.date <= horizon_end
    ]
    projected = _projected_points(opening, items, today, horizon_end, provider)
    lowest = min(projected, key=lambda point: point.balance) if projected else None
    return BalanceProjection(points=history + projected, lowest_point=lowest, items=items)


def lowest_balance_forecasts(
    accounts: Sequence[Account],
    occurrences: Sequence[Occurrence],
    today: Optional[date] = None,
    periods: Iterable[Tuple[str, int]] = LOWEST_BALANCE_PERIODS,
    rate_provider: Optional[RateProvider] = None,
    bills: Sequence[Bill] = (),
    goals: Sequence[FinancialGoal] = (),
) -> List[LowestBalanceForecast]:
    today = today or date.today()
    forecasts: List[LowestBalanceForecast] = []
    for label, days in periods:
        projection = project(
            accounts,
            (),
            occurrences,
            today + timedelta(days=days),
            today=today,
            rate_provider=rate_provider,
            bills=bills,
            goals=goals,
        )
        lowest = projection.lowest_point
        forecasts.append(
            LowestBalanceForecast(
                period=label,
                days=days,
                lowest_balance=lowest.balance if lowest else None,
                date=lowest.date if lowest else None,
            )
        )
    return forecasts


def forecast_items(
    occurrences: Iterable[Occurrence],
    account_ids: Set[str],
    bills: Iterable[Bill] = (),
    goals: Iterable[FinancialGoal] = (),
) -> List[ForecastItem]:
    """Tag every balance movement that touches ``account_ids``, sorted by date.

    Movements with no effect on the selected accounts are left out.
    """
    items: List[ForecastItem] = []
    for occurrence in occurrences:
        delta = occurrence_delta(occurrence, account_ids)
        if delta == ZERO:
            continue
        items.append(
            ForecastItem(
                kind=ForecastItemKind.RECURRING,
                date=occurrence.effective_date,
                amount=delta,
                currency=occurrence.currency,
                description=occurrence.description,
                source_id=occurrence.rule_id,
            )
        )
    for bill in bills:
        item = bill_item(bill, account_ids)
        if item is not None:
            items.append(item)
    for goal in goals:
        item = goal_item(goal, account_ids)
        if item is not None:
            items.append(item)
    items.sort(key=lambda item: (item.date, item.amount))
    return items


def occurrence_delta(occurrence: Occurrence, account_ids: Set[str]) -> Decimal:
    """Signed effect of one occurrence on the balance of an account set."""
    amount = abs(occurrence.amount)
    source_selected = occurrence.source_account_id in account_ids
    if occurrence.kind == "transfer":
        destination_selected = occurrence.destination_account_id in account_ids
        if source_selected and not destination_selected:
            return -amount
        if destination_selected and not source_selected:
            return amount
        return ZERO
    if not source_selected:
        return ZERO
    return -amount if occurrence.kind == "expense" else amount


def bill_item(bill: Bill, account_ids: Set[str]) -> Optional[ForecastItem]:
    if BillStatus.validate(bill.status) != BillStatus.UNPAID:
        return None
    if bill.account_id and bill.account_id not in account_ids:
        return None
    amount = abs(coerce_amount(bill.amount))
    if amount == ZERO:
        return None
    if BillType.validate(bill.type) == BillType.PAYMENT:
        amount = -amount
    return ForecastItem(
        kind=ForecastItemKind.BILL,
        date=bill.due_date,
        amount=amount,
        currency=bill.currency,
        description=bill.description,
        source_id=bill.id,
    )


def goal_item(goal: FinancialGoal, account_ids: Set[str]) -> Optional[ForecastItem]:
    # recurring goals are funded through their own rules
    if GoalType.validate(goal.type) != GoalType.ONE_TIME or goal.date is None:
        return None
    if goal.payment_account_id and goal.payment_account_id not in account_ids:
        return None
    remaining = goal.remaining
    if remaining <= ZERO:
        return None
    if TransactionType.validate(goal.transaction_type) == "expense":
        remaining = -remaining
    return ForecastItem(
        kind=ForecastItemKind.GOAL,
        date=goal.date,
        amount=remaining,
        currency=goal.currency,
        description=goal.name,
        source_id=goal.id,
    )


def _historical_points(
    opening: Decimal,
    transactions: Iterable[Transaction],
    account_ids: Set[str],
    window_start: date,
    today: date,
    provider: RateProvider,
) -> List[ForecastPoint]:
    daily_totals: Dict[date, Decimal] = {}
    for txn in transactions:
        if txn.account_id not in account_ids or not window_start < txn.date <= today:
            continue
        daily_totals[txn.date] = daily_totals.get(txn.date, ZERO) + to_eur(
            txn.signed_amount, txn.currency, provider
        )

    points: List[ForecastPoint] = []
    balance = opening
    day = today
    while day >= window_start:
        points.append(ForecastPoint(date=day, balance=balance))
        balance -= daily_totals.get(day, ZERO)
        day -= timedelta(days=1)
    points.reverse()
    return points


def _projected_points(
    opening: Decimal,
    items: Iterable[ForecastItem],
    today: date,
    horizon_end: date,
    provider: RateProvider,
) -> List[ForecastPoint]:
    daily_deltas: Dict[date, Decimal] = {}
    for item in items:
        if not today < item.date <= horizon_end:
            continue
        daily_deltas[item.date] = daily_deltas.get(item.date, ZERO) + to_eur(
            item.amount, item.currency, provider
        )

    points: List[ForecastPoint] = []
    balance = opening
    for day in iter_days(today + timedelta(days=1), horizon_end):
        balance += daily_deltas.get(day, ZERO)
        points.append(ForecastPoint(date=day, balance=balance))
    return points
