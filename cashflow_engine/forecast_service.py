from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from cashflow_engine.balance_projection import (
    LOWEST_BALANCE_PERIODS,
    BalanceProjection,
    LowestBalanceForecast,
    lowest_balance_forecasts,
    project,
)
from cashflow_engine.currency_conversion import RateProvider
from cashflow_engine.models import (
    Account,
    Bill,
    FinancialGoal,
    ForecastItem,
    LoanPaymentOverrides,
    Occurrence,
    RecurrenceOverride,
    RecurringRule,
    Transaction,
)
from cashflow_engine.recurrence import (
    MAX_EXPANSION_ITERATIONS,
    ExpansionFailure,
    ExpansionResult,
    expand_rules,
)
from cashflow_engine.synthetic_schedules import synthesize, synthesize_loan_overrides

logger = logging.getLogger(__name__)

SCAN_LOOKBACK_DAYS = 3


@dataclass(frozen=True)
class ForecastReport:
    projection: BalanceProjection
    occurrences: List[Occurrence] = field(default_factory=list)
    lowest_balances: List[LowestBalanceForecast] = field(default_factory=list)
    failures: List[ExpansionFailure] = field(default_factory=list)

    @property
    def items(self) -> List[ForecastItem]:
        return list(self.projection.items)

    @property
    def warnings(self) -> List[str]:
        return list(self.projection.warnings)


def schedule_inputs(
    accounts: Sequence[Account],
    transactions: Sequence[Transaction],
    rules: Iterable[RecurringRule],
    overrides: Iterable[RecurrenceOverride] = (),
    loan_overrides: Optional[LoanPaymentOverrides] = None,
    today: Optional[date] = None,
) -> Tuple[List[RecurringRule], List[RecurrenceOverride]]:
    """User rules and overrides joined with the synthetic ones.

    Loan schedule rows become overrides of the synthetic loan rules; an
    override the user set for the same occurrence takes precedence.
    """
    today = today or date.today()
    user_overrides = list(overrides)
    taken = {(override.rule_id, override.original_date) for override in user_overrides}
    schedule_rows = [
        override
        for override in synthesize_loan_overrides(accounts, transactions, loan_overrides, today)
        if (override.rule_id, override.original_date) not in taken
    ]
    return (
        [*rules, *synthesize(accounts, transactions, loan_overrides, today)],
        [*user_overrides, *schedule_rows],
    )


def scheduled_items(
    accounts: Sequence[Account],
    transactions: Sequence[Transaction],
    rules: Iterable[RecurringRule],
    window_start: date,
    window_end: date,
    overrides: Iterable[RecurrenceOverride] = (),
    loan_overrides: Optional[LoanPaymentOverrides] = None,
    today: Optional[date] = None,
    max_iterations: int = MAX_EXPANSION_ITERATIONS,
) -> ExpansionResult:
    """User rules plus synthetic rules, expanded over one window."""
    all_rules, all_overrides = schedule_inputs(
        accounts, transactions, rules, overrides, loan_overrides, today
    )
    return expand_rules(
        all_rules,
        window_start,
        window_end,
        all_overrides,
        max_iterations=max_iterations,
    )


def rescheduled_occurrences(
    rules: Sequence[RecurringRule],
    overrides: Iterable[RecurrenceOverride],
    scan_start: date,
    today: date,
    window_end: date,
    max_iterations: int = MAX_EXPANSION_ITERATIONS,
) -> List[Occurrence]:
    """Occurrences scheduled before ``scan_start`` that an override moved past ``today``.

    Only the rules owning such overrides are expanded again, over the days
    before ``scan_start``; the regular scan already reports their failures.
    """
    moved = [
        override
        for override in overrides
        if not override.is_skipped
        and override.date is not None
        and override.original_date < scan_start
        and today < override.date <= window_end
    ]
    if not moved:
        return []
    moved_rule_ids = {override.rule_id for override in moved}
    catch_up = expand_rules(
        [rule for rule in rules if rule.id in moved_rule_ids],
        min(override.original_date for override in moved),
        scan_start - timedelta(days=1),
        moved,
        max_iterations=max_iterations,
    )
    return [
        occurrence
        for occurrence in catch_up.occurrences
        if occurrence.is_overridden and today < occurrence.effective_date <= window_end
    ]


def build_forecast(
    accounts: Sequence[Account],
    transactions: Sequence[Transaction],
    rules: Iterable[RecurringRule],
    horizon_end: date,
    overrides: Iterable[RecurrenceOverride] = (),
    loan_overrides: Optional[LoanPaymentOverrides] = None,
    account_ids: Optional[Iterable[str]] = None,
    today: Optional[date] = None,
    window_start: Optional[date] = None,
    rate_provider: Optional[RateProvider] = None,
    max_iterations: int = MAX_EXPANSION_ITERATIONS,
    bills: Sequence[Bill] = (),
    goals: Sequence[FinancialGoal] = (),
) -> ForecastReport:
    """Run the whole pipeline: synthesize, expand, then project balances.

    Synthetic rules are derived from every account, while the projection
    and the lowest-balance summaries only cover ``account_ids`` (all
    accounts when omitted).
    """
    today = today or date.today()
    selected_ids = set(account_ids) if account_ids is not None else None
    selected = [
        account
        for account in accounts
        if selected_ids is None or account.id in selected_ids
    ]

    longest_period = max(days for _, days in LOWEST_BALANCE_PERIODS)
    expansion_end = max(horizon_end, today + timedelta(days=longest_period))
    expansion_start = min(today - timedelta(days=SCAN_LOOKBACK_DAYS), expansion_end)
    all_rules, all_overrides = schedule_inputs(
        accounts, transactions, rules, overrides, loan_overrides, today
    )
    expansion = expand_rules(
        all_rules,
        expansion_start,
        expansion_end,
        all_overrides,
        max_iterations=max_iterations,
    )
    if expansion.failures:
        logger.info(
            "Forecast built with %d failed rule(s): %s",
            len(expansion.failures),
            ", ".join(failure.rule_id for failure in expansion.failures),
        )

    occurrences = expansion.occurrences
    failed_ids = {failure.rule_id for failure in expansion.failures}
    late = rescheduled_occurrences(
        [rule for rule in all_rules if rule.id not in failed_ids],
        all_overrides,
        expansion_start,
        today,
        expansion_end,
        max_iterations,
    )
    if late:
        logger.debug("Picked up %d occurrence(s) rescheduled into the forecast", len(late))
        occurrences = sorted(
            [*occurrences, *late],
            key=lambda occurrence: (occurrence.effective_date, occurrence.rule_id),
        )

    projection = project(
        selected,
        transactions,
        occurrences,
        horizon_end,
        today=today,
        window_start=window_start,
        rate_provider=rate_provider,
        bills=bills,
        goals=goals,
    )
    lowest = lowest_balance_forecasts(
        selected,
        occurrences,
        today=today,
        rate_provider=rate_provider,
        bills=bills,
        goals=goals,
    ) if selected else []
    return ForecastReport(
        projection=projection,
        occurrences=[
            occurrence
            for occurrence in occurrences
            if occurrence.effective_date <= horizon_end
        ],
        lowest_balances=lowest,
        failures=expansion.failures,
    )
