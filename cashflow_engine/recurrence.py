from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from cashflow_engine.date_utils import (
    MAX_WEEKEND_SHIFT_DAYS,
    add_months,
    adjust_for_weekend,
    clamp_to_month,
    months_between,
)
from cashflow_engine.errors import (
    DuplicateOverrideError,
    ExpansionLimitExceeded,
    RuleExpansionError,
)
from cashflow_engine.models import Occurrence, RecurrenceOverride, RecurringRule

logger = logging.getLogger(__name__)

MAX_EXPANSION_ITERATIONS = 10_000
MAX_CATCHUP_ITERATIONS = 366

DAY_STEPS = {"daily": 1, "weekly": 7}
MONTH_STEPS = {"monthly": 1, "yearly": 12}

OverrideIndex = Dict[Tuple[str, date], RecurrenceOverride]


@dataclass(frozen=True)
class ExpansionFailure:
    rule_id: str
    reason: str


@dataclass(frozen=True)
class ExpansionResult:
    occurrences: List[Occurrence] = field(default_factory=list)
    failures: List[ExpansionFailure] = field(default_factory=list)

    @property
    def expanded_count(self) -> int:
        return len({occurrence.rule_id for occurrence in self.occurrences})


def expand(
    rule: RecurringRule,
    window_start: date,
    window_end: date,
    overrides: Iterable[RecurrenceOverride] = (),
    *,
    max_iterations: int = MAX_EXPANSION_ITERATIONS,
) -> List[Occurrence]:
    """Materialize the occurrences of one rule inside a date window.

    Dates are scheduled from ``rule.next_due_date`` when it lies after
    ``rule.start_date``, otherwise from ``rule.start_date``; monthly and
    yearly steps stay anchored on ``due_day_of_month`` (or the start day).
    Each date is moved off weekends according to ``weekend_adjustment`` and
    then matched against overrides keyed by ``(rule.id, scheduled date)``.
    """
    if window_start > window_end:
        raise ValueError("window_start must be on or before window_end.")
    index = index_overrides(o for o in overrides if o.rule_id == rule.id)
    return _expand(rule, window_start, window_end, index, max_iterations)


def expand_rules(
    rules: Iterable[RecurringRule],
    window_start: date,
    window_end: date,
    overrides: Iterable[RecurrenceOverride] = (),
    *,
    max_iterations: int = MAX_EXPANSION_ITERATIONS,
) -> ExpansionResult:
    if window_start > window_end:
        raise ValueError("window_start must be on or before window_end.")
    index = index_overrides(overrides)
    occurrences: List[Occurrence] = []
    failures: List[ExpansionFailure] = []
    for rule in rules:
        try:
            occurrences.extend(
                _expand(rule, window_start, window_end, index, max_iterations)
            )
        except RuleExpansionError as exc:
            logger.warning("Skipping rule %s: %s", exc.rule_id, exc.reason)
            failures.append(ExpansionFailure(rule_id=exc.rule_id, reason=exc.reason))

    occurrences.sort(key=lambda occurrence: (occurrence.effective_date, occurrence.rule_id))
    return ExpansionResult(occurrences=occurrences, failures=failures)


def index_overrides(overrides: Iterable[RecurrenceOverride]) -> OverrideIndex:
    index: OverrideIndex = {}
    for override in overrides:
        key = (override.rule_id, override.original_date)
        if key in index:
            raise DuplicateOverrideError(
                f"More than one override for rule {override.rule_id} "
                f"on {override.original_date.isoformat()}."
            )
        index[key] = override
    return index


def next_occurrence_after(
    rule: RecurringRule,
    after: date,
    *,
    max_iterations: int = MAX_EXPANSION_ITERATIONS,
) -> Optional[date]:
    """Return the first scheduled date strictly after ``after``, if any."""
    normalized = _validate_rule(rule)
    scan_start = after - timedelta(days=MAX_WEEKEND_SHIFT_DAYS)
    for scheduled in _scheduled_dates(normalized, scan_start, None, max_iterations):
        if scheduled > after:
            return scheduled
    return None


def advance_rule(rule: RecurringRule, posted_date: date) -> RecurringRule:
    """Return a copy of ``rule`` whose cursor points past ``posted_date``.

    When the series has ended the cursor is moved past ``end_date`` so the
    rule no longer produces occurrences.
    """
    upcoming = next_occurrence_after(rule, posted_date)
    if upcoming is None:
        upcoming = (rule.end_date or posted_date) + timedelta(days=1)
    return replace(rule, next_due_date=upcoming)


def overdue_occurrences(
    rule: RecurringRule,
    today: date,
    overrides: Iterable[RecurrenceOverride] = (),
) -> List[Occurrence]:
    """Occurrences between the rule's cursor and yesterday that were never posted."""
    window_start = rule.next_due_date or rule.start_date
    window_end = today - timedelta(days=1)
    if window_start > window_end:
        return []
    return expand(
        rule,
        window_start,
        window_end,
        overrides,
        max_iterations=MAX_CATCHUP_ITERATIONS,
    )


def occurrences_due_between(
    occurrences: Iterable[Occurrence], start: date, end: date
) -> List[Occurrence]:
    # effective date wins over the original schedule date
    return [
        occurrence
        for occurrence in occurrences
        if start <= occurrence.effective_date <= end
    ]


def _expand(
    rule: RecurringRule,
    window_start: date,
    window_end: date,
    override_index: OverrideIndex,
    max_iterations: int,
) -> List[Occurrence]:
    normalized = _validate_rule(rule)
    scan_start = window_start - timedelta(days=MAX_WEEKEND_SHIFT_DAYS)
    scan_end = window_end + timedelta(days=MAX_WEEKEND_SHIFT_DAYS)
    occurrences: List[Occurrence] = []
    for scheduled in _scheduled_dates(normalized, scan_start, scan_end, max_iterations):
        if scheduled < window_start or scheduled > window_end:
            continue
        override = override_index.get((normalized.id, scheduled))
        if override is not None and override.is_skipped:
            continue
        occurrences.append(_materialize(normalized, scheduled, override))
    return occurrences


def _materialize(
    rule: RecurringRule,
    scheduled: date,
    override: Optional[RecurrenceOverride],
) -> Occurrence:
    effective_date = scheduled
    amount = rule.amount
    description = rule.description
    if override is not None:
        if override.date is not None:
            effective_date = override.date
        if override.amount is not None:
            amount = override.amount
        if override.description:
            description = override.description
    return Occurrence(
        rule_id=rule.id,
        original_date=scheduled,
        effective_date=effective_date,
        amount=amount,
        kind=rule.kind,
        currency=rule.currency,
        source_account_id=rule.source_account_id,
        destination_account_id=rule.destination_account_id,
        description=description,
        is_overridden=override is not None,
        is_synthetic=rule.is_synthetic,
    )


def _validate_rule(rule: RecurringRule) -> RecurringRule:
    if rule.interval_count < 1:
        raise RuleExpansionError(rule.id, "interval_count must be at least 1.")
    try:
        return rule.validate()
    except ValueError as exc:
        raise RuleExpansionError(rule.id, str(exc)) from exc


def _scheduled_dates(
    rule: RecurringRule,
    scan_start: date,
    scan_end: Optional[date],
    max_iterations: int,
) -> Iterator[date]:
    """Yield weekend-adjusted schedule dates whose raw date is in the scan range.

    ``scan_end`` of ``None`` leaves the scan open ended; the caller stops
    consuming, or ``end_date`` / ``max_iterations`` end it.
    """
    if rule.frequency in DAY_STEPS:
        nth_date, index = _day_series(rule, scan_start)
    else:
        nth_date, index = _month_series(rule, scan_start)

    iterations = 0
    previous: Optional[date] = None
    while True:
        raw_date = nth_date(index)
        if previous is not None and raw_date <= previous:
            raise RuleExpansionError(rule.id, "schedule does not advance.")
        if scan_end is not None and raw_date > scan_end:
            return
        if rule.end_date is not None and raw_date > rule.end_date:
            return
        iterations += 1
        if iterations > max_iterations:
            raise ExpansionLimitExceeded(rule.id, max_iterations)
        yield adjust_for_weekend(raw_date, rule.weekend_adjustment)
        previous = raw_date
        index += 1


def _series_cursor(rule: RecurringRule) -> Optional[date]:
    if rule.next_due_date is not None and rule.next_due_date > rule.start_date:
        return rule.next_due_date
    return None


def _day_series(rule: RecurringRule, scan_start: date):
    step_days = DAY_STEPS[rule.frequency] * rule.interval_count
    series_start = _series_cursor(rule) or rule.start_date

    def nth_date(index: int) -> date:
        return series_start + timedelta(days=step_days * index)

    index = 0
    if scan_start > series_start:
        days_between = (scan_start - series_start).days
        index = (days_between + step_days - 1) // step_days
    return nth_date, index


def _month_series(rule: RecurringRule, scan_start: date):
    step_months = MONTH_STEPS[rule.frequency] * rule.interval_count
    anchor_day = rule.due_day_of_month or rule.start_date.day
    cursor = _series_cursor(rule)
    series_start = cursor or rule.start_date
    first_offset = 0
    if cursor is None and clamp_to_month(series_start.year, series_start.month, anchor_day) < series_start:
        first_offset = 1

    def nth_date(index: int) -> date:
        if index == 0 and cursor is not None:
            return cursor
        return add_months(series_start, first_offset + step_months * index, anchor_day)

    index = max(0, (months_between(series_start, scan_start) - first_offset) // step_months)
    while nth_date(index) < scan_start:
        index += 1
    return nth_date, index
