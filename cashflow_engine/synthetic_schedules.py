from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

from cashflow_engine.amortization import (
    LoanTerms,
    annuity_payment,
    build_schedule,
    installment_date,
    loan_terms,
)
from cashflow_engine.date_utils import add_months, adjust_for_weekend, clamp_to_month
from cashflow_engine.models import (
    Account,
    AccountType,
    Frequency,
    LoanPaymentOverrides,
    PaymentStatus,
    RecurrenceOverride,
    RecurringRule,
    ScheduledPayment,
    Transaction,
    ZERO,
    coerce_amount,
)

logger = logging.getLogger(__name__)

LOAN_WEEKEND_ADJUSTMENT = "after"


@dataclass(frozen=True)
class StatementPeriod:
    start: date
    end: date
    payment_due: date


@dataclass(frozen=True)
class StatementCycles:
    previous: StatementPeriod
    current: StatementPeriod


def synthesize(
    accounts: Sequence[Account],
    transactions: Sequence[Transaction],
    loan_overrides: Optional[LoanPaymentOverrides] = None,
    today: Optional[date] = None,
) -> List[RecurringRule]:
    """Derive the recurring rules implied by loan, credit card and property accounts."""
    today = today or date.today()
    return [
        *synthesize_loan_rules(accounts, transactions, loan_overrides, today),
        *synthesize_credit_card_rules(accounts, transactions, today),
        *synthesize_property_rules(accounts),
    ]


def synthesize_loan_rules(
    accounts: Iterable[Account],
    transactions: Sequence[Transaction],
    loan_overrides: Optional[LoanPaymentOverrides] = None,
    today: Optional[date] = None,
) -> List[RecurringRule]:
    return [
        rule
        for rule, _ in _loan_payment_plans(accounts, transactions, loan_overrides, today)
    ]


def synthesize_loan_overrides(
    accounts: Iterable[Account],
    transactions: Sequence[Transaction],
    loan_overrides: Optional[LoanPaymentOverrides] = None,
    today: Optional[date] = None,
) -> List[RecurrenceOverride]:
    """Occurrence overrides that carry the reconciled loan schedule.

    The synthetic loan rule repeats the standard payment; any installment
    whose reconciled row differs (final remainder, overridden amount or
    date, zero rows after payoff, rows already marked Paid) is corrected
    through an override keyed on the rule's scheduled date.
    """
    overrides: List[RecurrenceOverride] = []
    for _, plan_overrides in _loan_payment_plans(
        accounts, transactions, loan_overrides, today
    ):
        overrides.extend(plan_overrides)
    return overrides


def _loan_payment_plans(
    accounts: Iterable[Account],
    transactions: Sequence[Transaction],
    loan_overrides: Optional[LoanPaymentOverrides],
    today: Optional[date],
) -> Iterator[Tuple[RecurringRule, List[RecurrenceOverride]]]:
    today = today or date.today()
    loan_overrides = loan_overrides or {}
    for account in accounts:
        if account.type not in {AccountType.LOAN, AccountType.LENDING}:
            continue
        terms = loan_terms(account)
        if terms is None or not account.linked_account_id:
            logger.debug("Loan account %s lacks structural data; no payments synthesized", account.id)
            continue

        schedule = build_schedule(
            account, transactions, loan_overrides.get(account.id), today
        )
        pending = [
            row
            for row in schedule
            if row.status != PaymentStatus.PAID and row.total_payment > ZERO
        ]
        if not pending:
            continue

        is_lending = account.type == AccountType.LENDING
        amount = coerce_amount(
            account.monthly_payment
            or annuity_payment(terms.principal, terms.annual_rate_pct, terms.duration_months)
        )
        label = "Lending Repayment" if is_lending else "Loan Payment"
        rule = RecurringRule(
            id=f"loan-pmt-{account.id}",
            source_account_id=account.id if is_lending else account.linked_account_id,
            destination_account_id=account.linked_account_id if is_lending else account.id,
            amount=amount,
            currency=account.currency,
            kind="transfer",
            frequency="monthly",
            description=f"{label}: {account.name}",
            start_date=installment_date(terms, 1),
            end_date=installment_date(terms, terms.duration_months),
            next_due_date=installment_date(terms, pending[0].installment_number),
            due_day_of_month=terms.payment_day,
            weekend_adjustment=LOAN_WEEKEND_ADJUSTMENT,
            is_synthetic=True,
        )
        first_pending = pending[0].installment_number
        yield rule, [
            override
            for override in (
                _installment_override(rule, terms, row)
                for row in schedule
                if row.installment_number >= first_pending
            )
            if override is not None
        ]


def _installment_override(
    rule: RecurringRule, terms: LoanTerms, row: ScheduledPayment
) -> Optional[RecurrenceOverride]:
    planned_date = installment_date(terms, row.installment_number)
    scheduled = adjust_for_weekend(planned_date, rule.weekend_adjustment)
    if row.status == PaymentStatus.PAID or row.total_payment <= ZERO:
        return RecurrenceOverride(rule_id=rule.id, original_date=scheduled, is_skipped=True)
    moved = row.date != planned_date
    repriced = row.total_payment != rule.amount
    if not moved and not repriced:
        return None
    return RecurrenceOverride(
        rule_id=rule.id,
        original_date=scheduled,
        date=row.date if moved else None,
        amount=row.total_payment if repriced else None,
    )


def calculate_statement_periods(
    statement_start_day: int, payment_due_day: int, today: date
) -> StatementCycles:
    """Billing cycles around ``today``: the last closed one and the open one."""
    this_month_start = clamp_to_month(today.year, today.month, statement_start_day)
    if today >= this_month_start:
        current_start = this_month_start
    else:
        current_start = add_months(today, -1, statement_start_day)
    previous_start = add_months(current_start, -1, statement_start_day)

    return StatementCycles(
        previous=_statement_period(previous_start, statement_start_day, payment_due_day),
        current=_statement_period(current_start, statement_start_day, payment_due_day),
    )


def statement_balance(
    card: Account,
    period_start: date,
    period_end: date,
    transactions: Sequence[Transaction],
) -> Tuple[Decimal, Decimal]:
    """Return ``(statement balance, amount paid)`` for one billing cycle.

    Payments from the card's settlement account are reported as paid and
    left out of the balance; everything else (purchases, refunds, other
    income) moves the balance.
    """
    by_transfer = {}
    for txn in transactions:
        if txn.transfer_id:
            by_transfer.setdefault(txn.transfer_id, []).append(txn)

    balance = ZERO
    paid = ZERO
    for txn in transactions:
        if txn.account_id != card.id or not period_start <= txn.date <= period_end:
            continue
        if _is_settlement_payment(card, txn, by_transfer):
            paid += txn.signed_amount
            continue
        balance += txn.signed_amount
    return balance, paid


def synthesize_credit_card_rules(
    accounts: Iterable[Account],
    transactions: Sequence[Transaction],
    today: Optional[date] = None,
) -> List[RecurringRule]:
    today = today or date.today()
    rules: List[RecurringRule] = []
    for account in accounts:
        if account.type != AccountType.CREDIT_CARD:
            continue
        if not (
            account.statement_start_day
            and account.payment_due_day
            and account.settlement_account_id
        ):
            logger.debug("Credit card %s lacks billing cycle data; no payments synthesized", account.id)
            continue

        cycles = calculate_statement_periods(
            account.statement_start_day, account.payment_due_day, today
        )
        for period, label in ((cycles.previous, "Closed"), (cycles.current, "Current")):
            if period.payment_due < today:
                continue
            balance, _ = statement_balance(account, period.start, period.end, transactions)
            if balance >= ZERO:
                continue
            due = period.payment_due
            rules.append(
                RecurringRule(
                    id=f"cc-pmt-{account.id}-{due.isoformat()}",
                    source_account_id=account.settlement_account_id,
                    destination_account_id=account.id,
                    amount=abs(balance),
                    currency=account.currency,
                    kind="transfer",
                    frequency="monthly",
                    description=f"Payment for {account.name} ({label} Statement)",
                    start_date=due,
                    end_date=due,
                    weekend_adjustment="after",
                    is_synthetic=True,
                )
            )
    return rules


def synthesize_property_rules(accounts: Iterable[Account]) -> List[RecurringRule]:
    rules: List[RecurringRule] = []
    for account in accounts:
        if account.type != AccountType.PROPERTY:
            continue
        if not account.linked_account_id:
            logger.debug("Property %s has no payment account; no costs synthesized", account.id)
            continue
        for cost in _property_costs(account):
            rule = _property_rule(account, *cost)
            if rule is not None:
                rules.append(rule)
    return rules


def _property_costs(account: Account):
    yield ("tax", "expense", account.property_tax_amount, "yearly", account.property_tax_date, "Property Tax")
    yield (
        "insurance",
        "expense",
        account.insurance_amount,
        account.insurance_frequency or "yearly",
        account.insurance_payment_date or account.purchase_date,
        "Property Insurance",
    )
    yield (
        "hoa",
        "expense",
        account.hoa_fee_amount,
        account.hoa_fee_frequency or "monthly",
        account.hoa_fee_start_date or account.purchase_date,
        "HOA Fee",
    )
    if account.is_rental:
        yield (
            "rent",
            "income",
            account.rental_income_amount,
            account.rental_income_frequency or "monthly",
            account.rental_income_start_date or account.purchase_date,
            "Rental Income",
        )


def _property_rule(
    account: Account,
    cost_key: str,
    kind: str,
    amount: Optional[Decimal],
    frequency: str,
    start_date: Optional[date],
    label: str,
) -> Optional[RecurringRule]:
    if not amount or amount <= ZERO or start_date is None:
        return None
    try:
        normalized_frequency = Frequency.validate(frequency)
    except ValueError:
        logger.debug("Property %s has an invalid %s frequency %r", account.id, cost_key, frequency)
        return None
    return RecurringRule(
        id=f"prop-{cost_key}-{account.id}",
        source_account_id=account.linked_account_id,
        amount=Decimal(str(amount)),
        currency=account.currency,
        kind=kind,
        frequency=normalized_frequency,
        category="Housing",
        description=f"{label}: {account.name}",
        start_date=start_date,
        weekend_adjustment="on",
        is_synthetic=True,
    )


def _statement_period(
    start: date, statement_start_day: int, payment_due_day: int
) -> StatementPeriod:
    end = add_months(start, 1, statement_start_day) - timedelta(days=1)
    payment_due = clamp_to_month(end.year, end.month, payment_due_day)
    if payment_due <= end:
        payment_due = add_months(end, 1, payment_due_day)
    return StatementPeriod(start=start, end=end, payment_due=payment_due)


def _is_settlement_payment(card: Account, txn: Transaction, by_transfer) -> bool:
    if txn.type.strip().lower() != "income" or not txn.transfer_id:
        return False
    for counterpart in by_transfer.get(txn.transfer_id, ()):
        if counterpart.id != txn.id and counterpart.account_id == card.settlement_account_id:
            return True
    return False
