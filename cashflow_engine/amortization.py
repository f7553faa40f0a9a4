from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Mapping, Optional

from cashflow_engine.date_utils import add_months
from cashflow_engine.models import (
    Account,
    AccountType,
    LoanPaymentOverride,
    PaymentStatus,
    ScheduledPayment,
    Transaction,
    ZERO,
    coerce_amount,
)

CENT = Decimal("0.01")
MONTHS_PER_YEAR = Decimal("12")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class LoanTerms:
    principal: Decimal
    annual_rate_pct: Decimal
    duration_months: int
    start_date: date
    payment_day: int
    monthly_payment: Optional[Decimal] = None

    @property
    def monthly_rate(self) -> Decimal:
        return self.annual_rate_pct / HUNDRED / MONTHS_PER_YEAR


def loan_terms(account: Account) -> Optional[LoanTerms]:
    """Return the structural loan data of an account, or None when incomplete."""
    if account.type not in {AccountType.LOAN, AccountType.LENDING}:
        return None
    if (
        not account.principal_amount
        or account.principal_amount <= ZERO
        or not account.duration_months
        or account.duration_months <= 0
        or account.loan_start_date is None
        or account.interest_rate_pct is None
        or account.interest_rate_pct < ZERO
    ):
        return None
    return LoanTerms(
        principal=coerce_amount(account.principal_amount),
        annual_rate_pct=coerce_amount(account.interest_rate_pct),
        duration_months=account.duration_months,
        start_date=account.loan_start_date,
        payment_day=account.payment_day_of_month or account.loan_start_date.day,
        monthly_payment=account.monthly_payment,
    )


def annuity_payment(
    principal: Decimal, annual_rate_pct: Decimal, months: int
) -> Decimal:
    """Fixed monthly payment that fully amortizes ``principal`` over ``months``."""
    if months <= 0:
        raise ValueError("months must be greater than zero.")
    principal = coerce_amount(principal)
    monthly_rate = coerce_amount(annual_rate_pct) / HUNDRED / MONTHS_PER_YEAR
    if monthly_rate == ZERO:
        return _round(principal / months)
    growth = (1 + monthly_rate) ** months
    return _round(principal * monthly_rate * growth / (growth - 1))


def installment_date(terms: LoanTerms, installment_number: int) -> date:
    return add_months(terms.start_date, installment_number, terms.payment_day)


def loan_payment_transactions(
    account: Account, transactions: Iterable[Transaction]
) -> List[Transaction]:
    """Posted payments toward the loan, oldest first.

    Payments are the loan-side legs of transfers: money flowing into a loan
    account, or out of a lending account.
    """
    payment_type = "income" if account.type == AccountType.LOAN else "expense"
    payments = [
        txn
        for txn in transactions
        if txn.account_id == account.id
        and txn.transfer_id
        and txn.type.strip().lower() == payment_type
    ]
    payments.sort(key=lambda txn: (txn.date, txn.id))
    return payments


def build_schedule(
    account: Account,
    transactions: Iterable[Transaction],
    overrides: Optional[Mapping[int, LoanPaymentOverride]] = None,
    today: Optional[date] = None,
) -> List[ScheduledPayment]:
    """Build the installment schedule of a loan and reconcile it with payments.

    Amounts are kept in cents: interest is rounded per installment and the
    balance is reduced by the rounded principal, so the principal column sums
    to the loan principal exactly.
    """
    terms = loan_terms(account)
    if terms is None:
        return []
    today = today or date.today()
    overrides = overrides or {}
    payments = loan_payment_transactions(account, transactions)
    if terms.monthly_payment:
        standard_payment = coerce_amount(terms.monthly_payment)
    else:
        standard_payment = annuity_payment(
            terms.principal, terms.annual_rate_pct, terms.duration_months
        )

    schedule: List[ScheduledPayment] = []
    balance = terms.principal
    for number in range(1, terms.duration_months + 1):
        override = overrides.get(number)
        row_date = installment_date(terms, number)
        status = PaymentStatus.UPCOMING
        transaction_id = None
        interest = _round(balance * terms.monthly_rate)
        is_final = number == terms.duration_months

        if payments:
            payment = payments.pop(0)
            status = PaymentStatus.PAID
            transaction_id = payment.id
            row_date = payment.date
            principal, interest = _split_posted_payment(payment, interest)
        elif balance <= ZERO:
            principal = interest = ZERO
        else:
            total = standard_payment
            if override is not None and override.total_payment is not None:
                total = coerce_amount(override.total_payment)
            principal = total - interest
            if is_final or principal > balance:
                principal = balance
            if row_date < today:
                status = PaymentStatus.OVERDUE

        if override is not None:
            if override.principal is not None:
                principal = coerce_amount(override.principal)
            if override.interest is not None:
                interest = coerce_amount(override.interest)
            if override.date is not None:
                row_date = override.date
            if override.status in PaymentStatus.values:
                status = override.status

        principal = min(max(principal, ZERO), max(balance, ZERO))
        balance = max(balance - principal, ZERO)
        if override is not None and override.outstanding_balance is not None:
            balance = min(balance, max(coerce_amount(override.outstanding_balance), ZERO))

        schedule.append(
            ScheduledPayment(
                installment_number=number,
                date=row_date,
                total_payment=_round(principal + interest),
                principal=_round(principal),
                interest=_round(interest),
                outstanding_balance=_round(balance),
                status=status,
                transaction_id=transaction_id,
            )
        )
    return schedule


def outstanding_balance(schedule: Iterable[ScheduledPayment]) -> Decimal:
    """Principal plus interest still owed on installments not marked Paid."""
    remaining = sum(
        (row.total_payment for row in schedule if row.status != PaymentStatus.PAID),
        ZERO,
    )
    return max(remaining, ZERO)


def total_principal(schedule: Iterable[ScheduledPayment]) -> Decimal:
    return sum((row.principal for row in schedule), ZERO)


def _split_posted_payment(payment: Transaction, computed_interest: Decimal):
    amount = abs(coerce_amount(payment.amount))
    if payment.principal_amount is not None or payment.interest_amount is not None:
        principal = coerce_amount(payment.principal_amount or ZERO)
        interest = coerce_amount(payment.interest_amount or ZERO)
        return principal, interest
    interest = min(computed_interest, amount)
    return amount - interest, interest


def _round(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)
