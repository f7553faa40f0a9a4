from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Mapping, Optional

ZERO = Decimal("0")


class RuleKind:
    values = {"income", "expense", "transfer"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Invalid recurring rule kind.")
        return normalized


class Frequency:
    values = {"daily", "weekly", "monthly", "yearly"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = "".join(ch for ch in value.strip().lower() if ch.isalnum())
        if normalized not in cls.values:
            raise ValueError("Only daily, weekly, monthly, or yearly rules are supported.")
        return normalized


class WeekendAdjustment:
    values = {"before", "after", "on"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Weekend adjustment must be before, after, or on.")
        return normalized


class TransactionType:
    values = {"income", "expense"}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Invalid transaction type.")
        return normalized


class AccountType:
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT_CARD = "credit card"
    LOAN = "loan"
    LENDING = "lending"
    PROPERTY = "property"
    OTHER = "other"
    values = {CHECKING, SAVINGS, CREDIT_CARD, LOAN, LENDING, PROPERTY, OTHER}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = " ".join(value.strip().lower().replace("_", " ").split())
        if normalized not in cls.values:
            raise ValueError("Invalid account type.")
        return normalized


class PaymentStatus:
    PAID = "Paid"
    OVERDUE = "Overdue"
    UPCOMING = "Upcoming"
    values = {PAID, OVERDUE, UPCOMING}


class BillStatus:
    PAID = "paid"
    UNPAID = "unpaid"
    OVERDUE = "overdue"
    values = {PAID, UNPAID, OVERDUE}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Bill status must be paid, unpaid, or overdue.")
        return normalized


class BillType:
    PAYMENT = "payment"
    DEPOSIT = "deposit"
    values = {PAYMENT, DEPOSIT}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in cls.values:
            raise ValueError("Bill type must be payment or deposit.")
        return normalized


class GoalType:
    ONE_TIME = "one-time"
    RECURRING = "recurring"
    values = {ONE_TIME, RECURRING}

    @classmethod
    def validate(cls, value: str) -> str:
        normalized = value.strip().lower().replace("_", "-").replace(" ", "-")
        if normalized not in cls.values:
            raise ValueError("Goal type must be one-time or recurring.")
        return normalized


class ForecastItemKind:
    RECURRING = "Recurring"
    BILL = "Bill/Payment"
    GOAL = "Financial Goal"
    values = {RECURRING, BILL, GOAL}


@dataclass(frozen=True)
class Account:
    id: str
    name: str
    type: str
    balance: Decimal
    currency: str = "EUR"
    linked_account_id: Optional[str] = None

    # Loan / lending
    principal_amount: Optional[Decimal] = None
    interest_rate_pct: Optional[Decimal] = None
    duration_months: Optional[int] = None
    loan_start_date: Optional[date] = None
    monthly_payment: Optional[Decimal] = None
    payment_day_of_month: Optional[int] = None

    # Credit card
    statement_start_day: Optional[int] = None
    payment_due_day: Optional[int] = None
    settlement_account_id: Optional[str] = None

    # Property
    purchase_date: Optional[date] = None
    property_tax_amount: Optional[Decimal] = None
    property_tax_date: Optional[date] = None
    insurance_amount: Optional[Decimal] = None
    insurance_frequency: Optional[str] = None
    insurance_payment_date: Optional[date] = None
    hoa_fee_amount: Optional[Decimal] = None
    hoa_fee_frequency: Optional[str] = None
    hoa_fee_start_date: Optional[date] = None
    is_rental: bool = False
    rental_income_amount: Optional[Decimal] = None
    rental_income_frequency: Optional[str] = None
    rental_income_start_date: Optional[date] = None


@dataclass(frozen=True)
class Transaction:
    id: str
    account_id: str
    date: date
    amount: Decimal
    type: str
    currency: str = "EUR"
    category: Optional[str] = None
    description: Optional[str] = None
    transfer_id: Optional[str] = None
    principal_amount: Optional[Decimal] = None
    interest_amount: Optional[Decimal] = None

    @property
    def signed_amount(self) -> Decimal:
        """Amount with the sign implied by ``type`` (expenses negative)."""
        magnitude = abs(coerce_amount(self.amount))
        if self.type.strip().lower() == "expense":
            return -magnitude
        return magnitude


@dataclass(frozen=True)
class RecurringRule:
    id: str
    source_account_id: str
    amount: Decimal
    start_date: date
    kind: str = "expense"
    frequency: str = "monthly"
    currency: str = "EUR"
    destination_account_id: Optional[str] = None
    category: Optional[str] = None
    description: str = ""
    interval_count: int = 1
    end_date: Optional[date] = None
    next_due_date: Optional[date] = None
    due_day_of_month: Optional[int] = None
    weekend_adjustment: str = "on"
    is_synthetic: bool = False

    def validate(self) -> "RecurringRule":
        """Return a copy with normalized enums, raising ValueError on bad data."""
        kind = RuleKind.validate(self.kind)
        frequency = Frequency.validate(self.frequency)
        adjustment = WeekendAdjustment.validate(self.weekend_adjustment)
        if coerce_amount(self.amount) <= ZERO:
            raise ValueError("Rule amount must be greater than zero.")
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("Rule end_date must be on or after start_date.")
        if self.due_day_of_month is not None and not 1 <= self.due_day_of_month <= 31:
            raise ValueError("due_day_of_month must be between 1 and 31.")
        if kind == "transfer" and not self.destination_account_id:
            raise ValueError("Transfer rules require a destination account.")
        return RecurringRule(
            id=self.id,
            source_account_id=self.source_account_id,
            amount=coerce_amount(self.amount),
            start_date=self.start_date,
            kind=kind,
            frequency=frequency,
            currency=self.currency,
            destination_account_id=self.destination_account_id,
            category=self.category,
            description=self.description,
            interval_count=self.interval_count,
            end_date=self.end_date,
            next_due_date=self.next_due_date,
            due_day_of_month=self.due_day_of_month,
            weekend_adjustment=adjustment,
            is_synthetic=self.is_synthetic,
        )


@dataclass(frozen=True)
class RecurrenceOverride:
    rule_id: str
    original_date: date
    date: Optional[date] = None
    amount: Optional[Decimal] = None
    description: Optional[str] = None
    is_skipped: bool = False


@dataclass(frozen=True)
class Occurrence:
    rule_id: str
    original_date: date
    effective_date: date
    amount: Decimal
    kind: str
    currency: str
    source_account_id: str
    description: str = ""
    destination_account_id: Optional[str] = None
    is_overridden: bool = False
    is_synthetic: bool = False


@dataclass(frozen=True)
class ScheduledPayment:
    installment_number: int
    date: date
    total_payment: Decimal
    principal: Decimal
    interest: Decimal
    outstanding_balance: Decimal
    status: str = PaymentStatus.UPCOMING
    transaction_id: Optional[str] = None


@dataclass(frozen=True)
class LoanPaymentOverride:
    date: Optional[date] = None
    total_payment: Optional[Decimal] = None
    principal: Optional[Decimal] = None
    interest: Optional[Decimal] = None
    outstanding_balance: Optional[Decimal] = None
    status: Optional[str] = None


LoanPaymentOverrides = Mapping[str, Mapping[int, LoanPaymentOverride]]


@dataclass(frozen=True)
class Bill:
    """A one-off bill or expected deposit that is not backed by a rule."""

    id: str
    description: str
    amount: Decimal
    due_date: date
    currency: str = "EUR"
    type: str = BillType.PAYMENT
    status: str = BillStatus.UNPAID
    account_id: Optional[str] = None


@dataclass(frozen=True)
class FinancialGoal:
    id: str
    name: str
    amount: Decimal
    current_amount: Decimal = ZERO
    currency: str = "EUR"
    type: str = GoalType.ONE_TIME
    transaction_type: str = "expense"
    date: Optional[date] = None
    payment_account_id: Optional[str] = None

    @property
    def remaining(self) -> Decimal:
        return coerce_amount(self.amount) - coerce_amount(self.current_amount)


@dataclass(frozen=True)
class ForecastItem:
    """One dated balance movement of the forecast, tagged by where it came from.

    ``amount`` is already signed for the selected accounts and kept in the
    item's own currency. ``source_id`` is the rule, bill or goal id.
    """

    kind: str
    date: date
    amount: Decimal
    currency: str
    description: str
    source_id: str


@dataclass(frozen=True)
class ForecastPoint:
    date: date
    balance: Decimal


def coerce_amount(amount: Decimal | int | float | str) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))
