import datetime
import logging
from dataclasses import asdict
from datetime import date
from decimal import Decimal

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from cashflow_engine.amortization import build_schedule, outstanding_balance
from cashflow_engine.balance_projection import ForecastHorizon, horizon_end_date
from cashflow_engine.config import load_settings
from cashflow_engine.currency_conversion import StaticRateProvider
from cashflow_engine.errors import CashflowEngineError, ExpansionLimitExceeded
from cashflow_engine.forecast_service import build_forecast, scheduled_items
from cashflow_engine.models import (
    Account,
    AccountType,
    Bill,
    BillStatus,
    BillType,
    FinancialGoal,
    Frequency,
    GoalType,
    LoanPaymentOverride,
    PaymentStatus,
    RecurrenceOverride,
    RecurringRule,
    RuleKind,
    Transaction,
    TransactionType,
    WeekendAdjustment,
)
from cashflow_engine.transfer_matching import (
    TransferSuggestion,
    confirm_suggestion,
    find_candidates,
)

settings = load_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

FX_PROVIDER = StaticRateProvider()


@app.on_event("startup")
def log_startup() -> None:
    logger.info(
        "Cashflow engine API ready (expansion cap %d iterations)",
        settings.max_expansion_iterations,
    )


class AccountPayload(BaseModel):
    id: str
    name: str
    type: str
    balance: Decimal
    currency: str = "EUR"
    linked_account_id: str | None = None
    principal_amount: Decimal | None = None
    interest_rate_pct: Decimal | None = None
    duration_months: int | None = None
    loan_start_date: date | None = None
    monthly_payment: Decimal | None = None
    payment_day_of_month: int | None = None
    statement_start_day: int | None = None
    payment_due_day: int | None = None
    settlement_account_id: str | None = None
    purchase_date: date | None = None
    property_tax_amount: Decimal | None = None
    property_tax_date: date | None = None
    insurance_amount: Decimal | None = None
    insurance_frequency: str | None = None
    insurance_payment_date: date | None = None
    hoa_fee_amount: Decimal | None = None
    hoa_fee_frequency: str | None = None
    hoa_fee_start_date: date | None = None
    is_rental: bool = False
    rental_income_amount: Decimal | None = None
    rental_income_frequency: str | None = None
    rental_income_start_date: date | None = None

    @classmethod
    def validate_payload(cls, payload: "AccountPayload") -> "AccountPayload":
        payload.type = AccountType.validate(payload.type)
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Account name required.")
        return payload

    def to_account(self) -> Account:
        return Account(**self.validate_payload(self).model_dump())


class TransactionPayload(BaseModel):
    id: str
    account_id: str
    date: date
    amount: Decimal
    type: str
    currency: str = "EUR"
    category: str | None = None
    description: str | None = None
    transfer_id: str | None = None
    principal_amount: Decimal | None = None
    interest_amount: Decimal | None = None

    @classmethod
    def validate_payload(cls, payload: "TransactionPayload") -> "TransactionPayload":
        payload.type = TransactionType.validate(payload.type)
        if payload.category is not None:
            payload.category = payload.category.strip()
        return payload

    def to_transaction(self) -> Transaction:
        return Transaction(**self.validate_payload(self).model_dump())


class RecurringRulePayload(BaseModel):
    id: str
    source_account_id: str
    destination_account_id: str | None = None
    kind: str = "expense"
    amount: Decimal
    currency: str = "EUR"
    category: str | None = None
    description: str = ""
    frequency: str = "monthly"
    interval_count: int = 1
    start_date: date
    end_date: date | None = None
    next_due_date: date | None = None
    due_day_of_month: int | None = None
    weekend_adjustment: str = "on"

    @classmethod
    def validate_payload(cls, payload: "RecurringRulePayload") -> "RecurringRulePayload":
        payload.kind = RuleKind.validate(payload.kind)
        payload.frequency = Frequency.validate(payload.frequency)
        payload.weekend_adjustment = WeekendAdjustment.validate(payload.weekend_adjustment)
        payload.description = payload.description.strip()
        return payload

    def to_rule(self) -> RecurringRule:
        # interval and date consistency are checked per rule during expansion
        return RecurringRule(**self.validate_payload(self).model_dump())


class OverridePayload(BaseModel):
    rule_id: str
    original_date: date
    date: datetime.date | None = None
    amount: Decimal | None = None
    description: str | None = None
    is_skipped: bool = False

    def to_override(self) -> RecurrenceOverride:
        return RecurrenceOverride(**self.model_dump())


class LoanOverridePayload(BaseModel):
    installment_number: int
    date: datetime.date | None = None
    total_payment: Decimal | None = None
    principal: Decimal | None = None
    interest: Decimal | None = None
    outstanding_balance: Decimal | None = None
    status: str | None = None

    @classmethod
    def validate_payload(cls, payload: "LoanOverridePayload") -> "LoanOverridePayload":
        if payload.installment_number < 1:
            raise ValueError("Installment numbers start at 1.")
        if payload.status is not None and payload.status not in PaymentStatus.values:
            raise ValueError("Status must be Paid, Overdue, or Upcoming.")
        return payload

    def to_override(self) -> LoanPaymentOverride:
        data = self.validate_payload(self).model_dump()
        data.pop("installment_number")
        return LoanPaymentOverride(**data)


class BillPayload(BaseModel):
    id: str
    description: str = ""
    amount: Decimal
    due_date: date
    currency: str = "EUR"
    type: str = BillType.PAYMENT
    status: str = BillStatus.UNPAID
    account_id: str | None = None

    @classmethod
    def validate_payload(cls, payload: "BillPayload") -> "BillPayload":
        payload.type = BillType.validate(payload.type)
        payload.status = BillStatus.validate(payload.status)
        payload.description = payload.description.strip()
        return payload

    def to_bill(self) -> Bill:
        return Bill(**self.validate_payload(self).model_dump())


class GoalPayload(BaseModel):
    id: str
    name: str
    amount: Decimal
    current_amount: Decimal = Decimal("0")
    currency: str = "EUR"
    type: str = GoalType.ONE_TIME
    transaction_type: str = "expense"
    date: datetime.date | None = None
    payment_account_id: str | None = None

    @classmethod
    def validate_payload(cls, payload: "GoalPayload") -> "GoalPayload":
        payload.type = GoalType.validate(payload.type)
        payload.transaction_type = TransactionType.validate(payload.transaction_type)
        payload.name = payload.name.strip()
        if not payload.name:
            raise ValueError("Goal name required.")
        return payload

    def to_goal(self) -> FinancialGoal:
        return FinancialGoal(**self.validate_payload(self).model_dump())


class OccurrenceRequest(BaseModel):
    window_start: date
    window_end: date
    rules: list[RecurringRulePayload] = []
    overrides: list[OverridePayload] = []
    accounts: list[AccountPayload] = []
    transactions: list[TransactionPayload] = []
    loan_overrides: dict[str, list[LoanOverridePayload]] = {}
    today: date | None = None


class ForecastRequest(BaseModel):
    accounts: list[AccountPayload]
    transactions: list[TransactionPayload] = []
    rules: list[RecurringRulePayload] = []
    overrides: list[OverridePayload] = []
    loan_overrides: dict[str, list[LoanOverridePayload]] = {}
    account_ids: list[str] | None = None
    bills: list[BillPayload] = []
    goals: list[GoalPayload] = []
    horizon: str = ForecastHorizon.ONE_YEAR
    window_start: date | None = None
    today: date | None = None


class LoanScheduleRequest(BaseModel):
    account: AccountPayload
    transactions: list[TransactionPayload] = []
    overrides: list[LoanOverridePayload] = []
    today: date | None = None


class TransferSuggestionRequest(BaseModel):
    transactions: list[TransactionPayload]
    ignored_ids: list[str] = []


class TransferConfirmRequest(BaseModel):
    expense: TransactionPayload
    income: TransactionPayload
    accounts: list[AccountPayload] = []


class OccurrenceEntry(BaseModel):
    rule_id: str
    original_date: date
    effective_date: date
    amount: Decimal
    kind: str
    currency: str
    source_account_id: str
    destination_account_id: str | None = None
    description: str
    is_overridden: bool
    is_synthetic: bool


class ExpansionFailureEntry(BaseModel):
    rule_id: str
    reason: str


class OccurrenceResponse(BaseModel):
    occurrences: list[OccurrenceEntry]
    failures: list[ExpansionFailureEntry]


class ForecastPointEntry(BaseModel):
    date: date
    balance: Decimal


class ForecastItemEntry(BaseModel):
    kind: str
    date: date
    amount: Decimal
    currency: str
    description: str
    source_id: str


class LowestBalanceEntry(BaseModel):
    period: str
    days: int
    lowest_balance: Decimal | None = None
    date: datetime.date | None = None


class ForecastResponse(BaseModel):
    horizon_end: date
    points: list[ForecastPointEntry]
    lowest_point: ForecastPointEntry | None = None
    lowest_balances: list[LowestBalanceEntry]
    occurrences: list[OccurrenceEntry]
    items: list[ForecastItemEntry]
    failures: list[ExpansionFailureEntry]
    warnings: list[str]


class ScheduledPaymentEntry(BaseModel):
    installment_number: int
    date: date
    total_payment: Decimal
    principal: Decimal
    interest: Decimal
    outstanding_balance: Decimal
    status: str
    transaction_id: str | None = None


class LoanScheduleResponse(BaseModel):
    schedule: list[ScheduledPaymentEntry]
    outstanding_balance: Decimal


class TransactionResponse(BaseModel):
    id: str
    account_id: str
    date: date
    amount: Decimal
    type: str
    currency: str
    category: str | None = None
    description: str | None = None
    transfer_id: str | None = None


class TransferSuggestionEntry(BaseModel):
    id: str
    expense: TransactionResponse
    income: TransactionResponse


def loan_overrides_from_payload(
    payload: dict[str, list[LoanOverridePayload]],
) -> dict[str, dict[int, LoanPaymentOverride]]:
    return {
        account_id: {entry.installment_number: entry.to_override() for entry in entries}
        for account_id, entries in payload.items()
    }


def transaction_response(txn: Transaction) -> TransactionResponse:
    data = asdict(txn)
    data.pop("principal_amount")
    data.pop("interest_amount")
    return TransactionResponse(**data)


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/occurrences", response_model=OccurrenceResponse)
def list_occurrences(payload: OccurrenceRequest) -> OccurrenceResponse:
    if payload.window_start > payload.window_end:
        raise HTTPException(status_code=400, detail="Window start must be on or before window end.")
    try:
        result = scheduled_items(
            [account.to_account() for account in payload.accounts],
            [txn.to_transaction() for txn in payload.transactions],
            [rule.to_rule() for rule in payload.rules],
            payload.window_start,
            payload.window_end,
            [override.to_override() for override in payload.overrides],
            loan_overrides_from_payload(payload.loan_overrides),
            payload.today,
            settings.max_expansion_iterations,
        )
    except ExpansionLimitExceeded as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except (ValueError, CashflowEngineError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return OccurrenceResponse(
        occurrences=[OccurrenceEntry(**asdict(occurrence)) for occurrence in result.occurrences],
        failures=[ExpansionFailureEntry(**asdict(failure)) for failure in result.failures],
    )


@app.post("/forecast", response_model=ForecastResponse)
def forecast(payload: ForecastRequest) -> ForecastResponse:
    today = payload.today or date.today()
    try:
        horizon_end = horizon_end_date(payload.horizon, today)
        report = build_forecast(
            [account.to_account() for account in payload.accounts],
            [txn.to_transaction() for txn in payload.transactions],
            [rule.to_rule() for rule in payload.rules],
            horizon_end,
            overrides=[override.to_override() for override in payload.overrides],
            loan_overrides=loan_overrides_from_payload(payload.loan_overrides),
            account_ids=payload.account_ids,
            today=today,
            window_start=payload.window_start,
            rate_provider=FX_PROVIDER,
            max_iterations=settings.max_expansion_iterations,
            bills=[bill.to_bill() for bill in payload.bills],
            goals=[goal.to_goal() for goal in payload.goals],
        )
    except ExpansionLimitExceeded as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except (ValueError, CashflowEngineError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    lowest = report.projection.lowest_point
    return ForecastResponse(
        horizon_end=horizon_end,
        points=[ForecastPointEntry(**asdict(point)) for point in report.projection.points],
        lowest_point=ForecastPointEntry(**asdict(lowest)) if lowest else None,
        lowest_balances=[LowestBalanceEntry(**asdict(entry)) for entry in report.lowest_balances],
        occurrences=[OccurrenceEntry(**asdict(occurrence)) for occurrence in report.occurrences],
        items=[ForecastItemEntry(**asdict(item)) for item in report.items],
        failures=[ExpansionFailureEntry(**asdict(failure)) for failure in report.failures],
        warnings=report.warnings,
    )


@app.post("/loans/schedule", response_model=LoanScheduleResponse)
def loan_schedule(payload: LoanScheduleRequest) -> LoanScheduleResponse:
    try:
        account = payload.account.to_account()
        overrides = {entry.installment_number: entry.to_override() for entry in payload.overrides}
        schedule = build_schedule(
            account,
            [txn.to_transaction() for txn in payload.transactions],
            overrides,
            payload.today,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not schedule:
        raise HTTPException(status_code=400, detail="Account has no complete loan terms.")

    return LoanScheduleResponse(
        schedule=[ScheduledPaymentEntry(**asdict(row)) for row in schedule],
        outstanding_balance=outstanding_balance(schedule),
    )


@app.post("/transfers/suggestions", response_model=list[TransferSuggestionEntry])
def transfer_suggestions(payload: TransferSuggestionRequest) -> list[TransferSuggestionEntry]:
    try:
        suggestions = find_candidates(
            [txn.to_transaction() for txn in payload.transactions],
            rate_provider=FX_PROVIDER,
            ignored_ids=payload.ignored_ids,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return [
        TransferSuggestionEntry(
            id=suggestion.id,
            expense=transaction_response(suggestion.expense),
            income=transaction_response(suggestion.income),
        )
        for suggestion in suggestions
    ]


@app.post("/transfers/confirm", response_model=list[TransactionResponse])
def confirm_transfer(payload: TransferConfirmRequest) -> list[TransactionResponse]:
    try:
        suggestion = TransferSuggestion(
            expense=payload.expense.to_transaction(),
            income=payload.income.to_transaction(),
        )
        accounts = [account.to_account() for account in payload.accounts]
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if suggestion.expense.type != "expense" or suggestion.income.type != "income":
        raise HTTPException(status_code=400, detail="Transfers pair one expense with one income.")
    if suggestion.expense.account_id == suggestion.income.account_id:
        raise HTTPException(status_code=400, detail="Transfer legs must be in different accounts.")

    expense, income = confirm_suggestion(suggestion, accounts)
    return [transaction_response(expense), transaction_response(income)]
