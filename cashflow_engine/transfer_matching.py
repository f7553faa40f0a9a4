from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from cashflow_engine.currency_conversion import RateProvider, StaticRateProvider, to_eur
from cashflow_engine.models import Account, Transaction

CENT = Decimal("0.01")
MATCH_DAY_OFFSETS = (0, -1, 1)
TRANSFER_CATEGORY = "Transfer"
DEBT_KEYWORDS = ("card", "credit", "loan", "mortgage", "lending")

MatchKey = Tuple[Decimal, date]


@dataclass(frozen=True)
class TransferSuggestion:
    expense: Transaction
    income: Transaction

    @property
    def id(self) -> str:
        return "|".join(sorted((self.expense.id, self.income.id)))


def find_candidates(
    transactions: Iterable[Transaction],
    rate_provider: Optional[RateProvider] = None,
    ignored_ids: Iterable[str] = (),
) -> List[TransferSuggestion]:
    """Propose expense/income pairs that look like one internal transfer.

    Both legs must be unlinked, in different accounts, equal in EUR to the
    cent and at most one day apart. Each expense gets at most one
    suggestion and a matched income is not offered again.
    """
    provider = rate_provider or StaticRateProvider()
    ignored = set(ignored_ids)
    candidates = [txn for txn in transactions if not txn.transfer_id]
    expenses = [txn for txn in candidates if _normalized_type(txn) == "expense"]

    income_pool: Dict[MatchKey, List[Transaction]] = {}
    for txn in candidates:
        if _normalized_type(txn) != "income":
            continue
        income_pool.setdefault((_eur_key(txn, provider), txn.date), []).append(txn)

    suggestions: List[TransferSuggestion] = []
    for expense in expenses:
        amount_key = _eur_key(expense, provider)
        match = _take_match(expense, amount_key, income_pool, ignored)
        if match is not None:
            suggestions.append(TransferSuggestion(expense=expense, income=match))
    return suggestions


def confirm_suggestion(
    suggestion: TransferSuggestion,
    accounts: Sequence[Account],
    transfer_id: Optional[str] = None,
) -> Tuple[Transaction, Transaction]:
    """Return linked copies of both legs; amounts and types are untouched."""
    transfer_id = transfer_id or f"xfer-{uuid.uuid4()}"
    names = {account.id: account.name for account in accounts}
    from_name = names.get(suggestion.expense.account_id)
    to_name = names.get(suggestion.income.account_id)

    expense = replace(
        suggestion.expense,
        transfer_id=transfer_id,
        category=TRANSFER_CATEGORY,
        description=outgoing_description(to_name),
    )
    income = replace(
        suggestion.income,
        transfer_id=transfer_id,
        category=TRANSFER_CATEGORY,
        description=incoming_description(from_name),
    )
    return expense, income


def confirm_all(
    suggestions: Iterable[TransferSuggestion], accounts: Sequence[Account]
) -> List[Transaction]:
    updated: List[Transaction] = []
    for suggestion in suggestions:
        updated.extend(confirm_suggestion(suggestion, accounts))
    return updated


def outgoing_description(destination_name: Optional[str]) -> str:
    if destination_name and _is_debt_account(destination_name):
        return f"Payment to {destination_name}"
    return f"Transfer to {destination_name or 'account'}"


def incoming_description(source_name: Optional[str]) -> str:
    return f"Transfer from {source_name or 'account'}"


def _take_match(
    expense: Transaction,
    amount_key: Decimal,
    income_pool: Dict[MatchKey, List[Transaction]],
    ignored: set,
) -> Optional[Transaction]:
    for offset in MATCH_DAY_OFFSETS:
        key = (amount_key, expense.date + timedelta(days=offset))
        pool = income_pool.get(key)
        if not pool:
            continue
        for position in range(len(pool) - 1, -1, -1):
            income = pool[position]
            if income.account_id == expense.account_id:
                continue
            if TransferSuggestion(expense=expense, income=income).id in ignored:
                continue
            del pool[position]
            if not pool:
                del income_pool[key]
            return income
    return None


def _eur_key(txn: Transaction, provider: RateProvider) -> Decimal:
    amount = abs(to_eur(txn.amount, txn.currency, provider))
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def _normalized_type(txn: Transaction) -> str:
    return txn.type.strip().lower()


def _is_debt_account(name: str) -> bool:
    lowered = name.lower()
    return any(keyword in lowered for keyword in DEBT_KEYWORDS)
