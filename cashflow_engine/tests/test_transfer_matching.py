import unittest
from datetime import date
from decimal import Decimal

from cashflow_engine.models import Account, Transaction
from cashflow_engine.transfer_matching import (
    TransferSuggestion,
    confirm_all,
    confirm_suggestion,
    find_candidates,
    incoming_description,
    outgoing_description,
)

ACCOUNTS = [
    Account(id="checking", name="Main Checking", type="checking", balance=Decimal("1000")),
    Account(id="savings", name="Savings", type="savings", balance=Decimal("500")),
    Account(id="visa", name="Visa Card", type="credit card", balance=Decimal("-200")),
]


def txn(txn_id: str, account_id: str, day: date, amount: str, txn_type: str, **extra) -> Transaction:
    return Transaction(
        id=txn_id,
        account_id=account_id,
        date=day,
        amount=Decimal(amount),
        type=txn_type,
        **extra,
    )


class FindCandidatesTests(unittest.TestCase):
    def test_matches_equal_amounts_one_day_apart(self) -> None:
        transactions = [
            txn("e1", "checking", date(2024, 6, 1), "100", "expense"),
            txn("i1", "savings", date(2024, 6, 2), "100", "income"),
        ]

        suggestions = find_candidates(transactions)

        self.assertEqual(
            suggestions,
            [TransferSuggestion(expense=transactions[0], income=transactions[1])],
        )
        self.assertEqual(suggestions[0].id, "e1|i1")

    def test_ignores_pairs_more_than_a_day_apart(self) -> None:
        transactions = [
            txn("e1", "checking", date(2024, 6, 1), "100", "expense"),
            txn("i1", "savings", date(2024, 6, 3), "100", "income"),
        ]

        self.assertEqual(find_candidates(transactions), [])

    def test_same_account_pairs_are_not_transfers(self) -> None:
        transactions = [
            txn("e2", "checking", date(2024, 6, 3), "50", "expense"),
            txn("i2", "checking", date(2024, 6, 3), "50", "income"),
        ]

        self.assertEqual(find_candidates(transactions), [])

    def test_amounts_are_compared_in_eur(self) -> None:
        transactions = [
            txn("e3", "checking", date(2024, 6, 5), "93", "expense"),
            txn("i3", "savings", date(2024, 6, 5), "100", "income", currency="USD"),
        ]

        suggestions = find_candidates(transactions)

        self.assertEqual([item.id for item in suggestions], ["e3|i3"])

    def test_each_income_is_matched_once(self) -> None:
        transactions = [
            txn("e1", "checking", date(2024, 6, 1), "100", "expense"),
            txn("e4", "visa", date(2024, 6, 1), "100", "expense"),
            txn("i1", "savings", date(2024, 6, 1), "100", "income"),
        ]

        suggestions = find_candidates(transactions)

        self.assertEqual([item.id for item in suggestions], ["e1|i1"])

    def test_linked_and_ignored_transactions_are_skipped(self) -> None:
        transactions = [
            txn("e1", "checking", date(2024, 6, 1), "100", "expense"),
            txn("i1", "savings", date(2024, 6, 1), "100", "income"),
            txn("e5", "checking", date(2024, 6, 7), "20", "expense", transfer_id="xfer-1"),
            txn("i5", "savings", date(2024, 6, 7), "20", "income"),
        ]

        self.assertEqual(find_candidates(transactions, ignored_ids={"e1|i1"}), [])

    def test_confirmed_pairs_are_not_suggested_again(self) -> None:
        transactions = [
            txn("e1", "checking", date(2024, 6, 1), "100", "expense"),
            txn("i1", "savings", date(2024, 6, 2), "100", "income"),
        ]
        suggestion = find_candidates(transactions)[0]

        linked = list(confirm_suggestion(suggestion, ACCOUNTS, transfer_id="xfer-42"))

        self.assertEqual(find_candidates(linked), [])


class ConfirmTests(unittest.TestCase):
    def test_confirm_links_both_legs(self) -> None:
        expense = txn("e1", "checking", date(2024, 6, 1), "100", "expense", category="Misc")
        income = txn("i1", "savings", date(2024, 6, 1), "100", "income")

        linked_expense, linked_income = confirm_suggestion(
            TransferSuggestion(expense=expense, income=income), ACCOUNTS
        )

        self.assertEqual(linked_expense.transfer_id, linked_income.transfer_id)
        self.assertTrue(linked_expense.transfer_id.startswith("xfer-"))
        self.assertEqual(linked_expense.category, "Transfer")
        self.assertEqual(linked_income.category, "Transfer")
        self.assertEqual(linked_expense.description, "Transfer to Savings")
        self.assertEqual(linked_income.description, "Transfer from Main Checking")
        self.assertEqual(linked_expense.amount, Decimal("100"))
        self.assertEqual(linked_expense.type, "expense")
        self.assertEqual(linked_income.type, "income")

    def test_payment_wording_for_debt_accounts(self) -> None:
        expense = txn("e1", "checking", date(2024, 6, 1), "80", "expense")
        income = txn("i1", "visa", date(2024, 6, 1), "80", "income")

        linked_expense, _ = confirm_suggestion(
            TransferSuggestion(expense=expense, income=income), ACCOUNTS
        )

        self.assertEqual(linked_expense.description, "Payment to Visa Card")

    def test_confirm_all_uses_distinct_transfer_ids(self) -> None:
        suggestions = [
            TransferSuggestion(
                expense=txn("e1", "checking", date(2024, 6, 1), "10", "expense"),
                income=txn("i1", "savings", date(2024, 6, 1), "10", "income"),
            ),
            TransferSuggestion(
                expense=txn("e2", "savings", date(2024, 6, 2), "20", "expense"),
                income=txn("i2", "checking", date(2024, 6, 2), "20", "income"),
            ),
        ]

        updated = confirm_all(suggestions, ACCOUNTS)

        self.assertEqual(len(updated), 4)
        self.assertEqual(updated[0].transfer_id, updated[1].transfer_id)
        self.assertNotEqual(updated[0].transfer_id, updated[2].transfer_id)

    def test_descriptions(self) -> None:
        self.assertEqual(outgoing_description("Home Mortgage"), "Payment to Home Mortgage")
        self.assertEqual(outgoing_description("Holiday Fund"), "Transfer to Holiday Fund")
        self.assertEqual(outgoing_description(None), "Transfer to account")
        self.assertEqual(incoming_description(None), "Transfer from account")


if __name__ == "__main__":
    unittest.main()
