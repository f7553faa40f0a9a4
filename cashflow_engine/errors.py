from __future__ import annotations


class CashflowEngineError(Exception):
    """Base class for errors raised by the forecasting engine."""


class RuleExpansionError(CashflowEngineError):
    """A single recurring rule could not be expanded."""

    def __init__(self, rule_id: str, reason: str) -> None:
        super().__init__(f"Rule {rule_id}: {reason}")
        self.rule_id = rule_id
        self.reason = reason


class ExpansionLimitExceeded(CashflowEngineError):
    """Raised when an expansion loop hits its iteration cap.

    Unlike RuleExpansionError this is never collected per rule: a tripped
    cap aborts the whole computation.
    """

    def __init__(self, rule_id: str, limit: int) -> None:
        super().__init__(f"Rule {rule_id} exceeded the limit of {limit} iterations.")
        self.rule_id = rule_id
        self.limit = limit


class DuplicateOverrideError(ValueError):
    """Two overrides target the same (rule, original date)."""


class UnsupportedCurrencyError(ValueError):
    """No conversion rate is known for the currency."""
