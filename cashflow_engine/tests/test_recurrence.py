import unittest
from calendar import monthrange
from datetime import date, timedelta
from decimal import Decimal

from cashflow_engine.errors import (
    DuplicateOverrideError,
    ExpansionLimitExceeded,
    RuleExpansionError,
)
from cashflow_engine.models import RecurrenceOverride, RecurringRule
from cashflow_engine.recurrence import (
    MAX_CATCHUP_ITERATIONS,
    advance_rule,
    expand,
    expand_rules,
    next_occurrence_after,
    occurrences_due_between,
    overdue_occurrences,
)


def monthly_rule(**overrides) -> RecurringRule:
    values = {
        "id": "rent",
        "source_account_id": "checking",
        "amount": Decimal("100"),
        "currency": "EUR",
        "kind": "expense",
        "frequency": "monthly",
        "start_date": date(2024, 1, 15),
        "description": "Rent",
    }
    values.update(overrides)
    return RecurringRule(**values)


class MonthlyExpansionTests(unittest.TestCase):
    def test_day_31_clamps_to_month_end(self) -> None:
        rule = monthly_rule(start_date=date(2024, 1, 31), due_day_of_month=31)

        occurrences = expand(rule, date(2024, 1, 1), date(2024, 4, 30))

        self.assertEqual(
            [occurrence.effective_date for occurrence in occurrences],
            [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31), date(2024, 4, 30)],
        )
        self.assertTrue(all(o.amount == Decimal("100") for o in occurrences))
        self.assertFalse(any(o.is_overridden for o in occurrences))

    def test_february_is_last_day_for_every_year(self) -> None:
        rule = monthly_rule(start_date=date(2023, 1, 31), due_day_of_month=31)

        for year in range(2023, 2029):
            occurrences = expand(rule, date(year, 2, 1), date(year, 2, monthrange(year, 2)[1]))
            self.assertEqual(
                [o.effective_date for o in occurrences],
                [date(year, 2, monthrange(year, 2)[1])],
            )

    def test_due_day_before_start_day_begins_next_month(self) -> None:
        rule = monthly_rule(start_date=date(2024, 1, 10), due_day_of_month=5)

        occurrences = expand(rule, date(2024, 1, 1), date(2024, 3, 31))

        self.assertEqual(
            [o.effective_date for o in occurrences],
            [date(2024, 2, 5), date(2024, 3, 5)],
        )

    def test_yearly_leap_day_clamps(self) -> None:
        rule = monthly_rule(frequency="yearly", start_date=date(2024, 2, 29))

        occurrences = expand(rule, date(2024, 1, 1), date(2026, 3, 1))

        self.assertEqual(
            [o.effective_date for o in occurrences],
            [date(2024, 2, 29), date(2025, 2, 28), date(2026, 2, 28)],
        )

    def test_window_far_after_start_fast_forwards(self) -> None:
        rule = monthly_rule(start_date=date(2010, 3, 15))

        occurrences = expand(rule, date(2024, 5, 1), date(2024, 6, 30))

        self.assertEqual(
            [o.effective_date for o in occurrences],
            [date(2024, 5, 15), date(2024, 6, 15)],
        )


class DayBasedExpansionTests(unittest.TestCase):
    def test_weekly_interval_two(self) -> None:
        rule = monthly_rule(frequency="weekly", interval_count=2, start_date=date(2024, 1, 1))

        occurrences = expand(rule, date(2024, 1, 10), date(2024, 2, 10))

        self.assertEqual(
            [o.effective_date for o in occurrences],
            [date(2024, 1, 15), date(2024, 1, 29)],
        )

    def test_end_date_stops_expansion(self) -> None:
        rule = monthly_rule(
            frequency="weekly",
            start_date=date(2024, 1, 1),
            end_date=date(2024, 1, 22),
        )

        occurrences = expand(rule, date(2024, 1, 1), date(2024, 2, 29))

        self.assertEqual(
            [o.effective_date for o in occurrences],
            [date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 15), date(2024, 1, 22)],
        )

    def test_daily_rule(self) -> None:
        rule = monthly_rule(frequency="daily", interval_count=3, start_date=date(2024, 1, 1))

        occurrences = expand(rule, date(2024, 1, 5), date(2024, 1, 12))

        self.assertEqual(
            [o.effective_date for o in occurrences],
            [date(2024, 1, 7), date(2024, 1, 10)],
        )


class WeekendAdjustmentTests(unittest.TestCase):
    def test_after_moves_to_following_monday(self) -> None:
        rule = monthly_rule(
            start_date=date(2024, 6, 1), due_day_of_month=1, weekend_adjustment="after"
        )

        occurrences = expand(rule, date(2024, 6, 1), date(2024, 9, 30))

        self.assertEqual(
            [o.effective_date for o in occurrences],
            [date(2024, 6, 3), date(2024, 7, 1), date(2024, 8, 1), date(2024, 9, 2)],
        )

    def test_after_never_lands_on_weekend(self) -> None:
        rule = monthly_rule(
            frequency="daily", start_date=date(2024, 1, 1), weekend_adjustment="after"
        )

        occurrences = expand(rule, date(2024, 1, 1), date(2024, 3, 31))

        for occurrence in occurrences:
            self.assertLess(occurrence.effective_date.weekday(), 5)

    def test_before_moves_to_preceding_friday(self) -> None:
        rule = monthly_rule(
            start_date=date(2024, 5, 1), due_day_of_month=1, weekend_adjustment="before"
        )

        occurrences = expand(rule, date(2024, 5, 1), date(2024, 6, 30))

        self.assertEqual(
            [o.effective_date for o in occurrences],
            [date(2024, 5, 1), date(2024, 5, 31)],
        )

    def test_on_keeps_weekend_date(self) -> None:
        rule = monthly_rule(start_date=date(2024, 6, 1), weekend_adjustment="on")

        occurrences = expand(rule, date(2024, 6, 1), date(2024, 6, 30))

        self.assertEqual([o.effective_date for o in occurrences], [date(2024, 6, 1)])


class OverrideTests(unittest.TestCase):
    def test_skipped_occurrence_is_omitted(self) -> None:
        rule = monthly_rule()
        overrides = [
            RecurrenceOverride(rule_id="rent", original_date=date(2024, 2, 15), is_skipped=True)
        ]

        occurrences = expand(rule, date(2024, 1, 1), date(2024, 3, 31), overrides)

        self.assertEqual(
            [o.effective_date for o in occurrences],
            [date(2024, 1, 15), date(2024, 3, 15)],
        )

    def test_rescheduled_occurrence_keeps_original_key(self) -> None:
        rule = monthly_rule()
        overrides = [
            RecurrenceOverride(
                rule_id="rent",
                original_date=date(2024, 3, 15),
                date=date(2024, 3, 20),
                amount=Decimal("80"),
                description="Moved",
            )
        ]

        occurrences = expand(rule, date(2024, 3, 1), date(2024, 3, 31), overrides)

        self.assertEqual(len(occurrences), 1)
        moved = occurrences[0]
        self.assertEqual(moved.original_date, date(2024, 3, 15))
        self.assertEqual(moved.effective_date, date(2024, 3, 20))
        self.assertEqual(moved.amount, Decimal("80"))
        self.assertEqual(moved.description, "Moved")
        self.assertTrue(moved.is_overridden)

    def test_unmatched_override_is_ignored(self) -> None:
        rule = monthly_rule()
        overrides = [
            RecurrenceOverride(rule_id="rent", original_date=date(2024, 2, 16), is_skipped=True),
            RecurrenceOverride(rule_id="other", original_date=date(2024, 2, 15), is_skipped=True),
        ]

        occurrences = expand(rule, date(2024, 2, 1), date(2024, 2, 29), overrides)

        self.assertEqual([o.effective_date for o in occurrences], [date(2024, 2, 15)])

    def test_duplicate_overrides_are_rejected(self) -> None:
        overrides = [
            RecurrenceOverride(rule_id="rent", original_date=date(2024, 2, 15), is_skipped=True),
            RecurrenceOverride(rule_id="rent", original_date=date(2024, 2, 15), amount=Decimal("5")),
        ]

        with self.assertRaises(DuplicateOverrideError):
            expand(monthly_rule(), date(2024, 1, 1), date(2024, 3, 31), overrides)

    def test_due_checks_use_effective_date(self) -> None:
        overrides = [
            RecurrenceOverride(
                rule_id="rent", original_date=date(2024, 3, 15), date=date(2024, 3, 20)
            )
        ]
        occurrences = expand(monthly_rule(), date(2024, 3, 1), date(2024, 3, 31), overrides)

        self.assertEqual(occurrences_due_between(occurrences, date(2024, 3, 15), date(2024, 3, 15)), [])
        self.assertEqual(
            occurrences_due_between(occurrences, date(2024, 3, 20), date(2024, 3, 20)),
            occurrences,
        )


class FailureHandlingTests(unittest.TestCase):
    def test_zero_interval_is_rule_error(self) -> None:
        with self.assertRaises(RuleExpansionError) as ctx:
            expand(monthly_rule(interval_count=0), date(2024, 1, 1), date(2024, 3, 31))

        self.assertEqual(ctx.exception.rule_id, "rent")

    def test_expand_rules_isolates_failures(self) -> None:
        rules = [
            monthly_rule(id="broken", interval_count=-1),
            monthly_rule(id="backwards", end_date=date(2023, 1, 1)),
            monthly_rule(id="ok"),
        ]

        result = expand_rules(rules, date(2024, 1, 1), date(2024, 2, 29))

        self.assertEqual([f.rule_id for f in result.failures], ["broken", "backwards"])
        self.assertEqual(
            [(o.rule_id, o.effective_date) for o in result.occurrences],
            [("ok", date(2024, 1, 15)), ("ok", date(2024, 2, 15))],
        )
        self.assertEqual(result.expanded_count, 1)

    def test_iteration_cap_is_fatal(self) -> None:
        rules = [monthly_rule(frequency="daily", start_date=date(2024, 1, 1))]

        with self.assertRaises(ExpansionLimitExceeded):
            expand_rules(rules, date(2024, 1, 1), date(2024, 12, 31), max_iterations=100)

    def test_inverted_window_raises(self) -> None:
        with self.assertRaises(ValueError):
            expand(monthly_rule(), date(2024, 3, 1), date(2024, 1, 1))


class CursorTests(unittest.TestCase):
    def test_next_due_date_skips_posted_occurrences(self) -> None:
        rule = monthly_rule(start_date=date(2024, 1, 1), next_due_date=date(2024, 3, 1))

        occurrences = expand(rule, date(2024, 1, 1), date(2024, 4, 30))

        self.assertEqual(
            [o.effective_date for o in occurrences],
            [date(2024, 3, 1), date(2024, 4, 1)],
        )

    def test_off_grid_cursor_seeds_weekly_series(self) -> None:
        rule = monthly_rule(
            frequency="weekly",
            start_date=date(2024, 1, 1),
            next_due_date=date(2024, 1, 10),
        )

        occurrences = expand(rule, date(2024, 1, 1), date(2024, 1, 31))

        self.assertEqual(
            [o.effective_date for o in occurrences],
            [date(2024, 1, 10), date(2024, 1, 17), date(2024, 1, 24), date(2024, 1, 31)],
        )

    def test_off_grid_cursor_keeps_monthly_anchor(self) -> None:
        rule = monthly_rule(start_date=date(2024, 1, 15), next_due_date=date(2024, 2, 20))

        occurrences = expand(rule, date(2024, 1, 1), date(2024, 4, 30))

        self.assertEqual(
            [o.effective_date for o in occurrences],
            [date(2024, 2, 20), date(2024, 3, 15), date(2024, 4, 15)],
        )

    def test_cursor_before_start_is_ignored(self) -> None:
        rule = monthly_rule(start_date=date(2024, 1, 15), next_due_date=date(2023, 12, 1))

        occurrences = expand(rule, date(2024, 1, 1), date(2024, 2, 29))

        self.assertEqual(
            [o.effective_date for o in occurrences],
            [date(2024, 1, 15), date(2024, 2, 15)],
        )

    def test_advance_rule_moves_cursor(self) -> None:
        rule = monthly_rule(start_date=date(2024, 1, 31), due_day_of_month=31)

        advanced = advance_rule(rule, date(2024, 2, 29))

        self.assertEqual(advanced.next_due_date, date(2024, 3, 31))
        self.assertIsNone(rule.next_due_date)

    def test_advance_rule_past_end_exhausts_series(self) -> None:
        rule = monthly_rule(start_date=date(2024, 1, 15), end_date=date(2024, 2, 15))

        advanced = advance_rule(rule, date(2024, 2, 15))

        self.assertIsNone(next_occurrence_after(rule, date(2024, 2, 15)))
        self.assertEqual(advanced.next_due_date, date(2024, 2, 16))
        self.assertEqual(expand(advanced, date(2024, 1, 1), date(2024, 12, 31)), [])

    def test_overdue_occurrences_catch_up_to_yesterday(self) -> None:
        rule = monthly_rule(
            start_date=date(2024, 1, 5), next_due_date=date(2024, 2, 5)
        )

        overdue = overdue_occurrences(rule, date(2024, 4, 10))

        self.assertEqual(
            [o.effective_date for o in overdue],
            [date(2024, 2, 5), date(2024, 3, 5), date(2024, 4, 5)],
        )

    def test_overdue_catch_up_is_capped(self) -> None:
        rule = monthly_rule(frequency="daily", start_date=date(2022, 1, 1))
        today = date(2022, 1, 1) + timedelta(days=MAX_CATCHUP_ITERATIONS + 10)

        with self.assertRaises(ExpansionLimitExceeded):
            overdue_occurrences(rule, today)


if __name__ == "__main__":
    unittest.main()
