import os
import unittest
from unittest import mock
from itertools import count

from paytracker.analytics import calculate_bill_analytics, changed_bills
from paytracker.generator import anchor_date, expand, generate_entries
from paytracker.models import (
    Account, Bill, BillTemplate, Payday, PaydayTemplate,
    entry_from_record, month_token, parse_month_token, template_from_record, validate_template,
)
from paytracker.projection import dedupe_entries, project, sort_entries, split_periods


def id_sequence(prefix="e"):
    counter = count(1)
    return lambda: f"{prefix}{next(counter)}"


def occurrence_tuples(entries):
    return [(e.month, e.date) for e in entries]


def bill(id, month, day, amounts, paid=False, template_id=None, name="Bill"):
    return Bill(id=id, name=name, month=month, date=day, amounts=amounts, paid=paid, template_id=template_id)


def payday(id, month, day, balances, template_id=None):
    return Payday(id=id, name="Payday", month=month, date=day, balances=balances, template_id=template_id)


class TestMonthTokens(unittest.TestCase):
    def test_month_token_format(self):
        """Test tokens combine month abbreviation and two-digit year"""
        self.assertEqual(month_token(2, 2026), "Mar '26")
        self.assertEqual(month_token(0, 2005), "Jan '05")

    def test_parse_month_token(self):
        """Test parsing of current and legacy token formats"""
        self.assertEqual(parse_month_token("Mar '26"), (2026, 2))
        self.assertEqual(parse_month_token("Dec 25"), (2025, 11))
        self.assertEqual(parse_month_token("Jan 2027"), (2027, 0))
        self.assertIsNone(parse_month_token("Smarch '26"))
        self.assertIsNone(parse_month_token("Jan"))
        self.assertIsNone(parse_month_token(None))


class TestRecords(unittest.TestCase):
    def test_legacy_template_defaults(self):
        """Test templates missing isActive/autoGenerate default to active"""
        template = template_from_record(
            {"id": "t1", "name": "Rent", "recurrence": "monthly", "day": 1, "amounts": {"a": 1200, "b": None}},
            "bill",
        )
        self.assertTrue(template.is_active)
        self.assertTrue(template.auto_generate)
        self.assertIsNone(template.end_month)
        self.assertEqual(template.amounts, {"a": 1200})

    def test_entry_record_excludes_computed_fields(self):
        """Test projection fields never reach the stored record"""
        entry = payday("p1", "Jan '26", 1, {"a": 10})
        entry.calculated_balances = {"a": 5}
        entry.total_owed = {"a": 10}
        record = entry.to_record()
        self.assertNotIn("calculatedBalances", record)
        self.assertNotIn("total_owed", record)
        self.assertEqual(entry_from_record(record), entry)

    def test_entry_type_inferred_for_old_records(self):
        """Test records without a type field are discriminated by their maps"""
        self.assertIsInstance(entry_from_record({"id": "x", "month": "Jan '26", "date": 1, "balances": {}}), Payday)
        self.assertIsInstance(entry_from_record({"id": "y", "month": "Jan '26", "date": 1, "amounts": {}}), Bill)
        with self.assertRaises(ValueError):
            entry_from_record({"id": "z", "type": "transfer"})

    def test_validate_template(self):
        """Test creation-time validation catches what expansion ignores"""
        ok = BillTemplate(id="t", name="Rent", recurrence="monthly", day=1)
        self.assertEqual(validate_template(ok), [])

        semi = BillTemplate(id="t", name="Phone", recurrence="semi-monthly", day=1)
        self.assertIn("Semi-monthly templates need a second day", validate_template(semi))

        yearly = BillTemplate(id="t", name="Insurance", recurrence="yearly", day=3)
        self.assertIn("Yearly templates need a month", validate_template(yearly))

        bad = BillTemplate(id="t", name=" ", recurrence="monthly", day=40, end_month="Foo")
        errors = validate_template(bad)
        self.assertIn("Day must be between 1 and 31", errors)
        self.assertIn("Unknown end month 'Foo'", errors)
        self.assertIn("Name is required", errors)


class TestExpander(unittest.TestCase):
    def test_monthly_window(self):
        """Test monthly template only covers its start..end months"""
        template = BillTemplate(id="t1", name="Gym", recurrence="monthly", day=5,
                                amounts={"a": 30}, start_month="Mar", end_month="Jun")
        entries = expand(template, 2026)
        self.assertEqual(occurrence_tuples(entries),
                         [("Mar '26", 5), ("Apr '26", 5), ("May '26", 5), ("Jun '26", 5)])

    def test_biweekly_calendar_rollover(self):
        """Test bi-weekly stepping rolls across months and stops at year end"""
        template = PaydayTemplate(id="p1", name="Payday", recurrence="bi-weekly", day=28,
                                  balances={"a": 2000}, start_month="Jan")
        entries = expand(template, 2026)
        self.assertEqual(occurrence_tuples(entries[:2]), [("Jan '26", 28), ("Feb '26", 11)])
        self.assertEqual(occurrence_tuples(entries[-1:]), [("Dec '26", 30)])
        self.assertEqual(len(entries), 25)
        self.assertTrue(all(e.month.endswith("'26") for e in entries))

    def test_weekly_end_month_filters_without_truncating(self):
        """Test weekly occurrences past the end month are skipped"""
        template = BillTemplate(id="t1", name="Lunch", recurrence="weekly", day=1,
                                amounts={"a": 15}, end_month="Jan")
        entries = expand(template, 2026)
        self.assertEqual([e.date for e in entries], [1, 8, 15, 22, 29])

    def test_weekly_anchor_overflows_month(self):
        """Test a day past the month's end rolls forward instead of failing"""
        self.assertEqual(anchor_date(2026, 1, 31).isoformat(), "2026-03-03")
        template = BillTemplate(id="t1", name="Paper", recurrence="weekly", day=31, start_month="Feb")
        entries = expand(template, 2026)
        self.assertEqual(occurrence_tuples(entries[:2]), [("Mar '26", 3), ("Mar '26", 10)])

    def test_semi_monthly_pairs(self):
        """Test semi-monthly emits both days per month"""
        template = BillTemplate(id="t1", name="Phone", recurrence="semi-monthly", day=1, day2=15,
                                amounts={"a": 40}, start_month="Jan", end_month="Feb")
        entries = expand(template, 2026)
        self.assertEqual(occurrence_tuples(entries),
                         [("Jan '26", 1), ("Jan '26", 15), ("Feb '26", 1), ("Feb '26", 15)])

    def test_semi_monthly_without_second_day(self):
        """Test missing day2 degrades to one entry per month"""
        template = BillTemplate(id="t1", name="Phone", recurrence="semi-monthly", day=1, end_month="Mar")
        self.assertEqual(len(expand(template, 2026)), 3)

    def test_yearly_and_one_time(self):
        """Test single occurrences respect the window and default to January"""
        yearly = BillTemplate(id="t1", name="Insurance", recurrence="yearly", day=12, month="Jul", start_month="Mar")
        self.assertEqual(occurrence_tuples(expand(yearly, 2026)), [("Jul '26", 12)])

        yearly.end_month = "Jun"
        self.assertEqual(expand(yearly, 2026), [])

        one_time = BillTemplate(id="t2", name="Deposit", recurrence="one-time", day=3)
        self.assertEqual(occurrence_tuples(expand(one_time, 2026)), [("Jan '26", 3)])

    def test_inactive_or_manual_templates_generate_nothing(self):
        """Test inactive and non-auto templates produce no entries"""
        inactive = BillTemplate(id="t1", name="Old", recurrence="monthly", day=1, is_active=False)
        manual = BillTemplate(id="t2", name="Manual", recurrence="monthly", day=1, auto_generate=False)
        self.assertEqual(expand(inactive, 2026), [])
        self.assertEqual(expand(manual, 2026), [])

    def test_unknown_window_month_falls_back(self):
        """Test an unrecognised start month silently means January"""
        template = BillTemplate(id="t1", name="Rent", recurrence="monthly", day=1, start_month="Foo")
        self.assertEqual(len(expand(template, 2026)), 12)

    def test_entries_are_linked_and_unpaid(self):
        """Test generated entries carry template id, copies of amounts, and paid=False"""
        template = BillTemplate(id="t1", name="Rent", recurrence="monthly", day=1, amounts={"a": 1200})
        entries = expand(template, 2026, id_sequence())
        self.assertEqual(entries[0].id, "e1")
        self.assertTrue(all(e.template_id == "t1" and e.paid is False for e in entries))
        self.assertEqual(entries[0].amounts, {"a": 1200})
        self.assertIsNot(entries[0].amounts, template.amounts)

    def test_payday_templates_make_payday_entries(self):
        """Test payday templates produce payday entries with balances"""
        template = PaydayTemplate(id="p1", name="Payday", recurrence="monthly", day=15,
                                  balances={"a": 2500}, end_month="Jan")
        [entry] = expand(template, 2026)
        self.assertIsInstance(entry, Payday)
        self.assertEqual(entry.type, "payday")
        self.assertEqual(entry.balances, {"a": 2500})

    def test_expansion_is_deterministic(self):
        """Test repeated expansion yields the same occurrences"""
        template = PaydayTemplate(id="p1", name="Payday", recurrence="weekly", day=2, balances={"a": 1})

        def shape(entries):
            return [(e.month, e.date, e.balances) for e in entries]

        self.assertEqual(shape(expand(template, 2026)), shape(expand(template, 2026)))

    def test_generate_entries_bills_then_paydays(self):
        """Test batch generation expands bills before paydays"""
        bills = [BillTemplate(id="t1", name="Rent", recurrence="one-time", day=1, month="Feb")]
        paydays = [PaydayTemplate(id="p1", name="Payday", recurrence="one-time", day=1, month="Jan")]
        entries = generate_entries(bills, paydays, 2026)
        self.assertEqual([e.type for e in entries], ["bill", "payday"])


class TestProjection(unittest.TestCase):
    def test_only_paid_bills_reduce_balance(self):
        """Test unpaid bills do not move money"""
        entries = [
            payday("p1", "Jan '26", 1, {"A": 1000}),
            bill("b1", "Jan '26", 5, {"A": 200}, paid=True),
            bill("b2", "Jan '26", 10, {"A": 300}, paid=False),
        ]
        result = project(entries)
        self.assertEqual([e.id for e in result], ["p1", "b1", "b2"])
        self.assertEqual(result[0].calculated_balances["A"], 800)
        self.assertEqual(result[0].total_owed, {"A": 1000})
        self.assertEqual(result[2].calculated_balances, {"A": 800})

    def test_orphan_bills_have_no_balances(self):
        """Test bills before the first payday pass through untouched"""
        entries = [
            payday("p1", "Jan '26", 5, {"A": 100}),
            bill("b1", "Jan '26", 1, {"A": 50}, paid=True),
        ]
        result = project(entries)
        self.assertEqual(result[0].id, "b1")
        self.assertIsNone(result[0].calculated_balances)
        self.assertEqual(result[1].calculated_balances, {"A": 100})

    def test_sort_across_months_and_years(self):
        """Test entries order by real (year, month, day), not by day alone"""
        entries = [
            payday("p2", "Feb '26", 1, {"A": 500}),
            bill("b2", "Feb '26", 3, {"A": 100}, paid=True),
            bill("b1", "Jan '26", 20, {"A": 50}, paid=True),
            payday("p1", "Jan '26", 15, {"A": 400}),
            bill("b0", "Dec '25", 28, {"A": 10}),
        ]
        result = project(entries)
        self.assertEqual([e.id for e in result], ["b0", "p1", "b1", "p2", "b2"])
        self.assertEqual(result[1].calculated_balances, {"A": 350})
        self.assertEqual(result[3].calculated_balances, {"A": 400})

    def test_unparseable_months_sort_last(self):
        """Test entries with unreadable month tokens go to the end"""
        entries = [bill("x", "???", 1, {}), bill("y", "Jan '26", 30, {})]
        self.assertEqual([e.id for e in sort_entries(entries)], ["y", "x"])

    def test_empty_and_billless_periods(self):
        """Test empty input and consecutive paydays"""
        self.assertEqual(project([]), [])
        result = project([payday("p1", "Jan '26", 1, {"A": 10}), payday("p2", "Jan '26", 2, {"A": 20})])
        self.assertEqual([e.calculated_balances for e in result], [{"A": 10}, {"A": 20}])
        orphans, periods = split_periods(sort_entries(result))
        self.assertEqual(orphans, [])
        self.assertEqual(len(periods), 2)

    def test_split_bills_and_missing_accounts(self):
        """Test split bills touch each account and unknown accounts start at zero"""
        entries = [
            payday("p1", "Jan '26", 1, {"A": 1000}),
            bill("b1", "Jan '26", 2, {"A": 100, "B": 40}, paid=True),
        ]
        accounts = [Account("A", "Checking", 0), Account("B", "Savings", 1), Account("C", "Cash", 2)]
        [first, _] = project(entries, accounts)
        self.assertEqual(first.calculated_balances, {"A": 900, "B": -40, "C": 0})

    def test_projection_does_not_mutate_input(self):
        """Test annotated entries are copies with the same ids"""
        source = payday("p1", "Jan '26", 1, {"A": 10})
        [result] = project([source])
        self.assertIsNone(source.calculated_balances)
        self.assertIsNot(result, source)
        self.assertEqual(result.id, source.id)

    def test_two_decimal_amounts_are_exact(self):
        """Test cent amounts subtract exactly"""
        entries = [payday("p1", "Jan '26", 1, {"A": 1000.50}), bill("b1", "Jan '26", 2, {"A": 200.25}, paid=True)]
        self.assertEqual(project(entries)[0].calculated_balances["A"], 800.25)

    def test_float_drift_is_not_rounded(self):
        """Test amounts are not rounded; binary float drift shows through"""
        entries = [payday("p1", "Jan '26", 1, {"A": 0.3}), bill("b1", "Jan '26", 2, {"A": 0.1}, paid=True)]
        remaining = project(entries)[0].calculated_balances["A"]
        self.assertAlmostEqual(remaining, 0.2)
        self.assertNotEqual(remaining, 0.2)


class TestDedupe(unittest.TestCase):
    def test_duplicates_collapse_to_paid_copy(self):
        """Test racing syncs' duplicates collapse and keep the paid copy"""
        entries = [
            bill("a", "Jan '26", 1, {"A": 5}, template_id="t1"),
            bill("b", "Jan 2026", 1, {"A": 5}, template_id="t1", paid=True),
            bill("c", "Jan '26", 1, {"A": 5}, template_id="t1"),
            bill("d", "Jan '26", 1, {"A": 5}),
            bill("e", "Jan '26", 1, {"A": 5}),
        ]
        self.assertEqual([e.id for e in dedupe_entries(entries)], ["b", "d", "e"])


class TestAnalytics(unittest.TestCase):
    def test_change_detection(self):
        """Test average paid amount is compared to the current template amount"""
        template = BillTemplate(id="t1", name="Power", recurrence="monthly", day=3, amounts={"A": 100})
        entries = [
            bill("b1", "Jan '26", 3, {"A": 90}, paid=True, template_id="t1"),
            bill("b2", "Feb '26", 3, {"A": 90}, paid=True, template_id="t1"),
            bill("b3", "Mar '26", 3, {"A": 100}, template_id="t1"),
            bill("b4", "Apr '26", 3, {"A": 60}, paid=True, name="Power"),
            bill("b5", "Dec '25", 3, {"A": 500}, paid=True, template_id="t1"),
            payday("p1", "Jan '26", 1, {"A": 1000}, template_id="t1"),
        ]
        [result] = calculate_bill_analytics([template], entries, 2026)
        self.assertEqual(result.paid_count, 3)
        self.assertEqual(result.planned_count, 4)
        self.assertEqual(result.ytd_paid, 240)
        self.assertEqual(result.ytd_planned, 400)
        self.assertEqual(result.average_paid_amount, 80)
        self.assertTrue(result.has_change)
        self.assertEqual(result.change_type, "increase")
        self.assertEqual(result.change_amount, 20)
        self.assertEqual(result.change_percentage, 25)
        self.assertEqual(changed_bills([result]), [result])

    def test_no_history_means_no_change(self):
        """Test templates with no paid bills never report drift"""
        template = BillTemplate(id="t1", name="Power", recurrence="monthly", day=3, amounts={"A": 100})
        [result] = calculate_bill_analytics([template], [bill("b1", "Jan '26", 3, {"A": 100}, template_id="t1")], 2026)
        self.assertFalse(result.has_change)
        self.assertEqual(result.change_type, "none")
        self.assertEqual(changed_bills([result]), [])

    def test_default_year_follows_configured_year(self):
        """Test omitting the year uses PAYTRACKER_YEAR like the planner does"""
        template = BillTemplate(id="t1", name="Power", recurrence="monthly", day=3, amounts={"A": 100})
        entries = [
            bill("b1", "Jan '24", 3, {"A": 100}, paid=True, template_id="t1"),
            bill("b2", "Jan '26", 3, {"A": 100}, paid=True, template_id="t1"),
        ]
        with mock.patch.dict(os.environ, {"PAYTRACKER_YEAR": "2024"}):
            [result] = calculate_bill_analytics([template], entries)
        self.assertEqual(result.paid_count, 1)
        self.assertEqual(result.ytd_paid, 100)


if __name__ == "__main__":
    unittest.main()
