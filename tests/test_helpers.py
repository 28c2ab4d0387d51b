# tests/test_helpers.py
"""
Unit tests for FinTrack.data.helpers
(due-date rollover, bill status, month filters, balances and formatting).

Run:
    python -m unittest tests.test_helpers
"""
import datetime
import uuid

from FinTrack.data import helpers
from FinTrack.data.models import Bill, BillStatus, Transaction
from tests.base import BaseTestCase, USER_ID, make_bill, make_transaction


def tx(**overrides) -> Transaction:
    return Transaction.from_record({'id': str(uuid.uuid4()), 'user_id': USER_ID, **make_transaction(**overrides)})


def bill(**overrides) -> Bill:
    return Bill.from_record({'id': str(uuid.uuid4()), 'user_id': USER_ID, **make_bill(**overrides)})


class NextDueDateTest(BaseTestCase):

    def test_weekly_adds_seven_days(self):
        self.assertEqual(helpers.next_due_date('2024-12-28', 'weekly'), '2025-01-04')

    def test_monthly_clamps_to_month_end(self):
        self.assertEqual(helpers.next_due_date('2024-01-31', 'monthly'), '2024-02-29')
        self.assertEqual(helpers.next_due_date('2023-01-31', 'monthly'), '2023-02-28')
        self.assertEqual(helpers.next_due_date('2024-03-15', 'monthly'), '2024-04-15')

    def test_yearly(self):
        self.assertEqual(helpers.next_due_date('2024-02-28', 'yearly'), '2025-02-28')
        self.assertEqual(helpers.next_due_date('2024-02-29', 'yearly'), '2025-02-28')

    def test_custom_days(self):
        self.assertEqual(helpers.next_due_date('2024-06-01', 'custom', 45), '2024-07-16')

    def test_custom_falls_back_to_thirty_days(self):
        for days in (None, 0, -5):
            self.assertEqual(helpers.next_due_date('2024-06-01', 'custom', days), '2024-07-01')

    def test_accepts_dates(self):
        self.assertEqual(helpers.next_due_date(datetime.date(2024, 1, 31), 'monthly'), '2024-02-29')

    def test_is_deterministic(self):
        for frequency, days in (('weekly', None), ('monthly', None), ('yearly', None), ('custom', 10)):
            first = helpers.next_due_date('2024-01-31', frequency, days)
            second = helpers.next_due_date('2024-01-31', frequency, days)
            self.assertEqual(first, second)


class BillStatusTest(BaseTestCase):
    TODAY = '2024-06-10'

    def test_due_exactly_remind_days_out_is_due_soon(self):
        self.assertEqual(helpers.bill_status(bill(next_due='2024-06-13'), today=self.TODAY), BillStatus.DueSoon)

    def test_one_day_further_is_upcoming(self):
        self.assertEqual(helpers.bill_status(bill(next_due='2024-06-14'), today=self.TODAY), BillStatus.Upcoming)

    def test_yesterday_is_overdue(self):
        self.assertEqual(helpers.bill_status(bill(next_due='2024-06-09'), today=self.TODAY), BillStatus.Overdue)

    def test_due_today_is_due_soon(self):
        self.assertEqual(helpers.bill_status(bill(next_due='2024-06-10'), today=self.TODAY), BillStatus.DueSoon)

    def test_zero_remind_days(self):
        b = bill(next_due='2024-06-11', remind_days_before=0)
        self.assertEqual(helpers.bill_status(b, today=self.TODAY), BillStatus.Upcoming)
        b = bill(next_due='2024-06-10', remind_days_before=0)
        self.assertEqual(helpers.bill_status(b, today=self.TODAY), BillStatus.DueSoon)

    def test_unreadable_due_date_is_overdue(self):
        for value in ('', 'soon'):
            self.assertEqual(helpers.bill_status(bill(next_due=value), today=self.TODAY), BillStatus.Overdue)


class MonthlyTotalsTest(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.transactions = [
            tx(date='2024-06-01', amount=100.0, type='expense', category='Makanan'),
            tx(date='2024-06-30', amount=50.0, type='expense', category='Transport'),
            tx(date='2024-06-15', amount=1000.0, type='income', category='Gaji'),
            tx(date='2024-05-31', amount=70.0, type='expense', category='Makanan'),
            tx(date='2024-07-01', amount=30.0, type='expense', category='Makanan'),
            tx(date='2023-06-10', amount=500.0, type='income', category='Gaji'),
        ]

    def test_month_window(self):
        start, end = helpers.month_window('2024-02-15')
        self.assertEqual(start, datetime.datetime(2024, 2, 1))
        self.assertEqual(end.date(), datetime.date(2024, 2, 29))
        self.assertEqual((end.hour, end.minute, end.second), (23, 59, 59))

    def test_monthly_spending_excludes_other_months_and_income(self):
        self.assertEqual(helpers.monthly_spending(self.transactions, reference='2024-06-20'), 150.0)

    def test_monthly_spending_by_category(self):
        self.assertEqual(helpers.monthly_spending(self.transactions, 'Makanan', reference='2024-06-20'), 100.0)
        self.assertEqual(helpers.monthly_spending(self.transactions, 'Hiburan', reference='2024-06-20'), 0)

    def test_monthly_income(self):
        self.assertEqual(helpers.monthly_income(self.transactions, reference='2024-06-20'), 1000.0)
        self.assertEqual(helpers.monthly_income(self.transactions, reference='2024-05-02'), 0)

    def test_total_balance_spans_all_dates(self):
        income = sum(t.amount for t in self.transactions if t.type == 'income')
        expense = sum(t.amount for t in self.transactions if t.type == 'expense')
        self.assertEqual(helpers.total_balance(self.transactions), income - expense)
        self.assertEqual(helpers.total_balance([]), 0)

    def test_monthly_stats_matches_individual_totals(self):
        stats = helpers.monthly_stats(self.transactions, reference='2024-06-20')
        self.assertEqual(stats.income, 1000.0)
        self.assertEqual(stats.expense, 150.0)
        self.assertEqual(stats.by_category, {'Makanan': 100.0, 'Transport': 50.0})
        self.assertEqual(stats.net, 850.0)

    def test_invalid_dates_are_skipped(self):
        broken = self.transactions + [tx(date='not a date', amount=999.0)]
        self.assertEqual(helpers.monthly_spending(broken, reference='2024-06-20'), 150.0)


class FormattingTest(BaseTestCase):

    def test_format_currency_has_no_decimals(self):
        value = helpers.format_currency(45000, 'id_ID')
        self.assertIn('Rp', value)
        self.assertIn('45.000', value)
        self.assertNotIn(',00', value)

    def test_format_currency_rounds(self):
        self.assertIn('45.001', helpers.format_currency(45000.6, 'id_ID'))

    def test_format_currency_negative_keeps_sign(self):
        self.assertIn('-', helpers.format_currency(-45000, 'id_ID'))

    def test_format_currency_uses_settings_locale(self):
        self.assertEqual(helpers.format_currency(45000), helpers.format_currency(45000, 'id_ID'))

    def test_format_currency_short(self):
        self.assertEqual(helpers.format_currency_short(1_500_000), '1.5jt')
        self.assertEqual(helpers.format_currency_short(2_000), '2rb')
        self.assertEqual(helpers.format_currency_short(1_200_000_000), '1.2M')
        self.assertEqual(helpers.format_currency_short(500), '500')

    def test_format_dates(self):
        self.assertEqual(helpers.format_month_year('2024-06-10', 'en_US'), 'June 2024')
        self.assertEqual(helpers.format_date('2024-06-10', 'en_US'), '10 Jun 2024')
        self.assertEqual(helpers.format_date_short('2024-06-10', 'en_US'), '10 Jun')
        self.assertEqual(helpers.format_date('', 'en_US'), '')


class IdentityHelpersTest(BaseTestCase):

    def test_generate_id_is_unique_uuid(self):
        ids = {helpers.generate_id() for _ in range(100)}
        self.assertEqual(len(ids), 100)
        uuid.UUID(next(iter(ids)))

    def test_today_iso(self):
        self.assertEqual(helpers.today_iso(), datetime.date.today().isoformat())

    def test_now_str_is_utc(self):
        parsed = datetime.datetime.fromisoformat(helpers.now_str())
        self.assertEqual(parsed.utcoffset(), datetime.timedelta(0))
