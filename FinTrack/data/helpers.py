"""Pure date and amount helpers used by the ledger store, reports and receipt parsing.

None of the functions here touch the store or the network. Where "today" matters, it can be
passed in explicitly; the system clock is only read when it is omitted.
"""
import dataclasses
import datetime
import logging
import uuid
from typing import Dict, Iterable, List, Optional, Tuple, Union

import pandas as pd

from .models import Bill, BillFrequency, BillStatus, DEFAULT_CUSTOM_DAYS, Transaction, TransactionType
from ..settings import lib
from ..settings import locale

DateLike = Union[datetime.date, datetime.datetime, str]

ISO_DATE_FORMAT: str = '%Y-%m-%d'


@dataclasses.dataclass
class MonthlyStats:
    income: float = 0.0
    expense: float = 0.0
    by_category: Dict[str, float] = dataclasses.field(default_factory=dict)

    @property
    def net(self) -> float:
        return self.income - self.expense


def _locale(value: Optional[str]) -> str:
    if value:
        return value
    return lib.settings['locale'] or locale.DEFAULT_LOCALE


def to_date(value: DateLike) -> datetime.date:
    """Convert a date, datetime or ISO string to a :class:`datetime.date`.

    Raises:
        ValueError: If a string value is not an ISO date.
    """
    if isinstance(value, datetime.datetime):
        return value.date()
    if isinstance(value, datetime.date):
        return value
    return datetime.date.fromisoformat(str(value)[:10])


def today_iso() -> str:
    return datetime.date.today().strftime(ISO_DATE_FORMAT)


def now_str() -> str:
    """Current UTC time as an ISO 8601 timestamp."""
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


def generate_id() -> str:
    return str(uuid.uuid4())


def format_currency(amount: float, locale_name: Optional[str] = None) -> str:
    """Format an amount as currency with zero decimal places.

    The locale and currency default to the ``metadata`` section of the settings. Negative
    amounts keep their sign.

    Args:
        amount: The amount to format.
        locale_name: Optional locale override, e.g. ``'en_US'``.

    Returns:
        str: The formatted amount, e.g. ``'Rp 45.000'``.
    """
    locale_name = _locale(locale_name)
    currency = lib.settings['currency'] or locale.get_currency_from_locale(locale_name)
    return locale.format_currency_value(amount, locale_name, currency=currency, decimals=0)


def format_currency_short(amount: float) -> str:
    """Abbreviate large amounts: ``rb`` for thousands, ``jt`` for millions, ``M`` for billions."""
    if amount >= 1_000_000_000:
        return f'{amount / 1_000_000_000:.1f}M'
    if amount >= 1_000_000:
        return f'{amount / 1_000_000:.1f}jt'
    if amount >= 1_000:
        return f'{amount / 1_000:.0f}rb'
    if float(amount).is_integer():
        return str(int(amount))
    return str(amount)


def format_date(value: DateLike, locale_name: Optional[str] = None) -> str:
    """Format a date as e.g. ``10 Jun 2024``. Unreadable values are returned unchanged."""
    try:
        date = to_date(value)
    except ValueError:
        logging.debug(f'Cannot format invalid date "{value}"')
        return str(value)
    return locale.format_date(date, _locale(locale_name), fmt='d MMM yyyy')


def format_date_short(value: DateLike, locale_name: Optional[str] = None) -> str:
    return locale.format_date(to_date(value), _locale(locale_name), fmt='d MMM')


def format_month_year(value: DateLike, locale_name: Optional[str] = None) -> str:
    return locale.format_date(to_date(value), _locale(locale_name), fmt='MMMM yyyy')


def month_window(reference: Optional[DateLike] = None) -> Tuple[datetime.datetime, datetime.datetime]:
    """Return the first and last instant of the calendar month containing ``reference``.

    Args:
        reference: Any date in the month. Defaults to now.

    Returns:
        tuple: ``(start, end)`` datetimes, both inclusive.
    """
    ref = to_date(reference) if reference is not None else datetime.date.today()
    start = datetime.datetime(ref.year, ref.month, 1)
    next_month = (start + pd.offsets.MonthBegin(1)).to_pydatetime()
    end = next_month - datetime.timedelta(microseconds=1)
    return start, end


def _transaction_date(transaction: Transaction) -> Optional[datetime.date]:
    try:
        return to_date(transaction.date)
    except ValueError:
        logging.debug(f'Transaction {transaction.id} has an invalid date "{transaction.date}", skipping.')
        return None


def monthly_transactions(transactions: Iterable[Transaction],
                         reference: Optional[DateLike] = None) -> List[Transaction]:
    """Transactions dated within the month of ``reference``."""
    start, end = month_window(reference)
    result = []
    for t in transactions:
        d = _transaction_date(t)
        if d is not None and start.date() <= d <= end.date():
            result.append(t)
    return result


def monthly_spending(transactions: Iterable[Transaction], category: Optional[str] = None,
                     reference: Optional[DateLike] = None) -> float:
    """Sum of expenses in the month of ``reference``, optionally for a single category."""
    return sum(
        t.amount for t in monthly_transactions(transactions, reference)
        if t.type == TransactionType.Expense and (not category or t.category == category)
    )


def monthly_income(transactions: Iterable[Transaction], reference: Optional[DateLike] = None) -> float:
    return sum(
        t.amount for t in monthly_transactions(transactions, reference)
        if t.type == TransactionType.Income
    )


def total_balance(transactions: Iterable[Transaction]) -> float:
    """Lifetime balance: income adds, expense subtracts, regardless of date."""
    return sum(t.signed_amount for t in transactions)


def monthly_stats(transactions: Iterable[Transaction], reference: Optional[DateLike] = None) -> MonthlyStats:
    """Income, expense and per-category expense of one month in a single pass."""
    start, end = month_window(reference)
    stats = MonthlyStats()
    for t in transactions:
        d = _transaction_date(t)
        if d is None or not start.date() <= d <= end.date():
            continue
        if t.type == TransactionType.Income:
            stats.income += t.amount
        else:
            stats.expense += t.amount
            stats.by_category[t.category] = stats.by_category.get(t.category, 0.0) + t.amount
    return stats


def next_due_date(current_due: DateLike, frequency: Union[BillFrequency, str],
                  custom_days: Optional[int] = None) -> str:
    """Roll a due date forward by one frequency step.

    Monthly and yearly steps keep the day of the month and clamp it to the length of the
    target month, so ``2024-01-31`` becomes ``2024-02-29`` and ``2024-02-29`` a year later
    becomes ``2025-02-28``. Custom steps fall back to 30 days when ``custom_days`` is
    missing or not positive.

    Args:
        current_due: The current due date.
        frequency: One of :class:`BillFrequency`.
        custom_days: Day count for custom frequencies.

    Returns:
        str: The next due date as ``YYYY-MM-DD``.

    Raises:
        ValueError: If ``current_due`` is not a date.
    """
    date = pd.Timestamp(to_date(current_due))

    if frequency == BillFrequency.Weekly:
        offset = pd.DateOffset(weeks=1)
    elif frequency == BillFrequency.Yearly:
        offset = pd.DateOffset(years=1)
    elif frequency == BillFrequency.Custom:
        days = custom_days if isinstance(custom_days, int) and not isinstance(custom_days, bool) else 0
        offset = pd.DateOffset(days=days if days > 0 else DEFAULT_CUSTOM_DAYS)
    else:
        offset = pd.DateOffset(months=1)

    return (date + offset).strftime(ISO_DATE_FORMAT)


def days_until(value: DateLike, today: Optional[DateLike] = None) -> int:
    today = to_date(today) if today is not None else datetime.date.today()
    return (to_date(value) - today).days


def bill_status(bill: Bill, today: Optional[DateLike] = None) -> BillStatus:
    """Classify a bill by the whole days left until its ``next_due``.

    A bill due exactly ``remind_days_before`` days from today is already due soon. A bill
    whose ``next_due`` cannot be read is reported as overdue.
    """
    try:
        n = days_until(bill.next_due, today=today)
    except ValueError:
        logging.warning(f'Bill {bill.id} has an invalid next due date "{bill.next_due}".')
        return BillStatus.Overdue
    if n < 0:
        return BillStatus.Overdue
    if n <= bill.remind_days_before:
        return BillStatus.DueSoon
    return BillStatus.Upcoming
