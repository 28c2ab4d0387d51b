"""Summaries of the ledger for the dashboard, budget, goal, bill and report views.

All functions take the plain entity lists held by the ledger store and return pandas
DataFrames (or small dicts for single-figure summaries). Amounts are never signed in the
returned frames, except for the ``net`` and ``signed`` columns.
"""
import datetime
import logging
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from . import helpers
from .models import Bill, BillFrequency, BillStatus, Budget, BudgetPeriod, Category, SavingsGoal, Transaction, \
    TransactionType

TRANSACTION_COLUMNS: List[str] = ['id', 'date', 'amount', 'type', 'category', 'description', 'signed']
DEFAULT_ALERT_THRESHOLD: float = 80.0


def transactions_frame(transactions: Iterable[Transaction]) -> pd.DataFrame:
    """Transactions as a DataFrame with a datetime ``date`` and a ``signed`` amount column.

    Transactions with unparseable dates are dropped.
    """
    rows = [
        {
            'id': t.id,
            'date': t.date,
            'amount': float(t.amount),
            'type': str(t.type),
            'category': t.category,
            'description': t.description,
            'signed': float(t.signed_amount),
        }
        for t in transactions
    ]
    df = pd.DataFrame(rows, columns=TRANSACTION_COLUMNS)
    df['date'] = pd.to_datetime(df['date'], format='%Y-%m-%d', errors='coerce')
    invalid = df['date'].isna()
    if invalid.any():
        logging.debug(f'Dropping {int(invalid.sum())} transaction(s) with invalid dates.')
        df = df[~invalid].copy()
    df['amount'] = df['amount'].astype(float)
    df['signed'] = df['signed'].astype(float)
    return df.reset_index(drop=True)


def period_window(period: BudgetPeriod, reference: Optional[helpers.DateLike] = None):
    """First and last day of the budget period containing ``reference``.

    Weeks start on Monday.
    """
    ref = helpers.to_date(reference) if reference is not None else datetime.date.today()
    if period == BudgetPeriod.Weekly:
        start = ref - datetime.timedelta(days=ref.weekday())
        return start, start + datetime.timedelta(days=6)
    if period == BudgetPeriod.Yearly:
        return datetime.date(ref.year, 1, 1), datetime.date(ref.year, 12, 31)
    start, end = helpers.month_window(ref)
    return start.date(), end.date()


def _expenses_between(df: pd.DataFrame, start: datetime.date, end: datetime.date) -> pd.DataFrame:
    mask = (
            (df['type'] == TransactionType.Expense.value)
            & (df['date'] >= pd.Timestamp(start))
            & (df['date'] <= pd.Timestamp(end))
    )
    return df[mask]


def budget_progress(budgets: Iterable[Budget], transactions: Iterable[Transaction],
                    categories: Iterable[Category] = (), reference: Optional[helpers.DateLike] = None
                    ) -> pd.DataFrame:
    """Spent, percentage and remaining amount of every budget in its current period.

    Returns:
        pd.DataFrame: One row per budget with the columns ``id``, ``category``, ``period``,
        ``limit_amount``, ``spent``, ``percentage``, ``remaining``, ``icon`` and ``color``.
    """
    df = transactions_frame(transactions)
    lookup = {c.name: c for c in categories if c.type == TransactionType.Expense}

    rows = []
    for budget in budgets:
        start, end = period_window(budget.period, reference)
        spent_df = _expenses_between(df, start, end)
        spent = float(spent_df.loc[spent_df['category'] == budget.category, 'amount'].sum())
        percentage = spent / budget.limit_amount * 100.0 if budget.limit_amount > 0 else 0.0
        category = lookup.get(budget.category)
        rows.append({
            'id': budget.id,
            'category': budget.category,
            'period': str(budget.period),
            'limit_amount': budget.limit_amount,
            'spent': spent,
            'percentage': percentage,
            'remaining': budget.limit_amount - spent,
            'icon': category.icon if category else '',
            'color': category.color if category else '',
        })

    return pd.DataFrame(rows, columns=[
        'id', 'category', 'period', 'limit_amount', 'spent', 'percentage', 'remaining', 'icon', 'color'
    ])


def budget_alerts(budgets: Iterable[Budget], transactions: Iterable[Transaction],
                  categories: Iterable[Category] = (), threshold: Optional[float] = None,
                  reference: Optional[helpers.DateLike] = None) -> pd.DataFrame:
    """Budgets whose spending reached ``threshold`` percent, highest first.

    The threshold defaults to the ``budget_alert_threshold`` setting.
    """
    if threshold is None:
        from ..settings import lib
        threshold = lib.settings['budget_alert_threshold'] or DEFAULT_ALERT_THRESHOLD

    df = budget_progress(budgets, transactions, categories, reference=reference)
    df = df[df['percentage'] >= threshold]
    return df.sort_values('percentage', ascending=False, kind='stable').reset_index(drop=True)


def category_breakdown(transactions: Iterable[Transaction], categories: Iterable[Category] = (),
                       reference: Optional[helpers.DateLike] = None) -> pd.DataFrame:
    """Expenses of the month of ``reference`` grouped by category, largest first.

    Returns:
        pd.DataFrame: Columns ``category``, ``amount``, ``share`` (percent of the month's
        expenses), ``icon`` and ``color``.
    """
    columns = ['category', 'amount', 'share', 'icon', 'color']
    start, end = helpers.month_window(reference)
    df = _expenses_between(transactions_frame(transactions), start.date(), end.date())
    if df.empty:
        return pd.DataFrame(columns=columns)

    grouped = df.groupby('category', as_index=False)['amount'].sum()
    total = grouped['amount'].sum()
    grouped['share'] = grouped['amount'] / total * 100.0 if total else 0.0

    lookup = {c.name: c for c in categories}
    grouped['icon'] = grouped['category'].map(lambda n: lookup[n].icon if n in lookup else '')
    grouped['color'] = grouped['category'].map(lambda n: lookup[n].color if n in lookup else '')
    return grouped.sort_values('amount', ascending=False, kind='stable').reset_index(drop=True)[columns]


def monthly_trend(transactions: Iterable[Transaction], months: int = 6,
                  reference: Optional[helpers.DateLike] = None) -> pd.DataFrame:
    """Income, expense and net of the last ``months`` months, oldest first.

    Months without transactions are included with zero totals.
    """
    ref = helpers.to_date(reference) if reference is not None else datetime.date.today()
    periods = pd.period_range(end=pd.Period(year=ref.year, month=ref.month, freq='M'), periods=months, freq='M')

    df = transactions_frame(transactions)
    df['month'] = df['date'].dt.to_period('M')
    df = df[df['month'].isin(periods)]

    def _totals(_type: TransactionType) -> pd.Series:
        sub = df[df['type'] == _type.value]
        return sub.groupby('month')['amount'].sum().reindex(periods, fill_value=0.0).astype(float)

    result = pd.DataFrame({
        'month': [str(p) for p in periods],
        'income': _totals(TransactionType.Income).values,
        'expense': _totals(TransactionType.Expense).values,
    })
    result['net'] = result['income'] - result['expense']
    return result


def daily_spending(transactions: Iterable[Transaction], days: int = 7,
                   today: Optional[helpers.DateLike] = None) -> pd.DataFrame:
    """Expense total of each of the last ``days`` days, ending today, oldest first."""
    end = helpers.to_date(today) if today is not None else datetime.date.today()
    index = pd.date_range(end=pd.Timestamp(end), periods=days, freq='D')

    df = _expenses_between(transactions_frame(transactions), index[0].date(), end)
    daily = df.groupby('date')['amount'].sum().reindex(index, fill_value=0.0)
    return pd.DataFrame({'date': [d.strftime(helpers.ISO_DATE_FORMAT) for d in index],
                         'amount': daily.astype(float).values})


def goal_summary(goals: Iterable[SavingsGoal]) -> Dict[str, Any]:
    """Counts and totals of the savings goals."""
    goals = list(goals)
    total_saved = sum(g.saved_amount for g in goals)
    total_target = sum(g.target_amount for g in goals)
    return {
        'active': sum(1 for g in goals if not g.is_completed),
        'completed': sum(1 for g in goals if g.is_completed),
        'total_saved': total_saved,
        'total_target': total_target,
        'progress': min(total_saved / total_target * 100.0, 100.0) if total_target > 0 else 0.0,
    }


def bill_summary(bills: Iterable[Bill], today: Optional[helpers.DateLike] = None) -> Dict[str, Any]:
    """Counts of the active bills by status and the total of the monthly ones."""
    active = [b for b in bills if b.is_active]
    statuses = [helpers.bill_status(b, today=today) for b in active]
    return {
        'active': len(active),
        'monthly_total': sum(b.amount for b in active if b.frequency == BillFrequency.Monthly),
        'overdue': statuses.count(BillStatus.Overdue),
        'due_soon': statuses.count(BillStatus.DueSoon),
        'upcoming': statuses.count(BillStatus.Upcoming),
    }


def filter_transactions(transactions: Iterable[Transaction], type: Optional[str] = None,
                        category: Optional[str] = None, search: Optional[str] = None) -> List[Transaction]:
    """Filter transactions by type, category name and a case-insensitive search text.

    The search text is matched against the description and the category.
    """
    needle = search.strip().lower() if search else ''
    result = []
    for t in transactions:
        if type and t.type != type:
            continue
        if category and t.category != category:
            continue
        if needle and needle not in t.description.lower() and needle not in t.category.lower():
            continue
        result.append(t)
    return result
