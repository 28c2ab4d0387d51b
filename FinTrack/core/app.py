"""Composition root: builds the table store, task runner, ledger store, auth and session binder.

Nothing in FinTrack reaches for a global ledger. Everything that needs the store receives
the instance created here.
"""
import dataclasses
import logging
from typing import Optional

from .auth import AuthManager, auth_manager
from .binder import SessionBinder
from .service import QtTaskRunner, TaskRunner
from .store import LedgerStore
from .tablestore import MemoryTableStore, SheetsTableStore, TableStore
from ..data import helpers
from ..data.models import Collection
from ..settings import lib


@dataclasses.dataclass
class AppContext:
    settings: lib.SettingsAPI
    table_store: TableStore
    runner: TaskRunner
    store: LedgerStore
    auth: AuthManager
    binder: SessionBinder


def create_context(table_store: Optional[TableStore] = None, runner: Optional[TaskRunner] = None,
                   auth: Optional[AuthManager] = None, session_timeout: Optional[float] = None,
                   offline: bool = False) -> AppContext:
    """Wire up the application objects.

    Args:
        table_store: Remote table store. Defaults to the Google Sheets store, or an in-memory
            store when ``offline`` is set.
        runner: Task runner for remote calls. Defaults to :class:`QtTaskRunner`.
        auth: Auth manager. Defaults to the shared :data:`auth_manager`.
        session_timeout: Seconds to wait for the cached session. Defaults to the settings.
        offline: Keep all data in process memory.

    Returns:
        AppContext: The wired objects.
    """
    if table_store is None:
        table_store = MemoryTableStore(Collection) if offline else SheetsTableStore()
    runner = runner or QtTaskRunner()
    auth = auth or auth_manager

    store = LedgerStore(table_store, runner)
    binder = SessionBinder(auth, store, runner, timeout=session_timeout)
    logging.debug(f'Created application context with {type(table_store).__name__}')

    return AppContext(
        settings=lib.settings,
        table_store=table_store,
        runner=runner,
        store=store,
        auth=auth,
        binder=binder,
    )


def log_dashboard(store: LedgerStore) -> None:
    """Log the figures the dashboard shows: balance, this month's totals and due bills."""
    stats = helpers.monthly_stats(store.transactions)
    bills = store.active_bills()
    due = [b for b in bills if helpers.bill_status(b) != 'upcoming']

    logging.info(f'Balance: {helpers.format_currency(helpers.total_balance(store.transactions))}')
    logging.info(
        f'This month: income {helpers.format_currency(stats.income)}, '
        f'expense {helpers.format_currency(stats.expense)}'
    )
    for bill in due:
        logging.info(
            f'Bill "{bill.name}" {helpers.bill_status(bill)}: '
            f'{helpers.format_currency(bill.amount)} on {helpers.format_date(bill.next_due)}'
        )
    if not due:
        logging.info('No bills due soon.')
