"""The ledger store: one user's transactions, budgets, categories, bills and savings goals.

Every mutation is local-first. The in-memory collection changes synchronously, then the
matching remote call is submitted to the task runner and the method returns without waiting.
A failed remote call never rolls the local change back. It is logged and announced through
:attr:`LedgerStore.remoteFailed` so callers can compensate if they need to.

Two remote calls for the same record are independent tasks; the order in which they reach
the remote store is not guaranteed.

Example:

.. code-block:: python

    store = LedgerStore(table_store, runner)
    store.load_all('user-1')
    tx = store.add_transaction({
        'date': '2024-06-01', 'amount': 45000.0, 'type': 'expense',
        'category': 'Makanan', 'description': 'Lunch',
    })
    store.last_task.failed.connect(lambda ex: print(f'not saved: {ex}'))

"""
import enum
import functools
import logging
from typing import Any, Dict, List, Optional

from PySide6 import QtCore

from .service import RemoteTask, TaskRunner
from .tablestore import TableStore
from ..data import helpers
from ..data.models import (
    Bill, BillStatus, Budget, Category, Collection, DEFAULT_CATEGORIES, Record, SavingsGoal, Transaction,
    TransactionType
)

BILL_STATUS_ORDER: Dict[BillStatus, int] = {
    BillStatus.Overdue: 0,
    BillStatus.DueSoon: 1,
    BillStatus.Upcoming: 2,
}


class LoadState(enum.StrEnum):
    Idle = 'idle'
    Loading = 'loading'
    Ready = 'ready'


class Action(enum.StrEnum):
    Select = 'select'
    Insert = 'insert'
    Update = 'update'
    Delete = 'delete'


def _plain(value: Any) -> Any:
    return value.value if isinstance(value, enum.Enum) else value


class LedgerStore(QtCore.QObject):
    """In-memory ledger of the signed-in user with fire-and-forget remote persistence.

    Args:
        table_store: The remote table store.
        runner: Dispatches the blocking table store calls.
        read_retries: Attempts per collection read in :meth:`load_all`. Defaults to the
            ``read_retries`` metadata setting.

    Signals:
        collectionChanged (str): A collection's local contents changed.
        loadStateChanged (str): The :class:`LoadState` changed.
        userChanged (str): The bound user changed. Empty string when unbound.
        remoteSucceeded (str, str, str): collection, action, record id.
        remoteFailed (str, str, str, str): collection, action, record id, error message.

    Attributes:
        last_task (RemoteTask): The most recently dispatched remote call.
    """
    collectionChanged = QtCore.Signal(str)
    loadStateChanged = QtCore.Signal(str)
    userChanged = QtCore.Signal(str)
    remoteSucceeded = QtCore.Signal(str, str, str)
    remoteFailed = QtCore.Signal(str, str, str, str)

    def __init__(self, table_store: TableStore, runner: TaskRunner, read_retries: Optional[int] = None,
                 parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent=parent)
        self._table_store = table_store
        self._runner = runner

        if read_retries is None:
            from ..settings import lib
            read_retries = lib.settings['read_retries'] or 1
        self._read_retries: int = read_retries

        self._data: Dict[Collection, List[Record]] = {c: [] for c in Collection}
        self._user_id: Optional[str] = None
        self._load_state: LoadState = LoadState.Idle

        # Incremented by every load and clear; stale load results are dropped
        self._generation: int = 0
        self._loaded: Dict[Collection, List[Record]] = {}

        self.last_task: Optional[RemoteTask] = None

    @property
    def user_id(self) -> Optional[str]:
        return self._user_id

    @property
    def load_state(self) -> LoadState:
        return self._load_state

    @property
    def transactions(self) -> List[Transaction]:
        return list(self._data[Collection.Transactions])

    @property
    def budgets(self) -> List[Budget]:
        return list(self._data[Collection.Budgets])

    @property
    def categories(self) -> List[Category]:
        return list(self._data[Collection.Categories])

    @property
    def bills(self) -> List[Bill]:
        return list(self._data[Collection.Bills])

    @property
    def savings_goals(self) -> List[SavingsGoal]:
        return list(self._data[Collection.SavingsGoals])

    def _set_load_state(self, state: LoadState) -> None:
        if state == self._load_state:
            return
        self._load_state = state
        logging.debug(f'Ledger load state: {state}')
        self.loadStateChanged.emit(state.value)

    def _set_collection(self, collection: Collection, records: List[Record]) -> None:
        self._data[collection] = records
        self.collectionChanged.emit(collection.value)

    def set_user_id(self, user_id: Optional[str]) -> None:
        """Bind the store to a user. Data of a previously bound user is dropped."""
        user_id = user_id or None
        if user_id == self._user_id:
            return
        if self._user_id is not None:
            for collection in Collection:
                if self._data[collection]:
                    self._set_collection(collection, [])
        self._user_id = user_id
        logging.debug(f'Ledger bound to user: {user_id}')
        self.userChanged.emit(user_id or '')

    # Remote dispatch

    def _dispatch(self, collection: Collection, action: Action, record_id: str, func, *args: Any,
                  **kwargs: Any) -> RemoteTask:
        task = self._runner.submit(
            func, *args,
            description=f'{action} {collection} {record_id}'.strip(),
            **kwargs
        )
        task.add_done_callback(functools.partial(self._on_remote_done, collection, action, record_id))
        self.last_task = task
        return task

    def _on_remote_done(self, collection: Collection, action: Action, record_id: str, task: RemoteTask) -> None:
        error = task.error()
        if error is None:
            self.remoteSucceeded.emit(collection.value, action.value, record_id)
            return
        logging.warning(f'Remote {action} on "{collection}" ({record_id or "batch"}) failed: {error}')
        self.remoteFailed.emit(collection.value, action.value, record_id, str(error))

    # Generic CRUD

    def _index(self, collection: Collection, record_id: str) -> int:
        return next((i for i, r in enumerate(self._data[collection]) if r.id == record_id), -1)

    def _get(self, collection: Collection, record_id: str) -> Optional[Record]:
        idx = self._index(collection, record_id)
        return self._data[collection][idx] if idx >= 0 else None

    @staticmethod
    def _check_fields(collection: Collection, fields: Dict[str, Any]) -> None:
        unknown = set(fields) - set(collection.entity.field_names())
        if unknown:
            raise ValueError(f'Unknown {collection.entity.__name__} field(s): {sorted(unknown)}')

    def _create(self, collection: Collection, fields: Dict[str, Any]) -> Optional[Record]:
        self._check_fields(collection, fields)
        if not self._user_id:
            logging.warning(f'Cannot add to "{collection}": no user is signed in.')
            return None

        record = collection.entity.from_record({
            **fields,
            'id': helpers.generate_id(),
            'user_id': self._user_id,
            'created_at': helpers.now_str(),
        })

        items = list(self._data[collection])
        if collection == Collection.Transactions:
            items.insert(0, record)
        else:
            items.append(record)
        self._set_collection(collection, items)

        self._dispatch(
            collection, Action.Insert, record.id,
            self._table_store.insert, collection.value, record.to_record()
        )
        return record

    def _update(self, collection: Collection, record_id: str, fields: Dict[str, Any]) -> Optional[Record]:
        self._check_fields(collection, fields)

        idx = self._index(collection, record_id)
        record = None
        if idx >= 0:
            record = self._data[collection][idx].merged(fields)
            items = list(self._data[collection])
            items[idx] = record
            self._set_collection(collection, items)
            merged = record.to_record()
            payload = {k: merged[k] for k in fields}
        else:
            logging.debug(f'"{record_id}" is not in local "{collection}", updating remote only.')
            payload = {k: _plain(v) for k, v in fields.items()}

        self._dispatch(
            collection, Action.Update, record_id,
            self._table_store.update, collection.value, payload, record_id
        )
        return record

    def _delete(self, collection: Collection, record_id: str) -> None:
        idx = self._index(collection, record_id)
        if idx >= 0:
            items = list(self._data[collection])
            del items[idx]
            self._set_collection(collection, items)
        else:
            logging.debug(f'"{record_id}" is not in local "{collection}", deleting remote only.')

        self._dispatch(
            collection, Action.Delete, record_id,
            self._table_store.delete, collection.value, record_id
        )

    # Transactions

    def add_transaction(self, fields: Dict[str, Any]) -> Optional[Transaction]:
        """Add a transaction at the top of the list. Returns None when no user is bound."""
        return self._create(Collection.Transactions, fields)

    def update_transaction(self, transaction_id: str, fields: Dict[str, Any]) -> Optional[Transaction]:
        return self._update(Collection.Transactions, transaction_id, fields)

    def delete_transaction(self, transaction_id: str) -> None:
        self._delete(Collection.Transactions, transaction_id)

    # Budgets

    def add_budget(self, fields: Dict[str, Any]) -> Optional[Budget]:
        return self._create(Collection.Budgets, fields)

    def update_budget(self, budget_id: str, fields: Dict[str, Any]) -> Optional[Budget]:
        return self._update(Collection.Budgets, budget_id, fields)

    def delete_budget(self, budget_id: str) -> None:
        self._delete(Collection.Budgets, budget_id)

    # Categories

    def add_category(self, fields: Dict[str, Any]) -> Optional[Category]:
        return self._create(Collection.Categories, fields)

    def update_category(self, category_id: str, fields: Dict[str, Any]) -> Optional[Category]:
        """Update a category.

        Transactions, budgets and bills reference categories by name and are not rewritten
        when a category is renamed.
        """
        return self._update(Collection.Categories, category_id, fields)

    def delete_category(self, category_id: str) -> None:
        self._delete(Collection.Categories, category_id)

    # Bills

    def add_bill(self, fields: Dict[str, Any]) -> Optional[Bill]:
        return self._create(Collection.Bills, fields)

    def update_bill(self, bill_id: str, fields: Dict[str, Any]) -> Optional[Bill]:
        return self._update(Collection.Bills, bill_id, fields)

    def delete_bill(self, bill_id: str) -> None:
        """Remove a bill for good. Setting ``is_active`` to False only hides it instead."""
        self._delete(Collection.Bills, bill_id)

    # Savings goals

    def add_savings_goal(self, fields: Dict[str, Any]) -> Optional[SavingsGoal]:
        return self._create(Collection.SavingsGoals, fields)

    def update_savings_goal(self, goal_id: str, fields: Dict[str, Any]) -> Optional[SavingsGoal]:
        return self._update(Collection.SavingsGoals, goal_id, fields)

    def delete_savings_goal(self, goal_id: str) -> None:
        self._delete(Collection.SavingsGoals, goal_id)

    # Lookups

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return self._get(Collection.Transactions, transaction_id)

    def get_budget(self, budget_id: str) -> Optional[Budget]:
        return self._get(Collection.Budgets, budget_id)

    def get_category(self, category_id: str) -> Optional[Category]:
        return self._get(Collection.Categories, category_id)

    def get_bill(self, bill_id: str) -> Optional[Bill]:
        return self._get(Collection.Bills, bill_id)

    def get_savings_goal(self, goal_id: str) -> Optional[SavingsGoal]:
        return self._get(Collection.SavingsGoals, goal_id)

    def active_bills(self, today: Optional[str] = None) -> List[Bill]:
        """Active bills, overdue first, then due soon, then upcoming; each by next due date."""
        bills = [b for b in self._data[Collection.Bills] if b.is_active]
        return sorted(
            bills,
            key=lambda b: (BILL_STATUS_ORDER[helpers.bill_status(b, today=today)], b.next_due)
        )

    # Loading

    def load_all(self, user_id: Optional[str] = None) -> None:
        """Replace every collection with the remote contents for the user.

        The five reads run independently. A read that fails leaves its collection empty
        instead of keeping stale data. When the categories read comes back empty the
        default categories are seeded. Results of a load superseded by a newer
        :meth:`load_all` or :meth:`clear` are dropped.
        """
        if user_id:
            self.set_user_id(user_id)
        if not self._user_id:
            logging.warning('Cannot load the ledger: no user is signed in.')
            return

        self._generation += 1
        generation = self._generation
        self._loaded = {}
        self._set_load_state(LoadState.Loading)
        logging.info(f'Loading ledger for user {self._user_id}')

        user_id = self._user_id
        for collection in Collection:
            order_by, descending = collection.order_by or (None, False)
            task = self._runner.submit(
                self._table_store.select, collection.value, {'user_id': user_id},
                order_by=order_by, descending=descending,
                description=f'{Action.Select} {collection}',
                max_attempts=self._read_retries,
            )
            task.add_done_callback(functools.partial(self._on_collection_loaded, generation, collection))

    def _on_collection_loaded(self, generation: int, collection: Collection, task: RemoteTask) -> None:
        if generation != self._generation:
            logging.debug(f'Dropping stale "{collection}" load result.')
            return

        error = task.error()
        if error is not None:
            logging.warning(f'Failed to load "{collection}", showing it empty: {error}')
            self.remoteFailed.emit(collection.value, Action.Select.value, '', str(error))
            records = None
        else:
            records = [collection.entity.from_record(r) for r in task.result()]
        self._loaded[collection] = records

        if len(self._loaded) < len(Collection):
            return

        loaded, self._loaded = self._loaded, {}
        for c in Collection:
            self._set_collection(c, loaded[c] or [])
        logging.info(
            f'Loaded {len(self._data[Collection.Transactions])} transactions, '
            f'{len(self._data[Collection.Bills])} bills and '
            f'{len(self._data[Collection.SavingsGoals])} savings goals.'
        )

        # None marks a failed read; only a successful empty read means a new user
        if loaded[Collection.Categories] == []:
            self.seed_default_categories()
        self._set_load_state(LoadState.Ready)

    def seed_default_categories(self, user_id: Optional[str] = None) -> List[Category]:
        """Create the default categories for a user that has none.

        The defaults are set locally right away and replaced with the inserted rows once the
        remote insert succeeds.
        """
        user_id = user_id or self._user_id
        if not user_id:
            logging.warning('Cannot seed categories: no user is signed in.')
            return []

        categories = [
            Category(id=helpers.generate_id(), user_id=user_id, name=name, icon=icon, color=color, type=_type)
            for name, icon, color, _type in DEFAULT_CATEGORIES
        ]
        logging.info(f'Seeding {len(categories)} default categories for user {user_id}')
        self._set_collection(Collection.Categories, categories)

        records = [c.to_record() for c in categories]
        generation = self._generation
        task = self._dispatch(
            Collection.Categories, Action.Insert, '',
            self._table_store.insert, Collection.Categories.value, records
        )
        task.add_done_callback(functools.partial(self._on_categories_seeded, generation, user_id))
        return categories

    def _on_categories_seeded(self, generation: int, user_id: str, task: RemoteTask) -> None:
        if task.error() is not None:
            return
        if generation != self._generation or user_id != self._user_id:
            return
        inserted = task.result() or []
        if inserted:
            self._set_collection(Collection.Categories, [Category.from_record(r) for r in inserted])

    # Bill lifecycle and goal deposits

    def mark_bill_paid(self, bill_id: str, today: Optional[str] = None) -> Optional[Bill]:
        """Record a bill payment and roll its ``next_due`` forward by one step.

        With ``auto_record`` an expense transaction named ``Bill: <name>`` is added first,
        dated ``today``. The transaction and the due date update are two independent remote
        calls. ``due_date`` and ``is_active`` are left alone.

        Returns:
            Bill | None: The updated bill, or None if it does not exist or its ``next_due``
            is not a date. Nothing is recorded in either case.
        """
        bill = self.get_bill(bill_id)
        if bill is None:
            logging.debug(f'Cannot mark "{bill_id}" paid: no such bill.')
            return None

        try:
            next_due = helpers.next_due_date(bill.next_due, bill.frequency, bill.custom_days)
        except ValueError:
            logging.error(f'Cannot mark bill "{bill.name}" paid: invalid next due date "{bill.next_due}".')
            return None

        if bill.auto_record:
            self.add_transaction({
                'date': today or helpers.today_iso(),
                'amount': bill.amount,
                'type': TransactionType.Expense.value,
                'category': bill.category,
                'description': f'Bill: {bill.name}',
            })

        logging.info(f'Bill "{bill.name}" paid, next due {next_due}')
        return self.update_bill(bill.id, {'next_due': next_due})

    def add_saving(self, goal_id: str, amount: float) -> Optional[SavingsGoal]:
        """Deposit into a savings goal and refresh its completed flag.

        Deposits must be positive, see :func:`FinTrack.data.models.validate_deposit`.

        Returns:
            SavingsGoal | None: The updated goal, or None if it does not exist.
        """
        goal = self.get_savings_goal(goal_id)
        if goal is None:
            logging.debug(f'Cannot deposit into "{goal_id}": no such goal.')
            return None

        saved = goal.saved_amount + amount
        return self.update_savings_goal(goal.id, {
            'saved_amount': saved,
            'is_completed': saved >= goal.target_amount,
        })

    # Session helpers

    def clear(self) -> None:
        """Drop all local data, unbind the user and return to idle."""
        self._generation += 1
        self._loaded = {}
        for collection in Collection:
            if self._data[collection]:
                self._set_collection(collection, [])
        if self._user_id is not None:
            self._user_id = None
            self.userChanged.emit('')
        self._set_load_state(LoadState.Idle)

    def snapshot(self) -> Dict[str, Any]:
        """All local collections as plain records, suitable for a JSON backup."""
        data: Dict[str, Any] = {
            'user_id': self._user_id,
            'exported_at': helpers.now_str(),
        }
        for collection in Collection:
            data[collection.value] = [r.to_record() for r in self._data[collection]]
        return data

    def reset_user_data(self) -> List[RemoteTask]:
        """Delete every transaction, budget and bill of the bound user, locally and remotely.

        Categories and savings goals are kept.
        """
        if not self._user_id:
            logging.warning('Cannot reset data: no user is signed in.')
            return []

        tasks = []
        for collection in (Collection.Transactions, Collection.Budgets, Collection.Bills):
            self._set_collection(collection, [])
            tasks.append(self._dispatch(
                collection, Action.Delete, '',
                self._table_store.delete_where, collection.value, {'user_id': self._user_id}
            ))
        logging.info(f'Reset transactions, budgets and bills of user {self._user_id}')
        return tasks
