"""Unittest base class for creating a clean test environment."""
import logging
import os
import shutil
import tempfile
import unittest
from typing import Any, Dict, List, Optional
from unittest.mock import patch

from PySide6 import QtCore

from FinTrack.core import auth
from FinTrack.core import service
from FinTrack.core.service import ImmediateTaskRunner, RemoteTask, TaskRunner
from FinTrack.core.store import LedgerStore
from FinTrack.core.tablestore import MemoryTableStore
from FinTrack.data.models import Collection
from FinTrack.settings import lib

USER_ID = 'user-1'
OTHER_USER_ID = 'user-2'


def make_transaction(**overrides: Any) -> Dict[str, Any]:
    fields = {
        'date': '2024-06-10',
        'amount': 45000.0,
        'type': 'expense',
        'category': 'Makanan',
        'description': 'Lunch',
    }
    fields.update(overrides)
    return fields


def make_bill(**overrides: Any) -> Dict[str, Any]:
    fields = {
        'name': 'Internet',
        'amount': 350000.0,
        'category': 'Tagihan',
        'frequency': 'monthly',
        'due_date': '2024-01-31',
        'next_due': '2024-01-31',
        'is_active': True,
        'remind_days_before': 3,
        'auto_record': True,
    }
    fields.update(overrides)
    return fields


def make_goal(**overrides: Any) -> Dict[str, Any]:
    fields = {
        'name': 'Laptop',
        'target_amount': 1000.0,
        'saved_amount': 0.0,
        'icon': 'laptop',
        'color': '#6C5CE7',
        'is_completed': False,
    }
    fields.update(overrides)
    return fields


class ManualTaskRunner(TaskRunner):
    """Queues submitted calls until :meth:`run_all` is called."""

    def __init__(self) -> None:
        self.queue: List[Any] = []

    def submit(self, func, *args, description='', max_attempts=1, **kwargs) -> RemoteTask:
        task = RemoteTask(description=description)
        self.queue.append((task, func, args, kwargs))
        return task

    def pending(self) -> int:
        return len(self.queue)

    def run_all(self) -> None:
        while self.queue:
            task, func, args, kwargs = self.queue.pop(0)
            try:
                result = func(*args, **kwargs)
            except Exception as ex:
                task._reject(ex)
            else:
                task._resolve(result)


class Recorder:
    """Collects the arguments of every emission of a signal."""

    def __init__(self, signal: QtCore.SignalInstance) -> None:
        self.calls: List[tuple] = []
        signal.connect(self.record)

    def record(self, *args: Any) -> None:
        self.calls.append(args)


class BaseTestCase(unittest.TestCase):
    """Base test case that runs against a temporary config directory."""

    tmp_dir: str

    def setUp(self) -> None:
        """Set up a clean config directory and reinitialize the settings API."""
        # Ensure headless Qt
        if 'QT_QPA_PLATFORM' not in os.environ:
            os.environ['QT_QPA_PLATFORM'] = 'offscreen'
            logging.debug('QT_QPA_PLATFORM set to offscreen for headless testing.')

        if not QtCore.QCoreApplication.instance():
            QtCore.QCoreApplication([])  # type: ignore
            logging.debug('QtCore.QCoreApplication initialized for tests.')

        self.tmp_dir = tempfile.mkdtemp(prefix='fintrack_test_')
        lib.settings = lib.SettingsAPI(root=self.tmp_dir)
        logging.debug(f'SettingsAPI reinitialized in {self.tmp_dir}.')

        auth.auth_manager._creds = None
        service._cached_service = None

    def tearDown(self) -> None:
        patch.stopall()
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    @staticmethod
    def wait_for(signal: QtCore.SignalInstance, timeout: int = 5000) -> bool:
        """Spin an event loop until ``signal`` fires. Returns False on timeout."""
        loop = QtCore.QEventLoop()
        fired = []

        def _on_signal(*args: Any) -> None:
            fired.append(args)
            loop.quit()

        timer = QtCore.QTimer()
        timer.setSingleShot(True)
        timer.timeout.connect(loop.quit)

        signal.connect(_on_signal)
        timer.start(timeout)
        loop.exec()
        timer.stop()
        signal.disconnect(_on_signal)
        return bool(fired)

    def wait_for_task(self, task: RemoteTask, timeout: int = 5000) -> bool:
        if task.done():
            return True
        self.wait_for(task.finished, timeout=timeout)
        return task.done()

    @staticmethod
    def process_events(ms: int = 50) -> None:
        loop = QtCore.QEventLoop()
        timer = QtCore.QTimer()
        timer.setSingleShot(True)
        timer.timeout.connect(loop.quit)
        timer.start(ms)
        loop.exec()


class BaseStoreTestCase(BaseTestCase):
    """Provides a ledger store backed by an in-memory table store and inline task runner."""

    table_store: MemoryTableStore
    store: LedgerStore

    def setUp(self) -> None:
        super().setUp()
        self.table_store = MemoryTableStore(Collection)
        self.runner = ImmediateTaskRunner()
        self.store = LedgerStore(self.table_store, self.runner, read_retries=1)

    def bind(self, user_id: Optional[str] = USER_ID) -> None:
        self.store.load_all(user_id)

    def remote(self, collection: Collection, user_id: str = USER_ID):
        return self.table_store.select(collection.value, {'user_id': user_id})
