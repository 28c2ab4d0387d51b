"""Google API clients and asynchronous remote task dispatch.

Remote calls never block the caller. A call is submitted to a :class:`TaskRunner` and the
caller gets back a :class:`RemoteTask`, a small Qt future whose outcome is delivered on the
thread that created it:

.. code-block:: python

    task = runner.submit(table_store.insert, 'transactions', record, description='insert')
    task.succeeded.connect(on_inserted)
    task.failed.connect(on_error)

:class:`QtTaskRunner` runs each call on its own :class:`AsyncWorker` thread.
:class:`ImmediateTaskRunner` runs calls inline and is used by headless scripts and tests.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from PySide6 import QtCore
from googleapiclient.discovery import build

from .auth import auth_manager, AuthExpiredError
from ..status import status

# Cached Sheets API client to avoid repeated discovery/auth costs
_cached_service: Any = None

MAX_RETRIES: int = 3
WAIT_SECONDS: float = 2.0

# Errors that will not go away by trying again
NON_RETRYABLE = (
    status.AuthenticationExceptionException,
    status.CredsInvalidException,
    status.ClientSecretNotFoundException,
    status.ClientSecretInvalidException,
    status.SpreadsheetIdNotConfiguredException,
    status.TableNotFoundException,
    status.RecordNotFoundException,
    status.ValidationFailedException,
    ValueError,
    KeyError,
    TypeError,
)


def clear_service() -> None:
    """
    Clears the cached Sheets API client.
    """
    global _cached_service

    try:
        if _cached_service:
            _cached_service.close()
    except Exception as ex:
        logging.debug(f'Failed closing cached Sheets service client: {ex}')

    _cached_service = None


def get_service() -> Any:
    """
    Builds (or returns cached) Google Sheets service client.

    Returns:
        The Sheets API Resource, reusing a single client per app run.

    Raises:
        AuthExpiredError: If interactive sign-in is required.
        status.ServiceUnavailableException: If the client cannot be built.
    """
    global _cached_service
    logging.debug(f'[Thread-{threading.get_ident()}] get_service: requesting valid credentials')
    creds: Any = auth_manager.get_valid_credentials()
    if _cached_service is not None:
        return _cached_service
    try:
        service: Any = build('sheets', 'v4', credentials=creds)
        logging.debug('Google Sheets service client created successfully.')
        _cached_service = service
        return service
    except Exception as ex:
        raise status.ServiceUnavailableException from ex


def call_with_retry(func: Callable[..., Any], *args: Any, max_attempts: int = 1,
                    wait_seconds: float = WAIT_SECONDS, **kwargs: Any) -> Any:
    """Call ``func`` until it succeeds or ``max_attempts`` is used up.

    Expired credentials ask the application for interactive authentication and are raised
    straight away, as are errors listed in :data:`NON_RETRYABLE`.

    Raises:
        Exception: The last error raised by ``func``.
    """
    attempts = 0
    last_exception: Optional[Exception] = None
    while attempts < max(max_attempts, 1):
        attempts += 1
        try:
            return func(*args, **kwargs)
        except AuthExpiredError:
            from .signals import signals
            signals.authenticationRequested.emit()
            raise
        except NON_RETRYABLE:
            raise
        except Exception as ex:
            last_exception = ex
            logging.debug(f'Attempt {attempts}/{max_attempts} of {getattr(func, "__name__", func)} failed: {ex}')
            if attempts < max_attempts and wait_seconds:
                time.sleep(wait_seconds)
    raise last_exception


class AsyncWorker(QtCore.QThread):
    """
    Generic worker thread with retry logic for blocking functions.

    Signals:
        resultReady (object): Emitted with the function's result on success.
        errorOccurred (object): Emitted with the exception on failure.
    """
    resultReady = QtCore.Signal(object)
    errorOccurred = QtCore.Signal(object)

    def __init__(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        super().__init__()
        self.func = func
        self.args = args

        self.max_attempts = kwargs.pop('max_attempts', MAX_RETRIES)
        self.wait_seconds = kwargs.pop('wait_seconds', WAIT_SECONDS)
        self.kwargs = kwargs

    def run(self) -> None:
        try:
            result = call_with_retry(
                self.func, *self.args,
                max_attempts=self.max_attempts,
                wait_seconds=self.wait_seconds,
                **self.kwargs
            )
        except Exception as ex:
            self.errorOccurred.emit(ex)
            return
        self.resultReady.emit(result)


class RemoteTask(QtCore.QObject):
    """
    Observable outcome of a single fire-and-forget remote call.

    Signals:
        succeeded (object): Emitted with the call's return value.
        failed (object): Emitted with the exception raised by the call.
        finished (): Emitted after either of the above.
    """
    succeeded = QtCore.Signal(object)
    failed = QtCore.Signal(object)
    finished = QtCore.Signal()

    def __init__(self, description: str = '', parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent=parent)
        self.description = description
        self._done: bool = False
        self._result: Any = None
        self._error: Optional[Exception] = None
        self._callbacks: List[Callable[['RemoteTask'], None]] = []

    def __repr__(self) -> str:
        state = 'pending' if not self._done else ('failed' if self._error else 'succeeded')
        return f'<RemoteTask "{self.description}" {state}>'

    def done(self) -> bool:
        return self._done

    def error(self) -> Optional[Exception]:
        return self._error

    def result(self) -> Any:
        """Return the call's result.

        Raises:
            RuntimeError: If the task has not finished yet.
            Exception: The call's own error, if it failed.
        """
        if not self._done:
            raise RuntimeError(f'{self!r} has not finished yet.')
        if self._error is not None:
            raise self._error
        return self._result

    def add_done_callback(self, func: Callable[['RemoteTask'], None]) -> None:
        """Call ``func(task)`` once the task finishes, or right away if it already has."""
        if self._done:
            func(self)
            return
        self._callbacks.append(func)

    @QtCore.Slot(object)
    def _resolve(self, result: Any) -> None:
        if self._done:
            return
        self._result = result
        self._done = True
        self.succeeded.emit(result)
        self._finish()

    @QtCore.Slot(object)
    def _reject(self, error: Exception) -> None:
        if self._done:
            return
        self._error = error
        self._done = True
        logging.debug(f'{self!r}: {error}')
        self.failed.emit(error)
        self._finish()

    def _finish(self) -> None:
        callbacks, self._callbacks = self._callbacks, []
        for func in callbacks:
            func(self)
        self.finished.emit()


class TaskRunner:
    """Dispatches blocking remote calls and returns a :class:`RemoteTask` for each."""

    def submit(self, func: Callable[..., Any], *args: Any, description: str = '',
               max_attempts: int = 1, **kwargs: Any) -> RemoteTask:
        raise NotImplementedError

    def pending(self) -> int:
        """Number of submitted calls that have not finished yet."""
        return 0


class QtTaskRunner(TaskRunner):
    """Runs each remote call on its own :class:`AsyncWorker` thread.

    Results are delivered to the :class:`RemoteTask` through queued signal connections, so
    the task's signals always fire on the thread that submitted the call.
    """

    def __init__(self, wait_seconds: float = WAIT_SECONDS) -> None:
        self.wait_seconds = wait_seconds
        # Workers and tasks must outlive the submitting call
        self._running: Dict[AsyncWorker, RemoteTask] = {}

    def submit(self, func: Callable[..., Any], *args: Any, description: str = '',
               max_attempts: int = 1, **kwargs: Any) -> RemoteTask:
        task = RemoteTask(description=description)
        worker = AsyncWorker(
            func, *args,
            max_attempts=max_attempts,
            wait_seconds=self.wait_seconds,
            **kwargs
        )
        self._running[worker] = task

        worker.resultReady.connect(task._resolve, QtCore.Qt.QueuedConnection)
        worker.errorOccurred.connect(task._reject, QtCore.Qt.QueuedConnection)
        worker.finished.connect(lambda: self._on_worker_finished(worker))

        logging.debug(f'Dispatching {task!r}')
        worker.start()
        return task

    def _on_worker_finished(self, worker: AsyncWorker) -> None:
        self._running.pop(worker, None)
        worker.deleteLater()

    def pending(self) -> int:
        return sum(1 for t in self._running.values() if not t.done())

    def wait(self, timeout_ms: int = 30000) -> bool:
        """Block until every running worker has finished. Returns False on timeout."""
        deadline = time.monotonic() + timeout_ms / 1000.0
        for worker in list(self._running):
            remaining = max(int((deadline - time.monotonic()) * 1000), 0)
            if not worker.wait(remaining):
                return False
        return True


class ImmediateTaskRunner(TaskRunner):
    """Runs remote calls inline on the calling thread.

    The returned task has already finished, so local state mutated before submission is
    still observed first, exactly as with :class:`QtTaskRunner`.
    """

    def submit(self, func: Callable[..., Any], *args: Any, description: str = '',
               max_attempts: int = 1, **kwargs: Any) -> RemoteTask:
        task = RemoteTask(description=description)
        try:
            result = call_with_retry(func, *args, max_attempts=max_attempts, wait_seconds=0, **kwargs)
        except Exception as ex:
            task._reject(ex)
        else:
            task._resolve(result)
        return task
