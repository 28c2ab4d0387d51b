"""Binds the authentication session lifecycle to a :class:`FinTrack.core.store.LedgerStore`.

On start the cached session is checked without any network round-trip. If a session exists
its user is bound to the store and the ledger is loaded. The check is bounded by the
``session_timeout`` setting: a slow or failing check counts as signed out, so the
application never waits indefinitely.

Afterwards the binder follows :attr:`FinTrack.core.auth.AuthManager.sessionChanged`: a
sign-in loads the ledger once per user, and a sign-out clears the store.
"""
import logging
from typing import Any, Optional

from PySide6 import QtCore

from .auth import AuthManager, Session, SessionEvent
from .service import RemoteTask, TaskRunner
from .store import LedgerStore

DEFAULT_TIMEOUT: float = 5.0


class SessionBinder(QtCore.QObject):
    """
    Keeps the ledger store bound to the signed-in user.

    Signals:
        ready (bool): Emitted exactly once after :meth:`start`, with True when a session was
            found before the timeout.
    """
    ready = QtCore.Signal(bool)

    def __init__(self, auth: AuthManager, store: LedgerStore, runner: TaskRunner,
                 timeout: Optional[float] = None, parent: Optional[QtCore.QObject] = None) -> None:
        super().__init__(parent=parent)
        self._auth = auth
        self._store = store
        self._runner = runner

        if timeout is None:
            from ..settings import lib
            timeout = lib.settings['session_timeout'] or DEFAULT_TIMEOUT
        self.timeout: float = float(timeout)

        self._bound_user: Optional[str] = None
        self._started: bool = False
        self._is_ready: bool = False
        self._connected: bool = False
        self.check_task: Optional[RemoteTask] = None

        self._timer = QtCore.QTimer(self)
        self._timer.setSingleShot(True)

        self._connect_signals()

    def _connect_signals(self) -> None:
        self._timer.timeout.connect(self._on_timeout)
        self._auth.sessionChanged.connect(self._on_session_changed)
        self._connected = True

    @property
    def is_ready(self) -> bool:
        return self._is_ready

    @property
    def bound_user(self) -> Optional[str]:
        return self._bound_user

    def start(self) -> None:
        """Check the cached session and bind it, giving up after :attr:`timeout` seconds."""
        if self._started:
            logging.debug('Session binder already started.')
            return
        self._started = True

        logging.debug(f'Checking for a cached session (timeout {self.timeout}s)')
        self._timer.start(int(self.timeout * 1000))
        self.check_task = self._runner.submit(self._auth.get_cached_session, description='session check')
        self.check_task.add_done_callback(self._on_session_checked)

    def stop(self) -> None:
        """Stop following session changes."""
        self._timer.stop()
        if not self._connected:
            return
        self._auth.sessionChanged.disconnect(self._on_session_changed)
        self._connected = False

    def _set_ready(self, signed_in: bool) -> None:
        self._timer.stop()
        self._is_ready = True
        logging.info('Session ready: ' + ('signed in' if signed_in else 'signed out'))
        self.ready.emit(signed_in)

    def _on_session_checked(self, task: RemoteTask) -> None:
        if self._is_ready:
            logging.debug('Ignoring session check result that arrived after the binder was ready.')
            return

        session: Optional[Session] = None
        if task.error() is not None:
            logging.warning(f'Session check failed, continuing signed out: {task.error()}')
        else:
            session = task.result()

        if session:
            self._bind(session.user_id)
        self._set_ready(bool(session))

    @QtCore.Slot()
    def _on_timeout(self) -> None:
        if self._is_ready:
            return
        logging.warning(f'Session check timed out after {self.timeout}s, continuing signed out.')
        self._set_ready(False)

    def _bind(self, user_id: str) -> None:
        if user_id == self._bound_user and self._store.user_id == user_id:
            logging.debug(f'User {user_id} is already bound, not reloading.')
            return
        self._bound_user = user_id
        self._store.load_all(user_id)

    @QtCore.Slot(str, object)
    def _on_session_changed(self, event: str, session: Any) -> None:
        logging.debug(f'Session event: {event}')

        if event == SessionEvent.SignedOut:
            self._bound_user = None
            self._store.clear()
            return

        if not session:
            return

        if event == SessionEvent.SignedIn:
            self._bind(session.user_id)
        elif event == SessionEvent.TokenRefreshed:
            if session.user_id != self._bound_user:
                self._bind(session.user_id)
        else:
            logging.debug(f'Unhandled session event "{event}"')
            return

        if self._started and not self._is_ready:
            self._set_ready(True)
