"""
Google OAuth2 authentication, credential storage and session notifications.

The signed-in identity is the Google account's user id. It is fetched once from the
userinfo endpoint after sign-in and stored next to the credentials, so a later start can
restore the session without any network round-trip.
"""

import dataclasses
import enum
import json
import logging
import threading
from typing import Any, Dict, Optional

import google.auth.exceptions
import google.auth.transport.requests
import google.oauth2.credentials
import google_auth_oauthlib.flow
from PySide6 import QtCore
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..status import status

DEFAULT_SCOPES = [
    'https://www.googleapis.com/auth/spreadsheets',
    'https://www.googleapis.com/auth/userinfo.email',
    'openid',
]

AUTH_TIMEOUT: int = 60


class AuthExpiredError(Exception):
    """Raised when credentials have expired and require interactive refresh."""
    pass


class SessionEvent(enum.StrEnum):
    SignedIn = 'signed_in'
    SignedOut = 'signed_out'
    TokenRefreshed = 'token_refreshed'


@dataclasses.dataclass(frozen=True)
class Session:
    user_id: str
    email: str = ''
    token: Optional[str] = None


def _read_identity() -> Optional[Dict[str, Any]]:
    from ..settings import lib

    if not lib.settings.session_path.exists():
        return None
    try:
        with lib.settings.session_path.open('r', encoding='utf-8') as f:
            data = json.load(f)
    except (ValueError, OSError) as ex:
        logging.error(f'Failed to read the stored session: {ex}')
        return None
    if not data.get('user_id'):
        return None
    return data


def _write_identity(user_id: str, email: str) -> None:
    from ..settings import lib

    with lib.settings.session_path.open('w', encoding='utf-8') as f:
        json.dump({'user_id': user_id, 'email': email}, f, indent=4)
    logging.debug(f'Session identity saved to {lib.settings.session_path}.')


class AuthManager(QtCore.QObject):
    """Manages OAuth2 credentials with thread-safe refresh and announces session changes.

    Signals:
        sessionChanged (str, object): A :class:`SessionEvent` value and the :class:`Session`,
            or None after sign-out.
    """
    sessionChanged = QtCore.Signal(str, object)

    def __init__(self, parent: Optional[QtCore.QObject] = None):
        super().__init__(parent=parent)
        self._lock = threading.Lock()
        self._creds: Optional[google.oauth2.credentials.Credentials] = None

    def _load_creds(self) -> Optional[google.oauth2.credentials.Credentials]:
        from ..settings import lib

        if self._creds is not None:
            return self._creds
        if not lib.settings.creds_path.exists():
            return None
        try:
            self._creds = google.oauth2.credentials.Credentials.from_authorized_user_file(
                str(lib.settings.creds_path))
        except (ValueError, json.JSONDecodeError) as ex:
            # Credentials file invalid: remove it and require re-authentication
            lib.settings.creds_path.unlink(missing_ok=True)
            raise status.CredsInvalidException('Failed to load credentials') from ex
        return self._creds

    def get_cached_session(self) -> Optional[Session]:
        """
        Return the locally stored session without touching the network.

        Returns:
            Session | None: The session, or None if there are no usable credentials or no
            stored identity.
        """
        with self._lock:
            try:
                creds = self._load_creds()
            except status.CredsInvalidException:
                return None
        if creds is None:
            logging.debug('No cached credentials found.')
            return None

        identity = _read_identity()
        if identity is None:
            logging.debug('No cached session identity found.')
            return None
        return Session(user_id=identity['user_id'], email=identity.get('email', ''), token=creds.token)

    def get_valid_credentials(self) -> google.oauth2.credentials.Credentials:
        """
        Return valid credentials without any UI.

        A successful non-interactive refresh emits ``token_refreshed``.

        Raises:
            AuthExpiredError: if no credentials exist or a full interactive flow is required.
            status.AuthenticationExceptionException: if an auto-refresh fails.
            status.CredsInvalidException: if stored credentials are corrupt.
        """
        refreshed = False
        with self._lock:
            creds = self._load_creds()
            if creds is None:
                raise AuthExpiredError('No credentials found; interactive authentication required')

            if creds.expired:
                if not creds.refresh_token:
                    raise AuthExpiredError('Credentials expired; interactive authentication required')
                try:
                    creds.refresh(google.auth.transport.requests.Request())
                except google.auth.exceptions.GoogleAuthError as ex:
                    raise status.AuthenticationExceptionException(
                        'Failed to auto-refresh credentials') from ex
                save_creds(creds)
                refreshed = True

        if refreshed:
            identity = _read_identity()
            if identity:
                session = Session(user_id=identity['user_id'], email=identity.get('email', ''), token=creds.token)
                self.sessionChanged.emit(SessionEvent.TokenRefreshed.value, session)
        return creds

    def get_current_user(self) -> Optional[Session]:
        """
        Ask Google who the credentials belong to. This is a network call.

        Returns:
            Session | None: The verified session, or None when signed out.

        Raises:
            status.ServiceUnavailableException: If the userinfo endpoint cannot be reached.
        """
        try:
            creds = self.get_valid_credentials()
        except AuthExpiredError:
            return None

        try:
            client = build('oauth2', 'v2', credentials=creds)
            info: Dict[str, Any] = client.userinfo().get().execute()
        except HttpError as ex:
            raise status.ServiceUnavailableException(f'Could not fetch the user profile: {ex}') from ex

        user_id = str(info.get('id', ''))
        if not user_id:
            return None
        email = info.get('email', '')
        _write_identity(user_id, email)
        return Session(user_id=user_id, email=email, token=creds.token)

    def sign_in(self) -> Session:
        """Run the interactive OAuth flow and announce the new session.

        Must be called from the main thread; the browser flow itself runs on an
        :class:`AuthFlowWorker`.

        Raises:
            status.ClientSecretNotFoundException: If client_secret.json is missing.
            status.AuthenticationExceptionException: If the flow fails, is cancelled or times out.
        """
        app = QtCore.QCoreApplication.instance()
        if not app:
            raise RuntimeError('No Qt application instance; cannot perform interactive auth')
        if QtCore.QThread.currentThread() != app.thread():
            raise RuntimeError('sign_in must be called from the main thread')

        creds = authenticate()
        with self._lock:
            self._creds = creds

        from . import service
        service.clear_service()

        session = self.get_current_user()
        if session is None:
            raise status.AuthenticationExceptionException('Could not verify the signed-in account.')

        logging.info(f'Signed in as {session.email or session.user_id}')
        self.sessionChanged.emit(SessionEvent.SignedIn.value, session)
        return session

    def sign_out(self) -> None:
        """
        Delete stored credentials and identity, and announce the sign-out.
        """
        from ..settings import lib
        from . import service

        with self._lock:
            self._creds = None
            for path in (lib.settings.creds_path, lib.settings.session_path):
                if path.exists():
                    logging.debug(f'Deleting {path}...')
                    path.unlink()

        service.clear_service()
        logging.info('Signed out.')
        self.sessionChanged.emit(SessionEvent.SignedOut.value, None)


auth_manager = AuthManager()


class AuthFlowWorker(QtCore.QThread):
    """
    Runs OAuth web flow in a background thread.

    Signals:
        resultReady (object): Emitted with credentials on success.
        errorOccurred (object): Emitted with the exception on failure.
    """
    resultReady = QtCore.Signal(object)
    errorOccurred = QtCore.Signal(object)

    def __init__(self, flow: google_auth_oauthlib.flow.InstalledAppFlow, parent=None):
        super().__init__(parent)
        self.flow = flow
        self.creds = None

    def run(self):
        logging.debug(f'[Thread-{threading.get_ident()}] AuthFlowWorker.run: starting local server flow')
        try:
            self.creds = self.flow.run_local_server(port=0)
        except Exception as ex:
            logging.debug(f'[Thread-{threading.get_ident()}] AuthFlowWorker.run: {ex}')
            self.errorOccurred.emit(ex)
            return

        if not self.creds or not self.creds.token:
            self.errorOccurred.emit(
                status.AuthenticationExceptionException('Authentication did not complete successfully.'))
            return
        self.resultReady.emit(self.creds)


def save_creds(creds: google.oauth2.credentials.Credentials) -> None:
    """
    Save OAuth2 credentials to the configured token file.
    """
    from ..settings import lib
    with open(lib.settings.creds_path, 'w', encoding='utf-8') as token_file:
        token_file.write(creds.to_json())

    logging.debug(f'Credentials saved to {lib.settings.creds_path}.')


def authenticate(timeout: int = AUTH_TIMEOUT) -> google.oauth2.credentials.Credentials:
    """
    Run the installed-app OAuth flow and wait for the browser round-trip.

    Returns:
        google.oauth2.credentials.Credentials: The authenticated credentials.

    Raises:
        status.ClientSecretNotFoundException: If the client secret file is not found.
        status.AuthenticationExceptionException: If authentication fails, is cancelled or times out.
    """
    from ..settings import lib
    if not lib.settings.client_secret_path.exists():
        raise status.ClientSecretNotFoundException

    lib.settings.validate_client_secret()
    data = lib.settings.get_section('client_secret')

    logging.debug('Starting new OAuth flow...')
    flow = google_auth_oauthlib.flow.InstalledAppFlow.from_client_config(data, scopes=DEFAULT_SCOPES)

    auth_worker = AuthFlowWorker(flow)
    result = {'creds': None, 'error': None}
    loop = QtCore.QEventLoop()

    auth_worker.resultReady.connect(lambda c: (result.update({'creds': c}), loop.quit()))
    auth_worker.errorOccurred.connect(lambda err: (result.update({'error': err}), loop.quit()))

    timer = QtCore.QTimer()
    timer.setSingleShot(True)
    timer.timeout.connect(loop.quit)

    auth_worker.start()
    timer.start(timeout * 1000)
    loop.exec()
    timer.stop()

    if auth_worker.isRunning():
        auth_worker.terminate()
        auth_worker.wait()
        raise status.AuthenticationExceptionException('OAuth flow timed out (no response from browser).')

    logging.debug('OAuth flow completed.')
    if result['error']:
        raise status.AuthenticationExceptionException(f'OAuth flow failed: {result["error"]}')
    if not result['creds']:
        raise status.AuthenticationExceptionException('Authentication was cancelled or timed out.')

    creds = result['creds']
    save_creds(creds)
    return creds
