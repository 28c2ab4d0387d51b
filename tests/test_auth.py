import json
from unittest.mock import MagicMock, patch

import google.auth.exceptions
import google.oauth2.credentials as cred_mod

from FinTrack.core import auth
from FinTrack.core import service
from FinTrack.settings import lib
from FinTrack.status.status import AuthenticationExceptionException, CredsInvalidException
from tests.base import BaseTestCase, Recorder, USER_ID


class DummyCreds:
    def __init__(self, expired: bool = False, refresh_token='rt', refresh_error: Exception = None):
        self.expired = expired
        self.refresh_token = refresh_token
        self.refresh_error = refresh_error
        self.token = 'access-token'

    def refresh(self, request):
        if self.refresh_error is not None:
            raise self.refresh_error
        self.expired = False
        self.token = 'refreshed-token'

    def to_json(self):
        return json.dumps({'token': self.token})


class TestAuthManager(BaseTestCase):
    """Unit tests for the AuthManager behavior."""

    def use_creds(self, dummy: DummyCreds) -> None:
        patch.object(
            cred_mod.Credentials,
            'from_authorized_user_file',
            new=classmethod(lambda cls, f: dummy)
        ).start()
        # Ensure creds file exists
        lib.settings.creds_path.write_text(json.dumps({'token': 't'}), encoding='utf-8')

    def write_identity(self, user_id: str = USER_ID) -> None:
        lib.settings.session_path.write_text(json.dumps({'user_id': user_id, 'email': 'me@example.com'}),
                                             encoding='utf-8')

    def test_missing_credentials_raises_AuthExpiredError(self):
        manager = auth.AuthManager()
        with self.assertRaises(auth.AuthExpiredError):
            manager.get_valid_credentials()

    def test_invalid_credentials_file_raises_CredsInvalidException(self):
        # Write invalid JSON to creds file
        creds_path = lib.settings.creds_path
        creds_path.write_text('not a json', encoding='utf-8')
        manager = auth.AuthManager()
        with self.assertRaises(CredsInvalidException):
            manager.get_valid_credentials()
        self.assertFalse(creds_path.exists())

    def test_valid_credentials_are_returned_as_is(self):
        dummy = DummyCreds()
        self.use_creds(dummy)
        manager = auth.AuthManager()
        refreshed = Recorder(manager.sessionChanged)

        self.assertIs(manager.get_valid_credentials(), dummy)
        self.assertEqual(refreshed.calls, [])

    def test_auto_refresh_succeeds(self):
        dummy = DummyCreds(expired=True)
        self.use_creds(dummy)
        self.write_identity()
        patch.object(auth, 'save_creds', new=lambda creds: None).start()

        manager = auth.AuthManager()
        events = Recorder(manager.sessionChanged)
        result = manager.get_valid_credentials()

        self.assertIs(result, dummy)
        self.assertEqual(len(events.calls), 1)
        event, session = events.calls[0]
        self.assertEqual(event, auth.SessionEvent.TokenRefreshed)
        self.assertEqual(session.user_id, USER_ID)
        self.assertEqual(session.token, 'refreshed-token')

    def test_no_refresh_token_raises_AuthExpiredError(self):
        self.use_creds(DummyCreds(expired=True, refresh_token=None))
        manager = auth.AuthManager()
        with self.assertRaises(auth.AuthExpiredError):
            manager.get_valid_credentials()

    def test_refresh_failure_raises_AuthenticationExceptionException(self):
        error = google.auth.exceptions.RefreshError('refresh failed')
        self.use_creds(DummyCreds(expired=True, refresh_error=error))
        manager = auth.AuthManager()
        with self.assertRaises(AuthenticationExceptionException):
            manager.get_valid_credentials()


class TestCachedSession(BaseTestCase):

    def test_no_credentials(self):
        self.assertIsNone(auth.AuthManager().get_cached_session())

    def test_credentials_without_identity(self):
        patch.object(cred_mod.Credentials, 'from_authorized_user_file',
                     new=classmethod(lambda cls, f: DummyCreds())).start()
        lib.settings.creds_path.write_text('{}', encoding='utf-8')
        self.assertIsNone(auth.AuthManager().get_cached_session())

    def test_corrupt_credentials(self):
        lib.settings.creds_path.write_text('not a json', encoding='utf-8')
        self.assertIsNone(auth.AuthManager().get_cached_session())

    def test_corrupt_identity(self):
        patch.object(cred_mod.Credentials, 'from_authorized_user_file',
                     new=classmethod(lambda cls, f: DummyCreds())).start()
        lib.settings.creds_path.write_text('{}', encoding='utf-8')
        lib.settings.session_path.write_text('{', encoding='utf-8')
        self.assertIsNone(auth.AuthManager().get_cached_session())

    def test_stored_session(self):
        patch.object(cred_mod.Credentials, 'from_authorized_user_file',
                     new=classmethod(lambda cls, f: DummyCreds(expired=True))).start()
        lib.settings.creds_path.write_text('{}', encoding='utf-8')
        lib.settings.session_path.write_text(json.dumps({'user_id': USER_ID, 'email': 'me@example.com'}),
                                             encoding='utf-8')

        # Expired credentials still identify the user, no refresh is attempted
        session = auth.AuthManager().get_cached_session()
        self.assertEqual(session, auth.Session(user_id=USER_ID, email='me@example.com', token='access-token'))


class TestSignInOut(BaseTestCase):

    @patch('FinTrack.core.auth.build')
    def test_get_current_user_stores_identity(self, mock_build):
        manager = auth.AuthManager()
        manager._creds = DummyCreds()
        mock_build.return_value.userinfo.return_value.get.return_value.execute.return_value = {
            'id': USER_ID, 'email': 'me@example.com'
        }

        session = manager.get_current_user()
        self.assertEqual(session.user_id, USER_ID)
        stored = json.loads(lib.settings.session_path.read_text(encoding='utf-8'))
        self.assertEqual(stored, {'user_id': USER_ID, 'email': 'me@example.com'})

    def test_get_current_user_signed_out(self):
        self.assertIsNone(auth.AuthManager().get_current_user())

    @patch('FinTrack.core.auth.authenticate')
    def test_sign_in_announces_session(self, mock_authenticate):
        manager = auth.AuthManager()
        creds = DummyCreds()
        mock_authenticate.return_value = creds
        service._cached_service = object()
        patch.object(manager, 'get_current_user', return_value=auth.Session(user_id=USER_ID)).start()
        events = Recorder(manager.sessionChanged)

        session = manager.sign_in()
        self.assertEqual(session.user_id, USER_ID)
        self.assertIs(manager._creds, creds)
        self.assertIsNone(service._cached_service)
        self.assertEqual(events.calls, [(auth.SessionEvent.SignedIn.value, session)])

    @patch('FinTrack.core.auth.authenticate')
    def test_sign_in_without_verified_account(self, mock_authenticate):
        manager = auth.AuthManager()
        mock_authenticate.return_value = DummyCreds()
        patch.object(manager, 'get_current_user', return_value=None).start()
        with self.assertRaises(AuthenticationExceptionException):
            manager.sign_in()

    def test_sign_out_clears_creds_and_service(self):
        """sign_out should delete stored creds and identity, clear the service cache and announce it"""
        manager = auth.AuthManager()
        manager._creds = object()
        lib.settings.creds_path.write_text('old', encoding='utf-8')
        lib.settings.session_path.write_text('{}', encoding='utf-8')
        client = MagicMock()
        service._cached_service = client
        events = Recorder(manager.sessionChanged)

        manager.sign_out()
        self.assertFalse(lib.settings.creds_path.exists(), 'Credentials file was not deleted')
        self.assertFalse(lib.settings.session_path.exists(), 'Session file was not deleted')
        self.assertIsNone(service._cached_service, 'Service cache was not cleared')
        self.assertIsNone(manager._creds)
        self.assertEqual(events.calls, [(auth.SessionEvent.SignedOut.value, None)])

    def test_authenticate_requires_client_secret(self):
        from FinTrack.status import status
        lib.settings.client_secret_path.unlink()
        with self.assertRaises(status.ClientSecretNotFoundException):
            auth.authenticate(timeout=1)
