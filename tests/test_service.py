"""
Unit tests for FinTrack.core.service: retries, remote tasks and task runners.

Run:
    python -m unittest tests.test_service
"""
import threading
from unittest.mock import MagicMock, patch

from FinTrack.core import service
from FinTrack.core.auth import AuthExpiredError
from FinTrack.core.service import ImmediateTaskRunner, QtTaskRunner, RemoteTask, call_with_retry
from FinTrack.core.signals import signals
from FinTrack.status import status
from tests.base import BaseTestCase, Recorder


class Flaky:
    """Fails ``failures`` times with ``error``, then returns ``result``."""

    def __init__(self, failures: int, error: Exception, result='ok') -> None:
        self.failures = failures
        self.error = error
        self.result = result
        self.calls = 0

    def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


class CallWithRetryTest(BaseTestCase):

    def test_succeeds_after_transient_failures(self):
        func = Flaky(2, ConnectionError('reset'))
        self.assertEqual(call_with_retry(func, max_attempts=3, wait_seconds=0), 'ok')
        self.assertEqual(func.calls, 3)

    def test_raises_last_error_when_attempts_run_out(self):
        func = Flaky(5, ConnectionError('reset'))
        with self.assertRaises(ConnectionError):
            call_with_retry(func, max_attempts=3, wait_seconds=0)
        self.assertEqual(func.calls, 3)

    def test_single_attempt_by_default(self):
        func = Flaky(1, ConnectionError('reset'))
        with self.assertRaises(ConnectionError):
            call_with_retry(func, wait_seconds=0)
        self.assertEqual(func.calls, 1)

    def test_non_retryable_errors(self):
        for error in (status.RecordNotFoundException('gone'), ValueError('bad'), KeyError('k')):
            func = Flaky(5, error)
            with self.assertRaises(type(error)):
                call_with_retry(func, max_attempts=3, wait_seconds=0)
            self.assertEqual(func.calls, 1)

    def test_expired_auth_requests_sign_in(self):
        requested = Recorder(signals.authenticationRequested)
        func = Flaky(5, AuthExpiredError('expired'))
        with self.assertRaises(AuthExpiredError):
            call_with_retry(func, max_attempts=3, wait_seconds=0)
        self.assertEqual(func.calls, 1)
        self.assertEqual(len(requested.calls), 1)

    def test_arguments_are_passed_through(self):
        func = MagicMock(return_value=1)
        call_with_retry(func, 'a', max_attempts=2, wait_seconds=0, order_by='date')
        func.assert_called_once_with('a', order_by='date')


class RemoteTaskTest(BaseTestCase):

    def test_resolve(self):
        task = RemoteTask(description='insert')
        succeeded = Recorder(task.succeeded)
        finished = Recorder(task.finished)

        self.assertFalse(task.done())
        with self.assertRaises(RuntimeError):
            task.result()

        task._resolve([1])
        self.assertTrue(task.done())
        self.assertIsNone(task.error())
        self.assertEqual(task.result(), [1])
        self.assertEqual(succeeded.calls, [([1],)])
        self.assertEqual(len(finished.calls), 1)

    def test_reject(self):
        task = RemoteTask()
        failed = Recorder(task.failed)
        error = status.ServiceUnavailableException('offline')

        task._reject(error)
        self.assertIs(task.error(), error)
        with self.assertRaises(status.ServiceUnavailableException):
            task.result()
        self.assertEqual(failed.calls, [(error,)])

    def test_resolves_only_once(self):
        task = RemoteTask()
        task._resolve(1)
        task._reject(ValueError('late'))
        task._resolve(2)
        self.assertEqual(task.result(), 1)

    def test_done_callbacks(self):
        task = RemoteTask()
        seen = []
        task.add_done_callback(seen.append)
        self.assertEqual(seen, [])

        task._resolve(None)
        self.assertEqual(seen, [task])

        # Already finished: called right away
        task.add_done_callback(seen.append)
        self.assertEqual(seen, [task, task])

    def test_repr(self):
        task = RemoteTask(description='select bills')
        self.assertIn('pending', repr(task))
        task._reject(ValueError('x'))
        self.assertIn('failed', repr(task))


class ImmediateTaskRunnerTest(BaseTestCase):

    def test_submit_runs_inline(self):
        runner = ImmediateTaskRunner()
        task = runner.submit(lambda a, b=0: a + b, 1, b=2, description='add')
        self.assertTrue(task.done())
        self.assertEqual(task.result(), 3)
        self.assertEqual(runner.pending(), 0)

    def test_submit_captures_errors(self):
        runner = ImmediateTaskRunner()
        task = runner.submit(Flaky(1, ConnectionError('reset')))
        self.assertIsInstance(task.error(), ConnectionError)

    def test_retries_reads(self):
        runner = ImmediateTaskRunner()
        func = Flaky(2, ConnectionError('reset'))
        task = runner.submit(func, max_attempts=3)
        self.assertEqual(task.result(), 'ok')
        self.assertEqual(func.calls, 3)


class QtTaskRunnerTest(BaseTestCase):

    def setUp(self) -> None:
        super().setUp()
        self.runner = QtTaskRunner(wait_seconds=0)

    def tearDown(self) -> None:
        self.runner.wait(5000)
        super().tearDown()

    def test_result_is_delivered_on_the_main_thread(self):
        main = threading.get_ident()
        worker_threads = []
        delivered_threads = []

        def _work():
            worker_threads.append(threading.get_ident())
            return 'done'

        task = self.runner.submit(_work, description='work')
        task.succeeded.connect(lambda _: delivered_threads.append(threading.get_ident()))

        self.assertTrue(self.wait_for_task(task))
        self.assertEqual(task.result(), 'done')
        self.assertNotEqual(worker_threads, [main])
        self.assertEqual(delivered_threads, [main])

    def test_failure(self):
        task = self.runner.submit(Flaky(1, ConnectionError('reset')))
        self.assertTrue(self.wait_for_task(task))
        self.assertIsInstance(task.error(), ConnectionError)

    def test_pending(self):
        event = threading.Event()
        task = self.runner.submit(event.wait, 5)
        self.assertEqual(self.runner.pending(), 1)

        event.set()
        self.assertTrue(self.wait_for_task(task))
        self.assertEqual(self.runner.pending(), 0)


class GetServiceTest(BaseTestCase):

    @patch('FinTrack.core.service.build')
    @patch('FinTrack.core.auth.auth_manager.get_valid_credentials')
    def test_client_is_cached(self, mock_creds, mock_build):
        mock_creds.return_value = MagicMock()
        mock_build.return_value = MagicMock()

        first = service.get_service()
        second = service.get_service()
        self.assertIs(first, second)
        mock_build.assert_called_once_with('sheets', 'v4', credentials=mock_creds.return_value)
        self.assertEqual(mock_creds.call_count, 2)

    @patch('FinTrack.core.service.build')
    @patch('FinTrack.core.auth.auth_manager.get_valid_credentials')
    def test_clear_service(self, mock_creds, mock_build):
        client = MagicMock()
        mock_build.return_value = client
        service.get_service()
        service.clear_service()

        client.close.assert_called_once()
        self.assertIsNone(service._cached_service)

    @patch('FinTrack.core.service.build', side_effect=RuntimeError('discovery failed'))
    @patch('FinTrack.core.auth.auth_manager.get_valid_credentials')
    def test_build_failure(self, mock_creds, mock_build):
        with self.assertRaises(status.ServiceUnavailableException):
            service.get_service()

    @patch('FinTrack.core.auth.auth_manager.get_valid_credentials', side_effect=AuthExpiredError('expired'))
    def test_requires_credentials(self, mock_creds):
        with self.assertRaises(AuthExpiredError):
            service.get_service()
