"""
FinTrack: personal-finance ledger synchronised with a Google spreadsheet.

This package provides:

- :mod:`FinTrack.core` – The ledger store, remote table store, task dispatch, authentication and session binding.
- :mod:`FinTrack.data` – Entities, date/amount helpers, receipt parsing and pandas reports.
- :mod:`FinTrack.settings` – Settings management with schema validation, and Babel locale formatting.
- :mod:`FinTrack.log` – Logging setup with an in-memory log tank.
- :mod:`FinTrack.status` – Status codes and exceptions.

Use :func:`FinTrack.exec_` to run a headless session that signs in, loads the ledger and logs
a summary.
"""

import sys

from PySide6 import QtCore

# Fail on Python < 3.11
if not (sys.version_info.major == 3 and sys.version_info.minor >= 11):
    raise RuntimeError('FinTrack requires Python 3.11 or higher.')

__version__ = '0.1.0'
__description__ = 'FinTrack: personal-finance ledger with recurring bills, budgets and savings goals.'

from .log import log

log.setup_logging()


def exec_() -> None:
    """Run a headless FinTrack session.

    Starts a QCoreApplication, restores or requests a session, loads the ledger and logs the
    dashboard figures before quitting.
    """
    from .core.app import create_context, log_dashboard
    from .core.signals import signals
    from .status import status

    app = QtCore.QCoreApplication(sys.argv)
    context = create_context()

    @QtCore.Slot()
    def sign_in() -> None:
        try:
            context.auth.sign_in()
        except status.BaseStatusException:
            # Already logged
            app.exit(1)

    @QtCore.Slot(bool)
    def on_ready(signed_in: bool) -> None:
        if not signed_in:
            signals.authenticationRequested.emit()

    @QtCore.Slot(str)
    def on_load_state_changed(state: str) -> None:
        if state != 'ready':
            return
        log_dashboard(context.store)
        app.quit()

    signals.initializationRequested.connect(context.binder.start)
    signals.authenticationRequested.connect(sign_in)
    context.binder.ready.connect(on_ready)
    context.store.loadStateChanged.connect(on_load_state_changed)

    # Ask components to load their data
    QtCore.QTimer.singleShot(100, signals.initializationRequested)

    sys.exit(app.exec())


if __name__ == '__main__':
    exec_()
