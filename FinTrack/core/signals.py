"""Application-wide Qt signals for FinTrack.

Per-instance state changes (ledger collections, load state, remote outcomes) are
emitted by :class:`FinTrack.core.store.LedgerStore` itself. The signals here cover
concerns shared by the whole process: configuration changes, authentication
requests and error reporting.
"""
import logging

from PySide6 import QtCore


class Signals(QtCore.QObject):
    """Centralized Qt signals for application config and error events."""
    initializationRequested = QtCore.Signal()

    authenticationRequested = QtCore.Signal()

    configSectionChanged = QtCore.Signal(str)
    metadataChanged = QtCore.Signal(str, object)

    errorLogged = QtCore.Signal(str)

    error = QtCore.Signal(str)

    def __init__(self):
        super().__init__()
        self._connect_signals()

    def _connect_signals(self):
        @QtCore.Slot(str)
        def _on_config_section_changed(section: str) -> None:
            if section != 'client_secret':
                return
            from . import service
            logging.debug('Clearing cached service clients due to client_secret change')
            service.clear_service()

        self.configSectionChanged.connect(_on_config_section_changed)


signals = Signals()
