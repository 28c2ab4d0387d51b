"""Status codes and the exceptions raised by FinTrack.

Every exception derives from :class:`~FinTrack.status.status.BaseStatusException`, which logs
itself and reports a user-facing message through the shared error signal. The table store
raises :class:`~FinTrack.status.status.ServiceUnavailableException` and
:class:`~FinTrack.status.status.TableNotFoundException`, the ledger store rejects input with
:class:`~FinTrack.status.status.ValidationFailedException`.
"""
