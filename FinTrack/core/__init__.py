"""
Core package for FinTrack providing the ledger and its remote collaborators.

This package includes:

- :mod:`FinTrack.core.auth` – Google OAuth2 authentication, credential storage and session notifications.
- :mod:`FinTrack.core.service` – Google API clients and the asynchronous remote task machinery.
- :mod:`FinTrack.core.tablestore` – The remote table store contract and its Google Sheets and in-memory implementations.
- :mod:`FinTrack.core.store` – The ledger store: optimistic local CRUD with fire-and-forget remote persistence.
- :mod:`FinTrack.core.binder` – Binds the auth session lifecycle to the ledger store.
- :mod:`FinTrack.core.app` – Composition root wiring the above together.
"""
