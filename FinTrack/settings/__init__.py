"""
Settings package for FinTrack.

Modules:

- :mod:`FinTrack.settings.lib` – Paths, schema validation and persistence of settings.json and client_secret.json.
- :mod:`FinTrack.settings.locale` – Babel based currency, decimal and date formatting.
"""
