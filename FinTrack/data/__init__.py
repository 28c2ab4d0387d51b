"""
FinTrack data package: entities, pure helpers and analytics.

This package provides:

- :mod:`FinTrack.data.models` – Entity dataclasses, enums, default categories and input validation.
- :mod:`FinTrack.data.helpers` – Currency/date formatting, month filters, bill due-date rollover and bill status.
- :mod:`FinTrack.data.receipt` – Amount, date and category heuristics for OCR receipt text.
- :mod:`FinTrack.data.reports` – pandas based summaries for budgets, categories, trends, goals and bills.
"""
