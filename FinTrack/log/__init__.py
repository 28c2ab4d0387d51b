"""
Logging subsystem for FinTrack.

Modules:

- :mod:`FinTrack.log.log` – Root logger setup, Qt message bridge and the in-memory log tank.
"""
