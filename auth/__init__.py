"""auth/ -- Credential and session security for Rosin Tracker.

Layer rule: auth/ imports only stdlib, third-party libraries and core/
(settings and clock). It does NOT import from api/.
api/ and main.py import from auth/, not the other way around.
"""
