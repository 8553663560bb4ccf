"""
core/clock.py -- Time source shared by the auth services.

Every service takes a zero-argument callable returning an aware UTC datetime.
Production code passes utcnow; tests pass a controllable clock so lockout
windows, session lifetimes and TOTP steps can be advanced without sleeping.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
