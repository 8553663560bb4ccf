"""Concurrency tests for the atomic updates in auth/store.py.

These run real threads against a temp-file SQLite database so every thread
has its own connection and SQLite's write lock is actually contended.

Covers:
- concurrent failed attempts are all counted; the lock is applied
- one backup code presented by many threads at once is accepted exactly once
- one reset token presented by many threads at once is consumed exactly once
"""

from concurrent.futures import ThreadPoolExecutor

import pyotp

from auth.lockout import LockoutPolicy
from auth.reset import PasswordResetFlow
from auth.service import AuthService
from auth.twofactor import TwoFactorService

WORKERS = 8


def _run_concurrently(fn, n: int = WORKERS) -> list:
    with ThreadPoolExecutor(max_workers=n) as pool:
        return list(pool.map(lambda _: fn(), range(n)))


def test_concurrent_failures_are_all_counted(file_store, settings, clock):
    service = AuthService(file_store, settings, clock)
    user = service.register_user("a@b.com", "Secret123!").value
    policy = LockoutPolicy(file_store, settings, clock)

    counts = _run_concurrently(lambda: policy.increment_failed_attempts(user.id), n=10)

    assert sorted(counts) == list(range(1, 11))
    refreshed = file_store.get_by_id(user.id)
    assert refreshed.failed_login_attempts == 10
    assert policy.is_account_locked(refreshed)


def test_backup_code_accepted_once_under_contention(file_store, settings, clock):
    service = AuthService(file_store, settings, clock)
    user = service.register_user("a@b.com", "Secret123!").value
    two_factor = TwoFactorService(file_store, settings, clock)
    setup = two_factor.setup_2fa(user.id)
    codes = two_factor.verify_2fa_setup(user.id, pyotp.TOTP(setup.secret).at(clock()))

    results = _run_concurrently(lambda: two_factor.verify_2fa(user.id, codes[0]))

    assert results.count(True) == 1
    remaining = file_store.get_by_id(user.id).backup_codes
    assert len(remaining) == 7
    assert codes[0] not in remaining


def test_reset_token_consumed_once_under_contention(file_store, settings, clock):
    service = AuthService(file_store, settings, clock)
    service.register_user("a@b.com", "Secret123!")
    flow = PasswordResetFlow(file_store, settings, clock)
    token = flow.initiate_password_reset("a@b.com")

    results = _run_concurrently(lambda: flow.reset_password(token, "BrandNew456!"))

    assert results.count(True) == 1
