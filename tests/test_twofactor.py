"""Unit tests for auth/twofactor.py -- TOTP enrollment, verification and backup codes.

Covers:
- generate_backup_codes(): count, format, uniqueness
- consume_backup_code(): returns a new tuple, case-insensitive, None when absent
- render_qr_data_url(): PNG data URL
- setup_2fa() leaves 2FA pending; a wrong code keeps it pending
- verify_2fa_setup() with a current code enables 2FA and issues 8 codes
- codes from the adjacent 30s step are accepted, two steps away are not
- verify_2fa() accepts TOTP and each backup code exactly once
- setup_2fa() is refused while 2FA is enabled
- disable_2fa() requires a valid code and clears secret and codes
"""

import base64
import re
from datetime import timedelta

import pyotp
import pytest

from auth.twofactor import (
    TwoFactorService,
    consume_backup_code,
    generate_backup_codes,
    render_qr_data_url,
)


@pytest.fixture
def two_factor(store, settings, clock):
    return TwoFactorService(store, settings, clock)


def _code(secret: str, clock, offset_seconds: int = 0) -> str:
    return pyotp.TOTP(secret).at(clock() + timedelta(seconds=offset_seconds))


def _enable(two_factor, clock, user_id: int) -> tuple[str, list[str]]:
    setup = two_factor.setup_2fa(user_id)
    codes = two_factor.verify_2fa_setup(user_id, _code(setup.secret, clock))
    assert codes is not None
    return setup.secret, codes


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def test_generate_backup_codes_format():
    codes = generate_backup_codes()
    assert len(codes) == 8
    assert len(set(codes)) == 8
    assert all(re.fullmatch(r"[0-9A-F]{8}", c) for c in codes)


def test_consume_backup_code_returns_new_tuple():
    codes = ("AAAA1111", "BBBB2222", "CCCC3333")
    remaining = consume_backup_code(codes, " bbbb2222 ")
    assert remaining == ("AAAA1111", "CCCC3333")
    assert codes == ("AAAA1111", "BBBB2222", "CCCC3333")


def test_consume_backup_code_absent():
    assert consume_backup_code(("AAAA1111",), "DDDD4444") is None
    assert consume_backup_code((), "AAAA1111") is None


def test_render_qr_data_url_is_png():
    url = render_qr_data_url("otpauth://totp/Rosin%20Tracker:a%40b.com?secret=JBSWY3DPEHPK3PXP")
    assert url.startswith("data:image/png;base64,")
    raw = base64.b64decode(url.split(",", 1)[1])
    assert raw[:8] == b"\x89PNG\r\n\x1a\n"


# ---------------------------------------------------------------------------
# Enrollment
# ---------------------------------------------------------------------------


def test_setup_leaves_two_factor_pending(two_factor, store, make_user):
    user = make_user()

    setup = two_factor.setup_2fa(user.id)

    assert setup is not None
    assert setup.provisioning_uri.startswith("otpauth://totp/")
    assert "issuer=Rosin%20Tracker" in setup.provisioning_uri
    assert setup.qr_code_data_url.startswith("data:image/png;base64,")
    refreshed = store.get_by_id(user.id)
    assert refreshed.two_factor_secret == setup.secret
    assert not refreshed.two_factor_enabled


def test_wrong_setup_code_keeps_pending(two_factor, store, clock, make_user):
    user = make_user()
    setup = two_factor.setup_2fa(user.id)
    wrong = "000000" if _code(setup.secret, clock) != "000000" else "111111"

    assert two_factor.verify_2fa_setup(user.id, wrong) is None

    refreshed = store.get_by_id(user.id)
    assert not refreshed.two_factor_enabled
    assert refreshed.two_factor_secret == setup.secret
    # The pending secret is still usable.
    assert two_factor.verify_2fa_setup(user.id, _code(setup.secret, clock)) is not None


def test_verify_setup_enables_and_issues_codes(two_factor, store, clock, make_user):
    user = make_user()

    _, codes = _enable(two_factor, clock, user.id)

    assert len(codes) == 8
    assert len(set(codes)) == 8
    refreshed = store.get_by_id(user.id)
    assert refreshed.two_factor_enabled
    assert refreshed.backup_codes == tuple(codes)


def test_verify_setup_without_pending_secret(two_factor, make_user):
    user = make_user()
    assert two_factor.verify_2fa_setup(user.id, "123456") is None


def test_setup_refused_while_enabled(two_factor, store, clock, make_user):
    user = make_user()
    secret, _ = _enable(two_factor, clock, user.id)

    assert two_factor.setup_2fa(user.id) is None
    assert store.get_by_id(user.id).two_factor_secret == secret


def test_setup_twice_replaces_pending_secret(two_factor, clock, make_user):
    user = make_user()
    first = two_factor.setup_2fa(user.id)
    second = two_factor.setup_2fa(user.id)
    assert first.secret != second.secret
    assert two_factor.verify_2fa_setup(user.id, _code(second.secret, clock)) is not None


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


def test_verify_accepts_current_totp(two_factor, clock, make_user):
    user = make_user()
    secret, _ = _enable(two_factor, clock, user.id)
    assert two_factor.verify_2fa(user.id, _code(secret, clock))


def test_verify_accepts_one_step_of_drift(two_factor, clock, make_user):
    user = make_user()
    secret, _ = _enable(two_factor, clock, user.id)
    assert two_factor.verify_2fa(user.id, _code(secret, clock, -30))
    assert two_factor.verify_2fa(user.id, _code(secret, clock, 30))


def test_verify_rejects_code_two_steps_away(two_factor, clock, make_user):
    user = make_user()
    secret, _ = _enable(two_factor, clock, user.id)
    stale = _code(secret, clock, -90)
    near = {_code(secret, clock, d) for d in (-30, 0, 30)}
    if stale not in near:
        assert not two_factor.verify_2fa(user.id, stale)


def test_verify_rejects_non_numeric(two_factor, clock, make_user):
    user = make_user()
    _enable(two_factor, clock, user.id)
    assert not two_factor.verify_2fa(user.id, "abcdef")
    assert not two_factor.verify_2fa(user.id, "")


def test_verify_when_not_enabled(two_factor, clock, make_user):
    user = make_user()
    setup = two_factor.setup_2fa(user.id)
    assert not two_factor.verify_2fa(user.id, _code(setup.secret, clock))


def test_backup_code_works_once(two_factor, store, clock, make_user):
    user = make_user()
    _, codes = _enable(two_factor, clock, user.id)

    assert two_factor.verify_2fa(user.id, codes[3])
    assert not two_factor.verify_2fa(user.id, codes[3])

    remaining = store.get_by_id(user.id).backup_codes
    assert len(remaining) == 7
    assert codes[3] not in remaining


def test_backup_code_is_case_insensitive(two_factor, clock, make_user):
    user = make_user()
    _, codes = _enable(two_factor, clock, user.id)
    assert two_factor.verify_2fa(user.id, codes[0].lower())


def test_all_backup_codes_can_be_spent(two_factor, store, clock, make_user):
    user = make_user()
    _, codes = _enable(two_factor, clock, user.id)
    assert all(two_factor.verify_2fa(user.id, c) for c in codes)
    assert store.get_by_id(user.id).backup_codes == ()


# ---------------------------------------------------------------------------
# Disable
# ---------------------------------------------------------------------------


def test_disable_requires_valid_code(two_factor, store, clock, make_user):
    user = make_user()
    _enable(two_factor, clock, user.id)

    assert not two_factor.disable_2fa(user.id, "not-a-code")
    assert store.get_by_id(user.id).two_factor_enabled


def test_disable_clears_secret_and_codes(two_factor, store, clock, make_user):
    user = make_user()
    secret, _ = _enable(two_factor, clock, user.id)

    assert two_factor.disable_2fa(user.id, _code(secret, clock))

    refreshed = store.get_by_id(user.id)
    assert not refreshed.two_factor_enabled
    assert refreshed.two_factor_secret is None
    assert refreshed.backup_codes == ()


def test_disable_with_backup_code(two_factor, store, clock, make_user):
    user = make_user()
    _, codes = _enable(two_factor, clock, user.id)
    assert two_factor.disable_2fa(user.id, codes[0])
    assert not store.get_by_id(user.id).two_factor_enabled


def test_force_disable(two_factor, store, clock, make_user):
    user = make_user()
    _enable(two_factor, clock, user.id)
    assert two_factor.force_disable(user.id)
    assert not store.get_by_id(user.id).two_factor_enabled
