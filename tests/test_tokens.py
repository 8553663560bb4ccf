"""Unit tests for auth/tokens.py -- password hashing and opaque token helpers.

Covers:
- hash_password() / verify_password() round trip and mismatch
- hash_password() uses the cost factor it is given
- verify_password() treats a missing or malformed hash as a mismatch
- burn_password_check() never raises
- generate_secure_token() length, alphabet and uniqueness
- tokens_equal() equality semantics
- set_session_cookie() flags
"""

from fastapi import Response

from auth.tokens import (
    SESSION_COOKIE,
    burn_password_check,
    generate_secure_token,
    hash_password,
    set_session_cookie,
    tokens_equal,
    verify_password,
)

ROUNDS = 4


def test_verify_accepts_matching_password():
    hashed = hash_password("Secret123!", rounds=ROUNDS)
    assert verify_password("Secret123!", hashed)


def test_verify_rejects_different_password():
    hashed = hash_password("Secret123!", rounds=ROUNDS)
    assert not verify_password("secret123!", hashed)


def test_hash_is_salted():
    assert hash_password("same-password", rounds=ROUNDS) != hash_password("same-password", rounds=ROUNDS)


def test_hash_is_bcrypt_format_with_given_cost():
    assert hash_password("whatever1", rounds=ROUNDS).startswith("$2b$04$")
    assert hash_password("whatever1", rounds=5).startswith("$2b$05$")


def test_verify_with_missing_hash_is_false():
    assert not verify_password("anything", None)
    assert not verify_password("anything", "")


def test_verify_with_malformed_hash_is_false():
    assert not verify_password("anything", "not-a-bcrypt-hash")


def test_burn_password_check_returns_none():
    assert burn_password_check("guess", rounds=ROUNDS) is None


def test_secure_token_is_64_hex_chars():
    token = generate_secure_token()
    assert len(token) == 64
    int(token, 16)


def test_secure_tokens_are_unique():
    tokens = {generate_secure_token() for _ in range(50)}
    assert len(tokens) == 50


def test_tokens_equal():
    token = generate_secure_token()
    assert tokens_equal(token, token)
    assert not tokens_equal(token, token[:-1] + ("0" if token[-1] != "0" else "1"))
    assert not tokens_equal(token, "")


def test_session_cookie_secure_flag_is_explicit():
    plain = Response()
    set_session_cookie(plain, "tok", max_age=60)
    header = plain.headers["set-cookie"].lower()
    assert header.startswith(f"{SESSION_COOKIE}=tok")
    assert "httponly" in header
    assert "secure" not in header

    secure = Response()
    set_session_cookie(secure, "tok", max_age=60, secure=True)
    assert "secure" in secure.headers["set-cookie"].lower()
