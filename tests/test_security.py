from __future__ import annotations

import json

import pytest

from clinic_auth.core.security import (
    BCRYPT_PREFIX,
    PasswordHasher,
    SigningKeyRing,
    TokenDecodeError,
    _b64url_decode,
    _b64url_encode,
    build_signed_token,
    decode_signed_token,
    hash_token,
    is_legacy_password,
)
from tests.auth_fixtures import ADMIN_HASH, HASHER


def test_hash_is_adaptive_and_verifies_only_the_same_plaintext() -> None:
    assert ADMIN_HASH.startswith(BCRYPT_PREFIX)
    assert "$12$" in ADMIN_HASH[:7]

    assert HASHER.verify("admin123", ADMIN_HASH).ok is True
    assert HASHER.verify("admin124", ADMIN_HASH).ok is False
    assert HASHER.verify("admin123", ADMIN_HASH).legacy is False


def test_hash_uses_fresh_salt_each_time() -> None:
    assert HASHER.hash("same-password") != HASHER.hash("same-password")


def test_hasher_never_goes_below_minimum_cost() -> None:
    assert PasswordHasher(4).cost == 12


def test_hash_rejects_empty_and_oversized_passwords() -> None:
    with pytest.raises(ValueError):
        HASHER.hash("")
    with pytest.raises(ValueError):
        HASHER.hash("x" * 73)


def test_verify_plaintext_legacy_value_flags_upgrade() -> None:
    check = HASHER.verify("admin123", "admin123")

    assert check.ok is True
    assert check.legacy is True
    assert HASHER.verify("other", "admin123") == (False, False)


def test_non_bcrypt_values_spend_one_bcrypt_round(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []
    monkeypatch.setattr(HASHER, "dummy_verify", calls.append)

    HASHER.verify("guess", "admin123")
    HASHER.verify("admin123", "admin123")
    HASHER.verify("guess", "")
    HASHER.verify("guess", ADMIN_HASH)

    assert calls == ["guess", "admin123", "guess"]


def test_verify_returns_false_for_malformed_or_empty_stored_value() -> None:
    assert HASHER.verify("admin123", "$2b$12$not-a-real-hash").ok is False
    assert HASHER.verify("admin123", "").ok is False


def test_is_legacy_password() -> None:
    assert is_legacy_password("plain") is True
    assert is_legacy_password(ADMIN_HASH) is False
    assert is_legacy_password("") is False


def test_signed_token_roundtrip_and_tamper_detection() -> None:
    token = build_signed_token({"sub": "u1"}, "secret", kid="k1")

    assert decode_signed_token(token, "secret") == {"sub": "u1"}

    header, payload, signature = token.split(".")
    forged_payload = _b64url_encode(json.dumps({"sub": "admin"}).encode("utf-8"))
    with pytest.raises(TokenDecodeError) as exc:
        decode_signed_token(f"{header}.{forged_payload}.{signature}", "secret")
    assert exc.value.reason == "bad_signature"


def test_decode_rejects_malformed_tokens() -> None:
    for raw in ["", "abc", "a.b", "a..c", "not.a.token"]:
        with pytest.raises(TokenDecodeError) as exc:
            decode_signed_token(raw, "secret")
        assert exc.value.reason == "malformed"


def test_token_header_carries_kid() -> None:
    token = build_signed_token({"sub": "u1"}, "secret", kid="2026-q1")
    header = json.loads(_b64url_decode(token.split(".")[0]))

    assert header == {"alg": "HS256", "typ": "JWT", "kid": "2026-q1"}


def test_key_ring_verifies_tokens_signed_by_retired_key() -> None:
    old_ring = SigningKeyRing({"old": "old-secret"}, "old")
    token = old_ring.sign({"sub": "u1"})

    rotated = SigningKeyRing({"new": "new-secret", "old": "old-secret"}, "new")

    assert rotated.decode(token) == {"sub": "u1"}
    assert rotated.sign({"sub": "u1"}).split(".")[0] != token.split(".")[0]


def test_key_ring_rejects_unknown_kid() -> None:
    token = SigningKeyRing({"gone": "secret"}, "gone").sign({"sub": "u1"})
    ring = SigningKeyRing({"k1": "secret"}, "k1")

    with pytest.raises(TokenDecodeError) as exc:
        ring.decode(token)
    assert exc.value.reason == "bad_signature"


def test_key_ring_requires_active_kid() -> None:
    with pytest.raises(ValueError):
        SigningKeyRing({"k1": "secret"}, "k2")


def test_hash_token_is_stable_sha256() -> None:
    assert hash_token("abc") == hash_token("abc")
    assert len(hash_token("abc")) == 64
