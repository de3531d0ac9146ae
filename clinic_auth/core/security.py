"""Security primitives for password hashing and token signing."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
from typing import Any, NamedTuple

import bcrypt

from clinic_auth.core.config import MIN_HASH_COST

BCRYPT_PREFIX = "$2"


class PasswordCheck(NamedTuple):
    """Outcome of a password verification."""

    ok: bool
    legacy: bool = False


class PasswordHasher:
    """Adaptive bcrypt hasher with a legacy plaintext comparison branch."""

    def __init__(self, cost: int = MIN_HASH_COST) -> None:
        self._cost = max(MIN_HASH_COST, int(cost))
        self._dummy_hash = bcrypt.hashpw(b"timing-equalizer", bcrypt.gensalt(self._cost))

    @property
    def cost(self) -> int:
        return self._cost

    def hash(self, plaintext: str) -> str:
        """Hash password with a fresh salt; raises ``ValueError`` above 72 bytes."""
        raw = plaintext.encode("utf-8")
        if not raw:
            raise ValueError("Password must not be empty")
        if len(raw) > 72:
            raise ValueError("Password exceeds 72 bytes")
        return bcrypt.hashpw(raw, bcrypt.gensalt(self._cost)).decode("utf-8")

    def verify(self, plaintext: str, stored: str) -> PasswordCheck:
        """Verify candidate against stored value without raising.

        Stored values without the bcrypt prefix are legacy plaintext; a match
        is reported with ``legacy=True`` so the caller rewrites the hash.
        """
        candidate = plaintext.encode("utf-8")
        if stored.startswith(BCRYPT_PREFIX):
            try:
                return PasswordCheck(ok=bcrypt.checkpw(candidate, stored.encode("utf-8")))
            except ValueError:
                self.dummy_verify(plaintext)
                return PasswordCheck(ok=False)
        # Non-bcrypt values still pay one bcrypt round.
        self.dummy_verify(plaintext)
        if not stored:
            return PasswordCheck(ok=False)
        matched = hmac.compare_digest(candidate, stored.encode("utf-8"))
        return PasswordCheck(ok=matched, legacy=matched)

    def dummy_verify(self, plaintext: str) -> None:
        """Spend one bcrypt comparison so unknown accounts cost the same."""
        try:
            bcrypt.checkpw(plaintext.encode("utf-8"), self._dummy_hash)
        except ValueError:
            return


def is_legacy_password(stored: str) -> bool:
    """Return whether a stored password value is not an adaptive hash."""
    return bool(stored) and not stored.startswith(BCRYPT_PREFIX)


class TokenDecodeError(ValueError):
    """Raised when a compact token cannot be parsed or authenticated."""

    def __init__(self, reason: str, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class SigningKeyRing:
    """HMAC signing keys addressed by ``kid``; one key signs, all verify."""

    def __init__(self, keys: dict[str, str], active_kid: str) -> None:
        if active_kid not in keys:
            raise ValueError(f"Active signing key {active_kid!r} is not configured")
        self._keys = dict(keys)
        self._active_kid = active_kid

    def sign(self, payload: dict[str, Any]) -> str:
        return build_signed_token(payload, self._keys[self._active_kid], kid=self._active_kid)

    def decode(self, token: str) -> dict[str, Any]:
        """Verify signature with the key named in the header and return payload."""
        header = read_token_header(token)
        kid = str(header.get("kid") or self._active_kid)
        secret = self._keys.get(kid)
        if secret is None:
            raise TokenDecodeError("bad_signature", "Unknown signing key")
        return decode_signed_token(token, secret)


def _b64url_encode(raw: bytes) -> str:
    """Return URL-safe base64 string without padding."""
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


def _b64url_decode(value: str) -> bytes:
    """Decode URL-safe base64 string with optional missing padding."""
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode((value + padding).encode("utf-8"))


def build_signed_token(payload: dict[str, Any], secret_key: str, *, kid: str) -> str:
    """Create compact HS256 token using JWT 3-part structure."""
    header = {"alg": "HS256", "typ": "JWT", "kid": kid}
    header_part = _b64url_encode(json.dumps(header, separators=(",", ":")).encode("utf-8"))
    payload_part = _b64url_encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
    signing_input = f"{header_part}.{payload_part}".encode("utf-8")
    signature = hmac.new(secret_key.encode("utf-8"), signing_input, hashlib.sha256).digest()
    signature_part = _b64url_encode(signature)
    return f"{header_part}.{payload_part}.{signature_part}"


def read_token_header(token: str) -> dict[str, Any]:
    """Parse the unauthenticated token header."""
    parts = token.split(".")
    if len(parts) != 3 or not all(parts):
        raise TokenDecodeError("malformed", "Malformed token")
    try:
        header = json.loads(_b64url_decode(parts[0]).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as exc:
        raise TokenDecodeError("malformed", "Malformed token header") from exc
    if not isinstance(header, dict) or header.get("alg") != "HS256":
        raise TokenDecodeError("malformed", "Unsupported token header")
    return header


def decode_signed_token(token: str, secret_key: str) -> dict[str, Any]:
    """Verify signature and decode payload; expiry is checked by the caller."""
    read_token_header(token)
    header_part, payload_part, signature_part = token.split(".")

    signing_input = f"{header_part}.{payload_part}".encode("utf-8")
    expected_sig = hmac.new(secret_key.encode("utf-8"), signing_input, hashlib.sha256).digest()
    try:
        got_sig = _b64url_decode(signature_part)
    except ValueError as exc:
        raise TokenDecodeError("malformed", "Malformed token signature") from exc
    if not hmac.compare_digest(expected_sig, got_sig):
        raise TokenDecodeError("bad_signature", "Invalid token signature")

    try:
        payload = json.loads(_b64url_decode(payload_part).decode("utf-8"))
    except (ValueError, UnicodeDecodeError) as exc:
        raise TokenDecodeError("malformed", "Invalid token payload") from exc
    if not isinstance(payload, dict):
        raise TokenDecodeError("malformed", "Invalid token payload")
    return payload


def hash_token(token: str) -> str:
    """Hash raw token for storage/comparison."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
