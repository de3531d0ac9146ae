"""Tagged error taxonomy raised by the auth core."""

from __future__ import annotations

from enum import StrEnum


class AuthErrorKind(StrEnum):
    """Kinds of auth failures; the HTTP adapter maps each to a response."""

    MISSING_CREDENTIAL = "MissingCredential"
    INVALID_CREDENTIALS = "InvalidCredentials"
    DEACTIVATED = "Deactivated"
    LOCKED = "Locked"
    TOKEN_EXPIRED = "TokenExpired"
    TOKEN_REVOKED = "TokenRevoked"
    INVALID_TOKEN = "InvalidToken"
    WRONG_TOKEN_TYPE = "WrongTokenType"
    USER_NOT_FOUND = "UserNotFound"
    FORBIDDEN = "Forbidden"
    OUT_OF_SCOPE = "OutOfScope"
    UNAVAILABLE = "Unavailable"


class AuthError(Exception):
    """Base auth failure carrying its kind."""

    def __init__(self, kind: AuthErrorKind, message: str = "") -> None:
        super().__init__(message or str(kind))
        self.kind = kind
        self.message = message or str(kind)


class CredentialError(AuthError):
    """Login could not be completed with the supplied credentials."""

    def __init__(
        self, kind: AuthErrorKind, message: str = "", *, until: int | None = None
    ) -> None:
        super().__init__(kind, message)
        self.until = until


class TokenError(AuthError):
    """Presented token is unusable.

    ``reason`` keeps the finer cause (``malformed``, ``bad_signature``,
    ``expired``, ``revoked``, ``wrong_type``) for logs.
    """

    def __init__(self, kind: AuthErrorKind, reason: str, message: str = "") -> None:
        super().__init__(kind, message)
        self.reason = reason


class AuthorizationError(AuthError):
    """Role gate or scope predicate denied the operation."""


class UnavailableError(AuthError):
    """Credential store did not answer in time."""

    def __init__(self, message: str = "Authentication store unavailable") -> None:
        super().__init__(AuthErrorKind.UNAVAILABLE, message)
