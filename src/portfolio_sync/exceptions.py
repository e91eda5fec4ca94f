"""Exceptions raised by the sync engine.

Every failure carries an optional machine-readable ``code``, an explicit
:class:`~portfolio_sync.models.ErrorKind` when the raiser knows it, and a
``retry_after_seconds`` hint for rate limiting.
"""

from typing import Optional

from .models import ErrorKind


class SyncError(Exception):
    """Base class for sync engine failures."""

    default_code: Optional[str] = None
    default_kind: Optional[ErrorKind] = None

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        kind: Optional[ErrorKind] = None,
        retry_after_seconds: Optional[int] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.kind = kind or self.default_kind
        self.retry_after_seconds = retry_after_seconds
        self.status_code = status_code


class InvalidInputError(SyncError):
    """Caller passed an unusable value (non-string password, short password)."""

    default_code = "INVALID_INPUT"


class CryptoUnsupportedError(SyncError):
    """No usable cryptographic backend."""

    default_code = "CRYPTO_UNSUPPORTED"
    default_kind = ErrorKind.CRYPTO


class EncryptionFailedError(SyncError):
    """Encryption failed inside the crypto backend."""

    default_code = "ENCRYPTION_FAILED"
    default_kind = ErrorKind.CRYPTO


class DecryptionFailedError(SyncError):
    """Wrong key, corrupted blob or tampering. The cause is not disclosed."""

    default_code = "DECRYPTION_FAILED"
    default_kind = ErrorKind.CRYPTO


class EncryptionKeyRequiredError(SyncError):
    """No session key is held; the password must be entered again."""

    default_code = "ENCRYPTION_KEY_REQUIRED"
    default_kind = ErrorKind.CRYPTO


class SessionExpiredError(SyncError):
    """Refresh failed; the user must log in again."""

    default_code = "SESSION_EXPIRED"
    default_kind = ErrorKind.AUTH


class AuthenticationFailedError(SyncError):
    """Login rejected by the server."""

    default_code = "AUTH_FAILED"
    default_kind = ErrorKind.AUTH


class RegistrationFailedError(SyncError):
    """Registration rejected by the server (e.g. duplicate user id)."""

    default_code = "REGISTRATION_FAILED"
    default_kind = ErrorKind.AUTH


class InvalidServerResponseError(SyncError):
    """Server answered with a body the client cannot use."""

    default_code = "INVALID_SERVER_RESPONSE"
    default_kind = ErrorKind.PARSE


class SyncNotConfiguredError(SyncError):
    """Sync is disabled or missing server url, user id or refresh token."""

    default_code = "SYNC_NOT_CONFIGURED"
    default_kind = ErrorKind.AUTH


class SyncInProgressError(SyncError):
    """Another sync run is already in flight."""

    default_code = "SYNC_IN_PROGRESS"
    default_kind = ErrorKind.IN_PROGRESS


class InvalidResolutionError(SyncError):
    """Conflict resolution choice was neither ``local`` nor ``remote``."""

    default_code = "INVALID_RESOLUTION"


class ApiError(SyncError):
    """Non-2xx answer or transport failure talking to the sync server."""

    default_code = "API_ERROR"
