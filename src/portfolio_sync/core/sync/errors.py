"""Error classification for user-facing sync messages.

Every caught exception is mapped to one :class:`ErrorKind`, a fixed message
and the action the user should take next. Matching order: the exception's
explicit kind, then its machine-readable code, then message patterns.
"""

import json
import logging
import re
from typing import Dict, Optional, Tuple

import httpx

from ...exceptions import SyncError
from ...models import ErrorKind, SyncErrorInfo

logger = logging.getLogger(__name__)

GUIDANCE: Dict[ErrorKind, Tuple[str, str]] = {
    ErrorKind.AUTH: (
        "Your sync session has expired or is no longer valid.",
        "Login again",
    ),
    ErrorKind.NETWORK: (
        "Could not reach the sync server. Check your connection.",
        "Retry sync",
    ),
    ErrorKind.RATE_LIMIT: (
        "Too many sync requests. Please wait before trying again.",
        "Wait and retry",
    ),
    ErrorKind.IN_PROGRESS: (
        "A sync is already in progress.",
        "Wait for the current sync",
    ),
    ErrorKind.CRYPTO: (
        "Your encryption key is unavailable or the data could not be decrypted.",
        "Unlock with password",
    ),
    ErrorKind.PARSE: (
        "The sync server returned an unexpected response.",
        "Check server health",
    ),
    ErrorKind.SERVER: (
        "The sync server ran into a problem.",
        "Retry later",
    ),
}

CODE_KINDS: Dict[str, ErrorKind] = {
    "SYNC_IN_PROGRESS": ErrorKind.IN_PROGRESS,
    "ENCRYPTION_KEY_REQUIRED": ErrorKind.CRYPTO,
    "DECRYPTION_FAILED": ErrorKind.CRYPTO,
    "ENCRYPTION_FAILED": ErrorKind.CRYPTO,
    "CRYPTO_UNSUPPORTED": ErrorKind.CRYPTO,
    "SESSION_EXPIRED": ErrorKind.AUTH,
    "UNAUTHORIZED": ErrorKind.AUTH,
    "FORBIDDEN": ErrorKind.AUTH,
    "RATE_LIMIT_EXCEEDED": ErrorKind.RATE_LIMIT,
    "NETWORK_ERROR": ErrorKind.NETWORK,
    "INVALID_SERVER_RESPONSE": ErrorKind.PARSE,
}

MESSAGE_PATTERNS = (
    (re.compile(r"rate.?limit|too many requests|\b429\b", re.I), ErrorKind.RATE_LIMIT),
    (re.compile(r"in progress", re.I), ErrorKind.IN_PROGRESS),
    (
        re.compile(r"session expired|unauthori[sz]ed|\b40[13]\b|log ?in again", re.I),
        ErrorKind.AUTH,
    ),
    (re.compile(r"decrypt|encrypt|passphrase|master key", re.I), ErrorKind.CRYPTO),
    (
        re.compile(r"network|fetch|timed? ?out|connection|unreachable", re.I),
        ErrorKind.NETWORK,
    ),
    (re.compile(r"json|parse|unexpected token|malformed", re.I), ErrorKind.PARSE),
)


def _kind_for(error: BaseException) -> ErrorKind:
    if isinstance(error, SyncError):
        if error.kind is not None:
            return error.kind
        if error.code and error.code in CODE_KINDS:
            return CODE_KINDS[error.code]
    if isinstance(error, (httpx.TransportError, ConnectionError, TimeoutError)):
        return ErrorKind.NETWORK
    if isinstance(error, json.JSONDecodeError):
        return ErrorKind.PARSE

    message = str(error)
    for pattern, kind in MESSAGE_PATTERNS:
        if pattern.search(message):
            return kind
    return ErrorKind.SERVER


def classify_error(
    error: BaseException, attempted_at: Optional[int] = None
) -> SyncErrorInfo:
    """Classify ``error`` into structured, user-presentable metadata.

    Args:
        error: The caught exception
        attempted_at: Epoch milliseconds of the failed attempt

    Returns:
        SyncErrorInfo with category, message, action and retry hint
    """
    kind = _kind_for(error)
    user_message, primary_action = GUIDANCE[kind]

    retry_after = getattr(error, "retry_after_seconds", None)
    if kind == ErrorKind.RATE_LIMIT and retry_after is not None:
        user_message = (
            f"Too many sync requests. Try again in {retry_after} "
            f"second{'s' if retry_after != 1 else ''}."
        )
    elif kind != ErrorKind.RATE_LIMIT:
        retry_after = None

    return SyncErrorInfo(
        category=kind,
        user_message=user_message,
        primary_action=primary_action,
        retry_after_seconds=retry_after,
        last_attempt_at=attempted_at,
        code=getattr(error, "code", None),
        detail=str(error) or type(error).__name__,
    )
