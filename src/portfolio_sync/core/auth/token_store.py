"""Persisted access/refresh tokens.

The store never caches: every read goes back to storage, so two components
sharing a storage backend always agree on the current tokens.

Token lifecycle::

    absent -> valid -> expired -> refreshing -> valid
                                             -> absent (refresh rejected)
"""

import base64
import binascii
import json
import logging
from enum import Enum
from typing import Any, Dict, Optional

from ...models import TokenPair
from ...storage import KeyValueStorage, keys
from ...utils.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

TOKEN_EXPIRY_SKEW_MS = 60_000


class TokenState(str, Enum):
    """Observable state of a stored token."""

    ABSENT = "absent"
    VALID = "valid"
    EXPIRED = "expired"


def parse_jwt_payload(token: Optional[str]) -> Optional[Dict[str, Any]]:
    """Decode the payload segment of a JWT without verifying it.

    Returns:
        The payload dict, or None if ``token`` is not JWT-shaped
    """
    if not token or not isinstance(token, str):
        return None
    parts = token.split(".")
    if len(parts) != 3:
        return None
    segment = parts[1].replace("-", "+").replace("_", "/")
    segment += "=" * (-len(segment) % 4)
    try:
        payload = json.loads(base64.b64decode(segment, validate=True))
    except (binascii.Error, ValueError):
        return None
    return payload if isinstance(payload, dict) else None


class TokenStore:
    """Reads and writes tokens through the storage collaborator."""

    def __init__(
        self,
        storage: KeyValueStorage,
        clock: Optional[Clock] = None,
        skew_ms: int = TOKEN_EXPIRY_SKEW_MS,
    ) -> None:
        """Initialize token store.

        Args:
            storage: Key-value storage holding the tokens
            clock: Time source for expiry checks
            skew_ms: Safety margin subtracted from every expiry
        """
        self.storage = storage
        self.clock = clock or SystemClock()
        self.skew_ms = skew_ms

    def is_token_valid(self, token: Optional[str], expiry: Optional[int]) -> bool:
        """A token is valid iff ``now < expiry - skew``."""
        if not token or expiry is None:
            return False
        return self.clock.now_ms() < int(expiry) - self.skew_ms

    def get_token_expiry(self, expiry_key: str, token: Optional[str]) -> Optional[int]:
        """Stored expiry for a token, falling back to its JWT ``exp`` claim."""
        stored = self.storage.get(expiry_key)
        if isinstance(stored, (int, float)) and not isinstance(stored, bool):
            return int(stored)
        payload = parse_jwt_payload(token)
        if payload and isinstance(payload.get("exp"), (int, float)):
            return int(payload["exp"] * 1000)
        return None

    @property
    def access_token(self) -> Optional[str]:
        return self.storage.get(keys.ACCESS_TOKEN)

    @property
    def refresh_token(self) -> Optional[str]:
        return self.storage.get(keys.REFRESH_TOKEN)

    def access_state(self) -> TokenState:
        """Lifecycle state of the access token."""
        return self._state(keys.ACCESS_TOKEN, keys.ACCESS_TOKEN_EXPIRY)

    def refresh_state(self) -> TokenState:
        """Lifecycle state of the refresh token."""
        return self._state(keys.REFRESH_TOKEN, keys.REFRESH_TOKEN_EXPIRY)

    def _state(self, token_key: str, expiry_key: str) -> TokenState:
        token = self.storage.get(token_key)
        if not token:
            return TokenState.ABSENT
        if self.is_token_valid(token, self.get_token_expiry(expiry_key, token)):
            return TokenState.VALID
        return TokenState.EXPIRED

    def valid_access_token(self) -> Optional[str]:
        """The stored access token if it is still usable."""
        if self.access_state() == TokenState.VALID:
            return self.access_token
        return None

    def has_valid_refresh_token(self) -> bool:
        """Whether background operations can still authenticate."""
        return self.refresh_state() == TokenState.VALID

    def store_tokens(self, tokens: TokenPair) -> None:
        """Persist a token pair. Missing expiries fall back to JWT claims."""
        self.storage.set(keys.ACCESS_TOKEN, tokens.access_token)
        self._store_expiry(
            keys.ACCESS_TOKEN_EXPIRY, tokens.access_token, tokens.access_expires_at
        )
        if tokens.refresh_token:
            self.storage.set(keys.REFRESH_TOKEN, tokens.refresh_token)
            self._store_expiry(
                keys.REFRESH_TOKEN_EXPIRY,
                tokens.refresh_token,
                tokens.refresh_expires_at,
            )

    def _store_expiry(
        self, expiry_key: str, token: str, expires_at: Optional[int]
    ) -> None:
        if expires_at is None:
            payload = parse_jwt_payload(token)
            if payload and isinstance(payload.get("exp"), (int, float)):
                expires_at = int(payload["exp"] * 1000)
        if expires_at is None:
            self.storage.delete(expiry_key)
        else:
            self.storage.set(expiry_key, int(expires_at))

    def clear_tokens(self) -> None:
        """Forget both tokens and their expiries."""
        for key in keys.TOKEN_KEYS:
            self.storage.delete(key)
        logger.debug("Cleared stored tokens")
