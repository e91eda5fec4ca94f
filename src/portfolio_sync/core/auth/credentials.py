"""Account registration, login, token refresh and the session key."""

import asyncio
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ...exceptions import (
    ApiError,
    AuthenticationFailedError,
    InvalidInputError,
    InvalidServerResponseError,
    RegistrationFailedError,
    SessionExpiredError,
)
from ...models import ErrorKind, TokenPair
from ...storage import KeyValueStorage, keys
from ...utils.clock import Clock, SystemClock
from ..api import SyncApiClient
from ..crypto import (
    MIN_PASSWORD_LENGTH,
    decode_master_key,
    derive_master_key,
    encode_master_key,
    hash_password,
)
from .token_store import TokenStore

logger = logging.getLogger(__name__)

# Failures that say nothing about the credentials themselves
TRANSIENT_KINDS = (ErrorKind.NETWORK, ErrorKind.RATE_LIMIT)


class CredentialManager:
    """Owns the account identity, tokens and the in-memory session key.

    The session key is written only by :meth:`set_session_key` (reached from
    register, login, unlock and restore) and read by the sync orchestrator.
    """

    def __init__(
        self,
        storage: KeyValueStorage,
        api: SyncApiClient,
        clock: Optional[Clock] = None,
        token_store: Optional[TokenStore] = None,
    ) -> None:
        """Initialize credential manager.

        Args:
            storage: Persistent key-value storage
            api: Sync server client
            clock: Time source for token expiry
            token_store: Optional token store (built from storage if omitted)
        """
        self.storage = storage
        self.api = api
        self.clock = clock or SystemClock()
        self.tokens = token_store or TokenStore(storage, self.clock)
        self._session_key: Optional[bytes] = None
        self._refresh_task: Optional["asyncio.Task[str]"] = None

    # Identity

    @property
    def server_url(self) -> Optional[str]:
        return self.storage.get(keys.SERVER_URL)

    @property
    def user_id(self) -> Optional[str]:
        return self.storage.get(keys.USER_ID)

    @property
    def is_enabled(self) -> bool:
        return bool(self.storage.get(keys.SYNC_ENABLED, False))

    def is_configured(self) -> bool:
        """Enabled, with a server, a user and a usable refresh token."""
        return bool(
            self.is_enabled
            and self.server_url
            and self.user_id
            and self.tokens.has_valid_refresh_token()
        )

    def _remember_identity(self, server_url: str, user_id: str) -> None:
        """Persist server/user, dropping tokens issued for another account."""
        previous_server = self.server_url
        previous_user = self.user_id
        switched = (previous_server and previous_server != server_url) or (
            previous_user and previous_user != user_id
        )
        if switched:
            logger.info("Sync account or server changed, clearing stored tokens")
            self.tokens.clear_tokens()
        self.storage.set(keys.SERVER_URL, server_url)
        self.storage.set(keys.USER_ID, user_id)

    # Session key

    @property
    def session_key(self) -> Optional[bytes]:
        return self._session_key

    def has_session_key(self) -> bool:
        return self._session_key is not None

    def set_session_key(self, master_key: bytes, remember: Optional[bool] = None) -> None:
        """Hold ``master_key`` for this session and optionally persist it.

        Args:
            master_key: Derived master key
            remember: Persist the key at rest; None keeps the current choice
        """
        self._session_key = bytes(master_key)
        if remember is None:
            remember = bool(self.storage.get(keys.REMEMBER_KEY, False))
        if remember:
            self.storage.set(keys.REMEMBER_KEY, True)
            self.storage.set(keys.MASTER_KEY, encode_master_key(self._session_key))
        else:
            self.storage.set(keys.REMEMBER_KEY, False)
            self.storage.delete(keys.MASTER_KEY)

    def restore_session_key(self) -> bool:
        """Load a remembered master key on startup.

        Returns:
            True if a key was restored
        """
        if not self.storage.get(keys.REMEMBER_KEY, False):
            return False
        encoded = self.storage.get(keys.MASTER_KEY)
        if not encoded:
            return False
        try:
            self._session_key = decode_master_key(encoded)
        except InvalidInputError:
            logger.warning("Remembered encryption key is corrupted, discarding it")
            self.storage.delete(keys.MASTER_KEY)
            return False
        logger.debug("Restored remembered encryption key")
        return True

    def clear_session_key(self, forget: bool = True) -> None:
        """Drop the in-memory key, and the remembered copy when ``forget``."""
        self._session_key = None
        if forget:
            self.storage.delete(keys.MASTER_KEY)
            self.storage.set(keys.REMEMBER_KEY, False)

    async def unlock(self, password: str, remember: Optional[bool] = None) -> None:
        """Re-derive the session key without contacting the server."""
        master_key = await derive_master_key(password)
        self.set_session_key(master_key, remember)
        logger.info("Encryption key unlocked")

    # Account operations

    async def register(
        self,
        server_url: str,
        user_id: str,
        password: str,
        remember_key: bool = False,
    ) -> Dict[str, Any]:
        """Create an account and hold the session key.

        Raises:
            InvalidInputError: Password shorter than 8 characters
            RegistrationFailedError: Server rejected the registration
        """
        if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
            raise InvalidInputError(
                f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
            )
        password_hash = hash_password(password, user_id)

        try:
            result = await self.api.register(server_url, user_id, password_hash)
        except ApiError as e:
            if e.kind in TRANSIENT_KINDS:
                raise
            raise RegistrationFailedError(
                e.message, status_code=e.status_code
            ) from e
        if result.get("success") is False:
            raise RegistrationFailedError(
                result.get("message") or "Registration failed"
            )

        self._remember_identity(server_url, user_id)
        if isinstance(result.get("tokens"), dict):
            self.tokens.store_tokens(self._parse_tokens(result))
        self.set_session_key(await derive_master_key(password), remember_key)
        logger.info("Registered sync account %s", user_id)
        return result

    async def login(
        self,
        server_url: str,
        user_id: str,
        password: str,
        remember_key: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """Authenticate, store tokens and hold the session key.

        Raises:
            AuthenticationFailedError: Server rejected the credentials
            InvalidServerResponseError: Response lacked a refresh token
        """
        password_hash = hash_password(password, user_id)

        try:
            result = await self.api.login(server_url, user_id, password_hash)
        except ApiError as e:
            if e.kind in TRANSIENT_KINDS:
                raise
            raise AuthenticationFailedError(
                e.message, status_code=e.status_code
            ) from e
        if result.get("success") is False:
            raise AuthenticationFailedError(result.get("message") or "Login failed")

        tokens = self._parse_tokens(result)
        if not tokens.refresh_token:
            raise InvalidServerResponseError("Login response is missing a refresh token")

        self._remember_identity(server_url, user_id)
        self.tokens.store_tokens(tokens)
        self.set_session_key(await derive_master_key(password), remember_key)
        logger.info("Logged in to sync server as %s", user_id)
        return result

    def logout(self) -> None:
        """Forget tokens and the session key (including a remembered key)."""
        self.tokens.clear_tokens()
        self.clear_session_key(forget=True)
        logger.info("Logged out of sync server")

    @staticmethod
    def _parse_tokens(result: Dict[str, Any]) -> TokenPair:
        raw = result.get("tokens")
        if not isinstance(raw, dict):
            raise InvalidServerResponseError("Response is missing tokens")
        try:
            return TokenPair.model_validate(raw)
        except ValidationError as e:
            raise InvalidServerResponseError("Response contains malformed tokens") from e

    # Tokens

    async def get_access_token(self) -> str:
        """Return a usable access token, refreshing it when needed."""
        token = self.tokens.valid_access_token()
        if token:
            return token
        return await self.refresh_access_token()

    async def refresh_access_token(self) -> str:
        """Refresh the access token. Concurrent callers share one request."""
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.ensure_future(self._refresh())
        return await self._refresh_task

    async def _refresh(self) -> str:
        refresh_token = self.tokens.refresh_token
        server_url = self.server_url
        if not refresh_token or not server_url:
            self.tokens.clear_tokens()
            raise SessionExpiredError("Session expired. Please log in again.")

        logger.debug("Refreshing access token")
        try:
            result = await self.api.refresh(server_url, refresh_token)
        except ApiError as e:
            if e.kind in TRANSIENT_KINDS:
                raise
            self.tokens.clear_tokens()
            raise SessionExpiredError(
                e.message or "Session expired. Please log in again.",
                status_code=e.status_code,
            ) from e

        try:
            if result.get("success") is False:
                raise InvalidServerResponseError(
                    result.get("message") or "Refresh rejected"
                )
            tokens = self._parse_tokens(result)
        except InvalidServerResponseError as e:
            self.tokens.clear_tokens()
            raise SessionExpiredError(e.message) from e

        self.tokens.store_tokens(tokens)
        logger.debug("Access token refreshed")
        return tokens.access_token
