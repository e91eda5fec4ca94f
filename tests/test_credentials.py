"""Tests for registration, login, refresh and the session key."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from portfolio_sync.core.auth import CredentialManager
from portfolio_sync.exceptions import (
    ApiError,
    AuthenticationFailedError,
    InvalidInputError,
    InvalidServerResponseError,
    RegistrationFailedError,
    SessionExpiredError,
)
from portfolio_sync.models import ErrorKind
from portfolio_sync.storage import keys

from conftest import PASSWORD, SERVER_URL, USER_ID, configure_account


@pytest.fixture
def mock_api():
    """API double with async endpoint methods."""
    api = MagicMock()
    api.register = AsyncMock()
    api.login = AsyncMock()
    api.refresh = AsyncMock()
    return api


class TestRegister:
    """Test account registration."""

    @pytest.mark.asyncio
    async def test_short_password_rejected_before_network(self, storage, mock_api, clock):
        """Test passwords under 8 characters never reach the server."""
        credentials = CredentialManager(storage, mock_api, clock)
        with pytest.raises(InvalidInputError):
            await credentials.register(SERVER_URL, USER_ID, "short")
        mock_api.register.assert_not_called()

    @pytest.mark.asyncio
    async def test_register_holds_session_key(self, credentials, server, storage, master_key):
        """Test successful registration stores identity and the key."""
        await credentials.register(SERVER_URL, USER_ID, PASSWORD)

        assert USER_ID in server.users
        assert storage.get(keys.SERVER_URL) == SERVER_URL
        assert storage.get(keys.USER_ID) == USER_ID
        assert credentials.session_key == master_key
        assert not storage.has(keys.MASTER_KEY)

    @pytest.mark.asyncio
    async def test_register_stores_issued_tokens(self, storage, mock_api, clock):
        """Test tokens returned by registration are kept."""
        mock_api.register.return_value = {
            "success": True,
            "tokens": {"accessToken": "acc-1", "refreshToken": "ref-1"},
        }
        credentials = CredentialManager(storage, mock_api, clock)

        await credentials.register(SERVER_URL, USER_ID, PASSWORD)

        assert storage.get(keys.ACCESS_TOKEN) == "acc-1"
        assert storage.get(keys.REFRESH_TOKEN) == "ref-1"

    @pytest.mark.asyncio
    async def test_duplicate_registration_fails(self, credentials):
        """Test server rejection becomes a registration error."""
        await credentials.register(SERVER_URL, USER_ID, PASSWORD)
        with pytest.raises(RegistrationFailedError, match="already exists"):
            await credentials.register(SERVER_URL, USER_ID, PASSWORD)


class TestLogin:
    """Test login and identity handling."""

    @pytest.mark.asyncio
    async def test_login_stores_tokens(self, credentials, server, storage):
        """Test login persists tokens and the identity."""
        await credentials.register(SERVER_URL, USER_ID, PASSWORD)
        await credentials.login(SERVER_URL, USER_ID, PASSWORD)

        assert storage.get(keys.ACCESS_TOKEN) in server.access_tokens
        assert storage.get(keys.REFRESH_TOKEN) in server.refresh_tokens
        assert credentials.tokens.has_valid_refresh_token()
        assert credentials.has_session_key()

    @pytest.mark.asyncio
    async def test_wrong_password(self, credentials):
        """Test rejected credentials raise an authentication error."""
        await credentials.register(SERVER_URL, USER_ID, PASSWORD)
        with pytest.raises(AuthenticationFailedError) as exc_info:
            await credentials.login(SERVER_URL, USER_ID, "wrong password")
        assert exc_info.value.kind == ErrorKind.AUTH
        assert credentials.tokens.access_token is None

    @pytest.mark.asyncio
    async def test_missing_refresh_token(self, storage, mock_api, clock):
        """Test a login response without refresh token is rejected."""
        mock_api.login.return_value = {
            "success": True,
            "tokens": {"accessToken": "a1", "accessExpiresAt": clock.now_ms() + 600_000},
        }
        credentials = CredentialManager(storage, mock_api, clock)

        with pytest.raises(InvalidServerResponseError):
            await credentials.login(SERVER_URL, USER_ID, PASSWORD)
        assert not storage.has(keys.ACCESS_TOKEN)

    @pytest.mark.asyncio
    async def test_network_error_is_not_an_auth_failure(self, storage, mock_api, clock):
        """Test transport failures propagate unchanged."""
        mock_api.login.side_effect = ApiError(
            "Network error", code="NETWORK_ERROR", kind=ErrorKind.NETWORK
        )
        credentials = CredentialManager(storage, mock_api, clock)
        with pytest.raises(ApiError) as exc_info:
            await credentials.login(SERVER_URL, USER_ID, PASSWORD)
        assert not isinstance(exc_info.value, AuthenticationFailedError)

    def test_switching_user_clears_tokens(self, credentials, storage, server, clock):
        """Test tokens of another account are dropped."""
        configure_account(storage, server, clock)
        credentials._remember_identity(SERVER_URL, "bob")
        assert not storage.has(keys.ACCESS_TOKEN)
        assert storage.get(keys.USER_ID) == "bob"

    def test_same_identity_keeps_tokens(self, credentials, storage, server, clock):
        """Test re-login to the same account keeps tokens until replaced."""
        configure_account(storage, server, clock)
        credentials._remember_identity(SERVER_URL, USER_ID)
        assert storage.has(keys.ACCESS_TOKEN)

    def test_logout_forgets_everything(self, credentials, storage, server, clock, master_key):
        """Test logout clears tokens and the remembered key."""
        configure_account(storage, server, clock)
        credentials.set_session_key(master_key, remember=True)

        credentials.logout()

        assert not credentials.has_session_key()
        assert not storage.has(keys.ACCESS_TOKEN)
        assert not storage.has(keys.MASTER_KEY)
        assert storage.get(keys.REMEMBER_KEY) is False


class TestSessionKey:
    """Test remembering and restoring the session key."""

    def test_remembered_key_is_restored(self, storage, api, clock, master_key):
        """Test a remembered key survives a restart."""
        CredentialManager(storage, api, clock).set_session_key(master_key, remember=True)

        restarted = CredentialManager(storage, api, clock)
        assert restarted.restore_session_key() is True
        assert restarted.session_key == master_key

    def test_unremembered_key_is_not_restored(self, storage, api, clock, master_key):
        """Test keys are memory-only by default."""
        CredentialManager(storage, api, clock).set_session_key(master_key)
        restarted = CredentialManager(storage, api, clock)
        assert restarted.restore_session_key() is False
        assert restarted.session_key is None

    def test_corrupted_remembered_key_is_discarded(self, storage, api, clock):
        """Test a corrupted remembered key is removed."""
        storage.set(keys.REMEMBER_KEY, True)
        storage.set(keys.MASTER_KEY, "***")
        credentials = CredentialManager(storage, api, clock)
        assert credentials.restore_session_key() is False
        assert not storage.has(keys.MASTER_KEY)

    @pytest.mark.asyncio
    async def test_unlock_derives_without_network(self, storage, mock_api, clock, master_key):
        """Test unlock only derives the key."""
        credentials = CredentialManager(storage, mock_api, clock)
        await credentials.unlock(PASSWORD)
        assert credentials.session_key == master_key
        mock_api.login.assert_not_called()


class TestRefresh:
    """Test access token refresh."""

    @pytest.mark.asyncio
    async def test_valid_access_token_is_reused(self, credentials, storage, server, clock):
        """Test no refresh happens while the access token is valid."""
        configure_account(storage, server, clock)
        token = await credentials.get_access_token()
        assert token == storage.get(keys.ACCESS_TOKEN)
        assert server.count("POST", "/auth/refresh") == 0

    @pytest.mark.asyncio
    async def test_expired_access_token_is_refreshed(self, credentials, storage, server, clock):
        """Test an expired access token triggers one refresh."""
        configure_account(storage, server, clock)
        old = storage.get(keys.ACCESS_TOKEN)
        clock.advance(15 * 60 * 1000)

        token = await credentials.get_access_token()

        assert token != old
        assert token in server.access_tokens
        assert storage.get(keys.ACCESS_TOKEN) == token
        assert server.count("POST", "/auth/refresh") == 1

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_share_one_request(self, storage, mock_api, clock):
        """Test parallel callers await a single refresh."""
        storage.set(keys.SERVER_URL, SERVER_URL)
        storage.set(keys.REFRESH_TOKEN, "r1")
        storage.set(keys.REFRESH_TOKEN_EXPIRY, clock.now_ms() + 86_400_000)

        async def slow_refresh(server_url, refresh_token):
            await asyncio.sleep(0.01)
            return {
                "success": True,
                "tokens": {
                    "accessToken": "a2",
                    "refreshToken": "r2",
                    "accessExpiresAt": clock.now_ms() + 600_000,
                    "refreshExpiresAt": clock.now_ms() + 86_400_000,
                },
            }

        mock_api.refresh.side_effect = slow_refresh
        credentials = CredentialManager(storage, mock_api, clock)

        tokens = await asyncio.gather(*(credentials.get_access_token() for _ in range(5)))

        assert tokens == ["a2"] * 5
        assert mock_api.refresh.await_count == 1

    @pytest.mark.asyncio
    async def test_rejected_refresh_clears_tokens(self, credentials, storage, server, clock):
        """Test a rejected refresh ends the session."""
        configure_account(storage, server, clock)
        server.reject_refresh = True
        clock.advance(15 * 60 * 1000)

        with pytest.raises(SessionExpiredError) as exc_info:
            await credentials.get_access_token()

        assert exc_info.value.code == "SESSION_EXPIRED"
        assert not any(storage.has(key) for key in keys.TOKEN_KEYS)

    @pytest.mark.asyncio
    async def test_refresh_network_failure_keeps_tokens(self, storage, mock_api, clock):
        """Test transient refresh failures leave the session intact."""
        storage.set(keys.SERVER_URL, SERVER_URL)
        storage.set(keys.REFRESH_TOKEN, "r1")
        storage.set(keys.REFRESH_TOKEN_EXPIRY, clock.now_ms() + 86_400_000)
        mock_api.refresh.side_effect = ApiError(
            "Network error", code="NETWORK_ERROR", kind=ErrorKind.NETWORK
        )
        credentials = CredentialManager(storage, mock_api, clock)

        with pytest.raises(ApiError):
            await credentials.get_access_token()
        assert storage.get(keys.REFRESH_TOKEN) == "r1"

    @pytest.mark.asyncio
    async def test_missing_refresh_token_expires_session(self, storage, mock_api, clock):
        """Test refreshing without a refresh token fails immediately."""
        storage.set(keys.SERVER_URL, SERVER_URL)
        credentials = CredentialManager(storage, mock_api, clock)
        with pytest.raises(SessionExpiredError):
            await credentials.refresh_access_token()
        mock_api.refresh.assert_not_called()
