"""Shared fixtures: an in-memory sync server, storage, clock and keys."""

import json
from typing import Any, Dict, Optional, Set

import httpx
import pytest

from portfolio_sync.core.api import SyncApiClient
from portfolio_sync.core.auth import CredentialManager, TokenStore
from portfolio_sync.core.crypto import encrypt
from portfolio_sync.core.crypto.key_derivation import (
    MASTER_KEY_ITERATIONS,
    MASTER_KEY_SALT,
    _pbkdf2,
)
from portfolio_sync.core.sync import SyncOrchestrator, SyncService
from portfolio_sync.models import TokenPair
from portfolio_sync.storage import MemoryStorage, keys
from portfolio_sync.utils.clock import ManualClock

SERVER_URL = "https://sync.example.test"
USER_ID = "alice"
PASSWORD = "correct horse battery"

ACCESS_TTL_MS = 15 * 60 * 1000
REFRESH_TTL_MS = 30 * 24 * 60 * 60 * 1000


class FakeSyncServer:
    """Behaves like the sync server's JSON API, entirely in memory."""

    def __init__(self, clock: ManualClock) -> None:
        self.clock = clock
        self.users: Dict[str, str] = {}
        self.records: Dict[str, Dict[str, Any]] = {}
        self.access_tokens: Set[str] = set()
        self.refresh_tokens: Set[str] = set()
        self.requests: list = []
        self.reject_refresh = False
        self.rate_limit_seconds: Optional[int] = None
        self._counter = 0

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def issue_tokens(self) -> Dict[str, Any]:
        self._counter += 1
        access = f"access-{self._counter}"
        refresh = f"refresh-{self._counter}"
        self.access_tokens.add(access)
        self.refresh_tokens.add(refresh)
        now = self.clock.now_ms()
        return {
            "accessToken": access,
            "refreshToken": refresh,
            "accessExpiresAt": now + ACCESS_TTL_MS,
            "refreshExpiresAt": now + REFRESH_TTL_MS,
        }

    def count(self, method: str, path: str) -> int:
        return sum(1 for m, p in self.requests if m == method and p == path)

    def _bearer(self, request: httpx.Request) -> Optional[str]:
        header = request.headers.get("Authorization", "")
        return header[len("Bearer ") :] if header.startswith("Bearer ") else None

    def handler(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        self.requests.append((method, path))

        if self.rate_limit_seconds is not None:
            return httpx.Response(
                429,
                headers={"Retry-After": str(self.rate_limit_seconds)},
                json={"error": "RATE_LIMIT_EXCEEDED", "message": "Too many requests"},
            )

        body = json.loads(request.content) if request.content else {}

        if path == "/health":
            return httpx.Response(200, json={"status": "ok", "version": "1.0.0"})

        if path == "/auth/register":
            if body["userId"] in self.users:
                return httpx.Response(
                    409, json={"error": "USER_EXISTS", "message": "User already exists"}
                )
            self.users[body["userId"]] = body["passwordHash"]
            return httpx.Response(201, json={"success": True, "message": "Registered"})

        if path == "/auth/login":
            if self.users.get(body["userId"]) != body["passwordHash"]:
                return httpx.Response(
                    401,
                    json={"error": "INVALID_CREDENTIALS", "message": "Invalid credentials"},
                )
            return httpx.Response(200, json={"success": True, "tokens": self.issue_tokens()})

        if path == "/auth/refresh":
            token = self._bearer(request)
            if self.reject_refresh or token not in self.refresh_tokens:
                return httpx.Response(
                    401, json={"error": "INVALID_TOKEN", "message": "Refresh token invalid"}
                )
            return httpx.Response(200, json={"success": True, "tokens": self.issue_tokens()})

        if self._bearer(request) not in self.access_tokens:
            return httpx.Response(401, json={"error": "UNAUTHORIZED", "message": "Unauthorized"})

        if path == "/sync" and method == "POST":
            self.records[body["userId"]] = {
                "encryptedData": body["encryptedData"],
                "deviceId": body["deviceId"],
                "timestamp": body["timestamp"],
                "version": body["version"],
            }
            return httpx.Response(200, json={"success": True, "timestamp": body["timestamp"]})

        if path.startswith("/sync/"):
            user_id = path[len("/sync/") :]
            if method == "GET":
                if user_id not in self.records:
                    return httpx.Response(404, json={"error": "NOT_FOUND"})
                return httpx.Response(200, json={"success": True, "data": self.records[user_id]})
            if method == "DELETE":
                if self.records.pop(user_id, None) is None:
                    return httpx.Response(404, json={"error": "NOT_FOUND"})
                return httpx.Response(200, json={"success": True})

        return httpx.Response(404, json={"error": "NOT_FOUND"})


@pytest.fixture(scope="session")
def master_key() -> bytes:
    """Master key for PASSWORD, derived once per test session."""
    return _pbkdf2(PASSWORD.encode("utf-8"), MASTER_KEY_SALT, MASTER_KEY_ITERATIONS)


@pytest.fixture
def clock():
    """Frozen clock."""
    return ManualClock()


@pytest.fixture
def storage():
    """Empty in-memory storage."""
    return MemoryStorage()


@pytest.fixture
def server(clock):
    """Empty in-memory sync server."""
    return FakeSyncServer(clock)


@pytest.fixture
def api(server):
    """API client talking to the fake server."""
    return SyncApiClient(transport=server.transport)


async def seed_remote(server, master_key, snapshot, timestamp, device_id="other-device"):
    """Place an encrypted record on the fake server."""
    server.records[USER_ID] = {
        "encryptedData": await encrypt(
            snapshot.with_timestamp(timestamp).to_json(), master_key
        ),
        "deviceId": device_id,
        "timestamp": timestamp,
        "version": 1,
    }


def configure_account(
    storage: MemoryStorage, server: FakeSyncServer, clock: ManualClock
) -> None:
    """Put a logged-in, enabled account into ``storage``."""
    storage.set(keys.SYNC_ENABLED, True)
    storage.set(keys.SERVER_URL, SERVER_URL)
    storage.set(keys.USER_ID, USER_ID)
    TokenStore(storage, clock).store_tokens(TokenPair.model_validate(server.issue_tokens()))


@pytest.fixture
def credentials(storage, api, clock):
    """Credential manager over the shared storage."""
    return CredentialManager(storage, api, clock)


@pytest.fixture
def orchestrator(storage, server, clock, api, credentials, master_key):
    """Orchestrator for a configured and unlocked device."""
    configure_account(storage, server, clock)
    credentials.set_session_key(master_key)
    return SyncOrchestrator(storage, credentials, api, clock)


@pytest.fixture
def make_service(server, clock):
    """Factory for services on separate devices sharing one server."""

    def _make(storage: Optional[MemoryStorage] = None, **kwargs: Any) -> SyncService:
        return SyncService(
            storage if storage is not None else MemoryStorage(),
            clock=clock,
            transport=server.transport,
            **kwargs,
        )

    return _make
