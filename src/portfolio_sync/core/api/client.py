"""Async HTTP client for the sync server.

The server is an opaque blob store with a small JSON API::

    POST   /auth/register   {userId, passwordHash}
    POST   /auth/login      {userId, passwordHash}       -> {tokens}
    POST   /auth/refresh    Bearer <refresh token>       -> {tokens}
    POST   /sync            {encryptedData, deviceId, timestamp, version, userId}
    GET    /sync/<userId>   -> {data} | 404
    DELETE /sync/<userId>
    GET    /health          -> {status, version}

Non-2xx answers raise :class:`ApiError` tagged with an :class:`ErrorKind`
derived from the status code.
"""

import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from ...exceptions import ApiError, InvalidServerResponseError
from ...models import ErrorKind, SyncRecord

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0


def parse_retry_after(
    header_value: Optional[str], body_value: Any = None, now: Optional[datetime] = None
) -> Optional[int]:
    """Work out how many seconds to wait before retrying.

    Accepts the ``Retry-After`` header (delta seconds or HTTP-date) and falls
    back to a numeric ``retryAfter`` body field.
    """
    if header_value:
        value = header_value.strip()
        if value.isdigit():
            return int(value)
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            when = None
        if when is not None:
            if when.tzinfo is None:
                when = when.replace(tzinfo=timezone.utc)
            current = now or datetime.now(timezone.utc)
            return max(0, int((when - current).total_seconds()))

    if isinstance(body_value, (int, float)) and not isinstance(body_value, bool):
        return max(0, int(body_value))
    if isinstance(body_value, str) and body_value.strip().isdigit():
        return int(body_value.strip())
    return None


def kind_for_status(status_code: int) -> ErrorKind:
    """Map an HTTP status to the error taxonomy."""
    if status_code in (401, 403):
        return ErrorKind.AUTH
    if status_code == 429:
        return ErrorKind.RATE_LIMIT
    return ErrorKind.SERVER


class SyncApiClient:
    """Thin async wrapper around the sync server endpoints."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize API client.

        Args:
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests pass a MockTransport)
        """
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        await self._client.aclose()

    async def __aenter__(self) -> "SyncApiClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    @staticmethod
    def _url(server_url: str, path: str) -> str:
        return f"{server_url.rstrip('/')}{path}"

    async def _request(
        self,
        method: str,
        server_url: str,
        path: str,
        *,
        json_body: Optional[Dict[str, Any]] = None,
        bearer: Optional[str] = None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {bearer}"} if bearer else None
        try:
            response = await self._client.request(
                method, self._url(server_url, path), json=json_body, headers=headers
            )
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise ApiError(
                f"Network error: {e}", code="NETWORK_ERROR", kind=ErrorKind.NETWORK
            ) from e
        logger.debug("%s %s -> %d", method, path, response.status_code)
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise InvalidServerResponseError(
                f"Server returned invalid JSON (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from e
        if not isinstance(data, dict):
            raise InvalidServerResponseError(
                "Server returned an unexpected payload",
                status_code=response.status_code,
            )
        return data

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        status = response.status_code
        message = body.get("message") or body.get("error") or f"HTTP {status}"
        retry_after = None
        if status == 429:
            retry_after = parse_retry_after(
                response.headers.get("Retry-After"), body.get("retryAfter")
            )
        raise ApiError(
            str(message),
            code=body.get("error") or f"HTTP_{status}",
            kind=kind_for_status(status),
            retry_after_seconds=retry_after,
            status_code=status,
        )

    async def register(
        self, server_url: str, user_id: str, password_hash: str
    ) -> Dict[str, Any]:
        """Create an account."""
        response = await self._request(
            "POST",
            server_url,
            "/auth/register",
            json_body={"userId": user_id, "passwordHash": password_hash},
        )
        self._raise_for_status(response)
        return self._json(response)

    async def login(
        self, server_url: str, user_id: str, password_hash: str
    ) -> Dict[str, Any]:
        """Exchange credentials for a token pair."""
        response = await self._request(
            "POST",
            server_url,
            "/auth/login",
            json_body={"userId": user_id, "passwordHash": password_hash},
        )
        self._raise_for_status(response)
        return self._json(response)

    async def refresh(self, server_url: str, refresh_token: str) -> Dict[str, Any]:
        """Exchange a refresh token for a new token pair."""
        response = await self._request(
            "POST", server_url, "/auth/refresh", bearer=refresh_token
        )
        self._raise_for_status(response)
        return self._json(response)

    async def upload(
        self,
        server_url: str,
        access_token: str,
        user_id: str,
        record: SyncRecord,
        force: bool = False,
    ) -> Dict[str, Any]:
        """Replace the server record for ``user_id``."""
        body = record.to_wire()
        body["userId"] = user_id
        if force:
            body["force"] = True
        response = await self._request(
            "POST", server_url, "/sync", json_body=body, bearer=access_token
        )
        self._raise_for_status(response)
        if not response.content:
            return {}
        return self._json(response)

    async def download(
        self, server_url: str, access_token: str, user_id: str
    ) -> Optional[SyncRecord]:
        """Fetch the server record, or ``None`` when none exists."""
        response = await self._request(
            "GET",
            server_url,
            f"/sync/{quote(user_id, safe='')}",
            bearer=access_token,
        )
        if response.status_code == 404:
            return None
        self._raise_for_status(response)

        data = self._json(response).get("data")
        if not data:
            return None
        try:
            return SyncRecord.model_validate(data)
        except ValidationError as e:
            raise InvalidServerResponseError(
                f"Malformed sync record: {e.error_count()} invalid field(s)"
            ) from e

    async def delete(self, server_url: str, access_token: str, user_id: str) -> None:
        """Delete the server record for ``user_id``."""
        response = await self._request(
            "DELETE",
            server_url,
            f"/sync/{quote(user_id, safe='')}",
            bearer=access_token,
        )
        if response.status_code == 404:
            return
        self._raise_for_status(response)

    async def health(self, server_url: str) -> Dict[str, Any]:
        """Query the unauthenticated health endpoint."""
        response = await self._request("GET", server_url, "/health")
        self._raise_for_status(response)
        return self._json(response)
