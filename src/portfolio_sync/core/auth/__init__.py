"""Authentication: tokens, credentials and the session key."""

from .credentials import CredentialManager
from .token_store import TOKEN_EXPIRY_SKEW_MS, TokenState, TokenStore, parse_jwt_payload

__all__ = [
    "TOKEN_EXPIRY_SKEW_MS",
    "CredentialManager",
    "TokenState",
    "TokenStore",
    "parse_jwt_payload",
]
