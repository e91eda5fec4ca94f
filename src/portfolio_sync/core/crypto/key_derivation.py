"""Password and key derivation.

Two PBKDF2-HMAC-SHA256 stages:

1. ``derive_master_key``: password + fixed application salt, 200k iterations.
   The same password yields the same master key on every device.
2. ``derive_encryption_key``: master key + random per-blob salt, 100k
   iterations, producing the AES-256-GCM key for one encrypt/decrypt call.

The master key is never used as a cipher key directly. PBKDF2 runs in a
worker thread so the event loop keeps serving timers and I/O.
"""

import asyncio
import base64
import binascii
import hashlib
import logging
import uuid

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ...exceptions import CryptoUnsupportedError, InvalidInputError

logger = logging.getLogger(__name__)

MASTER_KEY_SALT = b"portfolio-sync/master-key/pbkdf2-salt/v1"
MASTER_KEY_ITERATIONS = 200_000
ENCRYPTION_KEY_ITERATIONS = 100_000
KEY_LENGTH = 32  # AES-256
SALT_LENGTH = 16
IV_LENGTH = 12  # 96-bit nonce for GCM
MIN_PASSWORD_LENGTH = 8


def is_supported() -> bool:
    """Check that the backend provides AES-GCM and PBKDF2-SHA256."""
    try:
        AESGCM(bytes(KEY_LENGTH))
        PBKDF2HMAC(
            algorithm=hashes.SHA256(), length=KEY_LENGTH, salt=b"0" * 16, iterations=1
        )
    except UnsupportedAlgorithm:
        return False
    return True


def _require_support() -> None:
    if not is_supported():
        raise CryptoUnsupportedError("No cryptographic provider available")


def _pbkdf2(secret: bytes, salt: bytes, iterations: int) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=iterations,
    )
    return kdf.derive(secret)


async def derive_master_key(password: str) -> bytes:
    """Derive the 256-bit master key from a password.

    Args:
        password: User password (any string, including empty)

    Returns:
        32-byte master key

    Raises:
        InvalidInputError: If password is not a string
        CryptoUnsupportedError: If no crypto backend is available
    """
    if not isinstance(password, str):
        raise InvalidInputError("Password must be a string")
    _require_support()
    return await asyncio.to_thread(
        _pbkdf2, password.encode("utf-8"), MASTER_KEY_SALT, MASTER_KEY_ITERATIONS
    )


async def derive_encryption_key(master_key: bytes, salt: bytes) -> AESGCM:
    """Derive the per-blob AES-GCM key for ``salt``.

    Args:
        master_key: Session master key
        salt: Random per-blob salt (16 bytes)

    Returns:
        AESGCM cipher bound to the derived key
    """
    if not isinstance(master_key, (bytes, bytearray)) or not master_key:
        raise InvalidInputError("Master key must be non-empty bytes")
    _require_support()
    key = await asyncio.to_thread(
        _pbkdf2, bytes(master_key), salt, ENCRYPTION_KEY_ITERATIONS
    )
    return AESGCM(key)


def hash_password(password: str, user_id: str) -> str:
    """Hash sent to the server in place of the password.

    The user id is mixed in so identical passwords on different accounts
    produce different hashes.
    """
    if not isinstance(password, str) or not isinstance(user_id, str):
        raise InvalidInputError("Password and user id must be strings")
    return hashlib.sha256(f"{password}|{user_id}".encode("utf-8")).hexdigest()


def encode_master_key(master_key: bytes) -> str:
    """Encode a master key for at-rest storage."""
    return base64.b64encode(master_key).decode("ascii")


def decode_master_key(encoded: str) -> bytes:
    """Decode a remembered master key.

    Raises:
        InvalidInputError: If the stored value is not valid base64
    """
    try:
        key = base64.b64decode(encoded, validate=True)
    except (binascii.Error, TypeError, ValueError) as e:
        raise InvalidInputError("Stored master key is corrupted") from e
    if not key:
        raise InvalidInputError("Stored master key is empty")
    return key


def generate_device_id() -> str:
    """Generate a random device identifier (UUID4)."""
    return str(uuid.uuid4())
