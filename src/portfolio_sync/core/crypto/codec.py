"""Authenticated encryption of sync payloads.

Blob layout (before base64)::

    salt (16) | iv (12) | ciphertext | GCM tag (16)

Every call to :func:`encrypt` draws a fresh salt and IV.
"""

import base64
import binascii
import hashlib
import logging
import os

from cryptography.exceptions import InvalidTag

from ...exceptions import (
    CryptoUnsupportedError,
    DecryptionFailedError,
    EncryptionFailedError,
    InvalidInputError,
)
from .key_derivation import IV_LENGTH, SALT_LENGTH, derive_encryption_key

logger = logging.getLogger(__name__)

GCM_TAG_LENGTH = 16


async def encrypt(plaintext: str, master_key: bytes) -> str:
    """Encrypt ``plaintext`` under a key derived from ``master_key``.

    Args:
        plaintext: Text to encrypt
        master_key: Session master key

    Returns:
        Base64 blob ``salt | iv | ciphertext+tag``

    Raises:
        EncryptionFailedError: On any provider failure
        CryptoUnsupportedError: If no crypto backend is available
    """
    if not isinstance(plaintext, str):
        raise InvalidInputError("Plaintext must be a string")

    salt = os.urandom(SALT_LENGTH)
    iv = os.urandom(IV_LENGTH)
    try:
        cipher = await derive_encryption_key(master_key, salt)
        ciphertext = cipher.encrypt(iv, plaintext.encode("utf-8"), None)
    except (CryptoUnsupportedError, InvalidInputError):
        raise
    except Exception as e:
        logger.error("Encryption failed: %s", type(e).__name__)
        raise EncryptionFailedError("Encryption failed") from e

    return base64.b64encode(salt + iv + ciphertext).decode("ascii")


async def decrypt(blob: str, master_key: bytes) -> str:
    """Decrypt a blob produced by :func:`encrypt`.

    Wrong keys, truncated input and tampering all raise the same
    :class:`DecryptionFailedError`.
    """
    try:
        raw = base64.b64decode(blob, validate=True)
    except (binascii.Error, TypeError, ValueError) as e:
        raise DecryptionFailedError("Decryption failed") from e

    if len(raw) < SALT_LENGTH + IV_LENGTH + GCM_TAG_LENGTH:
        raise DecryptionFailedError("Decryption failed")

    salt = raw[:SALT_LENGTH]
    iv = raw[SALT_LENGTH : SALT_LENGTH + IV_LENGTH]
    ciphertext = raw[SALT_LENGTH + IV_LENGTH :]

    try:
        cipher = await derive_encryption_key(master_key, salt)
        plaintext = cipher.decrypt(iv, ciphertext, None)
        return plaintext.decode("utf-8")
    except CryptoUnsupportedError:
        raise
    except (InvalidTag, InvalidInputError, UnicodeDecodeError, ValueError) as e:
        logger.debug("Decryption rejected: %s", type(e).__name__)
        raise DecryptionFailedError("Decryption failed") from e


def hash_content(data: str) -> str:
    """SHA-256 hex digest used for content-equality checks."""
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
