"""Key derivation and payload encryption."""

from .codec import decrypt, encrypt, hash_content
from .key_derivation import (
    MIN_PASSWORD_LENGTH,
    decode_master_key,
    derive_encryption_key,
    derive_master_key,
    encode_master_key,
    generate_device_id,
    hash_password,
    is_supported,
)

__all__ = [
    "MIN_PASSWORD_LENGTH",
    "decode_master_key",
    "decrypt",
    "derive_encryption_key",
    "derive_master_key",
    "encode_master_key",
    "encrypt",
    "generate_device_id",
    "hash_content",
    "hash_password",
    "is_supported",
]
