"""Encryption of scalar values with AES-CBC."""

from kube_templates.crypto.encryption import (
    AESCipher,
    IV_SIZE,
    MARKER_RE,
    PROTECTED_PREFIX,
    decrypt_tokens,
    find_encrypted_tokens,
    pkcs7_pad,
    pkcs7_unpad,
    rewrite_encrypted_markers,
    validate_encryption_config,
)

__all__ = [
    "AESCipher",
    "IV_SIZE",
    "MARKER_RE",
    "PROTECTED_PREFIX",
    "decrypt_tokens",
    "find_encrypted_tokens",
    "pkcs7_pad",
    "pkcs7_unpad",
    "rewrite_encrypted_markers",
    "validate_encryption_config",
]
