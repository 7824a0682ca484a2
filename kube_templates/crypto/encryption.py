"""AES-CBC protection of scalar values.

``protect`` turns a plaintext into ``$ocm_encrypted:<base64>``; decryption
reverses it, retrying with a fallback key so keys can be rotated.  The
initialization vector is fixed per configuration, which makes encryption
deterministic: the same plaintext always yields the same marker, keeping
rendered manifests stable between reconciliations.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable, List, Optional

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from kube_templates.config.models import EncryptionConfig
from kube_templates.errors import (
    AESKeyNotSetError,
    InvalidAESKeyError,
    InvalidBase64Error,
    InvalidIVError,
    InvalidPKCS7PaddingError,
    IVNotSetError,
)

logger = logging.getLogger(__name__)

PROTECTED_PREFIX = "$ocm_encrypted:"
IV_SIZE = 16
BLOCK_SIZE = 16

#: A marker followed by base64 text.  A marker followed by anything else is
#: not matched and stays in the document untouched.
MARKER_RE = re.compile(re.escape(PROTECTED_PREFIX) + r"([A-Za-z0-9+/=]+)")


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_encryption_config(config: EncryptionConfig) -> None:
    """Check key and IV when encryption or decryption is enabled.

    Raises:
        AESKeyNotSetError, InvalidAESKeyError, IVNotSetError, InvalidIVError
    """
    if not config.enabled:
        logger.debug("Template encryption and decryption is disabled")
        return

    if config.aes_key is None:
        raise AESKeyNotSetError()
    _check_key(config.aes_key)
    if config.aes_key_fallback is not None:
        _check_key(config.aes_key_fallback)

    if config.initialization_vector is None:
        raise IVNotSetError()
    if len(config.initialization_vector) != IV_SIZE:
        raise InvalidIVError()

    if config.encryption_enabled:
        logger.debug("Template encryption is enabled")
    if config.decryption_enabled:
        logger.debug("Template decryption is enabled")


def _check_key(key: bytes) -> None:
    try:
        algorithms.AES(key)
    except ValueError as exc:
        raise InvalidAESKeyError(str(exc)) from exc


# ---------------------------------------------------------------------------
# PKCS7
# ---------------------------------------------------------------------------


def pkcs7_pad(value: bytes, block_size: int = BLOCK_SIZE) -> bytes:
    """Pad to a multiple of *block_size*; a full block is added when aligned."""
    amount = block_size - (len(value) % block_size)
    return value + bytes([amount]) * amount


def pkcs7_unpad(padded: bytes) -> bytes:
    """Strip PKCS7 padding, checking both the length byte and the pad bytes."""
    if not padded:
        raise InvalidPKCS7PaddingError("invalid PCKS7 padding: the padding length is invalid")
    last = padded[-1]
    if last == 0 or last > len(padded):
        raise InvalidPKCS7PaddingError("invalid PCKS7 padding: the padding length is invalid")
    if any(b != last for b in padded[-last:]):
        raise InvalidPKCS7PaddingError("invalid PCKS7 padding: not all the padding bytes match")
    return padded[:-last]


# ---------------------------------------------------------------------------
# Cipher
# ---------------------------------------------------------------------------


class AESCipher:
    """Encrypt and decrypt scalar strings with a fixed key and IV."""

    def __init__(self, key: bytes, iv: bytes, fallback_key: Optional[bytes] = None) -> None:
        if len(iv) != IV_SIZE:
            raise InvalidIVError()
        _check_key(key)
        if fallback_key is not None:
            _check_key(fallback_key)
        self._key = key
        self._iv = iv
        self._fallback_key = fallback_key

    @classmethod
    def from_config(cls, config: EncryptionConfig) -> "AESCipher":
        validate_encryption_config(config)
        if config.aes_key is None:
            raise AESKeyNotSetError()
        if config.initialization_vector is None:
            raise IVNotSetError()
        return cls(config.aes_key, config.initialization_vector, config.aes_key_fallback)

    def protect(self, value: str) -> str:
        """Return ``$ocm_encrypted:<base64>`` for *value*; ``""`` stays ``""``."""
        if value == "":
            return value
        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(self._iv)).encryptor()
        padded = pkcs7_pad(value.encode("utf-8"))
        encrypted = encryptor.update(padded) + encryptor.finalize()
        return PROTECTED_PREFIX + base64.b64encode(encrypted).decode("ascii")

    def decrypt(self, value: str) -> str:
        """Decrypt the base64 text that follows the marker.

        The fallback key is tried when the primary key yields invalid
        padding.  If both fail, the primary key's error is raised.
        """
        try:
            decoded = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InvalidBase64Error(
                f"{value}: the encrypted string is invalid base64: {exc}",
                context={"value": value},
            ) from exc

        try:
            return self._decrypt_with(self._key, decoded)
        except InvalidPKCS7PaddingError as primary_error:
            if self._fallback_key is None:
                raise
            logger.debug("Decryption with the primary AES key failed, trying the fallback key")
            try:
                return self._decrypt_with(self._fallback_key, decoded)
            except InvalidPKCS7PaddingError:
                raise primary_error from None

    def _decrypt_with(self, key: bytes, decoded: bytes) -> str:
        if not decoded or len(decoded) % BLOCK_SIZE:
            raise InvalidPKCS7PaddingError(
                "invalid PCKS7 padding: the encrypted value is not a whole number of blocks"
            )
        decryptor = Cipher(algorithms.AES(key), modes.CBC(self._iv)).decryptor()
        plain = pkcs7_unpad(decryptor.update(decoded) + decryptor.finalize())
        try:
            return plain.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidPKCS7PaddingError(
                "invalid PCKS7 padding: the decrypted value is not valid UTF-8"
            ) from exc


# ---------------------------------------------------------------------------
# Markers in documents
# ---------------------------------------------------------------------------


def find_encrypted_tokens(text: str) -> List[str]:
    """Return the distinct base64 tokens after every marker, in first-seen order."""
    seen: Dict[str, None] = {}
    for match in MARKER_RE.finditer(text):
        seen.setdefault(match.group(1), None)
    return list(seen)


def decrypt_tokens(
    cipher: AESCipher, tokens: Iterable[str], concurrency: int = 1
) -> Dict[str, str]:
    """Decrypt *tokens* on up to *concurrency* threads.

    Results are keyed by token, so completion order never affects where a
    plaintext ends up.  The first failure is raised after all workers join.
    """
    tokens = list(tokens)
    if not tokens:
        return {}
    workers = max(1, min(concurrency, len(tokens)))
    logger.debug("Decrypting %d value(s) with %d worker(s)", len(tokens), workers)
    with ThreadPoolExecutor(max_workers=workers) as pool:
        plaintexts = list(pool.map(cipher.decrypt, tokens))
    return dict(zip(tokens, plaintexts))


def rewrite_encrypted_markers(text: str, start_delim: str, stop_delim: str) -> str:
    """Replace each ``$ocm_encrypted:<b64>`` with an inline ``decrypt`` call."""
    return MARKER_RE.sub(
        lambda m: f'{start_delim} decrypt("{m.group(1)}") {stop_delim}',
        text,
    )
