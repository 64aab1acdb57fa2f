"""AES-256-GCM encryption for secrets at rest (the scoring-service API key).

Blobs have the form ``iv:tag:ciphertext`` with each part base64-encoded.
Never log plaintext or the operator secret.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import os
import re

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from src.errors import ConfigurationError

logger = logging.getLogger(__name__)

IV_LENGTH = 16
AUTH_TAG_LENGTH = 16
KEY_LENGTH = 32

_HEX_KEY = re.compile(r"^[0-9a-fA-F]{%d}$" % (KEY_LENGTH * 2))


def derive_key(secret: str) -> bytes:
    """Turn an operator secret into a 32-byte key.

    A 64-character hex string is used verbatim; anything else is hashed
    down with SHA-256.
    """
    if _HEX_KEY.match(secret):
        return bytes.fromhex(secret)
    return hashlib.sha256(secret.encode("utf-8")).digest()


def _b64decode_strict(part: str) -> bytes | None:
    try:
        raw = base64.b64decode(part, validate=True)
    except (binascii.Error, ValueError):
        return None
    # Reject non-canonical encodings so every character of the blob is significant.
    if base64.b64encode(raw).decode("ascii") != part:
        return None
    return raw


class SecretCodec:
    """Encrypt and decrypt short secrets with a key derived from *secret*.

    The key is derived lazily; a missing secret raises
    :class:`ConfigurationError` on first use.

    Args:
        secret: Operator-supplied secret (hex key or passphrase).
    """

    def __init__(self, secret: str | None) -> None:
        self._secret = secret
        self._key: bytes | None = None

    @property
    def key(self) -> bytes:
        if self._key is None:
            if not self._secret:
                raise ConfigurationError(
                    "SCORING_KEY_ENC_SECRET or JWT_SECRET must be set for encryption"
                )
            self._key = derive_key(self._secret)
        return self._key

    def encrypt(self, plaintext: str) -> str:
        """Encrypt *plaintext* with a fresh random IV.

        Returns:
            ``iv:tag:ciphertext``, each part base64.

        Raises:
            ValueError: If plaintext is not a non-empty string.
            ConfigurationError: If no operator secret is configured.
        """
        if not isinstance(plaintext, str) or not plaintext:
            raise ValueError("encrypt expects a non-empty string")
        key = self.key
        iv = os.urandom(IV_LENGTH)
        sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
        ciphertext, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]
        return ":".join(
            base64.b64encode(part).decode("ascii") for part in (iv, tag, ciphertext)
        )

    def decrypt(self, blob: str | None) -> str | None:
        """Decrypt a blob produced by :meth:`encrypt`.

        Returns:
            The plaintext, or None if the blob is malformed, tampered with,
            truncated, or sealed under a different key.
        """
        if not isinstance(blob, str):
            return None
        parts = blob.split(":")
        if len(parts) != 3:
            return None

        decoded = [_b64decode_strict(part) for part in parts]
        if any(raw is None for raw in decoded):
            return None
        iv, tag, ciphertext = decoded
        if len(iv) != IV_LENGTH or len(tag) != AUTH_TAG_LENGTH:
            return None

        key = self.key
        try:
            plaintext = AESGCM(key).decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            logger.warning("Credential blob failed authentication")
            return None
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError:
            return None
