"""Record payload codec with optional Fernet encryption at rest.

Record bodies (profile fields, observation values, post content) are
serialized to JSON and, when keys are configured, encrypted before they are
written to SQLite. Secondary index values stay in plain columns so indexed
lookups never need to decrypt.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when encoding or decoding a record payload fails."""


class RecordCipher:
    """Encodes JSON-serializable records to strings and back.

    With one or more Fernet keys the payload is a Fernet token. The first key
    encrypts; every key is tried on decrypt, so old keys can be kept around
    while rotating. Without keys the payload is compact JSON.

    Usage::

        cipher = RecordCipher([Fernet.generate_key().decode()])
        token = cipher.encode({"type": "mood", "value": "good"})
        record = cipher.decode(token)
    """

    def __init__(self, keys: list[str] | str | None = None) -> None:
        """Initialize with zero or more Fernet keys.

        Args:
            keys: A key, a list of keys (newest first), a comma-separated
                key string, or None for plaintext JSON payloads.

        Raises:
            EncryptionError: If any key is invalid.
        """
        if isinstance(keys, str):
            keys = [k.strip() for k in keys.split(",")]
        keys = [k for k in (keys or []) if k and k.strip()]

        self._fernet: MultiFernet | None = None
        if keys:
            try:
                self._fernet = MultiFernet([Fernet(k.encode()) for k in keys])
            except (ValueError, TypeError) as exc:
                raise EncryptionError(f"Invalid encryption key: {exc}") from exc

    @property
    def encrypted(self) -> bool:
        """Whether payloads are encrypted at rest."""
        return self._fernet is not None

    def encode(self, record: Any) -> str:
        """Serialize (and encrypt, when keyed) a JSON-serializable value.

        Raises:
            EncryptionError: If the value is not JSON-serializable.
        """
        try:
            plaintext = json.dumps(record, separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Record is not JSON-serializable: {exc}") from exc

        if self._fernet is None:
            return plaintext
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decode(self, payload: str) -> Any:
        """Decrypt (when keyed) and deserialize a stored payload.

        Raises:
            EncryptionError: If the token is invalid, the key is wrong, or
                the plaintext is not valid JSON.
        """
        if self._fernet is None:
            text = payload
        else:
            try:
                text = self._fernet.decrypt(payload.encode("utf-8")).decode("utf-8")
            except InvalidToken as exc:
                raise EncryptionError("Decryption failed: invalid token or wrong key") from exc

        try:
            return json.loads(text)
        except (json.JSONDecodeError, TypeError) as exc:
            raise EncryptionError(f"Stored payload is not valid JSON: {exc}") from exc

    @staticmethod
    def generate_key() -> str:
        """Generate a new Fernet key.

        Returns:
            A URL-safe base64-encoded 32-byte key as a string.
        """
        return Fernet.generate_key().decode("utf-8")
