"""Fernet encryption for onboarding documents at rest.

Section payloads are JSON-serialised and encrypted before they reach the
local SQLite cache. Revision markers and sync states stay in clear text so
the sync coordinator can query them without decrypting.

Key rotation: pass the retired keys as ``previous_keys``. Tokens are always
written with the primary key and read with any of them (``MultiFernet``).
"""

from __future__ import annotations

import json
import logging
from typing import Any

from cryptography.fernet import Fernet, InvalidToken, MultiFernet

logger = logging.getLogger(__name__)


class EncryptionError(Exception):
    """Raised when encryption/decryption fails."""


def _load_key(key: str) -> Fernet:
    if not key or not key.strip():
        raise EncryptionError("Encryption key must not be empty")
    try:
        return Fernet(key.strip().encode())
    except ValueError as exc:
        raise EncryptionError(f"Invalid encryption key: {exc}") from exc


class FieldEncryptor:
    """Encrypts and decrypts JSON-serializable documents.

    Usage::

        encryptor = FieldEncryptor(key="...", previous_keys=["<old key>"])
        token = encryptor.encrypt({"age": 30})
        encryptor.decrypt(token)  # {"age": 30}
    """

    def __init__(self, key: str, previous_keys: list[str] | None = None) -> None:
        """Initialize with a primary Fernet key and optional retired keys.

        Raises:
            EncryptionError: If any key is empty or invalid.
        """
        keys = [_load_key(key)] + [_load_key(k) for k in (previous_keys or [])]
        self._fernet = MultiFernet(keys)
        self._rotating = len(keys) > 1

    def encrypt(self, data: Any) -> str:
        """Encrypt a JSON-serializable value under the primary key.

        Raises:
            EncryptionError: If serialization or encryption fails.
        """
        if data is None:
            return ""
        try:
            plaintext = json.dumps(data, separators=(",", ":"), sort_keys=True).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise EncryptionError(f"Document is not JSON-serializable: {exc}") from exc
        return self._fernet.encrypt(plaintext).decode("utf-8")

    def decrypt(self, token: str) -> Any:
        """Decrypt a token produced by this (or a previous) key.

        Raises:
            EncryptionError: If the token is invalid or no key matches.
        """
        if not token:
            return None
        try:
            plaintext = self._fernet.decrypt(token.encode("utf-8"))
        except InvalidToken as exc:
            raise EncryptionError("Decryption failed: invalid token or wrong key") from exc
        return json.loads(plaintext)

    def rotate(self, token: str) -> str:
        """Re-encrypt ``token`` under the primary key."""
        if not token:
            return token
        try:
            return self._fernet.rotate(token.encode("utf-8")).decode("utf-8")
        except InvalidToken as exc:
            raise EncryptionError("Rotation failed: token matches no configured key") from exc

    @property
    def is_rotating(self) -> bool:
        """True when retired keys are configured."""
        return self._rotating

    @staticmethod
    def generate_key() -> str:
        """Generate a new Fernet key as a string."""
        return Fernet.generate_key().decode("utf-8")
