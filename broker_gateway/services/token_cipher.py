"""Symmetric encryption for stored credentials and the approval cookie."""

from __future__ import annotations

import base64
import hashlib
import json
from typing import Any, Optional

from cryptography.fernet import Fernet, InvalidToken


class TokenCipherService:
    """Encrypt and decrypt sensitive strings using a Fernet key derived from a secret."""

    def __init__(self, *, secret: str) -> None:
        if not secret:
            raise ValueError("Token encryption secret must be provided.")
        digest = hashlib.sha256(secret.encode("utf-8")).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(digest))

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str, *, max_age: Optional[int] = None) -> str:
        """Decrypt ``ciphertext``; ``max_age`` rejects tokens older than that many seconds."""
        try:
            plaintext = self._fernet.decrypt(ciphertext.encode("utf-8"), ttl=max_age)
        except (InvalidToken, UnicodeEncodeError) as exc:
            raise ValueError(
                "Failed to decrypt token; invalid or expired ciphertext provided."
            ) from exc
        return plaintext.decode("utf-8")

    def seal(self, payload: Any) -> str:
        """Encrypt a JSON-serializable payload."""
        return self.encrypt(json.dumps(payload, separators=(",", ":"), default=str))

    def unseal(self, ciphertext: str, *, max_age: Optional[int] = None) -> Any:
        return json.loads(self.decrypt(ciphertext, max_age=max_age))


__all__ = ["TokenCipherService"]
