"""
Signed, expiring state tokens carried through the broker redirect.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import json
import time
import uuid
from hashlib import sha256
from typing import Callable, Optional, Protocol

from pydantic import ValidationError

from broker_gateway.core.errors import InvalidOrExpiredState
from broker_gateway.models.credentials import PendingAuthorization

_SIGNATURE_SIZE = sha256().digest_size


class AuthStateCodec:
    """Encode and decode :class:`PendingAuthorization` values to guard against tampering."""

    def __init__(
        self,
        secret_key: str,
        *,
        ttl_seconds: int,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not secret_key:
            raise ValueError("State signing secret must be provided.")
        self._secret_key = secret_key.encode("utf-8")
        self._ttl = ttl_seconds
        self._clock = clock

    def new_pending(self, **fields) -> PendingAuthorization:
        """Build a pending authorization stamped with a fresh nonce and issue time."""
        return PendingAuthorization(
            nonce=uuid.uuid4().hex,
            issued_at=int(self._clock()),
            **fields,
        )

    def _sign(self, serialized: bytes) -> bytes:
        return hmac.new(self._secret_key, serialized, sha256).digest()

    def encode(self, pending: PendingAuthorization) -> str:
        payload = {
            "pending": pending.model_dump(mode="json"),
            "exp": pending.issued_at + self._ttl,
        }
        serialized = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode(
            "utf-8"
        )
        signature = self._sign(serialized)
        return base64.urlsafe_b64encode(signature + serialized).decode("ascii")

    def decode(self, token: str) -> PendingAuthorization:
        """Verify and decode ``token``; any defect raises :class:`InvalidOrExpiredState`."""
        try:
            raw = token.encode("ascii")
            decoded = base64.urlsafe_b64decode(raw)
        except (UnicodeEncodeError, binascii.Error, ValueError) as exc:
            raise InvalidOrExpiredState() from exc

        # Reject alternate encodings of the same bytes.
        if base64.urlsafe_b64encode(decoded) != raw:
            raise InvalidOrExpiredState()

        signature, serialized = decoded[:_SIGNATURE_SIZE], decoded[_SIGNATURE_SIZE:]
        if len(signature) != _SIGNATURE_SIZE or not hmac.compare_digest(
            signature, self._sign(serialized)
        ):
            raise InvalidOrExpiredState()

        try:
            payload = json.loads(serialized)
            expires_at = int(payload["exp"])
            pending = PendingAuthorization.model_validate(payload["pending"])
        except (ValueError, KeyError, TypeError, ValidationError) as exc:
            raise InvalidOrExpiredState() from exc

        if self._clock() >= expires_at:
            raise InvalidOrExpiredState("Authorization state has expired.")
        return pending


class NonceBackend(Protocol):
    def put_if_absent(
        self, key: str, value: str, *, ttl_seconds: Optional[int] = None
    ) -> bool: ...


class NonceLedger:
    """Records consumed state nonces so a state token is accepted once."""

    def __init__(self, backend: NonceBackend, *, ttl_seconds: int, prefix: str = "nonce:") -> None:
        self._backend = backend
        self._ttl = ttl_seconds
        self._prefix = prefix

    def consume(self, pending: PendingAuthorization) -> None:
        """Mark the nonce as used; raises if it was consumed before."""
        if not self._backend.put_if_absent(
            f"{self._prefix}{pending.nonce}", "1", ttl_seconds=self._ttl
        ):
            raise InvalidOrExpiredState("Authorization state has already been used.")


__all__ = ["AuthStateCodec", "NonceLedger"]
