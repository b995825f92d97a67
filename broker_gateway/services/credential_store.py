"""
Identity-keyed credential persistence.

Records are addressed by the brokerage user id when it is known and by the
requesting OAuth client id otherwise. Migration copies a record between the
two key schemes so either identifier keeps resolving the same credential.
"""

from __future__ import annotations

import asyncio
import json
from typing import Optional, Protocol

from broker_gateway.core.errors import IdentityMissing
from broker_gateway.core.logging import ContextLogger, describe_error, sanitize_key_for_log
from broker_gateway.models.credentials import CredentialRecord, Identity
from broker_gateway.services.token_cipher import TokenCipherService


class KeyValueBackend(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def put(self, key: str, value: str, *, ttl_seconds: Optional[int] = None) -> None: ...


class CredentialStore:
    """Maps an :class:`Identity` to a :class:`CredentialRecord`."""

    def __init__(
        self,
        backend: KeyValueBackend,
        *,
        logger: ContextLogger,
        key_prefix: str = "token:",
        ttl_seconds: int,
        cipher: TokenCipherService | None = None,
    ) -> None:
        self._backend = backend
        self._logger = logger
        self._prefix = key_prefix
        self._ttl = ttl_seconds
        self._cipher = cipher

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    def derive_key(self, identity: Identity) -> str:
        """Return the storage key for ``identity``; the canonical id wins."""
        if identity.canonical_id:
            return f"{self._prefix}{identity.canonical_id}"
        if identity.fallback_id:
            return f"{self._prefix}{identity.fallback_id}"
        raise IdentityMissing()

    def _serialize(self, record: CredentialRecord) -> str:
        blob = record.model_dump_json()
        if self._cipher is not None:
            return self._cipher.encrypt(blob)
        return blob

    def _deserialize(self, raw: str) -> CredentialRecord:
        if self._cipher is not None:
            raw = self._cipher.decrypt(raw)
        return CredentialRecord.model_validate(json.loads(raw))

    async def _read(self, key: str) -> Optional[CredentialRecord]:
        raw = await asyncio.to_thread(self._backend.get, key)
        if raw is None:
            return None
        return self._deserialize(raw)

    async def _write(self, key: str, record: CredentialRecord, ttl: int) -> None:
        await asyncio.to_thread(
            self._backend.put, key, self._serialize(record), ttl_seconds=ttl
        )

    async def load(self, identity: Identity) -> Optional[CredentialRecord]:
        """Look up the record for ``identity``. Absence returns ``None``."""
        return await self._read(self.derive_key(identity))

    async def save(
        self,
        identity: Identity,
        record: CredentialRecord,
        ttl: Optional[int] = None,
    ) -> None:
        """Overwrite the record for ``identity`` and renew its TTL."""
        await self._write(self.derive_key(identity), record, ttl or self._ttl)

    async def migrate(self, source: Identity, target: Identity) -> bool:
        """Copy the record at ``source`` to ``target`` when the target is empty.

        The source record is left in place. Returns whether a copy happened.
        """
        source_key = self.derive_key(source)
        target_key = self.derive_key(target)
        if source_key == target_key:
            return False

        record = await self._read(source_key)
        if record is None:
            return False

        if await self._read(target_key) is not None:
            return False

        await self._write(target_key, record, self._ttl)
        self._logger.info(
            "Copied credential between keys",
            extra={
                "from": sanitize_key_for_log(source_key),
                "to": sanitize_key_for_log(target_key),
            },
        )
        return True

    async def migrate_if_needed(self, source: Identity, target: Identity) -> None:
        """Best-effort :meth:`migrate`; never raises."""
        try:
            copied = await self.migrate(source, target)
        except Exception as exc:  # pylint: disable=broad-except
            self._logger.warning(
                "Token migration failed",
                extra={"error": describe_error(exc)},
            )
            return
        if not copied:
            self._logger.warning(
                "Token migration was not needed or failed",
                extra={
                    "from": self._safe_key(source),
                    "to": self._safe_key(target),
                },
            )

    def _safe_key(self, identity: Identity) -> str:
        try:
            return sanitize_key_for_log(self.derive_key(identity))
        except IdentityMissing:
            return "<none>"


__all__ = ["CredentialStore", "KeyValueBackend"]
