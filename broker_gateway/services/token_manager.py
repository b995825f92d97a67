"""
Access-token lifecycle for one identity: load, exchange and refresh.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from broker_gateway.clients.broker_oauth import BrokerOAuthClient
from broker_gateway.core.logging import ContextLogger, describe_error
from broker_gateway.models.credentials import CredentialRecord

LoadCredential = Callable[[], Awaitable[Optional[CredentialRecord]]]
SaveCredential = Callable[[CredentialRecord], Awaitable[None]]


class TokenNotFoundError(Exception):
    """Raised when no persisted credential is available for the identity."""


class TokenManager:
    """Manages access to the persisted credential behind ``load`` and ``save``."""

    _REFRESH_WINDOW = timedelta(minutes=5)

    def __init__(
        self,
        oauth_client: BrokerOAuthClient,
        *,
        load: LoadCredential,
        save: SaveCredential,
        logger: ContextLogger,
    ) -> None:
        self._oauth = oauth_client
        self._load = load
        self._save = save
        self._logger = logger
        self._record: Optional[CredentialRecord] = None
        self._lock = asyncio.Lock()

    @property
    def has_credential(self) -> bool:
        return self._record is not None

    async def initialize(self) -> bool:
        """Load the persisted credential. Returns whether one was found."""
        record = await self._load()
        self._record = record
        self._logger.debug(
            "Token manager initialized", extra={"has_credential": record is not None}
        )
        return record is not None

    async def exchange_code(self, code: str, state: str | None = None) -> CredentialRecord:
        """Exchange an authorization code and persist the resulting credential."""
        issued_at = datetime.now(timezone.utc)
        payload = await self._oauth.exchange_authorization_code(code)
        record = CredentialRecord.from_token_response(payload, issued_at=issued_at)
        await self._save(record)
        self._record = record
        return record

    async def get_access_token(self) -> str:
        """Return a live access token, refreshing it when it is about to expire."""
        async with self._lock:
            if self._record is None:
                self._record = await self._load()
            record = self._record
            if record is None:
                raise TokenNotFoundError("No credential stored for this session.")

            if record.expires_within(self._REFRESH_WINDOW):
                record = await self._refresh(record)
            return record.access_token

    async def _refresh(self, record: CredentialRecord) -> CredentialRecord:
        if not record.refresh_token:
            raise TokenNotFoundError(
                "Stored credential expired and has no refresh token; re-authentication required."
            )
        refreshed_at = datetime.now(timezone.utc)
        try:
            payload = await self._oauth.refresh_token(record.refresh_token)
        except Exception as exc:
            self._logger.warning(
                "Token refresh failed", extra={"error": describe_error(exc)}
            )
            raise
        refreshed = CredentialRecord.from_token_response(payload, issued_at=refreshed_at)
        if not refreshed.refresh_token:
            refreshed = refreshed.model_copy(update={"refresh_token": record.refresh_token})
        await self._save(refreshed)
        self._record = refreshed
        self._logger.info("Access token refreshed")
        return refreshed


TokenManagerFactory = Callable[[LoadCredential, SaveCredential], TokenManager]


__all__ = [
    "LoadCredential",
    "SaveCredential",
    "TokenManager",
    "TokenManagerFactory",
    "TokenNotFoundError",
]
