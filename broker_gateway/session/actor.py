"""
Per-session actor owning one user's token manager and API client.

Transitions on one actor (initialization, recovery) are serialized by a lock;
the stream entry waits on an explicit readiness event before serving.
"""

from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from broker_gateway.clients.broker_api import ApiClientFactory, BrokerApiClient
from broker_gateway.core.config import AppSettings
from broker_gateway.core.errors import RecoveryExhausted, SessionNotReady
from broker_gateway.core.logging import (
    ContextLogger,
    build_logger,
    describe_error,
    sanitize_key_for_log,
)
from broker_gateway.models.credentials import CredentialRecord, Identity, SessionProps
from broker_gateway.services.credential_store import CredentialStore
from broker_gateway.services.token_manager import TokenManager, TokenManagerFactory
from broker_gateway.session import rpc
from broker_gateway.session.capabilities import CapabilityRegistry
from broker_gateway.session.tools import broker_capabilities, status_capability

SERVER_VERSION = "0.1.0"

SettingsProvider = Callable[[], Awaitable[AppSettings]]


class SessionState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    RECOVERING = "recovering"
    FAILED = "failed"


@dataclass(frozen=True)
class RecoveryAttempt:
    tier: str
    succeeded: bool
    reason: Optional[str] = None


class BrokerSession:
    """Long-lived unit serving one authorized session."""

    def __init__(
        self,
        *,
        session_id: str,
        props: SessionProps,
        settings_provider: SettingsProvider,
        credential_store: CredentialStore,
        token_manager_factory: TokenManagerFactory,
        api_client_factory: ApiClientFactory,
        server_name: str,
        logger: ContextLogger,
    ) -> None:
        self.session_id = session_id
        self.props = props
        self._settings_provider = settings_provider
        self._store = credential_store
        self._token_manager_factory = token_manager_factory
        self._api_client_factory = api_client_factory
        self._server_name = server_name
        self._logger = logger

        self.registry = CapabilityRegistry()
        self.token_manager: Optional[TokenManager] = None
        self.client: Optional[BrokerApiClient] = None
        self.settings: Optional[AppSettings] = None
        self.last_recovery: List[RecoveryAttempt] = []

        self._state = SessionState.UNINITIALIZED
        self._ready = asyncio.Event()
        self._transition = asyncio.Lock()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def logger(self) -> ContextLogger:
        return self._logger

    def _identity(self) -> Identity:
        return Identity(canonical_id=self.props.canonical_id, fallback_id=self.props.fallback_id)

    # -- initialization -----------------------------------------------------

    async def initialize(self) -> None:
        """Run the initialization sequence; failures are logged and re-raised.

        A no-op once the session is ready, so a background start that lost the
        lock to a stream entry does not rebuild what that entry just built.
        """
        # Discoverable before any awaited work.
        self.registry.register(status_capability(self._server_name))
        async with self._transition:
            if self._state is SessionState.READY:
                self._logger.debug("Already initialized")
                return
            await self._initialize()

    async def _initialize(self) -> None:
        self.registry.register(status_capability(self._server_name))
        self._state = SessionState.INITIALIZING
        self._ready.clear()
        try:
            settings = await self._settings_provider()
            self.settings = settings
            self._logger = build_logger(self._logger.context, settings.log_level)
            self._logger.debug("Initialization started")

            if not self.props.fallback_id:
                self.props = self.props.model_copy(
                    update={"fallback_id": settings.broker.client_id}
                )
                self._logger.debug("Backfilled fallback id from configuration")

            if self.token_manager is None:
                self.token_manager = self._token_manager_factory(
                    self._load_credential, self._save_credential
                )
            else:
                self._logger.debug("Reusing existing token manager")

            loaded = await self.token_manager.initialize()
            self._logger.debug("Token manager initialized", extra={"loaded": loaded})

            if self.props.canonical_id and self.props.fallback_id:
                await self._store.migrate_if_needed(
                    Identity(fallback_id=self.props.fallback_id),
                    Identity(canonical_id=self.props.canonical_id),
                )

            self.client = self._api_client_factory(self.token_manager, self._logger)

            for capability in broker_capabilities(self._require_client):
                self.registry.register(capability)
        except Exception as exc:
            self._state = SessionState.FAILED
            self._logger.exception(
                "Session initialization failed", extra={"error": describe_error(exc)}
            )
            raise

        self._mark_ready()
        self._logger.info(
            "Session ready", extra={"capabilities": len(self.registry)}
        )

    def _mark_ready(self) -> None:
        self._state = SessionState.READY
        self._ready.set()

    def _require_client(self) -> BrokerApiClient:
        if self.client is None:
            raise RecoveryExhausted("Brokerage client is not available.")
        return self.client

    async def _load_credential(self) -> Optional[CredentialRecord]:
        identity = self._identity()
        record = await self._store.load(identity)
        self._logger.debug(
            "Credential load complete",
            extra={
                "key": sanitize_key_for_log(self._store.derive_key(identity)),
                "found": record is not None,
            },
        )
        return record

    async def _save_credential(self, record: CredentialRecord) -> None:
        identity = self._identity()
        await self._store.save(identity, record)
        self._logger.debug(
            "Credential save complete",
            extra={"key": sanitize_key_for_log(self._store.derive_key(identity))},
        )

    # -- recovery -----------------------------------------------------------

    async def reconnect(self) -> bool:
        """Walk the recovery tiers. Never raises; returns whether the session is usable."""
        async with self._transition:
            return await self._recover()

    async def _recover(self) -> bool:
        self._logger.info("Handling reconnection")
        self._state = SessionState.RECOVERING

        tiers: List[tuple[str, Callable[[], Awaitable[bool]]]] = []
        if self.token_manager is None or self.client is None:
            tiers.append(("initialize", self._tier_initialize))
        else:
            tiers.append(("probe", self._tier_probe))
            tiers.append(("reload", self._tier_reload))
        tiers.append(("reset", self._tier_reset))

        attempts: List[RecoveryAttempt] = []
        for name, tier in tiers:
            attempt = await self._run_tier(name, tier)
            attempts.append(attempt)
            if attempt.succeeded:
                self.last_recovery = attempts
                self._mark_ready()
                self._logger.info("Reconnection recovered", extra={"tier": name})
                return True
            self._logger.warning(
                "Recovery tier failed", extra={"tier": name, "reason": attempt.reason}
            )

        self.last_recovery = attempts
        self._state = SessionState.FAILED
        self._ready.clear()
        self._logger.error("All recovery tiers failed")
        return False

    async def _run_tier(
        self, name: str, tier: Callable[[], Awaitable[bool]]
    ) -> RecoveryAttempt:
        try:
            succeeded = await tier()
        except Exception as exc:  # pylint: disable=broad-except
            return RecoveryAttempt(name, False, describe_error(exc))
        return RecoveryAttempt(name, bool(succeeded), None if succeeded else "no result")

    async def _tier_initialize(self) -> bool:
        await self._initialize()
        return True

    async def _tier_probe(self) -> bool:
        assert self.token_manager is not None
        token = await self.token_manager.get_access_token()
        return bool(token)

    async def _tier_reload(self) -> bool:
        assert self.token_manager is not None
        return await self.token_manager.initialize()

    async def _tier_reset(self) -> bool:
        self.token_manager = None
        self.client = None
        await self._initialize()
        return True

    # -- stream entry -------------------------------------------------------

    async def wait_ready(self, timeout: float) -> None:
        try:
            await asyncio.wait_for(self._ready.wait(), timeout)
        except asyncio.TimeoutError as exc:
            raise SessionNotReady() from exc

    async def handle_stream(
        self, message: Any, *, ready_timeout: float
    ) -> Optional[Dict[str, Any]]:
        """Entry for each connection message: recover, await readiness, then serve.

        An initialization already in flight holds the transition lock, so the
        readiness wait comes first and bounds how long the entry blocks on it.
        """
        if self._state is SessionState.INITIALIZING:
            await self.wait_ready(ready_timeout)
        if not await self.reconnect():
            raise RecoveryExhausted()
        await self.wait_ready(ready_timeout)
        return await rpc.dispatch(
            self.registry,
            message,
            server_name=self._server_name,
            server_version=SERVER_VERSION,
        )


__all__ = [
    "BrokerSession",
    "RecoveryAttempt",
    "SessionState",
    "SettingsProvider",
]
