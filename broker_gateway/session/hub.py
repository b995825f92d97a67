"""Hosting boundary that owns one session actor per authorized session."""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict, Set

from broker_gateway.core.logging import ContextLogger, describe_error
from broker_gateway.models.credentials import SessionGrant
from broker_gateway.session.actor import BrokerSession

SessionFactory = Callable[[SessionGrant], BrokerSession]


class SessionHub:
    """Creates actors on first use and kicks off their initialization.

    Actors unused for longer than ``idle_ttl_seconds`` are evicted on the next
    lookup; a bearer token that outlives its actor simply gets a fresh one.
    """

    def __init__(
        self,
        factory: SessionFactory,
        *,
        logger: ContextLogger,
        idle_ttl_seconds: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._factory = factory
        self._logger = logger
        self._idle_ttl = idle_ttl_seconds
        self._clock = clock
        self._sessions: Dict[str, BrokerSession] = {}
        self._last_used: Dict[str, float] = {}
        self._tasks: Set[asyncio.Task] = set()

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> BrokerSession | None:
        return self._sessions.get(session_id)

    def get_or_create(self, grant: SessionGrant) -> BrokerSession:
        now = self._clock()
        self._prune_idle(now, keep=grant.session_id)
        self._last_used[grant.session_id] = now
        session = self._sessions.get(grant.session_id)
        if session is not None:
            return session
        session = self._factory(grant)
        self._sessions[grant.session_id] = session
        task = asyncio.create_task(session.initialize())
        self._tasks.add(task)
        task.add_done_callback(self._on_initialized)
        return session

    def _prune_idle(self, now: float, *, keep: str) -> None:
        expired = [
            session_id
            for session_id, last_used in self._last_used.items()
            if session_id != keep and now - last_used > self._idle_ttl
        ]
        for session_id in expired:
            self.drop(session_id)
        if expired:
            self._logger.info(
                "Evicted idle sessions",
                extra={"count": len(expired), "remaining": len(self._sessions)},
            )

    def _on_initialized(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            # The next stream entry retries through recovery.
            self._logger.warning(
                "Background session initialization failed",
                extra={"error": describe_error(error)},
            )

    def drop(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._last_used.pop(session_id, None)

    async def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self._sessions.clear()
        self._last_used.clear()


__all__ = ["SessionFactory", "SessionHub"]
