"""
Thin authenticated client for the brokerage REST API.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, Optional, Protocol

import httpx

from broker_gateway.clients.broker_oauth import BrokerApiError, BrokerAuthError
from broker_gateway.clients.http import RetryConfig, request_with_retry
from broker_gateway.core.config import BrokerSettings
from broker_gateway.core.logging import ContextLogger


class AccessTokenSource(Protocol):
    async def get_access_token(self) -> str: ...


class BrokerApiClient:
    """Issue authenticated reads against the brokerage API."""

    USER_PREFERENCE_PATH = "/trader/v1/userPreference"
    ACCOUNTS_PATH = "/trader/v1/accounts"
    QUOTES_PATH = "/marketdata/v1/quotes"

    def __init__(
        self,
        settings: BrokerSettings,
        auth: AccessTokenSource,
        *,
        logger: ContextLogger,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_config: RetryConfig | None = None,
        timeout: float = 15.0,
    ) -> None:
        self._base_url = settings.api_base_url.rstrip("/")
        self._auth = auth
        self._logger = logger
        self._transport = transport
        self._retry = retry_config or RetryConfig()
        self._timeout = timeout

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        token = await self._auth.get_access_token()
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/json"}
        async with httpx.AsyncClient(
            base_url=self._base_url, timeout=self._timeout, transport=self._transport
        ) as client:
            response = await request_with_retry(
                client.get, path, params=params, headers=headers, retry_config=self._retry
            )

        request_id = response.headers.get("Schwab-Client-CorrelId")
        if response.status_code == 401:
            raise BrokerAuthError(
                "Brokerage API rejected the access token.",
                code="unauthorized",
                status_code=401,
                request_id=request_id,
            )
        if response.is_error:
            self._logger.warning(
                "Brokerage API call failed",
                extra={"path": path, "status": response.status_code},
            )
            raise BrokerApiError(
                f"GET {path} failed with status {response.status_code}",
                status_code=response.status_code,
                request_id=request_id,
            )
        return response.json()

    async def get_user_preference(self) -> Dict[str, Any]:
        return await self.get(self.USER_PREFERENCE_PATH)

    async def get_accounts(self, *, positions: bool = False) -> Any:
        params = {"fields": "positions"} if positions else None
        return await self.get(self.ACCOUNTS_PATH, params=params)

    async def get_quotes(self, symbols: Iterable[str]) -> Any:
        joined = ",".join(symbol.strip().upper() for symbol in symbols if symbol.strip())
        return await self.get(self.QUOTES_PATH, params={"symbols": joined})

    async def fetch_user_id(self) -> Optional[str]:
        """Return the canonical brokerage user id, or ``None`` when absent."""
        preference = await self.get_user_preference()
        if isinstance(preference, list):
            preference = preference[0] if preference else {}
        streamer_info = (preference or {}).get("streamerInfo") or []
        if not streamer_info:
            return None
        return streamer_info[0].get("schwabClientCorrelId") or None


ApiClientFactory = Callable[[AccessTokenSource, ContextLogger], BrokerApiClient]


__all__ = ["AccessTokenSource", "ApiClientFactory", "BrokerApiClient"]
