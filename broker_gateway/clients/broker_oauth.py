"""
Brokerage OAuth utilities.

These helpers build the provider consent URL and talk to the token endpoint.
"""

from __future__ import annotations

from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from fastapi import status

from broker_gateway.core.config import BrokerSettings


class BrokerAuthError(Exception):
    """Raised when the provider's OAuth endpoints reject a request."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "unknown",
        status_code: Optional[int] = None,
        request_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.request_id = request_id


class BrokerApiError(Exception):
    """Raised when a brokerage API call returns a non-success status."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.request_id = request_id


def _request_id(response: httpx.Response) -> Optional[str]:
    return response.headers.get("Schwab-Client-CorrelId") or response.headers.get(
        "x-request-id"
    )


class BrokerOAuthClient:
    """Build broker authorization URLs and exchange or refresh tokens."""

    def __init__(
        self,
        settings: BrokerSettings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._timeout = timeout

    def build_authorization_url(self, state: str) -> str:
        """Construct the provider consent URL carrying ``state``."""
        params = {
            "client_id": self._settings.client_id,
            "redirect_uri": str(self._settings.redirect_uri),
            "response_type": "code",
            "state": state,
        }
        return f"{self._settings.auth_url}?{urlencode(params)}"

    async def _post_token(self, data: Dict[str, str]) -> Dict[str, Any]:
        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as client:
            response = await client.post(
                self._settings.token_url,
                data=data,
                auth=(self._settings.client_id, self._settings.client_secret),
            )

        if response.status_code != status.HTTP_200_OK:
            code = "unknown"
            description = response.reason_phrase
            try:
                body = response.json()
                code = body.get("error") or code
                description = body.get("error_description") or description
            except ValueError:
                pass
            raise BrokerAuthError(
                description,
                code=code,
                status_code=response.status_code,
                request_id=_request_id(response),
            )

        token_payload = response.json()
        if not token_payload.get("access_token") or not token_payload.get("expires_in"):
            raise BrokerAuthError(
                "Incomplete token payload returned from provider.",
                code="invalid_response",
                status_code=response.status_code,
            )
        return token_payload

    async def exchange_authorization_code(self, code: str) -> Dict[str, Any]:
        """Exchange an authorization code for a raw token payload."""
        return await self._post_token(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": str(self._settings.redirect_uri),
            }
        )

    async def refresh_token(self, refresh_token: str) -> Dict[str, Any]:
        """Refresh the access token using a stored refresh token."""
        return await self._post_token(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )


__all__ = ["BrokerApiError", "BrokerAuthError", "BrokerOAuthClient"]
