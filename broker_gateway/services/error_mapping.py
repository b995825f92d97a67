"""Translate provider and API failures into gateway errors."""

from __future__ import annotations

from http import HTTPStatus
from typing import Optional, Tuple

from broker_gateway.clients.broker_oauth import BrokerApiError, BrokerAuthError
from broker_gateway.core.errors import (
    ApiResponseError,
    AuthCallbackFailed,
    AuthorizationDenied,
    GatewayError,
    TokenExchangeFailed,
)

_AUTH_CODE_MAP = {
    "invalid_grant": (TokenExchangeFailed, HTTPStatus.BAD_REQUEST, "Authorization code is invalid or expired."),
    "expired_code": (TokenExchangeFailed, HTTPStatus.BAD_REQUEST, "Authorization code is invalid or expired."),
    "invalid_client": (AuthorizationDenied, HTTPStatus.UNAUTHORIZED, "Brokerage rejected the client credentials."),
    "unauthorized_client": (AuthorizationDenied, HTTPStatus.UNAUTHORIZED, "Brokerage rejected the client credentials."),
    "unauthorized": (AuthorizationDenied, HTTPStatus.UNAUTHORIZED, "Brokerage authorization was rejected."),
    "token_expired": (AuthorizationDenied, HTTPStatus.UNAUTHORIZED, "Brokerage token has expired."),
    "access_denied": (AuthorizationDenied, HTTPStatus.FORBIDDEN, "Brokerage access was denied."),
    "rate_limited": (ApiResponseError, HTTPStatus.TOO_MANY_REQUESTS, "Brokerage rate limit reached."),
    "temporarily_unavailable": (ApiResponseError, HTTPStatus.SERVICE_UNAVAILABLE, "Brokerage is temporarily unavailable."),
    "server_error": (ApiResponseError, HTTPStatus.BAD_GATEWAY, "Brokerage reported a server error."),
}


def map_broker_auth_error(error: BrokerAuthError) -> GatewayError:
    """Map a provider OAuth error code onto a gateway error and HTTP status."""
    entry = _AUTH_CODE_MAP.get((error.code or "").lower())
    if entry is None:
        return AuthCallbackFailed(
            "Brokerage authentication failed.",
            status=error.status_code or HTTPStatus.INTERNAL_SERVER_ERROR,
            details={"provider_code": error.code},
        )
    error_cls, status, message = entry
    return error_cls(message, status=status, details={"provider_code": error.code})


def classify_callback_error(error: BaseException) -> Tuple[GatewayError, Optional[str]]:
    """Classify an unexpected callback failure; returns the error and any request id.

    The code exchange and identity lookup fold provider errors into
    ``TokenExchangeFailed`` and ``NoUserId`` themselves, so the provider branches
    here cover failures raised after the identity is known, such as while the
    outer grant is issued.
    """
    if isinstance(error, GatewayError):
        return error, None
    if isinstance(error, BrokerAuthError):
        return map_broker_auth_error(error), error.request_id
    if isinstance(error, BrokerApiError):
        status = error.status_code or HTTPStatus.INTERNAL_SERVER_ERROR
        if status < 400:
            status = HTTPStatus.INTERNAL_SERVER_ERROR
        return (
            ApiResponseError(
                "API request failed during authorization.",
                status=status,
            ),
            error.request_id,
        )
    return AuthCallbackFailed(), None


__all__ = ["classify_callback_error", "map_broker_auth_error"]
