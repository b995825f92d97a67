"""Error taxonomy for the authorization flow and session actors.

Every gateway error carries a machine-readable ``code``, an HTTP ``status``
and a message that is safe to return to callers.
"""

from __future__ import annotations

from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, Dict, Generic, Optional, TypeVar, Union

T = TypeVar("T")


class GatewayError(Exception):
    """Base exception for all gateway errors."""

    code = "server_error"
    status = HTTPStatus.INTERNAL_SERVER_ERROR
    default_message = "An unexpected error occurred."

    def __init__(
        self,
        message: str | None = None,
        *,
        status: int | None = None,
        details: Dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        if status is not None:
            self.status = HTTPStatus(status)
        self.details = details or {}


class IdentityMissing(GatewayError, ValueError):
    code = "identity_missing"
    default_message = "No identifier provided for token key."


class MissingClientId(GatewayError):
    code = "invalid_request"
    status = HTTPStatus.BAD_REQUEST
    default_message = "Client ID is required."


class InvalidState(GatewayError):
    code = "invalid_request"
    status = HTTPStatus.BAD_REQUEST
    default_message = "Invalid authorization state."


class InvalidOrExpiredState(GatewayError):
    code = "invalid_request"
    status = HTTPStatus.BAD_REQUEST
    default_message = "Authorization state is invalid or has expired."


class MissingParameters(GatewayError):
    code = "invalid_request"
    status = HTTPStatus.BAD_REQUEST
    default_message = "Missing required parameters: state and code."


class TokenExchangeFailed(GatewayError):
    code = "server_error"
    status = HTTPStatus.INTERNAL_SERVER_ERROR
    default_message = "Failed to exchange authorization code for tokens."


class NoUserId(GatewayError):
    code = "server_error"
    status = HTTPStatus.INTERNAL_SERVER_ERROR
    default_message = "Could not determine the brokerage user id."


class ApiResponseError(GatewayError):
    code = "server_error"
    status = HTTPStatus.BAD_GATEWAY
    default_message = "Brokerage API request failed during authorization."


class AuthorizationDenied(GatewayError):
    code = "access_denied"
    status = HTTPStatus.UNAUTHORIZED
    default_message = "Brokerage authorization was denied."


class AuthRequestFailed(GatewayError):
    code = "invalid_request"
    status = HTTPStatus.BAD_REQUEST
    default_message = "Error processing authorization request."


class AuthApprovalFailed(GatewayError):
    code = "invalid_request"
    status = HTTPStatus.BAD_REQUEST
    default_message = "Error processing approval."


class AuthCallbackFailed(GatewayError):
    code = "server_error"
    default_message = "Error completing authorization callback."


class InvalidGrant(GatewayError):
    code = "invalid_grant"
    status = HTTPStatus.BAD_REQUEST
    default_message = "Authorization grant is invalid, expired or already used."


class InvalidClient(GatewayError):
    code = "invalid_client"
    status = HTTPStatus.UNAUTHORIZED
    default_message = "Unknown client or redirect URI."


class InvalidRedirectUri(GatewayError):
    code = "invalid_redirect_uri"
    status = HTTPStatus.BAD_REQUEST
    default_message = "At least one absolute http(s) redirect_uri is required."


class InvalidClientMetadata(GatewayError):
    code = "invalid_client_metadata"
    status = HTTPStatus.BAD_REQUEST
    default_message = "Client registration metadata is malformed."


class Unauthenticated(GatewayError):
    code = "invalid_token"
    status = HTTPStatus.UNAUTHORIZED
    default_message = "Missing or invalid bearer token."


class RecoveryExhausted(GatewayError):
    code = "recovery_exhausted"
    status = HTTPStatus.SERVICE_UNAVAILABLE
    default_message = "Session could not be recovered."


class SessionNotReady(GatewayError):
    code = "session_not_ready"
    status = HTTPStatus.SERVICE_UNAVAILABLE
    default_message = "Session did not become ready in time."


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T


@dataclass(frozen=True)
class Err:
    error: GatewayError
    request_id: Optional[str] = None


Result = Union[Ok[T], Err]


def error_body(
    error: GatewayError,
    *,
    request_id: Optional[str] = None,
    include_details: bool = True,
) -> Dict[str, Any]:
    """Build the JSON body returned for ``error`` at an endpoint boundary."""
    body: Dict[str, Any] = {
        "error": error.code,
        "error_description": error.message,
    }
    if request_id:
        body["request_id"] = request_id
    if include_details and error.details:
        body["details"] = error.details
    return body


__all__ = [
    "ApiResponseError",
    "AuthApprovalFailed",
    "AuthCallbackFailed",
    "AuthRequestFailed",
    "AuthorizationDenied",
    "Err",
    "GatewayError",
    "IdentityMissing",
    "InvalidClient",
    "InvalidClientMetadata",
    "InvalidGrant",
    "InvalidOrExpiredState",
    "InvalidRedirectUri",
    "InvalidState",
    "MissingClientId",
    "MissingParameters",
    "NoUserId",
    "Ok",
    "RecoveryExhausted",
    "Result",
    "SessionNotReady",
    "TokenExchangeFailed",
    "Unauthenticated",
    "error_body",
]
