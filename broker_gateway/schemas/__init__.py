"""Public schema exports."""

from .auth import (
    AuthorizationServerMetadata,
    ClientRegistrationRequest,
    ClientRegistrationResponse,
    TokenRequest,
    TokenResponse,
)

__all__ = [
    "AuthorizationServerMetadata",
    "ClientRegistrationRequest",
    "ClientRegistrationResponse",
    "TokenRequest",
    "TokenResponse",
]
