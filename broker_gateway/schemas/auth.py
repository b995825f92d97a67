"""Schemas related to OAuth flows."""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class TokenRequest(BaseModel):
    """Form fields accepted by the outer token endpoint."""

    grant_type: str = Field(..., description="Only 'authorization_code' is supported.")
    code: Optional[str] = Field(None, description="Grant issued after broker authorization.")
    client_id: Optional[str] = None
    redirect_uri: Optional[str] = None
    code_verifier: Optional[str] = Field(None, description="PKCE verifier for the grant.")


class TokenResponse(BaseModel):
    """Bearer token handed to outer clients."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    scope: str = ""


class ClientRegistrationRequest(BaseModel):
    """Dynamic client registration payload; unknown metadata is ignored."""

    redirect_uris: List[str] = Field(default_factory=list)
    client_name: Optional[str] = None
    token_endpoint_auth_method: Optional[str] = None


class ClientRegistrationResponse(BaseModel):
    client_id: str
    redirect_uris: List[str]
    client_name: Optional[str] = None
    token_endpoint_auth_method: str = "none"
    grant_types: List[str] = Field(default_factory=lambda: ["authorization_code"])
    response_types: List[str] = Field(default_factory=lambda: ["code"])


class AuthorizationServerMetadata(BaseModel):
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    registration_endpoint: Optional[str] = None
    response_types_supported: list[str] = Field(default_factory=lambda: ["code"])
    grant_types_supported: list[str] = Field(
        default_factory=lambda: ["authorization_code"]
    )
    code_challenge_methods_supported: list[str] = Field(
        default_factory=lambda: ["S256", "plain"]
    )
    token_endpoint_auth_methods_supported: list[str] = Field(
        default_factory=lambda: ["none"]
    )


__all__ = [
    "AuthorizationServerMetadata",
    "ClientRegistrationRequest",
    "ClientRegistrationResponse",
    "TokenRequest",
    "TokenResponse",
]
