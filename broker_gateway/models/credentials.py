"""
Domain models for credential persistence and the authorization handshake.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Identity(BaseModel):
    """Pair of optional identifiers used to address a stored credential.

    ``canonical_id`` is the brokerage user id; ``fallback_id`` is the OAuth
    client id that requested authorization. The canonical id wins when both
    are present.
    """

    model_config = ConfigDict(frozen=True)

    canonical_id: Optional[str] = None
    fallback_id: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.canonical_id and not self.fallback_id


class CredentialRecord(BaseModel):
    """Token payload stored per identity. Replaced wholesale on every save."""

    model_config = ConfigDict(frozen=True, extra="allow")

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: datetime
    token_type: str = "Bearer"
    scope: Optional[str] = None

    @classmethod
    def from_token_response(
        cls, payload: dict, *, issued_at: datetime | None = None
    ) -> "CredentialRecord":
        issued = issued_at or datetime.now(timezone.utc)
        expires_in = int(payload.get("expires_in") or 0)
        return cls(
            access_token=payload["access_token"],
            refresh_token=payload.get("refresh_token"),
            expires_at=issued + timedelta(seconds=expires_in),
            token_type=payload.get("token_type") or "Bearer",
            scope=payload.get("scope"),
        )

    def expires_within(self, window: timedelta) -> bool:
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at <= datetime.now(timezone.utc) + window


class PendingAuthorization(BaseModel):
    """Outer authorization request carried across the broker redirect."""

    model_config = ConfigDict(frozen=True)

    client_id: str = Field(..., description="Requesting outer client (fallback id).")
    redirect_uri: str
    scope: List[str] = Field(default_factory=list)
    state: Optional[str] = Field(None, description="Outer client's own state value.")
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None
    nonce: str
    issued_at: int = Field(..., description="Unix seconds when the request was issued.")

    def missing_fields(self) -> List[str]:
        """Names of fields the broker round trip cannot proceed without."""
        missing = []
        if not self.client_id:
            missing.append("client_id")
        if not self.scope:
            missing.append("scope")
        if not self.redirect_uri:
            missing.append("redirect_uri")
        return missing


class SessionProps(BaseModel):
    """Durable identity carried by a session across reconnects."""

    canonical_id: Optional[str] = None
    fallback_id: Optional[str] = None

    def identity(self) -> Identity:
        return Identity(canonical_id=self.canonical_id, fallback_id=self.fallback_id)


class AuthorizationGrant(BaseModel):
    """One-time grant handed to the outer client after broker authorization."""

    client_id: str
    redirect_uri: str
    scope: List[str] = Field(default_factory=list)
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None
    props: SessionProps


class SessionGrant(BaseModel):
    """Bearer-token binding between an outer client and session props."""

    session_id: str
    client_id: str
    scope: List[str] = Field(default_factory=list)
    props: SessionProps
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


__all__ = [
    "AuthorizationGrant",
    "CredentialRecord",
    "Identity",
    "PendingAuthorization",
    "SessionGrant",
    "SessionProps",
]
