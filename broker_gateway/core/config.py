"""
Application configuration models and helpers.

Centralizes settings management so the OAuth endpoints and the per-session
actors share one configuration surface.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Dict, List, Optional

import os

from pydantic import AnyHttpUrl, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()

_SETTINGS_CONFIG = SettingsConfigDict(populate_by_name=True, extra="ignore")

TTL_31_DAYS = 31 * 24 * 60 * 60


class BrokerSettings(BaseSettings):
    """Configuration required for talking to the brokerage OAuth and API hosts."""

    model_config = _SETTINGS_CONFIG

    client_id: str = Field(..., validation_alias="BROKER_CLIENT_ID")
    client_secret: str = Field(..., validation_alias="BROKER_CLIENT_SECRET")
    redirect_uri: AnyHttpUrl = Field(..., validation_alias="BROKER_REDIRECT_URI")
    auth_url: str = Field(
        "https://api.schwabapi.com/v1/oauth/authorize",
        validation_alias="BROKER_AUTH_URL",
    )
    token_url: str = Field(
        "https://api.schwabapi.com/v1/oauth/token",
        validation_alias="BROKER_TOKEN_URL",
    )
    api_base_url: str = Field(
        "https://api.schwabapi.com",
        validation_alias="BROKER_API_BASE_URL",
    )


class OAuthSettings(BaseSettings):
    """OAuth flow configuration for both the broker and the outer clients."""

    model_config = _SETTINGS_CONFIG

    state_ttl_seconds: int = Field(600, validation_alias="OAUTH_STATE_TTL")
    grant_ttl_seconds: int = Field(300, validation_alias="OAUTH_GRANT_TTL")
    session_ttl_seconds: int = Field(
        TTL_31_DAYS,
        validation_alias="OAUTH_SESSION_TTL",
        description="Lifetime of bearer tokens handed to outer clients.",
    )
    scopes: Annotated[tuple[str, ...], NoDecode] = Field(
        ("readonly",),
        validation_alias="OAUTH_SCOPES",
    )
    registered_clients_raw: Optional[str] = Field(
        None,
        validation_alias="OAUTH_CLIENTS",
        description="Outer clients as 'client_id=uri1,uri2;other=uri3'.",
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(
        cls, value: str | tuple[str, ...] | list[str]
    ) -> tuple[str, ...]:
        """Support providing scopes as a comma-separated string."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(value)
        return tuple(scope.strip() for scope in value.split(",") if scope.strip())

    def registered_clients(self) -> Dict[str, List[str]]:
        """Parse the registered outer clients into a mapping of redirect URIs."""
        clients: Dict[str, List[str]] = {}
        if not self.registered_clients_raw:
            return clients
        for entry in self.registered_clients_raw.split(";"):
            entry = entry.strip()
            if "=" not in entry:
                continue
            client_id, redirect_block = entry.split("=", 1)
            uris = [uri.strip() for uri in redirect_block.split(",") if uri.strip()]
            if uris:
                clients[client_id.strip()] = uris
        return clients


class SecuritySettings(BaseSettings):
    """Secrets used for signing state and encrypting stored material."""

    model_config = _SETTINGS_CONFIG

    state_signing_secret: Optional[str] = Field(
        None,
        validation_alias="STATE_SIGNING_SECRET",
        description="HMAC key for authorization state tokens.",
    )
    cookie_encryption_key: Optional[str] = Field(
        None,
        validation_alias="COOKIE_ENCRYPTION_KEY",
        description="Secret used to encrypt the approved-clients cookie.",
    )
    token_encryption_secret: Optional[str] = Field(
        None,
        validation_alias="TOKEN_ENCRYPTION_SECRET",
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )


class StorageSettings(BaseSettings):
    """Credential storage layout."""

    model_config = _SETTINGS_CONFIG

    db_path: str = Field("data/credentials.db", validation_alias="CREDENTIAL_DB_PATH")
    token_key_prefix: str = Field("token:", validation_alias="TOKEN_KEY_PREFIX")
    token_ttl_seconds: int = Field(TTL_31_DAYS, validation_alias="TOKEN_TTL_SECONDS")


class SessionSettings(BaseSettings):
    """Session actor tuning."""

    model_config = _SETTINGS_CONFIG

    ready_timeout_seconds: float = Field(10.0, validation_alias="SESSION_READY_TIMEOUT")
    idle_ttl_seconds: float = Field(
        3600.0,
        validation_alias="SESSION_IDLE_TTL",
        description="Seconds an unused session actor is kept before eviction.",
    )


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        populate_by_name=True,
        extra="ignore",
    )

    environment: str = Field("development", validation_alias="APP_ENV")
    log_level: str = Field("INFO", validation_alias="APP_LOG_LEVEL")
    server_name: str = Field("Broker MCP Gateway", validation_alias="APP_SERVER_NAME")
    public_base_url: Optional[HttpUrl] = Field(
        None,
        validation_alias="PUBLIC_BASE_URL",
        description="Externally visible URL, used in discovery metadata.",
    )
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    broker: BrokerSettings = Field(default_factory=BrokerSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    session: SessionSettings = Field(default_factory=SessionSettings)

    def state_secret(self) -> str:
        return self.security.state_signing_secret or self.broker.client_secret

    def cookie_secret(self) -> str:
        return self.security.cookie_encryption_key or self.broker.client_secret

    def token_secret(self) -> str:
        return self.security.token_encryption_secret or self.broker.client_secret


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "BrokerSettings",
    "OAuthSettings",
    "SecuritySettings",
    "SessionSettings",
    "StorageSettings",
    "TTL_31_DAYS",
    "get_settings",
]
