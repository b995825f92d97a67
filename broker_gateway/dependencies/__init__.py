"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    build_api_client,
    build_session,
    build_token_manager,
    get_approval_cookie_service,
    get_auth_state_codec,
    get_authorization_exchange,
    get_authorization_provider,
    get_broker_oauth_client,
    get_credential_store,
    get_kv_store,
    get_nonce_ledger,
    get_routes_logger,
    get_session_hub,
    get_token_cipher_service,
)
from .config import SettingsDependency, get_app_settings, get_ready_timeout

__all__ = [
    "SettingsDependency",
    "build_api_client",
    "build_session",
    "build_token_manager",
    "get_app_settings",
    "get_approval_cookie_service",
    "get_auth_state_codec",
    "get_authorization_exchange",
    "get_authorization_provider",
    "get_broker_oauth_client",
    "get_credential_store",
    "get_kv_store",
    "get_nonce_ledger",
    "get_ready_timeout",
    "get_routes_logger",
    "get_session_hub",
    "get_token_cipher_service",
]
