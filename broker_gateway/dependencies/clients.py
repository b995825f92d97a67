"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache

from broker_gateway.clients.auth_state import AuthStateCodec, NonceLedger
from broker_gateway.clients.broker_api import AccessTokenSource, BrokerApiClient
from broker_gateway.clients.broker_oauth import BrokerOAuthClient
from broker_gateway.clients.kv_store import SQLiteKVStore
from broker_gateway.core.config import AppSettings, get_settings
from broker_gateway.core.logging import ContextLogger, build_logger
from broker_gateway.models.credentials import SessionGrant
from broker_gateway.services.approvals import ApprovalCookieService
from broker_gateway.services.authorization import AuthorizationExchange
from broker_gateway.services.authorization_provider import AuthorizationProvider
from broker_gateway.services.credential_store import CredentialStore
from broker_gateway.services.token_cipher import TokenCipherService
from broker_gateway.services.token_manager import LoadCredential, SaveCredential, TokenManager
from broker_gateway.session.actor import BrokerSession
from broker_gateway.session.hub import SessionHub


@lru_cache()
def _settings() -> AppSettings:
    """Internal helper to cache settings for client factories."""
    return get_settings()


def _logger(context: str) -> ContextLogger:
    return build_logger(context, _settings().log_level)


@lru_cache()
def get_kv_store() -> SQLiteKVStore:
    """Provide the shared key/value backend."""
    return SQLiteKVStore(_settings().storage.db_path)


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    return TokenCipherService(secret=_settings().token_secret())


@lru_cache()
def get_credential_store() -> CredentialStore:
    """Provide the identity-keyed credential store."""
    storage = _settings().storage
    return CredentialStore(
        get_kv_store(),
        logger=_logger("token_store"),
        key_prefix=storage.token_key_prefix,
        ttl_seconds=storage.token_ttl_seconds,
        cipher=get_token_cipher_service(),
    )


@lru_cache()
def get_auth_state_codec() -> AuthStateCodec:
    """Provide the signer for state tokens carried through the broker redirect."""
    settings = _settings()
    return AuthStateCodec(
        settings.state_secret(), ttl_seconds=settings.oauth.state_ttl_seconds
    )


@lru_cache()
def get_nonce_ledger() -> NonceLedger:
    return NonceLedger(get_kv_store(), ttl_seconds=_settings().oauth.state_ttl_seconds)


@lru_cache()
def get_broker_oauth_client() -> BrokerOAuthClient:
    """Create a singleton brokerage OAuth client."""
    return BrokerOAuthClient(_settings().broker)


@lru_cache()
def get_approval_cookie_service() -> ApprovalCookieService:
    return ApprovalCookieService(TokenCipherService(secret=_settings().cookie_secret()))


@lru_cache()
def get_authorization_provider() -> AuthorizationProvider:
    """Provide the OAuth provider facing outer clients."""
    oauth = _settings().oauth
    return AuthorizationProvider(
        get_kv_store(),
        clients=oauth.registered_clients(),
        default_scope=list(oauth.scopes),
        grant_ttl_seconds=oauth.grant_ttl_seconds,
        session_ttl_seconds=oauth.session_ttl_seconds,
        logger=_logger("oauth_provider"),
    )


def build_token_manager(load: LoadCredential, save: SaveCredential) -> TokenManager:
    """Build a token manager bound to identity-specific load/save callables."""
    return TokenManager(
        get_broker_oauth_client(),
        load=load,
        save=save,
        logger=_logger("token_manager"),
    )


def build_api_client(auth: AccessTokenSource, logger: ContextLogger) -> BrokerApiClient:
    return BrokerApiClient(_settings().broker, auth, logger=logger.child("api"))


@lru_cache()
def get_authorization_exchange() -> AuthorizationExchange:
    """Provide the controller behind /authorize and /callback."""
    return AuthorizationExchange(
        codec=get_auth_state_codec(),
        nonces=get_nonce_ledger(),
        credential_store=get_credential_store(),
        provider=get_authorization_provider(),
        approvals=get_approval_cookie_service(),
        oauth_client=get_broker_oauth_client(),
        token_manager_factory=build_token_manager,
        api_client_factory=build_api_client,
        server_name=_settings().server_name,
        logger=_logger("oauth_handler"),
    )


async def _resolve_settings() -> AppSettings:
    return get_settings()


def build_session(grant: SessionGrant) -> BrokerSession:
    """Construct the actor for one authorized session."""
    return BrokerSession(
        session_id=grant.session_id,
        props=grant.props.model_copy(),
        settings_provider=_resolve_settings,
        credential_store=get_credential_store(),
        token_manager_factory=build_token_manager,
        api_client_factory=build_api_client,
        server_name=_settings().server_name,
        logger=_logger(f"session.{grant.session_id[:8]}"),
    )


@lru_cache()
def get_routes_logger() -> ContextLogger:
    """Logger for the HTTP edge, built on first request rather than at import."""
    return _logger("routes")


@lru_cache()
def get_session_hub() -> SessionHub:
    """Provide the process-wide session hub."""
    return SessionHub(
        build_session,
        logger=_logger("session_hub"),
        idle_ttl_seconds=_settings().session.idle_ttl_seconds,
    )


__all__ = [
    "build_api_client",
    "build_session",
    "build_token_manager",
    "get_approval_cookie_service",
    "get_auth_state_codec",
    "get_authorization_exchange",
    "get_authorization_provider",
    "get_broker_oauth_client",
    "get_credential_store",
    "get_kv_store",
    "get_nonce_ledger",
    "get_routes_logger",
    "get_session_hub",
    "get_token_cipher_service",
]
