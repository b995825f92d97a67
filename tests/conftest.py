"""Pytest configuration shared across the suite."""

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

from datetime import datetime, timedelta, timezone

import pytest

from broker_gateway.clients.auth_state import AuthStateCodec, NonceLedger
from broker_gateway.clients.kv_store import SQLiteKVStore
from broker_gateway.core.logging import build_logger
from broker_gateway.models.credentials import CredentialRecord
from broker_gateway.services.approvals import ApprovalCookieService
from broker_gateway.services.authorization import AuthorizationExchange
from broker_gateway.services.authorization_provider import AuthorizationProvider
from broker_gateway.services.credential_store import CredentialStore
from broker_gateway.services.token_cipher import TokenCipherService
from broker_gateway.services.token_manager import TokenManager


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture
def kv_store(tmp_path) -> SQLiteKVStore:
    return SQLiteKVStore(str(tmp_path / "kv.db"))


@pytest.fixture
def test_logger():
    return build_logger("tests", "DEBUG")


@pytest.fixture
def credential_store(kv_store, test_logger) -> CredentialStore:
    return CredentialStore(
        kv_store,
        logger=test_logger,
        key_prefix="token:",
        ttl_seconds=3600,
        cipher=TokenCipherService(secret="store-secret"),
    )


@pytest.fixture
def make_record():
    def _make(access: str = "access-token", *, minutes: int = 30) -> CredentialRecord:
        return CredentialRecord(
            access_token=access,
            refresh_token=f"refresh-for-{access}",
            expires_at=datetime.now(timezone.utc) + timedelta(minutes=minutes),
        )

    return _make


CLIENT_ID = "mcp-client"
CLIENT_REDIRECT_URI = "https://client.example.com/oauth/callback"


class FakeBrokerOAuthClient:
    """Stands in for the broker token endpoint."""

    def __init__(self) -> None:
        self.states: list[str] = []
        self.codes: list[str] = []
        self.refreshes: list[str] = []
        self.exchange_error: Exception | None = None

    def build_authorization_url(self, state: str) -> str:
        self.states.append(state)
        return f"https://broker.example.com/oauth/authorize?state={state}"

    async def exchange_authorization_code(self, code: str) -> dict:
        self.codes.append(code)
        if self.exchange_error is not None:
            raise self.exchange_error
        return {
            "access_token": f"access-{code}",
            "refresh_token": f"refresh-{code}",
            "expires_in": 1800,
            "token_type": "Bearer",
        }

    async def refresh_token(self, refresh_token: str) -> dict:
        self.refreshes.append(refresh_token)
        return {"access_token": "refreshed-access", "expires_in": 1800}


class FakeBrokerApi:
    """Brokerage API double that authenticates through the supplied token source."""

    def __init__(self, auth, state: "FakeBrokerState") -> None:
        self._auth = auth
        self._state = state

    async def _authorized(self) -> str:
        token = await self._auth.get_access_token()
        self._state.tokens_seen.append(token)
        if self._state.api_error is not None:
            raise self._state.api_error
        return token

    async def fetch_user_id(self):
        await self._authorized()
        return self._state.user_id

    async def get_user_preference(self) -> dict:
        await self._authorized()
        return {"streamerInfo": [{"schwabClientCorrelId": self._state.user_id}]}

    async def get_accounts(self, *, positions: bool = False) -> list:
        await self._authorized()
        return [{"accountNumber": "123", "positions": [] if positions else None}]

    async def get_quotes(self, symbols) -> dict:
        await self._authorized()
        return {symbol.upper(): {"quote": {"lastPrice": 10.0}} for symbol in symbols}


class FakeBrokerState:
    def __init__(self) -> None:
        self.oauth = FakeBrokerOAuthClient()
        self.user_id: str | None = "u1"
        self.api_error: Exception | None = None
        self.api_clients_built = 0
        self.tokens_seen: list[str] = []

    def api_client_factory(self, auth, logger) -> FakeBrokerApi:
        self.api_clients_built += 1
        return FakeBrokerApi(auth, self)


@pytest.fixture
def broker() -> FakeBrokerState:
    return FakeBrokerState()


@pytest.fixture
def token_manager_factory(broker: FakeBrokerState, test_logger):
    def _build(load, save) -> TokenManager:
        return TokenManager(broker.oauth, load=load, save=save, logger=test_logger)

    return _build


@pytest.fixture
def authorization_provider(kv_store, test_logger):
    return AuthorizationProvider(
        kv_store,
        clients={CLIENT_ID: [CLIENT_REDIRECT_URI]},
        default_scope=["readonly"],
        grant_ttl_seconds=300,
        session_ttl_seconds=3600,
        logger=test_logger,
    )


@pytest.fixture
def approvals():
    return ApprovalCookieService(TokenCipherService(secret="cookie-secret"))


@pytest.fixture
def state_codec():
    return AuthStateCodec("state-secret", ttl_seconds=600)


@pytest.fixture
def authorization_exchange(
    broker,
    kv_store,
    credential_store,
    authorization_provider,
    approvals,
    state_codec,
    token_manager_factory,
    test_logger,
):
    return AuthorizationExchange(
        codec=state_codec,
        nonces=NonceLedger(kv_store, ttl_seconds=600),
        credential_store=credential_store,
        provider=authorization_provider,
        approvals=approvals,
        oauth_client=broker.oauth,
        token_manager_factory=token_manager_factory,
        api_client_factory=broker.api_client_factory,
        server_name="Test Gateway",
        logger=test_logger,
    )
