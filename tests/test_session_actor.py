try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import asyncio
import json

import pytest

from broker_gateway.core.config import get_settings
from broker_gateway.core.errors import RecoveryExhausted, SessionNotReady
from broker_gateway.models.credentials import Identity, SessionGrant, SessionProps
from broker_gateway.session.actor import BrokerSession, SessionState
from broker_gateway.session.hub import SessionHub

pytestmark = pytest.mark.anyio("asyncio")


class Script:
    """Shared knobs and call log for the doubles below."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.probe_error: Exception | None = None
        self.reload_result = True
        self.factory_error: Exception | None = None
        self.settings_gate: asyncio.Event | None = None


class FakeTokenManager:
    def __init__(self, script: Script, load, save) -> None:
        self._script = script
        self.load = load
        self.save = save

    async def initialize(self) -> bool:
        self._script.calls.append("token_manager.initialize")
        return self._script.reload_result

    async def get_access_token(self) -> str:
        self._script.calls.append("token_manager.get_access_token")
        if self._script.probe_error is not None:
            raise self._script.probe_error
        return "live-token"


class FakeApiClient:
    def __init__(self, auth) -> None:
        self.auth = auth

    async def get_accounts(self, *, positions: bool = False) -> list:
        await self.auth.get_access_token()
        return [{"accountNumber": "123"}]


@pytest.fixture
def script() -> Script:
    return Script()


@pytest.fixture
def make_session(script: Script, credential_store, test_logger):
    def _make(props: SessionProps, *, token_manager_factory=None) -> BrokerSession:
        async def settings_provider():
            script.calls.append("settings")
            if script.settings_gate is not None:
                await script.settings_gate.wait()
            return get_settings()

        def fake_token_manager_factory(load, save):
            script.calls.append("token_manager_factory")
            if script.factory_error is not None:
                raise script.factory_error
            return FakeTokenManager(script, load, save)

        def api_client_factory(auth, logger):
            script.calls.append("api_client_factory")
            return FakeApiClient(auth)

        return BrokerSession(
            session_id="session-1",
            props=props,
            settings_provider=settings_provider,
            credential_store=credential_store,
            token_manager_factory=token_manager_factory or fake_token_manager_factory,
            api_client_factory=api_client_factory,
            server_name="Test Gateway",
            logger=test_logger,
        )

    return _make


async def _ready_session(make_session, script: Script) -> BrokerSession:
    session = make_session(SessionProps(canonical_id="u1", fallback_id="c1"))
    await session.initialize()
    script.calls.clear()
    return session


async def test_status_is_registered_before_initialization_finishes(make_session, script) -> None:
    script.settings_gate = asyncio.Event()
    session = make_session(SessionProps(canonical_id="u1", fallback_id="c1"))

    task = asyncio.create_task(session.initialize())
    await asyncio.sleep(0)

    assert session.registry.names() == ["status"]
    assert session.state is SessionState.INITIALIZING

    script.settings_gate.set()
    await task

    assert session.state is SessionState.READY
    assert set(session.registry.names()) == {
        "status",
        "get_user_preference",
        "get_accounts",
        "get_quotes",
    }


async def test_initialization_order(make_session, script) -> None:
    session = make_session(SessionProps(canonical_id="u1", fallback_id="c1"))

    await session.initialize()

    assert script.calls == [
        "settings",
        "token_manager_factory",
        "token_manager.initialize",
        "api_client_factory",
    ]
    assert session.client is not None
    assert session.client.auth is session.token_manager


async def test_initialization_backfills_fallback_id(make_session) -> None:
    session = make_session(SessionProps(canonical_id="u1"))

    await session.initialize()

    assert session.props.fallback_id == get_settings().broker.client_id
    assert session.props.canonical_id == "u1"


async def test_initialization_migrates_fallback_credential(
    make_session, credential_store, make_record, token_manager_factory
) -> None:
    await credential_store.save(Identity(fallback_id="c1"), make_record("client-keyed"))
    session = make_session(
        SessionProps(canonical_id="u1", fallback_id="c1"),
        token_manager_factory=token_manager_factory,
    )

    await session.initialize()

    migrated = await credential_store.load(Identity(canonical_id="u1"))
    assert migrated is not None
    assert migrated.access_token == "client-keyed"
    assert await session.token_manager.get_access_token() == "client-keyed"


async def test_initialization_failure_is_reraised(make_session, script) -> None:
    script.factory_error = RuntimeError("cannot build")
    session = make_session(SessionProps(canonical_id="u1", fallback_id="c1"))

    with pytest.raises(RuntimeError):
        await session.initialize()

    assert session.state is SessionState.FAILED
    assert session.registry.names() == ["status"]


async def test_probe_success_skips_other_tiers(make_session, script) -> None:
    session = await _ready_session(make_session, script)
    manager = session.token_manager

    assert await session.reconnect() is True

    assert [attempt.tier for attempt in session.last_recovery] == ["probe"]
    assert session.token_manager is manager
    assert script.calls == ["token_manager.get_access_token"]


async def test_reload_runs_when_probe_fails(make_session, script) -> None:
    session = await _ready_session(make_session, script)
    manager = session.token_manager
    script.probe_error = RuntimeError("token refresh failed")

    assert await session.reconnect() is True

    assert [attempt.tier for attempt in session.last_recovery] == ["probe", "reload"]
    assert session.token_manager is manager
    assert "token_manager_factory" not in script.calls


async def test_reset_runs_when_reload_finds_nothing(make_session, script) -> None:
    session = await _ready_session(make_session, script)
    manager = session.token_manager
    script.probe_error = RuntimeError("token refresh failed")
    script.reload_result = False

    assert await session.reconnect() is True

    assert [attempt.tier for attempt in session.last_recovery] == ["probe", "reload", "reset"]
    assert session.last_recovery[-1].succeeded is True
    assert session.token_manager is not manager
    assert session.state is SessionState.READY


async def test_all_tiers_failing_returns_false(make_session, script) -> None:
    session = await _ready_session(make_session, script)
    script.probe_error = RuntimeError("token refresh failed")
    script.reload_result = False
    script.factory_error = RuntimeError("cannot build")

    assert await session.reconnect() is False

    assert [attempt.succeeded for attempt in session.last_recovery] == [False, False, False]
    assert session.state is SessionState.FAILED
    with pytest.raises(RecoveryExhausted):
        await session.handle_stream({"jsonrpc": "2.0", "id": 1, "method": "ping"}, ready_timeout=0.1)


async def test_uninitialized_session_recovers_through_initialize(make_session, script) -> None:
    session = make_session(SessionProps(canonical_id="u1", fallback_id="c1"))

    assert await session.reconnect() is True

    assert [attempt.tier for attempt in session.last_recovery] == ["initialize"]
    assert session.state is SessionState.READY


async def test_failed_initialize_tier_falls_through_to_reset(make_session, script) -> None:
    script.factory_error = RuntimeError("first build fails")
    session = make_session(SessionProps(canonical_id="u1", fallback_id="c1"))
    with pytest.raises(RuntimeError):
        await session.initialize()

    script.factory_error = None

    async def failing_initialize() -> bool:
        raise RuntimeError("still failing")

    session._tier_initialize = failing_initialize

    assert await session.reconnect() is True
    assert [attempt.tier for attempt in session.last_recovery] == ["initialize", "reset"]


async def test_wait_ready_times_out(make_session) -> None:
    session = make_session(SessionProps(canonical_id="u1", fallback_id="c1"))

    with pytest.raises(SessionNotReady):
        await session.wait_ready(0.01)


async def test_handle_stream_serves_tools(make_session, script) -> None:
    session = await _ready_session(make_session, script)

    listing = await session.handle_stream(
        {"jsonrpc": "2.0", "id": 1, "method": "tools/list"}, ready_timeout=0.1
    )
    call = await session.handle_stream(
        {
            "jsonrpc": "2.0",
            "id": 2,
            "method": "tools/call",
            "params": {"name": "get_accounts", "arguments": {}},
        },
        ready_timeout=0.1,
    )
    notification = await session.handle_stream(
        {"jsonrpc": "2.0", "method": "notifications/initialized"}, ready_timeout=0.1
    )

    names = [tool["name"] for tool in listing["result"]["tools"]]
    assert names[0] == "status"
    payload = json.loads(call["result"]["content"][0]["text"])
    assert call["result"]["isError"] is False
    assert payload["data"] == [{"accountNumber": "123"}]
    assert notification is None


async def test_tool_errors_are_reported_in_band(make_session, script) -> None:
    session = await _ready_session(make_session, script)

    reply = await session.handle_stream(
        {
            "jsonrpc": "2.0",
            "id": 3,
            "method": "tools/call",
            "params": {"name": "get_quotes", "arguments": {"symbols": []}},
        },
        ready_timeout=0.1,
    )
    unknown = await session.handle_stream(
        {"jsonrpc": "2.0", "id": 4, "method": "tools/call", "params": {"name": "nope"}},
        ready_timeout=0.1,
    )

    assert reply["result"]["isError"] is True
    assert json.loads(reply["result"]["content"][0]["text"])["error"]["type"] == "ValueError"
    assert unknown["error"]["code"] == -32602


async def test_hub_reuses_sessions_and_initializes_in_background(make_session, script, test_logger) -> None:
    built: list[str] = []

    def factory(grant: SessionGrant) -> BrokerSession:
        built.append(grant.session_id)
        return make_session(grant.props)

    hub = SessionHub(factory, logger=test_logger)
    grant = SessionGrant(
        session_id="abc", client_id="c1", props=SessionProps(canonical_id="u1", fallback_id="c1")
    )

    session = hub.get_or_create(grant)
    assert hub.get_or_create(grant) is session
    await session.wait_ready(1.0)

    assert built == ["abc"]
    assert len(hub) == 1
    assert hub.get("abc") is session
    hub.drop("abc")
    assert hub.get("abc") is None
    assert len(hub) == 0
    await hub.close()


async def test_stream_entry_is_bounded_by_inflight_initialization(make_session, script) -> None:
    script.settings_gate = asyncio.Event()
    session = make_session(SessionProps(canonical_id="u1", fallback_id="c1"))
    background = asyncio.create_task(session.initialize())
    await asyncio.sleep(0)
    ping = {"jsonrpc": "2.0", "id": 1, "method": "ping"}

    started = asyncio.get_running_loop().time()
    with pytest.raises(SessionNotReady):
        await session.handle_stream(ping, ready_timeout=0.05)
    assert asyncio.get_running_loop().time() - started < 1.0

    script.settings_gate.set()
    await background
    assert await session.handle_stream(ping, ready_timeout=0.05) == {
        "jsonrpc": "2.0",
        "id": 1,
        "result": {},
    }


async def test_initialize_after_stream_entry_does_not_rebuild(make_session, script) -> None:
    session = make_session(SessionProps(canonical_id="u1", fallback_id="c1"))

    assert await session.reconnect() is True
    manager, client = session.token_manager, session.client
    await session.initialize()

    assert script.calls.count("token_manager_factory") == 1
    assert script.calls.count("token_manager.initialize") == 1
    assert session.token_manager is manager
    assert session.client is client
    assert session.state is SessionState.READY


async def test_hub_background_start_after_first_request_is_a_noop(make_session, script, test_logger) -> None:
    hub = SessionHub(lambda grant: make_session(grant.props), logger=test_logger)
    grant = SessionGrant(
        session_id="abc", client_id="c1", props=SessionProps(canonical_id="u1", fallback_id="c1")
    )

    session = hub.get_or_create(grant)
    await session.handle_stream({"jsonrpc": "2.0", "id": 1, "method": "ping"}, ready_timeout=1.0)
    for _ in range(5):
        await asyncio.sleep(0)

    assert script.calls.count("token_manager_factory") == 1
    assert session.state is SessionState.READY
    await hub.close()


async def test_hub_evicts_idle_sessions(make_session, test_logger) -> None:
    now = [1000.0]
    hub = SessionHub(
        lambda grant: make_session(grant.props),
        logger=test_logger,
        idle_ttl_seconds=60,
        clock=lambda: now[0],
    )

    def grant(session_id: str) -> SessionGrant:
        return SessionGrant(
            session_id=session_id,
            client_id="c1",
            props=SessionProps(canonical_id="u1", fallback_id="c1"),
        )

    first = hub.get_or_create(grant("idle"))
    now[0] += 30
    hub.get_or_create(grant("busy"))
    now[0] += 45
    hub.get_or_create(grant("busy"))

    assert hub.get("idle") is None
    assert hub.get("busy") is not None
    assert len(hub) == 1

    now[0] += 10
    assert hub.get_or_create(grant("idle")) is not first
    assert len(hub) == 2
    await hub.close()
