"""Brokerage tools registered once a session's API client is ready."""

from __future__ import annotations

from typing import Any, Callable, Dict, List

from broker_gateway.clients.broker_api import BrokerApiClient
from broker_gateway.session.capabilities import Capability, tool_error, tool_success

STATUS_TOOL = "status"


def status_capability(server_name: str) -> Capability:
    async def _status(_: Dict[str, Any]) -> Dict[str, Any]:
        return tool_success(
            f"{server_name} is running. Use tool discovery to see all available tools.",
            source=STATUS_TOOL,
        )

    return Capability(
        name=STATUS_TOOL,
        description="Check the brokerage gateway status.",
        handler=_status,
    )


def _wrap(name: str, call: Callable[[Dict[str, Any]], Any]):
    async def _handler(arguments: Dict[str, Any]) -> Dict[str, Any]:
        try:
            data = await call(arguments)
        except Exception as exc:  # pylint: disable=broad-except
            return tool_error(exc, source=name)
        return tool_success(data, source=name)

    return _handler


def broker_capabilities(client_getter: Callable[[], BrokerApiClient]) -> List[Capability]:
    """Build the broker tool set; ``client_getter`` resolves the live client per call."""

    async def _user_preference(_: Dict[str, Any]) -> Any:
        return await client_getter().get_user_preference()

    async def _accounts(arguments: Dict[str, Any]) -> Any:
        return await client_getter().get_accounts(
            positions=bool(arguments.get("positions", False))
        )

    async def _quotes(arguments: Dict[str, Any]) -> Any:
        symbols = arguments.get("symbols") or []
        if isinstance(symbols, str):
            symbols = symbols.split(",")
        if not symbols:
            raise ValueError("At least one symbol is required.")
        return await client_getter().get_quotes(symbols)

    return [
        Capability(
            name="get_user_preference",
            description="Fetch the user's brokerage preferences.",
            handler=_wrap("get_user_preference", _user_preference),
        ),
        Capability(
            name="get_accounts",
            description="List linked brokerage accounts, optionally with positions.",
            handler=_wrap("get_accounts", _accounts),
            parameters={
                "type": "object",
                "properties": {"positions": {"type": "boolean"}},
            },
        ),
        Capability(
            name="get_quotes",
            description="Fetch quotes for one or more symbols.",
            handler=_wrap("get_quotes", _quotes),
            parameters={
                "type": "object",
                "properties": {
                    "symbols": {"type": "array", "items": {"type": "string"}}
                },
                "required": ["symbols"],
            },
        ),
    ]


__all__ = ["STATUS_TOOL", "broker_capabilities", "status_capability"]
