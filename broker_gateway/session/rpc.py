"""Minimal JSON-RPC handling for the session stream entry."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from broker_gateway.session.capabilities import CapabilityRegistry, UnknownCapabilityError

PROTOCOL_VERSION = "2024-11-05"

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602


def _error(request_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def _result(request_id: Any, result: Any) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


async def dispatch(
    registry: CapabilityRegistry,
    message: Any,
    *,
    server_name: str,
    server_version: str,
) -> Optional[Dict[str, Any]]:
    """Handle one JSON-RPC message. Notifications yield ``None``."""
    if not isinstance(message, dict) or message.get("jsonrpc") != "2.0":
        return _error(None, INVALID_REQUEST, "Invalid JSON-RPC request")

    method = message.get("method")
    request_id = message.get("id")
    params = message.get("params") or {}
    if request_id is None:
        return None
    if not isinstance(method, str):
        return _error(request_id, INVALID_REQUEST, "Missing method")

    if method == "initialize":
        return _result(
            request_id,
            {
                "protocolVersion": params.get("protocolVersion", PROTOCOL_VERSION),
                "capabilities": {"tools": {"listChanged": True}},
                "serverInfo": {"name": server_name, "version": server_version},
            },
        )
    if method == "ping":
        return _result(request_id, {})
    if method == "tools/list":
        return _result(request_id, {"tools": registry.describe()})
    if method == "tools/call":
        name = params.get("name")
        arguments = params.get("arguments") or {}
        if not isinstance(name, str) or not isinstance(arguments, dict):
            return _error(request_id, INVALID_PARAMS, "tools/call needs a name and arguments")
        try:
            outcome = await registry.call(name, arguments)
        except UnknownCapabilityError:
            return _error(request_id, INVALID_PARAMS, f"Unknown tool: {name}")
        is_error = isinstance(outcome, dict) and outcome.get("ok") is False
        return _result(
            request_id,
            {
                "content": [{"type": "text", "text": json.dumps(outcome, default=str)}],
                "isError": is_error,
            },
        )
    return _error(request_id, METHOD_NOT_FOUND, f"Method not found: {method}")


__all__ = ["PROTOCOL_VERSION", "dispatch"]
