"""Capability registry exposed by a session actor to its connection layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

Handler = Callable[[Dict[str, Any]], Awaitable[Any]]


@dataclass(frozen=True)
class Capability:
    name: str
    description: str
    handler: Handler
    parameters: Dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )


class UnknownCapabilityError(KeyError):
    """Raised when a call names a capability that is not registered."""


class CapabilityRegistry:
    """Name-keyed capabilities. Re-registering a name replaces the previous entry."""

    def __init__(self) -> None:
        self._capabilities: Dict[str, Capability] = {}

    def register(self, capability: Capability) -> None:
        self._capabilities[capability.name] = capability

    def get(self, name: str) -> Optional[Capability]:
        return self._capabilities.get(name)

    def names(self) -> List[str]:
        return list(self._capabilities)

    def __len__(self) -> int:
        return len(self._capabilities)

    def describe(self) -> List[Dict[str, Any]]:
        """Return capabilities in tool-listing format."""
        return [
            {
                "name": capability.name,
                "description": capability.description,
                "inputSchema": capability.parameters,
            }
            for capability in self._capabilities.values()
        ]

    async def call(self, name: str, arguments: Dict[str, Any]) -> Any:
        capability = self._capabilities.get(name)
        if capability is None:
            raise UnknownCapabilityError(name)
        return await capability.handler(arguments)


def tool_success(data: Any, *, source: str) -> Dict[str, Any]:
    return {
        "ok": True,
        "data": data,
        "source": source,
        "message": f"Successfully executed {source}",
    }


def tool_error(error: BaseException, *, source: str) -> Dict[str, Any]:
    return {
        "ok": False,
        "error": {"type": type(error).__name__, "message": str(error) or "Tool failed"},
        "source": source,
    }


__all__ = [
    "Capability",
    "CapabilityRegistry",
    "Handler",
    "UnknownCapabilityError",
    "tool_error",
    "tool_success",
]
