"""Per-session hosting: actor, capability registry and the hub that owns them."""

from . import rpc
from .actor import BrokerSession, SessionState
from .capabilities import CapabilityRegistry
from .hub import SessionHub

__all__ = ["BrokerSession", "CapabilityRegistry", "SessionHub", "SessionState", "rpc"]
