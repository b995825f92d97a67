"""Expose constructed client wrappers."""

from .auth_state import AuthStateCodec, NonceLedger
from .broker_api import BrokerApiClient
from .broker_oauth import BrokerApiError, BrokerAuthError, BrokerOAuthClient
from .kv_store import SQLiteKVStore

__all__ = [
    "AuthStateCodec",
    "BrokerApiClient",
    "BrokerApiError",
    "BrokerAuthError",
    "BrokerOAuthClient",
    "NonceLedger",
    "SQLiteKVStore",
]
