"""Service layer exports."""

from .approvals import ApprovalCookieService
from .authorization import AuthorizationExchange
from .authorization_provider import AuthorizationProvider
from .credential_store import CredentialStore
from .token_cipher import TokenCipherService
from .token_manager import TokenManager

__all__ = [
    "ApprovalCookieService",
    "AuthorizationExchange",
    "AuthorizationProvider",
    "CredentialStore",
    "TokenCipherService",
    "TokenManager",
]
