"""
OAuth provider facing the outer tool-calling clients.

Registers clients that announce themselves at runtime, parses their authorize
requests, issues one-time grants once the broker handshake completes, and
trades grants for opaque session bearer tokens.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Mapping, Optional, Protocol
from urllib.parse import urlencode, urlsplit, urlunsplit, parse_qsl

from broker_gateway.core.errors import (
    AuthRequestFailed,
    InvalidClient,
    InvalidGrant,
    InvalidRedirectUri,
    MissingClientId,
)
from broker_gateway.core.logging import ContextLogger
from broker_gateway.models.credentials import (
    AuthorizationGrant,
    PendingAuthorization,
    SessionGrant,
    SessionProps,
)


class GrantBackend(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def put(self, key: str, value: str, *, ttl_seconds: Optional[int] = None) -> None: ...

    def pop(self, key: str) -> Optional[str]: ...


@dataclass(frozen=True)
class ClientInfo:
    client_id: str
    redirect_uris: List[str]
    client_name: Optional[str] = None


@dataclass(frozen=True)
class AuthRequest:
    """Outer authorize request as received on ``GET /authorize``."""

    client_id: str
    redirect_uri: str
    scope: List[str] = field(default_factory=list)
    state: Optional[str] = None
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None


def _append_query(url: str, params: Dict[str, str]) -> str:
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


def _pkce_s256(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class AuthorizationProvider:
    """Outer OAuth provider backed by a key/value store."""

    GRANT_PREFIX = "grant:"
    SESSION_PREFIX = "session:"
    CLIENT_PREFIX = "client:"

    def __init__(
        self,
        backend: GrantBackend,
        *,
        clients: Mapping[str, List[str]],
        default_scope: List[str],
        grant_ttl_seconds: int,
        session_ttl_seconds: int,
        logger: ContextLogger,
    ) -> None:
        self._backend = backend
        self._clients = {
            client_id: ClientInfo(client_id=client_id, redirect_uris=list(uris))
            for client_id, uris in clients.items()
        }
        self._default_scope = list(default_scope)
        self._grant_ttl = grant_ttl_seconds
        self._session_ttl = session_ttl_seconds
        self._logger = logger

    def lookup_client(self, client_id: str) -> Optional[ClientInfo]:
        """Configured clients first, then those registered at runtime."""
        client = self._clients.get(client_id)
        if client is not None:
            return client
        raw = self._backend.get(f"{self.CLIENT_PREFIX}{client_id}")
        if raw is None:
            return None
        return ClientInfo(**json.loads(raw))

    def register_client(
        self, redirect_uris: List[str], *, client_name: Optional[str] = None
    ) -> ClientInfo:
        """Dynamic client registration: mint a public client id for ``redirect_uris``."""
        uris = [uri.strip() for uri in redirect_uris if uri and uri.strip()]
        if not uris:
            raise InvalidRedirectUri()
        for uri in uris:
            parts = urlsplit(uri)
            if parts.scheme not in ("http", "https") or not parts.netloc or parts.fragment:
                raise InvalidRedirectUri(f"Redirect URI is not an absolute http(s) URL: {uri}")

        client = ClientInfo(
            client_id=f"mcp-{secrets.token_hex(8)}",
            redirect_uris=uris,
            client_name=client_name,
        )
        self._backend.put(f"{self.CLIENT_PREFIX}{client.client_id}", json.dumps(asdict(client)))
        self._logger.info(
            "Registered outer client",
            extra={"client_id": client.client_id, "client_name": client_name},
        )
        return client

    def parse_auth_request(self, params: Mapping[str, str]) -> AuthRequest:
        """Validate outer authorize parameters against the registered clients."""
        client_id = (params.get("client_id") or "").strip()
        if not client_id:
            raise MissingClientId()
        response_type = params.get("response_type", "code")
        if response_type != "code":
            raise AuthRequestFailed(
                f"Unsupported response_type: {response_type}",
            )
        client = self.lookup_client(client_id)
        if client is None:
            raise InvalidClient(f"Unknown client: {client_id}")
        redirect_uri = params.get("redirect_uri") or (
            client.redirect_uris[0] if len(client.redirect_uris) == 1 else ""
        )
        if redirect_uri not in client.redirect_uris:
            raise InvalidClient("Redirect URI is not registered for this client.")
        method = params.get("code_challenge_method")
        if params.get("code_challenge") and (method or "plain") not in ("S256", "plain"):
            raise AuthRequestFailed(f"Unsupported code_challenge_method: {method}")
        scope = [item for item in (params.get("scope") or "").split() if item]
        return AuthRequest(
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=scope or list(self._default_scope),
            state=params.get("state"),
            code_challenge=params.get("code_challenge"),
            code_challenge_method=method or ("plain" if params.get("code_challenge") else None),
        )

    def complete_authorization(
        self,
        pending: PendingAuthorization,
        *,
        props: SessionProps,
        scope: List[str],
    ) -> str:
        """Issue a one-time grant and return the outer client's redirect target."""
        code = secrets.token_urlsafe(32)
        grant = AuthorizationGrant(
            client_id=pending.client_id,
            redirect_uri=pending.redirect_uri,
            scope=scope,
            code_challenge=pending.code_challenge,
            code_challenge_method=pending.code_challenge_method,
            props=props,
        )
        self._backend.put(
            f"{self.GRANT_PREFIX}{code}",
            grant.model_dump_json(),
            ttl_seconds=self._grant_ttl,
        )
        params = {"code": code}
        if pending.state:
            params["state"] = pending.state
        return _append_query(pending.redirect_uri, params)

    def exchange_grant(
        self,
        *,
        code: str,
        client_id: str,
        redirect_uri: Optional[str],
        code_verifier: Optional[str],
    ) -> tuple[str, SessionGrant]:
        """Consume a grant and mint the bearer token that identifies the session."""
        raw = self._backend.pop(f"{self.GRANT_PREFIX}{code}")
        if raw is None:
            raise InvalidGrant()
        grant = AuthorizationGrant.model_validate_json(raw)
        if grant.client_id != client_id:
            raise InvalidGrant("Grant was issued to a different client.")
        if redirect_uri and redirect_uri != grant.redirect_uri:
            raise InvalidGrant("Redirect URI does not match the grant.")
        if grant.code_challenge:
            if not code_verifier:
                raise InvalidGrant("code_verifier is required.")
            expected = (
                _pkce_s256(code_verifier)
                if grant.code_challenge_method == "S256"
                else code_verifier
            )
            if not hmac.compare_digest(expected, grant.code_challenge):
                raise InvalidGrant("code_verifier does not match the challenge.")

        access_token = secrets.token_urlsafe(32)
        session = SessionGrant(
            session_id=secrets.token_hex(16),
            client_id=client_id,
            scope=grant.scope,
            props=grant.props,
        )
        self._backend.put(
            f"{self.SESSION_PREFIX}{access_token}",
            session.model_dump_json(),
            ttl_seconds=self._session_ttl,
        )
        self._logger.info("Issued session token", extra={"client_id": client_id})
        return access_token, session

    def resolve_session(self, access_token: str) -> Optional[SessionGrant]:
        if not access_token:
            return None
        raw = self._backend.get(f"{self.SESSION_PREFIX}{access_token}")
        if raw is None:
            return None
        return SessionGrant.model_validate_json(raw)

    @property
    def session_ttl_seconds(self) -> int:
        return self._session_ttl


__all__ = ["AuthRequest", "AuthorizationProvider", "ClientInfo"]
