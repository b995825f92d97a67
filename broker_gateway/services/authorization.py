"""
Authorization exchange between outer clients and the brokerage.

``initiate`` and ``approve`` carry the outer request to the broker consent
screen inside a signed state token. ``callback`` exchanges the returned code,
discovers the brokerage user id, stores the credential under both the user id
and the requesting client id, and hands the outer client its grant.

Each step returns a :class:`Result`; the public methods never raise.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Union

from broker_gateway.clients.auth_state import AuthStateCodec, NonceLedger
from broker_gateway.clients.broker_api import ApiClientFactory
from broker_gateway.clients.broker_oauth import BrokerOAuthClient
from broker_gateway.core.errors import (
    AuthApprovalFailed,
    AuthRequestFailed,
    Err,
    GatewayError,
    InvalidOrExpiredState,
    InvalidState,
    MissingParameters,
    NoUserId,
    Ok,
    Result,
    TokenExchangeFailed,
)
from broker_gateway.core.logging import ContextLogger, describe_error, sanitize_key_for_log
from broker_gateway.models.credentials import (
    CredentialRecord,
    Identity,
    PendingAuthorization,
    SessionProps,
)
from broker_gateway.services.approvals import ApprovalCookieService, render_approval_page
from broker_gateway.services.authorization_provider import AuthorizationProvider
from broker_gateway.services.credential_store import CredentialStore
from broker_gateway.services.error_mapping import classify_callback_error
from broker_gateway.services.token_manager import TokenManager, TokenManagerFactory


@dataclass(frozen=True)
class Redirect:
    url: str
    set_cookies: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ApprovalPage:
    html: str


class AuthorizationExchange:
    """Drives the initiate / approve / callback handshake."""

    def __init__(
        self,
        *,
        codec: AuthStateCodec,
        nonces: NonceLedger,
        credential_store: CredentialStore,
        provider: AuthorizationProvider,
        approvals: ApprovalCookieService,
        oauth_client: BrokerOAuthClient,
        token_manager_factory: TokenManagerFactory,
        api_client_factory: ApiClientFactory,
        server_name: str,
        logger: ContextLogger,
    ) -> None:
        self._codec = codec
        self._nonces = nonces
        self._store = credential_store
        self._provider = provider
        self._approvals = approvals
        self._oauth = oauth_client
        self._token_manager_factory = token_manager_factory
        self._api_client_factory = api_client_factory
        self._server_name = server_name
        self._logger = logger

    # -- initiate -----------------------------------------------------------

    async def initiate(
        self, params: Mapping[str, str], cookies: Mapping[str, str]
    ) -> Result[Union[Redirect, ApprovalPage]]:
        try:
            request = self._provider.parse_auth_request(params)
            pending = self._codec.new_pending(
                client_id=request.client_id,
                redirect_uri=request.redirect_uri,
                scope=request.scope,
                state=request.state,
                code_challenge=request.code_challenge,
                code_challenge_method=request.code_challenge_method,
            )
            encoded = self._codec.encode(pending)

            if self._approvals.client_already_approved(cookies, request.client_id):
                self._logger.info(
                    "Client already approved, redirecting to provider",
                    extra={"client_id": request.client_id},
                )
                return Ok(Redirect(self._oauth.build_authorization_url(encoded)))

            client = self._provider.lookup_client(request.client_id)
            page = render_approval_page(
                server_name=self._server_name,
                client_name=client.client_name if client else None,
                client_id=request.client_id,
                scope=request.scope,
                encoded_state=encoded,
            )
            return Ok(ApprovalPage(page))
        except GatewayError as exc:
            self._logger.error(exc.message, extra={"error_type": type(exc).__name__})
            return Err(exc)
        except Exception as exc:  # pylint: disable=broad-except
            self._logger.error(
                "Error processing authorization request",
                extra={"error": describe_error(exc)},
            )
            return Err(AuthRequestFailed())

    # -- approve ------------------------------------------------------------

    async def approve(
        self, form: Mapping[str, str], cookies: Mapping[str, str]
    ) -> Result[Redirect]:
        try:
            decoded = self._decode_approval(form.get("state"))
            if isinstance(decoded, Err):
                self._logger.error(
                    decoded.error.message, extra=decoded.error.details or None
                )
                return decoded
            pending = decoded.value

            # The user may sit on the consent page; issue a fresh token for the broker leg.
            fresh = self._codec.new_pending(
                **pending.model_dump(exclude={"nonce", "issued_at"})
            )
            url = self._oauth.build_authorization_url(self._codec.encode(fresh))
            cookie = self._approvals.approve(cookies, pending.client_id)
            return Ok(Redirect(url, set_cookies={self._approvals.cookie_name: cookie}))
        except Exception as exc:  # pylint: disable=broad-except
            self._logger.error(
                "Error processing approval", extra={"error": describe_error(exc)}
            )
            return Err(AuthApprovalFailed())

    def _decode_approval(self, raw_state: Optional[str]) -> Result[PendingAuthorization]:
        if not raw_state:
            return Err(InvalidState("Approval submission is missing its state."))
        try:
            pending = self._codec.decode(raw_state)
        except InvalidOrExpiredState:
            return Err(InvalidState("Approval state is invalid or has expired."))
        missing = pending.missing_fields()
        if missing:
            return Err(
                InvalidState(
                    "Approval state is missing required fields.",
                    details={"missing_fields": missing},
                )
            )
        return Ok(pending)

    # -- callback -----------------------------------------------------------

    async def callback(self, state: Optional[str], code: Optional[str]) -> Result[Redirect]:
        """Complete the broker leg. Every failure comes back as an :class:`Err`."""
        try:
            return await self._run_callback(state, code)
        except Exception as exc:  # pylint: disable=broad-except
            error, request_id = classify_callback_error(exc)
            self._logger.error(
                f"Auth callback failed: {error.message}",
                extra={
                    "error_type": type(error).__name__,
                    "cause": describe_error(exc),
                    **({"request_id": request_id} if request_id else {}),
                },
            )
            return Err(error, request_id=request_id)

    async def _run_callback(self, state: Optional[str], code: Optional[str]) -> Result[Redirect]:
        if not state or not code:
            error = MissingParameters(
                details={"has_state": bool(state), "has_code": bool(code)}
            )
            self._logger.error(error.message, extra=error.details)
            return Err(error)

        decoded = self._decode_callback_state(state)
        if isinstance(decoded, Err):
            self._logger.error(decoded.error.message)
            return decoded
        pending = decoded.value
        fallback = Identity(fallback_id=pending.client_id)

        token_manager = self._token_manager_factory(
            lambda: self._store.load(fallback),
            lambda record: self._store.save(fallback, record),
        )
        exchanged = await self._exchange_code(token_manager, code, state)
        if isinstance(exchanged, Err):
            return exchanged

        user_id = await self._fetch_user_id(token_manager)
        if isinstance(user_id, Err):
            return user_id
        canonical_id = user_id.value

        await self._persist_dual_key(
            exchanged.value, fallback_id=pending.client_id, canonical_id=canonical_id
        )

        redirect_to = self._provider.complete_authorization(
            pending,
            props=SessionProps(canonical_id=canonical_id, fallback_id=pending.client_id),
            scope=pending.scope,
        )
        self._logger.info("Authorization completed", extra={"client_id": pending.client_id})
        return Ok(Redirect(redirect_to))

    def _decode_callback_state(self, state: str) -> Result[PendingAuthorization]:
        try:
            pending = self._codec.decode(state)
        except InvalidOrExpiredState as exc:
            return Err(exc)
        missing = pending.missing_fields()
        if missing:
            return Err(
                InvalidState(
                    "Decoded state is missing required fields.",
                    details={"missing_fields": missing},
                )
            )
        try:
            self._nonces.consume(pending)
        except InvalidOrExpiredState as exc:
            return Err(exc)
        return Ok(pending)

    async def _exchange_code(
        self, token_manager: TokenManager, code: str, state: str
    ) -> Result[CredentialRecord]:
        self._logger.info("Exchanging authorization code for tokens")
        try:
            record = await token_manager.exchange_code(code, state)
        except Exception as exc:  # pylint: disable=broad-except
            self._logger.error(
                "Token exchange failed", extra={"error": describe_error(exc)}
            )
            return Err(TokenExchangeFailed())
        self._logger.info("Token exchange successful")
        return Ok(record)

    async def _fetch_user_id(self, token_manager: TokenManager) -> Result[str]:
        self._logger.info("Fetching user preferences to resolve the brokerage user id")
        try:
            client = self._api_client_factory(token_manager, self._logger)
            user_id = await client.fetch_user_id()
        except Exception as exc:  # pylint: disable=broad-except
            self._logger.error(
                "Failed to fetch user preferences", extra={"error": describe_error(exc)}
            )
            return Err(NoUserId())
        if not user_id:
            self._logger.error(NoUserId.default_message)
            return Err(NoUserId())
        return Ok(user_id)

    async def _persist_dual_key(
        self, exchanged: CredentialRecord, *, fallback_id: str, canonical_id: str
    ) -> None:
        """Store the credential under the canonical key, then the fallback key."""
        fallback = Identity(fallback_id=fallback_id)
        canonical = Identity(canonical_id=canonical_id)
        try:
            record = await self._store.load(fallback) or exchanged
            await self._store.save(canonical, record)
            await self._store.save(fallback, record)
            self._logger.info(
                "Token saved under both keys",
                extra={
                    "canonical_key": sanitize_key_for_log(self._store.derive_key(canonical)),
                    "fallback_key": sanitize_key_for_log(self._store.derive_key(fallback)),
                },
            )
        except Exception as exc:  # pylint: disable=broad-except
            self._logger.warning(
                "Token save failed, continuing with authorization",
                extra={"error": describe_error(exc)},
            )


__all__ = ["ApprovalPage", "AuthorizationExchange", "Redirect"]
