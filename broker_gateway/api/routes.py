"""
FastAPI routes for the brokerage gateway.
"""

from __future__ import annotations

import json
from http import HTTPStatus
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from broker_gateway.core.errors import (
    Err,
    GatewayError,
    InvalidClientMetadata,
    InvalidGrant,
    RecoveryExhausted,
    Unauthenticated,
    error_body,
)
from broker_gateway.core.logging import ContextLogger
from broker_gateway.dependencies import (
    get_app_settings,
    get_approval_cookie_service,
    get_authorization_exchange,
    get_authorization_provider,
    get_ready_timeout,
    get_routes_logger,
    get_session_hub,
)
from broker_gateway.schemas import (
    AuthorizationServerMetadata,
    ClientRegistrationRequest,
    ClientRegistrationResponse,
    TokenRequest,
    TokenResponse,
)
from broker_gateway.services.authorization import ApprovalPage, Redirect
from broker_gateway.session import rpc

router = APIRouter()


def _error_response(error: GatewayError, request_id: str | None = None) -> JSONResponse:
    return JSONResponse(
        content=error_body(error, request_id=request_id),
        status_code=int(error.status),
    )


def _from_err(result: Err) -> JSONResponse:
    return _error_response(result.error, result.request_id)


def _redirect(outcome: Redirect, cookie_max_age: int) -> RedirectResponse:
    response = RedirectResponse(url=outcome.url, status_code=HTTPStatus.FOUND)
    for name, value in outcome.set_cookies.items():
        response.set_cookie(
            name,
            value,
            max_age=cookie_max_age,
            httponly=True,
            secure=True,
            samesite="lax",
            path="/",
        )
    return response


@router.get("/health", status_code=HTTPStatus.OK)
async def healthcheck() -> dict:
    """Simple health endpoint for monitoring."""
    return {"status": "ok"}


@router.get("/.well-known/oauth-authorization-server")
async def authorization_server_metadata(
    request: Request,
    settings: Annotated[Any, Depends(get_app_settings)],
) -> AuthorizationServerMetadata:
    base = str(settings.public_base_url or request.base_url).rstrip("/")
    return AuthorizationServerMetadata(
        issuer=base,
        authorization_endpoint=f"{base}/authorize",
        token_endpoint=f"{base}/token",
        registration_endpoint=f"{base}/register",
    )


@router.post("/register", status_code=HTTPStatus.CREATED)
async def register_client(
    request: Request,
    provider: Annotated[Any, Depends(get_authorization_provider)],
    logger: Annotated[ContextLogger, Depends(get_routes_logger)],
) -> Response:
    """Dynamic client registration for tool-calling clients."""
    try:
        payload = ClientRegistrationRequest.model_validate(json.loads(await request.body()))
    except ValueError:
        return _error_response(InvalidClientMetadata())

    try:
        client = provider.register_client(
            payload.redirect_uris, client_name=payload.client_name
        )
    except GatewayError as exc:
        logger.warning("Client registration rejected", extra={"reason": exc.message})
        return _error_response(exc)

    body = ClientRegistrationResponse(
        client_id=client.client_id,
        redirect_uris=client.redirect_uris,
        client_name=client.client_name,
    )
    return JSONResponse(
        content=body.model_dump(),
        status_code=HTTPStatus.CREATED,
        headers={"Cache-Control": "no-store"},
    )


@router.get("/authorize")
async def start_authorization(
    request: Request,
    exchange: Annotated[Any, Depends(get_authorization_exchange)],
    approvals: Annotated[Any, Depends(get_approval_cookie_service)],
) -> Response:
    """Redirect approved clients to the broker, otherwise show the approval form."""
    result = await exchange.initiate(dict(request.query_params), request.cookies)
    if isinstance(result, Err):
        return _from_err(result)
    outcome = result.value
    if isinstance(outcome, ApprovalPage):
        return HTMLResponse(content=outcome.html, status_code=HTTPStatus.OK)
    return _redirect(outcome, approvals.max_age)


@router.post("/authorize")
async def submit_approval(
    request: Request,
    exchange: Annotated[Any, Depends(get_authorization_exchange)],
    approvals: Annotated[Any, Depends(get_approval_cookie_service)],
) -> Response:
    """Handle the approval form and continue to the broker consent screen."""
    form = await request.form()
    fields = {key: value for key, value in form.items() if isinstance(value, str)}
    result = await exchange.approve(fields, request.cookies)
    if isinstance(result, Err):
        return _from_err(result)
    return _redirect(result.value, approvals.max_age)


@router.get("/callback")
async def broker_callback(
    exchange: Annotated[Any, Depends(get_authorization_exchange)],
    approvals: Annotated[Any, Depends(get_approval_cookie_service)],
    state: str | None = Query(default=None, description="Signed state token."),
    code: str | None = Query(default=None, description="Broker authorization code."),
) -> Response:
    """Complete the broker leg and send the outer client back with its grant."""
    result = await exchange.callback(state, code)
    if isinstance(result, Err):
        return _from_err(result)
    return _redirect(result.value, approvals.max_age)


@router.post("/token")
async def issue_token(
    request: Request,
    provider: Annotated[Any, Depends(get_authorization_provider)],
    logger: Annotated[ContextLogger, Depends(get_routes_logger)],
) -> Response:
    """Trade a one-time grant for a session bearer token."""
    form = await request.form()
    try:
        payload = TokenRequest.model_validate(
            {key: value for key, value in form.items() if isinstance(value, str)}
        )
    except ValueError:
        return _error_response(InvalidGrant("Malformed token request."))

    if payload.grant_type != "authorization_code" or not payload.code or not payload.client_id:
        return _error_response(
            InvalidGrant("authorization_code grant with code and client_id is required.")
        )

    try:
        access_token, session = provider.exchange_grant(
            code=payload.code,
            client_id=payload.client_id,
            redirect_uri=payload.redirect_uri,
            code_verifier=payload.code_verifier,
        )
    except GatewayError as exc:
        logger.warning("Token request rejected", extra={"reason": exc.message})
        return _error_response(exc)

    body = TokenResponse(
        access_token=access_token,
        expires_in=provider.session_ttl_seconds,
        scope=" ".join(session.scope),
    )
    return JSONResponse(content=body.model_dump(), headers={"Cache-Control": "no-store"})


@router.post("/mcp")
async def session_stream(
    request: Request,
    provider: Annotated[Any, Depends(get_authorization_provider)],
    hub: Annotated[Any, Depends(get_session_hub)],
    ready_timeout: Annotated[float, Depends(get_ready_timeout)],
    logger: Annotated[ContextLogger, Depends(get_routes_logger)],
) -> Response:
    """Stream entry: every message passes through the session's recovery first."""
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    grant = provider.resolve_session(token.strip()) if scheme.lower() == "bearer" else None
    if grant is None:
        return _error_response(Unauthenticated())

    try:
        message = json.loads(await request.body())
    except ValueError:
        return JSONResponse(
            content={
                "jsonrpc": "2.0",
                "id": None,
                "error": {"code": rpc.PARSE_ERROR, "message": "Parse error"},
            },
            status_code=HTTPStatus.BAD_REQUEST,
        )

    session = hub.get_or_create(grant)
    try:
        reply = await session.handle_stream(message, ready_timeout=ready_timeout)
    except GatewayError as exc:
        logger.error(
            "Session stream rejected",
            extra={"session": grant.session_id[:8], "reason": exc.code},
        )
        if isinstance(exc, RecoveryExhausted):
            hub.drop(grant.session_id)
        return _error_response(exc)

    if reply is None:
        return Response(status_code=HTTPStatus.ACCEPTED)
    return JSONResponse(content=reply)


__all__ = ["router"]
