"""
FastAPI application entrypoint for the brokerage gateway.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from broker_gateway.api.routes import router as api_router
from broker_gateway.core.config import get_settings
from broker_gateway.core.logging import configure_logging
from broker_gateway.dependencies import get_session_hub


@asynccontextmanager
async def _lifespan(app: FastAPI):
    yield
    await get_session_hub().close()


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title=settings.server_name,
        version="0.1.0",
        description="OAuth broker and session host for brokerage tool access.",
        lifespan=_lifespan,
    )
    app.include_router(api_router)
    return app


app = create_app()

__all__ = ["app", "create_app"]
