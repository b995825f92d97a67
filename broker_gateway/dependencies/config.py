"""
FastAPI dependency utilities for injecting configuration.
"""

from fastapi import Depends

from broker_gateway.core.config import AppSettings, get_settings


def get_app_settings() -> AppSettings:
    """FastAPI dependency returning application settings."""
    return get_settings()


def get_ready_timeout() -> float:
    """Seconds a stream entry waits for its session to become ready."""
    return get_settings().session.ready_timeout_seconds


SettingsDependency = Depends(get_app_settings)

__all__ = ["SettingsDependency", "get_app_settings", "get_ready_timeout"]
