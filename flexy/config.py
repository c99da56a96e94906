"""Client configuration loaded from environment variables.

All fields are optional; every value can be overridden with a ``FLEXY_``
prefixed environment variable (or a ``.env`` file).
"""

from __future__ import annotations

import functools

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Flexy chat client settings."""

    # Endpoints
    api_base_url: str = "http://localhost:8080/api"
    ws_base_url: str = "ws://localhost:8080/ws"

    # Credential used for REST calls and the WebSocket query string
    auth_token: str | None = None

    http_timeout: float = 30.0
    open_timeout: float = 10.0

    # Reconnection policy
    max_reconnect_attempts: int = 5
    immediate_disconnect_threshold: float = 5.0
    manual_reconnect_delay: float = 1.0

    # Degraded mode
    offline_reply_delay: float = 1.0

    model_config = {
        "env_prefix": "FLEXY_",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }


@functools.lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance (singleton)."""
    return Settings()
