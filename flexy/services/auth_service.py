"""Bearer-token storage for the chat client.

Login itself happens elsewhere; this store only holds the opaque token the
REST client and the WebSocket connection present to the backend.
"""

from __future__ import annotations

import logging

from flexy.config import Settings, get_settings

logger = logging.getLogger(__name__)


class TokenStore:
    """Holds the current bearer token (if any)."""

    def __init__(self, token: str | None = None) -> None:
        self._token = token or None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> TokenStore:
        settings = settings or get_settings()
        return cls(settings.auth_token)

    def get_token(self) -> str | None:
        return self._token

    def clear(self) -> None:
        """Forget the token, e.g. after the backend rejected it."""
        if self._token is not None:
            logger.info("Clearing stored auth token")
        self._token = None
