"""REST client for the Flexy backend.

Thin ``httpx`` wrappers: call the endpoint, return the decoded JSON, and
raise ``APIError`` for any non-2xx response. Retry and fallback decisions
belong to the callers.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from flexy.config import Settings, get_settings
from flexy.exceptions import APIError
from flexy.models import ChatSessionInfo
from flexy.services.auth_service import TokenStore

logger = logging.getLogger(__name__)


class APIClient:
    """JSON-over-HTTP client with bearer auth and error normalization."""

    def __init__(
        self,
        base_url: str,
        *,
        token_store: TokenStore,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token_store = token_store
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        token_store: TokenStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> APIClient:
        settings = settings or get_settings()
        return cls(
            settings.api_base_url,
            token_store=token_store or TokenStore.from_settings(settings),
            timeout=settings.http_timeout,
            transport=transport,
        )

    def _auth_headers(self) -> dict[str, str]:
        token = self.token_store.get_token()
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _handle_response(self, response: httpx.Response) -> Any:
        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = {}
            if not isinstance(body, dict):
                body = {}
            message = body.get("message") or body.get("error") or "An error occurred"
            raise APIError(message, status=response.status_code, code=body.get("code"))

        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            return response.text
        try:
            return response.json()
        except ValueError:
            raise APIError("Invalid JSON response", status=response.status_code) from None

    async def request(self, method: str, endpoint: str, *, json: Any = None) -> Any:
        """Send a request to ``base_url + endpoint`` and return the decoded body.

        Raises:
            APIError: The backend answered with an error status or with a
                JSON body that does not parse. A 401 also clears the stored
                token.
            httpx.HTTPError: The request never got a response.
        """
        url = f"{self.base_url}{endpoint}"
        logger.debug("%s %s", method, url)
        response = await self._client.request(
            method, url, json=json, headers=self._auth_headers()
        )
        try:
            return await self._handle_response(response)
        except APIError as exc:
            if exc.is_unauthorized:
                self.token_store.clear()
            raise

    async def get(self, endpoint: str) -> Any:
        return await self.request("GET", endpoint)

    async def post(self, endpoint: str, data: Any = None) -> Any:
        return await self.request("POST", endpoint, json=data)

    async def aclose(self) -> None:
        await self._client.aclose()


class ChatAPI:
    """Chat session endpoints."""

    def __init__(self, client: APIClient) -> None:
        self.client = client

    async def create_chat_session(self, workspace_id: int | str) -> ChatSessionInfo:
        body = await self.client.post("/chat/sessions", {"workspace_id": workspace_id})
        return ChatSessionInfo.model_validate(body)

    async def get_chat_messages(self, session_id: str) -> list[dict]:
        """Return the raw history entries for *session_id*, oldest first."""
        body = await self.client.get(f"/chat/sessions/{quote(session_id, safe='')}/messages")
        if not isinstance(body, dict):
            return []
        return list(body.get("messages") or [])

    async def send_message(self, session_id: str, content: str) -> dict:
        """Post a message over REST (used when no live connection is wanted)."""
        return await self.client.post(
            f"/chat/sessions/{quote(session_id, safe='')}/messages", {"content": content}
        )
