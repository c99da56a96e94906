"""Chat service: session orchestration for one workspace chat.

Bridges the session identifier lifecycle, history retrieval and the live
WebSocket connection into a single append-only message log.

Flow:
1. Resolve a session: reuse the given identifier, or create one for the
   workspace. If creation fails, fall back to a provisional identifier and
   run in degraded (offline) mode.
2. Seed the log with prior history (real sessions only).
3. Attach a ``ChatConnectionManager`` (real sessions only).
4. Append assistant replies from ``ai_response`` frames, decorated with the
   charts found in them, and user messages as they are authored.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import uuid4

import httpx
from pydantic import ValidationError

from flexy.config import Settings, get_settings
from flexy.exceptions import APIError
from flexy.models import (
    AIResponseFrame,
    ConnectionStatus,
    Message,
    MessageMetadata,
    UserMessageFrame,
)
from flexy.services.api_client import ChatAPI
from flexy.services.auth_service import TokenStore
from flexy.services.chart_extractor import (
    coerce_chart,
    contains_chart_markers,
    extract_charts,
    resolve_chart,
)
from flexy.services.connection_manager import ChatConnectionManager, MessageCallback
from flexy.services.session_ids import (
    is_provisional_session_id,
    is_real_session_id,
    make_provisional_session_id,
)

logger = logging.getLogger(__name__)

OFFLINE_REPLY = (
    "The live assistant is not reachable right now, so this reply was generated "
    "locally. Your message is kept in this chat; ask again once the backend is back."
)

ConnectionFactory = Callable[[str, MessageCallback], ChatConnectionManager]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _coerce_metadata(raw: Any) -> MessageMetadata | None:
    """Validate message metadata; invalid metadata is dropped, never the message."""
    if not isinstance(raw, dict) or not raw:
        return None
    try:
        return MessageMetadata.model_validate(raw)
    except ValidationError as exc:
        logger.warning("Dropping invalid message metadata: %s", exc.errors()[:1])
        return None


class ChatService:
    """Owns the message log and the connection for one chat session."""

    def __init__(
        self,
        chat_api: ChatAPI,
        *,
        workspace_id: int | str | None = None,
        session_id: str | None = None,
        settings: Settings | None = None,
        token_store: TokenStore | None = None,
        connection_factory: ConnectionFactory | None = None,
        on_message: Callable[[Message], Any] | None = None,
    ) -> None:
        self.chat_api = chat_api
        self.workspace_id = workspace_id
        self.settings = settings or get_settings()
        self.token_store = token_store or TokenStore.from_settings(self.settings)
        self._connection_factory = connection_factory or self._default_connection
        self._on_message = on_message

        self._session_id = session_id or None
        self._messages: list[Message] = []
        self._connection: ChatConnectionManager | None = None
        self._history_loaded = False
        self._pending: set[asyncio.Task] = set()
        self._closed = False

    # -- Outputs ------------------------------------------------------------

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def is_provisional(self) -> bool:
        return is_provisional_session_id(self._session_id)

    @property
    def connection_status(self) -> ConnectionStatus:
        if self._connection is None:
            return ConnectionStatus.DISCONNECTED
        return self._connection.status

    # -- Lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Resolve the session, load history, then attach the connection."""
        await self.ensure_session()
        await self.load_history()
        self._attach_connection()

    async def ensure_session(self) -> str | None:
        """Return the session id, creating one for the workspace if needed.

        Never raises: a failed creation yields a provisional identifier.
        """
        if self._session_id:
            return self._session_id
        if self.workspace_id is None:
            logger.debug("No workspace context; chat session not initialized")
            return None

        try:
            info = await self.chat_api.create_chat_session(self.workspace_id)
            if not info.session_id.strip():
                raise APIError("Empty session id in response", status=200)
            self._session_id = info.session_id
            logger.info("Chat session created: %s", self._session_id)
        except (APIError, httpx.HTTPError, ValidationError) as exc:
            self._session_id = make_provisional_session_id(self.workspace_id)
            logger.warning(
                "Failed to create chat session for workspace %s (%s); using fallback session %s",
                self.workspace_id,
                exc,
                self._session_id,
            )
        return self._session_id

    async def load_history(self) -> None:
        """Seed the log with the session's prior messages, at most once."""
        session_id = self._session_id
        if self._history_loaded or not is_real_session_id(session_id):
            logger.debug("Skipping message loading for session %r", session_id)
            return
        self._history_loaded = True

        try:
            raw_messages = await self.chat_api.get_chat_messages(session_id)
        except (APIError, httpx.HTTPError) as exc:
            # Backend unavailable: start with an empty chat
            logger.warning("Failed to load existing messages for %s: %s", session_id, exc)
            return

        history = [
            message
            for message in (self._message_from_history(raw) for raw in raw_messages)
            if message is not None
        ]
        self._messages[:0] = history
        logger.info("Loaded %d existing messages for session %s", len(history), session_id)

    def reconnect(self) -> None:
        if self._connection is not None:
            self._connection.reconnect()

    async def close(self) -> None:
        """Cancel pending local replies and tear down the connection."""
        self._closed = True
        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if self._connection is not None:
            await self._connection.aclose()

    # -- Inbound ------------------------------------------------------------

    def handle_frame(self, frame: UserMessageFrame | AIResponseFrame) -> Message | None:
        """Append the assistant message carried by an inbound frame."""
        if self._closed:
            return None
        if not isinstance(frame, AIResponseFrame):
            logger.debug("Ignoring inbound %s frame", frame.type)
            return None

        metadata = None
        if frame.data is not None:
            metadata = _coerce_metadata(
                frame.data.model_dump(exclude={"chart_config", "chart_data"}, exclude_none=True)
            )

        message = self._build_message(
            role="assistant",
            content=frame.content,
            chart_data=resolve_chart(frame),
            metadata=metadata,
        )
        self._append(message)
        return message

    # -- Outbound -----------------------------------------------------------

    def send_message(self, content: str) -> Message | None:
        """Append a user message and deliver it, or reply locally when offline."""
        text = content.strip()
        if not text or not self._session_id or self._closed:
            return None

        message = self._build_message(role="user", content=text)
        self._append(message)

        if self._connection is not None and self.connection_status is ConnectionStatus.CONNECTED:
            self._connection.send(text)
        else:
            logger.info(
                "WebSocket not connected (%s), replying locally",
                self.connection_status.value,
            )
            self._spawn(self._reply_offline())
        return message

    # -- Internals ----------------------------------------------------------

    def _default_connection(self, session_id: str, on_message: MessageCallback) -> ChatConnectionManager:
        return ChatConnectionManager.from_settings(
            session_id,
            self.settings,
            token_provider=self.token_store.get_token,
            on_message=on_message,
        )

    def _attach_connection(self) -> None:
        session_id = self._session_id
        if not is_real_session_id(session_id):
            logger.info("Chat running offline for session %r", session_id)
            return
        if self._connection is None or self._connection.session_id != session_id:
            if self._connection is not None:
                self._connection.disconnect()
            self._connection = self._connection_factory(session_id, self.handle_frame)
        self._connection.connect()

    async def _reply_offline(self) -> None:
        await asyncio.sleep(self.settings.offline_reply_delay)
        self._append(self._build_message(role="assistant", content=OFFLINE_REPLY))

    def _build_message(self, **fields: Any) -> Message:
        fields.setdefault("id", str(uuid4()))
        fields.setdefault("session_id", self._session_id or "")
        fields.setdefault("created_at", _utcnow())
        content = fields.get("content") or ""
        role = fields.get("role", fields.get("message_type"))

        embedded = []
        display_text = content.strip()
        if role == "assistant" and contains_chart_markers(content):
            embedded, display_text = extract_charts(content)

        return Message.model_validate(
            {**fields, "embedded_charts": embedded, "display_text": display_text}
        )

    def _message_from_history(self, raw: Any) -> Message | None:
        if not isinstance(raw, dict):
            return None
        fields = dict(raw)
        fields["chart_data"] = coerce_chart(fields.get("chart_data"))
        fields["metadata"] = _coerce_metadata(fields.get("metadata"))
        try:
            return self._build_message(**fields)
        except ValidationError as exc:
            logger.warning("Skipping malformed history message: %s", exc.errors()[:1])
            return None

    def _append(self, message: Message) -> None:
        self._messages.append(message)
        if self._on_message is None:
            return
        try:
            self._on_message(message)
        except Exception:
            logger.exception("Message listener failed")

    def _spawn(self, coro: Any) -> None:
        task = asyncio.ensure_future(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
