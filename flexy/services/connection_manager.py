"""WebSocket connection manager for a chat session.

Owns the single live connection for one chat session identifier: opens it,
pumps inbound frames to the registered handler, and applies the
reconnection policy when it closes.

State machine::

    disconnected --connect()--> connecting --open--> connected
    connecting|connected --close/error--> disconnected

Reconnection policy on close: stop when the close code is 1000 (normal /
manual), when ``max_reconnect_attempts`` retries have already been made, or
when the connection lived less than ``immediate_disconnect_threshold``
seconds (a backend that rejects the socket outright). Otherwise retry after
``2 ** attempts`` seconds.

All methods run on the event loop thread. ``connect`` / ``disconnect`` are
synchronous so reentrancy checks and teardown take effect immediately.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable
from urllib.parse import quote

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from flexy.config import Settings
from flexy.models import AIResponseFrame, ConnectionStatus, UserMessageFrame
from flexy.services import ws_messages
from flexy.services.session_ids import is_provisional_session_id

logger = logging.getLogger(__name__)

MessageCallback = Callable[[UserMessageFrame | AIResponseFrame], Any]
Opener = Callable[[str], Awaitable[Any]]

_LIVE_STATES = (State.CONNECTING, State.OPEN)


def websocket_opener(open_timeout: float = 10.0) -> Opener:
    """Return an opener that dials *url* with the ``websockets`` client."""

    async def _open(url: str) -> Any:
        return await ws_connect(url, open_timeout=open_timeout)

    return _open


class ChatConnectionManager:
    """Maintains at most one WebSocket for ``session_id``."""

    def __init__(
        self,
        session_id: str,
        *,
        ws_base_url: str,
        token_provider: Callable[[], str | None],
        on_message: MessageCallback | None = None,
        on_connect: Callable[[], Any] | None = None,
        on_disconnect: Callable[[], Any] | None = None,
        on_error: Callable[[BaseException], Any] | None = None,
        opener: Opener | None = None,
        clock: Callable[[], float] = time.monotonic,
        max_reconnect_attempts: int = 5,
        immediate_disconnect_threshold: float = 5.0,
        manual_reconnect_delay: float = 1.0,
    ) -> None:
        self.session_id = session_id
        self.ws_base_url = ws_base_url
        self.max_reconnect_attempts = max_reconnect_attempts
        self.immediate_disconnect_threshold = immediate_disconnect_threshold
        self.manual_reconnect_delay = manual_reconnect_delay

        self._token_provider = token_provider
        self._on_message = on_message
        self._on_connect = on_connect
        self._on_disconnect = on_disconnect
        self._on_error = on_error
        self._opener = opener or websocket_opener()
        self._clock = clock

        self._status = ConnectionStatus.DISCONNECTED
        self._ws: Any = None
        self._reader: asyncio.Task | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._connecting = False
        self._reconnect_attempts = 0
        self._started_at = 0.0
        self._background: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        session_id: str,
        settings: Settings,
        *,
        token_provider: Callable[[], str | None],
        **kwargs: Any,
    ) -> ChatConnectionManager:
        kwargs.setdefault("opener", websocket_opener(settings.open_timeout))
        return cls(
            session_id,
            ws_base_url=settings.ws_base_url,
            token_provider=token_provider,
            max_reconnect_attempts=settings.max_reconnect_attempts,
            immediate_disconnect_threshold=settings.immediate_disconnect_threshold,
            manual_reconnect_delay=settings.manual_reconnect_delay,
            **kwargs,
        )

    # -- Read-only state ----------------------------------------------------

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def has_pending_reconnect(self) -> bool:
        return self._timer is not None

    def _set_status(self, status: ConnectionStatus) -> None:
        if status is not self._status:
            logger.debug("Session %s: %s -> %s", self.session_id, self._status.value, status.value)
            self._status = status

    def _is_live(self) -> bool:
        return self._ws is not None and getattr(self._ws, "state", None) in _LIVE_STATES

    def _build_url(self, token: str) -> str:
        base = self.ws_base_url.rstrip("/")
        return f"{base}/chat/{quote(self.session_id, safe='')}?token={quote(token, safe='')}"

    # -- Public operations --------------------------------------------------

    def connect(self) -> None:
        """Open the connection unless one is already open or being opened."""
        if not self.session_id or not self.session_id.strip():
            logger.info("WebSocket connection skipped: missing session id")
            self._set_status(ConnectionStatus.DISCONNECTED)
            return

        if is_provisional_session_id(self.session_id):
            logger.info("WebSocket connection skipped: provisional session %s", self.session_id)
            self._set_status(ConnectionStatus.DISCONNECTED)
            return

        token = self._token_provider()
        if not token:
            logger.info("WebSocket connection skipped: not authenticated")
            self._set_status(ConnectionStatus.DISCONNECTED)
            return

        if not self.ws_base_url or not self.ws_base_url.strip():
            logger.info("WebSocket connection skipped: no backend server configured")
            self._set_status(ConnectionStatus.DISCONNECTED)
            return

        # The flag flips synchronously; the socket's own state may lag behind it.
        if self._connecting or self._is_live():
            logger.debug("WebSocket connection skipped: already connecting or connected")
            return

        url = self._build_url(token)
        self._set_status(ConnectionStatus.CONNECTING)
        self._started_at = self._clock()
        self._connecting = True
        self._reader = asyncio.get_running_loop().create_task(self._run(url))

    def disconnect(self) -> None:
        """Tear down the connection and cancel any scheduled reconnect.

        Closes with code 1000 so no reconnection is attempted. Callbacks are
        not invoked.
        """
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

        reader, self._reader = self._reader, None
        if reader is not None and not reader.done():
            reader.cancel()

        ws, self._ws = self._ws, None
        if ws is not None:
            self._spawn(self._close_socket(ws))

        self._reconnect_attempts = 0
        self._connecting = False
        self._set_status(ConnectionStatus.DISCONNECTED)

    def reconnect(self) -> None:
        """Drop the current connection and connect afresh after a short delay."""
        self.disconnect()
        self._reconnect_attempts = 0
        self._timer = self._call_later(self.manual_reconnect_delay, self._fire_manual_reconnect)

    def send(self, content: str) -> bool:
        """Transmit a ``user_message`` frame without waiting for delivery.

        Returns False if the connection is not open. When the socket already
        reports CLOSED a fresh ``connect()`` is started; the message itself is
        not queued.
        """
        ws = self._ws
        state = getattr(ws, "state", None)
        if ws is not None and state is State.OPEN and self._status is ConnectionStatus.CONNECTED:
            frame = ws_messages.user_message(content=content)
            self._spawn(self._transmit(ws, frame))
            return True

        logger.error(
            "WebSocket not ready: status=%s has_socket=%s state=%s session=%s",
            self._status.value,
            ws is not None,
            getattr(state, "name", None),
            self.session_id,
        )
        if state is State.CLOSED:
            logger.info("WebSocket is closed, attempting to reconnect")
            self.connect()
        return False

    async def aclose(self) -> None:
        """Disconnect and wait for the socket close handshake to finish."""
        self.disconnect()
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # -- Reader task --------------------------------------------------------

    async def _run(self, url: str) -> None:
        try:
            ws = await self._opener(url)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.info("WebSocket connection failed - backend server not available: %s", exc)
            self._handle_error(exc)
            self._handle_close(ws_messages.ABNORMAL_CLOSURE)
            return

        self._ws = ws
        self._handle_open()

        code: int | None = None
        try:
            async for raw in ws:
                self._handle_message(raw)
        except ConnectionClosed as exc:
            if exc.rcvd is not None:
                code = exc.rcvd.code
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("WebSocket read failed for session %s: %s", self.session_id, exc)
            self._handle_error(exc)

        if code is None:
            code = getattr(ws, "close_code", None) or ws_messages.ABNORMAL_CLOSURE
        self._handle_close(code)

    # -- Event handlers -----------------------------------------------------

    def _handle_open(self) -> None:
        logger.info("WebSocket connected for session %s", self.session_id)
        self._set_status(ConnectionStatus.CONNECTED)
        self._reconnect_attempts = 0
        self._connecting = False
        self._invoke(self._on_connect)

    def _handle_message(self, raw: str | bytes) -> None:
        frame = ws_messages.decode_frame(raw)
        if frame is None:
            return
        self._invoke(self._on_message, frame)

    def _handle_error(self, exc: BaseException) -> None:
        self._set_status(ConnectionStatus.ERROR)
        self._ws = None
        self._connecting = False
        self._invoke(self._on_error, exc)

    def _handle_close(self, code: int) -> None:
        lifetime = self._clock() - self._started_at
        logger.info("WebSocket disconnected: session=%s code=%s", self.session_id, code)
        self._set_status(ConnectionStatus.DISCONNECTED)
        self._ws = None
        self._reader = None
        self._connecting = False
        self._invoke(self._on_disconnect)
        self._apply_reconnect_policy(code, lifetime)

    def _apply_reconnect_policy(self, code: int, lifetime: float) -> None:
        immediate = lifetime < self.immediate_disconnect_threshold
        if (
            code == ws_messages.NORMAL_CLOSURE
            or self._reconnect_attempts >= self.max_reconnect_attempts
            or immediate
        ):
            logger.info(
                "WebSocket reconnection stopped: code=%s attempts=%d immediate=%s",
                code,
                self._reconnect_attempts,
                immediate,
            )
            return

        delay = 2 ** self._reconnect_attempts
        logger.info(
            "WebSocket reconnecting in %ss (attempt %d/%d)",
            delay,
            self._reconnect_attempts + 1,
            self.max_reconnect_attempts,
        )
        self._timer = self._call_later(delay, self._fire_reconnect)

    def _fire_reconnect(self) -> None:
        self._timer = None
        self._reconnect_attempts += 1
        self.connect()

    def _fire_manual_reconnect(self) -> None:
        self._timer = None
        self.connect()

    # -- Helpers ------------------------------------------------------------

    def _call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    def _invoke(self, callback: Callable[..., Any] | None, *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("WebSocket %s callback failed", getattr(callback, "__name__", "event"))

    async def _transmit(self, ws: Any, frame: dict) -> None:
        try:
            await ws.send(ws_messages.encode(frame))
        except ConnectionClosed as exc:
            logger.warning("WebSocket send failed, connection closed: %s", exc)

    async def _close_socket(self, ws: Any) -> None:
        try:
            await ws.close(code=ws_messages.NORMAL_CLOSURE, reason=ws_messages.MANUAL_DISCONNECT_REASON)
        except Exception:
            logger.debug("Ignoring error while closing WebSocket", exc_info=True)
