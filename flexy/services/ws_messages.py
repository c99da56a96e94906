"""WebSocket frame factory and decoder.

Outbound frames are plain dicts with a ``type`` field, serialized with
``json.dumps`` by the connection manager. Inbound text is decoded into the
``InboundFrame`` union; anything that does not decode yields ``None`` so one
bad frame never takes the connection down.
"""

from __future__ import annotations

import json
import logging

from pydantic import TypeAdapter, ValidationError

from flexy.models import AIResponseFrame, InboundFrame, UserMessageFrame

logger = logging.getLogger(__name__)

# Close codes
NORMAL_CLOSURE = 1000
ABNORMAL_CLOSURE = 1006

MANUAL_DISCONNECT_REASON = "Manual disconnect"

_frame_adapter: TypeAdapter[UserMessageFrame | AIResponseFrame] = TypeAdapter(InboundFrame)


def user_message(*, content: str) -> dict:
    """User-authored chat text.

    Format: type=user_message, content=content
    """
    return {"type": "user_message", "content": content}


def encode(frame: dict) -> str:
    """Serialize an outbound frame for the wire."""
    return json.dumps(frame)


def decode_frame(raw: str | bytes) -> UserMessageFrame | AIResponseFrame | None:
    """Decode one inbound text frame, or return None if it is malformed."""
    try:
        return _frame_adapter.validate_json(raw)
    except ValidationError as exc:
        logger.warning("Failed to parse WebSocket message: %s", exc.errors()[:1])
        return None
