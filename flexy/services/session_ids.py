"""Session identifier helpers.

A *provisional* identifier is fabricated locally when the backend cannot
issue a real session. It keeps the chat usable offline but must never be
used for history retrieval or to open a connection.
"""

from __future__ import annotations

import time

PROVISIONAL_PREFIX = "fallback-"


def make_provisional_session_id(workspace_id: int | str) -> str:
    """Return ``fallback-{workspace_id}-{epoch_millis}``."""
    return f"{PROVISIONAL_PREFIX}{workspace_id}-{int(time.time() * 1000)}"


def is_provisional_session_id(session_id: str | None) -> bool:
    return bool(session_id) and session_id.startswith(PROVISIONAL_PREFIX)


def is_real_session_id(session_id: str | None) -> bool:
    """True for a non-blank, server-issued identifier."""
    if not session_id or not session_id.strip():
        return False
    return not is_provisional_session_id(session_id)
