"""Domain exception classes for the Flexy chat client.

Raised by the REST collaborators in ``flexy.services.api_client`` and caught
by the session orchestrator, which degrades instead of propagating them.
"""

from __future__ import annotations


class APIError(Exception):
    """Raised when the backend answers a REST call with a non-2xx status."""

    def __init__(self, message: str, *, status: int, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status
        self.code = code

    @property
    def is_unauthorized(self) -> bool:
        return self.status == 401
