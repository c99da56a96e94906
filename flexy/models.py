"""Pydantic models shared by the Flexy chat client.

Covers the three shapes that cross the client's boundaries: chart records
(decoded from assistant output), inbound/outbound WebSocket frames, and the
messages that make up the visible chat log.
"""

from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union, get_args

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

DEFAULT_CHART_TITLE = "Chart"

ChartKind = Literal["bar", "line", "pie", "scatter", "doughnut"]
CHART_KINDS: tuple[str, ...] = get_args(ChartKind)

Role = Literal["user", "assistant"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConnectionStatus(str, enum.Enum):
    """Observable state of the chat connection."""

    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Chart records
# ---------------------------------------------------------------------------


class ChartDataset(BaseModel):
    """One labeled series inside a chart's data payload."""

    model_config = ConfigDict(extra="allow", frozen=True)

    label: str = ""
    data: list[Any] = Field(default_factory=list)
    backgroundColor: list[str] | str | None = None
    borderColor: list[str] | str | None = None
    borderWidth: float | None = None


class ChartSeries(BaseModel):
    """Labels plus datasets, in the layout chart renderers expect."""

    model_config = ConfigDict(extra="allow", frozen=True)

    labels: list[Any] = Field(default_factory=list)
    datasets: list[ChartDataset] = Field(default_factory=list)


class ChartRecord(BaseModel):
    """Normalized description of a single chart.

    Built once when a message is ingested and never mutated afterwards.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    type: ChartKind
    title: str = DEFAULT_CHART_TITLE
    data: ChartSeries = Field(default_factory=ChartSeries)
    options: dict[str, Any] | None = None
    insights: list[str] = Field(default_factory=list)

    @field_validator("title", mode="before")
    @classmethod
    def _default_title(cls, value: Any) -> str:
        if value is None:
            return DEFAULT_CHART_TITLE
        if not isinstance(value, str):
            value = str(value)
        return value if value.strip() else DEFAULT_CHART_TITLE

    @field_validator("insights", mode="before")
    @classmethod
    def _coerce_insights(cls, value: Any) -> list[str]:
        if not value:
            return []
        if isinstance(value, str):
            return [value]
        return [str(item) for item in value]


# ---------------------------------------------------------------------------
# WebSocket frames
# ---------------------------------------------------------------------------


class FrameData(BaseModel):
    """Structured metadata attached to an ``ai_response`` frame."""

    model_config = ConfigDict(extra="allow", frozen=True)

    insight_id: int | str | None = None
    chart_config: Any = None
    chart_data: Any = None


class UserMessageFrame(BaseModel):
    """Outbound user text (the server does not echo these back)."""

    model_config = ConfigDict(frozen=True)

    type: Literal["user_message"] = "user_message"
    content: str


class AIResponseFrame(BaseModel):
    """Assistant reply, optionally carrying chart metadata."""

    model_config = ConfigDict(frozen=True)

    type: Literal["ai_response"] = "ai_response"
    content: str = ""
    data: FrameData | None = None


InboundFrame = Annotated[
    Union[UserMessageFrame, AIResponseFrame],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Chat log
# ---------------------------------------------------------------------------


class MessageMetadata(BaseModel):
    """Optional extras the backend attaches to a message."""

    model_config = ConfigDict(extra="allow", frozen=True)

    insight_id: int | str | None = None
    processing_time: float | None = None
    tokens_used: int | None = None
    error_message: str | None = None


class Message(BaseModel):
    """One entry of the visible chat log.

    ``embedded_charts`` and ``display_text`` are the decoration computed by
    the chart extractor at ingestion time; renderers use them instead of
    re-parsing ``content``.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    session_id: str
    role: Role = Field(validation_alias=AliasChoices("role", "message_type"))
    content: str = ""
    chart_data: ChartRecord | None = None
    metadata: MessageMetadata | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    embedded_charts: tuple[ChartRecord, ...] = ()
    display_text: str = ""

    @field_validator("id", "session_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        # History rows carry integer ids
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    @property
    def charts(self) -> tuple[ChartRecord, ...]:
        """Every chart to display for this message, attached one first."""
        if self.chart_data is not None and self.chart_data not in self.embedded_charts:
            return (self.chart_data, *self.embedded_charts)
        return self.embedded_charts


class ChatSessionInfo(BaseModel):
    """Response of the session-creation endpoint."""

    id: int | str | None = None
    workspace_id: int | str | None = None
    session_id: str
    created_at: datetime | None = None
