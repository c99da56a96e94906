"""Chart payload extraction from mixed assistant output.

Assistant replies are free text that may embed any number of JSON chart
descriptions. This module finds every balanced ``{...}`` block, decodes the
ones that describe a chart, and returns the charts together with the prose
that remains once their source text is cut out.

Three chart shapes are accepted, all treated as equally valid:

- envelope:  ``{"response_type": "chart", "chart_config": {...}, "insights": [...]}``
- nested:    ``{"chart_config": {"type": "pie", ...}}``
- bare:      ``{"type": "bar", "title": "...", "data": {...}}``

Everything here is pure; malformed blocks are skipped, never raised.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable

from pydantic import ValidationError

from flexy.models import CHART_KINDS, AIResponseFrame, ChartRecord

logger = logging.getLogger(__name__)

_CHART_MARKERS = re.compile(
    r'"chart_config"'
    r'|"response_type"\s*:\s*"chart"'
    r'|"(?:chart_)?type"\s*:\s*"(?:' + "|".join(CHART_KINDS) + r')"'
)
_SEPARATOR_ONLY = re.compile(r"[\s,]*")
_EDGE_ARTIFACTS = re.compile(r"^[\s,]+|[\s,]+$")
_WHITESPACE_RUN = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Block scanning
# ---------------------------------------------------------------------------


def find_json_blocks(text: str) -> list[tuple[int, int]]:
    """Return ``(start, end)`` spans of every maximal balanced ``{...}`` block.

    Counting nesting depth keeps nested objects (a chart's ``data``) inside
    their parent block. A ``}`` with no open block is ignored.
    """
    spans: list[tuple[int, int]] = []
    depth = 0
    start = -1
    for index, char in enumerate(text):
        if char == "{":
            if depth == 0:
                start = index
            depth += 1
        elif char == "}":
            if depth == 0:
                continue
            depth -= 1
            if depth == 0:
                spans.append((start, index + 1))
    return spans


def contains_chart_markers(text: str) -> bool:
    """Cheap check for text that may carry an embedded chart."""
    return bool(_CHART_MARKERS.search(text))


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def normalize_chart(obj: Any) -> ChartRecord | None:
    """Normalize a decoded JSON object to a ChartRecord, or None if it is not a chart."""
    if not isinstance(obj, dict):
        return None

    config = obj.get("chart_config")
    if obj.get("response_type") == "chart" and isinstance(config, dict):
        candidate = config
    elif isinstance(config, dict) and (config.get("type") or config.get("chart_type")):
        candidate = config
    elif obj.get("type") in CHART_KINDS:
        candidate = obj
    else:
        return None

    fields = dict(candidate)
    if not fields.get("type") and fields.get("chart_type"):
        fields["type"] = fields["chart_type"]
    # Outer envelope insights win over the inner config's
    fields["insights"] = obj.get("insights") or candidate.get("insights") or []

    try:
        return ChartRecord.model_validate(fields)
    except ValidationError as exc:
        logger.debug("Discarding chart candidate: %s", exc.errors()[:1])
        return None


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


def _join_remaining(text: str, removed: list[tuple[int, int]]) -> str:
    pieces: list[str] = []
    cursor = 0
    for start, end in removed:
        pieces.append(text[cursor:start])
        cursor = end
    pieces.append(text[cursor:])

    kept = [piece.strip() for piece in pieces if not _SEPARATOR_ONLY.fullmatch(piece)]
    return _EDGE_ARTIFACTS.sub("", _WHITESPACE_RUN.sub(" ", " ".join(kept)))


def extract_charts(text: str) -> tuple[list[ChartRecord], str]:
    """Split *text* into chart records and the remaining prose.

    Returns:
        ``(charts, remainder)``: charts in source order, and the text with
        each accepted block removed. Once a block is removed, whitespace runs
        collapse to single spaces; with no chart the text is only trimmed.
        Blocks that fail to decode or are not charts stay in the remainder.
        The remainder may be empty.
    """
    charts: list[ChartRecord] = []
    removed: list[tuple[int, int]] = []

    for start, end in find_json_blocks(text):
        source = text[start:end]
        try:
            parsed = json.loads(source)
        except json.JSONDecodeError as exc:
            logger.debug("Skipping undecodable block at %d: %s", start, exc)
            continue

        chart = normalize_chart(parsed)
        if chart is None:
            continue
        charts.append(chart)
        removed.append((start, end))

    if not removed:
        return charts, text.strip()

    logger.debug("Extracted %d chart(s) from %d characters", len(charts), len(text))
    return charts, _join_remaining(text, removed)


# ---------------------------------------------------------------------------
# Chart resolution for a single frame
# ---------------------------------------------------------------------------


def coerce_chart(candidate: Any) -> ChartRecord | None:
    """Normalize a chart delivered as structured metadata.

    Accepts any of the three shapes, a bare config keyed by ``chart_type``,
    or the same as a JSON string.
    """
    if isinstance(candidate, str):
        try:
            candidate = json.loads(candidate)
        except json.JSONDecodeError:
            return None
    if not isinstance(candidate, dict):
        return None
    return normalize_chart(candidate) or normalize_chart({"chart_config": candidate})


def _chart_from_metadata(frame: AIResponseFrame) -> ChartRecord | None:
    if frame.data is None:
        return None
    return coerce_chart(frame.data.chart_config) or coerce_chart(frame.data.chart_data)


def _chart_from_content(frame: AIResponseFrame) -> ChartRecord | None:
    charts, _ = extract_charts(frame.content)
    return charts[0] if charts else None


_CHART_SOURCES: tuple[Callable[[AIResponseFrame], ChartRecord | None], ...] = (
    _chart_from_metadata,
    _chart_from_content,
)


def resolve_chart(frame: AIResponseFrame) -> ChartRecord | None:
    """Return the chart attached to *frame*, trying each source in priority order.

    Structured metadata wins; the frame content is scanned only when the
    metadata carries no usable chart.
    """
    for source in _CHART_SOURCES:
        chart = source(frame)
        if chart is not None:
            return chart
    return None
