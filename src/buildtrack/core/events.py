"""Typed build-stream events.

Every decoded payload is a JSON object with a ``type`` discriminator. Payloads
are mapped onto a closed set of EventKind variants; types that are not
recognized become EventKind.UNKNOWN instead of being guessed at.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import orjson

log = logging.getLogger(__name__)

CODEX_EVENT_PREFIX = "codex-"


class EventKind(Enum):
    START = "start"
    FINISH = "finish"
    TEXT_START = "text-start"
    TEXT_DELTA = "text-delta"
    TEXT_END = "text-end"
    REASONING_START = "reasoning-start"
    REASONING_DELTA = "reasoning-delta"
    REASONING_END = "reasoning-end"
    REASONING = "reasoning"
    TOOL_INPUT = "tool-input-available"
    TOOL_OUTPUT = "tool-output-available"
    CODEX = "codex"
    UNKNOWN = "unknown"


_KIND_BY_TYPE = {
    "start": EventKind.START,
    "finish": EventKind.FINISH,
    "text-start": EventKind.TEXT_START,
    "text-delta": EventKind.TEXT_DELTA,
    "text-end": EventKind.TEXT_END,
    "reasoning-start": EventKind.REASONING_START,
    "reasoning-delta": EventKind.REASONING_DELTA,
    "reasoning-end": EventKind.REASONING_END,
    "reasoning": EventKind.REASONING,
    "data-reasoning": EventKind.REASONING,
    "tool-input-available": EventKind.TOOL_INPUT,
    "tool-output-available": EventKind.TOOL_OUTPUT,
}

# Wire fields each kind cannot do without
_REQUIRED_FIELDS = {
    EventKind.TEXT_START: ("id",),
    EventKind.TEXT_DELTA: ("id", "delta"),
    EventKind.TEXT_END: ("id",),
    EventKind.REASONING_START: ("id",),
    EventKind.REASONING_DELTA: ("id", "delta"),
    EventKind.REASONING_END: ("id",),
    EventKind.TOOL_INPUT: ("toolName",),
    EventKind.TOOL_OUTPUT: ("toolCallId",),
}


class EventValidationError(ValueError):
    """Raised when a payload is missing a field its event kind requires."""


@dataclass
class StreamEvent:
    """A decoded build-stream event.

    Attributes:
        kind: Closed event variant
        type: Raw ``type`` discriminator as sent on the wire
        id: Text/reasoning block id
        delta: Text fragment for delta events
        tool_name: Tool name for tool events
        tool_call_id: Tool call id for tool events
        input: Tool input
        output: Tool output
        data: Free-form ``data`` field
        raw: The full decoded payload
    """

    kind: EventKind
    type: str
    id: str | None = None
    delta: str = ""
    tool_name: str | None = None
    tool_call_id: str | None = None
    input: Any = None
    output: Any = None
    data: Any = None
    raw: dict = field(default_factory=dict)

    @property
    def message(self) -> str:
        """Narration text carried by a one-shot reasoning event."""
        if isinstance(self.data, dict):
            text = self.data.get("message")
            if isinstance(text, str) and text:
                return text
        for key in ("message", "text"):
            text = self.raw.get(key)
            if isinstance(text, str) and text:
                return text
        return ""


def kind_for_type(event_type: str) -> EventKind:
    """Map a wire ``type`` onto its EventKind."""
    if event_type.startswith(CODEX_EVENT_PREFIX):
        return EventKind.CODEX
    return _KIND_BY_TYPE.get(event_type, EventKind.UNKNOWN)


def event_from_dict(data: dict) -> StreamEvent:
    """Build a StreamEvent from a decoded payload object.

    Raises:
        EventValidationError: If the type or a required field is missing.
    """
    event_type = data.get("type")
    if not isinstance(event_type, str) or not event_type:
        raise EventValidationError("Event has no type")

    kind = kind_for_type(event_type)
    for name in _REQUIRED_FIELDS.get(kind, ()):
        if data.get(name) is None:
            raise EventValidationError(f"{event_type} event missing {name}")

    delta = data.get("delta", "")
    if not isinstance(delta, str):
        raise EventValidationError(f"{event_type} event has non-string delta")

    return StreamEvent(
        kind=kind,
        type=event_type,
        id=_as_str(data.get("id")),
        delta=delta,
        tool_name=_as_str(data.get("toolName")),
        tool_call_id=_as_str(data.get("toolCallId")),
        input=data.get("input"),
        output=data.get("output"),
        data=data.get("data"),
        raw=data,
    )


def parse_event(payload: str | bytes) -> StreamEvent | None:
    """Parse one decoded payload.

    Malformed payloads are logged and dropped so a single bad event never
    aborts the stream.

    Returns:
        The event, or None if the payload could not be used.
    """
    try:
        data = orjson.loads(payload)
    except orjson.JSONDecodeError as e:
        log.warning("Failed to parse event payload %.200r: %s", payload, e)
        return None

    if not isinstance(data, dict):
        log.warning("Ignoring non-object event payload %.200r", payload)
        return None

    try:
        return event_from_dict(data)
    except EventValidationError as e:
        log.warning("Ignoring invalid event: %s", e)
        return None


def _as_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)
