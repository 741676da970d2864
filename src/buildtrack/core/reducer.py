"""Fold build-stream events into session state.

``reduce`` is pure: it takes a StreamState and one StreamEvent and returns a
new StreamState without mutating its inputs. It never raises; events it
cannot place are ignored (and, for tool events, reported as orphans so the
persistence collaborator can re-associate them later).
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any

from buildtrack.core.codex import apply_codex_event
from buildtrack.core.config import DEFAULT_MAX_EXECUTION_INSIGHTS
from buildtrack.core.events import EventKind, StreamEvent
from buildtrack.core.session import (
    CODEX_AGENT_ID,
    VALID_TODO_STATUSES,
    GenerationSession,
    TextNote,
    TodoItem,
    ToolCall,
    active_index_for,
    create_initial_codex_state,
    enforce_single_in_progress,
    utcnow,
)

log = logging.getLogger(__name__)

TODO_TOOL_NAME = "TodoWrite"
THREAD_CAPTURE_TOOL_NAME = "CodexThreadCapture"

# Kinds that need a session to land in; the caller materializes one first
SESSION_KINDS = {
    EventKind.TOOL_INPUT,
    EventKind.TOOL_OUTPUT,
    EventKind.TEXT_START,
    EventKind.TEXT_DELTA,
    EventKind.TEXT_END,
    EventKind.REASONING_START,
    EventKind.REASONING_DELTA,
    EventKind.REASONING,
    EventKind.CODEX,
}


@dataclass
class MessageEnvelope:
    """The assistant message currently being streamed.

    Attributes:
        message_id: Id of the open message, None between ``finish`` and ``start``
        text_blocks: Block id -> accumulated reply text
    """

    message_id: str | None = None
    text_blocks: dict[str, str] = field(default_factory=dict)

    @property
    def reply_text(self) -> str:
        return "".join(self.text_blocks.values())


@dataclass
class Orphan:
    """A tool event that could not be attached to the session."""

    kind: str
    tool_call_id: str
    payload: dict[str, Any]


@dataclass
class StreamState:
    """Reducer state: the session plus the open message envelope.

    Attributes:
        session: Current session, None before one is materialized
        envelope: Open message envelope
        orphans: Tool events the last reduction could not place
    """

    session: GenerationSession | None = None
    envelope: MessageEnvelope = field(default_factory=MessageEnvelope)
    orphans: tuple[Orphan, ...] = ()


def requires_session(event: StreamEvent) -> bool:
    """Whether the event must land in a session (materializing one if absent)."""
    return event.kind in SESSION_KINDS


def reduce(
    state: StreamState,
    event: StreamEvent,
    max_insights: int = DEFAULT_MAX_EXECUTION_INSIGHTS,
) -> StreamState:
    """Apply one event and return the next state."""
    if state.orphans:
        state = replace(state, orphans=())

    kind = event.kind
    if kind == EventKind.START:
        message_id = event.raw.get("messageId") or f"message-{int(utcnow().timestamp() * 1000)}"
        return replace(state, envelope=MessageEnvelope(message_id=str(message_id)))
    if kind == EventKind.FINISH:
        return replace(state, envelope=MessageEnvelope())
    if kind in (EventKind.TEXT_START, EventKind.TEXT_DELTA, EventKind.TEXT_END):
        return replace(state, envelope=_reduce_text(state.envelope, event))

    session = state.session
    if session is None:
        if requires_session(event):
            log.debug("Dropping %s event: no session materialized", event.type)
        return state
    if not session.is_active:
        return _refuse_ended(state, session, event)

    if kind == EventKind.TOOL_INPUT:
        return _tool_input(state, session, event)
    if kind == EventKind.TOOL_OUTPUT:
        return _tool_output(state, session, event)
    if kind in (EventKind.REASONING_START, EventKind.REASONING_DELTA):
        return replace(state, session=_append_note(session, event.id, event.delta))
    if kind == EventKind.REASONING:
        message = event.message
        if not message:
            return state
        note_id = event.id or f"reasoning-{int(utcnow().timestamp() * 1000)}"
        return replace(state, session=_append_note(session, note_id, message))
    if kind == EventKind.CODEX:
        codex = session.codex or create_initial_codex_state()
        return replace(
            state,
            session=replace(
                session,
                agent_id=session.agent_id or CODEX_AGENT_ID,
                codex=apply_codex_event(codex, event.raw, max_insights),
            ),
        )

    # REASONING_END closes a note that is already complete; UNKNOWN is ignored
    return state


def finalize(session: GenerationSession | None) -> GenerationSession | None:
    """Close out a session when its stream ends.

    First, if every todo but the last is completed and the last is not, the
    last one (the implicit final summary) is completed. Then the session is
    marked inactive with an end time. A session that has already ended,
    whether here or by a pushed snapshot, is returned unchanged.
    """
    if session is None or not session.is_active:
        return session

    todos = session.todos
    if todos and todos[-1].status != "completed" and all(
        t.status == "completed" for t in todos[:-1]
    ):
        last = todos[-1]
        session = replace(
            session,
            todos=[*todos[:-1], TodoItem(last.content, "completed", last.active_form)],
            active_todo_index=-1,
        )

    return replace(session, is_active=False, end_time=utcnow())


def _reduce_text(envelope: MessageEnvelope, event: StreamEvent) -> MessageEnvelope:
    blocks = dict(envelope.text_blocks)
    if event.kind == EventKind.TEXT_START:
        blocks[event.id] = ""
    elif event.kind == EventKind.TEXT_DELTA:
        blocks[event.id] = blocks.get(event.id, "") + event.delta
    else:
        log.debug("Text block %s finished", event.id)
        return envelope
    return replace(envelope, text_blocks=blocks)


def _todo_from_wire(item: Any) -> TodoItem | None:
    if not isinstance(item, dict):
        return None
    content = item.get("content") or item.get("activeForm") or "Untitled task"
    status = item.get("status")
    if status not in VALID_TODO_STATUSES:
        status = "pending"
    return TodoItem(content=str(content), status=status, active_form=str(item.get("activeForm") or content))


def _refuse_ended(state: StreamState, session: GenerationSession, event: StreamEvent) -> StreamState:
    """Leave an ended session untouched; tool calls are handed back as orphans."""
    if not requires_session(event):
        return state
    log.warning("Ignoring %s event for ended session %s", event.type, session.id)
    if event.kind == EventKind.TOOL_INPUT and event.tool_name in (TODO_TOOL_NAME, THREAD_CAPTURE_TOOL_NAME):
        return state
    if event.kind in (EventKind.TOOL_INPUT, EventKind.TOOL_OUTPUT) and event.tool_call_id:
        kind = "tool-input" if event.kind == EventKind.TOOL_INPUT else "tool-output"
        return replace(state, orphans=(Orphan(kind, event.tool_call_id, event.raw),))
    return state


def _tool_input(state: StreamState, session: GenerationSession, event: StreamEvent) -> StreamState:
    tool_input = event.input if isinstance(event.input, dict) else {}

    if event.tool_name == THREAD_CAPTURE_TOOL_NAME:
        thread_id = tool_input.get("threadId")
        if not thread_id:
            return state
        codex = session.codex or create_initial_codex_state()
        return replace(
            state,
            session=replace(session, codex=replace(codex, thread_id=str(thread_id))),
        )

    if event.tool_name == TODO_TOOL_NAME:
        raw_todos = tool_input.get("todos")
        if not isinstance(raw_todos, list):
            log.warning("Ignoring %s event without a todo list", TODO_TOOL_NAME)
            return state
        todos = enforce_single_in_progress(
            [todo for todo in map(_todo_from_wire, raw_todos) if todo is not None]
        )
        return replace(
            state,
            session=replace(session, todos=todos, active_todo_index=active_index_for(todos)),
        )

    if not event.tool_call_id:
        log.warning("Ignoring %s tool event without toolCallId", event.tool_name)
        return state

    if not session.todos:
        log.debug("No todos yet, deferring tool %s (%s)", event.tool_name, event.tool_call_id)
        return replace(state, orphans=(Orphan("tool-input", event.tool_call_id, event.raw),))

    if session.find_tool(event.tool_call_id) is not None:
        log.debug("Duplicate tool input %s ignored", event.tool_call_id)
        return state

    tool = ToolCall(id=event.tool_call_id, name=event.tool_name, input=event.input)
    bucket = session.current_bucket
    tools_by_todo = dict(session.tools_by_todo)
    tools_by_todo[bucket] = [*tools_by_todo.get(bucket, []), tool]
    return replace(state, session=replace(session, tools_by_todo=tools_by_todo))


def _tool_output(state: StreamState, session: GenerationSession, event: StreamEvent) -> StreamState:
    location = session.find_tool(event.tool_call_id)
    if location is None:
        log.debug("Tool output for unknown tool %s", event.tool_call_id)
        return replace(state, orphans=(Orphan("tool-output", event.tool_call_id, event.raw),))

    bucket, position = location
    tool = session.tools_by_todo[bucket][position]
    if tool.is_complete:
        return state

    tools = list(session.tools_by_todo[bucket])
    tools[position] = replace(
        tool, output=event.output, state="output-available", end_time=utcnow()
    )
    tools_by_todo = dict(session.tools_by_todo)
    tools_by_todo[bucket] = tools
    return replace(state, session=replace(session, tools_by_todo=tools_by_todo))


def _append_note(session: GenerationSession, note_id: str, text: str) -> GenerationSession:
    """Append text to a narration note, creating it in the current bucket if new."""
    text_by_todo = dict(session.text_by_todo)
    location = session.find_note(note_id)
    if location is None:
        bucket = session.current_bucket
        text_by_todo[bucket] = [*text_by_todo.get(bucket, []), TextNote(id=note_id, text=text)]
    else:
        if not text:
            return session
        bucket, position = location
        notes = list(text_by_todo[bucket])
        notes[position] = replace(notes[position], text=notes[position].text + text)
        text_by_todo[bucket] = notes
    return replace(session, text_by_todo=text_by_todo)
