"""Rebuild sessions from persisted or pushed snapshots.

Snapshots use the camelCase wire shape produced by
``buildtrack.core.snapshot.to_snapshot``: ISO-8601 (or epoch millisecond)
timestamps and string todo-index keys. Hydration never raises: a record that
fails structural validation yields None and does not affect its siblings.
"""

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from buildtrack.core.session import (
    CodexExecutionInsight,
    CodexPhase,
    CodexSessionState,
    CodexTaskSummary,
    CodexTemplateDecision,
    CodexWorkspaceVerification,
    VALID_TODO_STATUSES,
    GenerationSession,
    TextNote,
    TodoItem,
    ToolCall,
    active_index_for,
    enforce_single_in_progress,
    utcnow,
)

log = logging.getLogger(__name__)

DEFAULT_PROJECT_NAME = "Untitled Project"
DEFAULT_OPERATION_TYPE = "continuation"

METADATA_FIELDS = ("agent_id", "model_id", "project_id", "project_name", "operation_type")


class HydrationError(ValueError):
    """Raised when a snapshot is structurally invalid."""


def coerce_timestamp(value: Any, default: datetime | None = None) -> datetime:
    """Coerce a serialized timestamp to an aware datetime.

    Accepts datetimes, ISO-8601 strings (with or without a trailing "Z") and
    epoch milliseconds. Anything else falls back to ``default`` (now).
    """
    fallback = default or utcnow()
    if value is None or isinstance(value, bool):
        return fallback

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        try:
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return fallback
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            try:
                parsed = datetime.fromtimestamp(float(text) / 1000, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                return fallback
    else:
        return fallback

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _optional_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    return coerce_timestamp(value)


def _index_key(key: Any) -> int:
    try:
        return int(key)
    except (TypeError, ValueError) as e:
        raise HydrationError(f"Invalid todo index key: {key!r}") from e


def _todos(raw: Any) -> list[TodoItem]:
    if not isinstance(raw, list):
        raise HydrationError("todos must be a list")
    todos = []
    for item in raw:
        if not isinstance(item, Mapping):
            raise HydrationError(f"Invalid todo: {item!r}")
        content = item.get("content") or item.get("activeForm") or ""
        status = item.get("status")
        if status not in VALID_TODO_STATUSES:
            status = "pending"
        todos.append(
            TodoItem(
                content=content,
                status=status,
                active_form=item.get("activeForm") or content,
            )
        )
    return enforce_single_in_progress(todos)


def _tool(raw: Any) -> ToolCall:
    if not isinstance(raw, Mapping) or not raw.get("id"):
        raise HydrationError(f"Invalid tool call: {raw!r}")
    state = raw.get("state") or "input-available"
    if state not in ("input-available", "output-available"):
        state = "output-available" if "output" in raw else "input-available"
    return ToolCall(
        id=str(raw["id"]),
        name=str(raw.get("name") or "unknown"),
        input=raw.get("input"),
        output=raw.get("output"),
        state=state,
        start_time=coerce_timestamp(raw.get("startTime")),
        end_time=_optional_timestamp(raw.get("endTime")),
    )


def _note(raw: Any) -> TextNote:
    if not isinstance(raw, Mapping) or not raw.get("id"):
        raise HydrationError(f"Invalid text note: {raw!r}")
    return TextNote(
        id=str(raw["id"]),
        text=str(raw.get("text") or ""),
        timestamp=coerce_timestamp(raw.get("timestamp")),
    )


def _buckets(raw: Any, build) -> dict:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise HydrationError("index-keyed map expected")
    buckets = {}
    for key, items in raw.items():
        buckets[_index_key(key)] = [build(item) for item in (items or [])]
    return buckets


def hydrate_codex(raw: Any) -> CodexSessionState | None:
    """Rebuild a codex sub-state; None when absent."""
    if raw is None:
        return None
    if not isinstance(raw, Mapping):
        raise HydrationError("codex must be an object")

    phases = [
        CodexPhase(
            id=str(p.get("id")),
            title=str(p.get("title") or p.get("id")),
            description=str(p.get("description") or ""),
            status=p.get("status") or "pending",
            started_at=_optional_timestamp(p.get("startedAt")),
            completed_at=_optional_timestamp(p.get("completedAt")),
            spotlight=p.get("spotlight"),
        )
        for p in raw.get("phases") or []
        if isinstance(p, Mapping) and p.get("id")
    ]
    insights = [
        CodexExecutionInsight(
            id=str(i.get("id")),
            text=str(i.get("text") or ""),
            timestamp=coerce_timestamp(i.get("timestamp")),
            tone=i.get("tone") or "info",
        )
        for i in raw.get("executionInsights") or []
        if isinstance(i, Mapping) and i.get("id")
    ]

    decision = raw.get("templateDecision")
    if isinstance(decision, Mapping):
        decision = CodexTemplateDecision(
            template_id=str(decision.get("templateId") or "unknown-template"),
            template_name=str(decision.get("templateName") or "Selected Template"),
            repository=decision.get("repository"),
            branch=decision.get("branch"),
            confidence=decision.get("confidence"),
            rationale=decision.get("rationale"),
            decided_at=_optional_timestamp(decision.get("decidedAt")),
        )
    else:
        decision = None

    verification = raw.get("workspaceVerification")
    if isinstance(verification, Mapping):
        verification = CodexWorkspaceVerification(
            directory=str(verification.get("directory") or ""),
            exists=bool(verification.get("exists", True)),
            discovered_entries=verification.get("discoveredEntries"),
            verified_at=_optional_timestamp(verification.get("verifiedAt")),
            notes=verification.get("notes"),
        )
    else:
        verification = None

    summary = raw.get("taskSummary")
    if isinstance(summary, Mapping):
        summary = CodexTaskSummary(
            headline=str(summary.get("headline") or "Key Tasks Identified"),
            bullets=[str(b) for b in summary.get("bullets") or []],
            captured_at=coerce_timestamp(summary.get("capturedAt")),
        )
    else:
        summary = None

    return CodexSessionState(
        phases=phases,
        execution_insights=insights,
        template_decision=decision,
        workspace_verification=verification,
        task_summary=summary,
        thread_id=raw.get("threadId"),
        last_updated_at=_optional_timestamp(raw.get("lastUpdatedAt")),
    )


_SIMPLE_FIELDS = {
    "id": "id",
    "projectId": "project_id",
    "projectName": "project_name",
    "operationType": "operation_type",
    "agentId": "agent_id",
    "modelId": "model_id",
}


def snapshot_fields(record: Mapping) -> dict[str, Any]:
    """Coerce the fields a snapshot carries into GenerationSession attributes.

    Only keys present on the snapshot appear in the result, so partial
    snapshots can be layered over existing state.

    Raises:
        HydrationError: If a present field is structurally invalid.
    """
    if not isinstance(record, Mapping):
        raise HydrationError("snapshot must be an object")

    fields: dict[str, Any] = {}
    for wire_name, attr in _SIMPLE_FIELDS.items():
        value = record.get(wire_name)
        if value is not None:
            fields[attr] = str(value)
    # Older snapshots call the model field claudeModelId
    if "model_id" not in fields and record.get("claudeModelId"):
        fields["model_id"] = str(record["claudeModelId"])

    if "todos" in record:
        fields["todos"] = _todos(record["todos"])
    if "toolsByTodo" in record:
        fields["tools_by_todo"] = _buckets(record["toolsByTodo"], _tool)
    if "textByTodo" in record:
        fields["text_by_todo"] = _buckets(record["textByTodo"], _note)
    if isinstance(record.get("isActive"), bool):
        fields["is_active"] = record["isActive"]
    if "startTime" in record:
        fields["start_time"] = coerce_timestamp(record["startTime"])
    if "endTime" in record:
        fields["end_time"] = _optional_timestamp(record["endTime"])
    if "codex" in record:
        fields["codex"] = hydrate_codex(record["codex"])

    if "todos" in fields:
        persisted = record.get("activeTodoIndex")
        actual = active_index_for(fields["todos"])
        if isinstance(persisted, int) and persisted != actual:
            log.debug("Persisted activeTodoIndex %s disagrees with todos; using %s", persisted, actual)
        fields["active_todo_index"] = actual
    return fields


def hydrate_session(
    record: Any,
    meta: Mapping | None = None,
    *,
    project_id: str | None = None,
    project_name: str | None = None,
    defaults: Mapping[str, Any] | None = None,
    require_todos: bool = True,
) -> GenerationSession | None:
    """Rebuild a GenerationSession from a persisted snapshot.

    Args:
        record: The snapshot (camelCase mapping).
        meta: Lightweight session metadata stored alongside the snapshot
            (``buildId``, ``projectId``, ``status``, ``startedAt`` ...).
        project_id: Project fallback when neither record nor meta names one.
        project_name: Project name fallback.
        defaults: Attribute values used when the snapshot lacks them.
        require_todos: Discard records without a todo list. Pushed
            snapshots may be partial and pass False, getting an empty plan.

    Returns:
        The session, or None if the record is unrecoverable.
    """
    meta = meta if isinstance(meta, Mapping) else {}
    try:
        fields = snapshot_fields(record)
    except (HydrationError, ValueError, TypeError) as e:
        log.warning("Discarding unrecoverable session snapshot: %s", e)
        return None

    for attr, value in (defaults or {}).items():
        if not fields.get(attr) and value is not None:
            fields[attr] = value

    if "id" not in fields:
        if meta.get("buildId"):
            fields["id"] = str(meta["buildId"])
        elif meta.get("id") is not None:
            fields["id"] = f"build-{meta['id']}"
    fields.setdefault("project_id", meta.get("projectId") or project_id)
    fields.setdefault("project_name", meta.get("projectName") or project_name or DEFAULT_PROJECT_NAME)
    fields.setdefault("operation_type", meta.get("operationType") or DEFAULT_OPERATION_TYPE)
    fields.setdefault("is_active", meta.get("status") == "active")
    if "start_time" not in fields:
        fields["start_time"] = coerce_timestamp(meta.get("startedAt"))
    if "end_time" not in fields:
        fields["end_time"] = _optional_timestamp(meta.get("endedAt"))

    if not fields.get("id") or not fields.get("project_id"):
        log.warning("Discarding session snapshot without id or project id")
        return None
    if "todos" not in fields:
        if require_todos:
            log.warning("Discarding session snapshot %s without todos", fields["id"])
            return None
        fields["todos"] = []
        fields["active_todo_index"] = -1

    try:
        return GenerationSession(**fields)
    except (ValueError, TypeError) as e:
        log.warning("Discarding invalid session snapshot %s: %s", fields.get("id"), e)
        return None


def hydrate_entries(
    entries: list, project_id: str, project_name: str | None = None
) -> list[GenerationSession]:
    """Hydrate every ``{"session": meta, "hydratedState": snapshot}`` entry.

    Unrecoverable entries are skipped.
    """
    sessions = []
    for entry in entries or []:
        if not isinstance(entry, Mapping):
            log.warning("Skipping malformed session entry")
            continue
        session = hydrate_session(
            entry.get("hydratedState"),
            entry.get("session"),
            project_id=project_id,
            project_name=project_name,
        )
        if session is not None:
            sessions.append(session)
    return sessions


def select_current(
    sessions: list[GenerationSession],
) -> tuple[GenerationSession | None, list[GenerationSession]]:
    """Choose the session to show as current and the ones to archive.

    An active session is preferred. Otherwise the most recently started
    completed session is shown as trailing context. Every other non-active
    session is returned for the archive, newest first; active sessions are
    never archived.

    Returns:
        (current, history)
    """
    completed = sorted(
        (s for s in sessions if not s.is_active),
        key=lambda s: s.start_time,
        reverse=True,
    )
    current = next((s for s in sessions if s.is_active), None)
    if current is None and completed:
        current = completed[0]
    history = [s for s in completed if current is None or s.id != current.id]
    return current, history
