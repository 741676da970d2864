"""Serialize sessions to the snapshot wire shape.

The shape mirrors what the out-of-band channel pushes and what the store
persists: camelCase keys, ISO-8601 timestamps, string todo-index keys.
"""

from datetime import datetime
from typing import Any

import orjson

from buildtrack.core.session import CodexSessionState, GenerationSession


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def codex_snapshot(codex: CodexSessionState) -> dict[str, Any]:
    data: dict[str, Any] = {
        "phases": [
            {
                "id": p.id,
                "title": p.title,
                "description": p.description,
                "status": p.status,
                "startedAt": _iso(p.started_at),
                "completedAt": _iso(p.completed_at),
                "spotlight": p.spotlight,
            }
            for p in codex.phases
        ],
        "executionInsights": [
            {"id": i.id, "text": i.text, "timestamp": _iso(i.timestamp), "tone": i.tone}
            for i in codex.execution_insights
        ],
        "threadId": codex.thread_id,
        "lastUpdatedAt": _iso(codex.last_updated_at),
    }
    if codex.template_decision is not None:
        d = codex.template_decision
        data["templateDecision"] = {
            "templateId": d.template_id,
            "templateName": d.template_name,
            "repository": d.repository,
            "branch": d.branch,
            "confidence": d.confidence,
            "rationale": d.rationale,
            "decidedAt": _iso(d.decided_at),
        }
    if codex.workspace_verification is not None:
        v = codex.workspace_verification
        data["workspaceVerification"] = {
            "directory": v.directory,
            "exists": v.exists,
            "discoveredEntries": v.discovered_entries,
            "verifiedAt": _iso(v.verified_at),
            "notes": v.notes,
        }
    if codex.task_summary is not None:
        s = codex.task_summary
        data["taskSummary"] = {
            "headline": s.headline,
            "bullets": list(s.bullets),
            "capturedAt": _iso(s.captured_at),
        }
    return data


def to_snapshot(session: GenerationSession) -> dict[str, Any]:
    """Project a session onto its snapshot dict."""
    return {
        "id": session.id,
        "projectId": session.project_id,
        "projectName": session.project_name,
        "operationType": session.operation_type,
        "agentId": session.agent_id,
        "modelId": session.model_id,
        "todos": [
            {"content": t.content, "status": t.status, "activeForm": t.active_form}
            for t in session.todos
        ],
        "toolsByTodo": {
            str(index): [
                {
                    "id": tool.id,
                    "name": tool.name,
                    "input": tool.input,
                    "output": tool.output,
                    "state": tool.state,
                    "startTime": _iso(tool.start_time),
                    "endTime": _iso(tool.end_time),
                }
                for tool in tools
            ]
            for index, tools in sorted(session.tools_by_todo.items())
        },
        "textByTodo": {
            str(index): [
                {"id": note.id, "text": note.text, "timestamp": _iso(note.timestamp)}
                for note in notes
            ]
            for index, notes in sorted(session.text_by_todo.items())
        },
        "activeTodoIndex": session.active_todo_index,
        "isActive": session.is_active,
        "startTime": _iso(session.start_time),
        "endTime": _iso(session.end_time),
        "codex": codex_snapshot(session.codex) if session.codex is not None else None,
    }


def dumps(session: GenerationSession, indent: bool = False) -> bytes:
    """Serialize a session snapshot to JSON bytes."""
    option = orjson.OPT_INDENT_2 if indent else 0
    return orjson.dumps(to_snapshot(session), option=option, default=str)


def loads(data: bytes | str) -> dict[str, Any]:
    """Parse snapshot JSON.

    Raises:
        orjson.JSONDecodeError: If the data is not valid JSON.
    """
    return orjson.loads(data)
