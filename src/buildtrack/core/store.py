"""File-backed session store.

Sessions are stored per project under ~/.buildtrack/projects/{project_id}/:
- sessions/{session_id}.json: {"session": <meta>, "hydratedState": <snapshot>}
- orphans.jsonl: tool events that arrived before their session could hold them
- store.lock: guards read-modify-write cycles across processes

The meta record is the lightweight summary (build id, status, timestamps) the
hydrator falls back on when a snapshot is incomplete.
"""

import fcntl
import logging
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import orjson

from buildtrack.core.config import get_buildtrack_base
from buildtrack.core.session import GenerationSession, utcnow
from buildtrack.core.snapshot import to_snapshot

log = logging.getLogger(__name__)

ORPHAN_KINDS = {"tool-input", "tool-output"}


def _safe_component(value: str, what: str) -> str:
    """Validate a value used as a single path component."""
    if not value or value in (".", "..") or "/" in value or "\\" in value or "\0" in value:
        raise ValueError(f"Invalid {what}: {value!r}")
    return value


def get_project_dir(project_id: str) -> Path:
    """Get the storage directory for a project."""
    return get_buildtrack_base() / "projects" / _safe_component(project_id, "project id")


def _sessions_dir(project_id: str) -> Path:
    return get_project_dir(project_id) / "sessions"


def _session_path(project_id: str, session_id: str) -> Path:
    return _sessions_dir(project_id) / f"{_safe_component(session_id, 'session id')}.json"


def _orphans_path(project_id: str) -> Path:
    return get_project_dir(project_id) / "orphans.jsonl"


@contextmanager
def _locked(project_id: str) -> Iterator[None]:
    """Hold the project's store lock."""
    project_dir = get_project_dir(project_id)
    project_dir.mkdir(parents=True, exist_ok=True)
    with open(project_dir / "store.lock", "w") as lock_file:
        fcntl.flock(lock_file, fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(lock_file, fcntl.LOCK_UN)


def session_meta(session: GenerationSession) -> dict[str, Any]:
    """Lightweight metadata stored next to the full snapshot."""
    return {
        "buildId": session.id,
        "projectId": session.project_id,
        "projectName": session.project_name,
        "operationType": session.operation_type,
        "agentId": session.agent_id,
        "status": "active" if session.is_active else "completed",
        "startedAt": session.start_time.isoformat(),
        "endedAt": session.end_time.isoformat() if session.end_time else None,
        "todoCount": len(session.todos),
        "updatedAt": utcnow().isoformat(),
    }


def _write_entry(path: Path, entry: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(".json.tmp")
    tmp_path.write_bytes(orjson.dumps(entry, default=str))
    tmp_path.replace(path)


def _read_entry(path: Path) -> dict | None:
    try:
        entry = orjson.loads(path.read_bytes())
    except (orjson.JSONDecodeError, OSError) as e:
        log.warning("Skipping unreadable session file %s: %s", path, e)
        return None
    if not isinstance(entry, dict):
        log.warning("Skipping malformed session file %s", path)
        return None
    return entry


def _read_entries(sessions_dir: Path) -> list[dict]:
    entries = []
    for path in sorted(sessions_dir.glob("*.json")):
        entry = _read_entry(path)
        if entry is not None:
            entries.append(entry)
    return entries


def save_snapshot(project_id: str, session: GenerationSession) -> Path:
    """Upsert a session's snapshot.

    Args:
        project_id: Owning project.
        session: Session to persist.

    Returns:
        Path of the written file.
    """
    path = _session_path(project_id, session.id)
    entry = {"session": session_meta(session), "hydratedState": to_snapshot(session)}
    with _locked(project_id):
        _write_entry(path, entry)
    log.debug("Saved session %s for project %s", session.id, project_id)
    return path


def load_snapshots(project_id: str, reconcile: bool = True) -> list[dict]:
    """Load every stored entry for a project.

    Unreadable files are skipped.

    Args:
        project_id: Project to load.
        reconcile: Fold pending orphans into their sessions first. Read-only
            callers pass False and leave the store untouched.

    Returns:
        List of {"session": meta, "hydratedState": snapshot} dicts.
    """
    sessions_dir = _sessions_dir(project_id)
    if not sessions_dir.exists():
        return []

    if not reconcile:
        return _read_entries(sessions_dir)
    with _locked(project_id):
        _reconcile_unlocked(project_id)
        return _read_entries(sessions_dir)


def delete_snapshot(project_id: str, session_id: str) -> bool:
    """Delete one stored session. Returns True if it existed."""
    path = _session_path(project_id, session_id)
    with _locked(project_id):
        if not path.exists():
            return False
        path.unlink()
    return True


def delete_project(project_id: str) -> bool:
    """Delete all stored data for a project.

    Returns:
        True if the project directory was removed, False if it didn't exist.
    """
    project_dir = get_project_dir(project_id)
    if project_dir.exists():
        shutil.rmtree(project_dir)
        return True
    return False


def record_orphan(project_id: str, session_id: str, kind: str, payload: dict) -> None:
    """Record a tool event the session could not hold yet.

    Args:
        project_id: Owning project.
        session_id: Session the event was streamed for.
        kind: "tool-input" or "tool-output".
        payload: The raw event payload.

    Raises:
        ValueError: If kind is not a known orphan kind.
    """
    if kind not in ORPHAN_KINDS:
        raise ValueError(f"Invalid orphan kind: {kind}. Must be one of {ORPHAN_KINDS}")

    record = {
        "sessionId": session_id,
        "kind": kind,
        "toolCallId": payload.get("toolCallId"),
        "payload": payload,
        "recordedAt": utcnow().isoformat(),
    }
    with _locked(project_id):
        with open(_orphans_path(project_id), "ab") as f:
            f.write(orjson.dumps(record, default=str) + b"\n")


def _load_orphans_unlocked(project_id: str) -> list[dict]:
    path = _orphans_path(project_id)
    if not path.exists():
        return []
    orphans = []
    for line in path.read_bytes().splitlines():
        if not line.strip():
            continue
        try:
            record = orjson.loads(line)
        except orjson.JSONDecodeError:
            log.warning("Skipping corrupt orphan record in %s", path)
            continue
        if isinstance(record, dict):
            orphans.append(record)
    return orphans


def load_orphans(project_id: str) -> list[dict]:
    """Orphaned tool events still waiting for reconciliation."""
    with _locked(project_id):
        return _load_orphans_unlocked(project_id)


def reconcile_orphans(project_id: str) -> int:
    """Attach recorded orphans to their sessions.

    Returns:
        Number of orphans that were applied.
    """
    with _locked(project_id):
        return _reconcile_unlocked(project_id)


def _find_tool(snapshot: dict, tool_call_id: str) -> dict | None:
    for tools in (snapshot.get("toolsByTodo") or {}).values():
        for tool in tools or []:
            if isinstance(tool, dict) and tool.get("id") == tool_call_id:
                return tool
    return None


def _apply_orphan(snapshot: dict, orphan: dict) -> bool:
    """Apply one orphan to a snapshot dict in place.

    Returns:
        True if the orphan is resolved (applied, or already reflected).
    """
    tool_call_id = orphan.get("toolCallId")
    payload = orphan.get("payload") or {}
    if not tool_call_id:
        return True

    if orphan.get("kind") == "tool-input":
        if not snapshot.get("todos"):
            return False
        if _find_tool(snapshot, tool_call_id) is not None:
            return True
        buckets = snapshot.setdefault("toolsByTodo", {})
        buckets.setdefault("0", []).append(
            {
                "id": tool_call_id,
                "name": payload.get("toolName") or "unknown",
                "input": payload.get("input"),
                "output": None,
                "state": "input-available",
                "startTime": orphan.get("recordedAt"),
                "endTime": None,
            }
        )
        return True

    tool = _find_tool(snapshot, tool_call_id)
    if tool is None:
        return False
    if tool.get("state") != "output-available":
        tool["output"] = payload.get("output")
        tool["state"] = "output-available"
        tool["endTime"] = orphan.get("recordedAt")
    return True


def _reconcile_unlocked(project_id: str) -> int:
    orphans = _load_orphans_unlocked(project_id)
    if not orphans:
        return 0

    # Inputs before outputs so an output can land on an input reconciled in the same pass
    ordered = sorted(orphans, key=lambda o: o.get("kind") != "tool-input")
    entries: dict[str, dict] = {}
    dirty: set[str] = set()
    remaining = []
    applied = 0

    for orphan in ordered:
        session_id = orphan.get("sessionId")
        try:
            path = _session_path(project_id, str(session_id))
        except ValueError:
            log.warning("Dropping orphan with invalid session id %r", session_id)
            continue
        if session_id not in entries:
            entries[session_id] = _read_entry(path) if path.exists() else None
        entry = entries[session_id]
        snapshot = entry.get("hydratedState") if entry else None
        if not isinstance(snapshot, dict) or not _apply_orphan(snapshot, orphan):
            remaining.append(orphan)
            continue
        dirty.add(session_id)
        applied += 1

    for session_id in dirty:
        _write_entry(_session_path(project_id, session_id), entries[session_id])

    orphans_path = _orphans_path(project_id)
    if remaining:
        orphans_path.write_bytes(b"".join(orjson.dumps(o) + b"\n" for o in remaining))
    else:
        orphans_path.unlink(missing_ok=True)

    if applied:
        log.info("Reconciled %d orphaned tool event(s) for project %s", applied, project_id)
    return applied
