"""File-drop push channel for out-of-band session snapshots.

The process of record publishes each snapshot as one JSON file under
~/.buildtrack/projects/{project_id}/push/. Subscribers follow the directory
with watchfiles and read new files in name order, which is arrival order
because names start with a nanosecond timestamp.
"""

import asyncio
import logging
import os
import time
from collections.abc import AsyncIterator
from pathlib import Path

import orjson
from watchfiles import awatch

from buildtrack.core.store import get_project_dir

log = logging.getLogger(__name__)

PUSH_SUFFIX = ".json"


def get_push_dir(project_id: str) -> Path:
    """Get the push directory for a project."""
    return get_project_dir(project_id) / "push"


def publish_snapshot(project_id: str, snapshot: dict) -> Path:
    """Publish one snapshot on the channel.

    The file is written under a temporary name and renamed into place so
    subscribers never observe a partial write.

    Returns:
        Path of the published file.
    """
    push_dir = get_push_dir(project_id)
    push_dir.mkdir(parents=True, exist_ok=True)
    name = f"{time.time_ns():020d}-{os.getpid()}{PUSH_SUFFIX}"
    tmp_path = push_dir / f".{name}.tmp"
    tmp_path.write_bytes(orjson.dumps(snapshot, default=str))
    path = push_dir / name
    tmp_path.replace(path)
    log.debug("Published snapshot %s for project %s", snapshot.get("id"), project_id)
    return path


def _push_files(push_dir: Path) -> list[Path]:
    if not push_dir.exists():
        return []
    return sorted(
        p for p in push_dir.iterdir() if p.suffix == PUSH_SUFFIX and not p.name.startswith(".")
    )


def _read_push(path: Path) -> dict | None:
    try:
        snapshot = orjson.loads(path.read_bytes())
    except (orjson.JSONDecodeError, OSError) as e:
        log.warning("Skipping unreadable push %s: %s", path.name, e)
        return None
    if not isinstance(snapshot, dict):
        log.warning("Skipping non-object push %s", path.name)
        return None
    return snapshot


def read_pending(project_id: str, seen: set[str] | None = None) -> list[tuple[str, dict]]:
    """Read pushed snapshots already on disk.

    Args:
        project_id: Project to read.
        seen: File names to skip; names returned here are added to it.

    Returns:
        (file name, snapshot) pairs in arrival order.
    """
    pending = []
    for path in _push_files(get_push_dir(project_id)):
        if seen is not None:
            if path.name in seen:
                continue
            seen.add(path.name)
        snapshot = _read_push(path)
        if snapshot is not None:
            pending.append((path.name, snapshot))
    return pending


def clear_pushes(project_id: str) -> int:
    """Delete every published snapshot for a project. Returns the count."""
    count = 0
    for path in _push_files(get_push_dir(project_id)):
        path.unlink(missing_ok=True)
        count += 1
    return count


async def watch_snapshots(
    project_id: str,
    stop_event: asyncio.Event | None = None,
    include_pending: bool = True,
) -> AsyncIterator[dict]:
    """Yield snapshots as they are published.

    Args:
        project_id: Project to follow.
        stop_event: Ends the watch when set.
        include_pending: Yield snapshots already on disk before watching.

    Yields:
        Snapshot dicts in arrival order.
    """
    push_dir = get_push_dir(project_id)
    push_dir.mkdir(parents=True, exist_ok=True)

    seen: set[str] = set()
    if include_pending:
        for _, snapshot in read_pending(project_id, seen):
            yield snapshot
    else:
        seen.update(p.name for p in _push_files(push_dir))

    async for _changes in awatch(push_dir, stop_event=stop_event):
        for _, snapshot in read_pending(project_id, seen):
            yield snapshot
