"""Per-project session engine.

SessionEngine is the single mutation point for a project's session state.
Both writers go through it: the primary byte stream (``run_stream`` /
``apply_payload`` / ``apply_event``) and the out-of-band snapshot channel
(``apply_snapshot``). Everything runs on one asyncio event loop; in-memory
state is updated synchronously and persisted through a DebouncedWriter.
"""

import logging
from collections.abc import AsyncIterable, Callable
from dataclasses import replace
from typing import Any

from buildtrack.core import sync
from buildtrack.core.config import get_max_execution_insights, get_persist_debounce_seconds
from buildtrack.core.decoder import aiter_payloads
from buildtrack.core.events import EventKind, StreamEvent, parse_event
from buildtrack.core.guard import GenerationGuard, GenerationToken
from buildtrack.core.history import HistoryArchive
from buildtrack.core.hydrate import DEFAULT_PROJECT_NAME, hydrate_entries, select_current
from buildtrack.core.persist import DebouncedWriter
from buildtrack.core.reducer import Orphan, StreamState, finalize, reduce, requires_session
from buildtrack.core.session import (
    GenerationSession,
    create_fresh_session,
    detect_operation_type,
    new_session_id,
)

log = logging.getLogger(__name__)


class SessionEngine:
    """Owns the current session, its history and its persistence for one project.

    Args:
        project_id: Project this engine tracks.
        project_name: Display name used for sessions created here.
        guard: Shared generation guard; a private one is created when omitted.
        archive: Shared history archive; a private one is created when omitted.
        save: Persists one session. No persistence when omitted.
        orphan_sink: Receives (session_id, orphan) for tool events the
            session could not hold.
        debounce: Persistence debounce window in seconds (config default).
        max_insights: Execution insights to keep (config default).
    """

    def __init__(
        self,
        project_id: str,
        project_name: str | None = None,
        *,
        guard: GenerationGuard | None = None,
        archive: HistoryArchive | None = None,
        save: Callable[[GenerationSession], None] | None = None,
        orphan_sink: Callable[[str, Orphan], None] | None = None,
        debounce: float | None = None,
        max_insights: int | None = None,
    ) -> None:
        self.project_id = project_id
        self.project_name = project_name or DEFAULT_PROJECT_NAME
        self.guard = guard or GenerationGuard()
        self.archive = archive or HistoryArchive()
        self.state = StreamState()
        self.last_reply = ""
        self._orphan_sink = orphan_sink
        self._max_insights = max_insights or get_max_execution_insights()
        self._writer = None
        if save is not None:
            if debounce is None:
                debounce = get_persist_debounce_seconds()
            self._writer = DebouncedWriter(save, debounce)

    @property
    def session(self) -> GenerationSession | None:
        return self.state.session

    @property
    def history(self) -> list[GenerationSession]:
        return self.archive.sessions(self.project_id)

    @property
    def is_generating(self) -> bool:
        return self.guard.is_held(self.project_id)

    def begin_build(
        self,
        operation_type: str | None = None,
        agent_id: str | None = None,
        model_id: str | None = None,
        project_status: str | None = None,
        is_element_change: bool = False,
        is_retry: bool = False,
    ) -> GenerationToken:
        """Start a build: take the guard and create its session.

        The guard is taken before anything else so a concurrent hydration
        cannot overwrite the fresh session.

        Args:
            operation_type: Explicit operation type; detected when omitted.
            agent_id: Agent backend; defaults to the previous session's.
            model_id: Model; defaults to the previous session's.
            project_status: Project status used for operation detection.
            is_element_change: Whether the request targets one element.
            is_retry: Whether the request retries a failed build.

        Returns:
            The guard token to pass to ``run_stream``.

        Raises:
            GenerationInProgress: If a build is already running for the project.
        """
        session_id = self._unique_session_id()
        token = self.guard.acquire(self.project_id, session_id)

        previous = self.session
        if previous is not None:
            if previous.is_active:
                log.warning("Closing session %s left active by an earlier build", previous.id)
                previous = finalize(previous)
                self._mark_dirty(previous)
            self._archive(previous)

        session = create_fresh_session(
            self.project_id,
            self.project_name,
            operation_type=operation_type
            or detect_operation_type(project_status, is_element_change, is_retry),
            agent_id=agent_id or (previous.agent_id if previous else None),
            model_id=model_id or (previous.model_id if previous else None),
            session_id=session_id,
        )
        self.state = StreamState(session=session)
        self._mark_dirty(session)
        log.info("Build %s started for project %s", session.id, self.project_id)
        return token

    async def run_stream(
        self, token: GenerationToken, chunks: AsyncIterable[bytes | str]
    ) -> GenerationSession | None:
        """Decode the byte stream into the session, then finalize it.

        Finalization and guard release happen however the loop ends: normal
        end of stream, the end-of-stream sentinel, or a transport failure.
        Pending writes have reached the store when this returns.

        Returns:
            The finalized session.
        """
        try:
            async for payload in aiter_payloads(chunks):
                self.apply_payload(payload)
        except Exception:
            log.exception("Build stream for project %s failed", self.project_id)
        finally:
            try:
                session = self.complete()
            finally:
                self.guard.release(token)
        if self._writer is not None:
            await self._writer.drain()
        return session

    async def build(self, chunks: AsyncIterable[bytes | str], **kwargs: Any) -> GenerationSession | None:
        """``begin_build`` followed by ``run_stream``."""
        token = self.begin_build(**kwargs)
        return await self.run_stream(token, chunks)

    def apply_payload(self, payload: str | bytes) -> bool:
        """Apply one decoded payload. Returns True if state changed."""
        event = parse_event(payload)
        if event is None:
            return False
        return self.apply_event(event)

    def apply_event(self, event: StreamEvent) -> bool:
        """Apply one event from the byte stream.

        A fresh session is materialized when the event needs one and none
        exists. Failures leave state unchanged and are logged.

        Returns:
            True if the session changed.
        """
        try:
            state = self.state
            if state.session is None and requires_session(event):
                log.info("No session for %s event; creating one", event.type)
                state = replace(state, session=self._fresh_session())

            if event.kind == EventKind.FINISH and state.envelope.reply_text:
                self.last_reply = state.envelope.reply_text
            next_state = reduce(state, event, self._max_insights)
            for orphan in next_state.orphans:
                self._report_orphan(next_state.session, orphan)

            changed = next_state.session is not self.state.session
            self.state = next_state
            if changed and next_state.session is not None:
                self._mark_dirty(next_state.session)
            return changed
        except Exception:
            log.exception("Failed to apply %s event", event.type)
            return False

    def apply_snapshot(self, snapshot: dict) -> bool:
        """Merge a snapshot from the out-of-band channel.

        Snapshot-sourced state is not written back to the store; the
        publisher is the process of record.

        Returns:
            True if the session changed.
        """
        try:
            previous = self.session
            merged = sync.apply_snapshot(previous, snapshot)
            if merged is previous or merged is None:
                return False

            if previous is not None and merged.id != previous.id:
                self._archive(finalize(previous))
            elif not merged.is_active and (previous is None or previous.is_active):
                self._archive(merged)

            self.state = replace(self.state, session=merged)
            return True
        except Exception:
            log.exception("Failed to apply snapshot for project %s", self.project_id)
            return False

    def hydrate(self, records: list[dict]) -> bool:
        """Rebuild current session and history from stored records.

        Skipped while a build is streaming, so the in-flight session is never
        replaced by older persisted state.

        Returns:
            True if hydration ran.
        """
        if self.is_generating:
            log.info("Skipping hydration for %s: build in progress", self.project_id)
            return False

        sessions = hydrate_entries(records, self.project_id, self.project_name)
        current, history = select_current(sessions)
        self.archive.replace_project(self.project_id, history)
        self.state = StreamState(session=current)
        if current is not None and current.project_name:
            self.project_name = current.project_name
        log.debug(
            "Hydrated project %s: current=%s, %d archived",
            self.project_id,
            current.id if current else None,
            len(history),
        )
        return True

    def complete(self) -> GenerationSession | None:
        """Finalize the current session, archive it and flush persistence."""
        session = finalize(self.session)
        if session is None:
            return None
        if session is not self.session:
            self.state = replace(self.state, session=session)
            self._mark_dirty(session)
        self._archive(session)
        self.flush()
        log.info("Build %s finished with %d todo(s)", session.id, len(session.todos))
        return session

    def flush(self) -> None:
        if self._writer is not None:
            self._writer.flush()

    def _fresh_session(self) -> GenerationSession:
        last = self.history[0] if self.history else None
        return create_fresh_session(
            self.project_id,
            self.project_name,
            operation_type="continuation" if last else "initial-build",
            agent_id=last.agent_id if last else None,
            model_id=last.model_id if last else None,
            session_id=self._unique_session_id(),
        )

    def _unique_session_id(self) -> str:
        session_id = new_session_id()
        taken = {s.id for s in self.history}
        if self.session is not None:
            taken.add(self.session.id)
        suffix = 1
        candidate = session_id
        while candidate in taken:
            candidate = f"{session_id}-{suffix}"
            suffix += 1
        return candidate

    def _archive(self, session: GenerationSession) -> None:
        if session.is_active or self.archive.contains(session.project_id, session.id):
            return
        self.archive.insert(session, 0)

    def _mark_dirty(self, session: GenerationSession) -> None:
        if self._writer is not None:
            self._writer.mark_dirty(session)

    def _report_orphan(self, session: GenerationSession | None, orphan: Orphan) -> None:
        if self._orphan_sink is None or session is None:
            return
        try:
            self._orphan_sink(session.id, orphan)
        except Exception:
            log.exception("Failed to record orphaned %s %s", orphan.kind, orphan.tool_call_id)


def open_engine(project_id: str, project_name: str | None = None, persist: bool = True) -> SessionEngine:
    """Create an engine wired to the file store and hydrated from it.

    Args:
        project_id: Project to open.
        project_name: Display name for new sessions.
        persist: Whether the engine writes to the store. A read-only engine
            also leaves pending orphans unreconciled.
    """
    from buildtrack.core import store

    def save(session: GenerationSession) -> None:
        store.save_snapshot(project_id, session)

    def record(session_id: str, orphan: Orphan) -> None:
        store.record_orphan(project_id, session_id, orphan.kind, orphan.payload)

    engine = SessionEngine(
        project_id,
        project_name,
        save=save if persist else None,
        orphan_sink=record if persist else None,
    )
    engine.hydrate(store.load_snapshots(project_id, reconcile=persist))
    if project_name:
        engine.project_name = project_name
    return engine
