"""Per-project archive of completed sessions."""

import copy
import logging

from buildtrack.core.session import GenerationSession

log = logging.getLogger(__name__)


class HistoryArchive:
    """Completed sessions per project, in caller-determined order.

    Sessions are deep-copied on the way in and never mutated afterwards.
    """

    def __init__(self) -> None:
        self._by_project: dict[str, list[GenerationSession]] = {}

    def insert(self, session: GenerationSession, index: int | None = None) -> bool:
        """Archive a completed session.

        Args:
            session: The session to archive. Must not be active.
            index: Position to insert at; appended when omitted.

        Returns:
            True if archived, False if the id was already present.

        Raises:
            ValueError: If the session is still active.
        """
        if session.is_active:
            raise ValueError(f"Cannot archive active session {session.id}")

        entries = self._by_project.setdefault(session.project_id, [])
        if any(s.id == session.id for s in entries):
            log.debug("Session %s already archived", session.id)
            return False

        frozen = copy.deepcopy(session)
        if index is None:
            entries.append(frozen)
        else:
            entries.insert(index, frozen)
        return True

    def replace_project(self, project_id: str, sessions: list[GenerationSession]) -> None:
        """Seed a project's history, dropping active sessions and duplicate ids."""
        seen = set()
        entries = []
        for session in sessions:
            if session.is_active or session.id in seen:
                continue
            seen.add(session.id)
            entries.append(copy.deepcopy(session))
        self._by_project[project_id] = entries

    def sessions(self, project_id: str) -> list[GenerationSession]:
        """Archived sessions for a project, in archive order."""
        return list(self._by_project.get(project_id, []))

    def contains(self, project_id: str, session_id: str) -> bool:
        return any(s.id == session_id for s in self._by_project.get(project_id, []))
