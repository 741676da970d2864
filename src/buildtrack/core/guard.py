"""Per-project "generation in progress" guard.

The guard is taken synchronously when a build is requested, before any I/O,
and released when the stream's decode loop ends. Hydration consults it to
avoid overwriting the state of a build that is still streaming.
"""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime

from buildtrack.core.session import utcnow

log = logging.getLogger(__name__)


class GenerationInProgress(RuntimeError):
    """Raised when a build is requested while another one holds the guard."""


@dataclass(frozen=True)
class GenerationToken:
    project_id: str
    session_id: str
    acquired_at: datetime = field(default_factory=utcnow)


class GenerationGuard:
    """Tracks which projects have a build streaming."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._held: dict[str, GenerationToken] = {}

    def acquire(self, project_id: str, session_id: str) -> GenerationToken:
        """Take the guard for a project.

        Raises:
            GenerationInProgress: If another build already holds it.
        """
        with self._lock:
            current = self._held.get(project_id)
            if current is not None:
                raise GenerationInProgress(
                    f"Build {current.session_id} is already running for project {project_id}"
                )
            token = GenerationToken(project_id, session_id)
            self._held[project_id] = token
        log.debug("Generation guard acquired for %s (%s)", project_id, session_id)
        return token

    def release(self, token: GenerationToken) -> bool:
        """Release the guard if ``token`` still holds it.

        Returns:
            True if released, False if the token was stale.
        """
        with self._lock:
            if self._held.get(token.project_id) is not token:
                return False
            del self._held[token.project_id]
        log.debug("Generation guard released for %s (%s)", token.project_id, token.session_id)
        return True

    def is_held(self, project_id: str) -> bool:
        with self._lock:
            return project_id in self._held

    @contextmanager
    def hold(self, project_id: str, session_id: str) -> Iterator[GenerationToken]:
        """Hold the guard for the duration of a ``with`` block."""
        token = self.acquire(project_id, session_id)
        try:
            yield token
        finally:
            self.release(token)
