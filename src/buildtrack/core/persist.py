"""Debounced, best-effort persistence of session snapshots."""

import asyncio
import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

from buildtrack.core.config import DEFAULT_PERSIST_DEBOUNCE_SECONDS
from buildtrack.core.session import GenerationSession

log = logging.getLogger(__name__)


class DebouncedWriter:
    """Coalesce bursts of state changes into one write.

    Each ``mark_dirty`` supersedes the pending write and restarts the delay.
    Terminal sessions are written immediately. Failures are logged and never
    retried; the next change simply schedules another write.

    Inside a running event loop writes happen on a single worker thread, so
    the loop never blocks on the store and writes land in flush order.

    Args:
        write: Callable that persists one session.
        delay: Debounce window in seconds.
    """

    def __init__(
        self,
        write: Callable[[GenerationSession], None],
        delay: float = DEFAULT_PERSIST_DEBOUNCE_SECONDS,
    ) -> None:
        self._write = write
        self._delay = delay
        self._pending: GenerationSession | None = None
        self._handle: asyncio.TimerHandle | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._inflight: set[asyncio.Future] = set()
        self.writes = 0

    def mark_dirty(self, session: GenerationSession) -> None:
        """Schedule ``session`` to be written after the debounce window."""
        self._pending = session
        if not session.is_active:
            self.flush()
            return

        self._cancel()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to defer on
            self.flush()
            return
        self._handle = loop.call_later(self._delay, self.flush)

    def flush(self) -> None:
        """Write the pending session now, if any.

        Without a running loop the write is synchronous. Otherwise it is
        handed to the worker thread; ``drain`` waits for it.
        """
        self._cancel()
        session, self._pending = self._pending, None
        if session is None:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._persist(session)
            return

        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="buildtrack-persist")
        future = loop.run_in_executor(self._executor, self._persist, session)
        self._inflight.add(future)
        future.add_done_callback(self._inflight.discard)

    async def drain(self) -> None:
        """Wait until every write handed to the worker thread has finished."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight))
        if self._executor is not None:
            self._executor.shutdown(wait=False)
            self._executor = None

    def _persist(self, session: GenerationSession) -> None:
        try:
            self._write(session)
            self.writes += 1
        except Exception:
            log.exception("Failed to persist session %s", session.id)

    def _cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
