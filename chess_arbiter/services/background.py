"""
Background work dispatched by the Arbitrator: persistence writes and automated-opponent turns.

Neither may hold up a participant's live experience, and a failure in either is logged, never rolled back into the match.
"""

import asyncio
import logging
import threading
from collections import deque
from functools import partial
from typing import Awaitable, Callable, Optional, Protocol
from uuid import UUID

from chess_arbiter.core.models import MatchRecord, MoveRecord
from chess_arbiter.db.repository import MatchRepository

logger = logging.getLogger(__name__)

Job = Callable[[], Awaitable[None]]


class TaskRunner(Protocol):
    def spawn(self, job: Job, name: str) -> None:
        """Start the job in the background. Must return immediately."""
        ...


class AsyncioTaskRunner:
    """Runs jobs as asyncio tasks on the application's event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._tasks: set[asyncio.Task] = set()

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def spawn(self, job: Job, name: str) -> None:
        loop = self._loop or asyncio.get_running_loop()
        if self._in_loop_thread(loop):
            self._create_task(loop, job, name)
        else:
            loop.call_soon_threadsafe(self._create_task, loop, job, name)

    async def shutdown(self) -> None:
        """Wait for whatever is still running (used at application shutdown)."""
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    # -- Internal helpers --
    def _create_task(self, loop: asyncio.AbstractEventLoop, job: Job, name: str) -> None:
        task = loop.create_task(job(), name=name)
        # The loop only keeps weak references to its tasks.
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s failed", task.get_name(), exc_info=exc)

    def _in_loop_thread(self, loop: asyncio.AbstractEventLoop) -> bool:
        try:
            return asyncio.get_running_loop() is loop
        except RuntimeError:
            return False


class WriteBehindLog:
    """
    Ordered, fire-and-forget writes to the durable store.
    ----
    Writes are executed one at a time in submission order (so a match snapshot never overtakes an earlier one),
    each in a worker thread. A failed write is logged and skipped: the in-memory match stays authoritative.
    """

    def __init__(self, gateway: MatchRepository, runner: TaskRunner) -> None:
        self.gateway = gateway
        self.runner = runner
        self._pending: deque[tuple[str, Callable[[], object]]] = deque()
        self._draining = False
        self._lock = threading.Lock()

    def save_match(self, record: MatchRecord) -> None:
        self._submit(f"save match {record.id}", partial(self.gateway.save_match, record))

    def record_move(self, record: MoveRecord) -> None:
        self._submit(
            f"record move {record.from_square}{record.to_square} of match {record.match_id}",
            partial(self.gateway.record_move, record),
        )

    def delete_match(self, match_id: UUID) -> None:
        self._submit(f"delete match {match_id}", partial(self.gateway.delete_match, match_id))

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._pending)

    # -- Internal helpers --
    def _submit(self, description: str, write: Callable[[], object]) -> None:
        with self._lock:
            self._pending.append((description, write))
            if self._draining:
                return
            self._draining = True
        self.runner.spawn(self._drain, name="write-behind")

    async def _drain(self) -> None:
        while True:
            with self._lock:
                if not self._pending:
                    self._draining = False
                    return
                description, write = self._pending.popleft()
            try:
                await asyncio.to_thread(write)
            except Exception:
                logger.exception("Persistence write failed (%s). The live match continues without it.", description)
