"""Single-lane task queue serializing note reconciliation.

Edit and commit reconciliation both read-modify-write a file's whole note map.
Running them through one FIFO with a single worker means they never
interleave: a task observes every mutation made by the tasks enqueued before
it. Suspension only happens at await points inside the running task; the
queue never pre-empts it.
"""

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable

from line_notes.logging import Logger, get_logger

Task = Callable[[], Awaitable[object]]


class TaskQueue:
    """FIFO of zero-argument coroutine functions drained by one worker.

    A task that raises is logged and skipped; the worker moves on to the next
    task. There is no priority, cancellation or timeout.
    """

    def __init__(self, logger: Logger | None = None) -> None:
        self._queue: deque[tuple[Task, str]] = deque()
        self._worker: asyncio.Task | None = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._logger = logger

    @property
    def logger(self) -> Logger:
        return self._logger or get_logger()

    @property
    def pending(self) -> int:
        """Tasks waiting to run (excluding the one running now)."""
        return len(self._queue)

    @property
    def is_processing(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def enqueue(self, task: Task, name: str | None = None) -> None:
        """Append ``task`` and start a worker if none is draining.

        Must be called from the thread running the event loop.
        """
        self._queue.append((task, name or getattr(task, "__name__", "task")))
        self._idle.clear()
        if not self.is_processing:
            self._worker = asyncio.get_running_loop().create_task(self._drain())

    async def join(self) -> None:
        """Wait until every enqueued task has finished."""
        await self._idle.wait()

    async def _drain(self) -> None:
        try:
            while self._queue:
                task, name = self._queue.popleft()
                try:
                    await task()
                except Exception as exc:
                    self.logger.exception(f"Task {name} failed", exc)
        finally:
            self._worker = None
            self._idle.set()
