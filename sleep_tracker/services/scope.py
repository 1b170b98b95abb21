import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class ScopedService:
    """Base for services whose storage work runs as tasks tied to their lifetime.

    Task model:

    1. Every command schedules one ``asyncio.Task`` on the running loop and
       returns it.  Callers may await it to see the result or the error.
    2. Tasks of one service acquire a shared FIFO lock before doing any
       work, so they apply in the order the commands were issued.
    3. ``close()`` cancels whatever is still pending.  Writes that had not
       finished are abandoned, not awaited.
    """

    # failures that are part of normal use; logged at INFO instead of ERROR
    expected_errors: tuple[type[BaseException], ...] = ()

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()
        self._serial = asyncio.Lock()
        self._closed = False

        # Callback registry
        self._listeners: list[Callable[[], Awaitable[None] | None]] = []

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, fn: Callable[[], Awaitable[None] | None]) -> None:
        """Register a callback invoked after every state change."""
        self._listeners.append(fn)

    def remove_listener(self, fn: Callable[[], Awaitable[None] | None]) -> None:
        if fn in self._listeners:
            self._listeners.remove(fn)

    async def _notify(self) -> None:
        for fn in list(self._listeners):
            try:
                result = fn()
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                # a broken listener must not undo a write that already happened
                logger.exception("State listener %r failed", fn)

    # ------------------------------------------------------------------
    # Task scope
    # ------------------------------------------------------------------

    def _launch(self, fn: Callable[[], Awaitable]) -> asyncio.Task:
        if self._closed:
            raise RuntimeError(f"{type(self).__name__} is closed")

        async def _run():
            async with self._serial:
                result = await fn()
            await self._notify()
            return result

        task = asyncio.get_running_loop().create_task(_run())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(self._log_failure)
        return task

    def _log_failure(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if isinstance(exc, self.expected_errors):
            logger.info("%s", exc)
        elif exc is not None:
            logger.error("Background task failed: %s", exc, exc_info=exc)

    @property
    def closed(self) -> bool:
        return self._closed

    async def idle(self) -> None:
        """Wait until every task launched so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        """Cancel in-flight work and refuse new commands."""
        self._closed = True
        for task in list(self._tasks):
            task.cancel()
        self._listeners.clear()
