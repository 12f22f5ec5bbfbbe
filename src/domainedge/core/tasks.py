"""Fire-and-forget dispatch for side effects that must not affect callers.

Analytics inserts and verification notifications run as detached asyncio
tasks. Their failures are logged and never propagate to the request that
scheduled them.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

logger = structlog.get_logger()


class BackgroundDispatcher:
    """Keeps strong references to detached tasks until they finish."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    def dispatch(
        self,
        name: str,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> asyncio.Task[Any] | None:
        """Schedule ``func(*args, **kwargs)`` without awaiting it.

        Returns the task, or None when no event loop is running (the side
        effect is dropped and logged).
        """
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Background task dropped, no running loop", task=name)
            return None

        task = loop.create_task(self._run(name, func, *args, **kwargs), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(
        self,
        name: str,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> None:
        try:
            await func(*args, **kwargs)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("Background task failed", task=name, error=str(e))

    @property
    def pending(self) -> int:
        """Number of tasks still running."""
        return len(self._tasks)

    async def drain(self, timeout: float | None = 5.0) -> None:
        """Wait for outstanding tasks, cancelling whatever is left after ``timeout``."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        _, still_running = await asyncio.wait(tasks, timeout=timeout)
        for task in still_running:
            task.cancel()
        for task in still_running:
            with contextlib.suppress(asyncio.CancelledError):
                await task
