"""Background task tracking for UI-triggered session commands."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
import logging
from typing import Any

LOGGER = logging.getLogger(__name__)


class TaskManager:
    """Run session commands as named or anonymous asyncio tasks.

    Named slots hold at most one task each (for example the active
    generation or model load); anonymous tasks drop out when they finish.
    Any task that dies with an exception is logged rather than lost.
    """

    def __init__(self) -> None:
        self._named: dict[str, asyncio.Task[Any]] = {}
        self._anonymous: set[asyncio.Task[Any]] = set()

    @staticmethod
    def _log_failure(task: asyncio.Task[Any]) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error(
                "task.failed",
                extra={
                    "event": "task.failed",
                    "task": task.get_name(),
                    "error_type": exc.__class__.__name__,
                    "reason": str(exc),
                },
            )

    def spawn(
        self, coro: Coroutine[Any, Any, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Schedule ``coro`` and track it under ``name`` when given."""
        task = asyncio.create_task(coro, name=name)
        self.add(task, name=name)
        return task

    def add(self, task: asyncio.Task[Any], name: str | None = None) -> None:
        """Track an existing task.

        A named task replaces the previous holder of that name without
        cancelling it.
        """
        task.add_done_callback(self._log_failure)
        if name is not None:
            self._named[name] = task
        else:
            self._anonymous.add(task)
            task.add_done_callback(self._anonymous.discard)

    def is_running(self, name: str) -> bool:
        task = self._named.get(name)
        return task is not None and not task.done()

    async def cancel_all(self) -> None:
        """Cancel every tracked task and await them all."""
        pending = [t for t in self._named.values() if not t.done()] + [
            t for t in self._anonymous if not t.done()
        ]
        for task in pending:
            task.cancel()
        for task in pending:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:  # noqa: BLE001 - already logged by _log_failure.
                pass
        self._named.clear()
        self._anonymous.clear()

