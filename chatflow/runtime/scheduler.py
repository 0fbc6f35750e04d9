"""
Asyncio scheduler - wakes WAITING-on-delay executions.

Timers live in the running event loop only. After a restart, call
``FlowRuntime.rearm_timers()`` to schedule every persisted WAITING execution
again; a wake-up that fires early is a no-op for the executor.
"""

import asyncio
import contextvars
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from chatflow.schemas.execution import utc_now

logger = logging.getLogger(__name__)

WakeCallback = Callable[[str], Awaitable[Any]]


class AsyncioScheduler:
    """Scheduler backed by ``loop.call_later`` timers, one per execution."""

    def __init__(
        self,
        callback: WakeCallback | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._callback = callback
        self._clock = clock
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._tasks: set[asyncio.Task] = set()

    def set_callback(self, callback: WakeCallback) -> None:
        self._callback = callback

    def schedule(self, execution_id: str, resume_at: datetime) -> None:
        """Register (or replace) the wake-up for an execution."""
        self.cancel(execution_id)
        delay = max(0.0, (resume_at - self._clock()).total_seconds())
        loop = asyncio.get_running_loop()
        # Fresh context: a wake-up must not inherit the scheduling step's trace ids
        self._timers[execution_id] = loop.call_later(
            delay, self._fire, execution_id, context=contextvars.Context()
        )
        logger.debug(f"Scheduled wake-up for {execution_id} in {delay:.1f}s")

    def cancel(self, execution_id: str) -> bool:
        """Drop a pending wake-up. Returns True if one was pending."""
        timer = self._timers.pop(execution_id, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def pending(self) -> list[str]:
        return list(self._timers)

    def close(self) -> None:
        """Cancel every pending timer and in-flight wake-up."""
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        for task in self._tasks:
            task.cancel()

    def _fire(self, execution_id: str) -> None:
        self._timers.pop(execution_id, None)
        if self._callback is None:
            logger.warning(f"Wake-up for {execution_id} fired with no callback set")
            return
        task = asyncio.ensure_future(self._run(execution_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, execution_id: str) -> None:
        try:
            await self._callback(execution_id)
        except Exception:
            logger.exception(f"Wake-up for {execution_id} failed")
