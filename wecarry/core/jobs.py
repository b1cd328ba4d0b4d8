"""
Minimal in-process background job queue.

Handlers are registered by name and called as ``handler(ctx, args)``, the
same shape an ARQ worker function has. ``ctx`` is shared worker context
(session factory, settings, email service). Jobs are delayed so that the
transaction that produced them has committed before they read the
database.
"""

from __future__ import annotations

import asyncio
from functools import lru_cache
from typing import Any, Awaitable, Callable

import structlog

log = structlog.get_logger()

JobHandler = Callable[[dict, dict], Awaitable[Any]]

DEFAULT_DELAY_SECONDS = 10.0


class UnknownJob(LookupError):
    pass


class JobQueue:
    def __init__(self, default_delay: float = DEFAULT_DELAY_SECONDS):
        self.default_delay = default_delay
        self.ctx: dict[str, Any] = {}
        self._handlers: dict[str, JobHandler] = {}
        self._pending: set[asyncio.Task] = set()
        self._accepting = True

    def register(self, name: str, handler: JobHandler) -> None:
        self._handlers[name] = handler

    def registered(self) -> list[str]:
        return sorted(self._handlers)

    def submit_delayed(
        self, name: str, args: dict[str, Any], delay: float | None = None
    ) -> asyncio.Task:
        """Schedule job ``name`` to run after ``delay`` seconds."""
        if name not in self._handlers:
            raise UnknownJob(name)
        if not self._accepting:
            raise RuntimeError("job queue is shut down")

        wait = self.default_delay if delay is None else delay
        task = asyncio.create_task(self._run(name, dict(args), wait))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        log.info("job.submitted", job=name, delay=wait, **_loggable(args))
        return task

    async def _run(self, name: str, args: dict[str, Any], delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        handler = self._handlers[name]
        try:
            await handler(self.ctx, args)
        except Exception:
            log.exception("job.failed", job=name, **_loggable(args))
        else:
            log.info("job.completed", job=name)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait until every submitted job, including ones they submit, is done."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def shutdown(self, cancel_pending: bool = False) -> None:
        self._accepting = False
        if cancel_pending:
            for task in list(self._pending):
                task.cancel()
        await asyncio.gather(*list(self._pending), return_exceptions=True)
        log.info("job.queue_stopped", cancelled=cancel_pending)


def _loggable(args: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in args.items() if isinstance(v, (str, int, float, bool))}


@lru_cache
def get_job_queue() -> JobQueue:
    return JobQueue()
