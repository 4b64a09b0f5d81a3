"""Per-key single-flight guard for the analysis pipeline.

At most one execution per key runs at a time. A second caller for a key that
is already running is either rejected with AlreadyInProgress or handed the
running execution's outcome, depending on the policy.

Executions run as their own tasks and the callers await them through
asyncio.shield, so a caller that goes away (client disconnect) does not abort
work that has already started.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Literal, TypeVar

import structlog

from listing_advisor.errors import AlreadyInProgress

logger = structlog.get_logger()

T = TypeVar("T")

Policy = Literal["reject", "wait"]


class SingleFlight:
    def __init__(self, policy: Policy = "reject") -> None:
        self.policy = policy
        self._inflight: dict[str, asyncio.Task] = {}

    def is_running(self, key: str) -> bool:
        return key in self._inflight

    async def run(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        existing = self._inflight.get(key)
        if existing is not None:
            if self.policy == "reject":
                logger.info("single_flight_rejected", key=key)
                raise AlreadyInProgress(key)
            logger.info("single_flight_joined", key=key)
            return await asyncio.shield(existing)

        task = asyncio.create_task(self._execute(key, fn))
        # Registered before the task gets a chance to start, so the entry is
        # always visible while the execution is live.
        self._inflight[key] = task
        task.add_done_callback(_retrieve_exception)
        return await asyncio.shield(task)

    async def _execute(self, key: str, fn: Callable[[], Awaitable[T]]) -> T:
        try:
            return await fn()
        finally:
            self._inflight.pop(key, None)


def _retrieve_exception(task: asyncio.Task) -> None:
    # Mark the exception as retrieved when every caller has gone away.
    if not task.cancelled():
        task.exception()
