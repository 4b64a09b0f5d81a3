"""Tests for the per-key single-flight guard."""

from __future__ import annotations

import asyncio

import pytest

from listing_advisor.errors import AlreadyInProgress
from listing_advisor.services.single_flight import SingleFlight


class _Gate:
    """Coroutine factory that blocks until released and counts executions."""

    def __init__(self, result: str = "done") -> None:
        self.release = asyncio.Event()
        self.started = asyncio.Event()
        self.calls = 0
        self.result = result

    async def __call__(self) -> str:
        self.calls += 1
        self.started.set()
        await self.release.wait()
        return self.result


class TestRejectPolicy:
    async def test_second_caller_rejected(self):
        guard = SingleFlight("reject")
        gate = _Gate()
        first = asyncio.create_task(guard.run("MLA1", gate))
        await gate.started.wait()

        with pytest.raises(AlreadyInProgress) as exc_info:
            await guard.run("MLA1", gate)
        assert exc_info.value.key == "MLA1"

        gate.release.set()
        assert await first == "done"
        assert gate.calls == 1

    async def test_different_keys_run_concurrently(self):
        guard = SingleFlight("reject")
        gate_a, gate_b = _Gate("a"), _Gate("b")
        task_a = asyncio.create_task(guard.run("MLA1", gate_a))
        task_b = asyncio.create_task(guard.run("MLA2", gate_b))
        await gate_a.started.wait()
        await gate_b.started.wait()
        gate_a.release.set()
        gate_b.release.set()
        assert await asyncio.gather(task_a, task_b) == ["a", "b"]

    async def test_key_released_after_completion(self):
        guard = SingleFlight("reject")
        gate = _Gate()
        gate.release.set()
        await guard.run("MLA1", gate)
        assert not guard.is_running("MLA1")
        await guard.run("MLA1", gate)
        assert gate.calls == 2

    async def test_key_released_after_failure(self):
        guard = SingleFlight("reject")

        async def boom() -> None:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await guard.run("MLA1", boom)
        assert not guard.is_running("MLA1")


class TestWaitPolicy:
    async def test_waiter_gets_first_result(self):
        guard = SingleFlight("wait")
        gate = _Gate("shared")
        first = asyncio.create_task(guard.run("MLA1", gate))
        await gate.started.wait()
        second = asyncio.create_task(guard.run("MLA1", gate))
        await asyncio.sleep(0)
        gate.release.set()
        assert await asyncio.gather(first, second) == ["shared", "shared"]
        assert gate.calls == 1

    async def test_waiter_gets_first_error(self):
        guard = SingleFlight("wait")
        release = asyncio.Event()
        calls = 0

        async def failing() -> None:
            nonlocal calls
            calls += 1
            await release.wait()
            raise ValueError("upstream down")

        first = asyncio.create_task(guard.run("MLA1", failing))
        await asyncio.sleep(0)
        second = asyncio.create_task(guard.run("MLA1", failing))
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(first, second, return_exceptions=True)
        assert all(isinstance(r, ValueError) for r in results)
        assert calls == 1


class TestCancellation:
    async def test_cancelled_caller_does_not_abort_execution(self):
        guard = SingleFlight("reject")
        gate = _Gate()
        caller = asyncio.create_task(guard.run("MLA1", gate))
        await gate.started.wait()

        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        # The execution is still registered and finishes on its own
        assert guard.is_running("MLA1")
        gate.release.set()
        for _ in range(5):
            await asyncio.sleep(0)
        assert not guard.is_running("MLA1")
        assert gate.calls == 1
