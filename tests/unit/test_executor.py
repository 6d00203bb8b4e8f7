"""Tests for the bounded async pool executor."""

import asyncio

import pytest

from stackgraph.errors import DispatchCancelledError
from stackgraph.executors import AsyncPoolExecutor


def _sleeper(delay, value=None):
    async def work():
        await asyncio.sleep(delay)
        return value

    return work


class TestAsyncPoolExecutor:
    def test_results_and_stats(self):
        async def scenario():
            executor = AsyncPoolExecutor(max_in_flight=2)
            tasks = [executor.submit(f"n{i}", _sleeper(0.01, i)) for i in range(4)]
            results = await asyncio.gather(*tasks)
            return results, executor.get_stats()

        results, stats = asyncio.run(scenario())
        assert results == [0, 1, 2, 3]
        assert stats["total_completed"] == 4
        assert stats["peak_in_flight"] == 2
        assert stats["in_flight"] == 0

    def test_in_flight_bound(self):
        observed = []

        async def scenario():
            executor = AsyncPoolExecutor(max_in_flight=3)

            async def work():
                observed.append(executor.in_flight)
                await asyncio.sleep(0.005)

            await asyncio.gather(*(executor.submit(f"n{i}", work) for i in range(10)))

        asyncio.run(scenario())
        assert max(observed) <= 3

    def test_failures_propagate(self):
        async def scenario():
            executor = AsyncPoolExecutor(max_in_flight=1)

            async def boom():
                raise RuntimeError("boom")

            task = executor.submit("bad", boom)
            with pytest.raises(RuntimeError):
                await task
            return executor.get_stats()

        stats = asyncio.run(scenario())
        assert stats["total_failed"] == 1
        assert stats["success_rate"] == 0.0

    def test_stop_prevents_queued_work(self):
        async def scenario():
            executor = AsyncPoolExecutor(max_in_flight=1)
            running = executor.submit("running", _sleeper(0.02, "done"))
            queued = executor.submit("queued", _sleeper(0.0, "never"))
            await asyncio.sleep(0.005)
            executor.stop()

            results = await asyncio.gather(running, queued, return_exceptions=True)
            return results, executor

        (first, second), executor = asyncio.run(scenario())
        assert first == "done"
        assert isinstance(second, DispatchCancelledError)
        assert executor.total_not_started == 1
        assert executor.stopping

    def test_context_manager_waits_for_tasks(self):
        async def scenario():
            async with AsyncPoolExecutor(max_in_flight=2) as executor:
                task = executor.submit("n", _sleeper(0.01, 1))
                await asyncio.sleep(0)
            return task

        assert asyncio.run(scenario()).result() == 1
