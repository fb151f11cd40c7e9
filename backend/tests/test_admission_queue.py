"""Unit tests for the admission queue."""

import asyncio
import time

import pytest

from clearclause.core.admission import AdmissionQueue
from clearclause.errors import ConfigurationError


def tracked_operation(state, delay=0.05, result=None, error=None):
    """Operation that records how many peers run alongside it."""
    async def operation():
        state["running"] += 1
        state["peak"] = max(state["peak"], state["running"])
        state["order"].append(result)
        try:
            await asyncio.sleep(delay)
            if error is not None:
                raise error
            return result
        finally:
            state["running"] -= 1
    return operation


def new_state():
    return {"running": 0, "peak": 0, "order": []}


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_rejects_zero_concurrency(self):
        with pytest.raises(ConfigurationError):
            AdmissionQueue(max_concurrent=0)

    def test_initial_stats(self):
        stats = AdmissionQueue(max_concurrent=3).stats()
        assert stats.queued == 0
        assert stats.processing == 0
        assert stats.completed == 0
        assert stats.failed == 0
        assert stats.max_concurrent == 3
        assert stats.average_wait_ms == 0.0


# ---------------------------------------------------------------------------
# Admission
# ---------------------------------------------------------------------------


class TestAdmission:
    def test_returns_operation_result(self):
        queue = AdmissionQueue()

        async def operation():
            return 42

        assert asyncio.run(queue.enqueue(operation)) == 42

    def test_concurrency_bound(self):
        queue = AdmissionQueue(max_concurrent=2)
        state = new_state()

        async def scenario():
            return await asyncio.gather(*(
                queue.enqueue(tracked_operation(state, result=i)) for i in range(6)
            ))

        results = asyncio.run(scenario())
        assert results == list(range(6))
        assert state["peak"] == 2

    def test_fifo_order(self):
        queue = AdmissionQueue(max_concurrent=1)
        state = new_state()

        async def scenario():
            await asyncio.gather(*(
                queue.enqueue(tracked_operation(state, delay=0.01, result=i)) for i in range(5)
            ))

        asyncio.run(scenario())
        assert state["order"] == [0, 1, 2, 3, 4]

    def test_every_submission_settles(self):
        queue = AdmissionQueue(max_concurrent=2)
        state = new_state()

        async def scenario():
            return await asyncio.gather(
                *(queue.enqueue(tracked_operation(state, delay=0.01, result=i)) for i in range(10)),
                return_exceptions=True
            )

        results = asyncio.run(scenario())
        stats = queue.stats()
        assert len(results) == 10
        assert stats.completed == 10
        assert stats.total_submitted == 10
        assert stats.queued == 0
        assert stats.processing == 0

    def test_failure_propagates_and_frees_slot(self):
        queue = AdmissionQueue(max_concurrent=1)
        state = new_state()

        async def scenario():
            return await asyncio.gather(
                queue.enqueue(tracked_operation(state, error=ValueError("bad output"))),
                queue.enqueue(tracked_operation(state, result="next")),
                return_exceptions=True
            )

        first, second = asyncio.run(scenario())
        assert isinstance(first, ValueError)
        assert second == "next"
        stats = queue.stats()
        assert stats.failed == 1
        assert stats.completed == 1

    def test_cancelled_waiter_is_settled(self):
        queue = AdmissionQueue(max_concurrent=1)
        state = new_state()

        async def scenario():
            blocker = asyncio.ensure_future(queue.enqueue(tracked_operation(state, delay=0.1, result=1)))
            waiter = asyncio.ensure_future(queue.enqueue(tracked_operation(state, result=2)))
            await asyncio.sleep(0.01)
            waiter.cancel()
            await blocker
            with pytest.raises(asyncio.CancelledError):
                await waiter

        asyncio.run(scenario())
        stats = queue.stats()
        assert stats.completed == 1
        assert stats.failed == 1
        assert state["order"] == [1]


# ---------------------------------------------------------------------------
# Wait times
# ---------------------------------------------------------------------------


class TestWaitTimes:
    def test_wait_grows_as_concurrency_shrinks(self):
        def average_wait(max_concurrent):
            queue = AdmissionQueue(max_concurrent=max_concurrent)
            state = new_state()

            async def scenario():
                await asyncio.gather(*(
                    queue.enqueue(tracked_operation(state, delay=0.05, result=i)) for i in range(4)
                ))

            asyncio.run(scenario())
            return queue.average_wait_time_ms()

        serial = average_wait(1)
        parallel = average_wait(4)
        assert serial > parallel
        # With one slot the 2nd, 3rd and 4th items wait 50, 100 and 150 ms
        assert serial >= 50

    def test_wall_time_with_bound(self):
        queue = AdmissionQueue(max_concurrent=2)
        state = new_state()

        async def scenario():
            await asyncio.gather(*(
                queue.enqueue(tracked_operation(state, delay=0.05, result=i)) for i in range(4)
            ))

        started = time.perf_counter()
        asyncio.run(scenario())
        assert time.perf_counter() - started >= 0.09
