"""Tests for the shared request scheduler."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from roam_mcp.client import RequestScheduler
from roam_mcp.models import QueryError, RateLimitError, RetriesExhaustedError


class FakeClock:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class InFlightTracker:
    def __init__(self) -> None:
        self.current = 0
        self.peak = 0
        self.calls = 0

    async def call(self, value):
        self.current += 1
        self.calls += 1
        self.peak = max(self.peak, self.current)
        try:
            await asyncio.sleep(0.005)
            return value
        finally:
            self.current -= 1


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_no_overlap_with_concurrency_one(self):
        scheduler = RequestScheduler(reservoir=None, max_concurrent=1)
        tracker = InFlightTracker()

        results = await asyncio.gather(*(scheduler.schedule(tracker.call, i) for i in range(10)))

        assert results == list(range(10))
        assert tracker.calls == 10
        assert tracker.peak == 1

    @pytest.mark.asyncio
    async def test_children_cannot_exceed_root_concurrency(self):
        root = RequestScheduler(reservoir=None, max_concurrent=1)
        pages = root.create_child("pages", max_concurrent=5)
        hierarchy = root.create_child("hierarchy", max_concurrent=5)
        tracker = InFlightTracker()

        await asyncio.gather(
            *(pages.schedule(tracker.call, i) for i in range(5)),
            *(hierarchy.schedule(tracker.call, i) for i in range(5)),
        )

        assert tracker.calls == 10
        assert tracker.peak == 1

    @pytest.mark.asyncio
    async def test_concurrency_bound_above_one(self):
        scheduler = RequestScheduler(reservoir=None, max_concurrent=2)
        tracker = InFlightTracker()

        await asyncio.gather(*(scheduler.schedule(tracker.call, i) for i in range(6)))

        assert tracker.peak == 2

    def test_rejects_zero_concurrency(self):
        with pytest.raises(ValueError):
            RequestScheduler(max_concurrent=0)


class TestPacing:
    @pytest.mark.asyncio
    async def test_reservoir_waits_for_refresh(self):
        clock = FakeClock()
        scheduler = RequestScheduler(
            reservoir=2, reservoir_refresh_interval=60.0, clock=clock, sleep=clock.sleep
        )
        fn = AsyncMock(return_value="ok")

        await scheduler.schedule(fn)
        await scheduler.schedule(fn)
        assert scheduler.reservoir == 0
        assert clock.now == 0.0

        await scheduler.schedule(fn)

        assert clock.now == pytest.approx(60.0)
        assert scheduler.reservoir == 1
        assert fn.await_count == 3

    @pytest.mark.asyncio
    async def test_refresh_resets_to_refresh_amount(self):
        clock = FakeClock()
        scheduler = RequestScheduler(
            reservoir=3,
            reservoir_refresh_amount=5,
            reservoir_refresh_interval=10.0,
            clock=clock,
            sleep=clock.sleep,
        )
        await scheduler.schedule(AsyncMock())
        assert scheduler.reservoir == 2

        clock.now = 25.0
        assert scheduler.reservoir == 5

    @pytest.mark.asyncio
    async def test_min_time_spaces_dispatches(self):
        clock = FakeClock()
        scheduler = RequestScheduler(reservoir=None, min_time=1.5, clock=clock, sleep=clock.sleep)
        dispatched = []

        async def record():
            dispatched.append(clock.now)

        for _ in range(3):
            await scheduler.schedule(record)

        assert dispatched == [pytest.approx(0.0), pytest.approx(1.5), pytest.approx(3.0)]

    @pytest.mark.asyncio
    async def test_child_consumes_root_reservoir(self):
        root = RequestScheduler(reservoir=10)
        child = root.create_child("pages")

        await child.schedule(AsyncMock(return_value=None))

        assert root.reservoir == 9
        assert child.reservoir is None
        assert child.parent is root


class TestRetries:
    @pytest.mark.asyncio
    async def test_quota_failure_is_retried_with_backoff(self, capsys):
        clock = FakeClock()
        scheduler = RequestScheduler(
            reservoir=10, base_delay=2.0, clock=clock, sleep=clock.sleep
        )
        fn = AsyncMock(side_effect=[RateLimitError(), RateLimitError(), {"result": 1}])

        result = await scheduler.schedule(fn)

        assert result == {"result": 1}
        assert clock.sleeps == [2.0, 4.0]
        # every attempt is admitted again
        assert scheduler.reservoir == 7
        stderr = capsys.readouterr().err
        assert "WARNING: [root] Rate limit hit, retrying after 2.0s (attempt 1/8)" in stderr
        assert "attempt 2/8" in stderr

    @pytest.mark.asyncio
    async def test_exhaustion_raises_retries_exhausted(self):
        clock = FakeClock()
        scheduler = RequestScheduler(
            reservoir=None, max_attempts=3, base_delay=1.0, clock=clock, sleep=clock.sleep
        )
        fn = AsyncMock(side_effect=RateLimitError())

        with pytest.raises(RetriesExhaustedError) as exc_info:
            await scheduler.schedule(fn)

        assert isinstance(exc_info.value.last_error, RateLimitError)
        assert fn.await_count == 3
        assert clock.sleeps == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_fatal_error_surfaces_immediately(self):
        scheduler = RequestScheduler(reservoir=5)
        fn = AsyncMock(side_effect=QueryError("400 Error in query"))

        with pytest.raises(QueryError):
            await scheduler.schedule(fn)

        assert fn.await_count == 1
        assert scheduler.reservoir == 4

    @pytest.mark.asyncio
    async def test_child_inherits_retry_policy(self):
        clock = FakeClock()
        root = RequestScheduler(reservoir=None, max_attempts=2, base_delay=0.5, clock=clock, sleep=clock.sleep)
        child = root.create_child("hierarchy")
        fn = AsyncMock(side_effect=[RateLimitError(), "ok"])

        assert await child.schedule(fn) == "ok"
        assert clock.sleeps == [0.5]
