"""Shared request scheduler for every call to the Roam backend.

The Roam API enforces a per-graph quota, so all outbound calls, from any
tool, are admitted through one root ``RequestScheduler``:

- at most ``max_concurrent`` calls in flight (1 by default)
- at least ``min_time`` seconds between successive dispatches
- at most ``reservoir`` dispatches per window; every
  ``reservoir_refresh_interval`` seconds the reservoir is reset to
  ``reservoir_refresh_amount``

Lifecycle: the root is built once at server start (see
``ServerConfig.get_scheduler``) and handed by reference to the client.
Features that want tighter limits call ``create_child()``; a child applies
its own concurrency/spacing and then dispatches through its parent, so the
root quota can never be bypassed. Children have no reservoir of their own.

Quota rejections are retried with exponential backoff around each dispatch;
every retry re-enters admission and consumes reservoir again.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, TypeVar

from .api_client_core import _ClientLogger
from .backoff import DEFAULT_BASE_DELAY, DEFAULT_MAX_ATTEMPTS, delay_for_attempt, retry_with_backoff

T = TypeVar("T")


class RequestScheduler:
    """Pacing, concurrency and retry gate for remote calls."""

    def __init__(
        self,
        reservoir: int | None = 300,
        reservoir_refresh_amount: int | None = None,
        reservoir_refresh_interval: float = 60.0,
        min_time: float = 0.0,
        max_concurrent: int = 1,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        name: str = "root",
        _parent: "RequestScheduler | None" = None,
    ):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")

        self.name = name
        self.min_time = min_time
        self.max_concurrent = max_concurrent
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.reservoir_refresh_interval = reservoir_refresh_interval
        self.reservoir_refresh_amount = (
            reservoir_refresh_amount if reservoir_refresh_amount is not None else reservoir
        )

        self._parent = _parent
        self._clock = clock
        self._sleep = sleep
        self._reservoir = reservoir
        self._last_refresh = clock()
        self._next_dispatch_at = 0.0
        self._slots = asyncio.Semaphore(max_concurrent)
        self._admission_lock = asyncio.Lock()
        self._running = 0
        self._logger = _ClientLogger("SCHEDULER")

    @property
    def parent(self) -> "RequestScheduler | None":
        return self._parent

    @property
    def reservoir(self) -> int | None:
        """Remaining dispatches in the current window (None = unlimited)."""
        self._refresh_reservoir()
        return self._reservoir

    @property
    def running(self) -> int:
        return self._running

    def create_child(
        self,
        name: str,
        max_concurrent: int | None = None,
        min_time: float = 0.0,
    ) -> "RequestScheduler":
        """Build a per-feature scheduler that funnels into this one."""
        return RequestScheduler(
            reservoir=None,
            min_time=min_time,
            max_concurrent=max_concurrent or self.max_concurrent,
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            clock=self._clock,
            sleep=self._sleep,
            name=name,
            _parent=self,
        )

    def _refresh_reservoir(self) -> None:
        if self._reservoir is None:
            return
        elapsed = self._clock() - self._last_refresh
        if elapsed >= self.reservoir_refresh_interval:
            windows = int(elapsed // self.reservoir_refresh_interval)
            self._last_refresh += windows * self.reservoir_refresh_interval
            self._reservoir = self.reservoir_refresh_amount

    async def _admit(self) -> None:
        """Wait for reservoir and spacing, then claim one dispatch."""
        async with self._admission_lock:
            while True:
                self._refresh_reservoir()
                if self._reservoir is None or self._reservoir > 0:
                    break
                wait = self._last_refresh + self.reservoir_refresh_interval - self._clock()
                self._logger.debug(f"[{self.name}] Reservoir empty, waiting {wait:.2f}s for refresh")
                await self._sleep(max(wait, 0.0))

            wait = self._next_dispatch_at - self._clock()
            if wait > 0:
                await self._sleep(wait)

            self._next_dispatch_at = self._clock() + self.min_time
            if self._reservoir is not None:
                self._reservoir -= 1

    async def _dispatch(self, fn: Callable[..., Awaitable[T]], args: tuple, kwargs: dict) -> T:
        async with self._slots:
            await self._admit()
            if self._parent is not None:
                return await self._parent._dispatch(fn, args, kwargs)
            self._running += 1
            try:
                return await fn(*args, **kwargs)
            finally:
                self._running -= 1

    def _log_retry(self, attempt: int, delay: float, error: BaseException) -> None:
        self._logger.warning(
            f"[{self.name}] Rate limit hit, retrying after {delay:.1f}s "
            f"(attempt {attempt}/{self.max_attempts}): {error}"
        )

    async def schedule(self, fn: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run ``fn(*args, **kwargs)`` (exactly one remote call) under the quota.

        Raises:
            RetriesExhaustedError: quota rejections on every attempt
            Exception: any non-quota failure from ``fn``, unchanged
        """
        return await retry_with_backoff(
            lambda: self._dispatch(fn, args, kwargs),
            max_attempts=self.max_attempts,
            delay=lambda n: delay_for_attempt(n, self.base_delay),
            sleep=self._sleep,
            on_retry=self._log_retry,
        )
