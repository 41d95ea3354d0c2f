from __future__ import annotations

import asyncio
import time
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Deque

from intune_bulk.utils import get_logger


_logger = get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[None]]


class RateLimiter:
    """Asynchronous rate limiter mirroring Intune Graph constraints.

    Two mechanisms are combined: a semaphore bounding the number of HTTP
    calls in flight, and a rolling window of recent request timestamps used
    to pace callers before Graph starts answering with 429s.
    """

    max_write_requests_per_window: int = 100
    max_total_requests_per_window: int = 1000
    window_seconds: float = 20.0

    def __init__(
        self,
        max_concurrency: int = 5,
        *,
        sleep: SleepFunc | None = None,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._max_concurrency = max_concurrency
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._sleep: SleepFunc = sleep or asyncio.sleep
        self._lock = asyncio.Lock()
        self._request_times: Deque[float] = deque()
        self._write_request_times: Deque[float] = deque()
        self._last_rate_limit_time: float | None = None
        self._consecutive_rate_limits = 0
        self._in_flight = 0
        self._peak_in_flight = 0

    @staticmethod
    def _now() -> float:
        return time.monotonic()

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def peak_in_flight(self) -> int:
        """Highest number of simultaneous slots observed since creation."""

        return self._peak_in_flight

    @asynccontextmanager
    async def slot(self, *, is_write: bool) -> AsyncIterator[None]:
        """Hold one concurrency slot for the duration of an HTTP call."""

        async with self._semaphore:
            while not await self.can_make_request(is_write=is_write):
                delay = await self.calculate_delay(is_write=is_write)
                await self._sleep(max(delay, 0.05))
            await self.record_request(is_write=is_write)
            self._in_flight += 1
            self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
            try:
                yield
            finally:
                self._in_flight -= 1

    async def can_make_request(self, *, is_write: bool) -> bool:
        async with self._lock:
            self._cleanup_locked()
            total = len(self._request_times)
            write_count = len(self._write_request_times)

            if total >= self.max_total_requests_per_window:
                _logger.debug(
                    "Approaching total rate limit",
                    total=total,
                    limit=self.max_total_requests_per_window,
                )
                return False

            if is_write and write_count >= self.max_write_requests_per_window:
                _logger.debug(
                    "Approaching write rate limit",
                    write=write_count,
                    limit=self.max_write_requests_per_window,
                )
                return False
            return True

    async def record_request(self, *, is_write: bool) -> None:
        async with self._lock:
            now = self._now()
            self._request_times.append(now)
            if is_write:
                self._write_request_times.append(now)

            if len(self._request_times) > self.max_total_requests_per_window * 2:
                self._cleanup_locked()

    async def record_rate_limit(self) -> None:
        async with self._lock:
            self._last_rate_limit_time = self._now()
            self._consecutive_rate_limits += 1
            _logger.warning(
                "Rate limit encountered",
                consecutive=self._consecutive_rate_limits,
            )

    async def reset_rate_limit_tracking(self) -> None:
        async with self._lock:
            if self._consecutive_rate_limits:
                _logger.info("Resetting rate limit tracking")
            self._consecutive_rate_limits = 0

    async def calculate_delay(self, *, is_write: bool) -> float:
        async with self._lock:
            self._cleanup_locked()

            if (
                self._last_rate_limit_time is not None
                and self._consecutive_rate_limits
                and self._now() - self._last_rate_limit_time < 60
            ):
                return min(self._consecutive_rate_limits * 2.0, 10.0)

            total = len(self._request_times)
            write_count = len(self._write_request_times)

            if is_write:
                if write_count >= self.max_write_requests_per_window:
                    return self._time_until_slot_locked(self._write_request_times)
                utilization = write_count / self.max_write_requests_per_window
                if utilization > 0.8:
                    return 0.5 * (utilization - 0.8) * 10

            if total >= self.max_total_requests_per_window:
                return self._time_until_slot_locked(self._request_times)
            utilization_total = total / self.max_total_requests_per_window
            if utilization_total > 0.8:
                return 0.5 * (utilization_total - 0.8) * 10

            return 0.0

    def _time_until_slot_locked(self, times: Deque[float]) -> float:
        if not times:
            return 0.0
        return max(times[0] + self.window_seconds - self._now(), 0.0)

    def _cleanup_locked(self) -> None:
        cutoff = self._now() - self.window_seconds
        while self._request_times and self._request_times[0] < cutoff:
            self._request_times.popleft()
        while self._write_request_times and self._write_request_times[0] < cutoff:
            self._write_request_times.popleft()


__all__ = ["RateLimiter", "SleepFunc"]
