"""
Outbound request pacing and concurrency control for the Holiday Park API.

A single RateLimiter instance is shared by every running search so pacing is
global to the process. Two ConcurrencyLimiter instances are used: one bounds
in-flight API requests, the other bounds simultaneously running searches.
"""

import asyncio
import logging
import random
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

logger = logging.getLogger(__name__)

JITTER_SPAN_MS = 1000  # +/- 500ms
SLOW_RESPONSE_MS = 2000
FAST_RESPONSE_MS = 500


class RateLimiter:
    """
    Jittered, optionally latency-adaptive delay between requests.

    Attributes:
        min_delay_ms: Lower bound of the delay between two requests
        max_delay_ms: Upper bound of the delay between two requests
        jitter_enabled: Add +/-500ms noise before clamping
        adaptive_enabled: Stretch the delay when the API responds slowly
        window_size: Number of request timestamps / response times kept
    """

    def __init__(
        self,
        min_delay_ms: int = 1000,
        max_delay_ms: int = 3000,
        jitter_enabled: bool = True,
        adaptive_enabled: bool = False,
        window_size: int = 10,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        rng: Optional[random.Random] = None,
    ):
        if min_delay_ms > max_delay_ms:
            raise ValueError("min_delay_ms cannot exceed max_delay_ms")

        self.min_delay_ms = min_delay_ms
        self.max_delay_ms = max_delay_ms
        self.jitter_enabled = jitter_enabled
        self.adaptive_enabled = adaptive_enabled
        self.window_size = window_size

        self._clock = clock or time.monotonic
        self._sleep = sleep or asyncio.sleep
        self._random = rng or random.Random()
        self._lock = asyncio.Lock()

        self.last_request_time: Optional[float] = None
        self.request_times: Deque[float] = deque(maxlen=window_size)
        self.response_times_ms: Deque[float] = deque(maxlen=window_size)

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def calculate_delay(self) -> float:
        """Delay in milliseconds required before the next request."""
        base_delay = float(self.min_delay_ms)

        if self.adaptive_enabled and self.response_times_ms:
            avg_response = self.get_average_response_time()
            if avg_response > SLOW_RESPONSE_MS:
                base_delay = min(self.max_delay_ms, base_delay * 1.5)
            elif avg_response < FAST_RESPONSE_MS:
                base_delay = max(self.min_delay_ms, base_delay * 0.8)

        random_delay = self._random.uniform(self.min_delay_ms, self.max_delay_ms)
        base_delay = max(base_delay, random_delay)

        if self.jitter_enabled:
            base_delay += (self._random.random() - 0.5) * JITTER_SPAN_MS

        return max(self.min_delay_ms, min(self.max_delay_ms, base_delay))

    async def throttle(self) -> None:
        """Suspend the caller until the next request may be issued."""
        async with self._lock:
            required_delay = self.calculate_delay()

            if self.last_request_time is not None:
                elapsed = self._now_ms() - self.last_request_time
                if elapsed < required_delay:
                    wait_ms = required_delay - elapsed
                    logger.debug(f"Rate limiting: waiting {wait_ms:.0f}ms before next request")
                    await self._sleep(wait_ms / 1000)

            self.last_request_time = self._now_ms()
            self.request_times.append(self.last_request_time)

    def record_response_time(self, duration_ms: float) -> None:
        """Feed the adaptive delay with an observed API latency."""
        self.response_times_ms.append(duration_ms)
        logger.debug(
            f"Response time: {duration_ms:.0f}ms (avg: {self.get_average_response_time()}ms)"
        )

    def get_average_response_time(self) -> int:
        if not self.response_times_ms:
            return 0
        return round(sum(self.response_times_ms) / len(self.response_times_ms))

    def get_request_rate(self) -> int:
        """Requests per minute over the tracked window."""
        if len(self.request_times) < 2:
            return 0

        duration_minutes = (self.request_times[-1] - self.request_times[0]) / 60000
        if duration_minutes == 0:
            return 0
        return round(len(self.request_times) / duration_minutes)

    def reset(self) -> None:
        self.last_request_time = None
        self.request_times.clear()
        self.response_times_ms.clear()


class ConcurrencyLimiter:
    """
    Bounds how many coroutines run at once; waiters are served FIFO.

    A released slot is handed directly to the oldest waiter, so a newcomer
    can never overtake a queued caller.
    """

    def __init__(self, max_concurrent: int = 1, name: str = "default"):
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.max_concurrent = max_concurrent
        self.name = name
        self.running = 0
        self._queue: Deque[asyncio.Future] = deque()

    async def acquire(self) -> None:
        if self.running < self.max_concurrent:
            self.running += 1
            logger.debug(f"[{self.name}] Acquired slot ({self.running}/{self.max_concurrent})")
            return

        logger.debug(
            f"[{self.name}] Concurrency limit reached ({self.running}/{self.max_concurrent}), queuing"
        )
        waiter = asyncio.get_running_loop().create_future()
        self._queue.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # The slot was already handed to us; pass it on.
                self.release()
            else:
                try:
                    self._queue.remove(waiter)
                except ValueError:
                    pass
            raise

    def release(self) -> None:
        while self._queue:
            waiter = self._queue.popleft()
            if not waiter.done():
                waiter.set_result(None)
                logger.debug(
                    f"[{self.name}] Handed slot to next waiter (queue: {len(self._queue)})"
                )
                return

        self.running -= 1
        logger.debug(
            f"[{self.name}] Released slot ({self.running}/{self.max_concurrent}, queue: {len(self._queue)})"
        )

    async def execute(self, fn: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Run `fn(*args, **kwargs)` once a slot is free; the slot is always released."""
        await self.acquire()
        try:
            return await fn(*args, **kwargs)
        finally:
            self.release()

    def get_active_count(self) -> int:
        return self.running

    def get_queue_size(self) -> int:
        return len(self._queue)

    def get_status(self) -> Dict[str, int]:
        return {
            "running": self.running,
            "queued": len(self._queue),
            "max_concurrent": self.max_concurrent,
        }
