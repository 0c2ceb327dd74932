"""Tests for request pacing and concurrency limiting."""
import asyncio

import pytest

from parkwatch.services.rate_limiter import ConcurrencyLimiter, RateLimiter


class FakeClock:
    """Monotonic clock in seconds that only moves when someone sleeps on it."""

    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class StubRandom:
    def __init__(self, uniform_pick="low", jitter=0.5):
        self.uniform_pick = uniform_pick
        self.jitter = jitter

    def uniform(self, a, b):
        return a if self.uniform_pick == "low" else b

    def random(self):
        return self.jitter


def make_limiter(clock, rng=None, **kwargs):
    return RateLimiter(clock=clock, sleep=clock.sleep, rng=rng, **kwargs)


class TestRateLimiter:
    async def test_first_request_is_not_delayed(self):
        clock = FakeClock()
        limiter = make_limiter(clock)

        await limiter.throttle()

        assert clock.sleeps == []
        assert limiter.last_request_time == 0.0

    async def test_spacing_stays_within_bounds(self):
        import random

        clock = FakeClock()
        limiter = make_limiter(clock, rng=random.Random(42), min_delay_ms=1000, max_delay_ms=3000)

        for _ in range(25):
            await limiter.throttle()

        assert len(clock.sleeps) == 24
        for seconds in clock.sleeps:
            assert 1.0 - 1e-9 <= seconds <= 3.0 + 1e-9

    async def test_no_wait_when_caller_was_already_slow(self):
        clock = FakeClock()
        limiter = make_limiter(clock, rng=StubRandom())

        await limiter.throttle()
        clock.now += 5.0
        await limiter.throttle()

        assert clock.sleeps == []

    async def test_only_remaining_delay_is_slept(self):
        clock = FakeClock()
        limiter = make_limiter(clock, rng=StubRandom(), jitter_enabled=False)

        await limiter.throttle()
        clock.now += 0.4
        await limiter.throttle()

        assert clock.sleeps == [pytest.approx(0.6)]

    def test_min_above_max_is_rejected(self):
        with pytest.raises(ValueError):
            RateLimiter(min_delay_ms=5000, max_delay_ms=1000)


class TestCalculateDelay:
    def test_without_history_uses_min_delay(self):
        limiter = RateLimiter(jitter_enabled=False, adaptive_enabled=True, rng=StubRandom())
        assert limiter.calculate_delay() == 1000

    def test_slow_responses_stretch_delay(self):
        limiter = RateLimiter(jitter_enabled=False, adaptive_enabled=True, rng=StubRandom())
        for _ in range(3):
            limiter.record_response_time(2500)

        assert limiter.calculate_delay() == 1500

    def test_fast_responses_never_go_below_min(self):
        limiter = RateLimiter(jitter_enabled=False, adaptive_enabled=True, rng=StubRandom())
        limiter.record_response_time(100)

        assert limiter.calculate_delay() == 1000

    def test_adaptive_off_ignores_latency(self):
        limiter = RateLimiter(jitter_enabled=False, adaptive_enabled=False, rng=StubRandom())
        limiter.record_response_time(9000)

        assert limiter.calculate_delay() == 1000

    def test_random_delay_wins_when_larger(self):
        limiter = RateLimiter(jitter_enabled=False, rng=StubRandom(uniform_pick="high"))
        assert limiter.calculate_delay() == 3000

    def test_jitter_is_added_then_clamped(self):
        limiter = RateLimiter(rng=StubRandom(uniform_pick="low", jitter=1.0))
        assert limiter.calculate_delay() == 1500

        limiter = RateLimiter(rng=StubRandom(uniform_pick="high", jitter=1.0))
        assert limiter.calculate_delay() == 3000

        limiter = RateLimiter(rng=StubRandom(uniform_pick="low", jitter=0.0))
        assert limiter.calculate_delay() == 1000


class TestRateLimiterStats:
    async def test_request_rate_per_minute(self):
        clock = FakeClock()
        limiter = make_limiter(clock, rng=StubRandom(), jitter_enabled=False)

        await limiter.throttle()
        clock.now += 30.0
        await limiter.throttle()

        # 2 requests over half a minute
        assert limiter.get_request_rate() == 4

    def test_request_rate_needs_two_samples(self):
        assert RateLimiter().get_request_rate() == 0

    def test_response_window_drops_oldest(self):
        limiter = RateLimiter(window_size=3)
        for duration in (10000, 100, 200, 300):
            limiter.record_response_time(duration)

        assert list(limiter.response_times_ms) == [100, 200, 300]
        assert limiter.get_average_response_time() == 200

    async def test_reset(self):
        clock = FakeClock()
        limiter = make_limiter(clock)
        await limiter.throttle()
        limiter.record_response_time(120)

        limiter.reset()

        assert limiter.last_request_time is None
        assert limiter.get_average_response_time() == 0
        assert len(limiter.request_times) == 0


class TestConcurrencyLimiter:
    async def test_never_exceeds_max_concurrent(self):
        limiter = ConcurrencyLimiter(max_concurrent=2)
        active = 0
        peak = 0

        async def job(i):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            for _ in range(3):
                await asyncio.sleep(0)
            active -= 1
            return i

        results = await asyncio.gather(*(limiter.execute(job, i) for i in range(7)))

        assert results == list(range(7))
        assert peak == 2
        assert limiter.get_status() == {"running": 0, "queued": 0, "max_concurrent": 2}

    async def test_waiters_are_served_fifo(self):
        limiter = ConcurrencyLimiter(max_concurrent=1)
        gate = asyncio.Event()
        started = []

        async def holder():
            started.append("holder")
            await gate.wait()

        async def job(i):
            started.append(i)

        holder_task = asyncio.create_task(limiter.execute(holder))
        await asyncio.sleep(0)

        tasks = []
        for i in range(4):
            tasks.append(asyncio.create_task(limiter.execute(job, i)))
            await asyncio.sleep(0)

        assert limiter.get_queue_size() == 4
        assert limiter.get_active_count() == 1

        gate.set()
        await asyncio.gather(holder_task, *tasks)

        assert started == ["holder", 0, 1, 2, 3]

    async def test_slot_released_when_fn_raises(self):
        limiter = ConcurrencyLimiter(max_concurrent=1)

        async def boom():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await limiter.execute(boom)

        assert limiter.get_active_count() == 0

        async def ok():
            return "ok"

        assert await limiter.execute(ok) == "ok"

    async def test_cancelled_waiter_does_not_leak_a_slot(self):
        limiter = ConcurrencyLimiter(max_concurrent=1)
        gate = asyncio.Event()

        async def holder():
            await gate.wait()

        async def job():
            return "ran"

        holder_task = asyncio.create_task(limiter.execute(holder))
        await asyncio.sleep(0)
        waiter = asyncio.create_task(limiter.execute(job))
        await asyncio.sleep(0)
        assert limiter.get_queue_size() == 1

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        assert limiter.get_queue_size() == 0

        gate.set()
        await holder_task

        assert limiter.get_active_count() == 0
        assert await limiter.execute(job) == "ran"

    def test_max_concurrent_must_be_positive(self):
        with pytest.raises(ValueError):
            ConcurrencyLimiter(max_concurrent=0)
