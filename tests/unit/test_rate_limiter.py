import asyncio
import logging
import random

import pytest

from ads_sources.core_infrastructure.rate_limiter import RateLimiter
from tests.helpers.fake_time import FakeClock


def _limiter(clock: FakeClock, **kw) -> RateLimiter:
    kw.setdefault("quota", 200)
    kw.setdefault("window", 3600.0)
    kw.setdefault("min_interval", 0.005)
    return RateLimiter(clock=clock, sleep=clock.sleep, **kw)


def _record_admissions(limiter: RateLimiter) -> list[float]:
    seen: list[float] = []
    original = limiter._state.record

    def record(ts: float) -> None:
        seen.append(ts)
        original(ts)

    limiter._state.record = record  # type: ignore[method-assign]
    return seen


def _max_in_any_window(timestamps: list[float], window: float) -> int:
    return max(sum(1 for t in timestamps if end - window < t <= end) for end in timestamps)


@pytest.mark.asyncio
async def test_first_admission_is_immediate():
    clock = FakeClock()
    limiter = _limiter(clock)

    delay = await limiter.admit()

    assert delay == 0
    assert clock.sleeps == []
    assert limiter.in_window() == 1


@pytest.mark.asyncio
async def test_back_to_back_requests_are_spaced_by_min_interval():
    clock = FakeClock()
    limiter = _limiter(clock)
    seen = _record_admissions(limiter)

    for _ in range(5):
        await limiter.admit()

    gaps = [b - a for a, b in zip(seen, seen[1:])]
    assert all(g >= 0.005 for g in gaps)
    assert sum(clock.sleeps) == pytest.approx(0.02)


@pytest.mark.asyncio
async def test_partial_spacing_only_waits_the_remainder():
    clock = FakeClock()
    limiter = _limiter(clock, min_interval=0.010)

    await limiter.admit()
    clock.advance(0.004)
    delay = await limiter.admit()

    assert delay == pytest.approx(0.006)


@pytest.mark.asyncio
async def test_full_window_waits_until_oldest_expires():
    clock = FakeClock()
    limiter = _limiter(clock, quota=3, window=10.0)

    await limiter.admit()  # t=1024
    clock.advance(1)
    await limiter.admit()  # t=1025
    clock.advance(1)
    await limiter.admit()  # t=1026
    clock.advance(1)

    delay = await limiter.admit()

    assert delay == pytest.approx(7.0)
    assert clock.now == pytest.approx(1034.0)
    assert limiter.in_window() == 3


@pytest.mark.asyncio
async def test_full_window_delay_is_floored_at_min_interval():
    clock = FakeClock()
    limiter = _limiter(clock, quota=1, window=10.0, min_interval=0.5)

    await limiter.admit()
    clock.advance(9.9)
    await limiter.admit()

    assert clock.sleeps[0] == pytest.approx(0.5)
    assert clock.now == pytest.approx(1034.4)


@pytest.mark.asyncio
async def test_expired_timestamps_are_purged():
    clock = FakeClock()
    limiter = _limiter(clock, quota=5, window=60.0)

    for _ in range(3):
        await limiter.admit()
    clock.advance(61)

    assert limiter.in_window() == 0
    assert await limiter.admit() == 0


@pytest.mark.asyncio
async def test_quota_holds_under_concurrent_admission():
    clock = FakeClock()
    limiter = _limiter(clock, quota=4, window=64.0, min_interval=0.125)
    seen = _record_admissions(limiter)

    await asyncio.gather(*(limiter.admit() for _ in range(13)))

    assert len(seen) == 13
    assert seen == sorted(seen)
    assert _max_in_any_window(seen, 64.0) <= 4
    assert all(b - a >= 0.125 for a, b in zip(seen, seen[1:]))


@pytest.mark.asyncio
async def test_quota_holds_with_fractional_clock_values():
    rng = random.Random(20241105)
    for _ in range(50):
        clock = FakeClock(start=rng.uniform(10_000.0, 1_000_000.0))
        limiter = _limiter(clock, quota=3, window=3600.0, min_interval=0.001)
        seen = _record_admissions(limiter)

        for _ in range(8):
            clock.advance(rng.uniform(0.0, 1500.0))
            await limiter.admit()

        assert len(seen) == 8
        assert _max_in_any_window(seen, 3600.0) <= 3
        assert all(b - a >= 0.001 for a, b in zip(seen, seen[1:]))
        assert limiter.in_window() <= 3


@pytest.mark.asyncio
async def test_in_window_does_not_purge():
    clock = FakeClock()
    limiter = _limiter(clock, quota=5, window=60.0)

    await limiter.admit()
    clock.advance(61)

    assert limiter.in_window() == 0
    assert len(limiter._state) == 1


@pytest.mark.asyncio
async def test_warns_when_utilization_crosses_ninety_percent(caplog):
    clock = FakeClock()
    limiter = _limiter(clock, quota=10, min_interval=0)

    with caplog.at_level(logging.WARNING, logger="ads_sources.core_infrastructure.rate_limiter"):
        for _ in range(8):
            await limiter.admit()
        assert "Approaching rate limit" not in caplog.text
        await limiter.admit()

    assert "Approaching rate limit: 9/10" in caplog.text


def test_quota_must_be_positive():
    with pytest.raises(ValueError):
        RateLimiter(quota=0)
