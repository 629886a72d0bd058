"""
DailyRateLimiter 单元测试

覆盖范围：
- 配额检查与计数
- 不限制配额的数据源
- UTC 零点重置
- 并发占用配额
"""

import asyncio
from datetime import datetime, timezone

from marketpulse.providers.rate_limiter import DEFAULT_DAILY_LIMIT, DailyRateLimiter, next_utc_midnight

from fakes import FakeClock


def run_async(coro):
    """在同步上下文中执行协程"""
    return asyncio.run(coro)


class TestNextUtcMidnight:

    def test_next_midnight(self):
        now = datetime(2025, 1, 10, 23, 59, 59, tzinfo=timezone.utc)
        assert next_utc_midnight(now) == datetime(2025, 1, 11, tzinfo=timezone.utc)

    def test_exact_midnight_rolls_to_next_day(self):
        now = datetime(2025, 1, 10, tzinfo=timezone.utc)
        assert next_utc_midnight(now) == datetime(2025, 1, 11, tzinfo=timezone.utc)


class TestQuota:
    """配额检查与计数"""

    def test_acquire_until_limit(self):
        """达到上限后 acquire 返回 False"""
        limiter = DailyRateLimiter(clock=FakeClock())

        async def _test():
            assert await limiter.acquire("alpha_vantage", 2)
            assert await limiter.acquire("alpha_vantage", 2)
            assert not await limiter.acquire("alpha_vantage", 2)

        run_async(_test())
        assert limiter.get_usage("alpha_vantage") == {"used": 2, "limit": 2, "remaining": 0}

    def test_check_limit_does_not_count(self):
        limiter = DailyRateLimiter(clock=FakeClock())

        async def _test():
            assert await limiter.check_limit("twelve_data", 800)
            assert await limiter.check_limit("twelve_data", 800)

        run_async(_test())
        assert limiter.get_usage("twelve_data")["used"] == 0

    def test_increment_count(self):
        limiter = DailyRateLimiter(clock=FakeClock())

        async def _test():
            await limiter.check_limit("fred", 1)
            await limiter.increment_count("fred")
            return await limiter.check_limit("fred", 1)

        assert run_async(_test()) is False
        assert limiter.get_usage("fred")["used"] == 1

    def test_unlimited_provider(self):
        """daily_limit <= 0 不限制，但仍然计数"""
        limiter = DailyRateLimiter(clock=FakeClock())

        async def _test():
            for _ in range(50):
                assert await limiter.acquire("yahoo_finance", 0)

        run_async(_test())
        usage = limiter.get_usage("yahoo_finance")
        assert usage["used"] == 50
        assert usage["remaining"] == -1

    def test_usage_of_unknown_provider(self):
        limiter = DailyRateLimiter(clock=FakeClock())
        usage = limiter.get_usage("unknown")
        assert usage == {"used": 0, "limit": DEFAULT_DAILY_LIMIT, "remaining": DEFAULT_DAILY_LIMIT}

    def test_reset(self):
        limiter = DailyRateLimiter(clock=FakeClock())

        async def _test():
            await limiter.acquire("alpha_vantage", 1)
            assert not await limiter.acquire("alpha_vantage", 1)
            await limiter.reset("alpha_vantage")
            return await limiter.acquire("alpha_vantage", 1)

        assert run_async(_test()) is True


class TestDailyRollover:
    """UTC 零点重置"""

    def test_counter_resets_after_midnight(self):
        clock = FakeClock(datetime(2025, 1, 10, 23, 58, tzinfo=timezone.utc))
        limiter = DailyRateLimiter(clock=clock)

        async def _test():
            assert await limiter.acquire("alpha_vantage", 1)
            assert not await limiter.acquire("alpha_vantage", 1)
            clock.advance(minutes=3)
            return await limiter.acquire("alpha_vantage", 1)

        assert run_async(_test()) is True
        assert limiter.get_usage("alpha_vantage")["used"] == 1
        assert limiter.reset_time("alpha_vantage") == datetime(2025, 1, 12, tzinfo=timezone.utc)

    def test_usage_reports_zero_after_midnight(self):
        clock = FakeClock(datetime(2025, 1, 10, 23, 0, tzinfo=timezone.utc))
        limiter = DailyRateLimiter(clock=clock)

        run_async(limiter.acquire("fred", 10))
        clock.advance(hours=2)
        assert limiter.get_usage("fred") == {"used": 0, "limit": 10, "remaining": 10}


class TestConcurrency:

    def test_concurrent_acquire_never_exceeds_limit(self):
        limiter = DailyRateLimiter(clock=FakeClock())

        async def _test():
            return await asyncio.gather(*(limiter.acquire("alpha_vantage", 3) for _ in range(10)))

        results = run_async(_test())
        assert results.count(True) == 3
        assert limiter.get_usage("alpha_vantage")["used"] == 3
