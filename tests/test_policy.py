"""
缓存新鲜度策略单元测试

覆盖范围：
- 新鲜度计算与边界
- stale-while-revalidate 决策
- 缓存策略配置加载（多来源、容错）
"""

import asyncio
from datetime import timedelta

import pytest

from marketpulse.cache.policy import (
    FALLBACK_KEY,
    HOUR,
    MAX_AGE_KEY,
    RETRY_KEY,
    STALE_KEY,
    CacheConfig,
    ConfigSource,
    MappingConfigSource,
    ServeDecision,
    classify,
    compute_freshness,
    decide,
    load_cache_config,
)
from marketpulse.cache.sqlite_store import SQLiteIndicatorStore

from fakes import FakeClock, make_entry


def run_async(coro):
    """在同步上下文中执行协程"""
    return asyncio.run(coro)


class BrokenSource(ConfigSource):
    """读取总是失败的配置来源"""

    async def get(self, key):
        raise RuntimeError("database unavailable")


# =========================================================================
# 1. 新鲜度
# =========================================================================


class TestFreshness:

    def test_brand_new_entry(self):
        freshness = compute_freshness(0, 12 * HOUR)
        assert freshness.freshness_score == 100.0
        assert freshness.is_stale is False
        assert freshness.age_hours == 0

    def test_linear_decay(self):
        freshness = compute_freshness(6 * HOUR, 12 * HOUR)
        assert freshness.freshness_score == pytest.approx(50.0)
        assert freshness.age_hours == 6

    def test_stale_at_max_age(self):
        freshness = compute_freshness(12 * HOUR, 12 * HOUR)
        assert freshness.is_stale is True
        assert freshness.freshness_score == 0.0

    def test_score_clamped(self):
        freshness = compute_freshness(30 * HOUR, 12 * HOUR)
        assert freshness.freshness_score == 0.0
        assert freshness.age_hours == 30

    def test_negative_age_treated_as_zero(self):
        freshness = compute_freshness(-10, 12 * HOUR)
        assert freshness.age_seconds == 0.0
        assert freshness.freshness_score == 100.0

    def test_age_hours_floored(self):
        assert compute_freshness(HOUR * 2 + 3599, 12 * HOUR).age_hours == 2

    def test_classify_entry(self):
        clock = FakeClock()
        entry = make_entry(created_at=clock.now - timedelta(hours=3))
        freshness = classify(entry, CacheConfig(), now=clock.now)
        assert freshness.age_seconds == 3 * HOUR
        assert freshness.freshness_score == pytest.approx(75.0)

    def test_to_dict(self):
        data = compute_freshness(HOUR, 12 * HOUR).to_dict()
        assert set(data) == {"age_seconds", "age_hours", "freshness_score", "is_stale"}


# =========================================================================
# 2. 服务决策
# =========================================================================


class TestDecide:
    """max_age=12h，宽限期 6h"""

    config = CacheConfig()

    @pytest.mark.parametrize(
        "hours, expected",
        [
            (1, ServeDecision.FRESH),
            (11.99, ServeDecision.FRESH),
            (12, ServeDecision.STALE),
            (13, ServeDecision.STALE),
            (17.99, ServeDecision.STALE),
            (18, ServeDecision.MISS),
            (19, ServeDecision.MISS),
        ],
    )
    def test_decision_by_age(self, hours, expected):
        freshness = compute_freshness(hours * HOUR, self.config.max_age)
        assert decide(freshness, self.config) is expected

    def test_no_entry_is_miss(self):
        assert decide(None, self.config) is ServeDecision.MISS

    def test_stale_entries_flagged(self):
        freshness = compute_freshness(13 * HOUR, self.config.max_age)
        assert freshness.is_stale is True

    def test_override_max_age(self):
        config = self.config.with_max_age(HOUR)
        assert config.max_age == HOUR
        assert config.stale_while_revalidate == self.config.stale_while_revalidate
        freshness = compute_freshness(2 * HOUR, config.max_age)
        assert decide(freshness, config) is ServeDecision.STALE

    def test_override_ignored_when_empty(self):
        assert self.config.with_max_age(None) is self.config
        assert self.config.with_max_age(0) is self.config


# =========================================================================
# 3. 配置加载
# =========================================================================


class TestLoadCacheConfig:

    def test_defaults_without_sources(self):
        config = run_async(load_cache_config())
        assert config == CacheConfig(
            max_age=12 * HOUR,
            stale_while_revalidate=6 * HOUR,
            retry_attempts=3,
            fallback_enabled=True,
        )

    def test_hours_converted_to_seconds(self):
        source = MappingConfigSource({MAX_AGE_KEY: "2", STALE_KEY: "0.5", RETRY_KEY: "5"})
        config = run_async(load_cache_config(source))
        assert config.max_age == 2 * HOUR
        assert config.stale_while_revalidate == 1800
        assert config.retry_attempts == 5

    @pytest.mark.parametrize("raw, expected", [("false", False), ("FALSE", False), ("true", True), ("yes", True)])
    def test_fallback_flag(self, raw, expected):
        config = run_async(load_cache_config(MappingConfigSource({FALLBACK_KEY: raw})))
        assert config.fallback_enabled is expected

    def test_first_source_wins(self):
        first = MappingConfigSource({MAX_AGE_KEY: "1"})
        second = MappingConfigSource({MAX_AGE_KEY: "24", RETRY_KEY: "7"})
        config = run_async(load_cache_config(first, second))
        assert config.max_age == HOUR
        assert config.retry_attempts == 7

    def test_invalid_value_uses_default(self):
        config = run_async(load_cache_config(MappingConfigSource({MAX_AGE_KEY: "abc", RETRY_KEY: "-1"})))
        assert config.max_age == 12 * HOUR
        assert config.retry_attempts == 3

    def test_broken_source_falls_through(self):
        config = run_async(load_cache_config(BrokenSource(), MappingConfigSource({MAX_AGE_KEY: "3"})))
        assert config.max_age == 3 * HOUR

    def test_broken_source_alone_gives_defaults(self):
        assert run_async(load_cache_config(BrokenSource())) == CacheConfig()

    def test_sqlite_config_table(self, tmp_db):
        store = SQLiteIndicatorStore(tmp_db)

        async def _test():
            await store.set_config_value(MAX_AGE_KEY, "4")
            await store.set_config_value(FALLBACK_KEY, "false")
            return await load_cache_config(store.config_source(), MappingConfigSource({MAX_AGE_KEY: "8"}))

        config = run_async(_test())
        assert config.max_age == 4 * HOUR
        assert config.fallback_enabled is False
