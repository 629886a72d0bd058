"""
IndicatorCollector 单元测试

覆盖范围：
- 指标定义目录
- 采集成功后写入缓存（TTL、载荷类型、元数据）
- 临时失败重试，全部限流不重试
- 批量采集的部分失败
"""

import asyncio
from datetime import timedelta

import pytest

from marketpulse.cache.memory_store import MemoryIndicatorStore
from marketpulse.cache.policy import CacheConfig
from marketpulse.errors import AllProvidersRateLimitedError, QuotaExhaustedError
from marketpulse.models import (
    CPI,
    DEFAULT_INDICATORS,
    FEAR_GREED,
    SP500,
    EconomicValue,
    MarketQuoteValue,
    SentimentValue,
)
from marketpulse.providers.chain import ProviderChain
from marketpulse.services.collector import INDICATORS, IndicatorCollector

from fakes import FakeClock, FakeProvider, make_quote


def run_async(coro):
    """在同步上下文中执行协程"""
    return asyncio.run(coro)


def build_collector(market=None, macro=None, sentiment=None, retry_attempts=1, clock=None):
    clock = clock or FakeClock()
    chains = {}
    for name, providers in (("market", market), ("macro", macro), ("sentiment", sentiment)):
        if providers is not None:
            chains[name] = ProviderChain(providers, clock=clock, name=name)
    store = MemoryIndicatorStore()
    collector = IndicatorCollector(
        chains=chains,
        store=store,
        cache_config=CacheConfig(retry_attempts=retry_attempts),
        retry_delay=0,
        clock=clock,
    )
    return collector, store, clock


class TestDefinitions:

    def test_catalogue_covers_default_indicators(self):
        assert set(DEFAULT_INDICATORS) <= set(INDICATORS)

    def test_ttls(self):
        assert INDICATORS[FEAR_GREED].ttl == timedelta(hours=24)
        assert INDICATORS[SP500].ttl == timedelta(hours=6)
        assert INDICATORS["vix"].ttl == timedelta(hours=6)
        assert INDICATORS[CPI].ttl == timedelta(hours=24)

    def test_symbols(self):
        assert INDICATORS[SP500].symbol == "SPY"
        assert INDICATORS["treasury_10y"].symbol == "DGS10"
        assert INDICATORS["unemployment"].symbol == "UNRATE"
        assert INDICATORS[CPI].symbol == "CPIAUCSL"

    def test_unknown_indicator(self):
        collector, _, _ = build_collector()
        with pytest.raises(ValueError):
            run_async(collector.collect("gold"))


class TestCollect:

    def test_collect_writes_cache(self):
        provider = FakeProvider("fake_market", 1, [make_quote("SPY", 500.0)])
        collector, store, clock = build_collector(market=[provider])

        result = run_async(collector.collect(SP500))

        assert result.success
        assert result.provider == "fake_market"
        entry = result.entry
        assert entry.id is not None
        assert entry.data_source == "fake_market"
        assert entry.created_at == clock.now
        assert entry.expires_at == clock.now + timedelta(hours=6)
        assert isinstance(entry.data_value, MarketQuoteValue)
        assert entry.data_value.price == 500.0
        assert entry.metadata["symbol"] == "SPY"
        assert entry.metadata["provider_attempts"] == [{"provider": "fake_market", "outcome": "success"}]
        assert provider.calls == ["SPY"]

        stored = run_async(store.query_latest_active(SP500))
        assert stored.id == entry.id

    def test_payload_types(self):
        collector, _, _ = build_collector(
            macro=[FakeProvider("fake_fred", 1, [make_quote("CPIAUCSL", 315.0, 1.0)])],
            sentiment=[FakeProvider("fake_fng", 1, [make_quote("FNG", 40.0, -10.0)])],
        )

        async def _test():
            return await collector.collect(CPI), await collector.collect(FEAR_GREED)

        cpi, fng = run_async(_test())
        assert isinstance(cpi.entry.data_value, EconomicValue)
        assert cpi.entry.data_value.unit == "index_1982_1984=100"
        assert cpi.entry.data_value.previous_value == pytest.approx(314.0)
        assert isinstance(fng.entry.data_value, SentimentValue)
        assert fng.entry.data_value.value == 40
        assert fng.entry.data_value.classification == "Fear"
        assert fng.entry.data_value.previous_value == 50

    def test_refresh_deactivates_previous(self):
        provider = FakeProvider("fake_market", 1, [make_quote(price=1.0), make_quote(price=2.0)])
        collector, store, clock = build_collector(market=[provider])

        async def _test():
            await collector.collect(SP500)
            clock.advance(hours=1)
            await collector.collect(SP500)
            return await store.history(SP500)

        history = run_async(_test())
        assert [e.is_active for e in history] == [True, False]
        assert history[0].data_value.price == 2.0


class TestRetry:

    def test_retries_transient_failures(self):
        provider = FakeProvider("fake_market", 1, [None, None, make_quote()])
        collector, _, _ = build_collector(market=[provider], retry_attempts=3)

        result = run_async(collector.collect(SP500))

        assert result.success
        assert len(provider.calls) == 3

    def test_gives_up_after_retry_attempts(self):
        provider = FakeProvider("fake_market", 1, [None])
        collector, store, _ = build_collector(market=[provider], retry_attempts=2)

        result = run_async(collector.collect(SP500))

        assert not result.success
        assert result.entry is None
        assert len(provider.calls) == 2
        assert run_async(store.query_latest_active(SP500)) is None

    def test_rate_limited_not_retried(self):
        clock = FakeClock()
        provider = FakeProvider(
            "fake_market", 1,
            [QuotaExhaustedError("fake_market", "rate limit", reset_at=clock.now + timedelta(hours=1))],
        )
        collector, _, _ = build_collector(market=[provider], retry_attempts=3, clock=clock)

        result = run_async(collector.collect(SP500))

        assert result.is_rate_limited
        assert result.message == "All API providers have reached their rate limits"
        assert len(provider.calls) == 1
        with pytest.raises(AllProvidersRateLimitedError):
            result.raise_for_rate_limit()

    def test_missing_chain(self):
        collector, _, _ = build_collector(market=[FakeProvider("fake_market", 1, [make_quote()])])
        result = run_async(collector.collect(CPI))
        assert not result.success
        assert result.provider == "none"


class TestCollectAll:

    def test_partial_failure(self):
        collector, _, _ = build_collector(
            market=[FakeProvider("fake_market", 1, [make_quote()])],
            macro=[FakeProvider("fake_fred", 1, [None])],
        )

        summary = run_async(collector.collect_all([SP500, CPI, "gold"]))

        assert summary.collected == [SP500]
        assert set(summary.errors) == {CPI, "gold"}
