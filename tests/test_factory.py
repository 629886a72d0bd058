"""
服务装配单元测试
"""

import asyncio

from marketpulse.cache.memory_store import MemoryIndicatorStore
from marketpulse.cache.policy import HOUR
from marketpulse.cache.sqlite_store import SQLiteIndicatorStore
from marketpulse.services.factory import build_chains, build_providers, create_market_service
from marketpulse.utils.config import Config

from fakes import FakeClock, FakeProvider


def run_async(coro):
    """在同步上下文中执行协程"""
    return asyncio.run(coro)


class TestBuildProviders:

    def test_providers_without_keys_skipped(self):
        providers = build_providers(Config())

        assert [p.name for p in providers["market"]] == ["yahoo_finance", "twelve_data"]
        assert providers["macro"] == []
        assert [p.name for p in providers["sentiment"]] == ["alternative_me"]

    def test_all_providers_with_keys(self):
        config = Config.from_dict({
            "alphavantage": {"api_key": "av"},
            "fred": {"api_key": "fred", "timeout": 3.0},
        })
        providers = build_providers(config)

        assert [p.name for p in providers["market"]] == ["alpha_vantage", "yahoo_finance", "twelve_data"]
        assert providers["macro"][0].timeout == 3.0

    def test_disabled_provider(self):
        providers = build_providers(Config.from_dict({"yahoo": {"enabled": False}}))
        assert "yahoo_finance" not in [p.name for p in providers["market"]]

    def test_chains_share_rate_limiter(self):
        chains = build_chains({"market": [FakeProvider("a")], "macro": [FakeProvider("b")]}, clock=FakeClock())
        assert chains["market"].rate_limiter is chains["macro"].rate_limiter
        assert chains["market"].name == "market"


class TestCreateService:

    def test_cache_config_from_settings(self):
        config = Config.from_dict({"cache": {"max_age_hours": 1, "retry_attempts": 2}})

        async def _test():
            service = await create_market_service(
                config,
                store=MemoryIndicatorStore(),
                providers={"market": [FakeProvider("a")]},
            )
            await service.close()
            return service

        service = run_async(_test())
        assert service.cache_config.max_age == HOUR
        assert service.cache_config.retry_attempts == 2
        assert service.collector.cache_config is service.cache_config
        assert list(service.collector.chains) == ["market"]

    def test_config_table_wins(self, tmp_db):
        config = Config.from_dict({"cache": {"max_age_hours": 1}})
        store = SQLiteIndicatorStore(tmp_db)

        async def _test():
            await store.set_config_value("cache_max_age_hours", "2")
            service = await create_market_service(config, store=store, providers={})
            await service.close()
            return service

        service = run_async(_test())
        assert service.cache_config.max_age == 2 * HOUR

    def test_default_store_uses_database_path(self, tmp_db):
        config = Config.from_dict({"database": {"path": tmp_db}})

        async def _test():
            service = await create_market_service(config, providers={})
            await service.close()
            return service

        service = run_async(_test())
        assert isinstance(service.store, SQLiteIndicatorStore)
        assert str(service.store.db_path) == tmp_db
