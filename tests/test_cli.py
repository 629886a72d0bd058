"""
命令行工具测试
"""

import json
from unittest.mock import AsyncMock, patch

import pytest
from typer.testing import CliRunner

from marketpulse import cli
from marketpulse.cache.memory_store import MemoryIndicatorStore
from marketpulse.cache.policy import CacheConfig
from marketpulse.providers.chain import ProviderChain
from marketpulse.services.collector import IndicatorCollector
from marketpulse.services.market_overview import MarketOverviewService

from fakes import FakeProvider, make_quote


runner = CliRunner()


def build_service(market_results=None):
    store = MemoryIndicatorStore()
    cache_config = CacheConfig(retry_attempts=1)
    chains = {
        "market": ProviderChain(
            [FakeProvider("fake_market", 1, market_results or [make_quote("SPY", 500.0)])], name="market"
        ),
    }
    collector = IndicatorCollector(chains=chains, store=store, cache_config=cache_config, retry_delay=0)
    return MarketOverviewService(store=store, collector=collector, cache_config=cache_config)


@pytest.fixture(autouse=True)
def isolated(tmp_path, monkeypatch):
    """日志写到临时目录，并避免读取本机 .env"""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("LOG_FILE", str(tmp_path / "logs" / "cli.log"))
    monkeypatch.setattr(cli.console, "width", 200)


def invoke(service, *args):
    with patch.object(cli, "create_market_service", AsyncMock(return_value=service)):
        return runner.invoke(cli.app, list(args))


class TestOverview:

    def test_json_output(self):
        result = invoke(build_service(), "overview", "-i", "sp500", "--json")

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["cache_info"]["cache_hit_rate"] == 0
        assert data["source"] == "realtime"
        assert data["sp500_data"]["data_value"]["price"] == 500.0

    def test_table_output(self):
        result = invoke(build_service(), "overview", "-i", "sp500")

        assert result.exit_code == 0, result.output
        assert "sp500" in result.output
        assert "缓存命中率" in result.output

    def test_unavailable_listed(self):
        result = invoke(build_service([None]), "overview", "-i", "sp500")

        assert result.exit_code == 0, result.output
        assert "不可用" in result.output


class TestIndicator:

    def test_unknown_indicator(self):
        result = invoke(build_service(), "indicator", "gold")
        assert result.exit_code == 1

    def test_no_data(self):
        result = invoke(build_service([None]), "indicator", "sp500")
        assert result.exit_code == 1

    def test_fetched(self):
        result = invoke(build_service(), "indicator", "sp500")
        assert result.exit_code == 0, result.output
        assert "fake_market" in result.output


class TestOtherCommands:

    def test_quote(self):
        result = invoke(build_service([make_quote("QQQ", 400.0)]), "quote", "qqq")
        assert result.exit_code == 0, result.output
        assert "QQQ" in result.output

    def test_collect_failure_exit_code(self):
        result = invoke(build_service([None]), "collect", "sp500")
        assert result.exit_code == 1
        assert "失败" in result.output

    def test_stats(self):
        result = invoke(build_service(), "stats")
        assert result.exit_code == 0, result.output
        assert "缓存统计" in result.output

    def test_providers(self):
        result = invoke(build_service(), "providers")
        assert result.exit_code == 0, result.output
        assert "fake_market" in result.output
