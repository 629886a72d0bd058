"""
测试全局配置

每个测试前清除全局配置和相关环境变量，避免本机 .env 影响测试结果。
"""

import pytest

from marketpulse.utils.config import reset_config


ENV_VARS = (
    "ALPHAVANTAGE_API_KEY",
    "TWELVEDATA_API_KEY",
    "FRED_API_KEY",
    "CACHE_DB_PATH",
    "CACHE_MAX_AGE_HOURS",
    "CACHE_STALE_HOURS",
    "API_RETRY_ATTEMPTS",
    "CACHE_FALLBACK_ENABLED",
    "LOG_LEVEL",
    "LOG_FILE",
    "DEBUG",
)


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """重置全局配置并清除环境变量"""
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def tmp_db(tmp_path):
    """返回临时数据库路径"""
    return str(tmp_path / "market_indicators.db")
