"""
服务装配
根据 Config 创建数据源、回退链、缓存存储和市场概览服务
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional

from loguru import logger

from marketpulse.cache.base import IndicatorStore
from marketpulse.cache.policy import ConfigSource, MappingConfigSource, load_cache_config
from marketpulse.cache.sqlite_store import SQLiteIndicatorStore
from marketpulse.providers.alphavantage import AlphaVantageProvider
from marketpulse.providers.base import QuoteProvider
from marketpulse.providers.chain import ProviderChain
from marketpulse.providers.fear_greed import FearGreedProvider
from marketpulse.providers.fred import FREDProvider
from marketpulse.providers.rate_limiter import DailyRateLimiter
from marketpulse.providers.twelvedata import TwelveDataProvider
from marketpulse.providers.yahoo import YahooFinanceProvider
from marketpulse.services.collector import MACRO_CHAIN, MARKET_CHAIN, SENTIMENT_CHAIN, IndicatorCollector
from marketpulse.services.market_overview import MarketOverviewService
from marketpulse.utils.config import Config, ProviderConfig, get_config


def _build(name: str, settings: ProviderConfig, factory: Callable[[], QuoteProvider]) -> Optional[QuoteProvider]:
    if not settings.enabled:
        logger.info(f"数据源 {name} 已禁用")
        return None
    try:
        return factory()
    except ValueError as e:
        logger.warning(f"跳过数据源 {name}: {e}")
        return None


def build_providers(config: Config) -> Dict[str, List[QuoteProvider]]:
    """
    按配置创建各回退链的数据源

    缺少 API key 的数据源会被跳过（记录警告）。

    Returns:
        {链名称: [数据源]}
    """
    av, yh, td = config.alphavantage, config.yahoo, config.twelvedata
    market = [
        _build("alpha_vantage", av, lambda: AlphaVantageProvider(
            api_key=av.api_key or None, priority=av.priority, daily_limit=av.daily_limit, timeout=av.timeout,
        )),
        _build("yahoo_finance", yh, lambda: YahooFinanceProvider(
            priority=yh.priority, daily_limit=yh.daily_limit, timeout=yh.timeout,
        )),
        _build("twelve_data", td, lambda: TwelveDataProvider(
            api_key=td.api_key or None, priority=td.priority, daily_limit=td.daily_limit, timeout=td.timeout,
        )),
    ]

    fred, fg = config.fred, config.fear_greed
    macro = [
        _build("fred", fred, lambda: FREDProvider(
            api_key=fred.api_key or None, priority=fred.priority, daily_limit=fred.daily_limit, timeout=fred.timeout,
        )),
    ]
    sentiment = [
        _build("alternative_me", fg, lambda: FearGreedProvider(
            priority=fg.priority, daily_limit=fg.daily_limit, timeout=fg.timeout,
        )),
    ]

    return {
        MARKET_CHAIN: [p for p in market if p is not None],
        MACRO_CHAIN: [p for p in macro if p is not None],
        SENTIMENT_CHAIN: [p for p in sentiment if p is not None],
    }


def build_chains(
    providers: Dict[str, List[QuoteProvider]],
    clock: Optional[Callable[[], datetime]] = None,
) -> Dict[str, ProviderChain]:
    """创建回退链（所有链共享同一个限流器）"""
    rate_limiter = DailyRateLimiter(clock=clock)
    return {
        name: ProviderChain(items, rate_limiter=rate_limiter, clock=clock, name=name)
        for name, items in providers.items()
    }


async def create_market_service(
    config: Optional[Config] = None,
    store: Optional[IndicatorStore] = None,
    providers: Optional[Dict[str, List[QuoteProvider]]] = None,
    clock: Optional[Callable[[], datetime]] = None,
    retry_delay: float = 1.0,
) -> MarketOverviewService:
    """
    创建市场概览服务

    缓存策略按顺序从 cache_config 表和配置文件的 cache 段加载。

    Args:
        config: 系统配置（默认全局配置）
        store: 缓存存储（默认按配置创建 SQLite 存储）
        providers: {链名称: [数据源]}（默认按配置创建）
        clock: 返回当前 UTC 时间的函数
        retry_delay: 采集重试间隔基数（秒）

    Returns:
        MarketOverviewService
    """
    config = config or get_config()
    store = store or SQLiteIndicatorStore(config.database.path)

    sources: List[ConfigSource] = []
    if isinstance(store, SQLiteIndicatorStore):
        sources.append(store.config_source())
    sources.append(MappingConfigSource(config.cache.as_config_values()))
    cache_config = await load_cache_config(*sources)

    chains = build_chains(providers if providers is not None else build_providers(config), clock=clock)
    for name, chain in chains.items():
        logger.info(f"回退链 {name}: {[p.name for p in chain.providers] or '无可用数据源'}")

    collector = IndicatorCollector(
        chains=chains,
        store=store,
        cache_config=cache_config,
        retry_delay=retry_delay,
        clock=clock,
    )
    return MarketOverviewService(store=store, collector=collector, cache_config=cache_config, clock=clock)
