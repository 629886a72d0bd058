"""
指标采集服务
通过数据源回退链获取指标，并写回缓存
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional

from loguru import logger

from marketpulse.cache.base import IndicatorStore
from marketpulse.cache.policy import CacheConfig
from marketpulse.errors import AllProvidersRateLimitedError
from marketpulse.models import (
    CPI,
    FEAR_GREED,
    SP500,
    TREASURY_10Y,
    UNEMPLOYMENT,
    VIX,
    CacheEntry,
    EconomicValue,
    IndicatorValue,
    MarketQuoteValue,
    Quote,
    SentimentValue,
    ensure_utc,
    utc_now,
)
from marketpulse.providers.chain import ChainResult, ProviderChain


# 回退链名称
MARKET_CHAIN = "market"
MACRO_CHAIN = "macro"
SENTIMENT_CHAIN = "sentiment"


@dataclass(frozen=True)
class IndicatorDefinition:
    """
    指标定义

    Attributes:
        indicator_type: 指标类型（缓存键）
        symbol: 传给数据源的代码
        chain: 使用的回退链名称
        name: 展示名称
        description: 说明
        ttl: 写入缓存时的过期时长
        category: market / economic / sentiment
        unit: 数值单位（宏观指标）
    """
    indicator_type: str
    symbol: str
    chain: str
    name: str
    description: str
    ttl: timedelta
    category: str
    unit: str = ""

    def build_payload(self, quote: Quote) -> IndicatorValue:
        """把报价转换为该指标的载荷类型"""
        if self.category == "sentiment":
            return SentimentValue.from_quote(quote)
        if self.category == "economic":
            return EconomicValue.from_quote(quote, unit=self.unit)
        return MarketQuoteValue.from_quote(quote)

    def build_metadata(self, result: ChainResult) -> Dict[str, object]:
        return {
            "name": self.name,
            "description": self.description,
            "symbol": self.symbol,
            "category": self.category,
            "provider_attempts": [
                {"provider": a.provider, "outcome": a.outcome.value} for a in result.attempts
            ],
        }


INDICATORS: Dict[str, IndicatorDefinition] = {
    FEAR_GREED: IndicatorDefinition(
        indicator_type=FEAR_GREED,
        symbol="FNG",
        chain=SENTIMENT_CHAIN,
        name="Fear & Greed Index",
        description="Market sentiment indicator (0-100)",
        ttl=timedelta(hours=24),
        category="sentiment",
    ),
    SP500: IndicatorDefinition(
        indicator_type=SP500,
        symbol="SPY",
        chain=MARKET_CHAIN,
        name="S&P 500",
        description="S&P 500 index (SPY proxy)",
        ttl=timedelta(hours=6),
        category="market",
    ),
    VIX: IndicatorDefinition(
        indicator_type=VIX,
        symbol="VIX",
        chain=MARKET_CHAIN,
        name="CBOE Volatility Index (VIX)",
        description="Market volatility fear gauge",
        ttl=timedelta(hours=6),
        category="market",
    ),
    TREASURY_10Y: IndicatorDefinition(
        indicator_type=TREASURY_10Y,
        symbol="DGS10",
        chain=MACRO_CHAIN,
        name="10-Year Treasury Constant Maturity Rate",
        description="Federal Reserve Economic Data (FRED)",
        ttl=timedelta(hours=24),
        category="economic",
        unit="percent",
    ),
    UNEMPLOYMENT: IndicatorDefinition(
        indicator_type=UNEMPLOYMENT,
        symbol="UNRATE",
        chain=MACRO_CHAIN,
        name="Unemployment Rate",
        description="Federal Reserve Economic Data (FRED)",
        ttl=timedelta(hours=24),
        category="economic",
        unit="percent",
    ),
    CPI: IndicatorDefinition(
        indicator_type=CPI,
        symbol="CPIAUCSL",
        chain=MACRO_CHAIN,
        name="Consumer Price Index for All Urban Consumers: All Items",
        description="Federal Reserve Economic Data (FRED)",
        ttl=timedelta(hours=24),
        category="economic",
        unit="index_1982_1984=100",
    ),
}


@dataclass
class CollectResult:
    """单个指标的采集结果"""
    indicator_type: str
    entry: Optional[CacheEntry] = None
    provider: str = "none"
    is_rate_limited: bool = False
    message: Optional[str] = None
    attempts: int = 0

    @property
    def success(self) -> bool:
        return self.entry is not None

    def raise_for_rate_limit(self) -> None:
        """全部数据源限流时抛出异常（供需要异常形式的调用方使用）"""
        if self.is_rate_limited:
            raise AllProvidersRateLimitedError(self.indicator_type, self.message or "")


@dataclass
class CollectSummary:
    """批量采集汇总"""
    results: Dict[str, CollectResult] = field(default_factory=dict)

    @property
    def collected(self) -> List[str]:
        return [t for t, r in self.results.items() if r.success]

    @property
    def errors(self) -> Dict[str, str]:
        return {t: r.message or "unknown error" for t, r in self.results.items() if not r.success}


class IndicatorCollector:
    """
    指标采集器

    获取成功后写入新的缓存条目并停用旧条目；
    临时失败按 retry_attempts 重试，全部限流时不重试。
    """

    def __init__(
        self,
        chains: Dict[str, ProviderChain],
        store: IndicatorStore,
        cache_config: Optional[CacheConfig] = None,
        definitions: Optional[Dict[str, IndicatorDefinition]] = None,
        retry_delay: float = 1.0,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        初始化采集器

        Args:
            chains: {链名称: ProviderChain}
            store: 缓存存储
            cache_config: 缓存策略（使用其中的 retry_attempts）
            definitions: 指标定义（默认 INDICATORS）
            retry_delay: 重试间隔基数（秒），第 n 次重试等待 n * retry_delay
            clock: 返回当前 UTC 时间的函数
        """
        self.chains = chains
        self.store = store
        self.cache_config = cache_config or CacheConfig()
        self.definitions = dict(definitions or INDICATORS)
        self.retry_delay = retry_delay
        self._clock = clock or utc_now

    def definition(self, indicator_type: str) -> IndicatorDefinition:
        try:
            return self.definitions[indicator_type]
        except KeyError:
            raise ValueError(f"未知的指标类型: {indicator_type}") from None

    async def fetch(self, indicator_type: str) -> ChainResult:
        """只获取不写缓存（含重试）"""
        definition = self.definition(indicator_type)
        chain = self.chains.get(definition.chain)
        if chain is None:
            logger.warning(f"{indicator_type}: 未配置数据源链 '{definition.chain}'")
            return ChainResult(data=None, provider="none")

        max_attempts = max(1, self.cache_config.retry_attempts)
        result = ChainResult(data=None, provider="none")
        for attempt in range(1, max_attempts + 1):
            result = await chain.fetch_quote(definition.symbol)
            if result.success or result.is_rate_limited:
                break
            if attempt < max_attempts:
                delay = self.retry_delay * attempt
                logger.info(f"{indicator_type} 获取失败，{delay:.1f}秒后重试 ({attempt}/{max_attempts})")
                await asyncio.sleep(delay)
        return result

    async def collect(self, indicator_type: str) -> CollectResult:
        """
        采集单个指标并写回缓存

        Args:
            indicator_type: 指标类型

        Returns:
            CollectResult
        """
        definition = self.definition(indicator_type)
        logger.info(f"开始采集 {indicator_type} ({definition.symbol})")

        result = await self.fetch(indicator_type)
        if not result.success:
            message = result.rate_limit_message or f"所有数据源均未能获取 {definition.symbol}"
            logger.warning(f"{indicator_type} 采集失败: {message}")
            return CollectResult(
                indicator_type=indicator_type,
                provider=result.provider,
                is_rate_limited=result.is_rate_limited,
                message=message,
                attempts=len(result.attempts),
            )

        now = ensure_utc(self._clock())
        entry = CacheEntry(
            indicator_type=indicator_type,
            data_value=definition.build_payload(result.data),
            metadata=definition.build_metadata(result),
            data_source=result.provider,
            created_at=now,
            expires_at=now + definition.ttl,
        )
        stored = await self.store.replace_active(entry)
        logger.info(f"{indicator_type} 已写入缓存 (source={result.provider})")

        return CollectResult(
            indicator_type=indicator_type,
            entry=stored,
            provider=result.provider,
            attempts=len(result.attempts),
        )

    async def collect_all(self, indicator_types: Optional[Iterable[str]] = None) -> CollectSummary:
        """
        并行采集多个指标（单个失败不影响其他指标）

        Args:
            indicator_types: 指标类型列表（默认全部已定义指标）

        Returns:
            CollectSummary
        """
        types = list(indicator_types or self.definitions)
        results = await asyncio.gather(*(self.collect(t) for t in types), return_exceptions=True)

        summary = CollectSummary()
        for indicator_type, result in zip(types, results):
            if isinstance(result, BaseException):
                logger.error(f"{indicator_type} 采集异常: {result!r}")
                summary.results[indicator_type] = CollectResult(indicator_type=indicator_type, message=str(result))
            else:
                summary.results[indicator_type] = result

        logger.info(f"采集完成: {len(summary.collected)}/{len(types)} 个指标")
        return summary

    async def close(self) -> None:
        for chain in self.chains.values():
            await chain.close()
