"""
市场概览服务
以缓存优先的方式读取各指标，并汇总为市场概览
"""

import asyncio
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from loguru import logger

from marketpulse.cache.base import IndicatorStore
from marketpulse.cache.policy import CacheConfig, Freshness, ServeDecision, classify, decide
from marketpulse.errors import StoreError
from marketpulse.models import (
    DEFAULT_INDICATORS,
    ECONOMIC_INDICATORS,
    FEAR_GREED,
    MARKET_INDICATORS,
    SP500,
    VIX,
    CacheEntry,
    ensure_utc,
    format_timestamp,
    utc_now,
)
from marketpulse.schemas import (
    CacheInfo,
    FreshnessInfo,
    HealthResponse,
    IndicatorData,
    MarketOverviewResponse,
    ProviderStatusResponse,
    RateLimitUsage,
)
from marketpulse.services.collector import IndicatorCollector


EPOCH_TIMESTAMP = "1970-01-01T00:00:00Z"

# 读数来源
SOURCE_CACHE = "cache"
SOURCE_REALTIME = "realtime"
SOURCE_FALLBACK = "fallback"


@dataclass(frozen=True)
class IndicatorReading:
    """
    指标读数

    Attributes:
        entry: 缓存条目
        freshness: 读取时的新鲜度
        source: cache / realtime / fallback
        cache_hit: 是否计入缓存命中（从缓存读到的条目，包括退回的过期条目）
    """
    entry: CacheEntry
    freshness: Freshness
    source: str
    cache_hit: bool

    @property
    def indicator_type(self) -> str:
        return self.entry.indicator_type

    @property
    def is_stale(self) -> bool:
        return self.freshness.is_stale

    def to_data(self) -> IndicatorData:
        entry = self.entry.to_dict()
        return IndicatorData(
            id=entry["id"],
            indicator_type=entry["indicator_type"],
            data_value=entry["data_value"],
            metadata=entry["metadata"],
            data_source=entry["data_source"],
            created_at=entry["created_at"],
            expires_at=entry["expires_at"],
            age_seconds=self.freshness.age_seconds,
            source=self.source,
            freshness=FreshnessInfo(**self.freshness.to_dict()),
        )


@dataclass
class IndicatorOutcome:
    """单个指标的解析结果（失败时 reading 为 None）"""
    indicator_type: str
    reading: Optional[IndicatorReading] = None
    rate_limited: bool = False
    error: Optional[str] = None


class MarketOverviewService:
    """
    市场概览服务

    读取策略（stale-while-revalidate）：
    - 新鲜：直接返回缓存
    - 过期但在宽限期内：返回旧数据并在后台刷新（同一指标只保留一个刷新任务）
    - 更旧或无缓存：同步从数据源获取；失败时退回已过期的缓存
    """

    def __init__(
        self,
        store: IndicatorStore,
        collector: IndicatorCollector,
        cache_config: Optional[CacheConfig] = None,
        indicators: Iterable[str] = DEFAULT_INDICATORS,
        indicator_timeout: float = 30.0,
        overall_timeout: Optional[float] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        初始化服务

        Args:
            store: 缓存存储
            collector: 指标采集器
            cache_config: 缓存策略（启动时加载一次）
            indicators: 概览默认包含的指标
            indicator_timeout: 单个指标的超时（秒）
            overall_timeout: 整个概览的超时（秒，None 表示不限制）
            clock: 返回当前 UTC 时间的函数
        """
        self.store = store
        self.collector = collector
        self.cache_config = cache_config or collector.cache_config
        self.indicators = tuple(indicators)
        self.indicator_timeout = indicator_timeout
        self.overall_timeout = overall_timeout
        self._clock = clock or utc_now

        self._background: Dict[str, asyncio.Task] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _now(self) -> datetime:
        return ensure_utc(self._clock())

    def _lock_for(self, indicator_type: str) -> asyncio.Lock:
        return self._locks.setdefault(indicator_type, asyncio.Lock())

    # ========== 单个指标 ==========

    async def get_indicator(
        self,
        indicator_type: str,
        override_max_age: Optional[int] = None,
        force_refresh: bool = False,
    ) -> Optional[IndicatorReading]:
        """
        获取单个指标

        Args:
            indicator_type: 指标类型
            override_max_age: 覆盖最大新鲜时长（秒）
            force_refresh: 跳过缓存直接从数据源获取

        Returns:
            IndicatorReading，无可用数据时返回 None
        """
        outcome = await self._resolve(indicator_type, override_max_age, force_refresh)
        return outcome.reading

    async def _read_cache(self, indicator_type: str) -> Optional[CacheEntry]:
        try:
            return await self.store.query_latest_active(indicator_type)
        except StoreError as e:
            logger.warning(f"读取 {indicator_type} 缓存失败，按未命中处理: {e}")
            return None

    def _reading(self, entry: CacheEntry, config: CacheConfig, source: str, cache_hit: bool) -> IndicatorReading:
        return IndicatorReading(
            entry=entry,
            freshness=classify(entry, config, self._now()),
            source=source,
            cache_hit=cache_hit,
        )

    async def _resolve(
        self,
        indicator_type: str,
        override_max_age: Optional[int] = None,
        force_refresh: bool = False,
    ) -> IndicatorOutcome:
        config = self.cache_config.with_max_age(override_max_age)
        cached = await self._read_cache(indicator_type)

        if force_refresh:
            logger.info(f"强制刷新 {indicator_type}")
            return await self._refresh(indicator_type, config, cached, force=True)

        freshness = classify(cached, config, self._now()) if cached is not None else None
        decision = decide(freshness, config)

        if decision is ServeDecision.FRESH:
            logger.debug(f"{indicator_type} 缓存命中 (新鲜度 {freshness.freshness_score:.1f})")
            return IndicatorOutcome(
                indicator_type,
                IndicatorReading(cached, freshness, SOURCE_CACHE, cache_hit=True),
            )

        if decision is ServeDecision.STALE:
            logger.info(f"{indicator_type} 缓存已过期 {freshness.age_hours} 小时，返回旧数据并后台刷新")
            self._schedule_revalidation(indicator_type, config)
            return IndicatorOutcome(
                indicator_type,
                IndicatorReading(cached, freshness, SOURCE_CACHE, cache_hit=True),
            )

        if not config.fallback_enabled:
            logger.info(f"{indicator_type} 缓存未命中，已禁用实时获取")
            if cached is not None:
                return IndicatorOutcome(
                    indicator_type,
                    IndicatorReading(cached, freshness, SOURCE_FALLBACK, cache_hit=True),
                )
            return IndicatorOutcome(indicator_type, error="缓存未命中且已禁用实时获取")

        return await self._refresh(indicator_type, config, cached, force=False)

    async def _refresh(
        self,
        indicator_type: str,
        config: CacheConfig,
        cached: Optional[CacheEntry],
        force: bool,
    ) -> IndicatorOutcome:
        """同步获取并写回，失败时退回到已有的缓存条目"""
        async with self._lock_for(indicator_type):
            if not force:
                # 等锁期间可能已被其他任务刷新
                latest = await self._read_cache(indicator_type)
                if latest is not None:
                    reading = self._reading(latest, config, SOURCE_CACHE, cache_hit=True)
                    if decide(reading.freshness, config) is ServeDecision.FRESH:
                        return IndicatorOutcome(indicator_type, reading)

            try:
                result = await self.collector.collect(indicator_type)
            except StoreError as e:
                logger.error(f"{indicator_type} 写入缓存失败: {e}")
                result = None

        if result is not None and result.entry is not None:
            return IndicatorOutcome(
                indicator_type,
                self._reading(result.entry, config, SOURCE_REALTIME, cache_hit=False),
            )

        rate_limited = bool(result and result.is_rate_limited)
        message = result.message if result is not None else "写入缓存失败"

        if cached is not None:
            reading = self._reading(cached, config, SOURCE_FALLBACK, cache_hit=True)
            logger.warning(
                f"{indicator_type} 获取失败，退回缓存数据 (已有 {reading.freshness.age_hours} 小时)"
            )
            return IndicatorOutcome(indicator_type, reading, rate_limited=rate_limited, error=message)

        return IndicatorOutcome(indicator_type, rate_limited=rate_limited, error=message)

    # ========== 后台刷新 ==========

    def _schedule_revalidation(self, indicator_type: str, config: CacheConfig) -> None:
        task = self._background.get(indicator_type)
        if task is not None and not task.done():
            logger.debug(f"{indicator_type} 已有后台刷新任务")
            return

        task = asyncio.create_task(self._revalidate(indicator_type, config))
        self._background[indicator_type] = task
        task.add_done_callback(lambda t: self._discard_task(indicator_type, t))

    def _discard_task(self, indicator_type: str, task: asyncio.Task) -> None:
        if self._background.get(indicator_type) is task:
            del self._background[indicator_type]

    async def _revalidate(self, indicator_type: str, config: CacheConfig) -> None:
        try:
            async with self._lock_for(indicator_type):
                latest = await self._read_cache(indicator_type)
                if latest is not None and decide(classify(latest, config, self._now()), config) is ServeDecision.FRESH:
                    return
                result = await self.collector.collect(indicator_type)
            if result.success:
                logger.info(f"{indicator_type} 后台刷新完成")
            else:
                logger.warning(f"{indicator_type} 后台刷新失败: {result.message}")
        except Exception as e:
            logger.error(f"{indicator_type} 后台刷新异常: {e!r}")

    @property
    def background_tasks(self) -> int:
        return sum(1 for task in self._background.values() if not task.done())

    async def wait_for_background(self) -> None:
        """等待所有后台刷新任务结束"""
        tasks = list(self._background.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ========== 市场概览 ==========

    async def _resolve_bounded(
        self,
        indicator_type: str,
        override_max_age: Optional[int],
        force_refresh: bool,
    ) -> IndicatorOutcome:
        try:
            return await asyncio.wait_for(
                self._resolve(indicator_type, override_max_age, force_refresh),
                timeout=self.indicator_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"{indicator_type} 超时 ({self.indicator_timeout}s)")
            return IndicatorOutcome(indicator_type, error="timeout")

    async def get_market_overview(
        self,
        max_age: Optional[int] = None,
        force_refresh: bool = False,
        indicators: Optional[Iterable[str]] = None,
    ) -> MarketOverviewResponse:
        """
        获取市场概览

        各指标并行获取，单个指标失败不影响其他指标。

        Args:
            max_age: 覆盖最大新鲜时长（秒）
            force_refresh: 全部指标强制刷新
            indicators: 指标列表（默认使用服务配置）

        Returns:
            MarketOverviewResponse
        """
        requested = list(indicators) if indicators is not None else list(self.indicators)
        logger.info(f"获取市场概览: {requested} (force_refresh={force_refresh})")

        gathered = asyncio.gather(
            *(self._resolve_bounded(t, max_age, force_refresh) for t in requested),
            return_exceptions=True,
        )
        if self.overall_timeout is not None:
            results = await asyncio.wait_for(gathered, timeout=self.overall_timeout)
        else:
            results = await gathered

        outcomes: List[IndicatorOutcome] = []
        for indicator_type, result in zip(requested, results):
            if isinstance(result, BaseException):
                logger.error(f"{indicator_type} 获取异常: {result!r}")
                outcomes.append(IndicatorOutcome(indicator_type, error=str(result)))
            else:
                outcomes.append(result)

        return self._build_overview(requested, outcomes)

    def _build_overview(self, requested: List[str], outcomes: List[IndicatorOutcome]) -> MarketOverviewResponse:
        readings = [o.reading for o in outcomes if o.reading is not None]
        data = {r.indicator_type: r.to_data() for r in readings}

        fresh = sum(1 for r in readings if not r.is_stale)
        stale = len(readings) - fresh
        hits = sum(1 for r in readings if r.cache_hit)

        if readings and all(r.source == SOURCE_REALTIME for r in readings):
            source = "realtime"
        elif fresh > stale:
            source = "cache"
        else:
            source = "mixed"

        if readings:
            last_updated = format_timestamp(max(ensure_utc(r.entry.created_at) for r in readings))
        else:
            last_updated = EPOCH_TIMESTAMP

        hit_rate = int(math.floor(hits / len(requested) * 100 + 0.5)) if requested else 0

        response = MarketOverviewResponse(
            indicators=[data[r.indicator_type] for r in readings],
            fear_greed_index=data.get(FEAR_GREED),
            sp500_data=data.get(SP500),
            vix_data=data.get(VIX),
            market_indicators=[data[t] for t in MARKET_INDICATORS if t in data],
            economic_indicators=[data[t] for t in ECONOMIC_INDICATORS if t in data],
            last_updated=last_updated,
            source=source,
            cache_info=CacheInfo(
                total_indicators=len(readings),
                requested_indicators=len(requested),
                fresh_indicators=fresh,
                stale_indicators=stale,
                cache_hit_rate=hit_rate,
            ),
            unavailable=[o.indicator_type for o in outcomes if o.reading is None],
            rate_limited=[o.indicator_type for o in outcomes if o.rate_limited],
        )

        logger.info(
            f"市场概览完成: {len(readings)}/{len(requested)} 个指标, "
            f"source={source}, 命中率 {hit_rate}%"
        )
        return response

    # ========== 状态 ==========

    def get_provider_status(self) -> List[ProviderStatusResponse]:
        """所有回退链中数据源的状态"""
        status = []
        for chain_name, chain in self.collector.chains.items():
            for item in chain.get_provider_status():
                status.append(ProviderStatusResponse(
                    chain=chain_name,
                    name=item["name"],
                    priority=item["priority"],
                    available=item["available"],
                    reset_at=item["reset_at"],
                    message=item["message"],
                    usage=RateLimitUsage(**item["usage"]),
                ))
        return status

    async def reset_provider_availability(self) -> None:
        for chain in self.collector.chains.values():
            await chain.reset_provider_availability()

    async def get_cache_stats(self) -> Dict[str, Any]:
        """缓存统计（含当前缓存策略）"""
        stats = await self.store.stats()
        stats["cache_config"] = {
            "max_age": self.cache_config.max_age,
            "stale_while_revalidate": self.cache_config.stale_while_revalidate,
            "retry_attempts": self.cache_config.retry_attempts,
            "fallback_enabled": self.cache_config.fallback_enabled,
        }
        stats["background_tasks"] = self.background_tasks
        return stats

    async def health_check(self) -> HealthResponse:
        """健康检查"""
        try:
            await self.store.ping()
            database = "connected"
        except StoreError as e:
            database = f"error: {str(e)}"

        providers = self.get_provider_status()
        available = sum(1 for p in providers if p.available)
        healthy = database == "connected" and (available > 0 or not providers)

        return HealthResponse(
            status="healthy" if healthy else "degraded",
            database=database,
            timestamp=format_timestamp(self._now()),
            providers_available=available,
            providers_total=len(providers),
            background_tasks=self.background_tasks,
        )

    async def close(self) -> None:
        """取消后台任务并释放资源"""
        for task in list(self._background.values()):
            task.cancel()
        await self.wait_for_background()
        await self.collector.close()
        await self.store.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
