"""
多数据源回退链
按优先级依次尝试数据源，直到成功或全部耗尽
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from loguru import logger

from marketpulse.errors import QuotaExhaustedError
from marketpulse.models import Quote, ensure_utc, utc_now
from marketpulse.providers.base import QuoteProvider
from marketpulse.providers.rate_limiter import DailyRateLimiter, next_utc_midnight


ALL_RATE_LIMITED_MESSAGE = "All API providers have reached their rate limits"


class AttemptOutcome(Enum):
    """单个数据源的尝试结果"""
    SUCCESS = "success"
    SKIPPED = "skipped_unavailable"
    LOCAL_QUOTA = "local_quota_exhausted"
    QUOTA_EXHAUSTED = "quota_exhausted"
    TIMEOUT = "timeout"
    FAILED = "failed"


@dataclass(frozen=True)
class ProviderAttempt:
    provider: str
    outcome: AttemptOutcome


@dataclass
class ProviderState:
    """
    数据源可用性状态

    由 ProviderChain 独占，所有修改都在链的锁内完成。
    """
    name: str
    priority: int
    is_available: bool = True
    reset_at: Optional[datetime] = None
    last_message: Optional[str] = None

    def mark_unavailable(self, reset_at: datetime, message: str) -> None:
        self.is_available = False
        self.reset_at = reset_at
        self.last_message = message

    def restore(self) -> None:
        self.is_available = True
        self.reset_at = None
        self.last_message = None


@dataclass
class ChainResult:
    """回退链的获取结果"""
    data: Optional[Quote]
    provider: str
    is_rate_limited: bool = False
    rate_limit_message: Optional[str] = None
    attempts: List[ProviderAttempt] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.data is not None


class ProviderChain:
    """
    多数据源回退链

    - 严格按 priority 升序尝试，不做随机化，也不并发竞速
    - 调用前检查本地每日配额，耗尽则本轮标记为不可用
    - 单次调用受超时约束，超时与返回 None 等同，继续下一个
    - 只有当所有数据源都因配额不可用时，is_rate_limited 才为 True
    """

    def __init__(
        self,
        providers: Optional[List[QuoteProvider]] = None,
        rate_limiter: Optional[DailyRateLimiter] = None,
        clock: Optional[Callable[[], datetime]] = None,
        name: str = "default",
    ):
        """
        初始化回退链

        Args:
            providers: 数据源列表（会按优先级排序）
            rate_limiter: 共享的每日限流器
            clock: 返回当前 UTC 时间的函数（测试时可注入）
            name: 链名称（日志用）
        """
        self.name = name
        self._clock = clock or utc_now
        self.rate_limiter = rate_limiter or DailyRateLimiter(clock=self._clock)
        self._providers: List[QuoteProvider] = []
        self._states: Dict[str, ProviderState] = {}
        self._lock = asyncio.Lock()

        for provider in providers or []:
            self.add_provider(provider)

    @property
    def providers(self) -> List[QuoteProvider]:
        return list(self._providers)

    def add_provider(self, provider: QuoteProvider) -> None:
        """添加数据源（数值越小越先尝试，同优先级保持添加顺序）"""
        if provider.name in self._states:
            raise ValueError(f"数据源已存在: {provider.name}")
        self._providers.append(provider)
        self._providers.sort(key=lambda p: p.priority)
        self._states[provider.name] = ProviderState(name=provider.name, priority=provider.priority)

    def _now(self) -> datetime:
        return ensure_utc(self._clock())

    async def _is_available(self, provider: QuoteProvider) -> bool:
        """检查可用性，已过恢复时间的数据源自动恢复"""
        async with self._lock:
            state = self._states[provider.name]
            if not state.is_available and state.reset_at is not None and self._now() >= state.reset_at:
                logger.info(f"{provider.name} 已过限流恢复时间，重新启用")
                state.restore()
            return state.is_available

    async def _mark_unavailable(self, provider: QuoteProvider, reset_at: datetime, message: str) -> None:
        async with self._lock:
            self._states[provider.name].mark_unavailable(reset_at, message)

    async def fetch_quote(self, symbol: str) -> ChainResult:
        """
        按优先级获取报价

        Args:
            symbol: 资产代码

        Returns:
            ChainResult
        """
        logger.debug(f"[{self.name}] 获取 {symbol} 报价...")
        attempts: List[ProviderAttempt] = []

        for provider in self._providers:
            if not await self._is_available(provider):
                logger.debug(f"跳过 {provider.name}（不可用）")
                attempts.append(ProviderAttempt(provider.name, AttemptOutcome.SKIPPED))
                continue

            if not await self.rate_limiter.acquire(provider.name, provider.daily_limit):
                reset_at = self.rate_limiter.reset_time(provider.name) or next_utc_midnight(self._now())
                await self._mark_unavailable(provider, reset_at, "本地每日配额已用完")
                attempts.append(ProviderAttempt(provider.name, AttemptOutcome.LOCAL_QUOTA))
                continue

            logger.debug(f"尝试 {provider.name}...")
            try:
                data = await asyncio.wait_for(provider.fetch_quote(symbol), timeout=provider.timeout)
            except asyncio.TimeoutError:
                logger.warning(f"{provider.name} 获取 {symbol} 超时 ({provider.timeout}s)")
                attempts.append(ProviderAttempt(provider.name, AttemptOutcome.TIMEOUT))
                continue
            except QuotaExhaustedError as e:
                reset_at = e.reset_at or next_utc_midnight(self._now())
                await self._mark_unavailable(provider, reset_at, e.message)
                logger.warning(f"{provider.name} 已限流，{reset_at.isoformat()} 前不再调用")
                attempts.append(ProviderAttempt(provider.name, AttemptOutcome.QUOTA_EXHAUSTED))
                continue

            if data is not None:
                logger.info(f"[{self.name}] {symbol} 获取成功: {provider.name} = {data.price}")
                attempts.append(ProviderAttempt(provider.name, AttemptOutcome.SUCCESS))
                return ChainResult(data=data, provider=provider.name, attempts=attempts)

            attempts.append(ProviderAttempt(provider.name, AttemptOutcome.FAILED))

        all_limited = await self._all_rate_limited()
        logger.warning(f"[{self.name}] 所有数据源均未能获取 {symbol}" + ("（全部限流）" if all_limited else ""))
        return ChainResult(
            data=None,
            provider="none",
            is_rate_limited=all_limited,
            rate_limit_message=ALL_RATE_LIMITED_MESSAGE if all_limited else None,
            attempts=attempts,
        )

    async def _all_rate_limited(self) -> bool:
        async with self._lock:
            return bool(self._states) and all(not s.is_available for s in self._states.values())

    def get_provider_status(self) -> List[Dict[str, object]]:
        """各数据源的状态与用量"""
        status = []
        for provider in self._providers:
            state = self._states[provider.name]
            status.append({
                "name": provider.name,
                "priority": provider.priority,
                "available": state.is_available,
                "reset_at": state.reset_at.isoformat() if state.reset_at else None,
                "message": state.last_message,
                "usage": self.rate_limiter.get_usage(provider.name),
            })
        return status

    async def reset_provider_availability(self) -> None:
        """恢复所有数据源的可用性（按日调度调用）"""
        async with self._lock:
            for state in self._states.values():
                state.restore()
        logger.info(f"[{self.name}] 已重置所有数据源可用性")

    async def close(self) -> None:
        for provider in self._providers:
            await provider.close()

    def __repr__(self):
        return f"ProviderChain(name={self.name}, providers={[p.name for p in self._providers]})"
