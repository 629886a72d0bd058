"""
每日配额限流器
按数据源名称在本地近似统计每日调用次数
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from loguru import logger

from marketpulse.models import ensure_utc, utc_now


DEFAULT_DAILY_LIMIT = 25


def next_utc_midnight(now: Optional[datetime] = None) -> datetime:
    """下一个 UTC 零点"""
    now = ensure_utc(now or utc_now())
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return start_of_day + timedelta(days=1)


@dataclass
class RateLimitState:
    """单个数据源的配额状态"""
    count: int
    limit: int
    reset_time: datetime

    @property
    def remaining(self) -> int:
        if self.limit <= 0:
            return -1
        return max(0, self.limit - self.count)


class DailyRateLimiter:
    """
    每日配额限流器

    本地计数只是数据源服务器配额的近似，用于跳过当天已知耗尽的数据源。

    - 每个 UTC 日自动重置计数（惰性检查，到达 reset_time 即清零）
    - 每次「尝试」调用都计数，而不仅是成功的调用
    - daily_limit <= 0 表示不限制，但仍然计数
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        """
        初始化限流器

        Args:
            clock: 返回当前 UTC 时间的函数（测试时可注入）
        """
        self._clock = clock or utc_now
        self._states: Dict[str, RateLimitState] = {}
        self._lock = asyncio.Lock()

    def _now(self) -> datetime:
        return ensure_utc(self._clock())

    def _state_for(self, provider: str, daily_limit: int) -> RateLimitState:
        """获取状态，跨越 UTC 零点时重置（调用方需持有锁）"""
        now = self._now()
        state = self._states.get(provider)
        if state is None or now >= state.reset_time:
            state = RateLimitState(count=0, limit=daily_limit, reset_time=next_utc_midnight(now))
            self._states[provider] = state
        else:
            state.limit = daily_limit
        return state

    @staticmethod
    def _has_quota(state: RateLimitState) -> bool:
        return state.limit <= 0 or state.count < state.limit

    async def check_limit(self, provider: str, daily_limit: int = DEFAULT_DAILY_LIMIT) -> bool:
        """
        检查数据源今天是否还有剩余配额

        Args:
            provider: 数据源名称
            daily_limit: 每日上限

        Returns:
            是否允许继续调用
        """
        async with self._lock:
            state = self._state_for(provider, daily_limit)
            if not self._has_quota(state):
                logger.warning(f"{provider} 已达每日调用上限: {state.count}/{state.limit}")
                return False
            return True

    async def increment_count(self, provider: str) -> None:
        """记录一次尝试调用"""
        async with self._lock:
            state = self._states.get(provider)
            if state is None or self._now() >= state.reset_time:
                limit = state.limit if state else DEFAULT_DAILY_LIMIT
                state = self._state_for(provider, limit)
            state.count += 1
            logger.debug(f"{provider} API 用量: {state.count}/{state.limit or '∞'}")

    async def acquire(self, provider: str, daily_limit: int = DEFAULT_DAILY_LIMIT) -> bool:
        """
        检查配额并计数（检查与计数在同一把锁内完成）

        Returns:
            True 表示已占用一次配额，可以发起调用
        """
        async with self._lock:
            state = self._state_for(provider, daily_limit)
            if not self._has_quota(state):
                logger.warning(f"{provider} 已达每日调用上限: {state.count}/{state.limit}")
                return False
            state.count += 1
            logger.debug(f"{provider} API 用量: {state.count}/{state.limit or '∞'}")
            return True

    def get_usage(self, provider: str) -> Dict[str, int]:
        """
        获取用量统计

        Returns:
            {"used": 已用, "limit": 上限, "remaining": 剩余}
        """
        state = self._states.get(provider)
        if state is None or self._now() >= state.reset_time:
            limit = state.limit if state else DEFAULT_DAILY_LIMIT
            return {"used": 0, "limit": limit, "remaining": limit}
        return {
            "used": state.count,
            "limit": state.limit,
            "remaining": state.remaining,
        }

    def reset_time(self, provider: str) -> Optional[datetime]:
        """数据源配额的下次重置时间"""
        state = self._states.get(provider)
        return state.reset_time if state else None

    async def reset(self, provider: Optional[str] = None) -> None:
        """清空计数（不指定 provider 时全部清空）"""
        async with self._lock:
            if provider is None:
                self._states.clear()
            else:
                self._states.pop(provider, None)

    def __repr__(self):
        return f"DailyRateLimiter(providers={sorted(self._states)})"
