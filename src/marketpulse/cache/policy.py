"""
缓存新鲜度策略
计算缓存条目的新鲜度，并给出 stale-while-revalidate 的服务决策
"""

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from loguru import logger

from marketpulse.errors import ConfigLoadError
from marketpulse.models import CacheEntry, ensure_utc, utc_now


HOUR = 3600

# cache_config 中的配置键
MAX_AGE_KEY = "cache_max_age_hours"
STALE_KEY = "cache_stale_hours"
RETRY_KEY = "api_retry_attempts"
FALLBACK_KEY = "cache_fallback_enabled"

CONFIG_KEYS = (MAX_AGE_KEY, STALE_KEY, RETRY_KEY, FALLBACK_KEY)


@dataclass(frozen=True)
class CacheConfig:
    """
    缓存策略配置（进程启动时加载一次）

    Attributes:
        max_age: 最大新鲜时长（秒）
        stale_while_revalidate: 过期后仍可返回旧数据的宽限时长（秒）
        retry_attempts: 同步拉取失败时的重试次数
        fallback_enabled: 缓存未命中时是否实时调用数据源
    """
    max_age: int = 12 * HOUR
    stale_while_revalidate: int = 6 * HOUR
    retry_attempts: int = 3
    fallback_enabled: bool = True

    def with_max_age(self, max_age: Optional[int]) -> "CacheConfig":
        """覆盖 max_age（None 或非正数时保持原值）"""
        if not max_age or max_age <= 0:
            return self
        return CacheConfig(
            max_age=int(max_age),
            stale_while_revalidate=self.stale_while_revalidate,
            retry_attempts=self.retry_attempts,
            fallback_enabled=self.fallback_enabled,
        )


@dataclass(frozen=True)
class Freshness:
    """新鲜度（派生值，不持久化）"""
    age_seconds: float
    age_hours: int
    freshness_score: float
    is_stale: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "age_seconds": self.age_seconds,
            "age_hours": self.age_hours,
            "freshness_score": self.freshness_score,
            "is_stale": self.is_stale,
        }


class ServeDecision(Enum):
    """缓存服务决策"""
    FRESH = "fresh"  # 直接返回
    STALE = "stale"  # 返回旧数据，后台刷新
    MISS = "miss"    # 同步拉取


def compute_freshness(age_seconds: float, max_age: int) -> Freshness:
    """
    按年龄计算新鲜度

    freshness_score 从 100（年龄 0）线性衰减到 0（年龄 max_age），限定在 [0, 100]。
    年龄达到 max_age 即视为过期。
    """
    age = max(0.0, float(age_seconds))
    if max_age <= 0:
        return Freshness(age_seconds=age, age_hours=int(age // HOUR), freshness_score=0.0, is_stale=True)

    score = max(0.0, min(100.0, 100.0 * (1.0 - age / max_age)))
    return Freshness(
        age_seconds=age,
        age_hours=int(math.floor(age / HOUR)),
        freshness_score=score,
        is_stale=age >= max_age,
    )


def classify(entry: CacheEntry, config: CacheConfig, now: Optional[datetime] = None) -> Freshness:
    """
    计算缓存条目的新鲜度

    Args:
        entry: 缓存条目
        config: 缓存策略
        now: 当前时间（默认 UTC 当前时间）

    Returns:
        Freshness
    """
    now = ensure_utc(now or utc_now())
    age = (now - ensure_utc(entry.created_at)).total_seconds()
    return compute_freshness(age, config.max_age)


def decide(freshness: Optional[Freshness], config: CacheConfig) -> ServeDecision:
    """
    stale-while-revalidate 决策

    - age < max_age                              → FRESH
    - max_age <= age < max_age + stale_window    → STALE
    - 更旧或无条目                                → MISS
    """
    if freshness is None:
        return ServeDecision.MISS
    if freshness.age_seconds < config.max_age:
        return ServeDecision.FRESH
    if freshness.age_seconds < config.max_age + config.stale_while_revalidate:
        return ServeDecision.STALE
    return ServeDecision.MISS


# ========== 配置加载 ==========


class ConfigSource(ABC):
    """键值配置来源"""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """读取配置值，不存在返回 None"""
        pass


class MappingConfigSource(ConfigSource):
    """基于字典的配置来源"""

    def __init__(self, values: Mapping[str, Any]):
        self.values = dict(values)

    async def get(self, key: str) -> Optional[str]:
        value = self.values.get(key)
        return None if value is None else str(value)

    def __repr__(self):
        return f"MappingConfigSource(keys={sorted(self.values)})"


def _parse_bool(value: str) -> bool:
    return value.strip().lower() not in ("false", "0", "no", "off")


def _parse_value(key: str, raw: str) -> Any:
    try:
        if key == MAX_AGE_KEY or key == STALE_KEY:
            hours = float(raw)
            if hours < 0:
                raise ValueError("不能为负数")
            return int(hours * HOUR)
        if key == RETRY_KEY:
            attempts = int(raw)
            if attempts < 0:
                raise ValueError("不能为负数")
            return attempts
        return _parse_bool(raw)
    except ValueError as e:
        raise ConfigLoadError(f"配置 {key}={raw!r} 无效: {e}") from e


async def load_cache_config(*sources: ConfigSource) -> CacheConfig:
    """
    加载缓存策略配置

    按顺序查询配置来源，第一个有值的来源生效；缺失或无效的键使用默认值。
    任何来源的读取失败都只记录日志，不会向上抛出。

    Args:
        sources: 配置来源（如 cache_config 表、配置文件）

    Returns:
        CacheConfig
    """
    defaults = CacheConfig()
    resolved: Dict[str, Any] = {}

    for key in CONFIG_KEYS:
        for source in sources:
            try:
                raw = await source.get(key)
            except Exception as e:
                logger.warning(f"从 {source!r} 读取缓存配置 {key} 失败，尝试下一个来源: {e}")
                continue
            if raw is None or str(raw).strip() == "":
                continue
            try:
                resolved[key] = _parse_value(key, str(raw))
            except ConfigLoadError as e:
                logger.warning(f"{e}，使用默认值")
            break

    config = CacheConfig(
        max_age=resolved.get(MAX_AGE_KEY, defaults.max_age),
        stale_while_revalidate=resolved.get(STALE_KEY, defaults.stale_while_revalidate),
        retry_attempts=resolved.get(RETRY_KEY, defaults.retry_attempts),
        fallback_enabled=resolved.get(FALLBACK_KEY, defaults.fallback_enabled),
    )
    logger.debug(
        f"缓存策略: max_age={config.max_age}s, stale={config.stale_while_revalidate}s, "
        f"retry={config.retry_attempts}, fallback={config.fallback_enabled}"
    )
    return config
