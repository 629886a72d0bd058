"""
缓存系统模块
"""

from marketpulse.cache.policy import (
    CacheConfig,
    ConfigSource,
    Freshness,
    MappingConfigSource,
    ServeDecision,
    classify,
    compute_freshness,
    decide,
    load_cache_config,
)
from marketpulse.cache.base import IndicatorStore
from marketpulse.cache.memory_store import MemoryIndicatorStore
from marketpulse.cache.sqlite_store import SQLiteConfigSource, SQLiteIndicatorStore

__all__ = [
    "CacheConfig",
    "ConfigSource",
    "Freshness",
    "MappingConfigSource",
    "ServeDecision",
    "classify",
    "compute_freshness",
    "decide",
    "load_cache_config",
    "IndicatorStore",
    "MemoryIndicatorStore",
    "SQLiteConfigSource",
    "SQLiteIndicatorStore",
]
