"""
市场指标获取与缓存系统

模块:
- providers: 报价适配器、每日限流器、多数据源回退链
- cache: 指标缓存存储与新鲜度策略
- services: 指标采集与市场概览
- utils: 配置与日志
"""

__version__ = "0.1.0"
__author__ = "Your Name"

from marketpulse.errors import (
    AllProvidersRateLimitedError,
    MarketPulseError,
    ProviderError,
    QuotaExhaustedError,
    StoreError,
)
from marketpulse.models import CacheEntry, Quote
from marketpulse.services import MarketOverviewService, create_market_service

__all__ = [
    "AllProvidersRateLimitedError",
    "MarketPulseError",
    "ProviderError",
    "QuotaExhaustedError",
    "StoreError",
    "CacheEntry",
    "Quote",
    "MarketOverviewService",
    "create_market_service",
]
