"""
数据源模块
提供报价适配器、每日限流器和多数据源回退链
"""

from marketpulse.providers.base import DEFAULT_TIMEOUT, QuoteProvider
from marketpulse.providers.rate_limiter import DailyRateLimiter, RateLimitState, next_utc_midnight
from marketpulse.providers.alphavantage import AlphaVantageProvider
from marketpulse.providers.yahoo import YahooFinanceProvider
from marketpulse.providers.twelvedata import TwelveDataProvider
from marketpulse.providers.fred import FREDProvider
from marketpulse.providers.fear_greed import FearGreedProvider
from marketpulse.providers.chain import ChainResult, ProviderChain, ProviderState

__all__ = [
    "DEFAULT_TIMEOUT",
    "QuoteProvider",
    "DailyRateLimiter",
    "RateLimitState",
    "next_utc_midnight",
    "AlphaVantageProvider",
    "YahooFinanceProvider",
    "TwelveDataProvider",
    "FREDProvider",
    "FearGreedProvider",
    "ChainResult",
    "ProviderChain",
    "ProviderState",
]
