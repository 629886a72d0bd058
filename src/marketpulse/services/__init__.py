"""
服务模块
"""

from marketpulse.services.collector import (
    INDICATORS,
    CollectResult,
    CollectSummary,
    IndicatorCollector,
    IndicatorDefinition,
)
from marketpulse.services.market_overview import IndicatorOutcome, IndicatorReading, MarketOverviewService
from marketpulse.services.factory import build_chains, build_providers, create_market_service

__all__ = [
    "INDICATORS",
    "CollectResult",
    "CollectSummary",
    "IndicatorCollector",
    "IndicatorDefinition",
    "IndicatorOutcome",
    "IndicatorReading",
    "MarketOverviewService",
    "build_chains",
    "build_providers",
    "create_market_service",
]
