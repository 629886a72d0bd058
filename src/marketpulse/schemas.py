"""
市场概览 Pydantic 模型
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class FreshnessInfo(BaseModel):
    """新鲜度信息"""
    age_seconds: float
    age_hours: int
    freshness_score: float
    is_stale: bool


class IndicatorData(BaseModel):
    """单个指标"""
    id: Optional[int] = None
    indicator_type: str
    data_value: Dict[str, Any]
    metadata: Dict[str, Any] = Field(default_factory=dict)
    data_source: str
    created_at: str
    expires_at: Optional[str] = None
    age_seconds: float
    source: Literal["cache", "realtime", "fallback"]
    freshness: FreshnessInfo


class CacheInfo(BaseModel):
    """缓存命中统计"""
    total_indicators: int
    requested_indicators: int
    fresh_indicators: int
    stale_indicators: int
    cache_hit_rate: int


class MarketOverviewResponse(BaseModel):
    """市场概览响应"""
    indicators: List[IndicatorData]
    fear_greed_index: Optional[IndicatorData] = None
    sp500_data: Optional[IndicatorData] = None
    vix_data: Optional[IndicatorData] = None
    market_indicators: List[IndicatorData] = Field(default_factory=list)
    economic_indicators: List[IndicatorData] = Field(default_factory=list)
    last_updated: str
    source: Literal["cache", "mixed", "realtime"]
    cache_info: CacheInfo
    unavailable: List[str] = Field(default_factory=list)
    rate_limited: List[str] = Field(default_factory=list)


class RateLimitUsage(BaseModel):
    """每日配额用量"""
    used: int
    limit: int
    remaining: int


class ProviderStatusResponse(BaseModel):
    """数据源状态"""
    chain: str
    name: str
    priority: int
    available: bool
    reset_at: Optional[str] = None
    message: Optional[str] = None
    usage: RateLimitUsage


class HealthResponse(BaseModel):
    """健康检查响应"""
    status: Literal["healthy", "degraded"]
    database: str
    timestamp: str
    providers_available: int
    providers_total: int
    background_tasks: int
