"""
FRED (Federal Reserve Economic Data) 数据提供者
获取宏观经济序列的最新观测值
"""

import os
from typing import Any, Dict, List, Optional

import pandas as pd

from marketpulse.errors import ProviderError, TransientProviderError
from marketpulse.models import Quote
from marketpulse.providers.base import DEFAULT_TIMEOUT, QuoteProvider


# FRED 常用宏观序列
FRED_SERIES = {
    "DGS10": "10年期国债收益率",
    "UNRATE": "失业率",
    "CPIAUCSL": "CPI (城市消费者价格指数)",
    "FEDFUNDS": "联邦基金利率",
    "VIXCLS": "VIX 恐慌指数",
}


class FREDProvider(QuoteProvider):
    """
    FRED 数据提供者

    把序列的最新观测值映射为 Quote：price 为最新值，change 为相对前一个有效观测值的变化。
    "." 表示当日缺失，会被跳过。

    API 文档: https://fred.stlouisfed.org/docs/api/fred/
    """

    BASE_URL = "https://api.stlouisfed.org/fred/series/observations"

    # 取最近若干条，保证跳过缺失值后仍有两条有效观测
    OBSERVATION_LIMIT = 10

    def __init__(
        self,
        api_key: Optional[str] = None,
        priority: int = 1,
        daily_limit: int = 1000,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        初始化 FRED 提供者

        Args:
            api_key: FRED API key（可通过环境变量 FRED_API_KEY 设置）
        """
        super().__init__(priority=priority, daily_limit=daily_limit, timeout=timeout)
        self.api_key = api_key or os.getenv("FRED_API_KEY", "")
        if not self.api_key:
            raise ValueError(
                "FRED API key 未设置。请设置环境变量 FRED_API_KEY。"
                "免费注册: https://fred.stlouisfed.org/docs/api/api_key.html"
            )

    @property
    def name(self) -> str:
        return "fred"

    def classify_error(self, payload: Any, status: int = 200) -> Optional[ProviderError]:
        if isinstance(payload, dict) and payload.get("error_code"):
            message = str(payload.get("error_message") or "")
            if payload.get("error_code") == 429 or self._matches_quota_phrase(message):
                return self._quota_error(message or "HTTP 429")
            return TransientProviderError(self.name, message or f"error_code={payload.get('error_code')}")
        return super().classify_error(payload, status)

    async def _fetch_quote(self, symbol: str) -> Optional[Quote]:
        series_id = symbol.upper()
        params = {
            "series_id": series_id,
            "api_key": self.api_key,
            "file_type": "json",
            "sort_order": "desc",
            "limit": str(self.OBSERVATION_LIMIT),
        }
        data = await self._get_json(self.BASE_URL, params)

        series = self._parse_observations(series_id, data.get("observations", []))
        if series.empty:
            raise TransientProviderError(self.name, f"{series_id} 无数据")

        latest = float(series.iloc[-1])
        previous = float(series.iloc[-2]) if len(series) > 1 else latest
        change = latest - previous
        change_percent = (change / previous) * 100 if previous else 0.0

        return Quote(
            symbol=series_id,
            price=latest,
            change=change,
            change_percent=change_percent,
            as_of=series.index[-1].strftime("%Y-%m-%d"),
            source=self.name,
        )

    @staticmethod
    def _parse_observations(series_id: str, observations: List[Dict[str, str]]) -> pd.Series:
        """构建按日期升序的 Series，跳过缺失值"""
        dates = []
        values = []
        for obs in observations:
            value_str = obs.get("value", "")
            if value_str == "." or not value_str:
                continue
            try:
                dates.append(pd.Timestamp(obs.get("date", "")))
                values.append(float(value_str))
            except (ValueError, TypeError):
                continue

        series = pd.Series(values, index=pd.DatetimeIndex(dates), name=series_id, dtype=float)
        return series.sort_index()

    def __repr__(self):
        return f"FREDProvider(api_key=***, priority={self.priority})"
