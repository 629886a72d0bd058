"""
Twelve Data 数据提供者
"""

import os
from typing import Any, Optional

from marketpulse.errors import ProviderError, TransientProviderError
from marketpulse.models import Quote
from marketpulse.providers.base import DEFAULT_TIMEOUT, QuoteProvider


class TwelveDataProvider(QuoteProvider):
    """
    Twelve Data 数据提供者

    出错时返回 {"status": "error", "code": ..., "message": ...}，
    限流信息只能从 message 文本中识别。
    """

    BASE_URL = "https://api.twelvedata.com/quote"

    QUOTA_PHRASES = ("limit", "exceeded")

    def __init__(
        self,
        api_key: Optional[str] = None,
        priority: int = 3,
        daily_limit: int = 800,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        super().__init__(priority=priority, daily_limit=daily_limit, timeout=timeout)
        self.api_key = api_key or os.getenv("TWELVEDATA_API_KEY") or "demo"

    @property
    def name(self) -> str:
        return "twelve_data"

    def classify_error(self, payload: Any, status: int = 200) -> Optional[ProviderError]:
        if isinstance(payload, dict) and (payload.get("status") == "error" or payload.get("code")):
            message = str(payload.get("message") or "")
            if payload.get("code") == 429 or self._matches_quota_phrase(message):
                return self._quota_error(message or "HTTP 429")
            return TransientProviderError(self.name, message or f"code={payload.get('code')}")
        return super().classify_error(payload, status)

    async def _fetch_quote(self, symbol: str) -> Optional[Quote]:
        symbol = symbol.upper()
        data = await self._get_json(self.BASE_URL, {"symbol": symbol, "apikey": self.api_key})

        volume = data.get("volume")
        return Quote(
            symbol=symbol,
            price=float(data["close"]),
            change=float(data.get("change") or 0),
            change_percent=float(data.get("percent_change") or 0),
            volume=float(volume) if volume else None,
            as_of=data.get("datetime"),
            source=self.name,
        )

    def __repr__(self):
        return f"TwelveDataProvider(api_key=***, priority={self.priority})"
