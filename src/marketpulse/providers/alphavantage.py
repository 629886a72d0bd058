"""
Alpha Vantage 数据提供者
通过 GLOBAL_QUOTE 接口获取实时报价
"""

import os
from typing import Any, Dict, Optional

from marketpulse.errors import ProviderError, TransientProviderError
from marketpulse.models import Quote
from marketpulse.providers.base import DEFAULT_TIMEOUT, QuoteProvider


class AlphaVantageProvider(QuoteProvider):
    """
    Alpha Vantage 数据提供者

    免费版每天 25 次调用。限流时 API 仍返回 200，
    在 "Information" 或 "Note" 字段里给出自然语言提示。

    API 文档: https://www.alphavantage.co/documentation/
    """

    BASE_URL = "https://www.alphavantage.co/query"

    # Alpha Vantage 不支持的交易所后缀
    UNSUPPORTED_EXCHANGES = {".HK", ".HKG"}

    QUOTA_PHRASES = (
        "rate limit",
        "api call frequency",
        "calls per day",
        "thank you for using alpha vantage",
    )

    def __init__(
        self,
        api_key: Optional[str] = None,
        priority: int = 1,
        daily_limit: int = 25,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        初始化 Alpha Vantage 提供者

        Args:
            api_key: API 密钥（可通过环境变量 ALPHAVANTAGE_API_KEY 设置）
            priority: 优先级
            daily_limit: 每日调用上限
            timeout: 请求超时（秒）
        """
        super().__init__(priority=priority, daily_limit=daily_limit, timeout=timeout)

        self.api_key = api_key or os.getenv("ALPHAVANTAGE_API_KEY")
        if not self.api_key:
            raise ValueError("Alpha Vantage API key 未设置。" "请通过参数传入或设置环境变量 ALPHAVANTAGE_API_KEY")

    @property
    def name(self) -> str:
        return "alpha_vantage"

    def classify_error(self, payload: Any, status: int = 200) -> Optional[ProviderError]:
        if isinstance(payload, dict):
            # 限流提示（Information 或 Note）
            message = payload.get("Information") or payload.get("Note")
            if message:
                if self._matches_quota_phrase(str(message)):
                    return self._quota_error(str(message))
                return TransientProviderError(self.name, str(message))

            if "Error Message" in payload:
                return TransientProviderError(self.name, str(payload["Error Message"]))

        return super().classify_error(payload, status)

    async def _fetch_quote(self, symbol: str) -> Optional[Quote]:
        symbol = symbol.upper()

        for suffix in self.UNSUPPORTED_EXCHANGES:
            if symbol.endswith(suffix):
                raise TransientProviderError(self.name, f"不支持交易所后缀 '{suffix}'（symbol={symbol}）")

        params = {
            "function": "GLOBAL_QUOTE",
            "symbol": symbol,
            "apikey": self.api_key,
        }
        data = await self._get_json(self.BASE_URL, params)

        global_quote = data.get("Global Quote") or {}
        if not global_quote:
            raise TransientProviderError(self.name, f"{symbol} 无报价数据")

        return self._parse_quote(symbol, global_quote)

    def _parse_quote(self, symbol: str, global_quote: Dict[str, str]) -> Quote:
        """解析 GLOBAL_QUOTE 响应"""
        volume = global_quote.get("06. volume")
        return Quote(
            symbol=symbol,
            price=float(global_quote["05. price"]),
            change=float(global_quote.get("09. change") or 0),
            change_percent=float((global_quote.get("10. change percent") or "0%").replace("%", "")),
            volume=float(volume) if volume else None,
            as_of=global_quote.get("07. latest trading day"),
            source=self.name,
        )

    def __repr__(self):
        return f"AlphaVantageProvider(api_key=***, priority={self.priority})"
