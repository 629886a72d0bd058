"""
Yahoo Finance 数据提供者
使用非官方 v8 chart 接口获取指数与 ETF 报价
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from loguru import logger

from marketpulse.errors import ProviderError, TransientProviderError
from marketpulse.models import Quote
from marketpulse.providers.base import DEFAULT_TIMEOUT, QuoteProvider


class YahooFinanceProvider(QuoteProvider):
    """
    Yahoo Finance 数据提供者

    无需 API key，没有公开的每日配额；被限流时返回 HTTP 429。
    ETF 代理代码会被转换为对应指数本身（SPY → ^GSPC 等）。
    """

    BASE_URL = "https://query1.finance.yahoo.com/v8/finance/chart/"

    DEFAULT_HEADERS = {"User-Agent": "Mozilla/5.0 (compatible; MarketPulse/1.0)"}

    # ETF / 简写 → Yahoo 指数代码
    SYMBOL_MAP = {
        "SPY": "^GSPC",
        "QQQ": "^IXIC",
        "DIA": "^DJI",
        "VIX": "^VIX",
    }

    def __init__(
        self,
        priority: int = 2,
        daily_limit: int = 0,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        super().__init__(priority=priority, daily_limit=daily_limit, timeout=timeout)

    @property
    def name(self) -> str:
        return "yahoo_finance"

    def resolve_symbol(self, symbol: str) -> str:
        """转换为 Yahoo 使用的代码"""
        symbol = symbol.upper()
        actual = self.SYMBOL_MAP.get(symbol, symbol)
        if actual != symbol:
            logger.debug(f"{self.name}: {symbol} 转换为 {actual}")
        return actual

    def classify_error(self, payload: Any, status: int = 200) -> Optional[ProviderError]:
        if isinstance(payload, dict) and status != 429:
            error = (payload.get("chart") or {}).get("error")
            if error:
                description = error.get("description") if isinstance(error, dict) else str(error)
                if description and self._matches_quota_phrase(description):
                    return self._quota_error(description)
                return TransientProviderError(self.name, description or "未知错误")
        return super().classify_error(payload, status)

    async def _fetch_quote(self, symbol: str) -> Optional[Quote]:
        actual_symbol = self.resolve_symbol(symbol)

        data = await self._get_json(f"{self.BASE_URL}{actual_symbol}", {"interval": "1d", "range": "5d"})

        results = (data.get("chart") or {}).get("result") or []
        if not results:
            raise TransientProviderError(self.name, f"{actual_symbol} 无数据")

        return self._parse_meta(actual_symbol, results[0]["meta"])

    def _parse_meta(self, symbol: str, meta: Dict[str, Any]) -> Quote:
        """解析 chart 响应的 meta 字段"""
        previous_close = meta.get("previousClose") or meta.get("chartPreviousClose") or 0
        current_price = meta.get("regularMarketPrice") or previous_close
        if not current_price:
            raise TransientProviderError(self.name, f"{symbol} 缺少价格字段")

        change = current_price - previous_close if previous_close else 0.0
        change_percent = (change / previous_close) * 100 if previous_close else 0.0

        as_of = None
        market_time = meta.get("regularMarketTime")
        if market_time:
            as_of = datetime.fromtimestamp(int(market_time), tz=timezone.utc).strftime("%Y-%m-%d")

        return Quote(
            symbol=symbol,
            price=float(current_price),
            change=float(change),
            change_percent=float(change_percent),
            volume=meta.get("regularMarketVolume") or None,
            market_cap=meta.get("marketCap") or None,
            as_of=as_of,
            source=self.name,
        )
