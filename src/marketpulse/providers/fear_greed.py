"""
恐惧贪婪指数数据提供者（alternative.me）
"""

from datetime import datetime, timezone
from typing import Any, Optional

from marketpulse.errors import ProviderError, TransientProviderError
from marketpulse.models import Quote
from marketpulse.providers.base import DEFAULT_TIMEOUT, QuoteProvider


class FearGreedProvider(QuoteProvider):
    """
    Fear & Greed Index 数据提供者

    免费接口，无需 API key。返回 0-100 的情绪值，
    price 为最新值，change 为相对前一日的变化。
    """

    BASE_URL = "https://api.alternative.me/fng/"

    SYMBOL = "FNG"

    def __init__(
        self,
        priority: int = 1,
        daily_limit: int = 0,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        super().__init__(priority=priority, daily_limit=daily_limit, timeout=timeout)

    @property
    def name(self) -> str:
        return "alternative_me"

    def classify_error(self, payload: Any, status: int = 200) -> Optional[ProviderError]:
        if isinstance(payload, dict):
            error = (payload.get("metadata") or {}).get("error")
            if error:
                if self._matches_quota_phrase(str(error)):
                    return self._quota_error(str(error))
                return TransientProviderError(self.name, str(error))
        return super().classify_error(payload, status)

    async def _fetch_quote(self, symbol: str = SYMBOL) -> Optional[Quote]:
        data = await self._get_json(self.BASE_URL, {"limit": "2", "format": "json"})

        readings = data.get("data") or []
        if not readings:
            raise TransientProviderError(self.name, "无指数数据")

        latest = float(readings[0]["value"])
        previous = float(readings[1]["value"]) if len(readings) > 1 else latest
        change = latest - previous

        as_of = None
        if readings[0].get("timestamp"):
            as_of = datetime.fromtimestamp(int(readings[0]["timestamp"]), tz=timezone.utc).strftime("%Y-%m-%d")

        return Quote(
            symbol=self.SYMBOL,
            price=latest,
            change=change,
            change_percent=(change / previous) * 100 if previous else 0.0,
            as_of=as_of,
            source=self.name,
        )
