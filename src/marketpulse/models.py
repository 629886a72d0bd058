"""
数据模型模块
定义标准化的报价、指标载荷与缓存条目结构
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Type, Union


# 已知指标类型
FEAR_GREED = "fear_greed"
SP500 = "sp500"
VIX = "vix"
TREASURY_10Y = "treasury_10y"
UNEMPLOYMENT = "unemployment"
CPI = "cpi"

DEFAULT_INDICATORS = (FEAR_GREED, SP500, VIX, TREASURY_10Y, UNEMPLOYMENT, CPI)

MARKET_INDICATORS = (SP500, VIX)
ECONOMIC_INDICATORS = (TREASURY_10Y, UNEMPLOYMENT, CPI)


def utc_now() -> datetime:
    """当前 UTC 时间（带时区）"""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """无时区的时间按 UTC 处理"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """解析 ISO8601 时间字符串（兼容结尾 Z）"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def format_timestamp(value: datetime) -> str:
    """格式化为 ISO8601（UTC，结尾 Z）"""
    return ensure_utc(value).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class Quote:
    """
    标准化报价

    由数据源适配器生成，创建后不可变。
    """
    symbol: str
    price: float
    change: float
    change_percent: float
    source: str
    volume: Optional[float] = None
    market_cap: Optional[float] = None
    as_of: Optional[str] = None

    @property
    def previous_value(self) -> float:
        """根据涨跌额反推的前值"""
        return self.price - self.change

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        return {
            "symbol": self.symbol,
            "price": self.price,
            "change": self.change,
            "change_percent": self.change_percent,
            "volume": self.volume,
            "market_cap": self.market_cap,
            "as_of": self.as_of,
            "source": self.source,
        }


# ========== 指标载荷（按 indicator_type 区分） ==========


@dataclass(frozen=True)
class MarketQuoteValue:
    """指数/ETF 类指标载荷（sp500、vix）"""
    symbol: str
    price: float
    change: float
    change_percent: float
    volume: Optional[float] = None
    market_cap: Optional[float] = None
    as_of: Optional[str] = None

    @classmethod
    def from_quote(cls, quote: Quote) -> "MarketQuoteValue":
        return cls(
            symbol=quote.symbol,
            price=quote.price,
            change=quote.change,
            change_percent=quote.change_percent,
            volume=quote.volume,
            market_cap=quote.market_cap,
            as_of=quote.as_of,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "change": self.change,
            "change_percent": self.change_percent,
            "volume": self.volume,
            "market_cap": self.market_cap,
            "as_of": self.as_of,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MarketQuoteValue":
        return cls(
            symbol=str(data.get("symbol", "")),
            price=float(data["price"]),
            change=float(data.get("change", 0.0)),
            change_percent=float(data.get("change_percent", 0.0)),
            volume=data.get("volume"),
            market_cap=data.get("market_cap"),
            as_of=data.get("as_of"),
        )


def classify_fear_greed(value: float) -> str:
    """恐惧贪婪指数分档（与 alternative.me 一致）"""
    if value < 25:
        return "Extreme Fear"
    if value < 45:
        return "Fear"
    if value <= 55:
        return "Neutral"
    if value <= 75:
        return "Greed"
    return "Extreme Greed"


@dataclass(frozen=True)
class SentimentValue:
    """情绪类指标载荷（fear_greed，0-100）"""
    value: int
    classification: str
    previous_value: Optional[int] = None
    change: Optional[float] = None
    as_of: Optional[str] = None

    @classmethod
    def from_quote(cls, quote: Quote) -> "SentimentValue":
        value = int(round(quote.price))
        return cls(
            value=value,
            classification=classify_fear_greed(value),
            previous_value=int(round(quote.previous_value)),
            change=quote.change,
            as_of=quote.as_of,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "classification": self.classification,
            "previous_value": self.previous_value,
            "change": self.change,
            "as_of": self.as_of,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SentimentValue":
        value = int(data["value"])
        return cls(
            value=value,
            classification=data.get("classification") or classify_fear_greed(value),
            previous_value=data.get("previous_value"),
            change=data.get("change"),
            as_of=data.get("as_of"),
        )


@dataclass(frozen=True)
class EconomicValue:
    """宏观经济指标载荷（treasury_10y、unemployment、cpi）"""
    value: float
    unit: str
    previous_value: Optional[float] = None
    change: Optional[float] = None
    change_percent: Optional[float] = None
    as_of: Optional[str] = None

    @classmethod
    def from_quote(cls, quote: Quote, unit: str) -> "EconomicValue":
        return cls(
            value=quote.price,
            unit=unit,
            previous_value=quote.previous_value,
            change=quote.change,
            change_percent=quote.change_percent,
            as_of=quote.as_of,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "unit": self.unit,
            "previous_value": self.previous_value,
            "change": self.change,
            "change_percent": self.change_percent,
            "as_of": self.as_of,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EconomicValue":
        return cls(
            value=float(data["value"]),
            unit=str(data.get("unit", "")),
            previous_value=data.get("previous_value"),
            change=data.get("change"),
            change_percent=data.get("change_percent"),
            as_of=data.get("as_of"),
        )


@dataclass(frozen=True)
class GenericValue:
    """未知指标类型的原样载荷"""
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GenericValue":
        return cls(data=dict(data))


IndicatorValue = Union[MarketQuoteValue, SentimentValue, EconomicValue, GenericValue]

PAYLOAD_TYPES: Dict[str, Type] = {
    SP500: MarketQuoteValue,
    VIX: MarketQuoteValue,
    FEAR_GREED: SentimentValue,
    TREASURY_10Y: EconomicValue,
    UNEMPLOYMENT: EconomicValue,
    CPI: EconomicValue,
}


def payload_from_dict(indicator_type: str, data: Dict[str, Any]) -> IndicatorValue:
    """
    按指标类型反序列化载荷

    载荷字段缺失或类型错误时退化为 GenericValue，保证旧数据仍可读取。
    """
    payload_cls = PAYLOAD_TYPES.get(indicator_type, GenericValue)
    try:
        return payload_cls.from_dict(data)
    except (KeyError, TypeError, ValueError):
        return GenericValue.from_dict(data)


@dataclass(frozen=True)
class CacheEntry:
    """
    缓存条目

    每个 indicator_type 最多只有一条 is_active=True 的记录。
    刷新时写入新记录并停用旧记录，不做原地修改。
    """
    indicator_type: str
    data_value: IndicatorValue
    data_source: str
    created_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)
    expires_at: Optional[datetime] = None
    id: Optional[int] = None
    is_active: bool = True

    def with_id(self, entry_id: int) -> "CacheEntry":
        return replace(self, id=entry_id)

    def deactivated(self) -> "CacheEntry":
        return replace(self, is_active=False)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        return {
            "id": self.id,
            "indicator_type": self.indicator_type,
            "data_value": self.data_value.to_dict(),
            "metadata": dict(self.metadata),
            "data_source": self.data_source,
            "created_at": format_timestamp(self.created_at),
            "expires_at": format_timestamp(self.expires_at) if self.expires_at else None,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CacheEntry":
        """从字典创建"""
        indicator_type = data["indicator_type"]
        return cls(
            id=data.get("id"),
            indicator_type=indicator_type,
            data_value=payload_from_dict(indicator_type, data.get("data_value") or {}),
            metadata=dict(data.get("metadata") or {}),
            data_source=data.get("data_source", ""),
            created_at=parse_timestamp(data["created_at"]),
            expires_at=parse_timestamp(data.get("expires_at")),
            is_active=bool(data.get("is_active", True)),
        )
