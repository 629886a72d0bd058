"""
异常定义
数据获取与缓存层的错误分类
"""

from datetime import datetime
from typing import Optional


class MarketPulseError(Exception):
    """所有 marketpulse 异常的基类"""


class ProviderError(MarketPulseError):
    """
    数据源错误基类

    Attributes:
        provider: 数据源名称
        message: 原始错误信息（通常来自第三方响应）
    """

    def __init__(self, provider: str, message: str = ""):
        self.provider = provider
        self.message = message
        super().__init__(f"{provider}: {message}" if message else provider)


class TransientProviderError(ProviderError):
    """
    临时性错误（超时、5xx、响应格式异常、无数据）

    不向调用方暴露，仅触发回退到下一个数据源。
    """


class QuotaExhaustedError(ProviderError):
    """
    配额耗尽（数据源返回的限流信号）

    reset_at 为尽力估计值：多数数据源只在自由文本中提示限流，
    无法得到精确的恢复时间，默认按下一个 UTC 零点处理。
    """

    def __init__(
        self,
        provider: str,
        message: str = "",
        reset_at: Optional[datetime] = None,
    ):
        super().__init__(provider, message)
        self.reset_at = reset_at


class AllProvidersRateLimitedError(MarketPulseError):
    """数据链中所有数据源均已达到配额上限"""

    def __init__(self, symbol: str, message: str = "All API providers have reached their rate limits"):
        self.symbol = symbol
        self.message = message
        super().__init__(f"{symbol}: {message}")


class StoreError(MarketPulseError):
    """缓存存储读写失败"""


class ConfigLoadError(MarketPulseError):
    """缓存配置加载失败（内部使用，总是回退到默认值）"""
