"""
数据源适配器基类
定义单只标的报价获取的统一接口
"""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Sequence, Tuple

import aiohttp
from loguru import logger

from marketpulse.errors import ProviderError, QuotaExhaustedError, TransientProviderError
from marketpulse.models import Quote
from marketpulse.providers.rate_limiter import next_utc_midnight


DEFAULT_TIMEOUT = 10.0


class QuoteProvider(ABC):
    """
    报价数据源抽象基类

    每个适配器只负责一个外部数据源：发起一次请求，把私有格式解析为 Quote。

    - fetch_quote 对可预期的失败（网络错误、非 2xx、格式异常、无数据）返回 None
    - 唯一向外抛出的信号是 QuotaExhaustedError，由 ProviderChain 记录为不可用
    - 限流信号的识别集中在 classify_error，便于单独替换和测试
    """

    # 自由文本中提示限流的关键词（小写比较）
    QUOTA_PHRASES: Sequence[str] = ("rate limit", "too many requests", "calls per day")

    DEFAULT_HEADERS: Dict[str, str] = {}

    def __init__(
        self,
        priority: int,
        daily_limit: int = 0,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        初始化数据源

        Args:
            priority: 优先级（数值越小越先尝试）
            daily_limit: 每日调用上限（0 表示不限制）
            timeout: 单次请求超时（秒）
        """
        self.priority = priority
        self.daily_limit = daily_limit
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    @abstractmethod
    def name(self) -> str:
        """数据源名称"""
        pass

    @abstractmethod
    async def _fetch_quote(self, symbol: str) -> Optional[Quote]:
        """
        请求并解析报价（子类实现）

        可以抛出 ProviderError、aiohttp.ClientError 或解析异常，
        由 fetch_quote 统一转换。
        """
        pass

    async def fetch_quote(self, symbol: str) -> Optional[Quote]:
        """
        获取报价

        Args:
            symbol: 资产代码

        Returns:
            Quote，失败返回 None

        Raises:
            QuotaExhaustedError: 数据源返回限流/配额耗尽信号
        """
        try:
            return await self._fetch_quote(symbol)
        except QuotaExhaustedError as e:
            logger.warning(f"{self.name}: 检测到限流 - {e.message}")
            raise
        except TransientProviderError as e:
            logger.warning(f"{self.name}: 获取 {symbol} 失败 - {e.message}")
            return None
        except asyncio.TimeoutError:
            logger.warning(f"{self.name}: 获取 {symbol} 超时 ({self.timeout}s)")
            return None
        except aiohttp.ClientError as e:
            logger.warning(f"{self.name}: 网络请求错误 {symbol}: {e}")
            return None
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning(f"{self.name}: 解析 {symbol} 响应失败: {e}")
            return None

    # ========== 错误分类 ==========

    def classify_error(self, payload: Any, status: int = 200) -> Optional[ProviderError]:
        """
        判断响应是否为错误

        Args:
            payload: 响应体（JSON 对象或文本）
            status: HTTP 状态码

        Returns:
            QuotaExhaustedError / TransientProviderError，非错误返回 None
        """
        if status == 429:
            return self._quota_error(f"HTTP 429: {self._payload_text(payload)}")
        if isinstance(payload, str) and self._matches_quota_phrase(payload):
            return self._quota_error(payload)
        return None

    def _matches_quota_phrase(self, message: str) -> bool:
        text = message.lower()
        return any(phrase in text for phrase in self.QUOTA_PHRASES)

    def _quota_error(self, message: str) -> QuotaExhaustedError:
        # 自由文本中拿不到精确恢复时间，按下一个 UTC 零点估计
        return QuotaExhaustedError(self.name, message.strip(), reset_at=next_utc_midnight())

    @staticmethod
    def _payload_text(payload: Any) -> str:
        if isinstance(payload, str):
            return payload[:200]
        return json.dumps(payload, default=str)[:200]

    # ========== HTTP ==========

    async def _get_session(self) -> aiohttp.ClientSession:
        """获取或创建 HTTP 会话"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers=self.DEFAULT_HEADERS,
            )
        return self._session

    async def close(self) -> None:
        """关闭 HTTP 会话"""
        if self._session and not self._session.closed:
            await self._session.close()

    async def _request(
        self,
        url: str,
        params: Optional[Dict[str, str]] = None,
    ) -> Tuple[int, Any]:
        """
        发送 GET 请求

        Returns:
            (HTTP 状态码, 响应体)，响应体能解析为 JSON 时为 JSON，否则为文本
        """
        session = await self._get_session()
        async with session.get(url, params=params) as response:
            text = await response.text()
            try:
                body = json.loads(text)
            except ValueError:
                body = text
            return response.status, body

    async def _get_json(self, url: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        请求 JSON 并检查错误

        Raises:
            QuotaExhaustedError: 限流
            TransientProviderError: 非 2xx、非 JSON、数据源报错
        """
        status, body = await self._request(url, params)

        error = self.classify_error(body, status)
        if error is not None:
            raise error

        if status < 200 or status >= 300:
            raise TransientProviderError(self.name, f"HTTP {status}")

        if not isinstance(body, dict):
            raise TransientProviderError(self.name, f"响应格式异常: {self._payload_text(body)}")

        return body

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def __repr__(self):
        return f"{self.__class__.__name__}(priority={self.priority}, daily_limit={self.daily_limit})"
