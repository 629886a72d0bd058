"""
指标缓存存储基类
定义缓存存储的统一接口
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from marketpulse.models import CacheEntry


class IndicatorStore(ABC):
    """
    指标缓存存储抽象基类

    每个 indicator_type 最多一条活跃记录；历史记录保留为非活跃。
    所有实现（SQLite、内存等）都应实现此接口。
    """

    @abstractmethod
    async def insert(self, entry: CacheEntry) -> CacheEntry:
        """
        写入新条目

        Args:
            entry: 缓存条目（id 会被忽略）

        Returns:
            带 id 的条目
        """
        pass

    @abstractmethod
    async def query_latest_active(self, indicator_type: str) -> Optional[CacheEntry]:
        """
        查询指标最新的活跃条目

        Returns:
            缓存条目，不存在返回 None
        """
        pass

    @abstractmethod
    async def deactivate(self, entry_id: int) -> bool:
        """
        停用条目

        Returns:
            是否有记录被修改
        """
        pass

    async def replace_active(self, entry: CacheEntry) -> CacheEntry:
        """
        写入新条目并停用该指标之前的活跃条目

        默认实现分两步完成；支持事务的实现应覆盖为单个事务。
        """
        previous = await self.query_latest_active(entry.indicator_type)
        stored = await self.insert(entry)
        if previous is not None and previous.id is not None and previous.id != stored.id:
            await self.deactivate(previous.id)
        return stored

    @abstractmethod
    async def history(self, indicator_type: str, limit: int = 10) -> List[CacheEntry]:
        """按时间倒序返回指标的历史条目（含非活跃）"""
        pass

    @abstractmethod
    async def cleanup_inactive(self, older_than: datetime) -> int:
        """
        删除早于指定时间的非活跃条目

        Returns:
            删除的条目数
        """
        pass

    @abstractmethod
    async def stats(self) -> Dict[str, Any]:
        """
        获取缓存统计信息

        Returns:
            统计信息字典
        """
        pass

    async def ping(self) -> bool:
        """健康检查"""
        await self.stats()
        return True

    async def close(self) -> None:
        pass

    async def __aenter__(self):
        """异步上下文管理器入口"""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """异步上下文管理器出口"""
        await self.close()
