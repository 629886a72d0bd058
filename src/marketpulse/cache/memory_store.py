"""
内存缓存存储
进程内实现，用于测试和命令行临时运行
"""

import asyncio
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional

from marketpulse.cache.base import IndicatorStore
from marketpulse.models import CacheEntry


class MemoryIndicatorStore(IndicatorStore):
    """内存指标存储（进程退出即丢失）"""

    def __init__(self):
        self._rows: Dict[int, CacheEntry] = {}
        self._next_id = 1
        self._lock = asyncio.Lock()

    async def insert(self, entry: CacheEntry) -> CacheEntry:
        async with self._lock:
            return self._insert(entry)

    def _insert(self, entry: CacheEntry) -> CacheEntry:
        stored = entry.with_id(self._next_id)
        self._rows[stored.id] = stored
        self._next_id += 1
        return stored

    async def query_latest_active(self, indicator_type: str) -> Optional[CacheEntry]:
        active = [
            row for row in self._rows.values()
            if row.indicator_type == indicator_type and row.is_active
        ]
        if not active:
            return None
        return max(active, key=lambda row: (row.created_at, row.id))

    async def deactivate(self, entry_id: int) -> bool:
        async with self._lock:
            return self._deactivate(entry_id)

    def _deactivate(self, entry_id: int) -> bool:
        row = self._rows.get(entry_id)
        if row is None or not row.is_active:
            return False
        self._rows[entry_id] = row.deactivated()
        return True

    async def replace_active(self, entry: CacheEntry) -> CacheEntry:
        async with self._lock:
            for row_id, row in list(self._rows.items()):
                if row.indicator_type == entry.indicator_type and row.is_active:
                    self._deactivate(row_id)
            return self._insert(entry)

    async def history(self, indicator_type: str, limit: int = 10) -> List[CacheEntry]:
        rows = [row for row in self._rows.values() if row.indicator_type == indicator_type]
        rows.sort(key=lambda row: (row.created_at, row.id), reverse=True)
        return rows[:limit]

    async def cleanup_inactive(self, older_than: datetime) -> int:
        async with self._lock:
            stale_ids = [
                row_id for row_id, row in self._rows.items()
                if not row.is_active and row.created_at < older_than
            ]
            for row_id in stale_ids:
                del self._rows[row_id]
            return len(stale_ids)

    async def stats(self) -> Dict[str, Any]:
        active = Counter(row.indicator_type for row in self._rows.values() if row.is_active)
        return {
            "total_entries": len(self._rows),
            "active_entries": sum(active.values()),
            "indicator_types": sorted(active),
            "backend": "memory",
        }

    def __repr__(self):
        return f"MemoryIndicatorStore(rows={len(self._rows)})"
