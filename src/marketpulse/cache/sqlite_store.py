"""
SQLite 指标缓存存储
使用 SQLite 数据库实现持久化的指标缓存
"""

import asyncio
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiosqlite
from loguru import logger

from marketpulse.cache.base import IndicatorStore
from marketpulse.cache.policy import ConfigSource
from marketpulse.errors import StoreError
from marketpulse.models import CacheEntry, ensure_utc, parse_timestamp, payload_from_dict


def _ts(value: Optional[datetime]) -> Optional[str]:
    """固定宽度的 UTC 时间字符串，保证按字符串排序即按时间排序"""
    if value is None:
        return None
    return ensure_utc(value).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


class SQLiteIndicatorStore(IndicatorStore):
    """
    SQLite 指标缓存

    表结构：
    - market_indicators_cache: 指标快照（每个类型最多一条 is_active=1）
    - cache_config: 缓存策略配置（key/value）
    """

    COLUMNS = "id, indicator_type, data_value, metadata, data_source, created_at, expires_at, is_active"

    def __init__(self, db_path: Optional[str] = None):
        """
        初始化 SQLite 存储

        Args:
            db_path: 数据库文件路径（默认读取配置 database.path）
        """
        if db_path is None:
            from marketpulse.utils.config import get_config
            db_path = get_config().database.path

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._initialized = False
        self._lock = asyncio.Lock()

    async def _ensure_initialized(self) -> None:
        """确保数据库已初始化"""
        if self._initialized:
            return

        async with self._lock:
            if self._initialized:
                return

            try:
                await self._create_tables()
            except aiosqlite.Error as e:
                logger.error(f"SQLite 指标缓存初始化失败: {self.db_path}, {e}")
                raise StoreError(f"初始化 {self.db_path} 失败: {e}") from e

            self._initialized = True
            logger.debug(f"SQLite 指标缓存初始化完成: {self.db_path}")

    async def _create_tables(self) -> None:
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS market_indicators_cache (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    indicator_type TEXT NOT NULL,
                    data_value TEXT NOT NULL,
                    metadata TEXT NOT NULL DEFAULT '{}',
                    data_source TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT,
                    is_active INTEGER NOT NULL DEFAULT 1
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS cache_config (
                    config_key TEXT PRIMARY KEY,
                    config_value TEXT NOT NULL,
                    updated_at TEXT
                )
            """)

            await db.execute("""
                CREATE INDEX IF NOT EXISTS idx_indicators_type_active
                ON market_indicators_cache(indicator_type, is_active, created_at)
            """)

            await db.commit()

    async def insert(self, entry: CacheEntry) -> CacheEntry:
        await self._ensure_initialized()

        try:
            async with aiosqlite.connect(self.db_path) as db:
                entry_id = await self._insert_row(db, entry)
                await db.commit()
        except aiosqlite.Error as e:
            logger.error(f"写入缓存失败: {entry.indicator_type}, {e}")
            raise StoreError(f"写入 {entry.indicator_type} 失败: {e}") from e

        return entry.with_id(entry_id)

    async def _insert_row(self, db: aiosqlite.Connection, entry: CacheEntry) -> int:
        cursor = await db.execute(
            """
            INSERT INTO market_indicators_cache
                (indicator_type, data_value, metadata, data_source, created_at, expires_at, is_active)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.indicator_type,
                json.dumps(entry.data_value.to_dict()),
                json.dumps(entry.metadata, default=str),
                entry.data_source,
                _ts(entry.created_at),
                _ts(entry.expires_at),
                1 if entry.is_active else 0,
            ),
        )
        return cursor.lastrowid

    async def query_latest_active(self, indicator_type: str) -> Optional[CacheEntry]:
        await self._ensure_initialized()

        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    f"""
                    SELECT {self.COLUMNS}
                    FROM market_indicators_cache
                    WHERE indicator_type = ? AND is_active = 1
                    ORDER BY created_at DESC, id DESC
                    LIMIT 1
                    """,
                    (indicator_type,),
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            logger.error(f"查询缓存失败: {indicator_type}, {e}")
            raise StoreError(f"查询 {indicator_type} 失败: {e}") from e

        if row is None:
            return None
        return self._row_to_entry(row)

    async def deactivate(self, entry_id: int) -> bool:
        await self._ensure_initialized()

        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    "UPDATE market_indicators_cache SET is_active = 0 WHERE id = ? AND is_active = 1",
                    (entry_id,),
                )
                await db.commit()
                return cursor.rowcount > 0
        except aiosqlite.Error as e:
            logger.error(f"停用缓存失败: id={entry_id}, {e}")
            raise StoreError(f"停用 id={entry_id} 失败: {e}") from e

    async def replace_active(self, entry: CacheEntry) -> CacheEntry:
        """在同一事务内停用旧条目并写入新条目"""
        await self._ensure_initialized()

        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("BEGIN IMMEDIATE")
                await db.execute(
                    "UPDATE market_indicators_cache SET is_active = 0 WHERE indicator_type = ? AND is_active = 1",
                    (entry.indicator_type,),
                )
                entry_id = await self._insert_row(db, entry)
                await db.commit()
        except aiosqlite.Error as e:
            logger.error(f"替换缓存失败: {entry.indicator_type}, {e}")
            raise StoreError(f"替换 {entry.indicator_type} 失败: {e}") from e

        logger.debug(f"已写入 {entry.indicator_type} (id={entry_id}, source={entry.data_source})")
        return entry.with_id(entry_id)

    async def history(self, indicator_type: str, limit: int = 10) -> List[CacheEntry]:
        await self._ensure_initialized()

        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    f"""
                    SELECT {self.COLUMNS}
                    FROM market_indicators_cache
                    WHERE indicator_type = ?
                    ORDER BY created_at DESC, id DESC
                    LIMIT ?
                    """,
                    (indicator_type, limit),
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise StoreError(f"查询 {indicator_type} 历史失败: {e}") from e
        return [self._row_to_entry(row) for row in rows]

    async def cleanup_inactive(self, older_than: datetime) -> int:
        await self._ensure_initialized()

        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    "DELETE FROM market_indicators_cache WHERE is_active = 0 AND created_at < ?",
                    (_ts(older_than),),
                )
                await db.commit()
                count = cursor.rowcount
        except aiosqlite.Error as e:
            logger.error(f"清理历史缓存失败: {e}")
            return 0

        if count > 0:
            logger.info(f"清理了 {count} 条历史缓存")
        return count

    async def stats(self) -> Dict[str, Any]:
        await self._ensure_initialized()

        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute("SELECT COUNT(*) FROM market_indicators_cache")
                total_entries = (await cursor.fetchone())[0]

                cursor = await db.execute(
                    "SELECT DISTINCT indicator_type FROM market_indicators_cache "
                    "WHERE is_active = 1 ORDER BY indicator_type"
                )
                indicator_types = [row[0] for row in await cursor.fetchall()]
        except aiosqlite.Error as e:
            raise StoreError(f"统计缓存失败: {e}") from e

        db_size = self.db_path.stat().st_size if self.db_path.exists() else 0

        return {
            "total_entries": total_entries,
            "active_entries": len(indicator_types),
            "indicator_types": indicator_types,
            "backend": "sqlite",
            "db_size_bytes": db_size,
            "db_size_mb": round(db_size / 1024 / 1024, 2),
            "db_path": str(self.db_path),
        }

    async def ping(self) -> bool:
        await self._ensure_initialized()
        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute("SELECT 1")
        except aiosqlite.Error as e:
            raise StoreError(f"数据库不可用: {e}") from e
        return True

    # ========== 缓存策略配置 ==========

    async def get_config_value(self, key: str) -> Optional[str]:
        await self._ensure_initialized()

        try:
            async with aiosqlite.connect(self.db_path) as db:
                cursor = await db.execute(
                    "SELECT config_value FROM cache_config WHERE config_key = ?",
                    (key,),
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise StoreError(f"读取缓存配置 {key} 失败: {e}") from e
        return row[0] if row else None

    async def set_config_value(self, key: str, value: str) -> None:
        await self._ensure_initialized()

        try:
            async with aiosqlite.connect(self.db_path) as db:
                await db.execute(
                    """
                    INSERT OR REPLACE INTO cache_config (config_key, config_value, updated_at)
                    VALUES (?, ?, ?)
                    """,
                    (key, str(value), _ts(datetime.now().astimezone())),
                )
                await db.commit()
        except aiosqlite.Error as e:
            raise StoreError(f"写入缓存配置 {key} 失败: {e}") from e

    def config_source(self) -> "SQLiteConfigSource":
        """以 cache_config 表作为配置来源"""
        return SQLiteConfigSource(self)

    # ========== 序列化/反序列化 ==========

    @staticmethod
    def _row_to_entry(row) -> CacheEntry:
        entry_id, indicator_type, data_value, metadata, data_source, created_at, expires_at, is_active = row
        return CacheEntry(
            id=entry_id,
            indicator_type=indicator_type,
            data_value=payload_from_dict(indicator_type, json.loads(data_value)),
            metadata=json.loads(metadata) if metadata else {},
            data_source=data_source,
            created_at=parse_timestamp(created_at),
            expires_at=parse_timestamp(expires_at),
            is_active=bool(is_active),
        )

    def __repr__(self):
        return f"SQLiteIndicatorStore({self.db_path})"


class SQLiteConfigSource(ConfigSource):
    """从 cache_config 表读取缓存策略配置"""

    def __init__(self, store: SQLiteIndicatorStore):
        self.store = store

    async def get(self, key: str) -> Optional[str]:
        return await self.store.get_config_value(key)

    def __repr__(self):
        return f"SQLiteConfigSource({self.store.db_path})"
