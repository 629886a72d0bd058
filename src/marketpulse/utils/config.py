"""
配置管理模块
统一管理系统配置
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv
from loguru import logger


@dataclass
class DatabaseConfig:
    """数据库配置"""
    path: str = "./data/cache/market_indicators.db"


@dataclass
class ProviderConfig:
    """单个数据源配置"""
    api_key: str = ""
    daily_limit: int = 0
    priority: int = 1
    timeout: float = 10.0
    enabled: bool = True


@dataclass
class CacheSettings:
    """缓存策略默认值（cache_config 表中没有时使用）"""
    max_age_hours: float = 12
    stale_hours: float = 6
    retry_attempts: int = 3
    fallback_enabled: bool = True

    def as_config_values(self) -> Dict[str, Any]:
        """转换为 cache_config 的键值格式"""
        return {
            "cache_max_age_hours": self.max_age_hours,
            "cache_stale_hours": self.stale_hours,
            "api_retry_attempts": self.retry_attempts,
            "cache_fallback_enabled": "true" if self.fallback_enabled else "false",
        }


@dataclass
class LoggingConfig:
    """日志配置"""
    level: str = "INFO"
    file: str = "./logs/marketpulse.log"
    rotation: str = "10 MB"
    retention: str = "1 week"
    format: str = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
        "<level>{message}</level>"
    )


@dataclass
class Config:
    """
    系统配置

    统一管理所有配置项。
    """
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    alphavantage: ProviderConfig = field(
        default_factory=lambda: ProviderConfig(daily_limit=25, priority=1)
    )
    yahoo: ProviderConfig = field(
        default_factory=lambda: ProviderConfig(daily_limit=0, priority=2)
    )
    twelvedata: ProviderConfig = field(
        default_factory=lambda: ProviderConfig(api_key="demo", daily_limit=800, priority=3)
    )
    fred: ProviderConfig = field(
        default_factory=lambda: ProviderConfig(daily_limit=1000, priority=1)
    )
    fear_greed: ProviderConfig = field(
        default_factory=lambda: ProviderConfig(daily_limit=0, priority=1)
    )
    cache: CacheSettings = field(default_factory=CacheSettings)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    debug: bool = False

    PROVIDER_SECTIONS = ("alphavantage", "yahoo", "twelvedata", "fred", "fear_greed")

    def __post_init__(self):
        """从环境变量加载配置"""
        # 数据源
        self.alphavantage.api_key = os.getenv("ALPHAVANTAGE_API_KEY", self.alphavantage.api_key)
        self.twelvedata.api_key = os.getenv("TWELVEDATA_API_KEY", self.twelvedata.api_key)
        self.fred.api_key = os.getenv("FRED_API_KEY", self.fred.api_key)

        # 数据库
        self.database.path = os.getenv("CACHE_DB_PATH", self.database.path)

        # 缓存策略
        self.cache.max_age_hours = self._cache_number("CACHE_MAX_AGE_HOURS", "max_age_hours", float)
        self.cache.stale_hours = self._cache_number("CACHE_STALE_HOURS", "stale_hours", float)
        self.cache.retry_attempts = self._cache_number("API_RETRY_ATTEMPTS", "retry_attempts", int)
        fallback = os.getenv("CACHE_FALLBACK_ENABLED")
        if fallback is not None:
            self.cache.fallback_enabled = fallback.lower() != "false"

        # 日志
        self.logging.level = os.getenv("LOG_LEVEL", self.logging.level)
        self.logging.file = os.getenv("LOG_FILE", self.logging.file)

        # 调试模式
        debug = os.getenv("DEBUG")
        if debug is not None:
            self.debug = debug.lower() == "true"

    def _cache_number(self, env_name: str, attr: str, cast) -> Any:
        """
        解析缓存策略数值

        依次尝试环境变量和当前值，都无效时记录警告并使用默认值。
        """
        for raw in (os.getenv(env_name), getattr(self.cache, attr)):
            if raw is None:
                continue
            try:
                return cast(raw)
            except (TypeError, ValueError):
                logger.warning(f"缓存配置 {attr}={raw!r} 无效，已忽略")
        return getattr(CacheSettings(), attr)

    @classmethod
    def from_yaml(cls, path: str) -> "Config":
        """
        从 YAML 文件加载配置

        Args:
            path: 配置文件路径

        Returns:
            Config 对象
        """
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """
        从字典加载配置

        环境变量优先于文件中的值。

        Args:
            data: 配置字典

        Returns:
            Config 对象
        """
        config = cls()

        sections = ("database", "cache", "logging") + cls.PROVIDER_SECTIONS
        for section in sections:
            if section in data and data[section]:
                target = getattr(config, section)
                known = {f.name for f in fields(target)}
                for key, value in data[section].items():
                    if key in known:
                        setattr(target, key, value)

        if "debug" in data:
            config.debug = bool(data["debug"])

        # 重新应用环境变量覆盖
        config.__post_init__()
        return config

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典（API key 脱敏）"""
        result: Dict[str, Any] = {
            "database": {"path": self.database.path},
            "cache": {
                "max_age_hours": self.cache.max_age_hours,
                "stale_hours": self.cache.stale_hours,
                "retry_attempts": self.cache.retry_attempts,
                "fallback_enabled": self.cache.fallback_enabled,
            },
            "logging": {
                "level": self.logging.level,
                "file": self.logging.file,
                "rotation": self.logging.rotation,
                "retention": self.logging.retention,
                "format": self.logging.format,
            },
            "debug": self.debug,
        }
        for section in self.PROVIDER_SECTIONS:
            provider: ProviderConfig = getattr(self, section)
            result[section] = {
                "api_key": "***" if provider.api_key else "",
                "daily_limit": provider.daily_limit,
                "priority": provider.priority,
                "timeout": provider.timeout,
                "enabled": provider.enabled,
            }
        return result

    def save_yaml(self, path: str) -> None:
        """保存配置到 YAML 文件"""
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, allow_unicode=True)


def load_config(
    config_path: Optional[str] = None,
    env_file: Optional[str] = None,
) -> Config:
    """
    加载配置

    优先级：环境变量 > 配置文件 > 默认值

    Args:
        config_path: YAML 配置文件路径
        env_file: .env 文件路径

    Returns:
        Config 对象
    """
    # 加载 .env 文件
    if env_file:
        load_dotenv(env_file)
    else:
        default_env = Path(".env")
        if default_env.exists():
            load_dotenv(default_env)

    if config_path and Path(config_path).exists():
        config = Config.from_yaml(config_path)
    else:
        config = Config()

    set_config(config)
    return config


# 全局配置实例
_global_config: Optional[Config] = None


def get_config() -> Config:
    """获取全局配置"""
    global _global_config
    if _global_config is None:
        _global_config = load_config()
    return _global_config


def set_config(config: Config) -> None:
    """设置全局配置"""
    global _global_config
    _global_config = config


def reset_config() -> None:
    """清除全局配置（测试用）"""
    global _global_config
    _global_config = None
