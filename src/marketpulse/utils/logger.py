"""
日志模块
按 LoggingConfig 配置 loguru 的控制台与文件输出
"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from marketpulse.utils.config import LoggingConfig


def setup_logger(
    config: Optional[LoggingConfig] = None,
    level: Optional[str] = None,
    to_file: bool = True,
) -> None:
    """
    配置日志系统

    Args:
        config: 日志配置（默认 LoggingConfig()）
        level: 覆盖配置中的级别（两个输出共用）
        to_file: 是否写入 config.file
    """
    config = config or LoggingConfig()
    level = (level or config.level).upper()

    logger.remove()
    logger.add(sys.stderr, level=level, format=config.format, colorize=True)

    if to_file and config.file:
        Path(config.file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            config.file,
            level=level,
            format=config.format,
            rotation=config.rotation,
            retention=config.retention,
            compression="zip",
            encoding="utf-8",
        )

    logger.debug(f"日志系统初始化完成，级别: {level}, 文件: {config.file if to_file else '无'}")
