"""
统一日志系统 - 基于 loguru

日志级别策略:
- DEBUG: 调试信息，远端调用、票据状态变更
- INFO:  关键流程，扫码会话创建、票据消费
- WARNING: 远端返回业务错误、签名校验失败
- ERROR: 网络故障、密钥配置错误

输出策略:
- 控制台: 通过 LOG_LEVEL 控制，默认 INFO
- 文件: 设置 LOG_FILE_DIR 时启用，按大小轮转 (50MB)，保留 14 天

使用方式:
    from idpbridge.core.logger import logger

    logger.info("消息")
    logger.warning("远端错误: code={}", code)
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from loguru import logger

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# 是否禁用文件日志 (用于测试或嵌入宿主应用)
DISABLE_FILE_LOG = os.getenv("LOG_DISABLE_FILE", "false").lower() == "true"

LOG_FILE_DIR = os.getenv("LOG_FILE_DIR", "")

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{message}</cyan>"
)

FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} | {message}"

logger.remove()

logger.add(
    sys.stderr,
    format=CONSOLE_FORMAT,
    level=LOG_LEVEL,
    colorize=True,
)

if LOG_FILE_DIR and not DISABLE_FILE_LOG:
    log_dir = Path(LOG_FILE_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)

    # enqueue=False 同步写入，避免 multiprocessing 信号量泄漏
    logger.add(
        log_dir / "idpbridge.log",
        level="DEBUG",
        format=FILE_FORMAT,
        rotation="50 MB",
        retention="14 days",
        compression="gz",
        enqueue=False,
        encoding="utf-8",
        catch=True,
    )

# 第三方库噪音日志
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)

__all__ = ["logger"]
