"""
Logging Configuration
File logging with a detailed, pipe-separated format.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

DETAILED_FORMAT = (
    "%(asctime)s | "
    "%(levelname)-8s | "
    "%(name)-30s | "
    "%(funcName)-20s | "
    "%(message)s"
)

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "openai", "asyncio", "PIL")


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None,
                  log_dir: str = "./logs") -> logging.Logger:
    """
    Configure the root logger to write into a log file.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file name inside log_dir.
                  If None, uses agent_{timestamp}.log
        log_dir: Directory for log files, created if missing
    """
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)

    if log_file is None:
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        log_path = directory / f"agent_{timestamp}.log"
    else:
        log_path = directory / log_file

    level = getattr(logging, str(log_level).upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    # 控制台不输出日志，只写文件
    try:
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(DETAILED_FORMAT))
        root_logger.addHandler(file_handler)
        print(f"📝 日志文件: {log_path}")
    except OSError as e:
        print(f"⚠️  无法创建日志文件: {e}")

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger
