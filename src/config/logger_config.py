import os
import sys
from pathlib import Path

from loguru import logger

log_dir = Path(os.getenv("WIKISYNC_LOG_DIR", "logs"))
log_file = log_dir / "wikisync_{time}.log"
log_level = os.getenv("WIKISYNC_LOG_LEVEL", "DEBUG").upper()

logger.remove()
logger.add(
    log_file,
    rotation="256 MB",  # 每個檔案滿 256MB 就切分
    retention="10 days",  # 只保留最近 10 天的日誌
    compression="zip",  # 切分後的舊檔案自動壓縮成 zip
    encoding="utf-8",
    level=log_level,
    enqueue=True,
)
logger.add(sys.stderr, level="INFO", format="{time:HH:mm:ss} | {level: <8} | {message}")
