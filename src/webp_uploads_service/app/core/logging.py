import sys
from pathlib import Path

from loguru import logger

from .config import Settings

LOG_FORMAT = "{time} | {level} | {name}:{function}:{line} - {message}"


def setup_logging(settings: Settings) -> None:
    logger.remove()
    logger.add(sys.stderr, level=settings.LOG_LEVEL, format=LOG_FORMAT)

    if settings.LOG_FILE:
        log_file = Path(settings.absolute_log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_file),
            level=settings.LOG_LEVEL,
            format=LOG_FORMAT,
            rotation="10 MB",
            retention=5,
        )

    logger.info(f"Logging configured at level {settings.LOG_LEVEL}")
