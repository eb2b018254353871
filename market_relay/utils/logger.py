"""
Market Relay - Logger Configuration
Centralized logging with loguru
"""
import sys
from pathlib import Path
from loguru import logger

from market_relay.config import settings


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(level: str | None = None, to_file: bool | None = None) -> None:
    """
    Install the console sink and, optionally, rotating file sinks.

    Args:
        level: Console level (defaults to DEBUG in debug mode, else LOG_LEVEL)
        to_file: Write app.log / error.log under LOG_DIR
    """
    level = level or ("DEBUG" if settings.DEBUG else settings.LOG_LEVEL)
    to_file = settings.LOG_TO_FILE if to_file is None else to_file

    # Remove default handler
    logger.remove()

    logger.add(
        sys.stdout,
        colorize=True,
        format=CONSOLE_FORMAT,
        level=level,
    )

    if not to_file:
        return

    log_path = Path(settings.LOG_DIR)
    log_path.mkdir(parents=True, exist_ok=True)

    # All logs
    logger.add(
        log_path / "app.log",
        rotation="10 MB",
        retention="30 days",
        compression="gz",
        format=FILE_FORMAT,
        level="DEBUG",
    )

    # Errors only
    logger.add(
        log_path / "error.log",
        rotation="10 MB",
        retention="30 days",
        compression="gz",
        format=FILE_FORMAT,
        level="ERROR",
    )


__all__ = ["logger", "setup_logging"]
