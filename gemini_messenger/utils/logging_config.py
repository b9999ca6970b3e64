import logging
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

# stdlib loggers of the HTTP stack; at INFO they print every request on stderr
NOISY_LIBRARY_LOGGERS = ("httpx", "httpcore", "urllib3", "google_genai")

CONSOLE_FORMAT_DEBUG = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
CONSOLE_FORMAT = "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <level>{message}</level>"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"


def _quiet_libraries(verbose_mode: bool) -> None:
    level = logging.INFO if verbose_mode else logging.WARNING
    for name in NOISY_LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(level)


def setup_logging(
    console_log_level: str,
    log_file_path: Optional[Path],
    verbose_mode: bool,
):
    """
    Configures Loguru for the chat session.

    Answers are printed on stdout, so the console sink writes to stderr.
    The file sink, when a path is given, always records DEBUG.

    Args:
        console_log_level: Level for the stderr sink (e.g., "WARNING", "DEBUG").
        log_file_path: Log file path, or None to disable file logging.
        verbose_mode: Enables backtrace/diagnose on stderr and lets the HTTP libraries log at INFO.
    """
    logger.remove()
    _quiet_libraries(verbose_mode)

    logger.add(
        sys.stderr,
        level=console_log_level,
        format=CONSOLE_FORMAT_DEBUG if console_log_level == "DEBUG" else CONSOLE_FORMAT,
        colorize=True,
        backtrace=verbose_mode,
        diagnose=verbose_mode,
    )

    if not log_file_path:
        logger.info("File logging is disabled (no log directory available).")
        return

    try:
        logger.add(
            log_file_path,
            level="DEBUG",
            format=FILE_FORMAT,
            rotation="10 MB",
            retention=5,
            encoding="utf-8",
            enqueue=True,
            backtrace=True,
            # Locals would include the API key
            diagnose=False,
        )
        logger.debug(f"Logging to file: {log_file_path}")
    except Exception as e:
        logger.error(f"Failed to set up file logging to {log_file_path}: {e}. File logging disabled.")


__all__ = ["setup_logging"]
