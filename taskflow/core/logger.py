"""Logger configuration for TaskFlow.

Records bound with a pomodoro, plan or task id (``logger.bind(plan_id=...)``)
carry that id in a trailing ``[pomodoro=... plan=... task=...]`` block, so one
session or plan can be followed through the log with grep.
"""

import sys
from pathlib import Path
from typing import Any

from loguru import logger

CONTEXT_KEYS = ("pomodoro_id", "plan_id", "task_id")

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def _context(extra: dict[str, Any], keys: list[str]) -> str:
    # values are referenced, not inlined, so braces in ids never reach str.format
    parts = [f"{key.removesuffix('_id')}={{extra[{key}]}}" for key in keys if extra.get(key) is not None]
    return " ".join(parts)


def _console_format(record: dict[str, Any]) -> str:
    context = _context(record["extra"], list(CONTEXT_KEYS))
    suffix = f" <magenta>[{context}]</magenta>" if context else ""
    return CONSOLE_FORMAT + suffix + "\n{exception}"


def _file_format(record: dict[str, Any]) -> str:
    extra = record["extra"]
    keys = list(CONTEXT_KEYS) + sorted(key for key in extra if key not in CONTEXT_KEYS)
    context = _context(extra, keys)
    suffix = f" [{context}]" if context else ""
    return FILE_FORMAT + suffix + "\n{exception}"


def setup_logger(
    level: str = "INFO",
    log_file: str | None = None,
    rotation: str = "10 MB",
    retention: str = "7 days",
) -> None:
    """Configure loguru logger with console and optional file output.

    The console shows the pomodoro/plan/task ids bound to a record; the file
    sink shows every bound field.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file. If None, only console logging.
        rotation: Log rotation size (e.g., "10 MB", "1 day")
        retention: Log retention period (e.g., "7 days", "1 month")
    """
    logger.remove()

    logger.add(sys.stderr, format=_console_format, level=level, colorize=True)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_path,
            format=_file_format,
            level=level,
            rotation=rotation,
            retention=retention,
            compression="zip",
            encoding="utf-8",
            backtrace=True,
            diagnose=False,
        )

    logger.debug(f"Logger initialized with level={level}")
