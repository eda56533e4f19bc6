from __future__ import annotations

import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DEFAULT_MAX_BYTES = 5 * 1024 * 1024
DEFAULT_BACKUP_COUNT = 3


def _format_value(value: Any) -> str:
    if isinstance(value, str) and value and " " not in value and "=" not in value:
        return value
    try:
        return json.dumps(value, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return repr(value)


def log_event(
    logger: logging.Logger,
    level: int,
    event: str,
    *,
    exc: Optional[BaseException] = None,
    **fields: Any,
) -> None:
    """Log a structured event as ``event key=value ...``.

    When ``exc`` is given its type and message are appended; at ERROR and
    above the traceback is attached as well.
    """
    if not logger.isEnabledFor(level):
        return
    parts = [event]
    for key, value in fields.items():
        if value is None:
            continue
        parts.append(f"{key}={_format_value(value)}")
    if exc is not None:
        parts.append(f"error={_format_value(f'{type(exc).__name__}: {exc}')}")
    exc_info = exc if exc is not None and level >= logging.ERROR else None
    logger.log(level, " ".join(parts), exc_info=exc_info)


def parse_log_level(value: Any, *, default: int = logging.INFO) -> int:
    if value is None:
        return default
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    name = str(value).strip().upper()
    if not name:
        return default
    if name == "WARN":
        name = "WARNING"
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        raise ValueError(f"unknown log level: {value!r}")
    return level


def setup_rotating_logger(
    name: str,
    level: int = logging.INFO,
    log_path: Optional[Path] = None,
    *,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
) -> logging.Logger:
    """Configure the ``golden_axe`` logger tree and return ``name``.

    Always logs to stderr; also logs to a rotating file when ``log_path`` is
    set. Calling it again replaces the handlers instead of stacking them.
    """
    root = logging.getLogger("golden_axe")
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    root.setLevel(level)
    root.propagate = False
    return logging.getLogger(name)
