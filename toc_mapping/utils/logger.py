"""Logging utility.

Idempotent project-wide logging for batch runs of the mapping pipeline.

Primary entry points:
1. get_logger(): the shared ``toc_mapping`` logger (console output only).
2. setup_logger(function_name, ...): a LoggerAdapter that stamps every record
   with a logical stage name (``func_ctx``) and attaches a rotating log file.

Environment variables:
- TOC_MAPPING_LOG_LEVEL: default level (INFO).
- TOC_MAPPING_LOG_FILE: default log file (logs/toc_mapping.log).
- NO_COLOR: disable ANSI colours on the console.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
import os
from pathlib import Path
import sys
from typing import Any

_DEFAULT_LOGGER_NAME = "toc_mapping"
_DEFAULT_LOG_DIR = "logs"
_DEFAULT_LOG_FILENAME = "toc_mapping.log"
_ROTATE_MAX_BYTES = 10 * 1024 * 1024  # 10 MB
_ROTATE_BACKUP_COUNT = 5

_LEVEL_COLORS: dict[int, str] = {
    logging.DEBUG: "\x1b[38;5;244m",
    logging.INFO: "\x1b[38;5;39m",
    logging.WARNING: "\x1b[38;5;214m",
    logging.ERROR: "\x1b[38;5;196m",
    logging.CRITICAL: "\x1b[48;5;196;38;5;231m",
}
_RESET_COLOR = "\x1b[0m"


class StageFormatter(logging.Formatter):
    """Formatter that adds the stage context and optional console colour."""

    def __init__(self, *, use_color: bool = True, indent_multiline: bool = True):
        """Initializes the formatter.

        Args:
            use_color: If True, wraps each record in an ANSI colour code.
            indent_multiline: If True, aligns continuation lines under the message.
        """
        super().__init__(
            fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(func_ctx)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        self.use_color = use_color
        self.indent_multiline = indent_multiline

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "func_ctx"):
            record.func_ctx = "-"  # type: ignore[attr-defined]

        # logger.info("Text:", value) style calls would otherwise crash
        if record.args:
            try:
                _ = record.msg % record.args
            except (TypeError, ValueError):
                record.msg = " ".join([str(record.msg), *(str(a) for a in record.args)])
                record.args = ()

        lines = record.getMessage().splitlines()
        formatted = super().format(record)

        if self.indent_multiline and len(lines) > 1:
            indent = " " * max(formatted.find(lines[0]), 4)
            formatted = formatted.replace("\n", "\n" + indent)

        if self.use_color and (color := _LEVEL_COLORS.get(record.levelno)):
            return f"{color}{formatted}{_RESET_COLOR}"
        return formatted


def _determine_log_level(explicit_level: int | str | None) -> int:
    """Resolve the level from an explicit value, the environment or INFO."""
    if isinstance(explicit_level, int):
        return explicit_level
    level_str = str(explicit_level or os.getenv("TOC_MAPPING_LOG_LEVEL", "INFO")).upper()
    return getattr(logging, level_str, logging.INFO)


def get_logger(
    name: str = _DEFAULT_LOGGER_NAME, *, level: int | str | None = None
) -> logging.Logger:
    """Return the project logger, configuring it on first use.

    Args:
        name: Logger name; the default is shared by the whole package.
        level: Optional level override, applied even after configuration.

    Returns:
        The configured ``logging.Logger``.
    """
    logger = logging.getLogger(name)
    log_level = _determine_log_level(level)

    if getattr(logger, "_toc_mapping_configured", False):
        if level is not None:
            logger.setLevel(log_level)
        return logger

    logger.setLevel(log_level)
    logger.propagate = False

    use_color = sys.stdout.isatty() and os.getenv("NO_COLOR") is None
    if not any(type(h) is logging.StreamHandler for h in logger.handlers):
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(StageFormatter(use_color=use_color))
        logger.addHandler(stream_handler)

    logger._toc_mapping_configured = True  # type: ignore[attr-defined]
    logger.debug(
        "Logger '%s' initialized at level %s (color=%s)",
        name,
        logging.getLevelName(log_level),
        use_color,
    )
    return logger


class _StageContextAdapter(logging.LoggerAdapter):
    """LoggerAdapter injecting the stage name via ``func_ctx``."""

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        if self.extra is not None:
            kwargs.setdefault("extra", {})["func_ctx"] = self.extra.get("func_ctx", "-")
        return msg, kwargs


def setup_logger(
    function_name: str,
    *,
    level: int | str | None = None,
    logger_name: str = _DEFAULT_LOGGER_NAME,
    log_file: str | Path | None = None,
    rotate: bool = True,
    max_bytes: int = _ROTATE_MAX_BYTES,
    backup_count: int = _ROTATE_BACKUP_COUNT,
) -> logging.LoggerAdapter:
    """Return a logger adapter bound to a pipeline stage.

    When a rotating file handler is requested and the log directory cannot be
    created, the failure is logged with its traceback and the adapter falls
    back to console output only.

    Args:
        function_name: Name of the stage or task written into each record.
        level: Optional level override.
        logger_name: Base logger name, shared project-wide.
        log_file: Explicit log file; overrides TOC_MAPPING_LOG_FILE.
        rotate: Attach a size-based rotating file handler.
        max_bytes: Size that triggers a rotation.
        backup_count: Number of rotated files to keep.

    Returns:
        A ``logging.LoggerAdapter`` injecting ``func_ctx``.
    """
    base_logger = get_logger(logger_name, level=level)

    effective_log_file = (
        log_file
        or os.getenv("TOC_MAPPING_LOG_FILE")
        or Path(_DEFAULT_LOG_DIR) / _DEFAULT_LOG_FILENAME
    )

    if rotate:
        try:
            Path(effective_log_file).parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            base_logger.exception("Failed to create log directory for %s", effective_log_file)
            rotate = False

    if rotate:
        abs_log_path = str(Path(effective_log_file).resolve())
        handler_exists = any(
            isinstance(h, RotatingFileHandler) and h.baseFilename == abs_log_path
            for h in base_logger.handlers
        )
        if not handler_exists:
            try:
                rfh = RotatingFileHandler(
                    abs_log_path,
                    maxBytes=max_bytes,
                    backupCount=backup_count,
                    encoding="utf-8",
                    delay=True,
                )
                rfh.setFormatter(StageFormatter(use_color=False, indent_multiline=False))
                base_logger.addHandler(rfh)
            except OSError:
                base_logger.exception("Could not add rotating file handler for %s", abs_log_path)

    return _StageContextAdapter(base_logger, {"func_ctx": function_name})


__all__ = ["get_logger", "setup_logger"]
