#!/usr/bin/env python3
"""
Kabaw Chat Logging Configuration

Centralized logging setup for consistent formatting across the project.
Supports both development (colored console) and production (plain console
plus optional file) modes.

Usage:
    from shared.log import get_logger

    logger = get_logger(__name__)
    logger.info("Connecting...")
    logger.warning("Connection lost", extra={"username": "alice", "channel": "general", "attempt": 2})
"""

from __future__ import annotations
import copy
import logging
import sys
from pathlib import Path
from typing import Optional, Any
import os


# ========================================
#           LOGGING FORMATTERS
# ========================================

def _chat_context(record: logging.LogRecord) -> str:
    """Render chat fields passed through `extra` as a short prefix"""
    context = []
    if getattr(record, 'username', None):
        context.append(f"user={record.username}")
    if getattr(record, 'channel', None):
        context.append(f"chan={record.channel}")
    if getattr(record, 'user_id', None):
        context.append(f"id={str(record.user_id)[:8]}")
    if getattr(record, 'msg_type', None):
        context.append(f"msg={record.msg_type}")
    if getattr(record, 'attempt', None) is not None:
        context.append(f"attempt={record.attempt}")
    prefix = f"[{' '.join(context)}] " if context else ""
    # msg is %-formatted later when args are present
    return prefix.replace("%", "%%") if record.args else prefix


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output with chat context"""

    # ANSI Color codes
    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'       # Reset
    }

    def format(self, record: logging.LogRecord) -> str:
        # Copy so other handlers of the same record stay uncolored
        record = copy.copy(record)
        if record.levelname in self.COLORS:
            record.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{self.COLORS['RESET']}"
        record.msg = f"{_chat_context(record)}{record.msg}"
        return super().format(record)


class GenericFormatter(logging.Formatter):

    def format(self, record: logging.LogRecord) -> str:
        record = copy.copy(record)
        record.msg = f"{_chat_context(record)}{record.msg}"
        return super().format(record)


# ========================================
#           LOGGING CONFIGURATION
# ========================================

_loggers_configured = set()

def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """
    Get a configured logger for the given module.

    Args:
        name: Usually __name__ from the calling module
        level: Override log level ("DEBUG", "INFO", "WARNING", "ERROR")

    Returns:
        Configured logger instance

    Examples:
        logger = get_logger(__name__)
        logger.info("Client starting")

        # With context
        logger.error("Send failed", extra={
            "username": "alice",
            "channel": "general",
            "msg_type": "message"
        })
    """
    logger = logging.getLogger(name)

    # Only configure each logger once
    if name not in _loggers_configured:
        _configure_logger(logger, level)
        _loggers_configured.add(name)

    return logger


def _configure_logger(logger: logging.Logger, level: Optional[str] = None) -> None:
    """Configure a logger with appropriate handlers and formatters"""

    logger.setLevel(_get_log_level(level))

    # Clear existing handlers to avoid duplicates
    logger.handlers.clear()

    if _is_development():
        _add_console_handler(logger, colored=True)
    else:
        # Production: clean console
        _add_console_handler(logger, colored=False)

    log_file = os.getenv('KABAW_LOG_FILE')
    if log_file:
        _add_file_handler(logger, Path(log_file))

    # Let pytest's caplog and the root logger see records
    logger.propagate = True


def _get_log_level(level: Optional[str] = None) -> int:
    """Determine appropriate log level"""

    level = level or os.getenv('KABAW_LOG_LEVEL')
    if level:
        return getattr(logging, level.upper(), logging.INFO)

    # Default based on environment
    return logging.DEBUG if _is_development() else logging.INFO


def _is_development() -> bool:
    """Detect if we're in development mode"""
    return (
        os.getenv('KABAW_ENV', '').lower() in ['dev', 'development'] or
        'pytest' in sys.modules
    )


def _add_console_handler(logger: logging.Logger, colored: bool = True) -> None:
    """Add console handler with appropriate formatter"""

    fmt = '[%(levelname)-8s][%(asctime)s][%(name)-5s]: %(message)s'
    # stderr keeps the chat transcript on stdout readable
    handler = logging.StreamHandler(sys.stderr)

    if colored and _supports_color():
        formatter = ColoredFormatter(fmt=fmt, datefmt='%H:%M:%S')
    else:
        formatter = GenericFormatter(fmt=fmt, datefmt='%Y-%m-%d %H:%M:%S')

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _add_file_handler(logger: logging.Logger, log_file: Path) -> None:
    """Add file handler, used when KABAW_LOG_FILE is set"""

    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(log_file)

    formatter = GenericFormatter(
        fmt='%(asctime)s | %(name)-30s | %(levelname)-8s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    handler.setFormatter(formatter)
    logger.addHandler(handler)


def _supports_color() -> bool:
    """Check if terminal supports color output"""

    # stderr must be a terminal
    if not (hasattr(sys.stderr, "isatty") and sys.stderr.isatty()):
        return False

    # TERM should not be dumb
    if os.getenv("TERM", "") == "dumb":
        return False

    if sys.platform == "win32":
        # On modern Windows terminals, ANSI colors are supported
        return os.getenv("ANSICON") is not None or os.getenv("WT_SESSION") is not None or os.getenv("TERM_PROGRAM") == "vscode"

    return True
# ========================================
#           CONVENIENCE FUNCTIONS
# ========================================

def set_log_level(level: str = "INFO") -> None:
    """
    Change the level of every logger handed out by get_logger.
    Call this once at application startup, after reading configuration.

    Args:
        level: Log level ("DEBUG", "INFO", "WARNING", "ERROR")
    """
    for name in _loggers_configured:
        logging.getLogger(name).setLevel(_get_log_level(level))


def log_chat_event(logger: logging.Logger, level: str, event: str, **context: Any) -> None:
    """
    Log a connection lifecycle event with structured context.

    Args:
        logger: Logger instance
        level: Log level ("debug", "info", "warning", "error")
        event: Short event name, e.g. "reconnect_scheduled"
        **context: Fields for the record; chat fields (username, channel,
            user_id, msg_type, attempt) are rendered by the formatters

    Example:
        log_chat_event(logger, "info", "reconnect_scheduled",
                       username="alice", attempt=1, delay_ms=2000)
    """
    details = " ".join(
        f"{k}={v}" for k, v in context.items()
        if k not in ("username", "channel", "user_id", "msg_type", "attempt") and v is not None
    )
    message = f"{event} {details}".rstrip()

    log_func = getattr(logger, level.lower(), logger.info)
    log_func(message, extra={"event": event, **context})
