"""
Structured logging utilities for xAPI sessions.

This module provides:
- Configured logging with rotation and formatting
- A formatter that appends structured extra fields
- Credential redaction for logged wire payloads

Log Format:
    YYYY-MM-DD HH:MM:SS.mmm [LEVEL] module - message

Example usage:
    from xstation.lib.logging_utils import setup_logging, get_logger

    # Setup logging at application start
    setup_logging(level="INFO", log_dir="./logs")

    # Get logger in modules
    logger = get_logger(__name__)
    logger.info("Subscribed", extra={"tag": "streamBalance"})
"""

import logging
import sys
from datetime import datetime
from enum import Enum
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

from xstation.lib.time_utils import utc_now


class LogLevel(Enum):
    """Log level enumeration for type-safe level selection."""
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


# Payload keys never written to logs
SENSITIVE_KEYS = frozenset({"password"})

# Attributes every LogRecord carries; anything else was passed via extra=
_RECORD_ATTRS = frozenset({
    "message", "asctime", "args", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated", "levelno",
    "levelname", "pathname", "filename", "module", "name", "msg",
    "processName", "process", "threadName", "thread", "taskName",
})


# =============================================================================
# Log Formatting
# =============================================================================

class XApiFormatter(logging.Formatter):
    """
    Formatter for client logs.

    Features:
    - Millisecond precision timestamps
    - UTC timestamps by default
    - Colored output for terminal (optional)
    - Extra fields appended as key=value pairs
    """

    # ANSI color codes
    COLORS = {
        logging.DEBUG: "\033[36m",     # Cyan
        logging.INFO: "\033[32m",      # Green
        logging.WARNING: "\033[33m",   # Yellow
        logging.ERROR: "\033[31m",     # Red
        logging.CRITICAL: "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(
        self,
        use_colors: bool = False,
        use_utc: bool = True,
        include_extras: bool = True
    ):
        """
        Initialize formatter.

        Args:
            use_colors: Enable ANSI colors for terminal output
            use_utc: Use UTC instead of local time
            include_extras: Include extra fields in output
        """
        self.use_colors = use_colors
        self.use_utc = use_utc
        self.include_extras = include_extras

        # Base format without timestamp (we handle timestamp separately)
        fmt = "[%(levelname)-8s] %(name)s - %(message)s"
        super().__init__(fmt)

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with timestamp and optional colors."""
        if self.use_utc:
            timestamp = utc_now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        else:
            timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]

        message = super().format(record)

        if self.include_extras:
            extras = {
                k: v for k, v in record.__dict__.items()
                if k not in _RECORD_ATTRS and not k.startswith("_")
            }
            if extras:
                extras_str = " ".join(f"{k}={v}" for k, v in extras.items())
                message = f"{message} [{extras_str}]"

        full_message = f"{timestamp} {message}"

        if self.use_colors and sys.stderr.isatty():
            color = self.COLORS.get(record.levelno, "")
            return f"{color}{full_message}{self.RESET}"

        return full_message


# =============================================================================
# Logging Setup
# =============================================================================

def setup_logging(
    level: str = "INFO",
    log_dir: Optional[str] = None,
    log_file: Optional[str] = None,
    use_colors: bool = True,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 5
) -> logging.Logger:
    """
    Setup application-wide logging configuration.

    Creates handlers for:
    - Console output (with colors if terminal)
    - File output with rotation (if log_dir provided)

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files (optional)
        log_file: Specific log file name (default: xapi_YYYY-MM-DD.log)
        use_colors: Enable colored console output
        max_bytes: Max size per log file before rotation
        backup_count: Number of backup files to keep

    Returns:
        Root logger
    """
    root_logger = logging.getLogger()

    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(log_level)

    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(XApiFormatter(use_colors=use_colors, include_extras=True))
    root_logger.addHandler(console_handler)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        if not log_file:
            today = utc_now().strftime("%Y-%m-%d")
            log_file = f"xapi_{today}.log"

        file_handler = RotatingFileHandler(
            log_path / log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8"
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(XApiFormatter(use_colors=False, include_extras=True))
        root_logger.addHandler(file_handler)

    return root_logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for the given module name.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def redact_payload(payload: Any) -> Any:
    """
    Return a copy of a wire payload with credentials masked.

    Nested dicts and lists are walked so that e.g. the login
    ``arguments.password`` is replaced with ``***``.

    Args:
        payload: Outbound message (dict, list or scalar)

    Returns:
        Redacted copy safe for logging
    """
    if isinstance(payload, dict):
        return {
            k: "***" if k in SENSITIVE_KEYS else redact_payload(v)
            for k, v in payload.items()
        }
    if isinstance(payload, list):
        return [redact_payload(item) for item in payload]
    return payload
