"""
eepdesk - Centralized Logging Configuration
Supports both interactive use (plain text) and unattended use (JSON structured) logging
"""

import logging
import sys
import json
import traceback
from datetime import datetime
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional
from contextvars import ContextVar

from eepdesk.config import DeskConfig


# Context variable for the signed-in user
username_var: ContextVar[str] = ContextVar('username', default='')


def get_username() -> str:
    """Get current username from context"""
    return username_var.get() or ''


def set_username(username: str) -> None:
    """Set current username in context"""
    username_var.set(username)


_RESERVED_ATTRS = frozenset([
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'message', 'taskName', 'username',
])


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging
    Outputs one JSON object per line for log shippers
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        username = get_username()
        if username:
            log_data["username"] = username

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info) if record.exc_info[0] else None
            }

        # Extra fields passed through `extra=`
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith('_'):
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ContextualFormatter(logging.Formatter):
    """
    Readable formatter that includes the signed-in user
    """

    def format(self, record: logging.LogRecord) -> str:
        record.username = get_username() or '-'
        return super().format(record)


class EepDeskLogger(logging.Logger):
    """
    Custom logger with convenience methods for structured logging
    """

    def log_request(self, method: str, endpoint: str, status_code: Optional[int],
                    duration_ms: float, **kwargs) -> None:
        """Log API call details"""
        ok = status_code is not None and 200 <= status_code < 300
        self.log(
            logging.DEBUG if ok else logging.WARNING,
            f"API {method} {endpoint} - {status_code if status_code is not None else 'network error'} "
            f"({duration_ms:.2f}ms)",
            extra={
                "event_type": "api_request",
                "http_method": method,
                "http_endpoint": endpoint,
                "http_status": status_code,
                "duration_ms": duration_ms,
                **kwargs
            }
        )

    def log_auth_event(self, event: str, success: bool, username: str = None,
                       reason: str = None, **kwargs) -> None:
        """Log authentication events"""
        level = logging.INFO if success else logging.WARNING
        self.log(
            level,
            f"Auth {event}: {'success' if success else 'failed'}" +
            (f" - {username}" if username else "") +
            (f" - {reason}" if reason else ""),
            extra={
                "event_type": "auth",
                "auth_event": event,
                "auth_success": success,
                "auth_username": username,
                "failure_reason": reason,
                **kwargs
            }
        )

    def log_error_with_context(self, error: Exception, context: str = None,
                               **kwargs) -> None:
        """Log error with full context"""
        self.error(
            f"Error in {context}: {type(error).__name__}: {str(error)}",
            exc_info=True,
            extra={
                "event_type": "error",
                "error_type": type(error).__name__,
                "error_message": str(error),
                "error_context": context,
                **kwargs
            }
        )


def get_logger(name: str = "eepdesk") -> EepDeskLogger:
    """Get an eepdesk logger with the structured helpers attached"""
    log = logging.getLogger(name)
    log.__class__ = EepDeskLogger  # Ensure it's our custom class
    return log


def setup_logging(config: DeskConfig) -> EepDeskLogger:
    """Setup logging configuration from the desk config"""

    log = get_logger("eepdesk")
    log.setLevel(logging.DEBUG if config.verbose else getattr(logging, config.log_level.upper(), logging.INFO))

    # Clear existing handlers
    log.handlers.clear()
    log.propagate = False

    if config.json_logs:
        formatter: logging.Formatter = JSONFormatter()
        file_formatter: logging.Formatter = formatter
    else:
        formatter = ContextualFormatter("%(levelname)-8s | %(message)s")
        file_formatter = ContextualFormatter(
            "%(asctime)s | %(levelname)-8s | [%(username)s] | "
            "%(funcName)s:%(lineno)d | %(message)s"
        )

    # Console goes to stderr so stdout stays clean for --json output
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if config.verbose else logging.WARNING)
    console_handler.setFormatter(formatter)
    log.addHandler(console_handler)

    if config.log_file:
        log_file = Path(config.log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10485760,  # 10MB
            backupCount=5
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(file_formatter)
        log.addHandler(file_handler)

    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    log.debug(
        "Logging initialized",
        extra={
            "log_level": config.log_level,
            "json_logging": config.json_logs
        }
    )

    return log


# Create logger instance
logger: EepDeskLogger = get_logger()


__all__ = [
    'logger',
    'get_logger',
    'setup_logging',
    'get_username',
    'set_username',
    'EepDeskLogger',
    'JSONFormatter',
    'ContextualFormatter',
]
