"""
Logging configuration for Apt Update Indicator.
"""

# SPDX-License-Identifier: GPL-3.0-or-later

from __future__ import annotations

import logging
import os
import re
import sys
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for terminal output."""

    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'      # Reset
    }

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with colors."""
        log_color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        reset_color = self.COLORS['RESET']

        # Work on a copy so file handlers keep the plain level name
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{log_color}{record.levelname}{reset_color}"

        return super().format(record)


CONSOLE_FORMAT = '%(levelname)s - %(name)s - %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_global_config: Optional[Dict[str, Any]] = None
_log_file_path: Optional[str] = None
_logger_instances: Dict[str, logging.Logger] = {}
_global_state_lock = threading.RLock()

# Rate limiting for security events
_security_event_counts: Dict[str, Dict[str, Any]] = {}
_security_rate_limit_window = 60  # seconds
_security_rate_limit_max = 10  # max events per window


def _debug_enabled() -> bool:
    if not _global_config:
        return False
    return bool(_global_config.get('verbose_logging') or _global_config.get('debug_mode'))


def _file_handler(path: str, level: int) -> logging.FileHandler:
    handler = logging.FileHandler(path)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def set_global_config(config: Dict[str, Any]) -> None:
    """
    Set global logging configuration.

    File logging is switched on by `verbose_logging` or `debug_mode`, except
    when APT_UPDATE_INDICATOR_TEST_MODE is set.

    Args:
        config: Configuration dictionary
    """
    global _global_config, _log_file_path
    with _global_state_lock:
        _global_config = dict(config)

        # Test runs keep logs on the console
        file_logging = not os.environ.get("APT_UPDATE_INDICATOR_TEST_MODE")

        if _debug_enabled() and file_logging and not _log_file_path:
            from ..constants import get_cache_dir
            log_dir = get_cache_dir() / 'logs'
            try:
                log_dir.mkdir(parents=True, exist_ok=True)
                os.chmod(log_dir, 0o700)
            except OSError:
                # No writable cache dir, stay on the console
                _reconfigure_all_loggers()
                return

            timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
            _log_file_path = str(log_dir / f'indicator_{timestamp}.log')

            # Point latest.log at the new file, replacing atomically
            latest_log = log_dir / 'latest.log'
            temp_symlink = log_dir / f'latest.log.tmp.{os.getpid()}'
            try:
                temp_symlink.symlink_to(Path(_log_file_path).name)
                temp_symlink.replace(latest_log)
            except OSError:
                try:
                    temp_symlink.unlink()
                except OSError:
                    pass

        _reconfigure_all_loggers()


def _reconfigure_all_loggers() -> None:
    """Apply the global level and file handler to every cached logger."""
    level = logging.DEBUG if _debug_enabled() else logging.INFO

    for logger in _logger_instances.values():
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setLevel(level)

        if _log_file_path and not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
            try:
                logger.addHandler(_file_handler(_log_file_path, level))
            except OSError:
                pass


def get_logger(name: str) -> logging.Logger:
    """
    Get or create a logger instance.

    Args:
        name: Logger name

    Returns:
        Logger instance
    """
    with _global_state_lock:
        if name in _logger_instances:
            return _logger_instances[name]

        level = logging.DEBUG if _debug_enabled() else logging.INFO

        logger = logging.getLogger(name)
        logger.setLevel(level)
        logger.handlers.clear()

        # Logs go to stderr so stdout stays clean for CLI output
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(ColoredFormatter(CONSOLE_FORMAT))
        logger.addHandler(console_handler)

        if _log_file_path:
            try:
                logger.addHandler(_file_handler(_log_file_path, level))
            except OSError:
                # Don't log this error to avoid recursion
                pass

        logger.propagate = False
        _logger_instances[name] = logger
        return logger


_SENSITIVE_PATTERNS = [
    # Home directories
    (r'/home/[^/\s]+', '/home/[USER]'),
    # URLs with credentials
    (r'https?://[^:/\s]+:[^@\s]+@', 'https://[CREDENTIALS]@'),
    # Secrets passed on command lines
    (r'(?i)(password|passwd|token|secret)(["\s]*[:=]["\s]*)[^\s"\']+', r'\1\2[REDACTED]'),
]


def sanitize_log_message(message: str, max_length: int = 1000) -> str:
    """
    Redact user paths and credentials from a log message.

    Args:
        message: Original log message
        max_length: Longer messages are truncated

    Returns:
        Sanitized log message
    """
    if not isinstance(message, str):
        message = str(message)

    for pattern, replacement in _SENSITIVE_PATTERNS:
        message = re.sub(pattern, replacement, message)

    # Control characters could forge log lines
    message = re.sub(r'[\x00-\x08\x0B-\x0C\x0E-\x1F\x7F]', '[CTRL]', message)

    if len(message) > max_length:
        message = message[:max_length] + '... [TRUNCATED]'

    return message


def log_security_event(event_type: str, details: Optional[Dict[str, Any]] = None,
                       severity: str = "warning") -> None:
    """
    Log a security relevant event, such as a privileged command launch.

    Args:
        event_type: Type of security event
        details: Event details (will be sanitized)
        severity: Log severity level
    """
    with _global_state_lock:
        current_time = datetime.now()
        event_info = _security_event_counts.get(event_type)

        if event_info and (current_time - event_info['first_time']).total_seconds() > _security_rate_limit_window:
            event_info = None

        if event_info is None:
            event_info = {'count': 0, 'first_time': current_time, 'rate_limit_logged': False}
        elif event_info['count'] >= _security_rate_limit_max:
            if not event_info['rate_limit_logged']:
                get_logger("security").warning(
                    f"RATE_LIMIT: Suppressing further {event_type} events for {_security_rate_limit_window}s"
                )
                event_info['rate_limit_logged'] = True
            return

        event_info['count'] += 1
        _security_event_counts[event_type] = event_info

    log_msg = f"SECURITY_EVENT: {event_type}"
    if details:
        detail_str = ", ".join(
            f"{sanitize_log_message(str(k))}={sanitize_log_message(str(v))}" for k, v in details.items()
        )
        log_msg += f" - {detail_str}"
    log_msg += f" [pid={os.getpid()}]"

    level = {
        "critical": logging.CRITICAL,
        "error": logging.ERROR,
        "warning": logging.WARNING,
    }.get(severity, logging.INFO)
    get_logger("security").log(level, log_msg)
