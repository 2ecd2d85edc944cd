r"""
Centralized logging configuration for the Fulfillment Engine.

This module provides the logging system used by every engine component:
- Structured JSON logging for easy parsing and analysis
- Automatic file rotation (prevents log files from growing indefinitely)
- Configurable log levels (DEBUG, INFO, WARNING, ERROR, CRITICAL)
- Automatic cleanup of old logs (retention policy)
- Both file and console output
- Context-aware logging (order_id, session_id, operator_id)

Picking and control sessions are audited through these logs: who scanned
what, which adjustments were rejected, when a session was paused and why.

Log file location: [Logging] LogDir from config.ini,
                   falling back to ~/.fulfillment_engine/logs
Log file format: YYYY-MM-DD.log

Example log entry (JSON format):
    {"timestamp": "2025-11-05T14:30:45.123", "level": "INFO", "tool": "fulfillment_engine",
     "order_id": "P0025", "session_id": "3f0c...", "operator_id": "17",
     "module": "scan_processor", "function": "process", "line": 88,
     "message": "Line A1 updated: 5/5 (correct)"}
"""

import logging
import json
import os
from datetime import datetime, timedelta
from pathlib import Path
from logging.handlers import RotatingFileHandler
from typing import Optional, Dict, Any
import configparser
from contextvars import ContextVar


# Context variables for structured logging
_order_id: ContextVar[Optional[str]] = ContextVar('order_id', default=None)
_session_id: ContextVar[Optional[str]] = ContextVar('session_id', default=None)
_operator_id: ContextVar[Optional[str]] = ContextVar('operator_id', default=None)

CONFIG_FILE_NAME = 'config.ini'


class StructuredJSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs log records as JSON with fields:
    - timestamp: ISO 8601 format with milliseconds
    - level: Log level
    - tool: Always "fulfillment_engine"
    - order_id / session_id / operator_id: Current context (if set)
    - module, function, line: Origin of the record
    - message: Log message
    - exc_info: Exception information (if present)
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(timespec='milliseconds'),
            'level': record.levelname,
            'tool': 'fulfillment_engine',
            'order_id': _order_id.get(),
            'session_id': _session_id.get(),
            'operator_id': _operator_id.get(),
            'module': record.name,
            'function': record.funcName,
            'line': record.lineno,
            'message': record.getMessage(),
        }

        if record.exc_info:
            log_data['exc_info'] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_data'):
            log_data['extra'] = record.extra_data

        return json.dumps(log_data, ensure_ascii=False, default=str)


class AppLogger:
    """
    Centralized application logger with file rotation and cleanup.

    Logging is configured once, on the first call to get_logger(), no matter
    how many modules import it. Settings come from the [Logging] section of
    config.ini:
    - LogLevel: DEBUG, INFO, WARNING, ERROR, CRITICAL
    - LogDir: Directory for daily log files
    - MaxLogSizeMB: Maximum size per log file before rotation
    - LogRetentionDays: How many days of logs to keep
    """

    _instance: Optional[logging.Logger] = None
    _initialized: bool = False

    @classmethod
    def get_logger(cls, name: str = 'FulfillmentEngine') -> logging.Logger:
        """
        Get or create a logger, initializing the logging system on first use.

        Usage in modules:
            from logger import get_logger
            logger = get_logger(__name__)
            logger.info("Session started")

        Args:
            name: Logger name, typically the module name (__name__)

        Returns:
            Configured logger instance for the specified name
        """
        if not cls._initialized:
            cls._setup_logging()
            cls._initialized = True

        return logging.getLogger(name)

    @classmethod
    def _setup_logging(cls):
        """
        Configure handlers and levels from config.ini.

        When a file exceeds MaxLogSizeMB it is rotated:
            2025-11-05.log       (current)
            2025-11-05.log.1     (previous, rotated)
            ... up to backupCount=30 files
        """
        config = cls._load_config()

        default_dir = Path(os.path.expanduser("~")) / ".fulfillment_engine" / "logs"
        log_dir = Path(config.get('Logging', 'LogDir', fallback=str(default_dir)))

        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            log_dir = default_dir
            log_dir.mkdir(parents=True, exist_ok=True)
            print(f"Warning: Could not create configured log directory. Using: {log_dir}. Error: {e}")

        log_file = log_dir / f"{datetime.now():%Y-%m-%d}.log"

        log_level_str = config.get('Logging', 'LogLevel', fallback='INFO')
        log_level = getattr(logging, log_level_str.upper(), logging.INFO)

        max_log_size = config.getint('Logging', 'MaxLogSizeMB', fallback=10) * 1024 * 1024

        json_formatter = StructuredJSONFormatter()

        # timestamp | module | level | function:line | message
        console_formatter = logging.Formatter(
            fmt='%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_log_size,
            backupCount=30,
            encoding='utf-8'
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(json_formatter)

        console_handler = logging.StreamHandler()
        console_handler.setLevel(log_level)
        console_handler.setFormatter(console_formatter)

        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)
        root_logger.addHandler(file_handler)
        root_logger.addHandler(console_handler)

        retention_days = config.getint('Logging', 'LogRetentionDays', fallback=30)
        cls._cleanup_old_logs(log_dir, retention_days)

        logger = logging.getLogger('FulfillmentEngine')
        logger.info("=" * 80)
        logger.info("Fulfillment Engine Started")
        logger.info(f"Log Level: {log_level_str}")
        logger.info(f"Log File: {log_file}")
        logger.info("=" * 80)

    @staticmethod
    def _load_config() -> configparser.ConfigParser:
        """
        Load configuration from config.ini in the working directory.

        The FULFILLMENT_CONFIG environment variable overrides the location.
        A missing file is not an error: callers use fallback defaults.
        """
        config = configparser.ConfigParser()
        config_path = Path(os.environ.get('FULFILLMENT_CONFIG', CONFIG_FILE_NAME))

        if config_path.exists():
            config.read(config_path, encoding='utf-8')

        return config

    @staticmethod
    def _cleanup_old_logs(log_dir: Path, retention_days: int):
        """
        Delete log files older than the retention period.

        Args:
            log_dir: Directory containing log files
            retention_days: Number of days to keep logs
                            0 or negative disables cleanup
        """
        if retention_days <= 0:
            return

        cutoff_date = datetime.now() - timedelta(days=retention_days)

        try:
            for log_file in log_dir.glob("*.log*"):
                file_mtime = datetime.fromtimestamp(log_file.stat().st_mtime)
                if file_mtime < cutoff_date:
                    log_file.unlink()
                    logging.getLogger('FulfillmentEngine').debug(f"Deleted old log: {log_file.name}")

        except OSError as e:
            # Files in use or permission problems must not stop the engine
            logging.getLogger('FulfillmentEngine').warning(f"Failed to cleanup old logs: {e}")


def get_logger(name: str = 'FulfillmentEngine') -> logging.Logger:
    """
    Get application logger.

    Example:
        >>> from logger import get_logger
        >>> logger = get_logger(__name__)
        >>> logger.info("Starting process")
    """
    return AppLogger.get_logger(name)


def set_order_context(order_id: Optional[str]) -> None:
    """
    Set current order ID for structured logging context.

    Example:
        >>> set_order_context("P0025")
        >>> logger.info("Scanning")  # Will include order_id="P0025"
    """
    _order_id.set(None if order_id is None else str(order_id))


def set_session_context(session_id: Optional[str]) -> None:
    """Set current session ID for structured logging context."""
    _session_id.set(session_id)


def set_operator_context(operator_id: Optional[str]) -> None:
    """Set current operator ID for structured logging context."""
    _operator_id.set(None if operator_id is None else str(operator_id))


def clear_logging_context() -> None:
    """
    Clear all logging context (order_id, session_id, operator_id).

    Called at the end of each engine operation so the next one starts clean.
    """
    _order_id.set(None)
    _session_id.set(None)
    _operator_id.set(None)
