"""
Logging configuration for the campaign engine.
Provides structured logging with JSON output, contextual information, and optional file handlers.
"""
import logging
import json
import sys
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union
from pathlib import Path
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from enum import Enum

from core.config import settings


class LogLevel(Enum):
    """Log level enumeration"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(Enum):
    """Log format enumeration"""
    SIMPLE = "simple"
    DETAILED = "detailed"
    JSON = "json"


class StructuredLogger:
    """
    Structured logger with JSON output, file rotation, and contextual information
    """

    def __init__(
        self,
        name: str = "campaigns",
        level: Union[str, LogLevel] = LogLevel.INFO,
        log_format: LogFormat = LogFormat.JSON,
        enable_file_logging: bool = False,
        log_dir: Optional[str] = None
    ):
        self.name = name
        self.logger = logging.getLogger(name)
        self.log_format = log_format
        self.enable_file_logging = enable_file_logging

        if isinstance(level, LogLevel):
            self.logger.setLevel(getattr(logging, level.value))
        else:
            self.logger.setLevel(getattr(logging, level.upper()))

        # Clear existing handlers to avoid duplicates
        self.logger.handlers.clear()
        self.logger.propagate = False

        self._setup_console_handler()

        if enable_file_logging:
            self._setup_file_handlers(log_dir)

    def _setup_console_handler(self):
        """Setup console handler with appropriate formatter"""
        console_handler = logging.StreamHandler(sys.stdout)

        if self.log_format == LogFormat.JSON:
            formatter = logging.Formatter('%(message)s')
        elif self.log_format == LogFormat.DETAILED:
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
            )
        else:  # SIMPLE
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )

        console_handler.setFormatter(formatter)
        self.logger.addHandler(console_handler)

    def _setup_file_handlers(self, log_dir: Optional[str] = None):
        """Setup file handlers with rotation"""
        log_path = Path(log_dir or settings.LOG_DIR)
        log_path.mkdir(exist_ok=True)

        file_handler = RotatingFileHandler(
            log_path / f"{self.name}.log",
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5
        )
        file_handler.setLevel(logging.INFO)

        error_handler = TimedRotatingFileHandler(
            log_path / f"{self.name}_error.log",
            when='midnight',
            interval=1,
            backupCount=30
        )
        error_handler.setLevel(logging.ERROR)

        json_formatter = logging.Formatter('%(message)s')
        file_handler.setFormatter(json_formatter)
        error_handler.setFormatter(json_formatter)

        self.logger.addHandler(file_handler)
        self.logger.addHandler(error_handler)

    def _create_log_entry(
        self,
        level: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        exception: Optional[Exception] = None,
        extra_context: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Create a structured log entry
        """
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level.upper(),
            "message": message,
            "service": "campaign-engine",
            "logger": self.name,
        }

        if metadata:
            log_entry["metadata"] = metadata

        if extra_context:
            log_entry["context"] = extra_context

        if exception:
            log_entry["exception"] = {
                "type": type(exception).__name__,
                "message": str(exception),
                "module": getattr(exception, '__module__', None),
                "traceback": "".join(traceback.format_exception(
                    type(exception), exception, exception.__traceback__
                )),
            }

        return log_entry

    def _log(
        self,
        level: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        exception: Optional[Exception] = None,
        extra_context: Optional[Dict[str, Any]] = None
    ):
        """Internal logging method"""
        if self.log_format == LogFormat.JSON:
            log_entry = self._create_log_entry(
                level, message, metadata, exception, extra_context
            )
            log_message = json.dumps(log_entry, default=str)
        else:
            log_message = message
            if metadata:
                log_message += f" | Metadata: {metadata}"
            if exception:
                log_message += f" | Exception: {type(exception).__name__}: {exception}"

        getattr(self.logger, level.lower())(log_message)

    def debug(self, message: str, metadata: Optional[Dict[str, Any]] = None,
              extra_context: Optional[Dict[str, Any]] = None):
        """Log debug message"""
        self._log("debug", message, metadata, None, extra_context)

    def info(self, message: str, metadata: Optional[Dict[str, Any]] = None,
             extra_context: Optional[Dict[str, Any]] = None):
        """Log info message"""
        self._log("info", message, metadata, None, extra_context)

    def warning(self, message: str, metadata: Optional[Dict[str, Any]] = None,
                exception: Optional[Exception] = None,
                extra_context: Optional[Dict[str, Any]] = None):
        """Log warning message"""
        self._log("warning", message, metadata, exception, extra_context)

    def error(self, message: str, metadata: Optional[Dict[str, Any]] = None,
              exception: Optional[Exception] = None,
              extra_context: Optional[Dict[str, Any]] = None):
        """Log error message"""
        self._log("error", message, metadata, exception, extra_context)

    def log_business_event(
        self,
        event_type: str,
        event_data: Dict[str, Any],
    ):
        """Log business events (usage recorded, campaign activated, ...)"""
        self.info(
            f"Business Event: {event_type}",
            metadata=event_data,
            extra_context={"component": "campaign_engine", "event_type": event_type}
        )


class LoggerManager:
    """
    Manager for creating and configuring loggers across the application
    """

    _loggers: Dict[str, StructuredLogger] = {}
    _default_config = {
        "level": settings.LOG_LEVEL,
        "log_format": LogFormat(settings.LOG_FORMAT.lower()),
        "enable_file_logging": settings.LOG_TO_FILE,
        "log_dir": settings.LOG_DIR,
    }

    @classmethod
    def configure_defaults(
        cls,
        level: Union[str, LogLevel] = LogLevel.INFO,
        log_format: LogFormat = LogFormat.JSON,
        enable_file_logging: bool = False,
        log_dir: Optional[str] = None
    ):
        """Configure default settings for loggers created afterwards"""
        cls._default_config = {
            "level": level,
            "log_format": log_format,
            "enable_file_logging": enable_file_logging,
            "log_dir": log_dir
        }

    @classmethod
    def get_logger(cls, name: str) -> StructuredLogger:
        """Get or create a structured logger instance"""
        if name not in cls._loggers:
            cls._loggers[name] = StructuredLogger(
                name=name,
                **cls._default_config
            )
        return cls._loggers[name]


def setup_logging(
    level: Union[str, LogLevel] = LogLevel.INFO,
    log_format: LogFormat = LogFormat.JSON,
    enable_file_logging: bool = False,
    log_dir: Optional[str] = None
) -> None:
    """
    Configure application-wide logging.

    Args:
        level: Logging level
        log_format: Log format (simple, detailed, json)
        enable_file_logging: Whether to enable file logging
        log_dir: Directory for log files
    """
    LoggerManager.configure_defaults(
        level=level,
        log_format=log_format,
        enable_file_logging=enable_file_logging,
        log_dir=log_dir
    )

    if isinstance(level, LogLevel):
        log_level = getattr(logging, level.value)
    else:
        log_level = getattr(logging, level.upper())

    if log_format == LogFormat.JSON:
        format_str = '%(message)s'
    elif log_format == LogFormat.DETAILED:
        format_str = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
    else:
        format_str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

    logging.basicConfig(
        level=log_level,
        format=format_str,
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    # Set specific log levels for noisy libraries
    logging.getLogger('sqlalchemy').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)
    logging.getLogger('aiosqlite').setLevel(logging.WARNING)


# Global structured logger instance
structured_logger = LoggerManager.get_logger("campaigns")
