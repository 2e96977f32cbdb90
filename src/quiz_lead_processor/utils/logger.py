#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Logging Configuration Module

Configurable logging for the lead processing core. Console logging is always
on, file logging (size or daily rotation) is enabled by LOG_FILE_PATH, and
records can be emitted as JSON for log aggregation. Pipeline, provider and
queue events carry structured context (stage, provider, lead_id) as record
attributes.
"""

import os
import sys
import logging
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from typing import Optional, Dict, Any, Union
import json

# Default log levels
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

# Environment variable names
ENV_LOG_LEVEL = "LOG_LEVEL"
ENV_LOG_FILE_PATH = "LOG_FILE_PATH"
ENV_LOG_JSON = "LOG_JSON"

# Log level mapping
LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Structured context attached to processing events
CONTEXT_FIELDS = ("stage", "provider", "lead_id", "queue", "job_id")

# Global logger registry to avoid duplicate handlers
_loggers: Dict[str, logging.Logger] = {}

# Settings applied by configure_logging
_defaults: Dict[str, Any] = {}


class LoggerConfig:
    """Configuration class for logger settings."""

    def __init__(
        self,
        name: str = "quiz_lead_processor",
        console_level: Optional[Union[int, str]] = None,
        file_level: Optional[Union[int, str]] = None,
        log_file: Optional[str] = None,
        rotating: bool = True,
        max_bytes: int = 10 * 1024 * 1024,  # 10MB
        backup_count: int = 5,
        daily_rotation: bool = False,
        format_string: Optional[str] = None,
        json_logs: Optional[bool] = None,
        propagate: bool = False,
    ):
        """
        Initialize logger configuration.

        Args:
            name: Logger name
            console_level: Console logging level (int or string)
            file_level: File logging level (int or string)
            log_file: Path to log file (None falls back to LOG_FILE_PATH, then no file)
            rotating: Whether to use rotating file handler
            max_bytes: Maximum file size for rotating handler
            backup_count: Number of backup files to keep
            daily_rotation: Whether to rotate logs daily instead of by size
            format_string: Custom log format string
            json_logs: Whether to format logs as JSON (None falls back to LOG_JSON)
            propagate: Whether to propagate to parent loggers
        """
        self.name = name

        env_level = os.environ.get(ENV_LOG_LEVEL)
        if env_level:
            try:
                env_level = LOG_LEVELS.get(env_level.upper(), int(env_level))
            except ValueError:
                env_level = None

        self.console_level = self._resolve_level(console_level, env_level, DEFAULT_CONSOLE_LEVEL)
        self.file_level = self._resolve_level(file_level, env_level, DEFAULT_FILE_LEVEL)

        self.log_file = log_file or os.environ.get(ENV_LOG_FILE_PATH) or None

        self.rotating = rotating
        self.max_bytes = max_bytes
        self.backup_count = backup_count
        self.daily_rotation = daily_rotation

        if format_string:
            self.format_string = format_string
        else:
            self.format_string = "%(asctime)s | %(levelname)s | %(name)s | %(filename)s:%(lineno)d | %(message)s"

        if json_logs is None:
            json_logs = os.environ.get(ENV_LOG_JSON, "false").lower() == "true"
        self.json_logs = json_logs
        self.propagate = propagate

    @staticmethod
    def _resolve_level(level: Optional[Union[int, str]], env_level: Optional[int], default: int) -> int:
        if level is not None:
            if isinstance(level, str):
                return LOG_LEVELS.get(level.upper(), default)
            return level
        if env_level is not None:
            return env_level
        return default


class JsonFormatter(logging.Formatter):
    """
    Formatter that outputs one JSON object per record.

    Structured processing context (stage, provider, lead_id, queue, job_id)
    is included whenever the record carries it.
    """

    def __init__(
        self,
        fmt_dict: Optional[Dict[str, Any]] = None,
        time_format: str = "%Y-%m-%d %H:%M:%S",
    ):
        super().__init__()
        self.fmt_dict = fmt_dict or {
            "timestamp": "asctime",
            "level": "levelname",
            "name": "name",
            "module": "module",
            "function": "funcName",
            "line": "lineno",
            "message": "message",
        }
        self.time_format = time_format

    def format(self, record: logging.LogRecord) -> str:
        record.asctime = self.formatTime(record, self.time_format)
        record.message = record.getMessage()

        log_record = {}
        for key, value in self.fmt_dict.items():
            if hasattr(record, value):
                log_record[key] = getattr(record, value)

        for context_field in CONTEXT_FIELDS:
            value = getattr(record, context_field, None)
            if value is not None:
                log_record[context_field] = value

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_record, default=str)


def configure_logger(config: Optional[LoggerConfig] = None) -> logging.Logger:
    """
    Configure a logger with the specified settings.

    Args:
        config: Logger configuration (or None for default)

    Returns:
        Configured logger
    """
    if config is None:
        config = LoggerConfig()

    if config.name in _loggers:
        return _loggers[config.name]

    logger = logging.getLogger(config.name)
    logger.setLevel(min(config.console_level, config.file_level))
    logger.propagate = config.propagate

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    if config.json_logs:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(config.format_string)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(config.console_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if config.log_file:
        os.makedirs(os.path.dirname(os.path.abspath(config.log_file)), exist_ok=True)

        if config.daily_rotation:
            file_handler = TimedRotatingFileHandler(
                config.log_file,
                when="midnight",
                backupCount=config.backup_count,
                encoding="utf-8"
            )
        elif config.rotating:
            file_handler = RotatingFileHandler(
                config.log_file,
                maxBytes=config.max_bytes,
                backupCount=config.backup_count,
                encoding="utf-8"
            )
        else:
            file_handler = logging.FileHandler(config.log_file, encoding="utf-8")

        file_handler.setLevel(config.file_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    _loggers[config.name] = logger

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger by name, creating it if it doesn't exist.

    Args:
        name: Logger name

    Returns:
        Logger instance
    """
    if name in _loggers:
        return _loggers[name]

    return configure_logger(LoggerConfig(name=name, **_defaults))


def configure_logging(
    level: Optional[Union[int, str]] = None,
    log_file: Optional[Union[str, os.PathLike]] = None,
    json_logs: Optional[bool] = None
) -> None:
    """
    Apply level, file and format settings to every package logger.

    Loggers created afterwards by get_logger use the same settings.

    Args:
        level: Logging level (int or string)
        log_file: Path to log file
        json_logs: Whether to format logs as JSON
    """
    _defaults.clear()
    _defaults.update({
        "console_level": level,
        "file_level": level,
        "log_file": os.fspath(log_file) if log_file else None,
        "json_logs": json_logs,
    })

    for name in list(_loggers):
        del _loggers[name]
        configure_logger(LoggerConfig(name=name, **_defaults))


def _context(**context: Any) -> Dict[str, Any]:
    return {key: value for key, value in context.items() if key in CONTEXT_FIELDS and value is not None}


def log_provider_event(
    provider: str,
    event_type: str,
    message: str,
    level: int = logging.INFO,
    **context: Any,
) -> None:
    """
    Log an AI provider event.

    Args:
        provider: Provider name
        event_type: Type of event (register, fallback, error, etc.)
        message: Event description
        level: Logging level
        context: Extra structured context (stage, lead_id)
    """
    logger = get_logger("quiz_lead_processor.providers")
    logger.log(level, f"[{provider}] [{event_type}] {message}", extra=_context(provider=provider, **context))


def log_pipeline_event(
    stage: str,
    event_type: str,
    message: str,
    level: int = logging.INFO,
    lead_id: Any = None,
    provider: Optional[str] = None,
    exc_info: bool = False,
) -> None:
    """
    Log a pipeline stage event.

    Args:
        stage: Pipeline stage name
        event_type: Type of event (start, error, complete, etc.)
        message: Event description
        level: Logging level
        lead_id: Lead being processed
        provider: AI provider involved, if any
        exc_info: Whether to attach the current exception
    """
    logger = get_logger("quiz_lead_processor.pipeline")
    logger.log(
        level,
        f"[{stage}] [{event_type}] [lead:{lead_id}] {message}",
        extra=_context(stage=stage, lead_id=lead_id, provider=provider),
        exc_info=exc_info,
    )


def log_queue_event(
    queue: str,
    event_type: str,
    message: str,
    level: int = logging.INFO,
    job_id: Optional[str] = None,
    lead_id: Any = None,
) -> None:
    """
    Log a job queue event.

    Args:
        queue: Queue name
        event_type: Type of event (added, completed, failed, retry, etc.)
        message: Event description
        level: Logging level
        job_id: Job identifier
        lead_id: Lead referenced by the job payload
    """
    logger = get_logger("quiz_lead_processor.queueing")
    logger.log(
        level,
        f"[{queue}] [{event_type}] {message}",
        extra=_context(queue=queue, job_id=job_id, lead_id=lead_id),
    )


def log_sensitive(logger: logging.Logger, level: int, message: str, **sensitive_data) -> None:
    """
    Log a message while masking sensitive data (API keys, broker passwords).

    Args:
        logger: Logger to use
        level: Logging level
        message: Message to log
        sensitive_data: Keys and values to mask in the message
    """
    masked_message = message
    for key, value in sensitive_data.items():
        if value and isinstance(value, str):
            # Mask all but first and last character
            if len(value) > 6:
                masked = value[0] + "*" * (len(value) - 2) + value[-1]
            else:
                masked = "*" * len(value)
            masked_message = masked_message.replace(value, masked)

    logger.log(level, masked_message)
