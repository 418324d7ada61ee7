"""
Structured Logging Setup

Consistent logging configuration across all services.
Uses JSON format for structured logs in production.
"""

import logging
import sys
import os
from datetime import datetime, timezone
from typing import Any
import json


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service", "unknown"),
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields
        for key, value in record.__dict__.items():
            if key not in (
                "name", "msg", "args", "levelname", "levelno", "pathname",
                "filename", "module", "exc_info", "exc_text", "stack_info",
                "lineno", "funcName", "created", "msecs", "relativeCreated",
                "thread", "threadName", "processName", "process", "service",
                "message", "taskName",
            ):
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds service name to all logs"""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        kwargs.setdefault("extra", {})
        kwargs["extra"]["service"] = self.extra.get("service", "unknown")
        return msg, kwargs


def setup_logging(
    service_name: str,
    log_level: str = "INFO",
    json_format: bool = True,
) -> logging.Logger:
    """
    Set up structured logging for a service.

    Args:
        service_name: Name of the service (e.g., "acquisition.pool")
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (True for production, False for dev)

    Returns:
        Configured logger instance
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(f"wattline.{service_name}")
    logger.setLevel(numeric_level)

    # Clear existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)

    if json_format:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # Don't propagate to root logger
    logger.propagate = False

    return logger


def get_service_logger(service_name: str) -> ServiceLoggerAdapter:
    """
    Get a logger adapter with service context.

    Args:
        service_name: Name of the service

    Returns:
        Logger adapter with service name in all logs
    """
    # Check for environment variable override
    log_level = os.environ.get("WATTLINE_LOG_LEVEL", "INFO")
    json_format = os.environ.get("WATTLINE_LOG_FORMAT", "json").lower() == "json"

    logger = setup_logging(service_name, log_level, json_format)
    return ServiceLoggerAdapter(logger, {"service": service_name})


def log_device_read(
    logger: logging.Logger,
    device_name: str,
    register: str,
    value: Any,
    success: bool = True,
    error: str | None = None,
) -> None:
    """Log a device register read operation"""
    if success:
        logger.debug(
            f"Read {device_name}.{register} = {value}",
            extra={"device": device_name, "register": register, "value": value},
        )
    else:
        logger.warning(
            f"Failed to read {device_name}.{register}: {error}",
            extra={"device": device_name, "register": register, "error": error},
        )


def log_poll_cycle(
    logger: logging.Logger,
    device_count: int,
    failed_count: int,
    execution_time_ms: float,
) -> None:
    """Log completion of one polling cycle"""
    logger.debug(
        f"Poll cycle: devices={device_count}, failed={failed_count}, "
        f"exec={execution_time_ms:.0f}ms",
        extra={
            "device_count": device_count,
            "failed_count": failed_count,
            "execution_time_ms": execution_time_ms,
        },
    )
