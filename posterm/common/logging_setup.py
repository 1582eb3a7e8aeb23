"""
Structured Logging Setup

Consistent logging configuration across all services.
Uses JSON format for structured logs in production.
"""

import logging
import sys
import os
from datetime import datetime, timezone
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
        service_name: Name of the service (e.g., "cache.store", "sync.outbox")
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (True for production, False for dev)

    Returns:
        Configured logger instance
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(f"posterm.{service_name}")
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
    log_level = os.environ.get("POSTERM_LOG_LEVEL", "INFO")
    json_format = os.environ.get("POSTERM_LOG_FORMAT", "json").lower() == "json"

    logger = setup_logging(service_name, log_level, json_format)
    return ServiceLoggerAdapter(logger, {"service": service_name})


# Convenience loggers for common operations
def log_mutation_result(
    logger: logging.Logger,
    mutation_id: str,
    mutation_type: str,
    success: bool = True,
    retry_count: int = 0,
    error: str | None = None,
) -> None:
    """Log the outcome of one outbox submission"""
    if success:
        logger.info(
            f"Synced {mutation_type} ({mutation_id})",
            extra={"mutation_id": mutation_id, "mutation_type": mutation_type},
        )
    else:
        logger.warning(
            f"Failed {mutation_type} ({mutation_id}) retry {retry_count}: {error}",
            extra={
                "mutation_id": mutation_id,
                "mutation_type": mutation_type,
                "retry_count": retry_count,
                "error": error,
            },
        )


def log_cache_write(
    logger: logging.Logger,
    key: str,
    ttl_minutes: float | None = None,
    version: int | None = None,
) -> None:
    """Log a cache write"""
    ttl_note = f" (TTL: {ttl_minutes}m)" if ttl_minutes else ""
    version_note = f" (version: {version})" if version is not None else ""
    logger.debug(
        f"Cached {key}{ttl_note}{version_note}",
        extra={"cache_key": key, "ttl_minutes": ttl_minutes, "version": version},
    )


def set_log_level(log_level: str) -> None:
    """Apply a level to every posterm logger already created"""
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    for name, existing in logging.Logger.manager.loggerDict.items():
        if not name.startswith("posterm.") or not isinstance(existing, logging.Logger):
            continue
        existing.setLevel(numeric_level)
        for handler in existing.handlers:
            handler.setLevel(numeric_level)
