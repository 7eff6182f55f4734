"""
Structured Logging Configuration with structlog

Outputs JSON logs that are searchable in ELK, Loki or CloudWatch.
Every log includes: upload_id, version, stage, timestamp, and other context.
"""

import sys
import time
import logging
import structlog
from typing import Optional, Any, Dict
from datetime import datetime, timezone
from contextvars import ContextVar
from functools import wraps

# Context variables for request-scoped logging
upload_id_var: ContextVar[Optional[str]] = ContextVar("upload_id", default=None)
stage_var: ContextVar[Optional[str]] = ContextVar("stage", default=None)

# Application version
APP_VERSION = "1.0.0"


def add_app_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add application context to every log entry."""
    event_dict["version"] = APP_VERSION

    upload_id = upload_id_var.get()
    if upload_id:
        event_dict["upload_id"] = upload_id

    # An explicit stage= keyword wins over the context variable
    stage = stage_var.get()
    if stage and "stage" not in event_dict:
        event_dict["stage"] = stage

    return event_dict


def add_timestamp(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add ISO format timestamp."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def setup_logging(
    log_level: str = "INFO",
    json_format: bool = True
):
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_format: If True, output JSON; if False, output colored console logs
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Silence noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            add_timestamp,
            add_app_context,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.UnicodeDecoder(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class LogContext:
    """
    Context manager for setting logging context.

    Usage:
        with LogContext(upload_id="abc123", stage="geometry"):
            logger.info("resize_started")
    """

    def __init__(self, upload_id: Optional[str] = None, stage: Optional[str] = None):
        self.upload_id = upload_id
        self.stage = stage
        self._upload_id_token = None
        self._stage_token = None

    def __enter__(self):
        if self.upload_id:
            self._upload_id_token = upload_id_var.set(self.upload_id)
        if self.stage:
            self._stage_token = stage_var.set(self.stage)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._stage_token:
            stage_var.reset(self._stage_token)
        if self._upload_id_token:
            upload_id_var.reset(self._upload_id_token)
        return False

    def set_stage(self, stage: str):
        """Update the current stage."""
        if self._stage_token:
            stage_var.reset(self._stage_token)
        self._stage_token = stage_var.set(stage)


def log_stage(stage: str):
    """
    Decorator that logs start/completion/failure of a synchronous pipeline stage.

    Usage:
        @log_stage("geometry")
        def apply_geometry(image, template):
            ...
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            token = stage_var.set(stage)

            logger.debug("stage_started", stage=stage)
            start_time = time.perf_counter()

            try:
                result = func(*args, **kwargs)
                duration_ms = int((time.perf_counter() - start_time) * 1000)
                logger.debug("stage_completed", stage=stage, duration_ms=duration_ms)
                return result
            except Exception as e:
                duration_ms = int((time.perf_counter() - start_time) * 1000)
                logger.error(
                    "stage_failed",
                    stage=stage,
                    duration_ms=duration_ms,
                    error=str(e),
                    error_type=type(e).__name__
                )
                raise
            finally:
                stage_var.reset(token)

        return wrapper

    return decorator


# Example log output structure:
# {
#   "timestamp": "2025-08-08T10:00:00Z",
#   "level": "info",
#   "event": "upload_completed",
#   "upload_id": "550e8400-e29b-41d4-a716-446655440000",
#   "version": "1.0.0",
#   "storage_identifier": "uploads/20250808_100000_3f2a9c1b7d4e.jpg",
#   "processed_width": 1080,
#   "processed_height": 1080
# }
