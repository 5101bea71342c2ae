"""
ContextRAG - Structured Logging Configuration
==============================================

Structured logging with:
- JSON output for log aggregation, console output for development
- Explicit request context (correlation id, document id, experiment id)
- Standard library integration (captures all loggers)

There is no ambient correlation state. Each ingest or search call creates a
RequestContext and binds it to the logger it uses.

Usage:
    # At application startup
    from contextrag.core.logging_config import configure_logging
    configure_logging(json_output=True)

    # Request-scoped logging
    from contextrag.core.logging_config import get_logger
    from contextrag.shared.models import RequestContext

    ctx = RequestContext.new(experiment_id="exp-1")
    log = get_logger(__name__, ctx)
    log.info("Starting ingestion", pages=32)

Environment Variables:
    LOG_LEVEL: DEBUG, INFO, WARNING, ERROR (default: INFO)
    LOG_FORMAT: json, console (default: json in production, console in dev)
    ENVIRONMENT: production/staging enables JSON by default
"""

import logging
import logging.config
import os
import re
from datetime import datetime, timezone
from typing import Optional

import structlog
from structlog.types import EventDict, WrappedLogger

from contextrag.shared.models import RequestContext


# =============================================================================
# CUSTOM PROCESSORS
# =============================================================================

def add_service_info(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict
) -> EventDict:
    """Add service metadata."""
    event_dict["service"] = "contextrag"
    event_dict["version"] = os.getenv("APP_VERSION", "1.0.0")
    return event_dict


def add_timestamp_iso(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict
) -> EventDict:
    """Add ISO 8601 timestamp with timezone."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def rename_event_key(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict
) -> EventDict:
    """Rename 'event' to 'message' for consistency with common log formats."""
    if "event" in event_dict:
        event_dict["message"] = event_dict.pop("event")
    return event_dict


def drop_color_codes(
    logger: WrappedLogger,
    method_name: str,
    event_dict: EventDict
) -> EventDict:
    """Remove ANSI color codes from message for JSON output."""
    if "message" in event_dict and isinstance(event_dict["message"], str):
        event_dict["message"] = re.sub(r'\x1b\[[0-9;]*m', '', event_dict["message"])
    return event_dict


# =============================================================================
# CONFIGURATION
# =============================================================================

def _resolve_json_output(json_output: Optional[bool]) -> bool:
    if json_output is not None:
        return json_output
    log_format = os.getenv("LOG_FORMAT", "").lower()
    if log_format == "json":
        return True
    if log_format == "console":
        return False
    env = os.getenv("ENVIRONMENT", "development").lower()
    return env in ("production", "prod", "staging")


def configure_logging(
    json_output: Optional[bool] = None,
    log_level: Optional[str] = None,
    include_timestamp: bool = True
) -> None:
    """
    Configure structured logging for the application.

    Args:
        json_output: If True, output JSON. If None, auto-detect from environment.
        log_level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to LOG_LEVEL env var.
        include_timestamp: Include ISO timestamp in logs.
    """
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    json_output = _resolve_json_output(json_output)

    shared_processors = [
        structlog.processors.add_log_level,
        add_service_info,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if include_timestamp:
        shared_processors.insert(0, add_timestamp_iso)

    if json_output:
        shared_processors.extend([
            rename_event_key,
            drop_color_codes,
            structlog.processors.format_exc_info,
        ])
        final_processor = structlog.processors.JSONRenderer(sort_keys=True)
    else:
        final_processor = structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
        )

    structlog.configure(
        processors=shared_processors + [final_processor],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level, logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Library modules log through stdlib; route them through the same renderer
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structlog": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    final_processor,
                ],
                "foreign_pre_chain": shared_processors,
            },
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
                "formatter": "structlog",
            },
        },
        "loggers": {
            "": {
                "handlers": ["default"],
                "level": log_level,
                "propagate": True,
            },
            "httpx": {"level": "WARNING"},
            "httpcore": {"level": "WARNING"},
            "asyncio": {"level": "WARNING"},
            "anthropic": {"level": "WARNING"},
            "openai": {"level": "WARNING"},
        },
    })

    structlog.get_logger("logging_config").info(
        "Logging configured",
        format="json" if json_output else "console",
        level=log_level,
    )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================

def get_logger(name: str = None, context: Optional[RequestContext] = None):
    """
    Get a structured logger, bound to a request context when one is given.

    Args:
        name: Logger name (typically __name__)
        context: Request-scoped context to bind

    Returns:
        Structured logger with context binding support
    """
    logger = structlog.get_logger(name)
    if context is not None:
        logger = logger.bind(**context.as_log_fields())
    return logger
