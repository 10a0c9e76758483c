"""
Shared logging configuration for QuotaGate.
"""

import sys
import structlog
import logging
import time
from typing import Any, Callable, Dict


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structured logging for a process hosting quota gates."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_service_context(service_name),
            add_timestamp,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )


def add_service_context(service_name: str) -> Callable[[Any, str, Dict[str, Any]], Dict[str, Any]]:
    """Build a processor stamping the hosting service onto log events."""

    def processor(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service_name)
        # Logger names look like "quota_gate.<component>"
        logger_name = event_dict.get("logger", "")
        if "." in logger_name:
            event_dict["component"] = logger_name.split(".", 1)[1]
        return event_dict

    return processor


def add_timestamp(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add high-precision timestamp to log events."""
    event_dict["timestamp"] = time.time()
    return event_dict


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
