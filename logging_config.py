# logging_config.py

import logging
import sys
from typing import Any, Dict, Optional

import structlog
from flask import has_request_context, request, g


def add_request_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Attach the request id and path when logging inside a Flask request"""
    if has_request_context():
        event_dict["request_id"] = getattr(g, 'request_id', None)
        event_dict["method"] = request.method
        event_dict["path"] = request.path
    return event_dict


def setup_logging(app_name: str = "conversion-engine", log_level: str = "INFO", json_logs: bool = True) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        app_name: Logger name used for the application's own records
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_logs: One JSON object per line (production); console rendering otherwise
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            add_request_context,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger(app_name).setLevel(level)

    # Outbound HTTP clients log every connection at DEBUG
    for noisy in ("urllib3", "requests", "werkzeug", "celery.redirected"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Structured logger, usually get_logger(__name__)"""
    return structlog.get_logger(name or __name__)


class SecurityLogger:
    """Access-control events on the conversions API"""

    def __init__(self):
        self.logger = get_logger("security")

    def log_api_key_rejection(self, path: str, ip_address: Optional[str] = None):
        self.logger.warning(
            "Rejected request with invalid API key",
            path=path,
            ip_address=ip_address,
            event_type="api_key_rejected"
        )


class PerformanceLogger:
    """Timing of calls to the ad platform and the tag endpoint"""

    def __init__(self):
        self.logger = get_logger("performance")

    def log_api_call(self, service: str, endpoint: str, duration_ms: float, status_code: Optional[int]):
        self.logger.info(
            "External API call",
            service=service,
            endpoint=endpoint,
            duration_ms=round(duration_ms, 2),
            status_code=status_code,
            event_type="api_call"
        )


security_logger = SecurityLogger()
performance_logger = PerformanceLogger()
