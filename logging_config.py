# logging_config.py

import logging
import structlog
import sys
from typing import Any, Dict
from flask import has_request_context, request, g


def add_request_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add Flask request context to log entries"""
    if has_request_context():
        event_dict["request_id"] = getattr(g, 'request_id', None)
        event_dict["user_id"] = getattr(g, 'user_id', None)
        event_dict["method"] = request.method
        event_dict["path"] = request.path
    return event_dict


def setup_logging(app_name: str = "field-service-portal", log_level: str = "INFO") -> None:
    """
    Configure structured JSON logging

    Args:
        app_name: Application name for log identification
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            add_request_context,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=level,
    )

    logging.getLogger(app_name).setLevel(level)

    # Reduce noise from third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("werkzeug").setLevel(logging.WARNING)


def get_logger(name: str = None) -> structlog.BoundLogger:
    """
    Get a structured logger instance

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog instance
    """
    return structlog.get_logger(name or __name__)


class SecurityLogger:
    """Dedicated security event logger"""

    def __init__(self):
        self.logger = get_logger("security")

    def log_webhook_signature_failure(self, source: str, ip_address: str = None):
        self.logger.warning(
            "Webhook signature rejected",
            source=source,
            ip_address=ip_address,
            event_type="webhook_signature_failure"
        )

    def log_access_denied(self, user_id, required_role: str, path: str):
        """Log a request refused by role checks"""
        self.logger.warning(
            "Access denied",
            user_id=user_id,
            required_role=required_role,
            path=path,
            event_type="access_denied"
        )


class PerformanceLogger:
    """Performance and monitoring logger"""

    def __init__(self):
        self.logger = get_logger("performance")

    def log_api_call(self, service: str, endpoint: str, duration_ms: float, status_code: int):
        """Log external API call performance"""
        self.logger.info(
            "External API call",
            service=service,
            endpoint=endpoint,
            duration_ms=duration_ms,
            status_code=status_code,
            event_type="api_call"
        )


class LifecycleLogger:
    """Audit trail of engagement state changes and billing anomalies"""

    def __init__(self):
        self.logger = get_logger("lifecycle")

    def log_transition(self, engagement_id: str, action: str, from_status: str, to_status: str):
        self.logger.info(
            "Engagement transitioned",
            engagement_id=engagement_id,
            action=action,
            from_status=from_status,
            to_status=to_status,
            event_type="transition"
        )

    def log_anomaly(self, message: str, event_type: str, **details):
        """Billing event that could not be applied; operators reconcile by hand"""
        self.logger.warning(
            "Billing reconciliation anomaly",
            reason=message,
            billing_event=event_type,
            event_type="reconciliation_anomaly",
            **details
        )


# Global logger instances
security_logger = SecurityLogger()
performance_logger = PerformanceLogger()
lifecycle_logger = LifecycleLogger()
