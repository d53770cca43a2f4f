"""
Engagement error taxonomy

Services raise these; the HTTP layer maps them to JSON responses through a
single error handler registered in create_app().
"""

from typing import Any, Dict, Iterable, Optional


class EngagementError(Exception):
    """Base class for all errors raised by the engagement core"""

    code = 'ENGAGEMENT_ERROR'
    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {'error': self.message, 'code': self.code}
        if self.details:
            payload['details'] = self.details
        return payload


class ValidationError(EngagementError):
    """Malformed input, rejected before any write"""
    code = 'VALIDATION_ERROR'
    http_status = 400


class WeekdayUnavailable(ValidationError):
    """Requested recurrence weekday is not offered; carries the unavailable set"""
    code = 'WEEKDAY_UNAVAILABLE'
    http_status = 409

    def __init__(self, weekday: int, unavailable_weekdays: Iterable[int]):
        self.weekday = weekday
        self.unavailable_weekdays = sorted(set(unavailable_weekdays))
        super().__init__(
            f"Weekday {weekday} is not available for recurring service",
            details={'unavailable_weekdays': self.unavailable_weekdays},
        )


class InvalidTransition(EngagementError):
    """Action not permitted from the persisted status (state moved under the caller)"""
    code = 'INVALID_TRANSITION'
    http_status = 409

    def __init__(self, action: str, current_status: Optional[str], message: Optional[str] = None):
        self.action = action
        self.current_status = current_status
        super().__init__(
            message or f"Cannot {action} an engagement in status '{current_status}'",
            details={'action': action, 'current_status': current_status},
        )


class NotFound(EngagementError):
    """Missing or outside the caller's scope; the two are not distinguished"""
    code = 'NOT_FOUND'
    http_status = 404


class ReconciliationAnomaly(EngagementError):
    """A billing event that cannot be applied; logged for operators, never raised to callers"""
    code = 'RECONCILIATION_ANOMALY'
    http_status = 200

    def __init__(self, message: str, event_type: str, subject_id: Optional[str] = None,
                 engagement_id: Optional[str] = None, current_status: Optional[str] = None):
        self.event_type = event_type
        self.subject_id = subject_id
        self.engagement_id = engagement_id
        self.current_status = current_status
        super().__init__(message, details={
            'event_type': event_type,
            'subject_id': subject_id,
            'engagement_id': engagement_id,
            'current_status': current_status,
        })


class StoreFailure(EngagementError):
    """The transaction could not commit; nothing was persisted"""
    code = 'STORE_FAILURE'
    http_status = 503


class BillingProviderError(EngagementError):
    """A command to the billing provider failed"""
    code = 'BILLING_PROVIDER_ERROR'
    http_status = 502


class Forbidden(EngagementError):
    """The caller may see the engagement but not perform the command"""
    code = 'FORBIDDEN'
    http_status = 403
