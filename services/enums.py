"""
Service layer enums
These enums are shared by the models, the services and the routes so that
status values never travel as free-form strings.
"""

from enum import Enum


class EngagementStatus(str, Enum):
    """Lifecycle status of an engagement (quote, job and invoice in one record)"""
    DRAFT = 'draft'
    SENT = 'sent'
    DECLINED = 'declined'
    REVISION_REQUESTED = 'revision_requested'
    SCHEDULED = 'scheduled'
    PAYMENT_NEEDED = 'payment_needed'
    PAYMENT_OVERDUE = 'payment_overdue'
    COMPLETE = 'complete'
    CANCELED = 'canceled'

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({EngagementStatus.COMPLETE, EngagementStatus.CANCELED})

# Line items may only change while the engagement is in one of these
MUTABLE_STATUSES = frozenset({EngagementStatus.DRAFT, EngagementStatus.REVISION_REQUESTED})

# Customers may cancel or edit their own engagement only while it is still a quote
QUOTE_STATUSES = frozenset({
    EngagementStatus.DRAFT, EngagementStatus.SENT,
    EngagementStatus.REVISION_REQUESTED, EngagementStatus.DECLINED,
})


class EngagementAction(str, Enum):
    """Actions accepted by the lifecycle state machine"""
    CREATE_DRAFT = 'create_draft'
    SEND = 'send'
    ACCEPT = 'accept'
    DECLINE = 'decline'
    REQUEST_REVISION = 'request_revision'
    REVISE = 'revise'
    INVOICE_CREATED = 'invoice_created'
    PAYMENT_SUCCEEDED = 'payment_succeeded'
    OVERDUE = 'overdue'
    CANCEL = 'cancel'


class RecurrencePattern(str, Enum):
    """Declarative recurrence hint stored on an engagement"""
    NONE = 'none'
    DAILY = 'daily'
    WEEKLY = 'weekly'
    MONTHLY = 'monthly'


class CalendarEventType(str, Enum):
    """Kinds of calendar time blocks"""
    JOB = 'job'
    BLOCKED = 'blocked'
    PERSONAL = 'personal'


class RecurrenceRequestStatus(str, Enum):
    """Negotiation state of a recurrence request"""
    PENDING = 'pending'
    ACCEPTED = 'accepted'
    DECLINED = 'declined'
    COUNTERED = 'countered'


class NoteKind(str, Enum):
    """Audit note categories"""
    REVISION_REQUEST = 'revision_request'
    CANCELLATION = 'cancellation'
    ANOMALY = 'anomaly'


class OutboxStatus(str, Enum):
    """Delivery state of a queued notification"""
    PENDING = 'pending'
    IN_FLIGHT = 'in_flight'
    SENT = 'sent'
    FAILED = 'failed'


class UserRole(str, Enum):
    """Portal roles"""
    ADMIN = 'admin'
    CUSTOMER = 'customer'


# Weekday numbering used by the portal clients: 0 = Sunday ... 6 = Saturday
WEEKDAY_CODES = ('SU', 'MO', 'TU', 'WE', 'TH', 'FR', 'SA')
