"""
EngagementService - lifecycle commands for quotes, jobs and invoices.

Every command runs as one store transaction: validate against the
persisted status, write the status with a compare-and-set, write any
related rows, commit. Notifications are handed to the dispatcher only after
the commit.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from logging_config import get_logger, lifecycle_logger
from repositories.base_repository import PaginationParams, PaginatedResult
from repositories.engagement_store import EngagementStore
from services.availability_service import AvailabilityService
from services.billing_provider_client import BillingProviderClient
from services.common.errors import (
    BillingProviderError,
    Forbidden,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from services.enums import (
    CalendarEventType,
    EngagementAction,
    EngagementStatus,
    MUTABLE_STATUSES,
    NoteKind,
    QUOTE_STATUSES,
    RecurrencePattern,
)
from services.lifecycle_state_machine import next_status
from services.notification_dispatcher import NotificationDispatcher
from utils.datetime_utils import parse_utc_iso

logger = get_logger(__name__)

PAYABLE_STATUSES = frozenset({EngagementStatus.PAYMENT_NEEDED, EngagementStatus.PAYMENT_OVERDUE})
EDITABLE_FIELDS = ('title', 'description', 'due', 'recurrence_pattern')


@dataclass
class CreationResult:
    """A created engagement and the booking conflicts of its slot"""
    engagement: Any
    booking_warnings: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'engagement': self.engagement.to_dict(),
            'booking_warnings': self.booking_warnings,
        }


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _require_quote_stage(engagement, command: str) -> None:
    if engagement.status not in QUOTE_STATUSES:
        raise Forbidden(
            f"Only admins can {command} an engagement in status '{engagement.status.value}'",
            details={'action': command, 'current_status': engagement.status.value},
        )


def validate_title(title) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("Title is required", details={'field': 'title'})
    return title.strip()


def validate_line_items(line_items) -> List[Dict[str, Any]]:
    """
    Validate and normalize line item input.

    Args:
        line_items: List of {'description', 'quantity', 'unit_amount_cents'}

    Returns:
        Normalized list with stripped descriptions

    Raises:
        ValidationError: On the first invalid item, naming its index
    """
    if line_items is None:
        return []
    if not isinstance(line_items, (list, tuple)):
        raise ValidationError("Line items must be a list", details={'field': 'line_items'})

    normalized = []
    for index, item in enumerate(line_items):
        if not isinstance(item, dict):
            raise ValidationError("Line item must be an object", details={'index': index})

        description = item.get('description')
        if not isinstance(description, str) or not description.strip():
            raise ValidationError("Line item description is required",
                                  details={'index': index, 'field': 'description'})

        quantity = item.get('quantity')
        if not _is_int(quantity) or quantity < 1:
            raise ValidationError("Line item quantity must be an integer of at least 1",
                                  details={'index': index, 'field': 'quantity'})

        unit_amount = item.get('unit_amount_cents')
        if not _is_int(unit_amount) or unit_amount < 0:
            raise ValidationError("Line item unit_amount_cents must be a non-negative integer",
                                  details={'index': index, 'field': 'unit_amount_cents'})

        normalized.append({
            'description': description.strip(),
            'quantity': quantity,
            'unit_amount_cents': unit_amount,
        })
    return normalized


def total_cents(line_items: Sequence[Dict[str, Any]]) -> int:
    return sum(item['quantity'] * item['unit_amount_cents'] for item in line_items)


def _parse_timestamp(value, field_name: str) -> Optional[datetime]:
    try:
        return parse_utc_iso(value)
    except ValueError:
        raise ValidationError(f"{field_name} must be an ISO 8601 timestamp", details={'field': field_name})


def validate_window(start, end):
    """
    Validate an optional start/end pair.

    Returns:
        (start, end) as UTC datetimes, or (None, None)

    Raises:
        ValidationError: Only one of the pair given, or end not after start
    """
    start = _parse_timestamp(start, 'start')
    end = _parse_timestamp(end, 'end')
    if start is None and end is None:
        return None, None
    if start is None or end is None:
        raise ValidationError("start and end must be given together",
                              details={'field': 'start' if start is None else 'end'})
    if end <= start:
        raise ValidationError("end must be after start", details={'field': 'end'})
    return start, end


def _parse_pattern(value) -> RecurrencePattern:
    if value is None:
        return RecurrencePattern.NONE
    try:
        return RecurrencePattern(value)
    except ValueError:
        raise ValidationError("Unknown recurrence pattern",
                              details={'field': 'recurrence_pattern', 'allowed': [p.value for p in RecurrencePattern]})


class EngagementService:
    """Engagement lifecycle commands"""

    def __init__(self, store: EngagementStore,
                 availability_service: AvailabilityService,
                 dispatcher: NotificationDispatcher,
                 billing_client: Optional[BillingProviderClient] = None):
        self.store = store
        self.availability_service = availability_service
        self.dispatcher = dispatcher
        self.billing_client = billing_client

    # Queries

    def get_engagement(self, engagement_id: str, owner_id: Optional[int] = None):
        """
        Fetch an engagement, optionally restricted to an owner.

        Raises:
            NotFound: Missing or owned by someone else
        """
        if owner_id is None:
            engagement = self.store.engagements.get_by_id(engagement_id)
        else:
            engagement = self.store.engagements.get_for_owner(engagement_id, owner_id)
        if engagement is None:
            raise NotFound("Engagement not found", details={'engagement_id': engagement_id})
        return engagement

    def list_engagements(self, owner_id: Optional[int] = None, statuses=None,
                         page: int = 1, per_page: int = 20) -> PaginatedResult:
        parsed = []
        for status in statuses or []:
            try:
                parsed.append(EngagementStatus(status))
            except ValueError:
                raise ValidationError("Unknown status filter", details={'status': status})
        if page < 1 or not 1 <= per_page <= 100:
            raise ValidationError("Invalid pagination parameters")
        return self.store.engagements.list_engagements(
            PaginationParams(page=page, per_page=per_page), owner_id=owner_id, statuses=parsed
        )

    def get_notes(self, engagement_id: str, owner_id: Optional[int] = None):
        self.get_engagement(engagement_id, owner_id)
        return self.store.notes.find_by_engagement_id(engagement_id)

    # Transition core

    def apply_transition(self, engagement, action: EngagementAction, **fields):
        """
        Move an engagement through the state machine.

        Must run inside ``store.transaction()``.

        Raises:
            InvalidTransition: Not allowed from the persisted status, or the
                status changed between read and write
            ValidationError: ``send`` without line items
        """
        current = engagement.status
        target = next_status(current, action)

        if action == EngagementAction.SEND and not self.store.line_items.find_by_engagement_id(engagement.id):
            raise ValidationError("An engagement needs at least one line item before it can be sent",
                                  details={'field': 'line_items'})

        if not self.store.engagements.compare_and_set_status(engagement.id, current, target, **fields):
            self.store.session.refresh(engagement)
            logger.warning("Concurrent status change detected",
                           engagement_id=engagement.id, action=action.value,
                           expected_status=current.value, current_status=engagement.status.value)
            raise InvalidTransition(action.value, engagement.status.value,
                                    "The engagement changed while the action was applied; re-fetch and retry")

        lifecycle_logger.log_transition(engagement.id, action.value, current.value, target.value)
        return engagement

    def notify(self, action: EngagementAction, engagement, extra: Optional[Dict[str, Any]] = None) -> None:
        """Hand the notifications of a committed action to the dispatcher"""
        self.dispatcher.dispatch_for_action(action, engagement, extra)

    def _execute(self, engagement_id: str, action: EngagementAction, owner_id: Optional[int] = None,
                 fields: Optional[Dict[str, Any]] = None, note: Optional[tuple] = None,
                 extra: Optional[Dict[str, Any]] = None, actor_id: Optional[int] = None,
                 quote_stage_only: bool = False):
        with self.store.transaction():
            engagement = self.get_engagement(engagement_id, owner_id)
            if quote_stage_only and owner_id is not None and not engagement.status.is_terminal:
                _require_quote_stage(engagement, action.value)
            self.apply_transition(engagement, action, **(fields or {}))
            if note:
                kind, body = note
                self.store.notes.add_note(engagement.id, kind, body, author_id=actor_id)
        self.notify(action, engagement, extra)
        return engagement

    # Creation

    def create_engagement(self, owner_id: int, title: str, line_items=None, description: Optional[str] = None,
                          start=None, end=None, due=None, recurrence_pattern=None,
                          send: bool = False, actor_id: Optional[int] = None) -> CreationResult:
        """
        Create an engagement with its line items and optional job slot in one transaction.

        Args:
            owner_id: Customer the engagement belongs to
            title: Short title
            line_items: [{'description', 'quantity', 'unit_amount_cents'}, ...]
            description: Optional long description
            start: Optional job start (requires end)
            end: Optional job end (requires start)
            due: Optional deadline / quote expiry
            recurrence_pattern: none, daily, weekly or monthly
            send: Apply ``send`` in the same transaction
            actor_id: User performing the creation

        Returns:
            CreationResult with the engagement and booking warnings

        Raises:
            ValidationError: Invalid input; nothing is written
            NotFound: Unknown owner
            BillingProviderError: Provider quote could not be created
        """
        if not _is_int(owner_id):
            raise ValidationError("owner_id must be an integer", details={'field': 'owner_id'})
        title = validate_title(title)
        items = validate_line_items(line_items)
        start, end = validate_window(start, end)
        due = _parse_timestamp(due, 'due')
        pattern = _parse_pattern(recurrence_pattern)
        if send and not items:
            raise ValidationError("An engagement needs at least one line item before it can be sent",
                                  details={'field': 'line_items'})

        owner = self.store.users.get_by_id(owner_id)
        if owner is None:
            raise NotFound("Owner not found", details={'owner_id': owner_id})

        send_fields = {}
        if send:
            quote_ref = self._create_provider_quote(owner, items, title)
            if quote_ref:
                send_fields['external_quote_ref'] = quote_ref

        with self.store.transaction():
            engagement = self.store.engagements.create(
                owner_id=owner_id,
                title=title,
                description=description,
                status=next_status(None, EngagementAction.CREATE_DRAFT),
                recurrence_pattern=pattern,
                due=due,
                total_amount_cents=total_cents(items),
            )
            self.store.line_items.bulk_create_line_items(engagement.id, items)

            if start is not None:
                self.store.calendar_events.create(
                    title=title,
                    start=start,
                    end=end,
                    type=CalendarEventType.JOB,
                    engagement_id=engagement.id,
                    owner_id=owner_id,
                )

            if send:
                self.apply_transition(engagement, EngagementAction.SEND, **send_fields)

        logger.info("Engagement created",
                    engagement_id=engagement.id, owner_id=owner_id, actor_id=actor_id,
                    line_items=len(items), total_amount_cents=engagement.total_amount_cents,
                    scheduled=start is not None, sent=send)

        if send:
            self.notify(EngagementAction.SEND, engagement)

        warnings = []
        if start is not None:
            warnings = self.availability_service.booking_warnings(
                start, end, exclude_engagement_id=engagement.id
            )
            if warnings:
                logger.info("Booking conflicts reported", engagement_id=engagement.id, warnings=warnings)

        return CreationResult(engagement=engagement, booking_warnings=warnings)

    # Editing

    def replace_line_items(self, engagement_id: str, line_items, owner_id: Optional[int] = None):
        """
        Replace all line items and recompute the total.

        Raises:
            InvalidTransition: Engagement is not in a mutable status
        """
        items = validate_line_items(line_items)
        with self.store.transaction():
            engagement = self.get_engagement(engagement_id, owner_id)
            current = engagement.status
            if current not in MUTABLE_STATUSES:
                raise InvalidTransition('replace_line_items', current.value,
                                        f"Line items cannot change while the engagement is '{current.value}'")
            self.store.line_items.replace_for_engagement(engagement.id, items)
            if not self.store.engagements.compare_and_set_status(
                    engagement.id, current, current, total_amount_cents=total_cents(items)):
                self.store.session.refresh(engagement)
                raise InvalidTransition('replace_line_items', engagement.status.value)
            self.store.session.expire(engagement, ['line_items'])

        logger.info("Line items replaced", engagement_id=engagement.id,
                    line_items=len(items), total_amount_cents=engagement.total_amount_cents)
        return engagement

    def update_details(self, engagement_id: str, changes: Dict[str, Any], owner_id: Optional[int] = None):
        """
        Update title, description, due or recurrence pattern.

        Raises:
            ValidationError: Unknown or invalid fields
            InvalidTransition: Engagement is terminal
            Forbidden: A customer changing the due date, or editing past the quote stage
        """
        unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationError("Fields cannot be edited", details={'fields': unknown})

        values = {}
        if 'title' in changes:
            values['title'] = validate_title(changes['title'])
        if 'description' in changes:
            values['description'] = changes['description']
        if 'due' in changes:
            values['due'] = _parse_timestamp(changes['due'], 'due')
        if 'recurrence_pattern' in changes:
            values['recurrence_pattern'] = _parse_pattern(changes['recurrence_pattern'])

        with self.store.transaction():
            engagement = self.get_engagement(engagement_id, owner_id)
            current = engagement.status
            if current.is_terminal:
                raise InvalidTransition('update_details', current.value)
            if owner_id is not None:
                if 'due' in values:
                    raise Forbidden("Only admins can change the due date", details={'field': 'due'})
                _require_quote_stage(engagement, 'update_details')
            if not self.store.engagements.compare_and_set_status(engagement.id, current, current, **values):
                self.store.session.refresh(engagement)
                raise InvalidTransition('update_details', engagement.status.value)
        return engagement

    def schedule_engagement(self, engagement_id: str, start, end, owner_id: Optional[int] = None) -> CreationResult:
        """
        Create or move the job slot of an engagement.

        Returns:
            CreationResult with booking warnings for the new slot
        """
        start, end = validate_window(start, end)
        if start is None:
            raise ValidationError("start and end are required", details={'field': 'start'})

        with self.store.transaction():
            engagement = self.get_engagement(engagement_id, owner_id)
            if engagement.status.is_terminal:
                raise InvalidTransition('schedule', engagement.status.value)
            event = self.store.calendar_events.find_job_event_for_engagement(engagement.id)
            if event is None:
                self.store.calendar_events.create(
                    title=engagement.title, start=start, end=end, type=CalendarEventType.JOB,
                    engagement_id=engagement.id, owner_id=engagement.owner_id,
                )
            else:
                self.store.calendar_events.update(event, start=start, end=end)

        warnings = self.availability_service.booking_warnings(start, end, exclude_engagement_id=engagement.id)
        logger.info("Engagement scheduled", engagement_id=engagement.id,
                    start=start.isoformat(), end=end.isoformat(), warnings=len(warnings))
        return CreationResult(engagement=engagement, booking_warnings=warnings)

    # Lifecycle commands

    def send(self, engagement_id: str, owner_id: Optional[int] = None, actor_id: Optional[int] = None):
        """Send a draft quote to its owner, creating the provider quote when configured"""
        engagement = self.get_engagement(engagement_id, owner_id)
        next_status(engagement.status, EngagementAction.SEND)
        items = [item.to_dict() for item in self.store.line_items.find_by_engagement_id(engagement.id)]
        if not items:
            raise ValidationError("An engagement needs at least one line item before it can be sent",
                                  details={'field': 'line_items'})

        fields = {}
        quote_ref = self._create_provider_quote(engagement.owner, items, engagement.title, engagement.id)
        if quote_ref:
            fields['external_quote_ref'] = quote_ref
        return self._execute(engagement_id, EngagementAction.SEND, owner_id, fields=fields, actor_id=actor_id)

    def accept(self, engagement_id: str, owner_id: Optional[int] = None, actor_id: Optional[int] = None):
        """
        Accept a sent quote.

        When the quote exists at the provider it is finalized and accepted
        there first; the resulting webhooks reconcile as no-ops.
        """
        engagement = self.get_engagement(engagement_id, owner_id)
        next_status(engagement.status, EngagementAction.ACCEPT)

        if engagement.external_quote_ref and self.billing_client is not None:
            self.billing_client.finalize_quote(engagement.external_quote_ref)
            self.billing_client.accept_quote(engagement.external_quote_ref)
            try:
                return self._execute(engagement_id, EngagementAction.ACCEPT, owner_id, actor_id=actor_id)
            except InvalidTransition:
                # The provider's webhook may have applied the acceptance already
                engagement = self.get_engagement(engagement_id, owner_id)
                if engagement.status == EngagementStatus.SCHEDULED:
                    return engagement
                raise

        return self._execute(engagement_id, EngagementAction.ACCEPT, owner_id, actor_id=actor_id)

    def decline(self, engagement_id: str, owner_id: Optional[int] = None, actor_id: Optional[int] = None):
        return self._execute(engagement_id, EngagementAction.DECLINE, owner_id, actor_id=actor_id)

    def request_revision(self, engagement_id: str, reason: str, owner_id: Optional[int] = None,
                         actor_id: Optional[int] = None):
        """
        Ask for changes to a sent quote. The reason is kept as an audit note.

        Raises:
            ValidationError: Empty reason
        """
        if not isinstance(reason, str) or not reason.strip():
            raise ValidationError("A reason is required to request a revision", details={'field': 'reason'})
        reason = reason.strip()
        return self._execute(engagement_id, EngagementAction.REQUEST_REVISION, owner_id,
                             note=(NoteKind.REVISION_REQUEST, reason),
                             extra={'reason': reason}, actor_id=actor_id)

    def revise(self, engagement_id: str, actor_id: Optional[int] = None):
        """Reopen a declined or revision-requested quote as a draft"""
        return self._execute(engagement_id, EngagementAction.REVISE,
                             fields={'external_quote_ref': None}, actor_id=actor_id)

    def mark_invoice_created(self, engagement_id: str, external_invoice_ref: str,
                             actor_id: Optional[int] = None):
        if not isinstance(external_invoice_ref, str) or not external_invoice_ref.strip():
            raise ValidationError("external_invoice_ref is required", details={'field': 'external_invoice_ref'})
        return self._execute(engagement_id, EngagementAction.INVOICE_CREATED,
                             fields={'external_invoice_ref': external_invoice_ref.strip()}, actor_id=actor_id)

    def mark_paid(self, engagement_id: str, actor_id: Optional[int] = None):
        return self._execute(engagement_id, EngagementAction.PAYMENT_SUCCEEDED, actor_id=actor_id)

    def mark_overdue(self, engagement_id: str, actor_id: Optional[int] = None):
        return self._execute(engagement_id, EngagementAction.OVERDUE, actor_id=actor_id)

    def cancel(self, engagement_id: str, owner_id: Optional[int] = None, actor_id: Optional[int] = None,
               reason: Optional[str] = None):
        body = reason.strip() if isinstance(reason, str) and reason.strip() else 'Engagement canceled'
        return self._execute(engagement_id, EngagementAction.CANCEL, owner_id,
                             note=(NoteKind.CANCELLATION, body), actor_id=actor_id,
                             quote_stage_only=True)

    # Payments

    def create_payment_intent(self, engagement_id: str, owner_id: Optional[int] = None) -> Dict[str, Any]:
        """
        Ask the provider for a payment intent covering the engagement total.

        Raises:
            InvalidTransition: Engagement is not awaiting payment
            ValidationError: Owner has no billing customer
            BillingProviderError: Provider not configured or failed
        """
        engagement = self.get_engagement(engagement_id, owner_id)
        if engagement.status not in PAYABLE_STATUSES:
            raise InvalidTransition('create_payment_intent', engagement.status.value)
        if self.billing_client is None:
            raise BillingProviderError("Billing provider is not configured")

        customer_ref = engagement.owner.billing_customer_ref
        if not customer_ref:
            raise ValidationError("The owner has no billing customer", details={'owner_id': engagement.owner_id})

        intent = self.billing_client.create_payment_intent(
            customer_ref,
            engagement.total_amount_cents,
            metadata={'engagement_id': engagement.id,
                      'invoice_ref': engagement.external_invoice_ref or ''},
        )
        logger.info("Payment intent created", engagement_id=engagement.id,
                    amount_cents=engagement.total_amount_cents)
        return intent

    def _create_provider_quote(self, owner, items: List[Dict[str, Any]], title: str,
                               engagement_id: Optional[str] = None) -> Optional[str]:
        if self.billing_client is None or owner is None or not owner.billing_customer_ref:
            return None
        metadata = {'title': title}
        if engagement_id:
            metadata['engagement_id'] = engagement_id
        quote = self.billing_client.create_quote(owner.billing_customer_ref, items, metadata)
        quote_ref = quote.get('id')
        if not quote_ref:
            raise BillingProviderError("Billing provider returned a quote without an id")
        return quote_ref
