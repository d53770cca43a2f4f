"""
BillingReconciliationService - applies billing provider webhook events to engagements.

Every delivery is logged in billing_webhook_event. Events move engagements
through the same state machine as user commands. Redeliveries of an
already applied event are no-ops, and events that do not fit the current
status are recorded as anomalies for operators instead of failing the
webhook.
"""

from typing import Any, Dict, Optional

from logging_config import get_logger, lifecycle_logger
from repositories.engagement_store import EngagementStore
from services.billing_events import (
    BillingEvent,
    InvoiceCreated,
    InvoicePaid,
    MalformedBillingEvent,
    QuoteAccepted,
    QuoteFinalized,
    parse_event,
)
from services.common.errors import InvalidTransition, ReconciliationAnomaly, StoreFailure
from services.common.result import Result
from services.engagement_service import EngagementService
from services.enums import EngagementAction, NoteKind
from services.lifecycle_state_machine import can_transition, target_status

logger = get_logger(__name__)

EVENT_ACTIONS = {
    QuoteAccepted: EngagementAction.ACCEPT,
    QuoteFinalized: EngagementAction.ACCEPT,
    InvoiceCreated: EngagementAction.INVOICE_CREATED,
    InvoicePaid: EngagementAction.PAYMENT_SUCCEEDED,
}

OUTCOME_APPLIED = 'applied'
OUTCOME_NOOP = 'noop'
OUTCOME_NOT_FOUND = 'not_found'
OUTCOME_ANOMALY = 'anomaly'
OUTCOME_IGNORED = 'ignored'

MAX_ATTEMPTS = 2


class BillingReconciliationService:
    """Reconciles asynchronous billing events with engagement state"""

    def __init__(self, store: EngagementStore, engagement_service: EngagementService):
        self.store = store
        self.engagement_service = engagement_service

    def process_webhook(self, envelope: Any) -> Result[Dict[str, Any]]:
        """
        Log, parse and apply one webhook delivery.

        Never raises for bad payloads or unfit events; the outcome is
        reported through the Result so the caller can always acknowledge.
        """
        if not isinstance(envelope, dict):
            logger.warning("Dropping malformed billing webhook", reason="body is not an object")
            return Result.failure("Envelope must be a JSON object", code="MALFORMED_EVENT")

        event_type = envelope.get('type') if isinstance(envelope.get('type'), str) else 'unknown'
        event_id = envelope.get('id') if isinstance(envelope.get('id'), str) else None

        try:
            with self.store.transaction():
                delivery = self.store.webhook_events.record_delivery(event_id, event_type, envelope)
                delivery_id = delivery.id
        except StoreFailure as e:
            logger.error("Failed to record billing webhook", event_id=event_id,
                         event_type=event_type, error=str(e))
            return Result.failure(str(e), code="STORE_FAILURE")

        try:
            event = parse_event(envelope)
        except MalformedBillingEvent as e:
            logger.warning("Dropping malformed billing webhook", event_id=event_id,
                           event_type=event_type, reason=str(e))
            self._finish_delivery(delivery_id, error=str(e))
            return Result.failure(str(e), code="MALFORMED_EVENT")

        if event is None:
            logger.info("Ignoring unhandled billing event type", event_id=event_id, event_type=event_type)
            self._finish_delivery(delivery_id, note=f"Unhandled event type {event_type}")
            return Result.success({'outcome': OUTCOME_IGNORED, 'event_type': event_type})

        try:
            outcome = self.reconcile(event)
        except StoreFailure as e:
            self._finish_delivery(delivery_id, error=str(e))
            return Result.failure(str(e), code="STORE_FAILURE")

        anomaly = outcome.pop('anomaly', None)
        self._finish_delivery(delivery_id, note=anomaly.message if anomaly else None)
        return Result.success(outcome)

    def reconcile(self, event: BillingEvent) -> Dict[str, Any]:
        """
        Apply a parsed event.

        Returns:
            {'outcome', 'event_type', 'engagement_id'} plus 'anomaly' when
            the event did not fit the engagement's status

        Raises:
            StoreFailure: The database rejected the update
        """
        action = EVENT_ACTIONS[type(event)]
        last_error = None
        for attempt in range(1, MAX_ATTEMPTS + 1):
            try:
                return self._reconcile_once(event, action)
            except InvalidTransition as e:
                # Status moved between read and write; re-read and decide again
                last_error = e
                logger.info("Billing event raced a concurrent update", event_type=event.type,
                            event_id=event.event_id, attempt=attempt, error=e.message)

        anomaly = ReconciliationAnomaly(
            f"{event.type} could not be applied: {last_error.message}",
            event_type=event.type,
            subject_id=self._subject_id(event),
            current_status=last_error.current_status,
        )
        lifecycle_logger.log_anomaly(anomaly.message, **anomaly.details)
        return {'outcome': OUTCOME_ANOMALY, 'event_type': event.type, 'engagement_id': None, 'anomaly': anomaly}

    def _reconcile_once(self, event: BillingEvent, action: EngagementAction) -> Dict[str, Any]:
        target = target_status(action)
        subject_id = self._subject_id(event)

        with self.store.transaction():
            engagement = self._find_engagement(event)
            if engagement is None:
                logger.info("No engagement for billing event", event_type=event.type,
                            event_id=event.event_id, subject_id=subject_id)
                return {'outcome': OUTCOME_NOT_FOUND, 'event_type': event.type, 'engagement_id': None}

            result = {'event_type': event.type, 'engagement_id': engagement.id}
            current = engagement.status

            if current == target:
                logger.info("Billing event already reconciled", event_type=event.type,
                            event_id=event.event_id, engagement_id=engagement.id, status=current.value)
                return dict(result, outcome=OUTCOME_NOOP)

            if not can_transition(current, action):
                anomaly = ReconciliationAnomaly(
                    f"{event.type} cannot be applied to an engagement in status '{current.value}'",
                    event_type=event.type,
                    subject_id=subject_id,
                    engagement_id=engagement.id,
                    current_status=current.value,
                )
                lifecycle_logger.log_anomaly(anomaly.message, **anomaly.details)
                self.store.notes.add_note(engagement.id, NoteKind.ANOMALY, anomaly.message)
                return dict(result, outcome=OUTCOME_ANOMALY, anomaly=anomaly)

            fields = {}
            if isinstance(event, InvoiceCreated):
                fields['external_invoice_ref'] = event.invoice_ref
            self.engagement_service.apply_transition(engagement, action, **fields)

        self.engagement_service.notify(action, engagement)
        return dict(result, outcome=OUTCOME_APPLIED)

    def _find_engagement(self, event: BillingEvent):
        engagements = self.store.engagements
        if isinstance(event, (QuoteAccepted, QuoteFinalized)):
            return engagements.find_by_external_quote_ref(event.quote_ref)

        engagement = engagements.find_by_external_invoice_ref(event.invoice_ref)
        if engagement is None and isinstance(event, InvoiceCreated) and event.quote_ref:
            engagement = engagements.find_by_external_quote_ref(event.quote_ref)
        return engagement

    @staticmethod
    def _subject_id(event: BillingEvent) -> str:
        if isinstance(event, (QuoteAccepted, QuoteFinalized)):
            return event.quote_ref
        return event.invoice_ref

    def _finish_delivery(self, delivery_id: int, error: Optional[str] = None, note: Optional[str] = None) -> None:
        try:
            with self.store.transaction():
                if error:
                    self.store.webhook_events.mark_as_failed(delivery_id, error)
                else:
                    self.store.webhook_events.mark_as_processed(delivery_id, note)
        except StoreFailure as e:
            logger.error("Failed to update billing webhook log", delivery_id=delivery_id, error=str(e))
