"""
WebhookEventRepository - Data access layer for BillingWebhookEvent model
"""

from typing import Optional, Dict, Any
from repositories.base_repository import BaseRepository
from portal_database import BillingWebhookEvent
from utils.datetime_utils import utc_now


class WebhookEventRepository(BaseRepository):
    """Repository for BillingWebhookEvent data access"""

    def __init__(self, session):
        super().__init__(session, BillingWebhookEvent)

    def find_by_event_id(self, event_id: str) -> Optional[BillingWebhookEvent]:
        """
        Find webhook event by provider event ID.

        Args:
            event_id: Billing provider event ID

        Returns:
            BillingWebhookEvent object or None if not found
        """
        return self.session.query(self.model_class)\
            .filter_by(event_id=event_id)\
            .first()

    def record_delivery(self, event_id: Optional[str], event_type: str,
                        payload: Dict[str, Any]) -> BillingWebhookEvent:
        """
        Store a delivery, reusing the row of an earlier delivery of the same event.

        Args:
            event_id: Provider event ID, may be absent
            event_type: Envelope type string
            payload: Raw envelope

        Returns:
            BillingWebhookEvent row for this delivery
        """
        if event_id:
            existing = self.find_by_event_id(event_id)
            if existing is not None:
                existing.payload = payload
                existing.error_message = None
                self.session.flush()
                return existing

        return self.create(event_id=event_id, event_type=event_type, payload=payload, processed=False)

    def mark_as_processed(self, webhook_event_id: int, note: Optional[str] = None):
        """
        Mark a webhook event as processed.

        Args:
            webhook_event_id: Row ID of the webhook event
            note: Optional anomaly description kept with the row

        Returns:
            Updated BillingWebhookEvent object
        """
        event = self.session.get(self.model_class, webhook_event_id)
        if event:
            event.processed = True
            event.processed_at = utc_now()
            event.error_message = note
            self.session.flush()
        return event

    def mark_as_failed(self, webhook_event_id: int, error_message: str):
        """
        Mark a webhook event as failed.

        Args:
            webhook_event_id: Row ID of the webhook event
            error_message: Error description

        Returns:
            Updated BillingWebhookEvent object
        """
        event = self.session.get(self.model_class, webhook_event_id)
        if event:
            event.processed = False
            event.error_message = error_message
            self.session.flush()
        return event
