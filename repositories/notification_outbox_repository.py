"""
NotificationOutboxRepository - Data access layer for NotificationOutbox model
"""

from datetime import datetime
from typing import List, Optional
from sqlalchemy import or_
from repositories.base_repository import BaseRepository
from portal_database import NotificationOutbox
from services.enums import OutboxStatus
from utils.datetime_utils import utc_now


class NotificationOutboxRepository(BaseRepository):
    """Repository for queued notification messages"""

    def __init__(self, session):
        super().__init__(session, NotificationOutbox)

    def find_pending(self, limit: int = 100, attempted_before: Optional[datetime] = None) -> List:
        """
        Pending messages, oldest first.

        Args:
            limit: Maximum number of results
            attempted_before: Leave out rows whose latest delivery attempt is
                newer than this; their retry is already scheduled

        Returns:
            List of NotificationOutbox objects
        """
        query = self.session.query(self.model_class).filter_by(status=OutboxStatus.PENDING)
        if attempted_before is not None:
            query = query.filter(or_(
                self.model_class.claimed_at.is_(None),
                self.model_class.claimed_at < attempted_before,
            ))
        return query.order_by(self.model_class.created_at, self.model_class.id)\
            .limit(limit)\
            .all()

    def find_by_recipient(self, recipient_id: int, message_type: Optional[str] = None) -> List:
        query = self.session.query(self.model_class).filter_by(recipient_id=recipient_id)
        if message_type:
            query = query.filter_by(type=message_type)
        return query.order_by(self.model_class.id).all()

    def claim(self, outbox_id: int) -> bool:
        """
        Take a pending message for delivery.

        A conditional UPDATE from pending to in_flight: of several workers
        holding the same id exactly one sees an affected row.

        Returns:
            True if this caller owns the delivery
        """
        self.session.flush()
        updated = self.session.query(self.model_class)\
            .filter(self.model_class.id == outbox_id)\
            .filter(self.model_class.status == OutboxStatus.PENDING)\
            .update({'status': OutboxStatus.IN_FLIGHT, 'claimed_at': utc_now()},
                    synchronize_session=False)

        if updated:
            message = self.session.get(self.model_class, outbox_id)
            if message is not None:
                self.session.refresh(message)
        return updated == 1

    def release_stale_claims(self, claimed_before: datetime) -> int:
        """
        Return in_flight messages claimed before the cutoff to pending.

        Covers workers that died between claim and outcome.

        Returns:
            Number of released rows
        """
        self.session.flush()
        released = self.session.query(self.model_class)\
            .filter(self.model_class.status == OutboxStatus.IN_FLIGHT)\
            .filter(self.model_class.claimed_at < claimed_before)\
            .update({'status': OutboxStatus.PENDING}, synchronize_session=False)
        self.session.expire_all()
        return released

    def mark_sent(self, outbox_id: int):
        message = self.session.get(self.model_class, outbox_id)
        if message:
            message.status = OutboxStatus.SENT
            message.attempts = (message.attempts or 0) + 1
            message.sent_at = utc_now()
            message.last_error = None
            self.session.flush()
        return message

    def mark_failed(self, outbox_id: int, error_message: str, final: bool = False):
        """
        Record a failed delivery attempt and release the claim.

        Args:
            outbox_id: ID of the outbox row
            error_message: Error description
            final: True when no retry will follow

        Returns:
            Updated NotificationOutbox object
        """
        message = self.session.get(self.model_class, outbox_id)
        if message:
            message.attempts = (message.attempts or 0) + 1
            message.last_error = error_message
            message.status = OutboxStatus.FAILED if final else OutboxStatus.PENDING
            self.session.flush()
        return message
