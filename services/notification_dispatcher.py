"""
NotificationDispatcher - hands lifecycle notifications to the delivery service.

Messages are written to the notification outbox after the transition that
produced them has committed, then queued on Celery for delivery. Delivery
is fire-and-forget: a failure here is logged and never undoes or fails the
transition.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from logging_config import get_logger
from repositories.engagement_store import EngagementStore
from services.common.errors import EngagementError
from services.enums import EngagementAction
from services.lifecycle_state_machine import notification_rules

logger = get_logger(__name__)


@dataclass
class NotificationMessage:
    """One message for one recipient, in the delivery service's terms"""
    type: str
    recipient_id: int
    data: Dict[str, Any] = field(default_factory=dict)
    channels: Sequence[str] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'type': self.type,
            'userId': self.recipient_id,
            'data': self.data,
            'channels': list(self.channels),
        }


def default_enqueue(outbox_id: int) -> None:
    """Queue delivery of an outbox row on the Celery worker"""
    from tasks.notification_tasks import deliver_notification
    deliver_notification.delay(outbox_id)


class NotificationDispatcher:
    """Builds and hands off notifications for committed transitions"""

    def __init__(self, store: EngagementStore,
                 enqueue: Optional[Callable[[int], None]] = None):
        """
        Args:
            store: Engagement store used for admin lookup and the outbox
            enqueue: Callable queuing delivery of an outbox row id; None
                leaves rows pending for the periodic flush
        """
        self.store = store
        self.enqueue = enqueue

    def build_messages(self, action: EngagementAction, engagement,
                       extra: Optional[Dict[str, Any]] = None) -> List[NotificationMessage]:
        """
        Messages owed for an action applied to an engagement.

        Args:
            action: The applied lifecycle action
            engagement: Engagement after the transition
            extra: Additional data fields, e.g. a revision reason

        Returns:
            One message per recipient; empty for silent actions
        """
        rules = notification_rules(action)
        if not rules:
            return []

        data = {
            'engagementId': engagement.id,
            'title': engagement.title,
            'status': engagement.status.value,
            'totalAmountCents': engagement.total_amount_cents,
        }
        if extra:
            data.update(extra)

        messages = []
        admin_ids = None
        for rule in rules:
            if rule.audience == 'owner':
                recipients = [engagement.owner_id]
            else:
                if admin_ids is None:
                    admin_ids = self.store.users.find_admin_ids()
                recipients = admin_ids
            for recipient_id in recipients:
                messages.append(NotificationMessage(
                    type=rule.type,
                    recipient_id=recipient_id,
                    data=dict(data),
                    channels=rule.channels,
                ))
        return messages

    def notify_admins(self, message_type: str, data: Dict[str, Any], channels: Sequence[str]) -> List[NotificationMessage]:
        return [
            NotificationMessage(type=message_type, recipient_id=admin_id, data=dict(data), channels=channels)
            for admin_id in self.store.users.find_admin_ids()
        ]

    def dispatch(self, messages: Iterable[NotificationMessage]) -> List[int]:
        """
        Store messages in the outbox and queue them for delivery.

        Must be called after the producing transaction committed.

        Returns:
            Outbox row ids that were stored; empty when storing failed
        """
        messages = list(messages)
        if not messages:
            return []

        try:
            with self.store.transaction():
                rows = [
                    self.store.outbox.create(
                        type=message.type,
                        recipient_id=message.recipient_id,
                        data=message.data,
                        channels=list(message.channels),
                    )
                    for message in messages
                ]
                outbox_ids = [row.id for row in rows]
        except (EngagementError, SQLAlchemyError) as e:
            logger.error("Failed to store notifications",
                         error=str(e),
                         types=sorted({m.type for m in messages}))
            return []

        for outbox_id in outbox_ids:
            if self.enqueue is None:
                continue
            try:
                self.enqueue(outbox_id)
            except Exception as e:
                # Row stays pending and is picked up by the periodic flush
                logger.warning("Failed to queue notification delivery",
                               outbox_id=outbox_id, error=str(e))

        logger.info("Notifications dispatched", count=len(outbox_ids),
                    types=sorted({m.type for m in messages}))
        return outbox_ids

    def dispatch_for_action(self, action: EngagementAction, engagement,
                            extra: Optional[Dict[str, Any]] = None) -> List[int]:
        """Build and dispatch the messages for an applied action"""
        try:
            messages = self.build_messages(action, engagement, extra)
        except (EngagementError, SQLAlchemyError) as e:
            logger.error("Failed to build notifications", action=action.value,
                         engagement_id=engagement.id, error=str(e))
            return []
        return self.dispatch(messages)
