"""
EngagementStore - groups the portal repositories over one session and owns
the transaction boundary.

Everything written inside one ``with store.transaction():`` block commits
together or not at all. Nested blocks join the outer transaction, so a
service operation can be reused by another one without committing early.
"""

from contextlib import contextmanager
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from logging_config import get_logger
from repositories.engagement_repository import EngagementRepository
from repositories.line_item_repository import LineItemRepository
from repositories.calendar_event_repository import CalendarEventRepository
from repositories.recurrence_request_repository import RecurrenceRequestRepository
from repositories.engagement_note_repository import EngagementNoteRepository
from repositories.notification_outbox_repository import NotificationOutboxRepository
from repositories.webhook_event_repository import WebhookEventRepository
from repositories.setting_repository import SettingRepository
from repositories.user_repository import UserRepository
from services.common.errors import StoreFailure

logger = get_logger(__name__)


class EngagementStore:
    """Unit of work over the portal tables"""

    def __init__(self, session: Session):
        self.session = session
        self.engagements = EngagementRepository(session)
        self.line_items = LineItemRepository(session)
        self.calendar_events = CalendarEventRepository(session)
        self.recurrence_requests = RecurrenceRequestRepository(session)
        self.notes = EngagementNoteRepository(session)
        self.outbox = NotificationOutboxRepository(session)
        self.webhook_events = WebhookEventRepository(session)
        self.settings = SettingRepository(session)
        self.users = UserRepository(session)
        self._depth = 0

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def transaction(self):
        """
        Run a block as one atomic unit.

        Raises:
            StoreFailure: The database rejected the unit; nothing was persisted
        """
        if self._depth:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
            return

        self._depth = 1
        try:
            yield self
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error("Store transaction failed", error=str(e))
            raise StoreFailure("The engagement store could not complete the operation",
                               details={'reason': e.__class__.__name__}) from e
        except Exception:
            self.session.rollback()
            raise
        finally:
            self._depth = 0
