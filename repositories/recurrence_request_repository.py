"""
RecurrenceRequestRepository - Data access layer for RecurrenceRequest model
"""

from typing import List, Optional
from repositories.base_repository import BaseRepository
from portal_database import RecurrenceRequest
from services.enums import RecurrenceRequestStatus
from utils.datetime_utils import utc_now


class RecurrenceRequestRepository(BaseRepository):
    """Repository for RecurrenceRequest data access"""

    def __init__(self, session):
        super().__init__(session, RecurrenceRequest)

    def find_latest_for_engagement(self, engagement_id: str) -> Optional[RecurrenceRequest]:
        """
        The most recent request of an engagement, the only one that counts.

        Ties on created_at are broken by id so the later insert wins.
        """
        return self.session.query(self.model_class)\
            .filter_by(engagement_id=engagement_id)\
            .order_by(self.model_class.created_at.desc(), self.model_class.id.desc())\
            .first()

    def find_by_engagement_id(self, engagement_id: str) -> List:
        return self.session.query(self.model_class)\
            .filter_by(engagement_id=engagement_id)\
            .order_by(self.model_class.created_at, self.model_class.id)\
            .all()

    def find_pending(self) -> List:
        """
        Pending requests, oldest first, for the admin queue.

        Returns:
            List of RecurrenceRequest objects
        """
        return self.session.query(self.model_class)\
            .filter_by(status=RecurrenceRequestStatus.PENDING)\
            .order_by(self.model_class.created_at, self.model_class.id)\
            .all()

    def compare_and_set_status(self, request_id: int,
                               expected_status: RecurrenceRequestStatus,
                               new_status: RecurrenceRequestStatus,
                               **fields) -> bool:
        """
        Resolve a request only if it is still in the expected status.

        Returns:
            True if the row was updated
        """
        self.session.flush()
        values = dict(fields)
        values['status'] = new_status
        values['updated_at'] = utc_now()

        updated = self.session.query(self.model_class)\
            .filter(self.model_class.id == request_id)\
            .filter(self.model_class.status == expected_status)\
            .update(values, synchronize_session=False)

        if updated:
            request = self.session.get(self.model_class, request_id)
            if request is not None:
                self.session.refresh(request)
        return updated == 1
