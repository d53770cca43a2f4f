"""
CalendarEventRepository - Data access layer for CalendarEvent model
"""

from typing import List, Optional, Tuple
from sqlalchemy import or_, and_
from repositories.base_repository import BaseRepository
from portal_database import CalendarEvent, Engagement
from services.enums import CalendarEventType, EngagementStatus


class CalendarEventRepository(BaseRepository):
    """Repository for CalendarEvent data access"""

    def __init__(self, session):
        super().__init__(session, CalendarEvent)

    def find_job_event_for_engagement(self, engagement_id: str) -> Optional[CalendarEvent]:
        """
        Find the job event of an engagement.

        Args:
            engagement_id: ID of the engagement

        Returns:
            CalendarEvent or None if the engagement is unscheduled
        """
        return self.session.query(self.model_class)\
            .filter_by(engagement_id=engagement_id, type=CalendarEventType.JOB)\
            .first()

    def find_by_engagement_id(self, engagement_id: str) -> List:
        return self.session.query(self.model_class)\
            .filter_by(engagement_id=engagement_id)\
            .order_by(self.model_class.start)\
            .all()

    def find_blocked_events(self) -> List:
        return self.session.query(self.model_class)\
            .filter_by(type=CalendarEventType.BLOCKED)\
            .order_by(self.model_class.start)\
            .all()

    def find_with_engagement_status(self, owner_id: Optional[int] = None) -> List[Tuple[CalendarEvent, Optional[EngagementStatus]]]:
        """
        Calendar events in availability scope, each paired with the status of
        its linked engagement (None for events without one).

        Args:
            owner_id: Restrict to the owner's job events plus all blocked
                events. None means global scope (every event).

        Returns:
            List of (CalendarEvent, status) tuples ordered by start
        """
        query = self.session.query(self.model_class, Engagement.status)\
            .outerjoin(Engagement, self.model_class.engagement_id == Engagement.id)

        if owner_id is not None:
            query = query.filter(or_(
                and_(self.model_class.type == CalendarEventType.JOB,
                     Engagement.owner_id == owner_id),
                self.model_class.type == CalendarEventType.BLOCKED
            ))

        return query.order_by(self.model_class.start).all()

    def find_for_feed(self, owner_id: Optional[int] = None) -> List:
        """
        Calendar events exported in a feed.

        Args:
            owner_id: Owner's own events plus global blocked events; None for all

        Returns:
            List of CalendarEvent objects ordered by start
        """
        query = self.session.query(self.model_class)
        if owner_id is not None:
            query = query.filter(or_(
                self.model_class.owner_id == owner_id,
                self.model_class.type == CalendarEventType.BLOCKED
            ))
        return query.order_by(self.model_class.start, self.model_class.id).all()
