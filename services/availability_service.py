"""
AvailabilityService - derives booked, pending and blocked days from calendar events.

The calculation reports; it never reserves. Overlapping bookings are
surfaced as warnings to the caller and left to the admin to resolve.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from logging_config import get_logger
from repositories.calendar_event_repository import CalendarEventRepository
from services.enums import CalendarEventType, EngagementStatus
from utils.datetime_utils import days_between, to_iso_date

logger = get_logger(__name__)

# Job events linked to engagements in these statuses do not occupy their day
NON_BOOKING_STATUSES = frozenset({
    EngagementStatus.CANCELED,
    EngagementStatus.COMPLETE,
    EngagementStatus.DRAFT,
})


def categorize_events(events: Iterable[Tuple[object, Optional[EngagementStatus]]]) -> Dict[str, List[str]]:
    """
    Sort calendar events into day sets.

    Args:
        events: (CalendarEvent, linked engagement status) pairs

    Returns:
        {'booked': [...], 'pending': [...], 'blocked': [...]} with sorted,
        unique ISO dates per set. A day can be in more than one set.
    """
    booked, pending, blocked = set(), set(), set()

    for event, status in events:
        day = to_iso_date(event.start)
        if event.type == CalendarEventType.BLOCKED:
            blocked.add(day)
        elif event.type == CalendarEventType.JOB:
            if status is None:
                continue
            status = EngagementStatus(status)
            if status == EngagementStatus.SENT:
                pending.add(day)
            elif status not in NON_BOOKING_STATUSES:
                booked.add(day)

    return {
        'booked': sorted(booked),
        'pending': sorted(pending),
        'blocked': sorted(blocked),
    }


class AvailabilityService:
    """Availability and booking calculator"""

    def __init__(self, calendar_event_repository: CalendarEventRepository):
        self.calendar_event_repository = calendar_event_repository

    def get_availability(self, owner_id: Optional[int] = None) -> Dict[str, List[str]]:
        """
        Compute the day sets for a scope.

        Args:
            owner_id: Owner scope (the owner's jobs plus all blocked days);
                None for the global scope

        Returns:
            Dictionary of sorted ISO date lists
        """
        events = self.calendar_event_repository.find_with_engagement_status(owner_id)
        availability = categorize_events(events)
        logger.debug("Availability computed",
                     owner_id=owner_id,
                     booked=len(availability['booked']),
                     pending=len(availability['pending']),
                     blocked=len(availability['blocked']))
        return availability

    def booking_warnings(self, start: datetime, end: datetime,
                         exclude_engagement_id: Optional[str] = None) -> List[Dict[str, object]]:
        """
        Days of a proposed window that are already blocked or booked.

        Args:
            start: Proposed window start
            end: Proposed window end
            exclude_engagement_id: Engagement whose own job event is ignored

        Returns:
            [{'date': '2025-01-07', 'reasons': ['blocked', 'booked']}, ...]
        """
        events = [
            (event, status)
            for event, status in self.calendar_event_repository.find_with_engagement_status(None)
            if exclude_engagement_id is None or event.engagement_id != exclude_engagement_id
        ]
        availability = categorize_events(events)
        blocked = set(availability['blocked'])
        booked = set(availability['booked'])

        warnings = []
        for day in days_between(start, end):
            reasons = []
            if day in blocked:
                reasons.append('blocked')
            if day in booked:
                reasons.append('booked')
            if reasons:
                warnings.append({'date': day, 'reasons': reasons})
        return warnings
