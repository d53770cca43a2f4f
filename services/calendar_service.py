"""
CalendarService - blocked days, personal events and the iCalendar export feed
"""

from datetime import date, datetime
from typing import List, Optional, Union

from logging_config import get_logger
from repositories.engagement_store import EngagementStore
from services.common.errors import NotFound, ValidationError
from services.engagement_service import validate_title, validate_window
from services.enums import CalendarEventType
from utils.datetime_utils import day_bounds, ensure_utc, format_ical_utc, utc_now, utc_to_local

logger = get_logger(__name__)

PRODID = '-//Field Service Portal//Engagements//EN'


def escape_ical_text(value: Optional[str]) -> str:
    """Escape a TEXT value (backslash, semicolon, comma, newline)"""
    if not value:
        return ''
    return (value.replace('\\', '\\\\')
                 .replace(';', '\\;')
                 .replace(',', '\\,')
                 .replace('\r\n', '\\n')
                 .replace('\n', '\\n'))


def _parse_day(value: Union[str, date]) -> date:
    if isinstance(value, datetime):
        return ensure_utc(value).date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise ValidationError("day must be an ISO date (YYYY-MM-DD)", details={'field': 'day'})


class CalendarService:
    """Calendar maintenance and feed export"""

    def __init__(self, store: EngagementStore, feed_domain: str = 'portal.local',
                 timezone_name: str = 'America/New_York'):
        self.store = store
        self.feed_domain = feed_domain
        self.timezone_name = timezone_name

    def block_day(self, day: Union[str, date], title: Optional[str] = None, actor_id: Optional[int] = None):
        """
        Block a whole day for everyone.

        Returns:
            The created blocked CalendarEvent
        """
        day = _parse_day(day)
        start, end = day_bounds(day)
        with self.store.transaction():
            event = self.store.calendar_events.create(
                title=title.strip() if isinstance(title, str) and title.strip() else 'Blocked',
                start=start,
                end=end,
                type=CalendarEventType.BLOCKED,
                engagement_id=None,
                owner_id=None,
            )
        logger.info("Day blocked", day=day.isoformat(), event_id=event.id, actor_id=actor_id)
        return event

    def unblock_day(self, event_id: int, actor_id: Optional[int] = None) -> None:
        """
        Remove a blocked day.

        Raises:
            NotFound: No blocked event with that id
        """
        with self.store.transaction():
            event = self.store.calendar_events.get_by_id(event_id)
            if event is None or event.type != CalendarEventType.BLOCKED:
                raise NotFound("Blocked day not found", details={'event_id': event_id})
            self.store.calendar_events.delete(event)
        logger.info("Day unblocked", event_id=event_id, actor_id=actor_id)

    def list_blocked_days(self):
        return self.store.calendar_events.find_blocked_events()

    def add_personal_event(self, owner_id: int, title: str, start, end):
        """Owner-only event; shows up in the owner's feed but not in availability"""
        title = validate_title(title)
        start, end = validate_window(start, end)
        if start is None:
            raise ValidationError("start and end are required", details={'field': 'start'})
        with self.store.transaction():
            if self.store.users.get_by_id(owner_id) is None:
                raise NotFound("Owner not found", details={'owner_id': owner_id})
            event = self.store.calendar_events.create(
                title=title, start=start, end=end,
                type=CalendarEventType.PERSONAL, engagement_id=None, owner_id=owner_id,
            )
        return event

    def export_feed(self, owner_id: Optional[int] = None, calendar_name: Optional[str] = None) -> str:
        """
        Render calendar events as an iCalendar document.

        Args:
            owner_id: Owner scope (own events plus global blocked days);
                None exports every event
            calendar_name: Optional X-WR-CALNAME value

        Returns:
            text/calendar body with CRLF line endings
        """
        events = self.store.calendar_events.find_for_feed(owner_id)
        lines: List[str] = [
            'BEGIN:VCALENDAR',
            'VERSION:2.0',
            f'PRODID:{PRODID}',
            'CALSCALE:GREGORIAN',
            'METHOD:PUBLISH',
        ]
        if calendar_name:
            lines.append(f'X-WR-CALNAME:{escape_ical_text(calendar_name)}')
        lines.append(f'X-WR-TIMEZONE:{self.timezone_name}')

        for event in events:
            stamp = event.created_at or utc_now()
            lines.extend([
                'BEGIN:VEVENT',
                f'UID:{event.id}-{event.engagement_id or "none"}@{self.feed_domain}',
                f'DTSTAMP:{format_ical_utc(stamp)}',
                f'DTSTART:{format_ical_utc(event.start)}',
                f'DTEND:{format_ical_utc(event.end)}',
                f'SUMMARY:{escape_ical_text(event.title)}',
                f'CATEGORIES:{event.type.value.upper()}',
            ])
            if event.type == CalendarEventType.JOB:
                local_start = utc_to_local(event.start, self.timezone_name)
                lines.append(f'DESCRIPTION:Arrival {local_start:%Y-%m-%d %H:%M %Z} local time')
            lines.append('END:VEVENT')

        lines.append('END:VCALENDAR')
        logger.debug("Calendar feed exported", owner_id=owner_id, events=len(events))
        return '\r\n'.join(lines) + '\r\n'
