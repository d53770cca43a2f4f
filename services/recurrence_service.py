"""
RecurrenceService - negotiation of recurring service between customer and admin.

A customer proposes a cadence (every N days, optionally on a weekday); an
admin accepts, declines or counters. Every resolution is terminal for that
request and only the latest request of an engagement can be resolved.
Acceptance records the agreed rule on the engagement; it does not create
future engagements.
"""

from typing import Any, Dict, List, Optional, Set

from logging_config import get_logger
from repositories.engagement_store import EngagementStore
from services.common.errors import InvalidTransition, NotFound, ValidationError, WeekdayUnavailable
from services.enums import EngagementStatus, RecurrencePattern, RecurrenceRequestStatus, WEEKDAY_CODES
from services.notification_dispatcher import NotificationDispatcher, NotificationMessage
from services.setting_service import SettingService

logger = get_logger(__name__)

NEW_REQUEST_CHANNELS = ('push', 'email')
RESPONSE_CHANNELS = ('push',)


def build_recurrence_rule(frequency_days: int, weekday: Optional[int] = None) -> str:
    """
    Encode a cadence as an RRULE fragment.

    >>> build_recurrence_rule(14, 2)
    'FREQ=DAILY;INTERVAL=14;BYDAY=TU'
    """
    rule = f"FREQ=DAILY;INTERVAL={frequency_days}"
    if weekday is not None:
        rule += f";BYDAY={WEEKDAY_CODES[weekday]}"
    return rule


def weekdays_from_rule(rule: Optional[str]) -> Set[int]:
    """Weekday numbers named in the BYDAY part of a rule"""
    if not rule:
        return set()
    weekdays = set()
    for part in rule.split(';'):
        key, _, value = part.partition('=')
        if key.strip().upper() != 'BYDAY':
            continue
        for code in value.split(','):
            code = code.strip().upper()[-2:]
            if code in WEEKDAY_CODES:
                weekdays.add(WEEKDAY_CODES.index(code))
    return weekdays


def pattern_for_frequency(frequency_days: int) -> Optional[RecurrencePattern]:
    if frequency_days == 1:
        return RecurrencePattern.DAILY
    if frequency_days % 7 == 0:
        return RecurrencePattern.WEEKLY
    if 28 <= frequency_days <= 31:
        return RecurrencePattern.MONTHLY
    return None


def _validate_frequency(frequency_days, field_name: str = 'frequency_days') -> int:
    if not isinstance(frequency_days, int) or isinstance(frequency_days, bool) or frequency_days < 1:
        raise ValidationError("Frequency must be a whole number of days, at least 1",
                              details={'field': field_name})
    return frequency_days


def _validate_weekday(weekday, field_name: str = 'requested_weekday') -> Optional[int]:
    if weekday is None:
        return None
    if not isinstance(weekday, int) or isinstance(weekday, bool) or not 0 <= weekday <= 6:
        raise ValidationError("Weekday must be between 0 (Sunday) and 6 (Saturday)",
                              details={'field': field_name})
    return weekday


class RecurrenceService:
    """Recurrence request workflow"""

    def __init__(self, store: EngagementStore, setting_service: SettingService,
                 dispatcher: NotificationDispatcher):
        self.store = store
        self.setting_service = setting_service
        self.dispatcher = dispatcher

    def get_unavailable_weekdays(self) -> List[int]:
        """
        Weekdays that cannot be requested: the admin's blocked weekdays plus
        the weekdays already promised to other recurring customers.
        """
        unavailable = set(self.setting_service.get_blocked_recurrence_weekdays())
        for engagement in self.store.engagements.find_with_recurrence_rule():
            unavailable |= weekdays_from_rule(engagement.recurrence_rule)
        return sorted(unavailable)

    def submit_request(self, engagement_id: str, owner_id: int, frequency_days: int,
                       requested_weekday: Optional[int] = None):
        """
        Store a pending recurrence request and tell the admins.

        Raises:
            NotFound: Engagement missing or not owned by the caller
            ValidationError: Bad frequency or weekday
            WeekdayUnavailable: Weekday is taken; carries the unavailable set
            InvalidTransition: Engagement is canceled
        """
        frequency_days = _validate_frequency(frequency_days)
        requested_weekday = _validate_weekday(requested_weekday)

        with self.store.transaction():
            engagement = self.store.engagements.get_for_owner(engagement_id, owner_id)
            if engagement is None:
                raise NotFound("Engagement not found", details={'engagement_id': engagement_id})
            if engagement.status == EngagementStatus.CANCELED:
                raise InvalidTransition('request_recurrence', engagement.status.value,
                                        "Recurring service cannot be requested for a canceled engagement")

            if requested_weekday is not None:
                unavailable = self.get_unavailable_weekdays()
                if requested_weekday in unavailable:
                    logger.info("Recurrence weekday rejected", engagement_id=engagement_id,
                                weekday=requested_weekday, unavailable=unavailable)
                    raise WeekdayUnavailable(requested_weekday, unavailable)

            request = self.store.recurrence_requests.create(
                engagement_id=engagement.id,
                owner_id=owner_id,
                frequency_days=frequency_days,
                requested_weekday=requested_weekday,
                status=RecurrenceRequestStatus.PENDING,
            )

        logger.info("Recurrence requested", request_id=request.id, engagement_id=engagement.id,
                    frequency_days=frequency_days, weekday=requested_weekday)

        self.dispatcher.dispatch(self.dispatcher.notify_admins(
            'recurrence_request_new',
            {
                'requestId': request.id,
                'engagementId': engagement.id,
                'title': engagement.title,
                'frequencyDays': frequency_days,
                'weekday': requested_weekday,
            },
            NEW_REQUEST_CHANNELS,
        ))
        return request

    def list_pending_requests(self):
        return self.store.recurrence_requests.find_pending()

    def list_requests_for_engagement(self, engagement_id: str, owner_id: Optional[int] = None):
        if owner_id is None:
            engagement = self.store.engagements.get_by_id(engagement_id)
        else:
            engagement = self.store.engagements.get_for_owner(engagement_id, owner_id)
        if engagement is None:
            raise NotFound("Engagement not found", details={'engagement_id': engagement_id})
        return self.store.recurrence_requests.find_by_engagement_id(engagement_id)

    def accept_request(self, request_id: int, actor_id: Optional[int] = None):
        """Accept the latest pending request and record the rule on the engagement"""
        def record_rule(request, engagement):
            current = engagement.status
            if current == EngagementStatus.CANCELED:
                raise InvalidTransition('accept_recurrence', current.value)
            fields = {'recurrence_rule': build_recurrence_rule(request.frequency_days, request.requested_weekday)}
            pattern = pattern_for_frequency(request.frequency_days)
            if pattern is not None:
                fields['recurrence_pattern'] = pattern
            if not self.store.engagements.compare_and_set_status(engagement.id, current, current, **fields):
                raise InvalidTransition('accept_recurrence', current.value)

        return self._resolve(request_id, RecurrenceRequestStatus.ACCEPTED, actor_id, on_engagement=record_rule)

    def decline_request(self, request_id: int, actor_id: Optional[int] = None):
        return self._resolve(request_id, RecurrenceRequestStatus.DECLINED, actor_id)

    def counter_request(self, request_id: int, frequency_days: int, weekday: Optional[int] = None,
                        actor_id: Optional[int] = None):
        """Close the request with the admin's proposed terms attached"""
        frequency_days = _validate_frequency(frequency_days, 'frequency_days')
        weekday = _validate_weekday(weekday, 'weekday')
        return self._resolve(request_id, RecurrenceRequestStatus.COUNTERED, actor_id,
                             fields={'counter_frequency_days': frequency_days, 'counter_weekday': weekday})

    def _resolve(self, request_id: int, new_status: RecurrenceRequestStatus, actor_id: Optional[int],
                 fields: Optional[Dict[str, Any]] = None, on_engagement=None):
        action = f"{new_status.value}_recurrence"
        with self.store.transaction():
            request = self.store.recurrence_requests.get_by_id(request_id)
            if request is None:
                raise NotFound("Recurrence request not found", details={'request_id': request_id})

            if request.status != RecurrenceRequestStatus.PENDING:
                raise InvalidTransition(action, request.status.value)

            latest = self.store.recurrence_requests.find_latest_for_engagement(request.engagement_id)
            if latest is not None and latest.id != request.id:
                raise InvalidTransition(action, request.status.value,
                                        "A newer recurrence request exists for this engagement")

            engagement = request.engagement
            if on_engagement is not None:
                on_engagement(request, engagement)

            if not self.store.recurrence_requests.compare_and_set_status(
                    request.id, RecurrenceRequestStatus.PENDING, new_status, **(fields or {})):
                self.store.session.refresh(request)
                raise InvalidTransition(action, request.status.value)

        logger.info("Recurrence request resolved", request_id=request.id,
                    engagement_id=request.engagement_id, status=new_status.value, actor_id=actor_id)

        data = {
            'requestId': request.id,
            'engagementId': request.engagement_id,
            'status': new_status.value,
            'frequencyDays': request.frequency_days,
            'weekday': request.requested_weekday,
        }
        if new_status == RecurrenceRequestStatus.COUNTERED:
            data['counterFrequencyDays'] = request.counter_frequency_days
            data['counterWeekday'] = request.counter_weekday
        self.dispatcher.dispatch([NotificationMessage(
            type='recurrence_request_response',
            recipient_id=request.owner_id,
            data=data,
            channels=RESPONSE_CHANNELS,
        )])
        return request
