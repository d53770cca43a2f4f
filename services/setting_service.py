"""
SettingService - admin-configured portal settings
"""

import json
from typing import Iterable, List, Optional
from repositories.setting_repository import SettingRepository
from services.common.errors import ValidationError
from logging_config import get_logger

logger = get_logger(__name__)

BLOCKED_RECURRENCE_WEEKDAYS_KEY = 'blocked_recurrence_weekdays'


class SettingService:
    """Service for settings business logic with repository pattern"""

    def __init__(self, repository: SettingRepository):
        """Initialize service with repository dependency"""
        self.repository = repository

    def get_value(self, key: str) -> Optional[str]:
        """
        Get a raw setting value by key.

        Raises:
            ValueError: If key is empty or None
        """
        if not key:
            raise ValueError("Setting key cannot be empty")

        setting = self.repository.find_by_key(key)
        return setting.value if setting else None

    def get_blocked_recurrence_weekdays(self) -> List[int]:
        """
        Weekdays (0 = Sunday) on which recurring service is not offered.

        An unreadable stored value is logged and treated as no blocked days.
        """
        raw = self.get_value(BLOCKED_RECURRENCE_WEEKDAYS_KEY)
        if not raw:
            return []
        try:
            values = json.loads(raw)
        except ValueError:
            logger.warning("Unreadable blocked weekday setting", value=raw)
            return []
        if not isinstance(values, list):
            logger.warning("Blocked weekday setting is not a list", value=raw)
            return []
        return sorted({v for v in values if isinstance(v, int) and not isinstance(v, bool) and 0 <= v <= 6})

    def set_blocked_recurrence_weekdays(self, weekdays: Iterable[int]) -> List[int]:
        """
        Store the blocked weekdays.

        Raises:
            ValidationError: If any value is outside 0..6
        """
        weekdays = list(weekdays)
        for day in weekdays:
            if not isinstance(day, int) or isinstance(day, bool) or not 0 <= day <= 6:
                raise ValidationError("Weekdays must be integers between 0 and 6",
                                      details={'weekday': day})
        normalized = sorted(set(weekdays))
        self.repository.upsert(BLOCKED_RECURRENCE_WEEKDAYS_KEY, json.dumps(normalized))
        return normalized
