"""
Tests for recurrence rule helpers
"""

import pytest

from services.enums import RecurrencePattern
from services.recurrence_service import build_recurrence_rule, pattern_for_frequency, weekdays_from_rule


class TestBuildRecurrenceRule:

    def test_without_weekday(self):
        assert build_recurrence_rule(10) == 'FREQ=DAILY;INTERVAL=10'

    @pytest.mark.parametrize('weekday,code', [(0, 'SU'), (2, 'TU'), (6, 'SA')])
    def test_with_weekday(self, weekday, code):
        assert build_recurrence_rule(14, weekday) == f'FREQ=DAILY;INTERVAL=14;BYDAY={code}'


class TestWeekdaysFromRule:

    @pytest.mark.parametrize('rule', [None, '', 'FREQ=DAILY;INTERVAL=3'])
    def test_no_byday(self, rule):
        assert weekdays_from_rule(rule) == set()

    def test_single_day(self):
        assert weekdays_from_rule('FREQ=DAILY;INTERVAL=7;BYDAY=WE') == {3}

    def test_multiple_and_ordinal_days(self):
        assert weekdays_from_rule('FREQ=MONTHLY;BYDAY=1MO,fr') == {1, 5}

    def test_round_trip_of_built_rule(self):
        assert weekdays_from_rule(build_recurrence_rule(21, 4)) == {4}


class TestPatternForFrequency:

    @pytest.mark.parametrize('days,pattern', [
        (1, RecurrencePattern.DAILY),
        (7, RecurrencePattern.WEEKLY),
        (14, RecurrencePattern.WEEKLY),
        (28, RecurrencePattern.WEEKLY),
        (30, RecurrencePattern.MONTHLY),
        (31, RecurrencePattern.MONTHLY),
        (10, None),
        (45, None),
    ])
    def test_mapping(self, days, pattern):
        assert pattern_for_frequency(days) == pattern
