"""Unit tests for the Calendar facade."""
import asyncio
import pytest
from datetime import date, datetime

import pytz

from calcore.calendar import Calendar, Occurrence
from calcore.config import Config
from calcore.errors import DuplicateEventError, EventNotFoundError, ValidationError


class TestCalendarEvents:
    """Test event management through the facade."""

    def test_add_event_returns_generated_id(self, calendar):
        event_id = calendar.add_event({'title': 'Standup', 'start': '2025-01-30T09:00:00'})

        assert event_id == 'event-1'
        assert calendar.get_event(event_id).title == 'Standup'

    def test_add_event_uses_default_timezone(self):
        calendar = Calendar(time_zone='America/New_York')

        event_id = calendar.add_event({'title': 'Call', 'start': '2024-12-24T23:30:00'})

        record = calendar.get_event(event_id)
        assert record.time_zone == 'America/New_York'
        assert record.start_utc == datetime(2024, 12, 25, 4, 30, tzinfo=pytz.UTC)

    def test_add_invalid_event_raises(self, calendar):
        with pytest.raises(ValidationError):
            calendar.add_event({'title': '', 'start': '2025-01-30T09:00:00'})
        assert calendar.get_events() == []

    def test_duplicate_id_raises(self, calendar):
        calendar.add_event({'id': 'x', 'title': 'A', 'start': '2025-01-30T09:00:00'})

        with pytest.raises(DuplicateEventError):
            calendar.add_event({'id': 'x', 'title': 'B', 'start': '2025-01-30T09:00:00'})

    def test_update_event(self, populated_calendar):
        updated = populated_calendar.update_event('lunch', {'title': 'Lunch with Bob and Ann',
                                                            'location': 'Deli'})

        assert updated.title == 'Lunch with Bob and Ann'
        assert populated_calendar.get_event('lunch').location == 'Deli'
        assert populated_calendar.get_event('lunch').categories == ('personal',)
        assert [r.id for r in populated_calendar.search('deli')] == ['lunch']

    def test_update_singular_category(self, populated_calendar):
        updated = populated_calendar.update_event('standup', {'category': 'focus'})

        assert updated.categories == ('focus',)

    def test_update_invalid_leaves_event(self, populated_calendar):
        with pytest.raises(ValidationError):
            populated_calendar.update_event('lunch', {'end': '2025-01-30T11:00:00'})

        assert populated_calendar.get_event('lunch').end == datetime(2025, 1, 30, 13, 0)

    def test_update_unknown_raises(self, calendar):
        with pytest.raises(EventNotFoundError):
            calendar.update_event('nope', {'title': 'X'})

    def test_remove_event(self, populated_calendar):
        assert populated_calendar.remove_event('lunch') is True
        assert populated_calendar.remove_event('lunch') is False
        assert populated_calendar.get_event('lunch') is None

    def test_clear(self, populated_calendar):
        populated_calendar.clear()

        assert populated_calendar.get_events() == []

    def test_events_for_date_in_calendar_zone(self):
        calendar = Calendar(time_zone='America/New_York')
        calendar.add_event({'id': 'eve', 'title': 'Eve', 'start': '2024-12-24T23:30:00'})

        assert [r.id for r in calendar.get_events_for_date(date(2024, 12, 24))] == ['eve']
        assert calendar.get_events_for_date(date(2024, 12, 25)) == []
        assert [r.id for r in calendar.get_events_for_date(date(2024, 12, 25), 'UTC')] == ['eve']

    def test_events_in_range(self, populated_calendar):
        found = populated_calendar.get_events_in_range(datetime(2025, 2, 1), datetime(2025, 3, 1))

        assert [r.id for r in found] == ['offsite']


class TestCalendarTimezones:
    """Test timezone handling on the facade."""

    def test_set_timezone(self, calendar):
        assert calendar.set_timezone('Asia/Tokyo') == 'Asia/Tokyo'
        assert calendar.get_timezone() == 'Asia/Tokyo'
        assert calendar.search_engine.default_timezone == 'Asia/Tokyo'

    def test_set_unknown_timezone_falls_back(self, calendar):
        assert calendar.set_timezone('Nowhere/Special') == 'UTC'

    def test_instances_do_not_share_zone(self):
        first = Calendar(time_zone='Europe/Paris')
        second = Calendar()
        first.set_timezone('Asia/Tokyo')

        assert second.get_timezone() == 'UTC'

    def test_format_in_timezone_defaults_to_calendar_zone(self):
        calendar = Calendar(time_zone='America/New_York')
        instant = datetime(2025, 7, 4, 16, 0, tzinfo=pytz.UTC)

        assert calendar.format_in_timezone(instant) == '2025-07-04 12:00:00 EDT'
        assert calendar.format_in_timezone(instant, 'UTC', '%H:%M') == '16:00'

    def test_convert_timezone(self, calendar):
        converted = calendar.convert_timezone(datetime(2025, 1, 1, 12, 0), 'UTC', 'Asia/Kolkata')

        assert (converted.hour, converted.minute) == (17, 30)

    def test_get_timezones_uses_config(self):
        config = Config.from_dict({'Timezone': {'common_timezones': [['Asia/Tokyo', 'Tokyo']]}})
        calendar = Calendar(config=config)

        zones = calendar.get_timezones()

        assert [(z.name, z.label, z.offset) for z in zones] == [('Asia/Tokyo', 'Tokyo', 'UTC+09:00')]

    def test_config_default_timezone_and_prefix(self):
        config = Config.from_dict({'General': {'default_timezone': 'Europe/Berlin', 'id_prefix': 'cal'}})
        calendar = Calendar(config=config)

        assert calendar.get_timezone() == 'Europe/Berlin'
        assert calendar.add_event({'title': 'X', 'start': '2025-01-30T10:00:00'}) == 'cal-1'


class TestCalendarInterop:
    """Test search, iCalendar, conflicts and recurrence through the facade."""

    def test_search_surface(self, populated_calendar):
        assert [r.id for r in populated_calendar.search('meetting', fuzzy=True)] == ['standup']
        assert [r.id for r in populated_calendar.filter(all_day=True)] == ['offsite']
        assert populated_calendar.get_unique_values('categories') == ['work', 'meeting', 'personal']
        assert populated_calendar.get_suggestions('te') == ['Team Meeting']
        assert list(populated_calendar.group_by('categories', sort_groups=True)) == ['meeting', 'personal', 'work']
        assert [r.id for r in populated_calendar.advanced_search('bob', categories='personal')] == ['lunch']

    def test_import_uses_calendar_zone_for_floating_times(self):
        calendar = Calendar(time_zone='Europe/Paris')
        text = ("BEGIN:VCALENDAR\r\nVERSION:2.0\r\nPRODID:-//T//T//EN\r\n"
                "BEGIN:VEVENT\r\nUID:f\r\nSUMMARY:F\r\nDTSTART:20250130T090000\r\nEND:VEVENT\r\n"
                "END:VCALENDAR\r\n")

        result = asyncio.run(calendar.import_ics(text))

        assert len(result.imported) == 1
        assert calendar.get_event('f').time_zone == 'Europe/Paris'

    def test_detect_conflicts_defaults_to_store(self, calendar):
        calendar.add_event({'id': 'a', 'title': 'A', 'start': '2025-01-30T10:00:00',
                            'end': '2025-01-30T11:00:00', 'location': 'Room 1'})
        calendar.add_event({'id': 'b', 'title': 'B', 'start': '2025-01-30T10:30:00',
                            'end': '2025-01-30T11:30:00', 'location': 'Room 1'})

        conflicts = calendar.detect_conflicts()

        assert len(conflicts) == 1
        assert conflicts[0].type == 'location'
        assert conflicts[0].event_ids == ('a', 'b')

    def test_get_occurrences_expands_rrule(self, populated_calendar):
        occurrences = populated_calendar.get_occurrences(datetime(2025, 1, 30), datetime(2025, 2, 10))

        standups = [o for o in occurrences if o.id == 'standup']
        assert len(standups) == 5
        assert standups[0].start_utc == datetime(2025, 1, 30, 9, 0, tzinfo=pytz.UTC)
        assert standups[-1].start_utc == datetime(2025, 2, 3, 9, 0, tzinfo=pytz.UTC)
        assert all(o.end_utc - o.start_utc == standups[0].record.duration for o in standups)
        assert isinstance(occurrences[0], Occurrence)

    def test_get_occurrences_all_day(self, populated_calendar):
        occurrences = populated_calendar.get_occurrences(datetime(2025, 2, 3), datetime(2025, 2, 4))

        offsite = [o for o in occurrences if o.id == 'offsite']
        assert len(offsite) == 1
        assert offsite[0].start_utc == datetime(2025, 2, 3, tzinfo=pytz.UTC)
        assert offsite[0].end_utc == datetime(2025, 2, 5, tzinfo=pytz.UTC)
