"""Shared fixtures for calcore tests."""
import pytest
from datetime import datetime

from calcore.calendar import Calendar
from calcore.event_record import normalize
from calcore.event_store import EventStore


@pytest.fixture
def calendar():
    """A calendar whose default zone is UTC."""
    return Calendar(time_zone="UTC")


@pytest.fixture
def store():
    return EventStore()


@pytest.fixture
def make_record():
    """Build a normalized record from keyword fields."""
    def _make(**fields):
        fields.setdefault('title', 'Event')
        fields.setdefault('start', datetime(2025, 1, 30, 10, 0))
        return normalize(fields)
    return _make


@pytest.fixture
def populated_calendar(calendar):
    """Calendar with a mix of timed, all-day and recurring events."""
    calendar.add_event({
        'id': 'standup',
        'title': 'Team Meeting',
        'description': 'Daily standup with the platform team',
        'start': datetime(2025, 1, 30, 9, 0),
        'end': datetime(2025, 1, 30, 9, 30),
        'location': 'Room A',
        'categories': ['work', 'meeting'],
        'reminders': [{'method': 'popup', 'minutes_before': 10}],
        'attendees': [{'email': 'alice@example.com', 'name': 'Alice'}],
        'recurrence_rule': 'FREQ=DAILY;COUNT=5',
    })
    calendar.add_event({
        'id': 'lunch',
        'title': 'Lunch with Bob',
        'start': datetime(2025, 1, 30, 12, 0),
        'end': datetime(2025, 1, 30, 13, 0),
        'location': 'Cafe',
        'category': 'personal',
        'attendees': ['bob@example.com'],
    })
    calendar.add_event({
        'id': 'offsite',
        'title': 'Company Offsite',
        'start': '2025-02-03',
        'end': '2025-02-04',
        'categories': ['work'],
    })
    return calendar
