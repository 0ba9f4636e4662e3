"""
Calcore Calendar Engine

This package provides the in-memory calendar data engine:
- Configuration parsing (config.py)
- Event records and input normalization (event_record.py)
- Indexed event store (event_store.py)
- Timezone conversion, offsets and DST (timezone_utils.py)
- Text/fuzzy search, filtering and grouping (event_search.py)
- iCalendar import/export with merge semantics (ics_codec.py)
- Conflict detection (conflicts.py) - backed by interval_tree.py
- Calendar facade (calendar.py) - the one object hosts talk to
"""

from .config import Config
from .errors import (
    CalendarEngineError,
    ValidationError,
    ParseError,
    DuplicateEventError,
    EventNotFoundError,
)
from .event_record import EventRecord, Attendee, Reminder, normalize
from .event_store import EventStore
from .timezone_utils import TimezoneManager, TimezoneInfo
from .event_search import EventSearch, FilterSpec
from .ics_codec import ICSCodec, ImportResult, ImportIssue, ValidationResult
from .conflicts import Conflict, detect_conflicts
from .calendar import Calendar, Occurrence

__all__ = [
    'Config',
    'CalendarEngineError',
    'ValidationError',
    'ParseError',
    'DuplicateEventError',
    'EventNotFoundError',
    'EventRecord',
    'Attendee',
    'Reminder',
    'normalize',
    'EventStore',
    'TimezoneManager',
    'TimezoneInfo',
    'EventSearch',
    'FilterSpec',
    'ICSCodec',
    'ImportResult',
    'ImportIssue',
    'ValidationResult',
    'Conflict',
    'detect_conflicts',
    'Calendar',
    'Occurrence',
]
