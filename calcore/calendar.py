"""
Calendar facade.

Composes the store, timezone manager, search engine and iCalendar codec behind
one object and owns the default timezone. Surrounding code (views, sync
workers, scripts) talks to this class only.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Iterable, Mapping, Optional, Union

import recurring_ical_events

from .config import Config
from .conflicts import Conflict, detect_conflicts
from .errors import EventNotFoundError
from .event_record import EventRecord, merge_changes, normalize
from .event_search import EventSearch
from .event_store import EventStore
from .ics_codec import ICSCodec, ImportResult, ValidationResult
from .timezone_utils import TimezoneInfo, TimezoneManager, as_utc, to_utc


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Occurrence:
    """One concrete instance of a (possibly recurring) event."""
    record: EventRecord
    start_utc: datetime
    end_utc: datetime

    @property
    def id(self) -> Optional[str]:
        return self.record.id


class Calendar:
    """
    In-memory calendar engine.

    Each instance holds its own default timezone and store; nothing is shared
    between instances.
    """

    def __init__(self, time_zone: Optional[str] = None, config: Optional[Config] = None):
        """
        Initialize the calendar.

        Args:
            time_zone: Default zone for input without one; overrides the config.
            config: Engine configuration; defaults to built-in defaults.
        """
        self.config = config or Config()

        self.timezones = TimezoneManager(
            cache_size=self.config.timezone.offset_cache_size,
            common_timezones=self.config.timezone.common_timezones,
        )
        self._time_zone = self.timezones.normalize_zone(
            time_zone or self.config.general.default_timezone
        )

        self.store = EventStore(id_prefix=self.config.general.id_prefix)
        self.search_engine = EventSearch(
            self.store,
            default_timezone=self._time_zone,
            default_fields=self.config.search.default_fields,
            suggestion_limit=self.config.search.suggestion_limit,
        )
        self.codec = ICSCodec(
            self.store,
            prodid=self.config.ics.prodid,
            calendar_name=self.config.ics.calendar_name,
        )

    # ==================== Timezone ====================

    def get_timezone(self) -> str:
        return self._time_zone

    def set_timezone(self, zone: str) -> str:
        """
        Change the default zone. Existing records keep their own zones.

        Returns:
            The zone actually set ('UTC' if the name was unknown).
        """
        self._time_zone = self.timezones.normalize_zone(zone)
        self.search_engine.default_timezone = self._time_zone
        logger.debug("Default timezone set to %s", self._time_zone)
        return self._time_zone

    def get_timezones(self, at: Optional[datetime] = None) -> list[TimezoneInfo]:
        return self.timezones.get_timezones(at)

    def format_in_timezone(
        self,
        instant: datetime,
        zone: Optional[str] = None,
        fmt: Optional[str] = None
    ) -> str:
        return self.timezones.format_in_timezone(instant, zone or self._time_zone, fmt)

    def convert_timezone(self, instant: datetime, from_zone: str, to_zone: str) -> datetime:
        return self.timezones.convert_timezone(instant, from_zone, to_zone)

    # ==================== Events ====================

    def add_event(self, raw: Union[Mapping[str, Any], EventRecord]) -> str:
        """
        Validate and store an event.

        Returns:
            The event id (assigned when the input has none).

        Raises:
            ValidationError: if the input is invalid.
            DuplicateEventError: if the id is already taken.
        """
        record = self.store.add(normalize(raw, default_timezone=self._time_zone))
        return record.id

    def update_event(self, event_id: str, changes: Mapping[str, Any]) -> EventRecord:
        """
        Apply partial changes to a stored event.

        Raises:
            EventNotFoundError: if the id is unknown.
            ValidationError: if the changed event is invalid; the stored one
                is left untouched.
        """
        existing = self.store.get(event_id)
        if existing is None:
            raise EventNotFoundError(event_id)
        merged = merge_changes(existing, changes)
        merged.pop('uid', None)
        merged['id'] = event_id
        return self.store.update(normalize(merged, default_timezone=existing.time_zone))

    def remove_event(self, event_id: str) -> bool:
        """Remove an event. Returns False if it was not stored."""
        return self.store.remove(event_id) is not None

    def get_event(self, event_id: str) -> Optional[EventRecord]:
        return self.store.get(event_id)

    def get_events(self) -> list[EventRecord]:
        """All events ordered by start instant."""
        return self.store.get_all_events()

    def get_events_for_date(
        self,
        day: Union[date, datetime],
        time_zone: Optional[str] = None
    ) -> list[EventRecord]:
        """Events on a local date in time_zone (default: the calendar's zone)."""
        return self.store.get_events_for_date(day, time_zone or self._time_zone)

    def get_events_in_range(self, start: datetime, end: datetime) -> list[EventRecord]:
        return self.store.get_events_in_range(start, end)

    def clear(self) -> None:
        self.store.clear()

    # ==================== Search ====================

    def search(self, query: str, fields: Optional[Iterable[str]] = None,
               fuzzy: bool = False) -> list[EventRecord]:
        return self.search_engine.search(query, fields=fields, fuzzy=fuzzy)

    def filter(self, criteria: Any = None, **kwargs) -> list[EventRecord]:
        return self.search_engine.filter(criteria, **kwargs)

    def advanced_search(self, text: str, criteria: Any = None,
                        fields: Optional[Iterable[str]] = None,
                        fuzzy: bool = False, **kwargs) -> list[EventRecord]:
        return self.search_engine.advanced_search(text, criteria, fields=fields,
                                                  fuzzy=fuzzy, **kwargs)

    def get_suggestions(self, prefix: str, field: str = 'title',
                        limit: Optional[int] = None) -> list[str]:
        return self.search_engine.get_suggestions(prefix, field=field, limit=limit)

    def get_unique_values(self, field: str) -> list[Any]:
        return self.search_engine.get_unique_values(field)

    def group_by(self, field: str, sort_groups: bool = False,
                 sort_events: bool = False) -> dict[Any, list[EventRecord]]:
        return self.search_engine.group_by(field, sort_groups=sort_groups,
                                           sort_events=sort_events)

    # ==================== iCalendar ====================

    def export_ics(self, records: Optional[Iterable[EventRecord]] = None,
                   calendar_name: Optional[str] = None) -> str:
        return self.codec.export(records, calendar_name=calendar_name)

    def validate_ics(self, ics_text: str) -> ValidationResult:
        return self.codec.validate(ics_text)

    async def import_ics(
        self,
        ics_text: str,
        default_timezone: Optional[str] = None,
        should_cancel: Optional[Callable[[], bool]] = None
    ) -> ImportResult:
        """
        Merge iCalendar text into this calendar.

        Floating date-times are read in default_timezone, or the calendar's
        zone when none is given.
        """
        return await self.codec.import_ics(
            ics_text,
            default_timezone=default_timezone or self._time_zone,
            should_cancel=should_cancel,
        )

    # ==================== Conflicts & Recurrence ====================

    def detect_conflicts(self, records: Optional[Iterable[EventRecord]] = None) -> list[Conflict]:
        """Overlapping pairs among records (default: every stored event)."""
        if records is None:
            records = self.store.get_all_events()
        return detect_conflicts(records)

    def get_occurrences(self, start: datetime, end: datetime) -> list[Occurrence]:
        """
        Expand events (including RRULE recurrences) into instances within [start, end).

        Naive bounds are read as UTC.
        """
        start, end = as_utc(start), as_utc(end)
        records = self.store.get_all_events()
        by_id = {r.id: r for r in records}
        vcal = self.codec.to_ical_calendar(records)

        occurrences = []
        for component in recurring_ical_events.of(vcal).between(start, end):
            record = by_id.get(str(component.get('UID')))
            if record is None:
                continue
            dtstart = component['DTSTART'].dt
            if isinstance(dtstart, datetime):
                occ_start = as_utc(dtstart)
                occ_end = occ_start + (record.end_utc - record.start_utc if record.end_utc else timedelta(0))
            else:
                days = len(record.local_dates())
                occ_start = to_utc(datetime.combine(dtstart, time()), record.time_zone)
                occ_end = to_utc(datetime.combine(dtstart + timedelta(days=days), time()),
                                 record.time_zone)
            occurrences.append(Occurrence(record=record, start_utc=occ_start, end_utc=occ_end))

        occurrences.sort(key=lambda o: (o.start_utc, o.record.id or ''))
        logger.debug("Expanded %d occurrences between %s and %s", len(occurrences), start, end)
        return occurrences
