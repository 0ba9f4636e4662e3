"""
Indexed in-memory event store.

Holds EventRecord objects by id plus secondary indices by local date, category
and location. Every mutation updates the primary mapping and all indices in
one non-yielding step, so readers never see them disagree.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Iterator, Optional, Union

from .errors import DuplicateEventError, EventNotFoundError
from .event_record import EventRecord, overlaps_range
from .timezone_utils import UTC_NAME, as_utc, day_bounds, to_wall_clock


logger = logging.getLogger(__name__)

# Any instant's local date is within this many days of its date in any other zone
_MAX_ZONE_DAY_SKEW = 2


def _sort_key(record: EventRecord):
    return (record.start_utc, record.id or '')


class EventStore:
    """
    Repository for EventRecord objects.

    Ids are unique within one store. Records without an id get a monotonic
    one ("event-1", "event-2", ...) on add.
    """

    def __init__(self, id_prefix: str = "event"):
        self._events: dict[str, EventRecord] = {}
        self._by_date: dict[date, set[str]] = {}
        self._by_category: dict[str, set[str]] = {}
        self._by_location: dict[str, set[str]] = {}

        self._id_prefix = id_prefix
        self._next_id = 1
        # Bumped on every mutation; readers compare it to detect stale caches
        self._version = 0

    # ==================== Index Maintenance ====================

    @staticmethod
    def _index_keys(record: EventRecord) -> tuple[list[date], list[str], Optional[str]]:
        return record.local_dates(), list(record.categories), record.location

    def _index(self, record: EventRecord) -> None:
        dates, categories, location = self._index_keys(record)
        for day in dates:
            self._by_date.setdefault(day, set()).add(record.id)
        for category in categories:
            self._by_category.setdefault(category, set()).add(record.id)
        if location:
            self._by_location.setdefault(location, set()).add(record.id)

    @staticmethod
    def _discard(index: dict, key, event_id: str) -> None:
        bucket = index.get(key)
        if bucket is None:
            return
        bucket.discard(event_id)
        if not bucket:
            del index[key]

    def _unindex(self, record: EventRecord) -> None:
        dates, categories, location = self._index_keys(record)
        for day in dates:
            self._discard(self._by_date, day, record.id)
        for category in categories:
            self._discard(self._by_category, category, record.id)
        if location:
            self._discard(self._by_location, location, record.id)

    def _generate_id(self) -> str:
        while True:
            event_id = f"{self._id_prefix}-{self._next_id}"
            self._next_id += 1
            if event_id not in self._events:
                return event_id

    # ==================== Mutation ====================

    def add(self, record: EventRecord, upsert: bool = False) -> EventRecord:
        """
        Add a record to the store.

        Args:
            record: A normalized EventRecord. If its id is None one is assigned.
            upsert: Overwrite (and reindex) an existing record with the same id
                instead of raising.

        Returns:
            The stored record (carrying its id).

        Raises:
            DuplicateEventError: if the id is taken and upsert is False.
        """
        if not isinstance(record, EventRecord):
            raise TypeError(f"EventStore.add expects an EventRecord, got {type(record).__name__}")

        if record.id is None:
            record = record.with_id(self._generate_id())

        existing = self._events.get(record.id)
        if existing is not None and not upsert:
            raise DuplicateEventError(record.id)

        # Nothing below can fail, so the mapping and indices change together
        if existing is not None:
            self._unindex(existing)
        self._events[record.id] = record
        self._index(record)
        self._version += 1

        logger.debug("%s event %s", "Replaced" if existing else "Added", record.id)
        return record

    def update(self, record: EventRecord) -> EventRecord:
        """
        Replace an existing record.

        Raises:
            EventNotFoundError: if no record with that id is stored.
        """
        if record.id is None or record.id not in self._events:
            raise EventNotFoundError(record.id)
        return self.add(record, upsert=True)

    def remove(self, event_id: str) -> Optional[EventRecord]:
        """Remove a record and its index entries. Returns it, or None if unknown."""
        record = self._events.pop(event_id, None)
        if record is None:
            return None
        self._unindex(record)
        self._version += 1
        logger.debug("Removed event %s", event_id)
        return record

    def clear(self) -> None:
        """Remove all records. Id assignment keeps counting."""
        self._events.clear()
        self._by_date.clear()
        self._by_category.clear()
        self._by_location.clear()
        self._version += 1

    # ==================== Queries ====================

    @property
    def version(self) -> int:
        """Mutation counter."""
        return self._version

    def get(self, event_id: str) -> Optional[EventRecord]:
        return self._events.get(event_id)

    def get_all_events(self) -> list[EventRecord]:
        """Snapshot of all records ordered by start instant, then id."""
        return sorted(self._events.values(), key=_sort_key)

    def values(self) -> list[EventRecord]:
        """Records in insertion order (an upsert keeps the original position)."""
        return list(self._events.values())

    def get_events_for_date(
        self,
        day: Union[date, datetime],
        time_zone: str = UTC_NAME
    ) -> list[EventRecord]:
        """
        Get records that fall on a local calendar date in a zone.

        A timed record matches when its start instant, rendered in time_zone,
        has that date. The same instant can belong to different dates in
        different zones. All-day records match on their own wall-clock dates.

        Args:
            day: The date. An aware datetime is first rendered in time_zone;
                a naive datetime contributes only its date.
            time_zone: Zone to evaluate local dates in.

        Returns:
            Matching records ordered by start instant.
        """
        if isinstance(day, datetime):
            if day.tzinfo is not None:
                day = to_wall_clock(day, time_zone)
            day = day.date()

        window_start, window_end = day_bounds(day, time_zone)

        # Local-date buckets of nearby days hold every possible match
        candidate_ids: set[str] = set()
        for delta in range(-_MAX_ZONE_DAY_SKEW, _MAX_ZONE_DAY_SKEW + 1):
            candidate_ids |= self._by_date.get(day + timedelta(days=delta), set())

        matches = []
        for event_id in candidate_ids:
            record = self._events[event_id]
            if record.all_day:
                if day in record.local_dates():
                    matches.append(record)
            elif window_start <= record.start_utc < window_end:
                matches.append(record)
        return sorted(matches, key=_sort_key)

    def get_events_in_range(self, start: datetime, end: datetime) -> list[EventRecord]:
        """
        Get records whose effective interval overlaps [start, end).

        Zero-duration records match when their instant lies in [start, end).
        Naive bounds are read as UTC.
        """
        start, end = as_utc(start), as_utc(end)
        matches = [r for r in self._events.values() if overlaps_range(r, start, end)]
        return sorted(matches, key=_sort_key)

    def get_events_by_category(self, category: str) -> list[EventRecord]:
        ids = self._by_category.get(category, set())
        return sorted((self._events[i] for i in ids), key=_sort_key)

    def get_events_by_location(self, location: str) -> list[EventRecord]:
        ids = self._by_location.get(location, set())
        return sorted((self._events[i] for i in ids), key=_sort_key)

    def categories(self) -> list[str]:
        """All categories currently indexed."""
        return sorted(self._by_category)

    def __len__(self) -> int:
        return len(self._events)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._events

    def __iter__(self) -> Iterator[EventRecord]:
        return iter(self.get_all_events())
