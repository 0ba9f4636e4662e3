"""
Text search, filtering and grouping over an EventStore.

Read-only: EventSearch never mutates the store. It keeps a lowercase text and
token index per record, marked stale whenever the store's version changes and
rebuilt on the next search rather than on every mutation.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

import pytz

from .event_record import EventRecord, overlaps_range
from .event_store import EventStore
from .timezone_utils import UTC_NAME, as_utc, localize


logger = logging.getLogger(__name__)

SEARCHABLE_FIELDS = (
    'title', 'description', 'location', 'categories',
    'attendees', 'status', 'recurrence_rule',
)
DEFAULT_SEARCH_FIELDS = ('title', 'description', 'location')

_FIELD_ALIASES = {
    'category': 'categories',
    'recurrence': 'recurrence_rule',
    'recurrenceRule': 'recurrence_rule',
    'allDay': 'all_day',
    'timeZone': 'time_zone',
}

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


def canonical_field(name: str) -> str:
    return _FIELD_ALIASES.get(name, name)


def field_values(record: EventRecord, name: str) -> list[Any]:
    """
    Values of a field for one record, flattened for multi-valued fields.

    Attendees yield their emails; 'date' yields the local start date.
    Missing values give an empty list.
    """
    name = canonical_field(name)
    if name == 'categories':
        return list(record.categories)
    if name == 'attendees':
        return [a.email for a in record.attendees]
    if name == 'date':
        return [record.start.date()]
    if name in ('all_day', 'recurring'):
        return [getattr(record, name)]
    if name in ('title', 'description', 'location', 'status', 'recurrence_rule', 'time_zone', 'id'):
        value = getattr(record, name)
        return [value] if value else []
    raise ValueError(f"Unknown event field: {name}")


def _search_text(record: EventRecord, name: str) -> str:
    if name == 'attendees':
        parts = []
        for attendee in record.attendees:
            if attendee.name:
                parts.append(attendee.name)
            parts.append(attendee.email)
        return "\n".join(parts).lower()
    return "\n".join(str(v) for v in field_values(record, name)).lower()


def max_edits(length: int) -> int:
    """Edit distance tolerated for a query token of the given length."""
    if length <= 2:
        return 0
    if length <= 5:
        return 1
    if length <= 8:
        return 2
    return length // 4


def edit_distance(a: str, b: str, limit: Optional[int] = None) -> int:
    """
    Levenshtein distance between two strings.

    With a limit, returns limit + 1 as soon as the distance is known to exceed it.
    """
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if limit is not None and len(a) - len(b) > limit:
        return limit + 1

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        if limit is not None and min(current) > limit:
            return limit + 1
        previous = current
    return previous[-1]


@dataclass
class _IndexEntry:
    texts: dict[str, str]
    tokens: dict[str, set[str]]


@dataclass
class FilterSpec:
    """
    Structured filter. Every set key must hold; None keys impose nothing.
    """
    categories: Optional[Sequence[str]] = None
    date_range: Any = None  # (start, end) tuple or {'start': ..., 'end': ...}
    all_day: Optional[bool] = None
    has_reminders: Optional[bool] = None
    attendees: Optional[Sequence[str]] = None
    recurring: Optional[bool] = None
    custom: Optional[Callable[[EventRecord], bool]] = None

    _KEYS = {
        'categories': 'categories',
        'category': 'categories',
        'date_range': 'date_range',
        'dateRange': 'date_range',
        'all_day': 'all_day',
        'allDay': 'all_day',
        'has_reminders': 'has_reminders',
        'hasReminders': 'has_reminders',
        'attendees': 'attendees',
        'recurring': 'recurring',
        'custom': 'custom',
    }

    @classmethod
    def from_mapping(cls, criteria: Mapping[str, Any]) -> 'FilterSpec':
        """Build a FilterSpec from a mapping with snake_case or camelCase keys."""
        values = {}
        for key, value in criteria.items():
            if key not in cls._KEYS:
                raise ValueError(f"Unknown filter key: {key}")
            values[cls._KEYS[key]] = value
        return cls(**values)


class EventSearch:
    """
    Search engine over an EventStore.

    Results are always ordered by start instant, then id.
    """

    def __init__(
        self,
        store: EventStore,
        default_timezone: str = UTC_NAME,
        default_fields: Optional[Sequence[str]] = None,
        suggestion_limit: int = 10
    ):
        """
        Initialize the search engine.

        Args:
            store: Store to search
            default_timezone: Zone for naive dates/datetimes in date ranges
            default_fields: Fields searched when search() gets none
            suggestion_limit: Default limit for get_suggestions()
        """
        self.store = store
        self.default_timezone = default_timezone
        self.default_fields = tuple(default_fields or DEFAULT_SEARCH_FIELDS)
        self.suggestion_limit = suggestion_limit

        self._index: dict[str, _IndexEntry] = {}
        self._indexed_version: Optional[int] = None

    # ==================== Index ====================

    @property
    def is_stale(self) -> bool:
        return self._indexed_version != self.store.version

    def _ensure_index(self) -> None:
        if not self.is_stale:
            return
        index = {}
        for record in self.store.get_all_events():
            texts = {name: _search_text(record, name) for name in SEARCHABLE_FIELDS}
            tokens = {name: set(_TOKEN_RE.findall(text)) for name, text in texts.items()}
            index[record.id] = _IndexEntry(texts=texts, tokens=tokens)
        self._index = index
        self._indexed_version = self.store.version
        logger.debug("Rebuilt search index for %d events (store version %d)",
                     len(index), self._indexed_version)

    # ==================== Text Search ====================

    def _resolve_fields(self, fields: Optional[Iterable[str]]) -> list[str]:
        if fields is None:
            return list(self.default_fields)
        if isinstance(fields, str):
            fields = [fields]
        resolved = []
        for name in fields:
            name = canonical_field(name)
            if name not in SEARCHABLE_FIELDS:
                raise ValueError(f"Unknown search field: {name}")
            resolved.append(name)
        return resolved

    @staticmethod
    def _token_matches(query_token: str, tokens: set[str]) -> bool:
        allowed = max_edits(len(query_token))
        for token in tokens:
            if query_token in token:
                return True
            if allowed and edit_distance(query_token, token, allowed) <= allowed:
                return True
        return False

    def _matches(self, entry: _IndexEntry, query: str, query_tokens: list[str],
                 fields: list[str], fuzzy: bool) -> bool:
        if any(query in entry.texts[name] for name in fields):
            return True
        if not fuzzy or not query_tokens:
            return False
        # Every query token must match somewhere in the selected fields
        return all(
            any(self._token_matches(qt, entry.tokens[name]) for name in fields)
            for qt in query_tokens
        )

    def search(
        self,
        query: str,
        fields: Optional[Iterable[str]] = None,
        fuzzy: bool = False
    ) -> list[EventRecord]:
        """
        Find records whose fields contain the query.

        Args:
            query: Text to look for. Empty text matches every record.
            fields: Fields to search (default: title, description, location).
            fuzzy: Also accept token-level matches within a small edit
                distance, so "meetting" finds "Team Meeting".

        Returns:
            Matching records ordered by start.
        """
        fields = self._resolve_fields(fields)
        query = (query or '').strip().lower()
        if not query:
            return self.store.get_all_events()

        self._ensure_index()
        query_tokens = _TOKEN_RE.findall(query)
        return [
            record for record in self.store.get_all_events()
            if self._matches(self._index[record.id], query, query_tokens, fields, fuzzy)
        ]

    # ==================== Filtering ====================

    def _to_instant(self, value: Any) -> Optional[datetime]:
        if value is None:
            return None
        if isinstance(value, datetime):
            if value.tzinfo is None:
                return as_utc(localize(value, self.default_timezone))
            return as_utc(value)
        if isinstance(value, date):
            return as_utc(localize(datetime(value.year, value.month, value.day), self.default_timezone))
        if isinstance(value, str):
            return self._to_instant(datetime.fromisoformat(value))
        raise ValueError(f"Invalid date range bound: {value!r}")

    def _range_bounds(self, date_range: Any) -> tuple[datetime, datetime]:
        if isinstance(date_range, Mapping):
            start, end = date_range.get('start'), date_range.get('end')
        else:
            start, end = date_range
        start = self._to_instant(start) or datetime.min.replace(tzinfo=pytz.UTC)
        end = self._to_instant(end) or datetime.max.replace(tzinfo=pytz.UTC)
        return start, end

    def _predicates(self, spec: FilterSpec) -> list[Callable[[EventRecord], bool]]:
        checks = []

        if spec.categories is not None:
            wanted = {spec.categories} if isinstance(spec.categories, str) else set(spec.categories)
            checks.append(lambda r: bool(wanted.intersection(r.categories)))

        if spec.date_range is not None:
            range_start, range_end = self._range_bounds(spec.date_range)
            checks.append(lambda r: overlaps_range(r, range_start, range_end))

        if spec.all_day is not None:
            checks.append(lambda r: r.all_day == bool(spec.all_day))

        if spec.has_reminders is not None:
            checks.append(lambda r: bool(r.reminders) == bool(spec.has_reminders))

        if spec.attendees is not None:
            emails = [spec.attendees] if isinstance(spec.attendees, str) else spec.attendees
            emails = {e.lower() for e in emails}
            checks.append(lambda r: any(a.email.lower() in emails for a in r.attendees))

        if spec.recurring is not None:
            checks.append(lambda r: r.recurring == bool(spec.recurring))

        if spec.custom is not None:
            checks.append(spec.custom)

        return checks

    def filter(self, criteria: Any = None, **kwargs) -> list[EventRecord]:
        """
        Get records satisfying every given criterion.

        Criteria may be a FilterSpec, a mapping, or keyword arguments:
        categories (any shared), date_range (half-open overlap), all_day,
        has_reminders, attendees (any listed email), recurring, and custom
        (a predicate over a record).

        Example:
            search.filter(categories=['meeting'], has_reminders=True)
        """
        if isinstance(criteria, FilterSpec):
            spec = criteria
        else:
            merged = dict(criteria or {})
            merged.update(kwargs)
            spec = FilterSpec.from_mapping(merged)

        checks = self._predicates(spec)
        return [r for r in self.store.get_all_events() if all(check(r) for check in checks)]

    def advanced_search(
        self,
        text: str,
        criteria: Any = None,
        fields: Optional[Iterable[str]] = None,
        fuzzy: bool = False,
        **kwargs
    ) -> list[EventRecord]:
        """Records matching both the text search and the filter."""
        matched = {r.id for r in self.search(text, fields=fields, fuzzy=fuzzy)}
        return [r for r in self.filter(criteria, **kwargs) if r.id in matched]

    # ==================== Values & Grouping ====================

    def get_suggestions(
        self,
        prefix: str,
        field: str = 'title',
        limit: Optional[int] = None
    ) -> list[str]:
        """
        Autocomplete values of a field that start with prefix (case-insensitive).

        Values come in first-seen order over the start-ordered records.
        """
        limit = self.suggestion_limit if limit is None else limit
        prefix = (prefix or '').lower()
        suggestions: list[str] = []
        if limit <= 0:
            return suggestions

        for record in self.store.get_all_events():
            for value in field_values(record, field):
                text = str(value)
                if text.lower().startswith(prefix) and text not in suggestions:
                    suggestions.append(text)
                    if len(suggestions) >= limit:
                        return suggestions
        return suggestions

    def get_unique_values(self, field: str) -> list[Any]:
        """Distinct values of a field across the store, first-seen order."""
        seen: list[Any] = []
        for record in self.store.get_all_events():
            for value in field_values(record, field):
                if value not in seen:
                    seen.append(value)
        return seen

    def group_by(
        self,
        field: str,
        sort_groups: bool = False,
        sort_events: bool = False
    ) -> dict[Any, list[EventRecord]]:
        """
        Partition records by a field's value.

        Records with several values (e.g. categories) appear in each of their
        groups; records with none are grouped under None.

        Args:
            field: Field to group by ('categories', 'location', 'date', ...)
            sort_groups: Order groups by key (None last) instead of first-seen
            sort_events: Order each group by start instead of insertion order
        """
        groups: dict[Any, list[EventRecord]] = {}
        for record in self.store.values():
            keys = field_values(record, field) or [None]
            for key in keys:
                groups.setdefault(key, []).append(record)

        if sort_events:
            for members in groups.values():
                members.sort(key=lambda r: (r.start_utc, r.id or ''))

        if sort_groups:
            ordered = sorted(groups, key=lambda k: (k is None, k if k is not None else 0))
            groups = {key: groups[key] for key in ordered}
        return groups
