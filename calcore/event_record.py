"""
Canonical event record and input normalization.

EventRecord is the one event shape the engine works with. Records are frozen:
they are created only by normalize(), replaced (never edited in place)
through the EventStore, and carry both the wall-clock values the user entered
and the derived UTC instants.

normalize() is the single validating parse function. It accepts the loose
shapes callers send (camelCase or snake_case keys, singular or plural
categories, datetimes, dates or ISO strings) and either returns a canonical
record or raises ValidationError listing every problem found.
"""

import dataclasses
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Mapping, Optional, Union

from icalendar.prop import vRecur

from .errors import ValidationError
from .timezone_utils import (
    UTC_NAME, as_utc, resolve_timezone, to_utc, to_wall_clock, zone_name
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Attendee:
    """An event participant."""
    email: str
    name: Optional[str] = None
    response_status: Optional[str] = None  # "accepted", "tentative", "declined", "needsAction"

    def to_dict(self) -> dict:
        return {
            'email': self.email,
            'name': self.name,
            'response_status': self.response_status,
        }


@dataclass(frozen=True)
class Reminder:
    """Notify `minutes_before` minutes ahead of the start via `method`."""
    method: str = "popup"  # "popup" or "email"
    minutes_before: int = 15

    def to_dict(self) -> dict:
        return {'method': self.method, 'minutes_before': self.minutes_before}


@dataclass(frozen=True)
class EventRecord:
    """
    A validated calendar event.

    start/end are naive wall-clock datetimes in time_zone; start_utc/end_utc
    are the matching aware UTC instants. For all-day events start is local
    midnight and end, when present, is local midnight of the last day.
    """
    title: str
    start: datetime
    start_utc: datetime
    time_zone: str = UTC_NAME
    id: Optional[str] = None
    description: Optional[str] = None
    end: Optional[datetime] = None
    end_utc: Optional[datetime] = None
    all_day: bool = False
    location: Optional[str] = None
    attendees: tuple[Attendee, ...] = ()
    categories: tuple[str, ...] = ()
    reminders: tuple[Reminder, ...] = ()
    recurrence_rule: Optional[str] = None
    status: Optional[str] = None

    # ==================== Derived Properties ====================

    @property
    def recurring(self) -> bool:
        """True iff the event has a recurrence rule."""
        return bool(self.recurrence_rule)

    @property
    def category(self) -> Optional[str]:
        """First category, for callers still using the singular field."""
        return self.categories[0] if self.categories else None

    @property
    def duration(self) -> timedelta:
        start, end = self.interval()
        return end - start

    def interval(self) -> tuple[datetime, datetime]:
        """
        Effective half-open UTC interval [start, end).

        Timed events without an end are zero-duration instants. All-day events
        span whole local days in their own zone, through the last day.
        """
        if self.all_day:
            last_day = (self.end or self.start).date()
            day_after = datetime.combine(last_day, time()) + timedelta(days=1)
            return self.start_utc, to_utc(day_after, self.time_zone)
        return self.start_utc, self.end_utc or self.start_utc

    def local_dates(self) -> list[date]:
        """Wall-clock dates the event covers in its own zone."""
        first = self.start.date()
        if not self.all_day or self.end is None:
            return [first]
        last = self.end.date()
        return [first + timedelta(days=n) for n in range((last - first).days + 1)]

    def start_in_timezone(self, zone: str) -> datetime:
        """The start instant rendered as an aware datetime in another zone."""
        return self.start_utc.astimezone(resolve_timezone(zone))

    def with_id(self, event_id: str) -> 'EventRecord':
        """Copy of this record carrying a store-assigned id."""
        return dataclasses.replace(self, id=event_id)

    def to_dict(self) -> dict:
        """Plain mapping of the record; normalize() accepts it back."""
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'start': self.start,
            'end': self.end,
            'all_day': self.all_day,
            'location': self.location,
            'attendees': [a.to_dict() for a in self.attendees],
            'categories': list(self.categories),
            'reminders': [r.to_dict() for r in self.reminders],
            'recurrence_rule': self.recurrence_rule,
            'time_zone': self.time_zone,
            'status': self.status,
        }


# ==================== Normalization ====================

class CategorySource(Enum):
    """Which category field the raw input carried."""
    PLURAL = "plural"
    SINGULAR = "singular"
    NONE = "none"


# Accepted spellings for each canonical key, first match wins
_ALIASES = {
    'id': ('id', 'uid'),
    'title': ('title', 'summary'),
    'description': ('description',),
    'start': ('start',),
    'end': ('end',),
    'all_day': ('all_day', 'allDay'),
    'location': ('location',),
    'attendees': ('attendees',),
    'reminders': ('reminders',),
    'recurrence_rule': ('recurrence_rule', 'recurrenceRule', 'recurrence', 'rrule'),
    'time_zone': ('time_zone', 'timeZone', 'timezone'),
    'status': ('status',),
}

_IGNORED_KEYS = {'categories', 'category', 'recurring', 'start_utc', 'end_utc', 'startUTC', 'endUTC'}


def _pick(raw: Mapping[str, Any], key: str) -> Any:
    for alias in _ALIASES[key]:
        if alias in raw:
            return raw[alias]
    return None


def resolve_categories(raw: Mapping[str, Any]) -> tuple[CategorySource, tuple[str, ...]]:
    """
    Fold singular/plural category input into one tagged outcome.

    'categories' wins when both are present; a lone 'category' becomes a
    one-element tuple; neither gives an empty tuple.
    """
    if raw.get('categories') is not None:
        source, values = CategorySource.PLURAL, raw['categories']
        if isinstance(values, str):
            values = [values]
    elif raw.get('category') is not None:
        source, values = CategorySource.SINGULAR, [raw['category']]
    else:
        return CategorySource.NONE, ()

    seen = []
    for value in values:
        text = str(value).strip()
        if text and text not in seen:
            seen.append(text)
    return source, tuple(seen)


def _coerce_datetime(value: Any, zone: str) -> tuple[datetime, bool, Optional[datetime]]:
    """
    Turn a start/end value into a naive wall clock in zone.

    Returns:
        (wall_clock, was_date_only, instant). instant is the UTC instant of
        an aware input and None otherwise.

    Raises:
        ValueError: if the value is not a date, datetime or ISO-8601 string.
    """
    if isinstance(value, str):
        text = value.strip()
        if len(text) == 10:
            value = date.fromisoformat(text)
        else:
            value = datetime.fromisoformat(text)

    if isinstance(value, datetime):
        value = value.replace(microsecond=0)
        if value.tzinfo is not None:
            instant = as_utc(value)
            return to_wall_clock(instant, zone), False, instant
        return value, False, None
    if isinstance(value, date):
        return datetime.combine(value, time()), True, None
    raise ValueError(f"expected a date, datetime or ISO-8601 string, got {type(value).__name__}")


def _pin(wall: datetime, instant: Optional[datetime], tz, all_day: bool) -> tuple[datetime, datetime]:
    """
    Settle a wall clock and its UTC instant.

    Aware input keeps its instant, so the repeated hour at a DST fall-back is
    not moved. A wall clock inside a spring-forward gap is stored as the
    wall clock it actually renders to. All-day values stay at midnight.
    """
    if all_day:
        return wall, to_utc(wall, tz)
    if instant is None:
        instant = to_utc(wall, tz)
    return to_wall_clock(instant, tz), instant


def _coerce_attendees(values: Any, problems: list[str]) -> tuple[Attendee, ...]:
    if values is None:
        return ()
    if isinstance(values, (str, Mapping, Attendee)):
        values = [values]
    if not isinstance(values, Iterable):
        problems.append("attendees must be a list")
        return ()

    attendees = []
    for index, value in enumerate(values):
        if isinstance(value, Attendee):
            attendees.append(value)
            continue
        if isinstance(value, str):
            value = {'email': value}
        if not isinstance(value, Mapping):
            problems.append(f"attendee #{index + 1} is not a mapping or email address")
            continue
        email = value.get('email')
        if email is not None and not isinstance(email, str):
            problems.append(f"attendee #{index + 1} has a non-text email {email!r}")
            continue
        email = (email or '').strip()
        if not email:
            problems.append(f"attendee #{index + 1} has no email")
            continue
        name = value.get('name')
        status = value.get('response_status', value.get('responseStatus'))
        attendees.append(Attendee(email=email, name=str(name) if name else None,
                                  response_status=str(status) if status else None))
    return tuple(attendees)


def _coerce_reminders(values: Any, problems: list[str]) -> tuple[Reminder, ...]:
    if values is None:
        return ()
    if isinstance(values, (Mapping, Reminder)):
        values = [values]
    if isinstance(values, str) or not isinstance(values, Iterable):
        problems.append("reminders must be a list")
        return ()

    reminders = []
    for index, value in enumerate(values):
        if isinstance(value, Reminder):
            reminders.append(value)
            continue
        if not isinstance(value, Mapping):
            problems.append(f"reminder #{index + 1} is not a mapping")
            continue
        minutes = value.get('minutes_before', value.get('minutesBefore', 15))
        if isinstance(minutes, bool) or not isinstance(minutes, int) or minutes < 0:
            problems.append(f"reminder #{index + 1} has invalid minutes_before {minutes!r}")
            continue
        reminders.append(Reminder(method=str(value.get('method') or 'popup'), minutes_before=minutes))
    return tuple(reminders)


def canonical_rule(rule: Optional[str]) -> Optional[str]:
    """
    RRULE text with its parts in icalendar's canonical order.

    Rules icalendar cannot parse are kept as given, stripped.
    """
    if not rule or not rule.strip():
        return None
    rule = rule.strip()
    if rule.upper().startswith('RRULE:'):
        rule = rule[6:]
    try:
        text = vRecur.from_ical(rule).to_ical().decode('utf-8')
    except ValueError:
        logger.debug("Keeping unparseable recurrence rule %r as given", rule)
        return rule
    return text or rule


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value)
    return text if text.strip() else None


def normalize(
    raw: Union[Mapping[str, Any], EventRecord],
    default_timezone: str = UTC_NAME
) -> EventRecord:
    """
    Validate raw event input and build a canonical EventRecord.

    Args:
        raw: Mapping of event fields (camelCase or snake_case), or an existing
            record to re-normalize.
        default_timezone: Zone used when the input names none.

    Returns:
        A frozen EventRecord. Its id is whatever the input carried (possibly
        None); the store assigns one on add.

    Raises:
        ValidationError: empty title, missing/unparseable start, end before
            start, or malformed attendees/reminders.
    """
    if isinstance(raw, EventRecord):
        raw = _pinned_fields(raw)
    if not isinstance(raw, Mapping):
        raise ValidationError([f"event input must be a mapping, got {type(raw).__name__}"])

    for key in raw:
        if key not in _IGNORED_KEYS and not any(key in names for names in _ALIASES.values()):
            logger.debug("Ignoring unknown event field '%s'", key)

    problems: list[str] = []
    event_id = _pick(raw, 'id')
    source = f"event {event_id}" if event_id is not None else None

    title = _pick(raw, 'title')
    title = str(title).strip() if title is not None else ''
    if not title:
        problems.append("title must not be empty")

    tz = resolve_timezone(_pick(raw, 'time_zone') or default_timezone)
    time_zone = zone_name(tz)

    start = start_is_date = start_instant = None
    raw_start = _pick(raw, 'start')
    if raw_start is None:
        problems.append("start is required")
    else:
        try:
            start, start_is_date, start_instant = _coerce_datetime(raw_start, time_zone)
        except ValueError as e:
            problems.append(f"start is not a valid date/time: {e}")

    end = end_instant = None
    raw_end = _pick(raw, 'end')
    if raw_end is not None:
        try:
            end, _, end_instant = _coerce_datetime(raw_end, time_zone)
        except ValueError as e:
            problems.append(f"end is not a valid date/time: {e}")

    all_day = _pick(raw, 'all_day')
    if all_day is None:
        all_day = bool(start_is_date)
    all_day = bool(all_day)

    if all_day:
        # Whole days only; end is the (inclusive) last day
        if start is not None:
            start = datetime.combine(start.date(), time())
        if end is not None:
            end = datetime.combine(end.date(), time())
            if start is not None and end == start:
                end = None

    start_utc = end_utc = None
    if start is not None:
        start, start_utc = _pin(start, start_instant, tz, all_day)
    if end is not None:
        end, end_utc = _pin(end, end_instant, tz, all_day)

    if start_utc is not None and end_utc is not None and end_utc < start_utc:
        problems.append(f"end ({end.isoformat()}) is before start ({start.isoformat()})")

    attendees = _coerce_attendees(_pick(raw, 'attendees'), problems)
    reminders = _coerce_reminders(_pick(raw, 'reminders'), problems)
    try:
        _, categories = resolve_categories(raw)
    except TypeError:
        problems.append("categories must be a string or a list of strings")

    if problems:
        raise ValidationError(problems, source=source)

    rule = _clean_text(_pick(raw, 'recurrence_rule'))
    status = _clean_text(_pick(raw, 'status'))

    return EventRecord(
        id=str(event_id) if event_id is not None else None,
        title=title,
        description=_clean_text(_pick(raw, 'description')),
        start=start,
        start_utc=start_utc,
        end=end,
        end_utc=end_utc,
        all_day=all_day,
        location=_clean_text(_pick(raw, 'location')),
        attendees=attendees,
        categories=categories,
        reminders=reminders,
        recurrence_rule=canonical_rule(rule),
        time_zone=time_zone,
        status=status.strip().upper() if status else None,
    )


def overlaps_range(record: EventRecord, start: datetime, end: datetime) -> bool:
    """
    Whether a record's effective interval overlaps the half-open range [start, end).

    Zero-duration records overlap when their instant lies inside the range.
    start and end must be aware datetimes.
    """
    rec_start, rec_end = record.interval()
    if rec_start == rec_end:
        return start <= rec_start < end
    return rec_start < end and start < rec_end


def _pinned_fields(record: EventRecord) -> dict:
    """record.to_dict() with timed start/end as aware values in the record's zone."""
    fields = record.to_dict()
    if not record.all_day:
        tz = resolve_timezone(record.time_zone)
        fields['start'] = record.start_utc.astimezone(tz)
        if record.end_utc is not None:
            fields['end'] = record.end_utc.astimezone(tz)
    return fields


def merge_changes(record: EventRecord, changes: Mapping[str, Any]) -> dict:
    """
    Overlay partial changes on a record's fields.

    Any spelling of a key in changes replaces the stored value. A lone
    'category' replaces the stored categories. Unchanged start/end keep
    their exact instants unless the zone changes, in which case they keep
    their wall clocks.

    Returns:
        A raw mapping ready for normalize().
    """
    zone_changed = any(key in _ALIASES['time_zone'] for key in changes)
    merged = record.to_dict() if zone_changed else _pinned_fields(record)
    for key in changes:
        for canonical, names in _ALIASES.items():
            if key in names:
                merged.pop(canonical, None)
    if 'category' in changes and 'categories' not in changes:
        merged.pop('categories', None)
    merged.update(changes)
    return merged
