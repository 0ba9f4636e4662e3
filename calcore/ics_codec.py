"""
iCalendar (RFC 5545) import and export for EventRecords.

Export builds icalendar.Calendar/Event components. Import splits the text into
VEVENT blocks with icalendar's content-line parser and converts each block on
its own, so one malformed event never takes the rest of the document down
with it. Parsed events are merged into the store one at a time:
new ids are imported, changed ones updated, identical ones skipped.

Timezone convention (used the same way in both directions):
- all-day events: DTSTART;VALUE=DATE with an exclusive DTEND;VALUE=DATE
- timed events in UTC: DTSTART:20250130T140000Z
- timed events in any other zone: DTSTART;TZID=America/New_York:20250130T090000
- timed DTSTART without Z or TZID is floating and read in the importing
  calendar's default zone
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Callable, Iterable, Optional, Union

import pytz
from icalendar import Alarm, Calendar as ICalCalendar, Event as ICalEvent, vCalAddress
from icalendar.parser import Contentlines
from icalendar.prop import vDDDTypes, vDuration, vRecur, vText

from .errors import ParseError, ValidationError
from .event_record import EventRecord, normalize
from .event_store import EventStore
from .timezone_utils import (
    UTC_NAME, resolve_timezone, to_utc, to_wall_clock, zone_name
)


logger = logging.getLogger(__name__)

DEFAULT_PRODID = "-//Calcore//Calendar Engine//EN"

# Attendee.response_status <-> ATTENDEE;PARTSTAT
_PARTSTAT = {
    'accepted': 'ACCEPTED',
    'tentative': 'TENTATIVE',
    'declined': 'DECLINED',
    'needsAction': 'NEEDS-ACTION',
    'delegated': 'DELEGATED',
}
_PARTSTAT_REVERSE = {v: k for k, v in _PARTSTAT.items()}

# Reminder.method <-> VALARM ACTION
_ACTIONS = {'email': 'EMAIL', 'popup': 'DISPLAY', 'audio': 'AUDIO'}
_ACTIONS_REVERSE = {v: k for k, v in _ACTIONS.items()}


@dataclass(frozen=True)
class ImportIssue:
    """A VEVENT (or the whole document) that could not be imported."""
    source: str
    reason: str


@dataclass
class ImportResult:
    """Outcome of a merge-import. Returned, never raised."""
    imported: list[EventRecord] = field(default_factory=list)
    updated: list[EventRecord] = field(default_factory=list)
    skipped: list[EventRecord] = field(default_factory=list)
    errors: list[ImportIssue] = field(default_factory=list)
    cancelled: bool = False

    @property
    def processed(self) -> int:
        return len(self.imported) + len(self.updated) + len(self.skipped)

    def summary(self) -> str:
        text = (f"imported={len(self.imported)} updated={len(self.updated)} "
                f"skipped={len(self.skipped)} errors={len(self.errors)}")
        return text + " (cancelled)" if self.cancelled else text


@dataclass
class ValidationResult:
    """Structural check result. valid is True iff there are no warnings."""
    valid: bool
    warnings: list[str] = field(default_factory=list)
    event_count: int = 0


# ==================== Content-line Scanning ====================

@dataclass
class _VEventBlock:
    """Raw properties of one VEVENT, before any interpretation."""
    index: int
    properties: list[tuple] = field(default_factory=list)  # (NAME, params, value)
    alarms: list[list[tuple]] = field(default_factory=list)
    problems: list[str] = field(default_factory=list)
    complete: bool = False

    def first(self, name: str) -> Optional[tuple]:
        for prop_name, params, value in self.properties:
            if prop_name == name:
                return params, value
        return None

    def all(self, name: str) -> list[tuple]:
        return [(params, value) for prop_name, params, value in self.properties if prop_name == name]

    @property
    def uid(self) -> Optional[str]:
        prop = self.first('UID')
        if prop is None:
            return None
        return str(vText.from_ical(prop[1])).strip() or None

    @property
    def source(self) -> str:
        if self.uid:
            return f"VEVENT #{self.index} (UID {self.uid})"
        return f"VEVENT #{self.index}"


def _raw_value(line: str) -> str:
    """Value part of an unfolded content line with its escapes left intact."""
    in_quotes = False
    for index, char in enumerate(line):
        if char == '"':
            in_quotes = not in_quotes
        elif char == ':' and not in_quotes:
            return line[index + 1:]
    return ''


def _split_unescaped(value: str, separator: str = ',') -> list[str]:
    """Split on separators not preceded by a backslash escape; escapes are kept."""
    parts, current, escaped = [], [], False
    for char in value:
        if escaped:
            escaped = False
        elif char == '\\':
            escaped = True
        elif char == separator:
            parts.append(''.join(current))
            current = []
            continue
        current.append(char)
    parts.append(''.join(current))
    return parts


def _scan(ics_text: Union[str, bytes, None]) -> tuple[list[_VEventBlock], list[str], Optional[str]]:
    """
    Split iCalendar text into VEVENT blocks.

    Returns:
        (blocks, structural_warnings, fatal_reason). fatal_reason is set when
        the input is not content-line text at all.
    """
    if not ics_text:
        return [], [], "no calendar data"
    try:
        lines = Contentlines.from_ical(ics_text)
    except ValueError as e:
        return [], [], f"not iCalendar text: {e}"

    blocks: list[_VEventBlock] = []
    warnings: list[str] = []
    stack: list[str] = []
    seen_vcalendar = False
    current: Optional[_VEventBlock] = None
    alarm: Optional[list[tuple]] = None

    for line in lines:
        if not line:
            continue
        try:
            name, params, _ = line.parts()
            # parts() may drop backslash escapes; decoders below need them
            value = _raw_value(str(line))
        except ValueError:
            message = f"malformed content line {str(line)[:60]!r}"
            if current is not None:
                current.problems.append(message)
            else:
                warnings.append(message[0].upper() + message[1:])
            continue

        name = name.upper()
        if name == 'BEGIN':
            component = value.strip().upper()
            if component == 'VCALENDAR':
                seen_vcalendar = True
            elif component == 'VEVENT':
                if current is not None:
                    # Previous VEVENT never ended; keep it as an incomplete block
                    blocks.append(current)
                current = _VEventBlock(index=len(blocks) + 1)
                alarm = None
            elif component == 'VALARM' and current is not None:
                alarm = []
            stack.append(component)

        elif name == 'END':
            component = value.strip().upper()
            if component not in stack:
                warnings.append(f"END:{component} without matching BEGIN")
                continue
            while stack[-1] != component:
                dropped = stack.pop()
                warnings.append(f"BEGIN:{dropped} without matching END")
                if dropped == 'VALARM':
                    alarm = None
            stack.pop()
            if component == 'VALARM' and current is not None and alarm is not None:
                current.alarms.append(alarm)
                alarm = None
            elif component == 'VEVENT' and current is not None:
                current.complete = True
                blocks.append(current)
                current = None

        elif current is not None:
            target = alarm if alarm is not None else current.properties
            target.append((name, params, value))

    for component in reversed(stack):
        warnings.append(f"BEGIN:{component} without matching END")
    if current is not None:
        blocks.append(current)
    if not seen_vcalendar:
        warnings.append("Missing BEGIN:VCALENDAR")

    return blocks, warnings, None


# ==================== Value Parsing ====================

def _parse_date_value(params, value: str, default_zone: str) -> tuple[datetime, str, bool]:
    """
    Parse a DTSTART/DTEND value.

    Returns:
        (wall_clock, zone_name, is_date)

    Raises:
        ValueError: if the value is not a DATE or DATE-TIME.
    """
    parsed = vDDDTypes.from_ical(value.strip())
    tzid = params.get('TZID')

    if isinstance(parsed, datetime):
        if parsed.tzinfo is not None:
            return to_wall_clock(parsed, UTC_NAME), UTC_NAME, False
        return parsed, (tzid or default_zone), False
    if isinstance(parsed, date):
        return datetime.combine(parsed, time()), (tzid or default_zone), True
    raise ValueError(f"expected DATE or DATE-TIME, got {value!r}")


def _text(block: _VEventBlock, name: str) -> Optional[str]:
    prop = block.first(name)
    if prop is None:
        return None
    text = str(vText.from_ical(prop[1]))
    return text if text.strip() else None


def _categories(block: _VEventBlock) -> list[str]:
    values = []
    for _, value in block.all('CATEGORIES'):
        for part in _split_unescaped(value):
            text = str(vText.from_ical(part)).strip()
            if text:
                values.append(text)
    return values


def _attendees(block: _VEventBlock) -> list[dict]:
    attendees = []
    for params, value in block.all('ATTENDEE'):
        address = str(vCalAddress.from_ical(value.strip()))
        if address.lower().startswith('mailto:'):
            address = address[7:]
        if not address:
            logger.debug("%s: ignoring ATTENDEE without address", block.source)
            continue
        partstat = params.get('PARTSTAT')
        attendees.append({
            'email': address,
            'name': params.get('CN') or None,
            'response_status': _PARTSTAT_REVERSE.get(str(partstat).upper()) if partstat else None,
        })
    return attendees


def _reminders(block: _VEventBlock) -> list[dict]:
    reminders = []
    for alarm in block.alarms:
        action = trigger = None
        for name, params, value in alarm:
            if name == 'ACTION':
                action = value.strip().upper()
            elif name == 'TRIGGER':
                trigger = (params, value)
        if trigger is None:
            continue
        params, value = trigger
        if str(params.get('VALUE', '')).upper() == 'DATE-TIME':
            logger.debug("%s: absolute VALARM trigger not supported, skipped", block.source)
            continue
        try:
            offset = vDuration.from_ical(value.strip())
        except ValueError:
            logger.warning("%s: unparseable VALARM trigger %r skipped", block.source, value)
            continue
        if offset > timedelta(0):
            logger.debug("%s: VALARM after start not supported, skipped", block.source)
            continue
        reminders.append({
            'method': _ACTIONS_REVERSE.get(action, (action or 'DISPLAY').lower()),
            'minutes_before': int(-offset.total_seconds() // 60),
        })
    return reminders


def _block_to_record(block: _VEventBlock, default_zone: str) -> EventRecord:
    """
    Convert one VEVENT block to an EventRecord.

    Raises:
        ParseError: for missing UID/DTSTART, unparseable dates, truncated
            blocks, recurrence overrides, or values that fail normalization.
    """
    source = block.source
    if not block.complete:
        raise ParseError(source, "VEVENT is not terminated by END:VEVENT")
    if block.problems:
        raise ParseError(source, "; ".join(block.problems))

    if block.uid is None:
        raise ParseError(source, "missing UID")
    if block.first('RECURRENCE-ID') is not None:
        raise ParseError(source, "recurrence overrides (RECURRENCE-ID) are not supported")
    dtstart = block.first('DTSTART')
    if dtstart is None:
        raise ParseError(source, "missing DTSTART")

    try:
        start, zone, all_day = _parse_date_value(dtstart[0], dtstart[1], default_zone)
    except ValueError as e:
        raise ParseError(source, f"unparseable DTSTART {dtstart[1]!r}: {e}") from e
    zone = zone_name(resolve_timezone(zone))

    end = None
    dtend = block.first('DTEND')
    duration = block.first('DURATION')
    if dtend is not None:
        try:
            end, end_zone, _ = _parse_date_value(dtend[0], dtend[1], zone)
        except ValueError as e:
            raise ParseError(source, f"unparseable DTEND {dtend[1]!r}: {e}") from e
        if all_day:
            # DTEND is exclusive; records keep the last day
            end = end - timedelta(days=1)
            if end <= start:
                end = None
        elif zone_name(resolve_timezone(end_zone)) != zone:
            end = to_wall_clock(to_utc(end, end_zone), zone)
    elif duration is not None:
        try:
            delta = vDuration.from_ical(duration[1].strip())
        except ValueError as e:
            raise ParseError(source, f"unparseable DURATION {duration[1]!r}: {e}") from e
        if delta > timedelta(0):
            if all_day:
                days = max(delta.days, 1)
                end = start + timedelta(days=days - 1) if days > 1 else None
            else:
                end = to_wall_clock(to_utc(start, zone) + delta, zone)

    rrule = block.first('RRULE')
    raw = {
        'id': block.uid,
        'title': _text(block, 'SUMMARY') or 'Untitled',
        'description': _text(block, 'DESCRIPTION'),
        'location': _text(block, 'LOCATION'),
        'status': _text(block, 'STATUS'),
        'start': start,
        'end': end,
        'all_day': all_day,
        'time_zone': zone,
        'recurrence_rule': rrule[1].strip() if rrule else None,
        'categories': _categories(block),
        'attendees': _attendees(block),
        'reminders': _reminders(block),
    }
    try:
        return normalize(raw, default_timezone=zone)
    except ValidationError as e:
        raise ParseError(source, "; ".join(e.problems)) from e


# ==================== Codec ====================

class ICSCodec:
    """
    Bidirectional EventRecord <-> iCalendar conversion bound to one store.
    """

    def __init__(
        self,
        store: EventStore,
        prodid: str = DEFAULT_PRODID,
        calendar_name: str = "Calendar"
    ):
        """
        Initialize the codec.

        Args:
            store: Store exported from and imported into
            prodid: PRODID written on export
            calendar_name: Default X-WR-CALNAME written on export
        """
        self.store = store
        self.prodid = prodid
        self.calendar_name = calendar_name

    # ==================== Export ====================

    def to_ical_event(self, record: EventRecord) -> ICalEvent:
        """Build an icalendar VEVENT for a record."""
        event = ICalEvent()
        event.add('uid', record.id)
        event.add('dtstamp', datetime.now(pytz.UTC))
        event.add('summary', record.title)

        if record.all_day:
            last_day = (record.end or record.start).date()
            event.add('dtstart', record.start.date())
            event.add('dtend', last_day + timedelta(days=1))
        else:
            # pytz-aware values make icalendar write Z for UTC and TZID otherwise
            tz = resolve_timezone(record.time_zone)
            event.add('dtstart', record.start_utc.astimezone(tz))
            if record.end_utc is not None:
                event.add('dtend', record.end_utc.astimezone(tz))
            else:
                event.add('duration', timedelta(0))

        if record.description:
            event.add('description', record.description)
        if record.location:
            event.add('location', record.location)
        if record.status:
            event.add('status', record.status)
        if record.categories:
            event.add('categories', list(record.categories))

        if record.recurrence_rule:
            try:
                event.add('rrule', vRecur.from_ical(record.recurrence_rule))
            except ValueError:
                logger.warning("Event %s: invalid RRULE %r not exported",
                               record.id, record.recurrence_rule)

        for attendee in record.attendees:
            parameters = {}
            if attendee.name:
                parameters['CN'] = attendee.name
            if attendee.response_status in _PARTSTAT:
                parameters['PARTSTAT'] = _PARTSTAT[attendee.response_status]
            event.add('attendee', f"mailto:{attendee.email}", parameters=parameters or None)

        for reminder in record.reminders:
            alarm = Alarm()
            alarm.add('action', _ACTIONS.get(reminder.method, 'DISPLAY'))
            alarm.add('trigger', timedelta(minutes=-reminder.minutes_before))
            alarm.add('description', record.title)
            if reminder.method == 'email':
                alarm.add('summary', record.title)
            event.add_component(alarm)

        return event

    def to_ical_calendar(
        self,
        records: Iterable[EventRecord],
        calendar_name: Optional[str] = None
    ) -> ICalCalendar:
        """Build an icalendar VCALENDAR holding one VEVENT per record."""
        vcal = ICalCalendar()
        vcal.add('prodid', self.prodid)
        vcal.add('version', '2.0')
        vcal.add('calscale', 'GREGORIAN')
        vcal.add('x-wr-calname', calendar_name or self.calendar_name)
        for record in records:
            vcal.add_component(self.to_ical_event(record))
        return vcal

    def export(
        self,
        records: Optional[Iterable[EventRecord]] = None,
        calendar_name: Optional[str] = None
    ) -> str:
        """
        Serialize records as VCALENDAR text.

        Args:
            records: Records to export; defaults to every record in the store.
            calendar_name: X-WR-CALNAME; defaults to the configured name.
        """
        if records is None:
            records = self.store.get_all_events()
        records = list(records)
        text = self.to_ical_calendar(records, calendar_name).to_ical().decode('utf-8')
        logger.debug("Exported %d events", len(records))
        return text

    # ==================== Validation ====================

    def validate(self, ics_text: Union[str, bytes, None]) -> ValidationResult:
        """
        Check iCalendar text structure without importing it.

        Looks for balanced BEGIN/END pairs, the VCALENDAR wrapper, malformed
        content lines, and a UID plus parseable DTSTART in every VEVENT.
        Never raises.
        """
        blocks, warnings, fatal = _scan(ics_text)
        if fatal:
            return ValidationResult(valid=False, warnings=[fatal[0].upper() + fatal[1:]])

        for block in blocks:
            for problem in block.problems:
                warnings.append(f"{block.source}: {problem}")
            if block.uid is None:
                warnings.append(f"{block.source}: missing UID")
            dtstart = block.first('DTSTART')
            if dtstart is None:
                warnings.append(f"{block.source}: missing DTSTART")
                continue
            try:
                _parse_date_value(dtstart[0], dtstart[1], UTC_NAME)
            except ValueError as e:
                warnings.append(f"{block.source}: unparseable DTSTART {dtstart[1]!r}: {e}")

        return ValidationResult(valid=not warnings, warnings=warnings, event_count=len(blocks))

    # ==================== Import ====================

    def parse(
        self,
        ics_text: Union[str, bytes, None],
        default_timezone: str = UTC_NAME
    ) -> tuple[list[EventRecord], list[ImportIssue]]:
        """
        Parse iCalendar text into candidate records without touching the store.

        Args:
            ics_text: VCALENDAR text
            default_timezone: Zone for floating (no Z, no TZID) date-times

        Returns:
            (records, issues): one record per valid VEVENT in document order,
            one issue per rejected VEVENT (or one for the whole document).
            A later VEVENT repeating an earlier UID is rejected.
        """
        blocks, warnings, fatal = _scan(ics_text)
        if fatal:
            return [], [ImportIssue(source='document', reason=fatal)]
        for warning in warnings:
            logger.warning("iCalendar structure: %s", warning)

        records: list[EventRecord] = []
        issues: list[ImportIssue] = []
        seen: set[str] = set()
        for block in blocks:
            try:
                record = _block_to_record(block, default_timezone)
                if record.id in seen:
                    raise ParseError(block.source, "duplicate UID; the first VEVENT with this UID is kept")
                seen.add(record.id)
                records.append(record)
            except ParseError as e:
                logger.warning("Skipping %s: %s", e.source, e.reason)
                issues.append(ImportIssue(source=e.source, reason=e.reason))
        return records, issues

    def merge(self, record: EventRecord) -> str:
        """
        Merge one parsed record into the store.

        Returns:
            "imported" for a new id, "skipped" when the stored record is
            identical, "updated" when it differs (the parsed one wins).
        """
        existing = self.store.get(record.id)
        if existing is None:
            self.store.add(record)
            return 'imported'
        if existing == record:
            return 'skipped'
        self.store.add(record, upsert=True)
        return 'updated'

    async def import_ics(
        self,
        ics_text: Union[str, bytes, None],
        default_timezone: str = UTC_NAME,
        should_cancel: Optional[Callable[[], bool]] = None
    ) -> ImportResult:
        """
        Parse iCalendar text and merge every valid VEVENT into the store.

        Each event's merge is one store operation, so a bad event never leaves
        a partial change behind. The coroutine yields to the event loop between
        merges; that is where should_cancel() is checked and where task
        cancellation can land. Either way the store keeps every merge completed
        before that point.

        Args:
            ics_text: VCALENDAR text (already fetched by the caller)
            default_timezone: Zone for floating date-times
            should_cancel: Optional callable; returning True stops the merge
                and marks the result cancelled.

        Returns:
            ImportResult with imported/updated/skipped records and errors.
        """
        result = ImportResult()
        records, issues = self.parse(ics_text, default_timezone)
        result.errors.extend(issues)

        for record in records:
            await asyncio.sleep(0)
            if should_cancel is not None and should_cancel():
                result.cancelled = True
                logger.warning("Import cancelled after %d of %d events",
                               result.processed, len(records))
                break
            outcome = self.merge(record)
            getattr(result, outcome).append(record)

        logger.info("Import finished: %s", result.summary())
        return result
