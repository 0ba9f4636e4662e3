"""
Timezone utilities for the calendar engine.

Provides the conversions every other component relies on: wall-clock to UTC,
UTC to wall-clock, offsets and DST checks. All event instants are stored in UTC
and rendered into a zone on demand.

There is no module-level "local" timezone. Every function takes the zone it
works in explicitly; the default zone lives on each Calendar instance.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Hashable, Optional, Union

import pytz


logger = logging.getLogger(__name__)

UTC_NAME = "UTC"

Zone = Union[str, pytz.BaseTzInfo, None]


def resolve_timezone(zone: Zone) -> pytz.BaseTzInfo:
    """
    Get a pytz timezone object for an IANA zone name.

    Unknown names fall back to UTC with a warning instead of raising, so
    rendering and search paths keep working with a bad zone string.

    Args:
        zone: IANA name (e.g. "America/New_York"), a pytz timezone, or None.

    Returns:
        pytz timezone object. None resolves to UTC silently.
    """
    if zone is None or zone == "":
        return pytz.UTC
    if isinstance(zone, pytz.BaseTzInfo):
        return zone
    try:
        return pytz.timezone(zone)
    except (pytz.UnknownTimeZoneError, AttributeError, TypeError):
        logger.warning("Unknown timezone %r, falling back to UTC", zone)
        return pytz.UTC


def zone_name(tz: pytz.BaseTzInfo) -> str:
    """Canonical IANA name of a pytz timezone."""
    return getattr(tz, 'zone', None) or UTC_NAME


def localize(wall: datetime, zone: Zone) -> datetime:
    """
    Attach a zone to a naive wall-clock datetime.

    Ambiguous wall clocks (the repeated hour when DST ends) resolve to standard
    time; non-existent ones (the skipped hour when DST starts) are read with
    the standard offset, as pytz does for is_dst=False.

    Args:
        wall: A naive datetime. Aware datetimes are converted into the zone.
        zone: Zone to interpret the wall clock in.

    Returns:
        A timezone-aware datetime in the given zone.
    """
    tz = resolve_timezone(zone)
    if wall.tzinfo is not None:
        return wall.astimezone(tz)
    return tz.localize(wall, is_dst=False)


def to_utc(wall: datetime, zone: Zone) -> datetime:
    """
    Convert a wall-clock datetime in a zone to a UTC instant.

    Args:
        wall: A naive datetime representing local time in zone.
        zone: Zone the wall clock belongs to.

    Returns:
        A timezone-aware datetime in UTC.
    """
    return localize(wall, zone).astimezone(pytz.UTC)


def as_utc(instant: datetime) -> datetime:
    """Normalize an instant to aware UTC; naive values are read as UTC."""
    if instant.tzinfo is None:
        return pytz.UTC.localize(instant)
    return instant.astimezone(pytz.UTC)


def to_wall_clock(instant: datetime, zone: Zone) -> datetime:
    """
    Render an instant as a naive wall-clock datetime in a zone.

    Args:
        instant: An aware datetime (naive values are read as UTC).
        zone: Zone to render into.

    Returns:
        A naive datetime (tzinfo=None) representing local time in zone.
    """
    return as_utc(instant).astimezone(resolve_timezone(zone)).replace(tzinfo=None)


def format_offset(minutes: int) -> str:
    """Format an offset in minutes as 'UTC+05:30' / 'UTC-05:00'."""
    sign = '+' if minutes >= 0 else '-'
    hours, mins = divmod(abs(minutes), 60)
    return f"UTC{sign}{hours:02d}:{mins:02d}"


@dataclass(frozen=True)
class TimezoneInfo:
    """A selectable timezone with its current offset."""
    name: str
    label: str
    offset: str  # e.g. "UTC-05:00"


class _LRUCache:
    """Bounded mapping that evicts the least recently used entry."""

    def __init__(self, maxsize: int):
        if maxsize < 1:
            raise ValueError(f"maxsize must be positive, got {maxsize}")
        self.maxsize = maxsize
        self._data: OrderedDict[Hashable, Any] = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Optional[Any]:
        try:
            value = self._data[key]
        except KeyError:
            self.misses += 1
            return None
        self._data.move_to_end(key)
        self.hits += 1
        return value

    def put(self, key: Hashable, value: Any) -> None:
        self._data[key] = value
        self._data.move_to_end(key)
        if len(self._data) > self.maxsize:
            evicted, _ = self._data.popitem(last=False)
            logger.debug("Offset cache full, evicted %s", evicted)

    def clear(self) -> None:
        self._data.clear()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._data)


class TimezoneManager:
    """
    Timezone conversion, offset and DST utilities.

    Stateless apart from a bounded offset cache, so one manager can be shared
    by every component of a Calendar without coordination.
    """

    def __init__(
        self,
        cache_size: int = 1024,
        common_timezones: Optional[list[tuple[str, str]]] = None
    ):
        """
        Initialize the manager.

        Args:
            cache_size: Maximum number of memoised offset lookups
            common_timezones: (zone, label) pairs returned by get_timezones()
        """
        self._offset_cache = _LRUCache(cache_size)
        self._common_timezones = list(common_timezones or [])

    # ==================== Zone Names ====================

    def is_valid_timezone(self, zone: str) -> bool:
        """Check whether a zone name is a known IANA identifier."""
        try:
            pytz.timezone(zone)
        except (pytz.UnknownTimeZoneError, AttributeError, TypeError):
            return False
        return True

    def normalize_zone(self, zone: Zone) -> str:
        """Canonical name for a zone; unknown names become 'UTC' with a warning."""
        return zone_name(resolve_timezone(zone))

    # ==================== Conversion ====================

    def to_utc(self, wall: datetime, zone: Zone) -> datetime:
        """Interpret a wall-clock datetime in a zone and return the UTC instant."""
        return to_utc(wall, zone)

    def to_wall_clock(self, instant: datetime, zone: Zone) -> datetime:
        """Render an instant as a naive wall-clock datetime in a zone."""
        return to_wall_clock(instant, zone)

    def convert_timezone(self, instant: datetime, from_zone: Zone, to_zone: Zone) -> datetime:
        """
        Render an instant in another zone.

        An instant does not belong to a zone, so from_zone does not change the
        result; it is only validated (an unknown name logs a warning).

        Args:
            instant: The instant to convert (naive values are read as UTC).
            from_zone: Zone the caller considers the instant to come from.
            to_zone: Zone to render into.

        Returns:
            A timezone-aware datetime in to_zone.
        """
        resolve_timezone(from_zone)
        return as_utc(instant).astimezone(resolve_timezone(to_zone))

    def format_in_timezone(
        self,
        instant: datetime,
        zone: Zone,
        fmt: Optional[str] = None
    ) -> str:
        """
        Format an instant as wall-clock text in a zone.

        Args:
            instant: The instant to format (naive values are read as UTC).
            zone: Zone to render in.
            fmt: strftime format; defaults to "2024-12-24 10:30:00 EST" style.
        """
        local = self.convert_timezone(instant, UTC_NAME, zone)
        return local.strftime(fmt or "%Y-%m-%d %H:%M:%S %Z")

    # ==================== Offsets & DST ====================

    def get_timezone_offset(self, instant: datetime, zone: Zone) -> int:
        """
        Get the signed offset in minutes east of UTC for a zone at an instant.

        Lookups are memoised per (zone, minute).
        """
        tz = resolve_timezone(zone)
        utc_instant = as_utc(instant)
        key = (zone_name(tz), int(utc_instant.timestamp() // 60))

        cached = self._offset_cache.get(key)
        if cached is not None:
            return cached

        offset = utc_instant.astimezone(tz).utcoffset()
        minutes = round(offset.total_seconds() / 60)
        self._offset_cache.put(key, minutes)
        return minutes

    def get_standard_offset(self, zone: Zone, year: int) -> int:
        """
        Get a zone's standard (winter) offset in minutes for a year.

        DST always adds to the standard offset, so the smaller of the January
        and July offsets is the standard one in both hemispheres.
        """
        tz = resolve_timezone(zone)
        january = to_utc(datetime(year, 1, 1, 12), tz)
        july = to_utc(datetime(year, 7, 1, 12), tz)
        return min(
            self.get_timezone_offset(january, tz),
            self.get_timezone_offset(july, tz),
        )

    def is_dst(self, instant: datetime, zone: Zone) -> bool:
        """True if the zone's offset at instant differs from its standard offset."""
        tz = resolve_timezone(zone)
        year = as_utc(instant).astimezone(tz).year
        return self.get_timezone_offset(instant, tz) != self.get_standard_offset(tz, year)

    def get_timezone_difference(
        self,
        zone_a: Zone,
        zone_b: Zone,
        at: Optional[datetime] = None
    ) -> float:
        """
        Hours that zone_b is ahead of zone_a.

        Args:
            zone_a: Reference zone.
            zone_b: Compared zone.
            at: Instant to compare offsets at; defaults to now.

        Returns:
            e.g. -3.0 for ("America/New_York", "America/Los_Angeles") and
            5.5 for ("UTC", "Asia/Kolkata").
        """
        instant = at if at is not None else datetime.now(pytz.UTC)
        diff = self.get_timezone_offset(instant, zone_b) - self.get_timezone_offset(instant, zone_a)
        return diff / 60

    def get_timezones(self, at: Optional[datetime] = None) -> list[TimezoneInfo]:
        """
        List the common timezones with their offsets at an instant.

        Args:
            at: Instant to compute offsets at; defaults to now.
        """
        instant = at if at is not None else datetime.now(pytz.UTC)
        result = []
        for zone, label in self._common_timezones:
            if not self.is_valid_timezone(zone):
                logger.warning("Skipping unknown common timezone %r", zone)
                continue
            offset = self.get_timezone_offset(instant, zone)
            result.append(TimezoneInfo(name=zone, label=label, offset=format_offset(offset)))
        return result

    # ==================== Cache ====================

    def cache_info(self) -> dict[str, int]:
        """Offset cache statistics."""
        return {
            'hits': self._offset_cache.hits,
            'misses': self._offset_cache.misses,
            'size': len(self._offset_cache),
            'maxsize': self._offset_cache.maxsize,
        }

    def clear_cache(self) -> None:
        """Drop all memoised offsets."""
        self._offset_cache.clear()


def day_bounds(day, zone: Zone) -> tuple[datetime, datetime]:
    """
    UTC instants bounding a local calendar day in a zone: [midnight, next midnight).

    Days that contain a DST change are 23 or 25 hours long.
    """
    start_wall = datetime(day.year, day.month, day.day)
    end_wall = start_wall + timedelta(days=1)
    return to_utc(start_wall, zone), to_utc(end_wall, zone)
