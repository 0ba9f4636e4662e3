"""
Configuration parser for the calendar engine.

Handles TOML parsing into dataclass sections. The engine itself never touches
the filesystem; hosts either call Config.load() themselves or build a Config
from already-read text with Config.loads().
"""

import logging
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional


logger = logging.getLogger(__name__)


# Zones offered by Calendar.get_timezones() when the config does not list any
DEFAULT_COMMON_TIMEZONES = [
    ("UTC", "Coordinated Universal Time"),
    ("America/Los_Angeles", "Pacific Time"),
    ("America/Denver", "Mountain Time"),
    ("America/Chicago", "Central Time"),
    ("America/New_York", "Eastern Time"),
    ("America/Sao_Paulo", "Brasilia Time"),
    ("Europe/London", "London"),
    ("Europe/Paris", "Paris"),
    ("Europe/Berlin", "Berlin"),
    ("Europe/Amsterdam", "Amsterdam"),
    ("Africa/Johannesburg", "Johannesburg"),
    ("Asia/Dubai", "Dubai"),
    ("Asia/Kolkata", "India"),
    ("Asia/Singapore", "Singapore"),
    ("Asia/Shanghai", "China"),
    ("Asia/Tokyo", "Tokyo"),
    ("Australia/Sydney", "Sydney"),
    ("Pacific/Auckland", "Auckland"),
]


@dataclass
class GeneralConfig:
    """Engine-wide defaults."""
    default_timezone: str = "UTC"
    id_prefix: str = "event"  # Store-assigned ids look like "event-1"


@dataclass
class TimezoneConfig:
    """Configuration for timezone lookups."""
    offset_cache_size: int = 1024  # Max memoised (zone, minute) offset lookups
    common_timezones: list[tuple[str, str]] = None  # (zone, label) pairs

    def __post_init__(self):
        if self.common_timezones is None:
            self.common_timezones = list(DEFAULT_COMMON_TIMEZONES)


@dataclass
class SearchConfig:
    """Configuration for text search and suggestions."""
    default_fields: list[str] = None  # Fields searched when none are given
    suggestion_limit: int = 10

    def __post_init__(self):
        if self.default_fields is None:
            self.default_fields = ["title", "description", "location"]


@dataclass
class ICSConfig:
    """Configuration for iCalendar export."""
    prodid: str = "-//Calcore//Calendar Engine//EN"
    calendar_name: str = "Calendar"


@dataclass
class Config:
    """Main configuration container for the calendar engine."""

    general: GeneralConfig = field(default_factory=GeneralConfig)
    timezone: TimezoneConfig = field(default_factory=TimezoneConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
    ics: ICSConfig = field(default_factory=ICSConfig)

    @classmethod
    def get_default_config_path(cls) -> Path:
        """Get the default configuration file path."""
        xdg_config = os.environ.get('XDG_CONFIG_HOME', os.path.expanduser('~/.config'))
        return Path(xdg_config) / 'calcore' / 'calcore.toml'

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> 'Config':
        """Load configuration from a TOML file."""
        if config_path is None:
            config_path = cls.get_default_config_path()
        config_path = Path(config_path)

        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'rb') as f:
            data = tomllib.load(f)

        logger.debug("Loaded configuration from %s", config_path)
        return cls.from_dict(data)

    @classmethod
    def loads(cls, text: str) -> 'Config':
        """Parse configuration from TOML text."""
        return cls.from_dict(tomllib.loads(text))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'Config':
        """
        Build a Config from parsed TOML data.

        Missing sections and keys fall back to their defaults. Unknown
        sections are ignored with a debug message.
        """
        known = {'General', 'Timezone', 'Search', 'ICS'}
        for key in data:
            if key not in known:
                logger.debug("Ignoring unknown config section '%s'", key)

        # Parse General section
        general_data = data.get('General', {})
        general = GeneralConfig(
            default_timezone=general_data.get('default_timezone', GeneralConfig.default_timezone),
            id_prefix=general_data.get('id_prefix', GeneralConfig.id_prefix),
        )

        # Parse Timezone section
        # common_timezones is a list of [zone, label] pairs or bare zone names
        tz_data = data.get('Timezone', {})
        common = None
        if 'common_timezones' in tz_data:
            common = []
            for entry in tz_data['common_timezones']:
                if isinstance(entry, str):
                    common.append((entry, entry))
                else:
                    zone, label = entry[0], entry[1] if len(entry) > 1 else entry[0]
                    common.append((zone, label))

        cache_size = tz_data.get('offset_cache_size', TimezoneConfig.offset_cache_size)
        if not isinstance(cache_size, int) or cache_size < 1:
            raise ValueError(f"Timezone.offset_cache_size must be a positive integer, got {cache_size!r}")

        timezone = TimezoneConfig(
            offset_cache_size=cache_size,
            common_timezones=common,
        )

        # Parse Search section
        search_data = data.get('Search', {})
        search = SearchConfig(
            default_fields=search_data.get('default_fields'),
            suggestion_limit=search_data.get('suggestion_limit', SearchConfig.suggestion_limit),
        )

        # Parse ICS section
        ics_data = data.get('ICS', {})
        ics = ICSConfig(
            prodid=ics_data.get('prodid', ICSConfig.prodid),
            calendar_name=ics_data.get('calendar_name', ICSConfig.calendar_name),
        )

        return cls(general=general, timezone=timezone, search=search, ics=ics)
