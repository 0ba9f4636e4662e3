"""
Exception types for the calendar engine.

Construction-time problems (bad event input, duplicate ids, unknown ids) are
raised synchronously. Parse problems found while importing iCalendar text are
raised inside the codec and collected into ImportResult.errors instead of
escaping to the caller.
"""

from typing import Optional


class CalendarEngineError(Exception):
    """Base class for all engine errors."""


class ValidationError(CalendarEngineError, ValueError):
    """
    Raised when raw event input cannot be normalized into an EventRecord.
    
    Every problem found is listed in ``problems`` so callers can report them
    all at once instead of fixing one field at a time.
    """
    
    def __init__(self, problems: list[str], source: Optional[str] = None):
        self.problems = list(problems)
        self.source = source
        prefix = f"{source}: " if source else ""
        super().__init__(prefix + "; ".join(self.problems))


class ParseError(CalendarEngineError, ValueError):
    """Raised for a malformed VEVENT block during iCalendar import."""
    
    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"{source}: {reason}")


class DuplicateEventError(CalendarEngineError, ValueError):
    """Raised when adding an event whose id is already in the store."""
    
    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Duplicate event id: {event_id}")


class EventNotFoundError(CalendarEngineError, KeyError):
    """Raised when an operation targets an id the store does not hold."""
    
    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(event_id)
    
    def __str__(self):
        return f"Unknown event id: {self.event_id}"
