"""
Scheduling conflict detection.

Two events conflict when their effective intervals overlap as half-open
ranges: startA < endB and startB < endA. Touching boundaries do not conflict.
Events without an end are zero-duration instants; all-day events cover their
whole local days. Overlapping events sharing a non-empty location (exact,
case-sensitive match) are a high-severity location conflict, every other
overlap is a medium-severity time conflict.

Candidate pairs come from an interval tree instead of comparing every pair;
the result is identical to the plain pairwise scan, including its order.
"""

import logging
from dataclasses import dataclass
from typing import Iterable

from .event_record import EventRecord
from .interval_tree import IntervalTree


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Conflict:
    """An overlap between two events."""
    type: str  # "location" or "time"
    description: str
    severity: str  # "high" or "medium"
    event_ids: tuple[str, str]

    def to_dict(self) -> dict:
        return {
            'type': self.type,
            'description': self.description,
            'severity': self.severity,
            'event_ids': list(self.event_ids),
        }


def events_overlap(a: EventRecord, b: EventRecord) -> bool:
    """Half-open interval overlap of two events."""
    start_a, end_a = a.interval()
    start_b, end_b = b.interval()
    return start_a < end_b and start_b < end_a


def classify(a: EventRecord, b: EventRecord) -> Conflict:
    """Build the Conflict for an overlapping pair."""
    if a.location and b.location and a.location == b.location:
        return Conflict(
            type='location',
            description=f"{a.title} and {b.title} both in {a.location}",
            severity='high',
            event_ids=(a.id, b.id),
        )
    return Conflict(
        type='time',
        description=f"{a.title} overlaps with {b.title}",
        severity='medium',
        event_ids=(a.id, b.id),
    )


def detect_conflicts(records: Iterable[EventRecord]) -> list[Conflict]:
    """
    Find every conflicting pair among records.

    Args:
        records: Events to check, in the order conflicts should be reported.

    Returns:
        One Conflict per overlapping pair (i, j) with i < j, ordered by i then j.
    """
    records = list(records)
    intervals = [r.interval() for r in records]

    tree: IntervalTree = IntervalTree()
    for position, (start, end) in enumerate(intervals):
        tree.insert(start, end, position)

    conflicts = []
    for i, (start, end) in enumerate(intervals):
        # Closed-interval hits are a superset of half-open overlaps
        partners = sorted(
            node.data for node in tree.find_intersecting(start, end)
            if node.data > i
        )
        for j in partners:
            if events_overlap(records[i], records[j]):
                conflicts.append(classify(records[i], records[j]))

    logger.debug("Checked %d events, found %d conflicts", len(records), len(conflicts))
    return conflicts
