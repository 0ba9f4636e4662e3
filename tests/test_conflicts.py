"""Unit tests for conflict detection."""
import pytest
from datetime import datetime

from calcore.conflicts import Conflict, detect_conflicts, events_overlap


def timed(make_record, event_id, start_hour, start_minute, end_hour, end_minute, location=None):
    return make_record(
        id=event_id, title=event_id.upper(), location=location,
        start=datetime(2025, 1, 30, start_hour, start_minute),
        end=datetime(2025, 1, 30, end_hour, end_minute),
    )


class TestConflictRules:
    """Test location/time classification and boundaries."""

    def test_shared_location_is_high(self, make_record):
        a = timed(make_record, 'a', 10, 0, 11, 0, location='Room 1')
        b = timed(make_record, 'b', 10, 30, 11, 30, location='Room 1')

        conflicts = detect_conflicts([a, b])

        assert conflicts == [Conflict(type='location', description='A and B both in Room 1',
                                      severity='high', event_ids=('a', 'b'))]

    def test_different_location_is_medium(self, make_record):
        a = timed(make_record, 'a', 10, 0, 11, 0, location='Room 1')
        b = timed(make_record, 'b', 10, 30, 11, 30, location='Room 2')

        conflicts = detect_conflicts([a, b])

        assert len(conflicts) == 1
        assert conflicts[0].type == 'time'
        assert conflicts[0].severity == 'medium'
        assert conflicts[0].description == 'A overlaps with B'

    def test_location_match_is_case_sensitive(self, make_record):
        a = timed(make_record, 'a', 10, 0, 11, 0, location='Room 1')
        b = timed(make_record, 'b', 10, 30, 11, 30, location='room 1')

        assert detect_conflicts([a, b])[0].type == 'time'

    def test_missing_location_is_time_conflict(self, make_record):
        a = timed(make_record, 'a', 10, 0, 11, 0)
        b = timed(make_record, 'b', 10, 30, 11, 30)

        assert detect_conflicts([a, b])[0].type == 'time'

    def test_touching_events_do_not_conflict(self, make_record):
        a = timed(make_record, 'a', 10, 0, 11, 0, location='Room 1')
        c = timed(make_record, 'c', 11, 0, 12, 0, location='Room 1')

        assert detect_conflicts([a, c]) == []

    def test_zero_duration_event(self, make_record):
        """An event without end occupies only its start instant."""
        a = timed(make_record, 'a', 10, 0, 11, 0)
        inside = make_record(id='inside', start=datetime(2025, 1, 30, 10, 30))
        at_end = make_record(id='at_end', start=datetime(2025, 1, 30, 11, 0))

        assert events_overlap(a, inside)
        assert not events_overlap(a, at_end)
        assert len(detect_conflicts([a, inside, at_end])) == 1

    def test_all_day_spans_whole_day(self, make_record):
        day = make_record(id='day', start='2025-01-30')
        evening = make_record(id='evening', start=datetime(2025, 1, 30, 23, 0),
                              end=datetime(2025, 1, 30, 23, 30))
        next_morning = make_record(id='next', start=datetime(2025, 1, 31, 0, 0),
                                   end=datetime(2025, 1, 31, 1, 0))

        conflicts = detect_conflicts([day, evening, next_morning])

        assert [c.event_ids for c in conflicts] == [('day', 'evening')]


class TestConflictOrder:
    """Test that results follow the plain pairwise scan order."""

    def test_pairs_ordered_by_input_position(self, make_record):
        records = [
            timed(make_record, 'late', 12, 0, 14, 0),
            timed(make_record, 'early', 9, 0, 13, 0),
            timed(make_record, 'mid', 11, 0, 12, 30),
        ]

        conflicts = detect_conflicts(records)

        expected = [
            (records[i].id, records[j].id)
            for i in range(len(records)) for j in range(i + 1, len(records))
            if events_overlap(records[i], records[j])
        ]
        assert [c.event_ids for c in conflicts] == expected
        assert expected == [('late', 'early'), ('late', 'mid'), ('early', 'mid')]

    def test_empty_input(self):
        assert detect_conflicts([]) == []

    def test_to_dict(self, make_record):
        a = timed(make_record, 'a', 10, 0, 11, 0)
        b = timed(make_record, 'b', 10, 30, 11, 30)

        assert detect_conflicts([a, b])[0].to_dict()['event_ids'] == ['a', 'b']
