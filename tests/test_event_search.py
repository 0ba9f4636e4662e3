"""Unit tests for EventSearch."""
import pytest
from datetime import date, datetime

from calcore.event_search import (
    EventSearch, FilterSpec, edit_distance, field_values, max_edits
)


@pytest.fixture
def search(populated_calendar):
    return populated_calendar.search_engine


def ids(records):
    return [r.id for r in records]


class TestTextSearch:
    """Test substring and fuzzy search."""

    def test_fuzzy_match(self, search):
        """A misspelt query finds the record only with fuzzy matching."""
        assert ids(search.search("meetting", fields=['title'], fuzzy=True)) == ['standup']
        assert search.search("meetting", fields=['title'], fuzzy=False) == []

    def test_substring_case_insensitive(self, search):
        assert ids(search.search("LUNCH")) == ['lunch']

    def test_default_fields_include_description(self, search):
        assert ids(search.search("platform")) == ['standup']

    def test_field_selection(self, search):
        assert search.search("platform", fields=['title']) == []
        assert ids(search.search("personal", fields=['categories'])) == ['lunch']

    def test_attendee_search(self, search):
        assert ids(search.search("alice", fields=['attendees'])) == ['standup']

    def test_empty_query_returns_everything(self, search):
        assert ids(search.search("")) == ['standup', 'lunch', 'offsite']

    def test_unknown_field_raises(self, search):
        with pytest.raises(ValueError):
            search.search("x", fields=['colour'])

    def test_index_rebuilt_after_mutation(self, populated_calendar, search):
        search.search("lunch")
        populated_calendar.add_event({'title': 'Second lunch', 'start': '2025-02-01T12:00:00'})

        assert search.is_stale
        assert len(search.search("lunch")) == 2
        assert not search.is_stale

    def test_short_tokens_need_exact_match(self):
        assert max_edits(2) == 0
        assert max_edits(5) == 1
        assert max_edits(8) == 2
        assert edit_distance("meetting", "meeting") == 1
        assert edit_distance("kitten", "sitting", limit=1) == 2


class TestFilter:
    """Test structured filters."""

    def test_categories_any(self, search):
        assert ids(search.filter(categories=['work'])) == ['standup', 'offsite']
        assert ids(search.filter(categories='personal')) == ['lunch']

    def test_date_range_overlap(self, search):
        found = search.filter(date_range=(datetime(2025, 1, 30, 12, 30), datetime(2025, 1, 31)))

        assert ids(found) == ['lunch']

    def test_date_range_mapping_with_dates(self, search):
        found = search.filter({'dateRange': {'start': date(2025, 2, 1)}})

        assert ids(found) == ['offsite']

    def test_flags(self, search):
        assert ids(search.filter(all_day=True)) == ['offsite']
        assert ids(search.filter(has_reminders=True)) == ['standup']
        assert ids(search.filter(recurring=False)) == ['lunch', 'offsite']

    def test_attendees_case_insensitive(self, search):
        assert ids(search.filter(attendees=['BOB@example.com'])) == ['lunch']

    def test_custom_predicate(self, search):
        assert ids(search.filter(custom=lambda r: r.location == 'Cafe')) == ['lunch']

    def test_filter_spec_object(self, search):
        assert ids(search.filter(FilterSpec(all_day=False, categories=['work']))) == ['standup']

    def test_criteria_combine(self, search):
        assert search.filter(categories=['work'], all_day=False, has_reminders=False) == []

    def test_unknown_key_raises(self, search):
        with pytest.raises(ValueError):
            search.filter(colour='red')

    def test_advanced_search(self, search):
        assert ids(search.advanced_search("company", categories=['work'])) == ['offsite']
        assert search.advanced_search("company", categories=['personal']) == []


class TestValuesAndGrouping:
    """Test suggestions, unique values and grouping."""

    def test_suggestions(self, search):
        assert search.get_suggestions("l") == ['Lunch with Bob']
        assert search.get_suggestions("c", field='location') == ['Cafe']
        assert search.get_suggestions("", limit=2) == ['Team Meeting', 'Lunch with Bob']

    def test_unique_values(self, search):
        assert search.get_unique_values('categories') == ['work', 'meeting', 'personal']
        assert search.get_unique_values('location') == ['Room A', 'Cafe']

    def test_group_by_category(self, search):
        groups = search.group_by('categories')

        assert list(groups) == ['work', 'meeting', 'personal']
        assert ids(groups['work']) == ['standup', 'offsite']

    def test_group_by_location_missing_goes_to_none(self, search):
        groups = search.group_by('location', sort_groups=True)

        assert list(groups) == ['Cafe', 'Room A', None]
        assert ids(groups[None]) == ['offsite']

    def test_group_by_date(self, search):
        groups = search.group_by('date')

        assert ids(groups[date(2025, 1, 30)]) == ['standup', 'lunch']

    def test_field_values_unknown(self, search):
        record = search.store.get('lunch')

        with pytest.raises(ValueError):
            field_values(record, 'colour')

    def test_standalone_search_over_store(self, store, make_record):
        store.add(make_record(id='x', title='Quarterly planning'))
        engine = EventSearch(store, default_fields=['title'], suggestion_limit=1)

        assert ids(engine.search("planing", fuzzy=True)) == ['x']
        assert engine.get_suggestions("q") == ['Quarterly planning']
