"""Test event histories, ordering validation and history providers."""

import sys
from datetime import datetime
from pathlib import Path

import pandas as pd
import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from data import (
    OutcomeEvent, validate_history, to_canonical_order, events_from_frame,
    events_to_frame, InMemoryHistory, CsvHistory, SyntheticHistoryGenerator
)
from utils.errors import EventOrderingError

from conftest import make_events


class TestValidateHistory:

    def test_ascending_history_passes(self):
        events = make_events([{1, 2}, {3, 4}, {5, 6}])
        assert validate_history(events) == events

    def test_equal_timestamps_pass(self):
        ts = datetime(2024, 1, 1)
        events = [OutcomeEvent(ts, frozenset({1})), OutcomeEvent(ts, frozenset({2}))]
        assert len(validate_history(events)) == 2

    def test_descending_history_rejected(self):
        events = make_events([{1, 2}, {3, 4}, {5, 6}])
        with pytest.raises(EventOrderingError):
            validate_history(list(reversed(events)))

    def test_out_of_domain_rejected(self):
        with pytest.raises(EventOrderingError):
            validate_history(make_events([{1, 91}]), domain_size=90)
        with pytest.raises(EventOrderingError):
            validate_history(make_events([{0, 5}]))

    def test_non_event_rejected(self):
        with pytest.raises(EventOrderingError):
            validate_history([{"numbers": [1, 2]}])

    def test_empty_history(self):
        assert validate_history([]) == []


def test_outcome_event_normalises_fields():
    event = OutcomeEvent(timestamp="2024-03-01", outcome_set=[3, 1, 2])
    assert isinstance(event.outcome_set, frozenset)
    assert isinstance(event.timestamp, datetime)
    assert 3 in event
    assert 4 not in event


def test_canonical_order_sorts_oldest_first():
    events = make_events([{1}, {2}, {3}])
    shuffled = [events[2], events[0], events[1]]
    assert to_canonical_order(shuffled) == events


def test_events_from_frame_numbered_columns():
    df = pd.DataFrame({
        'date': ['2024-01-01', '2024-01-02'],
        'n1': [1, 10], 'n2': [2, 20], 'n3': [3, 30],
    })
    events = events_from_frame(df)
    assert [sorted(e.outcome_set) for e in events] == [[1, 2, 3], [10, 20, 30]]


def test_events_from_frame_delimited_column():
    df = pd.DataFrame({'date': ['2024-01-01'], 'numbers': ['5, 9;12']})
    events = events_from_frame(df, numbers_col='numbers')
    assert events[0].outcome_set == frozenset({5, 9, 12})


def test_events_from_frame_without_outcome_columns():
    with pytest.raises(ValueError):
        events_from_frame(pd.DataFrame({'date': ['2024-01-01'], 'x': [1]}))


def test_events_to_frame():
    frame = events_to_frame(make_events([{3, 1}, {2}]))
    assert list(frame['numbers']) == ['1,3', '2']
    assert len(frame) == 2


def test_in_memory_history_reorders():
    events = make_events([{1}, {2}, {3}])
    history = InMemoryHistory([events[1], events[2], events[0]])
    assert history.ordered_events() == events
    assert len(history) == 3


def test_csv_history(tmp_path):
    path = tmp_path / "draws.csv"
    pd.DataFrame({
        'date': ['2024-01-03', '2024-01-01', '2024-01-02'],
        'numbers': ['7,8,9', '1,2,3', '4,5,6'],
    }).to_csv(path, index=False)

    history = CsvHistory(path, numbers_col='numbers')
    events = history.ordered_events()

    assert [sorted(e.outcome_set) for e in events] == [[1, 2, 3], [4, 5, 6], [7, 8, 9]]
    assert events[0].timestamp < events[-1].timestamp


def test_csv_history_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        CsvHistory(tmp_path / "missing.csv").ordered_events()


class TestSyntheticHistory:

    def test_draw_size_and_order(self):
        events = SyntheticHistoryGenerator(seed=1).generate(30)
        assert len(events) == 30
        assert all(len(e.outcome_set) == 5 for e in events)
        assert validate_history(events) == events

    def test_periodic_entity(self):
        events = SyntheticHistoryGenerator(seed=2).generate(30, periodic={7: 3})
        for i, event in enumerate(events):
            assert (7 in event) == (i % 3 == 0)

    def test_constant_entity(self):
        events = SyntheticHistoryGenerator(seed=2).generate(20, constant=[42])
        assert all(42 in e for e in events)

    def test_seed_is_reproducible(self):
        a = SyntheticHistoryGenerator(seed=4).generate(10)
        b = SyntheticHistoryGenerator(seed=4).generate(10)
        assert [e.outcome_set for e in a] == [e.outcome_set for e in b]

    def test_draw_size_larger_than_domain(self):
        with pytest.raises(ValueError):
            SyntheticHistoryGenerator(domain_size=3, draw_size=5)
