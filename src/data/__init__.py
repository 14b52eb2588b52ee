"""Event history: outcome events, History Providers and synthetic data."""

from .events import (
    OutcomeEvent, validate_history, to_canonical_order,
    events_from_frame, events_to_frame
)
from .history import HistoryProvider, InMemoryHistory, CsvHistory
from .synthetic import SyntheticHistoryGenerator

__all__ = [
    'OutcomeEvent', 'validate_history', 'to_canonical_order',
    'events_from_frame', 'events_to_frame',
    'HistoryProvider', 'InMemoryHistory', 'CsvHistory',
    'SyntheticHistoryGenerator'
]
