"""Outcome events and canonical-order validation."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import FrozenSet, Iterable, List, Optional, Sequence

import pandas as pd

import sys
from pathlib import Path
try:
    from ..utils.config import DOMAIN_SIZE
    from ..utils.errors import EventOrderingError
except ImportError:
    current_dir = Path(__file__).parent.parent
    if str(current_dir) not in sys.path:
        sys.path.insert(0, str(current_dir))
    from utils.config import DOMAIN_SIZE
    from utils.errors import EventOrderingError


@dataclass(frozen=True)
class OutcomeEvent:
    """One historical observation of the outcome set."""
    timestamp: datetime
    outcome_set: FrozenSet[int]
    label: str = field(default="", compare=False)

    def __post_init__(self):
        if not isinstance(self.outcome_set, frozenset):
            object.__setattr__(self, 'outcome_set', frozenset(int(e) for e in self.outcome_set))
        if not isinstance(self.timestamp, datetime):
            object.__setattr__(self, 'timestamp', pd.Timestamp(self.timestamp).to_pydatetime())

    def __contains__(self, entity_id: int) -> bool:
        return entity_id in self.outcome_set


def validate_history(events: Sequence[OutcomeEvent],
                     domain_size: int = DOMAIN_SIZE) -> List[OutcomeEvent]:
    """
    Validate the canonical order (ascending timestamp, oldest first).

    Args:
        events: Event history as handed over by a History Provider
        domain_size: Entity ids must fall in [1, domain_size]

    Returns:
        The events as a list

    Raises:
        EventOrderingError: on descending/unsorted timestamps or out-of-domain ids
    """
    events = list(events)
    for i, event in enumerate(events):
        if not isinstance(event, OutcomeEvent):
            raise EventOrderingError(f"Event {i} is not an OutcomeEvent: {type(event).__name__}")
        bad = [e for e in event.outcome_set if e < 1 or e > domain_size]
        if bad:
            raise EventOrderingError(
                f"Event {i} ({event.timestamp}) has ids outside [1, {domain_size}]: {sorted(bad)}"
            )
        if i > 0 and event.timestamp < events[i - 1].timestamp:
            raise EventOrderingError(
                f"Events must be in ascending timestamp order; event {i} ({event.timestamp}) "
                f"precedes event {i - 1} ({events[i - 1].timestamp})"
            )
    return events


def to_canonical_order(events: Iterable[OutcomeEvent]) -> List[OutcomeEvent]:
    """Sort events oldest-first. Stable for equal timestamps."""
    return sorted(events, key=lambda e: e.timestamp)


def events_from_frame(df: pd.DataFrame, date_col: str = 'date',
                      numbers_col: Optional[str] = None,
                      label_col: Optional[str] = None) -> List[OutcomeEvent]:
    """
    Build events from a DataFrame.

    The outcome set is read either from `numbers_col` (a delimited string or a
    list) or from every column named `n1`, `n2`, ...
    """
    if numbers_col is None:
        number_cols = [c for c in df.columns if str(c).startswith('n') and str(c)[1:].isdigit()]
        if not number_cols:
            raise ValueError("No outcome columns found (expected n1, n2, ... or numbers_col)")
    events = []
    for _, row in df.iterrows():
        if numbers_col is not None:
            raw = row[numbers_col]
            if isinstance(raw, str):
                numbers = [int(x) for x in raw.replace(';', ',').replace(' ', ',').split(',') if x]
            else:
                numbers = [int(x) for x in raw]
        else:
            numbers = [int(row[c]) for c in number_cols if pd.notna(row[c])]
        label = str(row[label_col]) if label_col and label_col in row else ""
        events.append(OutcomeEvent(timestamp=pd.Timestamp(row[date_col]).to_pydatetime(),
                                   outcome_set=frozenset(numbers), label=label))
    return events


def events_to_frame(events: Sequence[OutcomeEvent]) -> pd.DataFrame:
    """Flatten events into a DataFrame with a sorted `numbers` column."""
    return pd.DataFrame({
        'date': [e.timestamp for e in events],
        'numbers': [",".join(str(n) for n in sorted(e.outcome_set)) for e in events],
        'label': [e.label for e in events],
    })
