"""History Provider implementations yielding canonical-order outcome events."""

import logging
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

import pandas as pd

from .events import OutcomeEvent, events_from_frame, to_canonical_order, validate_history

import sys
try:
    from ..utils.config import DOMAIN_SIZE, HISTORY_DIR
except ImportError:
    current_dir = Path(__file__).parent.parent
    if str(current_dir) not in sys.path:
        sys.path.insert(0, str(current_dir))
    from utils.config import DOMAIN_SIZE, HISTORY_DIR

logger = logging.getLogger(__name__)


class HistoryProvider(Protocol):
    """Anything that can hand over the ordered event history."""

    def ordered_events(self) -> Sequence[OutcomeEvent]:
        ...


class InMemoryHistory:
    """History held in memory; input may be in any order and is normalised once."""

    def __init__(self, events: Sequence[OutcomeEvent], domain_size: int = DOMAIN_SIZE):
        self._events = validate_history(to_canonical_order(events), domain_size)

    def ordered_events(self) -> List[OutcomeEvent]:
        return list(self._events)

    def __len__(self) -> int:
        return len(self._events)


class CsvHistory:
    """Load and cache a draw history from CSV."""

    def __init__(self, filepath: Optional[Path] = None, date_col: str = 'date',
                 numbers_col: Optional[str] = None, label_col: Optional[str] = 'label',
                 domain_size: int = DOMAIN_SIZE):
        self.filepath = Path(filepath) if filepath else HISTORY_DIR / "draws.csv"
        self.date_col = date_col
        self.numbers_col = numbers_col
        self.label_col = label_col
        self.domain_size = domain_size
        self._cache: Optional[List[OutcomeEvent]] = None

    def ordered_events(self) -> List[OutcomeEvent]:
        if self._cache is None:
            if not self.filepath.exists():
                raise FileNotFoundError(f"History file not found: {self.filepath}")
            df = pd.read_csv(self.filepath)
            label_col = self.label_col if self.label_col in df.columns else None
            events = events_from_frame(df, self.date_col, self.numbers_col, label_col)
            self._cache = validate_history(to_canonical_order(events), self.domain_size)
            logger.info(f"Loaded {len(self._cache)} events from {self.filepath}")
        return list(self._cache)

    def refresh(self):
        self._cache = None
