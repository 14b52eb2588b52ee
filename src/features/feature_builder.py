"""Build per-entity feature vectors from a window of outcome events."""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

import sys
from pathlib import Path
try:
    from ..data.events import OutcomeEvent
    from ..utils.config import (
        DOMAIN_SIZE, MOMENTUM_WINDOW, VOLATILITY_WINDOW, TREND_WINDOW,
        MOMENTUM_DECAY, INTERACTION_DECAY
    )
except ImportError:
    current_dir = Path(__file__).parent.parent
    if str(current_dir) not in sys.path:
        sys.path.insert(0, str(current_dir))
    from data.events import OutcomeEvent
    from utils.config import (
        DOMAIN_SIZE, MOMENTUM_WINDOW, VOLATILITY_WINDOW, TREND_WINDOW,
        MOMENTUM_DECAY, INTERACTION_DECAY
    )

logger = logging.getLogger(__name__)

FEATURE_NAMES = [
    'frequency', 'gap', 'momentum', 'volatility', 'trend',
    'cyclical', 'seasonal', 'co_occurrence', 'interaction'
]


def indicator_matrix(events: Sequence[OutcomeEvent], domain_size: int = DOMAIN_SIZE) -> np.ndarray:
    """(n_events, domain_size) 0/1 matrix; column j is entity j + 1."""
    matrix = np.zeros((len(events), domain_size), dtype=float)
    for row, event in enumerate(events):
        for entity in event.outcome_set:
            if 1 <= entity <= domain_size:
                matrix[row, entity - 1] = 1.0
    return matrix


def _normalize_by_max(values: np.ndarray, use_abs: bool = False) -> np.ndarray:
    scale = np.abs(values).max() if use_abs else values.max()
    if values.size == 0 or scale <= 0:
        return np.zeros_like(values)
    return values / scale


def pair_interaction_matrix(indicators: np.ndarray) -> np.ndarray:
    """
    Conditional co-occurrence ratio |A and B| / |A or B| for every entity pair.

    Diagonal is zero; pairs never seen give 0.
    """
    co_counts = indicators.T @ indicators
    counts = np.diag(co_counts).copy()
    union = counts[:, None] + counts[None, :] - co_counts
    ratio = np.divide(co_counts, union, out=np.zeros_like(co_counts), where=union > 0)
    np.fill_diagonal(ratio, 0.0)
    return ratio


def interaction_scores(events: Sequence[OutcomeEvent], domain_size: int = DOMAIN_SIZE,
                       recent: int = 20, decay: float = 0.1) -> np.ndarray:
    """
    Recency-weighted interaction score per entity.

    For each of the `recent` most recent events containing an entity, sum the
    pair ratios with its co-members (weight e^(-decay * i), i = 0 for the newest)
    and divide by the number of recent events.
    """
    if not events:
        return np.zeros(domain_size)
    indicators = indicator_matrix(events, domain_size)
    ratio = pair_interaction_matrix(indicators)
    recent_rows = indicators[::-1][:recent]
    weights = np.exp(-decay * np.arange(len(recent_rows)))
    partner_sums = recent_rows @ ratio
    scores = (weights[:, None] * recent_rows * partner_sums).sum(axis=0)
    return scores / max(1, len(recent_rows))


class FeatureExtractor:
    """
    Turns a canonical-order (oldest first) event window into one fixed-width
    feature row per entity. Extraction is pure: the same window always gives
    the same matrix.
    """

    def __init__(self, domain_size: int = DOMAIN_SIZE):
        self.domain_size = domain_size
        self.feature_names = list(FEATURE_NAMES)

    @property
    def n_features(self) -> int:
        return len(self.feature_names)

    def extract(self, events: Sequence[OutcomeEvent], window: Optional[int] = None) -> np.ndarray:
        """
        Extract the feature matrix for the last `window` events.

        Args:
            events: Canonical-order history (events[-1] is the most recent)
            window: Look-back size; None uses every event

        Returns:
            Array of shape (domain_size, n_features)
        """
        if window is not None:
            if window < 0:
                raise ValueError(f"window must be >= 0, got {window}")
            events = events[len(events) - window:] if window else []
        n_events = len(events)
        if n_events == 0:
            return np.zeros((self.domain_size, self.n_features))

        indicators = indicator_matrix(events, self.domain_size)
        # newest first, recency index 0 = most recent event
        by_recency = indicators[::-1]

        columns = [
            indicators.sum(axis=0) / n_events,
            self._gaps(by_recency),
            self._momentum(by_recency),
            self._volatility(by_recency),
            self._trend(indicators),
            self._cyclical(events, indicators),
            self._seasonal(events, indicators),
            self._co_occurrence(indicators),
            self._interaction(indicators),
        ]
        return np.column_stack(columns)

    def extract_frame(self, events: Sequence[OutcomeEvent], window: Optional[int] = None) -> pd.DataFrame:
        """Same as extract(), indexed by entity id with named columns."""
        matrix = self.extract(events, window)
        index = pd.RangeIndex(1, self.domain_size + 1, name='entity_id')
        return pd.DataFrame(matrix, index=index, columns=self.feature_names)

    def build_training_set(self, events: Sequence[OutcomeEvent], window: int,
                           max_samples: Optional[int] = None) -> Tuple[np.ndarray, np.ndarray]:
        """
        Slide the window over the history.

        For each t >= window, every entity contributes one row: features of
        events[t - window:t] and label 1 if the entity is in events[t].

        Args:
            events: Canonical-order history
            window: Look-back size
            max_samples: Keep only the most recent targets (None = all)

        Returns:
            (X, y) with X of shape (n_targets * domain_size, n_features)
        """
        targets = list(range(window, len(events)))
        if max_samples is not None:
            targets = targets[-max_samples:]
        if not targets:
            return np.zeros((0, self.n_features)), np.zeros(0)

        blocks: List[np.ndarray] = []
        labels: List[np.ndarray] = []
        for t in targets:
            blocks.append(self.extract(events[t - window:t]))
            labels.append(indicator_matrix([events[t]], self.domain_size)[0])
        return np.vstack(blocks), np.concatenate(labels)

    # --- individual components -------------------------------------------------

    def _gaps(self, by_recency: np.ndarray) -> np.ndarray:
        n_events = by_recency.shape[0]
        seen = by_recency.any(axis=0)
        last_seen = np.argmax(by_recency > 0, axis=0).astype(float)
        gaps = np.where(seen, last_seen, float(n_events))
        return _normalize_by_max(gaps)

    def _momentum(self, by_recency: np.ndarray) -> np.ndarray:
        recent = by_recency[:MOMENTUM_WINDOW]
        weights = np.exp(-MOMENTUM_DECAY * np.arange(len(recent)))
        return (weights @ recent) / len(recent)

    def _volatility(self, by_recency: np.ndarray) -> np.ndarray:
        return by_recency[:VOLATILITY_WINDOW].var(axis=0)

    def _trend(self, indicators: np.ndarray) -> np.ndarray:
        # chronological order so a positive slope means rising occurrence
        recent = indicators[-TREND_WINDOW:]
        n = len(recent)
        if n < 2:
            return np.zeros(self.domain_size)
        x = np.arange(n, dtype=float)
        x -= x.mean()
        return (x @ (recent - recent.mean(axis=0))) / (x @ x)

    def _cyclical(self, events: Sequence[OutcomeEvent], indicators: np.ndarray) -> np.ndarray:
        encodings = []
        for event in events:
            day_of_week = event.timestamp.isoweekday() % 7  # Sunday = 0
            day_of_month = event.timestamp.day
            encodings.append((np.sin(2 * np.pi * day_of_week / 7) +
                              np.sin(2 * np.pi * day_of_month / 31)) / 2)
        return _normalize_by_max(np.asarray(encodings) @ indicators, use_abs=True)

    def _seasonal(self, events: Sequence[OutcomeEvent], indicators: np.ndarray) -> np.ndarray:
        quarters = np.array([(event.timestamp.month - 1) // 3 for event in events], dtype=float)
        return _normalize_by_max(np.sin(2 * np.pi * quarters / 4) @ indicators, use_abs=True)

    def _co_occurrence(self, indicators: np.ndarray) -> np.ndarray:
        partners = indicators.sum(axis=1) - 1
        return _normalize_by_max(np.clip(partners, 0, None) @ indicators)

    def _interaction(self, indicators: np.ndarray) -> np.ndarray:
        ratio = pair_interaction_matrix(indicators)
        by_recency = indicators[::-1]
        weights = np.exp(-INTERACTION_DECAY * np.arange(len(by_recency)))
        strength = (weights[:, None] * by_recency * (by_recency @ ratio)).sum(axis=0)
        # continuity bonus for entities repeated from the previous event
        if len(by_recency) > 1:
            repeats = by_recency[:-1] * by_recency[1:]
            strength += 0.5 * (weights[:-1, None] * repeats).sum(axis=0)
        return _normalize_by_max(strength, use_abs=True)
