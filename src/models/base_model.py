"""Base class for all prediction models."""

import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import joblib
import numpy as np

import sys
try:
    from ..data.events import OutcomeEvent, validate_history
    from ..utils.context import EngineContext
    from ..utils.errors import ModelBusyError, UntrainedModelError
except ImportError:
    current_dir = Path(__file__).parent.parent
    if str(current_dir) not in sys.path:
        sys.path.insert(0, str(current_dir))
    from data.events import OutcomeEvent, validate_history
    from utils.context import EngineContext
    from utils.errors import ModelBusyError, UntrainedModelError

logger = logging.getLogger(__name__)


class ModelKind(str, Enum):
    BOOSTED_TREE = "boosted_tree"
    BAGGED_TREE = "bagged_tree"
    SEQUENCE_MODEL = "sequence_model"


@dataclass
class PredictionCandidate:
    """Standardized model output for one entity."""
    entity_id: int
    probability: float  # [0, 1]
    confidence: float  # [0, 1]
    uncertainty: float  # [0, 1]
    contributing_features: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self):
        self.entity_id = int(self.entity_id)
        self.probability = float(np.clip(self.probability, 0.0, 1.0))
        self.confidence = float(np.clip(self.confidence, 0.0, 1.0))
        self.uncertainty = float(np.clip(self.uncertainty, 0.0, 1.0))


class BaseModel(ABC):
    """
    Base class that all models must implement.

    train / predict / dispose are mutually exclusive per instance: a call made
    while another one is running raises ModelBusyError instead of waiting.
    """

    kind: Optional[ModelKind] = None

    def __init__(self, name: str, context: Optional[EngineContext] = None):
        self.name = name
        self.context = context if context is not None else EngineContext.create()
        self.is_trained = False
        self.training_metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()

    @contextmanager
    def _exclusive(self, operation: str):
        if not self._lock.acquire(blocking=False):
            raise ModelBusyError(self.name, operation)
        try:
            yield
        finally:
            self._lock.release()

    @abstractmethod
    def _train(self, events: List[OutcomeEvent]) -> Dict[str, Any]:
        """
        Fit on a validated, canonical-order history.

        Returns:
            Dictionary with training metrics
        """

    @abstractmethod
    def _predict(self, events: List[OutcomeEvent]) -> List[PredictionCandidate]:
        """Score every entity given the history up to (and excluding) the next event."""

    def _dispose(self):
        """Release fitted state. Override when the model holds more than trees."""

    def get_params(self) -> Dict[str, Any]:
        return {}

    def _get_state(self) -> Dict[str, Any]:
        return {}

    def _set_state(self, state: Dict[str, Any]):
        pass

    def train(self, events: Sequence[OutcomeEvent]) -> Dict[str, Any]:
        """
        Train the model.

        Args:
            events: Canonical-order history (oldest first)

        Returns:
            Dictionary with training metrics
        """
        with self._exclusive('train'):
            events = validate_history(events, self.context.domain_size)
            metrics = self._train(events)
            self.is_trained = True
            self.training_metrics = metrics
            logger.info(f"{self.name} trained on {len(events)} events")
            return metrics

    def predict(self, events: Sequence[OutcomeEvent],
                top_n: Optional[int] = None) -> List[PredictionCandidate]:
        """
        Rank entities for the event following `events`.

        Args:
            events: Canonical-order history (oldest first)
            top_n: Number of candidates to return (None = full ranking)

        Returns:
            Candidates sorted by descending probability
        """
        with self._exclusive('predict'):
            if not self.is_trained:
                raise UntrainedModelError(self.name)
            events = validate_history(events, self.context.domain_size)
            candidates = sorted(self._predict(events), key=lambda c: c.probability, reverse=True)
            return candidates if top_n is None else candidates[:top_n]

    def evaluate(self, events: Sequence[OutcomeEvent], start: int,
                 top_n: int = 5) -> Dict[str, float]:
        """
        Walk events[start:], predicting each event from the ones before it.

        Returns:
            Prediction metrics (hit_rate, f1_score, expected_value, ...)
        """
        if not self.is_trained:
            raise UntrainedModelError(self.name)
        try:
            from ..validation.metrics import compute_prediction_metrics
        except ImportError:
            from validation.metrics import compute_prediction_metrics

        events = validate_history(events, self.context.domain_size)
        predictions, actuals = [], []
        for t in range(max(1, start), len(events)):
            predictions.append(self.predict(events[:t], top_n))
            actuals.append(events[t])
        return compute_prediction_metrics(predictions, actuals, self.context.domain_size)

    def dispose(self):
        """Drop fitted state; the model returns to untrained."""
        with self._exclusive('dispose'):
            self._dispose()
            self.is_trained = False
            self.training_metrics = {}

    def save(self, filepath: str):
        """Save model state and metadata."""
        if not self.is_trained:
            raise UntrainedModelError(self.name)
        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            'name': self.name,
            'kind': self.kind.value if self.kind else None,
            'params': self.get_params(),
            'training_metrics': self.training_metrics,
            'state': self._get_state(),
        }
        joblib.dump(payload, path)
        logger.info(f"Saved {self.name} to {path}")

    def load(self, filepath: str):
        """Load model state and metadata."""
        payload = joblib.load(Path(filepath))
        if self.kind and payload.get('kind') not in (None, self.kind.value):
            raise ValueError(f"{filepath} holds a {payload['kind']} model, not {self.kind.value}")
        self.training_metrics = payload.get('training_metrics', {})
        self._set_state(payload['state'])
        self.is_trained = True
