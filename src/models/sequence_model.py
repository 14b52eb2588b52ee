"""
Sequence Model collaborator.

Deep sequence training is delegated to an external collaborator that
exposes train / predict / dispose. SequenceModelAdapter plugs any such
collaborator into the BaseModel capability; MLPSequenceModel is the default
collaborator, a scikit-learn multi-label MLP over the one-hot encoding of the
last few draws.
"""

import logging
import warnings
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

import numpy as np
from sklearn.exceptions import ConvergenceWarning
from sklearn.neural_network import MLPClassifier

from .base_model import BaseModel, ModelKind, PredictionCandidate

import sys
from pathlib import Path
try:
    from ..data.events import OutcomeEvent
    from ..features.feature_builder import indicator_matrix
    from ..utils.config import DOMAIN_SIZE, DEFAULT_SEED
    from ..utils.errors import InsufficientDataError, UntrainedModelError
except ImportError:
    current_dir = Path(__file__).parent.parent
    if str(current_dir) not in sys.path:
        sys.path.insert(0, str(current_dir))
    from data.events import OutcomeEvent
    from features.feature_builder import indicator_matrix
    from utils.config import DOMAIN_SIZE, DEFAULT_SEED
    from utils.errors import InsufficientDataError, UntrainedModelError

logger = logging.getLogger(__name__)


@runtime_checkable
class SequenceModel(Protocol):
    """External collaborator contract."""

    def train(self, events: Sequence[OutcomeEvent]) -> Dict[str, Any]:
        ...

    def predict(self, events: Sequence[OutcomeEvent], top_n: Optional[int] = None) -> List[PredictionCandidate]:
        ...

    def dispose(self) -> None:
        ...


@dataclass
class SequenceParams:
    sequence_length: int = 10
    hidden_units: int = 64
    learning_rate: float = 0.001
    batch_size: int = 32
    epochs: int = 50
    l2: float = 1e-4


class MLPSequenceModel:
    """Multi-label MLP: flattened one-hot of the last `sequence_length` draws -> next draw."""

    def __init__(self, params: Optional[SequenceParams] = None,
                 domain_size: int = DOMAIN_SIZE, seed: int = DEFAULT_SEED):
        self.params = params or SequenceParams()
        self.domain_size = domain_size
        self.seed = seed
        self.model: Optional[MLPClassifier] = None

    def _encode(self, events: Sequence[OutcomeEvent]) -> np.ndarray:
        """Flatten the last sequence_length draws, zero-padded at the oldest end."""
        length = self.params.sequence_length
        window = indicator_matrix(list(events)[-length:], self.domain_size)
        if window.shape[0] < length:
            window = np.vstack([np.zeros((length - window.shape[0], self.domain_size)), window])
        return window.ravel()

    def train(self, events: Sequence[OutcomeEvent]) -> Dict[str, Any]:
        events = list(events)
        length = self.params.sequence_length
        n_samples = len(events) - length
        if n_samples < 2:
            raise InsufficientDataError("SequenceModel.train", length + 2, len(events))

        X = np.vstack([self._encode(events[t - length:t]) for t in range(length, len(events))])
        Y = indicator_matrix(events[length:], self.domain_size).astype(int)

        self.model = MLPClassifier(
            hidden_layer_sizes=(self.params.hidden_units,),
            learning_rate_init=self.params.learning_rate,
            batch_size=min(self.params.batch_size, n_samples),
            max_iter=self.params.epochs,
            alpha=self.params.l2,
            random_state=self.seed,
        )
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", category=ConvergenceWarning)
            self.model.fit(X, Y)

        fitted = self.model.predict(X)
        return {
            'training_accuracy': float((fitted == Y).mean()),
            'final_loss': float(self.model.loss_),
            'epochs_run': int(self.model.n_iter_),
            'n_samples': int(n_samples),
        }

    def predict(self, events: Sequence[OutcomeEvent], top_n: Optional[int] = None) -> List[PredictionCandidate]:
        if self.model is None:
            raise UntrainedModelError("SequenceModel")
        probabilities = np.asarray(self.model.predict_proba(self._encode(events).reshape(1, -1)))[0]
        candidates = []
        for j, p in enumerate(probabilities):
            confidence = min(0.95, max(0.1, float(np.exp(-abs(p - 0.5) * 2))))
            candidates.append(PredictionCandidate(
                entity_id=j + 1,
                probability=p,
                confidence=confidence,
                uncertainty=1.0 - confidence,
                contributing_features={'sequence_length': float(self.params.sequence_length)},
            ))
        candidates.sort(key=lambda c: c.probability, reverse=True)
        return candidates if top_n is None else candidates[:top_n]

    def dispose(self):
        self.model = None


class SequenceModelAdapter(BaseModel):
    """Exposes a SequenceModel collaborator through the BaseModel interface."""

    kind = ModelKind.SEQUENCE_MODEL

    def __init__(self, collaborator: Optional[SequenceModel] = None,
                 params: Optional[SequenceParams] = None, context=None, **overrides):
        super().__init__("SequenceModel", context)
        if collaborator is None:
            params = params or SequenceParams()
            for key, value in overrides.items():
                setattr(params, key, value)
            collaborator = MLPSequenceModel(params, self.context.domain_size, self.context.spawn_seed())
        if not isinstance(collaborator, SequenceModel):
            raise TypeError(f"{type(collaborator).__name__} does not implement train/predict/dispose")
        self.collaborator = collaborator

    def _train(self, events):
        return self.collaborator.train(events)

    def _predict(self, events):
        return self.collaborator.predict(events, None)

    def _dispose(self):
        self.collaborator.dispose()

    def get_params(self):
        params = getattr(self.collaborator, 'params', None)
        return asdict(params) if params is not None else {}

    def _get_state(self):
        return {'collaborator': self.collaborator}

    def _set_state(self, state):
        self.collaborator = state['collaborator']
