"""Shared plumbing for the tree-based ensembles."""

import logging
from dataclasses import asdict
from typing import Any, Dict, List, Tuple

import numpy as np

from .base_model import BaseModel
from .decision_tree import DecisionTreeLearner

import sys
from pathlib import Path
try:
    from ..data.events import OutcomeEvent
    from ..features.feature_builder import FeatureExtractor, FEATURE_NAMES
    from ..utils.errors import InsufficientDataError
except ImportError:
    current_dir = Path(__file__).parent.parent
    if str(current_dir) not in sys.path:
        sys.path.insert(0, str(current_dir))
    from data.events import OutcomeEvent
    from features.feature_builder import FeatureExtractor, FEATURE_NAMES
    from utils.errors import InsufficientDataError

logger = logging.getLogger(__name__)


class TreeEnsembleModel(BaseModel):
    """
    Feature extraction, training-set construction and importance bookkeeping
    for models made of DecisionTreeLearner instances.

    Subclasses set `self.params` (with `window` and `max_samples`) and
    implement `fit_arrays` / `_score`.
    """

    def __init__(self, name, context=None):
        super().__init__(name, context)
        self.extractor = FeatureExtractor(self.context.domain_size)
        self.trees: List[DecisionTreeLearner] = []
        self.feature_importance = np.zeros(len(FEATURE_NAMES))

    def fit_arrays(self, X: np.ndarray, y: np.ndarray) -> Dict[str, Any]:
        raise NotImplementedError

    def _training_set(self, events: List[OutcomeEvent]) -> Tuple[np.ndarray, np.ndarray]:
        window = self.params.window
        if len(events) <= window:
            raise InsufficientDataError(f"{self.name}.train", window + 1, len(events))
        return self.extractor.build_training_set(events, window, self.params.max_samples)

    def _train(self, events):
        X, y = self._training_set(events)
        metrics = self.fit_arrays(X, y)
        logger.debug(f"{self.name}: {len(self.trees)} trees, importance={self.importance_dict()}")
        return metrics

    def _features(self, events: List[OutcomeEvent]) -> np.ndarray:
        return self.extractor.extract(events, self.params.window)

    def _contributions(self, features: np.ndarray, top: int = 3) -> List[Dict[str, float]]:
        """Per-entity values of the most important features."""
        order = np.argsort(-self.feature_importance, kind='mergesort')[:top]
        names = [FEATURE_NAMES[i] for i in order]
        return [dict(zip(names, row[order].round(6).tolist())) for row in features]

    def importance_dict(self) -> Dict[str, float]:
        return dict(zip(FEATURE_NAMES, self.feature_importance.tolist()))

    def get_params(self):
        return asdict(self.params)

    def _get_state(self):
        return {'trees': self.trees, 'feature_importance': self.feature_importance}

    def _set_state(self, state):
        self.trees = state['trees']
        self.feature_importance = np.asarray(state['feature_importance'], dtype=float)

    def _dispose(self):
        for tree in self.trees:
            tree.dispose()
        self.trees = []
        self.feature_importance = np.zeros(len(FEATURE_NAMES))
