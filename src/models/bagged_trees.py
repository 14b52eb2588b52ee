"""
Bagged fully-randomized trees (extra-trees style).

Each tree sees a bootstrap resample of the training rows and splits on a
random feature at a random threshold. Trees are independent given their
seed, so they are built through joblib and merged afterwards.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np
from joblib import Parallel, delayed

from .base_model import ModelKind, PredictionCandidate
from .decision_tree import DecisionTreeLearner, SplitPolicy
from .tree_ensemble import TreeEnsembleModel

import sys
from pathlib import Path
try:
    from ..features.feature_builder import indicator_matrix, pair_interaction_matrix, interaction_scores
    from ..utils.config import DEFAULT_FEATURE_WINDOW, PREDICTION_LOOKBACK
    from ..utils.errors import UntrainedModelError
    from ..utils.helpers import sigmoid
except ImportError:
    current_dir = Path(__file__).parent.parent
    if str(current_dir) not in sys.path:
        sys.path.insert(0, str(current_dir))
    from features.feature_builder import indicator_matrix, pair_interaction_matrix, interaction_scores
    from utils.config import DEFAULT_FEATURE_WINDOW, PREDICTION_LOOKBACK
    from utils.errors import UntrainedModelError
    from utils.helpers import sigmoid


@dataclass
class BaggingParams:
    n_trees: int = 50
    max_depth: int = 8
    min_samples_split: int = 5
    window: int = DEFAULT_FEATURE_WINDOW
    max_samples: Optional[int] = 200
    rescore_top_k: int = 10
    interaction_recent: int = 20
    interaction_decay: float = 0.1


def _fit_bootstrap_tree(X: np.ndarray, y: np.ndarray, seed: int,
                        max_depth: int, min_samples_split: int) -> DecisionTreeLearner:
    rng = np.random.default_rng(seed)
    sample = rng.integers(0, y.size, size=y.size)
    tree = DecisionTreeLearner(
        max_depth=max_depth,
        min_samples_split=min_samples_split,
        split_policy=SplitPolicy.RANDOMIZED,
        rng=rng,
    )
    return tree.fit(X[sample], y[sample])


class BaggedTreeEnsemble(TreeEnsembleModel):
    """Bootstrap-aggregated randomized trees with interaction re-scoring."""

    kind = ModelKind.BAGGED_TREE

    def __init__(self, params: Optional[BaggingParams] = None, context=None, **overrides):
        super().__init__("BaggedTrees", context)
        self.params = params or BaggingParams()
        for key, value in overrides.items():
            setattr(self.params, key, value)

    def fit_arrays(self, X: np.ndarray, y: np.ndarray) -> Dict[str, Any]:
        X = np.asarray(X, dtype=float)
        y = np.asarray(y, dtype=float)
        if y.size == 0:
            self.trees = [DecisionTreeLearner().fit(X, y)]
            self.feature_importance = np.zeros(X.shape[1])
            self.is_trained = True
            return {'training_accuracy': 0.0, 'n_trees': 1, 'n_samples': 0, 'mean_depth': 0.0}

        # Seeds are drawn up-front so the forest does not depend on n_jobs
        seeds = [self.context.spawn_seed() for _ in range(self.params.n_trees)]
        self.trees = Parallel(n_jobs=self.context.n_jobs)(
            delayed(_fit_bootstrap_tree)(
                X, y, seed, self.params.max_depth, self.params.min_samples_split
            )
            for seed in seeds
        )
        self.feature_importance = np.sum([tree.feature_importance for tree in self.trees], axis=0)
        self.is_trained = True

        mean_output = np.mean([tree.predict(X) for tree in self.trees], axis=0)
        return {
            'training_accuracy': float(np.mean((mean_output > 0.5) == (y > 0.5))),
            'n_trees': len(self.trees),
            'n_samples': int(y.size),
            'mean_depth': float(np.mean([tree.depth for tree in self.trees])),
        }

    def predict_proba(self, X: np.ndarray) -> np.ndarray:
        """Mean tree output squashed as sigmoid(5 * (mean - 0.5)), no interaction weighting."""
        if not self.trees:
            raise UntrainedModelError(self.name)
        X = np.atleast_2d(X)
        mean_output = np.mean([tree.predict(X) for tree in self.trees], axis=0)
        return sigmoid(5.0 * (mean_output - 0.5))

    def _predict(self, events):
        if not self.trees:
            raise UntrainedModelError(self.name)
        X = self._features(events)
        outputs = np.vstack([tree.predict(X) for tree in self.trees])
        mean_output = outputs.mean(axis=0)
        variance = outputs.var(axis=0)

        recent = events[-PREDICTION_LOOKBACK:]
        weights = interaction_scores(recent, self.context.domain_size,
                                     recent=self.params.interaction_recent,
                                     decay=self.params.interaction_decay)
        probabilities = sigmoid(5.0 * (mean_output * (0.7 + 0.3 * weights) - 0.5))
        confidence = np.clip(1.0 - variance, 0.0, 1.0)
        uncertainty = np.minimum(0.9, variance + 0.1)
        contributions = self._contributions(X)

        candidates = [
            PredictionCandidate(
                entity_id=j + 1,
                probability=probabilities[j],
                confidence=confidence[j],
                uncertainty=uncertainty[j],
                contributing_features=contributions[j],
            )
            for j in range(X.shape[0])
        ]
        return self._rescore_top_k(candidates, recent)

    def _rescore_top_k(self, candidates, recent_events):
        """Re-weight the top-K by how often they co-occur with each other, then re-sort."""
        k = self.params.rescore_top_k
        if k < 2 or not recent_events:
            return candidates
        ratio = pair_interaction_matrix(indicator_matrix(recent_events, self.context.domain_size))
        candidates = sorted(candidates, key=lambda c: c.probability, reverse=True)
        top_ids = np.array([c.entity_id - 1 for c in candidates[:k]])

        for candidate in candidates[:k]:
            others = top_ids[top_ids != candidate.entity_id - 1]
            avg = float(ratio[candidate.entity_id - 1, others].mean()) if others.size else 0.0
            candidate.probability = float(np.clip(candidate.probability * (0.8 + 0.2 * avg), 0.0, 1.0))
            boosted = min(0.95, candidate.confidence + 0.1 * avg)
            # Uncertainty gives up what confidence gains
            candidate.uncertainty = max(0.0, candidate.uncertainty - (boosted - candidate.confidence))
            candidate.confidence = boosted
            candidate.contributing_features['pair_interaction'] = round(avg, 6)

        return sorted(candidates, key=lambda c: c.probability, reverse=True)
