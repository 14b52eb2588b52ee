"""Ensemble weighting and multi-model combination."""

from .weight_optimizer import (
    EnsembleConfig, EnsembleWeightOptimizer, WeightingStrategy,
    normalize_weights, static_weights
)
from .weighted_ensemble import WeightedEnsemble

__all__ = [
    'EnsembleConfig', 'EnsembleWeightOptimizer', 'WeightingStrategy',
    'normalize_weights', 'static_weights', 'WeightedEnsemble'
]
