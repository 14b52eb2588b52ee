"""Hyperparameter search driven by cross-validated composite scores."""

from .hyperparameter_search import (
    HyperparameterSearch, SearchSpace, OptimizationTrial, OptimizationResult,
    COMPOSITE_WEIGHTS, DEFAULT_SEARCH_SPACES, FAILED_SCORE, composite_score
)

__all__ = [
    'HyperparameterSearch', 'SearchSpace', 'OptimizationTrial', 'OptimizationResult',
    'COMPOSITE_WEIGHTS', 'DEFAULT_SEARCH_SPACES', 'FAILED_SCORE', 'composite_score'
]
