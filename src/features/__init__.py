"""Feature engineering over outcome-event windows."""

from .feature_builder import (
    FeatureExtractor, FEATURE_NAMES, indicator_matrix,
    pair_interaction_matrix, interaction_scores
)

__all__ = [
    'FeatureExtractor', 'FEATURE_NAMES', 'indicator_matrix',
    'pair_interaction_matrix', 'interaction_scores'
]
