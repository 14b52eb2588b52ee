"""
Validation package.

Modules:
- metrics: Hit, profit, behavioural and calibration metrics for ranked predictions
- time_series_cv: Purged walk-forward cross-validation
"""

from .metrics import compute_prediction_metrics, METRIC_NAMES, KEY_METRICS, trade_profit, jaccard
from .time_series_cv import (
    CVConfig, Fold, FoldResult, FoldFailure, ConvergenceAnalysis,
    ValidationResult, TimeSeriesCrossValidator
)

__all__ = [
    'compute_prediction_metrics',
    'METRIC_NAMES',
    'KEY_METRICS',
    'trade_profit',
    'jaccard',
    'CVConfig',
    'Fold',
    'FoldResult',
    'FoldFailure',
    'ConvergenceAnalysis',
    'ValidationResult',
    'TimeSeriesCrossValidator'
]
