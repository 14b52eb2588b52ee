"""
Prediction Metrics

Scores a sequence of (top-N candidates, actual event) pairs:
- Hit-based: precision, recall / hit rate, F1, coverage
- Profit-based: expected value, Sharpe-like ratio
- Behavioural: consistency, diversity, temporal stability
- Calibration: uncertainty calibration, calibration error, log loss
"""

import logging
from typing import Dict, Iterable, List, Sequence

import numpy as np
from sklearn.metrics import log_loss

import sys
from pathlib import Path
try:
    from ..utils.config import DOMAIN_SIZE, HIT_REWARD, MISS_COST
    from ..utils.helpers import coefficient_of_variation, safe_divide
except ImportError:
    current_dir = Path(__file__).parent.parent
    if str(current_dir) not in sys.path:
        sys.path.insert(0, str(current_dir))
    from utils.config import DOMAIN_SIZE, HIT_REWARD, MISS_COST
    from utils.helpers import coefficient_of_variation, safe_divide

logger = logging.getLogger(__name__)

METRIC_NAMES = [
    'precision', 'recall', 'accuracy', 'hit_rate', 'f1_score', 'coverage_rate',
    'expected_value', 'consistency_score', 'diversity_score', 'temporal_stability',
    'uncertainty_calibration', 'calibration_error', 'log_loss', 'sharpe_ratio',
]

# Metrics whose fold-to-fold spread defines the stability score
KEY_METRICS = ['hit_rate', 'coverage_rate', 'f1_score', 'expected_value']


def _as_set(actual) -> set:
    if hasattr(actual, 'outcome_set'):
        return set(actual.outcome_set)
    return set(actual)


def trade_profit(hits: int, n_predicted: int) -> float:
    """hits * reward - misses * cost."""
    return hits * HIT_REWARD - (n_predicted - hits) * MISS_COST


def jaccard(a: Iterable[int], b: Iterable[int]) -> float:
    a, b = set(a), set(b)
    union = a | b
    return len(a & b) / len(union) if union else 1.0


def empty_metrics() -> Dict[str, float]:
    return {name: 0.0 for name in METRIC_NAMES}


def compute_prediction_metrics(predictions: Sequence[Sequence], actuals: Sequence,
                               domain_size: int = DOMAIN_SIZE) -> Dict[str, float]:
    """
    Compute metrics over aligned prediction steps.

    Args:
        predictions: One ranked candidate list (PredictionCandidate) per step
        actuals: The realised OutcomeEvent (or set of entity ids) per step
        domain_size: Number of possible entities

    Returns:
        Dictionary keyed by METRIC_NAMES plus n_steps and total_hits
    """
    if len(predictions) != len(actuals):
        raise ValueError(f"{len(predictions)} prediction steps but {len(actuals)} actual events")
    if not predictions:
        return {**empty_metrics(), 'n_steps': 0, 'total_hits': 0}

    precisions, recalls, profits, hit_flags = [], [], [], []
    prediction_sets: List[set] = []
    confidences, probabilities, outcomes = [], [], []
    predicted_slots = 0

    for candidates, actual in zip(predictions, actuals):
        actual_set = _as_set(actual)
        ids = [c.entity_id for c in candidates]
        hits = len(set(ids) & actual_set)
        n_predicted = len(ids)
        predicted_slots += n_predicted

        precisions.append(safe_divide(hits, n_predicted))
        recalls.append(safe_divide(hits, len(actual_set)))
        profits.append(safe_divide(trade_profit(hits, n_predicted), n_predicted))
        hit_flags.append(hits > 0)
        prediction_sets.append(set(ids))

        for candidate in candidates:
            hit = 1.0 if candidate.entity_id in actual_set else 0.0
            confidences.append(candidate.confidence)
            probabilities.append(candidate.probability)
            outcomes.append(hit)

    precision = float(np.mean(precisions))
    recall = float(np.mean(recalls))
    f1 = safe_divide(2 * precision * recall, precision + recall)

    distinct = len(set().union(*prediction_sets))
    possible = min(domain_size, predicted_slots)

    if len(prediction_sets) > 1:
        temporal_stability = float(np.mean([
            jaccard(prev, curr) for prev, curr in zip(prediction_sets, prediction_sets[1:])
        ]))
    else:
        temporal_stability = 0.0

    profits_arr = np.asarray(profits)
    profit_std = profits_arr.std()
    sharpe = float(profits_arr.mean() / profit_std) if profit_std > 0 else 0.0

    if outcomes:
        outcomes_arr = np.asarray(outcomes)
        confidences_arr = np.asarray(confidences)
        probabilities_arr = np.clip(np.asarray(probabilities), 1e-15, 1 - 1e-15)
        uncertainty_calibration = 1.0 - float(np.abs(confidences_arr - outcomes_arr).mean())
        calibration_error = float(np.abs(probabilities_arr - outcomes_arr).mean())
        loss = float(log_loss(outcomes_arr, probabilities_arr, labels=[0, 1]))
    else:
        uncertainty_calibration = calibration_error = loss = 0.0

    return {
        'precision': precision,
        'recall': recall,
        'accuracy': precision,
        'hit_rate': recall,
        'f1_score': f1,
        'coverage_rate': float(np.mean(hit_flags)),
        'expected_value': float(profits_arr.mean()),
        'consistency_score': max(0.0, 1.0 - coefficient_of_variation(precisions)),
        'diversity_score': safe_divide(distinct, possible),
        'temporal_stability': temporal_stability,
        'uncertainty_calibration': uncertainty_calibration,
        'calibration_error': calibration_error,
        'log_loss': loss,
        'sharpe_ratio': sharpe,
        'n_steps': len(predictions),
        'total_hits': int(sum(len(s & _as_set(a)) for s, a in zip(prediction_sets, actuals))),
    }
