"""
Ensemble weight optimization.

Four strategies turn per-model ranked predictions plus a trailing window of
realised events into combination weights:
- static: equal weights
- dynamic: realised top-K score over the trailing window
- adaptive: dynamic blended with diversity and stability
- bayesian: uniform prior times per-event likelihoods (log space)

Every strategy's output passes through normalize_weights, so weights are
non-negative and sum to 1; a degenerate total falls back to equal weights.
"""

import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Deque, Dict, Mapping, Optional, Sequence

import numpy as np
import pandas as pd

import sys
from pathlib import Path
try:
    from ..data.events import OutcomeEvent
    from ..models.base_model import PredictionCandidate
    from ..validation.metrics import jaccard
except ImportError:
    current_dir = Path(__file__).parent.parent
    if str(current_dir) not in sys.path:
        sys.path.insert(0, str(current_dir))
    from data.events import OutcomeEvent
    from models.base_model import PredictionCandidate
    from validation.metrics import jaccard

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50
STABILITY_LOOKBACK = 10


class WeightingStrategy(str, Enum):
    STATIC = "static"
    DYNAMIC = "dynamic"
    ADAPTIVE = "adaptive"
    BAYESIAN = "bayesian"


@dataclass
class EnsembleConfig:
    strategy: WeightingStrategy = WeightingStrategy.STATIC
    performance_window: int = 20
    rebalance_frequency: int = 10
    diversity_weight: float = 0.2
    stability_weight: float = 0.2
    top_k: int = 5           # dynamic score and diversity sets
    likelihood_top_k: int = 3
    likelihood_epsilon: float = 0.01

    def __post_init__(self):
        self.strategy = WeightingStrategy(self.strategy)
        if self.diversity_weight < 0 or self.stability_weight < 0:
            raise ValueError("diversity_weight and stability_weight must be non-negative")
        if self.diversity_weight + self.stability_weight > 1:
            raise ValueError("diversity_weight + stability_weight must not exceed 1")


ModelOutputs = Mapping[str, Sequence[PredictionCandidate]]


def static_weights(names: Sequence[str]) -> Dict[str, float]:
    if not names:
        return {}
    return {name: 1.0 / len(names) for name in names}


def normalize_weights(raw: Mapping[str, float]) -> Dict[str, float]:
    """Clip negatives and rescale to sum 1; zero or non-finite totals give static weights."""
    names = list(raw)
    values = np.array([raw[name] for name in names], dtype=float)
    if values.size == 0:
        return {}
    values = np.where(np.isfinite(values), values, np.nan)
    if np.isnan(values).any():
        return static_weights(names)
    values = np.clip(values, 0.0, None)
    total = values.sum()
    if total <= 0 or not np.isfinite(total):
        return static_weights(names)
    return dict(zip(names, (values / total).tolist()))


class EnsembleWeightOptimizer:
    """
    Computes combination weights for named models.

    The performance history (last 50 snapshots of per-model scores) is owned
    by the instance and feeds the adaptive strategy's stability term.

    Usage:
        optimizer = EnsembleWeightOptimizer()
        weights = optimizer.optimize(outputs, events, EnsembleConfig(strategy='adaptive'))
    """

    def __init__(self):
        self.performance_history: Deque[Dict[str, float]] = deque(maxlen=HISTORY_LIMIT)
        self.ensemble_history: Deque[float] = deque(maxlen=HISTORY_LIMIT)

    def optimize(self, model_outputs: ModelOutputs, events: Sequence[OutcomeEvent],
                 config: Optional[EnsembleConfig] = None) -> Dict[str, float]:
        """
        Compute weights for every model in `model_outputs`.

        Args:
            model_outputs: model name -> ranked candidates (best first)
            events: Canonical-order history; the last `performance_window` events are scored
            config: Strategy and mixing parameters

        Returns:
            model name -> weight, non-negative and summing to 1
        """
        config = config or EnsembleConfig()
        names = list(model_outputs)
        if not names:
            return {}
        recent = list(events)[-config.performance_window:] if config.performance_window > 0 else []

        if config.strategy is WeightingStrategy.DYNAMIC:
            raw = self.dynamic_weights(model_outputs, recent, config)
        elif config.strategy is WeightingStrategy.ADAPTIVE:
            raw = self.adaptive_weights(model_outputs, recent, config)
        elif config.strategy is WeightingStrategy.BAYESIAN:
            raw = self.bayesian_weights(model_outputs, recent, config)
        else:
            raw = static_weights(names)

        weights = normalize_weights(raw)
        logger.info(f"{config.strategy.value} weights: " +
                    ", ".join(f"{name}={w:.3f}" for name, w in weights.items()))
        return weights

    def performance_scores(self, model_outputs: ModelOutputs, recent: Sequence[OutcomeEvent],
                           top_k: int = 5) -> Dict[str, float]:
        """Mean probability * confidence of top-K hits per prediction slot."""
        scores = {}
        for name, candidates in model_outputs.items():
            top = list(candidates)[:top_k]
            score, total = 0.0, 0
            for event in recent:
                for candidate in top:
                    total += 1
                    if candidate.entity_id in event.outcome_set:
                        score += candidate.probability * candidate.confidence
            scores[name] = score / total if total else 0.0
        return scores

    def dynamic_weights(self, model_outputs, recent, config) -> Dict[str, float]:
        scores = self.performance_scores(model_outputs, recent, config.top_k)
        if sum(scores.values()) <= 0:
            return static_weights(list(model_outputs))
        return normalize_weights(scores)

    def diversity_scores(self, model_outputs: ModelOutputs, top_k: int = 5) -> Dict[str, float]:
        """Mean pairwise 1 - Jaccard of top-K sets against every other model."""
        top_sets = {name: [c.entity_id for c in list(cands)[:top_k]]
                    for name, cands in model_outputs.items()}
        scores = {}
        for name, ids in top_sets.items():
            others = [other for other in top_sets if other != name]
            if not others:
                scores[name] = 0.0
                continue
            scores[name] = float(np.mean([1.0 - jaccard(ids, top_sets[other]) for other in others]))
        return scores

    def stability_scores(self, names: Sequence[str]) -> Dict[str, float]:
        """1 - min(1, variance / (mean + 0.001)) over the last 10 snapshots; 0.5 without history."""
        recent = list(self.performance_history)[-STABILITY_LOOKBACK:]
        scores = {}
        for name in names:
            values = np.array([entry.get(name, 0.0) for entry in recent], dtype=float)
            if values.size < 2:
                scores[name] = 0.5
                continue
            normalized_variance = min(1.0, values.var() / (values.mean() + 0.001))
            scores[name] = 1.0 - max(0.0, normalized_variance)
        return scores

    def adaptive_weights(self, model_outputs, recent, config) -> Dict[str, float]:
        names = list(model_outputs)
        base = self.dynamic_weights(model_outputs, recent, config)
        diversity = self.diversity_scores(model_outputs, config.top_k)
        stability = self.stability_scores(names)
        base_share = 1.0 - config.diversity_weight - config.stability_weight
        return {
            name: (base[name] * base_share
                   + diversity[name] * config.diversity_weight
                   + stability[name] * config.stability_weight)
            for name in names
        }

    def bayesian_weights(self, model_outputs, recent, config) -> Dict[str, float]:
        names = list(model_outputs)
        log_prior = -np.log(len(names))
        log_posterior = []
        for name in names:
            top = list(model_outputs[name])[:config.likelihood_top_k]
            log_likelihood = 0.0
            for event in recent:
                likelihood = config.likelihood_epsilon + sum(
                    c.probability for c in top if c.entity_id in event.outcome_set
                )
                log_likelihood += np.log(likelihood)
            log_posterior.append(log_prior + log_likelihood)

        log_posterior = np.asarray(log_posterior)
        if not np.isfinite(log_posterior).all():
            return static_weights(names)
        posterior = np.exp(log_posterior - log_posterior.max())
        return dict(zip(names, posterior.tolist()))

    def update_performance_history(self, model_performances: Mapping[str, float],
                                   ensemble_performance: float = 0.0):
        """Record one snapshot of per-model scores (oldest dropped past 50)."""
        self.performance_history.append(dict(model_performances))
        self.ensemble_history.append(float(ensemble_performance))

    def history_frame(self):
        """Performance history as a DataFrame, one row per snapshot."""
        frame = pd.DataFrame(list(self.performance_history))
        if not frame.empty:
            frame['ensemble'] = list(self.ensemble_history)
        return frame
