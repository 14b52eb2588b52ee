"""Weighted ensemble that combines the rankings of several named models."""

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np

from .weight_optimizer import EnsembleConfig, EnsembleWeightOptimizer, static_weights

# Robust imports
import sys
from pathlib import Path
try:
    from ..data.events import OutcomeEvent, validate_history
    from ..models.base_model import BaseModel, PredictionCandidate
    from ..utils.errors import (
        EnsembleTrainingError, InsufficientDataError, OperationCancelled, UntrainedModelError
    )
    from ..validation.metrics import compute_prediction_metrics
except ImportError:
    current_dir = Path(__file__).parent.parent
    if str(current_dir) not in sys.path:
        sys.path.insert(0, str(current_dir))
    from data.events import OutcomeEvent, validate_history
    from models.base_model import BaseModel, PredictionCandidate
    from utils.errors import (
        EnsembleTrainingError, InsufficientDataError, OperationCancelled, UntrainedModelError
    )
    from validation.metrics import compute_prediction_metrics

logger = logging.getLogger(__name__)


class WeightedEnsemble:
    """
    Trains a set of named models and blends their full rankings:
    probability, confidence and uncertainty are weight-averaged per entity.
    """

    def __init__(self, models: Mapping[str, BaseModel],
                 config: Optional[EnsembleConfig] = None,
                 optimizer: Optional[EnsembleWeightOptimizer] = None):
        if not models:
            raise ValueError("WeightedEnsemble needs at least one model")
        self.models = dict(models)
        self.config = config or EnsembleConfig()
        self.optimizer = optimizer or EnsembleWeightOptimizer()
        self.weights: Dict[str, float] = static_weights(list(self.models))
        self.is_trained = False

    @property
    def trained_models(self) -> Dict[str, BaseModel]:
        return {name: model for name, model in self.models.items() if model.is_trained}

    def train(self, events: Sequence[OutcomeEvent]) -> Dict[str, Any]:
        """
        Train every model; a model that fails is logged and left out.

        Returns:
            model name -> training metrics (or {'error': ...})

        Raises:
            InsufficientDataError: every model failed for lack of history
                (carries the largest requirement)
            EnsembleTrainingError: no model trained for any other reason
        """
        results = {}
        failures = {}
        for name, model in self.models.items():
            try:
                results[name] = model.train(events)
            except OperationCancelled:
                raise
            except Exception as e:
                logger.warning(f"Error training {name}: {type(e).__name__}: {e}")
                results[name] = {'error': f"{type(e).__name__}: {e}"}
                failures[name] = e

        trained = self.trained_models
        if not trained:
            errors = list(failures.values())
            if errors and all(isinstance(e, InsufficientDataError) for e in errors):
                worst = max(errors, key=lambda e: e.required)
                logger.error(f"No model could be trained: {worst}")
                raise InsufficientDataError("WeightedEnsemble.train", worst.required, worst.available) from worst
            logger.error(f"No model could be trained ({len(failures)} failures)")
            raise EnsembleTrainingError(failures) from (errors[0] if errors else None)
        self.weights = static_weights(list(trained))
        self.is_trained = True
        return results

    def model_outputs(self, events: Sequence[OutcomeEvent]) -> Dict[str, List[PredictionCandidate]]:
        """Full ranking from every trained model; failing models are skipped."""
        outputs = {}
        for name, model in self.trained_models.items():
            try:
                outputs[name] = model.predict(events)
            except Exception as e:
                logger.warning(f"Error from {name}: {type(e).__name__}: {e}")
        return outputs

    def update_weights(self, events: Sequence[OutcomeEvent]) -> Dict[str, float]:
        """
        Re-optimize the weights: rank from the history before the trailing
        window, then score against the window itself.
        """
        if not self.is_trained:
            raise UntrainedModelError("WeightedEnsemble")
        events = validate_history(events, next(iter(self.models.values())).context.domain_size)
        window = self.config.performance_window
        if len(events) <= window:
            raise InsufficientDataError("WeightedEnsemble.update_weights", window + 1, len(events))

        outputs = self.model_outputs(events[:-window])
        if not outputs:
            raise ValueError("No model produced predictions")
        self.weights = self.optimizer.optimize(outputs, events, self.config)

        recent = events[-window:]
        performances = {
            name: self._window_hit_rate(candidates, recent) for name, candidates in outputs.items()
        }
        ensemble_hit_rate = self._window_hit_rate(self.combine(outputs), recent)
        self.optimizer.update_performance_history(performances, ensemble_hit_rate)
        return self.weights

    def combine(self, outputs: Mapping[str, Sequence[PredictionCandidate]],
                weights: Optional[Mapping[str, float]] = None) -> List[PredictionCandidate]:
        """Blend rankings with `weights` (default: current weights), sorted by probability."""
        weights = dict(weights if weights is not None else self.weights)
        names = [name for name in outputs if weights.get(name, 0.0) > 0]
        if not names:
            names = list(outputs)
            weights = static_weights(names)
        total = sum(weights[name] for name in names)

        blended: Dict[int, np.ndarray] = {}
        for name in names:
            w = weights[name] / total
            for candidate in outputs[name]:
                scores = blended.setdefault(candidate.entity_id, np.zeros(3))
                scores += w * np.array([candidate.probability, candidate.confidence, candidate.uncertainty])

        candidates = [
            PredictionCandidate(
                entity_id=entity_id,
                probability=scores[0],
                confidence=scores[1],
                uncertainty=scores[2],
                contributing_features={f"weight_{name}": weights[name] / total for name in names},
            )
            for entity_id, scores in blended.items()
        ]
        candidates.sort(key=lambda c: c.probability, reverse=True)
        return candidates

    def predict(self, events: Sequence[OutcomeEvent], top_n: Optional[int] = None) -> List[PredictionCandidate]:
        if not self.is_trained:
            raise UntrainedModelError("WeightedEnsemble")
        outputs = self.model_outputs(events)
        if not outputs:
            raise ValueError("No model produced predictions")
        candidates = self.combine(outputs)
        return candidates if top_n is None else candidates[:top_n]

    def dispose(self):
        for model in self.models.values():
            if model.is_trained:
                model.dispose()
        self.is_trained = False

    def _window_hit_rate(self, candidates, recent_events) -> float:
        top = list(candidates)[:self.config.top_k]
        return compute_prediction_metrics([top] * len(recent_events), recent_events)['hit_rate']
