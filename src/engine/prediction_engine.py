"""
Prediction Engine

Single entry point over the engine components:
- Feature extraction
- Ensemble training and prediction
- Cross-validation and hyperparameter search
- Ensemble weight optimization
- Walk-forward backtesting
- Retraining triggers

Every operation validates its event history (ascending timestamps, ids in
the domain) before doing any work.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

import sys
from pathlib import Path
try:
    from ..analytics.retraining_monitor import RetrainingMonitor, RetrainingStatus
    from ..backtest.walkforward_backtest import BacktestConfig, BacktestEngine, BacktestResult
    from ..data.events import OutcomeEvent, validate_history
    from ..data.history import HistoryProvider
    from ..ensemble.weight_optimizer import EnsembleConfig, EnsembleWeightOptimizer
    from ..ensemble.weighted_ensemble import WeightedEnsemble
    from ..features.feature_builder import FeatureExtractor
    from ..models.base_model import ModelKind, PredictionCandidate
    from ..models.registry import ModelSpec, create_model
    from ..optimization.hyperparameter_search import HyperparameterSearch, OptimizationResult, SearchSpace
    from ..utils.context import EngineContext
    from ..utils.errors import UntrainedModelError
    from ..validation.metrics import compute_prediction_metrics
    from ..validation.time_series_cv import CVConfig, TimeSeriesCrossValidator, ValidationResult
except ImportError:
    current_dir = Path(__file__).parent.parent
    if str(current_dir) not in sys.path:
        sys.path.insert(0, str(current_dir))
    from analytics.retraining_monitor import RetrainingMonitor, RetrainingStatus
    from backtest.walkforward_backtest import BacktestConfig, BacktestEngine, BacktestResult
    from data.events import OutcomeEvent, validate_history
    from data.history import HistoryProvider
    from ensemble.weight_optimizer import EnsembleConfig, EnsembleWeightOptimizer
    from ensemble.weighted_ensemble import WeightedEnsemble
    from features.feature_builder import FeatureExtractor
    from models.base_model import ModelKind, PredictionCandidate
    from models.registry import ModelSpec, create_model
    from optimization.hyperparameter_search import HyperparameterSearch, OptimizationResult, SearchSpace
    from utils.context import EngineContext
    from utils.errors import UntrainedModelError
    from validation.metrics import compute_prediction_metrics
    from validation.time_series_cv import CVConfig, TimeSeriesCrossValidator, ValidationResult

logger = logging.getLogger(__name__)


def default_model_specs() -> List[ModelSpec]:
    return [ModelSpec(ModelKind.BOOSTED_TREE), ModelSpec(ModelKind.BAGGED_TREE)]


@dataclass
class TrainingConfig:
    models: List[ModelSpec] = field(default_factory=default_model_specs)
    ensemble: EnsembleConfig = field(default_factory=EnsembleConfig)
    update_weights: bool = True


class PredictionEngine:
    """
    Facade over the ensemble engine.

    Usage:
        engine = PredictionEngine(EngineContext.create(seed=7))
        engine.train_ensemble(events)
        top5 = engine.predict(events, top_n=5)
    """

    def __init__(self, context: Optional[EngineContext] = None,
                 history: Optional[HistoryProvider] = None):
        self.context = context if context is not None else EngineContext.create()
        self.history = history
        self.extractor = FeatureExtractor(self.context.domain_size)
        self.weight_optimizer = EnsembleWeightOptimizer()
        self.monitor = RetrainingMonitor()
        self.ensemble: Optional[WeightedEnsemble] = None

    def _events(self, events: Optional[Sequence[OutcomeEvent]]) -> List[OutcomeEvent]:
        if events is None:
            if self.history is None:
                raise ValueError("No events given and no history provider configured")
            events = self.history.ordered_events()
        return validate_history(events, self.context.domain_size)

    def extract_features(self, events: Optional[Sequence[OutcomeEvent]] = None,
                         window: Optional[int] = None, as_frame: bool = False) -> Union[np.ndarray, pd.DataFrame]:
        """Feature matrix (domain_size x n_features) for the last `window` events."""
        events = self._events(events)
        if as_frame:
            return self.extractor.extract_frame(events, window)
        return self.extractor.extract(events, window)

    def train_ensemble(self, events: Optional[Sequence[OutcomeEvent]] = None,
                       config: Optional[TrainingConfig] = None) -> Dict[str, Any]:
        """
        Train every configured model and, when the history allows it,
        re-optimize the combination weights.

        Returns:
            {'models': name -> training metrics, 'weights': name -> weight}

        Raises:
            InsufficientDataError: the history is too short for every model
        """
        events = self._events(events)
        config = config or TrainingConfig()
        models = {spec.name: create_model(spec.kind, spec.params, self.context) for spec in config.models}
        for spec in config.models:
            models[spec.name].name = spec.name

        if self.ensemble is not None:
            self.ensemble.dispose()
        self.ensemble = WeightedEnsemble(models, config.ensemble, self.weight_optimizer)
        model_metrics = self.ensemble.train(events)

        if config.update_weights and len(events) > config.ensemble.performance_window:
            try:
                self.ensemble.update_weights(events)
            except Exception as e:
                logger.warning(f"Keeping equal weights: {type(e).__name__}: {e}")

        self.monitor.record_training(list(self.ensemble.trained_models), len(events))
        return {'models': model_metrics, 'weights': dict(self.ensemble.weights)}

    def predict(self, events: Optional[Sequence[OutcomeEvent]] = None,
                top_n: Optional[int] = None) -> List[PredictionCandidate]:
        """Weighted ensemble ranking for the event after `events`."""
        if self.ensemble is None or not self.ensemble.is_trained:
            raise UntrainedModelError("PredictionEngine")
        return self.ensemble.predict(self._events(events), top_n)

    def cross_validate(self, events: Optional[Sequence[OutcomeEvent]] = None,
                       config: Optional[CVConfig] = None,
                       kind: Union[ModelKind, str] = ModelKind.BOOSTED_TREE,
                       params: Optional[Mapping[str, Any]] = None) -> ValidationResult:
        events = self._events(events)
        validator = TimeSeriesCrossValidator(config, self.context)
        return validator.validate(events, lambda: create_model(kind, dict(params or {}), self.context))

    def optimize_hyperparameters(self, kind: Union[ModelKind, str],
                                 events: Optional[Sequence[OutcomeEvent]] = None,
                                 search_space: Optional[Union[SearchSpace, Mapping[str, Sequence[Any]]]] = None,
                                 max_iterations: int = 20,
                                 show_progress: bool = False) -> OptimizationResult:
        events = self._events(events)
        search = HyperparameterSearch(kind, search_space, self.context, show_progress=show_progress)
        return search.run(events, max_iterations)

    def optimize_ensemble_weights(self, model_outputs: Mapping[str, Sequence[PredictionCandidate]],
                                  events: Optional[Sequence[OutcomeEvent]] = None,
                                  config: Optional[EnsembleConfig] = None) -> Dict[str, float]:
        return self.weight_optimizer.optimize(model_outputs, self._events(events), config)

    def run_backtest(self, events: Optional[Sequence[OutcomeEvent]] = None,
                     config: Optional[BacktestConfig] = None,
                     models: Optional[Sequence[ModelSpec]] = None) -> BacktestResult:
        engine = BacktestEngine(list(models) if models else default_model_specs(), config, self.context)
        return engine.run(self._events(events))

    def record_outcome(self, events: Optional[Sequence[OutcomeEvent]] = None,
                       top_n: int = 5) -> RetrainingStatus:
        """
        Score each trained model on the latest event (predicted from the ones
        before it), record the hit rates and report retraining triggers.
        """
        if self.ensemble is None or not self.ensemble.is_trained:
            raise UntrainedModelError("PredictionEngine")
        events = self._events(events)
        if len(events) < 2:
            return self.monitor.evaluate_triggers(len(events))

        for name, model in self.ensemble.trained_models.items():
            candidates = model.predict(events[:-1], top_n)
            hit_rate = compute_prediction_metrics([candidates], [events[-1]], self.context.domain_size)['hit_rate']
            self.monitor.record_performance(name, hit_rate)
        return self.monitor.evaluate_triggers(len(events))

    def dispose(self):
        if self.ensemble is not None:
            self.ensemble.dispose()
            self.ensemble = None
