"""
Hyperparameter Search

Discretised search over candidate lists:
1. The first iterations sample every parameter uniformly from its list
2. Afterwards the best trial so far is perturbed by one list position per
   parameter (clamped at the ends)

Every candidate is scored by purged cross-validation and a fixed-weight
composite of the aggregate metrics. Failed trials score -1, stay in the
history and never become the best trial.
"""

import logging
import time
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import pandas as pd
from tqdm import tqdm

import sys
from pathlib import Path
try:
    from ..data.events import OutcomeEvent, validate_history
    from ..models.base_model import ModelKind
    from ..models.registry import create_model
    from ..utils.config import CONFIG
    from ..utils.context import EngineContext
    from ..utils.errors import InsufficientDataError, OperationCancelled
    from ..utils.helpers import save_artifact
    from ..validation.time_series_cv import CVConfig, TimeSeriesCrossValidator
except ImportError:
    current_dir = Path(__file__).parent.parent
    if str(current_dir) not in sys.path:
        sys.path.insert(0, str(current_dir))
    from data.events import OutcomeEvent, validate_history
    from models.base_model import ModelKind
    from models.registry import create_model
    from utils.config import CONFIG
    from utils.context import EngineContext
    from utils.errors import InsufficientDataError, OperationCancelled
    from utils.helpers import save_artifact
    from validation.time_series_cv import CVConfig, TimeSeriesCrossValidator

logger = logging.getLogger(__name__)

FAILED_SCORE = -1.0

COMPOSITE_WEIGHTS = {
    'hit_rate': 0.30,
    'coverage_rate': 0.20,
    'f1_score': 0.15,
    'expected_value': 0.10,
    'consistency_score': 0.10,
    'diversity_score': 0.05,
    'temporal_stability': 0.05,
    'uncertainty_calibration': 0.05,
}

DEFAULT_SEARCH_SPACES = {
    ModelKind.BOOSTED_TREE: {
        'n_rounds': [20, 50, 100],
        'learning_rate': [0.05, 0.1, 0.2],
        'max_depth': [3, 4, 6],
        'min_samples_split': [5, 10, 20],
        'window': [5, 10, 20],
    },
    ModelKind.BAGGED_TREE: {
        'n_trees': [20, 50, 100],
        'max_depth': [4, 6, 8, 10],
        'min_samples_split': [2, 5, 10],
        'window': [5, 10, 20],
    },
    ModelKind.SEQUENCE_MODEL: {
        'sequence_length': [5, 10, 20],
        'hidden_units': [32, 64, 128],
        'learning_rate': [0.0005, 0.001, 0.005],
        'batch_size': [16, 32, 64],
        'epochs': [20, 50, 100],
        'l2': [1e-5, 1e-4, 1e-3],
    },
}


def composite_score(metrics: Mapping[str, float]) -> float:
    """Fixed-weight linear combination of evaluation metrics."""
    return float(sum(metrics.get(name, 0.0) * weight for name, weight in COMPOSITE_WEIGHTS.items()))


class SearchSpace:
    """Parameter name -> ordered list of candidate values."""

    def __init__(self, parameters: Mapping[str, Sequence[Any]]):
        if not parameters:
            raise ValueError("Search space is empty")
        for name, values in parameters.items():
            if len(values) == 0:
                raise ValueError(f"Parameter '{name}' has no candidate values")
        self.parameters = {name: list(values) for name, values in parameters.items()}

    @classmethod
    def default(cls, kind: Union[ModelKind, str]) -> "SearchSpace":
        return cls(DEFAULT_SEARCH_SPACES[ModelKind(kind)])

    def __iter__(self):
        return iter(self.parameters.items())

    def __len__(self):
        return len(self.parameters)


@dataclass
class OptimizationTrial:
    iteration: int
    config: Dict[str, Any]
    score: float
    metrics: Dict[str, float] = field(default_factory=dict)
    failed: bool = False
    error: Optional[str] = None
    duration_seconds: float = 0.0


@dataclass
class OptimizationResult:
    kind: ModelKind
    best_trial: Optional[OptimizationTrial]
    history: List[OptimizationTrial]
    convergence: List[float]      # score per iteration
    best_so_far: List[float]      # running best per iteration
    cancelled: bool = False
    stop_reason: str = ""

    @property
    def best_config(self) -> Optional[Dict[str, Any]]:
        return dict(self.best_trial.config) if self.best_trial else None

    @property
    def best_score(self) -> float:
        return self.best_trial.score if self.best_trial else FAILED_SCORE

    def to_frame(self) -> pd.DataFrame:
        rows = []
        for trial in self.history:
            rows.append({
                'iteration': trial.iteration,
                'score': trial.score,
                'failed': trial.failed,
                **{f"param_{k}": v for k, v in trial.config.items()},
                **{k: trial.metrics.get(k) for k in COMPOSITE_WEIGHTS},
            })
        return pd.DataFrame(rows)

    def save(self, filepath: str):
        save_artifact({
            'kind': self.kind.value,
            'best_trial': asdict(self.best_trial) if self.best_trial else None,
            'history': [asdict(t) for t in self.history],
            'convergence': self.convergence,
            'best_so_far': self.best_so_far,
            'cancelled': self.cancelled,
            'stop_reason': self.stop_reason,
        }, filepath, format='json')


class HyperparameterSearch:
    """
    Iterative configuration search for one model kind.

    Usage:
        search = HyperparameterSearch(ModelKind.BOOSTED_TREE, context=ctx)
        result = search.run(events, max_iterations=20)
        print(result.best_config, result.best_score)
    """

    def __init__(self, kind: Union[ModelKind, str],
                 search_space: Optional[Union[SearchSpace, Mapping[str, Sequence[Any]]]] = None,
                 context: Optional[EngineContext] = None,
                 cv_config: Optional[CVConfig] = None,
                 random_iterations: int = CONFIG.SEARCH_RANDOM_ITERATIONS,
                 top_k: int = 3,
                 show_progress: bool = False):
        self.kind = ModelKind(kind)
        if search_space is None:
            search_space = SearchSpace.default(self.kind)
        elif not isinstance(search_space, SearchSpace):
            search_space = SearchSpace(search_space)
        self.search_space = search_space
        self.context = context if context is not None else EngineContext.create()
        self.cv_config = cv_config or CVConfig(
            n_folds=CONFIG.SEARCH_CV_FOLDS,
            test_fraction=CONFIG.SEARCH_CV_TEST_FRACTION,
        )
        self.random_iterations = random_iterations
        self.top_k = top_k
        self.show_progress = show_progress

    def run(self, events: Sequence[OutcomeEvent], max_iterations: int) -> OptimizationResult:
        """
        Search for up to `max_iterations` trials.

        Cancellation and the context deadline are checked once per iteration;
        a stopped search returns its partial history with cancelled=True.
        """
        events = validate_history(events, self.context.domain_size)
        validator = TimeSeriesCrossValidator(self.cv_config, self.context)
        if not validator.generate_folds(len(events)):
            required = self.cv_config.min_train_size + self.cv_config.purge_gap + self.cv_config.step_size + 1
            raise InsufficientDataError("optimize_hyperparameters", required, len(events))

        history: List[OptimizationTrial] = []
        convergence: List[float] = []
        best_so_far: List[float] = []
        best: Optional[OptimizationTrial] = None
        cancelled, stop_reason = False, ""

        logger.info(f"Searching {self.kind.value} over {len(self.search_space)} parameters, "
                    f"{max_iterations} iterations")
        iterations = tqdm(range(max_iterations), desc=f"search {self.kind.value}",
                          disable=not self.show_progress)
        for iteration in iterations:
            if self.context.should_stop():
                cancelled, stop_reason = True, self.context.stop_reason()
                break

            config = self.propose(iteration, history)
            try:
                trial = self._evaluate(iteration, config, events, validator)
            except OperationCancelled as e:
                cancelled, stop_reason = True, str(e)
                break

            history.append(trial)
            convergence.append(trial.score)
            if not trial.failed and (best is None or trial.score > best.score):
                best = trial
                logger.info(f"Iteration {iteration}: new best score {trial.score:.4f} with {trial.config}")
            best_so_far.append(best.score if best else FAILED_SCORE)

        if cancelled:
            logger.warning(f"Search stopped after {len(history)} trials: {stop_reason}")

        return OptimizationResult(
            kind=self.kind,
            best_trial=best,
            history=history,
            convergence=convergence,
            best_so_far=best_so_far,
            cancelled=cancelled,
            stop_reason=stop_reason,
        )

    def propose(self, iteration: int, history: Sequence[OptimizationTrial]) -> Dict[str, Any]:
        """Random sample early on, then a one-step perturbation of the best trial."""
        if iteration < self.random_iterations or not history:
            return self._random_config()

        ranked = sorted(history, key=lambda t: t.score, reverse=True)[:self.top_k]
        logger.debug(f"Top-{self.top_k} scores: {[round(t.score, 4) for t in ranked]}")
        return self._perturb(ranked[0].config)

    def _choice(self, values: List[Any]) -> Any:
        return values[int(self.context.rng.integers(len(values)))]

    def _random_config(self) -> Dict[str, Any]:
        return {name: self._choice(values) for name, values in self.search_space}

    def _perturb(self, base: Mapping[str, Any]) -> Dict[str, Any]:
        config = {}
        for name, values in self.search_space:
            current = base.get(name)
            if current not in values:
                config[name] = self._choice(values)
                continue
            step = 1 if self.context.rng.random() < 0.5 else -1
            index = min(len(values) - 1, max(0, values.index(current) + step))
            config[name] = values[index]
        return config

    def _evaluate(self, iteration: int, config: Dict[str, Any], events: List[OutcomeEvent],
                  validator: TimeSeriesCrossValidator) -> OptimizationTrial:
        started = time.perf_counter()
        try:
            result = validator.validate(events, lambda: create_model(self.kind, config, self.context))
            if not result.fold_results:
                raise RuntimeError(f"all {len(result.failures)} folds failed: {result.failures[0].error}")
            metrics = dict(result.aggregate_metrics)
            metrics['stability_score'] = result.stability_score
            score = composite_score(metrics)
            logger.debug(f"Iteration {iteration}: score={score:.4f} config={config}")
            return OptimizationTrial(iteration=iteration, config=config, score=score, metrics=metrics,
                                     duration_seconds=time.perf_counter() - started)
        except OperationCancelled:
            raise
        except Exception as e:
            logger.warning(f"Trial {iteration} failed ({config}): {type(e).__name__}: {e}")
            return OptimizationTrial(iteration=iteration, config=config, score=FAILED_SCORE,
                                     failed=True, error=f"{type(e).__name__}: {e}",
                                     duration_seconds=time.perf_counter() - started)
