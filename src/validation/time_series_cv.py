"""
Time-Series Cross-Validation

Walk-forward folds with a purge gap between the training prefix and the
test range, so no test event (or its immediate neighbours) leaks into
training.

For fold i:
    test_start = min_train_size + i * step_size
    test_end   = test_start + floor(total * test_fraction)
    train_end  = test_start - purge_gap      (train on [0, train_end))

Folds with train_end < min_train_size or test_end > total are skipped.
"""

import logging
import math
import time
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from .metrics import compute_prediction_metrics, empty_metrics, KEY_METRICS, METRIC_NAMES

import sys
from pathlib import Path
try:
    from ..data.events import OutcomeEvent, validate_history
    from ..utils.config import CONFIG
    from ..utils.context import EngineContext
    from ..utils.errors import InsufficientDataError, OperationCancelled
    from ..utils.helpers import coefficient_of_variation, least_squares_slope
except ImportError:
    current_dir = Path(__file__).parent.parent
    if str(current_dir) not in sys.path:
        sys.path.insert(0, str(current_dir))
    from data.events import OutcomeEvent, validate_history
    from utils.config import CONFIG
    from utils.context import EngineContext
    from utils.errors import InsufficientDataError, OperationCancelled
    from utils.helpers import coefficient_of_variation, least_squares_slope

logger = logging.getLogger(__name__)

STABLE_SLOPE = 0.01
STABLE_VOLATILITY = 0.05


@dataclass
class CVConfig:
    n_folds: int = CONFIG.CV_FOLDS
    test_fraction: float = CONFIG.CV_TEST_FRACTION
    min_train_size: int = CONFIG.CV_MIN_TRAIN_SIZE
    step_size: int = CONFIG.CV_STEP_SIZE
    purge_gap: int = CONFIG.CV_PURGE_GAP
    top_n: int = CONFIG.TOP_N

    def __post_init__(self):
        if self.n_folds < 1:
            raise ValueError(f"n_folds must be >= 1, got {self.n_folds}")
        if not 0 < self.test_fraction < 1:
            raise ValueError(f"test_fraction must be in (0, 1), got {self.test_fraction}")
        if self.purge_gap < 0 or self.step_size < 0 or self.min_train_size < 0:
            raise ValueError("purge_gap, step_size and min_train_size must be non-negative")


@dataclass(frozen=True)
class Fold:
    index: int
    train_end: int
    test_start: int
    test_end: int
    train_start: int = 0

    @property
    def train_range(self):
        return (self.train_start, self.train_end)

    @property
    def test_range(self):
        return (self.test_start, self.test_end)

    @property
    def train_size(self) -> int:
        return self.train_end - self.train_start

    @property
    def test_size(self) -> int:
        return self.test_end - self.test_start


@dataclass
class FoldResult:
    fold: Fold
    metrics: Dict[str, float]
    training_metrics: Dict[str, Any] = field(default_factory=dict)
    duration_seconds: float = 0.0


@dataclass
class FoldFailure:
    """Marker for a fold whose training or evaluation raised."""
    fold: Fold
    error: str


@dataclass
class ConvergenceAnalysis:
    slope: float
    volatility: float
    trend: str  # "stable", "improving", "declining", "insufficient_data"
    is_stable: bool


@dataclass
class ValidationResult:
    config: CVConfig
    fold_results: List[FoldResult]
    failures: List[FoldFailure]
    aggregate_metrics: Dict[str, float]
    stability_score: float
    convergence: ConvergenceAnalysis

    @property
    def n_successful(self) -> int:
        return len(self.fold_results)

    def to_frame(self) -> pd.DataFrame:
        """One row per successful fold: ranges plus every metric."""
        rows = []
        for result in self.fold_results:
            fold = result.fold
            rows.append({
                'fold': fold.index,
                'train_end': fold.train_end,
                'test_start': fold.test_start,
                'test_end': fold.test_end,
                **{name: result.metrics.get(name, 0.0) for name in METRIC_NAMES},
            })
        return pd.DataFrame(rows).set_index('fold') if rows else pd.DataFrame(columns=METRIC_NAMES)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'config': asdict(self.config),
            'aggregate_metrics': self.aggregate_metrics,
            'stability_score': self.stability_score,
            'convergence': asdict(self.convergence),
            'folds': [{**asdict(r.fold), 'metrics': r.metrics} for r in self.fold_results],
            'failures': [{'fold': f.fold.index, 'error': f.error} for f in self.failures],
        }

    def generate_report(self) -> str:
        """Markdown cross-validation report."""
        agg = self.aggregate_metrics
        conv = self.convergence
        content = f"""# Cross-Validation Report

**Generated**: {datetime.now(timezone.utc).isoformat()}

## Summary

| Metric | Value |
|--------|-------|
| Folds evaluated | {self.n_successful} |
| Folds failed | {len(self.failures)} |
| Hit rate | {agg.get('hit_rate', 0.0):.3f} |
| Coverage rate | {agg.get('coverage_rate', 0.0):.3f} |
| F1 | {agg.get('f1_score', 0.0):.3f} |
| Expected value | {agg.get('expected_value', 0.0):.3f} |
| Stability score | {self.stability_score:.3f} |

## Convergence

- Trend: **{conv.trend}** (slope {conv.slope:+.4f}, volatility {conv.volatility:.4f})
- Stable: {"yes" if conv.is_stable else "no"}

## Folds

| Fold | Train | Test | Hit rate | F1 | EV |
|------|-------|------|----------|----|----|
"""
        for result in self.fold_results:
            fold, m = result.fold, result.metrics
            content += (f"| {fold.index} | [0, {fold.train_end}) | [{fold.test_start}, {fold.test_end}) "
                        f"| {m['hit_rate']:.3f} | {m['f1_score']:.3f} | {m['expected_value']:.3f} |\n")

        if self.failures:
            content += "\n## Failed Folds\n\n"
            for failure in self.failures:
                content += f"- Fold {failure.fold.index}: {failure.error}\n"
        return content


def aggregate_fold_metrics(results: Sequence[FoldResult]) -> Dict[str, float]:
    """Test-size weighted mean per metric, ignoring non-finite values."""
    if not results:
        return empty_metrics()
    weights = np.array([r.fold.test_size for r in results], dtype=float)
    aggregate = {}
    for name in METRIC_NAMES:
        values = np.array([r.metrics.get(name, np.nan) for r in results], dtype=float)
        finite = np.isfinite(values) & (weights > 0)
        aggregate[name] = float(np.average(values[finite], weights=weights[finite])) if finite.any() else 0.0
    return aggregate


def stability_score(results: Sequence[FoldResult]) -> float:
    """Mean of max(0, 1 - CV) over the key metrics; 0 with fewer than two folds."""
    if len(results) < 2:
        return 0.0
    scores = []
    for name in KEY_METRICS:
        values = [r.metrics.get(name, 0.0) for r in results]
        scores.append(max(0.0, 1.0 - coefficient_of_variation(values)))
    return float(np.mean(scores))


def analyze_convergence(scores: Sequence[float]) -> ConvergenceAnalysis:
    """Least-squares trend of per-fold scores."""
    if len(scores) < 3:
        return ConvergenceAnalysis(slope=0.0, volatility=1.0, trend='insufficient_data', is_stable=False)
    slope = least_squares_slope(scores)
    volatility = float(np.std(scores))
    if abs(slope) < STABLE_SLOPE:
        trend = 'stable'
    else:
        trend = 'improving' if slope > 0 else 'declining'
    return ConvergenceAnalysis(
        slope=slope,
        volatility=volatility,
        trend=trend,
        is_stable=abs(slope) < STABLE_SLOPE and volatility < STABLE_VOLATILITY,
    )


class TimeSeriesCrossValidator:
    """
    Walk-forward cross-validation with purging.

    Usage:
        cv = TimeSeriesCrossValidator(CVConfig(n_folds=3, test_fraction=0.2))
        result = cv.validate(events, lambda: BoostedTreeEnsemble(context=ctx))
        print(result.generate_report())
    """

    def __init__(self, config: Optional[CVConfig] = None, context: Optional[EngineContext] = None):
        self.config = config or CVConfig()
        self.context = context if context is not None else EngineContext.create()

    def generate_folds(self, total_size: int) -> List[Fold]:
        """Fold ranges for a history of `total_size` events; invalid folds are dropped."""
        cfg = self.config
        test_size = int(math.floor(total_size * cfg.test_fraction))
        folds = []
        for i in range(cfg.n_folds):
            test_start = cfg.min_train_size + i * cfg.step_size
            test_end = test_start + test_size
            train_end = test_start - cfg.purge_gap
            if train_end < cfg.min_train_size or test_end > total_size or test_end <= test_start:
                logger.debug(f"Skipping fold {i}: train_end={train_end}, test=[{test_start}, {test_end})")
                continue
            folds.append(Fold(index=i, train_end=train_end, test_start=test_start, test_end=test_end))
        return folds

    def validate(self, events: Sequence[OutcomeEvent],
                 model_factory: Callable[[], Any]) -> ValidationResult:
        """
        Train a fresh model per fold and score its walk through the test range.

        Args:
            events: Canonical-order history
            model_factory: Zero-argument callable returning an untrained BaseModel

        Returns:
            ValidationResult; folds that raised are listed in `failures`

        Raises:
            InsufficientDataError: if no fold fits in the history
            OperationCancelled: if the context is cancelled between folds
        """
        events = validate_history(events, self.context.domain_size)
        folds = self.generate_folds(len(events))
        if not folds:
            required = self.config.min_train_size + self.config.purge_gap + self.config.step_size + 1
            logger.error(f"No cross-validation fold fits in {len(events)} events")
            raise InsufficientDataError("cross_validate", required, len(events))

        results: List[FoldResult] = []
        failures: List[FoldFailure] = []
        for fold in folds:
            self.context.check_cancelled()
            try:
                results.append(self._run_fold(fold, events, model_factory))
            except OperationCancelled:
                raise
            except Exception as e:
                logger.warning(f"Fold {fold.index} failed: {type(e).__name__}: {e}")
                failures.append(FoldFailure(fold=fold, error=f"{type(e).__name__}: {e}"))

        result = ValidationResult(
            config=self.config,
            fold_results=results,
            failures=failures,
            aggregate_metrics=aggregate_fold_metrics(results),
            stability_score=stability_score(results),
            convergence=analyze_convergence([r.metrics['f1_score'] for r in results]),
        )
        logger.info(
            f"Cross-validation: {len(results)}/{len(folds)} folds, "
            f"hit_rate={result.aggregate_metrics['hit_rate']:.3f}, stability={result.stability_score:.3f}"
        )
        return result

    def _run_fold(self, fold: Fold, events: List[OutcomeEvent], model_factory) -> FoldResult:
        started = time.perf_counter()
        model = model_factory()
        try:
            training_metrics = model.train(events[fold.train_start:fold.train_end])
            predictions, actuals = [], []
            for t in range(fold.test_start, fold.test_end):
                predictions.append(model.predict(events[:t], self.config.top_n))
                actuals.append(events[t])
        finally:
            if model.is_trained:
                model.dispose()

        metrics = compute_prediction_metrics(predictions, actuals, self.context.domain_size)
        logger.info(f"Fold {fold.index}: train=[0, {fold.train_end}) test=[{fold.test_start}, {fold.test_end}) "
                    f"hit_rate={metrics['hit_rate']:.3f}")
        return FoldResult(fold=fold, metrics=metrics, training_metrics=training_metrics,
                          duration_seconds=time.perf_counter() - started)
