"""Test prediction metrics and purged walk-forward cross-validation."""

import sys
from pathlib import Path

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from models import PredictionCandidate
from validation import (
    compute_prediction_metrics, METRIC_NAMES, trade_profit, jaccard,
    CVConfig, TimeSeriesCrossValidator
)
from validation.time_series_cv import analyze_convergence, stability_score, FoldResult, Fold
from utils.context import EngineContext
from utils.errors import InsufficientDataError, OperationCancelled

from conftest import make_events


def ranked(*ids):
    return [PredictionCandidate(entity_id=e, probability=0.9 - 0.1 * i, confidence=0.7, uncertainty=0.3)
            for i, e in enumerate(ids)]


class TestPredictionMetrics:

    def test_hand_computed_metrics(self):
        predictions = [ranked(1, 2), ranked(1, 2)]
        actuals = make_events([{1, 3}, {4, 5}])
        metrics = compute_prediction_metrics(predictions, actuals)

        assert metrics['precision'] == pytest.approx(0.25)
        assert metrics['hit_rate'] == pytest.approx(0.25)
        assert metrics['f1_score'] == pytest.approx(0.25)
        assert metrics['coverage_rate'] == pytest.approx(0.5)
        # (1 - 0.2) / 2 and (0 - 0.4) / 2
        assert metrics['expected_value'] == pytest.approx(0.1)
        assert metrics['temporal_stability'] == pytest.approx(1.0)
        assert metrics['diversity_score'] == pytest.approx(0.5)
        assert metrics['total_hits'] == 1
        assert metrics['n_steps'] == 2
        assert set(METRIC_NAMES) <= set(metrics)

    def test_actuals_as_sets(self):
        metrics = compute_prediction_metrics([ranked(1, 2)], [{1, 2}])
        assert metrics['hit_rate'] == pytest.approx(1.0)
        assert metrics['temporal_stability'] == 0.0

    def test_empty_input(self):
        metrics = compute_prediction_metrics([], [])
        assert metrics['n_steps'] == 0
        assert all(metrics[name] == 0.0 for name in METRIC_NAMES)

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            compute_prediction_metrics([ranked(1)], [])

    def test_calibration_metrics_bounded(self):
        metrics = compute_prediction_metrics([ranked(1, 2, 3)], [{2}])
        assert 0 <= metrics['uncertainty_calibration'] <= 1
        assert 0 <= metrics['calibration_error'] <= 1
        assert metrics['log_loss'] > 0


def test_trade_profit():
    assert trade_profit(2, 5) == pytest.approx(1.4)
    assert trade_profit(0, 5) == pytest.approx(-1.0)


def test_jaccard():
    assert jaccard([1, 2], [2, 3]) == pytest.approx(1 / 3)
    assert jaccard([], []) == 1.0


class TestFolds:

    def test_fold_layout_is_purged_and_advancing(self):
        cv = TimeSeriesCrossValidator(CVConfig(n_folds=5, test_fraction=0.2, min_train_size=50,
                                               step_size=10, purge_gap=5))
        folds = cv.generate_folds(200)

        # fold 0 would train on only 45 events and is dropped
        assert [f.index for f in folds] == [1, 2, 3, 4]
        for fold in folds:
            assert fold.train_end >= 50
            assert fold.train_end + 5 == fold.test_start
            assert fold.test_size == 40
            assert fold.test_end <= 200
        starts = [f.test_start for f in folds]
        assert starts == sorted(starts) and len(set(starts)) == len(starts)

    def test_no_fold_fits(self):
        cv = TimeSeriesCrossValidator(CVConfig(min_train_size=50, purge_gap=5))
        assert cv.generate_folds(40) == []

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            CVConfig(test_fraction=1.5)
        with pytest.raises(ValueError):
            CVConfig(n_folds=0)


SMALL_CV = dict(n_folds=3, test_fraction=0.1, min_train_size=40, step_size=10, purge_gap=0)


class TestCrossValidation:

    def test_validate_runs_every_fold(self, uniform_events, fixed_model, context):
        cv = TimeSeriesCrossValidator(CVConfig(**SMALL_CV), context)
        result = cv.validate(uniform_events, lambda: fixed_model([1, 2, 3, 4, 5], context))

        assert result.n_successful == 3
        assert result.failures == []
        assert set(METRIC_NAMES) <= set(result.aggregate_metrics)
        assert 0 <= result.stability_score <= 1
        assert result.convergence.trend in ('stable', 'improving', 'declining')
        assert len(result.to_frame()) == 3
        assert "# Cross-Validation Report" in result.generate_report()
        assert len(result.to_dict()['folds']) == 3

    def test_failed_folds_are_recorded(self, uniform_events, fixed_model, context):
        cv = TimeSeriesCrossValidator(CVConfig(**SMALL_CV), context)
        result = cv.validate(uniform_events, lambda: fixed_model(context=context, fail_training=True))

        assert result.n_successful == 0
        assert len(result.failures) == 3
        assert "RuntimeError" in result.failures[0].error
        assert result.aggregate_metrics['hit_rate'] == 0.0

    def test_insufficient_history(self, uniform_events, fixed_model, context):
        cv = TimeSeriesCrossValidator(CVConfig(min_train_size=50), context)
        with pytest.raises(InsufficientDataError):
            cv.validate(uniform_events[:30], lambda: fixed_model(context=context))

    def test_cancellation_between_folds(self, uniform_events, fixed_model):
        context = EngineContext.create(seed=1)
        context.token.cancel("stop requested")
        cv = TimeSeriesCrossValidator(CVConfig(**SMALL_CV), context)
        with pytest.raises(OperationCancelled):
            cv.validate(uniform_events, lambda: fixed_model(context=context))


class TestAggregation:

    def test_convergence_trends(self):
        assert analyze_convergence([0.1, 0.2]).trend == 'insufficient_data'
        stable = analyze_convergence([0.3, 0.3, 0.3, 0.3])
        assert stable.trend == 'stable' and stable.is_stable
        assert analyze_convergence([0.1, 0.2, 0.3, 0.4]).trend == 'improving'
        assert analyze_convergence([0.4, 0.3, 0.2]).trend == 'declining'

    def test_stability_score(self):
        fold = Fold(index=0, train_end=10, test_start=10, test_end=20)
        same = {'hit_rate': 0.2, 'coverage_rate': 0.5, 'f1_score': 0.2, 'expected_value': 0.1}
        results = [FoldResult(fold, dict(same)), FoldResult(fold, dict(same))]
        assert stability_score(results) == pytest.approx(1.0)
        assert stability_score(results[:1]) == 0.0

    def test_stability_penalises_spread(self):
        fold = Fold(index=0, train_end=10, test_start=10, test_end=20)
        low = {'hit_rate': 0.1, 'coverage_rate': 0.1, 'f1_score': 0.1, 'expected_value': 0.1}
        high = {'hit_rate': 0.5, 'coverage_rate': 0.9, 'f1_score': 0.5, 'expected_value': 0.5}
        score = stability_score([FoldResult(fold, low), FoldResult(fold, high)])
        assert 0 <= score < 1
        assert np.isfinite(score)
