"""End-to-end tests through the PredictionEngine facade."""

import sys
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from backtest import BacktestConfig
from data import InMemoryHistory, SyntheticHistoryGenerator
from engine import PredictionEngine, TrainingConfig
from ensemble import EnsembleConfig
from models import ModelKind, ModelSpec, PredictionCandidate
from utils.context import EngineContext
from utils.errors import EventOrderingError, InsufficientDataError, UntrainedModelError
from validation import CVConfig

FAST_MODELS = [
    ModelSpec(ModelKind.BOOSTED_TREE, {'n_rounds': 5, 'window': 5, 'max_samples': 30}),
    ModelSpec(ModelKind.BAGGED_TREE, {'n_trees': 5, 'window': 5, 'max_samples': 30}),
]


@pytest.fixture
def engine():
    engine = PredictionEngine(EngineContext.create(seed=3))
    yield engine
    engine.dispose()


def test_e2e_train_and_predict(engine, uniform_events):
    """Train the ensemble, re-weight it and rank the next draw."""
    config = TrainingConfig(models=list(FAST_MODELS),
                            ensemble=EnsembleConfig(strategy='adaptive', performance_window=10))
    result = engine.train_ensemble(uniform_events, config)

    assert set(result['models']) == {'boosted_tree', 'bagged_tree'}
    assert sum(result['weights'].values()) == pytest.approx(1.0)

    top = engine.predict(uniform_events, top_n=5)
    assert len(top) == 5
    assert len({c.entity_id for c in top}) == 5
    probabilities = [c.probability for c in top]
    assert probabilities == sorted(probabilities, reverse=True)
    assert engine.monitor.sessions[-1].n_events == len(uniform_events)


def test_predict_before_training(engine, uniform_events):
    with pytest.raises(UntrainedModelError):
        engine.predict(uniform_events)


def test_rejects_descending_history(engine, uniform_events):
    with pytest.raises(EventOrderingError):
        engine.extract_features(list(reversed(uniform_events)))


def test_extract_features(engine, uniform_events):
    matrix = engine.extract_features(uniform_events, window=10)
    frame = engine.extract_features(uniform_events, window=10, as_frame=True)
    assert matrix.shape == (90, 9)
    assert isinstance(frame, pd.DataFrame)
    assert np.allclose(frame.to_numpy(), matrix)


def test_history_provider(uniform_events):
    engine = PredictionEngine(EngineContext.create(seed=1), history=InMemoryHistory(uniform_events[::-1]))
    assert engine.extract_features().shape == (90, 9)


def test_missing_history(engine):
    with pytest.raises(ValueError):
        engine.extract_features()


def test_cross_validate(engine, uniform_events):
    config = CVConfig(n_folds=2, test_fraction=0.1, min_train_size=40, step_size=10, purge_gap=2)
    result = engine.cross_validate(uniform_events, config, kind=ModelKind.BOOSTED_TREE,
                                   params={'n_rounds': 3, 'window': 5, 'max_samples': 20})
    assert result.n_successful == 1
    assert 0 <= result.aggregate_metrics['hit_rate'] <= 1


def test_optimize_ensemble_weights(engine, uniform_events):
    outputs = {name: [PredictionCandidate(1, 0.5, 0.5, 0.5)] for name in ('m1', 'm2', 'm3')}
    weights = engine.optimize_ensemble_weights(outputs, uniform_events, EnsembleConfig(strategy='static'))
    assert weights == pytest.approx({'m1': 1 / 3, 'm2': 1 / 3, 'm3': 1 / 3})


def test_optimize_hyperparameters(engine, uniform_events):
    space = {'n_rounds': [2, 3], 'window': [5], 'max_samples': [15]}
    result = engine.optimize_hyperparameters('boosted_tree', uniform_events, space, max_iterations=2)
    assert len(result.history) == 2


def test_run_backtest(engine, uniform_events):
    result = engine.run_backtest(uniform_events, BacktestConfig(min_training_size=65, rebalance_frequency=20),
                                 models=FAST_MODELS[:1])
    assert result.summary.total_trades == 15


def test_record_outcome(engine, uniform_events):
    engine.train_ensemble(uniform_events[:60], TrainingConfig(models=list(FAST_MODELS), update_weights=False))
    status = engine.record_outcome(uniform_events[:61])
    assert set(engine.monitor.performance) == {'boosted_tree', 'bagged_tree'}
    assert not status.should_retrain

    status = engine.record_outcome(uniform_events)
    assert status.new_data_points == 20
    assert status.should_retrain


def test_train_on_short_history(engine):
    events = SyntheticHistoryGenerator(seed=1).generate(8)
    with pytest.raises(InsufficientDataError) as exc_info:
        engine.train_ensemble(events)
    assert exc_info.value.required == 11
    assert exc_info.value.available == 8
