"""Test the prediction models and the model registry."""

import sys
import threading
from pathlib import Path

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from data import SyntheticHistoryGenerator
from models import (
    BoostedTreeEnsemble, BaggedTreeEnsemble, SequenceModelAdapter, MLPSequenceModel,
    SequenceParams, PredictionCandidate, ModelKind, ModelSpec, create_model, build_params,
    model_factory
)
from utils.context import EngineContext
from utils.errors import (
    EventOrderingError, InsufficientDataError, ModelBusyError, UntrainedModelError
)

from conftest import make_events

SMALL_BOOSTING = dict(n_rounds=5, max_depth=3, window=5, max_samples=20)
SMALL_BAGGING = dict(n_trees=5, max_depth=4, window=5, max_samples=20)


def test_prediction_candidate_clips():
    candidate = PredictionCandidate(entity_id=3, probability=1.4, confidence=-0.2, uncertainty=0.5)
    assert candidate.probability == 1.0
    assert candidate.confidence == 0.0
    assert candidate.uncertainty == 0.5


class TestBoostedTrees:

    def test_separable_labels_reach_high_accuracy(self):
        rng = np.random.default_rng(0)
        X = rng.normal(size=(300, 3))
        y = (X[:, 0] > 0).astype(float)

        model = BoostedTreeEnsemble(n_rounds=50, learning_rate=0.1, max_depth=4)
        metrics = model.fit_arrays(X, y)

        assert metrics['training_accuracy'] > 0.95
        assert metrics['n_trees'] == 50
        probabilities = model.predict_proba(X)
        assert np.all((probabilities > 0) & (probabilities < 1))
        assert probabilities[y == 1].mean() > probabilities[y == 0].mean()

    def test_periodic_entity_ranks_high(self, periodic_events, context):
        model = BoostedTreeEnsemble(context=context, n_rounds=30, window=10)
        model.train(periodic_events)
        candidates = model.predict(periodic_events)

        ranking = [c.entity_id for c in candidates]
        probabilities = {c.entity_id: c.probability for c in candidates}
        others = [p for entity, p in probabilities.items() if entity != 7]

        assert len(candidates) == 90
        assert ranking.index(7) < 10
        assert probabilities[7] > np.median(others)

    def test_predict_is_sorted_and_bounded(self, uniform_events, context):
        model = BoostedTreeEnsemble(context=context, **SMALL_BOOSTING)
        model.train(uniform_events)
        candidates = model.predict(uniform_events, top_n=5)

        assert len(candidates) == 5
        probabilities = [c.probability for c in candidates]
        assert probabilities == sorted(probabilities, reverse=True)
        for c in candidates:
            assert 0 <= c.confidence <= 1
            assert 0.1 <= c.uncertainty <= 0.9
            assert len(c.contributing_features) == 3

    def test_untrained_predict_raises(self, uniform_events):
        with pytest.raises(UntrainedModelError):
            BoostedTreeEnsemble().predict(uniform_events)

    def test_short_history_raises(self, uniform_events):
        with pytest.raises(InsufficientDataError) as exc_info:
            BoostedTreeEnsemble(window=10).train(uniform_events[:10])
        assert exc_info.value.required == 11
        assert exc_info.value.available == 10

    def test_descending_history_rejected(self, uniform_events):
        with pytest.raises(EventOrderingError):
            BoostedTreeEnsemble(**SMALL_BOOSTING).train(list(reversed(uniform_events)))

    def test_save_and_load(self, uniform_events, context, tmp_path):
        model = BoostedTreeEnsemble(context=context, **SMALL_BOOSTING)
        model.train(uniform_events)
        path = tmp_path / "boosted.pkl"
        model.save(path)

        restored = BoostedTreeEnsemble(**SMALL_BOOSTING)
        restored.load(path)

        before = [c.probability for c in model.predict(uniform_events)]
        after = [c.probability for c in restored.predict(uniform_events)]
        assert np.allclose(before, after)
        assert restored.training_metrics == model.training_metrics

    def test_dispose_returns_to_untrained(self, uniform_events, context):
        model = BoostedTreeEnsemble(context=context, **SMALL_BOOSTING)
        model.train(uniform_events)
        model.dispose()
        assert not model.is_trained
        assert model.trees == []
        with pytest.raises(UntrainedModelError):
            model.predict(uniform_events)

    def test_evaluate(self, uniform_events, context):
        model = BoostedTreeEnsemble(context=context, **SMALL_BOOSTING)
        model.train(uniform_events[:60])
        metrics = model.evaluate(uniform_events, start=60, top_n=5)
        assert metrics['n_steps'] == 20
        assert 0 <= metrics['hit_rate'] <= 1


class TestBaggedTrees:

    def test_train_and_predict(self, uniform_events, context):
        model = BaggedTreeEnsemble(context=context, **SMALL_BAGGING)
        metrics = model.train(uniform_events)
        candidates = model.predict(uniform_events)

        assert metrics['n_trees'] == 5
        assert len(candidates) == 90
        probabilities = [c.probability for c in candidates]
        assert probabilities == sorted(probabilities, reverse=True)
        assert all(0 <= c.confidence <= 1 for c in candidates)

    def test_top_candidates_carry_interaction_score(self, uniform_events, context):
        model = BaggedTreeEnsemble(context=context, **SMALL_BAGGING)
        model.train(uniform_events)
        candidates = model.predict(uniform_events)
        flagged = [c for c in candidates if 'pair_interaction' in c.contributing_features]
        assert len(flagged) == model.params.rescore_top_k

    def test_rescore_moves_uncertainty_with_confidence(self, context):
        model = BaggedTreeEnsemble(context=context, **SMALL_BAGGING)
        candidates = [PredictionCandidate(entity_id=j, probability=1 - j / 100, confidence=0.5, uncertainty=0.5)
                      for j in range(1, 21)]
        recent = make_events([[1, 2, 3, 4, 5]] * 5)

        rescored = {c.entity_id: c for c in model._rescore_top_k(candidates, recent)}

        # entity 1 co-occurs with 2..5 every draw and never with 6..10
        assert rescored[1].contributing_features['pair_interaction'] == pytest.approx(4 / 9, abs=1e-6)
        assert rescored[1].confidence == pytest.approx(0.5 + 0.1 * 4 / 9)
        assert rescored[1].confidence + rescored[1].uncertainty == pytest.approx(1.0)
        assert rescored[8].confidence == 0.5 and rescored[8].uncertainty == 0.5
        assert rescored[15].confidence == 0.5 and rescored[15].uncertainty == 0.5

    def test_same_seed_same_forest(self, uniform_events):
        results = []
        for n_jobs in (1, 2):
            context = EngineContext.create(seed=21, n_jobs=n_jobs)
            model = BaggedTreeEnsemble(context=context, **SMALL_BAGGING)
            model.train(uniform_events)
            results.append([(c.entity_id, c.probability) for c in model.predict(uniform_events)])
        assert results[0] == results[1]

    def test_empty_training_set(self):
        model = BaggedTreeEnsemble(n_trees=3)
        metrics = model.fit_arrays(np.zeros((0, 9)), np.zeros(0))
        assert metrics['n_samples'] == 0
        assert model.is_trained


class TestConcurrency:

    def test_busy_model_rejects_second_call(self, uniform_events, context):
        model = BoostedTreeEnsemble(context=context, **SMALL_BOOSTING)
        model.train(uniform_events)

        model._lock.acquire()
        try:
            with pytest.raises(ModelBusyError):
                model.predict(uniform_events)
            with pytest.raises(ModelBusyError):
                model.train(uniform_events)
        finally:
            model._lock.release()

        assert len(model.predict(uniform_events, top_n=3)) == 3

    def test_separate_instances_run_in_parallel(self, uniform_events):
        errors = []

        def work(seed):
            try:
                model = BoostedTreeEnsemble(context=EngineContext.create(seed=seed), **SMALL_BOOSTING)
                model.train(uniform_events)
                model.predict(uniform_events, top_n=5)
            except Exception as e:  # collected for the assertion below
                errors.append(e)

        threads = [threading.Thread(target=work, args=(seed,)) for seed in range(3)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert errors == []


class FakeSequence:
    """Collaborator that always predicts entities in id order."""

    def __init__(self):
        self.trained_on = None
        self.disposed = False

    def train(self, events):
        self.trained_on = len(events)
        return {'training_accuracy': 1.0}

    def predict(self, events, top_n=None):
        candidates = [PredictionCandidate(entity_id=e, probability=1.0 / e, confidence=0.5, uncertainty=0.5)
                      for e in range(1, 91)]
        return candidates if top_n is None else candidates[:top_n]

    def dispose(self):
        self.disposed = True


class TestSequenceModel:

    def test_adapter_delegates_to_collaborator(self, uniform_events):
        fake = FakeSequence()
        adapter = SequenceModelAdapter(fake)
        adapter.train(uniform_events)
        top = adapter.predict(uniform_events, top_n=3)

        assert fake.trained_on == len(uniform_events)
        assert [c.entity_id for c in top] == [1, 2, 3]
        adapter.dispose()
        assert fake.disposed

    def test_adapter_rejects_incomplete_collaborator(self):
        with pytest.raises(TypeError):
            SequenceModelAdapter(object())

    def test_mlp_sequence_model(self):
        events = SyntheticHistoryGenerator(domain_size=10, draw_size=3, seed=8).generate(25)
        params = SequenceParams(sequence_length=3, hidden_units=8, epochs=5, batch_size=8)
        model = MLPSequenceModel(params, domain_size=10, seed=1)

        metrics = model.train(events)
        candidates = model.predict(events)

        assert metrics['n_samples'] == 22
        assert len(candidates) == 10
        for c in candidates:
            assert 0.1 <= c.confidence <= 0.95
            assert c.uncertainty == pytest.approx(1.0 - c.confidence)

    def test_mlp_sequence_model_short_history(self):
        model = MLPSequenceModel(SequenceParams(sequence_length=5), domain_size=10)
        events = SyntheticHistoryGenerator(domain_size=10, draw_size=3).generate(6)
        with pytest.raises(InsufficientDataError):
            model.train(events)

    def test_adapter_builds_default_collaborator(self):
        context = EngineContext.create(seed=2, domain_size=10)
        adapter = SequenceModelAdapter(context=context, sequence_length=3, hidden_units=8, epochs=3)
        assert isinstance(adapter.collaborator, MLPSequenceModel)
        assert adapter.get_params()['sequence_length'] == 3


class TestRegistry:

    def test_create_each_kind(self, context):
        assert isinstance(create_model(ModelKind.BOOSTED_TREE, context=context), BoostedTreeEnsemble)
        assert isinstance(create_model('bagged_tree', {'n_trees': 3}, context), BaggedTreeEnsemble)
        assert isinstance(create_model(ModelKind.SEQUENCE_MODEL, context=context), SequenceModelAdapter)

    def test_unknown_parameter_rejected(self):
        with pytest.raises(ValueError):
            build_params(ModelKind.BOOSTED_TREE, {'n_estimators': 10})

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValueError):
            create_model('random_forest')

    def test_model_spec_default_name(self):
        assert ModelSpec(ModelKind.BAGGED_TREE).name == 'bagged_tree'

    def test_model_factory_builds_fresh_named_models(self, context):
        factory = model_factory(ModelSpec('boosted_tree', {'n_rounds': 3}, name='fast'), context)
        a, b = factory(), factory()
        assert a is not b
        assert a.name == 'fast'
        assert a.params.n_rounds == 3
