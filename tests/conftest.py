"""Shared fixtures for the engine tests."""

import sys
from datetime import datetime, timedelta
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from data import OutcomeEvent, SyntheticHistoryGenerator
from models import BaseModel, PredictionCandidate
from utils.context import EngineContext


class FixedRankingModel(BaseModel):
    """Always ranks `ranking` first (in order), every other entity after it."""

    def __init__(self, ranking=(7,), context=None, fail_training=False):
        super().__init__("FixedRanking", context)
        self.ranking = list(ranking)
        self.fail_training = fail_training

    def _train(self, events):
        if self.fail_training:
            raise RuntimeError("training failed on purpose")
        return {'n_events': len(events)}

    def _predict(self, events):
        domain = self.context.domain_size
        rest = [e for e in range(1, domain + 1) if e not in self.ranking]
        ordered = self.ranking + rest
        return [
            PredictionCandidate(entity_id=entity, probability=1.0 - i / (domain + 1),
                                confidence=0.8, uncertainty=0.2)
            for i, entity in enumerate(ordered)
        ]


def make_events(sets, start=datetime(2023, 1, 2)):
    """Events with the given outcome sets, one day apart."""
    return [OutcomeEvent(timestamp=start + timedelta(days=i), outcome_set=frozenset(s))
            for i, s in enumerate(sets)]


@pytest.fixture
def context():
    return EngineContext.create(seed=11, n_jobs=1)


@pytest.fixture
def uniform_events():
    return SyntheticHistoryGenerator(seed=5).generate(80)


@pytest.fixture
def periodic_events():
    """60 draws where entity 7 appears in every third draw (and never otherwise)."""
    return SyntheticHistoryGenerator(seed=3).generate(60, periodic={7: 3})


@pytest.fixture
def constant_events():
    """100 draws that all contain entity 7."""
    return SyntheticHistoryGenerator(seed=9).generate(100, constant=[7])


@pytest.fixture
def fixed_model():
    return FixedRankingModel
