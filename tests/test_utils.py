"""Test helpers, engine context and errors."""

import sys
import time
from pathlib import Path

import pandas as pd
import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from utils.context import EngineContext
from utils.errors import InsufficientDataError, OperationCancelled
from utils.helpers import (
    safe_divide, coefficient_of_variation, least_squares_slope, max_drawdown,
    save_artifact, load_artifact
)


def test_safe_divide():
    assert safe_divide(1, 4) == 0.25
    assert safe_divide(1, 0) == 0.0
    assert safe_divide(1, 0, fill_value=-1.0) == -1.0


def test_coefficient_of_variation():
    assert coefficient_of_variation([2, 2, 2]) == 0.0
    assert coefficient_of_variation([]) == 1.0
    assert coefficient_of_variation([0, 0]) == 1.0


def test_least_squares_slope():
    assert least_squares_slope([1, 2, 3, 4]) == pytest.approx(1.0)
    assert least_squares_slope([5]) == 0.0


def test_max_drawdown():
    assert max_drawdown([1, 1, 1]) == 0.0
    assert max_drawdown([-1, -1]) == pytest.approx(2.0)
    assert max_drawdown([]) == 0.0


def test_artifact_round_trip(tmp_path):
    save_artifact({'a': 1}, tmp_path / "x.json", format='json')
    assert load_artifact(tmp_path / "x.json", format='json') == {'a': 1}

    frame = pd.DataFrame({'v': [1.0, 2.0]})
    save_artifact(frame, tmp_path / "x.csv", format='csv')
    assert load_artifact(tmp_path / "x.csv", format='csv')['v'].tolist() == [1.0, 2.0]

    with pytest.raises(ValueError):
        save_artifact(frame, tmp_path / "x.bin", format='parquet')
    with pytest.raises(FileNotFoundError):
        load_artifact(tmp_path / "missing.pkl")


class TestEngineContext:

    def test_seeded_spawns_are_reproducible(self):
        a, b = EngineContext.create(seed=4), EngineContext.create(seed=4)
        assert [a.spawn_seed() for _ in range(3)] == [b.spawn_seed() for _ in range(3)]

    def test_cancellation(self):
        context = EngineContext.create(seed=1)
        assert not context.should_stop()
        context.token.cancel("enough")
        assert context.should_stop()
        with pytest.raises(OperationCancelled, match="enough"):
            context.check_cancelled()

    def test_deadline(self):
        context = EngineContext.create(seed=1, deadline_seconds=0.01)
        time.sleep(0.02)
        assert context.deadline_exceeded()
        assert context.stop_reason() == "deadline exceeded"


def test_insufficient_data_error_fields():
    error = InsufficientDataError("train", 11, 5)
    assert error.required == 11 and error.available == 5
    assert isinstance(error, ValueError)
