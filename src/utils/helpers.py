"""Helper functions for numeric safety and artifact persistence."""

import json
from pathlib import Path
from typing import Any, Sequence

import joblib
import numpy as np
import pandas as pd


def safe_divide(numerator: float, denominator: float, fill_value: float = 0.0) -> float:
    """Divide, returning fill_value on a zero or non-finite denominator."""
    if denominator == 0 or not np.isfinite(denominator):
        return fill_value
    result = numerator / denominator
    return float(result) if np.isfinite(result) else fill_value


def population_variance(values: Sequence[float]) -> float:
    """Population variance; 0 for empty input."""
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return 0.0
    return float(arr.var())


def coefficient_of_variation(values: Sequence[float]) -> float:
    """std / mean, defined as 1 when the mean is not positive."""
    arr = np.asarray(values, dtype=float)
    if arr.size == 0:
        return 1.0
    mean = arr.mean()
    if mean <= 0:
        return 1.0
    return float(arr.std() / mean)


def least_squares_slope(values: Sequence[float]) -> float:
    """Slope of the least-squares line through (i, values[i]); 0 when undefined."""
    arr = np.asarray(values, dtype=float)
    if arr.size < 2:
        return 0.0
    x = np.arange(arr.size, dtype=float)
    x_centered = x - x.mean()
    denominator = float((x_centered ** 2).sum())
    if denominator == 0:
        return 0.0
    return float((x_centered * (arr - arr.mean())).sum() / denominator)


def sigmoid(x):
    return 1.0 / (1.0 + np.exp(-x))


def max_drawdown(profits: Sequence[float]) -> float:
    """Largest peak-to-trough fall of the cumulative profit curve (starting at 0)."""
    arr = np.asarray(profits, dtype=float)
    if arr.size == 0:
        return 0.0
    cumulative = np.concatenate([[0.0], np.cumsum(arr)])
    peak = np.maximum.accumulate(cumulative)
    return float((peak - cumulative).max())


def save_artifact(data: Any, filepath: str, format: str = 'joblib'):
    """Save data artifact in specified format."""
    path = Path(filepath)
    path.parent.mkdir(parents=True, exist_ok=True)

    if format == 'joblib':
        joblib.dump(data, path)
    elif format == 'csv':
        if isinstance(data, pd.DataFrame):
            data.to_csv(path, index=True)
        else:
            raise ValueError("CSV format only supports DataFrames")
    elif format == 'json':
        with open(path, 'w') as f:
            json.dump(data, f, indent=2, default=str)
    else:
        raise ValueError(f"Unknown format: {format}")


def load_artifact(filepath: str, format: str = 'joblib'):
    """Load data artifact from specified format."""
    path = Path(filepath)

    if not path.exists():
        raise FileNotFoundError(f"Artifact not found: {filepath}")

    if format == 'joblib':
        return joblib.load(path)
    elif format == 'csv':
        return pd.read_csv(path, index_col=0, parse_dates=True)
    elif format == 'json':
        with open(path, 'r') as f:
            return json.load(f)
    else:
        raise ValueError(f"Unknown format: {format}")
