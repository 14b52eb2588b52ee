"""Engine facade exposing the external operations."""

from .prediction_engine import PredictionEngine, TrainingConfig, default_model_specs

__all__ = ['PredictionEngine', 'TrainingConfig', 'default_model_specs']
