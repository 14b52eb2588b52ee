"""Configuration, engine context, errors and shared helpers."""

from .config import CONFIG, EngineDefaults
from .context import CancellationToken, EngineContext
from .errors import (
    EngineError, InsufficientDataError, UntrainedModelError,
    EventOrderingError, ModelBusyError, OperationCancelled, EnsembleTrainingError
)

__all__ = [
    'CONFIG', 'EngineDefaults', 'CancellationToken', 'EngineContext',
    'EngineError', 'InsufficientDataError', 'UntrainedModelError',
    'EventOrderingError', 'ModelBusyError', 'OperationCancelled', 'EnsembleTrainingError'
]
