"""Typed errors raised by the engine."""


class EngineError(Exception):
    """Base class for all engine errors."""


class InsufficientDataError(EngineError, ValueError):
    """A minimum sample-size precondition is not met."""

    def __init__(self, operation: str, required: int, available: int):
        self.operation = operation
        self.required = required
        self.available = available
        super().__init__(
            f"{operation}: insufficient data (required {required} events, got {available})"
        )


class UntrainedModelError(EngineError, ValueError):
    """Predict or evaluate called before train."""

    def __init__(self, model_name: str):
        self.model_name = model_name
        super().__init__(f"{model_name}: model not trained yet")


class EventOrderingError(EngineError, ValueError):
    """Event history violates the canonical ascending order or the entity domain."""


class ModelBusyError(EngineError, RuntimeError):
    """Another train/predict/dispose call holds the model."""

    def __init__(self, model_name: str, operation: str):
        self.model_name = model_name
        self.operation = operation
        super().__init__(f"{model_name}: cannot {operation} while another operation is in progress")


class OperationCancelled(EngineError):
    """Raised inside long loops when the cancellation token fires or the deadline passes."""


class EnsembleTrainingError(EngineError, RuntimeError):
    """No member of an ensemble could be trained."""

    def __init__(self, failures):
        self.failures = dict(failures)
        detail = "; ".join(f"{name}: {type(e).__name__}: {e}" for name, e in self.failures.items())
        super().__init__(f"No trained models available ({detail})")
