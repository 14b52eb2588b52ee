"""Model construction by kind."""

from dataclasses import dataclass, field, fields
from typing import Any, Callable, Dict, Optional, Union

from .base_model import BaseModel, ModelKind
from .bagged_trees import BaggedTreeEnsemble, BaggingParams
from .boosted_trees import BoostedTreeEnsemble, BoostingParams
from .sequence_model import SequenceModelAdapter, SequenceParams

_PARAM_TYPES = {
    ModelKind.BOOSTED_TREE: BoostingParams,
    ModelKind.BAGGED_TREE: BaggingParams,
    ModelKind.SEQUENCE_MODEL: SequenceParams,
}


@dataclass
class ModelSpec:
    """Named model configuration, e.g. one algorithm in a backtest."""
    kind: ModelKind
    params: Dict[str, Any] = field(default_factory=dict)
    name: Optional[str] = None

    def __post_init__(self):
        self.kind = ModelKind(self.kind)
        if self.name is None:
            self.name = self.kind.value


def build_params(kind: Union[ModelKind, str], params: Optional[Dict[str, Any]] = None):
    """Params dataclass for `kind`; unknown keys raise ValueError."""
    kind = ModelKind(kind)
    param_type = _PARAM_TYPES[kind]
    params = dict(params or {})
    known = {f.name for f in fields(param_type)}
    unknown = sorted(set(params) - known)
    if unknown:
        raise ValueError(f"Unknown {kind.value} parameters: {unknown}")
    return param_type(**params)


def create_model(kind: Union[ModelKind, str], params: Optional[Dict[str, Any]] = None,
                 context=None) -> BaseModel:
    """Instantiate an untrained model of the given kind."""
    kind = ModelKind(kind)
    built = build_params(kind, params)
    if kind is ModelKind.BOOSTED_TREE:
        return BoostedTreeEnsemble(built, context=context)
    if kind is ModelKind.BAGGED_TREE:
        return BaggedTreeEnsemble(built, context=context)
    return SequenceModelAdapter(params=built, context=context)


def model_factory(spec: ModelSpec, context=None) -> Callable[[], BaseModel]:
    """Zero-argument factory building a fresh model for `spec`."""
    def factory() -> BaseModel:
        model = create_model(spec.kind, spec.params, context)
        model.name = spec.name
        return model
    return factory
