"""Prediction models: tree learners, tree ensembles and the sequence-model adapter."""

from .base_model import BaseModel, ModelKind, PredictionCandidate
from .decision_tree import DecisionTreeLearner, SplitPolicy, Leaf, Internal
from .boosted_trees import BoostedTreeEnsemble, BoostingParams
from .bagged_trees import BaggedTreeEnsemble, BaggingParams
from .sequence_model import SequenceModel, SequenceModelAdapter, MLPSequenceModel, SequenceParams
from .registry import ModelSpec, create_model, build_params, model_factory

__all__ = [
    'BaseModel', 'ModelKind', 'PredictionCandidate',
    'DecisionTreeLearner', 'SplitPolicy', 'Leaf', 'Internal',
    'BoostedTreeEnsemble', 'BoostingParams',
    'BaggedTreeEnsemble', 'BaggingParams',
    'SequenceModel', 'SequenceModelAdapter', 'MLPSequenceModel', 'SequenceParams',
    'ModelSpec', 'create_model', 'build_params', 'model_factory'
]
