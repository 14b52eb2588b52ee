"""
Decision tree learner with two split policies.

Nodes live in a flat arena (list) and reference their children by index, so a
trained tree is a plain list of immutable Leaf / Internal records plus the
compiled numpy arrays used for vectorised traversal.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple, Union

import numpy as np

import sys
from pathlib import Path
try:
    from ..utils.errors import UntrainedModelError
except ImportError:
    current_dir = Path(__file__).parent.parent
    if str(current_dir) not in sys.path:
        sys.path.insert(0, str(current_dir))
    from utils.errors import UntrainedModelError

# Gains at or below this are treated as "no positive-gain split"
MIN_GAIN = 1e-12


class SplitPolicy(str, Enum):
    VARIANCE_REDUCTION = "variance_reduction"
    RANDOMIZED = "randomized"


@dataclass(frozen=True)
class Leaf:
    value: float


@dataclass(frozen=True)
class Internal:
    feature_index: int
    threshold: float
    left: int
    right: int


TreeNode = Union[Leaf, Internal]


@dataclass(frozen=True)
class _Split:
    feature_index: int
    threshold: float
    gain: float


class DecisionTreeLearner:
    """
    Regression tree over float labels.

    Usage:
        tree = DecisionTreeLearner(max_depth=4).fit(X, y)
        scores = tree.predict(X_new)
    """

    def __init__(self, max_depth: int = 6, min_samples_split: int = 2,
                 split_policy: SplitPolicy = SplitPolicy.VARIANCE_REDUCTION,
                 rng: Optional[np.random.Generator] = None):
        if max_depth < 0:
            raise ValueError(f"max_depth must be >= 0, got {max_depth}")
        self.max_depth = max_depth
        self.min_samples_split = max(2, min_samples_split)
        self.split_policy = SplitPolicy(split_policy)
        self.rng = rng if rng is not None else np.random.default_rng()

        self.nodes: List[TreeNode] = []
        self.feature_importance: np.ndarray = np.zeros(0)
        self.is_trained = False
        self._compiled: Optional[Tuple[np.ndarray, ...]] = None

    def fit(self, X: np.ndarray, y: np.ndarray) -> "DecisionTreeLearner":
        """Build the tree. Degenerate input (no rows, constant labels) gives a single leaf."""
        X = np.asarray(X, dtype=float)
        y = np.asarray(y, dtype=float).ravel()
        if X.ndim != 2:
            X = X.reshape(len(y), -1)
        if X.shape[0] != y.shape[0]:
            raise ValueError(f"X has {X.shape[0]} rows but y has {y.shape[0]} labels")

        n_features = X.shape[1]
        self.nodes = []
        self.feature_importance = np.zeros(n_features)

        if y.size == 0:
            self.nodes.append(Leaf(0.0))
            self._finish()
            return self

        self.nodes.append(None)
        stack = [(0, np.arange(y.size), 0)]
        while stack:
            node_id, indices, depth = stack.pop()
            labels = y[indices]

            split = None
            if (depth < self.max_depth and labels.size >= self.min_samples_split
                    and n_features > 0 and np.ptp(labels) > 0):
                split = self._find_split(X[indices], labels)

            if split is None or split.gain <= MIN_GAIN:
                self.nodes[node_id] = Leaf(float(labels.mean()))
                continue

            goes_left = X[indices, split.feature_index] <= split.threshold
            left_idx, right_idx = indices[goes_left], indices[~goes_left]
            if left_idx.size == 0 or right_idx.size == 0:
                self.nodes[node_id] = Leaf(float(labels.mean()))
                continue

            self.feature_importance[split.feature_index] += split.gain
            left_id, right_id = len(self.nodes), len(self.nodes) + 1
            self.nodes.extend([None, None])
            self.nodes[node_id] = Internal(split.feature_index, split.threshold, left_id, right_id)
            stack.append((right_id, right_idx, depth + 1))
            stack.append((left_id, left_idx, depth + 1))

        self._finish()
        return self

    def predict(self, X: np.ndarray) -> np.ndarray:
        """Traverse x[feature] <= threshold -> left, else right, down to one leaf per row."""
        if not self.is_trained:
            raise UntrainedModelError("DecisionTree")
        X = np.atleast_2d(np.asarray(X, dtype=float))
        features, thresholds, lefts, rights, values = self._compiled

        node = np.zeros(X.shape[0], dtype=int)
        active = features[node] >= 0
        while active.any():
            rows = np.nonzero(active)[0]
            current = node[rows]
            go_left = X[rows, features[current]] <= thresholds[current]
            node[rows] = np.where(go_left, lefts[current], rights[current])
            active = features[node] >= 0
        return values[node]

    def predict_one(self, x: np.ndarray) -> float:
        return float(self.predict(np.asarray(x, dtype=float).reshape(1, -1))[0])

    @property
    def depth(self) -> int:
        if not self.nodes:
            return 0
        depth_of = {0: 0}
        deepest = 0
        for node_id, node in enumerate(self.nodes):
            if isinstance(node, Internal):
                child_depth = depth_of[node_id] + 1
                depth_of[node.left] = depth_of[node.right] = child_depth
                deepest = max(deepest, child_depth)
        return deepest

    @property
    def n_leaves(self) -> int:
        return sum(1 for node in self.nodes if isinstance(node, Leaf))

    def dispose(self):
        """Release the arena in one go."""
        self.nodes = []
        self._compiled = None
        self.is_trained = False

    # --- split search ------------------------------------------------------------

    def _find_split(self, X: np.ndarray, y: np.ndarray) -> Optional[_Split]:
        if self.split_policy is SplitPolicy.RANDOMIZED:
            return self._random_split(X, y)
        return self._best_variance_split(X, y)

    def _best_variance_split(self, X: np.ndarray, y: np.ndarray) -> Optional[_Split]:
        n = y.size
        parent_variance = y.var()
        left_n = np.arange(1, n, dtype=float)
        right_n = n - left_n

        best: Optional[_Split] = None
        for feature_index in range(X.shape[1]):
            order = np.argsort(X[:, feature_index], kind='mergesort')
            xs = X[order, feature_index]
            ys = y[order]
            distinct = xs[1:] > xs[:-1]
            if not distinct.any():
                continue

            csum = np.cumsum(ys)
            csq = np.cumsum(ys * ys)
            left_sum, left_sq = csum[:-1], csq[:-1]
            right_sum, right_sq = csum[-1] - left_sum, csq[-1] - left_sq
            left_var = np.clip(left_sq / left_n - (left_sum / left_n) ** 2, 0.0, None)
            right_var = np.clip(right_sq / right_n - (right_sum / right_n) ** 2, 0.0, None)
            gains = parent_variance - (left_n * left_var + right_n * right_var) / n
            gains = np.where(distinct, gains, -np.inf)

            position = int(np.argmax(gains))
            if best is None or gains[position] > best.gain:
                threshold = (xs[position] + xs[position + 1]) / 2.0
                best = _Split(feature_index, float(threshold), float(gains[position]))
        return best

    def _random_split(self, X: np.ndarray, y: np.ndarray) -> Optional[_Split]:
        feature_index = int(self.rng.integers(X.shape[1]))
        column = X[:, feature_index]
        low, high = column.min(), column.max()
        if low == high:
            return None
        threshold = float(low + self.rng.random() * (high - low))
        goes_left = column <= threshold
        n_left = int(goes_left.sum())
        if n_left == 0 or n_left == y.size:
            return None
        left, right = y[goes_left], y[~goes_left]
        weighted = (left.size * left.var() + right.size * right.var()) / y.size
        return _Split(feature_index, threshold, float(y.var() - weighted))

    def _finish(self):
        n_nodes = len(self.nodes)
        features = np.full(n_nodes, -1, dtype=int)
        thresholds = np.zeros(n_nodes)
        lefts = np.zeros(n_nodes, dtype=int)
        rights = np.zeros(n_nodes, dtype=int)
        values = np.zeros(n_nodes)
        for node_id, node in enumerate(self.nodes):
            if isinstance(node, Internal):
                features[node_id] = node.feature_index
                thresholds[node_id] = node.threshold
                lefts[node_id] = node.left
                rights[node_id] = node.right
            else:
                values[node_id] = node.value
        self._compiled = (features, thresholds, lefts, rights, values)
        self.is_trained = True
