"""Quantile regression forest.

Each tree is a scikit-learn ``DecisionTreeRegressor`` grown on a seeded
subsample of the training rows. Besides the tree structure the forest keeps,
for every tree, which training responses fell into which leaf, so that a query
point's conditional distribution is the pool of all leaf members it shares
across trees. Pooling is expressed as sparse leaf-membership matrices and
evaluated chunk-wise to keep memory bounded on large grids.
"""

from collections.abc import Sequence

import numpy as np
import pandas as pd
from scipy import sparse
from sklearn.base import BaseEstimator, RegressorMixin
from sklearn.tree import DecisionTreeRegressor

from toc_mapping.exceptions import InputError
from toc_mapping.utils.logger import setup_logger

logger = setup_logger("quantile_forest")

_PREDICT_CHUNK = 2048


class QuantileRegressionForest(RegressorMixin, BaseEstimator):
    """Tree ensemble estimating full conditional quantiles.

    Only the in-bag rows of each tree are pooled into its leaves; out-of-bag
    training rows do not contribute to that tree's share of the conditional
    distribution. A training row therefore enters the pool of its own
    location through the trees that drew it.

    Args:
        n_estimators: Number of trees
        mtry: Predictors considered per split; clamped to the number of
            predictors, ``None`` uses floor(sqrt(p))
        min_samples_leaf: Minimum training rows per leaf
        sample_fraction: Share of rows drawn for each tree
        replace: Draw rows with replacement (bootstrap) instead of subsampling
        max_depth: Optional depth limit of each tree
        random_state: Seed controlling row sampling and split candidates
    """

    def __init__(
        self,
        n_estimators: int = 500,
        mtry: int | None = None,
        min_samples_leaf: int = 5,
        sample_fraction: float = 0.632,
        replace: bool = False,
        max_depth: int | None = None,
        random_state: int | None = None,
    ) -> None:
        self.n_estimators = n_estimators
        self.mtry = mtry
        self.min_samples_leaf = min_samples_leaf
        self.sample_fraction = sample_fraction
        self.replace = replace
        self.max_depth = max_depth
        self.random_state = random_state

    def _resolve_mtry(self, n_features: int) -> int:
        if self.mtry is None:
            return max(1, int(np.sqrt(n_features)))
        return int(min(max(1, self.mtry), n_features))

    def fit(self, X: pd.DataFrame | np.ndarray, y: np.ndarray) -> "QuantileRegressionForest":
        """Grow the trees and record leaf membership of the in-bag responses."""
        if isinstance(X, pd.DataFrame):
            self.feature_names_ = list(X.columns)
        else:
            self.feature_names_ = None
        x_arr = np.asarray(X, dtype=float)
        y_arr = np.asarray(y, dtype=float).ravel()
        if x_arr.ndim != 2 or len(x_arr) != len(y_arr):
            raise InputError("X must be 2-D with one row per response value", stage="forest")
        n_samples, n_features = x_arr.shape
        if n_samples < 2:
            raise InputError("At least 2 observations are required to grow a forest", stage="forest")

        rng = np.random.default_rng(self.random_state)
        n_draw = max(2, int(round(self.sample_fraction * n_samples)))
        if not self.replace:
            n_draw = min(n_draw, n_samples)
        max_features = self._resolve_mtry(n_features)

        self.estimators_: list[DecisionTreeRegressor] = []
        self._leaf_members: list[sparse.csr_matrix] = []
        for _ in range(self.n_estimators):
            rows = rng.choice(n_samples, size=n_draw, replace=self.replace)
            tree = DecisionTreeRegressor(
                max_features=max_features,
                min_samples_leaf=self.min_samples_leaf,
                max_depth=self.max_depth,
                random_state=int(rng.integers(np.iinfo(np.int32).max)),
            )
            tree.fit(x_arr[rows], y_arr[rows])
            leaves = tree.apply(x_arr[rows])
            # duplicate (leaf, row) entries are summed, so bootstrap repeats keep their weight
            members = sparse.csr_matrix(
                (np.ones(len(rows)), (leaves, rows)),
                shape=(tree.tree_.node_count, n_samples),
            )
            self.estimators_.append(tree)
            self._leaf_members.append(members)

        self.n_features_in_ = n_features
        self.mtry_ = max_features
        self._y_train = y_arr
        self._order = np.argsort(y_arr, kind="stable")
        self.train_features_ = x_arr
        importances = np.mean([t.feature_importances_ for t in self.estimators_], axis=0)
        total = importances.sum()
        self.feature_importances_ = importances / total if total > 0 else importances
        logger.debug(
            f"Grew {self.n_estimators} trees on {n_samples} rows "
            f"(draw={n_draw}, replace={self.replace}, mtry={max_features})"
        )
        return self

    def _check_input(self, X: pd.DataFrame | np.ndarray) -> np.ndarray:
        if not hasattr(self, "estimators_"):
            raise RuntimeError("Model must be fitted before prediction")
        if isinstance(X, pd.DataFrame) and self.feature_names_ is not None:
            missing = [c for c in self.feature_names_ if c not in X.columns]
            if missing:
                raise InputError(f"Missing predictors {missing}", stage="forest")
            X = X[self.feature_names_]
        x_arr = np.asarray(X, dtype=float)
        if x_arr.ndim != 2 or x_arr.shape[1] != self.n_features_in_:
            raise InputError(
                f"Expected {self.n_features_in_} predictors, got shape {x_arr.shape}",
                stage="forest",
            )
        return x_arr

    def leaf_weights(self, X: pd.DataFrame | np.ndarray) -> sparse.csr_matrix:
        """Multiplicity of each training row in the pooled leaves of each query row."""
        x_arr = self._check_input(X)
        n_query = len(x_arr)
        weights = sparse.csr_matrix((n_query, len(self._y_train)))
        query_rows = np.arange(n_query)
        for tree, members in zip(self.estimators_, self._leaf_members):
            leaves = tree.apply(x_arr)
            hits = sparse.csr_matrix(
                (np.ones(n_query), (query_rows, leaves)), shape=(n_query, members.shape[0])
            )
            weights = weights + hits @ members
        return weights

    def predict(
        self,
        X: pd.DataFrame | np.ndarray,
        quantiles: float | Sequence[float] = 0.5,
    ) -> np.ndarray:
        """Conditional quantiles of the pooled leaf responses.

        Args:
            X: Query predictors
            quantiles: A level or a sequence of levels in (0, 1)

        Returns:
            Array of shape (n,) for a single level, (n, len(quantiles)) otherwise
        """
        scalar = np.isscalar(quantiles)
        levels = np.atleast_1d(np.asarray(quantiles, dtype=float))
        if np.any((levels <= 0) | (levels >= 1)):
            raise InputError("Quantile levels must lie in (0, 1)", stage="forest")
        x_arr = self._check_input(X)

        y_sorted = self._y_train[self._order]
        out = np.empty((len(x_arr), len(levels)))
        for start in range(0, len(x_arr), _PREDICT_CHUNK):
            chunk = x_arr[start:start + _PREDICT_CHUNK]
            weights = self.leaf_weights(chunk).toarray()[:, self._order]
            cumulative = np.cumsum(weights, axis=1)
            total = cumulative[:, -1:]
            for j, level in enumerate(levels):
                # inverse empirical CDF: first value whose cumulative share reaches the level
                reached = cumulative >= level * total - 1e-9 * total
                out[start:start + len(chunk), j] = y_sorted[np.argmax(reached, axis=1)]

        return out[:, 0] if scalar else out

    def predict_mean(self, X: pd.DataFrame | np.ndarray) -> np.ndarray:
        """Average of the tree predictions (conditional mean estimate)."""
        x_arr = self._check_input(X)
        return np.mean([tree.predict(x_arr) for tree in self.estimators_], axis=0)
