"""Area of applicability from dissimilarity in predictor space.

Predictors are standardised with the training mean and standard deviation and
scaled by the model's variable importance. The dissimilarity index (DI) of a
location is its distance to the nearest training observation divided by the
mean pairwise distance among the training observations. Training DI values
come from cross-validation (nearest training point outside the observation's
own fold) and define the threshold separating applicable from
non-applicable cells.
"""

from dataclasses import dataclass

import numpy as np
import pandas as pd
from scipy.spatial import cKDTree
from scipy.spatial.distance import pdist

from toc_mapping.data.grid import CovariateGrid
from toc_mapping.exceptions import ConfigurationError, InputError
from toc_mapping.models.spatial.blocking import SpatialFolds
from toc_mapping.utils.logger import setup_logger

logger = setup_logger("applicability")

THRESHOLD_METHODS = ("error_breakpoint", "whisker")


@dataclass(frozen=True)
class ApplicabilityResult:
    """DI and applicability mask in grid shape, with the training statistics."""

    dissimilarity: np.ndarray
    mask: np.ndarray
    threshold: float
    training_di: np.ndarray
    mean_distance: float
    percent_in_domain: float
    method: str


@dataclass(frozen=True)
class WeightedSpace:
    """Standardisation and importance weights of the model's predictor space."""

    mean: np.ndarray
    scale: np.ndarray
    weights: np.ndarray

    def transform(self, features: np.ndarray) -> np.ndarray:
        return (np.asarray(features, dtype=float) - self.mean) / self.scale * self.weights


def weighted_space(train_features: np.ndarray, weights: np.ndarray) -> WeightedSpace:
    """Fit the weighted, standardised predictor space on the training matrix."""
    train_features = np.asarray(train_features, dtype=float)
    weights = np.asarray(weights, dtype=float)
    if weights.shape != (train_features.shape[1],):
        raise InputError(
            f"{len(weights)} weights for {train_features.shape[1]} predictors", stage="applicability"
        )
    if np.any(weights < 0) or not weights.sum() > 0:
        raise InputError("Importance weights must be non-negative and not all zero", stage="applicability")
    scale = train_features.std(axis=0)
    scale[scale == 0] = 1.0
    return WeightedSpace(mean=train_features.mean(axis=0), scale=scale, weights=weights)


def dissimilarity_index(
    model_space: np.ndarray,
    points: np.ndarray,
    mean_distance: float | None = None,
) -> np.ndarray:
    """DI of ``points`` relative to the training points ``model_space``.

    Both arrays must already be standardised and weighted. ``mean_distance``
    defaults to the mean pairwise distance within ``model_space``.
    """
    model_space = np.atleast_2d(np.asarray(model_space, dtype=float))
    points = np.atleast_2d(np.asarray(points, dtype=float))
    if mean_distance is None:
        mean_distance = float(np.mean(pdist(model_space))) if len(model_space) > 1 else 0.0
    if not mean_distance > 0:
        raise InputError("Training points do not span the predictor space", stage="applicability")
    distances, _ = cKDTree(model_space).query(points, k=1)
    return distances / mean_distance


def cross_validated_di(
    model_space: np.ndarray,
    folds: SpatialFolds | list[tuple[np.ndarray, np.ndarray]],
    mean_distance: float,
) -> np.ndarray:
    """DI of every training point to the training points outside its own fold."""
    training_di = np.full(len(model_space), np.nan)
    for train_idx, val_idx in folds:
        if len(train_idx) == 0 or len(val_idx) == 0:
            continue
        distances, _ = cKDTree(model_space[train_idx]).query(model_space[val_idx], k=1)
        training_di[val_idx] = distances / mean_distance
    return training_di


def whisker_threshold(training_di: np.ndarray) -> float:
    """Upper whisker (Q3 + 1.5 IQR) of the training DI, capped at its maximum."""
    values = training_di[np.isfinite(training_di)]
    q1, q3 = np.percentile(values, [25, 75])
    return float(min(q3 + 1.5 * (q3 - q1), values.max()))


def error_breakpoint_threshold(
    training_di: np.ndarray,
    cv_residuals: np.ndarray,
    error_factor: float = 1.5,
    window_fraction: float = 0.1,
) -> float | None:
    """Largest training DI before the rolling CV error exceeds ``error_factor`` x overall RMSE.

    Observations are ordered by DI and the RMSE of their residuals is computed
    over a moving window. Returns None when the error never breaks out.
    """
    frame = pd.DataFrame({"di": training_di, "residual": cv_residuals}).dropna()
    frame = frame.sort_values("di", kind="stable").reset_index(drop=True)
    window = max(2, int(round(window_fraction * len(frame))))
    if len(frame) < 2 * window:
        return None

    overall_rmse = float(np.sqrt(np.mean(frame["residual"] ** 2)))
    rolling_rmse = np.sqrt((frame["residual"] ** 2).rolling(window).mean())
    exceeded = np.flatnonzero((rolling_rmse > error_factor * overall_rmse).to_numpy())
    if len(exceeded) == 0:
        return None
    return float(frame["di"].iloc[max(exceeded[0] - 1, 0)])


def estimate_applicability(
    train_features: pd.DataFrame,
    folds: SpatialFolds | list[tuple[np.ndarray, np.ndarray]],
    grid: CovariateGrid,
    weights: np.ndarray | pd.Series,
    cv_residuals: np.ndarray | None = None,
    method: str = "error_breakpoint",
    error_factor: float = 1.5,
    window_fraction: float = 0.1,
) -> ApplicabilityResult:
    """Compute the DI grid and the binary applicability mask.

    Args:
        train_features: Training matrix of the fitted model (selected predictors)
        folds: Spatial fold assignment used for cross-validation
        grid: Covariate grid holding at least the selected predictors
        weights: Variable importance per predictor, aligned with the columns
        cv_residuals: Out-of-fold residuals, required by ``error_breakpoint``
        method: "error_breakpoint" (whisker when no breakpoint exists) or "whisker"
        error_factor: Rolling-to-overall RMSE ratio marking the breakpoint
        window_fraction: Rolling window size as a share of the observations

    Returns:
        ApplicabilityResult with DI (NaN in no-data cells) and a uint8 mask

    Raises:
        ConfigurationError: Unknown method, or residuals missing for ``error_breakpoint``.
        InputError: Grid lacks a predictor, or weights do not match the predictors.
    """
    if method not in THRESHOLD_METHODS:
        raise ConfigurationError(f"Unknown threshold method '{method}'", stage="applicability")
    if method == "error_breakpoint" and cv_residuals is None:
        raise ConfigurationError(
            "The error_breakpoint threshold requires cross-validation residuals",
            stage="applicability",
        )

    names = list(train_features.columns)
    if isinstance(weights, pd.Series):
        weights = weights.reindex(names).to_numpy(dtype=float)
    space = weighted_space(train_features.to_numpy(dtype=float), weights)
    model_space = space.transform(train_features.to_numpy(dtype=float))

    mean_distance = float(np.mean(pdist(model_space))) if len(model_space) > 1 else 0.0
    if not mean_distance > 0:
        raise InputError("Training points do not span the predictor space", stage="applicability")

    training_di = cross_validated_di(model_space, folds, mean_distance)
    if not np.isfinite(training_di).any():
        raise InputError("No training DI could be computed from the folds", stage="applicability")

    threshold = whisker_threshold(training_di)
    if method == "error_breakpoint":
        breakpoint_di = error_breakpoint_threshold(
            training_di, np.asarray(cv_residuals, dtype=float), error_factor, window_fraction
        )
        if breakpoint_di is None:
            logger.info("CV error shows no breakpoint along the DI; using the whisker threshold")
        else:
            threshold = breakpoint_di

    valid = grid.valid_mask(names)
    grid_space = space.transform(grid.to_frame(names).to_numpy(dtype=float))
    cell_di = dissimilarity_index(model_space, grid_space, mean_distance)

    dissimilarity = grid.fill(cell_di, valid)
    mask = np.zeros(grid.shape, dtype=np.uint8)
    mask[valid] = (cell_di <= threshold).astype(np.uint8)
    n_valid = int(valid.sum())
    percent_in_domain = 100.0 * float(mask.sum()) / n_valid if n_valid else 0.0

    logger.info(
        f"Applicability threshold {threshold:.3f} ({method}); "
        f"{percent_in_domain:.1f}% of {n_valid} cells in domain"
    )
    return ApplicabilityResult(
        dissimilarity=dissimilarity,
        mask=mask,
        threshold=threshold,
        training_di=training_di,
        mean_distance=mean_distance,
        percent_in_domain=percent_in_domain,
        method=method,
    )
