"""Validation metrics for cross-validated TOC predictions."""

from dataclasses import asdict, dataclass, field

import numpy as np
import pandas as pd
from sklearn.metrics import mean_squared_error, r2_score


def _clean_pairs(predictions: np.ndarray, targets: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Drop pairs where either value is NaN."""
    predictions = np.asarray(predictions, dtype=float)
    targets = np.asarray(targets, dtype=float)
    if len(predictions) != len(targets):
        raise ValueError("Predictions and targets must have the same length")

    mask = ~(np.isnan(predictions) | np.isnan(targets))
    if np.sum(mask) == 0:
        raise ValueError("No valid data points after removing NaNs")
    return predictions[mask], targets[mask]


def mse(predictions: np.ndarray, targets: np.ndarray) -> float:
    """Calculate Mean Squared Error (MSE).

    Args:
        predictions: Model predictions
        targets: Observed target values

    Returns:
        MSE value (always >= 0, with 0 being perfect)

    Examples:
        >>> mse(np.array([1.0, 2.0]), np.array([1.0, 4.0]))
        2.0
    """
    pred_clean, targets_clean = _clean_pairs(predictions, targets)
    return float(mean_squared_error(targets_clean, pred_clean))


def rmse(predictions: np.ndarray, targets: np.ndarray) -> float:
    """Calculate Root Mean Square Error (RMSE)."""
    return float(np.sqrt(mse(predictions, targets)))


def r_squared(predictions: np.ndarray, targets: np.ndarray) -> float:
    """Calculate the explained variance (coefficient of determination).

    R² = 1 - SS_res / SS_tot. Returns NaN for fewer than two valid points or a
    constant target, where the ratio is undefined.

    Args:
        predictions: Model predictions
        targets: Observed target values

    Returns:
        R² value (ranges from -inf to 1, with 1 being perfect)
    """
    pred_clean, targets_clean = _clean_pairs(predictions, targets)
    if len(targets_clean) < 2 or np.allclose(targets_clean, targets_clean[0]):
        return float("nan")
    return float(r2_score(targets_clean, pred_clean))


@dataclass
class ValidationSummary:
    """Structured summary of a pipeline run."""

    mse: float
    rmse: float
    r2: float
    percent_in_domain: float
    n_observations: int
    n_folds: int
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def summarize_validation(
    cv_predictions: np.ndarray,
    targets: np.ndarray,
    percent_in_domain: float,
    n_folds: int,
    warnings: list[str] | None = None,
) -> ValidationSummary:
    """Build the validation summary from out-of-fold predictions.

    Args:
        cv_predictions: Out-of-fold predictions, NaN for skipped folds
        targets: Observed responses
        percent_in_domain: Share of valid grid cells inside the applicability domain
        n_folds: Number of spatial folds
        warnings: Messages of warnings recorded during the run

    Returns:
        ValidationSummary
    """
    return ValidationSummary(
        mse=mse(cv_predictions, targets),
        rmse=rmse(cv_predictions, targets),
        r2=r_squared(cv_predictions, targets),
        percent_in_domain=float(percent_in_domain),
        n_observations=int(len(targets)),
        n_folds=int(n_folds),
        warnings=list(warnings or []),
    )


def create_metrics_dataframe(
    label: str,
    predictions: np.ndarray,
    targets: np.ndarray,
) -> pd.DataFrame:
    """Create a one-row metrics DataFrame, e.g. per fold or per depth interval.

    Examples:
        >>> df = create_metrics_dataframe("fold_1", np.array([1.0, 2.0]), np.array([1.1, 1.9]))
        >>> list(df.columns)[:3]
        ['MSE', 'RMSE', 'R2']
    """
    results = pd.DataFrame(index=[label])

    try:
        results.loc[label, "MSE"] = mse(predictions, targets)
        results.loc[label, "RMSE"] = rmse(predictions, targets)
        results.loc[label, "R2"] = r_squared(predictions, targets)
        results.loc[label, "n_observations"] = len(targets)
        n_valid = np.sum(~(np.isnan(np.asarray(predictions, dtype=float))
                           | np.isnan(np.asarray(targets, dtype=float))))
        results.loc[label, "n_valid"] = n_valid
        results.loc[label, "completeness"] = n_valid / len(targets)
    except ValueError as e:
        for col in ["MSE", "RMSE", "R2"]:
            results.loc[label, col] = np.nan
        results.loc[label, "error"] = str(e)

    return results
