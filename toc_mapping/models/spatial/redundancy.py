"""Correlation and multicollinearity based reduction of the screened covariates.

The search lowers a pairwise correlation threshold step by step. At every
threshold one member of each over-threshold pair is dropped, and the variance
inflation factors of the survivors are checked against a ceiling. The first
threshold that satisfies the ceiling wins.
"""

from dataclasses import dataclass

import numpy as np
import pandas as pd
from statsmodels.stats.outliers_influence import variance_inflation_factor  # type: ignore[import-untyped]
from statsmodels.tools.tools import add_constant  # type: ignore[import-untyped]

from toc_mapping.config.settings import RedundancyConfig
from toc_mapping.exceptions import FitError, InputError
from toc_mapping.utils.logger import setup_logger

logger = setup_logger("redundancy")


@dataclass(frozen=True)
class RedundancyResult:
    """Outcome of the threshold search."""

    selected: list[str]
    correlation: pd.DataFrame
    threshold: float
    max_vif: float
    vif: pd.Series
    trace: pd.DataFrame


def drop_correlated(correlation: pd.DataFrame, threshold: float) -> list[str]:
    """Greedily drop one member of every pair with |r| above ``threshold``.

    Pairs are visited from the strongest correlation down. Of a pair whose
    members are both still retained, the one with the higher mean absolute
    correlation to all other covariates is dropped (the later column on ties).

    Args:
        correlation: Square correlation matrix
        threshold: Largest tolerated absolute correlation

    Returns:
        Retained covariate names, in the original column order
    """
    abs_corr = correlation.abs().to_numpy(copy=True)
    np.fill_diagonal(abs_corr, np.nan)
    names = list(correlation.columns)
    n = len(names)
    mean_abs = np.nan_to_num(np.nanmean(abs_corr, axis=0)) if n > 1 else np.zeros(n)

    rows, cols = np.triu_indices(n, k=1)
    pair_corr = abs_corr[rows, cols]
    order = np.argsort(-pair_corr, kind="stable")

    dropped: set[int] = set()
    for k in order:
        if not pair_corr[k] > threshold:
            break
        i, j = int(rows[k]), int(cols[k])
        if i in dropped or j in dropped:
            continue
        dropped.add(i if mean_abs[i] > mean_abs[j] else j)

    return [name for idx, name in enumerate(names) if idx not in dropped]


def compute_vif(predictors: pd.DataFrame) -> pd.Series:
    """Variance inflation factor of every column (1.0 for a single column)."""
    if predictors.shape[1] == 1:
        return pd.Series([1.0], index=predictors.columns, name="vif")

    exog = add_constant(predictors.to_numpy(dtype=float), has_constant="add")
    with np.errstate(divide="ignore", invalid="ignore"):
        values = [variance_inflation_factor(exog, i + 1) for i in range(predictors.shape[1])]
    vif = pd.Series(values, index=predictors.columns, name="vif", dtype=float)
    # perfectly collinear columns give inf or nan
    return vif.fillna(np.inf)


def reduce_redundancy(
    predictors: pd.DataFrame,
    config: RedundancyConfig | None = None,
) -> RedundancyResult:
    """Search the highest correlation threshold whose survivors satisfy the VIF ceiling.

    Args:
        predictors: Screened covariates, one column per covariate
        config: VIF ceiling, threshold step and search bounds

    Returns:
        RedundancyResult with the retained names and their correlation matrix

    Raises:
        InputError: No covariate supplied.
        FitError: The threshold reached its lower bound without satisfying the ceiling.
    """
    config = config or RedundancyConfig()
    if predictors.shape[1] < 1:
        raise InputError("At least one predictor is required", stage="redundancy")

    constant = [c for c in predictors.columns if predictors[c].std() == 0]
    if constant:
        raise InputError(f"Constant predictors cannot be de-correlated: {constant}", stage="redundancy")

    correlation = predictors.corr()
    steps = int(round((config.start_threshold - config.min_threshold) / config.vif_threshold_step))

    trace = []
    for step in range(steps + 1):
        threshold = round(config.start_threshold - step * config.vif_threshold_step, 10)
        retained = drop_correlated(correlation, threshold)
        vif = compute_vif(predictors[retained])
        max_vif = float(vif.max())
        retained_corr = correlation.loc[retained, retained]
        off_diag = retained_corr.abs().to_numpy(copy=True)
        np.fill_diagonal(off_diag, 0.0)
        trace.append(
            {
                "threshold": threshold,
                "n_retained": len(retained),
                "max_abs_correlation": float(off_diag.max()) if len(retained) > 1 else 0.0,
                "max_vif": max_vif,
            }
        )

        if max_vif <= config.vif_ceiling:
            logger.info(
                f"Correlation threshold {threshold:.2f}: kept {len(retained)}/"
                f"{predictors.shape[1]} covariates, max VIF {max_vif:.2f}"
            )
            return RedundancyResult(
                selected=retained,
                correlation=retained_corr,
                threshold=threshold,
                max_vif=max_vif,
                vif=vif,
                trace=pd.DataFrame(trace),
            )

    raise FitError(
        f"VIF ceiling {config.vif_ceiling} not reached down to correlation threshold "
        f"{config.min_threshold}",
        stage="redundancy",
    )
