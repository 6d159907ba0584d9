"""Importance screening of candidate covariates with the Boruta procedure.

Each Boruta iteration grows a random forest on the real covariates plus
shuffled shadow copies and records whether each real covariate beats the best
shadow. A two-sided binomial test over the hit counts confirms or rejects a
covariate; undecided covariates are reported as tentative and excluded.
"""

from dataclasses import dataclass

import numpy as np
import pandas as pd
from boruta import BorutaPy  # type: ignore[import-untyped]
from sklearn.ensemble import RandomForestRegressor  # type: ignore[import-untyped]

from toc_mapping.config.settings import ScreeningConfig
from toc_mapping.exceptions import InputError
from toc_mapping.utils.logger import setup_logger

logger = setup_logger("screening")


@dataclass(frozen=True)
class ScreeningResult:
    """Boruta decision per covariate, in the input column order."""

    confirmed: list[str]
    tentative: list[str]
    rejected: list[str]
    ranking: pd.Series


def _validate_inputs(response: np.ndarray, predictors: pd.DataFrame) -> None:
    if predictors.shape[1] < 2:
        raise InputError(
            f"At least 2 candidate predictors are required, got {predictors.shape[1]}",
            stage="screening",
        )
    if len(response) != len(predictors):
        raise InputError("Response and predictors must have the same length", stage="screening")
    if np.nanstd(response) < 1e-12:
        raise InputError("Response has near-zero variance", stage="screening")


def screen_predictors(
    response: np.ndarray,
    predictors: pd.DataFrame,
    config: ScreeningConfig | None = None,
    random_state: int | None = None,
) -> ScreeningResult:
    """Keep the covariates Boruta confirms as important.

    Args:
        response: TOC values, one per observation
        predictors: Candidate covariates, one column per covariate
        config: Significance level, iteration cap and forest settings
        random_state: Seed for the forest and the shadow shuffles

    Returns:
        ScreeningResult with confirmed, tentative and rejected names

    Raises:
        InputError: Fewer than 2 candidates, length mismatch, or constant response.
    """
    config = config or ScreeningConfig()
    response = np.asarray(response, dtype=float)
    _validate_inputs(response, predictors)

    logger.info(
        f"Boruta screening of {predictors.shape[1]} covariates on {len(response)} "
        f"observations (alpha={config.boruta_significance}, "
        f"max_iter={config.boruta_max_iterations})"
    )

    forest = RandomForestRegressor(
        max_depth=config.max_depth,
        n_jobs=1,
        random_state=random_state,
    )
    selector = BorutaPy(
        forest,
        n_estimators=config.n_estimators,
        perc=config.percentile,
        alpha=config.boruta_significance,
        two_step=True,
        max_iter=config.boruta_max_iterations,
        random_state=random_state,
        verbose=0,
    )
    selector.fit(predictors.to_numpy(dtype=float), response)

    names = np.asarray(predictors.columns)
    support = np.asarray(selector.support_, dtype=bool)
    weak = np.asarray(selector.support_weak_, dtype=bool)
    result = ScreeningResult(
        confirmed=names[support].tolist(),
        tentative=names[weak & ~support].tolist(),
        rejected=names[~support & ~weak].tolist(),
        ranking=pd.Series(selector.ranking_, index=names, name="boruta_rank"),
    )

    logger.info(
        f"Boruta confirmed {len(result.confirmed)}, tentative {len(result.tentative)}, "
        f"rejected {len(result.rejected)}"
    )
    if result.tentative:
        logger.info(f"Tentative covariates excluded: {', '.join(result.tentative)}")
    return result
