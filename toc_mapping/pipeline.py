"""End-to-end TOC mapping run.

Stages run in a fixed order: Boruta screening, correlation/VIF reduction,
dependence range, spatial blocking, forward selection with the final quantile
forest, gridded prediction, area of applicability, validation summary.
"""

from dataclasses import dataclass
import time
import warnings

import numpy as np
import pandas as pd

from toc_mapping.config.settings import Settings
from toc_mapping.data.grid import CovariateGrid
from toc_mapping.data.observations import Observations
from toc_mapping.evaluation.metrics import (
    ValidationSummary,
    create_metrics_dataframe,
    summarize_validation,
)
from toc_mapping.exceptions import InputError, InsufficientDataWarning, TocMappingError
from toc_mapping.models.qrf.forest import QuantileRegressionForest
from toc_mapping.models.spatial.applicability import ApplicabilityResult, estimate_applicability
from toc_mapping.models.spatial.blocking import (
    SpatialFolds,
    block_size_from_range,
    create_spatial_folds,
)
from toc_mapping.models.spatial.redundancy import RedundancyResult, reduce_redundancy
from toc_mapping.models.spatial.screening import ScreeningResult, screen_predictors
from toc_mapping.models.spatial.selection import SelectionResult, forward_feature_selection
from toc_mapping.models.spatial.variogram import DependenceRange, estimate_dependence_range
from toc_mapping.utils.helpers import derive_seeds, format_duration, set_random_seed
from toc_mapping.utils.logger import setup_logger

logger = setup_logger("pipeline")


@dataclass(frozen=True)
class PipelineResult:
    """Outputs of a successful run plus the intermediate stage results."""

    selected: list[str]
    model: QuantileRegressionForest
    quantile_levels: list[float]
    predictions: dict[float, np.ndarray]
    interval_width: np.ndarray
    interval_ratio: np.ndarray
    applicability: ApplicabilityResult
    summary: ValidationSummary
    fold_metrics: pd.DataFrame
    screening: ScreeningResult
    redundancy: RedundancyResult
    dependence: DependenceRange
    folds: SpatialFolds
    selection: SelectionResult
    settings: Settings

    @property
    def median(self) -> np.ndarray:
        return self.predictions[0.5]


def predict_quantile_grids(
    model: QuantileRegressionForest,
    grid: CovariateGrid,
    predictors: list[str],
    levels: list[float],
) -> dict[float, np.ndarray]:
    """Predict each quantile level for every valid grid cell (NaN elsewhere)."""
    valid = grid.valid_mask(predictors)
    frame = grid.to_frame(predictors)
    grids: dict[float, np.ndarray] = {}
    if frame.empty:
        return {level: np.full(grid.shape, np.nan) for level in levels}
    values = model.predict(frame, quantiles=list(levels))
    for j, level in enumerate(levels):
        grids[level] = grid.fill(values[:, j], valid)
    return grids


def prediction_interval(predictions: dict[float, np.ndarray]) -> tuple[np.ndarray, np.ndarray]:
    """Width between the outermost quantiles and its ratio to the median.

    The ratio is NaN where the median prediction is zero.
    """
    levels = sorted(predictions)
    width = predictions[levels[-1]] - predictions[levels[0]]
    median = predictions[0.5]
    with np.errstate(divide="ignore", invalid="ignore"):
        ratio = np.where(median == 0, np.nan, width / median)
    return width, ratio


def run_pipeline(
    observations: Observations,
    grid: CovariateGrid,
    settings: Settings | None = None,
) -> PipelineResult:
    """Run all stages on in-memory observations and a covariate grid.

    Args:
        observations: Complete point observations with sampled covariates
        grid: Covariate layers covering the prediction area
        settings: Run configuration; defaults apply when omitted

    Returns:
        PipelineResult

    Raises:
        InputError, ConfigurationError, FitError: The failing stage is logged
            and the error re-raised unchanged.
    """
    settings = settings or Settings()
    start = time.perf_counter()
    set_random_seed(settings.random_seed)
    seeds = derive_seeds(settings.random_seed)
    stage = "configuration"

    with warnings.catch_warnings(record=True) as caught:
        warnings.simplefilter("always", InsufficientDataWarning)
        try:
            settings.validate_against(observations.n_observations)
            candidates = observations.covariate_names
            missing = [name for name in candidates if name not in grid.names]
            if missing:
                raise InputError(f"Covariate grid lacks layers {missing}", stage="configuration")

            stage = "screening"
            screening = screen_predictors(
                observations.response,
                observations.covariates,
                settings.screening,
                random_state=seeds["screening"],
            )
            if not screening.confirmed:
                raise InputError("Boruta confirmed no covariate", stage=stage)

            stage = "redundancy"
            redundancy = reduce_redundancy(
                observations.subset(screening.confirmed), settings.redundancy
            )

            stage = "variogram"
            dependence = estimate_dependence_range(
                observations.coordinates,
                observations.response,
                settings.variogram,
                random_state=seeds["variogram"],
            )

            stage = "blocking"
            block_size = block_size_from_range(
                dependence.range, settings.blocking.block_size_multiplier
            )
            folds = create_spatial_folds(
                observations.coordinates,
                n_folds=settings.blocking.cv_fold_count,
                block_size=block_size,
                shape=settings.blocking.block_shape,
                iterations=settings.blocking.iterations,
                random_state=seeds["blocking"],
            )

            stage = "selection"
            selection = forward_feature_selection(
                observations.subset(redundancy.selected),
                observations.response,
                folds,
                mtry_values=settings.selection.mtry_values,
                forest_config=settings.forest,
                min_variables=settings.selection.min_variables,
                n_jobs=settings.selection.n_jobs,
                random_state=seeds["selection"],
            )

            stage = "prediction"
            levels = settings.output.quantile_levels_for_output
            predictions = predict_quantile_grids(selection.model, grid, selection.selected, levels)
            interval_width, interval_ratio = prediction_interval(predictions)

            stage = "applicability"
            residuals = observations.response - selection.cv_predictions
            applicability = estimate_applicability(
                observations.subset(selection.selected),
                folds,
                grid,
                weights=selection.model.feature_importances_,
                cv_residuals=residuals,
                method=settings.applicability.method,
                error_factor=settings.applicability.error_factor,
                window_fraction=settings.applicability.window_fraction,
            )
        except TocMappingError:
            logger.error(f"Pipeline failed at stage '{stage}'")
            raise

    recorded = [str(w.message) for w in caught if issubclass(w.category, InsufficientDataWarning)]
    for w in caught:
        if not issubclass(w.category, InsufficientDataWarning):
            logger.debug(f"{w.category.__name__}: {w.message}")

    summary = summarize_validation(
        selection.cv_predictions,
        observations.response,
        percent_in_domain=applicability.percent_in_domain,
        n_folds=folds.n_folds,
        warnings=recorded,
    )
    fold_metrics = pd.concat(
        [
            create_metrics_dataframe(
                f"fold_{k + 1}",
                selection.cv_predictions[val_idx],
                observations.response[val_idx],
            )
            for k, (_, val_idx) in enumerate(folds.splits())
        ]
    )
    logger.info(
        f"Run finished in {format_duration(time.perf_counter() - start)}: "
        f"{len(selection.selected)} predictors {selection.selected}, "
        f"CV R2={summary.r2:.3f}, RMSE={summary.rmse:.3f}, "
        f"{summary.percent_in_domain:.1f}% in domain, {len(recorded)} warnings"
    )

    return PipelineResult(
        selected=selection.selected,
        model=selection.model,
        quantile_levels=list(levels),
        predictions=predictions,
        interval_width=interval_width,
        interval_ratio=interval_ratio,
        applicability=applicability,
        summary=summary,
        fold_metrics=fold_metrics,
        screening=screening,
        redundancy=redundancy,
        dependence=dependence,
        folds=folds,
        selection=selection,
        settings=settings,
    )
