"""Saving and loading of pipeline results and fitted models."""

import json
from pathlib import Path
import shutil
import tempfile
from typing import Sequence

import joblib
import numpy as np

from toc_mapping.data.grid import CovariateGrid
from toc_mapping.exceptions import InputError
from toc_mapping.models.qrf.forest import QuantileRegressionForest
from toc_mapping.pipeline import PipelineResult, prediction_interval, predict_quantile_grids
from toc_mapping.utils.logger import setup_logger

logger = setup_logger("io")

MODEL_FILE = "model.joblib"
PREDICTIONS_FILE = "predictions.npz"
APPLICABILITY_FILE = "applicability.npz"
SUMMARY_FILE = "validation_summary.json"
TRACE_FILE = "selection_trace.csv"
FOLD_METRICS_FILE = "fold_metrics.csv"
PREDICTORS_FILE = "predictors.json"
SETTINGS_FILE = "settings.yaml"


def quantile_key(level: float) -> str:
    """Archive key of a quantile grid, e.g. ``q0.05``."""
    return f"q{level:g}"


def save_prediction_grids(
    path: Path,
    predictions: dict[float, np.ndarray],
    grid: CovariateGrid | None = None,
) -> None:
    """Write quantile grids with interval width and ratio to one ``.npz`` archive."""
    levels = sorted(predictions)
    width, ratio = prediction_interval(predictions)
    arrays = {quantile_key(level): predictions[level] for level in levels}
    arrays["levels"] = np.array(levels)
    arrays["interval_width"] = width
    arrays["interval_ratio"] = ratio
    if grid is not None:
        g = grid.geometry
        arrays["geometry"] = np.array([g.origin_x, g.origin_y, g.cell_size])
        arrays["crs"] = np.array(g.crs or "")
    np.savez_compressed(path, **arrays)


def _write_results(result: PipelineResult, directory: Path, grid: CovariateGrid | None) -> None:
    joblib.dump(result.model, directory / MODEL_FILE, compress=3)
    save_prediction_grids(directory / PREDICTIONS_FILE, result.predictions, grid)
    np.savez_compressed(
        directory / APPLICABILITY_FILE,
        dissimilarity=result.applicability.dissimilarity,
        mask=result.applicability.mask,
        threshold=np.array(result.applicability.threshold),
        training_di=result.applicability.training_di,
    )

    summary = result.summary.to_dict()
    summary["applicability_threshold"] = result.applicability.threshold
    summary["applicability_method"] = result.applicability.method
    summary["dependence_range"] = result.dependence.range
    summary["block_size"] = result.folds.block_size
    summary["mtry"] = result.selection.mtry
    with open(directory / SUMMARY_FILE, "w", encoding="utf-8") as f:
        json.dump(summary, f, indent=2)

    result.selection.trace.to_csv(directory / TRACE_FILE, index=False)
    result.fold_metrics.to_csv(directory / FOLD_METRICS_FILE, index_label="fold")
    predictors = {
        "screening_confirmed": result.screening.confirmed,
        "screening_tentative": result.screening.tentative,
        "redundancy_selected": result.redundancy.selected,
        "correlation_threshold": result.redundancy.threshold,
        "selected": result.selected,
        "importance": dict(zip(result.selected, map(float, result.model.feature_importances_))),
    }
    with open(directory / PREDICTORS_FILE, "w", encoding="utf-8") as f:
        json.dump(predictors, f, indent=2)
    result.settings.to_yaml(directory / SETTINGS_FILE)


def save_pipeline_results(
    result: PipelineResult,
    output_dir: Path,
    grid: CovariateGrid | None = None,
    overwrite: bool = False,
) -> Path:
    """Persist a run so that either all outputs exist or none do.

    Files are written to a temporary sibling directory which is renamed to
    ``output_dir`` once complete.

    Args:
        result: Outputs of ``run_pipeline``
        output_dir: Target directory
        grid: Covariate grid the predictions refer to; stores its geometry
        overwrite: Replace an existing ``output_dir``

    Returns:
        The output directory

    Raises:
        FileExistsError: ``output_dir`` exists and ``overwrite`` is False.
    """
    output_dir = Path(output_dir)
    if output_dir.exists() and not overwrite:
        raise FileExistsError(f"Output directory already exists: {output_dir}")
    output_dir.parent.mkdir(parents=True, exist_ok=True)

    staging = Path(tempfile.mkdtemp(prefix=f".{output_dir.name}-", dir=output_dir.parent))
    try:
        _write_results(result, staging, grid)
    except Exception:
        shutil.rmtree(staging, ignore_errors=True)
        raise

    if output_dir.exists():
        shutil.rmtree(output_dir)
    staging.rename(output_dir)
    logger.info(f"Saved pipeline results to {output_dir}")
    return output_dir


def load_model(path: Path) -> QuantileRegressionForest:
    """Load a fitted model saved by ``save_pipeline_results``.

    ``path`` may be the model file or the results directory holding it.
    """
    path = Path(path)
    if path.is_dir():
        path = path / MODEL_FILE
    if not path.exists():
        raise FileNotFoundError(f"Model not found at {path}")

    logger.info(f"Loading model from {path}")
    model = joblib.load(path)
    if not isinstance(model, QuantileRegressionForest):
        raise InputError(f"{path} does not hold a quantile regression forest", stage="io")
    return model


def predict_grid(
    model: QuantileRegressionForest,
    grid: CovariateGrid,
    quantiles: Sequence[float] = (0.05, 0.5, 0.95),
) -> dict[float, np.ndarray]:
    """Apply a saved model to a covariate grid holding its predictors.

    Raises:
        InputError: The model lacks predictor names or the grid lacks a layer.
    """
    if model.feature_names_ is None:
        raise InputError("Model was fitted without predictor names", stage="io")
    levels = sorted(set(quantiles))
    predictions = predict_quantile_grids(model, grid, model.feature_names_, levels)
    logger.info(
        f"Predicted quantiles {levels} on a {grid.shape[0]}x{grid.shape[1]} grid "
        f"({int(grid.valid_mask(model.feature_names_).sum())} valid cells)"
    )
    return predictions
