"""Forward feature selection with spatial cross-validation and mtry tuning.

Greedy search: every starting subset (single covariates, or pairs) is
cross-validated for each mtry candidate; the best subset then grows by the
covariate that raises the mean cross-validated R² the most, until no addition
improves it. All candidates of a step are independent and can be scored in
worker processes; steps themselves are sequential.
"""

from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from functools import partial
from itertools import combinations
import multiprocessing as mp
import warnings

import numpy as np
import pandas as pd

from toc_mapping.config.settings import ForestConfig
from toc_mapping.evaluation.metrics import r_squared
from toc_mapping.exceptions import InputError, InsufficientDataWarning
from toc_mapping.models.qrf.forest import QuantileRegressionForest
from toc_mapping.models.spatial.blocking import SpatialFolds
from toc_mapping.utils.logger import setup_logger

logger = setup_logger("selection")

Split = tuple[np.ndarray, np.ndarray]


@dataclass(frozen=True)
class CandidateScore:
    """Cross-validated score of one predictor subset at one mtry value."""

    predictors: tuple[str, ...]
    mtry: int
    score: float
    cv_predictions: np.ndarray


@dataclass(frozen=True)
class SelectionResult:
    """Selected predictors, tuned mtry, and the model refitted on all data."""

    selected: list[str]
    mtry: int
    score: float
    trace: pd.DataFrame
    model: QuantileRegressionForest
    cv_predictions: np.ndarray


def usable_splits(folds: SpatialFolds | list[Split]) -> list[tuple[int, np.ndarray, np.ndarray]]:
    """Folds with at least 2 training and 2 validation observations.

    Every other fold triggers an ``InsufficientDataWarning`` and is left out
    of all candidate scores.
    """
    usable = []
    for fold, (train_idx, val_idx) in enumerate(folds):
        if len(train_idx) < 2 or len(val_idx) < 2:
            message = (
                f"Fold {fold + 1} has {len(train_idx)} training and {len(val_idx)} "
                "validation observations; excluded from the cross-validated score"
            )
            logger.warning(message)
            warnings.warn(message, InsufficientDataWarning, stacklevel=2)
            continue
        usable.append((fold, np.asarray(train_idx), np.asarray(val_idx)))
    return usable


def cross_validate_subset(
    task: tuple[tuple[str, ...], int],
    features: pd.DataFrame,
    response: np.ndarray,
    splits: list[tuple[int, np.ndarray, np.ndarray]],
    forest_params: dict,
) -> CandidateScore:
    """Mean R² over the spatial folds for one (subset, mtry) candidate."""
    subset, mtry = task
    x_subset = features[list(subset)].to_numpy(dtype=float)
    cv_predictions = np.full(len(response), np.nan)
    fold_scores = []
    for _, train_idx, val_idx in splits:
        model = QuantileRegressionForest(mtry=mtry, **forest_params)
        model.fit(x_subset[train_idx], response[train_idx])
        predicted = model.predict_mean(x_subset[val_idx])
        cv_predictions[val_idx] = predicted
        fold_scores.append(r_squared(predicted, response[val_idx]))

    valid = [s for s in fold_scores if np.isfinite(s)]
    score = float(np.mean(valid)) if valid else -np.inf
    return CandidateScore(predictors=subset, mtry=mtry, score=score, cv_predictions=cv_predictions)


def _evaluate(
    subsets: list[tuple[str, ...]],
    mtry_values: list[int],
    features: pd.DataFrame,
    response: np.ndarray,
    splits: list[tuple[int, np.ndarray, np.ndarray]],
    forest_params: dict,
    n_jobs: int,
) -> list[CandidateScore]:
    """Score every subset at its best mtry (mtry clamped to the subset size)."""
    tasks = []
    for subset in subsets:
        for mtry in sorted({min(m, len(subset)) for m in mtry_values}):
            tasks.append((subset, mtry))

    score_func = partial(
        cross_validate_subset,
        features=features,
        response=response,
        splits=splits,
        forest_params=forest_params,
    )
    if n_jobs > 1 and len(tasks) > 1:
        n_workers = max(1, min(n_jobs, mp.cpu_count(), len(tasks)))
        with ProcessPoolExecutor(max_workers=n_workers) as executor:
            scores = list(executor.map(score_func, tasks))
    else:
        scores = [score_func(task) for task in tasks]

    best_per_subset: dict[tuple[str, ...], CandidateScore] = {}
    for candidate in scores:
        current = best_per_subset.get(candidate.predictors)
        # ties keep the smaller mtry, evaluated first
        if current is None or candidate.score > current.score:
            best_per_subset[candidate.predictors] = candidate
    return [best_per_subset[subset] for subset in subsets]


def forward_feature_selection(
    predictors: pd.DataFrame,
    response: np.ndarray,
    folds: SpatialFolds | list[Split],
    mtry_values: list[int],
    forest_config: ForestConfig | None = None,
    min_variables: int = 1,
    n_jobs: int = 1,
    random_state: int | None = None,
) -> SelectionResult:
    """Select the predictor subset and mtry maximising mean spatial-CV R².

    Args:
        predictors: Candidate covariates after redundancy reduction
        response: TOC values
        folds: Fixed spatial fold assignment, reused for every candidate
        mtry_values: Candidate numbers of predictors tried per split
        forest_config: Forest settings used for CV and the final model
        min_variables: Size of the starting subsets (1 or 2)
        n_jobs: Worker processes per search step
        random_state: Seed shared by all candidate forests

    Returns:
        SelectionResult

    Raises:
        InputError: No candidate predictor, too few candidates for the
            starting subset size, or no usable fold.
    """
    forest_config = forest_config or ForestConfig()
    response = np.asarray(response, dtype=float)
    candidates = list(predictors.columns)
    if len(candidates) < max(1, min_variables):
        raise InputError(
            f"{len(candidates)} candidate predictors for a start size of {min_variables}",
            stage="selection",
        )
    if not mtry_values:
        raise InputError("At least one mtry value is required", stage="selection")

    splits = usable_splits(folds)
    if not splits:
        raise InputError("No fold has enough observations for cross-validation", stage="selection")

    forest_params = {
        "n_estimators": forest_config.n_estimators,
        "min_samples_leaf": forest_config.min_samples_leaf,
        "sample_fraction": forest_config.sample_fraction,
        "replace": forest_config.replace,
        "max_depth": forest_config.max_depth,
        "random_state": random_state,
    }
    evaluate = partial(
        _evaluate,
        mtry_values=mtry_values,
        features=predictors,
        response=response,
        splits=splits,
        forest_params=forest_params,
        n_jobs=n_jobs,
    )

    trace: list[dict] = []

    def record(step: int, scored: list[CandidateScore]) -> None:
        for candidate in scored:
            trace.append(
                {
                    "step": step,
                    "n_predictors": len(candidate.predictors),
                    "predictors": ",".join(candidate.predictors),
                    "mtry": candidate.mtry,
                    "r2": candidate.score,
                }
            )

    start_subsets = [tuple(c) for c in combinations(candidates, min_variables)]
    logger.info(
        f"Forward selection over {len(candidates)} predictors: "
        f"{len(start_subsets)} starting subsets x {len(mtry_values)} mtry values, "
        f"{len(splits)} folds"
    )
    scored = evaluate(start_subsets)
    record(0, scored)
    best = max(scored, key=lambda c: c.score)
    logger.info(f"Step 0: best start {list(best.predictors)} (mtry={best.mtry}, R2={best.score:.4f})")

    step = 0
    while len(best.predictors) < len(candidates):
        step += 1
        remaining = [c for c in candidates if c not in best.predictors]
        scored = evaluate([best.predictors + (c,) for c in remaining])
        record(step, scored)
        step_best = max(scored, key=lambda c: c.score)
        if not step_best.score > best.score:
            logger.info(
                f"Step {step}: no addition improves R2 {best.score:.4f} "
                f"(best candidate {step_best.score:.4f}); stopping"
            )
            break
        best = step_best
        logger.info(
            f"Step {step}: added {best.predictors[-1]} (mtry={best.mtry}, R2={best.score:.4f})"
        )

    trace_df = pd.DataFrame(trace)
    trace_df["selected"] = (trace_df["predictors"] == ",".join(best.predictors)) & (
        trace_df["mtry"] == best.mtry
    )

    selected = list(best.predictors)
    final_model = QuantileRegressionForest(mtry=best.mtry, **forest_params)
    final_model.fit(predictors[selected], response)
    logger.info(f"Selected {selected} with mtry={best.mtry}, CV R2={best.score:.4f}")

    return SelectionResult(
        selected=selected,
        mtry=best.mtry,
        score=best.score,
        trace=trace_df,
        model=final_model,
        cv_predictions=best.cv_predictions,
    )
