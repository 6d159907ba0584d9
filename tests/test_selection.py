"""Tests for forward feature selection with mtry tuning."""

import warnings

import numpy as np
import pandas as pd
import pytest

from toc_mapping.config.settings import ForestConfig
from toc_mapping.exceptions import InputError, InsufficientDataWarning
from toc_mapping.models.spatial.blocking import create_spatial_folds
from toc_mapping.models.spatial import selection
from toc_mapping.models.spatial.selection import CandidateScore, forward_feature_selection, usable_splits

FOREST = ForestConfig(n_estimators=25, min_samples_leaf=3)


def make_selection_data(seed: int = 0, n: int = 120):
    """Random sites with two informative and two noise covariates, plus spatial folds."""
    rng = np.random.default_rng(seed)
    coords = rng.uniform(0, 50000, size=(n, 2))
    predictors = pd.DataFrame(
        {
            "mud_fraction": rng.uniform(0, 1, n),
            "bottom_current": rng.uniform(0, 1, n),
            "noise_a": rng.normal(size=n),
            "noise_b": rng.normal(size=n),
        }
    )
    response = (
        1.0
        + 3.0 * predictors["mud_fraction"]
        - 1.5 * predictors["bottom_current"]
        + rng.normal(scale=0.2, size=n)
    ).to_numpy()
    folds = create_spatial_folds(coords, n_folds=4, block_size=10000.0, random_state=seed)
    return predictors, response, folds


class TestForwardFeatureSelection:
    """Test the greedy search."""

    def test_score_not_below_any_single_predictor(self):
        """Test that the selected model beats every single-predictor model."""
        predictors, response, folds = make_selection_data()

        result = forward_feature_selection(
            predictors, response, folds, mtry_values=[1, 2], forest_config=FOREST, random_state=0
        )

        singles = result.trace[result.trace["n_predictors"] == 1]
        assert len(singles) == predictors.shape[1]
        assert result.score >= singles["r2"].max()

    def test_selects_informative_predictors(self):
        """Test that the signal covariates are chosen and the model is refitted."""
        predictors, response, folds = make_selection_data()

        result = forward_feature_selection(
            predictors, response, folds, mtry_values=[1, 2], forest_config=FOREST, random_state=0
        )

        assert "mud_fraction" in result.selected
        assert set(result.selected) <= set(predictors.columns)
        assert result.model.feature_names_ == result.selected
        assert 1 <= result.mtry <= len(result.selected)
        assert int(result.trace["selected"].sum()) == 1
        assert not np.isnan(result.cv_predictions).any()

    def test_pairwise_start(self):
        """Test that min_variables=2 starts from every predictor pair."""
        predictors, response, folds = make_selection_data()

        result = forward_feature_selection(
            predictors,
            response,
            folds,
            mtry_values=[2],
            forest_config=FOREST,
            min_variables=2,
            random_state=0,
        )

        start = result.trace[result.trace["step"] == 0]
        assert len(start) == 6
        assert (start["n_predictors"] == 2).all()
        assert len(result.selected) >= 2

    def test_reproducible_with_seed(self):
        """Test identical results for a fixed seed."""
        predictors, response, folds = make_selection_data(1)

        first = forward_feature_selection(predictors, response, folds, [1, 2], FOREST, random_state=3)
        second = forward_feature_selection(predictors, response, folds, [1, 2], FOREST, random_state=3)

        assert first.selected == second.selected
        assert first.mtry == second.mtry
        assert first.score == second.score

    def test_parallel_matches_serial(self):
        """Test that worker processes give the serial result."""
        predictors, response, folds = make_selection_data(2, n=80)

        serial = forward_feature_selection(predictors, response, folds, [1, 2], FOREST, random_state=1)
        parallel = forward_feature_selection(
            predictors, response, folds, [1, 2], FOREST, n_jobs=2, random_state=1
        )

        assert serial.selected == parallel.selected
        assert serial.score == pytest.approx(parallel.score)


class TestFoldHandling:
    """Test folds too small for validation."""

    def test_small_fold_warns_and_is_skipped(self):
        """Test that a fold with one validation observation is excluded."""
        n = 40
        idx = np.arange(n)
        splits = [
            (idx[idx != 0], idx[idx == 0]),
            (idx[idx < 20], idx[idx >= 20]),
            (idx[idx >= 20], idx[idx < 20]),
        ]

        with pytest.warns(InsufficientDataWarning, match="Fold 1"):
            usable = usable_splits(splits)

        assert [fold for fold, _, _ in usable] == [1, 2]

    def test_selection_records_skipped_fold(self):
        """Test that selection proceeds on the remaining folds."""
        predictors, response, _ = make_selection_data(n=60)
        idx = np.arange(60)
        first_half = (idx >= 1) & (idx < 30)
        splits = [
            (idx[idx != 0], idx[idx == 0]),
            (idx[idx >= 30], idx[first_half]),
            (idx[first_half], idx[idx >= 30]),
        ]

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            result = forward_feature_selection(predictors, response, splits, [1], FOREST, random_state=0)

        assert any(issubclass(w.category, InsufficientDataWarning) for w in caught)
        assert np.isnan(result.cv_predictions[0])
        assert result.selected

    def test_no_usable_fold(self):
        """Test that selection needs at least one usable fold."""
        predictors, response, _ = make_selection_data(n=20)
        idx = np.arange(20)
        splits = [(idx[1:], idx[:1])]

        with pytest.warns(InsufficientDataWarning):
            with pytest.raises(InputError, match="No fold has enough observations"):
                forward_feature_selection(predictors, response, splits, [1], FOREST)

    def test_pairwise_start_needs_two_candidates(self):
        """Test the start size bound."""
        predictors, response, folds = make_selection_data()

        with pytest.raises(InputError, match="start size"):
            forward_feature_selection(
                predictors[["mud_fraction"]], response, folds, [1], FOREST, min_variables=2
            )


def fixed_scorer(scores: dict):
    """CV scorer returning a preset R² per predictor set, whatever the mtry."""

    def score(task, features, response, splits, forest_params):
        subset, mtry = task
        return CandidateScore(
            predictors=subset,
            mtry=mtry,
            score=scores.get(frozenset(subset), 0.1),
            cv_predictions=np.zeros(len(response)),
        )

    return score


class TestTieBreaking:
    """Test the choice between equally scored candidates."""

    def test_equal_score_keeps_smaller_set(self, monkeypatch):
        """Test that an addition leaving R² unchanged is not taken."""
        predictors, response, folds = make_selection_data()
        scores = {frozenset(["mud_fraction"]): 0.6}
        for other in ["bottom_current", "noise_a", "noise_b"]:
            scores[frozenset(["mud_fraction", other])] = 0.6
        monkeypatch.setattr(selection, "cross_validate_subset", fixed_scorer(scores))

        result = forward_feature_selection(
            predictors, response, folds, mtry_values=[1, 2], forest_config=FOREST, random_state=0
        )

        assert result.selected == ["mud_fraction"]
        assert result.score == 0.6
        assert result.trace["step"].max() == 1
        assert int(result.trace["selected"].sum()) == 1

    def test_equal_score_keeps_smaller_mtry(self, monkeypatch):
        """Test that mtry values scoring the same resolve to the smallest."""
        predictors, response, folds = make_selection_data()
        scores = {frozenset(["mud_fraction", "bottom_current"]): 0.7}
        monkeypatch.setattr(selection, "cross_validate_subset", fixed_scorer(scores))

        result = forward_feature_selection(
            predictors,
            response,
            folds,
            mtry_values=[3, 2, 1],
            forest_config=FOREST,
            min_variables=2,
            random_state=0,
        )

        assert sorted(result.selected) == ["bottom_current", "mud_fraction"]
        assert result.mtry == 1
        assert result.model.mtry_ == 1
