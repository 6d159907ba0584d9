"""Tests for Boruta importance screening."""

import numpy as np
import pandas as pd
import pytest

from toc_mapping.config.settings import ScreeningConfig
from toc_mapping.exceptions import InputError
from toc_mapping.models.spatial.screening import screen_predictors

INFORMATIVE = [f"signal_{i}" for i in range(5)]
NOISE = [f"noise_{i}" for i in range(5)]


def make_screening_data(seed: int) -> tuple[np.ndarray, pd.DataFrame]:
    """200 samples, 5 informative and 5 independent noise covariates."""
    rng = np.random.default_rng(seed)
    signal = rng.normal(size=(200, 5))
    noise = rng.normal(size=(200, 5))
    response = signal.sum(axis=1) + 0.2 * rng.normal(size=200)
    predictors = pd.DataFrame(np.hstack([signal, noise]), columns=INFORMATIVE + NOISE)
    return response, predictors


CONFIG = ScreeningConfig(boruta_max_iterations=50, n_estimators=100)


class TestScreenPredictors:
    """Test the screening contract."""

    def test_confirmed_is_subset_of_candidates(self):
        """Test that every decided covariate comes from the input."""
        response, predictors = make_screening_data(0)

        result = screen_predictors(response, predictors, CONFIG, random_state=0)

        decided = result.confirmed + result.tentative + result.rejected
        assert set(result.confirmed) <= set(predictors.columns)
        assert sorted(decided) == sorted(predictors.columns)
        assert list(result.ranking.index) == list(predictors.columns)

    def test_reproducible_with_seed(self):
        """Test that the same seed and data give the same confirmed set."""
        response, predictors = make_screening_data(1)

        first = screen_predictors(response, predictors, CONFIG, random_state=7)
        second = screen_predictors(response, predictors, CONFIG, random_state=7)

        assert first.confirmed == second.confirmed
        assert first.ranking.equals(second.ranking)

    def test_noise_covariates_not_confirmed(self):
        """Test that only informative covariates survive across seeded runs."""
        hits = 0
        for seed in range(3):
            response, predictors = make_screening_data(seed)
            result = screen_predictors(response, predictors, CONFIG, random_state=seed)
            if result.confirmed and set(result.confirmed) <= set(INFORMATIVE):
                hits += 1

        assert hits == 3


class TestScreeningInputs:
    """Test input validation."""

    def test_single_candidate_rejected(self):
        """Test that fewer than 2 candidates is an input error."""
        response, predictors = make_screening_data(0)

        with pytest.raises(InputError, match="At least 2 candidate predictors"):
            screen_predictors(response, predictors[["signal_0"]], CONFIG)

    def test_length_mismatch(self):
        """Test mismatched response and predictor lengths."""
        response, predictors = make_screening_data(0)

        with pytest.raises(InputError, match="same length"):
            screen_predictors(response[:-1], predictors, CONFIG)

    def test_constant_response(self):
        """Test that a constant response cannot be screened."""
        _, predictors = make_screening_data(0)

        with pytest.raises(InputError, match="near-zero variance"):
            screen_predictors(np.ones(len(predictors)), predictors, CONFIG)
