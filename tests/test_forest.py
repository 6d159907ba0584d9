"""Tests for the quantile regression forest."""

import numpy as np
import pandas as pd
import pytest

from toc_mapping.exceptions import InputError
from toc_mapping.models.qrf.forest import QuantileRegressionForest


def make_regression_data(n: int = 200, seed: int = 0) -> tuple[pd.DataFrame, np.ndarray]:
    rng = np.random.default_rng(seed)
    features = pd.DataFrame(
        {
            "mud_fraction": rng.uniform(0, 1, n),
            "depth": rng.uniform(10, 200, n),
            "noise": rng.normal(size=n),
        }
    )
    response = 0.5 + 3.0 * features["mud_fraction"] + rng.normal(scale=0.3, size=n)
    return features, response.to_numpy()


class TestQuantileRegressionForest:
    """Test fitting and quantile prediction."""

    def test_singleton_leaf_returns_own_response(self):
        """Test that a training point alone in its leaves predicts its own value."""
        rng = np.random.default_rng(0)
        features = rng.uniform(size=(30, 2))
        response = rng.normal(size=30)
        model = QuantileRegressionForest(
            n_estimators=5, min_samples_leaf=1, sample_fraction=1.0, random_state=0
        )

        model.fit(features, response)
        median = model.predict(features, quantiles=0.5)

        np.testing.assert_allclose(median, response)

    def test_only_in_bag_rows_are_pooled(self):
        """Test that rows left out of a tree never enter its leaf pools."""
        features, response = make_regression_data(n=20)
        model = QuantileRegressionForest(
            n_estimators=1, min_samples_leaf=1, sample_fraction=0.5, random_state=0
        )

        model.fit(features, response)
        pooled = np.asarray(model.leaf_weights(features).sum(axis=0)).ravel()

        assert np.count_nonzero(pooled) == 10

    def test_quantiles_are_ordered(self):
        """Test that lower quantile levels never exceed higher ones."""
        features, response = make_regression_data()
        model = QuantileRegressionForest(n_estimators=50, random_state=1).fit(features, response)

        predictions = model.predict(features.iloc[:50], quantiles=[0.05, 0.5, 0.95])

        assert predictions.shape == (50, 3)
        assert np.all(np.diff(predictions, axis=1) >= 0)

    def test_scalar_quantile_shape(self):
        """Test that a scalar level returns a vector."""
        features, response = make_regression_data()
        model = QuantileRegressionForest(n_estimators=10, random_state=1).fit(features, response)

        assert model.predict(features.iloc[:7], quantiles=0.9).shape == (7,)

    def test_quantile_levels_validated(self):
        """Test that levels outside (0, 1) are rejected."""
        features, response = make_regression_data()
        model = QuantileRegressionForest(n_estimators=5, random_state=1).fit(features, response)

        with pytest.raises(InputError, match="Quantile levels"):
            model.predict(features, quantiles=[0.5, 1.0])

    def test_reproducible_with_seed(self):
        """Test determinism for a fixed seed."""
        features, response = make_regression_data()

        first = QuantileRegressionForest(n_estimators=20, mtry=2, random_state=5).fit(features, response)
        second = QuantileRegressionForest(n_estimators=20, mtry=2, random_state=5).fit(features, response)

        np.testing.assert_array_equal(
            first.predict(features, [0.1, 0.5, 0.9]), second.predict(features, [0.1, 0.5, 0.9])
        )
        np.testing.assert_array_equal(first.feature_importances_, second.feature_importances_)

    def test_informative_predictor_most_important(self):
        """Test that importance reflects the signal."""
        features, response = make_regression_data()
        model = QuantileRegressionForest(n_estimators=50, mtry=3, random_state=2).fit(features, response)

        assert model.feature_importances_.sum() == pytest.approx(1.0)
        assert np.argmax(model.feature_importances_) == 0
        assert model.mtry_ == 3

    def test_mean_prediction_tracks_response(self):
        """Test the conditional mean on held-out data."""
        features, response = make_regression_data(n=400)
        model = QuantileRegressionForest(n_estimators=50, random_state=3).fit(
            features.iloc[:300], response[:300]
        )

        predicted = model.predict_mean(features.iloc[300:])

        assert np.corrcoef(predicted, response[300:])[0, 1] > 0.8

    def test_columns_reordered_by_name(self):
        """Test that a frame with permuted columns gives identical predictions."""
        features, response = make_regression_data()
        model = QuantileRegressionForest(n_estimators=10, random_state=4).fit(features, response)

        permuted = features[["noise", "depth", "mud_fraction"]]

        np.testing.assert_array_equal(model.predict(features), model.predict(permuted))

    def test_mtry_clamped(self):
        """Test that mtry larger than the predictor count is clamped."""
        features, response = make_regression_data()
        model = QuantileRegressionForest(n_estimators=3, mtry=10, random_state=0).fit(features, response)

        assert model.mtry_ == 3

    def test_too_few_observations(self):
        """Test that a single observation cannot grow a forest."""
        with pytest.raises(InputError, match="At least 2 observations"):
            QuantileRegressionForest(n_estimators=3).fit(np.ones((1, 2)), np.ones(1))

    def test_predict_before_fit(self):
        """Test that an unfitted model refuses to predict."""
        with pytest.raises(RuntimeError, match="fitted"):
            QuantileRegressionForest().predict(np.ones((2, 2)))
