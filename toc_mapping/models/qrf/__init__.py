"""Quantile regression forest model."""

from toc_mapping.models.qrf.forest import QuantileRegressionForest

__all__ = ["QuantileRegressionForest"]
