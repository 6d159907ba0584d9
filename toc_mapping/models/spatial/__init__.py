"""Spatial modelling stages: screening, de-correlation, variogram, blocking, selection, applicability."""

from .applicability import ApplicabilityResult, dissimilarity_index, estimate_applicability
from .blocking import SpatialFolds, assign_blocks, block_size_from_range, create_spatial_folds
from .redundancy import RedundancyResult, compute_vif, drop_correlated, reduce_redundancy
from .screening import ScreeningResult, screen_predictors
from .selection import SelectionResult, forward_feature_selection
from .variogram import (
    DependenceRange,
    VariogramFit,
    empirical_variogram,
    estimate_dependence_range,
    fit_variogram,
    tukey_ladder,
)

__all__ = [
    "ApplicabilityResult",
    "DependenceRange",
    "RedundancyResult",
    "ScreeningResult",
    "SelectionResult",
    "SpatialFolds",
    "VariogramFit",
    "assign_blocks",
    "block_size_from_range",
    "compute_vif",
    "create_spatial_folds",
    "dissimilarity_index",
    "drop_correlated",
    "empirical_variogram",
    "estimate_applicability",
    "estimate_dependence_range",
    "fit_variogram",
    "forward_feature_selection",
    "reduce_redundancy",
    "screen_predictors",
    "tukey_ladder",
]
