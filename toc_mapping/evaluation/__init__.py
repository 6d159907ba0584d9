"""Evaluation module for cross-validated model assessment."""

from .metrics import (
    ValidationSummary,
    create_metrics_dataframe,
    mse,
    r_squared,
    rmse,
    summarize_validation,
)

__all__ = [
    "mse",
    "rmse",
    "r_squared",
    "ValidationSummary",
    "summarize_validation",
    "create_metrics_dataframe",
]
