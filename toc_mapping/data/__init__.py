"""Observation and covariate grid containers."""

from .grid import CovariateGrid, GridGeometry
from .observations import Observations

__all__ = ["CovariateGrid", "GridGeometry", "Observations"]
