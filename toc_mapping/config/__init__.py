"""Configuration module."""

from .settings import (
    ApplicabilityConfig,
    BlockingConfig,
    DataConfig,
    ForestConfig,
    OutputConfig,
    PathConfig,
    RedundancyConfig,
    ScreeningConfig,
    SelectionConfig,
    Settings,
    VariogramConfig,
)

__all__ = [
    "Settings",
    "DataConfig",
    "ScreeningConfig",
    "RedundancyConfig",
    "VariogramConfig",
    "BlockingConfig",
    "SelectionConfig",
    "ForestConfig",
    "ApplicabilityConfig",
    "OutputConfig",
    "PathConfig",
]
