"""Configuration management for the TOC mapping pipeline."""

from pathlib import Path
from typing import List, Literal, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from toc_mapping.exceptions import ConfigurationError


class DataConfig(BaseModel):
    """Observation table layout and depth selection."""

    response_column: str = Field(default="toc", description="Organic carbon [wt-%]")
    x_column: str = Field(default="x", description="Projected easting [m]")
    y_column: str = Field(default="y", description="Projected northing [m]")
    depth_column: Optional[str] = Field(
        default=None, description="Sample depth below seafloor [cm]"
    )
    depth_interval_bounds: Tuple[float, float] = Field(
        default=(0.0, 10.0), description="Upper and lower sample depth [cm]"
    )

    @field_validator("depth_interval_bounds")
    @classmethod
    def validate_depth_interval(cls, v: Tuple[float, float]) -> Tuple[float, float]:
        """Upper bound must be shallower than the lower bound."""
        upper, lower = v
        if upper < 0 or lower <= upper:
            raise ValueError("depth_interval_bounds must satisfy 0 <= upper < lower")
        return v

    @property
    def depth_label(self) -> str:
        upper, lower = self.depth_interval_bounds
        return f"{upper:g}-{lower:g}cm"


class ScreeningConfig(BaseModel):
    """Boruta importance screening settings."""

    boruta_significance: float = Field(default=0.05, gt=0.0, lt=1.0)
    boruta_max_iterations: int = Field(default=500, ge=10)
    n_estimators: Union[int, Literal["auto"]] = Field(default="auto")
    max_depth: Optional[int] = Field(default=5, ge=1)
    percentile: int = Field(default=100, ge=1, le=100)


class RedundancyConfig(BaseModel):
    """Correlation / variance-inflation search settings."""

    vif_ceiling: float = Field(default=2.5, gt=1.0)
    vif_threshold_step: float = Field(default=0.01, gt=0.0, lt=1.0)
    start_threshold: float = Field(default=1.0, gt=0.0, le=1.0)
    min_threshold: float = Field(default=0.0, ge=0.0, lt=1.0)

    @model_validator(mode="after")
    def validate_bounds(self) -> "RedundancyConfig":
        """The search interval must not be empty."""
        if self.min_threshold >= self.start_threshold:
            raise ValueError("min_threshold must be below start_threshold")
        return self


class VariogramConfig(BaseModel):
    """Spatial dependence range estimation settings."""

    models: List[Literal["spherical", "exponential", "gaussian"]] = Field(
        default=["spherical", "exponential", "gaussian"]
    )
    n_lags: int = Field(default=15, ge=3)
    max_lag_fraction: float = Field(default=1.0 / 3.0, gt=0.0, le=1.0)
    min_pairs: int = Field(default=10, ge=1)
    max_normality_sample: int = Field(default=5000, ge=3, le=5000)
    min_observations: int = Field(default=30, ge=3)
    fallback_range: Optional[float] = Field(default=None, gt=0.0)

    @field_validator("models")
    @classmethod
    def validate_models(cls, v: List[str]) -> List[str]:
        if not v:
            raise ValueError("At least one variogram model is required")
        return list(dict.fromkeys(v))


class BlockingConfig(BaseModel):
    """Spatial block cross-validation settings."""

    cv_fold_count: int = Field(default=10, ge=2)
    block_size_multiplier: float = Field(default=0.3, gt=0.0)
    block_shape: Literal["square", "hexagon"] = Field(default="hexagon")
    iterations: int = Field(default=100, ge=1)


class SelectionConfig(BaseModel):
    """Forward feature selection and mtry tuning settings."""

    mtry_values: List[int] = Field(default=[2, 3, 4])
    min_variables: int = Field(default=1, ge=1, le=2)
    n_jobs: int = Field(default=1, ge=1)

    @field_validator("mtry_values")
    @classmethod
    def validate_mtry(cls, v: List[int]) -> List[int]:
        """mtry candidates must be positive and unique."""
        if not v or any(m < 1 for m in v):
            raise ValueError("mtry_values must be a non-empty list of positive integers")
        return sorted(set(v))


class ForestConfig(BaseModel):
    """Quantile regression forest settings."""

    n_estimators: int = Field(default=500, ge=1)
    min_samples_leaf: int = Field(default=5, ge=1)
    sample_fraction: float = Field(default=0.632, gt=0.0, le=1.0)
    replace: bool = Field(default=False)
    max_depth: Optional[int] = Field(default=None, ge=1)


class ApplicabilityConfig(BaseModel):
    """Area of applicability settings."""

    method: Literal["error_breakpoint", "whisker"] = Field(default="error_breakpoint")
    error_factor: float = Field(default=1.5, gt=1.0)
    window_fraction: float = Field(default=0.1, gt=0.0, lt=1.0)


class OutputConfig(BaseModel):
    """Prediction output settings."""

    quantile_levels_for_output: List[float] = Field(default=[0.05, 0.5, 0.95])

    @field_validator("quantile_levels_for_output")
    @classmethod
    def validate_quantiles(cls, v: List[float]) -> List[float]:
        """Validate quantile values."""
        if not all(0 < q < 1 for q in v):
            raise ValueError("All quantiles must be between 0 and 1")
        if 0.5 not in v:
            raise ValueError("Quantiles must include 0.5 (median)")
        return sorted(set(v))


class PathConfig(BaseModel):
    """Path configuration settings."""

    output_dir: Path = Field(default=Path("outputs"))
    log_file: Path = Field(default=Path("logs/toc_mapping.log"))


class Settings(BaseModel):
    """Main settings class containing all configuration."""

    data: DataConfig = Field(default_factory=DataConfig)
    screening: ScreeningConfig = Field(default_factory=ScreeningConfig)
    redundancy: RedundancyConfig = Field(default_factory=RedundancyConfig)
    variogram: VariogramConfig = Field(default_factory=VariogramConfig)
    blocking: BlockingConfig = Field(default_factory=BlockingConfig)
    selection: SelectionConfig = Field(default_factory=SelectionConfig)
    forest: ForestConfig = Field(default_factory=ForestConfig)
    applicability: ApplicabilityConfig = Field(default_factory=ApplicabilityConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
    paths: PathConfig = Field(default_factory=PathConfig)
    random_seed: int = Field(default=42, ge=0)

    @classmethod
    def from_yaml(cls, config_path: Path) -> "Settings":
        """Load settings from a YAML file."""
        with open(config_path, "r", encoding="utf-8") as f:
            config_dict = yaml.safe_load(f) or {}
        return cls(**config_dict)

    def to_yaml(self, output_path: Path) -> None:
        """Save settings to a YAML file."""
        with open(output_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(
                self.model_dump(mode="json"), f, default_flow_style=False, sort_keys=False
            )

    def validate_against(self, n_observations: int) -> None:
        """Check settings that depend on the size of the observation set.

        Raises:
            ConfigurationError: If the fold count exceeds the observation count.
        """
        if self.blocking.cv_fold_count > n_observations:
            raise ConfigurationError(
                f"cv_fold_count={self.blocking.cv_fold_count} exceeds the "
                f"{n_observations} available observations",
                stage="configuration",
            )
