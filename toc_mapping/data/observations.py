"""Point observations of sediment organic carbon with sampled covariates."""

from dataclasses import dataclass

import geopandas as gpd
import numpy as np
import pandas as pd

from toc_mapping.exceptions import InputError
from toc_mapping.utils.logger import setup_logger

logger = setup_logger("observations")


@dataclass(frozen=True)
class Observations:
    """Complete (no missing values) point observations in projected coordinates.

    Attributes:
        x: Easting of each sample [m]
        y: Northing of each sample [m]
        response: TOC content [wt-%]
        covariates: Covariate values sampled at each point, one column per layer
    """

    x: np.ndarray
    y: np.ndarray
    response: np.ndarray
    covariates: pd.DataFrame

    def __post_init__(self) -> None:
        n = len(self.response)
        if not (len(self.x) == len(self.y) == len(self.covariates) == n):
            raise InputError(
                "Coordinates, response and covariates must have the same length",
                stage="observations",
            )
        if np.isnan(self.response).any() or self.covariates.isna().any().any():
            raise InputError("Observations must not contain missing values", stage="observations")

    @classmethod
    def from_frame(
        cls,
        frame: pd.DataFrame,
        response_column: str,
        x_column: str,
        y_column: str,
        covariate_columns: list[str] | None = None,
        depth_column: str | None = None,
        depth_interval: tuple[float, float] | None = None,
    ) -> "Observations":
        """Build observations from a flat table, dropping incomplete rows.

        Args:
            frame: One row per sample
            response_column: Column holding the TOC value
            x_column: Projected x coordinate column
            y_column: Projected y coordinate column
            covariate_columns: Covariate columns; defaults to every other column
            depth_column: Optional sample depth column [cm]
            depth_interval: (upper, lower) depth bounds; rows outside are dropped

        Returns:
            Observations

        Raises:
            InputError: If required columns are missing or no complete row remains.
        """
        reserved = {response_column, x_column, y_column}
        if depth_column is not None:
            reserved.add(depth_column)
        if covariate_columns is None:
            covariate_columns = [c for c in frame.columns if c not in reserved]

        missing = [c for c in [*reserved, *covariate_columns] if c not in frame.columns]
        if missing:
            raise InputError(f"Missing columns in observation table: {missing}", stage="observations")

        table = frame
        if depth_column is not None and depth_interval is not None:
            upper, lower = depth_interval
            in_interval = (table[depth_column] >= upper) & (table[depth_column] < lower)
            logger.info(
                f"Depth interval {upper:g}-{lower:g} cm keeps {int(in_interval.sum())}"
                f"/{len(table)} samples"
            )
            table = table.loc[in_interval]

        columns = [x_column, y_column, response_column, *covariate_columns]
        complete = table[columns].dropna()
        n_dropped = len(table) - len(complete)
        if n_dropped:
            logger.info(f"Dropped {n_dropped} observations with missing values")
        if complete.empty:
            raise InputError("No complete observations remain", stage="observations")

        return cls(
            x=complete[x_column].to_numpy(dtype=float),
            y=complete[y_column].to_numpy(dtype=float),
            response=complete[response_column].to_numpy(dtype=float),
            covariates=complete[covariate_columns].astype(float).reset_index(drop=True),
        )

    @classmethod
    def from_geodataframe(
        cls,
        gdf: gpd.GeoDataFrame,
        response_column: str,
        covariate_columns: list[str] | None = None,
    ) -> "Observations":
        """Build observations from point geometries in a projected CRS."""
        if gdf.crs is not None and gdf.crs.is_geographic:
            raise InputError(
                "Observations must be in a projected coordinate system", stage="observations"
            )
        frame = pd.DataFrame(gdf.drop(columns=gdf.geometry.name))
        frame["_x"] = gdf.geometry.x.to_numpy()
        frame["_y"] = gdf.geometry.y.to_numpy()
        return cls.from_frame(frame, response_column, "_x", "_y", covariate_columns)

    @property
    def n_observations(self) -> int:
        return int(len(self.response))

    @property
    def covariate_names(self) -> list[str]:
        return list(self.covariates.columns)

    @property
    def coordinates(self) -> np.ndarray:
        """Coordinates as an (N, 2) array."""
        return np.column_stack([self.x, self.y])

    def subset(self, columns: list[str]) -> pd.DataFrame:
        """Covariate matrix restricted to ``columns`` in the given order."""
        return self.covariates[list(columns)]

    def to_frame(self) -> pd.DataFrame:
        frame = self.covariates.copy()
        frame.insert(0, "response", self.response)
        frame.insert(0, "y", self.y)
        frame.insert(0, "x", self.x)
        return frame
