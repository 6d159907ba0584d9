"""Tests for observation and covariate grid containers."""

import geopandas as gpd
import numpy as np
import pandas as pd
import pytest

from toc_mapping.data.grid import CovariateGrid, GridGeometry
from toc_mapping.data.observations import Observations
from toc_mapping.exceptions import InputError


def make_table() -> pd.DataFrame:
    return pd.DataFrame(
        {
            "x": [100.0, 200.0, 300.0, 400.0, 500.0],
            "y": [50.0, 60.0, 70.0, 80.0, 90.0],
            "toc": [1.2, 0.8, np.nan, 2.5, 1.9],
            "depth_cm": [2.0, 12.0, 5.0, 0.0, 10.0],
            "mud_fraction": [0.4, 0.2, 0.5, 0.9, 0.7],
            "slope": [1.0, 2.0, 3.0, 4.0, 5.0],
        }
    )


class TestObservations:
    """Test building observations from tables."""

    def test_from_frame_drops_incomplete_rows(self):
        """Test that rows with missing values are removed."""
        observations = Observations.from_frame(make_table(), "toc", "x", "y", ["mud_fraction", "slope"])

        assert observations.n_observations == 4
        assert observations.covariate_names == ["mud_fraction", "slope"]
        assert observations.coordinates.shape == (4, 2)

    def test_depth_interval_filter(self):
        """Test that only samples in [upper, lower) are kept."""
        observations = Observations.from_frame(
            make_table(),
            "toc",
            "x",
            "y",
            depth_column="depth_cm",
            depth_interval=(0.0, 10.0),
        )

        # depths 2 and 0 remain, 5 has no TOC, 10 and 12 are outside
        np.testing.assert_array_equal(observations.response, [1.2, 2.5])
        assert "depth_cm" not in observations.covariate_names

    def test_missing_column(self):
        """Test that an absent column is an input error."""
        with pytest.raises(InputError, match="Missing columns"):
            Observations.from_frame(make_table(), "toc", "x", "y", ["grain_size"])

    def test_missing_values_rejected_by_constructor(self):
        """Test that the container never holds NaN."""
        with pytest.raises(InputError, match="missing values"):
            Observations(
                x=np.array([0.0]),
                y=np.array([0.0]),
                response=np.array([np.nan]),
                covariates=pd.DataFrame({"slope": [1.0]}),
            )

    def test_from_geodataframe(self):
        """Test point geometries in a projected CRS."""
        table = make_table().dropna()
        gdf = gpd.GeoDataFrame(
            table.drop(columns=["x", "y"]),
            geometry=gpd.points_from_xy(table["x"], table["y"]),
            crs="EPSG:3006",
        )

        observations = Observations.from_geodataframe(gdf, "toc", ["mud_fraction", "slope"])

        np.testing.assert_array_equal(observations.x, table["x"].to_numpy())

    def test_geographic_crs_rejected(self):
        """Test that longitude/latitude points are rejected."""
        gdf = gpd.GeoDataFrame(
            {"toc": [1.0]}, geometry=gpd.points_from_xy([18.0], [57.0]), crs="EPSG:4326"
        )

        with pytest.raises(InputError, match="projected"):
            Observations.from_geodataframe(gdf, "toc")


class TestCovariateGrid:
    """Test index-based grid access."""

    def setup_method(self):
        geometry = GridGeometry(origin_x=0.0, origin_y=300.0, cell_size=100.0)
        depth = np.array([[10.0, 20.0, np.nan], [40.0, 50.0, 60.0], [70.0, 80.0, 90.0]])
        slope = np.arange(9.0).reshape(3, 3)
        self.grid = CovariateGrid.from_layers({"depth": depth, "slope": slope}, geometry)

    def test_valid_mask_and_frame(self):
        """Test that no-data cells are excluded in row-major order."""
        frame = self.grid.to_frame(["depth", "slope"])

        assert self.grid.valid_mask().sum() == 8
        assert len(frame) == 8
        assert frame["depth"].iloc[2] == 40.0
        assert len(self.grid.to_frame(["slope"])) == 9

    def test_fill_restores_grid(self):
        """Test scattering valid-cell values back into the grid."""
        mask = self.grid.valid_mask()
        values = self.grid.to_frame()["depth"].to_numpy()

        filled = self.grid.fill(values, mask)

        np.testing.assert_array_equal(filled, self.grid.layer("depth"))

    def test_sample_points(self):
        """Test point lookup including a point outside the grid."""
        sampled = self.grid.sample(np.array([150.0, 250.0, 1000.0]), np.array([250.0, 50.0, 50.0]))

        assert sampled["depth"].iloc[0] == 20.0
        assert sampled["slope"].iloc[1] == 8.0
        assert np.isnan(sampled["depth"].iloc[2])

    def test_cell_centres(self):
        """Test cell centre coordinates."""
        x, y = self.grid.cell_centres()

        assert x[0, 0] == 50.0
        assert y[0, 0] == 250.0
        assert y[2, 0] == 50.0

    def test_data_is_read_only(self):
        """Test that the layer stack cannot be modified in place."""
        with pytest.raises(ValueError):
            self.grid.data[0, 0, 0] = 1.0

    def test_mismatched_layers(self):
        """Test that layers must share one shape."""
        with pytest.raises(InputError, match="differing shapes"):
            CovariateGrid.from_layers(
                {"a": np.zeros((2, 2)), "b": np.zeros((3, 2))}, GridGeometry(0.0, 0.0, 1.0)
            )

    def test_unknown_layer(self):
        """Test access to a missing layer."""
        with pytest.raises(InputError, match="Unknown covariate layer"):
            self.grid.layer("oxygen")
