"""Shared synthetic survey: periodic covariate fields, white-noise covariates and point samples."""

import numpy as np
import pytest

from toc_mapping.config.settings import Settings
from toc_mapping.data.grid import CovariateGrid, GridGeometry
from toc_mapping.data.observations import Observations

GRID_SIZE = 40
CELL_SIZE = 1000.0
N_SAMPLES = 150


def make_grid(seed: int = 0) -> CovariateGrid:
    """40 x 40 km grid with three smooth informative layers and two noise layers."""
    rng = np.random.default_rng(seed)
    geometry = GridGeometry(origin_x=500000.0, origin_y=6000000.0, cell_size=CELL_SIZE, crs="EPSG:3006")
    xs = (np.arange(GRID_SIZE) + 0.5) * CELL_SIZE
    ys = (np.arange(GRID_SIZE) + 0.5) * CELL_SIZE
    x, y = np.meshgrid(xs, ys)

    bathymetry = np.sin(2 * np.pi * x / 8000.0)
    current_speed = np.cos(2 * np.pi * y / 8000.0)
    mud_fraction = np.sin(2 * np.pi * (x + y) / 12000.0)
    # land in the upper-left corner
    bathymetry[:5, :5] = np.nan

    layers = {
        "bathymetry": bathymetry,
        "current_speed": current_speed,
        "mud_fraction": mud_fraction,
        "noise_1": rng.normal(size=(GRID_SIZE, GRID_SIZE)),
        "noise_2": rng.normal(size=(GRID_SIZE, GRID_SIZE)),
    }
    return CovariateGrid.from_layers(layers, geometry)


def make_observations(grid: CovariateGrid, seed: int = 1) -> Observations:
    """Sample the grid at random valid cells and derive a TOC response."""
    rng = np.random.default_rng(seed)
    valid = np.flatnonzero(grid.valid_mask().ravel())
    cells = rng.choice(valid, size=N_SAMPLES, replace=False)
    rows, cols = np.unravel_index(cells, grid.shape)
    cx, cy = grid.cell_centres()
    x = cx[rows, cols] + rng.uniform(-300, 300, size=N_SAMPLES)
    y = cy[rows, cols] + rng.uniform(-300, 300, size=N_SAMPLES)

    covariates = grid.sample(x, y)
    response = (
        2.0
        + covariates["bathymetry"]
        + 0.8 * covariates["current_speed"]
        + 0.6 * covariates["mud_fraction"]
        + 0.1 * rng.normal(size=N_SAMPLES)
    ).to_numpy()
    return Observations(x=x, y=y, response=response, covariates=covariates)


def make_settings() -> Settings:
    """Small forests and short searches for test runs."""
    return Settings(
        screening={"boruta_max_iterations": 40, "n_estimators": 50},
        variogram={"fallback_range": 5000.0},
        blocking={"cv_fold_count": 4, "block_size_multiplier": 0.1, "iterations": 20},
        selection={"mtry_values": [1, 2]},
        forest={"n_estimators": 30, "min_samples_leaf": 3},
        random_seed=42,
    )


@pytest.fixture(scope="session")
def synthetic_grid() -> CovariateGrid:
    return make_grid()


@pytest.fixture(scope="session")
def synthetic_observations(synthetic_grid) -> Observations:
    return make_observations(synthetic_grid)


@pytest.fixture
def fast_settings() -> Settings:
    return make_settings()


@pytest.fixture(scope="session")
def pipeline_result(synthetic_observations, synthetic_grid):
    from toc_mapping.pipeline import run_pipeline

    return run_pipeline(synthetic_observations, synthetic_grid, make_settings())
