"""Covariate grid: named raster layers sharing one regular geometry."""

from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pandas as pd

from toc_mapping.exceptions import InputError


@dataclass(frozen=True)
class GridGeometry:
    """North-up regular grid anchored at its upper-left corner."""

    origin_x: float
    origin_y: float
    cell_size: float
    crs: str | None = None

    def __post_init__(self) -> None:
        if self.cell_size <= 0:
            raise InputError("cell_size must be positive", stage="grid")


class CovariateGrid:
    """Stack of covariate layers with index-based cell access.

    Layers are stored as a float array of shape ``(n_layers, rows, cols)``; NaN
    marks cells without data (land, outside the study area).
    """

    def __init__(self, names: list[str], data: np.ndarray, geometry: GridGeometry) -> None:
        data = np.array(data, dtype=float)
        if data.ndim != 3:
            raise InputError("Grid data must have shape (n_layers, rows, cols)", stage="grid")
        if len(names) != data.shape[0]:
            raise InputError(
                f"{len(names)} layer names given for {data.shape[0]} layers", stage="grid"
            )
        if len(set(names)) != len(names):
            raise InputError("Layer names must be unique", stage="grid")
        self.names = list(names)
        self.data = data
        self.geometry = geometry
        self.data.setflags(write=False)

    @classmethod
    def from_layers(cls, layers: dict[str, np.ndarray], geometry: GridGeometry) -> "CovariateGrid":
        """Stack a mapping of equally shaped 2-D layers."""
        shapes = {np.shape(layer) for layer in layers.values()}
        if len(shapes) != 1:
            raise InputError(f"Layers have differing shapes: {sorted(shapes)}", stage="grid")
        return cls(list(layers), np.stack([np.asarray(v, dtype=float) for v in layers.values()]), geometry)

    @property
    def shape(self) -> tuple[int, int]:
        return int(self.data.shape[1]), int(self.data.shape[2])

    def layer(self, name: str) -> np.ndarray:
        try:
            return self.data[self.names.index(name)]
        except ValueError:
            raise InputError(f"Unknown covariate layer '{name}'", stage="grid") from None

    def _indices(self, names: list[str] | None) -> list[int]:
        names = self.names if names is None else list(names)
        missing = [n for n in names if n not in self.names]
        if missing:
            raise InputError(f"Covariate grid lacks layers {missing}", stage="grid")
        return [self.names.index(n) for n in names]

    def valid_mask(self, names: list[str] | None = None) -> np.ndarray:
        """Boolean grid, True where every requested layer has data."""
        return ~np.isnan(self.data[self._indices(names)]).any(axis=0)

    def to_frame(self, names: list[str] | None = None) -> pd.DataFrame:
        """Valid cells of the requested layers as rows, in row-major cell order."""
        idx = self._indices(names)
        mask = self.valid_mask(names)
        values = self.data[idx][:, mask].T
        return pd.DataFrame(values, columns=[self.names[i] for i in idx])

    def fill(self, values: np.ndarray, mask: np.ndarray, fill_value: float = np.nan) -> np.ndarray:
        """Scatter per-valid-cell values back into a full grid."""
        out = np.full(self.shape, fill_value, dtype=float)
        out[mask] = values
        return out

    def cell_centres(self) -> tuple[np.ndarray, np.ndarray]:
        """x and y coordinates of every cell centre, each of grid shape."""
        rows, cols = self.shape
        g = self.geometry
        xs = g.origin_x + (np.arange(cols) + 0.5) * g.cell_size
        ys = g.origin_y - (np.arange(rows) + 0.5) * g.cell_size
        return np.meshgrid(xs, ys)

    def cell_index(self, x: np.ndarray, y: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
        """Row and column of the cells containing the points; -1 when outside."""
        g = self.geometry
        rows, cols = self.shape
        col = np.floor((np.asarray(x, dtype=float) - g.origin_x) / g.cell_size).astype(int)
        row = np.floor((g.origin_y - np.asarray(y, dtype=float)) / g.cell_size).astype(int)
        outside = (row < 0) | (row >= rows) | (col < 0) | (col >= cols)
        row[outside] = -1
        col[outside] = -1
        return row, col

    def sample(self, x: np.ndarray, y: np.ndarray, names: list[str] | None = None) -> pd.DataFrame:
        """Covariate values of the cells containing the points (NaN outside)."""
        idx = self._indices(names)
        row, col = self.cell_index(x, y)
        inside = row >= 0
        values = np.full((len(row), len(idx)), np.nan)
        values[inside] = self.data[idx][:, row[inside], col[inside]].T
        return pd.DataFrame(values, columns=[self.names[i] for i in idx])

    def save_npz(self, path: Path) -> None:
        g = self.geometry
        np.savez_compressed(
            path,
            names=np.array(self.names),
            data=self.data,
            geometry=np.array([g.origin_x, g.origin_y, g.cell_size]),
            crs=np.array(g.crs or ""),
        )

    @classmethod
    def load_npz(cls, path: Path) -> "CovariateGrid":
        with np.load(path, allow_pickle=False) as archive:
            origin_x, origin_y, cell_size = archive["geometry"].tolist()
            crs = str(archive["crs"]) or None
            geometry = GridGeometry(origin_x, origin_y, cell_size, crs)
            return cls([str(n) for n in archive["names"]], archive["data"], geometry)
