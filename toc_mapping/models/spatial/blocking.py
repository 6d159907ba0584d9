"""Spatial blocks for cross-validation.

The observation extent is tiled into square or hexagonal blocks; every
occupied block is assigned to one of k folds as a whole, so held-out points
are spatially separated from the training points of their fold. Block-to-fold
assignment is repeated with seeded random permutations and the assignment with
the most even fold sizes is kept.
"""

from collections.abc import Iterator
from dataclasses import dataclass

import numpy as np

from toc_mapping.exceptions import ConfigurationError
from toc_mapping.utils.logger import setup_logger

logger = setup_logger("blocking")

_SQRT3 = np.sqrt(3.0)


def block_size_from_range(dependence_range: float, multiplier: float = 0.3) -> float:
    """Block edge length derived from the spatial dependence range."""
    if dependence_range <= 0 or multiplier <= 0:
        raise ConfigurationError(
            "Dependence range and block size multiplier must be positive", stage="blocking"
        )
    return float(dependence_range) * float(multiplier)


def _square_blocks(coordinates: np.ndarray, size: float) -> np.ndarray:
    """(column, row) index of the square block containing each point."""
    origin = coordinates.min(axis=0)
    return np.floor((coordinates - origin) / size).astype(np.int64)


def _hexagon_blocks(coordinates: np.ndarray, size: float) -> np.ndarray:
    """Axial (q, r) index of the pointy-top hexagon containing each point.

    ``size`` is the hexagon width (distance between opposite edges), which
    makes hexagons and squares of equal ``size`` comparable.
    """
    radius = size / _SQRT3
    shifted = coordinates - coordinates.min(axis=0)
    x, y = shifted[:, 0], shifted[:, 1]
    q = (_SQRT3 / 3.0 * x - y / 3.0) / radius
    r = (2.0 / 3.0 * y) / radius

    # cube rounding
    s = -q - r
    rq, rr, rs = np.round(q), np.round(r), np.round(s)
    dq, dr, ds = np.abs(rq - q), np.abs(rr - r), np.abs(rs - s)
    fix_q = (dq > dr) & (dq > ds)
    fix_r = ~fix_q & (dr > ds)
    rq[fix_q] = -rr[fix_q] - rs[fix_q]
    rr[fix_r] = -rq[fix_r] - rs[fix_r]
    return np.column_stack([rq, rr]).astype(np.int64)


@dataclass(frozen=True)
class SpatialFolds:
    """Fold assignment of observations built from spatial blocks.

    Iterating yields ``(train_idx, val_idx)`` pairs, so an instance can be
    passed as ``cv=`` to scikit-learn model selection utilities.
    """

    fold_ids: np.ndarray
    block_ids: np.ndarray
    n_folds: int
    block_size: float
    shape: str

    def splits(self) -> list[tuple[np.ndarray, np.ndarray]]:
        all_idx = np.arange(len(self.fold_ids))
        return [
            (all_idx[self.fold_ids != fold], all_idx[self.fold_ids == fold])
            for fold in range(self.n_folds)
        ]

    def __iter__(self) -> Iterator[tuple[np.ndarray, np.ndarray]]:
        return iter(self.splits())

    def __len__(self) -> int:
        return self.n_folds

    @property
    def fold_sizes(self) -> np.ndarray:
        return np.bincount(self.fold_ids, minlength=self.n_folds)


def assign_blocks(
    coordinates: np.ndarray,
    block_size: float,
    shape: str = "hexagon",
) -> np.ndarray:
    """Label each point with the integer id of its (occupied) block."""
    if block_size <= 0:
        raise ConfigurationError("block_size must be positive", stage="blocking")
    if shape == "square":
        cells = _square_blocks(coordinates, block_size)
    elif shape == "hexagon":
        cells = _hexagon_blocks(coordinates, block_size)
    else:
        raise ConfigurationError(f"Unknown block shape '{shape}'", stage="blocking")
    _, block_ids = np.unique(cells, axis=0, return_inverse=True)
    return block_ids.ravel()


def create_spatial_folds(
    coordinates: np.ndarray,
    n_folds: int,
    block_size: float,
    shape: str = "hexagon",
    iterations: int = 100,
    random_state: int | None = None,
) -> SpatialFolds:
    """Assign observations to k spatially blocked folds.

    Args:
        coordinates: (N, 2) projected coordinates [m]
        n_folds: Number of folds k
        block_size: Block edge length (square) or width (hexagon) [m]
        shape: "square" or "hexagon"
        iterations: Random block-to-fold assignments tried
        random_state: Seed for the assignments

    Returns:
        SpatialFolds

    Raises:
        ConfigurationError: Invalid k or block size, or fewer occupied blocks than folds.
    """
    coordinates = np.asarray(coordinates, dtype=float)
    n_obs = len(coordinates)
    if n_folds < 2:
        raise ConfigurationError("At least 2 folds are required", stage="blocking")
    if n_folds > n_obs:
        raise ConfigurationError(
            f"{n_folds} folds requested for {n_obs} observations", stage="blocking"
        )

    block_ids = assign_blocks(coordinates, block_size, shape)
    block_counts = np.bincount(block_ids)
    n_blocks = len(block_counts)
    if n_blocks < n_folds:
        raise ConfigurationError(
            f"Only {n_blocks} occupied blocks of size {block_size:.1f} for {n_folds} folds; "
            "reduce the block size or the fold count",
            stage="blocking",
        )

    rng = np.random.default_rng(random_state)
    best_assignment: np.ndarray | None = None
    best_spread = np.inf
    for _ in range(iterations):
        # every fold gets at least one block: deal a random permutation round-robin
        block_fold = np.empty(n_blocks, dtype=np.int64)
        block_fold[rng.permutation(n_blocks)] = np.arange(n_blocks) % n_folds
        sizes = np.bincount(block_fold, weights=block_counts, minlength=n_folds)
        if np.any(sizes == 0):
            continue
        spread = float(np.std(sizes))
        if spread < best_spread:
            best_spread, best_assignment = spread, block_fold

    if best_assignment is None:
        raise ConfigurationError(
            f"Could not balance {n_blocks} blocks into {n_folds} non-empty folds",
            stage="blocking",
        )

    folds = SpatialFolds(
        fold_ids=best_assignment[block_ids],
        block_ids=block_ids,
        n_folds=n_folds,
        block_size=float(block_size),
        shape=shape,
    )
    logger.info(
        f"{n_blocks} {shape} blocks of {block_size:.1f} m in {n_folds} folds; "
        f"fold sizes {folds.fold_sizes.tolist()}"
    )
    return folds
