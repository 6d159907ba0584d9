"""Utility functions and helpers."""

from datetime import datetime
from pathlib import Path
import random
from typing import Dict, List, Optional

import numpy as np

_SEED_STAGES = ("screening", "variogram", "blocking", "selection")


def set_random_seed(seed: int = 42) -> None:
    """Seed the global Python and NumPy generators.

    Pipeline stages draw from their own generators (see ``derive_seeds``); this
    only pins down third-party code that falls back to the global state.

    Args:
        seed: Random seed value

    Examples:
        >>> set_random_seed(42)
    """
    random.seed(seed)
    np.random.seed(seed)


def derive_seeds(seed: int, stages: tuple[str, ...] = _SEED_STAGES) -> Dict[str, int]:
    """Spawn one independent integer seed per pipeline stage.

    Args:
        seed: Top-level random seed of the run
        stages: Stage names to derive seeds for

    Returns:
        Mapping of stage name to a 32-bit seed

    Examples:
        >>> seeds = derive_seeds(42)
        >>> seeds["blocking"] == derive_seeds(42)["blocking"]
        True
    """
    children = np.random.SeedSequence(seed).spawn(len(stages))
    return {
        stage: int(child.generate_state(1, dtype=np.uint32)[0])
        for stage, child in zip(stages, children)
    }


def ensure_directory(path: Path) -> Path:
    """Create the parent directory of a prediction archive (or any directory) if missing.

    ``toc_predict`` calls this before writing quantile grids next to a new
    covariate grid.

    Args:
        path: Directory to create, including missing parents

    Returns:
        ``path`` unchanged, for chaining
    """
    path.mkdir(parents=True, exist_ok=True)
    return path


def format_duration(seconds: float) -> str:
    """Render a stage or run duration for log lines and the training summary.

    Args:
        seconds: Elapsed wall time

    Returns:
        Hours, minutes and seconds, omitting leading zero units

    Examples:
        >>> format_duration(3661.5)
        '1h 1m 1.5s'
        >>> format_duration(42.0)
        '42.0s'
    """
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)

    parts = []
    if hours >= 1:
        parts.append(f"{int(hours)}h")
    if minutes >= 1:
        parts.append(f"{int(minutes)}m")
    if secs > 0 or not parts:
        parts.append(f"{secs:.1f}s")
    return " ".join(parts)


def create_run_name(
    base_name: str = "toc",
    include_timestamp: bool = True,
    extra_tags: Optional[List[str]] = None,
) -> str:
    """Create a unique run name, e.g. ``toc_0-10cm_20240703_142030``."""
    parts = [base_name]
    if extra_tags:
        parts.extend(extra_tags)
    if include_timestamp:
        parts.append(datetime.now().strftime("%Y%m%d_%H%M%S"))
    return "_".join(parts)


def validate_file_exists(path: Path, description: str = "File") -> None:
    """Check a command-line input file (observation table, grid archive, settings).

    Args:
        path: Path given on the command line
        description: Name of the input used in the error message

    Raises:
        FileNotFoundError: Nothing exists at ``path``
        ValueError: ``path`` is a directory or another non-file object
    """
    if not path.exists():
        raise FileNotFoundError(f"{description} not found: {path}")
    if not path.is_file():
        raise ValueError(f"{description} is not a file: {path}")
