"""Utilities module."""

from .helpers import (
    create_run_name,
    derive_seeds,
    ensure_directory,
    format_duration,
    set_random_seed,
    validate_file_exists,
)
from .logger import get_logger, setup_logger

__all__ = [
    "create_run_name",
    "derive_seeds",
    "ensure_directory",
    "format_duration",
    "set_random_seed",
    "validate_file_exists",
    "get_logger",
    "setup_logger",
]
