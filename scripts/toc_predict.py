#!/usr/bin/env python3
"""Apply a saved TOC model to a covariate grid."""

import argparse
from pathlib import Path
import sys

sys.path.append("./")

from toc_mapping.data.grid import CovariateGrid
from toc_mapping.io import load_model, predict_grid, save_prediction_grids
from toc_mapping.utils.helpers import ensure_directory, validate_file_exists
from toc_mapping.utils.logger import setup_logger


def parse_arguments() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Predict TOC quantiles on a covariate grid")
    parser.add_argument(
        "--model",
        type=Path,
        required=True,
        help="Model file or training output directory",
    )
    parser.add_argument(
        "--grid", type=Path, required=True, help="Covariate grid archive (.npz)"
    )
    parser.add_argument("--output", type=Path, required=True, help="Prediction archive (.npz)")
    parser.add_argument(
        "--quantiles",
        type=float,
        nargs="+",
        default=[0.05, 0.5, 0.95],
        help="Quantile levels to predict (must include 0.5)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level",
    )
    return parser.parse_args()


def main() -> None:
    """Main prediction function."""
    args = parse_arguments()
    logger = setup_logger("toc_predict", level=args.log_level)

    try:
        validate_file_exists(args.grid, "Covariate grid")
        if 0.5 not in args.quantiles:
            raise ValueError("Quantiles must include 0.5 (median)")

        model = load_model(args.model)
        grid = CovariateGrid.load_npz(args.grid)
        predictions = predict_grid(model, grid, args.quantiles)

        ensure_directory(args.output.parent)
        save_prediction_grids(args.output, predictions, grid)
        logger.info(f"Predictions saved to {args.output}")

    except Exception as e:
        logger.error(f"Prediction failed: {str(e)}", exc_info=True)
        raise


if __name__ == "__main__":
    main()
