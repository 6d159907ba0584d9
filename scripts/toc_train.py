#!/usr/bin/env python3
"""Train the TOC model and write prediction and applicability grids.

Inputs:
    --observations  CSV with coordinates, TOC, sample depth and covariate values
    --grid          Covariate grid archive written by ``CovariateGrid.save_npz``
    --config        Optional YAML settings (defaults otherwise)

Output directory layout:
    model.joblib, predictions.npz, applicability.npz, validation_summary.json,
    selection_trace.csv, fold_metrics.csv, predictors.json, settings.yaml
"""

import argparse
from pathlib import Path
import sys
import time

import pandas as pd

sys.path.append("./")

from toc_mapping.config.settings import Settings
from toc_mapping.data.grid import CovariateGrid
from toc_mapping.data.observations import Observations
from toc_mapping.io import save_pipeline_results
from toc_mapping.pipeline import run_pipeline
from toc_mapping.utils.helpers import create_run_name, format_duration, validate_file_exists
from toc_mapping.utils.logger import setup_logger


def parse_arguments() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Fit a quantile regression forest for seafloor TOC and map it"
    )
    parser.add_argument(
        "--observations", type=Path, required=True, help="Observation table (CSV)"
    )
    parser.add_argument(
        "--grid", type=Path, required=True, help="Covariate grid archive (.npz)"
    )
    parser.add_argument("--config", type=Path, help="Settings file (YAML)")
    parser.add_argument(
        "--output-dir",
        type=Path,
        help="Directory for the run outputs (default: a timestamped run under paths.output_dir)",
    )
    parser.add_argument(
        "--overwrite", action="store_true", help="Replace an existing output directory"
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level",
    )
    return parser.parse_args()


def main() -> None:
    """Main training function."""
    args = parse_arguments()

    if args.config is not None:
        validate_file_exists(args.config, "Config file")
        settings = Settings.from_yaml(args.config)
    else:
        settings = Settings()

    output_dir = args.output_dir or settings.paths.output_dir / create_run_name(
        "toc", extra_tags=[settings.data.depth_label]
    )

    logger = setup_logger("toc_train", level=args.log_level, log_file=settings.paths.log_file)
    logger.info(f"Observations: {args.observations}")
    logger.info(f"Covariate grid: {args.grid}")
    logger.info(f"Output directory: {output_dir}")
    start_time = time.time()

    try:
        validate_file_exists(args.observations, "Observation table")
        validate_file_exists(args.grid, "Covariate grid")

        grid = CovariateGrid.load_npz(args.grid)
        data_cfg = settings.data
        table = pd.read_csv(args.observations)
        covariates = [c for c in grid.names if c in table.columns]
        observations = Observations.from_frame(
            table,
            response_column=data_cfg.response_column,
            x_column=data_cfg.x_column,
            y_column=data_cfg.y_column,
            covariate_columns=covariates,
            depth_column=data_cfg.depth_column,
            depth_interval=data_cfg.depth_interval_bounds if data_cfg.depth_column else None,
        )
        logger.info(
            f"{observations.n_observations} observations ({data_cfg.depth_label}), "
            f"{len(covariates)} candidate covariates"
        )

        result = run_pipeline(observations, grid, settings)
        save_pipeline_results(result, output_dir, grid=grid, overwrite=args.overwrite)

        summary = result.summary
        logger.info(f"Training completed in {format_duration(time.time() - start_time)}")
        print("\nTOC MODEL SUMMARY")
        print("=" * 20)
        print(f"Selected predictors: {', '.join(result.selected)}")
        print(f"mtry: {result.selection.mtry}")
        print(f"CV R2: {summary.r2:.3f}  RMSE: {summary.rmse:.3f}")
        print(f"In domain: {summary.percent_in_domain:.1f}%")
        print(f"Warnings: {len(summary.warnings)}")
        print("=" * 20)

    except Exception as e:
        logger.error(f"Training failed: {str(e)}", exc_info=True)
        raise


if __name__ == "__main__":
    main()
