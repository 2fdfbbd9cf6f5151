from __future__ import annotations

"""
Command line interface that computes a t-SNE layout for a table.

This runs the full tsnescope pipeline (table loading, distance resolution,
affinities, optimization to a stop reason) and writes the resulting
entity_id, x, y coordinates as CSV.

Usage examples:

  tsnescope data/features.csv --id-column name
  tsnescope data/features.csv --features height weight --rescaling zscore
  tsnescope data/pairs.csv --distance-table --perplexity 5
  tsnescope data/features.csv --dry-run --log-level DEBUG

In dry run mode, the coordinates are written to standard output instead
of a file.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import (
    DEFAULT_DISTANCE_COLUMNS,
    DEFAULT_ID_COLUMN,
    DEFAULT_OUTPUT_PATH,
    RESCALING_METHODS,
    TSNEConfig,
)
from .data_io import load_distance_table, load_feature_table, write_coordinates
from .session import RunResult, TSNESession


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def parse_command_line_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command line arguments for the tsnescope command.

    Returns
    -------
    argparse.Namespace
        Input path, table mode, engine parameters and output options.
    """
    argument_parser = argparse.ArgumentParser(
        description="Compute a t-SNE layout for a feature or distance table."
    )

    argument_parser.add_argument("input_path", help="CSV or Excel table to embed.")

    argument_parser.add_argument(
        "--id-column",
        dest="id_column",
        default=DEFAULT_ID_COLUMN,
        help=f"Entity id column of a feature table. Defaults to {DEFAULT_ID_COLUMN}.",
    )
    argument_parser.add_argument(
        "--features",
        dest="features",
        nargs="+",
        default=None,
        help="Feature columns to use. Defaults to every numeric column.",
    )
    argument_parser.add_argument(
        "--rescaling",
        dest="rescaling",
        default="none",
        choices=list(RESCALING_METHODS),
        help="Per-feature rescaling applied before distances.",
    )
    argument_parser.add_argument(
        "--distance-table",
        dest="distance_table",
        action="store_true",
        help="Treat the input as (entity1, entity2, distance) rows.",
    )
    argument_parser.add_argument(
        "--distance-columns",
        dest="distance_columns",
        nargs=3,
        default=list(DEFAULT_DISTANCE_COLUMNS),
        metavar=("ENTITY1", "ENTITY2", "DISTANCE"),
        help="Column names of a distance table.",
    )

    argument_parser.add_argument("--perplexity", type=float, default=30.0)
    argument_parser.add_argument("--learning-rate", dest="learning_rate", type=float, default=200.0)
    argument_parser.add_argument("--max-iterations", dest="max_iterations", type=int, default=5000)
    argument_parser.add_argument(
        "--convergence-threshold",
        dest="convergence_threshold",
        type=float,
        default=1e-4,
    )
    argument_parser.add_argument("--seed", type=int, default=None)

    argument_parser.add_argument(
        "-o",
        "--output",
        dest="output_path",
        default=str(DEFAULT_OUTPUT_PATH),
        help=f"Where to write the coordinates CSV. Defaults to {DEFAULT_OUTPUT_PATH}",
    )
    argument_parser.add_argument(
        "--log-level",
        dest="log_level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity. Defaults to INFO.",
    )
    argument_parser.add_argument(
        "--dry-run",
        dest="dry_run",
        action="store_true",
        help="Write the coordinates to standard output instead of a file.",
    )

    return argument_parser.parse_args(argv)


# ---------------------------------------------------------------------------
# Main routine
# ---------------------------------------------------------------------------


def configure_logging(log_level_name: str) -> None:
    """
    Configure global logging for the command.

    Parameters
    ----------
    log_level_name
        One of "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL".
    """
    log_level = getattr(logging, log_level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format="[%(asctime)s] %(levelname)s in %(name)s: %(message)s",
    )


def build_session(arguments: argparse.Namespace) -> TSNESession:
    """Load the input table and create a session from the parsed arguments."""
    cfg = TSNEConfig(
        perplexity=arguments.perplexity,
        learning_rate=arguments.learning_rate,
        max_iterations=arguments.max_iterations,
        convergence_threshold=arguments.convergence_threshold,
        seed=arguments.seed,
        feature_columns=arguments.features,
        rescaling=arguments.rescaling,
    )

    input_path = Path(arguments.input_path)
    if arguments.distance_table:
        df = load_distance_table(input_path, arguments.distance_columns)
        return TSNESession.from_distance_table(df, arguments.distance_columns, cfg)

    df = load_feature_table(input_path, arguments.id_column)
    return TSNESession.from_features(df, arguments.id_column, cfg)


def write_output(session: TSNESession, output_path_string: str, dry_run: bool) -> None:
    """
    Write the session coordinates to the requested destination.

    Parameters
    ----------
    session
        Session whose current layout is written.
    output_path_string
        Path of the CSV file if dry_run is False.
    dry_run
        If True, the CSV is written to standard output instead of a file.
    """
    logger = logging.getLogger(__name__)
    df_coords = session.coordinates()

    if dry_run:
        logger.info("Dry run enabled; writing coordinates to standard output.")
        df_coords.to_csv(sys.stdout, index=False)
        return

    write_coordinates(df_coords, Path(output_path_string))


def main(argv: Optional[List[str]] = None) -> int:
    """
    Entrypoint for the tsnescope command.

    Returns
    -------
    int
        Process exit code. Zero indicates success.
    """
    arguments = parse_command_line_arguments(argv)
    configure_logging(arguments.log_level)

    logger = logging.getLogger(__name__)
    logger.debug("Command line arguments: %s", arguments)

    try:
        session = build_session(arguments)
        result: RunResult = session.run()
        status = session.status()
        logger.info(
            "Stopped (%s) at iteration %d with KL divergence %.4f",
            result.reason.value,
            status.iteration,
            status.kl_divergence,
        )
        write_output(session, arguments.output_path, arguments.dry_run)
    except Exception as exception:
        logger.exception("Failed to compute t-SNE layout: %s", exception)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
