from __future__ import annotations

"""
Data loading utilities for tsnescope.

This module is responsible for reading the tables that feed the engine
from disk and returning pandas DataFrames the rest of the package can
consume.

Responsibilities:
- Load a table from CSV or Excel based on the file extension
- Check that a feature table carries its entity id column
- Check that a distance table carries its pair and distance columns
- Write embedding coordinates back to CSV

Call `load_feature_table(path, id_column)` or
`load_distance_table(path, columns)` as the main entry points.
"""

from pathlib import Path
from typing import Sequence

import logging
import pandas as pd

from .config import DEFAULT_DISTANCE_COLUMNS, DEFAULT_ID_COLUMN

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Low level loaders
# ---------------------------------------------------------------------------


def load_table(path: Path) -> pd.DataFrame:
    """
    Load a table from an Excel or CSV file based on its extension.

    Supported formats:
      - .xlsx / .xls via pandas.read_excel
      - .csv via pandas.read_csv

    Raises FileNotFoundError if the file does not exist, and ValueError for
    unsupported suffixes.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")

    suffix = path.suffix.lower()

    if suffix in {".xlsx", ".xls"}:
        logger.info("Loading Excel table from %s", path)
        return pd.read_excel(path)
    if suffix == ".csv":
        logger.info("Loading CSV table from %s", path)
        return pd.read_csv(path)

    raise ValueError(f"Unsupported data file extension '{suffix}' for {path}")


def _require_columns(df: pd.DataFrame, columns: Sequence[str], what: str) -> None:
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise ValueError(
            f"{what} is missing required columns: {', '.join(missing)}"
        )


# ---------------------------------------------------------------------------
# Table specific loaders
# ---------------------------------------------------------------------------


def load_feature_table(path: Path, id_column: str = DEFAULT_ID_COLUMN) -> pd.DataFrame:
    """
    Load a feature table with one row per entity.

    The table must contain `id_column`; every other numeric column is a
    candidate feature.
    """
    df = load_table(path)
    _require_columns(df, [id_column], "Feature table")

    logger.info(
        "Loaded feature table with %d rows and %d columns from %s",
        len(df),
        df.shape[1],
        path,
    )

    return df


def load_distance_table(
    path: Path,
    columns: Sequence[str] = DEFAULT_DISTANCE_COLUMNS,
) -> pd.DataFrame:
    """
    Load a table of (entity1, entity2, distance) rows.

    `columns` names the two entity columns and the distance column, in
    that order.
    """
    df = load_table(path)
    _require_columns(df, columns, "Distance table")

    logger.info("Loaded distance table with %d pair rows from %s", len(df), path)

    return df


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


def write_coordinates(df_coords: pd.DataFrame, path: Path) -> Path:
    """Write an entity_id/x/y frame to CSV and return the resolved path."""
    output_path = Path(path).resolve()
    output_path.parent.mkdir(parents=True, exist_ok=True)

    df_coords.to_csv(output_path, index=False)

    logger.info("Wrote %d coordinates to %s", len(df_coords), output_path)

    return output_path
