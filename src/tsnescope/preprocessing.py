from __future__ import annotations

"""
Preprocessing utilities for feature tables.

This module is responsible for:

- Selecting the subset of columns used as features
- Converting feature columns to numeric values
- Rejecting missing or non-finite feature values
- Rescaling each feature before distances are computed

The main public entry point is `build_feature_matrix`, which takes a feature
table and returns the entity ids together with a numeric matrix of rescaled
feature values.
"""

from typing import List, Optional, Sequence, Tuple

import logging
import numpy as np
import pandas as pd
from sklearn.preprocessing import MinMaxScaler, StandardScaler

from .config import RESCALING_METHODS, ZSCORE_CAP
from .errors import InsufficientData, NonFiniteDistance

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Column selection and basic cleaning
# ---------------------------------------------------------------------------


def get_feature_columns(
    df: pd.DataFrame,
    id_column: str,
    feature_columns: Optional[Sequence[str]] = None,
) -> List[str]:
    """
    Return the ordered list of feature columns to use for distances.

    When `feature_columns` is None every numeric column except the id
    column is used.
    """
    if feature_columns is None:
        cols = [
            c for c in df.select_dtypes(include="number").columns
            if c != id_column
        ]
    else:
        cols = list(feature_columns)
        missing = [c for c in cols if c not in df.columns]
        if missing:
            raise ValueError(
                f"Feature columns not found in table: {', '.join(map(str, missing))}"
            )
        if id_column in cols:
            raise ValueError(f"Id column '{id_column}' cannot be used as a feature")

    if not cols:
        raise ValueError("No feature columns selected for distance calculation")

    logger.debug("Using feature columns: %s", ", ".join(map(str, cols)))
    return cols


def coerce_features_to_numeric(
    df: pd.DataFrame,
    feature_columns: List[str],
) -> pd.DataFrame:
    """
    Convert feature columns to numeric dtype.

    Values that cannot be parsed become NaN and are rejected later by
    `check_finite_features`.
    """
    df = df.copy()

    for col in feature_columns:
        before_invalid = df[col].isna().sum()
        df[col] = pd.to_numeric(df[col], errors="coerce")
        after_invalid = df[col].isna().sum()

        if after_invalid > before_invalid:
            logger.warning(
                "Column '%s': %d non-numeric values could not be parsed",
                col,
                after_invalid - before_invalid,
            )

    return df


def drop_duplicate_entities(df: pd.DataFrame, id_column: str) -> pd.DataFrame:
    """Keep the first row for every entity id."""
    duplicated = df[id_column].duplicated(keep="first")
    dropped = int(duplicated.sum())

    if dropped > 0:
        logger.warning(
            "Dropping %d rows with duplicate ids in column '%s'; keeping first occurrence",
            dropped,
            id_column,
        )

    return df.loc[~duplicated]


def check_finite_features(values: np.ndarray, feature_columns: List[str]) -> None:
    """Raise NonFiniteDistance if any feature value is NaN or infinite."""
    bad = ~np.isfinite(values)
    if bad.any():
        bad_cols = [feature_columns[j] for j in np.flatnonzero(bad.any(axis=0))]
        raise NonFiniteDistance(
            f"{int(bad.sum())} missing or non-finite feature values in columns: "
            + ", ".join(map(str, bad_cols))
        )


# ---------------------------------------------------------------------------
# Rescaling
# ---------------------------------------------------------------------------


def _quantile_scale(values: np.ndarray) -> np.ndarray:
    """
    Map every value to (rank of its first occurrence) / (n - 1).

    The minimum maps to 0, the maximum of distinct values to at most 1,
    and ties share the lowest rank.
    """
    n = values.shape[0]
    if n <= 1:
        return np.full_like(values, 0.5, dtype=float)

    ranks = pd.DataFrame(values).rank(method="min", axis=0).to_numpy() - 1.0
    return ranks / (n - 1)


def rescale_features(values: np.ndarray, method: str = "none") -> np.ndarray:
    """
    Rescale each feature column of `values` with the named method.

    Methods:
    - "none"           values are returned unchanged
    - "zscore"         (x - mean) / std using the population std;
                       constant columns are only centered
    - "zscore_capped"  z-score clipped to [-ZSCORE_CAP, ZSCORE_CAP]
    - "quantile"       min rank divided by n - 1
    - "minmax"         MinMax scaling to [0, 1]
    """
    if method not in RESCALING_METHODS:
        raise ValueError(f"Unknown rescaling method '{method}'")

    values = np.asarray(values, dtype=float)

    if method == "none":
        return values.copy()
    if method in {"zscore", "zscore_capped"}:
        scaled = StandardScaler().fit_transform(values)
        if method == "zscore_capped":
            scaled = np.clip(scaled, -ZSCORE_CAP, ZSCORE_CAP)
        return scaled
    if method == "quantile":
        return _quantile_scale(values)

    return MinMaxScaler().fit_transform(values)


# ---------------------------------------------------------------------------
# High level entry point
# ---------------------------------------------------------------------------


def build_feature_matrix(
    df: pd.DataFrame,
    id_column: str,
    feature_columns: Optional[Sequence[str]] = None,
    rescaling: str = "none",
) -> Tuple[List, np.ndarray, List[str]]:
    """
    Build the rescaled feature matrix used for distance calculations.

    This function:

    1. Selects the feature columns
    2. Drops duplicate entity rows
    3. Coerces the features to numeric and rejects non-finite values
    4. Rescales each feature

    Returns
    -------
    (entity_ids, values, feature_columns)
        entity_ids lists the ids in row order, values has shape
        (n_entities, n_features) and feature_columns is the ordered list
        of columns used.
    """
    if id_column not in df.columns:
        raise ValueError(f"Id column '{id_column}' not found in feature table")

    cols = get_feature_columns(df, id_column, feature_columns)
    df_unique = drop_duplicate_entities(df, id_column)

    if len(df_unique) < 4:
        raise InsufficientData(
            f"At least 4 entities are required, got {len(df_unique)}"
        )

    df_numeric = coerce_features_to_numeric(df_unique, cols)
    values = df_numeric[cols].to_numpy(dtype=float)
    check_finite_features(values, cols)

    scaled = rescale_features(values, rescaling)

    logger.info(
        "Built feature matrix for %d entities with %d features (rescaling=%s)",
        scaled.shape[0],
        scaled.shape[1],
        rescaling,
    )

    return df_unique[id_column].tolist(), scaled, cols
