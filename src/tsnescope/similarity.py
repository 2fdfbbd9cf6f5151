from __future__ import annotations

"""
Distance resolution for tsnescope.

This module is responsible for constructing the dense pairwise distance
matrix that the affinity step consumes.

Responsibilities:
- Compute Euclidean distances between feature vectors using scikit-learn
- Turn a table of (entity1, entity2, distance) rows into a dense matrix,
  completing the symmetric half and averaging near-equal duplicates
- Validate any dense matrix: square, finite, non-negative, symmetric,
  zero diagonal

Main entry points:
- resolve_feature_distances(values)
- resolve_distance_table(df, columns, tolerance, complete_symmetric)
- resolve_distance_matrix(matrix, entity_ids, tolerance)
"""

from typing import List, Optional, Sequence, Tuple

import logging
import numpy as np
import pandas as pd
from sklearn.metrics import pairwise_distances

from .config import DEFAULT_DISTANCE_COLUMNS
from .errors import (
    IncompleteDistanceTable,
    InconsistentDistance,
    InsufficientData,
    NonFiniteDistance,
)

logger = logging.getLogger(__name__)

# Smallest number of entities an embedding is computed for
MIN_ENTITIES: int = 4


# ---------------------------------------------------------------------------
# Shared checks
# ---------------------------------------------------------------------------


def _check_entity_count(n: int) -> None:
    if n < MIN_ENTITIES:
        raise InsufficientData(
            f"At least {MIN_ENTITIES} entities are required, got {n}"
        )


def _exceeds_tolerance(a: np.ndarray, b: np.ndarray, tolerance: float) -> np.ndarray:
    """Elementwise test for |a - b| beyond a tolerance relative to max(1, |a|, |b|)."""
    scale = np.maximum(1.0, np.maximum(np.abs(a), np.abs(b)))
    return np.abs(a - b) > tolerance * scale


def validate_distance_matrix(dist_matrix: np.ndarray, tolerance: float = 1e-9) -> np.ndarray:
    """
    Check a dense distance matrix and return a symmetrized copy.

    Entries (i, j) and (j, i) that agree within `tolerance` are replaced by
    their mean. Larger disagreements, negative values and non-zero
    diagonal entries raise InconsistentDistance; NaN or infinite entries
    raise NonFiniteDistance.
    """
    D = np.array(dist_matrix, dtype=float)

    if D.ndim != 2 or D.shape[0] != D.shape[1]:
        raise ValueError(f"Distance matrix must be square, got shape {D.shape}")

    _check_entity_count(D.shape[0])

    if not np.isfinite(D).all():
        raise NonFiniteDistance(
            f"Distance matrix contains {int((~np.isfinite(D)).sum())} non-finite entries"
        )
    if (D < 0).any():
        raise InconsistentDistance("Distance matrix contains negative entries")

    diag = np.diag(D)
    if _exceeds_tolerance(diag, np.zeros_like(diag), tolerance).any():
        raise InconsistentDistance("Distance matrix has non-zero self distances")

    asym = _exceeds_tolerance(D, D.T, tolerance)
    if asym.any():
        i, j = np.argwhere(asym)[0]
        raise InconsistentDistance(
            f"Distance matrix is not symmetric: d({i},{j})={D[i, j]} but d({j},{i})={D[j, i]}"
        )

    D = 0.5 * (D + D.T)
    np.fill_diagonal(D, 0.0)

    return D


# ---------------------------------------------------------------------------
# Feature vectors
# ---------------------------------------------------------------------------


def resolve_feature_distances(values: np.ndarray) -> np.ndarray:
    """
    Compute the Euclidean distance matrix between feature vectors.

    Parameters
    ----------
    values
        2D array of shape (n_entities, n_features) with n_features >= 1.

    Returns
    -------
    np.ndarray
        Array of shape (n_entities, n_entities) with d(i, j) = ||x_i - x_j||.
    """
    X = np.asarray(values, dtype=float)
    if X.ndim != 2 or X.shape[1] < 1:
        raise ValueError(f"Feature matrix must be 2D with at least one column, got shape {X.shape}")

    n_samples, n_features = X.shape
    _check_entity_count(n_samples)

    if not np.isfinite(X).all():
        raise NonFiniteDistance("Feature matrix contains non-finite values")

    logger.info(
        "Computing Euclidean distances for %d entities with %d features",
        n_samples,
        n_features,
    )

    dist_matrix = pairwise_distances(X, metric="euclidean")

    # pairwise_distances can leave tiny asymmetries from floating point error
    dist_matrix = 0.5 * (dist_matrix + dist_matrix.T)
    np.fill_diagonal(dist_matrix, 0.0)

    if not np.isfinite(dist_matrix).all():
        raise NonFiniteDistance("Feature distances overflowed to non-finite values")

    return dist_matrix


# ---------------------------------------------------------------------------
# Distance tables
# ---------------------------------------------------------------------------


def resolve_distance_table(
    df: pd.DataFrame,
    columns: Sequence[str] = DEFAULT_DISTANCE_COLUMNS,
    tolerance: float = 1e-9,
    complete_symmetric: bool = True,
) -> Tuple[List, np.ndarray]:
    """
    Build a dense distance matrix from a table of entity pair distances.

    Entities are ordered by first appearance, reading each row's first
    then second entity. With `complete_symmetric=True` a single row per
    unordered pair is enough; otherwise both (a, b) and (b, a) must be
    present. All values supplied for one unordered pair must agree within
    `tolerance` and are averaged.

    Returns
    -------
    (entity_ids, dist_matrix)
    """
    col_a, col_b, col_d = columns
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise ValueError(f"Distance table is missing columns: {', '.join(missing)}")

    distances = pd.to_numeric(df[col_d], errors="coerce").to_numpy(dtype=float)
    if not np.isfinite(distances).all():
        raise NonFiniteDistance(
            f"Distance table has {int((~np.isfinite(distances)).sum())} missing or non-finite distances"
        )
    if (distances < 0).any():
        raise InconsistentDistance("Distance table contains negative distances")

    firsts = df[col_a].to_numpy()
    seconds = df[col_b].to_numpy()
    entity_ids = list(pd.unique(np.column_stack([firsts, seconds]).ravel()))
    n = len(entity_ids)
    _check_entity_count(n)

    index_of = {entity: k for k, entity in enumerate(entity_ids)}
    rows = np.fromiter((index_of[e] for e in firsts), dtype=int, count=len(firsts))
    cols = np.fromiter((index_of[e] for e in seconds), dtype=int, count=len(seconds))

    self_pairs = rows == cols
    if _exceeds_tolerance(distances[self_pairs], np.zeros(int(self_pairs.sum())), tolerance).any():
        raise InconsistentDistance("Distance table has non-zero self distances")

    rows, cols, distances = rows[~self_pairs], cols[~self_pairs], distances[~self_pairs]

    # Directed accumulators, then fold both directions together
    sums = np.zeros((n, n))
    counts = np.zeros((n, n), dtype=int)
    lows = np.full((n, n), np.inf)
    highs = np.full((n, n), -np.inf)
    np.add.at(sums, (rows, cols), distances)
    np.add.at(counts, (rows, cols), 1)
    np.minimum.at(lows, (rows, cols), distances)
    np.maximum.at(highs, (rows, cols), distances)

    pair_counts = counts + counts.T
    pair_lows = np.minimum(lows, lows.T)
    pair_highs = np.maximum(highs, highs.T)

    off_diagonal = ~np.eye(n, dtype=bool)
    if complete_symmetric:
        covered = pair_counts > 0
    else:
        covered = (counts > 0) & (counts.T > 0)

    uncovered = off_diagonal & ~covered
    if uncovered.any():
        i, j = np.argwhere(uncovered)[0]
        n_missing = int(uncovered.sum())
        if complete_symmetric:
            n_missing //= 2
        raise IncompleteDistanceTable(
            f"Distance table is missing {n_missing} entity pairs, "
            f"e.g. ({entity_ids[i]!r}, {entity_ids[j]!r})"
        )

    conflicts = off_diagonal & _exceeds_tolerance(pair_highs, pair_lows, tolerance)
    if conflicts.any():
        i, j = np.argwhere(conflicts)[0]
        raise InconsistentDistance(
            f"Conflicting distances for pair ({entity_ids[i]!r}, {entity_ids[j]!r}): "
            f"{pair_lows[i, j]} vs {pair_highs[i, j]}"
        )

    dist_matrix = np.zeros((n, n))
    dist_matrix[off_diagonal] = (sums + sums.T)[off_diagonal] / pair_counts[off_diagonal]

    logger.info(
        "Resolved distance table with %d rows into a %d x %d matrix",
        len(df),
        n,
        n,
    )

    return entity_ids, dist_matrix


def resolve_distance_matrix(
    matrix,
    entity_ids: Optional[Sequence] = None,
    tolerance: float = 1e-9,
) -> Tuple[List, np.ndarray]:
    """
    Validate a dense distance matrix given as an array or DataFrame.

    When `matrix` is a DataFrame and `entity_ids` is None, the index is
    used as the entity ids and the columns must match it. For arrays the
    ids default to 0..n-1.
    """
    if isinstance(matrix, pd.DataFrame):
        if entity_ids is None:
            if list(matrix.index) != list(matrix.columns):
                raise ValueError("Distance DataFrame index and columns must list the same entities")
            entity_ids = list(matrix.index)
        values = matrix.to_numpy(dtype=float)
    else:
        values = np.asarray(matrix, dtype=float)

    D = validate_distance_matrix(values, tolerance)

    if entity_ids is None:
        entity_ids = list(range(D.shape[0]))
    entity_ids = list(entity_ids)
    if len(entity_ids) != D.shape[0]:
        raise ValueError(
            f"Got {len(entity_ids)} entity ids for a {D.shape[0]} x {D.shape[0]} distance matrix"
        )

    logger.info("Validated dense distance matrix for %d entities", D.shape[0])

    return entity_ids, D
