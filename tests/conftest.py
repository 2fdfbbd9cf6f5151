"""
Shared pytest fixtures for the tsnescope tests.

The datasets are small and seeded so every test is deterministic.
"""

from __future__ import annotations

import itertools

import numpy as np
import pandas as pd
import pytest

from tsnescope import TSNEConfig

SIX_POINTS = [(1.0, 2.0), (1.2, 2.1), (5.0, 6.0), (5.5, 5.8), (9.0, 1.0), (9.2, 1.3)]
BLOB_CENTERS = [(0.0, 0.0, 0.0), (10.0, 0.0, 0.0), (0.0, 10.0, 0.0)]


@pytest.fixture
def six_pairs_df() -> pd.DataFrame:
    """Six 2D points forming three well separated pairs."""
    return pd.DataFrame(
        {
            "entity_id": list("abcdef"),
            "x": [p[0] for p in SIX_POINTS],
            "y": [p[1] for p in SIX_POINTS],
        }
    )


@pytest.fixture
def blobs_df() -> pd.DataFrame:
    """Twelve 3D points in three blobs of four, with a non-numeric group column."""
    rng = np.random.default_rng(0)
    rows = []
    for group, center in enumerate(BLOB_CENTERS):
        points = np.asarray(center) + rng.normal(0.0, 0.5, size=(4, 3))
        for k, (x1, x2, x3) in enumerate(points):
            rows.append(
                {
                    "entity_id": f"p{4 * group + k}",
                    "group": f"g{group}",
                    "x1": x1,
                    "x2": x2,
                    "x3": x3,
                }
            )
    return pd.DataFrame(rows)


@pytest.fixture
def blobs_distance_table(blobs_df) -> pd.DataFrame:
    """One (entity1, entity2, distance) row per unordered pair of the blobs."""
    values = blobs_df[["x1", "x2", "x3"]].to_numpy()
    ids = blobs_df["entity_id"].tolist()
    rows = [
        {
            "entity1": ids[i],
            "entity2": ids[j],
            "distance": float(np.linalg.norm(values[i] - values[j])),
        }
        for i, j in itertools.combinations(range(len(ids)), 2)
    ]
    return pd.DataFrame(rows)


@pytest.fixture
def small_config() -> TSNEConfig:
    """Config suitable for the twelve point blobs."""
    return TSNEConfig(perplexity=3.0, seed=7, learning_rate=50.0)
