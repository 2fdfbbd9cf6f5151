from __future__ import annotations

"""
Embedding state for tsnescope.

This module owns the mutable part of an interactive t-SNE session:

- the current 2D coordinates Y
- the per-point velocity and adaptive gains
- the iteration counter
- per-point "frozen until" iteration markers used after a drag

A point i is frozen while iteration < frozen_until[i]; a drag sets the
marker, and the point becomes active again once the iteration counter
reaches it.

Main entry points:
- EmbeddingState.randomize(n, rng, scale)
- build_embedding_dataframe(entity_ids, Y)
"""

from dataclasses import dataclass
from typing import Iterable, Sequence

import logging
import numpy as np
import pandas as pd

from .config import COORDINATE_COLUMNS

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingState:
    """Coordinates and optimizer memory of one session."""

    Y: np.ndarray
    velocity: np.ndarray
    gains: np.ndarray
    iteration: int
    frozen_until: np.ndarray

    @classmethod
    def randomize(
        cls,
        n_entities: int,
        rng: np.random.Generator,
        scale: float = 1e-4,
    ) -> "EmbeddingState":
        """
        Draw a fresh layout from an isotropic Gaussian with std `scale`.

        Velocity starts at zero, gains at one, the iteration counter at zero
        and no point is frozen.
        """
        Y = rng.normal(loc=0.0, scale=scale, size=(n_entities, 2))
        logger.debug("Drew %d starting positions with scale %.3g", n_entities, scale)
        return cls(
            Y=Y,
            velocity=np.zeros((n_entities, 2)),
            gains=np.ones((n_entities, 2)),
            iteration=0,
            frozen_until=np.zeros(n_entities, dtype=np.int64),
        )

    @property
    def n_entities(self) -> int:
        return self.Y.shape[0]

    def frozen_mask(self) -> np.ndarray:
        """Boolean mask of points that ignore gradient updates this iteration."""
        return self.iteration < self.frozen_until

    def drag(self, index: int, position: Sequence[float], cooldown: int) -> None:
        """
        Move one point and freeze it for `cooldown` iterations.

        Only row `index` of Y and velocity is written.
        """
        self.Y[index] = position
        self.velocity[index] = 0.0
        self.frozen_until[index] = self.iteration + cooldown

    def commit(
        self,
        Y: np.ndarray,
        velocity: np.ndarray,
        gains: np.ndarray,
    ) -> None:
        """Swap in the buffers computed by a step and advance the counter."""
        self.Y = Y
        self.velocity = velocity
        self.gains = gains
        self.iteration += 1

    def is_finite(self) -> bool:
        return bool(np.isfinite(self.Y).all() and np.isfinite(self.velocity).all())


# ---------------------------------------------------------------------------
# Output frames
# ---------------------------------------------------------------------------


def build_embedding_dataframe(entity_ids: Iterable, Y: np.ndarray) -> pd.DataFrame:
    """
    Wrap coordinates in a DataFrame with columns entity_id, x and y.

    Parameters
    ----------
    entity_ids
        Ids in the row order of Y.
    Y
        Array of shape (n_entities, 2).
    """
    ids = list(entity_ids)

    if Y.ndim != 2 or Y.shape[1] != 2:
        raise ValueError(f"Expected coordinates of shape (n, 2), got {Y.shape}")
    if len(ids) != Y.shape[0]:
        raise ValueError(
            "Number of entity ids does not match number of rows in embedding "
            f"(len(ids)={len(ids)}, n_entities={Y.shape[0]})"
        )

    id_col, x_col, y_col = COORDINATE_COLUMNS
    df_embed = pd.DataFrame(
        {
            id_col: ids,
            x_col: Y[:, 0].copy(),
            y_col: Y[:, 1].copy(),
        }
    )

    return df_embed
