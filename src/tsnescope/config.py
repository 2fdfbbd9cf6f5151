from __future__ import annotations

"""
Configuration and shared defaults for the tsnescope engine.

This module defines:

- Paths used by the command line entry point
- Default optimizer, bandwidth search and convergence parameters
- The TSNEConfig dataclass that is passed into a session

Most code in the package should read settings from a TSNEConfig instance
rather than hard coding constants.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

# Project root is two levels up from this file.
#   project_root/
#     src/
#       tsnescope/
#         config.py
ROOT_DIR: Path = Path(__file__).resolve().parents[2]
DEFAULT_OUTPUT_PATH: Path = ROOT_DIR / "tsne_coordinates.csv"


# ---------------------------------------------------------------------------
# Column names
# ---------------------------------------------------------------------------

DEFAULT_ID_COLUMN: str = "entity_id"

# Distance tables hold one row per entity pair
DEFAULT_DISTANCE_COLUMNS: Tuple[str, str, str] = ("entity1", "entity2", "distance")

# Column order of the coordinate frame handed to the rendering side
COORDINATE_COLUMNS: Tuple[str, str, str] = ("entity_id", "x", "y")


# ---------------------------------------------------------------------------
# Feature rescaling
# ---------------------------------------------------------------------------

RESCALING_METHODS: Tuple[str, ...] = (
    "none",
    "zscore",
    "zscore_capped",
    "quantile",
    "minmax",
)

# z-scores are clipped to +/- this value by "zscore_capped"
ZSCORE_CAP: float = 2.0


# ---------------------------------------------------------------------------
# Engine configuration
# ---------------------------------------------------------------------------

@dataclass
class TSNEConfig:
    """
    Top level configuration object for a t-SNE session.

    The defaults follow common t-SNE practice: an early exaggeration of 4
    for the first 100 iterations, momentum 0.5 switching to 0.8 at
    iteration 250, and a drag cooldown of 10 iterations.
    """

    # Core parameters
    perplexity: float = 30.0
    learning_rate: float = 200.0
    max_iterations: int = 5000
    convergence_threshold: float = 1e-4
    seed: Optional[int] = None

    # Early exaggeration
    exaggeration_factor: float = 4.0
    exaggeration_iterations: int = 100

    # Momentum schedule
    initial_momentum: float = 0.5
    final_momentum: float = 0.8
    momentum_switch_iteration: int = 250

    # Adaptive gains
    use_gains: bool = True
    gain_increase: float = 0.2
    gain_decrease: float = 0.8
    min_gain: float = 0.01

    # Interaction
    drag_cooldown: int = 10
    init_scale: float = 1e-4

    # Convergence monitor
    kl_window: int = 50
    min_gradient_norm: float = 1e-7
    movement_threshold: Optional[float] = None

    # Bandwidth search
    sigma_bounds: Tuple[float, float] = (1e-6, 1e6)
    binary_search_steps: int = 50
    entropy_tolerance: float = 1e-5

    # Distance resolution
    distance_tolerance: float = 1e-9
    complete_symmetric: bool = True

    # Feature handling
    feature_columns: Optional[Sequence[str]] = None
    rescaling: str = "none"

    def momentum(self, iteration: int) -> float:
        """Return the momentum used at the given iteration."""
        if iteration < self.momentum_switch_iteration:
            return self.initial_momentum
        return self.final_momentum

    def exaggerating(self, iteration: int) -> bool:
        """Return True while the scheduled early exaggeration window is open."""
        return iteration < self.exaggeration_iterations

    def validate(self) -> None:
        """
        Check the settings that do not depend on the dataset.

        Perplexity is checked against the number of entities when the
        affinities are built, so it is only required to be finite here.
        """
        if not self.learning_rate > 0:
            raise ValueError(f"learning_rate must be positive, got {self.learning_rate}")
        if self.max_iterations <= 0:
            raise ValueError(f"max_iterations must be positive, got {self.max_iterations}")
        if self.convergence_threshold < 0:
            raise ValueError("convergence_threshold must be non-negative")
        if self.exaggeration_factor <= 0:
            raise ValueError("exaggeration_factor must be positive")
        if self.exaggeration_iterations < 0:
            raise ValueError("exaggeration_iterations must be non-negative")
        if not (0.0 <= self.initial_momentum < 1.0 and 0.0 <= self.final_momentum < 1.0):
            raise ValueError("momentum values must lie in [0, 1)")
        if self.min_gain <= 0:
            raise ValueError("min_gain must be positive")
        if self.gain_increase < 0:
            raise ValueError(f"gain_increase must be non-negative, got {self.gain_increase}")
        if not 0 < self.gain_decrease <= 1:
            raise ValueError(f"gain_decrease must lie in (0, 1], got {self.gain_decrease}")
        if self.drag_cooldown < 0:
            raise ValueError("drag_cooldown must be non-negative")
        if self.init_scale <= 0:
            raise ValueError("init_scale must be positive")
        if self.kl_window < 2:
            raise ValueError("kl_window must be at least 2")

        low, high = self.sigma_bounds
        if not 0 < low < high:
            raise ValueError(f"sigma_bounds must satisfy 0 < low < high, got {self.sigma_bounds}")
        if self.binary_search_steps <= 0:
            raise ValueError("binary_search_steps must be positive")
        if not self.entropy_tolerance > 0:
            raise ValueError(f"entropy_tolerance must be positive, got {self.entropy_tolerance}")
        if self.distance_tolerance < 0:
            raise ValueError(
                f"distance_tolerance must be non-negative, got {self.distance_tolerance}"
            )

        if self.rescaling not in RESCALING_METHODS:
            raise ValueError(
                f"Unknown rescaling '{self.rescaling}', expected one of "
                + ", ".join(RESCALING_METHODS)
            )
