from __future__ import annotations

"""
Convergence monitoring for tsnescope runs.

The monitor keeps a bounded ring buffer of recent KL divergences and
decides, after every step, whether a run should stop. Stop reasons are
reported as StopReason values; a non-finite step is reported rather than
raised.
"""

from collections import deque
from enum import Enum
from typing import Deque, Optional

import logging

from .config import TSNEConfig
from .optimizer import StepResult

logger = logging.getLogger(__name__)


class StopReason(str, Enum):
    """Why a run ended."""

    CONVERGED = "converged"
    GRADIENT = "gradient_norm"
    MOVEMENT = "movement"
    MAX_ITERATIONS = "max_iterations"
    NON_FINITE = "non_finite"
    STOPPED = "stopped"


class ConvergenceMonitor:
    """
    Track KL divergence history and detect convergence or divergence.

    The KL, gradient and movement criteria only apply once the early
    exaggeration window has closed; the KL criterion additionally waits
    until the buffer holds `kl_window` values.
    """

    def __init__(self, cfg: TSNEConfig):
        self.cfg = cfg
        self.history: Deque[float] = deque(maxlen=cfg.kl_window)
        self.last_result: Optional[StepResult] = None
        self.diverged = False

    def reset(self) -> None:
        self.history = deque(maxlen=self.cfg.kl_window)
        self.last_result = None
        self.diverged = False

    def relative_decrease(self) -> Optional[float]:
        """
        Relative KL decrease between the oldest and newest buffered value,
        or None while the buffer is not full.
        """
        if len(self.history) < self.history.maxlen:
            return None
        oldest, newest = self.history[0], self.history[-1]
        return (oldest - newest) / max(abs(oldest), 1e-12)

    def record(self, result: StepResult) -> Optional[StopReason]:
        """
        Add a step result and return a stop reason, or None to keep going.

        `max_iterations` is not checked here; the session applies its own
        cap so that a run can stop at any requested iteration.
        """
        self.last_result = result

        if not result.ok:
            self.diverged = True
            return StopReason.NON_FINITE

        # Only post-exaggeration values are comparable with each other
        if result.exaggerated or self.cfg.exaggerating(result.iteration):
            self.history.clear()
            return None

        self.history.append(result.kl_divergence)

        if result.gradient_norm < self.cfg.min_gradient_norm:
            logger.info(
                "Gradient norm %.3e below %.1e at iteration %d",
                result.gradient_norm,
                self.cfg.min_gradient_norm,
                result.iteration,
            )
            return StopReason.GRADIENT

        if (
            self.cfg.movement_threshold is not None
            and result.movement < self.cfg.movement_threshold
        ):
            logger.info(
                "Movement %.3e below %.3g at iteration %d",
                result.movement,
                self.cfg.movement_threshold,
                result.iteration,
            )
            return StopReason.MOVEMENT

        decrease = self.relative_decrease()
        if decrease is not None and decrease < self.cfg.convergence_threshold:
            logger.info(
                "KL divergence changed by %.3e (relative) over the last %d iterations",
                decrease,
                len(self.history),
            )
            return StopReason.CONVERGED

        return None
