from __future__ import annotations

"""
Gradient descent on the t-SNE objective.

One call to `optimizer_step` performs a single iteration:

1. Q_ij = (1 + ||y_i - y_j||^2)^-1 / Z with Q_ii = 0 (Student-t kernel)
2. g_i = 4 sum_j (a P_ij - Q_ij) (1 + ||y_i - y_j||^2)^-1 (y_i - y_j), where
   a is the exaggeration factor inside the early window and 1 otherwise
3. per coordinate gains (delta-bar-delta), when enabled
4. v_i <- momentum v_i - learning_rate * gain_i * g_i
5. frozen points keep their position and only decay their velocity
6. y_i <- y_i + v_i

New coordinates are computed into fresh buffers and only committed to the
EmbeddingState when every value is finite, so a failed step leaves the
state exactly as it was.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

import logging
import numpy as np

from .config import TSNEConfig
from .embedding import EmbeddingState
from .errors import NonFiniteEmbedding

logger = logging.getLogger(__name__)

MACHINE_EPSILON: float = float(np.finfo(np.double).eps)


@dataclass(frozen=True)
class StepResult:
    """What one optimizer iteration reports to the convergence monitor."""

    iteration: int
    kl_divergence: float
    gradient_norm: float
    movement: float
    exaggerated: bool
    error: Optional[NonFiniteEmbedding] = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# Objective
# ---------------------------------------------------------------------------


def student_t_kernel(Y: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Return the unnormalized kernel (1 + ||y_i - y_j||^2)^-1 and the
    coordinate differences y_i - y_j.

    The diagonal of the kernel is zero.
    """
    diff = Y[:, np.newaxis, :] - Y[np.newaxis, :, :]
    sq_dist = np.einsum("ijk,ijk->ij", diff, diff)
    kernel = 1.0 / (1.0 + sq_dist)
    np.fill_diagonal(kernel, 0.0)
    return kernel, diff


def low_dimensional_affinities(Y: np.ndarray) -> np.ndarray:
    """Return Q for coordinates Y; Q sums to 1 with a zero diagonal."""
    kernel, _ = student_t_kernel(Y)
    return kernel / kernel.sum()


def kl_divergence(P: np.ndarray, Q: np.ndarray) -> float:
    """KL(P || Q) with 0 log 0 taken as 0."""
    mask = P > 0
    q = np.maximum(Q[mask], MACHINE_EPSILON)
    return float(np.sum(P[mask] * np.log(P[mask] / q)))


def embedding_kl_divergence(P: np.ndarray, Y: np.ndarray) -> float:
    """KL divergence of the layout Y against P; NaN for an overflowing layout."""
    with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
        return kl_divergence(P, low_dimensional_affinities(Y))


def kl_gradient(
    P: np.ndarray,
    Y: np.ndarray,
    exaggeration: float = 1.0,
) -> Tuple[np.ndarray, float]:
    """
    Compute the gradient of KL(P || Q) with respect to Y.

    P is multiplied by `exaggeration` inside the computation only. The
    returned KL divergence always uses the un-exaggerated P and the Q of
    the input coordinates.

    Returns
    -------
    (gradient, kl)
        gradient has the shape of Y.
    """
    kernel, diff = student_t_kernel(Y)
    Q = kernel / kernel.sum()

    PQ = (exaggeration * P - Q) * kernel
    gradient = 4.0 * np.einsum("ij,ijk->ik", PQ, diff)

    return gradient, kl_divergence(P, Q)


# ---------------------------------------------------------------------------
# Update
# ---------------------------------------------------------------------------


def _update_gains(
    gains: np.ndarray,
    gradient: np.ndarray,
    velocity: np.ndarray,
    cfg: TSNEConfig,
) -> np.ndarray:
    """
    Shrink a gain when the gradient keeps the sign of the velocity (the
    last move overshot) and grow it otherwise.
    """
    same_sign = np.sign(gradient) == np.sign(velocity)
    new_gains = np.where(same_sign, gains * cfg.gain_decrease, gains + cfg.gain_increase)
    return np.maximum(new_gains, cfg.min_gain)


def optimizer_step(
    state: EmbeddingState,
    P: np.ndarray,
    cfg: TSNEConfig,
    exaggerate: Optional[bool] = None,
) -> StepResult:
    """
    Run one gradient descent iteration on `state`.

    Parameters
    ----------
    state
        Embedding state, updated in place when the step succeeds.
    P
        Joint probabilities from the affinity step. Never modified.
    cfg
        Learning rate, momentum schedule, gains and exaggeration settings.
    exaggerate
        None follows the configured early exaggeration window, True and
        False force an exaggerated or a plain step.

    Returns
    -------
    StepResult
        KL divergence and gradient norm at the start of the step, total
        movement of the step, and a NonFiniteEmbedding error when the step
        was rejected.
    """
    iteration = state.iteration
    if exaggerate is None:
        exaggerate = cfg.exaggerating(iteration)
    factor = cfg.exaggeration_factor if exaggerate else 1.0

    # Overflow is detected by the finiteness check below
    with np.errstate(over="ignore", invalid="ignore", divide="ignore"):
        gradient, kl = kl_gradient(P, state.Y, exaggeration=factor)
        gradient_norm = float(np.linalg.norm(gradient))

    momentum = cfg.momentum(iteration)
    frozen = state.frozen_mask()
    active = ~frozen

    gains = state.gains.copy()
    if cfg.use_gains:
        gains[active] = _update_gains(
            state.gains[active], gradient[active], state.velocity[active], cfg
        )

    with np.errstate(over="ignore", invalid="ignore"):
        velocity = momentum * state.velocity
        velocity[active] -= cfg.learning_rate * gains[active] * gradient[active]

        Y = state.Y.copy()
        Y[active] += velocity[active]

        movement = float(np.linalg.norm(velocity[active], axis=1).sum())

    if not (
        np.isfinite(gradient).all()
        and np.isfinite(Y).all()
        and np.isfinite(velocity).all()
    ):
        error = NonFiniteEmbedding(iteration)
        logger.warning(
            "Rejected step at iteration %d: non-finite coordinates or gradient; "
            "randomize or lower the learning rate",
            iteration,
        )
        return StepResult(
            iteration=iteration,
            kl_divergence=kl,
            gradient_norm=gradient_norm,
            movement=movement,
            exaggerated=exaggerate,
            error=error,
        )

    state.commit(Y, velocity, gains)

    logger.debug(
        "Iteration %d: kl=%.6f grad_norm=%.3e movement=%.3e frozen=%d%s",
        iteration,
        kl,
        gradient_norm,
        movement,
        int(frozen.sum()),
        " (exaggerated)" if exaggerate else "",
    )

    return StepResult(
        iteration=state.iteration,
        kl_divergence=kl,
        gradient_norm=gradient_norm,
        movement=movement,
        exaggerated=exaggerate,
    )
