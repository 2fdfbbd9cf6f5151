from __future__ import annotations

"""
High dimensional affinities for tsnescope.

This module turns a dense distance matrix into the symmetric joint
probability matrix P that the optimizer fits.

For each entity i a Gaussian bandwidth sigma_i is found by binary search so
that the Shannon entropy of the conditional distribution p(j|i) equals
log(perplexity). The conditionals are then symmetrized:

    P_ij = (p(j|i) + p(i|j)) / (2 n)

so that P is symmetric, has a zero diagonal and sums to 1.

Main entry points:
- build_affinities(dist_matrix, perplexity, ...)
- check_perplexity(perplexity, n_entities)
"""

from dataclasses import dataclass
from typing import Tuple

import logging
import numpy as np

from .errors import InvalidPerplexity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Affinities:
    """
    Joint probabilities for one (distances, perplexity) pair.

    P is read only; a new Affinities object is built whenever the inputs
    or the perplexity change.
    """

    P: np.ndarray
    perplexity: float
    sigmas: np.ndarray
    # Rows whose entropy did not reach the tolerance within the step cap
    unconverged_rows: int = 0

    @property
    def n_entities(self) -> int:
        return self.P.shape[0]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def check_perplexity(perplexity: float, n_entities: int) -> None:
    """Raise InvalidPerplexity unless 1 < perplexity < n_entities / 3."""
    perplexity = float(perplexity)
    upper = n_entities / 3.0
    if not (np.isfinite(perplexity) and 1.0 < perplexity < upper):
        raise InvalidPerplexity(
            f"Perplexity must satisfy 1 < perplexity < n/3 = {upper:.4g} "
            f"for {n_entities} entities, got {perplexity}"
        )


# ---------------------------------------------------------------------------
# Bandwidth search
# ---------------------------------------------------------------------------


def _conditional_row(sq_distances: np.ndarray, sigma: float) -> Tuple[np.ndarray, float]:
    """
    Return p(.|i) over the other entities and its Shannon entropy.

    `sq_distances` excludes the entity itself. Exponents are shifted by the
    smallest squared distance, which cancels in the normalization.
    """
    beta = 1.0 / (2.0 * sigma * sigma)
    weights = np.exp(-(sq_distances - sq_distances.min()) * beta)
    p = weights / weights.sum()

    nonzero = p > 0
    entropy = float(-np.sum(p[nonzero] * np.log(p[nonzero])))
    return p, entropy


def _search_sigma(
    sq_distances: np.ndarray,
    target_entropy: float,
    sigma_bounds: Tuple[float, float],
    max_steps: int,
    tolerance: float,
) -> Tuple[np.ndarray, float, bool]:
    """
    Bisect sigma on a log scale until the entropy matches the target.

    Entropy grows monotonically with sigma, so a too high entropy moves
    the upper bound down and a too low one moves the lower bound up.
    """
    low, high = sigma_bounds
    sigma = float(np.sqrt(low * high))

    p, entropy = _conditional_row(sq_distances, sigma)
    for _ in range(max_steps):
        diff = entropy - target_entropy
        if abs(diff) < tolerance:
            return p, sigma, True

        if diff > 0:
            high = sigma
        else:
            low = sigma
        sigma = float(np.sqrt(low * high))
        p, entropy = _conditional_row(sq_distances, sigma)

    return p, sigma, abs(entropy - target_entropy) < tolerance


def conditional_probabilities(
    dist_matrix: np.ndarray,
    perplexity: float,
    sigma_bounds: Tuple[float, float] = (1e-6, 1e6),
    max_steps: int = 50,
    tolerance: float = 1e-5,
) -> Tuple[np.ndarray, np.ndarray, int]:
    """
    Compute the row conditional matrix p(j|i) for every entity.

    Returns
    -------
    (conditionals, sigmas, unconverged_rows)
        conditionals has shape (n, n), zero diagonal and rows summing to 1.
    """
    D = np.asarray(dist_matrix, dtype=float)
    n = D.shape[0]
    sq = D * D
    target_entropy = float(np.log(perplexity))

    conditionals = np.zeros((n, n))
    sigmas = np.zeros(n)
    unconverged = 0
    others = ~np.eye(n, dtype=bool)

    for i in range(n):
        p, sigma, converged = _search_sigma(
            sq[i, others[i]],
            target_entropy,
            sigma_bounds,
            max_steps,
            tolerance,
        )
        conditionals[i, others[i]] = p
        sigmas[i] = sigma
        if not converged:
            unconverged += 1

    return conditionals, sigmas, unconverged


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def build_affinities(
    dist_matrix: np.ndarray,
    perplexity: float,
    sigma_bounds: Tuple[float, float] = (1e-6, 1e6),
    max_steps: int = 50,
    tolerance: float = 1e-5,
) -> Affinities:
    """
    Build the symmetric joint probability matrix P from distances.

    Parameters
    ----------
    dist_matrix
        Dense symmetric (n, n) distance matrix with zero diagonal, as
        produced by the similarity module.
    perplexity
        Target effective number of neighbours, 1 < perplexity < n / 3.
    sigma_bounds, max_steps, tolerance
        Range, step cap and entropy tolerance of the bandwidth search.

    Returns
    -------
    Affinities
        Read only P together with the per-entity bandwidths.
    """
    n = np.asarray(dist_matrix).shape[0]
    check_perplexity(perplexity, n)

    logger.info(
        "Building affinities for %d entities with perplexity %.3g",
        n,
        perplexity,
    )

    conditionals, sigmas, unconverged = conditional_probabilities(
        dist_matrix,
        perplexity,
        sigma_bounds=sigma_bounds,
        max_steps=max_steps,
        tolerance=tolerance,
    )

    if unconverged:
        logger.warning(
            "Bandwidth search did not reach entropy tolerance %.1e for %d of %d entities",
            tolerance,
            unconverged,
            n,
        )

    P = (conditionals + conditionals.T) / (2.0 * n)
    np.fill_diagonal(P, 0.0)
    P.setflags(write=False)

    logger.debug("Affinity matrix sum %.12f, median sigma %.4g", P.sum(), np.median(sigmas))

    return Affinities(
        P=P,
        perplexity=float(perplexity),
        sigmas=sigmas,
        unconverged_rows=unconverged,
    )
