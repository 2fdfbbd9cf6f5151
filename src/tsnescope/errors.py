"""
Exception types raised by tsnescope.

Input problems are detected while distances and affinities are prepared,
before any optimizer state exists, and all derive from TSNEInputError (a
ValueError). NonFiniteEmbedding is produced during a step and is reported on
the step result instead of being raised; randomize recovers from it.
"""


class TSNEError(Exception):
    """Base class for every tsnescope error."""


class TSNEInputError(TSNEError, ValueError):
    """The supplied data or parameters cannot be embedded."""


class InsufficientData(TSNEInputError):
    """Fewer entities than the engine needs."""


class InvalidPerplexity(TSNEInputError):
    """Perplexity outside the open interval (1, n / 3)."""


class IncompleteDistanceTable(TSNEInputError):
    """A distance table does not cover every entity pair."""


class InconsistentDistance(TSNEInputError):
    """Conflicting, negative or non-zero self distances."""


class NonFiniteDistance(TSNEInputError):
    """NaN or infinite values in feature vectors or distances."""


class NonFiniteEmbedding(TSNEError, ArithmeticError):
    """An optimizer step produced non-finite coordinates or gradients."""

    def __init__(self, iteration: int, message: str = ""):
        self.iteration = iteration
        super().__init__(message or f"Non-finite embedding at iteration {iteration}")
