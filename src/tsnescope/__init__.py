"""
tsnescope package.

This package contains the interactive t-SNE engine behind the tsnescope
scatter view. It is organized into small modules for:

- loading feature and distance tables (data_io)
- feature selection and rescaling (preprocessing)
- resolving dense pairwise distances (similarity)
- perplexity matched joint probabilities (affinity)
- the mutable 2D layout (embedding)
- gradient descent on the KL objective (optimizer)
- stop criteria for runs (convergence)
- the command driven interactive session (session)

The main public entry point is `TSNESession`, built from a feature table,
a distance table or a dense distance matrix.
"""

from .config import TSNEConfig
from .convergence import StopReason
from .errors import (
    IncompleteDistanceTable,
    InconsistentDistance,
    InsufficientData,
    InvalidPerplexity,
    NonFiniteDistance,
    NonFiniteEmbedding,
    TSNEError,
    TSNEInputError,
)
from .session import RunResult, SessionStatus, TSNESession

__all__ = [
    "TSNEConfig",
    "TSNESession",
    "RunResult",
    "SessionStatus",
    "StopReason",
    "TSNEError",
    "TSNEInputError",
    "InsufficientData",
    "InvalidPerplexity",
    "IncompleteDistanceTable",
    "InconsistentDistance",
    "NonFiniteDistance",
    "NonFiniteEmbedding",
]
