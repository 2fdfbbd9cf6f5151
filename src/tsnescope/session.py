from __future__ import annotations

"""
Interactive t-SNE sessions.

A TSNESession ties the pipeline together for one chart instance:

1. Resolve distances (feature table, distance table or dense matrix)
2. Build the affinity matrix P for the configured perplexity
3. Randomize an EmbeddingState
4. Apply external commands and optimizer steps one at a time

Every external mutation (randomize, stop, drag, recolor, perplexity,
learning rate, feature selection) is expressed as a command and goes
through `submit`. Outside a run a command is applied immediately. While a
run is in progress it is queued and applied at the next step boundary, so
no command ever observes or produces a half updated layout.

Main public entry points:
    TSNESession.from_features(df, id_column, cfg)
    TSNESession.from_distance_table(df, columns, cfg)
    TSNESession.from_distance_matrix(matrix, entity_ids, cfg)
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, replace
from typing import Any, Callable, Deque, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .affinity import Affinities, build_affinities, check_perplexity
from .config import DEFAULT_DISTANCE_COLUMNS, DEFAULT_ID_COLUMN, TSNEConfig
from .convergence import ConvergenceMonitor, StopReason
from .embedding import EmbeddingState, build_embedding_dataframe
from .optimizer import StepResult, embedding_kl_divergence, optimizer_step
from .preprocessing import build_feature_matrix
from .similarity import (
    resolve_distance_matrix,
    resolve_distance_table,
    resolve_feature_distances,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Randomize:
    seed: Optional[int] = None


@dataclass(frozen=True)
class Stop:
    pass


@dataclass(frozen=True)
class Drag:
    index: int
    position: Tuple[float, float]


@dataclass(frozen=True)
class Recolor:
    color_by: Optional[str]


@dataclass(frozen=True)
class SetPerplexity:
    perplexity: float


@dataclass(frozen=True)
class SetLearningRate:
    learning_rate: float


@dataclass(frozen=True)
class SelectFeatures:
    feature_columns: Tuple[str, ...]
    rescaling: str
    dist_matrix: np.ndarray


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RunResult:
    """Outcome of one `run` call."""

    reason: StopReason
    steps: int
    last_step: Optional[StepResult]


@dataclass(frozen=True)
class SessionStatus:
    """Values the rendering side displays next to the plot."""

    iteration: int
    kl_divergence: float
    gradient_norm: Optional[float]
    movement: Optional[float]
    exaggerating: bool
    running: bool
    stop_reason: Optional[StopReason]
    perplexity: float
    learning_rate: float


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class TSNESession:
    """
    One interactive optimization session.

    Parameters
    ----------
    entity_ids
        Ids in the row order of `dist_matrix`.
    dist_matrix
        Dense, validated (n, n) distance matrix.
    cfg
        TSNEConfig; the session keeps its own copy.
    feature_table
        Optional (DataFrame, id_column) pair; required for `select_features`.
    """

    def __init__(
        self,
        entity_ids: Sequence,
        dist_matrix: np.ndarray,
        cfg: Optional[TSNEConfig] = None,
        feature_table: Optional[Tuple[pd.DataFrame, str]] = None,
    ):
        self.config = replace(cfg) if cfg is not None else TSNEConfig()
        self.config.validate()

        self.entity_ids: List = list(entity_ids)
        self._index = {entity: i for i, entity in enumerate(self.entity_ids)}
        if len(self._index) != len(self.entity_ids):
            raise ValueError("Entity ids must be unique")
        if dist_matrix.shape != (len(self.entity_ids), len(self.entity_ids)):
            raise ValueError(
                f"Distance matrix shape {dist_matrix.shape} does not match "
                f"{len(self.entity_ids)} entity ids"
            )

        self._distances = dist_matrix
        self._feature_table = feature_table

        # Raises the input errors before any optimizer state exists
        self._affinities = self._build_affinities(self.config.perplexity)

        self._lock = threading.RLock()
        self._pending: Deque[Any] = deque()
        self._running = False
        self._stop_requested = False

        self._rng = np.random.default_rng(self.config.seed)
        self.monitor = ConvergenceMonitor(self.config)
        self.last_stop_reason: Optional[StopReason] = None
        self.color_by: Optional[str] = None

        self.state = EmbeddingState.randomize(
            len(self.entity_ids), self._rng, self.config.init_scale
        )

        logger.info(
            "Created t-SNE session for %d entities (perplexity=%.3g, learning_rate=%.3g)",
            len(self.entity_ids),
            self.config.perplexity,
            self.config.learning_rate,
        )

    # -- constructors -------------------------------------------------------

    @classmethod
    def from_features(
        cls,
        df: pd.DataFrame,
        id_column: str = DEFAULT_ID_COLUMN,
        cfg: Optional[TSNEConfig] = None,
    ) -> "TSNESession":
        """Build a session from a table with one row of features per entity."""
        cfg = cfg if cfg is not None else TSNEConfig()
        # Fail on bad settings before any distance work
        cfg.validate()

        entity_ids, values, _ = build_feature_matrix(
            df,
            id_column,
            feature_columns=cfg.feature_columns,
            rescaling=cfg.rescaling,
        )
        dist_matrix = resolve_feature_distances(values)

        return cls(entity_ids, dist_matrix, cfg, feature_table=(df, id_column))

    @classmethod
    def from_distance_table(
        cls,
        df: pd.DataFrame,
        columns: Sequence[str] = DEFAULT_DISTANCE_COLUMNS,
        cfg: Optional[TSNEConfig] = None,
    ) -> "TSNESession":
        """Build a session from (entity1, entity2, distance) rows."""
        cfg = cfg if cfg is not None else TSNEConfig()
        # Fail on bad settings before any distance work
        cfg.validate()

        entity_ids, dist_matrix = resolve_distance_table(
            df,
            columns=columns,
            tolerance=cfg.distance_tolerance,
            complete_symmetric=cfg.complete_symmetric,
        )

        return cls(entity_ids, dist_matrix, cfg)

    @classmethod
    def from_distance_matrix(
        cls,
        matrix,
        entity_ids: Optional[Sequence] = None,
        cfg: Optional[TSNEConfig] = None,
    ) -> "TSNESession":
        """Build a session from a dense square distance matrix."""
        cfg = cfg if cfg is not None else TSNEConfig()
        # Fail on bad settings before any distance work
        cfg.validate()

        entity_ids, dist_matrix = resolve_distance_matrix(
            matrix, entity_ids, tolerance=cfg.distance_tolerance
        )

        return cls(entity_ids, dist_matrix, cfg)

    # -- affinities ---------------------------------------------------------

    @property
    def n_entities(self) -> int:
        return len(self.entity_ids)

    @property
    def running(self) -> bool:
        return self._running

    def _build_affinities(self, perplexity: float) -> Affinities:
        return build_affinities(
            self._distances,
            perplexity,
            sigma_bounds=self.config.sigma_bounds,
            max_steps=self.config.binary_search_steps,
            tolerance=self.config.entropy_tolerance,
        )

    @property
    def affinities(self) -> Affinities:
        """P for the current perplexity, rebuilt if the perplexity changed."""
        if self._affinities.perplexity != float(self.config.perplexity):
            logger.info(
                "Perplexity changed from %.3g to %.3g; rebuilding affinities",
                self._affinities.perplexity,
                self.config.perplexity,
            )
            self._affinities = self._build_affinities(self.config.perplexity)
            self.monitor.reset()
        return self._affinities

    # -- command intake -----------------------------------------------------

    def submit(self, command) -> None:
        """
        Apply a command now, or queue it when a run is in progress.

        Queued commands are applied in arrival order right after the step
        that is currently executing.
        """
        with self._lock:
            if self._running:
                logger.debug("Queued %s until the next step boundary", type(command).__name__)
                self._pending.append(command)
            else:
                self._apply(command)

    def randomize(self, seed: Optional[int] = None) -> None:
        """
        Draw a new random layout and reset velocity, gains, iteration and
        frozen markers. A seed reseeds the session generator first.
        """
        self.submit(Randomize(seed))

    def stop(self) -> None:
        """Ask a running `run` to end at the next step boundary."""
        self.submit(Stop())

    def drag(self, entity_id, position: Sequence[float]) -> None:
        """
        Move one entity to `position` and freeze it for the configured
        cooldown. No other point is affected.
        """
        if entity_id not in self._index:
            raise KeyError(f"Unknown entity {entity_id!r}")

        pos = np.asarray(position, dtype=float)
        if pos.shape != (2,) or not np.isfinite(pos).all():
            raise ValueError(f"Drag position must be two finite numbers, got {position!r}")

        self.submit(Drag(self._index[entity_id], (float(pos[0]), float(pos[1]))))

    def recolor(self, color_by: Optional[str]) -> None:
        """Record the rendering side's colour column; the layout is not touched."""
        self.submit(Recolor(color_by))

    def set_perplexity(self, perplexity: float) -> None:
        """
        Switch to a new perplexity. The value is checked here; P is rebuilt
        from the distances current when the command is applied.
        """
        check_perplexity(perplexity, self.n_entities)
        self.submit(SetPerplexity(float(perplexity)))

    def set_learning_rate(self, learning_rate: float) -> None:
        if not learning_rate > 0:
            raise ValueError(f"learning_rate must be positive, got {learning_rate}")
        self.submit(SetLearningRate(float(learning_rate)))

    def select_features(
        self,
        feature_columns: Optional[Sequence[str]] = None,
        rescaling: Optional[str] = None,
    ) -> None:
        """
        Recompute distances and P from a different feature subset or
        rescaling, then start again from a random layout.
        """
        if self._feature_table is None:
            raise RuntimeError("Feature selection needs a session built from a feature table")

        df, id_column = self._feature_table
        rescaling = rescaling if rescaling is not None else self.config.rescaling

        entity_ids, values, cols = build_feature_matrix(
            df, id_column, feature_columns=feature_columns, rescaling=rescaling
        )
        if entity_ids != self.entity_ids:
            raise ValueError("Feature selection changed the set of entities")

        dist_matrix = resolve_feature_distances(values)
        self.submit(SelectFeatures(tuple(cols), rescaling, dist_matrix))

    # -- command application ------------------------------------------------

    def _apply(self, command) -> None:
        if isinstance(command, Randomize):
            if command.seed is not None:
                self._rng = np.random.default_rng(command.seed)
            self._reset_layout()
        elif isinstance(command, Stop):
            if self._running:
                self._stop_requested = True
            else:
                logger.debug("Stop requested while no run is in progress; ignoring")
        elif isinstance(command, Drag):
            self.state.drag(command.index, command.position, self.config.drag_cooldown)
            logger.debug(
                "Dragged %r to (%.4g, %.4g); frozen until iteration %d",
                self.entity_ids[command.index],
                command.position[0],
                command.position[1],
                self.state.frozen_until[command.index],
            )
        elif isinstance(command, Recolor):
            self.color_by = command.color_by
            logger.debug("Colouring by %r", command.color_by)
        elif isinstance(command, SetPerplexity):
            self._affinities = self._build_affinities(command.perplexity)
            self.config.perplexity = command.perplexity
            self.monitor.reset()
            logger.info("Perplexity set to %.3g", command.perplexity)
        elif isinstance(command, SetLearningRate):
            self.config.learning_rate = command.learning_rate
            logger.info("Learning rate set to %.3g", command.learning_rate)
        elif isinstance(command, SelectFeatures):
            self._distances = command.dist_matrix
            self._affinities = self._build_affinities(self.config.perplexity)
            self.config.feature_columns = list(command.feature_columns)
            self.config.rescaling = command.rescaling
            logger.info(
                "Distances recalculated from %d features (rescaling=%s)",
                len(command.feature_columns),
                command.rescaling,
            )
            self._reset_layout()
        else:
            raise TypeError(f"Unknown command {command!r}")

    def _reset_layout(self) -> None:
        self.state = EmbeddingState.randomize(
            self.n_entities, self._rng, self.config.init_scale
        )
        self.monitor.reset()
        self.last_stop_reason = None
        logger.info("Randomized positions for %d entities", self.n_entities)

    def _drain(self) -> None:
        while self._pending:
            self._apply(self._pending.popleft())

    # -- optimization -------------------------------------------------------

    def _step(self, exaggerate: Optional[bool]) -> Tuple[StepResult, Optional[StopReason]]:
        result = optimizer_step(self.state, self.affinities.P, self.config, exaggerate)
        reason = self.monitor.record(result)
        if reason is StopReason.NON_FINITE:
            self.last_stop_reason = reason
        return result, reason

    def step(self, exaggerate: Optional[bool] = None) -> StepResult:
        """
        Run a single optimizer iteration.

        `exaggerate=None` follows the early exaggeration schedule; True or
        False force an exaggerated or a plain step.
        """
        with self._lock:
            if self._running:
                raise RuntimeError("step() cannot be called while a run is in progress")
            self._drain()
            result, _ = self._step(exaggerate)
        return result

    def run(
        self,
        max_iterations: Optional[int] = None,
        on_step: Optional[Callable[["TSNESession", StepResult], None]] = None,
    ) -> RunResult:
        """
        Step until convergence, a stop command or the iteration cap.

        Parameters
        ----------
        max_iterations
            Absolute iteration count at which the run ends; defaults to
            config.max_iterations.
        on_step
            Called as on_step(session, result) after every step. Commands
            submitted from the callback, or from another thread, are
            applied before the next step begins.

        Returns
        -------
        RunResult
            Stop reason, number of steps taken and the last step result.
        """
        cap = self.config.max_iterations if max_iterations is None else max_iterations

        with self._lock:
            if self._running:
                raise RuntimeError("A run is already in progress")
            self._drain()
            self._running = True
            self._stop_requested = False

        logger.info(
            "Running from iteration %d (cap %d, convergence threshold %.1e)",
            self.state.iteration,
            cap,
            self.config.convergence_threshold,
        )

        steps = 0
        last: Optional[StepResult] = None
        reason: Optional[StopReason] = None

        try:
            while reason is None:
                with self._lock:
                    self._drain()
                    if self._stop_requested:
                        reason = StopReason.STOPPED
                        break
                    if self.state.iteration >= cap:
                        reason = StopReason.MAX_ITERATIONS
                        break

                    last, reason = self._step(None)
                    steps += 1
                    if reason is None and self.state.iteration >= cap:
                        reason = StopReason.MAX_ITERATIONS

                if on_step is not None:
                    on_step(self, last)
        finally:
            with self._lock:
                self._running = False
                self._stop_requested = False
                # Commands that arrived during the last step still apply
                self._drain()

        self.last_stop_reason = reason
        logger.info(
            "Run ended after %d steps at iteration %d: %s",
            steps,
            self.state.iteration,
            reason.value,
        )

        return RunResult(reason=reason, steps=steps, last_step=last)

    # -- read side ----------------------------------------------------------

    def coordinates(self) -> pd.DataFrame:
        """Current layout as a DataFrame with columns entity_id, x and y."""
        with self._lock:
            return build_embedding_dataframe(self.entity_ids, self.state.Y)

    def status(self) -> SessionStatus:
        with self._lock:
            last = self.monitor.last_result
            return SessionStatus(
                iteration=self.state.iteration,
                kl_divergence=embedding_kl_divergence(self.affinities.P, self.state.Y),
                gradient_norm=last.gradient_norm if last is not None else None,
                movement=last.movement if last is not None else None,
                exaggerating=self.config.exaggerating(self.state.iteration),
                running=self._running,
                stop_reason=self.last_stop_reason,
                perplexity=self.affinities.perplexity,
                learning_rate=self.config.learning_rate,
            )
