"""
Path generation for the joint state process.

MultiPathGenerator drives a state process (exact or Euler) over a time
grid with standard normal increments from a seeded numpy Generator, so
runs are reproducible. ``batches`` splits a simulation into chunks with
independent streams spawned from one SeedSequence; each chunk can be
simulated separately and the statistics merged.

Example:
    >>> process = model.state_process("exact")
    >>> generator = MultiPathGenerator(process, TimeGrid(5.0, 20), seed=42)
    >>> terminal = generator.generate(10000, terminal_only=True)
    >>> terminal.shape
    (10000, 3)
"""

import logging
from typing import Callable, Iterator, Optional, Sequence, Tuple

import numpy as np

from ..exceptions import ConfigurationError
from .statistics import StreamingMoments

logger = logging.getLogger(__name__)


class TimeGrid:
    """
    Simulation times starting at 0.

    Args:
        horizon: Final time, with ``steps`` equal steps
        steps: Number of steps
        times: Explicit increasing times (0 is prepended when missing)
    """

    def __init__(
        self,
        horizon: Optional[float] = None,
        steps: int = 1,
        times: Optional[Sequence[float]] = None,
    ):
        if times is None:
            if horizon is None or horizon <= 0.0:
                raise ConfigurationError(f"time grid horizon must be positive, got {horizon}")
            if steps < 1:
                raise ConfigurationError(f"time grid needs at least one step, got {steps}")
            grid = np.linspace(0.0, float(horizon), int(steps) + 1)
        else:
            grid = np.asarray(times, dtype=float).reshape(-1)
            if len(grid) == 0 or grid[0] != 0.0:
                grid = np.concatenate(([0.0], grid))
        if np.any(np.diff(grid) <= 0.0):
            raise ConfigurationError("time grid must be strictly increasing and start after 0")
        self._times = grid

    @classmethod
    def from_times(cls, times: Sequence[float]) -> "TimeGrid":
        return cls(times=times)

    @property
    def times(self) -> np.ndarray:
        return self._times.copy()

    @property
    def dt(self) -> np.ndarray:
        return np.diff(self._times)

    @property
    def steps(self) -> int:
        return len(self._times) - 1

    @property
    def horizon(self) -> float:
        return float(self._times[-1])

    def __len__(self) -> int:
        return len(self._times)

    def __repr__(self) -> str:
        return f"TimeGrid(horizon={self.horizon}, steps={self.steps})"


class MultiPathGenerator:
    """
    Simulates paths of a multi-dimensional state process.

    Args:
        process: StateProcess with initial_values() and evolve()
        grid: TimeGrid
        seed: Seed of the normal increments
        antithetic: Pair every increment path with its negative
    """

    def __init__(self, process, grid: TimeGrid, seed: Optional[int] = None, antithetic: bool = False):
        self.process = process
        self.grid = grid
        self.seed = seed
        self.antithetic = antithetic

    @property
    def dimension(self) -> int:
        return self.process.size

    def _increments(self, rng: np.random.Generator, n_paths: int) -> np.ndarray:
        shape_steps = (self.grid.steps, self.dimension)
        if not self.antithetic:
            return rng.standard_normal((n_paths,) + shape_steps)
        half = (n_paths + 1) // 2
        dw = rng.standard_normal((half,) + shape_steps)
        return np.concatenate([dw, -dw])[:n_paths]

    def _simulate(self, rng: np.random.Generator, n_paths: int, terminal_only: bool) -> np.ndarray:
        dw = self._increments(rng, n_paths)
        x = np.tile(self.process.initial_values(), (n_paths, 1))
        times = self.grid.times
        paths = None
        if not terminal_only:
            paths = np.empty((n_paths, len(times), self.dimension))
            paths[:, 0, :] = x
        for k, (t0, dt) in enumerate(zip(times[:-1], self.grid.dt)):
            x = self.process.evolve(t0, x, dt, dw[:, k, :])
            if paths is not None:
                paths[:, k + 1, :] = x
        return x if terminal_only else paths

    def generate(self, n_paths: int, terminal_only: bool = False) -> np.ndarray:
        """
        Simulate ``n_paths`` paths.

        Returns:
            Array (paths, times, dim), or (paths, dim) with terminal_only
        """
        if n_paths < 1:
            raise ConfigurationError(f"number of paths must be positive, got {n_paths}")
        rng = np.random.default_rng(self.seed)
        logger.debug(f"Simulating {n_paths} paths over {self.grid!r}, seed={self.seed}")
        return self._simulate(rng, n_paths, terminal_only)

    def batches(
        self, n_paths: int, batch_size: int, terminal_only: bool = True
    ) -> Iterator[np.ndarray]:
        """Yield ``n_paths`` paths in chunks with independent, reproducible streams."""
        if batch_size < 1:
            raise ConfigurationError(f"batch size must be positive, got {batch_size}")
        n_batches = -(-n_paths // batch_size)
        children = np.random.SeedSequence(self.seed).spawn(n_batches)
        remaining = n_paths
        for child in children:
            size = min(batch_size, remaining)
            remaining -= size
            yield self._simulate(np.random.default_rng(child), size, terminal_only)


def monte_carlo_expectation(
    process,
    grid: TimeGrid,
    payoff: Callable[[np.ndarray], np.ndarray],
    paths: int,
    seed: Optional[int] = None,
    antithetic: bool = False,
    batch_size: Optional[int] = None,
) -> Tuple[float, float]:
    """
    Monte-Carlo estimate of E[payoff(x(T))].

    Args:
        process: State process
        grid: TimeGrid ending at T
        payoff: Maps terminal states (n, dim) to values (n,) or (n, k)
        paths: Number of paths
        seed: Seed
        antithetic: Antithetic increments
        batch_size: Simulate in independent batches of this size

    Returns:
        (mean, error of the mean)
    """
    generator = MultiPathGenerator(process, grid, seed=seed, antithetic=antithetic)
    moments = StreamingMoments()
    if batch_size is None:
        moments.update(payoff(generator.generate(paths, terminal_only=True)))
    else:
        for terminal in generator.batches(paths, batch_size):
            moments.update(payoff(terminal))
    return moments.mean(), moments.error_of_mean()
