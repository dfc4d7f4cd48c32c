"""
Streaming sample moments.

StreamingMoments accumulates count, mean and the centred second moment of
scalar or vector samples in batches (Chan, Golub, LeVeque 1979), so
Monte-Carlo statistics can be built from independently simulated batches
and merged in any order with the same result up to rounding.

Example:
    >>> acc = StreamingMoments()
    >>> acc.update(np.array([1.0, 2.0, 3.0]))
    >>> other = StreamingMoments()
    >>> other.update(np.array([4.0]))
    >>> acc.merge(other).mean()
    2.5
"""

import logging
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)


class StreamingMoments:
    """Running mean and covariance of scalar or vector samples."""

    def __init__(self):
        self.count = 0
        self._mean: Optional[np.ndarray] = None
        self._m2: Optional[np.ndarray] = None
        self._scalar = True

    def update(self, samples) -> "StreamingMoments":
        """
        Add a batch of samples.

        Args:
            samples: Shape (n,) for scalar samples or (n, d) for vectors

        Returns:
            self
        """
        samples = np.asarray(samples, dtype=float)
        if samples.ndim == 0:
            samples = samples.reshape(1)
        scalar = samples.ndim == 1
        batch = samples.reshape(len(samples), -1)
        n = batch.shape[0]
        if n == 0:
            return self
        mean = batch.mean(axis=0)
        centred = batch - mean
        m2 = centred.T @ centred
        self._combine(n, mean, m2, scalar)
        return self

    def merge(self, other: "StreamingMoments") -> "StreamingMoments":
        """Fold another accumulator into this one; returns self."""
        if other.count:
            self._combine(other.count, other._mean, other._m2, other._scalar)
        return self

    def _combine(self, n: int, mean: np.ndarray, m2: np.ndarray, scalar: bool) -> None:
        if self.count == 0:
            self.count = n
            self._mean = mean.copy()
            self._m2 = m2.copy()
            self._scalar = scalar
            return
        if mean.shape != self._mean.shape:
            raise ValueError(f"sample dimension {mean.shape} does not match {self._mean.shape}")
        total = self.count + n
        delta = mean - self._mean
        self._mean = self._mean + delta * (n / total)
        self._m2 = self._m2 + m2 + np.outer(delta, delta) * (self.count * n / total)
        self.count = total

    def _out(self, value: np.ndarray):
        return float(value[0]) if self._scalar and value.shape == (1,) else value

    def mean(self):
        if self.count == 0:
            raise ValueError("no samples")
        return self._out(self._mean.copy())

    def covariance(self) -> np.ndarray:
        """Unbiased sample covariance matrix."""
        if self.count < 2:
            raise ValueError("at least two samples required")
        return self._m2 / (self.count - 1)

    def variance(self):
        return self._out(np.diag(self.covariance()).copy())

    def error_of_mean(self):
        return self._out(np.sqrt(np.diag(self.covariance()) / self.count))

    def correlation(self) -> np.ndarray:
        cov = self.covariance()
        std = np.sqrt(np.diag(cov))
        std[std == 0.0] = 1.0
        return cov / np.outer(std, std)

    def __repr__(self) -> str:
        return f"StreamingMoments(count={self.count})"
