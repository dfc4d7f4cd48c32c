"""
Discretizations of the cross-asset model's joint state process.

ExactStateProcess
    Steps with the analytic transition moments: x(t0+dt) = Phi x(t0) + c +
    L dW, where Phi and c give the conditional mean and L is a square root
    of the conditional covariance. Exact in distribution for any step size.
    Phi and L are cached per (t0, dt) and dropped when any model parameter
    changes; c reads the market curves and is evaluated on every step.

EulerStateProcess
    First-order scheme with drift and diffusion frozen at the start of the
    step: x + mu(t0, x) dt + diag(sigma(t0)) C^(1/2) dW sqrt(dt).

Both take standard normal increments of the state dimension, one row per
path.
"""

import logging
from typing import Dict, Optional, Tuple

import numpy as np

from .correlation import pseudo_sqrt

logger = logging.getLogger(__name__)


class StateProcess:
    """Common interface of the discretizations."""

    def __init__(self, model, configuration: Optional[str] = None):
        self.model = model
        self.configuration = configuration

    @property
    def size(self) -> int:
        return self.model.dimension

    @property
    def factors(self) -> int:
        return self.model.brownians

    @property
    def state_names(self):
        return self.model.state_names

    def initial_values(self) -> np.ndarray:
        return self.model.initial_values(self.configuration)

    def expectation(self, t0: float, x0: np.ndarray, dt: float) -> np.ndarray:
        raise NotImplementedError

    def covariance(self, t0: float, x0: np.ndarray, dt: float) -> np.ndarray:
        raise NotImplementedError

    def evolve(self, t0: float, x0: np.ndarray, dt: float, dw: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def _check(self, x0: np.ndarray, dw: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        x0 = np.asarray(x0, dtype=float)
        dw = np.asarray(dw, dtype=float)
        if x0.shape[-1] != self.size or dw.shape[-1] != self.size:
            raise ValueError(
                f"state and increment must have {self.size} components, got {x0.shape} and {dw.shape}"
            )
        return x0, dw


class ExactStateProcess(StateProcess):
    """Exact discretization based on analytic transition moments."""

    def __init__(self, model, configuration: Optional[str] = None):
        super().__init__(model, configuration)
        self._steps: Dict[Tuple[float, float], Tuple[np.ndarray, np.ndarray]] = {}
        self._fingerprint: Optional[bytes] = None

    def expectation(self, t0: float, x0: np.ndarray, dt: float) -> np.ndarray:
        return self.model.expectation(t0, x0, dt, configuration=self.configuration)

    def covariance(self, t0: float, x0: np.ndarray, dt: float) -> np.ndarray:
        return self.model.covariance(t0, x0, dt)

    def _step(self, t0: float, dt: float):
        fingerprint = self.model.parameter_fingerprint()
        if fingerprint != self._fingerprint:
            self._steps.clear()
            self._fingerprint = fingerprint
        key = (float(t0), float(dt))
        if key not in self._steps:
            phi = self.model.transition_matrix(t0, dt)
            root = pseudo_sqrt(self.model.covariance(t0, None, dt))
            self._steps[key] = (phi, root)
        phi, root = self._steps[key]
        # the mean is affine in x0 with slope Phi
        constant = self.model.expectation(t0, np.zeros(self.size), dt, configuration=self.configuration)
        return phi, constant, root

    def evolve(self, t0: float, x0: np.ndarray, dt: float, dw: np.ndarray) -> np.ndarray:
        x0, dw = self._check(x0, dw)
        phi, constant, root = self._step(t0, dt)
        return x0 @ phi.T + constant + dw @ root.T


class EulerStateProcess(StateProcess):
    """Euler discretization with coefficients frozen at the step start."""

    def __init__(self, model, configuration: Optional[str] = None):
        super().__init__(model, configuration)
        self._root: Optional[np.ndarray] = None
        self._fingerprint: Optional[bytes] = None

    def _correlation_root(self) -> np.ndarray:
        fingerprint = self.model.parameter_fingerprint()
        if self._root is None or fingerprint != self._fingerprint:
            self._root = pseudo_sqrt(self.model.correlation_matrix)
            self._fingerprint = fingerprint
        return self._root

    def drift(self, t0: float, x0: np.ndarray, dt: float) -> np.ndarray:
        return self.model.drift(t0, x0, self.configuration, dt=dt)

    def expectation(self, t0: float, x0: np.ndarray, dt: float) -> np.ndarray:
        x0 = np.asarray(x0, dtype=float)
        return x0 + self.drift(t0, x0, dt) * dt

    def covariance(self, t0: float, x0: np.ndarray, dt: float) -> np.ndarray:
        vol = self.model.diffusion(t0)
        return np.outer(vol, vol) * self.model.correlation_matrix * dt

    def evolve(self, t0: float, x0: np.ndarray, dt: float, dw: np.ndarray) -> np.ndarray:
        x0, dw = self._check(x0, dw)
        vol = self.model.diffusion(t0)
        shocks = (dw @ self._correlation_root().T) * vol * np.sqrt(dt)
        return x0 + self.drift(t0, x0, dt) * dt + shocks
