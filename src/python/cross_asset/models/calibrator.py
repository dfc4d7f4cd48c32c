"""
Least-squares calibration of one factor's parametrization to a basket.

Two strategies:
  - Global: one simultaneous scipy least_squares fit of every value of the
    requested parameter kinds against all basket instruments.
  - Iterative (bootstrap): one bounded one-dimensional fit per breakpoint
    segment, in expiry order. Later segments are tied to the value being
    fitted until they are reached.

Both mutate the parametrization in place and leave the best parameters
found, also when the optimizer stops on its iteration limit. Non-convergence
is logged and shows in the residual; it is never raised.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence, Tuple

import numpy as np
from scipy.optimize import least_squares

from ..config import ParamType
from ..exceptions import ConfigurationError
from .parametrization import Parametrization

logger = logging.getLogger(__name__)

# Volatilities are kept non-negative, reversions are free
_LOWER_BOUNDS = {"volatility": 0.0}
_MIN_START = 1e-6


@dataclass
class EndCriteria:
    """Optimizer stopping rules."""
    max_iterations: int = 1000
    function_tolerance: float = 1e-8
    parameter_tolerance: float = 1e-8
    gradient_tolerance: float = 1e-8

    def least_squares_kwargs(self, n_params: int) -> Dict[str, Any]:
        return {
            "max_nfev": self.max_iterations * max(n_params, 1),
            "ftol": self.function_tolerance,
            "xtol": self.parameter_tolerance,
            "gtol": self.gradient_tolerance,
        }


@dataclass
class CalibrationResult:
    """Outcome of one factor calibration."""
    factor: str
    method: str
    kinds: Tuple[str, ...]
    values: Dict[str, List[float]]
    errors: List[float] = field(default_factory=list)
    nfev: int = 0
    success: bool = True
    message: str = ""

    @property
    def rmse(self) -> float:
        return basket_error_from(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "factor": self.factor,
            "method": self.method,
            "kinds": list(self.kinds),
            "values": {k: list(v) for k, v in self.values.items()},
            "errors": list(self.errors),
            "rmse": self.rmse,
            "nfev": self.nfev,
            "success": self.success,
            "message": self.message,
        }


def basket_error_from(errors: Sequence[float]) -> float:
    """Root-mean-square of calibration errors; 0 for an empty basket."""
    if len(errors) == 0:
        return 0.0
    errors = np.asarray(errors, dtype=float)
    return float(np.sqrt(np.mean(errors * errors)))


def basket_error(helpers: Sequence[Any]) -> float:
    """Root-mean-square of the helpers' current calibration errors."""
    return basket_error_from([h.calibration_error() for h in helpers])


def _start(x0: np.ndarray, lower: np.ndarray) -> np.ndarray:
    finite = np.isfinite(lower)
    x0 = x0.copy()
    x0[finite] = np.maximum(x0[finite], lower[finite] + _MIN_START)
    return x0


def calibrate_global(
    parametrization: Parametrization,
    helpers: Sequence[Any],
    kinds: Sequence[str] = ("volatility",),
    end_criteria: EndCriteria = None,
) -> CalibrationResult:
    """
    Fit all values of ``kinds`` simultaneously.

    Args:
        parametrization: Factor parametrization, mutated in place
        helpers: Calibration instruments exposing calibration_error()
        kinds: Parameter kinds to fit
        end_criteria: Optimizer stopping rules

    Returns:
        CalibrationResult with the fitted values and per-helper errors
    """
    end_criteria = end_criteria or EndCriteria()
    kinds = tuple(kinds)
    if not helpers:
        raise ConfigurationError(f"{parametrization.key}: empty calibration basket")
    sizes = [parametrization.function(k).size for k in kinds]
    splits = np.cumsum(sizes)[:-1]
    x0 = np.concatenate([parametrization.parameter_values(k) for k in kinds])
    lower = np.concatenate([np.full(n, _LOWER_BOUNDS.get(k, -np.inf)) for k, n in zip(kinds, sizes)])
    x0 = _start(x0, lower)

    def apply(x):
        for kind, values in zip(kinds, np.split(x, splits)):
            parametrization.set_parameter_values(kind, values)

    def residuals(x):
        apply(x)
        return np.array([h.calibration_error() for h in helpers])

    logger.debug(f"Global calibration of {parametrization.key} {kinds}: {len(x0)} parameters, {len(helpers)} instruments")
    result = least_squares(
        residuals,
        x0=x0,
        bounds=(lower, np.full(len(x0), np.inf)),
        method="trf",
        **end_criteria.least_squares_kwargs(len(x0)),
    )
    apply(result.x)
    errors = [h.calibration_error() for h in helpers]

    if not result.success:
        logger.warning(f"Global calibration of {parametrization.key} did not converge: {result.message}")
    logger.debug(
        f"Global calibration of {parametrization.key}: status={result.status}, "
        f"nfev={result.nfev}, rmse={basket_error_from(errors):.3e}"
    )

    return CalibrationResult(
        factor=parametrization.key,
        method="global",
        kinds=kinds,
        values={k: parametrization.parameter_values(k).tolist() for k in kinds},
        errors=errors,
        nfev=int(result.nfev),
        success=bool(result.success),
        message=str(result.message),
    )


def check_iterative(parametrization: Parametrization, helpers: Sequence[Any], kind: str) -> None:
    """
    Check that a basket can drive a bootstrap of ``kind``.

    Raises:
        ConfigurationError: If the shape is not piecewise constant, the basket
            size differs from the number of values, or instrument i does not
            expire in segment i
    """
    function = parametrization.function(kind)
    if function.param_type not in (ParamType.PIECEWISE_CONSTANT, ParamType.CONSTANT):
        raise ConfigurationError(
            f"{parametrization.key}: iterative calibration needs a piecewise constant {kind}, "
            f"got {function.param_type.value}"
        )
    if len(helpers) != function.size:
        raise ConfigurationError(
            f"{parametrization.key}: basket has {len(helpers)} instruments but {kind} has "
            f"{function.size} values ({function.size - 1} breakpoints)"
        )
    times = function.times
    for i, helper in enumerate(helpers):
        expiry = helper.expiry
        after_start = i == 0 or expiry > times[i - 1]
        before_end = i == len(helpers) - 1 or expiry <= times[i]
        if not (after_start and before_end):
            raise ConfigurationError(
                f"{parametrization.key}: instrument {i} expiring at {expiry:.4f} "
                f"does not fall into {kind} segment {i}"
            )


def calibrate_iterative(
    parametrization: Parametrization,
    helpers: Sequence[Any],
    kind: str = "volatility",
    end_criteria: EndCriteria = None,
) -> CalibrationResult:
    """
    Bootstrap ``kind`` segment by segment.

    Instrument i must expire in segment i of the piecewise-constant function.
    The values of segments i+1.. are set equal to segment i while it is
    fitted.

    Raises:
        ConfigurationError: See check_iterative
    """
    end_criteria = end_criteria or EndCriteria()
    check_iterative(parametrization, helpers, kind)
    function = parametrization.function(kind)
    lower = _LOWER_BOUNDS.get(kind, -np.inf)
    n = function.size
    nfev = 0
    success = True
    messages = []

    for i, helper in enumerate(helpers):
        x0 = _start(np.array([function.values[i]]), np.array([lower]))

        def residual(x, i=i, helper=helper):
            values = function.values
            values[i:] = x[0]
            function.set_values(values)
            return np.array([helper.calibration_error()])

        result = least_squares(
            residual,
            x0=x0,
            bounds=([lower], [np.inf]),
            method="trf",
            **end_criteria.least_squares_kwargs(1),
        )
        residual(result.x)
        nfev += int(result.nfev)
        if not result.success:
            success = False
            messages.append(f"segment {i}: {result.message}")
            logger.warning(f"Iterative calibration of {parametrization.key} segment {i} did not converge: {result.message}")
        logger.debug(
            f"Iterative calibration of {parametrization.key} segment {i}/{n - 1}: "
            f"{kind}={result.x[0]:.6g}, error={result.fun[0]:.3e}"
        )

    errors = [h.calibration_error() for h in helpers]
    return CalibrationResult(
        factor=parametrization.key,
        method="iterative",
        kinds=(kind,),
        values={kind: parametrization.parameter_values(kind).tolist()},
        errors=errors,
        nfev=nfev,
        success=success,
        message="; ".join(messages),
    )
