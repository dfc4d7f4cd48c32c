"""
Per-factor parametrizations.

A factor's calibratable parameters are piecewise functions of time, one per
named kind ("volatility", "reversion"), with one of three time-shapes:

    constant            f(t) = v0
    piecewise constant  f(t) = v_i for t in [t_i, t_{i+1}), t_0 = 0
    piecewise linear    f linear between nodes (0, t_1, ..., t_m), flat after

All factors share one Parametrization class tagged by AssetType. The
LGM-shaped factors (IR, INF, CR) expose alpha / zeta / H / Hprime, the
Black-Scholes factors (FX, EQ) expose sigma / variance.

LGM conventions (Hagan 2002, Lichters-Stamm-Gallagher 2015):
    alpha(t)   volatility of the state z, dz = alpha dW
    zeta(t)    integral of alpha^2 over [0, t]
    H(t)       integral of exp(-integral kappa) over [0, t]
    H'(t)      exp(-integral of kappa over [0, t])

The model invariances H -> s H + c, alpha -> alpha / s, zeta -> zeta / s^2
are exposed through ``shift`` and ``scaling``.

Example:
    >>> p = irlgm1f("EUR", volatility=[0.01, 0.012], volatility_times=[5.0],
    ...             reversion=[0.03])
    >>> round(p.zeta(10.0), 8)
    0.00122
"""

from enum import Enum
from typing import Dict, Optional, Sequence, Union

import numpy as np

from ..config import ParamType
from ..exceptions import ConfigurationError

ArrayLike = Union[float, np.ndarray, Sequence[float]]

# Gauss-Legendre nodes for integrals without closed form
_GL_X, _GL_W = np.polynomial.legendre.leggauss(24)

_KAPPA_EPS = 1e-10


class AssetType(Enum):
    """Asset class of a factor; also the order of factors in the model."""
    IR = "IR"
    FX = "FX"
    EQ = "EQ"
    INF = "INF"
    CR = "CR"


LGM_TYPES = (AssetType.IR, AssetType.INF, AssetType.CR)
BS_TYPES = (AssetType.FX, AssetType.EQ)


def _out(values: np.ndarray, t: ArrayLike):
    if np.ndim(t) == 0:
        return float(values.reshape(-1)[0])
    return values


class PiecewiseFunction:
    """
    A function of time with constant, piecewise-constant or
    piecewise-linear shape.

    The function is described by segment end values: on [k_i, k_{i+1}) it
    is linear from left[i] to right[i] (left == right for piecewise
    constant), beyond the last knot it is flat at the last value.
    """

    def __init__(
        self,
        param_type: Union[ParamType, str],
        times: Sequence[float],
        values: Sequence[float],
        name: str = "",
    ):
        self.param_type = ParamType.parse(param_type)
        self.name = name
        times = np.asarray(times if times is not None else [], dtype=float).reshape(-1)
        values = np.asarray(values, dtype=float).reshape(-1)

        if self.param_type == ParamType.CONSTANT:
            if len(times) > 0:
                raise ConfigurationError(f"{name}: constant parameter takes no times, got {len(times)}")
        if np.any(times < 0.0):
            raise ConfigurationError(f"{name}: breakpoint times must be non-negative")
        if np.any(np.diff(times) <= 0.0):
            raise ConfigurationError(f"{name}: breakpoint times must be strictly increasing")
        if self.param_type == ParamType.PIECEWISE_LINEAR and len(times) > 0 and times[0] <= 0.0:
            raise ConfigurationError(f"{name}: piecewise linear nodes must be positive")
        if len(values) != len(times) + 1:
            raise ConfigurationError(
                f"{name}: {len(values)} values for {len(times)} breakpoints, expected {len(times) + 1}"
            )
        if not np.all(np.isfinite(values)):
            raise ConfigurationError(f"{name}: values must be finite")

        self._times = times
        self._values = values.copy()
        self._knots = np.concatenate(([0.0], times))
        self._cache = None

    @classmethod
    def constant(cls, value: float, name: str = "") -> "PiecewiseFunction":
        return cls(ParamType.CONSTANT, [], [value], name)

    @property
    def times(self) -> np.ndarray:
        return self._times.copy()

    @property
    def size(self) -> int:
        return len(self._values)

    @property
    def values(self) -> np.ndarray:
        return self._values.copy()

    def set_values(self, values: Sequence[float]) -> None:
        values = np.asarray(values, dtype=float).reshape(-1)
        if len(values) != len(self._values):
            raise ConfigurationError(
                f"{self.name}: expected {len(self._values)} values, got {len(values)}"
            )
        self._values = values.copy()
        self._cache = None

    def set_value(self, i: int, value: float) -> None:
        if not 0 <= i < len(self._values):
            raise ConfigurationError(f"{self.name}: index {i} out of range 0..{len(self._values) - 1}")
        self._values[i] = float(value)
        self._cache = None

    def segment_index(self, t: ArrayLike) -> np.ndarray:
        """Index of the value governing time t (piecewise constant shape)."""
        return np.searchsorted(self._times, np.asarray(t, dtype=float), side="right")

    # --- segment description -------------------------------------------

    def _segments(self):
        """(left, right, cumulative f, cumulative f^2); cumulatives at the knots."""
        if self._cache is None:
            v = self._values
            if self.param_type == ParamType.PIECEWISE_LINEAR:
                left, right = v[:-1], v[1:]
            else:
                # knot 0 is followed by segment with value v[0]
                left, right = v[:-1], v[:-1]
            widths = np.diff(self._knots)
            seg_int = widths * (left + right) / 2.0
            seg_sq = widths * (left * left + left * right + right * right) / 3.0
            cum = np.concatenate(([0.0], np.cumsum(seg_int)))
            cum_sq = np.concatenate(([0.0], np.cumsum(seg_sq)))
            self._cache = (left, right, cum, cum_sq)
        return self._cache

    def _locate(self, t: np.ndarray):
        """Segment index (len(knots)-1 means the flat tail) and local value."""
        left, right, _, _ = self._segments()
        idx = np.searchsorted(self._knots, t, side="right") - 1
        idx = np.clip(idx, 0, len(self._knots) - 1)
        n_seg = len(left)
        in_seg = idx < n_seg
        start = self._knots[idx]
        ft = np.full(t.shape, self._values[-1])
        if n_seg > 0 and np.any(in_seg):
            i = idx[in_seg]
            width = self._knots[i + 1] - self._knots[i]
            w = np.where(width > 0.0, (t[in_seg] - start[in_seg]) / np.where(width > 0.0, width, 1.0), 0.0)
            ft[in_seg] = left[i] + (right[i] - left[i]) * w
        left_at = ft.copy()
        if n_seg > 0:
            left_at[in_seg] = left[idx[in_seg]]
        return idx, start, ft, left_at

    # --- evaluation ----------------------------------------------------

    def __call__(self, t: ArrayLike):
        tt = np.maximum(np.atleast_1d(np.asarray(t, dtype=float)), 0.0)
        if self.param_type == ParamType.PIECEWISE_LINEAR:
            values = self._locate(tt)[2]
        else:
            values = self._values[np.searchsorted(self._times, tt, side="right")]
        return _out(values, t)

    def integral(self, t: ArrayLike):
        """Integral of f over [0, t]."""
        tt = np.maximum(np.atleast_1d(np.asarray(t, dtype=float)), 0.0)
        _, _, cum, _ = self._segments()
        idx, start, ft, left_at = self._locate(tt)
        values = cum[idx] + (tt - start) * (left_at + ft) / 2.0
        return _out(values, t)

    def integral_square(self, t: ArrayLike):
        """Integral of f^2 over [0, t]."""
        tt = np.maximum(np.atleast_1d(np.asarray(t, dtype=float)), 0.0)
        _, _, _, cum_sq = self._segments()
        idx, start, ft, left_at = self._locate(tt)
        values = cum_sq[idx] + (tt - start) * (left_at * left_at + left_at * ft + ft * ft) / 3.0
        return _out(values, t)

    def integral_exp_neg_integral(self, t: ArrayLike):
        """
        Integral over [0, t] of exp(-F(s)) where F(s) = integral of f on [0, s].

        Closed form for constant and piecewise-constant shapes, Gauss-Legendre
        quadrature per segment for the piecewise-linear shape.
        """
        tt = np.maximum(np.atleast_1d(np.asarray(t, dtype=float)), 0.0)
        if self.param_type != ParamType.PIECEWISE_LINEAR:
            values = self._exp_integral_pwc(tt)
        else:
            values = self._exp_integral_quadrature(tt)
        return _out(values, t)

    @staticmethod
    def _exp_segment(k: np.ndarray, dt: np.ndarray) -> np.ndarray:
        small = np.abs(k) < _KAPPA_EPS
        safe_k = np.where(small, 1.0, k)
        return np.where(small, dt * (1.0 - 0.5 * k * dt), -np.expm1(-safe_k * dt) / safe_k)

    def _exp_integral_pwc(self, tt: np.ndarray) -> np.ndarray:
        left, _, cum, _ = self._segments()
        widths = np.diff(self._knots)
        seg = np.exp(-cum[:-1]) * self._exp_segment(left, widths) if len(left) else np.zeros(0)
        cum_exp = np.concatenate(([0.0], np.cumsum(seg)))
        idx = np.clip(np.searchsorted(self._knots, tt, side="right") - 1, 0, len(self._knots) - 1)
        k = self._values[idx]
        return cum_exp[idx] + np.exp(-cum[idx]) * self._exp_segment(k, tt - self._knots[idx])

    def _exp_integral_quadrature(self, tt: np.ndarray) -> np.ndarray:
        bounds = self._knots
        seg_vals = []
        for a, b in zip(bounds[:-1], bounds[1:]):
            seg_vals.append(self._gl(a, b))
        cum_exp = np.concatenate(([0.0], np.cumsum(seg_vals))) if seg_vals else np.zeros(1)
        idx = np.clip(np.searchsorted(bounds, tt, side="right") - 1, 0, len(bounds) - 1)
        return np.array([cum_exp[i] + self._gl(bounds[i], x) for i, x in zip(idx, tt)])

    def _gl(self, a: float, b: float) -> float:
        if b <= a:
            return 0.0
        s = 0.5 * (b - a) * _GL_X + 0.5 * (b + a)
        return float(0.5 * (b - a) * np.dot(_GL_W, np.exp(-np.asarray(self.integral(s)))))

    def __repr__(self) -> str:
        return (
            f"PiecewiseFunction({self.name!r}, {self.param_type.value}, "
            f"times={self._times.tolist()}, values={self._values.tolist()})"
        )


class Parametrization:
    """
    Time-dependent parameters of one factor of the cross-asset model.

    Attributes:
        asset_type: Asset class tag
        name: Factor identity (currency, FX pair, equity name, index, credit name)
        currency: Currency the factor is denominated in
        functions: Named parameter functions ("volatility", optionally "reversion")
        shift: Additive shift of H (LGM-shaped factors only)
        scaling: Scaling of H (LGM-shaped factors only)
    """

    def __init__(
        self,
        asset_type: AssetType,
        name: str,
        currency: str,
        functions: Dict[str, PiecewiseFunction],
        shift: float = 0.0,
        scaling: float = 1.0,
    ):
        self.asset_type = AssetType(asset_type)
        self.name = name
        self.currency = currency
        if "volatility" not in functions:
            raise ConfigurationError(f"{asset_type.value}:{name}: volatility function required")
        if self.is_lgm and "reversion" not in functions:
            raise ConfigurationError(f"{asset_type.value}:{name}: reversion function required")
        self.functions = dict(functions)
        self.shift = float(shift)
        if scaling == 0.0:
            raise ConfigurationError(f"{asset_type.value}:{name}: scaling must be non-zero")
        self.scaling = float(scaling)

    @property
    def is_lgm(self) -> bool:
        return self.asset_type in LGM_TYPES

    @property
    def key(self) -> str:
        """Correlation factor key, e.g. "IR:EUR" or "FX:USDEUR"."""
        return f"{self.asset_type.value}:{self.name}"

    @property
    def kinds(self):
        return tuple(self.functions)

    @property
    def state_size(self) -> int:
        """Number of state variables; inflation and credit carry an auxiliary one."""
        return 2 if self.asset_type in (AssetType.INF, AssetType.CR) else 1

    def function(self, kind: str) -> PiecewiseFunction:
        try:
            return self.functions[kind]
        except KeyError:
            raise ConfigurationError(f"{self.key}: unknown parameter kind '{kind}'") from None

    # --- parameter vectors -----------------------------------------------

    def parameter_times(self, kind: str) -> np.ndarray:
        return self.function(kind).times

    def parameter_values(self, kind: str) -> np.ndarray:
        return self.function(kind).values

    def set_parameter_values(self, kind: str, values: Sequence[float]) -> None:
        self.function(kind).set_values(values)

    def set_parameter_value(self, kind: str, i: int, value: float) -> None:
        self.function(kind).set_value(i, value)

    # --- LGM-shaped factors ----------------------------------------------

    def _require_lgm(self, what: str) -> None:
        if not self.is_lgm:
            raise ConfigurationError(f"{self.key}: {what} is defined for IR, INF and CR factors only")

    def alpha(self, t: ArrayLike):
        self._require_lgm("alpha")
        return _out(np.atleast_1d(self.functions["volatility"](t)) / self.scaling, t)

    def zeta(self, t: ArrayLike):
        self._require_lgm("zeta")
        return _out(
            np.atleast_1d(self.functions["volatility"].integral_square(t)) / self.scaling ** 2, t
        )

    def kappa(self, t: ArrayLike):
        self._require_lgm("kappa")
        return self.functions["reversion"](t)

    def H(self, t: ArrayLike):
        self._require_lgm("H")
        raw = np.atleast_1d(self.functions["reversion"].integral_exp_neg_integral(t))
        return _out(self.scaling * raw + self.shift, t)

    def Hprime(self, t: ArrayLike):
        self._require_lgm("Hprime")
        raw = np.exp(-np.atleast_1d(self.functions["reversion"].integral(t)))
        return _out(self.scaling * raw, t)

    def Hprime2(self, t: ArrayLike):
        self._require_lgm("Hprime2")
        hp = np.atleast_1d(self.Hprime(t))
        return _out(-np.atleast_1d(self.kappa(t)) * hp, t)

    # --- Black-Scholes factors -------------------------------------------

    def sigma(self, t: ArrayLike):
        if self.is_lgm:
            raise ConfigurationError(f"{self.key}: sigma is defined for FX and EQ factors only")
        return self.functions["volatility"](t)

    def variance(self, t: ArrayLike):
        if self.is_lgm:
            raise ConfigurationError(f"{self.key}: variance is defined for FX and EQ factors only")
        return self.functions["volatility"].integral_square(t)

    def stdev(self, t: ArrayLike):
        return np.sqrt(self.variance(t))

    def local_volatility(self, t: ArrayLike):
        """alpha(t) for LGM-shaped factors, sigma(t) for Black-Scholes ones."""
        return self.alpha(t) if self.is_lgm else self.sigma(t)

    def breakpoints(self) -> np.ndarray:
        """Union of all parameter breakpoints."""
        times = [f.times for f in self.functions.values()]
        return np.unique(np.concatenate(times)) if times else np.zeros(0)

    def __repr__(self) -> str:
        return f"Parametrization({self.key}, ccy={self.currency}, functions={list(self.functions)})"


def _function(kind: str, values, times, param_type) -> PiecewiseFunction:
    values = np.atleast_1d(np.asarray(values, dtype=float))
    times = [] if times is None else list(times)
    if param_type is None:
        param_type = ParamType.CONSTANT if len(times) == 0 else ParamType.PIECEWISE_CONSTANT
    return PiecewiseFunction(param_type, times, values, kind)


def irlgm1f(
    currency: str,
    volatility: ArrayLike = 0.01,
    reversion: ArrayLike = 0.0,
    volatility_times: Optional[Sequence[float]] = None,
    reversion_times: Optional[Sequence[float]] = None,
    volatility_type: Optional[Union[ParamType, str]] = None,
    reversion_type: Optional[Union[ParamType, str]] = None,
    shift: float = 0.0,
    scaling: float = 1.0,
) -> Parametrization:
    """Linear Gauss Markov one-factor rate parametrization for ``currency``."""
    return Parametrization(
        AssetType.IR,
        currency,
        currency,
        {
            "volatility": _function("volatility", volatility, volatility_times, volatility_type),
            "reversion": _function("reversion", reversion, reversion_times, reversion_type),
        },
        shift=shift,
        scaling=scaling,
    )


def fxbs(
    foreign_ccy: str,
    domestic_ccy: str,
    volatility: ArrayLike = 0.1,
    volatility_times: Optional[Sequence[float]] = None,
    volatility_type: Optional[Union[ParamType, str]] = None,
) -> Parametrization:
    """Black-Scholes FX parametrization for foreign_ccy quoted in domestic_ccy."""
    return Parametrization(
        AssetType.FX,
        f"{foreign_ccy}{domestic_ccy}",
        foreign_ccy,
        {"volatility": _function("volatility", volatility, volatility_times, volatility_type)},
    )


def eqbs(
    name: str,
    currency: str,
    volatility: ArrayLike = 0.2,
    volatility_times: Optional[Sequence[float]] = None,
    volatility_type: Optional[Union[ParamType, str]] = None,
) -> Parametrization:
    """Black-Scholes equity parametrization; ``currency`` is the equity's currency."""
    return Parametrization(
        AssetType.EQ,
        name,
        currency,
        {"volatility": _function("volatility", volatility, volatility_times, volatility_type)},
    )


def infdk(
    index: str,
    currency: str,
    volatility: ArrayLike = 0.01,
    reversion: ArrayLike = 0.5,
    volatility_times: Optional[Sequence[float]] = None,
    reversion_times: Optional[Sequence[float]] = None,
    volatility_type: Optional[Union[ParamType, str]] = None,
    reversion_type: Optional[Union[ParamType, str]] = None,
    shift: float = 0.0,
    scaling: float = 1.0,
) -> Parametrization:
    """Dodgson-Kainth inflation parametrization (LGM on the inflation rate)."""
    return Parametrization(
        AssetType.INF,
        index,
        currency,
        {
            "volatility": _function("volatility", volatility, volatility_times, volatility_type),
            "reversion": _function("reversion", reversion, reversion_times, reversion_type),
        },
        shift=shift,
        scaling=scaling,
    )


def crlgm1f(
    name: str,
    currency: str,
    volatility: ArrayLike = 0.01,
    reversion: ArrayLike = 0.01,
    volatility_times: Optional[Sequence[float]] = None,
    reversion_times: Optional[Sequence[float]] = None,
    volatility_type: Optional[Union[ParamType, str]] = None,
    reversion_type: Optional[Union[ParamType, str]] = None,
    shift: float = 0.0,
    scaling: float = 1.0,
) -> Parametrization:
    """LGM parametrization of the hazard rate of credit name ``name``."""
    return Parametrization(
        AssetType.CR,
        name,
        currency,
        {
            "volatility": _function("volatility", volatility, volatility_times, volatility_type),
            "reversion": _function("reversion", reversion, reversion_times, reversion_type),
        },
        shift=shift,
        scaling=scaling,
    )
