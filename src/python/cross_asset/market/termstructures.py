"""
Term structures and volatility surfaces consumed by the model.

Times are year fractions from the evaluation date. All objects are
observables built on SimpleQuotes, so a change to any underlying quote is
visible through the object's ``version``.

Curves:
    - FlatYieldCurve / InterpolatedYieldCurve: discount factors from zero
      rates (continuous compounding, linear in zero rate, flat extrapolation)
    - FlatHazardCurve / InterpolatedSurvivalCurve: survival probabilities
    - ZeroInflationCurve: forward CPI ratio (1 + π(t))^t plus base CPI

Surfaces:
    - BlackVolSurface: lognormal vols by expiry (fx, equity, cpi options)
    - SwaptionVolSurface: vols by expiry and underlying swap term
"""

from typing import Optional, Sequence, Union

import numpy as np

from ..exceptions import ConfigurationError
from .quotes import Observable, QuoteLike, as_quote

ArrayLike = Union[float, np.ndarray, Sequence[float]]


def _scalar_or_array(values: np.ndarray, t: ArrayLike):
    if np.ndim(t) == 0:
        return float(values)
    return values


def _check_times(times: Sequence[float], what: str) -> np.ndarray:
    times = np.asarray(times, dtype=float)
    if times.ndim != 1 or len(times) == 0:
        raise ConfigurationError(f"{what}: at least one pillar time required")
    if np.any(times <= 0.0) or np.any(np.diff(times) <= 0.0):
        raise ConfigurationError(f"{what}: pillar times must be positive and increasing")
    return times


class _ZeroRateCurve(Observable):
    """
    Shared machinery for curves of the form exp(-z(t) * t).

    z(t) is linearly interpolated between pillar quotes and flat outside,
    so the instantaneous forward f(t) = z(t) + t z'(t) is piecewise linear.
    """

    def __init__(self, times: Sequence[float], rates: Sequence[QuoteLike]):
        super().__init__()
        self._times = _check_times(times, type(self).__name__)
        if len(rates) != len(self._times):
            raise ConfigurationError(
                f"{type(self).__name__}: {len(rates)} rates for {len(self._times)} times"
            )
        self._quotes = [as_quote(r) for r in rates]

    def dependencies(self):
        return self._quotes

    @property
    def times(self) -> np.ndarray:
        return self._times.copy()

    def _rates(self) -> np.ndarray:
        return np.array([q.value for q in self._quotes])

    def _zero(self, t: np.ndarray) -> np.ndarray:
        return np.interp(t, self._times, self._rates())

    def _zero_slope(self, t: np.ndarray) -> np.ndarray:
        rates = self._rates()
        if len(rates) == 1:
            return np.zeros_like(t)
        slopes = np.diff(rates) / np.diff(self._times)
        idx = np.searchsorted(self._times, t, side="right") - 1
        inside = (idx >= 0) & (idx < len(slopes))
        result = np.zeros_like(t)
        result[inside] = slopes[idx[inside]]
        return result

    def _log_value(self, t: ArrayLike) -> np.ndarray:
        tt = np.asarray(t, dtype=float)
        return -self._zero(tt) * tt

    def _instantaneous(self, t: ArrayLike) -> np.ndarray:
        tt = np.atleast_1d(np.asarray(t, dtype=float))
        return self._zero(tt) + tt * self._zero_slope(tt)


class YieldCurve(_ZeroRateCurve):
    """Discount curve with linear-in-zero-rate interpolation."""

    def discount(self, t: ArrayLike):
        """Discount factor P(0, t)."""
        return _scalar_or_array(np.exp(self._log_value(t)), t)

    def zero_rate(self, t: ArrayLike):
        """Continuously compounded zero rate."""
        return _scalar_or_array(self._zero(np.asarray(t, dtype=float)), t)

    def forward(self, t: ArrayLike):
        """Instantaneous forward rate f(0, t)."""
        values = self._instantaneous(t)
        return float(values[0]) if np.ndim(t) == 0 else values

    def log_discount_ratio(self, s: float, t: float) -> float:
        """ln(P(0, s) / P(0, t)), i.e. the integral of f(0, u) over [s, t]."""
        return float(self._log_value(s) - self._log_value(t))


class FlatYieldCurve(YieldCurve):
    """Flat continuously compounded yield curve."""

    def __init__(self, rate: QuoteLike):
        super().__init__([1.0], [rate])

    @property
    def rate(self) -> float:
        return self._quotes[0].value


class InterpolatedYieldCurve(YieldCurve):
    """Yield curve from zero-rate pillars."""

    pass


class SurvivalCurve(_ZeroRateCurve):
    """Survival probabilities exp(-h(t) t) with h the average hazard rate."""

    def survival(self, t: ArrayLike):
        """Survival probability S(0, t)."""
        return _scalar_or_array(np.exp(self._log_value(t)), t)

    def hazard_rate(self, t: ArrayLike):
        """Instantaneous hazard rate."""
        values = self._instantaneous(t)
        return float(values[0]) if np.ndim(t) == 0 else values

    def log_survival_ratio(self, s: float, t: float) -> float:
        """ln(S(0, s) / S(0, t))."""
        return float(self._log_value(s) - self._log_value(t))


class FlatHazardCurve(SurvivalCurve):
    """Flat hazard rate survival curve."""

    def __init__(self, hazard: QuoteLike):
        super().__init__([1.0], [hazard])


class InterpolatedSurvivalCurve(SurvivalCurve):
    """Survival curve from average hazard rate pillars."""

    pass


class ZeroInflationCurve(Observable):
    """
    Zero-coupon inflation curve.

    The forward CPI ratio to time t is (1 + π(t))^t where π is the zero
    inflation swap rate, linearly interpolated and flat extrapolated. The
    base CPI is the index fixing the curve is anchored on.
    """

    def __init__(
        self,
        base_cpi: QuoteLike,
        rate: Optional[QuoteLike] = None,
        times: Optional[Sequence[float]] = None,
        rates: Optional[Sequence[QuoteLike]] = None,
    ):
        super().__init__()
        if rate is not None:
            times, rates = [1.0], [rate]
        if times is None or rates is None:
            raise ConfigurationError("ZeroInflationCurve: either rate or times/rates required")
        self._times = _check_times(times, "ZeroInflationCurve")
        if len(rates) != len(self._times):
            raise ConfigurationError("ZeroInflationCurve: times and rates differ in length")
        self._base_cpi = as_quote(base_cpi)
        self._quotes = [as_quote(r) for r in rates]

    def dependencies(self):
        return [self._base_cpi] + self._quotes

    @property
    def base_cpi(self) -> float:
        return self._base_cpi.value

    def zero_rate(self, t: ArrayLike):
        tt = np.asarray(t, dtype=float)
        values = np.interp(tt, self._times, [q.value for q in self._quotes])
        return _scalar_or_array(values, t)

    def log_forward_ratio(self, t: ArrayLike):
        """ln((1 + π(t))^t)."""
        tt = np.asarray(t, dtype=float)
        values = tt * np.log1p(np.asarray(self.zero_rate(tt)))
        return _scalar_or_array(values, t)

    def forward_ratio(self, t: ArrayLike):
        """Forward CPI ratio I(t) / I(0)."""
        values = np.exp(np.asarray(self.log_forward_ratio(t)))
        return _scalar_or_array(values, t)


class BlackVolSurface(Observable):
    """Lognormal volatility by expiry, strike independent (smile-less)."""

    def __init__(
        self,
        volatility: Optional[QuoteLike] = None,
        expiries: Optional[Sequence[float]] = None,
        volatilities: Optional[Sequence[QuoteLike]] = None,
    ):
        super().__init__()
        if volatility is not None:
            expiries, volatilities = [1.0], [volatility]
        if expiries is None or volatilities is None:
            raise ConfigurationError("BlackVolSurface: either volatility or expiries/volatilities required")
        self._expiries = _check_times(expiries, "BlackVolSurface")
        if len(volatilities) != len(self._expiries):
            raise ConfigurationError("BlackVolSurface: expiries and volatilities differ in length")
        self._quotes = [as_quote(v) for v in volatilities]

    def dependencies(self):
        return self._quotes

    def volatility(self, t: float, strike: Optional[float] = None) -> float:
        return float(np.interp(t, self._expiries, [q.value for q in self._quotes]))


class SwaptionVolSurface(Observable):
    """
    Swaption volatilities on an expiry x term grid.

    ``vol_type`` is "normal" (Bachelier, absolute vols) or "lognormal"
    (Black, optionally shifted by ``shift``).
    """

    def __init__(
        self,
        volatility: Optional[QuoteLike] = None,
        expiries: Optional[Sequence[float]] = None,
        terms: Optional[Sequence[float]] = None,
        volatilities: Optional[Sequence[Sequence[QuoteLike]]] = None,
        vol_type: str = "lognormal",
        shift: float = 0.0,
    ):
        super().__init__()
        if volatility is not None:
            expiries, terms, volatilities = [1.0], [1.0], [[volatility]]
        if expiries is None or terms is None or volatilities is None:
            raise ConfigurationError("SwaptionVolSurface: either volatility or a full grid required")
        self._expiries = _check_times(expiries, "SwaptionVolSurface")
        self._terms = _check_times(terms, "SwaptionVolSurface")
        grid = [[as_quote(v) for v in row] for row in volatilities]
        if len(grid) != len(self._expiries) or any(len(row) != len(self._terms) for row in grid):
            raise ConfigurationError("SwaptionVolSurface: grid shape does not match expiries x terms")
        self._grid = grid
        vol_type = vol_type.lower()
        if vol_type not in ("normal", "lognormal"):
            raise ConfigurationError(f"SwaptionVolSurface: unknown vol type {vol_type}")
        self.vol_type = vol_type
        self.shift = float(shift)

    def dependencies(self):
        return [q for row in self._grid for q in row]

    def volatility(self, expiry: float, term: float) -> float:
        values = np.array([[q.value for q in row] for row in self._grid])
        by_term = np.array([np.interp(term, self._terms, row) for row in values])
        return float(np.interp(expiry, self._expiries, by_term))

