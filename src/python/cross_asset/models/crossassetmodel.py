"""
Cross-asset model: joint linear-Gaussian model of rates, FX, equity,
inflation and credit factors.

Factors, in state order:
    IR   z_i        LGM state of currency i (i = 0 is the domestic currency)
    FX   ln x_i     log FX rate of currency i+1 in domestic units
    EQ   ln S_k     log equity spot in its currency
    INF  z_j, y_j   LGM state of the inflation rate, y = integral of H dz
    CR   z_l, y_l   LGM state of the hazard rate, y = integral of H dz

All dynamics are stated under the domestic LGM measure with numeraire

    N(t) = exp(H_0(t) z_0(t) + 1/2 H_0(t)^2 zeta_0(t)) / P_0(0, t).

The drift of every state is affine in the rate states with deterministic
coefficients, so the joint state is Gaussian and its transition moments are
available in closed form up to one-dimensional integrals of parameter
functions, evaluated here by Gauss-Legendre quadrature split at the
parameter breakpoints.

Market curves are looked up in the market by (factor, configuration) each
time a formula is evaluated; the ``configuration`` argument of the closed
forms selects the curve set, defaulting to the model's own.

Reference:
    Lichters, Stamm, Gallagher (2015). "Modern Derivatives Pricing and
    Credit Exposure Analysis", chapters 12-13.
"""

import logging
from functools import lru_cache
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from scipy.optimize import brentq
from scipy.stats import norm

from ..config import Salvaging
from ..exceptions import ConfigurationError, CrossAssetError, DimensionError
from ..market.market import DEFAULT_CONFIGURATION, Market
from .calibrator import (
    CalibrationResult,
    EndCriteria,
    calibrate_global,
    calibrate_iterative,
)
from .correlation import salvage
from .parametrization import AssetType, Parametrization

logger = logging.getLogger(__name__)

TypeLike = Union[AssetType, str]

_GL_ORDER = 16
_GL_X, _GL_W = np.polynomial.legendre.leggauss(_GL_ORDER)
_MAX_PIECE = 1.0

_ORDER = {t: i for i, t in enumerate(AssetType)}


@lru_cache(maxsize=4096)
def _gauss_legendre(s: float, t: float, breaks: Tuple[float, ...]) -> Tuple[np.ndarray, np.ndarray]:
    """Nodes and weights on [s, t], split at breaks and into pieces of at most one year."""
    if t <= s:
        return np.zeros(0), np.zeros(0)
    inner = [b for b in breaks if s < b < t]
    edges = [s] + inner + [t]
    nodes, weights = [], []
    for a, b in zip(edges[:-1], edges[1:]):
        n = max(1, int(np.ceil((b - a) / _MAX_PIECE)))
        grid = np.linspace(a, b, n + 1)
        for lo, hi in zip(grid[:-1], grid[1:]):
            half = 0.5 * (hi - lo)
            nodes.append(half * _GL_X + 0.5 * (hi + lo))
            weights.append(half * _GL_W)
    return np.concatenate(nodes), np.concatenate(weights)


def _asset_type(value: TypeLike) -> AssetType:
    if isinstance(value, AssetType):
        return value
    try:
        return AssetType(str(value).upper())
    except ValueError:
        raise ConfigurationError(f"unknown asset type '{value}'") from None


class CrossAssetModel:
    """
    Joint model over an ordered list of parametrizations.

    Args:
        parametrizations: IR factors first (domestic currency first), then FX
            (one per foreign currency, in IR order), then EQ, INF and CR
        correlation: State-level correlation matrix; inflation and credit
            auxiliary rows duplicate their factor's row
        market: Market supplying curves and spots
        configuration: Default market configuration for closed forms
        salvaging: Policy for correlation matrices that are not PSD

    Raises:
        ConfigurationError: On an inconsistent factor list
        DimensionError: On a correlation matrix of the wrong size, with
            inconsistent auxiliary rows, or not PSD under Salvaging.NONE
    """

    def __init__(
        self,
        parametrizations: Sequence[Parametrization],
        correlation: np.ndarray,
        market: Market,
        configuration: str = DEFAULT_CONFIGURATION,
        salvaging: Salvaging = Salvaging.NONE,
    ):
        self._params: List[Parametrization] = list(parametrizations)
        self.market = market
        self.configuration = configuration
        self.salvaging = Salvaging.parse(salvaging)

        self._by_type: Dict[AssetType, List[int]] = {t: [] for t in AssetType}
        for k, p in enumerate(self._params):
            self._by_type[p.asset_type].append(k)
        self._validate_structure()

        self._offsets: List[int] = []
        self._rows: List[Tuple[int, int]] = []
        for k, p in enumerate(self._params):
            self._offsets.append(len(self._rows))
            for aux in range(p.state_size):
                self._rows.append((k, aux))

        correlation = np.asarray(correlation, dtype=float)
        n = self.dimension
        if correlation.ndim != 2 or correlation.shape != (n, n):
            raise DimensionError(
                f"correlation matrix is {correlation.shape}, model state dimension is {n}"
            )
        self._correlation = salvage(correlation, [p.state_size for p in self._params], self.salvaging)

        self._breaks = tuple(
            float(b) for b in np.unique(np.concatenate([p.breakpoints() for p in self._params]))
        )
        logger.debug(f"Cross-asset model with factors {self.factor_names}, state dimension {n}")

    # --- structure -------------------------------------------------------

    def _validate_structure(self) -> None:
        if not self._params:
            raise ConfigurationError("cross-asset model needs at least one IR factor")
        order = [_ORDER[p.asset_type] for p in self._params]
        if order != sorted(order):
            raise ConfigurationError("parametrizations must be ordered IR, FX, EQ, INF, CR")
        n_ir = len(self._by_type[AssetType.IR])
        n_fx = len(self._by_type[AssetType.FX])
        if n_ir == 0:
            raise ConfigurationError("cross-asset model needs at least one IR factor")
        if n_fx != n_ir - 1:
            raise ConfigurationError(
                f"FX factor count ({n_fx}) must equal IR factor count ({n_ir}) minus one"
            )
        currencies = [self._params[k].currency for k in self._by_type[AssetType.IR]]
        if len(set(currencies)) != len(currencies):
            raise ConfigurationError(f"duplicate IR currencies {currencies}")
        domestic = currencies[0]
        for i, k in enumerate(self._by_type[AssetType.FX]):
            pair = self._params[k].name
            if pair[:3] != currencies[i + 1] or pair[3:] != domestic:
                raise ConfigurationError(
                    f"FX factor {i} is {pair}, expected {currencies[i + 1]}{domestic}"
                )
        for t in (AssetType.EQ, AssetType.INF, AssetType.CR):
            names = [self._params[k].name for k in self._by_type[t]]
            if len(set(names)) != len(names):
                raise ConfigurationError(f"duplicate {t.value} factors {names}")
            for k in self._by_type[t]:
                if self._params[k].currency not in currencies:
                    raise ConfigurationError(
                        f"{self._params[k].key} currency {self._params[k].currency} has no IR factor"
                    )

    @property
    def parametrizations(self) -> List[Parametrization]:
        return list(self._params)

    @property
    def dimension(self) -> int:
        return sum(p.state_size for p in self._params)

    @property
    def brownians(self) -> int:
        return self.dimension

    @property
    def factor_names(self) -> List[str]:
        return [p.key for p in self._params]

    @property
    def state_names(self) -> List[str]:
        return [self._params[k].key + ("/y" if aux else "") for k, aux in self._rows]

    @property
    def state_sizes(self) -> List[int]:
        return [p.state_size for p in self._params]

    @property
    def correlation_matrix(self) -> np.ndarray:
        return self._correlation.copy()

    def components(self, asset_type: TypeLike) -> int:
        return len(self._by_type[_asset_type(asset_type)])

    def _position(self, asset_type: TypeLike, i: int) -> int:
        positions = self._by_type[_asset_type(asset_type)]
        if not 0 <= i < len(positions):
            raise ConfigurationError(f"{_asset_type(asset_type).value} index {i} out of range")
        return positions[i]

    def parametrization(self, asset_type: TypeLike, i: int) -> Parametrization:
        return self._params[self._position(asset_type, i)]

    def ir(self, i: int) -> Parametrization:
        return self.parametrization(AssetType.IR, i)

    def fx(self, i: int) -> Parametrization:
        return self.parametrization(AssetType.FX, i)

    def eq(self, i: int) -> Parametrization:
        return self.parametrization(AssetType.EQ, i)

    def inf(self, i: int) -> Parametrization:
        return self.parametrization(AssetType.INF, i)

    def cr(self, i: int) -> Parametrization:
        return self.parametrization(AssetType.CR, i)

    def state_index(self, asset_type: TypeLike, i: int) -> int:
        """Position of the factor's first state variable."""
        return self._offsets[self._position(asset_type, i)]

    def _index_of(self, asset_type: AssetType, name: str) -> int:
        for i, k in enumerate(self._by_type[asset_type]):
            if self._params[k].name == name:
                return i
        raise ConfigurationError(f"no {asset_type.value} factor '{name}' in model")

    def ccy_index(self, ccy: str) -> int:
        return self._index_of(AssetType.IR, ccy)

    def fx_index(self, pair: str) -> int:
        return self._index_of(AssetType.FX, pair)

    def eq_index(self, name: str) -> int:
        return self._index_of(AssetType.EQ, name)

    def inf_index(self, name: str) -> int:
        return self._index_of(AssetType.INF, name)

    def cr_index(self, name: str) -> int:
        return self._index_of(AssetType.CR, name)

    def factor_ccy_index(self, asset_type: TypeLike, i: int) -> int:
        """IR index of the currency a factor is denominated in."""
        asset_type = _asset_type(asset_type)
        if asset_type == AssetType.FX:
            return i + 1
        return self.ccy_index(self.parametrization(asset_type, i).currency)

    def correlation(self, type_a: TypeLike, i: int, type_b: TypeLike, j: int, aux_a: int = 0, aux_b: int = 0) -> float:
        """Instantaneous correlation between two factor states."""
        return float(
            self._correlation[self.state_index(type_a, i) + aux_a, self.state_index(type_b, j) + aux_b]
        )

    def correlation_triple(self, type_a: TypeLike, i: int, type_b: TypeLike, j: int, t):
        """
        rho_ab * vol_a(t) * vol_b(t): the three-factor product entering the
        drift adjustments (alpha for LGM factors, sigma for Black-Scholes ones).
        """
        rho = self.correlation(type_a, i, type_b, j)
        vol_a = self.parametrization(type_a, i).local_volatility(t)
        vol_b = self.parametrization(type_b, j).local_volatility(t)
        return rho * vol_a * vol_b

    def parameter_fingerprint(self) -> bytes:
        """Bytes that change whenever a parameter value changes."""
        values = [p.parameter_values(k) for p in self._params for k in p.kinds]
        scalars = [np.array([p.shift, p.scaling]) for p in self._params]
        return np.concatenate(values + scalars + [self._correlation.ravel()]).tobytes()

    def update(self) -> None:
        """Refresh derived data after external parameter changes."""
        logger.debug("Cross-asset model update")

    # --- market lookups ----------------------------------------------------

    def _cfg(self, configuration: Optional[str]) -> str:
        return self.configuration if configuration is None else configuration

    def discount_curve(self, ccy_index: int, configuration: Optional[str] = None):
        return self.market.discount_curve(self.ir(ccy_index).currency, self._cfg(configuration))

    def fx_spot(self, fx_index: int, configuration: Optional[str] = None) -> float:
        return self.market.fx_spot(self.fx(fx_index).name, self._cfg(configuration)).value

    def equity_spot(self, eq_index: int, configuration: Optional[str] = None) -> float:
        return self.market.equity_spot(self.eq(eq_index).name, self._cfg(configuration)).value

    def dividend_curve(self, eq_index: int, configuration: Optional[str] = None):
        return self.market.dividend_curve(self.eq(eq_index).name, self._cfg(configuration))

    def _market_log_factor_curve(self, asset_type: AssetType, j: int, t, configuration: Optional[str]):
        """ln R0(t) for inflation (forward CPI ratio), ln S(0, t) for credit."""
        name = self.parametrization(asset_type, j).name
        cfg = self._cfg(configuration)
        if asset_type == AssetType.INF:
            return self.market.zero_inflation_curve(name, cfg).log_forward_ratio(t)
        if asset_type == AssetType.CR:
            return np.log(self.market.default_curve(name, cfg).survival(t))
        raise ConfigurationError(f"{asset_type.value} has no factor curve")

    def zero_inflation_curve(self, inf_index: int, configuration: Optional[str] = None):
        return self.market.zero_inflation_curve(self.inf(inf_index).name, self._cfg(configuration))

    def base_cpi(self, inf_index: int, configuration: Optional[str] = None) -> float:
        return self.zero_inflation_curve(inf_index, configuration).base_cpi

    def initial_values(self, configuration: Optional[str] = None) -> np.ndarray:
        """State at time 0: zero except the log FX and log equity spots."""
        x0 = np.zeros(self.dimension)
        for i in range(self.components(AssetType.FX)):
            x0[self.state_index(AssetType.FX, i)] = np.log(self.fx_spot(i, configuration))
        for i in range(self.components(AssetType.EQ)):
            x0[self.state_index(AssetType.EQ, i)] = np.log(self.equity_spot(i, configuration))
        return x0

    # --- IR closed forms ---------------------------------------------------

    def numeraire(self, t: float, z0, configuration: Optional[str] = None):
        """Domestic LGM numeraire N(t, z0)."""
        p = self.ir(0)
        H, zeta = p.H(t), p.zeta(t)
        P = self.discount_curve(0, configuration).discount(t)
        return np.exp(H * np.asarray(z0) + 0.5 * H * H * zeta) / P

    def discount_bond(self, ccy_index: int, t: float, T: float, z, configuration: Optional[str] = None):
        """Zero bond P_i(t, T) given the currency's LGM state z at t."""
        p = self.ir(ccy_index)
        curve = self.discount_curve(ccy_index, configuration)
        Ht, HT, zeta = p.H(t), p.H(T), p.zeta(t)
        return (
            curve.discount(T)
            / curve.discount(t)
            * np.exp(-(HT - Ht) * np.asarray(z) - 0.5 * (HT * HT - Ht * Ht) * zeta)
        )

    def reduced_discount_bond(self, t: float, T: float, z0, configuration: Optional[str] = None):
        """Domestic zero bond deflated by the numeraire."""
        return self.discount_bond(0, t, T, z0, configuration) / self.numeraire(t, z0, configuration)

    def discount_bond_option(
        self,
        ccy_index: int,
        option_type: int,
        strike: float,
        expiry: float,
        maturity: float,
        configuration: Optional[str] = None,
    ) -> float:
        """
        Time-0 price of an option on P(expiry, maturity), in currency units.

        Args:
            option_type: +1 call, -1 put
        """
        if expiry <= 0.0:
            curve = self.discount_curve(ccy_index, configuration)
            intrinsic = curve.discount(maturity) / curve.discount(max(expiry, 0.0)) - strike
            return max(option_type * intrinsic, 0.0) * curve.discount(max(expiry, 0.0))
        p = self.ir(ccy_index)
        curve = self.discount_curve(ccy_index, configuration)
        P_t, P_T = curve.discount(expiry), curve.discount(maturity)
        sigma = abs(p.H(maturity) - p.H(expiry)) * np.sqrt(p.zeta(expiry))
        if sigma < 1e-15:
            return max(option_type * (P_T - strike * P_t), 0.0)
        d_plus = np.log(P_T / (strike * P_t)) / sigma + 0.5 * sigma
        d_minus = d_plus - sigma
        w = option_type
        return float(w * (P_T * norm.cdf(w * d_plus) - strike * P_t * norm.cdf(w * d_minus)))

    def swaption(
        self,
        ccy_index: int,
        expiry: float,
        payment_times: Sequence[float],
        accruals: Sequence[float],
        strike: float,
        payer: bool = True,
        configuration: Optional[str] = None,
    ) -> float:
        """
        Time-0 price of a European swaption by Jamshidian decomposition.

        The underlying swap exchanges fixed coupons strike * accrual at
        payment_times against a single-curve floating leg starting at expiry.
        """
        times = np.asarray(payment_times, dtype=float)
        coupons = strike * np.asarray(accruals, dtype=float)
        coupons[-1] += 1.0

        def bond(z):
            return float(np.dot(coupons, self.discount_bond(ccy_index, expiry, times, z, configuration)))

        z_star = self._jamshidian_root(bond)
        strikes = self.discount_bond(ccy_index, expiry, times, z_star, configuration)
        option_type = -1 if payer else 1
        return float(
            sum(
                c * self.discount_bond_option(ccy_index, option_type, k, expiry, T, configuration)
                for c, k, T in zip(coupons, strikes, times)
            )
        )

    @staticmethod
    def _jamshidian_root(bond) -> float:
        lo, hi = -1.0, 1.0
        for _ in range(60):
            if (bond(lo) - 1.0) * (bond(hi) - 1.0) <= 0.0:
                break
            lo, hi = 2.0 * lo, 2.0 * hi
        else:
            raise CrossAssetError("Jamshidian decomposition: no root bracket found")
        return brentq(lambda z: bond(z) - 1.0, lo, hi, xtol=1e-14, rtol=1e-14, maxiter=500)

    # --- FX and equity closed forms ----------------------------------------

    def fx_forward(self, fx_index: int, T: float, configuration: Optional[str] = None) -> float:
        """FX forward of currency fx_index + 1 in domestic units."""
        spot = self.fx_spot(fx_index, configuration)
        foreign = self.discount_curve(fx_index + 1, configuration).discount(T)
        domestic = self.discount_curve(0, configuration).discount(T)
        return spot * foreign / domestic

    def equity_forward(self, eq_index: int, T: float, configuration: Optional[str] = None) -> float:
        ccy = self.factor_ccy_index(AssetType.EQ, eq_index)
        spot = self.equity_spot(eq_index, configuration)
        dividend = self.dividend_curve(eq_index, configuration).discount(T)
        return spot * dividend / self.discount_curve(ccy, configuration).discount(T)

    # --- inflation and credit closed forms ---------------------------------

    def gamma(self, asset_type: TypeLike, j: int, t: float, T: float) -> float:
        """
        Covariance between the factor's and its currency's LGM states over
        [t, T]: integral of (H_c(T)-H_c(s))(H_X(T)-H_X(s)) alpha_c alpha_X rho ds.
        """
        asset_type = _asset_type(asset_type)
        c = self.factor_ccy_index(asset_type, j)
        rho = self.correlation(AssetType.IR, c, asset_type, j)
        if rho == 0.0 or T <= t:
            return 0.0
        pc, px = self.ir(c), self.parametrization(asset_type, j)
        u, w = _gauss_legendre(float(t), float(T), self._breaks)
        integrand = (
            (pc.H(T) - pc.H(u)) * (px.H(T) - px.H(u)) * pc.alpha(u) * px.alpha(u)
        )
        return float(rho * np.dot(w, integrand))

    def _model_log_factor_curve(self, asset_type: AssetType, j: int, t: float, configuration):
        return float(self._market_log_factor_curve(asset_type, j, t, configuration)) - self.gamma(
            asset_type, j, 0.0, t
        )

    def _conditional_factor(self, asset_type: AssetType, j: int, t: float, T: float, z, configuration):
        p = self.parametrization(asset_type, j)
        Ht, HT, zeta = p.H(t), p.H(T), p.zeta(t)
        log_ratio = self._model_log_factor_curve(asset_type, j, T, configuration) - (
            self._model_log_factor_curve(asset_type, j, t, configuration)
        )
        return np.exp(log_ratio - (HT - Ht) * np.asarray(z) - 0.5 * (HT * HT - Ht * Ht) * zeta)

    def _variance_correction(self, p: Parametrization, t: float) -> float:
        """1/2 H(t)^2 zeta(t) - 1/2 integral of H^2 alpha^2 over [0, t]."""
        if t <= 0.0:
            return 0.0
        u, w = _gauss_legendre(0.0, float(t), self._breaks)
        h, a = p.H(u), p.alpha(u)
        H = p.H(t)
        return float(0.5 * H * H * p.zeta(t) - 0.5 * np.dot(w, h * h * a * a))

    def _realized_factor(self, asset_type: AssetType, j: int, t: float, z, y, configuration):
        p = self.parametrization(asset_type, j)
        log_curve = self._model_log_factor_curve(asset_type, j, t, configuration)
        return np.exp(
            log_curve - (p.H(t) * np.asarray(z) - np.asarray(y)) - self._variance_correction(p, t)
        )

    def survival_probability(self, cr_index: int, t: float, T: float, z=0.0, configuration: Optional[str] = None):
        """Conditional survival factor S(t, T) given the credit state z at t."""
        return self._conditional_factor(AssetType.CR, cr_index, t, T, z, configuration)

    def realized_survival(self, cr_index: int, t: float, z, y, configuration: Optional[str] = None):
        """exp(-integral of the hazard rate over [0, t]) along a path."""
        return self._realized_factor(AssetType.CR, cr_index, t, z, y, configuration)

    def defaultable_discount_bond(
        self,
        cr_index: int,
        t: float,
        T: float,
        z_cr,
        z_ccy,
        configuration: Optional[str] = None,
    ):
        """
        Zero-recovery defaultable bond in the credit factor's currency,
        conditional on survival to t.
        """
        c = self.factor_ccy_index(AssetType.CR, cr_index)
        bond = self.discount_bond(c, t, T, z_ccy, configuration)
        survival = self.survival_probability(cr_index, t, T, z_cr, configuration)
        return bond * survival * np.exp(self.gamma(AssetType.CR, cr_index, t, T))

    def inflation_forward_ratio(self, inf_index: int, t: float, T: float, z=0.0, configuration: Optional[str] = None):
        """Conditional forward index ratio I(T) / I(t) factor given the state z at t."""
        return self._conditional_factor(AssetType.INF, inf_index, t, T, z, configuration)

    def inflation_index_ratio(self, inf_index: int, t: float, z, y, configuration: Optional[str] = None):
        """Realised index ratio I(t) / I(0) along a path."""
        return self._realized_factor(AssetType.INF, inf_index, t, z, y, configuration)

    def inflation_index(self, inf_index: int, t: float, z, y, configuration: Optional[str] = None):
        return self.base_cpi(inf_index, configuration) * self.inflation_index_ratio(
            inf_index, t, z, y, configuration
        )

    # --- dynamics ----------------------------------------------------------

    def _fx_vol_of_ccy(self, c: int, u):
        """sigma of the FX factor of currency c (zero for the domestic currency)."""
        if c == 0:
            return np.zeros_like(u)
        return self.fx(c - 1).sigma(u)

    def _rho(self, r1: int, r2: int) -> float:
        return float(self._correlation[r1, r2])

    def _row_volatility(self, r: int, u: np.ndarray) -> np.ndarray:
        k, aux = self._rows[r]
        p = self._params[k]
        if not p.is_lgm:
            return np.asarray(p.sigma(u))
        alpha = np.asarray(p.alpha(u))
        return alpha * np.asarray(p.H(u)) if aux else alpha

    def _row_drift(self, r: int, u: np.ndarray) -> np.ndarray:
        """Deterministic part of the drift, without initial curve forwards."""
        k, aux = self._rows[r]
        p = self._params[k]
        t = p.asset_type
        p0 = self.ir(0)
        z0 = self.state_index(AssetType.IR, 0)
        H0a0 = np.asarray(p0.H(u)) * np.asarray(p0.alpha(u))

        if t == AssetType.IR:
            i = self._by_type[t].index(k)
            if i == 0:
                return np.zeros_like(u)
            alpha, H = np.asarray(p.alpha(u)), np.asarray(p.H(u))
            fx_row = self.state_index(AssetType.FX, i - 1)
            return (
                -H * alpha * alpha
                + H0a0 * alpha * self._rho(z0, r)
                - np.asarray(self.fx(i - 1).sigma(u)) * alpha * self._rho(fx_row, r)
            )

        if t == AssetType.FX:
            i = self._by_type[t].index(k)
            pf = self.ir(i + 1)
            sigma = np.asarray(p.sigma(u))
            return (
                np.asarray(p0.Hprime(u)) * np.asarray(p0.H(u)) * np.asarray(p0.zeta(u))
                - np.asarray(pf.Hprime(u)) * np.asarray(pf.H(u)) * np.asarray(pf.zeta(u))
                - 0.5 * sigma * sigma
                + H0a0 * sigma * self._rho(z0, r)
            )

        c = self.ccy_index(p.currency)
        pc = self.ir(c)
        quanto_vol = self._fx_vol_of_ccy(c, u)
        quanto_rho = self._rho(self.state_index(AssetType.FX, c - 1), r) if c > 0 else 0.0

        if t == AssetType.EQ:
            sigma = np.asarray(p.sigma(u))
            return (
                np.asarray(pc.Hprime(u)) * np.asarray(pc.H(u)) * np.asarray(pc.zeta(u))
                - 0.5 * sigma * sigma
                + H0a0 * sigma * self._rho(z0, r)
                - quanto_vol * sigma * quanto_rho
            )

        # INF / CR: both rows share the driver of the primary row
        primary = self._offsets[k]
        alpha, H = np.asarray(p.alpha(u)), np.asarray(p.H(u))
        drift_z = (
            -H * alpha * alpha
            + H0a0 * alpha * self._rho(z0, primary)
            - quanto_vol * alpha * quanto_rho
        )
        return H * drift_z if aux else drift_z

    def _row_couplings(self, r: int) -> List[Tuple[int, float, Parametrization]]:
        """(column, sign, IR parametrization) of state-dependent drift terms sign * H'(t) z."""
        k, _ = self._rows[r]
        p = self._params[k]
        if p.asset_type == AssetType.FX:
            i = self._by_type[AssetType.FX].index(k)
            return [
                (self.state_index(AssetType.IR, 0), 1.0, self.ir(0)),
                (self.state_index(AssetType.IR, i + 1), -1.0, self.ir(i + 1)),
            ]
        if p.asset_type == AssetType.EQ:
            c = self.ccy_index(p.currency)
            return [(self.state_index(AssetType.IR, c), 1.0, self.ir(c))]
        return []

    def _row_curve_integral(self, r: int, s: float, t: float, configuration: Optional[str]) -> float:
        """Integral over [s, t] of the initial-curve forward terms of the drift."""
        k, _ = self._rows[r]
        p = self._params[k]
        if p.asset_type == AssetType.FX:
            i = self._by_type[AssetType.FX].index(k)
            return self.discount_curve(0, configuration).log_discount_ratio(s, t) - (
                self.discount_curve(i + 1, configuration).log_discount_ratio(s, t)
            )
        if p.asset_type == AssetType.EQ:
            c = self.ccy_index(p.currency)
            i = self._by_type[AssetType.EQ].index(k)
            return self.discount_curve(c, configuration).log_discount_ratio(s, t) - (
                self.dividend_curve(i, configuration).log_discount_ratio(s, t)
            )
        return 0.0

    def transition_matrix(self, t0: float, dt: float) -> np.ndarray:
        """Phi(t0 + dt, t0): sensitivity of the conditional mean to the start state."""
        phi = np.eye(self.dimension)
        for r in range(self.dimension):
            for col, sign, pc in self._row_couplings(r):
                phi[r, col] += sign * (pc.H(t0 + dt) - pc.H(t0))
        return phi

    def closure(self, indices: Optional[Sequence[int]] = None) -> List[int]:
        """Smallest index set containing ``indices`` whose moments are self-contained."""
        if indices is None:
            return list(range(self.dimension))
        result = set(int(i) for i in indices)
        for r in list(result):
            if not 0 <= r < self.dimension:
                raise DimensionError(f"state index {r} out of range 0..{self.dimension - 1}")
            for col, _, _ in self._row_couplings(r):
                result.add(col)
        return sorted(result)

    def drift(self, t: float, x: np.ndarray, configuration: Optional[str] = None, dt: float = 0.0) -> np.ndarray:
        """
        Local drift at time t for states x (shape (n,) or (paths, n)).

        The initial-curve forward terms are averaged over [t, t + dt] when dt
        is positive, and taken as the instantaneous forwards otherwise.
        """
        x = np.asarray(x, dtype=float)
        u = np.array([t])
        drift = np.zeros_like(x)
        for r in range(self.dimension):
            value = float(self._row_drift(r, u)[0])
            if dt > 0.0:
                value += self._row_curve_integral(r, t, t + dt, configuration) / dt
            else:
                value += self._instantaneous_curve_drift(r, t, configuration)
            drift[..., r] = value
            for col, sign, pc in self._row_couplings(r):
                drift[..., r] += sign * float(pc.Hprime(t)) * x[..., col]
        return drift

    def _instantaneous_curve_drift(self, r: int, t: float, configuration: Optional[str]) -> float:
        k, _ = self._rows[r]
        p = self._params[k]
        if p.asset_type == AssetType.FX:
            i = self._by_type[AssetType.FX].index(k)
            return self.discount_curve(0, configuration).forward(t) - self.discount_curve(
                i + 1, configuration
            ).forward(t)
        if p.asset_type == AssetType.EQ:
            c = self.ccy_index(p.currency)
            i = self._by_type[AssetType.EQ].index(k)
            return self.discount_curve(c, configuration).forward(t) - self.dividend_curve(
                i, configuration
            ).forward(t)
        return 0.0

    def diffusion(self, t: float) -> np.ndarray:
        """Local volatilities of all states at t (diagonal of the diffusion)."""
        u = np.array([t])
        return np.array([float(self._row_volatility(r, u)[0]) for r in range(self.dimension)])

    def expectation(
        self,
        t0: float,
        x0: np.ndarray,
        dt: float,
        indices: Optional[Sequence[int]] = None,
        configuration: Optional[str] = None,
    ) -> np.ndarray:
        """
        Analytic E[x(t0 + dt) | x(t0) = x0].

        Args:
            t0: Start time
            x0: Full state at t0, shape (n,) or (paths, n)
            dt: Horizon
            indices: Optional state subset; only its dependency closure is
                evaluated
            configuration: Market configuration of the initial curves

        Returns:
            Conditional mean over ``indices`` (all states if None)
        """
        x0 = np.asarray(x0, dtype=float)
        if x0.shape[-1] != self.dimension:
            raise DimensionError(f"state has size {x0.shape[-1]}, model dimension is {self.dimension}")
        rows = self.closure(indices)
        t = t0 + dt
        u, w = _gauss_legendre(float(t0), float(t), self._breaks)
        drifts = {r: self._row_drift(r, u) for r in rows}
        mean = np.array(x0[..., rows], dtype=float, copy=True)
        for a, r in enumerate(rows):
            integrand = drifts[r].copy()
            for col, sign, pc in self._row_couplings(r):
                coupling = sign * (pc.H(t) - np.asarray(pc.H(u)))
                integrand = integrand + coupling * drifts[col]
                mean[..., a] += sign * (pc.H(t) - pc.H(t0)) * x0[..., col]
            mean[..., a] += np.dot(w, integrand) + self._row_curve_integral(r, t0, t, configuration)
        if indices is None:
            return mean
        position = {r: a for a, r in enumerate(rows)}
        return mean[..., [position[int(i)] for i in indices]]

    def covariance(
        self,
        t0: float,
        x0: Optional[np.ndarray],
        dt: float,
        indices: Optional[Sequence[int]] = None,
    ) -> np.ndarray:
        """
        Analytic Cov[x(t0 + dt) | x(t0)]; independent of x0.

        Args:
            t0: Start time
            x0: Ignored, accepted for interface symmetry
            dt: Horizon
            indices: Optional state subset
        """
        rows = self.closure(indices)
        t = t0 + dt
        u, w = _gauss_legendre(float(t0), float(t), self._breaks)
        m = len(rows)
        position = {r: a for a, r in enumerate(rows)}
        if len(u) == 0:
            return np.zeros((m, m)) if indices is None else np.zeros((len(indices), len(indices)))

        phi = np.zeros((len(u), m, m))
        phi[:, np.arange(m), np.arange(m)] = 1.0
        for a, r in enumerate(rows):
            for col, sign, pc in self._row_couplings(r):
                phi[:, a, position[col]] += sign * (pc.H(t) - np.asarray(pc.H(u)))
        vols = np.array([np.asarray(self._row_volatility(r, u)) for r in rows])
        g = phi * vols.T[:, None, :]
        corr = self._correlation[np.ix_(rows, rows)]
        cov = np.einsum("k,kij,jl,kml->im", w, g, corr, g)
        cov = 0.5 * (cov + cov.T)
        if indices is None:
            return cov
        sel = [position[int(i)] for i in indices]
        return cov[np.ix_(sel, sel)]

    def state_process(self, discretization: str = "exact"):
        """Joint state process under the "exact" or "euler" discretization."""
        from .stateprocess import EulerStateProcess, ExactStateProcess

        kind = str(discretization).lower()
        if kind == "exact":
            return ExactStateProcess(self)
        if kind == "euler":
            return EulerStateProcess(self)
        raise ConfigurationError(f"unknown discretization '{discretization}'")

    # --- calibration -------------------------------------------------------

    def calibrate_global(
        self,
        asset_type: TypeLike,
        index: int,
        helpers: Sequence,
        kinds: Sequence[str] = ("volatility",),
        end_criteria: Optional[EndCriteria] = None,
    ) -> CalibrationResult:
        """Simultaneous fit of ``kinds`` of one factor to its basket."""
        p = self.parametrization(asset_type, index)
        result = calibrate_global(p, helpers, kinds, end_criteria)
        self.update()
        return result

    def calibrate_iterative(
        self,
        asset_type: TypeLike,
        index: int,
        helpers: Sequence,
        kind: str = "volatility",
        end_criteria: Optional[EndCriteria] = None,
    ) -> CalibrationResult:
        """Segment-by-segment bootstrap of ``kind`` of one factor."""
        p = self.parametrization(asset_type, index)
        result = calibrate_iterative(p, helpers, kind, end_criteria)
        self.update()
        return result

    def calibrate_irlgm1f_volatilities_global(self, ccy: int, helpers, end_criteria=None):
        return self.calibrate_global(AssetType.IR, ccy, helpers, ("volatility",), end_criteria)

    def calibrate_irlgm1f_volatilities_iterative(self, ccy: int, helpers, end_criteria=None):
        return self.calibrate_iterative(AssetType.IR, ccy, helpers, "volatility", end_criteria)

    def calibrate_bs_volatilities_global(self, asset_type: TypeLike, index: int, helpers, end_criteria=None):
        if _asset_type(asset_type) not in (AssetType.FX, AssetType.EQ):
            raise ConfigurationError(f"{asset_type} is not a Black-Scholes factor")
        return self.calibrate_global(asset_type, index, helpers, ("volatility",), end_criteria)

    def calibrate_bs_volatilities_iterative(self, asset_type: TypeLike, index: int, helpers, end_criteria=None):
        if _asset_type(asset_type) not in (AssetType.FX, AssetType.EQ):
            raise ConfigurationError(f"{asset_type} is not a Black-Scholes factor")
        return self.calibrate_iterative(asset_type, index, helpers, "volatility", end_criteria)

    def calibrate_infdk_volatilities_global(self, index: int, helpers, end_criteria=None):
        return self.calibrate_global(AssetType.INF, index, helpers, ("volatility",), end_criteria)

    def calibrate_infdk_volatilities_iterative(self, index: int, helpers, end_criteria=None):
        return self.calibrate_iterative(AssetType.INF, index, helpers, "volatility", end_criteria)

    def calibrate_infdk_reversions_global(self, index: int, helpers, end_criteria=None):
        return self.calibrate_global(AssetType.INF, index, helpers, ("reversion",), end_criteria)

    def calibrate_infdk_reversions_iterative(self, index: int, helpers, end_criteria=None):
        return self.calibrate_iterative(AssetType.INF, index, helpers, "reversion", end_criteria)

    def calibrate_infdk_global(self, index: int, helpers, end_criteria=None):
        """Joint fit of inflation volatility and reversion."""
        return self.calibrate_global(AssetType.INF, index, helpers, ("volatility", "reversion"), end_criteria)

    def __repr__(self) -> str:
        return f"CrossAssetModel({', '.join(self.factor_names)})"


class ModelHandle:
    """
    Re-bindable reference to the current model.

    Attribute access is forwarded to the linked model, so holders keep using
    the handle across rebuilds.
    """

    def __init__(self, model: Optional[CrossAssetModel] = None):
        self._model = model

    def link_to(self, model: Optional[CrossAssetModel]) -> None:
        self._model = model

    @property
    def empty(self) -> bool:
        return self._model is None

    @property
    def current(self) -> CrossAssetModel:
        if self._model is None:
            raise CrossAssetError("model handle is empty")
        return self._model

    def __getattr__(self, name: str):
        if name.startswith("_"):
            raise AttributeError(name)
        return getattr(self.current, name)
