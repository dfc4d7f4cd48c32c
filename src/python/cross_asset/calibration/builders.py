"""
Per-factor sub-builders.

A sub-builder turns one factor configuration plus market data into a
Parametrization and a calibration basket, and reports the basket's error
once the factor has been calibrated. It also records a snapshot of every
market object it read, so ``requires_recalibration()`` can tell whether
its inputs moved since it was built.

    LgmBuilder      IR factor; calibrates itself at construction against
                    its swaption basket in a one-currency model
    FxBsBuilder     FX factor; basket of FX options
    EqBsBuilder     equity factor; basket of equity options
    InfDkBuilder    inflation factor; basket of zero-coupon CPI caps/floors

FX, equity and inflation factors are calibrated later by the orchestrator
inside the joint model.
"""

import logging
from typing import Any, List, Optional, Sequence

import numpy as np

from ..config import (
    CalibrationType,
    CrossAssetModelConfig,
    EqBsConfig,
    FxBsConfig,
    InfDkConfig,
    IrLgmConfig,
    ParameterConfig,
    ParamType,
)
from ..exceptions import ConfigurationError
from ..market.market import DEFAULT_CONFIGURATION, Market
from ..market.quotes import Observable, has_changed_since, snapshot
from ..models.calibrator import CalibrationResult, EndCriteria, basket_error
from ..models.crossassetmodel import CrossAssetModel
from ..models.parametrization import AssetType, Parametrization, eqbs, fxbs, infdk, irlgm1f
from ..pricing.engines import AnalyticLgmSwaptionFormula
from .helpers import CalibrationHelper, CpiCapFloorHelper, FxEqOptionHelper, SwaptionHelper

logger = logging.getLogger(__name__)

_ATM_STRIKES = ("ATM", "ATMF")


def _broadcast(values: Sequence[Any], n: int, default: Any, what: str) -> List[Any]:
    values = list(values)
    if not values:
        return [default] * n
    if len(values) == 1:
        return values * n
    if len(values) != n:
        raise ConfigurationError(f"{what}: {len(values)} entries for {n} instruments")
    return values


def _strike(value: Any) -> Optional[float]:
    if isinstance(value, str):
        if value.upper() in _ATM_STRIKES:
            return None
        raise ConfigurationError(f"unknown strike '{value}'")
    return None if value is None else float(value)


def use_iterative(calibration_type: CalibrationType, parameter: ParameterConfig) -> bool:
    """Bootstrap calibration runs segment by segment on piecewise constant shapes only."""
    return (
        calibration_type == CalibrationType.BOOTSTRAP
        and parameter.param_type == ParamType.PIECEWISE_CONSTANT
    )


def validate_cross_references(config: CrossAssetModelConfig) -> None:
    """
    Check that FX, equity and inflation configurations fit the IR currencies.

    Raises:
        ConfigurationError: On a wrong FX count, an FX pair that does not
            match the IR currency order, or a factor in an unknown currency
    """
    if not config.ir_configs:
        raise ConfigurationError("at least one IR configuration required")
    currencies = [c.currency for c in config.ir_configs]
    if len(config.fx_configs) != len(currencies) - 1:
        raise ConfigurationError(
            f"FX configuration count ({len(config.fx_configs)}) must equal "
            f"IR configuration count ({len(currencies)}) minus one"
        )
    domestic = currencies[0]
    for i, fx in enumerate(config.fx_configs):
        if fx.foreign_ccy != currencies[i + 1]:
            raise ConfigurationError(
                f"FX configuration {i} ({fx.pair}): foreign currency must be {currencies[i + 1]}"
            )
        if fx.domestic_ccy != domestic:
            raise ConfigurationError(
                f"FX configuration {i} ({fx.pair}): domestic currency must be {domestic}"
            )
    for eq in config.eq_configs:
        if eq.currency not in currencies:
            raise ConfigurationError(f"equity {eq.name}: currency {eq.currency} is not an IR currency")
    for inf in config.inf_configs:
        if inf.currency not in currencies:
            raise ConfigurationError(f"inflation index {inf.index}: currency {inf.currency} is not an IR currency")


class SubBuilder:
    """
    Common protocol of the sub-builders.

    Attributes:
        market: Market container
        config: Factor configuration record
        configuration: Market configuration the basket is built from
    """

    def __init__(self, market: Market, config, configuration: str = DEFAULT_CONFIGURATION):
        self.market = market
        self.config = config
        self.configuration = configuration
        self._parametrization: Optional[Parametrization] = None
        self._basket: List[CalibrationHelper] = []
        self._dependencies: List[Observable] = []
        self._snapshot = ()
        self.result: Optional[CalibrationResult] = None

    @property
    def parametrization(self) -> Parametrization:
        return self._parametrization

    @property
    def basket(self) -> List[CalibrationHelper]:
        return list(self._basket)

    @property
    def calibration_type(self) -> CalibrationType:
        return self.config.calibration_type

    @property
    def requires_calibration(self) -> bool:
        return self.calibration_type != CalibrationType.NONE and self.calibrated_kinds() != ()

    def calibrated_kinds(self) -> tuple:
        return ("volatility",) if self.config.volatility.calibrate else ()

    def use_iterative(self, kind: str = "volatility") -> bool:
        return use_iterative(self.calibration_type, getattr(self.config, kind))

    def error(self) -> float:
        """Root-mean-square basket error; 0 for factors that are not calibrated."""
        if not self._basket or not all(h.has_pricing_formula for h in self._basket):
            return 0.0
        return basket_error(self._basket)

    def dependencies(self) -> List[Observable]:
        return list(self._dependencies)

    def _track(self, *observables: Observable) -> None:
        for o in observables:
            if all(o is not d for d in self._dependencies):
                self._dependencies.append(o)

    def _check_basket_size(self) -> None:
        """
        A piecewise kind is fitted with one instrument per segment.

        Raises:
            ConfigurationError: If the basket size is not the number of
                breakpoints plus one for a calibrated piecewise kind
        """
        for kind in self.calibrated_kinds():
            function = self._parametrization.function(kind)
            if function.param_type == ParamType.CONSTANT or function.size == 1:
                continue
            if len(self._basket) != function.size:
                raise ConfigurationError(
                    f"{self._parametrization.key}: basket has {len(self._basket)} instruments but "
                    f"{kind} has {function.size - 1} breakpoints, expected {function.size} instruments"
                )

    def _freeze(self) -> None:
        if self._basket:
            self._check_basket_size()
        for helper in self._basket:
            self._track(*helper.dependencies())
        self._snapshot = snapshot(self._dependencies)

    def requires_recalibration(self) -> bool:
        """True if any market object read at build time changed since."""
        return has_changed_since(self._snapshot, self._dependencies)

    @staticmethod
    def _function_args(parameter: ParameterConfig):
        return {
            "values": list(parameter.values),
            "times": list(parameter.times) or None,
            "param_type": parameter.param_type,
        }


class LgmBuilder(SubBuilder):
    """
    Builds and calibrates the LGM parametrization of one currency.

    Calibration runs at construction in a one-currency model on the
    builder's market configuration. Afterwards H is re-expressed with the
    configured ``scaling`` and, if ``shift_horizon`` is set, shifted so that
    H(shift_horizon) = 0; both leave all model prices unchanged.
    """

    def __init__(
        self,
        market: Market,
        config: IrLgmConfig,
        configuration: str = DEFAULT_CONFIGURATION,
        end_criteria: Optional[EndCriteria] = None,
    ):
        super().__init__(market, config, configuration)
        self.end_criteria = end_criteria or EndCriteria()
        self.currency = config.currency
        vol = self._function_args(config.volatility)
        rev = self._function_args(config.reversion)
        self._parametrization = irlgm1f(
            config.currency,
            volatility=vol["values"],
            reversion=rev["values"],
            volatility_times=vol["times"],
            reversion_times=rev["times"],
            volatility_type=vol["param_type"],
            reversion_type=rev["param_type"],
        )
        curve = market.discount_curve(config.currency, configuration)
        self._track(curve)
        if self.requires_calibration:
            self._basket = self._build_basket(curve)
        self._freeze()
        self.calibrate()
        self._apply_adjustments()

    def calibrated_kinds(self) -> tuple:
        kinds = []
        if self.config.volatility.calibrate:
            kinds.append("volatility")
        if self.config.reversion.calibrate:
            kinds.append("reversion")
        return tuple(kinds)

    def _build_basket(self, curve) -> List[SwaptionHelper]:
        cfg = self.config
        expiries = cfg.option_expiries
        if not expiries:
            raise ConfigurationError(f"IR:{cfg.currency}: calibration requested but no swaption expiries")
        terms = _broadcast(cfg.swap_terms, len(expiries), None, f"IR:{cfg.currency} swap terms")
        if any(t is None for t in terms):
            raise ConfigurationError(f"IR:{cfg.currency}: swap terms required")
        strikes = _broadcast(cfg.strikes, len(expiries), "ATM", f"IR:{cfg.currency} strikes")
        volatility = self.market.swaption_volatility(cfg.currency, self.configuration)
        basket = [
            SwaptionHelper(
                expiry,
                term,
                curve,
                volatility,
                strike=_strike(k),
                fixed_frequency=cfg.fixed_frequency,
            )
            for expiry, term, k in zip(expiries, terms, strikes)
        ]
        logger.debug(f"IR:{cfg.currency}: swaption basket of {len(basket)} instruments")
        return basket

    def calibrate(self) -> Optional[CalibrationResult]:
        key = f"IR:{self.currency}"
        if not self.requires_calibration:
            logger.debug(f"{key}: calibration not requested")
            return None
        model = CrossAssetModel([self._parametrization], np.eye(1), self.market, self.configuration)
        formula = AnalyticLgmSwaptionFormula(model, 0, self.configuration)
        for helper in self._basket:
            helper.set_pricing_formula(formula)

        kinds = self.calibrated_kinds()
        if len(kinds) == 1 and self.use_iterative(kinds[0]):
            self.result = model.calibrate_iterative(AssetType.IR, 0, self._basket, kinds[0], self.end_criteria)
        else:
            self.result = model.calibrate_global(AssetType.IR, 0, self._basket, kinds, self.end_criteria)
        logger.info(f"{key}: {self.result.method} calibration of {kinds}, rmse={self.result.rmse:.3e}")
        for helper, err in zip(self._basket, self.result.errors):
            logger.debug(f"{key}: {helper.description} error={err:.3e}")
        return self.result

    def _apply_adjustments(self) -> None:
        p = self._parametrization
        p.scaling = float(self.config.scaling)
        p.shift = 0.0
        if self.config.shift_horizon is not None:
            p.shift = -float(p.H(self.config.shift_horizon))
            logger.debug(f"IR:{self.currency}: H shifted by {p.shift:.6g} to vanish at {self.config.shift_horizon}")


class FxBsBuilder(SubBuilder):
    """Black-Scholes FX factor of ``foreign_ccy`` against the domestic currency."""

    def __init__(self, market: Market, config: FxBsConfig, configuration: str = DEFAULT_CONFIGURATION):
        super().__init__(market, config, configuration)
        vol = self._function_args(config.volatility)
        self._parametrization = fxbs(
            config.foreign_ccy,
            config.domestic_ccy,
            volatility=vol["values"],
            volatility_times=vol["times"],
            volatility_type=vol["param_type"],
        )
        if self.requires_calibration:
            self._basket = self._build_basket()
        self._freeze()

    def _build_basket(self) -> List[FxEqOptionHelper]:
        cfg = self.config
        if not cfg.option_expiries:
            raise ConfigurationError(f"FX:{cfg.pair}: calibration requested but no option expiries")
        spot = self.market.fx_spot(cfg.pair, self.configuration)
        domestic = self.market.discount_curve(cfg.domestic_ccy, self.configuration)
        foreign = self.market.discount_curve(cfg.foreign_ccy, self.configuration)
        volatility = self.market.fx_volatility(cfg.pair, self.configuration)
        strikes = _broadcast(cfg.option_strikes, len(cfg.option_expiries), "ATMF", f"FX:{cfg.pair} strikes")
        return [
            FxEqOptionHelper(expiry, spot, domestic, foreign, volatility, strike=_strike(k))
            for expiry, k in zip(cfg.option_expiries, strikes)
        ]


class EqBsBuilder(SubBuilder):
    """Black-Scholes equity factor quoted in its own currency."""

    def __init__(self, market: Market, config: EqBsConfig, configuration: str = DEFAULT_CONFIGURATION):
        super().__init__(market, config, configuration)
        vol = self._function_args(config.volatility)
        self._parametrization = eqbs(
            config.name,
            config.currency,
            volatility=vol["values"],
            volatility_times=vol["times"],
            volatility_type=vol["param_type"],
        )
        if self.requires_calibration:
            self._basket = self._build_basket()
        self._freeze()

    def _build_basket(self) -> List[FxEqOptionHelper]:
        cfg = self.config
        if not cfg.option_expiries:
            raise ConfigurationError(f"EQ:{cfg.name}: calibration requested but no option expiries")
        spot = self.market.equity_spot(cfg.name, self.configuration)
        discount = self.market.discount_curve(cfg.currency, self.configuration)
        dividend = self.market.dividend_curve(cfg.name, self.configuration)
        volatility = self.market.equity_volatility(cfg.name, self.configuration)
        strikes = _broadcast(cfg.option_strikes, len(cfg.option_expiries), "ATMF", f"EQ:{cfg.name} strikes")
        return [
            FxEqOptionHelper(expiry, spot, discount, dividend, volatility, strike=_strike(k))
            for expiry, k in zip(cfg.option_expiries, strikes)
        ]


class InfDkBuilder(SubBuilder):
    """Dodgson-Kainth inflation factor with a zero-coupon CPI cap/floor basket."""

    def __init__(self, market: Market, config: InfDkConfig, configuration: str = DEFAULT_CONFIGURATION):
        super().__init__(market, config, configuration)
        vol = self._function_args(config.volatility)
        rev = self._function_args(config.reversion)
        self._parametrization = infdk(
            config.index,
            config.currency,
            volatility=vol["values"],
            reversion=rev["values"],
            volatility_times=vol["times"],
            reversion_times=rev["times"],
            volatility_type=vol["param_type"],
            reversion_type=rev["param_type"],
        )
        self.inflation_curve = market.zero_inflation_curve(config.index, configuration)
        self._track(self.inflation_curve)
        if self.requires_calibration:
            self._basket = self._build_basket()
        self._freeze()

    @property
    def base_cpi(self) -> float:
        return self.inflation_curve.base_cpi

    def calibrated_kinds(self) -> tuple:
        kinds = []
        if self.config.volatility.calibrate:
            kinds.append("volatility")
        if self.config.reversion.calibrate:
            kinds.append("reversion")
        return tuple(kinds)

    def _build_basket(self) -> List[CpiCapFloorHelper]:
        cfg = self.config
        if not cfg.maturities:
            raise ConfigurationError(f"INF:{cfg.index}: calibration requested but no cap/floor maturities")
        if not cfg.strikes:
            raise ConfigurationError(f"INF:{cfg.index}: calibration requested but no cap/floor strikes")
        strikes = _broadcast(cfg.strikes, len(cfg.maturities), None, f"INF:{cfg.index} strikes")
        discount = self.market.discount_curve(cfg.currency, self.configuration)
        volatility = self.market.cpi_volatility(cfg.index, self.configuration)
        return [
            CpiCapFloorHelper(T, k, self.inflation_curve, discount, volatility, cfg.cap_floor)
            for T, k in zip(cfg.maturities, strikes)
        ]
