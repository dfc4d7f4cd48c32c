"""
Calibration instruments.

A helper is one basket instrument: it knows its market premium (from a
quoted volatility and the market curves) and asks an attached pricing
formula for the model premium. The calibration error is the relative or
absolute premium difference.

Helpers:
    SwaptionHelper       European swaption on a single-curve fixed/float swap
    FxEqOptionHelper     European FX or equity option
    CpiCapFloorHelper    zero-coupon CPI cap or floor

Example:
    >>> helper = SwaptionHelper(5.0, 5.0, curve, SwaptionVolSurface(0.005, vol_type="normal"))
    >>> helper.set_pricing_formula(AnalyticLgmSwaptionFormula(model, 0))
    >>> helper.calibration_error()
"""

import logging
from typing import Any, Callable, Dict, List, Optional

import numpy as np

from ..config import CapFloorType
from ..exceptions import ConfigurationError
from ..market.quotes import Observable, QuoteLike, as_quote
from ..pricing.black import bachelier_formula, black_formula

logger = logging.getLogger(__name__)

ERROR_TYPES = ("relative", "absolute")


class CalibrationHelper:
    """
    Base class of basket instruments.

    Attributes:
        expiry: Option expiry (maturity for CPI caps/floors) in years
        error_type: "relative" or "absolute" premium error
    """

    def __init__(self, expiry: float, error_type: str = "relative"):
        if expiry <= 0.0:
            raise ConfigurationError(f"{type(self).__name__}: expiry must be positive, got {expiry}")
        error_type = error_type.lower()
        if error_type not in ERROR_TYPES:
            raise ConfigurationError(f"unknown calibration error type '{error_type}'")
        self.expiry = float(expiry)
        self.error_type = error_type
        self._formula: Optional[Callable[["CalibrationHelper"], float]] = None

    @property
    def description(self) -> str:
        return f"{type(self).__name__}({self.expiry:g}Y)"

    @property
    def market_value(self) -> float:
        """Market premium from the quoted volatility."""
        raise NotImplementedError

    def dependencies(self) -> List[Observable]:
        """Market objects the market premium is computed from."""
        return []

    def set_pricing_formula(self, formula: Callable[["CalibrationHelper"], float]) -> None:
        self._formula = formula

    @property
    def has_pricing_formula(self) -> bool:
        return self._formula is not None

    def model_value(self) -> float:
        if self._formula is None:
            raise ConfigurationError(f"{self.description}: no pricing formula attached")
        return float(self._formula(self))

    def calibration_error(self) -> float:
        market = self.market_value
        model = self.model_value()
        if self.error_type == "absolute":
            return model - market
        if market == 0.0:
            raise ConfigurationError(f"{self.description}: zero market premium, use an absolute error")
        return (model - market) / market

    def to_dict(self) -> Dict[str, Any]:
        model = self.model_value() if self._formula is not None else np.nan
        error = self.calibration_error() if self._formula is not None else np.nan
        return {
            "instrument": self.description,
            "expiry": self.expiry,
            "market": self.market_value,
            "model": model,
            "error": error,
        }


class SwaptionHelper(CalibrationHelper):
    """
    Swaption on a swap starting at expiry with annual (or ``fixed_frequency``)
    fixed coupons over ``term`` years, floating leg valued off the same curve.

    Args:
        expiry: Option expiry
        term: Underlying swap length
        curve: Discount curve
        volatility: SwaptionVolSurface; its vol_type and shift define the quote
        strike: Fixed rate, None for at-the-money
        fixed_frequency: Fixed coupons per year
        payer: Payer (True) or receiver swaption
        error_type: "relative" or "absolute"
    """

    def __init__(
        self,
        expiry: float,
        term: float,
        curve,
        volatility,
        strike: Optional[float] = None,
        fixed_frequency: int = 1,
        payer: bool = True,
        error_type: str = "relative",
    ):
        super().__init__(expiry, error_type)
        if term <= 0.0:
            raise ConfigurationError(f"SwaptionHelper: term must be positive, got {term}")
        if fixed_frequency < 1:
            raise ConfigurationError(f"SwaptionHelper: fixed frequency must be >= 1, got {fixed_frequency}")
        n = max(int(round(term * fixed_frequency)), 1)
        self.term = float(term)
        self.curve = curve
        self.volatility = volatility
        self.payer = bool(payer)
        self.accruals = np.full(n, 1.0 / fixed_frequency)
        self.payment_times = self.expiry + np.cumsum(self.accruals)
        self.strike = self.forward_rate() if strike is None else float(strike)

    @property
    def description(self) -> str:
        return f"Swaption({self.expiry:g}Yx{self.term:g}Y)"

    def annuity(self) -> float:
        return float(np.dot(self.accruals, self.curve.discount(self.payment_times)))

    def forward_rate(self) -> float:
        start = self.curve.discount(self.expiry)
        end = self.curve.discount(self.payment_times[-1])
        return float((start - end) / self.annuity())

    def dependencies(self) -> List[Observable]:
        return [self.curve, self.volatility]

    @property
    def market_value(self) -> float:
        vol = self.volatility.volatility(self.expiry, self.term)
        stdev = vol * np.sqrt(self.expiry)
        option_type = 1 if self.payer else -1
        forward = self.forward_rate()
        if self.volatility.vol_type == "normal":
            return bachelier_formula(forward, self.strike, stdev, self.annuity(), option_type)
        return black_formula(
            forward, self.strike, stdev, self.annuity(), option_type, self.volatility.shift
        )


class FxEqOptionHelper(CalibrationHelper):
    """
    European option on an FX rate or an equity.

    The forward is spot * P_yield(T) / P_discount(T): for FX the yield curve
    is the foreign discount curve, for equities the dividend curve.

    Args:
        expiry: Option expiry
        spot: Spot quote
        discount_curve: Curve of the premium currency
        yield_curve: Foreign discount curve (FX) or dividend curve (equity)
        volatility: BlackVolSurface
        strike: Strike, None for at-the-money forward
        option_type: +1 call, -1 put
    """

    def __init__(
        self,
        expiry: float,
        spot: QuoteLike,
        discount_curve,
        yield_curve,
        volatility,
        strike: Optional[float] = None,
        option_type: int = 1,
        error_type: str = "relative",
    ):
        super().__init__(expiry, error_type)
        if option_type not in (1, -1):
            raise ConfigurationError(f"option type must be +1 or -1, got {option_type}")
        self.spot = as_quote(spot)
        self.discount_curve = discount_curve
        self.yield_curve = yield_curve
        self.volatility = volatility
        self.option_type = option_type
        self.strike = self.forward() if strike is None else float(strike)

    @property
    def description(self) -> str:
        return f"Option({self.expiry:g}Y, K={self.strike:.6g})"

    def forward(self) -> float:
        T = self.expiry
        return float(
            self.spot.value * self.yield_curve.discount(T) / self.discount_curve.discount(T)
        )

    def dependencies(self) -> List[Observable]:
        return [self.spot, self.discount_curve, self.yield_curve, self.volatility]

    @property
    def market_value(self) -> float:
        T = self.expiry
        stdev = self.volatility.volatility(T, self.strike) * np.sqrt(T)
        return black_formula(
            self.forward(), self.strike, stdev, self.discount_curve.discount(T), self.option_type
        )


class CpiCapFloorHelper(CalibrationHelper):
    """
    Zero-coupon CPI cap or floor paying (I(T)/I(0) - (1+k)^T)^+ (cap) at T.

    Args:
        maturity: Payment date, also the option expiry
        strike_rate: Strike as an annual inflation rate k
        inflation_curve: ZeroInflationCurve
        discount_curve: Curve of the index currency
        volatility: BlackVolSurface of the index ratio
        cap_floor: CapFloorType
    """

    def __init__(
        self,
        maturity: float,
        strike_rate: float,
        inflation_curve,
        discount_curve,
        volatility,
        cap_floor: CapFloorType = CapFloorType.FLOOR,
        error_type: str = "relative",
    ):
        super().__init__(maturity, error_type)
        if strike_rate <= -1.0:
            raise ConfigurationError(f"CPI strike rate must exceed -100%, got {strike_rate}")
        self.strike_rate = float(strike_rate)
        self.inflation_curve = inflation_curve
        self.discount_curve = discount_curve
        self.volatility = volatility
        self.cap_floor = CapFloorType.parse(cap_floor)
        self.option_type = 1 if self.cap_floor == CapFloorType.CAP else -1

    @property
    def description(self) -> str:
        return f"CPI{self.cap_floor.value.capitalize()}({self.expiry:g}Y, k={self.strike_rate:.4%})"

    def dependencies(self) -> List[Observable]:
        return [self.inflation_curve, self.discount_curve, self.volatility]

    @property
    def market_value(self) -> float:
        T = self.expiry
        stdev = self.volatility.volatility(T, self.strike_rate) * np.sqrt(T)
        return black_formula(
            float(self.inflation_curve.forward_ratio(T)),
            (1.0 + self.strike_rate) ** T,
            stdev,
            self.discount_curve.discount(T),
            self.option_type,
        )
