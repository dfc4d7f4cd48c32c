"""
Closed-form model prices of the calibration instruments.

Each formula is bound to a model, a factor index and the market
configuration its curves are read from, and is called with a calibration
helper:

    >>> formula = AnalyticCcLgmFxOptionFormula(model, fx_index=0, configuration="fx")
    >>> helper.set_pricing_formula(formula)
    >>> helper.model_value()

Curves are looked up on every call, so the same formula object sees the
market configuration it was created for no matter which configuration the
model itself defaults to.
"""

import logging
from typing import Optional

import numpy as np

from ..models.parametrization import AssetType
from .black import black_formula

logger = logging.getLogger(__name__)


class AnalyticLgmSwaptionFormula:
    """European swaption in the LGM model of one currency (Jamshidian)."""

    def __init__(self, model, ccy_index: int, configuration: Optional[str] = None):
        self.model = model
        self.ccy_index = ccy_index
        self.configuration = configuration

    def __call__(self, helper) -> float:
        return self.model.swaption(
            self.ccy_index,
            helper.expiry,
            helper.payment_times,
            helper.accruals,
            helper.strike,
            payer=helper.payer,
            configuration=self.configuration,
        )


class AnalyticCcLgmFxOptionFormula:
    """
    FX option in the cross-currency LGM model.

    Under the domestic T-forward measure ln x(T) is Gaussian with the model
    variance of the FX state and mean fixed by the FX forward, so the price
    is a Black formula on the forward.
    """

    def __init__(self, model, fx_index: int, configuration: Optional[str] = None):
        self.model = model
        self.fx_index = fx_index
        self.configuration = configuration

    def __call__(self, helper) -> float:
        T = helper.expiry
        state = self.model.state_index(AssetType.FX, self.fx_index)
        variance = self.model.covariance(0.0, None, T, [state])[0, 0]
        forward = self.model.fx_forward(self.fx_index, T, self.configuration)
        discount = self.model.discount_curve(0, self.configuration).discount(T)
        return black_formula(
            forward, helper.strike, np.sqrt(max(variance, 0.0)), discount, helper.option_type
        )


class AnalyticXAssetEquityOptionFormula:
    """Equity option priced in the equity's currency ``ccy_index``."""

    def __init__(self, model, eq_index: int, ccy_index: int, configuration: Optional[str] = None):
        self.model = model
        self.eq_index = eq_index
        self.ccy_index = ccy_index
        self.configuration = configuration

    def __call__(self, helper) -> float:
        T = helper.expiry
        state = self.model.state_index(AssetType.EQ, self.eq_index)
        variance = self.model.covariance(0.0, None, T, [state])[0, 0]
        forward = self.model.equity_forward(self.eq_index, T, self.configuration)
        discount = self.model.discount_curve(self.ccy_index, self.configuration).discount(T)
        return black_formula(
            forward, helper.strike, np.sqrt(max(variance, 0.0)), discount, helper.option_type
        )


class AnalyticDkCpiCapFloorFormula:
    """
    Zero-coupon CPI cap/floor in the Dodgson-Kainth model.

    The payoff at T is (I(T)/I(0) - (1+k)^T)^+ per unit notional (cap). The
    log index ratio is Gaussian with variance Var(H(T) z(T) - y(T)), read
    from the model covariance of the factor's two states.
    """

    def __init__(self, model, inf_index: int, base_cpi: float, configuration: Optional[str] = None):
        self.model = model
        self.inf_index = inf_index
        self.base_cpi = float(base_cpi)
        self.configuration = configuration

    def variance(self, T: float) -> float:
        z = self.model.state_index(AssetType.INF, self.inf_index)
        cov = self.model.covariance(0.0, None, T, [z, z + 1])
        H = float(self.model.inf(self.inf_index).H(T))
        return float(H * H * cov[0, 0] - 2.0 * H * cov[0, 1] + cov[1, 1])

    def __call__(self, helper) -> float:
        T = helper.expiry
        p = self.model.inf(self.inf_index)
        ccy = self.model.ccy_index(p.currency)
        curve = self.model.zero_inflation_curve(self.inf_index, self.configuration)
        forward_ratio = float(curve.forward_ratio(T))
        discount = self.model.discount_curve(ccy, self.configuration).discount(T)
        strike_ratio = (1.0 + helper.strike_rate) ** T
        stdev = np.sqrt(max(self.variance(T), 0.0))
        price = black_formula(
            self.base_cpi * forward_ratio,
            self.base_cpi * strike_ratio,
            stdev,
            discount,
            helper.option_type,
        )
        return price / self.base_cpi
