"""
Tests for the global and iterative least-squares calibrators.

The instruments here are synthetic: each one targets the Black-Scholes
variance of an FX parametrization at its expiry, which keeps the tests
independent of market data.
"""

import numpy as np
import pytest

from cross_asset.exceptions import ConfigurationError
from cross_asset.models.calibrator import (
    CalibrationResult,
    EndCriteria,
    basket_error,
    basket_error_from,
    calibrate_global,
    calibrate_iterative,
    check_iterative,
)
from cross_asset.models.parametrization import fxbs, irlgm1f

TIGHT = EndCriteria(function_tolerance=1e-12, parameter_tolerance=1e-12, gradient_tolerance=1e-12)

class VarianceTarget:
    """Relative error of the parametrization's variance against a target."""

    def __init__(self, parametrization, expiry, volatility):
        self.parametrization = parametrization
        self.expiry = expiry
        self.target = volatility * volatility * expiry

    def calibration_error(self):
        return (self.parametrization.variance(self.expiry) - self.target) / self.target


class TestEndCriteria:
    """Tests for EndCriteria."""

    def test_kwargs(self):
        kwargs = EndCriteria(max_iterations=50, function_tolerance=1e-10).least_squares_kwargs(3)
        assert kwargs["max_nfev"] == 150
        assert kwargs["ftol"] == 1e-10
        assert kwargs["xtol"] == 1e-8


class TestBasketError:
    """Tests for the basket error aggregation."""

    def test_rmse(self):
        assert basket_error_from([3.0, -4.0]) == pytest.approx(np.sqrt(12.5))
        assert basket_error_from([]) == 0.0

    def test_from_helpers(self):
        p = fxbs("USD", "EUR", volatility=0.1)
        helpers = [VarianceTarget(p, 1.0, 0.1), VarianceTarget(p, 2.0, 0.2)]
        assert basket_error(helpers) == pytest.approx(np.sqrt(0.5 * 0.75 ** 2))


class TestGlobalCalibration:
    """Tests for calibrate_global."""

    def test_recovers_term_structure(self):
        """Test that a piecewise constant vol reproduces a vol term structure."""
        p = fxbs("USD", "EUR", volatility=[0.1, 0.1, 0.1], volatility_times=[1.0, 2.0])
        helpers = [
            VarianceTarget(p, 1.0, 0.10),
            VarianceTarget(p, 2.0, 0.12),
            VarianceTarget(p, 3.0, 0.11),
        ]
        result = calibrate_global(p, helpers, end_criteria=TIGHT)
        assert isinstance(result, CalibrationResult)
        assert result.method == "global"
        assert result.factor == "FX:USDEUR"
        assert max(abs(e) for e in result.errors) < 1e-8
        assert p.sigma(0.5) == pytest.approx(0.10, rel=1e-6)
        assert p.sigma(1.5) == pytest.approx(np.sqrt(2 * 0.0144 - 0.01), rel=1e-6)
        assert result.values["volatility"] == pytest.approx(list(p.parameter_values("volatility")))

    def test_empty_basket(self):
        with pytest.raises(ConfigurationError, match="empty calibration basket"):
            calibrate_global(fxbs("USD", "EUR"), [])

    def test_result_to_dict(self):
        p = fxbs("USD", "EUR", volatility=0.2)
        result = calibrate_global(p, [VarianceTarget(p, 2.0, 0.15)])
        d = result.to_dict()
        assert d["kinds"] == ["volatility"]
        assert d["rmse"] == pytest.approx(result.rmse)
        assert d["success"]


class TestIterativeCalibration:
    """Tests for calibrate_iterative."""

    def test_bootstrap(self):
        """Test segment-by-segment fit."""
        p = fxbs("USD", "EUR", volatility=[0.2, 0.2, 0.2], volatility_times=[1.0, 2.0])
        helpers = [
            VarianceTarget(p, 1.0, 0.10),
            VarianceTarget(p, 2.0, 0.12),
            VarianceTarget(p, 3.0, 0.11),
        ]
        result = calibrate_iterative(p, helpers, end_criteria=TIGHT)
        assert result.method == "iterative"
        assert max(abs(e) for e in result.errors) < 1e-8
        np.testing.assert_allclose(
            p.parameter_values("volatility") ** 2,
            [0.01, 2 * 0.0144 - 0.01, 3 * 0.0121 - 2 * 0.0144],
            rtol=1e-6,
        )

    def test_requires_piecewise_constant(self):
        p = fxbs("USD", "EUR", volatility=[0.1, 0.1], volatility_times=[1.0], volatility_type="piecewise_linear")
        with pytest.raises(ConfigurationError, match="piecewise constant"):
            check_iterative(p, [VarianceTarget(p, 1.0, 0.1), VarianceTarget(p, 2.0, 0.1)], "volatility")

    def test_basket_size(self):
        p = fxbs("USD", "EUR", volatility=[0.1, 0.1], volatility_times=[1.0])
        with pytest.raises(ConfigurationError, match="basket has 1 instruments"):
            check_iterative(p, [VarianceTarget(p, 1.0, 0.1)], "volatility")

    def test_expiry_outside_segment(self):
        p = fxbs("USD", "EUR", volatility=[0.1, 0.1], volatility_times=[1.0])
        helpers = [VarianceTarget(p, 1.5, 0.1), VarianceTarget(p, 2.0, 0.1)]
        with pytest.raises(ConfigurationError, match="does not fall into"):
            check_iterative(p, helpers, "volatility")

    def test_reversion_segments(self):
        """Test that reversion segments are checked like volatility segments."""
        p = irlgm1f("EUR", reversion=[0.01, 0.02], reversion_times=[2.0])
        helpers = [VarianceTarget(fxbs("USD", "EUR"), 1.0, 0.1), VarianceTarget(fxbs("USD", "EUR"), 3.0, 0.1)]
        check_iterative(p, helpers, "reversion")
