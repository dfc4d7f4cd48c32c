"""
Tests for the cross-asset model builder and its calibration cascade.

Tests cover:
- IR bootstrap, FX/EQ/INF calibration in the joint model
- Market configuration contexts per stage
- Laziness, staleness and forced recalculation
- Tolerance checks and configuration errors
- Calibration report
"""

import numpy as np
import pytest

from cross_asset.calibration import BuilderState, CrossAssetModelBuilder, orchestrator
from cross_asset.calibration.builders import LgmBuilder
from cross_asset.config import (
    ContextConfig,
    CrossAssetModelConfig,
    EqBsConfig,
    FxBsConfig,
    InfDkConfig,
    IrLgmConfig,
    ParameterConfig,
)
from cross_asset.exceptions import (
    CalibrationToleranceError,
    ConfigurationError,
    DimensionError,
    MissingMarketDataError,
)
from cross_asset.market import BlackVolSurface, SimpleQuote, SwaptionVolSurface
from cross_asset.models import infdk, irlgm1f
from cross_asset.models.calibrator import EndCriteria
from cross_asset.pricing import AnalyticDkCpiCapFloorFormula

TIGHT = EndCriteria(function_tolerance=1e-12, parameter_tolerance=1e-12, gradient_tolerance=1e-12)


def ir(ccy, calibration_type="none", **kwargs):
    return IrLgmConfig(ccy, calibration_type=calibration_type, **kwargs)


def pwc(times, values, calibrate=True):
    return ParameterConfig("piecewise_constant", times=times, values=values, calibrate=calibrate)


@pytest.fixture
def fx_config(two_currency_correlations):
    """EUR/USD with an FX vol term structure to fit."""

    def _config(calibration_type="bootstrap", **kwargs):
        kwargs.setdefault("volatility", pwc([1.0, 2.0], [0.1, 0.1, 0.1]))
        kwargs.setdefault("option_expiries", [1.0, 2.0, 3.0])
        return CrossAssetModelConfig(
            ir_configs=[ir("EUR"), ir("USD")],
            fx_configs=[FxBsConfig("USD", "EUR", calibration_type=calibration_type, **kwargs)],
            correlations=dict(two_currency_correlations),
        )

    return _config


@pytest.fixture
def fx_market(market):
    market.add_fx_volatility(
        "USDEUR", BlackVolSurface(expiries=[1.0, 2.0, 3.0], volatilities=[0.10, 0.12, 0.11])
    )
    return market


class CountingLgmBuilder(LgmBuilder):
    constructed = 0

    def __init__(self, *args, **kwargs):
        type(self).constructed += 1
        super().__init__(*args, **kwargs)


@pytest.fixture
def counting_lgm(monkeypatch):
    CountingLgmBuilder.constructed = 0
    monkeypatch.setattr(orchestrator, "LgmBuilder", CountingLgmBuilder)
    return CountingLgmBuilder


class TestIrCalibration:
    """IR stage."""

    def test_coterminal_bootstrap(self, market):
        """Test nine coterminal swaptions bootstrapped into nine vol segments."""
        config = CrossAssetModelConfig(
            ir_configs=[
                ir(
                    "EUR",
                    "bootstrap",
                    volatility=pwc([float(t) for t in range(1, 9)], [0.01] * 9),
                    option_expiries=list(range(1, 10)),
                    swap_terms=list(range(9, 0, -1)),
                ),
                ir("USD", "bootstrap", option_expiries=["5Y"], swap_terms=["5Y"]),
            ],
            fx_configs=[FxBsConfig("USD", "EUR")],
        )
        builder = CrossAssetModelBuilder(market, config, end_criteria=TIGHT)
        errors = builder.swaption_calibration_errors()
        assert len(errors) == 2
        assert max(errors) < 1e-8
        report = builder.calibration_report()
        eur = report[report["factor"] == "IR:EUR"]
        assert len(eur) == 9
        assert (eur["error"].abs() <= 1e-8).all()
        vols = builder.model().ir(0).parameter_values("volatility")
        assert len(vols) == 9
        assert np.all((vols > 0.001) & (vols < 0.05))
        steps = np.diff(vols)
        assert np.all(steps > 0.0) or np.all(steps < 0.0)
        records = builder.calibration_results()
        assert records[0].result.method == "iterative"
        assert records[1].result.method == "global"

    def test_gate(self, market):
        """Test that an infeasible IR bootstrap only raises when gated."""
        market.add_swaption_volatility(
            "EUR",
            SwaptionVolSurface(expiries=[1.0, 5.0], terms=[5.0], volatilities=[[0.002], [0.02]], vol_type="normal"),
        )
        config = CrossAssetModelConfig(
            ir_configs=[ir("EUR", "bootstrap", option_expiries=[1.0, 5.0], swap_terms=[5.0, 5.0])]
        )
        builder = CrossAssetModelBuilder(market, config)
        assert builder.swaption_calibration_errors()[0] > 1e-4

        config.gate_rate_bootstrap = True
        with pytest.raises(CalibrationToleranceError, match="IR:EUR"):
            CrossAssetModelBuilder(market, config)


class TestFxCalibration:
    """FX stage."""

    @pytest.mark.parametrize("calibration_type,method", [("bootstrap", "iterative"), ("global", "global")])
    def test_term_structure(self, fx_market, fx_config, calibration_type, method):
        builder = CrossAssetModelBuilder(fx_market, fx_config(calibration_type), end_criteria=TIGHT)
        assert builder.fx_option_calibration_errors()[0] < 1e-8
        record = [r for r in builder.calibration_results() if r.stage == "fx"][0]
        assert record.factor == "FX:USDEUR"
        assert record.result.method == method
        vols = builder.model().fx(0).parameter_values("volatility")
        assert np.all(vols > 0.0)

    def test_projection(self, fx_market, fx_config):
        """Test that unrelated factors do not change the FX calibration."""
        reduced = CrossAssetModelBuilder(fx_market, fx_config("global"), end_criteria=TIGHT)

        full_config = fx_config("global")
        full_config.ir_configs.append(ir("GBP"))
        full_config.fx_configs.append(FxBsConfig("GBP", "EUR"))
        full_config.eq_configs.append(EqBsConfig("SP5", "USD"))
        full_config.set_correlation("IR:EUR", "IR:GBP", 0.2)
        full_config.set_correlation("IR:GBP", "FX:GBPEUR", -0.1)
        full_config.set_correlation("FX:USDEUR", "FX:GBPEUR", 0.2)
        full_config.set_correlation("IR:USD", "EQ:SP5", 0.1)
        full_config.set_correlation("FX:USDEUR", "EQ:SP5", -0.1)
        full = CrossAssetModelBuilder(fx_market, full_config, end_criteria=TIGHT)

        np.testing.assert_allclose(
            full.model().fx(0).parameter_values("volatility"),
            reduced.model().fx(0).parameter_values("volatility"),
            rtol=1e-6,
        )

    def test_tolerance(self, market, fx_config):
        """Test that a bootstrap that cannot fit raises, a global fit does not."""
        market.add_fx_volatility("USDEUR", BlackVolSurface(expiries=[1.0, 5.0], volatilities=[0.05, 0.25]))
        kwargs = {"volatility": ParameterConfig(values=[0.1]), "option_expiries": [1.0, 5.0]}
        with pytest.raises(CalibrationToleranceError) as info:
            CrossAssetModelBuilder(market, fx_config("bootstrap", **kwargs))
        assert info.value.factor == "FX:USDEUR"
        assert info.value.tolerance == 1e-4

        builder = CrossAssetModelBuilder(market, fx_config("global", **kwargs))
        assert builder.fx_option_calibration_errors()[0] > 1e-4

    def test_fx_context(self, fx_market, fx_config):
        """Test that the FX stage reads its own configuration end to end."""
        fx_market.add_fx_spot("USDEUR", 0.95, "fx")
        contexts = ContextConfig(fx_calibration="fx")
        builder = CrossAssetModelBuilder(fx_market, fx_config(), contexts, end_criteria=TIGHT)
        assert builder.fx_option_calibration_errors()[0] < 1e-8
        strikes = [h.strike for h in builder._fx_builders[0].basket]
        assert strikes[0] == pytest.approx(0.95 * np.exp(-0.03))
        # the final model is bound to the default configuration
        assert builder.model().fx_spot(0) == 0.9


class TestEqCalibration:
    """EQ stage."""

    def test_bootstrap(self, market, two_currency_correlations):
        market.add_equity_volatility("SP5", BlackVolSurface(expiries=[1.0, 3.0], volatilities=[0.2, 0.25]))
        config = CrossAssetModelConfig(
            ir_configs=[ir("EUR"), ir("USD")],
            fx_configs=[FxBsConfig("USD", "EUR")],
            eq_configs=[
                EqBsConfig("SP5", "USD", "bootstrap", volatility=pwc([1.0], [0.2, 0.2]), option_expiries=[1.0, 3.0])
            ],
            correlations={**two_currency_correlations, ("FX:USDEUR", "EQ:SP5"): -0.3, ("IR:USD", "EQ:SP5"): 0.2},
        )
        builder = CrossAssetModelBuilder(market, config, end_criteria=TIGHT)
        assert builder.eq_option_calibration_errors()[0] < 1e-8
        assert builder.model().eq(0).key == "EQ:SP5"


class TestInfCalibration:
    """INF stage, against CPI vols implied from a reference model."""

    @staticmethod
    def _implied_vols(build_model, parametrization, maturities):
        reference = build_model([irlgm1f("EUR"), parametrization])
        formula = AnalyticDkCpiCapFloorFormula(reference, 0, 100.0)
        return [float(np.sqrt(formula.variance(T) / T)) for T in maturities]

    def _build(self, market, maturities, inf_config):
        config = CrossAssetModelConfig(
            ir_configs=[ir("EUR")],
            inf_configs=[inf_config],
            correlations={("IR:EUR", "INF:EUHICPXT"): 0.2},
        )
        return CrossAssetModelBuilder(market, config, end_criteria=TIGHT)

    def test_volatility_bootstrap(self, market, build_model):
        maturities = [3.0, 6.0, 10.0]
        reference = infdk("EUHICPXT", "EUR", volatility=[0.012, 0.008, 0.01], volatility_times=[3.0, 6.0], reversion=0.5)
        vols = self._implied_vols(build_model, reference, maturities)
        market.add_cpi_volatility("EUHICPXT", BlackVolSurface(expiries=maturities, volatilities=vols))

        inf = InfDkConfig(
            "EUHICPXT", "EUR", "bootstrap", volatility=pwc([3.0, 6.0], [0.01] * 3), maturities=maturities, strikes=[0.02]
        )
        builder = self._build(market, maturities, inf)
        assert builder.inf_cap_floor_calibration_errors()[0] < 1e-8
        np.testing.assert_allclose(
            builder.model().inf(0).parameter_values("volatility"), [0.012, 0.008, 0.01], rtol=1e-5
        )

    def test_reversion_only(self, market, build_model):
        reference = infdk("EUHICPXT", "EUR", volatility=0.01, reversion=0.3)
        market.add_cpi_volatility("EUHICPXT", BlackVolSurface(self._implied_vols(build_model, reference, [5.0])[0]))

        inf = InfDkConfig(
            "EUHICPXT",
            "EUR",
            "global",
            volatility=ParameterConfig(values=[0.01], calibrate=False),
            reversion=ParameterConfig(values=[0.5], calibrate=True),
            maturities=[5.0],
            strikes=[0.02],
        )
        builder = self._build(market, [5.0], inf)
        record = [r for r in builder.calibration_results() if r.stage == "inf"][0]
        assert record.result.kinds == ("reversion",)
        assert builder.model().inf(0).parameter_values("reversion")[0] == pytest.approx(0.3, rel=1e-4)

    def test_volatility_and_reversion(self, market, build_model):
        maturities = [2.0, 5.0, 10.0]
        reference = infdk("EUHICPXT", "EUR", volatility=0.01, reversion=0.3)
        vols = self._implied_vols(build_model, reference, maturities)
        market.add_cpi_volatility("EUHICPXT", BlackVolSurface(expiries=maturities, volatilities=vols))

        inf = InfDkConfig(
            "EUHICPXT",
            "EUR",
            "global",
            volatility=ParameterConfig(values=[0.015]),
            reversion=ParameterConfig(values=[0.5], calibrate=True),
            maturities=maturities,
            strikes=[0.02],
        )
        builder = self._build(market, maturities, inf)
        assert builder.inf_cap_floor_calibration_errors()[0] < 1e-6
        p = builder.model().inf(0)
        assert p.parameter_values("volatility")[0] == pytest.approx(0.01, rel=1e-3)
        assert p.parameter_values("reversion")[0] == pytest.approx(0.3, rel=1e-3)


class TestLifecycle:
    """Laziness, staleness and recalculation."""

    def test_idempotent(self, market, fx_config, counting_lgm):
        builder = CrossAssetModelBuilder(market, fx_config("none"))
        assert counting_lgm.constructed == 2
        first = builder.model()
        assert builder.model() is first
        builder.fx_option_calibration_errors()
        assert counting_lgm.constructed == 2
        assert builder.state == BuilderState.CALIBRATED
        assert not builder.requires_recalibration()

    def test_market_change(self, market, counting_lgm):
        quote = SimpleQuote(0.006)
        market.add_swaption_volatility("EUR", SwaptionVolSurface(quote, vol_type="normal"))
        config = CrossAssetModelConfig(ir_configs=[ir("EUR", "bootstrap", option_expiries=[5.0], swap_terms=[5.0])])
        builder = CrossAssetModelBuilder(market, config)
        handle = builder.model_handle
        before = builder.model()
        alpha = before.ir(0).alpha(1.0)

        quote.set_value(0.008)
        assert builder.requires_recalibration()
        assert counting_lgm.constructed == 1
        after = builder.model()
        assert counting_lgm.constructed == 2
        assert after is not before
        assert handle.current is after
        assert after.ir(0).alpha(1.0) > alpha
        assert not builder.requires_recalibration()

    def test_correlation_change(self, market, fx_config, counting_lgm):
        quote = SimpleQuote(0.3)
        config = fx_config("none")
        config.set_correlation("IR:EUR", "IR:USD", quote)
        builder = CrossAssetModelBuilder(market, config)
        assert builder.model().correlation_matrix[0, 1] == 0.3

        quote.set_value(0.5)
        assert builder.requires_recalibration()
        assert builder.model().correlation_matrix[0, 1] == 0.5
        assert counting_lgm.constructed == 4

    def test_force_recalculate(self, market, fx_config, counting_lgm):
        builder = CrossAssetModelBuilder(market, fx_config("none"))
        before = builder.model()
        builder.force_recalculate()
        assert counting_lgm.constructed == 4
        assert builder.model() is not before
        assert builder.state == BuilderState.CALIBRATED

    def test_failed_rebuild_keeps_model(self, market, fx_config):
        """Test that a rebuild missing the tolerance leaves the handle on the last calibrated model."""
        spot = SimpleQuote(0.9)
        market.add_fx_spot("USDEUR", spot)
        market.add_fx_volatility("USDEUR", BlackVolSurface(expiries=[1.0, 5.0], volatilities=[0.05, 0.25]))
        config = fx_config("bootstrap", volatility=ParameterConfig(values=[0.1]), option_expiries=[1.0, 5.0])
        config.bootstrap_tolerance = 10.0
        builder = CrossAssetModelBuilder(market, config)
        handle = builder.model_handle
        good = builder.model()

        config.bootstrap_tolerance = 1e-4
        spot.set_value(0.92)
        with pytest.raises(CalibrationToleranceError, match="FX:USDEUR"):
            builder.model()
        assert handle.current is good
        assert builder.state == BuilderState.STALE
        assert builder.requires_recalibration()

        config.bootstrap_tolerance = 10.0
        recovered = builder.model()
        assert recovered is not good
        assert handle.current is recovered
        assert builder.state == BuilderState.CALIBRATED


class TestErrors:
    """Configuration and market data errors."""

    def test_inconsistent_config_before_calibration(self, market, counting_lgm):
        config = CrossAssetModelConfig(ir_configs=[ir("EUR"), ir("USD")])
        with pytest.raises(ConfigurationError, match="FX configuration count"):
            CrossAssetModelBuilder(market, config)
        assert counting_lgm.constructed == 0

    def test_missing_market_data(self, market):
        config = CrossAssetModelConfig(
            ir_configs=[ir("EUR")],
            eq_configs=[EqBsConfig("DAX", "EUR", "global", option_expiries=[1.0])],
        )
        with pytest.raises(MissingMarketDataError, match="DAX"):
            CrossAssetModelBuilder(market, config)

    def test_salvaging(self, market):
        correlations = {("IR:EUR", "IR:USD"): 0.9, ("IR:EUR", "FX:USDEUR"): -0.9, ("IR:USD", "FX:USDEUR"): 0.9}
        config = CrossAssetModelConfig(
            ir_configs=[ir("EUR"), ir("USD")], fx_configs=[FxBsConfig("USD", "EUR")], correlations=correlations
        )
        with pytest.raises(DimensionError, match="positive semi-definite"):
            CrossAssetModelBuilder(market, config)

        config.salvaging = "nearest_valid"
        model = CrossAssetModelBuilder(market, config).model()
        assert np.all(np.linalg.eigvalsh(model.correlation_matrix) > -1e-10)


class TestReport:
    """Calibration report."""

    def test_report(self, fx_market, fx_config):
        config = fx_config("global")
        config.ir_configs[0] = ir("EUR", "global", option_expiries=[2.0, 5.0], swap_terms=[5.0, 5.0])
        builder = CrossAssetModelBuilder(fx_market, config)
        report = builder.calibration_report()
        assert list(report.columns) == ["stage", "factor", "instrument", "expiry", "market", "model", "error"]
        assert len(report) == 5
        assert list(report["stage"]) == ["ir", "ir", "fx", "fx", "fx"]
        assert list(report["factor"].unique()) == ["IR:EUR", "FX:USDEUR"]
        assert report.loc[0, "instrument"] == "Swaption(2Yx5Y)"

    def test_records(self, fx_market, fx_config):
        builder = CrossAssetModelBuilder(fx_market, fx_config("global"))
        records = builder.calibration_results()
        assert [r.stage for r in records] == ["ir", "ir", "fx"]
        assert records[0].to_dict()["method"] is None
        assert records[2].to_dict()["method"] == "global"
        assert "CrossAssetModelBuilder(state=calibrated" in repr(builder)
