"""
Tests for configuration loading, parsing and tenor handling.
"""

import json
import logging

import pytest

from cross_asset.config import (
    CalibrationType,
    CapFloorType,
    ContextConfig,
    CrossAssetModelConfig,
    FxBsConfig,
    InfDkConfig,
    IrLgmConfig,
    ParameterConfig,
    ParamType,
    Salvaging,
    load_config,
)
from cross_asset.exceptions import ConfigurationError
from cross_asset.market import SimpleQuote
from cross_asset.periods import parse_period, parse_periods


SAMPLE = {
    "ir_configs": [
        {
            "currency": "EUR",
            "calibration_type": "Bootstrap",
            "volatility": {"param_type": "piecewise", "times": ["1Y", "2Y"], "values": [0.01, 0.01, 0.01]},
            "option_expiries": ["1Y", "2Y", "3Y"],
            "swap_terms": ["3Y", "2Y", "1Y"],
            "shift_horizon": "20Y",
        },
        {"currency": "USD", "calibration_type": "none"},
    ],
    "fx_configs": [{"foreign_ccy": "USD", "domestic_ccy": "EUR", "option_strikes": ["ATMF", "0.95"]}],
    "inf_configs": [{"index": "EUHICPXT", "currency": "EUR", "cap_floor": "Cap", "maturities": ["5Y"], "strikes": [0.01]}],
    "correlations": [
        {"factor1": "IR:EUR", "factor2": "IR:USD", "value": "0.3"},
        {"factor1": "IR:EUR", "factor2": "FX:USDEUR", "value": -0.2},
    ],
    "bootstrap_tolerance": 1e-5,
    "salvaging": "spectral",
    "gate_rate_bootstrap": True,
    "max_iterations": 200,
}


class TestPeriods:
    """Tests for tenor parsing."""

    @pytest.mark.parametrize(
        "tenor,expected",
        [("6M", 0.5), ("2Y6M", 2.5), ("10y", 10.0), ("2W", 14.0 / 365.0), ("1.5", 1.5), (3, 3.0)],
    )
    def test_parse(self, tenor, expected):
        assert parse_period(tenor) == pytest.approx(expected)

    @pytest.mark.parametrize("tenor", ["", "Y", "5X", "1Y-6M", "abc"])
    def test_invalid(self, tenor):
        with pytest.raises(ConfigurationError, match="invalid tenor"):
            parse_period(tenor)

    def test_vectorised(self):
        assert parse_periods(["1Y", "18M"]) == pytest.approx([1.0, 1.5])


class TestEnums:
    """Tests for lenient enum parsing."""

    def test_parse(self):
        assert CalibrationType.parse("BOOTSTRAP") is CalibrationType.BOOTSTRAP
        assert ParamType.parse("Piecewise Linear") is ParamType.PIECEWISE_LINEAR
        assert ParamType.parse("piecewise") is ParamType.PIECEWISE_CONSTANT
        assert Salvaging.parse("nearest") is Salvaging.NEAREST_VALID
        assert CapFloorType.parse(CapFloorType.CAP) is CapFloorType.CAP

    def test_unknown(self):
        with pytest.raises(ConfigurationError, match="unknown CalibrationType 'fast'"):
            CalibrationType.parse("fast")


class TestFactorConfigs:
    """Tests for the per-factor configuration records."""

    def test_defaults(self):
        ir = IrLgmConfig()
        assert ir.calibration_type is CalibrationType.BOOTSTRAP
        assert ir.reversion.calibrate is False
        assert FxBsConfig().calibration_type is CalibrationType.NONE
        assert InfDkConfig().cap_floor is CapFloorType.FLOOR

    def test_tenors_converted(self):
        config = IrLgmConfig("EUR", option_expiries=["6M", "1Y"], swap_terms=["5Y", 5], shift_horizon="10Y")
        assert config.option_expiries == [0.5, 1.0]
        assert config.swap_terms == [5.0, 5.0]
        assert config.shift_horizon == 10.0

    def test_strikes(self):
        config = FxBsConfig(option_strikes=["atmf", "1.1", 0.9])
        assert config.option_strikes == ["ATMF", 1.1, 0.9]
        assert config.pair == "USDEUR"

    def test_parameter_roundtrip(self):
        parameter = ParameterConfig("piecewise_constant", times=["1Y"], values=[0.01, 0.02], calibrate=False)
        assert ParameterConfig.from_dict(parameter.to_dict()) == parameter


class TestCrossAssetModelConfig:
    """Tests for CrossAssetModelConfig."""

    def test_from_dict(self):
        config = CrossAssetModelConfig.from_dict(SAMPLE)
        eur = config.ir_configs[0]
        assert eur.volatility.param_type is ParamType.PIECEWISE_CONSTANT
        assert eur.volatility.times == [1.0, 2.0]
        assert eur.shift_horizon == 20.0
        assert config.ir_configs[1].calibration_type is CalibrationType.NONE
        assert config.fx_configs[0].option_strikes == ["ATMF", 0.95]
        assert config.inf_configs[0].cap_floor is CapFloorType.CAP
        assert config.correlations[("IR:EUR", "IR:USD")] == 0.3
        assert config.salvaging is Salvaging.NEAREST_VALID
        assert config.gate_rate_bootstrap is True
        assert config.max_iterations == 200
        assert config.bootstrap_tolerance == 1e-5
        assert config.domestic_ccy == "EUR"

    def test_to_dict_roundtrip(self):
        config = CrossAssetModelConfig.from_dict(SAMPLE)
        again = CrossAssetModelConfig.from_dict(config.to_dict())
        assert again.to_dict() == config.to_dict()

    def test_quote_correlations_serialised(self):
        config = CrossAssetModelConfig(ir_configs=[IrLgmConfig("EUR")])
        config.set_correlation("IR:EUR", "IR:USD", SimpleQuote(0.4))
        assert config.to_dict()["correlations"] == [{"factor1": "IR:EUR", "factor2": "IR:USD", "value": 0.4}]

    def test_domestic_ccy_requires_ir(self):
        with pytest.raises(ConfigurationError):
            CrossAssetModelConfig().domestic_ccy

    def test_unknown_field(self):
        with pytest.raises(TypeError):
            CrossAssetModelConfig.from_dict({"ir_configs": [{"currency": "EUR", "colour": "red"}]})

    def test_json_file(self, tmp_path):
        path = tmp_path / "model.json"
        CrossAssetModelConfig.from_dict(SAMPLE).save(str(path))
        loaded = CrossAssetModelConfig.from_file(str(path))
        assert loaded.to_dict() == CrossAssetModelConfig.from_dict(SAMPLE).to_dict()
        assert json.loads(path.read_text())["salvaging"] == "nearest_valid"

    def test_yaml_file(self, tmp_path):
        yaml = pytest.importorskip("yaml")
        path = tmp_path / "model.yaml"
        path.write_text(yaml.safe_dump(SAMPLE))
        loaded = CrossAssetModelConfig.from_file(str(path))
        assert loaded.ir_configs[0].option_expiries == [1.0, 2.0, 3.0]

    def test_missing_file(self):
        with pytest.raises(FileNotFoundError):
            CrossAssetModelConfig.from_file("/nonexistent/model.json")


class TestEnvironment:
    """Tests for environment overrides and load_config."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("XA_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("XA_LOG_FILE", "/tmp/xa.log")
        monkeypatch.setenv("XA_BOOTSTRAP_TOLERANCE", "1e-6")
        config = CrossAssetModelConfig.from_env()
        assert config.logging.level == "DEBUG"
        assert config.logging.file == "/tmp/xa.log"
        assert config.bootstrap_tolerance == 1e-6

    def test_invalid_tolerance(self, monkeypatch):
        monkeypatch.setenv("XA_BOOTSTRAP_TOLERANCE", "tight")
        with pytest.raises(ConfigurationError, match="is not a number"):
            CrossAssetModelConfig.from_env()

    def test_load_config_precedence(self, tmp_path, monkeypatch):
        """Test that the environment overrides the file."""
        path = tmp_path / "model.json"
        CrossAssetModelConfig.from_dict(SAMPLE).save(str(path))
        monkeypatch.setenv("XA_BOOTSTRAP_TOLERANCE", "1e-3")
        assert load_config(str(path)).bootstrap_tolerance == 1e-3
        assert load_config(str(path), use_env=False).bootstrap_tolerance == 1e-5

    def test_load_config_missing_file(self, caplog, monkeypatch):
        monkeypatch.delenv("XA_BOOTSTRAP_TOLERANCE", raising=False)
        with caplog.at_level(logging.WARNING):
            config = load_config("/nonexistent/model.json")
        assert config.bootstrap_tolerance == 1e-4
        assert "Config file not found" in caplog.text


class TestContextConfig:
    """Tests for ContextConfig."""

    def test_defaults_and_roundtrip(self):
        contexts = ContextConfig(fx_calibration="xois_eur")
        assert contexts.final_model == "default"
        assert ContextConfig.from_dict(contexts.to_dict()) == contexts
