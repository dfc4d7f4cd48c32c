"""
Configuration management for the cross-asset model builder.

Supports loading from:
- Python dictionaries (e.g. parsed from an upstream configuration layer)
- YAML/JSON config files
- Environment variables (logging and bootstrap tolerance overrides)

Times may be given as year fractions or tenor strings ("6M", "10Y").

Example:
    >>> config = CrossAssetModelConfig.from_dict({
    ...     "ir_configs": [{"currency": "EUR"}, {"currency": "USD"}],
    ...     "fx_configs": [{"foreign_ccy": "USD", "domestic_ccy": "EUR"}],
    ...     "correlations": [{"factor1": "IR:EUR", "factor2": "IR:USD", "value": 0.3}],
    ... })
    >>> config.fx_configs[0].pair
    'USDEUR'
"""

import json
import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .exceptions import ConfigurationError
from .market.quotes import QuoteLike, SimpleQuote
from .periods import parse_period

logger = logging.getLogger(__name__)


class _LenientEnum(Enum):
    """Enum parsed case-insensitively from its value or member name."""

    @classmethod
    def parse(cls, value: Union[str, "_LenientEnum"]):
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        aliases = getattr(cls, "_aliases", lambda: {})()
        if text in aliases:
            return cls(aliases[text])
        for member in cls:
            if text in (member.value, member.name.lower()):
                return member
        raise ConfigurationError(f"unknown {cls.__name__} '{value}'")


class CalibrationType(_LenientEnum):
    NONE = "none"
    BOOTSTRAP = "bootstrap"
    GLOBAL = "global"


class ParamType(_LenientEnum):
    CONSTANT = "constant"
    PIECEWISE_CONSTANT = "piecewise_constant"
    PIECEWISE_LINEAR = "piecewise_linear"

    @staticmethod
    def _aliases():
        return {"piecewise": "piecewise_constant"}


class CapFloorType(_LenientEnum):
    CAP = "cap"
    FLOOR = "floor"


class Salvaging(_LenientEnum):
    NONE = "none"
    NEAREST_VALID = "nearest_valid"

    @staticmethod
    def _aliases():
        return {"spectral": "nearest_valid", "nearest": "nearest_valid"}


def _times(values) -> List[float]:
    return [parse_period(v) for v in (values or [])]


def _strikes(values) -> List[Union[float, str]]:
    result: List[Union[float, str]] = []
    for v in values or []:
        if isinstance(v, str):
            try:
                result.append(float(v))
            except ValueError:
                result.append(v.strip().upper())
        else:
            result.append(float(v))
    return result


@dataclass
class ParameterConfig:
    """Time-shape, breakpoints and initial values of one parameter family."""
    param_type: ParamType = ParamType.CONSTANT
    times: List[float] = field(default_factory=list)
    values: List[float] = field(default_factory=lambda: [0.01])
    calibrate: bool = True

    def __post_init__(self):
        self.param_type = ParamType.parse(self.param_type)
        self.times = _times(self.times)
        self.values = [float(v) for v in self.values]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ParameterConfig":
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "param_type": self.param_type.value,
            "times": list(self.times),
            "values": list(self.values),
            "calibrate": self.calibrate,
        }


@dataclass
class IrLgmConfig:
    """LGM rate factor for one currency and its swaption basket."""
    currency: str = "EUR"
    calibration_type: CalibrationType = CalibrationType.BOOTSTRAP
    volatility: ParameterConfig = field(default_factory=lambda: ParameterConfig(values=[0.01]))
    reversion: ParameterConfig = field(
        default_factory=lambda: ParameterConfig(values=[0.0], calibrate=False)
    )
    shift_horizon: Optional[float] = None
    scaling: float = 1.0
    option_expiries: List[float] = field(default_factory=list)
    swap_terms: List[float] = field(default_factory=list)
    strikes: List[Union[float, str]] = field(default_factory=list)
    fixed_frequency: int = 1

    def __post_init__(self):
        self.calibration_type = CalibrationType.parse(self.calibration_type)
        self.option_expiries = _times(self.option_expiries)
        self.swap_terms = _times(self.swap_terms)
        self.strikes = _strikes(self.strikes)
        if self.shift_horizon is not None:
            self.shift_horizon = parse_period(self.shift_horizon)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IrLgmConfig":
        data = dict(data)
        for key in ("volatility", "reversion"):
            if key in data and isinstance(data[key], dict):
                data[key] = ParameterConfig.from_dict(data[key])
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currency": self.currency,
            "calibration_type": self.calibration_type.value,
            "volatility": self.volatility.to_dict(),
            "reversion": self.reversion.to_dict(),
            "shift_horizon": self.shift_horizon,
            "scaling": self.scaling,
            "option_expiries": list(self.option_expiries),
            "swap_terms": list(self.swap_terms),
            "strikes": list(self.strikes),
            "fixed_frequency": self.fixed_frequency,
        }


@dataclass
class FxBsConfig:
    """Black-Scholes FX factor, foreign currency quoted in domestic."""
    foreign_ccy: str = "USD"
    domestic_ccy: str = "EUR"
    calibration_type: CalibrationType = CalibrationType.NONE
    volatility: ParameterConfig = field(default_factory=lambda: ParameterConfig(values=[0.1]))
    option_expiries: List[float] = field(default_factory=list)
    option_strikes: List[Union[float, str]] = field(default_factory=list)

    def __post_init__(self):
        self.calibration_type = CalibrationType.parse(self.calibration_type)
        self.option_expiries = _times(self.option_expiries)
        self.option_strikes = _strikes(self.option_strikes)

    @property
    def pair(self) -> str:
        return f"{self.foreign_ccy}{self.domestic_ccy}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FxBsConfig":
        data = dict(data)
        if isinstance(data.get("volatility"), dict):
            data["volatility"] = ParameterConfig.from_dict(data["volatility"])
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "foreign_ccy": self.foreign_ccy,
            "domestic_ccy": self.domestic_ccy,
            "calibration_type": self.calibration_type.value,
            "volatility": self.volatility.to_dict(),
            "option_expiries": list(self.option_expiries),
            "option_strikes": list(self.option_strikes),
        }


@dataclass
class EqBsConfig:
    """Black-Scholes equity factor denominated in ``currency``."""
    name: str = "SP5"
    currency: str = "USD"
    calibration_type: CalibrationType = CalibrationType.NONE
    volatility: ParameterConfig = field(default_factory=lambda: ParameterConfig(values=[0.2]))
    option_expiries: List[float] = field(default_factory=list)
    option_strikes: List[Union[float, str]] = field(default_factory=list)

    def __post_init__(self):
        self.calibration_type = CalibrationType.parse(self.calibration_type)
        self.option_expiries = _times(self.option_expiries)
        self.option_strikes = _strikes(self.option_strikes)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EqBsConfig":
        data = dict(data)
        if isinstance(data.get("volatility"), dict):
            data["volatility"] = ParameterConfig.from_dict(data["volatility"])
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "currency": self.currency,
            "calibration_type": self.calibration_type.value,
            "volatility": self.volatility.to_dict(),
            "option_expiries": list(self.option_expiries),
            "option_strikes": list(self.option_strikes),
        }


@dataclass
class InfDkConfig:
    """Dodgson-Kainth inflation factor calibrated to zero-coupon CPI caps/floors."""
    index: str = "EUHICPXT"
    currency: str = "EUR"
    calibration_type: CalibrationType = CalibrationType.NONE
    volatility: ParameterConfig = field(default_factory=lambda: ParameterConfig(values=[0.01]))
    reversion: ParameterConfig = field(
        default_factory=lambda: ParameterConfig(values=[0.5], calibrate=False)
    )
    cap_floor: CapFloorType = CapFloorType.FLOOR
    maturities: List[float] = field(default_factory=list)
    strikes: List[float] = field(default_factory=list)

    def __post_init__(self):
        self.calibration_type = CalibrationType.parse(self.calibration_type)
        self.cap_floor = CapFloorType.parse(self.cap_floor)
        self.maturities = _times(self.maturities)
        self.strikes = [float(k) for k in self.strikes]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InfDkConfig":
        data = dict(data)
        for key in ("volatility", "reversion"):
            if key in data and isinstance(data[key], dict):
                data[key] = ParameterConfig.from_dict(data[key])
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "currency": self.currency,
            "calibration_type": self.calibration_type.value,
            "volatility": self.volatility.to_dict(),
            "reversion": self.reversion.to_dict(),
            "cap_floor": self.cap_floor.value,
            "maturities": list(self.maturities),
            "strikes": list(self.strikes),
        }


@dataclass
class ContextConfig:
    """Market configuration labels used by each calibration stage."""
    lgm_calibration: str = "default"
    fx_calibration: str = "default"
    eq_calibration: str = "default"
    inf_calibration: str = "default"
    final_model: str = "default"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContextConfig":
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lgm_calibration": self.lgm_calibration,
            "fx_calibration": self.fx_calibration,
            "eq_calibration": self.eq_calibration,
            "inf_calibration": self.inf_calibration,
            "final_model": self.final_model,
        }


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: Optional[str] = None
    json: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoggingConfig":
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return {"level": self.level, "format": self.format, "file": self.file, "json": self.json}


CorrelationKey = Tuple[str, str]


@dataclass
class CrossAssetModelConfig:
    """Main configuration container for one cross-asset model build."""
    ir_configs: List[IrLgmConfig] = field(default_factory=list)
    fx_configs: List[FxBsConfig] = field(default_factory=list)
    eq_configs: List[EqBsConfig] = field(default_factory=list)
    inf_configs: List[InfDkConfig] = field(default_factory=list)
    correlations: Dict[CorrelationKey, QuoteLike] = field(default_factory=dict)
    bootstrap_tolerance: float = 1e-4
    salvaging: Salvaging = Salvaging.NONE
    gate_rate_bootstrap: bool = False
    max_iterations: int = 1000
    function_tolerance: float = 1e-8
    parameter_tolerance: float = 1e-8
    gradient_tolerance: float = 1e-8
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def __post_init__(self):
        self.salvaging = Salvaging.parse(self.salvaging)

    @property
    def domestic_ccy(self) -> str:
        if not self.ir_configs:
            raise ConfigurationError("at least one IR config required")
        return self.ir_configs[0].currency

    def set_correlation(self, factor1: str, factor2: str, value: QuoteLike) -> None:
        self.correlations[(factor1, factor2)] = value

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrossAssetModelConfig":
        """Create config from dictionary."""
        config = cls()

        if "ir_configs" in data:
            config.ir_configs = [IrLgmConfig.from_dict(d) for d in data["ir_configs"]]
        if "fx_configs" in data:
            config.fx_configs = [FxBsConfig.from_dict(d) for d in data["fx_configs"]]
        if "eq_configs" in data:
            config.eq_configs = [EqBsConfig.from_dict(d) for d in data["eq_configs"]]
        if "inf_configs" in data:
            config.inf_configs = [InfDkConfig.from_dict(d) for d in data["inf_configs"]]
        for entry in data.get("correlations", []):
            config.set_correlation(entry["factor1"], entry["factor2"], float(entry["value"]))
        for key in (
            "bootstrap_tolerance",
            "function_tolerance",
            "parameter_tolerance",
            "gradient_tolerance",
        ):
            if key in data:
                setattr(config, key, float(data[key]))
        if "max_iterations" in data:
            config.max_iterations = int(data["max_iterations"])
        if "gate_rate_bootstrap" in data:
            config.gate_rate_bootstrap = bool(data["gate_rate_bootstrap"])
        if "salvaging" in data:
            config.salvaging = Salvaging.parse(data["salvaging"])
        if "logging" in data:
            config.logging = LoggingConfig.from_dict(data["logging"])

        return config

    @classmethod
    def from_file(cls, path: str) -> "CrossAssetModelConfig":
        """Load config from JSON or YAML file."""
        path = Path(path)

        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        with open(path) as f:
            if path.suffix in (".yaml", ".yml"):
                try:
                    import yaml
                except ImportError:
                    raise ImportError("PyYAML required for YAML config files")
                data = yaml.safe_load(f)
            else:
                data = json.load(f)

        return cls.from_dict(data)

    def apply_env(self) -> "CrossAssetModelConfig":
        """Override fields from XA_* environment variables, in place."""
        if log_level := os.getenv("XA_LOG_LEVEL"):
            self.logging.level = log_level
        if log_file := os.getenv("XA_LOG_FILE"):
            self.logging.file = log_file
        if tolerance := os.getenv("XA_BOOTSTRAP_TOLERANCE"):
            try:
                self.bootstrap_tolerance = float(tolerance)
            except ValueError:
                raise ConfigurationError(f"XA_BOOTSTRAP_TOLERANCE is not a number: {tolerance}")
        return self

    @classmethod
    def from_env(cls) -> "CrossAssetModelConfig":
        """Defaults overridden by environment variables."""
        return cls().apply_env()

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        correlations = []
        for (f1, f2), value in self.correlations.items():
            v = value.value if isinstance(value, SimpleQuote) else float(value)
            correlations.append({"factor1": f1, "factor2": f2, "value": v})
        return {
            "ir_configs": [c.to_dict() for c in self.ir_configs],
            "fx_configs": [c.to_dict() for c in self.fx_configs],
            "eq_configs": [c.to_dict() for c in self.eq_configs],
            "inf_configs": [c.to_dict() for c in self.inf_configs],
            "correlations": correlations,
            "bootstrap_tolerance": self.bootstrap_tolerance,
            "salvaging": self.salvaging.value,
            "gate_rate_bootstrap": self.gate_rate_bootstrap,
            "max_iterations": self.max_iterations,
            "function_tolerance": self.function_tolerance,
            "parameter_tolerance": self.parameter_tolerance,
            "gradient_tolerance": self.gradient_tolerance,
            "logging": self.logging.to_dict(),
        }

    def save(self, path: str) -> None:
        """Save config to JSON file."""
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, indent=2)


def load_config(config_file: Optional[str] = None, use_env: bool = True) -> CrossAssetModelConfig:
    """
    Load configuration with precedence:
    1. Environment variables (if use_env=True)
    2. Config file (if provided)
    3. Defaults
    """
    config = CrossAssetModelConfig()

    if config_file:
        try:
            config = CrossAssetModelConfig.from_file(config_file)
            logger.info(f"Loaded config from {config_file}")
        except FileNotFoundError:
            logger.warning(f"Config file not found: {config_file}, using defaults")

    if use_env:
        config.apply_env()

    return config


def setup_logging(config: LoggingConfig) -> None:
    """Configure logging based on config."""
    from .monitoring.logging import configure_logging

    configure_logging(
        level=config.level,
        json_output=config.json,
        file=config.file,
        fmt=config.format,
    )
