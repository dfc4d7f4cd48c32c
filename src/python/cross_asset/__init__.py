"""
Cross-Asset Model

A joint multi-factor stochastic model of interest rates, FX, equity,
inflation and credit, with the calibration machinery that fits each
factor to market instruments.

Core components:
- Per-factor parametrizations (LGM rates, Black-Scholes FX and equity,
  Dodgson-Kainth inflation, LGM credit) with piecewise time dependence
- Correlation matrix assembly with optional salvaging
- Closed-form bond, forward, index and option formulas
- Analytic transition moments and exact / Euler path discretizations
- Global and bootstrap calibration, driven by a lazy model builder that
  runs the IR -> FX -> EQ -> INF calibration cascade
- Seeded path generation and mergeable Monte-Carlo statistics

Usage:
    from cross_asset import CrossAssetModelBuilder, CrossAssetModelConfig, Market

    config = CrossAssetModelConfig.from_file("model.yaml")
    builder = CrossAssetModelBuilder(market, config)
    model = builder.model()
    process = model.state_process("exact")
"""

__version__ = "1.0.0"
__author__ = "Quantitative Research Team"

from .calibration import CrossAssetModelBuilder
from .config import (
    CalibrationType,
    ContextConfig,
    CrossAssetModelConfig,
    EqBsConfig,
    FxBsConfig,
    InfDkConfig,
    IrLgmConfig,
    ParameterConfig,
    ParamType,
    load_config,
    setup_logging,
)
from .exceptions import (
    CalibrationToleranceError,
    ConfigurationError,
    CrossAssetError,
    DimensionError,
    MissingMarketDataError,
)
from .market import Market
from .models import CrossAssetModel, ModelHandle

__all__ = [
    "__version__",
    "CalibrationToleranceError",
    "CalibrationType",
    "ConfigurationError",
    "ContextConfig",
    "CrossAssetError",
    "CrossAssetModel",
    "CrossAssetModelBuilder",
    "CrossAssetModelConfig",
    "DimensionError",
    "EqBsConfig",
    "FxBsConfig",
    "InfDkConfig",
    "IrLgmConfig",
    "Market",
    "MissingMarketDataError",
    "ModelHandle",
    "ParamType",
    "ParameterConfig",
    "load_config",
    "setup_logging",
]
