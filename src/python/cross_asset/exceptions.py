"""
Error taxonomy for the cross-asset model engine.

All errors derive from CrossAssetError so callers can catch the whole
family with one clause:

    CrossAssetError
    ├── ConfigurationError          missing / inconsistent configuration
    │   └── MissingMarketDataError  market container has no such entry
    ├── DimensionError              correlation matrix / state size mismatch
    └── CalibrationToleranceError   bootstrap residual above tolerance
"""

from typing import Optional


class CrossAssetError(Exception):
    """Base class for cross-asset model errors."""

    pass


class ConfigurationError(CrossAssetError):
    """Raised when model configuration is missing or inconsistent."""

    pass


class MissingMarketDataError(ConfigurationError, KeyError):
    """Raised by the market container when a curve or quote is absent."""

    def __str__(self) -> str:
        # KeyError would otherwise wrap the message in quotes
        return str(self.args[0]) if self.args else ""


class DimensionError(CrossAssetError):
    """Raised when a correlation matrix does not fit the model's state."""

    pass


class CalibrationToleranceError(CrossAssetError):
    """Raised when a bootstrap calibration misses its tolerance."""

    def __init__(
        self,
        factor: str,
        error: float,
        tolerance: float,
        message: Optional[str] = None,
    ):
        self.factor = factor
        self.error = error
        self.tolerance = tolerance
        super().__init__(
            message
            or f"calibration error {error:.6g} for {factor} exceeds tolerance {tolerance:.6g}"
        )
