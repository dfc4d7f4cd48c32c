"""
Model layer.

- Parametrization / PiecewiseFunction: per-factor time-dependent parameters
  and the irlgm1f, fxbs, eqbs, infdk, crlgm1f constructors
- CorrelationMatrixBuilder, salvage: correlation assembly and repair
- CrossAssetModel, ModelHandle: the joint model and its re-bindable handle
- ExactStateProcess, EulerStateProcess: path discretizations
- calibrate_global / calibrate_iterative, EndCriteria, CalibrationResult
"""

from .calibrator import (
    CalibrationResult,
    EndCriteria,
    basket_error,
    calibrate_global,
    calibrate_iterative,
)
from .correlation import (
    CorrelationMatrixBuilder,
    expand_to_states,
    nearest_correlation,
    parse_factor_key,
    reduce_to_drivers,
    salvage,
)
from .crossassetmodel import CrossAssetModel, ModelHandle
from .parametrization import (
    AssetType,
    Parametrization,
    PiecewiseFunction,
    crlgm1f,
    eqbs,
    fxbs,
    infdk,
    irlgm1f,
)
from .stateprocess import EulerStateProcess, ExactStateProcess, StateProcess

__all__ = [
    "AssetType",
    "CalibrationResult",
    "CorrelationMatrixBuilder",
    "CrossAssetModel",
    "EndCriteria",
    "EulerStateProcess",
    "ExactStateProcess",
    "ModelHandle",
    "Parametrization",
    "PiecewiseFunction",
    "StateProcess",
    "basket_error",
    "calibrate_global",
    "calibrate_iterative",
    "crlgm1f",
    "eqbs",
    "expand_to_states",
    "fxbs",
    "infdk",
    "irlgm1f",
    "nearest_correlation",
    "parse_factor_key",
    "reduce_to_drivers",
    "salvage",
]
