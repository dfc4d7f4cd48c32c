"""
Calibration layer.

- CalibrationHelper and its SwaptionHelper / FxEqOptionHelper /
  CpiCapFloorHelper basket instruments
- LgmBuilder, FxBsBuilder, EqBsBuilder, InfDkBuilder: per-factor sub-builders
- CrossAssetModelBuilder: builds the joint model and runs the calibration cascade
"""

from .builders import (
    EqBsBuilder,
    FxBsBuilder,
    InfDkBuilder,
    LgmBuilder,
    SubBuilder,
    validate_cross_references,
)
from .helpers import (
    CalibrationHelper,
    CpiCapFloorHelper,
    FxEqOptionHelper,
    SwaptionHelper,
)
from .orchestrator import BuilderState, CrossAssetModelBuilder, StageRecord

__all__ = [
    "BuilderState",
    "CalibrationHelper",
    "CpiCapFloorHelper",
    "CrossAssetModelBuilder",
    "EqBsBuilder",
    "FxBsBuilder",
    "FxEqOptionHelper",
    "InfDkBuilder",
    "LgmBuilder",
    "StageRecord",
    "SubBuilder",
    "SwaptionHelper",
    "validate_cross_references",
]
