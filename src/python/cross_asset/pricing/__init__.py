"""
Pricing layer.

- black_formula / bachelier_formula: market quote conventions
- Analytic*Formula: closed-form model prices of calibration instruments
"""

from .black import bachelier_formula, black_formula
from .engines import (
    AnalyticCcLgmFxOptionFormula,
    AnalyticDkCpiCapFloorFormula,
    AnalyticLgmSwaptionFormula,
    AnalyticXAssetEquityOptionFormula,
)

__all__ = [
    "AnalyticCcLgmFxOptionFormula",
    "AnalyticDkCpiCapFloorFormula",
    "AnalyticLgmSwaptionFormula",
    "AnalyticXAssetEquityOptionFormula",
    "bachelier_formula",
    "black_formula",
]
