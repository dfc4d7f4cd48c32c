"""
Market data layer.

Observable quotes, term structures and volatility surfaces plus the
in-memory Market container the model builders read from:
- SimpleQuote / snapshot / has_changed_since: version-based change detection
- MarketObserver: atomic "has anything changed" query over registered quotes
- FlatYieldCurve, InterpolatedYieldCurve, FlatHazardCurve, ZeroInflationCurve
- BlackVolSurface, SwaptionVolSurface
- Market: (kind, name, configuration) keyed container with default fallback
"""

from .market import DEFAULT_CONFIGURATION, Market
from .quotes import (
    MarketObserver,
    Observable,
    SimpleQuote,
    as_quote,
    has_changed_since,
    snapshot,
)
from .termstructures import (
    BlackVolSurface,
    FlatHazardCurve,
    FlatYieldCurve,
    InterpolatedSurvivalCurve,
    InterpolatedYieldCurve,
    SurvivalCurve,
    SwaptionVolSurface,
    YieldCurve,
    ZeroInflationCurve,
)

__all__ = [
    "DEFAULT_CONFIGURATION",
    "Market",
    "MarketObserver",
    "Observable",
    "SimpleQuote",
    "as_quote",
    "has_changed_since",
    "snapshot",
    "BlackVolSurface",
    "FlatHazardCurve",
    "FlatYieldCurve",
    "InterpolatedSurvivalCurve",
    "InterpolatedYieldCurve",
    "SurvivalCurve",
    "SwaptionVolSurface",
    "YieldCurve",
    "ZeroInflationCurve",
]
