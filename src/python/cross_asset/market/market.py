"""
In-memory market container.

The model core consumes market data through a small set of accessors keyed
by (instrument kind, currency or name, configuration label). This module
provides the reference implementation used by tests, examples and callers
that assemble markets programmatically or from a pandas DataFrame.

Lookups for a configuration that has no entry fall back to the "default"
configuration; if neither exists a MissingMarketDataError is raised.

Example:
    >>> market = Market()
    >>> market.add_discount_curve("EUR", FlatYieldCurve(0.02))
    >>> market.add_discount_curve("EUR", FlatYieldCurve(0.021), "xois_eur")
    >>> market.discount_curve("EUR", "xois_eur").rate
    0.021
    >>> market.discount_curve("EUR", "fx_calibration").rate  # falls back
    0.02
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, List, Tuple

from ..exceptions import MissingMarketDataError
from ..periods import parse_period
from .quotes import QuoteLike, SimpleQuote, as_quote
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

if TYPE_CHECKING:
    import pandas as pd

logger = logging.getLogger(__name__)

DEFAULT_CONFIGURATION = "default"


class Market:
    """Market data keyed by kind, name and configuration label."""

    DISCOUNT = "discount"
    FX_SPOT = "fx_spot"
    FX_VOL = "fx_vol"
    EQUITY_SPOT = "equity_spot"
    DIVIDEND = "dividend"
    EQUITY_VOL = "equity_vol"
    SWAPTION_VOL = "swaption_vol"
    ZERO_INFLATION = "zero_inflation"
    CPI_VOL = "cpi_vol"
    DEFAULT_CURVE = "default_curve"

    def __init__(self):
        self._entries: Dict[Tuple[str, str, str], Any] = {}

    def _add(self, kind: str, name: str, value: Any, configuration: str) -> None:
        self._entries[(kind, name, configuration)] = value

    def _get(self, kind: str, name: str, configuration: str) -> Any:
        key = (kind, name, configuration)
        if key in self._entries:
            return self._entries[key]
        fallback = (kind, name, DEFAULT_CONFIGURATION)
        if fallback in self._entries:
            return self._entries[fallback]
        raise MissingMarketDataError(
            f"no {kind} for '{name}' in configuration '{configuration}'"
        )

    def has(self, kind: str, name: str, configuration: str = DEFAULT_CONFIGURATION) -> bool:
        return (kind, name, configuration) in self._entries or (
            kind,
            name,
            DEFAULT_CONFIGURATION,
        ) in self._entries

    def keys(self) -> List[Tuple[str, str, str]]:
        return sorted(self._entries)

    # --- writers -------------------------------------------------------

    def add_discount_curve(self, ccy: str, curve: YieldCurve, configuration: str = DEFAULT_CONFIGURATION) -> None:
        self._add(self.DISCOUNT, ccy, curve, configuration)

    def add_fx_spot(self, pair: str, quote: QuoteLike, configuration: str = DEFAULT_CONFIGURATION) -> None:
        """Add an FX spot quote; ``pair`` is foreign+domestic, e.g. "USDEUR"."""
        self._add(self.FX_SPOT, pair, as_quote(quote), configuration)

    def add_fx_volatility(self, pair: str, surface: BlackVolSurface, configuration: str = DEFAULT_CONFIGURATION) -> None:
        self._add(self.FX_VOL, pair, surface, configuration)

    def add_equity_spot(self, name: str, quote: QuoteLike, configuration: str = DEFAULT_CONFIGURATION) -> None:
        self._add(self.EQUITY_SPOT, name, as_quote(quote), configuration)

    def add_dividend_curve(self, name: str, curve: YieldCurve, configuration: str = DEFAULT_CONFIGURATION) -> None:
        self._add(self.DIVIDEND, name, curve, configuration)

    def add_equity_volatility(self, name: str, surface: BlackVolSurface, configuration: str = DEFAULT_CONFIGURATION) -> None:
        self._add(self.EQUITY_VOL, name, surface, configuration)

    def add_swaption_volatility(self, ccy: str, surface: SwaptionVolSurface, configuration: str = DEFAULT_CONFIGURATION) -> None:
        self._add(self.SWAPTION_VOL, ccy, surface, configuration)

    def add_zero_inflation_curve(self, index: str, curve: ZeroInflationCurve, configuration: str = DEFAULT_CONFIGURATION) -> None:
        self._add(self.ZERO_INFLATION, index, curve, configuration)

    def add_cpi_volatility(self, index: str, surface: BlackVolSurface, configuration: str = DEFAULT_CONFIGURATION) -> None:
        self._add(self.CPI_VOL, index, surface, configuration)

    def add_default_curve(self, name: str, curve: SurvivalCurve, configuration: str = DEFAULT_CONFIGURATION) -> None:
        self._add(self.DEFAULT_CURVE, name, curve, configuration)

    # --- readers -------------------------------------------------------

    def discount_curve(self, ccy: str, configuration: str = DEFAULT_CONFIGURATION) -> YieldCurve:
        return self._get(self.DISCOUNT, ccy, configuration)

    def fx_spot(self, pair: str, configuration: str = DEFAULT_CONFIGURATION) -> SimpleQuote:
        return self._get(self.FX_SPOT, pair, configuration)

    def fx_volatility(self, pair: str, configuration: str = DEFAULT_CONFIGURATION) -> BlackVolSurface:
        return self._get(self.FX_VOL, pair, configuration)

    def equity_spot(self, name: str, configuration: str = DEFAULT_CONFIGURATION) -> SimpleQuote:
        return self._get(self.EQUITY_SPOT, name, configuration)

    def dividend_curve(self, name: str, configuration: str = DEFAULT_CONFIGURATION) -> YieldCurve:
        return self._get(self.DIVIDEND, name, configuration)

    def equity_volatility(self, name: str, configuration: str = DEFAULT_CONFIGURATION) -> BlackVolSurface:
        return self._get(self.EQUITY_VOL, name, configuration)

    def swaption_volatility(self, ccy: str, configuration: str = DEFAULT_CONFIGURATION) -> SwaptionVolSurface:
        return self._get(self.SWAPTION_VOL, ccy, configuration)

    def zero_inflation_curve(self, index: str, configuration: str = DEFAULT_CONFIGURATION) -> ZeroInflationCurve:
        return self._get(self.ZERO_INFLATION, index, configuration)

    def cpi_volatility(self, index: str, configuration: str = DEFAULT_CONFIGURATION) -> BlackVolSurface:
        return self._get(self.CPI_VOL, index, configuration)

    def default_curve(self, name: str, configuration: str = DEFAULT_CONFIGURATION) -> SurvivalCurve:
        return self._get(self.DEFAULT_CURVE, name, configuration)

    # --- loaders -------------------------------------------------------

    @classmethod
    def from_frame(cls, frame: "pd.DataFrame") -> "Market":
        """
        Build a market from a long-format DataFrame.

        Required columns: kind, name, value. Optional: configuration
        (default "default"), tenor (pillar time or tenor string; empty for
        scalar quotes), base (base CPI for zero_inflation rows), vol_type
        (swaption_vol rows).

        Curve kinds (discount, dividend, default_curve, zero_inflation) with
        one row become flat curves, with several rows interpolated curves.
        Volatility kinds with one row become flat surfaces.

        Args:
            frame: Market data table

        Returns:
            Populated Market
        """
        missing = {"kind", "name", "value"} - set(frame.columns)
        if missing:
            raise MissingMarketDataError(f"market frame misses columns {sorted(missing)}")

        data = frame.copy()
        if "configuration" not in data.columns:
            data["configuration"] = DEFAULT_CONFIGURATION
        data["configuration"] = data["configuration"].fillna(DEFAULT_CONFIGURATION)

        market = cls()
        for (kind, name, configuration), group in data.groupby(["kind", "name", "configuration"], sort=False):
            market._load_group(str(kind), str(name), str(configuration), group)

        logger.info(f"Loaded market with {len(market._entries)} entries from frame")
        return market

    def _load_group(self, kind: str, name: str, configuration: str, group: "pd.DataFrame") -> None:
        values = [float(v) for v in group["value"]]

        if kind in (self.FX_SPOT, self.EQUITY_SPOT):
            self._add(kind, name, SimpleQuote(values[-1]), configuration)
            return

        times = None
        if "tenor" in group.columns and len(group) > 1:
            pairs = sorted(zip((parse_period(t) for t in group["tenor"]), values))
            times = [p[0] for p in pairs]
            values = [p[1] for p in pairs]

        if kind in (self.DISCOUNT, self.DIVIDEND):
            curve = FlatYieldCurve(values[0]) if times is None else InterpolatedYieldCurve(times, values)
            self._add(kind, name, curve, configuration)
        elif kind == self.DEFAULT_CURVE:
            curve = FlatHazardCurve(values[0]) if times is None else InterpolatedSurvivalCurve(times, values)
            self._add(kind, name, curve, configuration)
        elif kind == self.ZERO_INFLATION:
            if "base" not in group.columns:
                raise MissingMarketDataError(f"zero_inflation rows for '{name}' need a base column")
            base = float(group["base"].iloc[0])
            if times is None:
                curve = ZeroInflationCurve(base, rate=values[0])
            else:
                curve = ZeroInflationCurve(base, times=times, rates=values)
            self._add(kind, name, curve, configuration)
        elif kind in (self.FX_VOL, self.EQUITY_VOL, self.CPI_VOL):
            if times is None:
                surface = BlackVolSurface(values[0])
            else:
                surface = BlackVolSurface(expiries=times, volatilities=values)
            self._add(kind, name, surface, configuration)
        elif kind == self.SWAPTION_VOL:
            vol_type = "lognormal"
            if "vol_type" in group.columns:
                vol_type = str(group["vol_type"].iloc[0])
            self._add(kind, name, SwaptionVolSurface(values[0], vol_type=vol_type), configuration)
        else:
            raise MissingMarketDataError(f"unknown market kind '{kind}'")
