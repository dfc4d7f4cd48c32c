"""
Pytest configuration for cross_asset tests.
"""

import numpy as np
import pytest

from cross_asset.market import (
    BlackVolSurface,
    FlatHazardCurve,
    FlatYieldCurve,
    Market,
    SwaptionVolSurface,
    ZeroInflationCurve,
)
from cross_asset.models import (
    CorrelationMatrixBuilder,
    CrossAssetModel,
    crlgm1f,
    eqbs,
    fxbs,
    infdk,
    irlgm1f,
)


@pytest.fixture
def random_seed():
    """Set random seed for reproducible tests."""
    np.random.seed(42)
    return 42


@pytest.fixture
def market():
    """
    Flat test market.

    EUR 2%, USD 5%, GBP 3% continuously compounded; USD and GBP quoted in
    EUR; normal swaption vols of 60bp; S&P equity in USD; euro HICP with 2%
    zero inflation; one credit name.
    """
    m = Market()
    m.add_discount_curve("EUR", FlatYieldCurve(0.02))
    m.add_discount_curve("USD", FlatYieldCurve(0.05))
    m.add_discount_curve("GBP", FlatYieldCurve(0.03))
    m.add_fx_spot("USDEUR", 0.9)
    m.add_fx_spot("GBPEUR", 1.15)
    m.add_fx_volatility("USDEUR", BlackVolSurface(0.10))
    m.add_fx_volatility("GBPEUR", BlackVolSurface(0.12))
    for ccy in ("EUR", "USD", "GBP"):
        m.add_swaption_volatility(ccy, SwaptionVolSurface(0.006, vol_type="normal"))
    m.add_equity_spot("SP5", 100.0)
    m.add_dividend_curve("SP5", FlatYieldCurve(0.01))
    m.add_equity_volatility("SP5", BlackVolSurface(0.20))
    m.add_zero_inflation_curve("EUHICPXT", ZeroInflationCurve(100.0, rate=0.02))
    m.add_cpi_volatility("EUHICPXT", BlackVolSurface(0.01))
    m.add_default_curve("ACME", FlatHazardCurve(0.01))
    return m


@pytest.fixture
def build_model(market):
    """Factory assembling a model from parametrizations and factor correlations."""

    def _build(parametrizations, correlations=None, **kwargs):
        builder = CorrelationMatrixBuilder(correlations or {})
        matrix = builder.state_correlation_matrix(
            [p.key for p in parametrizations], [p.state_size for p in parametrizations]
        )
        return CrossAssetModel(parametrizations, matrix, market, **kwargs)

    return _build


@pytest.fixture
def two_currency_correlations():
    return {
        ("IR:EUR", "IR:USD"): 0.3,
        ("IR:EUR", "FX:USDEUR"): -0.2,
        ("IR:USD", "FX:USDEUR"): 0.3,
    }


@pytest.fixture
def two_currency_model(build_model, two_currency_correlations):
    """EUR domestic, USD foreign, USDEUR FX."""
    return build_model(
        [
            irlgm1f("EUR", volatility=0.008, reversion=0.02),
            irlgm1f("USD", volatility=0.01, reversion=0.03),
            fxbs("USD", "EUR", volatility=0.1),
        ],
        two_currency_correlations,
    )


@pytest.fixture
def full_correlations():
    # diagonally dominant, hence positive definite
    return {
        ("IR:EUR", "IR:USD"): 0.3,
        ("IR:EUR", "IR:GBP"): 0.2,
        ("IR:EUR", "FX:USDEUR"): 0.1,
        ("IR:EUR", "EQ:SP5"): 0.1,
        ("IR:EUR", "INF:EUHICPXT"): 0.2,
        ("IR:EUR", "CR:ACME"): 0.05,
        ("IR:USD", "IR:GBP"): 0.2,
        ("IR:USD", "FX:USDEUR"): -0.2,
        ("IR:USD", "EQ:SP5"): 0.2,
        ("IR:GBP", "FX:GBPEUR"): -0.1,
        ("FX:USDEUR", "FX:GBPEUR"): 0.3,
        ("FX:USDEUR", "EQ:SP5"): -0.25,
    }


@pytest.fixture
def full_parametrizations():
    return [
        irlgm1f("EUR", volatility=0.008, reversion=0.02),
        irlgm1f("USD", volatility=0.01, reversion=0.03),
        irlgm1f("GBP", volatility=0.009, reversion=0.01),
        fxbs("USD", "EUR", volatility=0.1),
        fxbs("GBP", "EUR", volatility=0.12),
        eqbs("SP5", "USD", volatility=0.2),
        infdk("EUHICPXT", "EUR", volatility=0.01, reversion=0.5),
        crlgm1f("ACME", "EUR", volatility=0.01, reversion=0.01),
    ]


@pytest.fixture
def full_model(build_model, full_parametrizations, full_correlations):
    """Three currencies, two FX rates, one equity, one inflation index, one credit name."""
    return build_model(full_parametrizations, full_correlations)
