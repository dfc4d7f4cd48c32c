"""
Basic import tests for cross_asset package.
"""

import pytest


def test_import_package():
    """Test that the main package can be imported."""
    import cross_asset

    assert cross_asset is not None


def test_version():
    """Test that version is defined and valid."""
    import cross_asset

    assert cross_asset.__version__ == "1.0.0"


def test_import_submodules():
    """Test that all submodules can be imported."""
    from cross_asset import calibration
    from cross_asset import market
    from cross_asset import models
    from cross_asset import pricing
    from cross_asset import simulation

    assert calibration is not None
    assert market is not None
    assert models is not None
    assert pricing is not None
    assert simulation is not None


def test_public_api():
    """Test that the top-level names resolve."""
    import cross_asset

    for name in cross_asset.__all__:
        assert hasattr(cross_asset, name), name
