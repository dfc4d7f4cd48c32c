"""
Tests for correlation assembly, expansion and salvaging.
"""

import logging

import numpy as np
import pytest

from cross_asset.config import Salvaging
from cross_asset.exceptions import ConfigurationError, DimensionError
from cross_asset.market.quotes import SimpleQuote
from cross_asset.models.correlation import (
    CorrelationMatrixBuilder,
    expand_to_states,
    is_positive_semidefinite,
    nearest_correlation,
    parse_factor_key,
    pseudo_sqrt,
    reduce_to_drivers,
    salvage,
)


class TestFactorKeys:
    """Tests for factor key parsing."""

    def test_parse(self):
        assert parse_factor_key("IR:EUR") == ("IR", "EUR")
        assert parse_factor_key("inf:EUHICPXT") == ("INF", "EUHICPXT")

    @pytest.mark.parametrize("key", ["EUR", "XX:EUR", "IR:", "FX:USD"])
    def test_malformed(self, key):
        """Test rejection of malformed keys."""
        with pytest.raises(ConfigurationError):
            parse_factor_key(key)


class TestCorrelationMatrixBuilder:
    """Tests for CorrelationMatrixBuilder."""

    def test_matrix(self):
        """Test assembly with unregistered pairs set to zero."""
        builder = CorrelationMatrixBuilder()
        builder.add_correlation("IR:EUR", "IR:USD", 0.3)
        builder.add_correlation("FX:USDEUR", "IR:EUR", -0.2)
        matrix = builder.correlation_matrix(["IR:EUR", "IR:USD", "FX:USDEUR", "EQ:SP5"])
        expected = np.array(
            [
                [1.0, 0.3, -0.2, 0.0],
                [0.3, 1.0, 0.0, 0.0],
                [-0.2, 0.0, 1.0, 0.0],
                [0.0, 0.0, 0.0, 1.0],
            ]
        )
        np.testing.assert_allclose(matrix, expected)

    def test_symmetric_lookup(self):
        """Test that pair order does not matter."""
        builder = CorrelationMatrixBuilder({("IR:USD", "IR:EUR"): 0.4})
        assert builder.correlation("IR:EUR", "IR:USD") == 0.4
        assert builder.correlation("IR:EUR", "IR:EUR") == 1.0
        assert builder.correlation("IR:EUR", "IR:GBP") == 0.0

    def test_out_of_range(self):
        """Test rejection of correlations outside [-1, 1]."""
        with pytest.raises(ConfigurationError, match="outside"):
            CorrelationMatrixBuilder({("IR:EUR", "IR:USD"): 1.2})

    def test_self_correlation(self):
        """Test that self-correlation must be one."""
        with pytest.raises(ConfigurationError, match="self-correlation"):
            CorrelationMatrixBuilder({("IR:EUR", "IR:EUR"): 0.5})

    def test_quotes_are_live(self):
        """Test that the matrix reflects the current quote value."""
        quote = SimpleQuote(0.1)
        builder = CorrelationMatrixBuilder({("IR:EUR", "IR:USD"): quote})
        quote.set_value(0.6)
        assert builder.correlation_matrix(["IR:EUR", "IR:USD"])[0, 1] == 0.6
        assert builder.quotes() == [quote]

    def test_duplicate_factors(self):
        """Test rejection of duplicate factor keys."""
        with pytest.raises(ConfigurationError, match="duplicate"):
            CorrelationMatrixBuilder().correlation_matrix(["IR:EUR", "IR:EUR"])

    def test_state_matrix(self):
        """Test expansion to the state dimension."""
        builder = CorrelationMatrixBuilder({("IR:EUR", "INF:EUHICPXT"): 0.2})
        matrix = builder.state_correlation_matrix(["IR:EUR", "INF:EUHICPXT"], [1, 2])
        assert matrix.shape == (3, 3)
        np.testing.assert_allclose(matrix[0], [1.0, 0.2, 0.2])
        assert matrix[1, 2] == 1.0


class TestStateExpansion:
    """Tests for expand_to_states / reduce_to_drivers."""

    def test_roundtrip(self):
        reduced = np.array([[1.0, 0.3], [0.3, 1.0]])
        expanded = expand_to_states(reduced, [1, 2])
        np.testing.assert_allclose(reduce_to_drivers(expanded, [1, 2]), reduced)

    def test_inconsistent_auxiliary_row(self):
        """Test rejection of an auxiliary row that differs from its factor."""
        expanded = expand_to_states(np.array([[1.0, 0.3], [0.3, 1.0]]), [1, 2])
        expanded[0, 2] = expanded[2, 0] = 0.5
        with pytest.raises(DimensionError, match="auxiliary"):
            reduce_to_drivers(expanded, [1, 2])

    def test_size_mismatch(self):
        with pytest.raises(DimensionError):
            expand_to_states(np.eye(2), [1, 1, 1])


class TestSalvaging:
    """Tests for PSD checks and salvaging."""

    @staticmethod
    def _broken():
        return np.array([[1.0, 0.9, -0.9], [0.9, 1.0, 0.9], [-0.9, 0.9, 1.0]])

    def test_valid_matrix_passes(self):
        matrix = np.array([[1.0, 0.5], [0.5, 1.0]])
        np.testing.assert_allclose(salvage(matrix, [1, 1]), matrix)

    def test_not_psd_rejected(self):
        """Test that policy NONE rejects a matrix with a negative eigenvalue."""
        with pytest.raises(DimensionError, match="positive semi-definite"):
            salvage(self._broken(), [1, 1, 1], Salvaging.NONE)

    def test_nearest_valid(self, caplog):
        """Test that NEAREST_VALID returns a valid correlation matrix and warns."""
        with caplog.at_level(logging.WARNING):
            fixed = salvage(self._broken(), [1, 1, 1], "nearest_valid")
        assert is_positive_semidefinite(fixed)
        np.testing.assert_allclose(np.diag(fixed), 1.0)
        np.testing.assert_allclose(fixed, fixed.T)
        assert "Salvaged correlation matrix" in caplog.text

    def test_nearest_correlation_keeps_valid(self):
        matrix = np.array([[1.0, 0.2], [0.2, 1.0]])
        np.testing.assert_allclose(nearest_correlation(matrix), matrix, atol=1e-12)

    def test_not_symmetric(self):
        with pytest.raises(DimensionError, match="symmetric"):
            salvage(np.array([[1.0, 0.2], [0.3, 1.0]]), [1, 1])

    def test_pseudo_sqrt(self):
        """Test that the root reproduces the matrix."""
        matrix = np.array([[1.0, 0.3, 0.1], [0.3, 1.0, -0.2], [0.1, -0.2, 1.0]])
        root = pseudo_sqrt(matrix)
        np.testing.assert_allclose(root @ root.T, matrix, atol=1e-12)
