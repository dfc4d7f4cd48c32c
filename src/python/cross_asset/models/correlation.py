"""
Correlation matrix assembly and salvaging.

Factors are identified by keys "<TYPE>:<name>": "IR:EUR", "FX:USDEUR"
(foreign + domestic currency), "EQ:SP5", "INF:EUHICPXT", "CR:ACME". The
builder stores pairwise correlations, possibly as observable quotes, and
assembles a symmetric unit-diagonal matrix over an ordered factor list.
Pairs never registered are uncorrelated.

Inflation and credit factors carry two state variables driven by the same
Brownian motion. ``expand_to_states`` turns a factor-level matrix into the
state-level matrix the model works with by duplicating their rows;
``reduce_to_drivers`` is its inverse and checks the duplication.

Salvaging (``salvage``) is applied by the model constructor:
    NONE           reject a matrix that is not positive semi-definite
    NEAREST_VALID  clip negative eigenvalues and renormalise the diagonal
                   (Rebonato and Jaeckel 1999)
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from ..config import Salvaging
from ..exceptions import ConfigurationError, DimensionError
from ..market.quotes import QuoteLike, SimpleQuote, as_quote

logger = logging.getLogger(__name__)

FACTOR_TYPES = ("IR", "FX", "EQ", "INF", "CR")

_PSD_TOLERANCE = 1e-10
_SYMMETRY_TOLERANCE = 1e-12


def parse_factor_key(key: str) -> Tuple[str, str]:
    """
    Split "TYPE:name" into its parts.

    Raises:
        ConfigurationError: If the key is malformed or the type unknown
    """
    if not isinstance(key, str) or ":" not in key:
        raise ConfigurationError(f"malformed factor key '{key}', expected TYPE:name")
    kind, name = key.split(":", 1)
    kind = kind.strip().upper()
    name = name.strip()
    if kind not in FACTOR_TYPES or not name:
        raise ConfigurationError(f"malformed factor key '{key}', type must be one of {FACTOR_TYPES}")
    if kind == "FX" and len(name) != 6:
        raise ConfigurationError(f"FX factor key '{key}' must name foreign and domestic currency, e.g. FX:USDEUR")
    return kind, name


def _normalise(key: str) -> str:
    kind, name = parse_factor_key(key)
    return f"{kind}:{name}"


class CorrelationMatrixBuilder:
    """
    Pairwise correlation registry.

    Example:
        >>> builder = CorrelationMatrixBuilder()
        >>> builder.add_correlation("IR:EUR", "IR:USD", 0.3)
        >>> builder.correlation_matrix(["IR:EUR", "IR:USD", "FX:USDEUR"])
        array([[1. , 0.3, 0. ],
               [0.3, 1. , 0. ],
               [0. , 0. , 1. ]])
    """

    def __init__(self, correlations: Optional[Dict[Tuple[str, str], QuoteLike]] = None):
        self._quotes: Dict[Tuple[str, str], SimpleQuote] = {}
        for (f1, f2), value in (correlations or {}).items():
            self.add_correlation(f1, f2, value)

    def add_correlation(self, factor1: str, factor2: str, quote: QuoteLike) -> None:
        """
        Register the correlation between two factors.

        Args:
            factor1, factor2: Factor keys
            quote: Number or observable quote with value in [-1, 1]

        Raises:
            ConfigurationError: On malformed keys, values outside [-1, 1]
                or a self-correlation different from 1
        """
        f1, f2 = _normalise(factor1), _normalise(factor2)
        quote = as_quote(quote)
        value = quote.value
        if not -1.0 <= value <= 1.0:
            raise ConfigurationError(f"correlation {f1}/{f2} = {value} outside [-1, 1]")
        if f1 == f2:
            if value != 1.0:
                raise ConfigurationError(f"self-correlation of {f1} must be 1, got {value}")
            return
        self._quotes[self._key(f1, f2)] = quote

    @staticmethod
    def _key(f1: str, f2: str) -> Tuple[str, str]:
        return (f1, f2) if f1 <= f2 else (f2, f1)

    def quotes(self) -> List[SimpleQuote]:
        """Registered quotes, for change observation."""
        return list(self._quotes.values())

    def pairs(self) -> List[Tuple[str, str]]:
        return sorted(self._quotes)

    def correlation(self, factor1: str, factor2: str) -> float:
        f1, f2 = _normalise(factor1), _normalise(factor2)
        if f1 == f2:
            return 1.0
        quote = self._quotes.get(self._key(f1, f2))
        if quote is None:
            return 0.0
        value = quote.value
        if not -1.0 <= value <= 1.0:
            raise ConfigurationError(f"correlation {f1}/{f2} = {value} outside [-1, 1]")
        return value

    def correlation_matrix(self, factors: Sequence[str]) -> np.ndarray:
        """
        Assemble the factor-level matrix at current quote values.

        Args:
            factors: Ordered factor keys

        Returns:
            Symmetric NxN matrix with unit diagonal
        """
        keys = [_normalise(f) for f in factors]
        if len(set(keys)) != len(keys):
            raise ConfigurationError(f"duplicate factors in {keys}")
        n = len(keys)
        matrix = np.eye(n)
        for i in range(n):
            for j in range(i + 1, n):
                rho = self.correlation(keys[i], keys[j])
                matrix[i, j] = matrix[j, i] = rho
        unused = [p for p in self._quotes if p[0] not in keys or p[1] not in keys]
        if unused:
            logger.debug(f"Correlations not used by factor list: {unused}")
        return matrix

    def state_correlation_matrix(self, factors: Sequence[str], state_sizes: Sequence[int]) -> np.ndarray:
        """Factor-level matrix expanded to the model's state dimension."""
        return expand_to_states(self.correlation_matrix(factors), state_sizes)


def _state_map(state_sizes: Iterable[int]) -> np.ndarray:
    mapping = []
    for factor, size in enumerate(state_sizes):
        if size not in (1, 2):
            raise DimensionError(f"factor {factor} has unsupported state size {size}")
        mapping.extend([factor] * size)
    return np.array(mapping, dtype=int)


def expand_to_states(matrix: np.ndarray, state_sizes: Sequence[int]) -> np.ndarray:
    """Duplicate rows and columns of factors with an auxiliary state."""
    matrix = np.asarray(matrix, dtype=float)
    if matrix.shape != (len(state_sizes), len(state_sizes)):
        raise DimensionError(
            f"correlation matrix is {matrix.shape}, expected {len(state_sizes)} factors"
        )
    mapping = _state_map(state_sizes)
    return matrix[np.ix_(mapping, mapping)]


def reduce_to_drivers(matrix: np.ndarray, state_sizes: Sequence[int]) -> np.ndarray:
    """
    Inverse of ``expand_to_states``.

    Raises:
        DimensionError: If the size does not match the state dimension or an
            auxiliary row is not a copy of its primary row
    """
    matrix = np.asarray(matrix, dtype=float)
    mapping = _state_map(state_sizes)
    n = len(mapping)
    if matrix.ndim != 2 or matrix.shape != (n, n):
        raise DimensionError(f"correlation matrix is {matrix.shape}, state dimension is {n}")
    first = np.array([int(np.argmax(mapping == f)) for f in range(len(state_sizes))], dtype=int)
    reduced = matrix[np.ix_(first, first)]
    if not np.allclose(expand_to_states(reduced, state_sizes), matrix, atol=1e-12, rtol=0.0):
        raise DimensionError("auxiliary state rows must duplicate the correlations of their factor")
    return reduced


def is_positive_semidefinite(matrix: np.ndarray, tolerance: float = _PSD_TOLERANCE) -> bool:
    return bool(np.linalg.eigvalsh(matrix).min() >= -tolerance)


def nearest_correlation(matrix: np.ndarray) -> np.ndarray:
    """Spectral projection: clip negative eigenvalues, rescale to unit diagonal."""
    values, vectors = np.linalg.eigh(matrix)
    values = np.clip(values, 0.0, None)
    b = vectors * np.sqrt(values)
    norms = np.sqrt(np.sum(b * b, axis=1))
    norms[norms == 0.0] = 1.0
    b = b / norms[:, None]
    result = b @ b.T
    np.fill_diagonal(result, 1.0)
    return 0.5 * (result + result.T)


def validate_correlation(matrix: np.ndarray) -> None:
    """Check shape, symmetry, unit diagonal and range."""
    if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
        raise DimensionError(f"correlation matrix must be square, got {matrix.shape}")
    if not np.allclose(matrix, matrix.T, atol=_SYMMETRY_TOLERANCE, rtol=0.0):
        raise DimensionError("correlation matrix is not symmetric")
    if not np.allclose(np.diag(matrix), 1.0, atol=_SYMMETRY_TOLERANCE, rtol=0.0):
        raise DimensionError("correlation matrix must have unit diagonal")
    if np.any(np.abs(matrix) > 1.0 + _SYMMETRY_TOLERANCE):
        raise DimensionError("correlation entries must lie in [-1, 1]")


def salvage(
    matrix: np.ndarray,
    state_sizes: Sequence[int],
    policy: Salvaging = Salvaging.NONE,
) -> np.ndarray:
    """
    Validate a state-level correlation matrix, projecting it if allowed.

    Args:
        matrix: State-level correlation matrix
        state_sizes: Number of states per factor
        policy: Salvaging policy

    Returns:
        A valid state-level correlation matrix

    Raises:
        DimensionError: On size mismatch, inconsistent auxiliary rows, or a
            matrix that is not positive semi-definite under policy NONE
    """
    policy = Salvaging.parse(policy)
    reduced = reduce_to_drivers(matrix, state_sizes)
    validate_correlation(reduced)
    if is_positive_semidefinite(reduced):
        return expand_to_states(reduced, state_sizes)
    min_eig = float(np.linalg.eigvalsh(reduced).min())
    if policy == Salvaging.NONE:
        raise DimensionError(
            f"correlation matrix is not positive semi-definite (min eigenvalue {min_eig:.3e})"
        )
    salvaged = nearest_correlation(reduced)
    logger.warning(
        f"Salvaged correlation matrix (min eigenvalue {min_eig:.3e}, "
        f"max change {np.abs(salvaged - reduced).max():.3e})"
    )
    return expand_to_states(salvaged, state_sizes)


def pseudo_sqrt(matrix: np.ndarray) -> np.ndarray:
    """Symmetric square root via eigen-decomposition; negative eigenvalues clipped."""
    values, vectors = np.linalg.eigh(0.5 * (matrix + matrix.T))
    values = np.clip(values, 0.0, None)
    return (vectors * np.sqrt(values)) @ vectors.T
