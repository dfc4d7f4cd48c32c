"""
Simulation of the joint state process.

- TimeGrid: simulation times
- MultiPathGenerator: seeded multi-dimensional path generation
- StreamingMoments: mergeable running mean / covariance
- monte_carlo_expectation: terminal payoff expectation with its error
"""

from .paths import MultiPathGenerator, TimeGrid, monte_carlo_expectation
from .statistics import StreamingMoments

__all__ = [
    "MultiPathGenerator",
    "StreamingMoments",
    "TimeGrid",
    "monte_carlo_expectation",
]
