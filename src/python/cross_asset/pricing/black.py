"""
Black (lognormal) and Bachelier (normal) option formulas.

All functions return undiscounted prices unless a discount factor is
given; ``option_type`` is +1 for calls / payers and -1 for puts / receivers.
"""

import numpy as np
from scipy.stats import norm


def black_formula(
    forward: float,
    strike: float,
    stdev: float,
    discount: float = 1.0,
    option_type: int = 1,
    displacement: float = 0.0,
) -> float:
    """
    Black formula with optional displacement.

    Args:
        forward: Forward of the underlying
        strike: Strike
        stdev: Total standard deviation sigma * sqrt(T) of the log forward
        discount: Discount factor to payment
        option_type: +1 call, -1 put
        displacement: Shift applied to forward and strike

    Returns:
        Option price
    """
    f = forward + displacement
    k = strike + displacement
    if f <= 0.0 or k <= 0.0:
        raise ValueError(f"black_formula: shifted forward {f} and strike {k} must be positive")
    w = option_type
    if stdev <= 0.0:
        return discount * max(w * (f - k), 0.0)
    d1 = np.log(f / k) / stdev + 0.5 * stdev
    d2 = d1 - stdev
    return float(discount * w * (f * norm.cdf(w * d1) - k * norm.cdf(w * d2)))


def bachelier_formula(
    forward: float,
    strike: float,
    stdev: float,
    discount: float = 1.0,
    option_type: int = 1,
) -> float:
    """
    Bachelier (normal) formula.

    Args:
        stdev: Total absolute standard deviation sigma_n * sqrt(T)
    """
    w = option_type
    if stdev <= 0.0:
        return discount * max(w * (forward - strike), 0.0)
    d = w * (forward - strike) / stdev
    return float(discount * (w * (forward - strike) * norm.cdf(d) + stdev * norm.pdf(d)))
