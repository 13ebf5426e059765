"""Timing statistics for time-based confirmation."""

import math
import statistics
from typing import NamedTuple, Sequence


class ZTest(NamedTuple):
    z: float
    p: float


# Abramowitz and Stegun 7.1.26
_A1 = 0.254829592
_A2 = -0.284496736
_A3 = 1.421413741
_A4 = -1.453152027
_A5 = 1.061405429
_P = 0.3275911

_Z_SENTINEL = 1e9


def mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return statistics.fmean(values)


def stddev(values: Sequence[float]) -> float:
    """Sample standard deviation (n - 1 denominator); 0 for fewer than two values."""
    if len(values) <= 1:
        return 0.0
    return statistics.stdev(values)


def norm_cdf(x: float) -> float:
    sign = -1.0 if x < 0 else 1.0
    ax = abs(x) / math.sqrt(2.0)
    t = 1.0 / (1.0 + _P * ax)
    y = 1.0 - ((((_A5 * t + _A4) * t + _A3) * t + _A2) * t + _A1) * t * math.exp(-ax * ax)
    return 0.5 * (1.0 + sign * y)


def paired_z_test_p_value(diffs: Sequence[float]) -> ZTest:
    """
    One-sided paired z-test over (injected - baseline) timing differences.

    Returns z and p = P(Z >= z). With one sample or none there is no evidence
    against the null hypothesis, so the result is (0, 1).
    """
    n = len(diffs)
    if n <= 1:
        return ZTest(0.0, 1.0)
    m = mean(diffs)
    se = stddev(diffs) / math.sqrt(n)
    if se > 1e-9:
        z = m / se
    else:
        z = _Z_SENTINEL if m > 0 else 0.0
    return ZTest(z, 1.0 - norm_cdf(z))
