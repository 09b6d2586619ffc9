"""
Statistics for comparing two predictors on the same samples.

Plain functions, no state:
    - normal_cdf: Abramowitz & Stegun 7.1.26 approximation
    - two_proportion_z_test: pooled-SE z-test, two-tailed p-value
    - wald_interval: normal-approximation confidence interval
    - cohens_d: effect size between two rates
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

# Abramowitz & Stegun 7.1.26 coefficients
_A1 = 0.254829592
_A2 = -0.284496736
_A3 = 1.421413741
_A4 = -1.453152027
_A5 = 1.061405429
_P = 0.3275911

Z_SCORES = {
    0.90: 1.645,
    0.95: 1.96,
    0.99: 2.576,
}

SIGNIFICANCE_LEVEL = 0.05


def normal_cdf(x: float) -> float:
    """Standard normal CDF, accurate to about 1.5e-7."""
    sign = -1.0 if x < 0 else 1.0
    x = abs(x) / math.sqrt(2.0)
    t = 1.0 / (1.0 + _P * x)
    y = 1.0 - (((((_A5 * t + _A4) * t) + _A3) * t + _A2) * t + _A1) * t * math.exp(-x * x)
    return 0.5 * (1.0 + sign * y)


@dataclass(frozen=True)
class ZTestResult:
    z_score: float
    p_value: float
    significant: bool


def two_proportion_z_test(
    successes_a: int,
    successes_b: int,
    n_a: int,
    n_b: Optional[int] = None,
    alpha: float = SIGNIFICANCE_LEVEL,
) -> ZTestResult:
    """
    Two-proportion z-test of rate B against rate A.

    z is positive when B is higher. With one n for both groups the pooled
    proportion is (a + b) / 2n and SE = sqrt(p(1-p) * 2/n).
    Degenerate inputs (no samples, zero variance) give z=0, p=1.
    """
    if n_b is None:
        n_b = n_a
    if n_a <= 0 or n_b <= 0:
        return ZTestResult(z_score=0.0, p_value=1.0, significant=False)

    p_a = successes_a / n_a
    p_b = successes_b / n_b
    pooled = (successes_a + successes_b) / (n_a + n_b)
    se = math.sqrt(pooled * (1.0 - pooled) * (1.0 / n_a + 1.0 / n_b))
    if se == 0:
        return ZTestResult(z_score=0.0, p_value=1.0, significant=False)

    z = (p_b - p_a) / se
    p_value = 2.0 * (1.0 - normal_cdf(abs(z)))
    # The approximation can dip a hair below zero far in the tail
    p_value = min(1.0, max(0.0, p_value))
    return ZTestResult(z_score=z, p_value=p_value, significant=p_value < alpha)


def wald_interval(successes: int, n: int, confidence: float = 0.95) -> tuple[float, float]:
    """
    Wald interval p ± z·sqrt(p(1-p)/n), clamped to [0, 1].

    n == 0 yields the uninformative interval (0, 1).
    """
    if confidence not in Z_SCORES:
        raise ValueError(f"Unsupported confidence level {confidence}; use one of {sorted(Z_SCORES)}")
    if n <= 0:
        return (0.0, 1.0)

    p = successes / n
    margin = Z_SCORES[confidence] * math.sqrt(p * (1.0 - p) / n)
    return (max(0.0, p - margin), min(1.0, p + margin))


def cohens_d(rate_a: float, rate_b: float) -> float:
    """Effect size of rate B over rate A; 0 when both rates have zero variance."""
    var_a = rate_a * (1.0 - rate_a)
    var_b = rate_b * (1.0 - rate_b)
    pooled_sd = math.sqrt((var_a + var_b) / 2.0)
    if pooled_sd == 0:
        return 0.0
    return (rate_b - rate_a) / pooled_sd
