"""
propline/prob_model.py - Propline
=================================
All probability math lives here. No API calls, no UI, no file I/O.

Responsibilities:
- Standard normal CDF (Zelen & Severo rational approximation, |error| < 7.5e-8)
- Sample mean / Bessel-corrected standard deviation
- Player prop model: blended recent/season mean, volatility with fallback,
  continuity-corrected over/under probability, fair decimal odds
- Match aggregate model: sum of two independent team estimates

Model rules:
1. mu = w * recent_avg + (1 - w) * season_avg
2. sigma from recent values when there are at least 2, else season values.
3. sigma of 0 (or non-finite) is replaced by a deterministic fallback.
4. over:  z = (line + 0.5 - mu) / sigma, p = 1 - PHI(z)
   under: z = (line - 0.5 - mu) / sigma, p = PHI(z)
   The two sides are NOT complements at the same line. Keep it that way,
   the conflict resolver compares these exact values.
5. p is not clamped. Callers skip p outside (0, 1).

DO NOT add API calls, Streamlit calls, or file I/O to this file.
"""

import math
from dataclasses import dataclass
from typing import Optional, Sequence


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

OVER: str = "over"
UNDER: str = "under"
SIDES: frozenset = frozenset({OVER, UNDER})

DEFAULT_PROP_WEIGHT: float = 0.65    # 65% recent form, 35% season
DEFAULT_MATCH_WEIGHT: float = 0.60   # match aggregates lean less on form
CONTINUITY_CORRECTION: float = 0.5

PROP_SIGMA_RATIO: float = 0.4        # fallback sigma = 0.4 * season_avg
PROP_SIGMA_FLOOR: float = 0.5
MATCH_SIGMA_RATIO: float = 0.3       # fallback sigma = 0.3 * combined mu
MATCH_SIGMA_DEFAULT: float = 1.0

# Zelen & Severo (Abramowitz & Stegun 26.2.17) coefficients
_CDF_P: float = 0.2316419
_CDF_D: float = 0.3989423
_CDF_B: tuple = (0.3193815, -0.3565638, 1.781478, -1.821256, 1.330274)


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PropEstimate:
    """Single-entity model output for one line and side."""
    season_avg: float
    recent_avg: float
    mu: float
    sigma: float
    p: float
    fair_odds: float     # decimal odds, 1 / p (inf when p == 0)


@dataclass(frozen=True)
class MatchEstimate:
    """Two-team aggregate model output for one line and side."""
    home_season_avg: float
    away_season_avg: float
    home_recent_avg: float
    away_recent_avg: float
    home_mu: float
    away_mu: float
    mu: float            # home_mu + away_mu
    sigma: float         # sqrt(home_sigma^2 + away_sigma^2), or fallback
    p: float
    fair_odds: float

    @property
    def season_avg(self) -> float:
        return self.home_season_avg + self.away_season_avg

    @property
    def recent_avg(self) -> float:
        return self.home_recent_avg + self.away_recent_avg


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------

def normal_cdf(z: float) -> float:
    """
    Standard normal CDF via a fixed-coefficient rational polynomial.

    >>> round(normal_cdf(0.0), 4)
    0.5
    >>> round(normal_cdf(1.96), 3)
    0.975
    >>> round(normal_cdf(-1.96), 3)
    0.025
    """
    t = 1.0 / (1.0 + _CDF_P * abs(z))
    d = _CDF_D * math.exp(-z * z / 2.0)
    b1, b2, b3, b4, b5 = _CDF_B
    tail = d * t * (b1 + t * (b2 + t * (b3 + t * (b4 + t * b5))))
    return 1.0 - tail if z > 0 else tail


def mean(values: Sequence[float]) -> float:
    """
    Arithmetic mean. Empty input returns 0.0.

    >>> mean([1, 2, 3])
    2.0
    >>> mean([])
    0.0
    """
    if not values:
        return 0.0
    return sum(values) / len(values)


def std_dev(values: Sequence[float]) -> float:
    """
    Sample standard deviation (divisor n - 1). Fewer than 2 points returns 0.0.

    >>> round(std_dev([2, 4, 4, 4, 5, 5, 7, 9]), 4)
    2.1381
    >>> std_dev([5])
    0.0
    """
    n = len(values)
    if n < 2:
        return 0.0
    m = mean(values)
    variance = sum((x - m) ** 2 for x in values) / (n - 1)
    return math.sqrt(variance)


def fair_odds(p: float) -> float:
    """
    Decimal fair price for a probability. p == 0 maps to inf.

    >>> fair_odds(0.5)
    2.0
    >>> fair_odds(0.0)
    inf
    """
    if p == 0:
        return math.inf
    return 1.0 / p


def blend(recent_avg: float, season_avg: float, weight_recent: float) -> float:
    """Convex combination of recent form and season baseline."""
    return weight_recent * recent_avg + (1.0 - weight_recent) * season_avg


def side_probability(mu: float, sigma: float, line: float, side: str) -> float:
    """
    Continuity-corrected normal probability of finishing over/under a line.

    Raises:
        ValueError: if side is not "over" or "under".

    >>> round(side_probability(10.0, 4.0, 10.0, "over"), 3)
    0.45
    >>> round(side_probability(10.0, 4.0, 10.0, "under"), 3)
    0.45
    """
    if side == OVER:
        z = (line + CONTINUITY_CORRECTION - mu) / sigma
        return 1.0 - normal_cdf(z)
    if side == UNDER:
        z = (line - CONTINUITY_CORRECTION - mu) / sigma
        return normal_cdf(z)
    raise ValueError(f"Unknown side: {side!r}")


def _usable(sigma: float) -> bool:
    return math.isfinite(sigma) and sigma != 0


def _volatility(season_values: Sequence[float], recent_values: Sequence[float]) -> float:
    if len(recent_values) >= 2:
        return std_dev(recent_values)
    return std_dev(season_values)


def prop_sigma_fallback(season_avg: float) -> float:
    """
    >>> prop_sigma_fallback(10.0)
    4.0
    >>> prop_sigma_fallback(0.0)
    0.5
    """
    return max(PROP_SIGMA_RATIO * season_avg, PROP_SIGMA_FLOOR)


def match_sigma_fallback(combined_mu: float) -> float:
    """
    >>> match_sigma_fallback(10.0)
    3.0
    >>> match_sigma_fallback(0.0)
    1.0
    """
    fallback = MATCH_SIGMA_RATIO * combined_mu
    if fallback > 0:
        return fallback
    return MATCH_SIGMA_DEFAULT


# ---------------------------------------------------------------------------
# Player prop model
# ---------------------------------------------------------------------------

def compute_prop_probability(
    season_values: Sequence[float],
    recent_values: Optional[Sequence[float]],
    line: float,
    side: str,
    weight_recent: float = DEFAULT_PROP_WEIGHT,
) -> PropEstimate:
    """
    Probability that one entity finishes over/under a line for one stat.

    Args:
        season_values: Every observed value this season (newest first).
        recent_values: Recent-form prefix of season_values. May be empty/None.
        line:          Threshold being priced (e.g. 24.5).
        side:          "over" or "under".
        weight_recent: Blend weight w in [0, 1] for recent form.

    Returns:
        PropEstimate with season/recent averages, mu, sigma, p and fair odds.

    Raises:
        ValueError: season_values is empty, or side is unknown.

    >>> est = compute_prop_probability([10] * 8, [10] * 5, 10, "over")
    >>> est.sigma
    4.0
    >>> round(est.p, 3)
    0.45
    """
    if not season_values:
        raise ValueError("No season data for this entity/stat")
    recent_values = recent_values or ()

    season_avg = mean(season_values)
    recent_avg = mean(recent_values) if recent_values else season_avg
    mu = blend(recent_avg, season_avg, weight_recent)

    sigma = _volatility(season_values, recent_values)
    if not _usable(sigma):
        sigma = prop_sigma_fallback(season_avg)

    p = side_probability(mu, sigma, line, side)
    return PropEstimate(
        season_avg=season_avg,
        recent_avg=recent_avg,
        mu=mu,
        sigma=sigma,
        p=p,
        fair_odds=fair_odds(p),
    )


# ---------------------------------------------------------------------------
# Match aggregate model
# ---------------------------------------------------------------------------

def compute_match_probability(
    home_season_values: Sequence[float],
    away_season_values: Sequence[float],
    home_recent_values: Optional[Sequence[float]],
    away_recent_values: Optional[Sequence[float]],
    line: float,
    side: str,
    weight_recent: float = DEFAULT_MATCH_WEIGHT,
) -> MatchEstimate:
    """
    Probability that the combined two-team total finishes over/under a line.

    Team estimates are treated as independent: means add, variances add.
    No measured correlation between the two sides is used.

    Raises:
        ValueError: both season series are empty, or side is unknown.

    >>> est = compute_match_probability([5] * 5, [5] * 5, [5] * 5, [5] * 5, 10, "over")
    >>> est.mu, est.sigma
    (10.0, 3.0)
    """
    if not home_season_values and not away_season_values:
        raise ValueError("No data for this match stat")
    home_recent_values = home_recent_values or ()
    away_recent_values = away_recent_values or ()

    home_season_avg = mean(home_season_values)
    away_season_avg = mean(away_season_values)
    home_recent_avg = mean(home_recent_values) if home_recent_values else home_season_avg
    away_recent_avg = mean(away_recent_values) if away_recent_values else away_season_avg

    home_mu = blend(home_recent_avg, home_season_avg, weight_recent)
    away_mu = blend(away_recent_avg, away_season_avg, weight_recent)
    mu = home_mu + away_mu

    home_sigma = _volatility(home_season_values, home_recent_values)
    away_sigma = _volatility(away_season_values, away_recent_values)
    sigma = math.sqrt(home_sigma ** 2 + away_sigma ** 2)
    if not _usable(sigma):
        sigma = match_sigma_fallback(mu)

    p = side_probability(mu, sigma, line, side)
    return MatchEstimate(
        home_season_avg=home_season_avg,
        away_season_avg=away_season_avg,
        home_recent_avg=home_recent_avg,
        away_recent_avg=away_recent_avg,
        home_mu=home_mu,
        away_mu=away_mu,
        mu=mu,
        sigma=sigma,
        p=p,
        fair_odds=fair_odds(p),
    )
