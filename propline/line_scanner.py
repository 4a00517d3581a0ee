"""
propline/line_scanner.py - Line scanning candidate generator

For one entity and statistic: estimate mu/sigma once, walk a fixed window of
lines around mu in 0.5 steps, price both sides at every line, keep the ones
whose probability sits inside the acceptance band, then keep the top few.

Profiles (window half-width / per-pair cap / minimum samples / blend weight):
    NBA player props       8.0 / 2 / 8 / 0.65
    Football player props  2.0 / 1 / 5 / 0.65
    Football match totals  3.0 / 2 / 3 per team / 0.60

The per-pair cap bounds output size. It is not a quality filter.

No API calls and no I/O: callers hand in already-fetched records.
"""

import math
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from propline.prob_model import (
    DEFAULT_MATCH_WEIGHT,
    DEFAULT_PROP_WEIGHT,
    OVER,
    UNDER,
    compute_match_probability,
    compute_prop_probability,
)
from propline.stat_series import (
    FOOTBALL_MATCH_SCANNED,
    FOOTBALL_PLAYER_SCANNED,
    MIN_FOOTBALL_PLAYER_SAMPLES,
    MIN_MATCH_SAMPLES,
    MIN_PROP_SAMPLES,
    NBA_SCANNED,
    RECENT_GAMES,
    StatSeries,
    build_series,
    build_team_series,
    sort_newest_first,
)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_MIN_PROB: float = 0.58
DEFAULT_MAX_PROB: float = 0.62
LINE_STEP: float = 0.5
MATCH_RECENT_GAMES: int = 10      # match aggregates use the whole fetched window

PLAYER: str = "player"
MATCH: str = "match"


@dataclass(frozen=True)
class ScanProfile:
    half_width: float
    cap: int
    min_samples: int
    weight_recent: float


NBA_PROP_PROFILE = ScanProfile(half_width=8.0, cap=2, min_samples=MIN_PROP_SAMPLES,
                               weight_recent=DEFAULT_PROP_WEIGHT)
FOOTBALL_PLAYER_PROFILE = ScanProfile(half_width=2.0, cap=1, min_samples=MIN_FOOTBALL_PLAYER_SAMPLES,
                                      weight_recent=DEFAULT_PROP_WEIGHT)
MATCH_PROFILE = ScanProfile(half_width=3.0, cap=2, min_samples=MIN_MATCH_SAMPLES,
                            weight_recent=DEFAULT_MATCH_WEIGHT)


# ---------------------------------------------------------------------------
# Prediction value object
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Prediction:
    """One priced side of one line. Never mutated; only filtered and sorted."""
    subject_id: Any          # player id, or fixture id for match stats
    subject_label: str       # player name, or "Home vs Away"
    stat_key: str
    side: str                # "over" | "under"
    line: float
    probability: float       # raw model p in (0, 1)
    fair_odds: float         # 1 / probability
    season_avg: float
    recent_avg: float
    sigma: float
    kind: str = PLAYER       # "player" | "match"
    home_avg: Optional[float] = None
    away_avg: Optional[float] = None
    mu: Optional[float] = None

    def to_dict(self) -> dict:
        """
        Presentation form: probability as a 0-100 percentage (1 dp),
        fair odds to 3 dp.
        """
        out = {
            "subjectId": self.subject_id,
            "subjectLabel": self.subject_label,
            "statKey": self.stat_key,
            "side": self.side,
            "line": round(self.line, 1),
            "probability": round(self.probability * 100, 1),
            "fairOdds": round(self.fair_odds, 3),
            "seasonAvg": round(self.season_avg, 2),
            "recentAvg": round(self.recent_avg, 2),
            "sigma": round(self.sigma, 2),
            "type": self.kind,
        }
        if self.kind == MATCH:
            out["homeAvg"] = round(self.home_avg, 2) if self.home_avg is not None else None
            out["awayAvg"] = round(self.away_avg, 2) if self.away_avg is not None else None
            out["matchPrediction"] = round(self.mu, 2) if self.mu is not None else None
        return out


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def candidate_lines(mu: float, half_width: float, step: float = LINE_STEP) -> list[float]:
    """
    Lines from max(0, floor(mu - W)) to ceil(mu + W) inclusive, in fixed steps.

    >>> candidate_lines(2.0, 1.0)
    [1.0, 1.5, 2.0, 2.5, 3.0]
    >>> candidate_lines(0.4, 2.0)[0]
    0.0
    """
    start = max(0, math.floor(mu - half_width))
    end = math.ceil(mu + half_width)
    count = int(round((end - start) / step))
    return [float(start + i * step) for i in range(count + 1)]


def in_band(p: float, min_prob: float, max_prob: float) -> bool:
    """
    True when p is usable (strictly inside (0, 1)) and inside the band.

    >>> in_band(0.60, 0.58, 0.62)
    True
    >>> in_band(0.0, 0.0, 0.62)
    False
    """
    if not 0.0 < p < 1.0:
        return False
    return min_prob <= p <= max_prob


def _is_degenerate(mu: float, sigma: float) -> bool:
    return not (math.isfinite(mu) and math.isfinite(sigma) and sigma > 0)


def _top(candidates: list[Prediction], cap: int) -> list[Prediction]:
    candidates.sort(key=lambda p: p.probability, reverse=True)
    return candidates[:cap]


# ---------------------------------------------------------------------------
# Single (entity, stat) scanners
# ---------------------------------------------------------------------------

def scan_prop_lines(
    series: StatSeries,
    *,
    subject_id: Any,
    subject_label: str,
    stat_key: str,
    min_prob: float = DEFAULT_MIN_PROB,
    max_prob: float = DEFAULT_MAX_PROB,
    profile: ScanProfile = NBA_PROP_PROFILE,
) -> list[Prediction]:
    """
    Scan lines for one player and one stat.

    Returns at most profile.cap predictions, best first. Returns [] when the
    series is below profile.min_samples or the model is degenerate.
    """
    if not series.has_min_samples(profile.min_samples):
        return []

    # Reference line is arbitrary: mu and sigma do not depend on it
    base = compute_prop_probability(series.season, series.recent, 0.0, OVER, profile.weight_recent)
    if _is_degenerate(base.mu, base.sigma):
        return []

    kept: list[Prediction] = []
    for line in candidate_lines(base.mu, profile.half_width):
        for side in (OVER, UNDER):
            est = compute_prop_probability(
                series.season, series.recent, line, side, profile.weight_recent
            )
            if not in_band(est.p, min_prob, max_prob):
                continue
            kept.append(Prediction(
                subject_id=subject_id,
                subject_label=subject_label,
                stat_key=stat_key,
                side=side,
                line=line,
                probability=est.p,
                fair_odds=est.fair_odds,
                season_avg=est.season_avg,
                recent_avg=est.recent_avg,
                sigma=est.sigma,
                kind=PLAYER,
            ))
    return _top(kept, profile.cap)


def scan_match_lines(
    home: StatSeries,
    away: StatSeries,
    *,
    fixture_id: Any,
    fixture_label: str,
    stat_key: str,
    min_prob: float = DEFAULT_MIN_PROB,
    max_prob: float = DEFAULT_MAX_PROB,
    profile: ScanProfile = MATCH_PROFILE,
) -> list[Prediction]:
    """Scan lines for one combined two-team statistic."""
    if not (home.has_min_samples(profile.min_samples)
            and away.has_min_samples(profile.min_samples)):
        return []

    base = compute_match_probability(
        home.season, away.season, home.recent, away.recent, 0.0, OVER, profile.weight_recent
    )
    if _is_degenerate(base.mu, base.sigma):
        return []

    kept: list[Prediction] = []
    for line in candidate_lines(base.mu, profile.half_width):
        for side in (OVER, UNDER):
            est = compute_match_probability(
                home.season, away.season, home.recent, away.recent,
                line, side, profile.weight_recent,
            )
            if not in_band(est.p, min_prob, max_prob):
                continue
            kept.append(Prediction(
                subject_id=fixture_id,
                subject_label=fixture_label,
                stat_key=stat_key,
                side=side,
                line=line,
                probability=est.p,
                fair_odds=est.fair_odds,
                season_avg=est.season_avg,
                recent_avg=est.recent_avg,
                sigma=est.sigma,
                kind=MATCH,
                home_avg=est.home_mu,
                away_avg=est.away_mu,
                mu=est.mu,
            ))
    return _top(kept, profile.cap)


# ---------------------------------------------------------------------------
# Per-entity generators
# ---------------------------------------------------------------------------

def generate_player_predictions(
    records: Sequence[dict],
    *,
    player_id: Any,
    player_label: str,
    stats: Sequence = NBA_SCANNED,
    min_prob: float = DEFAULT_MIN_PROB,
    max_prob: float = DEFAULT_MAX_PROB,
    profile: ScanProfile = NBA_PROP_PROFILE,
    recent_games: int = RECENT_GAMES,
) -> list[Prediction]:
    """
    Every kept prediction for one player across a set of stats.

    records are raw per-game rows (any order). Stats below the sample gate
    contribute nothing.
    """
    if not records:
        return []
    ordered = sort_newest_first(records)
    predictions: list[Prediction] = []
    for stat in stats:
        series = build_series(ordered, stat, recent_games, presorted=True)
        predictions.extend(scan_prop_lines(
            series,
            subject_id=player_id,
            subject_label=player_label,
            stat_key=stat.value,
            min_prob=min_prob,
            max_prob=max_prob,
            profile=profile,
        ))
    return predictions


def generate_football_player_predictions(
    records: Sequence[dict],
    *,
    player_id: Any,
    player_label: str,
    min_prob: float = DEFAULT_MIN_PROB,
    max_prob: float = DEFAULT_MAX_PROB,
) -> list[Prediction]:
    """Football player props with the football profile and stat set."""
    return generate_player_predictions(
        records,
        player_id=player_id,
        player_label=player_label,
        stats=FOOTBALL_PLAYER_SCANNED,
        min_prob=min_prob,
        max_prob=max_prob,
        profile=FOOTBALL_PLAYER_PROFILE,
    )


def generate_match_predictions(
    home_games: Sequence[dict],
    away_games: Sequence[dict],
    *,
    home_team_id: Any,
    away_team_id: Any,
    fixture_id: Any,
    fixture_label: str,
    stats: Sequence = FOOTBALL_MATCH_SCANNED,
    min_prob: float = DEFAULT_MIN_PROB,
    max_prob: float = DEFAULT_MAX_PROB,
    profile: ScanProfile = MATCH_PROFILE,
    recent_games: int = MATCH_RECENT_GAMES,
) -> list[Prediction]:
    """Match-aggregate predictions for one fixture from both teams' recent games."""
    predictions: list[Prediction] = []
    for stat in stats:
        home = build_team_series(home_games, home_team_id, stat, recent_games)
        away = build_team_series(away_games, away_team_id, stat, recent_games)
        predictions.extend(scan_match_lines(
            home,
            away,
            fixture_id=fixture_id,
            fixture_label=fixture_label,
            stat_key=stat.value,
            min_prob=min_prob,
            max_prob=max_prob,
            profile=profile,
        ))
    return predictions
