"""
propline/stat_series.py - Per-statistic numeric series from raw game records

Maps raw upstream game records into newest-first numeric sequences for one
(entity, statistic) pair. Pure: no API calls, no logging.

Supported statistics are closed enums. Each member maps to an extractor that
returns a number or None. Unknown keys raise UnknownStatError up front instead
of silently producing an empty series.

Minimum sample sizes are data-sufficiency gates, not errors: callers skip
entities below them.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Sequence, Union


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

RECENT_GAMES: int = 5                  # recent-form prefix length

MIN_PROP_SAMPLES: int = 8              # NBA individual props
MIN_FOOTBALL_PLAYER_SAMPLES: int = 5   # EPL player props
MIN_MATCH_SAMPLES: int = 3             # per team, EPL match aggregates


class UnknownStatError(ValueError):
    """Raised for a statistic key outside the supported catalogue."""


# ---------------------------------------------------------------------------
# Stat catalogues
# ---------------------------------------------------------------------------

class NbaStat(str, Enum):
    PTS = "pts"
    REB = "reb"
    AST = "ast"
    FG3M = "fg3m"
    PRA = "pra"
    PR = "pr"
    PA = "pa"
    RA = "ra"


class FootballPlayerStat(str, Enum):
    GOALS = "goals"
    ASSISTS = "assists"
    SHOTS_ON_TARGET = "shots_on_target"
    YELLOW_CARDS = "yellow_cards"
    TACKLES = "tackles"
    PASSES = "passes"
    FOULS = "fouls"


class FootballMatchStat(str, Enum):
    GOALS = "goals"
    ASSISTS = "assists"
    YELLOW_CARDS = "yellow_cards"
    RED_CARDS = "red_cards"
    OFFSIDES = "offsides"
    CORNERS = "corners"
    PASSES = "passes"
    TOUCHES = "touches"
    SHOTS_ON_TARGET = "shots_on_target"
    TACKLES = "tackles"
    CLEARANCES = "clearances"
    FOULS = "fouls"


StatKey = Union[NbaStat, FootballPlayerStat, FootballMatchStat]
Extractor = Callable[[dict], Optional[float]]

# Stats scanned by the default pipelines (fouls/clearances are extractable
# but not scanned).
NBA_SCANNED: tuple = tuple(NbaStat)
FOOTBALL_PLAYER_SCANNED: tuple = (
    FootballPlayerStat.GOALS,
    FootballPlayerStat.ASSISTS,
    FootballPlayerStat.SHOTS_ON_TARGET,
    FootballPlayerStat.YELLOW_CARDS,
    FootballPlayerStat.TACKLES,
    FootballPlayerStat.PASSES,
)
FOOTBALL_MATCH_SCANNED: tuple = (
    FootballMatchStat.GOALS,
    FootballMatchStat.ASSISTS,
    FootballMatchStat.YELLOW_CARDS,
    FootballMatchStat.RED_CARDS,
    FootballMatchStat.OFFSIDES,
    FootballMatchStat.CORNERS,
    FootballMatchStat.PASSES,
    FootballMatchStat.TOUCHES,
    FootballMatchStat.SHOTS_ON_TARGET,
    FootballMatchStat.TACKLES,
)


# ---------------------------------------------------------------------------
# Extractors
# ---------------------------------------------------------------------------

def _field(name: str) -> Extractor:
    """Direct field; missing or null stays None."""
    def extract(record: dict) -> Optional[float]:
        return record.get(name)
    return extract


def _field_or_zero(name: str) -> Extractor:
    """Direct field; a present record with a missing field counts as 0."""
    def extract(record: dict) -> Optional[float]:
        value = record.get(name)
        return 0 if value is None else value
    return extract


def _total(*names: str) -> Extractor:
    """Derived composite: sum of fields, None if any component is missing."""
    def extract(record: dict) -> Optional[float]:
        parts = [record.get(n) for n in names]
        if any(p is None for p in parts):
            return None
        return sum(parts)
    return extract


NBA_EXTRACTORS: dict[NbaStat, Extractor] = {
    NbaStat.PTS:  _field("pts"),
    NbaStat.REB:  _field("reb"),
    NbaStat.AST:  _field("ast"),
    NbaStat.FG3M: _field("fg3m"),
    NbaStat.PRA:  _total("pts", "reb", "ast"),
    NbaStat.PR:   _total("pts", "reb"),
    NbaStat.PA:   _total("pts", "ast"),
    NbaStat.RA:   _total("reb", "ast"),
}

FOOTBALL_PLAYER_EXTRACTORS: dict[FootballPlayerStat, Extractor] = {
    stat: _field_or_zero(stat.value) for stat in FootballPlayerStat
}

# Upstream team stat names (Opta-style keys)
FOOTBALL_MATCH_EXTRACTORS: dict[FootballMatchStat, Extractor] = {
    FootballMatchStat.GOALS:           _field_or_zero("goals"),
    FootballMatchStat.ASSISTS:         _field_or_zero("goal_assist"),
    FootballMatchStat.YELLOW_CARDS:    _field_or_zero("total_yel_card"),
    FootballMatchStat.RED_CARDS:       _field_or_zero("red_card"),
    FootballMatchStat.OFFSIDES:        _field_or_zero("total_offside"),
    FootballMatchStat.CORNERS:         _field_or_zero("att_corner"),
    FootballMatchStat.PASSES:          _field_or_zero("total_pass"),
    FootballMatchStat.TOUCHES:         _field_or_zero("touches"),
    FootballMatchStat.SHOTS_ON_TARGET: _field_or_zero("ontarget_scoring_att"),
    FootballMatchStat.TACKLES:         _field_or_zero("total_tackle"),
    FootballMatchStat.CLEARANCES:      _field_or_zero("total_clearance"),
    FootballMatchStat.FOULS:           _field_or_zero("fk_foul_lost"),
}

_EXTRACTORS: dict = {
    NbaStat: NBA_EXTRACTORS,
    FootballPlayerStat: FOOTBALL_PLAYER_EXTRACTORS,
    FootballMatchStat: FOOTBALL_MATCH_EXTRACTORS,
}


def parse_stat(catalogue: type, key: Any) -> StatKey:
    """
    Resolve a raw key against one catalogue.

    >>> parse_stat(NbaStat, "pra")
    <NbaStat.PRA: 'pra'>
    >>> parse_stat(NbaStat, "blk")
    Traceback (most recent call last):
        ...
    propline.stat_series.UnknownStatError: Unknown NbaStat key: 'blk'
    """
    if isinstance(key, catalogue):
        return key
    try:
        return catalogue(key)
    except ValueError:
        raise UnknownStatError(f"Unknown {catalogue.__name__} key: {key!r}") from None


def extractor_for(stat: StatKey) -> Extractor:
    """Return the value accessor for a catalogue member."""
    table = _EXTRACTORS.get(type(stat))
    if table is None or stat not in table:
        raise UnknownStatError(f"Unsupported statistic: {stat!r}")
    return table[stat]


def nba_record_values(record: dict) -> dict[str, Optional[float]]:
    """All NBA stats (direct and composite) for one box score."""
    return {stat.value: NBA_EXTRACTORS[stat](record) for stat in NbaStat}


# ---------------------------------------------------------------------------
# Series
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StatSeries:
    """Newest-first values for one (entity, statistic). `recent` is a prefix of `season`."""
    season: tuple
    recent: tuple

    def __len__(self) -> int:
        return len(self.season)

    def has_min_samples(self, minimum: int) -> bool:
        return len(self.season) >= minimum


def _parse_date(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if not value:
        return datetime.min
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return datetime.min
    # Compare naive and aware dates on a common naive-UTC basis
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def game_date(record: dict) -> datetime:
    """
    Date of the game a record belongs to.

    Checks record["game"]["date"] (NBA box score), then "kickoff"
    (EPL games), then "date". Unknown dates sort last.
    """
    game = record.get("game")
    if isinstance(game, dict) and game.get("date"):
        return _parse_date(game["date"])
    return _parse_date(record.get("kickoff") or record.get("date"))


def sort_newest_first(records: Iterable[dict]) -> list[dict]:
    """Return a new list ordered by game date, newest first."""
    return sorted(records, key=game_date, reverse=True)


def _clean(values: Iterable[Any]) -> tuple:
    out = []
    for v in values:
        if v is None or isinstance(v, bool):
            continue
        try:
            f = float(v)
        except (TypeError, ValueError):
            continue
        if math.isfinite(f):
            out.append(f)
    return tuple(out)


def series_from_values(values: Iterable[Any], recent_games: int = RECENT_GAMES) -> StatSeries:
    """
    Build a series from values already ordered newest-first.

    >>> s = series_from_values([3, None, 5, float("nan"), 7], recent_games=2)
    >>> s.season, s.recent
    ((3.0, 5.0, 7.0), (3.0, 5.0))
    """
    season = _clean(values)
    return StatSeries(season=season, recent=season[:recent_games])


def build_series(
    records: Sequence[dict],
    stat: StatKey,
    recent_games: int = RECENT_GAMES,
    presorted: bool = False,
) -> StatSeries:
    """
    Extract one statistic from raw records into a newest-first series.

    Records are sorted by game date (newest first) unless presorted=True.
    Null and non-finite values are dropped before the recent prefix is taken.
    """
    extract = extractor_for(stat)
    ordered = records if presorted else sort_newest_first(records)
    return series_from_values((extract(r) for r in ordered), recent_games)


def team_game_records(games: Sequence[dict], team_id: Any) -> list[dict]:
    """
    Pick one team's stat map out of each two-team game record.

    Games where the team's stat map is missing or empty are dropped.
    The kickoff date is carried along for ordering.
    """
    records = []
    for g in games:
        if g.get("home_team_id") == team_id:
            stats = g.get("home_team_stats")
        elif g.get("away_team_id") == team_id:
            stats = g.get("away_team_stats")
        else:
            continue
        if not stats:
            continue
        records.append({**stats, "kickoff": g.get("kickoff")})
    return records


def build_team_series(
    games: Sequence[dict],
    team_id: Any,
    stat: FootballMatchStat,
    recent_games: int = RECENT_GAMES,
) -> StatSeries:
    """Match-aggregate series for one team from its recent two-team game records."""
    return build_series(team_game_records(games, team_id), stat, recent_games)
