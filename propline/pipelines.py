"""
propline/pipelines.py — Propline
================================
Per-domain refresh pipelines: fetch -> build series -> scan -> resolve.

Responsibilities:
- NBA: upcoming games, both rosters (first 6 players each), per-player
  season box scores, every NBA stat scanned with the prop profile
- EPL: next gameweek, both teams' recent completed games, match-aggregate
  scan, both rosters, per-player props over their own team's recent games
- Per-fixture finalisation (confidence floor, conflict removal, top-K)
- On-demand NBA recommendations for the live endpoint (no floor)
- EPL match analysis: both teams' recent per-game stats and averages

Per-entity work fans out on a thread pool. One entity failing is logged and
skipped; the rest of the batch carries on. Failures outside the fan-out
(game list, rosters) propagate to the refresh orchestrator.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Optional, Sequence

from propline.balldontlie import BallDontLieClient
from propline.cache import DomainResult, FixturePredictions, PredictionCache
from propline.conflict_resolver import CONFIDENCE_FLOOR, FIXTURE_TOP_K, finalize_predictions
from propline.line_scanner import (
    DEFAULT_MAX_PROB,
    DEFAULT_MIN_PROB,
    MATCH_RECENT_GAMES,
    Prediction,
    generate_football_player_predictions,
    generate_match_predictions,
    generate_player_predictions,
)
from propline.stat_series import (
    MIN_FOOTBALL_PLAYER_SAMPLES,
    MIN_PROP_SAMPLES,
    FootballMatchStat,
    extractor_for,
)

logger = logging.getLogger(__name__)

NBA_DOMAIN: str = "nba"
EPL_DOMAIN: str = "epl"

NBA_GAME_LIMIT: int = 10
MAX_PLAYERS_PER_TEAM: int = 6
MAX_WORKERS: int = 8

RECOMMENDED_GAME_LIMIT: int = 5
RECOMMENDED_PER_GAME: int = 5


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def player_label(player: dict) -> str:
    """
    >>> player_label({"id": 7, "first_name": "Jalen", "last_name": "Brunson"})
    'Jalen Brunson'
    >>> player_label({"id": 7})
    'Player 7'
    """
    name = f"{player.get('first_name') or ''} {player.get('last_name') or ''}".strip()
    return name or f"Player {player.get('id')}"


def team_name(team: Optional[dict]) -> str:
    if not team:
        return "?"
    return team.get("full_name") or team.get("name") or str(team.get("id"))


def _fan_out(
    worker: Callable[[Any], Any],
    items: Sequence[Any],
    describe: Callable[[Any], str],
    max_workers: int = MAX_WORKERS,
) -> list:
    """
    Run worker(item) for every item on a thread pool.

    Returns results in item order. A failed item yields None (and a WARNING)
    instead of cancelling its siblings.
    """
    results: list = [None] * len(items)
    if not items:
        return results

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_index = {executor.submit(worker, item): i for i, item in enumerate(items)}
        for future in as_completed(future_to_index):
            i = future_to_index[future]
            try:
                results[i] = future.result()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Skipping %s: %s", describe(items[i]), exc)
    return results


def _flatten(results: list) -> list[Prediction]:
    return [p for batch in results if batch for p in batch]


def _roster(client_call: Callable[[Any], list], team_id: Any, limit: int) -> list:
    return list(client_call(team_id))[:limit]


# ---------------------------------------------------------------------------
# NBA
# ---------------------------------------------------------------------------

def nba_player_predictions(
    client: BallDontLieClient,
    player: dict,
    min_prob: float = DEFAULT_MIN_PROB,
    max_prob: float = DEFAULT_MAX_PROB,
) -> list[Prediction]:
    """All in-band NBA prop predictions for one player (empty below 8 games)."""
    stats = client.fetch_player_season_stats(player["id"])
    if len(stats) < MIN_PROP_SAMPLES:
        return []
    return generate_player_predictions(
        stats,
        player_id=player["id"],
        player_label=player_label(player),
        min_prob=min_prob,
        max_prob=max_prob,
    )


def build_nba_fixture(
    client: BallDontLieClient,
    game: dict,
    *,
    min_prob: float = DEFAULT_MIN_PROB,
    max_prob: float = DEFAULT_MAX_PROB,
    max_players_per_team: int = MAX_PLAYERS_PER_TEAM,
    confidence_floor: Optional[float] = CONFIDENCE_FLOOR,
    top_k: int = FIXTURE_TOP_K,
) -> FixturePredictions:
    home, visitor = game.get("home_team") or {}, game.get("visitor_team") or {}
    logger.info("NBA: processing %s vs %s", team_name(home), team_name(visitor))

    players = (
        _roster(client.fetch_players_for_team, home["id"], max_players_per_team)
        + _roster(client.fetch_players_for_team, visitor["id"], max_players_per_team)
    )
    results = _fan_out(
        lambda p: nba_player_predictions(client, p, min_prob, max_prob),
        players,
        describe=lambda p: f"player {p.get('id')} ({player_label(p)})",
    )
    kept = finalize_predictions(_flatten(results), confidence_floor, top_k)
    return FixturePredictions(
        fixture_id=game.get("id"),
        fixture={
            "date": game.get("date"),
            "datetime": game.get("datetime"),
            "status": game.get("status"),
            "home_team": home,
            "visitor_team": visitor,
        },
        predictions=tuple(kept),
    )


def build_nba_result(
    client: BallDontLieClient,
    *,
    game_limit: int = NBA_GAME_LIMIT,
    min_prob: float = DEFAULT_MIN_PROB,
    max_prob: float = DEFAULT_MAX_PROB,
    max_players_per_team: int = MAX_PLAYERS_PER_TEAM,
    confidence_floor: Optional[float] = CONFIDENCE_FLOOR,
    top_k: int = FIXTURE_TOP_K,
) -> DomainResult:
    """Full NBA cache build for the next `game_limit` games."""
    games = client.fetch_upcoming_games(game_limit)
    fixtures = tuple(
        build_nba_fixture(
            client, game,
            min_prob=min_prob,
            max_prob=max_prob,
            max_players_per_team=max_players_per_team,
            confidence_floor=confidence_floor,
            top_k=top_k,
        )
        for game in games
    )
    return DomainResult(
        scope={"season": client.nba_season, "minProb": min_prob, "maxProb": max_prob},
        fixtures=fixtures,
        collection_key="games",
    )


def build_nba_recommendations(
    client: BallDontLieClient,
    *,
    min_prob: float = DEFAULT_MIN_PROB,
    max_prob: float = DEFAULT_MAX_PROB,
    per_game: int = RECOMMENDED_PER_GAME,
    game_limit: int = RECOMMENDED_GAME_LIMIT,
    max_players_per_team: int = MAX_PLAYERS_PER_TEAM,
) -> DomainResult:
    """Live NBA picks: same scan as the cache build, no confidence floor."""
    result = build_nba_result(
        client,
        game_limit=game_limit,
        min_prob=min_prob,
        max_prob=max_prob,
        max_players_per_team=max_players_per_team,
        confidence_floor=None,
        top_k=per_game,
    )
    return DomainResult(
        scope={**result.scope, "perGame": per_game},
        fixtures=result.fixtures,
        collection_key="games",
    )


# ---------------------------------------------------------------------------
# EPL
# ---------------------------------------------------------------------------

def epl_player_predictions(
    client: BallDontLieClient,
    player: dict,
    team_games: list,
    min_prob: float = DEFAULT_MIN_PROB,
    max_prob: float = DEFAULT_MAX_PROB,
) -> list[Prediction]:
    """Football player props from the player's rows in their team's recent games."""
    rows = client.fetch_epl_player_game_stats(player["id"], team_games)
    if len(rows) < MIN_FOOTBALL_PLAYER_SAMPLES:
        return []
    return generate_football_player_predictions(
        rows,
        player_id=player["id"],
        player_label=player_label(player),
        min_prob=min_prob,
        max_prob=max_prob,
    )


def build_epl_fixture(
    client: BallDontLieClient,
    game: dict,
    *,
    min_prob: float = DEFAULT_MIN_PROB,
    max_prob: float = DEFAULT_MAX_PROB,
    max_players_per_team: int = MAX_PLAYERS_PER_TEAM,
    recent_games: int = MATCH_RECENT_GAMES,
    confidence_floor: Optional[float] = CONFIDENCE_FLOOR,
    top_k: int = FIXTURE_TOP_K,
) -> FixturePredictions:
    home = game.get("home_team") or {"id": game.get("home_team_id")}
    away = game.get("away_team") or {"id": game.get("away_team_id")}
    label = f"{team_name(home)} vs {team_name(away)}"
    logger.info("EPL: processing %s", label)

    home_games, away_games = _fan_out(
        lambda team_id: client.fetch_epl_team_recent_games(team_id, recent_games),
        [home["id"], away["id"]],
        describe=lambda team_id: f"recent games of team {team_id}",
    )

    predictions: list[Prediction] = []
    if home_games is not None and away_games is not None:
        predictions.extend(generate_match_predictions(
            home_games,
            away_games,
            home_team_id=home["id"],
            away_team_id=away["id"],
            fixture_id=game.get("id"),
            fixture_label=label,
            min_prob=min_prob,
            max_prob=max_prob,
        ))

    jobs = []
    for team, team_games in ((home, home_games), (away, away_games)):
        if not team_games:
            continue
        roster = _roster(client.fetch_epl_players_for_team, team["id"], max_players_per_team)
        jobs.extend((player, team_games) for player in roster)

    results = _fan_out(
        lambda job: epl_player_predictions(client, job[0], job[1], min_prob, max_prob),
        jobs,
        describe=lambda job: f"player {job[0].get('id')} ({player_label(job[0])})",
    )
    predictions.extend(_flatten(results))

    kept = finalize_predictions(predictions, confidence_floor, top_k)
    return FixturePredictions(
        fixture_id=game.get("id"),
        fixture={
            "kickoff": game.get("kickoff"),
            "week": game.get("week"),
            "status": game.get("status"),
            "home_team": home,
            "away_team": away,
        },
        predictions=tuple(kept),
    )


def build_epl_result(
    client: BallDontLieClient,
    *,
    week: Optional[int] = None,
    min_prob: float = DEFAULT_MIN_PROB,
    max_prob: float = DEFAULT_MAX_PROB,
    max_players_per_team: int = MAX_PLAYERS_PER_TEAM,
    confidence_floor: Optional[float] = CONFIDENCE_FLOOR,
    top_k: int = FIXTURE_TOP_K,
) -> DomainResult:
    """Full EPL cache build for one gameweek (auto-detected when week is None)."""
    if week is None:
        week = client.detect_next_gameweek()
    games = client.fetch_epl_games_by_week(week)
    logger.info("EPL: gameweek %d has %d match(es)", week, len(games))
    fixtures = tuple(
        build_epl_fixture(
            client, game,
            min_prob=min_prob,
            max_prob=max_prob,
            max_players_per_team=max_players_per_team,
            confidence_floor=confidence_floor,
            top_k=top_k,
        )
        for game in games
    )
    return DomainResult(
        scope={
            "season": client.epl_season,
            "week": week,
            "minProb": min_prob,
            "maxProb": max_prob,
        },
        fixtures=fixtures,
        collection_key="matches",
    )


# ---------------------------------------------------------------------------
# EPL match analysis
# ---------------------------------------------------------------------------

ANALYSIS_RECENT_GAMES: int = 10

# (response key, stat) pairs read from one side's per-game stat map
ANALYSIS_STATS = (
    ("corners",       FootballMatchStat.CORNERS),
    ("yellowCards",   FootballMatchStat.YELLOW_CARDS),
    ("redCards",      FootballMatchStat.RED_CARDS),
    ("shotsOnTarget", FootballMatchStat.SHOTS_ON_TARGET),
    ("offsides",      FootballMatchStat.OFFSIDES),
    ("fouls",         FootballMatchStat.FOULS),
)
AVERAGED_STATS = (
    "corners", "yellowCards", "redCards", "shotsOnTarget", "shotsTotal", "offsides", "fouls",
)


def team_stat_line(stats: dict) -> dict:
    """
    One side's stat map in analysis form. Missing stats count as 0.

    >>> line = team_stat_line({"att_corner": 6, "ontarget_scoring_att": 4, "shot_off_target": 3})
    >>> line["corners"], line["shotsTotal"], line["fouls"]
    (6, 7, 0)
    """
    line = {key: extractor_for(stat)(stats) for key, stat in ANALYSIS_STATS}
    line["shotsTotal"] = line["shotsOnTarget"] + (stats.get("shot_off_target") or 0)
    line["possession"] = stats.get("possession_percentage") or 0
    return line


def analysis_game(game: dict, team_id: Any) -> dict:
    """One recent game seen from `team_id`'s side."""
    is_home = game.get("home_team_id") == team_id
    own, other = ("home", "away") if is_home else ("away", "home")
    opponent = game.get(f"{other}_team") or {"id": game.get(f"{other}_team_id")}
    return {
        "gameId": game.get("id"),
        "date": game.get("kickoff"),
        "opponent": team_name(opponent),
        "isHome": is_home,
        "score": game.get("score"),
        "stats": team_stat_line(game.get(f"{own}_team_stats") or {}),
        "opponentStats": team_stat_line(game.get(f"{other}_team_stats") or {}),
    }


def analysis_averages(games: Sequence[dict]) -> Optional[dict]:
    """Per-stat means over analysed games, 1 dp. None without games."""
    if not games:
        return None
    return {
        key: round(sum(g["stats"][key] for g in games) / len(games), 1)
        for key in AVERAGED_STATS
    }


def find_epl_game(
    client: BallDontLieClient, cache: PredictionCache, game_id: Any
) -> Optional[dict]:
    """
    Locate an EPL game by id: the cached gameweek first, then upstream.

    Returns {id, kickoff, status, home_team, away_team} or None.
    """
    if EPL_DOMAIN in cache:
        snap = cache.get(EPL_DOMAIN).snapshot()
        for fixture in snap.data.fixtures if snap.data is not None else ():
            if fixture.fixture_id == game_id:
                return {
                    "id": fixture.fixture_id,
                    "kickoff": fixture.fixture.get("kickoff"),
                    "status": fixture.fixture.get("status"),
                    "home_team": fixture.fixture.get("home_team") or {},
                    "away_team": fixture.fixture.get("away_team") or {},
                }

    logger.info("EPL analysis: game %s not cached, searching upstream", game_id)
    game = client.fetch_epl_game(game_id)
    if game is None:
        return None
    return {
        "id": game.get("id"),
        "kickoff": game.get("kickoff"),
        "status": game.get("status"),
        "home_team": game.get("home_team") or {"id": game.get("home_team_id")},
        "away_team": game.get("away_team") or {"id": game.get("away_team_id")},
    }


def build_epl_match_analysis(
    client: BallDontLieClient, game: dict, recent_games: int = ANALYSIS_RECENT_GAMES
) -> dict:
    """Both teams' last `recent_games` completed games with per-game stats and averages."""
    home, away = game["home_team"], game["away_team"]
    logger.info("EPL analysis: %s vs %s", team_name(home), team_name(away))

    with ThreadPoolExecutor(max_workers=2) as executor:
        home_future = executor.submit(client.fetch_epl_team_recent_games, home["id"], recent_games)
        away_future = executor.submit(client.fetch_epl_team_recent_games, away["id"], recent_games)
        home_games, away_games = home_future.result(), away_future.result()

    def side(team: dict, games: list) -> dict:
        analysed = [analysis_game(g, team["id"]) for g in games]
        return {
            "name": team_name(team),
            "recentGames": analysed,
            "averages": analysis_averages(analysed),
            "gamesAnalyzed": len(analysed),
        }

    return {
        "game": {
            "id": game["id"],
            "kickoff": game.get("kickoff"),
            "status": game.get("status"),
            "homeTeam": home,
            "awayTeam": away,
        },
        "homeTeam": side(home, home_games),
        "awayTeam": side(away, away_games),
    }
