"""
propline/balldontlie.py — Propline
==================================
All balldontlie API calls live here. No math, no UI, no file I/O.

Responsibilities:
- Authenticate with balldontlie (key from environment, Streamlit secrets fallback)
- NBA: upcoming games, team rosters, player season box scores, single box score
- EPL: team map, games by week, next-gameweek detection, a team's recent
  completed games with per-game team stats, rosters, per-game player stats
- Cursor pagination (meta.next_cursor)
- Exponential backoff on 429 / 5xx / transport errors (max 3 attempts)
- Short-lived response cache so one refresh never fetches the same URL twice

API host: https://api.balldontlie.io  (NBA under /v1, EPL under /epl/v1)

DO NOT add probability math or Streamlit rendering to this file.
NEVER hardcode API keys. Use os.environ.get("BALLDONTLIE_API_KEY").
"""

import logging
import os
import threading
import time
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Iterable, Optional
from zoneinfo import ZoneInfo

import requests

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.balldontlie.io"
NBA_PREFIX = "/v1"
EPL_PREFIX = "/epl/v1"

DEFAULT_NBA_SEASON: int = 2025
DEFAULT_EPL_SEASON: int = 2025

PAGE_SIZE: int = 100
CACHE_TTL_SECONDS: float = 600.0        # 10 minutes
REQUEST_TIMEOUT: float = 15.0
LOCAL_TZ = ZoneInfo("Europe/Paris")     # "today" for upcoming NBA games

EPL_WEEKS: int = 38
DEFAULT_GAMEWEEK: int = 12              # used when no week has an upcoming game
RECENT_WINDOW_DAYS: int = 90

UPCOMING_STATUSES = frozenset({"PreMatch", "NS", "Scheduled", "NotStarted"})
COMPLETED_STATUSES = frozenset({"FullTime", "FT", "C", "complete", "Final"})


class UpstreamFetchError(Exception):
    """Non-success response (or transport failure) from balldontlie."""

    def __init__(self, status: Optional[int], body: str, url: str) -> None:
        self.status = status
        self.body = body
        self.url = url
        label = status if status is not None else "transport error"
        super().__init__(f"balldontlie error {label}: {(body or '')[:200]}")


# ---------------------------------------------------------------------------
# Configuration loaders
# ---------------------------------------------------------------------------

def get_api_key() -> Optional[str]:
    """
    Load the balldontlie API key. Never hardcode.

    Checks:
    1. BALLDONTLIE_API_KEY env var (primary)
    2. Streamlit secrets (for Streamlit Cloud deployments)

    Returns None if no key found; callers must handle that.
    """
    key = os.environ.get("BALLDONTLIE_API_KEY")
    if key:
        return key

    try:
        import streamlit as st
        if "BALLDONTLIE_API_KEY" in st.secrets:
            return st.secrets["BALLDONTLIE_API_KEY"]
    except Exception:  # noqa: BLE001  (no secrets.toml outside Streamlit)
        logger.debug("No Streamlit secrets available")

    return None


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except ValueError:
        logger.warning("Invalid %s=%r, using %d", name, os.environ.get(name), default)
        return default


def nba_season_from_env() -> int:
    return _int_env("NBA_SEASON", DEFAULT_NBA_SEASON)


def epl_season_from_env() -> int:
    return _int_env("EPL_SEASON", DEFAULT_EPL_SEASON)


def base_url_from_env() -> str:
    return os.environ.get("BALLDONTLIE_BASE_URL", DEFAULT_BASE_URL).rstrip("/")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _parse_instant(value: Any) -> Optional[datetime]:
    """ISO-8601 string to an aware UTC datetime. None when unparseable."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def stats_array_to_dict(stats: Any) -> dict:
    """
    Convert the upstream [{name, value}, ...] stat list to {name: value}.

    >>> stats_array_to_dict([{"name": "goals", "value": 2}, {"name": "att_corner", "value": 5}])
    {'goals': 2, 'att_corner': 5}
    >>> stats_array_to_dict(None)
    {}
    """
    out: dict = {}
    if not isinstance(stats, list):
        return out
    for stat in stats:
        if isinstance(stat, dict) and stat.get("name") and "value" in stat:
            out[stat["name"]] = stat["value"]
    return out


def _placeholder_team(team_id: Any) -> dict:
    return {"id": team_id, "name": f"Team {team_id}"}


class _ResponseCache:
    """
    Thread-safe TTL cache of decoded JSON bodies keyed by (url, params).

    Every set() sweeps expired entries, so keys that are never read again
    (past gameweeks, dated query variants) do not pile up.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl_seconds
        self._clock = clock
        self._store: dict = {}
        self._lock = threading.Lock()
        self._inflight: dict = {}
        self._inflight_guard = threading.Lock()

    def get(self, key: tuple) -> Optional[dict]:
        with self._lock:
            hit = self._store.get(key)
            if hit is None:
                return None
            stored_at, payload = hit
            if self._clock() - stored_at > self.ttl:
                del self._store[key]
                return None
            return payload

    def set(self, key: tuple, payload: dict) -> None:
        if self.ttl <= 0:
            return
        with self._lock:
            now = self._clock()
            expired = [k for k, (stored_at, _) in self._store.items() if now - stored_at > self.ttl]
            for k in expired:
                del self._store[k]
            self._store[key] = (now, payload)

    @contextmanager
    def fetching(self, key: tuple):
        """
        Hold the per-key fetch lock.

        Concurrent misses on the same key queue here; the first caller
        fetches and stores, the rest re-read the cache once they get in.
        """
        with self._inflight_guard:
            lock = self._inflight.setdefault(key, threading.Lock())
        with lock:
            try:
                yield
            finally:
                with self._inflight_guard:
                    if self._inflight.get(key) is lock:
                        del self._inflight[key]

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class BallDontLieClient:
    """balldontlie NBA + EPL client. Safe to share across threads."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        session: Optional[requests.Session] = None,
        nba_season: Optional[int] = None,
        epl_season: Optional[int] = None,
        cache_ttl_seconds: float = CACHE_TTL_SECONDS,
        max_retries: int = 3,
        base_delay: float = 1.0,
    ) -> None:
        self.api_key = api_key if api_key is not None else get_api_key()
        if not self.api_key:
            logger.warning("BALLDONTLIE_API_KEY is not set, upstream calls will be rejected")
        self.base_url = (base_url or base_url_from_env()).rstrip("/")
        self.session = session or requests.Session()
        self.nba_season = nba_season if nba_season is not None else nba_season_from_env()
        self.epl_season = epl_season if epl_season is not None else epl_season_from_env()
        self.max_retries = max_retries
        self.base_delay = base_delay
        self._cache = _ResponseCache(cache_ttl_seconds)
        self._epl_teams: Optional[dict] = None
        self._teams_lock = threading.Lock()

    def clear_cache(self) -> None:
        """Drop cached responses and the EPL team map."""
        self._cache.clear()
        with self._teams_lock:
            self._epl_teams = None

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------
    def _headers(self) -> dict:
        return {"Authorization": self.api_key} if self.api_key else {}

    def _get(self, path: str, params: Optional[list] = None) -> dict:
        """
        GET base_url + path with exponential backoff.

        Args:
            path:   Path under the host root, e.g. "/v1/games".
            params: Query parameters as (name, value) pairs. Repeated names
                    (e.g. "team_ids[]") are allowed.

        Returns:
            Decoded JSON body.

        Raises:
            UpstreamFetchError: non-retryable status, or retries exhausted.
        """
        url = f"{self.base_url}{path}"
        params = list(params or [])
        key = (url, tuple((k, str(v)) for k, v in params))
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        with self._cache.fetching(key):
            cached = self._cache.get(key)
            if cached is not None:
                return cached
            return self._fetch(url, params, key)

    def _fetch(self, url: str, params: list, key: tuple) -> dict:
        delay = self.base_delay
        status: Optional[int] = None
        body = ""
        for attempt in range(1, self.max_retries + 1):
            try:
                response = self.session.get(
                    url, params=params, headers=self._headers(), timeout=REQUEST_TIMEOUT
                )
            except requests.exceptions.RequestException as exc:
                status, body = None, str(exc)
                logger.warning("Attempt %d/%d: %s for %s", attempt, self.max_retries, exc, url)
            else:
                if response.status_code == 200:
                    payload = response.json()
                    self._cache.set(key, payload)
                    return payload
                status, body = response.status_code, response.text
                if status == 401:
                    logger.error("401 Unauthorized: check BALLDONTLIE_API_KEY")
                if status != 429 and status < 500:
                    raise UpstreamFetchError(status, body, url)
                logger.warning(
                    "Attempt %d/%d: HTTP %d for %s", attempt, self.max_retries, status, url
                )
            if attempt < self.max_retries:
                time.sleep(delay)
                delay *= 2

        logger.error("Giving up on %s after %d attempts", url, self.max_retries)
        raise UpstreamFetchError(status, body, url)

    def _paginate(self, path: str, params: list) -> list:
        """Follow meta.next_cursor until exhausted, concatenating data."""
        rows: list = []
        cursor = None
        while True:
            page_params = list(params) + [("per_page", PAGE_SIZE)]
            if cursor is not None:
                page_params.append(("cursor", cursor))
            body = self._get(path, page_params)
            rows.extend(body.get("data") or [])
            cursor = (body.get("meta") or {}).get("next_cursor")
            if not cursor:
                return rows

    # ------------------------------------------------------------------
    # NBA
    # ------------------------------------------------------------------
    def fetch_upcoming_games(self, limit: int = 10, now: Optional[datetime] = None) -> list:
        """
        Next `limit` regular-season games that have not started yet.

        The date window starts yesterday in Europe/Paris so games late on the
        local evening are not missed; games whose datetime is already past
        are dropped.
        """
        now = now or datetime.now(timezone.utc)
        start = now.astimezone(LOCAL_TZ).date() - timedelta(days=1)
        body = self._get(f"{NBA_PREFIX}/games", [
            ("start_date", start.isoformat()),
            ("seasons[]", self.nba_season),
            ("per_page", limit * 2),
            ("postseason", "false"),
        ])
        upcoming = []
        for game in body.get("data") or []:
            tipoff = _parse_instant(game.get("datetime"))
            if tipoff is not None and tipoff > now:
                upcoming.append(game)
        logger.info("NBA: %d upcoming game(s) from %s", len(upcoming[:limit]), start)
        return upcoming[:limit]

    def fetch_players_for_team(self, team_id: Any) -> list:
        return self._paginate(f"{NBA_PREFIX}/players", [("team_ids[]", team_id)])

    def fetch_player_season_stats(self, player_id: Any) -> list:
        """Regular-season box scores for one player (any order)."""
        body = self._get(f"{NBA_PREFIX}/stats", [
            ("seasons[]", self.nba_season),
            ("player_ids[]", player_id),
            ("per_page", PAGE_SIZE),
            ("postseason", "false"),
        ])
        return body.get("data") or []

    def fetch_player_game_stats(self, game_id: Any, player_id: Any) -> Optional[dict]:
        """One player's box score for one game, or None."""
        body = self._get(f"{NBA_PREFIX}/stats", [
            ("game_ids[]", game_id),
            ("player_ids[]", player_id),
            ("per_page", 1),
        ])
        rows = body.get("data") or []
        return rows[0] if rows else None

    # ------------------------------------------------------------------
    # EPL
    # ------------------------------------------------------------------
    def fetch_epl_teams(self) -> dict:
        """{team_id: team} for the configured season. Memoised per client."""
        with self._teams_lock:
            if self._epl_teams is not None:
                return self._epl_teams
        body = self._get(f"{EPL_PREFIX}/teams", [
            ("season", self.epl_season),
            ("per_page", PAGE_SIZE),
        ])
        teams = {team["id"]: team for team in body.get("data") or [] if "id" in team}
        with self._teams_lock:
            self._epl_teams = teams
        return teams

    def _with_teams(self, game: dict, teams: dict) -> dict:
        return {
            **game,
            "home_team": teams.get(game.get("home_team_id")) or _placeholder_team(game.get("home_team_id")),
            "away_team": teams.get(game.get("away_team_id")) or _placeholder_team(game.get("away_team_id")),
        }

    def fetch_epl_games_by_week(self, week: int) -> list:
        body = self._get(f"{EPL_PREFIX}/games", [
            ("season", self.epl_season),
            ("week", week),
            ("per_page", PAGE_SIZE),
        ])
        teams = self.fetch_epl_teams()
        return [self._with_teams(g, teams) for g in body.get("data") or []]

    def fetch_epl_game(self, game_id: Any) -> Optional[dict]:
        """One season game by id (teams attached), or None."""
        games = self._paginate(f"{EPL_PREFIX}/games", [("season", self.epl_season)])
        for game in games:
            if game.get("id") == game_id:
                return self._with_teams(game, self.fetch_epl_teams())
        return None

    def detect_next_gameweek(self, max_week: int = EPL_WEEKS, default: int = DEFAULT_GAMEWEEK) -> int:
        """
        First gameweek (1..max_week) holding at least one not-yet-played game.

        Weeks that fail to load are skipped. Falls back to `default`.
        """
        for week in range(1, max_week + 1):
            try:
                games = self.fetch_epl_games_by_week(week)
            except UpstreamFetchError as exc:
                logger.warning("EPL week %d: %s", week, exc)
                continue
            upcoming = [g for g in games if g.get("status") in UPCOMING_STATUSES]
            if upcoming:
                logger.info("EPL next gameweek: %d (%d upcoming games)", week, len(upcoming))
                return week
        logger.warning("No upcoming EPL games in weeks 1-%d, defaulting to week %d", max_week, default)
        return default

    def fetch_epl_game_team_stats(self, game_id: Any) -> dict:
        """{team_id: {stat_name: value}} for one game."""
        body = self._get(f"{EPL_PREFIX}/games/{game_id}/team_stats")
        data = body.get("data")
        teams = data.get("teams") if isinstance(data, dict) else body.get("teams")
        return {t.get("team_id"): stats_array_to_dict(t.get("stats")) for t in teams or []}

    def fetch_epl_team_recent_games(
        self, team_id: Any, limit: int = 10, today: Optional[date] = None
    ) -> list:
        """
        A team's completed games from the last 90 days with both teams' stat maps.

        Each returned game carries home_team_stats / away_team_stats
        ({} when upstream had nothing for that side). Games whose stats
        fail to load are skipped.
        """
        today = today or datetime.now(timezone.utc).date()
        body = self._get(f"{EPL_PREFIX}/games", [
            ("season", self.epl_season),
            ("start_date", (today - timedelta(days=RECENT_WINDOW_DAYS)).isoformat()),
            ("end_date", today.isoformat()),
            ("team_ids[]", team_id),
            ("per_page", limit),
        ])
        teams = self.fetch_epl_teams()
        completed = [g for g in body.get("data") or [] if g.get("status") in COMPLETED_STATUSES]

        games = []
        for game in completed[:limit]:
            try:
                stats = self.fetch_epl_game_team_stats(game["id"])
            except UpstreamFetchError as exc:
                logger.warning("EPL game %s stats unavailable: %s", game.get("id"), exc)
                continue
            games.append({
                **self._with_teams(game, teams),
                "home_team_stats": stats.get(game.get("home_team_id"), {}),
                "away_team_stats": stats.get(game.get("away_team_id"), {}),
            })
        logger.info("EPL team %s: %d completed game(s) with stats", team_id, len(games))
        return games

    def fetch_epl_players_for_team(self, team_id: Any) -> list:
        return self._paginate(f"{EPL_PREFIX}/players", [
            ("season", self.epl_season),
            ("team_ids[]", team_id),
        ])

    def fetch_epl_player_game_stats(self, player_id: Any, games: Iterable[dict]) -> list:
        """
        One player's per-game stat rows across the given games.

        Each row gets the game's kickoff so it can be ordered. Per-game
        responses are shared across players through the response cache;
        concurrent callers for the same game wait for a single fetch.
        """
        rows = []
        for game in games:
            try:
                body = self._get(f"{EPL_PREFIX}/games/{game['id']}/player_stats")
            except UpstreamFetchError as exc:
                logger.warning("EPL game %s player stats unavailable: %s", game.get("id"), exc)
                continue
            for row in body.get("data") or []:
                if row.get("player_id") == player_id:
                    rows.append({**row, "kickoff": game.get("kickoff")})
        return rows
