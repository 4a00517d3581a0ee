"""
tests/test_balldontlie.py — Unit tests for propline/balldontlie.py

The HTTP session is a MagicMock; time.sleep is patched so backoff tests run
instantly.
"""

import os
import sys
import threading
import time
from datetime import date, datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
import requests

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from propline.balldontlie import (
    DEFAULT_GAMEWEEK,
    BallDontLieClient,
    UpstreamFetchError,
    _ResponseCache,
    get_api_key,
    nba_season_from_env,
    stats_array_to_dict,
)
from propline.pipelines import _fan_out


def response(status=200, body=None, text=""):
    r = MagicMock()
    r.status_code = status
    r.json.return_value = body if body is not None else {"data": []}
    r.text = text
    return r


@pytest.fixture
def session():
    return MagicMock()


@pytest.fixture
def client(session):
    return BallDontLieClient(
        api_key="test-key",
        base_url="https://bdl.test",
        session=session,
        nba_season=2025,
        epl_season=2025,
    )


def sent_params(session, call_index=-1):
    return session.get.call_args_list[call_index].kwargs["params"]


# ---------------------------------------------------------------------------
# HTTP layer
# ---------------------------------------------------------------------------
class TestGet:
    def test_auth_header_and_url(self, client, session):
        session.get.return_value = response(body={"data": [1]})
        assert client._get("/v1/games", [("per_page", 5)]) == {"data": [1]}
        args, kwargs = session.get.call_args
        assert args[0] == "https://bdl.test/v1/games"
        assert kwargs["headers"] == {"Authorization": "test-key"}
        assert kwargs["timeout"] == 15.0

    def test_identical_requests_hit_cache(self, client, session):
        session.get.return_value = response(body={"data": []})
        client._get("/v1/games", [("week", 1)])
        client._get("/v1/games", [("week", 1)])
        client._get("/v1/games", [("week", 2)])
        assert session.get.call_count == 2

    def test_clear_cache(self, client, session):
        session.get.return_value = response()
        client._get("/v1/games")
        client.clear_cache()
        client._get("/v1/games")
        assert session.get.call_count == 2

    @patch("propline.balldontlie.time.sleep")
    def test_client_error_not_retried(self, mock_sleep, client, session):
        session.get.return_value = response(404, text="not found")
        with pytest.raises(UpstreamFetchError) as exc_info:
            client._get("/v1/games")
        assert exc_info.value.status == 404
        assert "404" in str(exc_info.value)
        assert session.get.call_count == 1
        mock_sleep.assert_not_called()

    @patch("propline.balldontlie.time.sleep")
    def test_server_error_retried_with_backoff(self, mock_sleep, client, session):
        session.get.return_value = response(500, text="oops")
        with pytest.raises(UpstreamFetchError) as exc_info:
            client._get("/v1/games")
        assert exc_info.value.status == 500
        assert session.get.call_count == 3
        assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0]

    @patch("propline.balldontlie.time.sleep")
    def test_rate_limit_then_success(self, mock_sleep, client, session):
        session.get.side_effect = [response(429), response(body={"data": ["ok"]})]
        assert client._get("/v1/games") == {"data": ["ok"]}
        assert mock_sleep.call_count == 1

    @patch("propline.balldontlie.time.sleep")
    def test_transport_error(self, mock_sleep, client, session):
        session.get.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(UpstreamFetchError) as exc_info:
            client._get("/v1/games")
        assert exc_info.value.status is None
        assert "transport error" in str(exc_info.value)

    def test_failures_not_cached(self, client, session):
        session.get.side_effect = [response(400, text="bad"), response(body={"data": [1]})]
        with pytest.raises(UpstreamFetchError):
            client._get("/v1/games")
        assert client._get("/v1/games") == {"data": [1]}

    def test_pagination_follows_cursor(self, client, session):
        session.get.side_effect = [
            response(body={"data": [{"id": 1}], "meta": {"next_cursor": 55}}),
            response(body={"data": [{"id": 2}], "meta": {"next_cursor": None}}),
        ]
        rows = client.fetch_players_for_team(14)
        assert [r["id"] for r in rows] == [1, 2]
        assert ("cursor", 55) in sent_params(session, 1)
        assert ("team_ids[]", 14) in sent_params(session, 0)


class TestUpstreamFetchError:
    def test_body_truncated(self):
        err = UpstreamFetchError(503, "x" * 500, "https://bdl.test/v1")
        assert len(str(err)) < 250
        assert err.url == "https://bdl.test/v1"


# ---------------------------------------------------------------------------
# NBA
# ---------------------------------------------------------------------------
class TestNba:
    def test_upcoming_games_filters_started(self, client, session):
        session.get.return_value = response(body={"data": [
            {"id": 1, "datetime": "2025-11-10T23:00:00Z"},
            {"id": 2, "datetime": "2025-11-11T01:00:00Z"},
            {"id": 3, "datetime": None},
            {"id": 4, "datetime": "2025-11-12T00:30:00Z"},
        ]})
        now = datetime(2025, 11, 10, 23, 30, tzinfo=timezone.utc)
        games = client.fetch_upcoming_games(limit=1, now=now)
        assert [g["id"] for g in games] == [2]

    def test_upcoming_games_local_start_date(self, client, session):
        session.get.return_value = response()
        # 23:30 UTC is already the 11th in Paris; window starts the day before
        client.fetch_upcoming_games(limit=3, now=datetime(2025, 11, 10, 23, 30, tzinfo=timezone.utc))
        params = sent_params(session)
        assert ("start_date", "2025-11-10") in params
        assert ("seasons[]", 2025) in params
        assert ("per_page", 6) in params
        assert ("postseason", "false") in params

    def test_player_season_stats(self, client, session):
        session.get.return_value = response(body={"data": [{"pts": 10}]})
        assert client.fetch_player_season_stats(7) == [{"pts": 10}]
        assert ("player_ids[]", 7) in sent_params(session)

    def test_player_game_stats(self, client, session):
        session.get.return_value = response(body={"data": [{"pts": 31}, {"pts": 2}]})
        assert client.fetch_player_game_stats(100, 7) == {"pts": 31}

    def test_player_game_stats_missing(self, client, session):
        session.get.return_value = response(body={"data": []})
        assert client.fetch_player_game_stats(100, 7) is None


# ---------------------------------------------------------------------------
# EPL
# ---------------------------------------------------------------------------
TEAMS = {"data": [{"id": 10, "name": "Arsenal"}, {"id": 20, "name": "Chelsea"}]}


def epl_router(routes):
    def _get(path, params=None):
        handler = routes[path]
        if isinstance(handler, Exception):
            raise handler
        return handler
    return _get


class TestEpl:
    def test_teams_memoised(self, session):
        client = BallDontLieClient(api_key="k", base_url="https://bdl.test", session=session,
                                   epl_season=2025, nba_season=2025, cache_ttl_seconds=0)
        session.get.return_value = response(body=TEAMS)
        assert client.fetch_epl_teams()[10]["name"] == "Arsenal"
        client.fetch_epl_teams()
        assert session.get.call_count == 1

    def test_games_by_week_attach_teams(self, client):
        routes = {
            "/epl/v1/teams": TEAMS,
            "/epl/v1/games": {"data": [{"id": 1, "home_team_id": 10, "away_team_id": 99}]},
        }
        with patch.object(client, "_get", side_effect=epl_router(routes)):
            games = client.fetch_epl_games_by_week(3)
        assert games[0]["home_team"]["name"] == "Arsenal"
        assert games[0]["away_team"] == {"id": 99, "name": "Team 99"}

    def test_detect_next_gameweek(self, client):
        weeks = {
            1: [{"status": "FullTime"}],
            2: UpstreamFetchError(500, "", "u"),
            3: [{"status": "FullTime"}, {"status": "NS"}],
        }

        def by_week(week):
            value = weeks.get(week, [])
            if isinstance(value, Exception):
                raise value
            return value

        with patch.object(client, "fetch_epl_games_by_week", side_effect=by_week):
            assert client.detect_next_gameweek() == 3

    def test_detect_next_gameweek_default(self, client):
        with patch.object(client, "fetch_epl_games_by_week", return_value=[]):
            assert client.detect_next_gameweek(max_week=4) == DEFAULT_GAMEWEEK

    def test_game_team_stats(self, client):
        body = {"data": {"teams": [
            {"team_id": 10, "stats": [{"name": "att_corner", "value": 6}]},
            {"team_id": 20, "stats": []},
        ]}}
        with patch.object(client, "_get", return_value=body):
            assert client.fetch_epl_game_team_stats(1) == {10: {"att_corner": 6}, 20: {}}

    def test_team_recent_games(self, client):
        routes = {
            "/epl/v1/teams": TEAMS,
            "/epl/v1/games": {"data": [
                {"id": 1, "status": "FullTime", "home_team_id": 10, "away_team_id": 20,
                 "kickoff": "2025-10-01T15:00:00Z"},
                {"id": 2, "status": "FullTime", "home_team_id": 20, "away_team_id": 10},
                {"id": 3, "status": "NS", "home_team_id": 10, "away_team_id": 20},
            ]},
            "/epl/v1/games/1/team_stats": {"data": {"teams": [
                {"team_id": 10, "stats": [{"name": "att_corner", "value": 5}]},
            ]}},
            "/epl/v1/games/2/team_stats": UpstreamFetchError(500, "", "u"),
        }
        with patch.object(client, "_get", side_effect=epl_router(routes)) as mock_get:
            games = client.fetch_epl_team_recent_games(10, limit=10, today=date(2025, 11, 1))
        assert [g["id"] for g in games] == [1]
        assert games[0]["home_team_stats"] == {"att_corner": 5}
        assert games[0]["away_team_stats"] == {}
        assert games[0]["home_team"]["name"] == "Arsenal"
        games_call = next(c for c in mock_get.call_args_list if c.args[0] == "/epl/v1/games")
        assert ("start_date", "2025-08-03") in games_call.args[1]
        assert ("end_date", "2025-11-01") in games_call.args[1]

    def test_player_game_stats_filters_player(self, client):
        routes = {
            "/epl/v1/games/1/player_stats": {"data": [
                {"player_id": 7, "passes": 40},
                {"player_id": 8, "passes": 12},
            ]},
            "/epl/v1/games/2/player_stats": UpstreamFetchError(404, "", "u"),
        }
        games = [{"id": 1, "kickoff": "2025-10-01T15:00:00Z"}, {"id": 2}]
        with patch.object(client, "_get", side_effect=epl_router(routes)):
            rows = client.fetch_epl_player_game_stats(7, games)
        assert rows == [{"player_id": 7, "passes": 40, "kickoff": "2025-10-01T15:00:00Z"}]

    def test_fetch_game_by_id(self, client):
        routes = {
            "/epl/v1/teams": TEAMS,
            "/epl/v1/games": {"data": [
                {"id": 1, "home_team_id": 10, "away_team_id": 20},
                {"id": 2, "home_team_id": 20, "away_team_id": 10, "kickoff": "2025-11-22T15:00:00Z"},
            ]},
        }
        with patch.object(client, "_get", side_effect=epl_router(routes)):
            game = client.fetch_epl_game(2)
            missing = client.fetch_epl_game(3)
        assert game["kickoff"] == "2025-11-22T15:00:00Z"
        assert game["home_team"]["name"] == "Chelsea"
        assert missing is None

    def test_concurrent_players_share_game_fetches(self, client, session):
        lock = threading.Lock()
        urls = []

        def get(url, **kwargs):
            with lock:
                urls.append(url)
            time.sleep(0.01)
            return response(body={"data": [{"player_id": p, "passes": p} for p in range(12)]})

        session.get.side_effect = get
        games = [{"id": g, "kickoff": f"2025-10-0{g}T15:00:00Z"} for g in (1, 2, 3)]
        results = _fan_out(
            lambda player_id: client.fetch_epl_player_game_stats(player_id, games),
            list(range(12)),
            describe=str,
        )
        assert all(len(rows) == 3 for rows in results)
        assert len(urls) == 3
        assert len(set(urls)) == 3


# ---------------------------------------------------------------------------
# Helpers + config
# ---------------------------------------------------------------------------
class TestHelpers:
    def test_stats_array_to_dict(self):
        stats = [{"name": "goals", "value": 1}, {"name": "", "value": 3}, {"value": 2}, "junk"]
        assert stats_array_to_dict(stats) == {"goals": 1}

    def test_response_cache_ttl(self):
        now = [0.0]
        cache = _ResponseCache(10, clock=lambda: now[0])
        cache.set(("u", ()), {"data": 1})
        now[0] = 5.0
        assert cache.get(("u", ())) == {"data": 1}
        now[0] = 11.0
        assert cache.get(("u", ())) is None
        assert len(cache) == 0

    def test_response_cache_disabled(self):
        cache = _ResponseCache(0)
        cache.set(("u", ()), {"data": 1})
        assert len(cache) == 0

    def test_response_cache_sweeps_expired_on_set(self):
        now = [0.0]
        cache = _ResponseCache(600, clock=lambda: now[0])
        for i in range(1000):
            now[0] = i * 10.0
            cache.set((f"u{i}", ()), {"data": i})
        assert len(cache) <= 61
        assert cache.get(("u999", ())) == {"data": 999}
        assert cache.get(("u0", ())) is None

    def test_fetching_lock_released(self):
        cache = _ResponseCache(10)
        with cache.fetching(("u", ())):
            pass
        assert cache._inflight == {}

    def test_api_key_from_env(self, monkeypatch):
        monkeypatch.setenv("BALLDONTLIE_API_KEY", "env-key")
        assert get_api_key() == "env-key"

    def test_season_env(self, monkeypatch):
        monkeypatch.setenv("NBA_SEASON", "2024")
        assert nba_season_from_env() == 2024
        monkeypatch.setenv("NBA_SEASON", "next")
        assert nba_season_from_env() == 2025
