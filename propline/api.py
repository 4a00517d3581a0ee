"""
propline/api.py — Propline HTTP layer
=====================================
FastAPI app serving cached predictions plus live NBA and EPL endpoints.

Routes:
    GET  /health
    GET  /api/predictions/{domain}            cached snapshot, 202 while loading
    GET  /api/predictions/{domain}/status     {hasData, isLoading, lastUpdated, itemCount}
    POST /api/predictions/{domain}/refresh    start a background refresh
    GET  /api/recommended-bets                live NBA scan, no confidence floor
    GET  /api/player-stats?game_id&player_id  one box score for result checks
    GET  /api/epl/matches/{game_id}/analysis  both teams' recent per-game stats

Cache reads never block on a refresh. Errors always come back as
{"error": ..., "details": ...}, never as a traceback.

Run:
    python -m propline.api          (PORT env var, default 4000)
"""

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from propline.balldontlie import UpstreamFetchError
from propline.cache import UnknownDomainError
from propline.line_scanner import DEFAULT_MAX_PROB, DEFAULT_MIN_PROB
from propline.pipelines import (
    MAX_PLAYERS_PER_TEAM,
    RECOMMENDED_GAME_LIMIT,
    RECOMMENDED_PER_GAME,
    build_epl_match_analysis,
    build_nba_recommendations,
    find_epl_game,
)
from propline.runtime import Runtime, build_runtime
from propline.stat_series import nba_record_values

logger = logging.getLogger(__name__)

DEFAULT_PORT: int = 4000
LOADING_MESSAGE = "Data is being loaded, please retry in a few seconds"


class ClientRequestError(Exception):
    """Missing or invalid request parameters. Rendered as HTTP 400."""

    def __init__(self, error: str, details: str = "") -> None:
        self.error = error
        self.details = details
        super().__init__(f"{error}: {details}" if details else error)


def _error(status_code: int, error: str, details: str = "") -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": error, "details": details})


# ---------------------------------------------------------------------------
# Query parsing
# ---------------------------------------------------------------------------

def parse_probability(name: str, raw: Optional[str], default: float) -> float:
    """
    >>> parse_probability("minProb", None, 0.58)
    0.58
    >>> parse_probability("minProb", "0.6", 0.58)
    0.6
    """
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ClientRequestError("Invalid parameter", f"{name} must be a number") from None
    if not 0.0 <= value <= 1.0:
        raise ClientRequestError("Invalid parameter", f"{name} must be between 0 and 1")
    return value


def parse_count(name: str, raw: Optional[str], default: int) -> int:
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ClientRequestError("Invalid parameter", f"{name} must be an integer") from None
    if value <= 0:
        raise ClientRequestError("Invalid parameter", f"{name} must be positive")
    return value


def box_score_summary(row: dict) -> dict:
    """Result-verification view of one NBA box score (missing stats as 0)."""
    player = row.get("player") or {}
    game = row.get("game") or {}
    filled = {k: (row.get(k) or 0) for k in ("pts", "reb", "ast", "fg3m")}
    return {
        "gameId": game.get("id"),
        "playerId": player.get("id"),
        "playerName": f"{player.get('first_name', '')} {player.get('last_name', '')}".strip(),
        "gameDate": game.get("date"),
        "minutesPlayed": row.get("min"),
        "stats": nba_record_values(filled),
    }


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(runtime: Optional[Runtime] = None, start_scheduler: bool = True) -> FastAPI:
    """
    Build the FastAPI app around one Runtime.

    Args:
        runtime:         Wired client/cache/scheduler. Built from env if None.
        start_scheduler: Start periodic refresh on startup (off in tests).
    """
    runtime = runtime or build_runtime()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_scheduler:
            runtime.scheduler.start()
        yield
        runtime.scheduler.stop()

    app = FastAPI(title="Propline", lifespan=lifespan)
    app.state.runtime = runtime

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    # ------------------------------------------------------------------
    # Error mapping
    # ------------------------------------------------------------------
    @app.exception_handler(ClientRequestError)
    async def _client_error(request: Request, exc: ClientRequestError):
        return _error(400, exc.error, exc.details)

    @app.exception_handler(UnknownDomainError)
    async def _unknown_domain(request: Request, exc: UnknownDomainError):
        return _error(404, "Unknown domain", f"Supported: {', '.join(runtime.cache.domains())}")

    @app.exception_handler(UpstreamFetchError)
    async def _upstream_error(request: Request, exc: UpstreamFetchError):
        logger.error("Upstream error on %s: %s", request.url.path, exc)
        return _error(502, "Upstream error", str(exc))

    @app.exception_handler(Exception)
    async def _internal_error(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s", request.url.path)
        return _error(500, "Internal error", str(exc))

    # ------------------------------------------------------------------
    # Routes
    # ------------------------------------------------------------------
    @app.get("/health")
    def health():
        return {
            "ok": True,
            "nbaSeason": runtime.client.nba_season,
            "eplSeason": runtime.client.epl_season,
            "domains": runtime.cache.domains(),
        }

    @app.get("/api/predictions/{domain}")
    def get_predictions(domain: str):
        orchestrator = runtime.cache.get(domain)
        snap = orchestrator.snapshot()
        if snap.data is not None:
            logger.info("[%s] Serving from cache (last updated %s)", domain, snap.last_updated_iso())
            return {
                **snap.data.to_dict(),
                "lastUpdated": snap.last_updated_iso(),
                "fromCache": True,
            }
        if not snap.is_loading:
            logger.info("[%s] Cache empty, triggering refresh", domain)
            orchestrator.start_refresh_in_background()
        return JSONResponse(status_code=202, content={"message": LOADING_MESSAGE, "isLoading": True})

    @app.get("/api/predictions/{domain}/status")
    def get_status(domain: str):
        return runtime.cache.get(domain).snapshot().status()

    @app.post("/api/predictions/{domain}/refresh")
    def post_refresh(domain: str):
        orchestrator = runtime.cache.get(domain)
        if not orchestrator.start_refresh_in_background():
            return JSONResponse(status_code=202, content={"message": "Cache refresh already in progress"})
        return {"message": "Cache refresh started"}

    @app.get("/api/recommended-bets")
    def recommended_bets(
        minProb: Optional[str] = None,
        maxProb: Optional[str] = None,
        perGame: Optional[str] = None,
        games: Optional[str] = None,
        maxPlayersPerTeam: Optional[str] = None,
    ):
        min_prob = parse_probability("minProb", minProb, DEFAULT_MIN_PROB)
        max_prob = parse_probability("maxProb", maxProb, DEFAULT_MAX_PROB)
        if min_prob > max_prob:
            raise ClientRequestError("Invalid parameter", "minProb must not exceed maxProb")
        result = build_nba_recommendations(
            runtime.client,
            min_prob=min_prob,
            max_prob=max_prob,
            per_game=parse_count("perGame", perGame, RECOMMENDED_PER_GAME),
            game_limit=parse_count("games", games, RECOMMENDED_GAME_LIMIT),
            max_players_per_team=parse_count(
                "maxPlayersPerTeam", maxPlayersPerTeam, MAX_PLAYERS_PER_TEAM
            ),
        )
        return result.to_dict()

    @app.get("/api/player-stats")
    def player_stats(game_id: Optional[str] = None, player_id: Optional[str] = None):
        if not game_id or not player_id:
            raise ClientRequestError(
                "Missing required parameters", "Both game_id and player_id are required"
            )
        row = runtime.client.fetch_player_game_stats(game_id, player_id)
        if row is None:
            return _error(
                404, "Stats not found", f"No stats found for player {player_id} in game {game_id}"
            )
        return {"success": True, "data": box_score_summary(row)}

    @app.get("/api/epl/matches/{game_id}/analysis")
    def epl_match_analysis(game_id: str):
        gid = parse_count("gameId", game_id, 0)
        game = find_epl_game(runtime.client, runtime.cache, gid)
        if game is None:
            return _error(404, "Game not found", f"No EPL game with id {gid}")
        analysis = build_epl_match_analysis(runtime.client, game)
        logger.info(
            "EPL analysis for game %d: %d home and %d away games",
            gid, analysis["homeTeam"]["gamesAnalyzed"], analysis["awayTeam"]["gamesAnalyzed"],
        )
        return analysis

    return app


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )
    port = int(os.environ.get("PORT", DEFAULT_PORT))
    uvicorn.run(create_app(), host="0.0.0.0", port=port)
