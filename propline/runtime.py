"""
propline/runtime.py - Process wiring

Builds the upstream client, one RefreshOrchestrator per domain and the
scheduler. The HTTP app and the Streamlit dashboard each hold one Runtime;
nothing here is a module-level singleton.
"""

from dataclasses import dataclass
from functools import partial
from typing import Optional

from propline.balldontlie import BallDontLieClient
from propline.cache import PredictionCache, RefreshOrchestrator
from propline.pipelines import EPL_DOMAIN, NBA_DOMAIN, build_epl_result, build_nba_result
from propline.scheduler import RefreshScheduler, interval_hours_from_env, startup_delay_from_env


@dataclass
class Runtime:
    client: BallDontLieClient
    cache: PredictionCache
    scheduler: RefreshScheduler


def build_cache(client: BallDontLieClient) -> PredictionCache:
    return PredictionCache([
        RefreshOrchestrator(NBA_DOMAIN, partial(build_nba_result, client)),
        RefreshOrchestrator(EPL_DOMAIN, partial(build_epl_result, client)),
    ])


def build_runtime(client: Optional[BallDontLieClient] = None) -> Runtime:
    """Wire a runtime from the environment. The scheduler is not started."""
    client = client or BallDontLieClient()
    cache = build_cache(client)
    scheduler = RefreshScheduler(
        cache,
        interval_hours=interval_hours_from_env(),
        startup_delay_seconds=startup_delay_from_env(),
    )
    return Runtime(client=client, cache=cache, scheduler=scheduler)
