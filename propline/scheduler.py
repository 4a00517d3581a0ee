"""
propline/scheduler.py — APScheduler periodic cache refresh

Invokes start_refresh on every domain of a PredictionCache:
- on a wall-clock cron (every N hours, minutes staggered per domain)
- once shortly after start-up (domain i waits (i + 1) * delay seconds)
- on demand via trigger_now() (UI "Refresh Now" button, HTTP refresh)

Holds no cache state of its own. tick() runs every domain synchronously in
the calling thread, for tests and scripts that do not want a live scheduler.

Usage:
    scheduler = RefreshScheduler(cache)
    scheduler.start()
    ...
    scheduler.stop()
"""

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.background import BackgroundScheduler

from propline.cache import PredictionCache

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_HOURS: int = 2
DEFAULT_STARTUP_DELAY_SECONDS: float = 5.0
STAGGER_MINUTES: int = 30          # cron minute offset between domains


def interval_hours_from_env() -> int:
    """REFRESH_INTERVAL_HOURS, falling back to the default on bad input."""
    raw = os.environ.get("REFRESH_INTERVAL_HOURS", "")
    try:
        value = int(raw)
    except ValueError:
        return DEFAULT_INTERVAL_HOURS
    return value if value > 0 else DEFAULT_INTERVAL_HOURS


def startup_delay_from_env() -> float:
    raw = os.environ.get("STARTUP_DELAY_SECONDS", "")
    try:
        value = float(raw)
    except ValueError:
        return DEFAULT_STARTUP_DELAY_SECONDS
    return value if value >= 0 else DEFAULT_STARTUP_DELAY_SECONDS


def _on_job_event(event) -> None:
    """Log APScheduler job events for observability."""
    if event.exception:
        logger.error("Job %s raised: %s", event.job_id, event.exception)
    else:
        logger.debug("Job %s executed OK", event.job_id)


class RefreshScheduler:
    """Periodic and start-up refresh trigger for every domain in a cache."""

    def __init__(
        self,
        cache: PredictionCache,
        interval_hours: int = DEFAULT_INTERVAL_HOURS,
        startup_delay_seconds: float = DEFAULT_STARTUP_DELAY_SECONDS,
        scheduler_factory: Callable[..., BackgroundScheduler] = BackgroundScheduler,
    ) -> None:
        self.cache = cache
        self.interval_hours = interval_hours
        self.startup_delay_seconds = startup_delay_seconds
        self._factory = scheduler_factory
        self._scheduler: Optional[BackgroundScheduler] = None
        self._started_at: Optional[datetime] = None
        self._last_trigger: dict = {}      # {domain: datetime} of last manual/scheduled call

    # ------------------------------------------------------------------
    # Job body
    # ------------------------------------------------------------------
    def _refresh_domain(self, domain: str) -> bool:
        """Ask one domain to refresh. Runs in an APScheduler worker thread."""
        self._last_trigger[domain] = datetime.now(timezone.utc)
        return self.cache.get(domain).start_refresh()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        """
        Register cron and warm-up jobs and start the background scheduler.

        Safe to call multiple times: returns immediately if already running.
        """
        if self.is_running():
            logger.debug("Scheduler already running, skipping re-init")
            return

        scheduler = self._factory(
            job_defaults={"misfire_grace_time": 300, "coalesce": True, "max_instances": 1},
            timezone="UTC",
        )
        scheduler.add_listener(_on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

        now = datetime.now(timezone.utc)
        for i, domain in enumerate(self.cache.domains()):
            scheduler.add_job(
                self._refresh_domain,
                trigger="cron",
                hour=f"*/{self.interval_hours}",
                minute=(i * STAGGER_MINUTES) % 60,
                id=f"refresh_{domain}",
                replace_existing=True,
                args=[domain],
            )
            scheduler.add_job(
                self._refresh_domain,
                trigger="date",
                run_date=now + timedelta(seconds=(i + 1) * self.startup_delay_seconds),
                id=f"warmup_{domain}",
                replace_existing=True,
                args=[domain],
            )

        scheduler.start()
        self._scheduler = scheduler
        self._started_at = now
        logger.info(
            "Scheduler started (every %dh, domains=%s)",
            self.interval_hours, ",".join(self.cache.domains()),
        )

    def stop(self) -> None:
        """Shut down the scheduler. Safe to call even if not running."""
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
        self._scheduler = None

    def is_running(self) -> bool:
        return self._scheduler is not None and bool(self._scheduler.running)

    # ------------------------------------------------------------------
    # Manual triggers
    # ------------------------------------------------------------------
    def trigger_now(self, domain: Optional[str] = None) -> dict:
        """
        Start a background refresh for one domain (or all) without waiting.

        Returns {domain: started} where started is False when a refresh was
        already in progress.
        """
        domains = [domain] if domain is not None else self.cache.domains()
        started = {}
        for d in domains:
            orch = self.cache.get(d)
            self._last_trigger[orch.domain] = datetime.now(timezone.utc)
            started[orch.domain] = orch.start_refresh_in_background()
        return started

    def tick(self) -> dict:
        """Refresh every domain in the calling thread, one after another."""
        return {d: self._refresh_domain(d) for d in self.cache.domains()}

    def get_status(self) -> dict:
        """
        Scheduler observability state for the UI status bar.

        Returns:
            {
                "running": bool,
                "started_at": datetime | None,
                "interval_hours": int,
                "next_runs": {job_id: datetime | None},
                "last_trigger": {domain: datetime},
                "domains": {domain: {hasData, isLoading, lastUpdated, itemCount,
                                     refreshCount, failureCount, lastError}},
            }
        """
        next_runs = {}
        if self.is_running():
            for job in self._scheduler.get_jobs():
                next_runs[job.id] = getattr(job, "next_run_time", None)

        domains = {}
        for d in self.cache.domains():
            orch = self.cache.get(d)
            domains[d] = {
                **orch.snapshot().status(),
                "refreshCount": orch.refresh_count,
                "failureCount": orch.failure_count,
                "lastError": orch.last_error,
            }

        return {
            "running": self.is_running(),
            "started_at": self._started_at,
            "interval_hours": self.interval_hours,
            "next_runs": next_runs,
            "last_trigger": dict(self._last_trigger),
            "domains": domains,
        }
