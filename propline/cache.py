"""
propline/cache.py - Per-domain prediction cache with single-flight refresh

One RefreshOrchestrator per sport domain owns one CacheEntry:

    EMPTY   data=None, is_loading=False
    LOADING is_loading=True            (at most one writer per domain)
    READY   data set,  is_loading=False

Rules:
1. start_refresh is a no-op while a refresh is in flight (single-flight).
2. Success replaces data and last_updated together, then clears is_loading.
3. Failure logs, leaves data/last_updated untouched, clears is_loading.
   Stale data is better than no data.
4. Readers only take snapshots; they never block on a refresh.

The runtime is threaded (APScheduler worker threads, request handlers), so
the claim of is_loading and the final swap happen under a lock.

PredictionCache is the explicit context object handed to the scheduler,
the HTTP layer and the dashboard. Build a fresh one per test.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FixturePredictions:
    """One fixture's identity plus its top-K predictions, best first."""
    fixture_id: Any
    fixture: dict
    predictions: tuple

    def to_dict(self) -> dict:
        return {
            "gameId": self.fixture_id,
            **self.fixture,
            "predictions": [p.to_dict() for p in self.predictions],
        }


@dataclass(frozen=True)
class DomainResult:
    """Output of one successful domain refresh."""
    scope: dict                      # season / week / band metadata
    fixtures: tuple
    collection_key: str = "fixtures"

    @property
    def item_count(self) -> int:
        return len(self.fixtures)

    @property
    def prediction_count(self) -> int:
        return sum(len(f.predictions) for f in self.fixtures)

    def to_dict(self) -> dict:
        return {
            **self.scope,
            self.collection_key: [f.to_dict() for f in self.fixtures],
        }


@dataclass
class CacheEntry:
    data: Optional[DomainResult] = None
    last_updated: Optional[datetime] = None
    is_loading: bool = False


@dataclass(frozen=True)
class CacheSnapshot:
    """Immutable read of a CacheEntry at one instant."""
    domain: str
    data: Optional[DomainResult]
    last_updated: Optional[datetime]
    is_loading: bool

    @property
    def has_data(self) -> bool:
        return self.data is not None

    @property
    def item_count(self) -> int:
        return self.data.item_count if self.data is not None else 0

    def last_updated_iso(self) -> Optional[str]:
        return self.last_updated.isoformat() if self.last_updated else None

    def status(self) -> dict:
        return {
            "hasData": self.has_data,
            "isLoading": self.is_loading,
            "lastUpdated": self.last_updated_iso(),
            "itemCount": self.item_count,
        }


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class RefreshOrchestrator:
    """Single mutator of one domain's CacheEntry."""

    def __init__(
        self,
        domain: str,
        pipeline: Callable[[], DomainResult],
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.domain = domain
        self._pipeline = pipeline
        self._clock = clock or _utcnow
        self._entry = CacheEntry()
        self._lock = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()
        self.refresh_count: int = 0
        self.failure_count: int = 0
        self.last_error: Optional[str] = None

    def snapshot(self) -> CacheSnapshot:
        with self._lock:
            return CacheSnapshot(
                domain=self.domain,
                data=self._entry.data,
                last_updated=self._entry.last_updated,
                is_loading=self._entry.is_loading,
            )

    @property
    def is_refreshing(self) -> bool:
        with self._lock:
            return self._entry.is_loading

    def _claim(self) -> bool:
        """Set is_loading if idle. Returns False if a refresh already holds it."""
        with self._lock:
            if self._entry.is_loading:
                return False
            self._entry.is_loading = True
            self._idle.clear()
            return True

    def _run(self) -> None:
        logger.info("[%s] Starting cache refresh...", self.domain)
        try:
            result = self._pipeline()
            if result is None:
                raise RuntimeError("pipeline returned no result")
        except Exception as exc:  # noqa: BLE001
            logger.exception("[%s] Cache refresh failed: %s", self.domain, exc)
            with self._lock:
                self.failure_count += 1
                self.last_error = str(exc)
        else:
            now = self._clock()
            with self._lock:
                self._entry.data = result
                self._entry.last_updated = now
                self.refresh_count += 1
                self.last_error = None
            logger.info(
                "[%s] Cache refreshed: %d fixtures, %d predictions (updated %s)",
                self.domain, result.item_count, result.prediction_count, now.isoformat(),
            )
        finally:
            with self._lock:
                self._entry.is_loading = False
            self._idle.set()

    def start_refresh(self) -> bool:
        """
        Run the pipeline in the calling thread if no refresh is in flight.

        Returns True if this call ran the refresh (success or failure),
        False if it was skipped.
        """
        if not self._claim():
            logger.warning("[%s] Refresh already in progress, skipping", self.domain)
            return False
        self._run()
        return True

    def start_refresh_in_background(self) -> bool:
        """
        Claim the refresh synchronously, run it on a daemon thread.

        Returns immediately. False if a refresh was already in flight.
        """
        if not self._claim():
            logger.info("[%s] Refresh already in progress, not starting another", self.domain)
            return False
        worker = threading.Thread(
            target=self._run, name=f"refresh-{self.domain}", daemon=True
        )
        worker.start()
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until no refresh is in flight. False on timeout."""
        return self._idle.wait(timeout)


# ---------------------------------------------------------------------------
# Context object
# ---------------------------------------------------------------------------

class UnknownDomainError(LookupError):
    """Raised for a domain with no registered orchestrator."""


class PredictionCache:
    """Registry of orchestrators, one per domain."""

    def __init__(self, orchestrators: Optional[Iterable[RefreshOrchestrator]] = None) -> None:
        self._orchestrators: dict[str, RefreshOrchestrator] = {}
        for orch in orchestrators or ():
            self.register(orch)

    def register(self, orchestrator: RefreshOrchestrator) -> None:
        """Add an orchestrator under its lower-cased domain name."""
        key = orchestrator.domain.lower()
        if key in self._orchestrators:
            raise ValueError(f"Domain already registered: {orchestrator.domain}")
        self._orchestrators[key] = orchestrator

    def get(self, domain: str) -> RefreshOrchestrator:
        try:
            return self._orchestrators[domain.lower()]
        except KeyError:
            raise UnknownDomainError(domain) from None

    def domains(self) -> list[str]:
        return list(self._orchestrators)

    def __contains__(self, domain: str) -> bool:
        return domain.lower() in self._orchestrators

    def snapshots(self) -> dict[str, CacheSnapshot]:
        return {d: o.snapshot() for d, o in self._orchestrators.items()}
