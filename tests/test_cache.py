"""
tests/test_cache.py — Unit tests for propline/cache.py

Pipelines are plain callables; concurrency is driven with threading.Event so
no test depends on sleep timing.
"""

import os
import sys
import threading
from datetime import datetime, timezone

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from propline.cache import (
    CacheSnapshot,
    DomainResult,
    FixturePredictions,
    PredictionCache,
    RefreshOrchestrator,
    UnknownDomainError,
)
from propline.line_scanner import Prediction

T1 = datetime(2025, 11, 1, 12, 0, tzinfo=timezone.utc)
T2 = datetime(2025, 11, 1, 14, 0, tzinfo=timezone.utc)


def result(tag="D1", n_fixtures=1):
    p = Prediction(1, "Jane Doe", "pts", "over", 20.5, 0.6, 1 / 0.6, 20.0, 21.0, 5.0)
    fixtures = tuple(
        FixturePredictions(fixture_id=i, fixture={"tag": tag}, predictions=(p,))
        for i in range(n_fixtures)
    )
    return DomainResult(scope={"season": 2025, "tag": tag}, fixtures=fixtures, collection_key="games")


class Clock:
    def __init__(self, *times):
        self.times = list(times)

    def __call__(self):
        return self.times.pop(0)


class BlockingPipeline:
    """Pipeline that waits on a gate so the test controls when it finishes."""

    def __init__(self, value):
        self.value = value
        self.entered = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def __call__(self):
        self.calls += 1
        self.entered.set()
        assert self.release.wait(5)
        return self.value


def boom():
    raise RuntimeError("upstream down")


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

class TestDomainResult:
    def test_to_dict_shape(self):
        d = result(n_fixtures=2).to_dict()
        assert d["season"] == 2025
        assert len(d["games"]) == 2
        assert d["games"][0]["gameId"] == 0
        assert d["games"][0]["tag"] == "D1"
        assert d["games"][0]["predictions"][0]["probability"] == 60.0

    def test_counts(self):
        r = result(n_fixtures=3)
        assert r.item_count == 3
        assert r.prediction_count == 3


# ---------------------------------------------------------------------------
# RefreshOrchestrator
# ---------------------------------------------------------------------------

class TestOrchestratorStates:
    def test_initially_empty(self):
        snap = RefreshOrchestrator("nba", lambda: result()).snapshot()
        assert isinstance(snap, CacheSnapshot)
        assert snap.data is None
        assert snap.last_updated is None
        assert snap.is_loading is False
        assert snap.status() == {"hasData": False, "isLoading": False, "lastUpdated": None, "itemCount": 0}

    def test_success_sets_data_and_timestamp(self):
        d1 = result()
        orch = RefreshOrchestrator("nba", lambda: d1, clock=Clock(T1))
        assert orch.start_refresh() is True
        snap = orch.snapshot()
        assert snap.data is d1
        assert snap.last_updated == T1
        assert snap.is_loading is False
        assert snap.status()["itemCount"] == 1
        assert snap.status()["lastUpdated"] == T1.isoformat()
        assert orch.refresh_count == 1

    def test_second_refresh_replaces(self):
        values = iter([result("D1"), result("D2", n_fixtures=2)])
        orch = RefreshOrchestrator("nba", lambda: next(values), clock=Clock(T1, T2))
        orch.start_refresh()
        orch.start_refresh()
        snap = orch.snapshot()
        assert snap.data.scope["tag"] == "D2"
        assert snap.last_updated == T2

    def test_stale_on_failure(self):
        d1 = result()
        pipelines = iter([lambda: d1, boom])
        orch = RefreshOrchestrator("nba", lambda: next(pipelines)(), clock=Clock(T1, T2))
        orch.start_refresh()
        assert orch.start_refresh() is True
        snap = orch.snapshot()
        assert snap.data is d1
        assert snap.last_updated == T1
        assert snap.is_loading is False
        assert orch.failure_count == 1
        assert orch.last_error == "upstream down"

    def test_failure_on_empty_stays_empty(self):
        orch = RefreshOrchestrator("epl", boom)
        orch.start_refresh()
        snap = orch.snapshot()
        assert snap.data is None
        assert snap.last_updated is None
        assert snap.is_loading is False

    def test_none_result_is_failure(self):
        orch = RefreshOrchestrator("epl", lambda: None)
        orch.start_refresh()
        assert orch.snapshot().data is None
        assert orch.failure_count == 1

    def test_recovers_after_failure(self):
        pipelines = iter([boom, result])
        orch = RefreshOrchestrator("nba", lambda: next(pipelines)(), clock=Clock(T2))
        orch.start_refresh()
        orch.start_refresh()
        assert orch.snapshot().has_data
        assert orch.last_error is None

    def test_failure_is_logged(self, caplog):
        orch = RefreshOrchestrator("nba", boom)
        with caplog.at_level("ERROR", logger="propline.cache"):
            orch.start_refresh()
        assert "Cache refresh failed" in caplog.text

    def test_base_exception_resets_loading(self):
        class Abort(BaseException):
            pass

        def abort():
            raise Abort()

        pipelines = iter([abort, result])
        orch = RefreshOrchestrator("nba", lambda: next(pipelines)(), clock=Clock(T2))
        with pytest.raises(Abort):
            orch.start_refresh()
        assert orch.is_refreshing is False
        assert orch.wait(0) is True
        assert orch.start_refresh() is True
        assert orch.snapshot().has_data


class TestSingleFlight:
    def test_second_call_is_noop_while_loading(self):
        pipeline = BlockingPipeline(result())
        orch = RefreshOrchestrator("nba", pipeline)

        assert orch.start_refresh_in_background() is True
        assert pipeline.entered.wait(5)
        assert orch.is_refreshing

        assert orch.start_refresh() is False
        assert orch.start_refresh_in_background() is False

        pipeline.release.set()
        assert orch.wait(5)
        assert pipeline.calls == 1
        assert orch.snapshot().has_data

    def test_concurrent_callers_one_execution(self):
        pipeline = BlockingPipeline(result())
        orch = RefreshOrchestrator("nba", pipeline)
        outcomes = []

        first = threading.Thread(target=lambda: outcomes.append(orch.start_refresh()))
        first.start()
        assert pipeline.entered.wait(5)

        second = threading.Thread(target=lambda: outcomes.append(orch.start_refresh()))
        second.start()
        second.join(5)

        pipeline.release.set()
        first.join(5)
        assert sorted(outcomes) == [False, True]
        assert pipeline.calls == 1

    def test_readers_do_not_block(self):
        pipeline = BlockingPipeline(result())
        orch = RefreshOrchestrator("nba", pipeline)
        orch.start_refresh_in_background()
        assert pipeline.entered.wait(5)
        snap = orch.snapshot()
        assert snap.is_loading is True
        assert snap.data is None
        pipeline.release.set()
        orch.wait(5)

    def test_stale_data_served_while_loading(self):
        d1 = result("D1")
        pipeline = BlockingPipeline(result("D2"))
        calls = iter([lambda: d1, pipeline])
        orch = RefreshOrchestrator("nba", lambda: next(calls)())
        orch.start_refresh()
        orch.start_refresh_in_background()
        assert pipeline.entered.wait(5)
        snap = orch.snapshot()
        assert snap.is_loading and snap.data is d1
        pipeline.release.set()
        orch.wait(5)
        assert orch.snapshot().data.scope["tag"] == "D2"

    def test_wait_when_idle(self):
        assert RefreshOrchestrator("nba", result).wait(0.01) is True


# ---------------------------------------------------------------------------
# PredictionCache
# ---------------------------------------------------------------------------

class TestPredictionCache:
    def test_lookup(self):
        nba = RefreshOrchestrator("nba", result)
        cache = PredictionCache([nba, RefreshOrchestrator("epl", result)])
        assert cache.get("nba") is nba
        assert cache.get("NBA") is nba
        assert cache.domains() == ["nba", "epl"]
        assert "epl" in cache

    def test_unknown_domain(self):
        with pytest.raises(UnknownDomainError):
            PredictionCache().get("nhl")

    def test_duplicate_registration_rejected(self):
        cache = PredictionCache([RefreshOrchestrator("nba", result)])
        with pytest.raises(ValueError):
            cache.register(RefreshOrchestrator("nba", result))

    def test_domains_independent(self):
        cache = PredictionCache([RefreshOrchestrator("nba", result), RefreshOrchestrator("epl", boom)])
        cache.get("nba").start_refresh()
        cache.get("epl").start_refresh()
        snaps = cache.snapshots()
        assert snaps["nba"].has_data
        assert not snaps["epl"].has_data

    def test_mixed_case_registration(self):
        nba = RefreshOrchestrator("NBA", result)
        cache = PredictionCache([nba])
        assert "NBA" in cache
        assert "nba" in cache
        assert cache.get("nba") is nba
        assert cache.domains() == ["nba"]
        with pytest.raises(ValueError):
            cache.register(RefreshOrchestrator("nba", result))
