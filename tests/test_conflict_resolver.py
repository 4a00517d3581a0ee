"""
tests/test_conflict_resolver.py — Unit tests for propline/conflict_resolver.py
"""

import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from propline.conflict_resolver import (
    CONFIDENCE_FLOOR,
    FIXTURE_TOP_K,
    conflict_key,
    finalize_predictions,
    resolve_conflicts,
)
from propline.line_scanner import MATCH, PLAYER, Prediction


def pred(side, probability, stat="pts", subject="Jane Doe", line=20.5, kind=PLAYER):
    return Prediction(
        subject_id=1,
        subject_label=subject,
        stat_key=stat,
        side=side,
        line=line,
        probability=probability,
        fair_odds=1 / probability,
        season_avg=20.0,
        recent_avg=21.0,
        sigma=5.0,
        kind=kind,
    )


class TestConflictKey:
    def test_player_key(self):
        assert conflict_key(pred("over", 0.6)) == ("pts", "Jane Doe")

    def test_match_key_ignores_label(self):
        assert conflict_key(pred("over", 0.6, stat="corners", subject="A vs B", kind=MATCH)) == ("corners",)


class TestResolveConflicts:
    def test_keeps_higher_side(self):
        out = resolve_conflicts([pred("over", 0.61), pred("under", 0.59)])
        assert len(out) == 1
        assert out[0].side == "over"
        assert out[0].probability == 0.61

    def test_under_can_win(self):
        out = resolve_conflicts([pred("over", 0.58, line=19.5), pred("under", 0.62, line=25.5)])
        assert [p.side for p in out] == ["under"]

    def test_whole_group_collapses_to_one(self):
        group = [pred("over", 0.60, line=18.5), pred("over", 0.59, line=19.0), pred("under", 0.61, line=26.5)]
        out = resolve_conflicts(group)
        assert len(out) == 1
        assert out[0].probability == 0.61

    def test_one_sided_group_kept(self):
        group = [pred("over", 0.60, line=18.5), pred("over", 0.59, line=19.0)]
        assert len(resolve_conflicts(group)) == 2

    def test_different_subjects_independent(self):
        out = resolve_conflicts([pred("over", 0.6, subject="A"), pred("under", 0.6, subject="B")])
        assert len(out) == 2

    def test_different_stats_independent(self):
        out = resolve_conflicts([pred("over", 0.6, stat="pts"), pred("under", 0.6, stat="reb")])
        assert len(out) == 2

    def test_match_predictions_grouped_by_stat(self):
        out = resolve_conflicts([
            pred("over", 0.60, stat="corners", subject="A vs B", kind=MATCH),
            pred("under", 0.62, stat="corners", subject="A vs B", kind=MATCH),
        ])
        assert len(out) == 1
        assert out[0].side == "under"

    def test_empty(self):
        assert resolve_conflicts([]) == []


class TestFinalizePredictions:
    def test_floor_applied(self):
        out = finalize_predictions([pred("over", 0.585), pred("over", 0.60, stat="reb")])
        assert [p.stat_key for p in out] == ["reb"]

    def test_floor_before_conflicts(self):
        # The under is below the floor, so the over is no longer in conflict
        out = finalize_predictions([pred("over", 0.595), pred("under", 0.58)])
        assert len(out) == 1
        assert out[0].side == "over"

    def test_sorted_descending(self):
        preds = [pred("over", p, stat=f"s{i}") for i, p in enumerate([0.60, 0.62, 0.61])]
        out = finalize_predictions(preds)
        assert [p.probability for p in out] == [0.62, 0.61, 0.60]

    def test_top_k(self):
        preds = [pred("over", 0.59 + i * 0.001, stat=f"s{i}") for i in range(20)]
        out = finalize_predictions(preds)
        assert len(out) == FIXTURE_TOP_K
        assert out[0].probability == max(p.probability for p in preds)

    def test_floor_disabled(self):
        out = finalize_predictions([pred("over", 0.55)], confidence_floor=None, top_k=5)
        assert len(out) == 1

    def test_default_floor_value(self):
        assert CONFIDENCE_FLOOR == 0.59
