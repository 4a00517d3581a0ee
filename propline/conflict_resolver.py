"""
propline/conflict_resolver.py - Over/under conflict removal

A batch of predictions for one fixture can hold both sides of the same
subject/stat (e.g. Over 22.5 pts and Under 26.5 pts for the same player).
Those contradict each other: keep the single highest-probability prediction
of such a group, drop the rest. Groups with only one side represented are
kept whole, even with several lines.

Grouping key:
    player predictions -> (stat_key, subject_label)
    match predictions  -> (stat_key,)
"""

import logging
from typing import Iterable, Optional

from propline.line_scanner import PLAYER, Prediction
from propline.prob_model import OVER, UNDER

logger = logging.getLogger(__name__)

CONFIDENCE_FLOOR: float = 0.59   # cache builds drop anything below this
FIXTURE_TOP_K: int = 15


def conflict_key(pred: Prediction) -> tuple:
    """
    >>> from propline.line_scanner import Prediction
    >>> p = Prediction(1, "A B", "pts", "over", 20.0, 0.6, 1.667, 20, 20, 5)
    >>> conflict_key(p)
    ('pts', 'A B')
    """
    if pred.kind == PLAYER and pred.subject_label:
        return (pred.stat_key, pred.subject_label)
    return (pred.stat_key,)


def resolve_conflicts(predictions: Iterable[Prediction]) -> list[Prediction]:
    """
    Remove contradictory same-subject predictions.

    Output order is not guaranteed; re-sort if order matters.
    """
    groups: dict[tuple, list[Prediction]] = {}
    for pred in predictions:
        groups.setdefault(conflict_key(pred), []).append(pred)

    resolved: list[Prediction] = []
    for key, group in groups.items():
        sides = {p.side for p in group}
        if OVER in sides and UNDER in sides:
            best = max(group, key=lambda p: p.probability)
            resolved.append(best)
            logger.info(
                "Conflict removed: %s kept %s (%.1f%%)",
                "_".join(str(k) for k in key), best.side, best.probability * 100,
            )
        else:
            resolved.extend(group)
    return resolved


def finalize_predictions(
    predictions: Iterable[Prediction],
    confidence_floor: Optional[float] = CONFIDENCE_FLOOR,
    top_k: int = FIXTURE_TOP_K,
) -> list[Prediction]:
    """
    Per-fixture post-processing: floor filter, conflict removal,
    probability-descending sort, top-K.
    """
    preds = list(predictions)
    if confidence_floor is not None:
        preds = [p for p in preds if p.probability >= confidence_floor]
    preds = resolve_conflicts(preds)
    preds.sort(key=lambda p: p.probability, reverse=True)
    return preds[:top_k]
