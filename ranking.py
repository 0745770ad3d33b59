"""
Ranking engine: score every condition against a query and keep the top N.

    score = prevalence
            + sum(present[s]        for s selected)
            + 0.5 * sum(absent[s]   for s explicitly denied and not selected)

A condition whose age range or sex constraint rejects the query scores
exactly 0 and is excluded. Ties keep the knowledge base order.
"""

import logging
import math
from typing import Iterable, List, Sequence

from heuristic_rules import tokenize
from pydantic_models import Condition, Query, RankedResult

logger = logging.getLogger(__name__)

TOP_N = 6
ABSENT_FACTOR = 0.5


def _weight(value) -> float:
    # weights are validated at normalization; anything odd counts for nothing
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def free_text_symptoms(free_text: str, vocabulary: Iterable[str]) -> frozenset:
    """
    Tokens of the free text that are vocabulary symptoms.

    Raw tokens are matched first; synonym rewrites only add to them, so a
    vocabulary term that is also a synonym key ("dizzy") is kept as typed.
    """
    if not free_text:
        return frozenset()
    raw = {t for t in tokenize(free_text, synonyms={}) if t in vocabulary}
    rewritten = {t for t in tokenize(free_text) if t in vocabulary}
    return frozenset(raw | rewritten)


def effective_selection(query: Query, vocabulary) -> frozenset:
    return frozenset(query.selected_symptoms) | free_text_symptoms(query.free_text, vocabulary)


def score_condition(condition: Condition, selected: frozenset, negatives: frozenset):
    """(score, matched present symptoms, corroborating negatives); no demographic check."""
    present = condition.features.present or {}
    absent = condition.features.absent or {}
    matched = tuple(s for s in sorted(selected) if s in present)
    corroborating = tuple(s for s in sorted(negatives - selected) if s in absent)

    score = _weight(condition.prevalence_weight)
    for s in matched:
        score += _weight(present[s])
    for s in corroborating:
        score += ABSENT_FACTOR * _weight(absent[s])
    return score, matched, corroborating


def rank(conditions: Sequence[Condition], vocabulary, query: Query, top_n: int = TOP_N,
         show_zero_scores: bool = False, show_near_misses: bool = False) -> List[RankedResult]:
    """
    Rank `conditions` for `query`.

    show_zero_scores keeps demographically excluded conditions (score 0);
    show_near_misses keeps admitted conditions whose score is not positive.
    Neither is on by default.
    """
    if not conditions:
        return []
    vocabulary = vocabulary if vocabulary is not None else ()
    selected = effective_selection(query, vocabulary)
    negatives = frozenset(query.explicit_negatives or ())

    results = []
    for condition in conditions:
        if not condition.demographics.admits(query.age, query.sex):
            if show_zero_scores:
                results.append(RankedResult(condition_id=condition.id, name=condition.name, score=0.0,
                                            reference=condition, excluded=True))
            continue

        score, matched, corroborating = score_condition(condition, selected, negatives)
        if score <= 0 and not show_near_misses:
            continue
        results.append(RankedResult(
            condition_id=condition.id,
            name=condition.name,
            score=score,
            reference=condition,
            matched_symptoms=matched,
            corroborating_negatives=corroborating,
        ))

    # sorted() is stable, so equal scores keep knowledge base order
    results = sorted(results, key=lambda r: -r.score)[:top_n]
    logger.debug("Ranked %d of %d conditions (selected=%s)", len(results), len(conditions), sorted(selected))
    return results

