# entity_support/expansion/distributions.py

"""
Weight distributions over features (entities, terms, anchors, passages).

A distribution is a plain Dict[str, float]. Every constructor here is total:
empty input or a zero normaliser gives {} and never NaN / Inf.

Constructors:
    from_frequency                     counts / total, 4-decimal ceiling rounding
    from_retrieval_weighted_frequency  occurrences weighted by P(d | q)
    from_relatedness                   relatedness to a target entity
    from_salience                      salience of an entity per passage
    from_counts                        raw counts

Helpers:
    normalize, combine, top_k
"""

from __future__ import annotations

import logging
from collections import Counter, defaultdict
from decimal import Decimal, ROUND_CEILING, ROUND_HALF_EVEN
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from entity_support.utils.errors import ExternalServiceError
from entity_support.utils.text_utils import canonical_title, process_entity_id, titles_match

logger = logging.getLogger(__name__)

RelatednessFn = Callable[[str, str], float]
SalienceFn = Callable[[str], Optional[Mapping[str, float]]]

_FOUR_PLACES = Decimal("0.0001")
_TWELVE_PLACES = Decimal("1e-12")


def round_ceiling(value: float) -> float:
    """
    Round up to 4 decimals, starting from the decimal digits of `value`.

        0.2 -> 0.2, 1/3 -> 0.3334, 0.1 + 0.2 -> 0.3

    Float noise below 1e-12 is dropped before rounding up, so sums such as
    0.3334 + 0.6667 give 1.0001 and not 1.0002.
    """
    digits = Decimal(repr(float(value))).quantize(_TWELVE_PLACES, rounding=ROUND_HALF_EVEN)
    return float(digits.quantize(_FOUR_PLACES, rounding=ROUND_CEILING))


def from_frequency(items: Iterable[str]) -> Dict[str, float]:
    """
    Relative frequency of every key in a multiset.

    Weights are rounded up to 4 decimals. Entries are kept unless the rounded
    weight is negative, so an exact 0.0 would survive.

    Example:
        from_frequency(["E2", "E2", "E3", "E2"]) -> {"E2": 0.75, "E3": 0.25}
    """
    counts = Counter(items)
    total = sum(counts.values())
    if total == 0:
        return {}

    dist: Dict[str, float] = {}
    for key, count in counts.items():
        weight = round_ceiling(count / total)
        if not weight < 0.0:
            dist[key] = weight
    return dist


def from_counts(items: Iterable[str]) -> Dict[str, float]:
    """Raw occurrence counts as float weights."""
    return {key: float(count) for key, count in Counter(items).items()}


def from_retrieval_weighted_frequency(
    passage_scores: Mapping[str, float],
    passage_terms: Mapping[str, Sequence[str]],
) -> Dict[str, float]:
    """
    Feature weights where each occurrence counts P(d | q) of its passage.

        P(d | q) = score(d) / sum_d' score(d')
        w(f)     = sum over occurrences of f in d of P(d | q)

    There is no further normalization after accumulation. Passages missing
    from `passage_scores` contribute nothing.

    Args:
        passage_scores: passage id -> retrieval score
        passage_terms: passage id -> features (terms or entities) with repeats

    Returns:
        Dict feature -> weight (only positive weights).
    """
    if not passage_scores:
        return {}

    ids = list(passage_scores.keys())
    scores = np.array([float(passage_scores[pid]) for pid in ids], dtype=float)
    total = scores.sum()
    if total == 0.0 or not np.isfinite(total):
        logger.debug("Retrieval scores sum to zero, empty distribution.")
        return {}
    doc_probs = dict(zip(ids, (scores / total).tolist()))

    weights: Dict[str, float] = defaultdict(float)
    for pid, features in passage_terms.items():
        p_dq = doc_probs.get(pid)
        if p_dq is None:
            continue
        for feature in features:
            weights[feature] += p_dq

    return {f: w for f, w in weights.items() if w > 0.0}


def from_relatedness(
    target_entity: str,
    candidate_entities: Iterable[str],
    relatedness: RelatednessFn,
) -> Dict[str, float]:
    """
    Weight every candidate by its relatedness to the target entity.

    A candidate whose canonical title equals the target's (ignoring case)
    gets 1.0; every other candidate gets relatedness(target_title,
    candidate_title). The oracle is called with canonical titles
    (e.g. "Dog", "Cat") and must return 0.0 for unresolvable entities.

    Values are used as-is (no normalization). Non-positive weights are dropped,
    and so are candidates whose id cannot be turned into a title.
    """
    target_title = canonical_title(target_entity)
    if target_title is None:
        logger.warning(f"Malformed target entity id '{target_entity}', no relatedness distribution.")
        return {}

    dist: Dict[str, float] = {}
    for candidate in candidate_entities:
        if candidate in dist:
            continue
        candidate_title = canonical_title(candidate)
        if candidate_title is None:
            logger.debug(f"Skipping malformed entity id '{candidate}'")
            continue

        if titles_match(target_entity, candidate):
            weight = 1.0
        else:
            weight = float(relatedness(target_title, candidate_title))

        if weight > 0.0:
            dist[candidate] = weight
    return dist


def from_salience(
    entity: str,
    passage_ids: Iterable[str],
    salience: SalienceFn,
) -> Dict[str, float]:
    """
    Salience of `entity` in each passage, keyed by passage id.

    Passages where the entity is not salient (or which have no salience
    annotation) are omitted, not zero-filled. A failed oracle call skips
    that passage only.

    Args:
        entity: Target entity id (any namespace / encoding)
        passage_ids: Candidate passage ids
        salience: passage id -> {entity: salience score} (or None)

    Returns:
        Dict passage id -> salience score (only positive scores).
    """
    target = process_entity_id(entity).lower()
    dist: Dict[str, float] = {}

    for pid in passage_ids:
        if pid in dist:
            continue
        try:
            annotations = salience(pid)
        except ExternalServiceError as e:
            logger.warning(f"Salience lookup failed for entity={entity} passage={pid}: {e}")
            continue
        if not annotations:
            continue

        for ent, score in annotations.items():
            if process_entity_id(ent).lower() == target:
                if score > 0.0:
                    dist[pid] = float(score)
                break
    return dist


def normalize(dist: Mapping[str, float]) -> Dict[str, float]:
    """Divide every weight by the sum of positive weights. Zero sum -> {}."""
    positive = {k: float(v) for k, v in dist.items() if v > 0.0}
    if not positive:
        return {}
    values = np.fromiter(positive.values(), dtype=float, count=len(positive))
    total = values.sum()
    if total == 0.0 or not np.isfinite(total):
        return {}
    return dict(zip(positive.keys(), (values / total).tolist()))


def combine(
    primary: Mapping[str, float],
    secondary: Mapping[str, float],
    op: str = "sum",
) -> Dict[str, float]:
    """
    Combine two distributions over the keys of `primary`.

    op="sum":     w(k) = primary[k] + secondary.get(k, 0)
    op="product": w(k) = primary[k] * secondary.get(k, 0)
    """
    if op == "sum":
        combined = {k: w + secondary.get(k, 0.0) for k, w in primary.items()}
    elif op == "product":
        combined = {k: w * secondary.get(k, 0.0) for k, w in primary.items()}
    else:
        raise ValueError(f"Unsupported combination: {op}")
    return {k: w for k, w in combined.items() if w > 0.0}


def top_k(dist: Mapping[str, float], k: Optional[int] = None) -> List[Tuple[str, float]]:
    """Entries sorted by descending weight (ties broken by key). k=None keeps all."""
    ranked = sorted(dist.items(), key=lambda x: (-x[1], x[0]))
    if k is None:
        return ranked
    return ranked[:max(k, 0)]
