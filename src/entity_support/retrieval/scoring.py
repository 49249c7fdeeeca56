# entity_support/retrieval/scoring.py

"""
Additive passage scoring against a weight distribution.

    score(p) = sum over features f of p of w(f)

What counts as a feature depends on the FeatureMode:

    ENTITIES  distinct entity ids of the passage
    TERMS     preprocessed words of the text, every occurrence
    ANCHORS   literal substring occurrences of each anchor in the raw text
    PASSAGES  the passage id itself (distribution keyed by passage id)
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Iterable, List, Mapping, Union

from entity_support.expansion.data_types import Passage, ScoredPassage
from entity_support.utils.text_utils import preprocess, to_frozenset

logger = logging.getLogger(__name__)


class FeatureMode(str, Enum):
    TERMS = "terms"
    ENTITIES = "entities"
    ANCHORS = "anchors"
    PASSAGES = "passages"


def count_occurrences(text: str, anchor: str) -> int:
    # Literal substring count: "art" is also counted inside "start".
    if not anchor:
        return 0
    return (len(text) - len(text.replace(anchor, ""))) // len(anchor)


def score_passage(
    passage: Passage,
    distribution: Mapping[str, float],
    mode: Union[FeatureMode, str],
    stopwords: Iterable[str] = frozenset(),
) -> float:
    """
    Score one passage. Empty text or an empty distribution gives 0.0.

    Args:
        passage: Passage to score.
        distribution: Feature -> weight.
        mode: Which features of the passage are looked up.
        stopwords: Words dropped in TERMS mode.
    """
    if not distribution:
        return 0.0
    mode = FeatureMode(mode)

    if mode == FeatureMode.ENTITIES:
        return float(sum(distribution.get(e, 0.0) for e in set(passage.entities)))

    if mode == FeatureMode.TERMS:
        words = preprocess(passage.text, to_frozenset(stopwords))
        return float(sum(distribution.get(w, 0.0) for w in words))

    if mode == FeatureMode.ANCHORS:
        text = passage.text or ""
        if not text:
            return 0.0
        score = 0.0
        for anchor, weight in distribution.items():
            n = count_occurrences(text, anchor)
            if n:
                score += n * weight
        return score

    return float(distribution.get(passage.id, 0.0))


def score_passages(
    passages: Iterable[Passage],
    distribution: Mapping[str, float],
    mode: Union[FeatureMode, str],
    stopwords: Iterable[str] = frozenset(),
) -> List[ScoredPassage]:
    """
    Score a set of passages and rank them.

    Returns:
        ScoredPassage list sorted by descending score (ties by passage id),
        keeping only strictly positive scores. Each passage id appears once.
    """
    stopwords = to_frozenset(stopwords)
    scored = {}
    for passage in passages:
        if passage.id in scored:
            continue
        scored[passage.id] = score_passage(passage, distribution, mode, stopwords)

    ranked = [ScoredPassage(pid, s) for pid, s in scored.items() if s > 0.0]
    ranked.sort(key=lambda sp: (-sp.score, sp.passage_id))
    logger.debug(f"Scored {len(scored)} passages, {len(ranked)} with positive score")
    return ranked
