# entity_support/expansion/query_expansion.py

"""
Weighted boolean expansion queries.

An expansion query is a disjunction of boosted term clauses:

    base query tokens          weight 1.0 each (unless omitted)
    words of top-K features    the feature's own weight, per word

Multi-word features (entity names such as "Artificial_intelligence") are
split into words and every word carries the full feature weight.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from entity_support.expansion.data_types import ExpansionClause, ExpansionQuery
from entity_support.utils.text_utils import default_analyzer, entity_surface_text

logger = logging.getLogger(__name__)

Analyzer = Callable[[str], List[str]]

DEFAULT_MAX_TERMS = 64


def build_expansion_query(
    base_query_text: str,
    top_features: Sequence[Tuple[str, float]],
    omit_base_query_terms: bool = False,
    text_field: str = "text",
    max_terms: int = DEFAULT_MAX_TERMS,
    analyzer: Analyzer = default_analyzer,
    entity_field: Optional[str] = None,
) -> ExpansionQuery:
    """
    Build an expansion query from a base query and ranked features.

    Args:
        base_query_text: Original query string.
        top_features: (feature, weight) pairs, already sorted by the caller.
        omit_base_query_terms: Skip the base query tokens entirely.
        text_field: Field for base tokens (and for features when no
                    entity_field is given).
        max_terms: Term budget. At most max_terms - #base tokens feature
                   groups are taken, and never more than max_terms clauses.
        analyzer: Tokenizer matching the target index.
        entity_field: When set, base tokens go to both fields and feature
                      words go to this field.

    Returns:
        ExpansionQuery; empty when there is nothing to search for.
    """
    clauses: List[ExpansionClause] = []

    def add(field: str, term: str, weight: float) -> bool:
        if len(clauses) >= max_terms:
            return False
        clauses.append(ExpansionClause(field=field, term=term, weight=float(weight)))
        return True

    base_tokens: List[str] = []
    if not omit_base_query_terms:
        base_tokens = analyzer(base_query_text or "")[:max_terms]
        base_fields = [text_field] if entity_field is None else [text_field, entity_field]
        for field in base_fields:
            for token in base_tokens:
                add(field, token, 1.0)

    n_features = max(0, min(len(top_features), max_terms - len(base_tokens)))
    feature_field = entity_field or text_field

    for feature, weight in top_features[:n_features]:
        for word in analyzer(entity_surface_text(feature)):
            if not add(feature_field, word, weight):
                logger.debug(f"Term budget of {max_terms} reached while adding '{feature}'")
                break

    logger.debug(
        f"Built expansion query with {len(clauses)} clauses "
        f"({len(base_tokens)} base tokens, {n_features} features)"
    )
    return ExpansionQuery(clauses=tuple(clauses))


@dataclass
class ExpansionQueryBuilder:
    """Expansion query construction bound to one index's analyzer and fields."""
    analyzer: Analyzer = default_analyzer
    text_field: str = "text"
    entity_field: Optional[str] = None
    max_terms: int = DEFAULT_MAX_TERMS
    omit_base_query_terms: bool = False

    def build(
        self,
        base_query_text: str,
        top_features: Sequence[Tuple[str, float]],
    ) -> ExpansionQuery:
        return build_expansion_query(
            base_query_text,
            top_features,
            omit_base_query_terms=self.omit_base_query_terms,
            text_field=self.text_field,
            max_terms=self.max_terms,
            analyzer=self.analyzer,
            entity_field=self.entity_field,
        )
