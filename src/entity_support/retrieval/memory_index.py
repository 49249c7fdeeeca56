# entity_support/retrieval/memory_index.py

"""
Small in-memory passage index.

Used as the ephemeral index over one pseudo-document (rescore_within_pool)
and as a drop-in PassageIndex for tests and small collections.

Fields:
    text    analyzed passage text
    entity  analyzed entity surface words (Barack_Obama -> barack, obama)
    id      exact passage id

Similarities (Lucene formulations):

    bm25:  idf(t) * tf / (tf + k1 * (1 - b + b * dl / avgdl))
           idf(t) = log(1 + (N - df + 0.5) / (df + 0.5))
    lmds:  max(0, log(1 + tf / (mu * P(t|C))) + log(mu / (dl + mu)))
    lmjm:  log(1 + ((1 - lam) * tf / dl) / (lam * P(t|C)))

A query scores sum(weight * sim(field, term, doc)) over its clauses, and
only documents containing at least one query term are scored.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from entity_support.expansion.data_types import ExpansionQuery, Passage, ScoredPassage
from entity_support.expansion.query_expansion import Analyzer
from entity_support.utils.text_utils import default_analyzer, entity_surface_text

logger = logging.getLogger(__name__)

SIMILARITIES = ("bm25", "lmds", "lmjm")


class _FieldPostings:
    """Inverted lists and length statistics of one analyzed field."""

    def __init__(self, docs_tokens: List[List[str]]):
        self.doc_lengths = np.array([len(t) for t in docs_tokens], dtype=float)
        self.avgdl = float(self.doc_lengths.mean()) if len(docs_tokens) else 0.0
        self.total_tokens = float(self.doc_lengths.sum())
        self.collection_tf: Counter = Counter()

        postings: Dict[str, Dict[int, int]] = {}
        for doc_idx, tokens in enumerate(docs_tokens):
            for term, tf in Counter(tokens).items():
                postings.setdefault(term, {})[doc_idx] = tf
                self.collection_tf[term] += tf

        self.postings: Dict[str, Tuple[np.ndarray, np.ndarray]] = {
            term: (
                np.fromiter(plist.keys(), dtype=np.int64, count=len(plist)),
                np.fromiter(plist.values(), dtype=float, count=len(plist)),
            )
            for term, plist in postings.items()
        }

    def collection_probability(self, term: str) -> float:
        return self.collection_tf[term] / max(self.total_tokens, 1.0)


class MemoryPassageIndex:
    """
    In-memory PassageIndex over a fixed set of passages.

    Typical use:
        index = MemoryPassageIndex(passages, similarity="bm25")
        hits = index.search(expansion_query, top_k=10)
    """

    def __init__(
        self,
        passages: Iterable[Passage],
        analyzer: Analyzer = default_analyzer,
        similarity: str = "bm25",
        k1: float = 1.2,
        b: float = 0.75,
        mu: float = 2000.0,
        lam: float = 0.1,
        text_field: str = "text",
        entity_field: str = "entity",
        id_field: str = "id",
    ):
        if similarity not in SIMILARITIES:
            raise ValueError(f"Unsupported similarity: {similarity}")

        self.analyzer = analyzer
        self.similarity = similarity
        self.k1 = k1
        self.b = b
        self.mu = mu
        self.lam = lam
        self.text_field = text_field
        self.entity_field = entity_field
        self.id_field = id_field

        # Unique by id, first occurrence wins
        unique: Dict[str, Passage] = {}
        for p in passages:
            unique.setdefault(p.id, p)
        self.passages: List[Passage] = list(unique.values())
        self._by_id: Dict[str, int] = {p.id: i for i, p in enumerate(self.passages)}

        self._fields: Dict[str, _FieldPostings] = {
            text_field: _FieldPostings([analyzer(p.text or "") for p in self.passages]),
            entity_field: _FieldPostings([self._entity_tokens(p) for p in self.passages]),
        }

        logger.debug(
            f"Built MemoryPassageIndex(docs={len(self.passages)}, similarity={similarity})"
        )

    def __len__(self) -> int:
        return len(self.passages)

    def _entity_tokens(self, passage: Passage) -> List[str]:
        tokens: List[str] = []
        for e in passage.entities:
            tokens.extend(self.analyzer(entity_surface_text(e)))
        return tokens

    # -------------------------------------------------------------------------
    # PassageIndex API
    # -------------------------------------------------------------------------

    def analyze(self, text: str) -> List[str]:
        return self.analyzer(text or "")

    def get_by_id(self, passage_id: str) -> Optional[Passage]:
        idx = self._by_id.get(passage_id)
        return None if idx is None else self.passages[idx]

    def field_term_search(self, field: str, value: str) -> Optional[Passage]:
        """First passage whose `field` contains `value` (exact match on the id field)."""
        if field == self.id_field:
            return self.get_by_id(value)

        postings = self._fields.get(field)
        if postings is None:
            return None
        terms = self.analyzer(value)
        if not terms:
            return None

        candidates: Optional[set] = None
        for term in terms:
            plist = postings.postings.get(term)
            docs = set() if plist is None else set(plist[0].tolist())
            candidates = docs if candidates is None else candidates & docs
        if not candidates:
            return None
        return self.passages[min(candidates)]

    def search(self, query: ExpansionQuery, top_k: int) -> List[Tuple[Passage, float]]:
        """
        Score all passages against the query.

        Returns:
            Up to top_k (passage, score) pairs, descending score, ties by id.
        """
        if query.is_empty or not self.passages or top_k <= 0:
            return []

        scores = np.zeros(len(self.passages), dtype=float)
        matched = np.zeros(len(self.passages), dtype=bool)

        for clause in query:
            postings = self._fields.get(clause.field)
            if postings is None:
                continue
            plist = postings.postings.get(clause.term)
            if plist is None:
                continue
            doc_idx, tfs = plist
            scores[doc_idx] += clause.weight * self._similarity(postings, clause.term, doc_idx, tfs)
            matched[doc_idx] = True

        hits = [
            (self.passages[i], float(scores[i]))
            for i in np.flatnonzero(matched & (scores > 0.0))
        ]
        hits.sort(key=lambda x: (-x[1], x[0].id))
        return hits[:top_k]

    def rescore_within_pool(
        self,
        passages: Iterable[Passage],
        query: ExpansionQuery,
        top_k: int,
    ) -> List[ScoredPassage]:
        """Search a throwaway index over `passages` built like this one."""
        return rescore_within_pool(
            passages,
            query,
            top_k,
            similarity=self.similarity,
            analyzer=self.analyzer,
            k1=self.k1,
            b=self.b,
            mu=self.mu,
            lam=self.lam,
            text_field=self.text_field,
            entity_field=self.entity_field,
            id_field=self.id_field,
        )

    # -------------------------------------------------------------------------
    # Similarities
    # -------------------------------------------------------------------------

    def _similarity(
        self,
        postings: _FieldPostings,
        term: str,
        doc_idx: np.ndarray,
        tfs: np.ndarray,
    ) -> np.ndarray:
        dl = postings.doc_lengths[doc_idx]

        if self.similarity == "bm25":
            n_docs = len(self.passages)
            df = float(len(doc_idx))
            idf = np.log(1.0 + (n_docs - df + 0.5) / (df + 0.5))
            norm = 1.0 - self.b + self.b * (dl / max(postings.avgdl, 1e-9))
            return idf * tfs / (tfs + self.k1 * norm)

        p_c = postings.collection_probability(term)
        if self.similarity == "lmds":
            s = np.log(1.0 + tfs / (self.mu * p_c)) + np.log(self.mu / (dl + self.mu))
            return np.maximum(s, 0.0)

        return np.log(1.0 + ((1.0 - self.lam) * tfs / dl) / (self.lam * p_c))


def rescore_within_pool(
    documents: Iterable[Passage],
    query: ExpansionQuery,
    top_k: int,
    similarity: str = "bm25",
    analyzer: Analyzer = default_analyzer,
    **params,
) -> List[ScoredPassage]:
    """
    Run `query` against a throwaway index over exactly `documents`.

    Args:
        documents: Passages to index (typically one pseudo-document's).
        query: Expansion query.
        top_k: Maximum number of results.
        similarity: "bm25", "lmds" or "lmjm".
        analyzer: Tokenizer, must match the one used to build the query.
        **params: Similarity parameters (k1, b, mu, lam).

    Returns:
        Up to top_k ScoredPassage, descending score. [] for no documents.
    """
    documents = list(documents)
    if not documents or query.is_empty:
        return []

    index = MemoryPassageIndex(documents, analyzer=analyzer, similarity=similarity, **params)
    return [ScoredPassage(p.id, score) for p, score in index.search(query, top_k)]
