# entity_support/retrieval/pipeline.py

"""
Support passage pipeline.

For every query and every ranked (and relevant) entity of the query:

    pseudo-document -> distribution(strategy) -> score(feature mode)
                                              [-> expansion query -> retrieval]

and the ranked passages become run lines "<qid>+<eid> Q0 <pid> <rank> <score> <tag>".

Queries are processed serially or on a thread pool. Each (query, entity) unit
is independent; an ExternalServiceError skips that unit with a warning.
The pseudo-document retrieval strategy first scores all pseudo-documents of a
query at once, and a failure there skips the whole query.
"""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Dict, FrozenSet, List, Mapping, Optional, Sequence

from tqdm import tqdm

from entity_support.expansion import distributions
from entity_support.expansion.data_types import Passage, PseudoDocument, ScoredPassage
from entity_support.expansion.pseudo_document import PseudoDocumentBuilder
from entity_support.expansion.query_expansion import ExpansionQueryBuilder, build_expansion_query
from entity_support.retrieval.scoring import FeatureMode, score_passages
from entity_support.utils.config import ExperimentConfig, Strategy
from entity_support.utils.errors import ExternalServiceError
from entity_support.utils.file_utils import format_run_lines
from entity_support.utils.text_utils import preprocess, process_entity_id, query_text_from_id

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]

# Pseudo-documents kept when they are retrieved with the query text
PSEUDO_DOCUMENT_HITS = 100


class SupportPassagePipeline:
    """
    Runs one experiment configuration over a set of queries.

    Args:
        config: Experiment configuration.
        index: PassageIndex (get_by_id / search / analyze / rescore_within_pool).
        passage_rankings: qid -> {passage id: retrieval score}, ranked order.
        entity_rankings: qid -> {entity id: score}, ranked order.
        entity_qrels: qid -> relevant entity ids (required when
                      config.relevant_entities_only is set).
        queries: qid -> query text; falls back to the text in the query id.
        relatedness: (title_a, title_b) -> relatedness, for relatedness strategies.
        salience: passage id -> {entity: salience}, for the salience strategy.
        stopwords: Words dropped in TERMS mode.
    """

    def __init__(
        self,
        config: ExperimentConfig,
        index,
        passage_rankings: Mapping[str, Mapping[str, float]],
        entity_rankings: Mapping[str, Mapping[str, float]],
        entity_qrels: Optional[Mapping[str, Sequence[str]]] = None,
        queries: Optional[Mapping[str, str]] = None,
        relatedness: Optional[distributions.RelatednessFn] = None,
        salience: Optional[distributions.SalienceFn] = None,
        stopwords: FrozenSet[str] = frozenset(),
    ):
        if config.relevant_entities_only and entity_qrels is None:
            raise ValueError("entity_qrels are required when relevant_entities_only is set")
        if config.strategy in (Strategy.RELATEDNESS, Strategy.RELATEDNESS_PLUS_FREQUENCY) and relatedness is None:
            raise ValueError(f"Strategy {config.strategy.value} needs a relatedness oracle")
        if config.strategy == Strategy.SALIENCE and salience is None:
            raise ValueError("Strategy salience needs a salience oracle")

        self.config = config
        self.index = index
        self.passage_rankings = passage_rankings
        self.entity_rankings = entity_rankings
        self.entity_qrels = entity_qrels
        self.queries = queries or {}
        self.relatedness = relatedness
        self.salience = salience
        self.stopwords = frozenset(stopwords)

        self.builder = PseudoDocumentBuilder(
            index,
            exclude_target=config.exclude_target_entity,
            with_anchors=config.with_anchors,
        )

        # Expansion queries are searched on the index or on a copy built like it,
        # so they are always tokenized with its analyzer.
        self.expansion_builder = None
        if config.expansion is not None:
            exp = config.expansion
            self.expansion_builder = ExpansionQueryBuilder(
                analyzer=index.analyze,
                text_field=exp.text_field,
                entity_field=exp.entity_field,
                max_terms=exp.max_terms,
                omit_base_query_terms=exp.omit_query_terms,
            )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def run(
        self,
        query_ids: Optional[Sequence[str]] = None,
        workers: int = 1,
        progress: Optional[ProgressCallback] = None,
    ) -> List[str]:
        """
        Process queries and return all run lines.

        Args:
            query_ids: Queries to process (default: every query with a passage ranking).
            workers: 1 for serial processing, N for a pool of N threads,
                     0 for one thread per CPU.
            progress: Called with the query id after each finished query.

        Returns:
            Run lines grouped by query in input order.
        """
        if query_ids is None:
            query_ids = list(self.passage_rankings.keys())
        if workers == 0:
            workers = os.cpu_count() or 1

        results: Dict[str, List[str]] = {}
        if workers <= 1:
            for qid in tqdm(query_ids, desc=self.config.name):
                results[qid] = self.process_query(qid)
                if progress:
                    progress(qid)
        else:
            logger.info(f"Processing {len(query_ids)} queries with {workers} threads")
            with ThreadPoolExecutor(max_workers=workers) as ex:
                futures = {ex.submit(self._process_query_in_worker, qid): qid for qid in query_ids}
                for future in tqdm(as_completed(futures), total=len(futures), desc=self.config.name):
                    qid = futures[future]
                    results[qid] = future.result()
                    if progress:
                        progress(qid)

        lines = [line for qid in query_ids for line in results.get(qid, [])]
        logger.info(f"{self.config.name}: {len(lines)} run lines for {len(query_ids)} queries")
        return lines

    def process_query(self, query_id: str) -> List[str]:
        """Run lines for every target entity of one query."""
        pool = self.candidate_pool(query_id)
        entities = self.target_entities(query_id)
        if not pool or not entities:
            logger.debug(f"Query {query_id}: {len(pool)} passages, {len(entities)} entities, skipped")
            return []

        query_scores = None
        if self.config.strategy == Strategy.PSEUDO_DOCUMENT_RETRIEVAL:
            try:
                query_scores = self.pseudo_document_scores(query_id, pool, entities)
            except ExternalServiceError as e:
                logger.warning(f"Skipping query={query_id}: {e}")
                return []

        lines: List[str] = []
        for entity_id in entities:
            try:
                scored = self.process_entity(query_id, entity_id, pool, query_scores)
            except ExternalServiceError as e:
                logger.warning(f"Skipping query={query_id} entity={entity_id}: {e}")
                continue
            lines.extend(format_run_lines(query_id, entity_id, scored, self.config.run_tag))
        return lines

    def process_entity(
        self,
        query_id: str,
        entity_id: str,
        pool: Sequence[str],
        query_scores: Optional[Mapping[str, float]] = None,
    ) -> List[ScoredPassage]:
        """
        Ranked support passages for one (query, entity) pair.

        query_scores are the passage scores from pseudo_document_scores, read
        by the pseudo-document retrieval strategy only.
        """
        doc = self.builder.build(entity_id, pool)
        if doc is None:
            logger.debug(f"No pseudo-document for query={query_id} entity={entity_id}")
            return []

        dist = self.build_distribution(query_id, entity_id, doc, pool, query_scores)
        if not dist:
            logger.debug(f"Empty distribution for query={query_id} entity={entity_id}")
            return []

        if self.expansion_builder is None:
            return score_passages(doc.passages, dist, self.config.feature_mode, self.stopwords)
        return self._expand_and_retrieve(query_id, entity_id, doc, dist)

    def pseudo_document_scores(
        self,
        query_id: str,
        pool: Sequence[str],
        entities: Sequence[str],
    ) -> Dict[str, float]:
        """
        Score passages by retrieving whole pseudo-documents with the query text.

        Every target entity's pseudo-document becomes one document of a
        throwaway index (its passage texts joined, its co-occurring entities).
        The query text is searched on it and each passage collects the scores
        of the retrieved pseudo-documents that contain it.

        Returns:
            passage id -> summed score; {} when nothing is retrieved.
        """
        docs: Dict[str, PseudoDocument] = {}
        for entity_id in entities:
            doc = self.builder.build(entity_id, pool)
            if doc is not None:
                docs[entity_id] = doc
        if not docs:
            return {}

        merged = [
            Passage(
                id=entity_id,
                text=" ".join(p.text for p in doc.passages),
                entities=doc.co_occurring_entities,
            )
            for entity_id, doc in docs.items()
        ]
        query = build_expansion_query(
            self.query_text(query_id),
            [],
            text_field=getattr(self.index, "text_field", "text"),
            analyzer=self.index.analyze,
        )
        hits = self.index.rescore_within_pool(merged, query, PSEUDO_DOCUMENT_HITS)

        scores: Dict[str, float] = {}
        for hit in hits:
            for pid in docs[hit.passage_id].passage_ids:
                scores[pid] = scores.get(pid, 0.0) + hit.score
        logger.debug(f"Query {query_id}: {len(hits)} of {len(docs)} pseudo-documents retrieved")
        return scores

    # -------------------------------------------------------------------------
    # Inputs of a query
    # -------------------------------------------------------------------------

    def candidate_pool(self, query_id: str) -> List[str]:
        pool = list(self.passage_rankings.get(query_id, {}).keys())
        if self.config.take_k_passages is not None:
            pool = pool[:self.config.take_k_passages]
        return pool

    def target_entities(self, query_id: str) -> List[str]:
        ranked = list(self.entity_rankings.get(query_id, {}).keys())
        if not self.config.relevant_entities_only:
            return ranked
        relevant = set(self.entity_qrels.get(query_id, ()))
        return [e for e in ranked if e in relevant]

    def query_text(self, query_id: str) -> str:
        return self.queries.get(query_id) or query_text_from_id(query_id)

    def relatedness_candidates(
        self,
        query_id: str,
        doc: PseudoDocument,
        pool: Sequence[str],
    ) -> List[str]:
        """Entities weighted by relatedness to the target, per config.relatedness_candidates."""
        source = self.config.relatedness_candidates
        if source == "entities":
            return [process_entity_id(e) for e in self.target_entities(query_id)]
        if source == "passages":
            candidates: Dict[str, None] = {}
            for pid in dict.fromkeys(pool):
                passage = self.index.get_by_id(pid)
                if passage is None:
                    continue
                for e in passage.entities:
                    candidates.setdefault(e)
            return list(candidates)
        return list(doc.co_occurring_entities)

    # -------------------------------------------------------------------------
    # Distributions
    # -------------------------------------------------------------------------

    def build_distribution(
        self,
        query_id: str,
        entity_id: str,
        doc: PseudoDocument,
        pool: Sequence[str] = (),
        query_scores: Optional[Mapping[str, float]] = None,
    ) -> Dict[str, float]:
        strategy = self.config.strategy

        if strategy == Strategy.FREQUENCY:
            return distributions.from_frequency(self._features(query_id, doc))

        if strategy == Strategy.RETRIEVAL_WEIGHTED:
            ranking = self.passage_rankings.get(query_id, {})
            passage_scores = {pid: ranking[pid] for pid in doc.passage_ids if pid in ranking}
            passage_terms = {p.id: self._passage_features(query_id, doc, p) for p in doc.passages}
            return distributions.from_retrieval_weighted_frequency(passage_scores, passage_terms)

        if strategy == Strategy.RELATEDNESS:
            candidates = self.relatedness_candidates(query_id, doc, pool)
            return distributions.from_relatedness(entity_id, candidates, self.relatedness)

        if strategy == Strategy.RELATEDNESS_PLUS_FREQUENCY:
            candidates = self.relatedness_candidates(query_id, doc, pool)
            rel = distributions.from_relatedness(entity_id, candidates, self.relatedness)
            return distributions.combine(distributions.from_counts(doc.co_occurring_entities), rel, "sum")

        if strategy == Strategy.SALIENCE:
            dist = distributions.normalize(distributions.from_salience(entity_id, doc.passage_ids, self.salience))
        else:
            query_scores = query_scores or {}
            dist = {pid: query_scores[pid] for pid in doc.passage_ids if query_scores.get(pid, 0.0) > 0.0}
        return self._apply_priors(query_id, entity_id, dist)

    def _apply_priors(self, query_id: str, entity_id: str, dist: Dict[str, float]) -> Dict[str, float]:
        """Multiply passage-keyed weights by the configured normalized priors."""
        if self.config.use_entity_prior:
            prior = distributions.normalize(self.entity_rankings.get(query_id, {})).get(entity_id, 0.0)
            dist = {pid: prior * w for pid, w in dist.items()}
        if self.config.use_passage_prior:
            priors = distributions.normalize(self.passage_rankings.get(query_id, {}))
            dist = {pid: priors.get(pid, 0.0) * w for pid, w in dist.items()}
        return {pid: w for pid, w in dist.items() if w > 0.0}

    def _retrieved_entity_keys(self, query_id: str) -> FrozenSet[str]:
        return frozenset(process_entity_id(e) for e in self.entity_rankings.get(query_id, {}))

    def _terms(self, text: str) -> List[str]:
        # Expansion features must be index terms; direct scoring compares preprocessed words
        words = preprocess(text, self.stopwords)
        if self.expansion_builder is None:
            return words
        return self.index.analyze(" ".join(words))

    def _features(self, query_id: str, doc: PseudoDocument) -> List[str]:
        """Feature multiset of a whole pseudo-document."""
        mode = self.config.feature_mode
        if mode == FeatureMode.ANCHORS:
            anchors = list(doc.anchor_texts or ())
            if self.config.restrict_to_retrieved_entities:
                retrieved = self._retrieved_entity_keys(query_id)
                anchors = [a for a in anchors if process_entity_id(a.entity_id) in retrieved]
            return [a.anchor_text for a in anchors]
        if mode == FeatureMode.TERMS:
            return [w for p in doc.passages for w in self._terms(p.text)]

        entities = list(doc.co_occurring_entities)
        if self.config.restrict_to_retrieved_entities:
            retrieved = self._retrieved_entity_keys(query_id)
            entities = [e for e in entities if process_entity_id(e) in retrieved]
        return entities

    def _passage_features(self, query_id: str, doc: PseudoDocument, passage: Passage) -> List[str]:
        if self.config.feature_mode == FeatureMode.TERMS:
            return self._terms(passage.text)

        target = process_entity_id(doc.entity)
        entities = [
            e for e in passage.entities
            if not (self.config.exclude_target_entity and process_entity_id(e) == target)
        ]
        if self.config.restrict_to_retrieved_entities:
            retrieved = self._retrieved_entity_keys(query_id)
            entities = [e for e in entities if process_entity_id(e) in retrieved]
        return entities

    # -------------------------------------------------------------------------
    # Expansion
    # -------------------------------------------------------------------------

    def _expand_and_retrieve(
        self,
        query_id: str,
        entity_id: str,
        doc: PseudoDocument,
        dist: Dict[str, float],
    ) -> List[ScoredPassage]:
        exp = self.config.expansion
        features = distributions.top_k(dist, exp.take_k_terms)
        if not features:
            return []

        query = self.expansion_builder.build(self.query_text(query_id), features)
        if query.is_empty:
            logger.debug(f"Empty expansion query for query={query_id} entity={entity_id}")
            return []

        if exp.use_pseudo_document_index:
            return self.index.rescore_within_pool(doc.passages, query, exp.take_k_docs)

        hits = self.index.search(query, exp.take_k_docs)
        return [ScoredPassage(p.id, score) for p, score in hits]

    def _process_query_in_worker(self, query_id: str) -> List[str]:
        try:
            return self.process_query(query_id)
        finally:
            detach = getattr(self.index, "detach_thread", None)
            if detach is not None:
                detach()
