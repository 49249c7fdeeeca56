# entity_support/retrieval/passage_index.py

"""
Passage index interface and its Lucene implementation.

Any object with the PassageIndex methods can be handed to the pipeline:
LucenePassageIndex for a real collection, MemoryPassageIndex for small pools
and tests. rescore_within_pool builds a throwaway index of the same kind
(same analyzer, same similarity) over a handful of passages.
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Protocol, Tuple

from entity_support.expansion.data_types import ContextEntity, ExpansionQuery, Passage, ScoredPassage
from entity_support.utils.errors import ExternalServiceError, IndexUnavailableError
from entity_support.utils.lucene_utils import get_lucene_classes
from entity_support.utils.text_utils import entity_surface_text

logger = logging.getLogger(__name__)


class PassageIndex(Protocol):
    def get_by_id(self, passage_id: str) -> Optional[Passage]:
        ...

    def search(self, query: ExpansionQuery, top_k: int) -> List[Tuple[Passage, float]]:
        ...

    def field_term_search(self, field: str, value: str) -> Optional[Passage]:
        ...

    def analyze(self, text: str) -> List[str]:
        ...

    def rescore_within_pool(
        self,
        passages: Iterable[Passage],
        query: ExpansionQuery,
        top_k: int,
    ) -> List[ScoredPassage]:
        ...


def parse_entity_links(raw: Optional[str]) -> Tuple[ContextEntity, ...]:
    """
    Parse a stored entity-links field.

    One link per line, "<Title with spaces>_<anchor text>":

        Barack Obama_Obama
        White House_the White House
    """
    if not raw:
        return ()
    links = []
    for line in raw.split("\n"):
        title, sep, anchor = line.partition("_")
        if not sep or not title:
            continue
        links.append(ContextEntity(entity_id=title.strip().replace(" ", "_"), anchor_text=anchor))
    return tuple(links)


class LucenePassageIndex:
    """
    Read-only passage index backed by a Lucene directory (via pyjnius).

    Typical use:
        initialize_lucene("lucene_jars")
        index = LucenePassageIndex("data/paragraph_index", id_field="Id", text_field="Text")
        passage = index.get_by_id("a1b2c3")
    """

    def __init__(
        self,
        index_dir: str,
        id_field: str = "id",
        text_field: str = "text",
        entity_field: str = "entity",
        entity_delimiter: str = " ",
        links_field: Optional[str] = None,
        analyzer: str = "StandardAnalyzer",
        similarity: str = "BM25Similarity",
        lmjm_lambda: Optional[float] = None,
    ):
        """
        Args:
            index_dir: Path to the Lucene index.
            id_field: Exact-match (StringField) passage id field.
            text_field: Stored passage text field.
            entity_field: Stored field with the passage's entity ids.
            entity_delimiter: Separator of entity ids inside entity_field.
            links_field: Optional stored field of "Title_anchor" lines.
            analyzer: StandardAnalyzer or EnglishAnalyzer.
            similarity: BM25Similarity, LMDirichletSimilarity,
                        LMJelinekMercerSimilarity or ClassicSimilarity.
            lmjm_lambda: Smoothing for LMJelinekMercerSimilarity.

        Raises:
            IndexUnavailableError: The index directory cannot be opened.
        """
        self.index_dir = str(index_dir)
        self.id_field = id_field
        self.text_field = text_field
        self.entity_field = entity_field
        self.entity_delimiter = entity_delimiter
        self.links_field = links_field

        try:
            classes = get_lucene_classes()
            self.JBooleanQueryBuilder = classes['BooleanQueryBuilder']
            self.JBooleanClauseOccur = classes['BooleanClauseOccur']
            self.JBoostQuery = classes['BoostQuery']
            self.JTerm = classes['Term']
            self.JTermQuery = classes['TermQuery']
            self.JCharTermAttribute = classes['CharTermAttribute']
            self.JDirectoryReader = classes['DirectoryReader']
            self.JIndexSearcher = classes['IndexSearcher']
            self.JByteBuffersDirectory = classes['ByteBuffersDirectory']
            self.JIndexWriter = classes['IndexWriter']
            self.JIndexWriterConfig = classes['IndexWriterConfig']
            self.JDocument = classes['Document']
            self.JStringField = classes['StringField']
            self.JTextField = classes['TextField']
            self.JFieldStore = classes['FieldStore']

            self.reader = self.JDirectoryReader.open(
                classes['FSDirectory'].open(classes['JavaPaths'].get(self.index_dir))
            )
            self.searcher = self._open_searcher(self.reader)
        except Exception as e:
            raise IndexUnavailableError(f"Cannot open Lucene index at {self.index_dir}: {e}") from e

        self.similarity = self._make_similarity(classes, similarity, lmjm_lambda)
        self.searcher.setSimilarity(self.similarity)

        if analyzer == "StandardAnalyzer":
            self.analyzer = classes['StandardAnalyzer']()
        elif analyzer == "EnglishAnalyzer":
            self.analyzer = classes['EnglishAnalyzer']()
        else:
            raise ValueError(f"Unsupported analyzer: {analyzer}")

        logger.info(
            f"Opened LucenePassageIndex(index={self.index_dir}, docs={self.reader.numDocs()}, "
            f"similarity={similarity}, analyzer={analyzer})"
        )

    @staticmethod
    def _make_similarity(classes, similarity: str, lmjm_lambda: Optional[float]):
        if similarity == "BM25Similarity":
            return classes['BM25Similarity']()
        if similarity == "LMDirichletSimilarity":
            return classes['LMDirichletSimilarity']()
        if similarity == "LMJelinekMercerSimilarity":
            if lmjm_lambda is None:
                raise ValueError("LMJelinekMercerSimilarity requires lmjm_lambda")
            return classes['LMJelinekMercerSimilarity'](float(lmjm_lambda))
        if similarity == "ClassicSimilarity":
            return classes['ClassicSimilarity']()
        raise ValueError(f"Unsupported similarity: {similarity}")

    # -------------------------------------------------------------------------
    # PassageIndex API
    # -------------------------------------------------------------------------

    def get_by_id(self, passage_id: str) -> Optional[Passage]:
        return self.field_term_search(self.id_field, passage_id)

    def field_term_search(self, field: str, value: str) -> Optional[Passage]:
        """First document whose `field` holds the exact term `value`."""
        try:
            top_docs = self.searcher.search(self.JTermQuery(self.JTerm(field, value)), 1)
            score_docs = top_docs.scoreDocs
            if len(score_docs) == 0:
                return None
            return self._to_passage(score_docs[0].doc)
        except Exception as e:
            raise ExternalServiceError(f"Lucene lookup {field}:{value} failed: {e}") from e

    def search(self, query: ExpansionQuery, top_k: int) -> List[Tuple[Passage, float]]:
        """Run an expansion query as a BooleanQuery of boosted SHOULD term clauses."""
        if query.is_empty or top_k <= 0:
            return []
        try:
            top_docs = self.searcher.search(self._to_boolean_query(query), top_k)
            return [(self._to_passage(sd.doc), float(sd.score)) for sd in top_docs.scoreDocs]
        except Exception as e:
            raise ExternalServiceError(f"Lucene search with {len(query)} clauses failed: {e}") from e

    def rescore_within_pool(
        self,
        passages: Iterable[Passage],
        query: ExpansionQuery,
        top_k: int,
    ) -> List[ScoredPassage]:
        """
        Run `query` against a throwaway in-memory Lucene index over `passages`.

        The index is written with this index's analyzer and searched with its
        similarity, then closed. Nothing is shared between calls.

        Returns:
            Up to top_k ScoredPassage, descending score. [] for no passages.
        """
        passages = list(passages)
        if not passages or query.is_empty or top_k <= 0:
            return []
        try:
            directory = self.JByteBuffersDirectory()
            config = self.JIndexWriterConfig(self.analyzer)
            config.setSimilarity(self.similarity)
            writer = self.JIndexWriter(directory, config)
            try:
                for passage in passages:
                    writer.addDocument(self._to_document(passage))
                writer.commit()
            finally:
                writer.close()

            reader = self.JDirectoryReader.open(directory)
            try:
                searcher = self._open_searcher(reader)
                searcher.setSimilarity(self.similarity)
                top_docs = searcher.search(self._to_boolean_query(query), top_k)
                stored = searcher.storedFields()
                return [
                    ScoredPassage(stored.document(sd.doc).get(self.id_field), float(sd.score))
                    for sd in top_docs.scoreDocs
                ]
            finally:
                reader.close()
                directory.close()
        except Exception as e:
            raise ExternalServiceError(
                f"Ephemeral Lucene search over {len(passages)} passages failed: {e}"
            ) from e

    def analyze(self, text: str) -> List[str]:
        """Tokenize with the index analyzer (same tokens the text field was indexed with)."""
        if not text:
            return []
        token_stream = self.analyzer.tokenStream(self.text_field, text)
        try:
            token_stream.reset()
            term_attr = token_stream.getAttribute(self.JCharTermAttribute)
            terms = []
            while token_stream.incrementToken():
                terms.append(term_attr.toString())
            token_stream.end()
        finally:
            token_stream.close()
        return terms

    def detach_thread(self) -> None:
        """Detach the calling worker thread from the JVM."""
        from jnius import detach
        detach()

    def close(self) -> None:
        self.reader.close()

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _open_searcher(self, reader):
        from jnius import cast
        return self.JIndexSearcher(cast('org.apache.lucene.index.IndexReader', reader))

    def _to_boolean_query(self, query: ExpansionQuery):
        builder = self.JBooleanQueryBuilder()
        for clause in query:
            term_query = self.JTermQuery(self.JTerm(clause.field, clause.term))
            builder.add(
                self.JBoostQuery(term_query, float(clause.weight)),
                self.JBooleanClauseOccur.SHOULD,
            )
        return builder.build()

    def _to_document(self, passage: Passage):
        # Entity ids are indexed as surface words, the form expansion features take
        doc = self.JDocument()
        doc.add(self.JStringField(self.id_field, passage.id, self.JFieldStore.YES))
        doc.add(self.JTextField(self.text_field, passage.text or "", self.JFieldStore.NO))
        entity_text = " ".join(entity_surface_text(e) for e in passage.entities)
        doc.add(self.JTextField(self.entity_field, entity_text, self.JFieldStore.NO))
        return doc

    def _to_passage(self, doc_id: int) -> Passage:
        doc = self.searcher.storedFields().document(doc_id)
        raw_entities = doc.get(self.entity_field) or ""
        entities = tuple(e.strip() for e in raw_entities.split(self.entity_delimiter) if e.strip())
        links = parse_entity_links(doc.get(self.links_field)) if self.links_field else ()
        return Passage(
            id=doc.get(self.id_field),
            text=doc.get(self.text_field) or "",
            entities=entities,
            entity_links=links,
        )
