import unittest

from entity_support.expansion.data_types import ExpansionClause, ExpansionQuery, Passage
from entity_support.retrieval.memory_index import MemoryPassageIndex, rescore_within_pool
from entity_support.utils.text_utils import default_analyzer


def clauses(*triples):
    return ExpansionQuery(tuple(ExpansionClause(f, t, w) for f, t, w in triples))


class TestMemoryPassageIndex(unittest.TestCase):
    def setUp(self):
        self.passages = [
            Passage("p1", "machine learning with neural networks", ("Machine_learning",)),
            Passage("p2", "cooking recipes for pasta", ("Pasta",)),
            Passage("p3", "deep learning and neural nets", ("Deep_learning", "Barack_Obama")),
        ]
        self.index = MemoryPassageIndex(self.passages)

    def test_bm25_search(self):
        query = clauses(("text", "learning", 1.0), ("text", "neural", 0.5))
        hits = self.index.search(query, 10)
        self.assertEqual([p.id for p, _ in hits], ["p1", "p3"])
        for _, score in hits:
            self.assertGreater(score, 0.0)

    def test_clause_weight_scales_score(self):
        light = self.index.search(clauses(("text", "pasta", 1.0)), 1)[0][1]
        heavy = self.index.search(clauses(("text", "pasta", 2.0)), 1)[0][1]
        self.assertAlmostEqual(heavy, 2 * light)

    def test_top_k(self):
        query = clauses(("text", "learning", 1.0))
        self.assertEqual(len(self.index.search(query, 1)), 1)
        self.assertEqual(self.index.search(query, 0), [])

    def test_entity_field(self):
        hits = self.index.search(clauses(("entity", "obama", 1.0)), 10)
        self.assertEqual([p.id for p, _ in hits], ["p3"])

    def test_unknown_field_or_term(self):
        self.assertEqual(self.index.search(clauses(("title", "learning", 1.0)), 10), [])
        self.assertEqual(self.index.search(clauses(("text", "zebra", 1.0)), 10), [])

    def test_language_models(self):
        query = clauses(("text", "learning", 1.0))
        for index in (
            MemoryPassageIndex(self.passages, similarity="lmds", mu=10.0),
            MemoryPassageIndex(self.passages, similarity="lmjm", lam=0.1),
        ):
            hits = index.search(query, 10)
            self.assertEqual({p.id for p, _ in hits}, {"p1", "p3"})

    def test_unsupported_similarity(self):
        with self.assertRaises(ValueError):
            MemoryPassageIndex(self.passages, similarity="tfidf")

    def test_lookups(self):
        self.assertEqual(self.index.get_by_id("p2").text, "cooking recipes for pasta")
        self.assertIsNone(self.index.get_by_id("p9"))
        self.assertEqual(self.index.field_term_search("id", "p3").id, "p3")
        self.assertEqual(self.index.field_term_search("text", "pasta").id, "p2")
        self.assertEqual(self.index.field_term_search("entity", "Barack Obama").id, "p3")
        self.assertIsNone(self.index.field_term_search("text", "zebra"))
        self.assertEqual(self.index.analyze("Neural Nets"), ["neural", "nets"])


class TestRescoreWithinPool(unittest.TestCase):
    def test_only_pool_documents_are_ranked(self):
        pool = [
            Passage("p1", "obama visited the library"),
            Passage("p3", "obama in chicago"),
        ]
        query = clauses(("text", "obama", 1.0), ("text", "chicago", 0.6667), ("text", "pasta", 5.0))
        results = rescore_within_pool(pool, query, top_k=10)
        self.assertEqual([r.passage_id for r in results], ["p3", "p1"])
        self.assertGreater(results[0].score, results[1].score)

    def test_empty_pool(self):
        self.assertEqual(rescore_within_pool([], clauses(("text", "a", 1.0)), 10), [])

    def test_empty_query(self):
        self.assertEqual(rescore_within_pool([Passage("p1", "a")], ExpansionQuery(), 10), [])

    def test_index_method_reuses_analyzer_and_similarity(self):
        def singular(text):
            return [w[:-1] if w.endswith("s") else w for w in default_analyzer(text)]

        index = MemoryPassageIndex([], analyzer=singular, similarity="lmjm", lam=0.2)
        pool = [Passage("p1", "Public libraries"), Passage("p2", "Opening hours")]
        results = index.rescore_within_pool(pool, clauses(("text", "librarie", 1.0)), 10)
        self.assertEqual([r.passage_id for r in results], ["p1"])
        self.assertEqual(rescore_within_pool(pool, clauses(("text", "librarie", 1.0)), 10), [])

    def test_top_k_limits_results(self):
        pool = [Passage(f"p{i}", "same words here") for i in range(5)]
        results = rescore_within_pool(pool, clauses(("text", "words", 1.0)), top_k=2)
        self.assertEqual(len(results), 2)


if __name__ == '__main__':
    unittest.main()
