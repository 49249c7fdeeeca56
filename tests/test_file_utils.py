import json
import os
import tempfile
import unittest

from entity_support.expansion.data_types import ScoredPassage
from entity_support.utils.errors import MalformedInputError
from entity_support.utils.file_utils import (
    format_run_lines,
    load_qrels,
    load_queries,
    load_rankings,
    load_relatedness_cache,
    load_salience_cache,
    load_scored_rankings,
    load_stopwords,
    save_json,
    save_run,
)


class FileTestCase(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

    def write(self, name, content):
        path = os.path.join(self.tmp.name, name)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(content)
        return path


class TestRankingStore(FileTestCase):
    def test_load_rankings_keeps_order_and_skips_bad_lines(self):
        path = self.write("run.txt", "\n".join([
            "q1 Q0 p2 1 9.5 bm25",
            "q1 Q0 p1 2 8.0 bm25",
            "broken",
            "q1 Q0 p2 3 7.0 bm25",
            "",
            "q2 Q0 p7 1 1.0 bm25",
        ]))
        with self.assertLogs("entity_support.utils.file_utils", level="WARNING"):
            rankings = load_rankings(path)
        self.assertEqual(rankings, {"q1": ["p2", "p1"], "q2": ["p7"]})

    def test_load_scored_rankings(self):
        path = self.write("run.txt", "q1 Q0 p2 1 9.5 bm25\nq1 Q0 p1 2 oops bm25\nq1 Q0 p3 3 1.25 bm25\n")
        rankings = load_scored_rankings(path)
        self.assertEqual(rankings, {"q1": {"p2": 9.5, "p3": 1.25}})
        self.assertEqual(list(rankings["q1"]), ["p2", "p3"])

    def test_load_qrels(self):
        path = self.write("qrels.txt", "q1 0 e1 1\nq1 0 e2 0\nq1 0 e3 2\nq2 0 e4 1\n")
        self.assertEqual(load_qrels(path), {"q1": ["e1", "e3"], "q2": ["e4"]})
        self.assertEqual(load_qrels(path, min_relevance=2), {"q1": ["e3"]})

    def test_load_queries_and_stopwords(self):
        queries = self.write("queries.tsv", "q1\tmachine learning\nq2\tchicago libraries\n")
        self.assertEqual(load_queries(queries), {"q1": "machine learning", "q2": "chicago libraries"})
        stopwords = self.write("stop.txt", "The\nand\n\n")
        self.assertEqual(load_stopwords(stopwords), frozenset({"the", "and"}))


class TestRunWriter(FileTestCase):
    def test_format_run_lines(self):
        scored = [ScoredPassage("p2", 0.5), ScoredPassage("p1", 1.23456), ScoredPassage("p3", 0.0)]
        self.assertEqual(
            format_run_lines("q1", "enwiki:Dog", scored, "ECN"),
            [
                "q1+enwiki:Dog Q0 p1 1 1.2346 ECN",
                "q1+enwiki:Dog Q0 p2 2 0.5000 ECN",
            ],
        )

    def test_scores_are_rounded_up(self):
        scored = [ScoredPassage("p1", 0.12341), ScoredPassage("p2", 0.1), ScoredPassage("p3", 0.3334 + 0.6667)]
        self.assertEqual(
            format_run_lines("q1", "e1", scored, "ECN"),
            [
                "q1+e1 Q0 p3 1 1.0001 ECN",
                "q1+e1 Q0 p1 2 0.1235 ECN",
                "q1+e1 Q0 p2 3 0.1000 ECN",
            ],
        )

    def test_no_positive_scores(self):
        self.assertEqual(format_run_lines("q1", "e1", [ScoredPassage("p1", -1.0)], "ECN"), [])

    def test_save_run(self):
        path = os.path.join(self.tmp.name, "out", "run.txt")
        n = save_run(["a Q0 p1 1 1.0000 T", "a Q0 p2 2 0.5000 T"], path)
        self.assertEqual(n, 2)
        with open(path) as f:
            self.assertEqual(f.read().splitlines(), ["a Q0 p1 1 1.0000 T", "a Q0 p2 2 0.5000 T"])


class TestCaches(FileTestCase):
    def test_relatedness_cache_json(self):
        path = self.write("rel.json", json.dumps({"Dog": {"Cat": 0.4}}))
        self.assertEqual(load_relatedness_cache(path), {"Dog": {"Cat": 0.4}})

    def test_relatedness_cache_tsv(self):
        path = self.write("rel.tsv", "Dog\tCat\t0.4\nDog\tWolf\t0.9\nbad line\n")
        self.assertEqual(load_relatedness_cache(path), {"Dog": {"Cat": 0.4, "Wolf": 0.9}})

    def test_salience_cache(self):
        path = os.path.join(self.tmp.name, "sal.json")
        save_json({"p1": {"Barack_Obama": 0.8}}, path)
        self.assertEqual(load_salience_cache(path), {"p1": {"Barack_Obama": 0.8}})

    def test_invalid_json_cache(self):
        path = self.write("bad.json", "{not json")
        with self.assertRaises(MalformedInputError):
            load_salience_cache(path)


if __name__ == '__main__':
    unittest.main()
