import unittest
from unittest.mock import MagicMock

from entity_support.expansion import distributions
from entity_support.utils.errors import ExternalServiceError


class TestFromFrequency(unittest.TestCase):
    def test_co_occurrence_frequency(self):
        dist = distributions.from_frequency(["E2", "E2", "E3", "E2"])
        self.assertEqual(dist, {"E2": 0.75, "E3": 0.25})

    def test_ceiling_rounding(self):
        dist = distributions.from_frequency(["a", "b", "b", "c", "c", "c"])
        self.assertEqual(dist, {"a": 0.1667, "b": 0.3334, "c": 0.5})

    def test_exact_decimals_are_not_bumped(self):
        self.assertEqual(distributions.from_frequency(list("abcde")), {k: 0.2 for k in "abcde"})
        self.assertEqual(distributions.from_frequency(list("abcdefghij")), {k: 0.1 for k in "abcdefghij"})
        self.assertEqual(distributions.from_frequency(["a"] + ["b"] * 19)["a"], 0.05)

    def test_round_ceiling(self):
        self.assertEqual(distributions.round_ceiling(0.1 + 0.2), 0.3)
        self.assertEqual(distributions.round_ceiling(0.3334 + 0.6667), 1.0001)
        self.assertEqual(distributions.round_ceiling(2 / 3), 0.6667)
        self.assertEqual(distributions.round_ceiling(0.00001), 0.0001)

    def test_weights_sum_to_one_within_rounding(self):
        samples = [
            ["a", "b", "c"],
            ["x"] * 7 + ["y"] * 3 + ["z"],
            [str(i % 13) for i in range(101)],
        ]
        for items in samples:
            dist = distributions.from_frequency(items)
            self.assertAlmostEqual(sum(dist.values()), 1.0, delta=len(dist) * 0.0001)
            for w in dist.values():
                self.assertGreaterEqual(w, 0.0)
                self.assertLessEqual(w, 1.0)

    def test_empty(self):
        self.assertEqual(distributions.from_frequency([]), {})


class TestRetrievalWeighted(unittest.TestCase):
    def test_occurrences_weighted_by_passage_score(self):
        dist = distributions.from_retrieval_weighted_frequency(
            {"p1": 3.0, "p2": 1.0},
            {"p1": ["a", "b"], "p2": ["a"]},
        )
        self.assertAlmostEqual(dist["a"], 1.0)
        self.assertAlmostEqual(dist["b"], 0.75)

    def test_repeated_feature_counts_every_occurrence(self):
        dist = distributions.from_retrieval_weighted_frequency({"p1": 1.0, "p2": 1.0}, {"p1": ["a", "a"]})
        self.assertAlmostEqual(dist["a"], 1.0)

    def test_passages_without_score_are_ignored(self):
        dist = distributions.from_retrieval_weighted_frequency({"p1": 2.0}, {"p1": ["a"], "p9": ["z"]})
        self.assertEqual(set(dist), {"a"})

    def test_empty_and_zero_sum(self):
        self.assertEqual(distributions.from_retrieval_weighted_frequency({}, {}), {})
        self.assertEqual(distributions.from_retrieval_weighted_frequency({"p1": 0.0}, {"p1": ["a"]}), {})


class TestFromRelatedness(unittest.TestCase):
    def test_target_gets_full_weight(self):
        rel = MagicMock(side_effect=lambda a, b: 0.4 if (a, b) == ("Dog", "Cat") else 0.0)
        dist = distributions.from_relatedness("enwiki:Dog", {"enwiki:Dog", "enwiki:Cat"}, rel)
        self.assertEqual(dist, {"enwiki:Dog": 1.0, "enwiki:Cat": 0.4})
        rel.assert_called_once_with("Dog", "Cat")

    def test_target_matched_ignoring_case(self):
        rel = MagicMock(return_value=0.3)
        dist = distributions.from_relatedness("enwiki:Barack%20Obama", ["BARACK_OBAMA"], rel)
        self.assertEqual(dist, {"BARACK_OBAMA": 1.0})
        rel.assert_not_called()

    def test_unrelated_and_malformed_candidates_dropped(self):
        rel = MagicMock(return_value=0.0)
        dist = distributions.from_relatedness("enwiki:Dog", ["enwiki:Cat", "enwiki:_Bad"], rel)
        self.assertEqual(dist, {})
        rel.assert_called_once_with("Dog", "Cat")

    def test_malformed_target(self):
        rel = MagicMock(return_value=1.0)
        self.assertEqual(distributions.from_relatedness("enwiki:", ["enwiki:Cat"], rel), {})
        rel.assert_not_called()


class TestFromSalience(unittest.TestCase):
    def setUp(self):
        self.annotations = {
            "p1": {"Barack_Obama": 0.8, "Chicago": 0.1},
            "p2": {"Chicago": 0.5},
            "p3": {"barack_obama": 0.3},
        }

    def test_salience_per_passage(self):
        dist = distributions.from_salience(
            "enwiki:Barack%20Obama", ["p1", "p2", "p3", "p4"], self.annotations.get
        )
        self.assertEqual(dist, {"p1": 0.8, "p3": 0.3})

    def test_failed_lookup_skips_passage(self):
        def salience(pid):
            if pid == "p2":
                raise ExternalServiceError("timeout")
            return self.annotations.get(pid)

        dist = distributions.from_salience("Chicago", ["p1", "p2"], salience)
        self.assertEqual(dist, {"p1": 0.1})


class TestHelpers(unittest.TestCase):
    def test_from_counts(self):
        self.assertEqual(distributions.from_counts(["a", "a", "b"]), {"a": 2.0, "b": 1.0})

    def test_normalize(self):
        self.assertEqual(distributions.normalize({"a": 1.0, "b": 3.0}), {"a": 0.25, "b": 0.75})
        self.assertEqual(distributions.normalize({}), {})
        self.assertEqual(distributions.normalize({"a": 0.0}), {})

    def test_combine(self):
        primary = {"a": 2.0, "b": 1.0}
        secondary = {"a": 0.5, "c": 9.0}
        self.assertEqual(distributions.combine(primary, secondary, "sum"), {"a": 2.5, "b": 1.0})
        self.assertEqual(distributions.combine(primary, secondary, "product"), {"a": 1.0})
        with self.assertRaises(ValueError):
            distributions.combine(primary, secondary, "max")

    def test_top_k(self):
        dist = {"b": 0.5, "a": 0.5, "c": 0.9, "d": 0.1}
        self.assertEqual(distributions.top_k(dist, 3), [("c", 0.9), ("a", 0.5), ("b", 0.5)])
        self.assertEqual(len(distributions.top_k(dist)), 4)
        self.assertEqual(distributions.top_k(dist, 0), [])


if __name__ == '__main__':
    unittest.main()
