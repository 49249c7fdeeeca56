import json
import os
import tempfile
import unittest

from entity_support.retrieval.scoring import FeatureMode
from entity_support.utils.config import (
    PRESETS,
    ExperimentConfig,
    ExpansionSettings,
    Strategy,
    get_preset,
    load_config,
)


class TestPresets(unittest.TestCase):
    def test_all_presets_are_valid(self):
        self.assertEqual(
            set(PRESETS),
            {
                "ECN", "ECDTerms", "ECDNames", "ECNRel", "ECNWeighted", "QEECDTerms", "QEECDEntities",
                "SalECDEntScores", "SalSPPsgScores", "ECDRetScore", "QERelECDEntities", "Experiment4",
            },
        )
        for name, config in PRESETS.items():
            self.assertEqual(config.run_tag, name)
            config.validate()

    def test_get_preset_returns_a_copy(self):
        config = get_preset("qeecdentities")
        config.expansion.take_k_terms = 1
        self.assertEqual(PRESETS["QEECDEntities"].expansion.take_k_terms, 20)

    def test_unknown_preset(self):
        with self.assertRaises(ValueError):
            get_preset("nope")

    def test_preset_semantics(self):
        self.assertEqual(get_preset("ECDTerms").strategy, Strategy.RETRIEVAL_WEIGHTED)
        self.assertFalse(get_preset("ECNRel").exclude_target_entity)
        self.assertTrue(get_preset("ECDNames").with_anchors)
        self.assertTrue(get_preset("SalECDEntScores").use_entity_prior)
        self.assertTrue(get_preset("QEECDTerms").uses_expansion)

    def test_expansion_presets_weight_terms_by_retrieval_score(self):
        self.assertEqual(get_preset("QEECDTerms").strategy, Strategy.RETRIEVAL_WEIGHTED)
        self.assertEqual(get_preset("QEECDTerms").feature_mode, FeatureMode.TERMS)

    def test_passage_keyed_presets(self):
        self.assertEqual(get_preset("ECDRetScore").strategy, Strategy.PSEUDO_DOCUMENT_RETRIEVAL)
        self.assertTrue(get_preset("SalSPPsgScores").use_passage_prior)
        self.assertFalse(get_preset("SalSPPsgScores").use_entity_prior)
        for name in ("ECDRetScore", "SalSPPsgScores"):
            self.assertEqual(get_preset(name).feature_mode, FeatureMode.PASSAGES)

    def test_relatedness_presets(self):
        self.assertEqual(get_preset("Experiment4").relatedness_candidates, "passages")
        self.assertEqual(get_preset("ECNRel").relatedness_candidates, "pseudo_document")
        qe = get_preset("QERelECDEntities")
        self.assertEqual(qe.strategy, Strategy.RELATEDNESS)
        self.assertTrue(qe.uses_expansion)


class TestFromDict(unittest.TestCase):
    def test_overrides_on_preset(self):
        config = ExperimentConfig.from_dict({"preset": "QEECDEntities", "expansion": {"take_k_terms": 5}})
        self.assertEqual(config.expansion.take_k_terms, 5)
        self.assertEqual(config.expansion.take_k_docs, 100)
        self.assertEqual(config.run_tag, "QEECDEntities")

    def test_renamed_preset_gets_new_run_tag(self):
        config = ExperimentConfig.from_dict({"preset": "ECN", "name": "ECN-top20", "take_k_passages": 20})
        self.assertEqual(config.run_tag, "ECN-top20")
        self.assertEqual(config.take_k_passages, 20)

    def test_plain_config(self):
        config = ExperimentConfig.from_dict({
            "name": "custom",
            "strategy": "RELATEDNESS",
            "feature_mode": "entities",
            "expansion": {"omit_query_terms": True},
        })
        self.assertEqual(config.strategy, Strategy.RELATEDNESS)
        self.assertEqual(config.feature_mode, FeatureMode.ENTITIES)
        self.assertIsInstance(config.expansion, ExpansionSettings)
        self.assertTrue(config.expansion.omit_query_terms)

    def test_unknown_key(self):
        with self.assertRaises(ValueError):
            ExperimentConfig.from_dict({"preset": "ECN", "colour": "blue"})

    def test_invalid_combinations(self):
        with self.assertRaises(ValueError):
            ExperimentConfig(name="x", strategy=Strategy.SALIENCE, feature_mode=FeatureMode.ENTITIES)
        with self.assertRaises(ValueError):
            ExperimentConfig(name="x", strategy=Strategy.FREQUENCY, feature_mode=FeatureMode.PASSAGES)
        with self.assertRaises(ValueError):
            ExperimentConfig(name="x", strategy=Strategy.RELATEDNESS, feature_mode=FeatureMode.TERMS)
        with self.assertRaises(ValueError):
            ExperimentConfig(name="x", strategy=Strategy.RETRIEVAL_WEIGHTED, feature_mode=FeatureMode.ANCHORS)
        with self.assertRaises(ValueError):
            ExperimentConfig(name="x", strategy=Strategy.PSEUDO_DOCUMENT_RETRIEVAL, feature_mode=FeatureMode.ENTITIES)

    def test_priors_need_passage_keyed_strategy(self):
        with self.assertRaises(ValueError):
            ExperimentConfig(name="x", use_passage_prior=True)
        with self.assertRaises(ValueError):
            ExperimentConfig.from_dict({"preset": "ECN", "use_entity_prior": True})
        config = ExperimentConfig.from_dict({"preset": "ECDRetScore", "use_passage_prior": True})
        self.assertTrue(config.use_passage_prior)

    def test_relatedness_candidates(self):
        config = ExperimentConfig.from_dict({"preset": "Experiment4", "relatedness_candidates": "entities"})
        self.assertEqual(config.relatedness_candidates, "entities")
        with self.assertRaises(ValueError):
            ExperimentConfig.from_dict({"preset": "Experiment4", "relatedness_candidates": "everything"})
        with self.assertRaises(ValueError):
            ExperimentConfig.from_dict({"preset": "ECN", "relatedness_candidates": "passages"})

    def test_round_trip_through_dict(self):
        config = get_preset("QEECDTerms")
        self.assertEqual(ExperimentConfig.from_dict(config.to_dict()), config)


class TestLoadConfig(unittest.TestCase):
    def test_json_file_over_preset(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "config.json")
            with open(path, 'w') as f:
                json.dump({"relatedness_measure": "jaccard"}, f)
            config = load_config(path=path, preset="ECNRel")
        self.assertEqual(config.relatedness_measure, "jaccard")
        self.assertEqual(config.strategy, Strategy.RELATEDNESS)

    def test_nothing_given(self):
        with self.assertRaises(ValueError):
            load_config()


if __name__ == '__main__':
    unittest.main()
