# entity_support/utils/config.py

"""
Experiment configuration.

Every historical support-passage experiment is one ExperimentConfig:
a weighting Strategy, a FeatureMode, a few data-source switches and,
for query-expansion runs, ExpansionSettings.

    config = get_preset("QEECDEntities")
    config = load_config(preset="ECN", path="overrides.json")
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields, replace
from enum import Enum
from typing import Any, Dict, Optional

from entity_support.retrieval.scoring import FeatureMode

logger = logging.getLogger(__name__)


class Strategy(str, Enum):
    FREQUENCY = "frequency"
    RETRIEVAL_WEIGHTED = "retrieval_weighted"
    RELATEDNESS = "relatedness"
    RELATEDNESS_PLUS_FREQUENCY = "relatedness_plus_frequency"
    SALIENCE = "salience"
    PSEUDO_DOCUMENT_RETRIEVAL = "pseudo_document_retrieval"


# Where relatedness candidates come from
RELATEDNESS_CANDIDATES = ("pseudo_document", "passages", "entities")

_PASSAGE_KEYED = (Strategy.SALIENCE, Strategy.PSEUDO_DOCUMENT_RETRIEVAL)
_RELATEDNESS = (Strategy.RELATEDNESS, Strategy.RELATEDNESS_PLUS_FREQUENCY)


def _enum_value(enum_cls, value):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        return enum_cls[str(value).upper()]


@dataclass
class ExpansionSettings:
    """
    Fields:
        take_k_terms: Number of top distribution entries used as expansion features
        take_k_docs: Number of passages retrieved with the expansion query
        omit_query_terms: Leave the base query tokens out of the expansion query
        use_pseudo_document_index: Retrieve from a throwaway index over the
                                   pseudo-document's passages only, instead of
                                   the full passage index
        text_field / entity_field: Target fields of the expansion query
        max_terms: Term budget of the expansion query

    Both retrieval targets use the passage index's analyzer and similarity.
    """
    take_k_terms: int = 20
    take_k_docs: int = 100
    omit_query_terms: bool = False
    use_pseudo_document_index: bool = True
    text_field: str = "text"
    entity_field: Optional[str] = None
    max_terms: int = 64


@dataclass
class ExperimentConfig:
    """
    Fields:
        name: Experiment name, also the default run tag
        strategy: How the weight distribution is built
        feature_mode: Which passage features are looked up in the distribution
        exclude_target_entity: Drop the target entity from the co-occurrence multiset
        restrict_to_retrieved_entities: Only count co-occurring entities that are
                                        in the query's entity ranking
        use_entity_prior: Multiply passage-keyed weights by the normalized
                          entity ranking score of the target
        use_passage_prior: Multiply passage-keyed weights by the normalized
                           retrieval score of each passage
        relevant_entities_only: Only process ranked entities that are also in the
                                entity qrels
        take_k_passages: Size of the candidate passage pool (None = all ranked)
        relatedness_measure: WAT relatedness measure
        relatedness_candidates: Entities weighted by relatedness:
                                pseudo_document (co-occurring entities),
                                passages (every entity of the candidate pool) or
                                entities (the query's target entities)
        expansion: Query-expansion settings, None for direct scoring runs
    """
    name: str
    strategy: Strategy = Strategy.FREQUENCY
    feature_mode: FeatureMode = FeatureMode.ENTITIES
    run_tag: Optional[str] = None
    exclude_target_entity: bool = True
    restrict_to_retrieved_entities: bool = False
    use_entity_prior: bool = False
    use_passage_prior: bool = False
    relevant_entities_only: bool = True
    take_k_passages: Optional[int] = None
    relatedness_measure: str = "mw"
    relatedness_candidates: str = "pseudo_document"
    expansion: Optional[ExpansionSettings] = None

    def __post_init__(self):
        self.strategy = _enum_value(Strategy, self.strategy)
        self.feature_mode = _enum_value(FeatureMode, self.feature_mode)
        if isinstance(self.expansion, dict):
            self.expansion = ExpansionSettings(**self.expansion)
        if not self.run_tag:
            self.run_tag = self.name
        self.validate()

    @property
    def uses_expansion(self) -> bool:
        return self.expansion is not None

    @property
    def with_anchors(self) -> bool:
        return self.feature_mode == FeatureMode.ANCHORS

    def validate(self) -> None:
        mode, strategy = self.feature_mode, self.strategy
        if strategy in _PASSAGE_KEYED and mode != FeatureMode.PASSAGES:
            raise ValueError(f"{strategy.value} distributions are keyed by passage: use feature mode 'passages'")
        if mode == FeatureMode.PASSAGES and strategy not in _PASSAGE_KEYED:
            raise ValueError("Feature mode 'passages' only applies to passage-keyed strategies")
        if (self.use_entity_prior or self.use_passage_prior) and mode != FeatureMode.PASSAGES:
            raise ValueError("Entity and passage priors only apply to passage-keyed strategies")
        if strategy == Strategy.RETRIEVAL_WEIGHTED and mode not in (FeatureMode.TERMS, FeatureMode.ENTITIES):
            raise ValueError("Retrieval-weighted distributions need terms or entities")
        if strategy in _RELATEDNESS and mode != FeatureMode.ENTITIES:
            raise ValueError(f"{strategy.value} distributions are over entities")
        if self.relatedness_candidates not in RELATEDNESS_CANDIDATES:
            raise ValueError(f"Unknown relatedness candidates: {self.relatedness_candidates}")
        if self.relatedness_candidates != "pseudo_document" and strategy not in _RELATEDNESS:
            raise ValueError("relatedness_candidates only applies to relatedness strategies")
        if self.expansion is not None and mode == FeatureMode.PASSAGES:
            raise ValueError("Passage-keyed distributions cannot be turned into expansion queries")
        if self.take_k_passages is not None and self.take_k_passages <= 0:
            raise ValueError("take_k_passages must be positive")

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["strategy"] = self.strategy.value
        d["feature_mode"] = self.feature_mode.value
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExperimentConfig":
        """
        Build a config from a dict.

        A "preset" key starts from that preset and applies the other keys
        as overrides. Unknown keys raise ValueError.
        """
        data = dict(data)
        preset = data.pop("preset", None)
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")

        if preset is None:
            if "name" not in data:
                raise ValueError("Config needs a 'name' or a 'preset'")
            return cls(**data)

        base = get_preset(preset)
        if isinstance(data.get("expansion"), dict) and base.expansion is not None:
            data["expansion"] = replace(base.expansion, **data["expansion"])
        if "name" in data and "run_tag" not in data:
            data["run_tag"] = data["name"]
        return replace(base, **data)


PRESETS: Dict[str, ExperimentConfig] = {
    # Frequency of co-occurring (retrieved) entities
    "ECN": ExperimentConfig(
        name="ECN",
        strategy=Strategy.FREQUENCY,
        feature_mode=FeatureMode.ENTITIES,
        restrict_to_retrieved_entities=True,
    ),
    # Terms weighted by the retrieval score of their passage
    "ECDTerms": ExperimentConfig(
        name="ECDTerms",
        strategy=Strategy.RETRIEVAL_WEIGHTED,
        feature_mode=FeatureMode.TERMS,
    ),
    # Frequency of anchor texts, counted as substrings of passage text
    "ECDNames": ExperimentConfig(
        name="ECDNames",
        strategy=Strategy.FREQUENCY,
        feature_mode=FeatureMode.ANCHORS,
        restrict_to_retrieved_entities=True,
    ),
    "ECNRel": ExperimentConfig(
        name="ECNRel",
        strategy=Strategy.RELATEDNESS,
        feature_mode=FeatureMode.ENTITIES,
        exclude_target_entity=False,
    ),
    "ECNWeighted": ExperimentConfig(
        name="ECNWeighted",
        strategy=Strategy.RELATEDNESS_PLUS_FREQUENCY,
        feature_mode=FeatureMode.ENTITIES,
        exclude_target_entity=False,
    ),
    # Retrieval-weighted terms as expansion features
    "QEECDTerms": ExperimentConfig(
        name="QEECDTerms",
        strategy=Strategy.RETRIEVAL_WEIGHTED,
        feature_mode=FeatureMode.TERMS,
        expansion=ExpansionSettings(take_k_terms=20, take_k_docs=100),
    ),
    "QEECDEntities": ExperimentConfig(
        name="QEECDEntities",
        strategy=Strategy.FREQUENCY,
        feature_mode=FeatureMode.ENTITIES,
        restrict_to_retrieved_entities=True,
        expansion=ExpansionSettings(take_k_terms=20, take_k_docs=100),
    ),
    # Normalized entity score x normalized salience of the entity in the passage
    "SalECDEntScores": ExperimentConfig(
        name="SalECDEntScores",
        strategy=Strategy.SALIENCE,
        feature_mode=FeatureMode.PASSAGES,
        use_entity_prior=True,
    ),
    # Normalized passage retrieval score x normalized salience
    "SalSPPsgScores": ExperimentConfig(
        name="SalSPPsgScores",
        strategy=Strategy.SALIENCE,
        feature_mode=FeatureMode.PASSAGES,
        use_passage_prior=True,
    ),
    # Sum of the retrieval scores of the pseudo-documents containing the passage
    "ECDRetScore": ExperimentConfig(
        name="ECDRetScore",
        strategy=Strategy.PSEUDO_DOCUMENT_RETRIEVAL,
        feature_mode=FeatureMode.PASSAGES,
    ),
    "QERelECDEntities": ExperimentConfig(
        name="QERelECDEntities",
        strategy=Strategy.RELATEDNESS,
        feature_mode=FeatureMode.ENTITIES,
        exclude_target_entity=False,
        expansion=ExpansionSettings(take_k_terms=20, take_k_docs=100),
    ),
    # Relatedness to every entity of the candidate passages
    "Experiment4": ExperimentConfig(
        name="Experiment4",
        strategy=Strategy.RELATEDNESS,
        feature_mode=FeatureMode.ENTITIES,
        exclude_target_entity=False,
        relatedness_candidates="passages",
    ),
}


def get_preset(name: str) -> ExperimentConfig:
    """Copy of a named preset (case-insensitive)."""
    for key, config in PRESETS.items():
        if key.lower() == name.lower():
            expansion = replace(config.expansion) if config.expansion else None
            return replace(config, expansion=expansion)
    raise ValueError(f"Unknown preset: {name}. Available: {', '.join(PRESETS)}")


def load_config(path: Optional[str] = None, preset: Optional[str] = None) -> ExperimentConfig:
    """
    Resolve the experiment configuration of a run.

    Args:
        path: Optional JSON file of config keys (may contain "preset").
        preset: Preset name; keys from `path` override it.
    """
    data: Dict[str, Any] = {}
    if path:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    if preset:
        data.setdefault("preset", preset)
    if not data:
        raise ValueError("Either a preset or a config file is required")

    config = ExperimentConfig.from_dict(data)
    logger.info(f"Experiment config: {config.to_dict()}")
    return config
