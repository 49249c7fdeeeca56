# entity_support/expansion/wat_adapter.py

"""
Relatedness and salience oracles.

    WATRelatednessOracle   WAT title resolution + pairwise relatedness (HTTP)
    SWATSalienceOracle     SWAT salient-entity annotation of a text (HTTP)
    Memoized*Oracle        read-only maps loaded from disk before a run,
                           optionally backed by a live oracle for misses

All oracles are callables so they can be passed straight to
distributions.from_relatedness / from_salience.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, Mapping, Optional, Tuple

import requests

from entity_support.utils.errors import ExternalServiceError
from entity_support.utils.text_utils import process_entity_id

logger = logging.getLogger(__name__)

WAT_TITLE_URL = "https://wat.d4science.org/wat/title"
WAT_RELATEDNESS_URL = "https://wat.d4science.org/wat/relatedness/graph"
SWAT_SALIENCE_URL = "https://swat.d4science.org/salience"

RELATEDNESS_MEASURES = (
    "mw", "jaccard", "lm", "w2v", "conditionalprobability", "barabasialbert", "pmi",
)


def resolve_token(token: Optional[str] = None) -> str:
    """gcube token from the argument or $WAT_GCUBE_TOKEN."""
    token = token or os.environ.get("WAT_GCUBE_TOKEN")
    if not token:
        raise ValueError("A gcube token is required (--wat-token or WAT_GCUBE_TOKEN)")
    return token


def _entity_key(entity: str) -> str:
    return process_entity_id(entity).lower()


# -----------------------------------------------------------------------------
# Relatedness
# -----------------------------------------------------------------------------

class WATRelatednessOracle:
    """
    Entity relatedness from the WAT REST API.

    Titles are resolved to Wikipedia ids with /title, then the pair is sent to
    /relatedness/graph. Titles WAT cannot resolve give relatedness 0.0.

    Typical use:
        wat = WATRelatednessOracle(token, measure="mw")
        wat("Dog", "Cat")  # -> 0.4
    """

    def __init__(
        self,
        token: Optional[str] = None,
        measure: str = "mw",
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
        title_url: str = WAT_TITLE_URL,
        relatedness_url: str = WAT_RELATEDNESS_URL,
    ):
        if measure not in RELATEDNESS_MEASURES:
            raise ValueError(f"Unsupported relatedness measure: {measure}")
        self.token = resolve_token(token)
        self.measure = measure
        self.timeout = timeout
        self.session = session or requests.Session()
        self.title_url = title_url
        self.relatedness_url = relatedness_url

    def _get_json(self, url: str, params) -> Dict[str, Any]:
        try:
            response = self.session.get(url, params=params, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as e:
            raise ExternalServiceError(f"WAT request to {url} failed: {e}") from e

    def resolve_title(self, title: str) -> int:
        """Wikipedia id of a title, 0 if WAT does not know it."""
        data = self._get_json(self.title_url, {"gcube-token": self.token, "title": title})
        wiki_id = data.get("wiki_id")
        if wiki_id is None:
            logger.debug("WAT could not resolve title %r", title)
            return 0
        return int(wiki_id)

    def relatedness_by_id(self, id_a: int, id_b: int) -> float:
        if id_a <= 0 or id_b <= 0:
            return 0.0
        params = [
            ("gcube-token", self.token),
            ("relatedness", self.measure),
            ("ids", str(id_a)),
            ("ids", str(id_b)),
        ]
        pairs = self._get_json(self.relatedness_url, params).get("pairs") or []
        if not pairs:
            return 0.0
        return float(pairs[0].get("relatedness", 0.0))

    def relatedness(self, entity_a: str, entity_b: str) -> float:
        id_a = self.resolve_title(entity_a)
        id_b = self.resolve_title(entity_b)
        return self.relatedness_by_id(id_a, id_b)

    __call__ = relatedness


class MemoizedRelatednessOracle:
    """
    Relatedness looked up in a precomputed map before any live call.

    The map is {entity_a: {entity_b: relatedness}}; keys may be ids or titles
    (they are normalized). Lookups are symmetric. Misses go to `oracle` when
    given, else 0.0. The map is never written to during a run.
    """

    def __init__(
        self,
        cache: Mapping[str, Mapping[str, float]],
        oracle: Optional[WATRelatednessOracle] = None,
    ):
        self.oracle = oracle
        self._cache: Dict[Tuple[str, str], float] = {}
        for a, row in cache.items():
            for b, value in row.items():
                self._cache[(_entity_key(a), _entity_key(b))] = float(value)
        logger.info(f"Loaded relatedness memo with {len(self._cache)} pairs")

    def __len__(self) -> int:
        return len(self._cache)

    def lookup(self, entity_a: str, entity_b: str) -> Optional[float]:
        key_a, key_b = _entity_key(entity_a), _entity_key(entity_b)
        value = self._cache.get((key_a, key_b))
        if value is None:
            value = self._cache.get((key_b, key_a))
        return value

    def relatedness(self, entity_a: str, entity_b: str) -> float:
        value = self.lookup(entity_a, entity_b)
        if value is not None:
            return value
        if self.oracle is None:
            return 0.0
        return self.oracle.relatedness(entity_a, entity_b)

    __call__ = relatedness


# -----------------------------------------------------------------------------
# Salience
# -----------------------------------------------------------------------------

class SWATSalienceOracle:
    """
    Entity salience from the SWAT REST API.

    annotate(text) returns {Wiki_title: salience_score}. With salient_only,
    only entities SWAT classifies as salient (salience_class == 1) are kept.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        salient_only: bool = True,
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
        url: str = SWAT_SALIENCE_URL,
    ):
        self.token = resolve_token(token)
        self.salient_only = salient_only
        self.timeout = timeout
        self.session = session or requests.Session()
        self.url = url

    def annotate(self, text: Optional[str]) -> Dict[str, float]:
        if not text or not text.strip():
            return {}
        try:
            response = self.session.post(
                self.url,
                params={"gcube-token": self.token},
                json={"title": "", "content": text},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            raise ExternalServiceError(f"SWAT request failed: {e}") from e

        salience: Dict[str, float] = {}
        for ann in data.get("annotations") or []:
            title = ann.get("wiki_title")
            if not title:
                continue
            if self.salient_only and int(ann.get("salience_class", 0)) != 1:
                continue
            salience[title.replace(" ", "_")] = float(ann.get("salience_score", 0.0))
        return salience

    __call__ = annotate


class MemoizedSalienceOracle:
    """
    Salience annotations keyed by passage id, loaded before a run.

    Passages missing from the map are annotated live when both `oracle` and
    `index` are given (the passage text is fetched from the index); otherwise
    they have no salience data and None is returned.
    """

    def __init__(
        self,
        cache: Mapping[str, Mapping[str, float]],
        oracle: Optional[SWATSalienceOracle] = None,
        index=None,
    ):
        self._cache = cache
        self.oracle = oracle
        self.index = index
        logger.info(f"Loaded salience memo for {len(cache)} passages")

    def __len__(self) -> int:
        return len(self._cache)

    def salience_for(self, passage_id: str) -> Optional[Mapping[str, float]]:
        annotations = self._cache.get(passage_id)
        if annotations is not None:
            return annotations
        if self.oracle is None or self.index is None:
            return None
        passage = self.index.get_by_id(passage_id)
        if passage is None:
            return None
        return self.oracle.annotate(passage.text)

    def annotate(self, text: Optional[str]) -> Dict[str, float]:
        if self.oracle is None:
            return {}
        return self.oracle.annotate(text)

    __call__ = salience_for
