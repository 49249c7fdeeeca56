# entity_support/utils/file_utils.py

"""
Readers and writers for the line-oriented files of an experiment.

    rankings / runs   qid Q0 item rank score tag
    qrels             qid 0 item relevance
    queries           qid<TAB>text
    stop-words        one word per line
    caches            JSON ({a: {b: value}}) or TSV (a<TAB>b<TAB>value)

Malformed lines are logged with file and line number and skipped.
"""

from __future__ import annotations

import json
import logging
from collections import OrderedDict, defaultdict
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Sequence, Union

from entity_support.expansion.data_types import ScoredPassage
from entity_support.expansion.distributions import round_ceiling
from entity_support.utils.errors import MalformedInputError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _split_lines(path: PathLike, min_fields: int):
    """Yield (line_no, fields) for every non-empty line with enough fields."""
    with open(path, 'r', encoding='utf-8') as f:
        for line_no, line in enumerate(f, 1):
            if not line.strip():
                continue
            parts = line.split()
            if len(parts) < min_fields:
                logger.warning(f"{path}:{line_no}: expected {min_fields} fields, skipping line")
                continue
            yield line_no, parts


def load_rankings(path: PathLike) -> Dict[str, List[str]]:
    """
    Ranked item ids per query, in file order.

    Returns:
        Dict qid -> [item, ...] (first occurrence of an item wins).
    """
    rankings: Dict[str, List[str]] = OrderedDict()
    seen: Dict[str, set] = defaultdict(set)
    for _, parts in _split_lines(path, 3):
        qid, item = parts[0], parts[2]
        if item in seen[qid]:
            continue
        seen[qid].add(item)
        rankings.setdefault(qid, []).append(item)
    logger.info(f"Loaded rankings for {len(rankings)} queries from {path}")
    return rankings


def load_scored_rankings(path: PathLike) -> Dict[str, Dict[str, float]]:
    """Dict qid -> {item: score}, item order as in the file."""
    rankings: Dict[str, Dict[str, float]] = OrderedDict()
    for line_no, parts in _split_lines(path, 5):
        try:
            score = float(parts[4])
        except ValueError:
            logger.warning(f"{path}:{line_no}: bad score {parts[4]!r}, skipping line")
            continue
        rankings.setdefault(parts[0], {}).setdefault(parts[2], score)
    logger.info(f"Loaded scored rankings for {len(rankings)} queries from {path}")
    return rankings


def load_qrels(path: PathLike, min_relevance: int = 1) -> Dict[str, List[str]]:
    """Relevant item ids per query (relevance >= min_relevance), in file order."""
    qrels: Dict[str, List[str]] = OrderedDict()
    for line_no, parts in _split_lines(path, 4):
        try:
            relevance = int(float(parts[3]))
        except ValueError:
            logger.warning(f"{path}:{line_no}: bad relevance {parts[3]!r}, skipping line")
            continue
        if relevance >= min_relevance:
            items = qrels.setdefault(parts[0], [])
            if parts[2] not in items:
                items.append(parts[2])
    logger.info(f"Loaded qrels for {len(qrels)} queries from {path}")
    return qrels


def load_queries(path: PathLike) -> Dict[str, str]:
    queries = {}
    with open(path, 'r', encoding='utf-8') as f:
        for line in f:
            if not line.strip():
                continue
            parts = line.rstrip('\n').split('\t')
            if len(parts) >= 2:
                queries[parts[0]] = parts[1]
    logger.info(f"Loaded {len(queries)} queries from {path}")
    return queries


def load_stopwords(path: PathLike) -> FrozenSet[str]:
    with open(path, 'r', encoding='utf-8') as f:
        return frozenset(w.strip().lower() for w in f if w.strip())


# -----------------------------------------------------------------------------
# Run files
# -----------------------------------------------------------------------------

def format_run_lines(
    query_id: str,
    entity_id: str,
    scored: Sequence[ScoredPassage],
    run_tag: str,
) -> List[str]:
    """
    Run file lines for one (query, entity) pair.

        <qid>+<eid> Q0 <pid> <rank> <score> <tag>

    Passages are ranked by descending score (ties by id) starting at 1;
    scores <= 0 are left out. Printed scores are rounded up to 4 decimals.
    """
    ranked = sorted(
        (sp for sp in scored if sp.score > 0.0),
        key=lambda sp: (-sp.score, sp.passage_id),
    )
    return [
        f"{query_id}+{entity_id} Q0 {sp.passage_id} {rank} {round_ceiling(sp.score):.4f} {run_tag}"
        for rank, sp in enumerate(ranked, 1)
    ]


def save_run(lines: Iterable[str], path: PathLike) -> int:
    """Write run lines. Write failures (OSError) propagate."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    n = 0
    with open(path, 'w', encoding='utf-8') as f:
        for line in lines:
            f.write(line + '\n')
            n += 1
    logger.info(f"Wrote {n} run lines to {path}")
    return n


# -----------------------------------------------------------------------------
# Caches
# -----------------------------------------------------------------------------

def _load_nested_json(path: PathLike) -> Dict[str, Dict[str, float]]:
    with open(path, 'r', encoding='utf-8') as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise MalformedInputError(f"{path}: invalid JSON cache: {e}") from e
    if not isinstance(data, dict):
        raise MalformedInputError(f"{path}: expected a JSON object at top level")
    return {
        str(k): {str(e): float(v) for e, v in (row or {}).items()}
        for k, row in data.items()
    }


def load_relatedness_cache(path: PathLike) -> Dict[str, Dict[str, float]]:
    """
    Precomputed relatedness {entity_a: {entity_b: value}}.

    Files ending in .json are read as nested JSON objects, anything else as
    TSV lines entity_a<TAB>entity_b<TAB>value.
    """
    if str(path).endswith('.json'):
        cache = _load_nested_json(path)
    else:
        cache = defaultdict(dict)
        with open(path, 'r', encoding='utf-8') as f:
            for line_no, line in enumerate(f, 1):
                if not line.strip():
                    continue
                parts = line.rstrip('\n').split('\t')
                try:
                    cache[parts[0]][parts[1]] = float(parts[2])
                except (IndexError, ValueError):
                    logger.warning(f"{path}:{line_no}: malformed relatedness line, skipping")
        cache = dict(cache)
    logger.info(f"Loaded relatedness cache for {len(cache)} entities from {path}")
    return cache


def load_salience_cache(path: PathLike) -> Dict[str, Dict[str, float]]:
    """Precomputed salience {passage_id: {entity: score}}."""
    cache = _load_nested_json(path)
    logger.info(f"Loaded salience cache for {len(cache)} passages from {path}")
    return cache


def save_json(obj, path: PathLike) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(obj, f, indent=2, sort_keys=True)
    logger.info(f"Saved {path}")
