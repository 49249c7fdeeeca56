# entity_support/retrieval/metrics.py

"""
Evaluation of support passage run files with pytrec_eval.

Query ids of support passage runs are "<qid>+<eid>", so the qrels must use
the same composite ids.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Tuple

import pytrec_eval

logger = logging.getLogger(__name__)

DEFAULT_METRICS = ('map', 'ndcg_cut.10', 'P.1', 'recip_rank')


def _parse(qrels: str, run: str):
    with open(qrels, 'r') as f_qrel:
        qrel_dict = pytrec_eval.parse_qrel(f_qrel)
    with open(run, 'r') as f_run:
        run_dict = pytrec_eval.parse_run(f_run)
    return qrel_dict, run_dict


def evaluate_run(
    qrels: str,
    run: str,
    metrics: Iterable[str] = DEFAULT_METRICS,
) -> Tuple[Dict[str, float], Dict[str, Dict[str, float]]]:
    """
    Evaluate a run file.

    Args:
        qrels: Path to a TREC qrels file.
        run: Path to a TREC run file.
        metrics: pytrec_eval measure names ("P.1" is reported as "P_1").

    Returns:
        (aggregated {metric: value}, per-query {qid: {metric: value}}).
        Queries without judgments are ignored by pytrec_eval.
    """
    metrics = list(metrics)
    qrel_dict, run_dict = _parse(qrels, run)

    # Only init the evaluator with the measures we report
    evaluator = pytrec_eval.RelevanceEvaluator(qrel_dict, set(metrics))
    per_query = evaluator.evaluate(run_dict)

    aggregated = {}
    for metric in metrics:
        key = metric.replace('.', '_')
        values = [query_meas[key] for query_meas in per_query.values() if key in query_meas]
        aggregated[key] = pytrec_eval.compute_aggregated_measure(key, values) if values else 0.0

    logger.info(f"Evaluated {len(per_query)} queries of {run}")
    return aggregated, per_query


def get_metric(qrels: str, run: str, metric: str = 'map') -> float:
    aggregated, _ = evaluate_run(qrels, run, [metric])
    return aggregated[metric.replace('.', '_')]
