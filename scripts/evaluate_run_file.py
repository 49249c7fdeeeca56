"""
Evaluate a support passage run with pytrec_eval.

Example:
    python scripts/evaluate_run_file.py --qrels qrels/support.qrels --run runs/support/ECN.run
"""

import argparse
import json
import logging

from entity_support.retrieval.metrics import DEFAULT_METRICS, evaluate_run

logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Evaluate a run file")
    parser.add_argument("--qrels", type=str, required=True, help="TREC qrels file")
    parser.add_argument("--run", type=str, required=True, help="TREC run file")
    parser.add_argument("--metrics", type=str, default=",".join(DEFAULT_METRICS),
                        help="Comma separated pytrec_eval measures")
    parser.add_argument("--per-query", type=str, default=None, help="Write per-query results to this JSON file")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(message)s')

    metrics = [m.strip() for m in args.metrics.split(",") if m.strip()]
    aggregated, per_query = evaluate_run(args.qrels, args.run, metrics)

    for metric, value in aggregated.items():
        print(f"{metric:<15} all {value:.4f}")

    if args.per_query:
        with open(args.per_query, 'w') as f:
            json.dump(per_query, f, indent=2)
        logger.info(f"Per-query results written to {args.per_query}")


if __name__ == "__main__":
    main()
