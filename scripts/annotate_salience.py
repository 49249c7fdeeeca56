"""
Precompute SWAT salience annotations for the passages of a passage run.

The output JSON ({passage_id: {Wiki_title: salience}}) is the salience cache
read by run_support_passages.py --salience-cache. An existing output file is
extended, not overwritten.
"""

import argparse
import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed

from tqdm import tqdm

from entity_support.expansion.wat_adapter import SWATSalienceOracle
from entity_support.retrieval.passage_index import LucenePassageIndex
from entity_support.utils.errors import ExternalServiceError
from entity_support.utils.file_utils import load_rankings, load_salience_cache, save_json
from entity_support.utils.lucene_utils import initialize_lucene

logger = logging.getLogger(__name__)


def annotate_passage(index, oracle, passage_id):
    try:
        passage = index.get_by_id(passage_id)
        if passage is None:
            logger.warning(f"Passage {passage_id} not found in index")
            return passage_id, None
        return passage_id, oracle.annotate(passage.text)
    except ExternalServiceError as e:
        logger.warning(f"Salience annotation failed for passage={passage_id}: {e}")
        return passage_id, None
    finally:
        index.detach_thread()


def main():
    parser = argparse.ArgumentParser(description="Annotate passages with SWAT salience")
    parser.add_argument("--index", type=str, required=True, help="Path to Lucene passage index")
    parser.add_argument("--lucene-path", type=str, default=None, help="Directory of Lucene jars")
    parser.add_argument("--passage-run", type=str, required=True, help="Passage ranking (TREC run)")
    parser.add_argument("--top-k", type=int, default=None, help="Only annotate the top-k passages per query")
    parser.add_argument("--output", type=str, required=True, help="Output JSON cache")
    parser.add_argument("--all-entities", action="store_true", help="Keep non-salient entities too")
    parser.add_argument("--wat-token", type=str, default=None, help="gcube token (default: $WAT_GCUBE_TOKEN)")
    parser.add_argument("--workers", type=int, default=8)
    parser.add_argument("--id-field", type=str, default="id")
    parser.add_argument("--text-field", type=str, default="text")
    parser.add_argument("--entity-field", type=str, default="entity")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(message)s')

    initialize_lucene(args.lucene_path)
    index = LucenePassageIndex(
        args.index, id_field=args.id_field, text_field=args.text_field, entity_field=args.entity_field
    )
    oracle = SWATSalienceOracle(args.wat_token, salient_only=not args.all_entities)

    cache = load_salience_cache(args.output) if os.path.exists(args.output) else {}

    passage_ids = []
    for ranking in load_rankings(args.passage_run).values():
        passage_ids.extend(ranking[:args.top_k] if args.top_k else ranking)
    todo = sorted(set(passage_ids) - set(cache))
    logger.info(f"{len(cache)} passages already annotated, {len(todo)} to go")

    with ThreadPoolExecutor(max_workers=args.workers) as ex:
        futures = [ex.submit(annotate_passage, index, oracle, pid) for pid in todo]
        for future in tqdm(as_completed(futures), total=len(futures), desc="SWAT"):
            pid, salience = future.result()
            if salience is not None:
                cache[pid] = salience

    save_json(cache, args.output)
    logger.info(f"Salience cache now covers {len(cache)} passages")


if __name__ == "__main__":
    main()
