"""
Precompute WAT relatedness between each target entity and its co-occurring
entities, for every query of an entity run.

The output JSON ({Title_a: {Title_b: relatedness}}) is the relatedness cache
read by run_support_passages.py --relatedness-cache.
"""

import argparse
import logging
import os
from collections import defaultdict

from tqdm import tqdm

from entity_support.expansion.pseudo_document import PseudoDocumentBuilder
from entity_support.expansion.wat_adapter import WATRelatednessOracle
from entity_support.retrieval.passage_index import LucenePassageIndex
from entity_support.utils.errors import ExternalServiceError
from entity_support.utils.file_utils import load_qrels, load_rankings, load_relatedness_cache, save_json
from entity_support.utils.lucene_utils import initialize_lucene
from entity_support.utils.text_utils import canonical_title

logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Cache WAT entity relatedness")
    parser.add_argument("--index", type=str, required=True, help="Path to Lucene passage index")
    parser.add_argument("--lucene-path", type=str, default=None, help="Directory of Lucene jars")
    parser.add_argument("--passage-run", type=str, required=True, help="Passage ranking (TREC run)")
    parser.add_argument("--entity-run", type=str, required=True, help="Entity ranking (TREC run)")
    parser.add_argument("--entity-qrels", type=str, default=None, help="Only cache relevant entities")
    parser.add_argument("--measure", type=str, default="mw", help="WAT relatedness measure")
    parser.add_argument("--wat-token", type=str, default=None, help="gcube token (default: $WAT_GCUBE_TOKEN)")
    parser.add_argument("--output", type=str, required=True, help="Output JSON cache")
    parser.add_argument("--id-field", type=str, default="id")
    parser.add_argument("--text-field", type=str, default="text")
    parser.add_argument("--entity-field", type=str, default="entity")
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(message)s')

    initialize_lucene(args.lucene_path)
    index = LucenePassageIndex(
        args.index, id_field=args.id_field, text_field=args.text_field, entity_field=args.entity_field
    )
    oracle = WATRelatednessOracle(args.wat_token, measure=args.measure)
    builder = PseudoDocumentBuilder(index, exclude_target=True)

    passage_rankings = load_rankings(args.passage_run)
    entity_rankings = load_rankings(args.entity_run)
    entity_qrels = load_qrels(args.entity_qrels) if args.entity_qrels else None

    cache = defaultdict(dict)
    if os.path.exists(args.output):
        cache.update(load_relatedness_cache(args.output))

    for qid, entities in tqdm(entity_rankings.items(), desc="queries"):
        if entity_qrels is not None:
            relevant = set(entity_qrels.get(qid, ()))
            entities = [e for e in entities if e in relevant]
        pool = passage_rankings.get(qid, [])

        for entity_id in entities:
            target = canonical_title(entity_id)
            if target is None:
                logger.warning(f"Malformed entity id query={qid} entity={entity_id}")
                continue
            try:
                doc = builder.build(entity_id, pool)
                if doc is None:
                    continue
                for other in set(doc.co_occurring_entities):
                    title = canonical_title(other)
                    if title is None or title in cache[target]:
                        continue
                    cache[target][title] = oracle.relatedness(target, title)
            except ExternalServiceError as e:
                logger.warning(f"Skipping query={qid} entity={entity_id}: {e}")

    save_json(dict(cache), args.output)
    logger.info(f"Relatedness cache now covers {len(cache)} target entities")


if __name__ == "__main__":
    main()
