"""
Run a support passage experiment.

Example:
    python scripts/run_support_passages.py \
        --preset ECN \
        --index data/paragraph_index \
        --lucene-path lucene_jars \
        --passage-run runs/passages.run \
        --entity-run runs/entities.run \
        --entity-qrels qrels/entities.qrels \
        --output runs/support/ECN.run
"""

import argparse
import logging
import sys

from entity_support.expansion.wat_adapter import (
    MemoizedRelatednessOracle,
    MemoizedSalienceOracle,
    SWATSalienceOracle,
    WATRelatednessOracle,
)
from entity_support.retrieval.passage_index import LucenePassageIndex
from entity_support.retrieval.pipeline import SupportPassagePipeline
from entity_support.utils.config import PRESETS, Strategy, load_config
from entity_support.utils.errors import IndexUnavailableError
from entity_support.utils.file_utils import (
    load_qrels,
    load_queries,
    load_relatedness_cache,
    load_salience_cache,
    load_scored_rankings,
    load_stopwords,
    save_run,
)
from entity_support.utils.lucene_utils import initialize_lucene

logger = logging.getLogger(__name__)


def build_relatedness(args, config):
    cache = load_relatedness_cache(args.relatedness_cache) if args.relatedness_cache else {}
    live = WATRelatednessOracle(args.wat_token, measure=config.relatedness_measure) if args.live_oracles else None
    if not cache and live is None:
        raise ValueError(f"{config.name} needs --relatedness-cache or --live-oracles")
    return MemoizedRelatednessOracle(cache, oracle=live)


def build_salience(args, index):
    cache = load_salience_cache(args.salience_cache) if args.salience_cache else {}
    live = SWATSalienceOracle(args.wat_token) if args.live_oracles else None
    if not cache and live is None:
        raise ValueError("Salience runs need --salience-cache or --live-oracles")
    return MemoizedSalienceOracle(cache, oracle=live, index=index)


def main():
    parser = argparse.ArgumentParser(description="Rank support passages for query-relevant entities")
    parser.add_argument("--preset", type=str, default=None, choices=sorted(PRESETS), help="Named experiment")
    parser.add_argument("--config", type=str, default=None, help="JSON file of config overrides")
    parser.add_argument("--index", type=str, required=True, help="Path to Lucene passage index")
    parser.add_argument("--lucene-path", type=str, default=None, help="Directory of Lucene jars")
    parser.add_argument("--passage-run", type=str, required=True, help="Passage ranking (TREC run)")
    parser.add_argument("--entity-run", type=str, required=True, help="Entity ranking (TREC run)")
    parser.add_argument("--entity-qrels", type=str, default=None, help="Entity ground truth")
    parser.add_argument("--queries", type=str, default=None, help="Optional queries TSV (qid<TAB>text)")
    parser.add_argument("--stopwords", type=str, default=None, help="Stop-word list, one per line")
    parser.add_argument("--output", type=str, required=True, help="Output run file")
    parser.add_argument("--workers", type=int, default=1, help="1 = serial, 0 = one thread per CPU")
    parser.add_argument("--relatedness-cache", type=str, default=None, help="JSON or TSV relatedness cache")
    parser.add_argument("--salience-cache", type=str, default=None, help="JSON salience cache")
    parser.add_argument("--live-oracles", action="store_true", help="Call WAT / SWAT for cache misses")
    parser.add_argument("--wat-token", type=str, default=None, help="gcube token (default: $WAT_GCUBE_TOKEN)")
    parser.add_argument("--id-field", type=str, default="id")
    parser.add_argument("--text-field", type=str, default="text")
    parser.add_argument("--entity-field", type=str, default="entity")
    parser.add_argument("--entity-delimiter", type=str, default=" ")
    parser.add_argument("--links-field", type=str, default=None, help="Stored 'Title_anchor' lines field")
    parser.add_argument("--analyzer", type=str, default="StandardAnalyzer")
    parser.add_argument("--similarity", type=str, default="BM25Similarity")
    parser.add_argument("--lmjm-lambda", type=float, default=None)
    parser.add_argument("--log-level", type=str, default="INFO")
    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, args.log_level.upper()), format='%(asctime)s %(message)s')

    config = load_config(path=args.config, preset=args.preset)

    # 1. Passage index
    initialize_lucene(args.lucene_path)
    try:
        index = LucenePassageIndex(
            args.index,
            id_field=args.id_field,
            text_field=args.text_field,
            entity_field=args.entity_field,
            entity_delimiter=args.entity_delimiter,
            links_field=args.links_field,
            analyzer=args.analyzer,
            similarity=args.similarity,
            lmjm_lambda=args.lmjm_lambda,
        )
    except IndexUnavailableError as e:
        logger.error(str(e))
        sys.exit(1)

    # 2. Rankings and ground truth
    passage_rankings = load_scored_rankings(args.passage_run)
    entity_rankings = load_scored_rankings(args.entity_run)
    entity_qrels = load_qrels(args.entity_qrels) if args.entity_qrels else None
    queries = load_queries(args.queries) if args.queries else None
    stopwords = load_stopwords(args.stopwords) if args.stopwords else frozenset()

    # 3. Oracles
    relatedness = salience = None
    if config.strategy in (Strategy.RELATEDNESS, Strategy.RELATEDNESS_PLUS_FREQUENCY):
        relatedness = build_relatedness(args, config)
    elif config.strategy == Strategy.SALIENCE:
        salience = build_salience(args, index)

    pipeline = SupportPassagePipeline(
        config,
        index,
        passage_rankings,
        entity_rankings,
        entity_qrels=entity_qrels,
        queries=queries,
        relatedness=relatedness,
        salience=salience,
        stopwords=stopwords,
    )

    # 4. Run
    logger.info(f"Running {config.name} over {len(passage_rankings)} queries")
    lines = pipeline.run(workers=args.workers)
    save_run(lines, args.output)
    index.close()
    logger.info("Done")


if __name__ == "__main__":
    main()
