# entity_support/utils/lucene_utils.py

"""
JVM bootstrap and Lucene class lookup through pyjnius.

The JVM classpath can only be set before the first `import jnius`, so
scripts call initialize_lucene() before constructing a LucenePassageIndex.
Everything jnius-related is imported lazily so that the rest of the package
(and the test-suite) works without a JVM.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)

_LUCENE_CLASSES = {
    'IndexSearcher': 'org.apache.lucene.search.IndexSearcher',
    'IndexReader': 'org.apache.lucene.index.IndexReader',
    'DirectoryReader': 'org.apache.lucene.index.DirectoryReader',
    'FSDirectory': 'org.apache.lucene.store.FSDirectory',
    'ByteBuffersDirectory': 'org.apache.lucene.store.ByteBuffersDirectory',
    'IndexWriter': 'org.apache.lucene.index.IndexWriter',
    'IndexWriterConfig': 'org.apache.lucene.index.IndexWriterConfig',
    'Document': 'org.apache.lucene.document.Document',
    'StringField': 'org.apache.lucene.document.StringField',
    'TextField': 'org.apache.lucene.document.TextField',
    'FieldStore': 'org.apache.lucene.document.Field$Store',
    'JavaPaths': 'java.nio.file.Paths',
    'StandardAnalyzer': 'org.apache.lucene.analysis.standard.StandardAnalyzer',
    'EnglishAnalyzer': 'org.apache.lucene.analysis.en.EnglishAnalyzer',
    'CharTermAttribute': 'org.apache.lucene.analysis.tokenattributes.CharTermAttribute',
    'BooleanQueryBuilder': 'org.apache.lucene.search.BooleanQuery$Builder',
    'BooleanClauseOccur': 'org.apache.lucene.search.BooleanClause$Occur',
    'BoostQuery': 'org.apache.lucene.search.BoostQuery',
    'Term': 'org.apache.lucene.index.Term',
    'TermQuery': 'org.apache.lucene.search.TermQuery',
    'BM25Similarity': 'org.apache.lucene.search.similarities.BM25Similarity',
    'ClassicSimilarity': 'org.apache.lucene.search.similarities.ClassicSimilarity',
    'LMDirichletSimilarity': 'org.apache.lucene.search.similarities.LMDirichletSimilarity',
    'LMJelinekMercerSimilarity': 'org.apache.lucene.search.similarities.LMJelinekMercerSimilarity',
}


def initialize_lucene(lucene_path: Optional[str] = None) -> bool:
    """
    Configure the JVM classpath with every jar under `lucene_path`.

    Args:
        lucene_path: Directory of Lucene jars. Defaults to $LUCENE_PATH, then
                     ./lucene_jars.

    Returns:
        True if the classpath was set, False if the JVM was already running.
    """
    import jnius_config

    if jnius_config.vm_running:
        logger.debug("JVM already running, classpath left unchanged")
        return False

    jar_dir = Path(lucene_path or os.environ.get("LUCENE_PATH", "lucene_jars"))
    jars = sorted(str(p.absolute()) for p in jar_dir.glob("*.jar"))
    if not jars:
        logger.warning(f"No jars found under {jar_dir}")

    jnius_config.add_options('-Djava.awt.headless=true')
    jnius_config.set_classpath('.', *jars)
    logger.info(f"Configured JVM classpath with {len(jars)} jars from {jar_dir}")
    return True


@lru_cache(maxsize=1)
def get_lucene_classes() -> Dict[str, object]:
    """Resolve the Lucene classes used by the package (starts the JVM)."""
    from jnius import autoclass

    return {name: autoclass(java_name) for name, java_name in _LUCENE_CLASSES.items()}
