# entity_support/utils/text_utils.py

"""
Entity identifier normalization and text preprocessing.

Entity ids in run files look like ``enwiki:Barack%20Obama`` while passage
indexes store titles like ``Barack_Obama``. All comparisons between the two
go through the helpers below.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, FrozenSet

# Characters removed from passage text before whitespace splitting.
_SPECIAL_CHARS = re.compile(r'[\-+.^*:,;=(){}\[\]"]')


def process_entity_id(entity_id: str) -> str:
    """
    Strip the namespace prefix and turn URL-encoded spaces into underscores.

        enwiki:Barack%20Obama -> Barack_Obama
        Barack_Obama          -> Barack_Obama
    """
    return entity_id[entity_id.find(":") + 1:].replace("%20", "_")


def canonical_title(entity_id: str) -> Optional[str]:
    """
    Canonical Wikipedia-style title for an entity id, or None if malformed.

    The first word is capitalized, every following word starts lowercase:

        enwiki:barack%20Obama -> Barack_obama

    Ids with an empty word (``enwiki:``, ``enwiki:_Foo``, ``A__B``) are
    malformed. Trailing underscores are ignored.
    """
    parts = process_entity_id(entity_id).split("_")
    while len(parts) > 1 and parts[-1] == "":
        parts.pop()
    if any(not part for part in parts):
        return None

    words = [parts[0][0].upper() + parts[0][1:]]
    words.extend(part[0].lower() + part[1:] for part in parts[1:])
    return "_".join(words)


def titles_match(entity_a: str, entity_b: str) -> bool:
    """Case-insensitive comparison of canonical titles. False if either is malformed."""
    title_a = canonical_title(entity_a)
    title_b = canonical_title(entity_b)
    if title_a is None or title_b is None:
        return False
    return title_a.lower() == title_b.lower()


def entity_surface_text(entity_id: str) -> str:
    """Readable surface text for an entity: enwiki:Barack%20Obama -> Barack Obama."""
    return process_entity_id(entity_id).replace("_", " ")


def query_text_from_id(query_id: str) -> str:
    """
    Derive the query string from a TREC CAR style query id.

        enwiki:Machine%20learning -> machine learning
    """
    return query_id[query_id.find(":") + 1:].replace("%20", " ").lower()


def preprocess(text: Optional[str], stopwords: Iterable[str] = frozenset()) -> List[str]:
    """
    Preprocess passage text into words.

    (1) lowercase, (2) newlines to spaces, (3) strip special characters,
    (4) split on single spaces and drop empty strings, (5) drop stop-words.
    """
    if not text:
        return []
    if not isinstance(stopwords, (set, frozenset)):
        stopwords = frozenset(stopwords)

    text = text.lower().replace("\n", " ").replace("\r", " ")
    text = _SPECIAL_CHARS.sub("", text)
    return [w for w in text.split(" ") if w and w not in stopwords]


def default_analyzer(text: Optional[str]) -> List[str]:
    """Lowercase word tokenizer used when no Lucene analyzer is available."""
    if not text:
        return []
    return re.findall(r"\w+", text.lower())


def to_frozenset(words: Optional[Iterable[str]]) -> FrozenSet[str]:
    return frozenset(words) if words else frozenset()
