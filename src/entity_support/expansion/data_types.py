# entity_support/expansion/data_types.py

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple


@dataclass(frozen=True)
class ContextEntity:
    """
    One entity link inside a passage.

    Fields:
        entity_id: Entity identifier as stored in the index (e.g. Barack_Obama)
        anchor_text: Surface form that realizes the link in the passage text
    """
    entity_id: str
    anchor_text: str


@dataclass(frozen=True)
class Passage:
    """
    A passage from the passage index.

    Fields:
        id: Unique passage id
        text: Raw passage text
        entities: Entity ids in mention order (duplicates kept)
        entity_links: (entity, anchor text) pairs, when the index stores them
    """
    id: str
    text: str
    entities: Tuple[str, ...] = ()
    entity_links: Tuple[ContextEntity, ...] = ()


@dataclass(frozen=True)
class PseudoDocument:
    """
    All candidate passages of one query that mention a target entity.

    Fields:
        entity: The target entity id
        passages: Qualifying passages, unique by id, in pool order
        co_occurring_entities: Entities of those passages (multiset, minus exclusions)
        anchor_texts: Anchor text per kept entity mention (anchor variant only)
    """
    entity: str
    passages: Tuple[Passage, ...]
    co_occurring_entities: Tuple[str, ...]
    anchor_texts: Optional[Tuple[ContextEntity, ...]] = None

    @property
    def passage_ids(self) -> Tuple[str, ...]:
        return tuple(p.id for p in self.passages)

    def entity_counts(self) -> Counter:
        return Counter(self.co_occurring_entities)


@dataclass(frozen=True)
class ScoredPassage:
    passage_id: str
    score: float


@dataclass(frozen=True)
class ExpansionClause:
    """A single SHOULD clause of an expansion query: (field, term) boosted by weight."""
    field: str
    term: str
    weight: float


@dataclass(frozen=True)
class ExpansionQuery:
    """Weighted disjunction of term clauses."""
    clauses: Tuple[ExpansionClause, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.clauses

    def __len__(self) -> int:
        return len(self.clauses)

    def __iter__(self) -> Iterator[ExpansionClause]:
        return iter(self.clauses)
