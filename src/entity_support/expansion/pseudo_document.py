# entity_support/expansion/pseudo_document.py

from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque, Dict, Iterable, List, Optional, Sequence

from entity_support.expansion.data_types import ContextEntity, Passage, PseudoDocument
from entity_support.utils.text_utils import entity_surface_text, process_entity_id

logger = logging.getLogger(__name__)


def _mentions(passage: Passage, entity_key: str) -> bool:
    return any(process_entity_id(e) == entity_key for e in passage.entities)


def _anchor_texts(passage: Passage, kept_entities: Sequence[str]) -> List[ContextEntity]:
    """
    Anchor text for each kept entity mention of a passage.

    Links are consumed in order per entity, so the n-th mention of an entity
    gets the n-th anchor recorded for it. Mentions without a stored link fall
    back to the entity title with underscores as spaces.
    """
    queues: Dict[str, Deque[str]] = defaultdict(deque)
    for link in passage.entity_links:
        queues[process_entity_id(link.entity_id)].append(link.anchor_text)

    anchors = []
    for entity in kept_entities:
        queue = queues.get(process_entity_id(entity))
        if queue:
            anchor = queue.popleft()
        else:
            anchor = entity_surface_text(entity)
        anchors.append(ContextEntity(entity_id=entity, anchor_text=anchor))
    return anchors


def build_pseudo_document(
    entity: str,
    candidate_passage_ids: Sequence[str],
    index,
    exclude: Iterable[str] = (),
    with_anchors: bool = False,
) -> Optional[PseudoDocument]:
    """
    Collect the candidate passages that mention `entity`.

    Args:
        entity: Target entity id.
        candidate_passage_ids: Passage pool of one query (ranked, may repeat).
        index: Anything with get_by_id(pid) -> Optional[Passage].
        exclude: Entity ids left out of the co-occurrence multiset
                 (compared after id normalization).
        with_anchors: Also collect the anchor text of each kept mention.

    Returns:
        PseudoDocument, or None when no candidate passage mentions the entity.
        Index failures (ExternalServiceError) propagate to the caller.
    """
    entity_key = process_entity_id(entity)
    excluded = {process_entity_id(e) for e in exclude}

    passages: List[Passage] = []
    co_occurring: List[str] = []
    anchors: List[ContextEntity] = []
    seen = set()

    for pid in candidate_passage_ids:
        if pid in seen:
            continue
        seen.add(pid)

        passage = index.get_by_id(pid)
        if passage is None:
            logger.debug(f"Passage {pid} not found in index")
            continue
        if not _mentions(passage, entity_key):
            continue

        passages.append(passage)
        kept = [e for e in passage.entities if process_entity_id(e) not in excluded]
        co_occurring.extend(kept)
        if with_anchors:
            anchors.extend(_anchor_texts(passage, kept))

    if not passages:
        logger.debug(f"No candidate passage mentions {entity}")
        return None

    return PseudoDocument(
        entity=entity,
        passages=tuple(passages),
        co_occurring_entities=tuple(co_occurring),
        anchor_texts=tuple(anchors) if with_anchors else None,
    )


@dataclass
class PseudoDocumentBuilder:
    """
    Pseudo-document construction bound to one passage index.

    Typical use:
        builder = PseudoDocumentBuilder(index, exclude_target=True)
        doc = builder.build("enwiki:Barack%20Obama", pool)
    """
    index: object
    exclude_target: bool = True
    with_anchors: bool = False

    def build(
        self,
        entity: str,
        candidate_passage_ids: Sequence[str],
        extra_exclude: Iterable[str] = (),
    ) -> Optional[PseudoDocument]:
        exclude = list(extra_exclude)
        if self.exclude_target:
            exclude.append(entity)
        return build_pseudo_document(
            entity,
            candidate_passage_ids,
            self.index,
            exclude=exclude,
            with_anchors=self.with_anchors,
        )
