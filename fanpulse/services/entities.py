import json
import logging
from typing import Dict, List, Optional, Sequence
from fanpulse.nlp.clean import fold_text
from fanpulse.services.types import Entity, UNASSIGNED

logger = logging.getLogger(__name__)

# Order matters: the first team with a keyword hit wins
DEFAULT_ENTITIES = [
    Entity(
        id="galatasaray",
        name="Galatasaray",
        keywords=["galatasaray", "gala", "gs", "aslan", "sarı-kırmızı"],
    ),
    Entity(
        id="fenerbahce",
        name="Fenerbahçe",
        keywords=["fenerbahçe", "fenerbahce", "fener", "fb", "kanarya", "sarı-lacivert"],
    ),
    Entity(
        id="besiktas",
        name="Beşiktaş",
        keywords=["beşiktaş", "besiktas", "bjk", "kartal", "siyah-beyaz"],
    ),
    Entity(
        id="trabzonspor",
        name="Trabzonspor",
        keywords=["trabzonspor", "trabzon", "ts", "bordo-mavi"],
    ),
]


def load_entities(path: str) -> List[Entity]:
    """Load an entity table from a JSON list of {"id", "name", "keywords"}."""
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    if not isinstance(raw, list) or not raw:
        raise ValueError(f"Entity file {path} must contain a non-empty JSON list")
    return [Entity(**e) for e in raw]


class EntityAttributor:
    """
    Attribute free text to one configured entity by keyword containment.

    Keywords and text are both folded to lowercase ASCII, so "Beşiktaş",
    "BEŞİKTAŞ" and a mis-encoded "BeÅŸiktaÅŸ" all match. Matching is
    first-match in table order, not best-match.
    """

    def __init__(self, entities: Optional[Sequence[Entity]] = None):
        self._entities: List[Entity] = list(entities or DEFAULT_ENTITIES)
        self._names: Dict[str, str] = {e.id: e.name for e in self._entities}
        self._table = [
            (e.id, tuple(fold_text(k) for k in e.keywords if k.strip()))
            for e in self._entities
        ]
        logger.info(f"Entity attributor loaded with {len(self._entities)} entities")

    def attribute(self, text: str) -> str:
        if not text or not text.strip():
            return UNASSIGNED

        folded = fold_text(text)
        for entity_id, keywords in self._table:
            for keyword in keywords:
                if keyword in folded:
                    return entity_id

        return UNASSIGNED

    def entities(self) -> List[Entity]:
        return list(self._entities)

    def name_for(self, entity_id: str) -> str:
        return self._names.get(entity_id, entity_id)

    def __contains__(self, entity_id: str) -> bool:
        return entity_id in self._names
