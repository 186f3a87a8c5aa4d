from typing import Dict
from fanpulse.services.types import StoredRecord


class DuplicateKeyError(Exception):
    """Raised by a store when an insert violates the item identity key."""

    def __init__(self, source_platform: str, source_id: str):
        super().__init__(f"Duplicate item key ({source_platform}, {source_id})")
        self.source_platform = source_platform
        self.source_id = source_id


def build_record(item: Dict, verdict: Dict) -> StoredRecord:
    """Join an item row and a verdict row into a StoredRecord."""
    return StoredRecord(
        id=verdict["id"],
        item_id=item["id"],
        source_id=item["source_id"],
        source_platform=item["source_platform"],
        text=item["text"],
        author=item.get("author") or "",
        observed_at=item["observed_at"],
        entity_id=item["entity_id"],
        label=verdict["label"],
        score=verdict["score"],
        confidence=verdict["confidence"],
        model_used=verdict["model_used"],
        produced_at=verdict["produced_at"],
        ingested_at=item["ingested_at"],
    )
