"""
Ingestion gate: the only writer of sentiment records.

Every item is keyed by (source_platform, source_id). Ingesting a key that is
already stored raises DuplicateItem; that is the idempotency path and is
logged at debug level only.
"""

import logging

from fanpulse.errors import DuplicateItem
from fanpulse.services.types import (
    CleanupResult,
    EntityAssignment,
    SourceItem,
    StoredRecord,
    Verdict,
    utcnow,
)
from fanpulse.storage.base import DuplicateKeyError

logger = logging.getLogger(__name__)


class IngestionGate:
    def __init__(self, store):
        self.store = store

    def exists(self, item: SourceItem) -> bool:
        """True if an item with the same identity key is already stored."""
        return self.store.find_item(item.source_platform, item.source_id) is not None

    def ingest(self, item: SourceItem, assignment: EntityAssignment, verdict: Verdict) -> StoredRecord:
        """
        Persist an item with its entity assignment and verdict.

        Raises:
            DuplicateItem: if the identity key is already stored
            StoreUnavailable: if the store cannot be reached
        """
        if self.exists(item):
            logger.debug(f"Skipping duplicate {item.source_platform}:{item.source_id}")
            raise DuplicateItem(item.source_platform, item.source_id)

        try:
            record = self.store.insert_record(item, assignment.entity_id, verdict)
        except DuplicateKeyError:
            # Lost a race with a concurrent writer for the same key
            logger.debug(f"Insert conflict on {item.source_platform}:{item.source_id}")
            raise DuplicateItem(item.source_platform, item.source_id)

        logger.info(
            f"Ingested {item.source_platform}:{item.source_id} -> "
            f"{assignment.entity_id} ({verdict.label.value})"
        )
        return record

    def cleanup_duplicates(self) -> CleanupResult:
        """
        Remove duplicate verdicts, keeping the lowest id per item.

        Deletion failures are collected per group in the result rather than
        raised, so one bad group does not stop the rest.
        """
        groups = self.store.duplicate_verdict_groups()
        result = CleanupResult(groups_inspected=len(groups))
        logger.info(f"Found {len(groups)} items with duplicate verdicts")

        for item_id, verdict_ids in groups:
            extra = sorted(verdict_ids)[1:]
            result.duplicates_found += len(extra)
            try:
                result.duplicates_removed += self.store.delete_verdicts(extra)
            except Exception as e:
                logger.error(f"Failed to remove duplicates for item {item_id}: {e}")
                result.errors.append(f"item {item_id}: {e}")

        result.completed_at = utcnow()
        logger.info(
            f"Cleanup complete: {result.duplicates_removed}/{result.duplicates_found} "
            f"duplicates removed, {len(result.errors)} errors"
        )
        return result
