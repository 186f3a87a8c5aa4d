"""
In-memory storage backend as an alternative to PostgreSQL.

This allows the application to run without Docker or external databases.
Items and verdicts live in separate tables so that, as in the PostgreSQL
schema, several verdicts can reference one item.
"""

from typing import Dict, Iterable, List, Optional, Tuple
from datetime import datetime
from collections import defaultdict
import threading
from fanpulse.services.types import SentimentStats, SourceItem, StoredRecord, Verdict, as_utc, utcnow
from fanpulse.storage.base import DuplicateKeyError, build_record
from fanpulse.logging_config import get_logger

logger = get_logger(__name__)


class InMemoryStorage:
    """In-memory record store using Python data structures."""

    def __init__(self):
        self._lock = threading.Lock()
        self._items: Dict[int, Dict] = {}
        self._verdicts: Dict[int, Dict] = {}
        self._item_counter = 1
        self._verdict_counter = 1
        self._item_index: Dict[tuple, int] = {}  # (source_platform, source_id) -> item id
        logger.info("Initialized in-memory storage backend")

    def find_item(self, source_platform: str, source_id: str) -> Optional[Dict]:
        """Find an item by its identity key."""
        with self._lock:
            pk = self._item_index.get((source_platform, source_id))
            if pk is None:
                return None
            return dict(self._items[pk])

    def insert_record(self, item: SourceItem, entity_id: str, verdict: Verdict) -> StoredRecord:
        """Insert an item and its verdict atomically; the identity key must be new."""
        with self._lock:
            key = item.identity_key
            if key in self._item_index:
                raise DuplicateKeyError(item.source_platform, item.source_id)

            pk = self._item_counter
            self._item_counter += 1

            item_row = {
                'id': pk,
                'source_platform': item.source_platform,
                'source_id': item.source_id,
                'entity_id': entity_id,
                'author': item.author,
                'text': item.text,
                'url': item.url,
                'language': item.language,
                'observed_at': item.observed_at,
                'ingested_at': utcnow(),
            }
            self._items[pk] = item_row
            self._item_index[key] = pk

            verdict_row = self._add_verdict(pk, verdict)
            logger.debug(f"Stored item {pk} from {item.source_platform} with verdict {verdict_row['id']}")
            return build_record(item_row, verdict_row)

    def append_verdict(self, item_id: int, verdict: Verdict) -> StoredRecord:
        """Append another verdict for an existing item.

        Never called by ingestion; it reproduces the repeated-analysis rows that
        cleanup_duplicates removes from older data.
        """
        with self._lock:
            if item_id not in self._items:
                raise KeyError(f"Item {item_id} not found")
            verdict_row = self._add_verdict(item_id, verdict)
            return build_record(self._items[item_id], verdict_row)

    def _add_verdict(self, item_id: int, verdict: Verdict) -> Dict:
        vid = self._verdict_counter
        self._verdict_counter += 1
        row = {
            'id': vid,
            'item_id': item_id,
            'label': verdict.label.value,
            'score': verdict.score,
            'confidence': verdict.confidence,
            'model_used': verdict.model_used,
            'produced_at': verdict.produced_at,
            'created_at': utcnow(),
        }
        self._verdicts[vid] = row
        return row

    def find_records(self, entity_id: Optional[str] = None, since: Optional[datetime] = None,
                     limit: int = 100) -> List[StoredRecord]:
        """Find stored records, newest observation first."""
        if since is not None:
            since = as_utc(since)
        with self._lock:
            records = []
            for verdict in self._verdicts.values():
                item = self._items[verdict['item_id']]
                if entity_id is not None and item['entity_id'] != entity_id:
                    continue
                if since is not None and item['observed_at'] < since:
                    continue
                records.append(build_record(item, verdict))

        records.sort(key=lambda r: (r.observed_at, r.id), reverse=True)
        return records[:limit]

    def day_counts(self, entity_id: str, start: datetime, end: datetime) -> Dict:
        """Aggregate verdicts of items observed in [start, end) for one entity."""
        with self._lock:
            item_ids = {
                pk for pk, item in self._items.items()
                if item['entity_id'] == entity_id and start <= item['observed_at'] < end
            }
            counts = defaultdict(int)
            signed_sum = 0.0
            for verdict in self._verdicts.values():
                if verdict['item_id'] not in item_ids:
                    continue
                label = verdict['label']
                counts[label] += 1
                if label == "POSITIVE":
                    signed_sum += verdict['score']
                elif label == "NEGATIVE":
                    signed_sum -= verdict['score']

            return {
                "positive": counts["POSITIVE"],
                "negative": counts["NEGATIVE"],
                "neutral": counts["NEUTRAL"],
                "signed_score_sum": signed_sum,
                "total": len(item_ids),
            }

    def stats(self, entity_id: Optional[str] = None) -> SentimentStats:
        """Counts by label, platform and language, optionally for one entity."""
        with self._lock:
            item_ids = {
                pk for pk, item in self._items.items()
                if entity_id is None or item['entity_id'] == entity_id
            }
            result = SentimentStats(entity_id=entity_id, total_items=len(item_ids))
            platforms = defaultdict(int)
            languages = defaultdict(int)
            for pk in item_ids:
                platforms[self._items[pk]['source_platform']] += 1
                languages[self._items[pk]['language']] += 1

            confidence_sum = 0.0
            for verdict in self._verdicts.values():
                if verdict['item_id'] not in item_ids:
                    continue
                result.total_verdicts += 1
                result.sentiment_breakdown[verdict['label']] += 1
                confidence_sum += verdict['confidence']

        result.platform_breakdown = dict(platforms)
        result.language_breakdown = dict(languages)
        if result.total_verdicts:
            result.average_confidence = confidence_sum / result.total_verdicts
        return result

    def duplicate_verdict_groups(self) -> List[Tuple[int, List[int]]]:
        """Group verdict ids by item; only items with more than one verdict."""
        with self._lock:
            groups: Dict[int, List[int]] = defaultdict(list)
            for vid in sorted(self._verdicts):
                groups[self._verdicts[vid]['item_id']].append(vid)

        return [(item_id, ids) for item_id, ids in sorted(groups.items()) if len(ids) > 1]

    def delete_verdicts(self, verdict_ids: Iterable[int]) -> int:
        """Delete verdicts by id, returning how many were removed."""
        with self._lock:
            removed = 0
            for vid in verdict_ids:
                if self._verdicts.pop(vid, None) is not None:
                    removed += 1
            return removed

    def get_stats(self) -> Dict:
        """Get storage statistics."""
        with self._lock:
            return {
                'backend': 'memory',
                'total_items': len(self._items),
                'total_verdicts': len(self._verdicts),
            }

    def clear(self):
        """Clear all data (useful for testing)."""
        with self._lock:
            self._items.clear()
            self._verdicts.clear()
            self._item_index.clear()
            self._item_counter = 1
            self._verdict_counter = 1
            logger.info("Cleared all in-memory storage")

    def close(self):
        pass
