import os
import logging
import psycopg
from psycopg.rows import dict_row
from datetime import datetime
from typing import Optional, List, Dict, Iterable, Tuple
from fanpulse.errors import StoreUnavailable
from fanpulse.services.types import SentimentStats, SourceItem, StoredRecord, Verdict, as_utc
from fanpulse.storage.base import DuplicateKeyError, build_record
from fanpulse.storage.db_pool import DatabasePool

logger = logging.getLogger(__name__)

_RECORD_COLUMNS = """
    v.id, v.item_id, v.label, v.score, v.confidence, v.model_used, v.produced_at,
    i.source_platform, i.source_id, i.entity_id, i.author, i.text, i.observed_at, i.ingested_at
"""


def _split_row(row: Dict) -> Tuple[Dict, Dict]:
    item = {
        "id": row["item_id"],
        "source_platform": row["source_platform"],
        "source_id": row["source_id"],
        "entity_id": row["entity_id"],
        "author": row["author"],
        "text": row["text"],
        "observed_at": row["observed_at"],
        "ingested_at": row["ingested_at"],
    }
    return item, row


class PostgresStorage:
    """Record store backed by PostgreSQL through a DatabasePool."""

    def __init__(self, pool: DatabasePool):
        self.pool = pool
        self._init_schema()

    def _init_schema(self):
        schema_path = os.path.join(os.path.dirname(__file__), "schemas.sql")
        with open(schema_path) as f:
            schema = f.read()
        with self.pool.get_connection() as conn:
            with conn.cursor() as c:
                c.execute(schema)

    def find_item(self, source_platform: str, source_id: str) -> Optional[Dict]:
        with self.pool.get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as c:
                c.execute("""
                    SELECT * FROM source_items
                    WHERE source_platform = %s AND source_id = %s
                """, (source_platform, source_id))
                return c.fetchone()

    def insert_record(self, item: SourceItem, entity_id: str, verdict: Verdict) -> StoredRecord:
        with self.pool.get_connection() as conn:
            with conn.transaction():
                with conn.cursor(row_factory=dict_row) as c:
                    c.execute("""
                        INSERT INTO source_items
                        (source_platform, source_id, entity_id, author, text, url, language, observed_at)
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                        ON CONFLICT (source_platform, source_id) DO NOTHING
                        RETURNING *
                    """, (
                        item.source_platform, item.source_id, entity_id, item.author,
                        item.text, item.url, item.language, item.observed_at
                    ))
                    item_row = c.fetchone()
                    if item_row is None:
                        raise DuplicateKeyError(item.source_platform, item.source_id)

                    verdict_row = self._insert_verdict(c, item_row["id"], verdict)

        logger.debug(f"Stored item {item_row['id']} from {item.source_platform}")
        return build_record(item_row, verdict_row)

    def append_verdict(self, item_id: int, verdict: Verdict) -> StoredRecord:
        """Add a second verdict row for an item, the shape cleanup_duplicates repairs."""
        with self.pool.get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as c:
                c.execute("SELECT * FROM source_items WHERE id = %s", (item_id,))
                item_row = c.fetchone()
                if item_row is None:
                    raise KeyError(f"Item {item_id} not found")
                verdict_row = self._insert_verdict(c, item_id, verdict)
        return build_record(item_row, verdict_row)

    @staticmethod
    def _insert_verdict(cursor, item_id: int, verdict: Verdict) -> Dict:
        cursor.execute("""
            INSERT INTO verdicts (item_id, label, score, confidence, model_used, produced_at)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING *
        """, (
            item_id, verdict.label.value, verdict.score, verdict.confidence,
            verdict.model_used, verdict.produced_at
        ))
        return cursor.fetchone()

    def find_records(self, entity_id: Optional[str] = None, since: Optional[datetime] = None,
                     limit: int = 100) -> List[StoredRecord]:
        clauses = []
        params: List = []
        if entity_id is not None:
            clauses.append("i.entity_id = %s")
            params.append(entity_id)
        if since is not None:
            clauses.append("i.observed_at >= %s")
            params.append(as_utc(since))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        params.append(limit)

        with self.pool.get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as c:
                c.execute(f"""
                    SELECT {_RECORD_COLUMNS}
                    FROM verdicts v
                    JOIN source_items i ON i.id = v.item_id
                    {where}
                    ORDER BY i.observed_at DESC, v.id DESC
                    LIMIT %s
                """, params)
                rows = c.fetchall()

        return [build_record(*_split_row(row)) for row in rows]

    def day_counts(self, entity_id: str, start: datetime, end: datetime) -> Dict:
        with self.pool.get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as c:
                c.execute("""
                    SELECT
                        COUNT(v.id) FILTER (WHERE v.label = 'POSITIVE') AS positive,
                        COUNT(v.id) FILTER (WHERE v.label = 'NEGATIVE') AS negative,
                        COUNT(v.id) FILTER (WHERE v.label = 'NEUTRAL') AS neutral,
                        COALESCE(SUM(CASE
                            WHEN v.label = 'POSITIVE' THEN v.score
                            WHEN v.label = 'NEGATIVE' THEN -v.score
                            ELSE 0 END), 0) AS signed_score_sum,
                        COUNT(DISTINCT i.id) AS total
                    FROM source_items i
                    LEFT JOIN verdicts v ON v.item_id = i.id
                    WHERE i.entity_id = %s AND i.observed_at >= %s AND i.observed_at < %s
                """, (entity_id, start, end))
                row = c.fetchone()

        return {
            "positive": row["positive"],
            "negative": row["negative"],
            "neutral": row["neutral"],
            "signed_score_sum": float(row["signed_score_sum"]),
            "total": row["total"],
        }

    def stats(self, entity_id: Optional[str] = None) -> SentimentStats:
        where = "WHERE i.entity_id = %s" if entity_id is not None else ""
        params = (entity_id,) if entity_id is not None else ()
        result = SentimentStats(entity_id=entity_id)

        with self.pool.get_connection() as conn:
            with conn.cursor() as c:
                c.execute(f"""
                    SELECT i.source_platform, COALESCE(i.language, 'unknown'), COUNT(*)
                    FROM source_items i
                    {where}
                    GROUP BY 1, 2
                """, params)
                for platform, language, count in c.fetchall():
                    result.total_items += count
                    result.platform_breakdown[platform] = result.platform_breakdown.get(platform, 0) + count
                    result.language_breakdown[language] = result.language_breakdown.get(language, 0) + count

                c.execute(f"""
                    SELECT v.label, COUNT(*), COALESCE(SUM(v.confidence), 0)
                    FROM verdicts v
                    JOIN source_items i ON i.id = v.item_id
                    {where}
                    GROUP BY v.label
                """, params)
                confidence_sum = 0.0
                for label, count, label_confidence in c.fetchall():
                    result.total_verdicts += count
                    result.sentiment_breakdown[label] = count
                    confidence_sum += float(label_confidence)

        if result.total_verdicts:
            result.average_confidence = confidence_sum / result.total_verdicts
        return result

    def duplicate_verdict_groups(self) -> List[Tuple[int, List[int]]]:
        with self.pool.get_connection() as conn:
            with conn.cursor() as c:
                c.execute("""
                    SELECT item_id, array_agg(id ORDER BY id)
                    FROM verdicts
                    GROUP BY item_id
                    HAVING COUNT(*) > 1
                    ORDER BY item_id
                """)
                return [(r[0], list(r[1])) for r in c.fetchall()]

    def delete_verdicts(self, verdict_ids: Iterable[int]) -> int:
        ids = list(verdict_ids)
        if not ids:
            return 0
        with self.pool.get_connection() as conn:
            with conn.cursor() as c:
                c.execute("DELETE FROM verdicts WHERE id = ANY(%s)", (ids,))
                return c.rowcount

    def get_stats(self) -> Dict:
        try:
            with self.pool.get_connection() as conn:
                with conn.cursor() as c:
                    c.execute("SELECT (SELECT COUNT(*) FROM source_items), (SELECT COUNT(*) FROM verdicts)")
                    items, verdicts = c.fetchone()
        except (StoreUnavailable, psycopg.Error) as e:
            logger.error(f"Failed to read storage stats: {e}")
            raise StoreUnavailable(f"Could not read storage stats: {e}") from e

        return {
            "backend": "postgres",
            "total_items": items,
            "total_verdicts": verdicts,
            "pool": self.pool.get_stats(),
        }

    def close(self):
        self.pool.close()
