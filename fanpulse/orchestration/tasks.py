import asyncio
import datetime as dt
import logging
from typing import Dict, List, Optional, Sequence

from fanpulse.config import Settings
from fanpulse.orchestration.scheduler import Collector, PollingScheduler
from fanpulse.errors import AnalysisUnavailable, DuplicateItem, InvalidText, RecordRejected, StoreUnavailable
from fanpulse.services.backends import build_backends, build_http_client
from fanpulse.services.entities import EntityAttributor, load_entities
from fanpulse.services.fusion import BATCH_SIZE, SentimentFusionResolver
from fanpulse.services.ingestion import IngestionGate
from fanpulse.services.insights import InsightRanker
from fanpulse.services.trends import TrendBucketer
from fanpulse.services.types import EntityAssignment, IngestReport, SourceItem, StoredRecord
from fanpulse.storage.factory import create_store

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def healthcheck(store=None) -> Dict:
    """Health check with timestamp and storage stats."""
    result = {
        "status": "ok",
        "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
        "version": VERSION,
    }
    if store is None:
        return result

    try:
        result["storage"] = store.get_stats()
    except StoreUnavailable as e:
        logger.error(f"Health check failed: {e}")
        result["status"] = "degraded"
        result["error"] = e.message
    return result


class IngestionPipeline:
    """
    Complete pipeline for one item: attribute -> resolve -> ingest.

    Known identity keys are rejected before any backend is called, so
    re-polling the same source costs one store lookup per item.
    """

    def __init__(self, attributor, resolver, gate, store_unassigned: bool = True):
        self.attributor = attributor
        self.resolver = resolver
        self.gate = gate
        self.store_unassigned = store_unassigned

    async def process_item(self, item: SourceItem) -> Optional[StoredRecord]:
        """
        Process one item.

        Returns:
            The stored record, or None if the item is unassigned and
            unassigned items are not stored

        Raises:
            DuplicateItem: if the identity key is already stored
            InvalidText / AnalysisUnavailable: if no verdict could be produced
            StoreUnavailable: if the store cannot be reached
        """
        if await asyncio.to_thread(self.gate.exists, item):
            logger.debug(f"Already ingested {item.source_platform}:{item.source_id}")
            raise DuplicateItem(item.source_platform, item.source_id)

        assignment = EntityAssignment(entity_id=self.attributor.attribute(item.text))
        if not assignment.is_assigned and not self.store_unassigned:
            logger.debug(f"Skipping unassigned {item.source_platform}:{item.source_id}")
            return None

        verdict = await self.resolver.resolve(item.text)
        return await asyncio.to_thread(self.gate.ingest, item, assignment, verdict)

    async def process_batch(self, items: Sequence[SourceItem]) -> IngestReport:
        """Process many items with bounded concurrency; per-item failures are counted, not raised."""
        report = IngestReport(received=len(items))
        semaphore = asyncio.Semaphore(BATCH_SIZE)

        async def _one(item: SourceItem):
            async with semaphore:
                try:
                    record = await self.process_item(item)
                except DuplicateItem:
                    report.duplicates += 1
                    return
                except (InvalidText, AnalysisUnavailable) as e:
                    logger.warning(f"Failed to analyze {item.source_platform}:{item.source_id}: {e.message}")
                    report.failed += 1
                    return
                except (StoreUnavailable, RecordRejected) as e:
                    logger.error(f"Failed to store {item.source_platform}:{item.source_id}: {e.message}")
                    report.failed += 1
                    return
                except Exception as e:
                    logger.exception(f"Unexpected error on {item.source_platform}:{item.source_id}: {e}")
                    report.failed += 1
                    return

                if record is None:
                    report.unassigned_skipped += 1
                else:
                    report.stored += 1
                    report.records.append(record)

        await asyncio.gather(*(_one(item) for item in items))

        logger.info(
            f"Batch complete: {report.stored}/{report.received} stored, "
            f"{report.duplicates} duplicates, {report.unassigned_skipped} unassigned, "
            f"{report.failed} failed"
        )
        return report


class FanPulseServices:
    """Every long-lived collaborator, wired once and shared by the app and CLI."""

    def __init__(self, store, attributor, resolver, gate, bucketer, ranker, pipeline,
                 http_client=None, scheduler=None):
        self.store = store
        self.attributor = attributor
        self.resolver = resolver
        self.gate = gate
        self.bucketer = bucketer
        self.ranker = ranker
        self.pipeline = pipeline
        self.http_client = http_client
        self.scheduler = scheduler

    async def aclose(self):
        try:
            if self.scheduler is not None:
                await self.scheduler.stop()
        finally:
            try:
                if self.http_client is not None:
                    await self.http_client.aclose()
            finally:
                self.store.close()


def build_services(settings: Settings, store=None, backends: Optional[List] = None,
                   collect: Optional[Collector] = None) -> FanPulseServices:
    """
    Wire the services from settings; store and backends may be injected.

    A polling scheduler is created only when a collector is given.
    """
    if store is None:
        store = create_store(settings)

    entities = load_entities(settings.entities_file) if settings.entities_file else None
    attributor = EntityAttributor(entities)

    http_client = None
    if backends is None:
        http_client = build_http_client(settings)
        backends = build_backends(settings, http_client)
    backend_a, backend_b = backends

    resolver = SentimentFusionResolver(
        backend_a,
        backend_b,
        timeout_seconds=settings.backend_timeout_seconds,
        a_max_chars=settings.backend_a_max_chars,
        b_max_chars=settings.backend_b_max_chars,
    )
    gate = IngestionGate(store)
    bucketer = TrendBucketer(
        store,
        attributor,
        store_timeout_seconds=settings.store_timeout_seconds,
        max_range_days=settings.max_range_days,
    )
    ranker = InsightRanker(bucketer)
    pipeline = IngestionPipeline(attributor, resolver, gate, store_unassigned=settings.store_unassigned)
    scheduler = None
    if collect is not None:
        scheduler = PollingScheduler(collect, pipeline, interval_seconds=settings.poll_interval_seconds)

    return FanPulseServices(
        store=store,
        attributor=attributor,
        resolver=resolver,
        gate=gate,
        bucketer=bucketer,
        ranker=ranker,
        pipeline=pipeline,
        http_client=http_client,
        scheduler=scheduler,
    )
