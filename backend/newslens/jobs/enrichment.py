"""
Enrichment job - analyses pending items with a bounded worker pool.

Each pass:
1. Takes up to `batch_limit` pending items from the durable queue
   (newest first, inside the window, below the attempt cap)
2. Runs `concurrency` workers over an asyncio.Queue
3. Per item: analysis -> topic canonicalization -> store features once
4. A failed item stays pending with its attempt count incremented; the next
   pass retries it. Failures never stop the other workers.
"""
import asyncio
from datetime import timedelta
from typing import Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError

from newslens.config import Settings, get_settings
from newslens.core.errors import NewsLensError
from newslens.core.utils import utcnow
from newslens.services.analysis import AnalysisService
from newslens.services.canonicalizer import TopicCanonicalizer, merge_topic_tags
from newslens.services.store import Store

logger = structlog.get_logger(__name__)


class EnrichmentJob:
    """Drains the pending-enrichment queue."""

    def __init__(
        self,
        store: Store,
        analysis: AnalysisService,
        canonicalizer: TopicCanonicalizer,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.analysis = analysis
        self.canonicalizer = canonicalizer
        self.settings = (settings or get_settings()).enrichment

    async def enqueue_missing(self, window_hours: Optional[int] = None) -> int:
        """Queue every unanalysed item in the window. Safe to call repeatedly."""
        since = utcnow() - timedelta(hours=window_hours or self.settings.window_hours)
        item_ids = await self.store.unanalysed_item_ids(since)
        added = await self.store.enqueue_enrichment(item_ids)
        logger.info("enrich.enqueued", unanalysed=len(item_ids), added=added)
        return added

    async def run(self, limit: Optional[int] = None) -> dict[str, int]:
        """Execute one enrichment pass and return its stats."""
        since = utcnow() - timedelta(hours=self.settings.window_hours)
        item_ids = await self.store.pending_enrichment(
            since,
            limit=limit or self.settings.batch_limit,
            max_attempts=self.settings.max_attempts,
        )

        stats = {"pending": len(item_ids), "ok": 0, "failed": 0, "skipped": 0}
        if not item_ids:
            logger.info("enrich.nothing_pending")
            return stats

        queue: asyncio.Queue[str] = asyncio.Queue()
        for item_id in item_ids:
            queue.put_nowait(item_id)

        workers = min(self.settings.concurrency, len(item_ids))
        logger.info("enrich.started", pending=len(item_ids), workers=workers)

        await asyncio.gather(*(self._worker(n + 1, queue, stats) for n in range(workers)))

        logger.info("enrich.completed", **stats)
        return stats

    async def _worker(self, worker_id: int, queue: "asyncio.Queue[str]", stats: dict[str, int]) -> None:
        while True:
            try:
                item_id = queue.get_nowait()
            except asyncio.QueueEmpty:
                return

            try:
                outcome = await self.enrich_item(item_id)
                stats[outcome] += 1
                logger.debug("enrich.item.done", item_id=item_id, worker=worker_id, outcome=outcome)
            except Exception as e:
                stats["failed"] += 1
                logger.warning("enrich.item.failed", item_id=item_id, worker=worker_id, error=str(e))
                await self._record_failure(item_id, worker_id, e)
            finally:
                queue.task_done()

    async def _record_failure(self, item_id: str, worker_id: int, error: Exception) -> None:
        """Bump the attempt count. Store errors are logged, not raised."""
        try:
            await self.store.fail_enrichment(item_id, f"{type(error).__name__}: {error}")
        except (SQLAlchemyError, NewsLensError) as e:
            logger.error("enrich.item.fail_record_failed", item_id=item_id, worker=worker_id, error=str(e))

    async def enrich_item(self, item_id: str) -> str:
        """
        Analyse one item and store its features.

        Returns "ok" when features were written, "skipped" when the item is
        gone or already analysed.
        """
        item = await self.store.get_item(item_id)
        if item is None or item.is_enriched:
            await self.store.complete_enrichment(item_id)
            return "skipped"

        result = await self.analysis.analyze(item.title, item.summary)
        tags = merge_topic_tags(await self.canonicalizer.resolve_batch(result.raw_topics))
        features = result.features.model_copy(update={"topics": tags})

        written = await self.store.save_analysis(item_id, features)
        return "ok" if written else "skipped"
