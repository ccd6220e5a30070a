"""
Usage / Analytics Aggregator
-----------------------------
Reads the usage log and the bot's current documents back into KBStats:

  - how many queries in the window found context (coverage percentage)
  - which documents were cited, how often, and when last
  - which current documents were never cited

Recording happens off the request path: UsageRecorder queues entries and a
single asyncio worker writes them, so a slow or failing log store can never
delay or break a chat reply.
"""
from __future__ import annotations

import asyncio
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Optional

from loguru import logger

from kb_ingest.schemas import DocumentUsage, KBStats, UsageLogEntry
from kb_ingest.storage.base import DocumentStore, UsageLogStore
from kb_ingest.utils.helpers import now_ms

DAY_MS = 86_400_000
DEFAULT_WINDOW_DAYS = 7
TOP_DOCUMENTS = 5


def coverage_percent(successful: int, total: int) -> int:
    """round-half-up(successful / total * 100), clamped to [0, 100]; 0 for no queries."""
    if total <= 0:
        return 0
    pct = (Decimal(successful) * 100 / Decimal(total)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return max(0, min(100, int(pct)))


class UsageAggregator:
    """
    Appends usage entries and computes per-bot retrieval statistics.

    get_stats() is read-only and returns zeroed stats for a bot with no
    documents or no queries.
    """

    def __init__(
        self,
        log_store: UsageLogStore,
        document_store: DocumentStore,
        clock: Optional[Callable[[], int]] = None,
        config: dict | None = None,
    ) -> None:
        config = config or {}
        self.log_store = log_store
        self.document_store = document_store
        self.clock = clock or now_ms
        self.default_window_days: int = config.get("default_window_days", DEFAULT_WINDOW_DAYS)

    def record_query(
        self,
        bot_id: str,
        conversation_id: str,
        cited_document_ids: list[str],
        user_id: Optional[str] = None,
        similarities: Optional[list[float]] = None,
    ) -> UsageLogEntry:
        entry = UsageLogEntry(
            timestamp=self.clock(),
            bot_id=bot_id,
            conversation_id=conversation_id,
            user_id=user_id,
            cited_document_ids=list(dict.fromkeys(cited_document_ids)),
            similarities=list(similarities or []),
        )
        self.log_store.append(entry.model_dump(mode="json"))
        logger.debug(
            f"[Usage] bot={bot_id} conv={conversation_id} | {len(entry.cited_document_ids)} cited"
        )
        return entry

    def get_stats(self, user_id: str, bot_id: str, window_days: Optional[int] = None) -> KBStats:
        window_days = self.default_window_days if window_days is None else window_days
        since = self.clock() - window_days * DAY_MS

        documents = self.document_store.list_by_bot_and_user(bot_id, user_id)
        entries = [UsageLogEntry(**e) for e in self.log_store.list_by_bot_since(bot_id, since)]

        total_queries = len(entries)
        successful = sum(1 for e in entries if e.is_successful)

        # document_id -> [count, last_used_at]
        usage: dict[str, list[int]] = {}
        total_retrievals = 0
        for entry in entries:
            # Entries written before citations were de-duplicated may repeat an id
            for document_id in dict.fromkeys(entry.cited_document_ids):
                total_retrievals += 1
                slot = usage.setdefault(document_id, [0, 0])
                slot[0] += 1
                slot[1] = max(slot[1], entry.timestamp)

        per_document = sorted(
            (DocumentUsage(document_id=d, count=c, last_used_at=t) for d, (c, t) in usage.items()),
            key=lambda u: (-u.count, -u.last_used_at, u.document_id),
        )
        unused = [d["id"] for d in documents if d["id"] not in usage]

        stats = KBStats(
            total_documents=len(documents),
            total_queries=total_queries,
            successful_retrieval_queries=successful,
            fallback_no_context_queries=total_queries - successful,
            retrieval_coverage_percent=coverage_percent(successful, total_queries),
            per_document_usage=per_document,
            unused_document_ids=unused,
            top_documents=per_document[:TOP_DOCUMENTS],
            documents_used_last_period=len(per_document),
            total_retrievals=total_retrievals,
            window_days=window_days,
        )
        logger.info(
            f"[Usage] bot={bot_id} | {total_queries} queries over {window_days}d "
            f"| coverage={stats.retrieval_coverage_percent}% | {len(unused)} unused docs"
        )
        return stats


class UsageRecorder:
    """
    Fire-and-forget front of UsageAggregator.record_query.

    Usage:
        recorder = UsageRecorder(aggregator)
        await recorder.start()
        recorder.submit(bot_id, conversation_id, cited_ids)   # never raises
        await recorder.stop()                                  # drains the queue
    """

    def __init__(self, aggregator: UsageAggregator, max_queue_size: int = 1000) -> None:
        self.aggregator = aggregator
        self._queue: asyncio.Queue[Optional[dict[str, Any]]] = asyncio.Queue(maxsize=max_queue_size)
        self._worker: Optional[asyncio.Task] = None
        self.recorded_count = 0
        self.failed_count = 0
        self.dropped_count = 0

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._run())
        logger.debug("[UsageRecorder] Worker started")

    async def stop(self) -> None:
        """Process everything already queued, then stop the worker."""
        if not self.running:
            return
        await self._queue.put(None)
        await self._worker
        self._worker = None
        logger.debug(
            f"[UsageRecorder] Worker stopped | recorded={self.recorded_count} "
            f"failed={self.failed_count} dropped={self.dropped_count}"
        )

    def submit(
        self,
        bot_id: str,
        conversation_id: str,
        cited_document_ids: list[str],
        user_id: Optional[str] = None,
        similarities: Optional[list[float]] = None,
    ) -> bool:
        """Queue one entry.  Returns False (and logs) when the queue is full."""
        try:
            self._queue.put_nowait(
                {
                    "bot_id": bot_id,
                    "conversation_id": conversation_id,
                    "cited_document_ids": list(dict.fromkeys(cited_document_ids)),
                    "user_id": user_id,
                    "similarities": list(similarities or []),
                }
            )
        except asyncio.QueueFull:
            self.dropped_count += 1
            logger.warning(f"[UsageRecorder] Queue full, dropped usage entry for bot={bot_id}")
            return False
        return True

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    return
                self.aggregator.record_query(**item)
                self.recorded_count += 1
            except Exception as exc:
                self.failed_count += 1
                logger.error(f"[UsageRecorder] Failed to record usage: {exc}")
            finally:
                self._queue.task_done()
