import asyncio

import pytest

from conftest import make_document
from kb_ingest.analytics.usage import DAY_MS, UsageAggregator, UsageRecorder, coverage_percent


@pytest.fixture
def docs(doc_store):
    for doc_id in ["A", "B", "C"]:
        doc_store.insert(make_document(doc_id))
    return doc_store


# --- Aggregation ------------------------------------------------------------------

def test_coverage_and_per_document_counts(aggregator, docs, clock):
    aggregator.record_query("bot_1", "conv_1", ["A"])
    clock.advance(1_000)
    aggregator.record_query("bot_1", "conv_2", [])
    clock.advance(1_000)
    aggregator.record_query("bot_1", "conv_3", ["A", "B"])

    stats = aggregator.get_stats("user_1", "bot_1", window_days=7)

    assert stats.total_documents == 3
    assert stats.total_queries == 3
    assert stats.successful_retrieval_queries == 2
    assert stats.fallback_no_context_queries == 1
    assert stats.retrieval_coverage_percent == 67
    assert [(u.document_id, u.count) for u in stats.per_document_usage] == [("A", 2), ("B", 1)]
    assert stats.per_document_usage[0].last_used_at == clock.now
    assert stats.unused_document_ids == ["C"]
    assert stats.total_retrievals == 3
    assert stats.documents_used_last_period == 2


def test_empty_bot_has_zeroed_stats(aggregator):
    stats = aggregator.get_stats("user_1", "bot_1")
    assert stats.total_documents == 0
    assert stats.total_queries == 0
    assert stats.retrieval_coverage_percent == 0
    assert stats.per_document_usage == []
    assert stats.unused_document_ids == []
    assert stats.window_days == 7


def test_window_excludes_older_entries(aggregator, docs, clock):
    aggregator.record_query("bot_1", "old", ["A"])
    clock.advance(8 * DAY_MS)
    aggregator.record_query("bot_1", "new", ["B"])

    week = aggregator.get_stats("user_1", "bot_1", window_days=7)
    assert week.total_queries == 1
    assert [u.document_id for u in week.per_document_usage] == ["B"]
    assert week.unused_document_ids == ["A", "C"]

    month = aggregator.get_stats("user_1", "bot_1", window_days=30)
    assert month.total_queries == 2


def test_window_boundary_is_inclusive(aggregator, docs, clock):
    aggregator.record_query("bot_1", "edge", ["A"])
    clock.advance(7 * DAY_MS)
    assert aggregator.get_stats("user_1", "bot_1", window_days=7).total_queries == 1
    clock.advance(1)
    assert aggregator.get_stats("user_1", "bot_1", window_days=7).total_queries == 0


def test_usage_sorted_by_count_then_recency(aggregator, docs, clock):
    aggregator.record_query("bot_1", "c1", ["B"])
    clock.advance(10)
    aggregator.record_query("bot_1", "c2", ["A"])
    clock.advance(10)
    aggregator.record_query("bot_1", "c3", ["C", "C2"])
    clock.advance(10)
    aggregator.record_query("bot_1", "c4", ["C"])

    usage = aggregator.get_stats("user_1", "bot_1").per_document_usage
    assert [u.document_id for u in usage] == ["C", "C2", "A", "B"]
    assert usage[0].count == 2


def test_usage_ties_break_on_document_id(aggregator, docs):
    aggregator.record_query("bot_1", "c1", ["C", "A", "B"])
    usage = aggregator.get_stats("user_1", "bot_1").per_document_usage
    assert [u.document_id for u in usage] == ["A", "B", "C"]


def test_deleted_documents_still_show_usage(aggregator, docs):
    aggregator.record_query("bot_1", "c1", ["A"])
    docs.delete("A")
    stats = aggregator.get_stats("user_1", "bot_1")
    assert [u.document_id for u in stats.per_document_usage] == ["A"]
    assert stats.total_documents == 2
    assert stats.unused_document_ids == ["B", "C"]


def test_top_documents_are_capped_at_five(aggregator, doc_store):
    ids = [f"d{i}" for i in range(8)]
    for doc_id in ids:
        doc_store.insert(make_document(doc_id))
    for n, doc_id in enumerate(ids):
        for _ in range(8 - n):
            aggregator.record_query("bot_1", f"conv_{doc_id}", [doc_id])

    stats = aggregator.get_stats("user_1", "bot_1")
    assert [u.document_id for u in stats.top_documents] == ids[:5]
    assert len(stats.per_document_usage) == 8


def test_other_bots_are_not_counted(aggregator, docs):
    aggregator.record_query("bot_2", "c1", ["A"])
    assert aggregator.get_stats("user_1", "bot_1").total_queries == 0


def test_repeated_citation_counts_once_per_query(aggregator, docs, usage_store):
    entry = aggregator.record_query("bot_1", "c1", ["A", "B", "A"])
    assert entry.cited_document_ids == ["A", "B"]

    stats = aggregator.get_stats("user_1", "bot_1")
    assert [(u.document_id, u.count) for u in stats.per_document_usage] == [("A", 1), ("B", 1)]
    assert stats.total_retrievals == 2
    assert usage_store.list_by_bot_since("bot_1", 0)[0]["cited_document_ids"] == ["A", "B"]


def test_stored_entries_with_repeated_citations_count_once(aggregator, docs, usage_store, clock):
    usage_store.append(
        {
            "id": "legacy",
            "timestamp": clock.now,
            "bot_id": "bot_1",
            "conversation_id": "c1",
            "cited_document_ids": ["C", "C", "C"],
        }
    )
    stats = aggregator.get_stats("user_1", "bot_1")
    assert [(u.document_id, u.count) for u in stats.per_document_usage] == [("C", 1)]
    assert stats.total_retrievals == 1


@pytest.mark.parametrize(
    "successful, total, expected",
    [(0, 0, 0), (2, 3, 67), (1, 3, 33), (1, 8, 13), (1, 200, 1), (1, 201, 0), (5, 5, 100), (7, 5, 100)],
)
def test_coverage_rounds_half_up_and_clamps(successful, total, expected):
    assert coverage_percent(successful, total) == expected


# --- Background recorder ----------------------------------------------------------

def test_recorder_writes_entries_in_background(aggregator, usage_store):
    async def scenario():
        recorder = UsageRecorder(aggregator)
        await recorder.start()
        assert recorder.submit("bot_1", "conv_1", ["A"], user_id="visitor", similarities=[0.9])
        assert recorder.submit("bot_1", "conv_2", [])
        await recorder.stop()
        return recorder

    recorder = asyncio.run(scenario())
    assert recorder.recorded_count == 2
    assert recorder.failed_count == 0
    assert not recorder.running

    entries = usage_store.list_by_bot_since("bot_1", 0)
    assert [e["conversation_id"] for e in entries] == ["conv_1", "conv_2"]
    assert entries[0]["user_id"] == "visitor"
    assert entries[0]["similarities"] == [0.9]


def test_recorder_deduplicates_citations(aggregator, usage_store):
    async def scenario():
        recorder = UsageRecorder(aggregator)
        await recorder.start()
        recorder.submit("bot_1", "conv_1", ["B", "A", "B"])
        await recorder.stop()

    asyncio.run(scenario())
    assert usage_store.list_by_bot_since("bot_1", 0)[0]["cited_document_ids"] == ["B", "A"]


def test_recorder_swallows_store_failures(doc_store, clock):
    class FailingLog:
        def append(self, entry):
            raise IOError("disk full")

        def list_by_bot_since(self, bot_id, since_ms):
            return []

    async def scenario():
        recorder = UsageRecorder(UsageAggregator(FailingLog(), doc_store, clock=clock))
        await recorder.start()
        recorder.submit("bot_1", "conv_1", ["A"])
        recorder.submit("bot_1", "conv_2", ["B"])
        await recorder.stop()
        return recorder

    recorder = asyncio.run(scenario())
    assert recorder.failed_count == 2
    assert recorder.recorded_count == 0


def test_recorder_drops_when_queue_is_full(aggregator):
    recorder = UsageRecorder(aggregator, max_queue_size=1)
    assert recorder.submit("bot_1", "conv_1", [])
    assert not recorder.submit("bot_1", "conv_2", [])
    assert recorder.dropped_count == 1
