"""Shared fakes and fixtures: deterministic embedder, controllable clock, in-memory stores."""
from __future__ import annotations

import hashlib
import re

import numpy as np
import pytest

from kb_ingest.analytics.usage import UsageAggregator
from kb_ingest.ingestion.orchestrator import KnowledgeIngestor
from kb_ingest.storage.memory import InMemoryDocumentStore, InMemoryUsageLogStore

DIM = 256
T0 = 1_700_000_000_000      # epoch ms


class FakeEmbedder:
    """Bag-of-words hashing embedder; optionally fails on the Nth call (1-based)."""

    def __init__(self, fail_on_call: int | None = None) -> None:
        self.fail_on_call = fail_on_call
        self.calls: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise RuntimeError("provider unavailable")
        vec = np.zeros(DIM, dtype=np.float64)
        for word in re.findall(r"\w+", text.lower()):
            vec[int(hashlib.md5(word.encode()).hexdigest(), 16) % DIM] += 1.0
        norm = np.linalg.norm(vec)
        if not norm:
            vec[0] = 1.0
            norm = 1.0
        return (vec / norm).tolist()


class FakeClock:
    """Returns `now`; `step` ms are added after every read."""

    def __init__(self, now: int = T0, step: int = 0) -> None:
        self.now = now
        self.step = step

    def __call__(self) -> int:
        value = self.now
        self.now += self.step
        return value

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def doc_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def usage_store() -> InMemoryUsageLogStore:
    return InMemoryUsageLogStore()


@pytest.fixture
def ingestor(doc_store, embedder, clock) -> KnowledgeIngestor:
    return KnowledgeIngestor(doc_store, embedder, {}, clock=clock)


@pytest.fixture
def aggregator(usage_store, doc_store, clock) -> UsageAggregator:
    return UsageAggregator(usage_store, doc_store, clock=clock)


def make_document(doc_id: str, bot_id: str = "bot_1", user_id: str = "user_1", text: str = "text") -> dict:
    """Minimal stored record, bypassing the ingestion pipeline."""
    return {
        "id": doc_id,
        "user_id": user_id,
        "bot_id": bot_id,
        "text": text,
        "embedding": [1.0] + [0.0] * (DIM - 1),
        "source_type": "inline",
        "source_metadata": None,
        "created_at": T0,
    }
