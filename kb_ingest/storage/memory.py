"""
In-Memory Stores
-----------------
Dict-backed DocumentStore and UsageLogStore with optional JSON snapshots.

Similarity search is brute-force cosine over the bot's vectors (numpy inner
product on L2-normalised rows), the same trick FAISS IndexFlatIP uses; there
is no ANN index here.

Persistence (when `path` is given):
  - every mutation rewrites the snapshot file via orjson, except inside
    `batch()`, which writes once when the outermost block exits
  - the constructor loads an existing snapshot
"""
from __future__ import annotations

import copy
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional

import numpy as np
from loguru import logger

from kb_ingest.storage.base import DocumentStore, UsageLogStore
from kb_ingest.utils.helpers import load_json, save_json


class InMemoryDocumentStore(DocumentStore):
    """Single-process document store; each call is atomic for one record."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path else None
        self._records: dict[str, dict[str, Any]] = {}
        self._batch_depth = 0
        self._dirty = False
        if self.path and self.path.exists():
            for record in load_json(self.path):
                self._records[record["id"]] = record
            logger.info(f"[DocumentStore] Loaded {len(self._records)} documents from {self.path}")

    def __len__(self) -> int:
        return len(self._records)

    # --- CRUD -----------------------------------------------------------------

    def insert(self, record: dict[str, Any]) -> str:
        record = copy.deepcopy(record)
        document_id = record.get("id") or str(uuid.uuid4())
        if document_id in self._records:
            raise KeyError(f"Document {document_id} already exists")
        record["id"] = document_id
        self._records[document_id] = record
        self._flush()
        return document_id

    def get(self, document_id: str) -> Optional[dict[str, Any]]:
        record = self._records.get(document_id)
        return copy.deepcopy(record) if record else None

    def patch(self, document_id: str, fields: dict[str, Any]) -> None:
        if document_id not in self._records:
            raise KeyError(f"Document {document_id} not found")
        self._records[document_id].update(copy.deepcopy(fields))
        self._flush()

    def delete(self, document_id: str) -> None:
        if self._records.pop(document_id, None) is None:
            raise KeyError(f"Document {document_id} not found")
        self._flush()

    def list_by_bot_and_user(self, bot_id: str, user_id: str) -> list[dict[str, Any]]:
        return [
            copy.deepcopy(r)
            for r in self._records.values()
            if r["bot_id"] == bot_id and r["user_id"] == user_id
        ]

    # --- Search ---------------------------------------------------------------

    def vector_search(
        self, bot_id: str, vector: list[float], limit: int = 4
    ) -> list[tuple[str, float]]:
        candidates = [r for r in self._records.values() if r["bot_id"] == bot_id and r["embedding"]]
        if not candidates or limit <= 0:
            return []

        matrix = np.array([r["embedding"] for r in candidates], dtype=np.float32)
        query = np.asarray(vector, dtype=np.float32)
        if matrix.shape[1] != query.shape[0]:
            raise ValueError(
                f"Dimension mismatch: query has {query.shape[0]}, index has {matrix.shape[1]}"
            )

        # L2-normalise so inner product == cosine similarity
        norms = np.linalg.norm(matrix, axis=1, keepdims=True)
        matrix = matrix / np.where(norms == 0, 1, norms)
        qnorm = np.linalg.norm(query)
        query = query / (qnorm if qnorm else 1)

        scores = matrix @ query
        order = np.argsort(-scores, kind="stable")[:limit]
        return [(candidates[i]["id"], float(scores[i])) for i in order]

    # --- Persistence ----------------------------------------------------------

    @contextmanager
    def batch(self) -> Iterator[None]:
        """Defer snapshot writes until the outermost batch exits."""
        self._batch_depth += 1
        try:
            yield
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0 and self._dirty:
                self._flush()

    def _flush(self) -> None:
        if not self.path:
            return
        if self._batch_depth:
            self._dirty = True
            return
        save_json(list(self._records.values()), self.path)
        self._dirty = False


class InMemoryUsageLogStore(UsageLogStore):
    """Append-only usage log kept in a list, optionally snapshotted to disk."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path else None
        self._entries: list[dict[str, Any]] = []
        if self.path and self.path.exists():
            self._entries = list(load_json(self.path))
            logger.info(f"[UsageLogStore] Loaded {len(self._entries)} entries from {self.path}")

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, entry: dict[str, Any]) -> None:
        self._entries.append(copy.deepcopy(entry))
        if self.path:
            save_json(self._entries, self.path)

    def list_by_bot_since(self, bot_id: str, since_ms: int) -> list[dict[str, Any]]:
        return [
            copy.deepcopy(e)
            for e in self._entries
            if e["bot_id"] == bot_id and e["timestamp"] >= since_ms
        ]
