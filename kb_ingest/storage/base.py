"""
Abstract store interfaces.

The ingestion core relies only on atomic single-record operations; there is
no multi-record transaction, so a failed multi-chunk ingestion can leave
some of its documents behind.  Records cross this boundary as plain dicts
(`KnowledgeDocument.model_dump(mode="json")`).
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterator, Optional


class DocumentStore(ABC):
    """Tenant/bot-scoped document storage with a similarity-search primitive."""

    @abstractmethod
    def insert(self, record: dict[str, Any]) -> str:
        """Persist a new record and return its id."""
        ...

    @abstractmethod
    def get(self, document_id: str) -> Optional[dict[str, Any]]:
        ...

    @abstractmethod
    def patch(self, document_id: str, fields: dict[str, Any]) -> None:
        """Overwrite the given top-level fields of an existing record."""
        ...

    @abstractmethod
    def delete(self, document_id: str) -> None:
        ...

    @abstractmethod
    def list_by_bot_and_user(self, bot_id: str, user_id: str) -> list[dict[str, Any]]:
        """All records owned by `user_id` for `bot_id`, in insertion order."""
        ...

    @abstractmethod
    def vector_search(
        self, bot_id: str, vector: list[float], limit: int = 4
    ) -> list[tuple[str, float]]:
        """(document_id, similarity) pairs for `bot_id`, most similar first."""
        ...

    @contextmanager
    def batch(self) -> Iterator[None]:
        """
        Group several writes.  Stores that persist snapshots write once on exit
        (also when the block raises); write-through stores need nothing here.
        """
        yield


class UsageLogStore(ABC):
    """Append-only log of retrieval attempts."""

    @abstractmethod
    def append(self, entry: dict[str, Any]) -> None:
        ...

    @abstractmethod
    def list_by_bot_since(self, bot_id: str, since_ms: int) -> list[dict[str, Any]]:
        """Entries for `bot_id` with timestamp >= since_ms."""
        ...
