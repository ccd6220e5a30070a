"""
Knowledge Retriever
--------------------
Embeds the visitor's query and pulls the bot's most similar documents
out of the document store, formatted as a context block for the prompt.

Each query that reaches the vector search is reported to the UsageRecorder
(when a conversation id is known) with the cited document ids, possibly
none.  Reporting is fire-and-forget and never affects the result.

The retriever is stateless per query -- call retrieve() as many times
as you like from the same instance.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from langsmith import traceable
from loguru import logger

from kb_ingest.analytics.usage import UsageRecorder
from kb_ingest.embedding.embedder import EmbeddingFunction
from kb_ingest.errors import KnowledgeBaseError, UpstreamError
from kb_ingest.storage.base import DocumentStore

TOP_K = 4
MIN_QUERY_CHARS = 6


@dataclass
class RetrievalResult:
    context_block: str = ""
    document_ids: list[str] = field(default_factory=list)
    similarities: list[float] = field(default_factory=list)

    @property
    def has_context(self) -> bool:
        return bool(self.document_ids)


class KnowledgeRetriever:
    """Cosine top-k over one bot's documents with usage reporting."""

    def __init__(
        self,
        store: DocumentStore,
        embedder: EmbeddingFunction,
        recorder: Optional[UsageRecorder] = None,
        top_k: int = TOP_K,
        min_query_chars: int = MIN_QUERY_CHARS,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.recorder = recorder
        self.top_k = top_k
        self.min_query_chars = min_query_chars

    @classmethod
    def from_config(
        cls,
        store: DocumentStore,
        embedder: EmbeddingFunction,
        config: dict,
        recorder: Optional[UsageRecorder] = None,
    ) -> "KnowledgeRetriever":
        return cls(
            store,
            embedder,
            recorder=recorder,
            top_k=config.get("top_k", TOP_K),
            min_query_chars=config.get("min_query_chars", MIN_QUERY_CHARS),
        )

    @traceable(name="retrieve_knowledge", run_type="retriever")
    async def retrieve(
        self,
        bot_id: str,
        query: str,
        conversation_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> RetrievalResult:
        """
        Return the top-k documents for `query`.

        Queries shorter than `min_query_chars` (greetings, "ok", ...) skip
        embedding entirely and return an empty result without being logged.
        """
        trimmed = query.strip()
        if len(trimmed) < self.min_query_chars:
            logger.debug(f"[Retriever] Query too short, skipping: {trimmed!r}")
            return RetrievalResult()

        logger.debug(f"[Retriever] Query: {trimmed[:80]!r}")
        try:
            vector = await self.embedder.embed(trimmed)
        except KnowledgeBaseError:
            raise
        except Exception as exc:
            raise UpstreamError(f"Query embedding failed: {exc}", cause=exc) from exc

        hits = self.store.vector_search(bot_id, vector, limit=self.top_k)
        texts: list[str] = []
        result = RetrievalResult()
        for document_id, score in hits:
            record = self.store.get(document_id)
            if record is None:
                continue
            texts.append(record["text"])
            result.document_ids.append(document_id)
            result.similarities.append(score)
        result.context_block = "\n\n---\n\n".join(texts)

        logger.info(
            f"[Retriever] bot={bot_id} | {len(result.document_ids)} document(s) "
            f"(top score: {result.similarities[0]:.4f})" if result.similarities
            else f"[Retriever] bot={bot_id} | No results"
        )

        if conversation_id and self.recorder is not None:
            self.recorder.submit(
                bot_id,
                conversation_id,
                result.document_ids,
                user_id=user_id,
                similarities=result.similarities,
            )
        return result
