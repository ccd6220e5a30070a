"""
OpenAI Embedding Client with LangSmith instrumentation
---------------------------------------------------------
Wraps the OpenAI embeddings API with:
  - Async calls so website batches can embed concurrently
  - LangSmith run tracing for cost / latency observability
  - Retry logic via tenacity
  - Token usage logging

The ingestion core only depends on the EmbeddingFunction protocol
(`await embedder.embed(text) -> list[float]`); tests plug in fakes.
"""
from __future__ import annotations

import time
from typing import Protocol

import numpy as np
from langsmith import traceable
from loguru import logger
from openai import AsyncOpenAI
from tenacity import retry, stop_after_attempt, wait_exponential

from kb_ingest.errors import ValidationError

MODEL = "text-embedding-3-small"
DIMENSIONS = 1536          # text-embedding-3-small native dimensions


class EmbeddingFunction(Protocol):
    async def embed(self, text: str) -> list[float]:
        ...


class Embedder:
    """
    Generates L2-normalised embeddings for single chunks of text.

    Embeddings are normalised to unit length so cosine similarity ==
    inner product in the document store.
    """

    def __init__(
        self,
        api_key: str,
        model: str = MODEL,
        dimensions: int = DIMENSIONS,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.model = model
        self.dimensions = dimensions
        self._client = client or AsyncOpenAI(api_key=api_key)
        self.total_tokens_used: int = 0
        self.total_api_calls: int = 0

    @traceable(name="embed_text", run_type="embedding")
    async def embed(self, text: str) -> list[float]:
        """Embed one string and return a unit-length vector of `dimensions` floats."""
        trimmed = text.strip()
        if not trimmed:
            raise ValidationError("Text is required to generate embeddings")

        vector, tokens = await self._embed_once(trimmed)
        self.total_tokens_used += tokens
        self.total_api_calls += 1

        arr = np.asarray(vector, dtype=np.float32)
        norm = np.linalg.norm(arr)
        if norm:
            arr = arr / norm
        return arr.astype(float).tolist()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )
    async def _embed_once(self, text: str) -> tuple[list[float], int]:
        """Call the OpenAI Embeddings API for a single input."""
        start = time.perf_counter()
        response = await self._client.embeddings.create(
            model=self.model,
            input=[text],
            dimensions=self.dimensions,
        )
        elapsed = time.perf_counter() - start

        tokens_used = response.usage.total_tokens
        logger.debug(f"[Embedder] API call: {len(text)} chars, {tokens_used} tokens, {elapsed:.2f}s")
        return response.data[0].embedding, tokens_used

    def usage_summary(self) -> dict:
        return {
            "model": self.model,
            "total_api_calls": self.total_api_calls,
            "total_tokens_used": self.total_tokens_used,
            # text-embedding-3-small: $0.020 per million tokens
            "estimated_cost_usd": round(self.total_tokens_used / 1_000_000 * 0.020, 6),
        }
