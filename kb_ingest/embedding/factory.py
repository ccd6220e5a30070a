"""
Embedder Factory
-----------------
Holds one Embedder per API key for the lifetime of the process.

Each bot may bring its own provider key; bots without one share the key from
the OPENAI_API_KEY environment variable.  Rotating a credential means calling
invalidate() so the next lookup builds a fresh client.
"""
from __future__ import annotations

import os
from typing import Optional

from loguru import logger

from kb_ingest.embedding.embedder import DIMENSIONS, MODEL, Embedder
from kb_ingest.errors import ConfigurationError


class EmbedderFactory:
    """Credential-keyed cache of Embedder instances."""

    def __init__(self, config: dict | None = None, env_var: str = "OPENAI_API_KEY") -> None:
        config = config or {}
        self.model: str = config.get("model", MODEL)
        self.dimensions: int = config.get("dimensions", DIMENSIONS)
        self.env_var = env_var
        self._cache: dict[str, Embedder] = {}

    def resolve_api_key(self, api_key: Optional[str] = None) -> str:
        """Bot-level key first, then the environment."""
        key = api_key or os.getenv(self.env_var)
        if not key:
            raise ConfigurationError(
                f"Embedding API key is not configured. Set it on the bot or in {self.env_var}."
            )
        return key

    def get_embedder(self, api_key: Optional[str] = None) -> Embedder:
        key = self.resolve_api_key(api_key)
        embedder = self._cache.get(key)
        if embedder is None:
            embedder = Embedder(api_key=key, model=self.model, dimensions=self.dimensions)
            self._cache[key] = embedder
            logger.debug(f"[EmbedderFactory] Created embedder for key ...{key[-4:]} ({self.model})")
        return embedder

    def invalidate(self, api_key: Optional[str] = None) -> None:
        """Drop the cached client for one key, or every client when no key is given."""
        if api_key is None:
            dropped = len(self._cache)
            self._cache.clear()
        else:
            dropped = 1 if self._cache.pop(api_key, None) is not None else 0
        logger.info(f"[EmbedderFactory] Invalidated {dropped} cached embedder(s)")

    def __len__(self) -> int:
        return len(self._cache)
