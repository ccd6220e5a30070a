import asyncio
from types import SimpleNamespace

import pytest

from kb_ingest.embedding.embedder import Embedder
from kb_ingest.embedding.factory import EmbedderFactory
from kb_ingest.errors import ConfigurationError, ValidationError


class StubEmbeddingsAPI:
    def __init__(self, vector):
        self.vector = vector
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        return SimpleNamespace(
            data=[SimpleNamespace(embedding=self.vector)],
            usage=SimpleNamespace(total_tokens=7),
        )


def _embedder(vector, dimensions=2):
    api = StubEmbeddingsAPI(vector)
    client = SimpleNamespace(embeddings=api)
    return Embedder(api_key="sk-test", dimensions=dimensions, client=client), api


# --- Embedder -------------------------------------------------------------------

def test_embed_normalises_and_counts_usage():
    embedder, api = _embedder([3.0, 4.0])
    vector = asyncio.run(embedder.embed("  refund policy  "))

    assert vector == pytest.approx([0.6, 0.8])
    assert api.requests == [{"model": "text-embedding-3-small", "input": ["refund policy"], "dimensions": 2}]
    summary = embedder.usage_summary()
    assert summary["total_api_calls"] == 1
    assert summary["total_tokens_used"] == 7


def test_embed_rejects_blank_text():
    embedder, api = _embedder([1.0, 0.0])
    with pytest.raises(ValidationError):
        asyncio.run(embedder.embed("   "))
    assert api.requests == []


# --- Factory --------------------------------------------------------------------

def test_factory_caches_per_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    factory = EmbedderFactory({"model": "text-embedding-3-large", "dimensions": 256})

    first = factory.get_embedder("sk-bot-a")
    assert factory.get_embedder("sk-bot-a") is first
    assert factory.get_embedder("sk-bot-b") is not first
    assert len(factory) == 2
    assert first.model == "text-embedding-3-large"
    assert first.dimensions == 256


def test_factory_falls_back_to_environment(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    factory = EmbedderFactory()
    assert factory.resolve_api_key() == "sk-env"
    assert factory.resolve_api_key("sk-bot") == "sk-bot"
    assert factory.get_embedder() is factory.get_embedder(None)


def test_factory_without_any_key_fails(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ConfigurationError):
        EmbedderFactory().get_embedder()


def test_invalidate_drops_cached_clients(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    factory = EmbedderFactory()
    old = factory.get_embedder("sk-a")
    factory.get_embedder("sk-b")

    factory.invalidate("sk-a")
    assert len(factory) == 1
    assert factory.get_embedder("sk-a") is not old

    factory.invalidate()
    assert len(factory) == 0
