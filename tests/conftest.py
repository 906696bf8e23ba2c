"""
Test configuration and fixtures.
"""

import asyncio
from typing import Any

import pytest

from contractrag.compliance import load_registry
from contractrag.engine import ComplianceEngine
from contractrag.providers.base import LLMProvider, LLMResponse
from contractrag.rag import (
    BaseEmbedding,
    Chunk,
    DomainTag,
    EmbeddingClient,
    HashEmbedding,
    MemoryKnowledgeStore,
)


INDEMNITY_CONTRACT = (
    "1. Indemnification. University shall indemnify, defend, and hold harmless "
    "the Contractor from any claims arising under this Agreement.\n\n"
    "2. Termination. Either party may terminate this Agreement for convenience "
    "upon thirty days written notice."
)

MISSING_TERMINATION_CONTRACT = "Payment shall be made net 30 days from receipt of invoice."


def make_chunk(chunk_id: str, doc_id: str, embedding, domain=DomainTag.POLICY, index=0, text="text"):
    return Chunk(
        id=chunk_id,
        document_id=doc_id,
        text=text,
        sequence_index=index,
        domain_tag=domain,
        embedding=embedding,
        metadata={"title": doc_id},
    )


class ScriptedProvider(LLMProvider):
    """Chat provider that replays canned responses or raises canned errors."""

    def __init__(self, responses: list[Any]):
        self.responses = responses
        self.calls: list[list[dict[str, Any]]] = []

    async def complete(self, messages, *, model, temperature=0.3, max_tokens=4000, json_mode=False, **kwargs):
        self.calls.append(messages)
        item = self.responses[min(len(self.calls) - 1, len(self.responses) - 1)]
        if isinstance(item, Exception):
            raise item
        return LLMResponse(content=item, model=model)


class FlakyEmbedding(BaseEmbedding):
    """Hash embedding that fails a fixed number of times before answering."""

    def __init__(self, failures: int = 0, dimension: int = 64, fail_on: str | None = None):
        self.failures = failures
        self.fail_on = fail_on
        self.calls: list[list[str]] = []
        self._inner = HashEmbedding(dimension)

    @property
    def dimension(self) -> int:
        return self._inner.dimension

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail_on and any(self.fail_on in text for text in texts):
            raise RuntimeError("provider rejected input")
        if len(self.calls) <= self.failures:
            raise ConnectionError("provider unreachable")
        return await self._inner.embed_documents(texts)

    async def embed_query(self, text: str) -> list[float]:
        return (await self.embed_documents([text]))[0]


class SlowEmbedding(HashEmbedding):
    """Hash embedding that never answers in time."""

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        await asyncio.sleep(1)
        return await super().embed_documents(texts)


@pytest.fixture
def registry():
    """Bundled rule registry."""
    return load_registry()


@pytest.fixture
def embedding_client():
    """Fast, offline embedding client."""
    return EmbeddingClient(HashEmbedding(dimension=256), batch_delay=0, backoff=0)


@pytest.fixture
def store():
    """Empty in-memory knowledge store."""
    return MemoryKnowledgeStore()


@pytest.fixture
def engine(embedding_client, store):
    """Engine with an empty knowledge base and no generative model."""
    return ComplianceEngine(embedding_client, store)


@pytest.fixture
def make_engine(embedding_client):
    """Factory for engines with a given provider or embedding client."""

    def factory(llm_provider=None, client=None, **kwargs):
        return ComplianceEngine(
            client or embedding_client,
            MemoryKnowledgeStore(),
            llm_provider=llm_provider,
            **kwargs,
        )

    return factory
