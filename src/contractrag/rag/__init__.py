"""Knowledge base layer for contractrag.

This module provides:
- Document, chunk and retrieval data structures
- Embedding providers (OpenAI, local, hash) and a retrying embedding client
- Knowledge stores (memory, ChromaDB)
- Sliding-window chunking
- Domain-scoped retrieval with probe queries
- An ingestion pipeline with bulk ingestion and corpus bootstrap

Example:
    ```python
    from contractrag.rag import (
        DomainTag,
        Document,
        EmbeddingClient,
        HashEmbedding,
        IngestionPipeline,
        MemoryKnowledgeStore,
        Retriever,
    )

    client = EmbeddingClient(HashEmbedding())
    store = MemoryKnowledgeStore()
    pipeline = IngestionPipeline(client, store)

    await pipeline.ingest(Document(
        id="far-28-106",
        title="FAR 28.106 Indemnification",
        domain_tag=DomainTag.REGULATORY,
        raw_text="...",
    ))

    results = await Retriever(client, store).retrieve(
        "indemnify and hold harmless", DomainTag.REGULATORY, k=3
    )
    ```
"""

# Data structures
from .document import Chunk, Document, DomainTag, RetrievalResult

# Base classes
from .base import BaseChunker, BaseEmbedding, BaseKnowledgeStore

# Embedding providers
from .embeddings import (
    EmbeddingClient,
    HashEmbedding,
    LocalEmbedding,
    OpenAIEmbedding,
)

# Knowledge stores
from .vectorstore import (
    ChromaKnowledgeStore,
    MemoryKnowledgeStore,
    cosine_similarity,
)

# Chunking
from .chunking import FixedSizeChunker, SpanSequence, TextSpan, chunk_text

# Retrieval
from .retriever import Probe, Retriever

# Pipeline
from .pipeline import IngestionPipeline, IngestionRecord, load_corpus

__all__ = [
    # Data structures
    "Chunk",
    "Document",
    "DomainTag",
    "RetrievalResult",
    # Base classes
    "BaseChunker",
    "BaseEmbedding",
    "BaseKnowledgeStore",
    # Embeddings
    "EmbeddingClient",
    "HashEmbedding",
    "LocalEmbedding",
    "OpenAIEmbedding",
    # Knowledge stores
    "ChromaKnowledgeStore",
    "MemoryKnowledgeStore",
    "cosine_similarity",
    # Chunking
    "FixedSizeChunker",
    "SpanSequence",
    "TextSpan",
    "chunk_text",
    # Retrieval
    "Probe",
    "Retriever",
    # Pipeline
    "IngestionPipeline",
    "IngestionRecord",
    "load_corpus",
]
