"""Ingestion pipeline: chunk, embed and store reference documents."""

import logging
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import BaseModel, Field

from contractrag.exceptions import ConfigurationError, ContractRAGError

from .base import BaseChunker, BaseKnowledgeStore
from .chunking import FixedSizeChunker
from .document import Document, DomainTag
from .embeddings import EmbeddingClient

logger = logging.getLogger(__name__)

DATA_DIR = Path(__file__).resolve().parent.parent / "data"
DEFAULT_CORPUS_PATH = DATA_DIR / "default_corpus.yaml"


class IngestionRecord(BaseModel):
    """Outcome of ingesting one document in a bulk run."""

    document_id: str
    title: str
    chunk_count: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class CorpusEntry(BaseModel):
    """One document of a seed corpus file."""

    id: str
    title: str
    domain_tag: DomainTag
    text: str
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_document(self) -> Document:
        return Document(
            id=self.id,
            title=self.title,
            domain_tag=self.domain_tag,
            raw_text=self.text.strip(),
            metadata=self.metadata,
        )


class CorpusFile(BaseModel):
    version: str = "1"
    documents: list[CorpusEntry] = Field(default_factory=list)


def load_corpus(path: Optional[str | Path] = None) -> list[Document]:
    """Load seed documents from a corpus YAML file.

    Args:
        path: Corpus file; the bundled default corpus when None

    Returns:
        Documents in file order
    """
    path = Path(path) if path else DEFAULT_CORPUS_PATH
    if not path.exists():
        raise ConfigurationError(f"Corpus file not found: {path}")

    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    corpus = CorpusFile(**data)
    return [entry.to_document() for entry in corpus.documents]


class IngestionPipeline:
    """Turns documents into embedded chunks in a knowledge store.

    Example:
        ```python
        pipeline = IngestionPipeline(EmbeddingClient(HashEmbedding()), MemoryKnowledgeStore())
        await pipeline.ingest(document)
        records = await pipeline.ingest_many(documents)
        ```
    """

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        store: BaseKnowledgeStore,
        chunker: Optional[BaseChunker] = None,
    ):
        """Initialize the ingestion pipeline.

        Args:
            embedding_client: Client used to embed chunk texts
            store: Destination knowledge store
            chunker: Document chunker (default: FixedSizeChunker)
        """
        self.embedding_client = embedding_client
        self.store = store
        self.chunker = chunker or FixedSizeChunker()

    async def ingest(self, document: Document) -> list[str]:
        """Chunk, embed and store a document, replacing any earlier version.

        Embedding happens before the store is touched, so a failure leaves
        the previous version of the document intact.

        Returns:
            List of chunk IDs created

        Raises:
            EmbeddingUnavailable: If chunk embedding fails
            StoreUnavailable: If the store rejects the write
        """
        chunks = self.chunker.chunk(document)
        vectors = await self.embedding_client.embed_batch([chunk.text for chunk in chunks])
        embedded = [chunk.with_embedding(vector) for chunk, vector in zip(chunks, vectors)]

        chunk_ids = await self.store.replace_document(document, embedded)

        logger.info(
            f"Ingested {document.domain_tag.value} document '{document.title}' "
            f"({document.id}): {len(chunk_ids)} chunks"
        )
        return chunk_ids

    async def ingest_if_missing(self, document: Document) -> list[str]:
        """Ingest only when the store holds no chunks for the document id."""
        if await self.store.has_document(document.id):
            logger.debug(f"Skipping {document.id}: already ingested")
            return []
        return await self.ingest(document)

    async def ingest_many(self, documents: list[Document]) -> list[IngestionRecord]:
        """Ingest documents one after another, recording each outcome.

        A document that fails with a recoverable error is recorded and the
        run continues. Configuration errors abort the run.
        """
        records = []
        for document in documents:
            try:
                chunk_ids = await self.ingest(document)
            except ConfigurationError:
                raise
            except ContractRAGError as e:
                logger.error(f"Failed to ingest '{document.title}' ({document.id}): {e}")
                records.append(IngestionRecord(
                    document_id=document.id,
                    title=document.title,
                    error=str(e),
                ))
                continue

            records.append(IngestionRecord(
                document_id=document.id,
                title=document.title,
                chunk_count=len(chunk_ids),
            ))

        succeeded = sum(1 for record in records if record.ok)
        logger.info(f"Bulk ingestion finished: {succeeded}/{len(records)} documents stored")
        return records

    async def delete(self, document_id: str) -> int:
        """Delete a document and its chunks; returns the number of chunks removed."""
        removed = await self.store.delete_by_document(document_id)
        logger.info(f"Deleted document {document_id} ({removed} chunks)")
        return removed

    async def bootstrap(
        self,
        corpus_path: Optional[str | Path] = None,
        only_if_empty: bool = True,
    ) -> list[IngestionRecord]:
        """Seed the store from a corpus file.

        Args:
            corpus_path: Corpus YAML; the bundled default corpus when None
            only_if_empty: Skip seeding when the store already has chunks

        Returns:
            One record per seeded document (empty when skipped)
        """
        if only_if_empty and await self.store.count() > 0:
            logger.info("Knowledge store already populated, skipping bootstrap")
            return []

        documents = load_corpus(corpus_path)
        logger.info(f"Bootstrapping knowledge store with {len(documents)} seed documents")
        return await self.ingest_many(documents)
