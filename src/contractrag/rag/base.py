"""Base classes and abstract interfaces for RAG components."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .document import Chunk, Document, DomainTag, RetrievalResult


class BaseEmbedding(ABC):
    """Abstract base class for embedding providers.

    Providers convert text into dense vectors of a fixed dimension. They do
    no truncation, batching or retrying; ``EmbeddingClient`` wraps them
    with that behaviour.
    """

    @abstractmethod
    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed a list of documents.

        Args:
            texts: List of text strings to embed

        Returns:
            List of embedding vectors
        """
        pass

    @abstractmethod
    async def embed_query(self, text: str) -> list[float]:
        """Embed a single query.

        Args:
            text: Query text to embed

        Returns:
            Embedding vector
        """
        pass

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Return the dimension of the embedding vectors."""
        pass


class BaseKnowledgeStore(ABC):
    """Abstract knowledge store holding documents, chunks and their vectors.

    The store is an external collaborator; the engine only relies on this
    interface. Chunks are never modified in place. Re-ingesting a document
    goes through ``replace_document`` which must look atomic to callers.
    """

    @property
    @abstractmethod
    def dimension(self) -> Optional[int]:
        """Vector dimension the store was provisioned with, if fixed."""
        pass

    @abstractmethod
    async def insert_chunks(self, chunks: list["Chunk"]) -> list[str]:
        """Persist chunks that already carry embeddings.

        Args:
            chunks: Chunks with ``embedding`` set

        Returns:
            List of inserted chunk IDs
        """
        pass

    @abstractmethod
    async def similarity_search(
        self,
        domain_tag: "DomainTag",
        query_vector: list[float],
        k: int = 5,
    ) -> list["RetrievalResult"]:
        """Find the chunks of one domain closest to a query vector.

        Args:
            domain_tag: Domain to search in
            query_vector: Query embedding
            k: Number of results to return

        Returns:
            Results sorted by similarity (highest first), ties broken by
            document insertion order and chunk sequence
        """
        pass

    @abstractmethod
    async def delete_by_document(self, document_id: str) -> int:
        """Delete a document and all of its chunks.

        Args:
            document_id: Parent document ID

        Returns:
            Number of chunks removed
        """
        pass

    @abstractmethod
    async def replace_document(self, document: "Document", chunks: list["Chunk"]) -> list[str]:
        """Delete any previous version of a document and insert the new one.

        Args:
            document: Document record
            chunks: Its chunks, with embeddings

        Returns:
            List of inserted chunk IDs
        """
        pass

    @abstractmethod
    async def has_document(self, document_id: str) -> bool:
        """Return True if any chunk exists for the document."""
        pass

    @abstractmethod
    async def count(self) -> int:
        """Return the number of chunks in the store."""
        pass


class BaseChunker(ABC):
    """Abstract base class for document chunkers.

    Chunkers split documents into smaller pieces for indexing.
    """

    @abstractmethod
    def chunk(self, document: "Document") -> list["Chunk"]:
        """Split a document into chunks.

        Args:
            document: Document to chunk

        Returns:
            List of chunks
        """
        pass
