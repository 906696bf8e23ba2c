"""Document, Chunk and retrieval data structures for the knowledge store."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class DomainTag(str, Enum):
    """Knowledge domain a document or chunk belongs to."""

    REGULATORY = "regulatory"
    POLICY = "policy"
    TEMPLATE = "template"
    ALTERNATIVE = "alternative"


class Document(BaseModel):
    """A reference document ingested into the knowledge store.

    Documents are never mutated in place; an update is a delete followed
    by a fresh ingestion under the same id.

    Attributes:
        id: Unique identifier for the document
        title: Human readable title, used as a citation in reports
        domain_tag: Knowledge domain of the document
        raw_text: Full plain text of the document
        created_at: Ingestion timestamp
        metadata: Additional metadata copied onto every chunk
    """

    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    domain_tag: DomainTag
    raw_text: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = Field(default_factory=dict)

    def __repr__(self) -> str:
        return f"Document(id={self.id!r}, title={self.title!r}, domain={self.domain_tag.value})"


class Chunk(BaseModel):
    """A contiguous span of a document, the unit of embedding and retrieval.

    Attributes:
        id: Unique identifier for the chunk
        document_id: ID of the parent document
        text: The chunk text
        sequence_index: Position of the chunk within its document
        char_start: Start character offset in the parent document
        char_end: End character offset (exclusive)
        domain_tag: Domain inherited from the parent document
        embedding: Embedding vector, set before insertion into a store
        metadata: Document metadata plus chunk-specific keys
    """

    model_config = ConfigDict(frozen=True)

    id: str
    document_id: str
    text: str
    sequence_index: int = 0
    char_start: int = 0
    char_end: int = 0
    domain_tag: DomainTag = DomainTag.POLICY
    embedding: Optional[list[float]] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def with_embedding(self, embedding: list[float]) -> "Chunk":
        """Return a copy of this chunk carrying the given vector."""
        return self.model_copy(update={"embedding": embedding})

    def __repr__(self) -> str:
        text_preview = self.text[:30] + "..." if len(self.text) > 30 else self.text
        return f"Chunk(id={self.id!r}, doc_id={self.document_id!r}, text={text_preview!r})"


class RetrievalResult(BaseModel):
    """A single hit from a similarity query. Never persisted.

    Attributes:
        chunk_id: ID of the matching chunk
        chunk_text: Text of the matching chunk
        similarity_score: Similarity in [0, 1], higher is better
        domain_tag: Domain of the matching chunk
        source_metadata: Metadata of the chunk (title, category, ...)
        document_id: ID of the parent document
        sequence_index: Position of the chunk in its document
    """

    chunk_id: str
    chunk_text: str
    similarity_score: float = Field(ge=0.0, le=1.0)
    domain_tag: DomainTag
    source_metadata: dict[str, Any] = Field(default_factory=dict)
    document_id: str = ""
    sequence_index: int = 0

    @property
    def title(self) -> str:
        """Citation title of the source document."""
        return str(self.source_metadata.get("title") or self.document_id or self.chunk_id)

    def __repr__(self) -> str:
        return f"RetrievalResult(chunk_id={self.chunk_id!r}, score={self.similarity_score:.4f})"
