"""Knowledge store adapters."""

import asyncio
import itertools
import logging
import math
import time
from typing import Any, Optional

from contractrag.exceptions import ConfigurationError, StoreUnavailable

from .base import BaseKnowledgeStore
from .document import Chunk, Document, DomainTag, RetrievalResult

logger = logging.getLogger(__name__)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Calculate cosine similarity between two vectors."""
    if len(a) != len(b):
        raise ConfigurationError(
            f"Vectors must have the same dimension ({len(a)} != {len(b)})"
        )

    dot_product = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))

    if norm_a == 0 or norm_b == 0:
        return 0.0

    return dot_product / (norm_a * norm_b)


def _clamp_score(score: float) -> float:
    return max(0.0, min(1.0, score))


class MemoryKnowledgeStore(BaseKnowledgeStore):
    """In-memory knowledge store with exact cosine search.

    Reference adapter for tests and small corpora. Results are ordered by
    score, then by the order documents were inserted, then by chunk
    position, so identical queries always return identical lists.
    """

    def __init__(self, dimension: Optional[int] = None) -> None:
        """Initialize the memory knowledge store.

        Args:
            dimension: Fixed vector dimension. Inferred from the first insert
                when None.
        """
        self._dimension = dimension
        self._chunks: dict[str, Chunk] = {}
        self._documents: dict[str, Document] = {}
        self._doc_order: dict[str, int] = {}
        self._order_counter = itertools.count()
        self._lock = asyncio.Lock()

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def _check_vector(self, chunk: Chunk) -> None:
        if chunk.embedding is None:
            raise ValueError(f"Chunk {chunk.id} has no embedding")
        if self._dimension is None:
            self._dimension = len(chunk.embedding)
        elif len(chunk.embedding) != self._dimension:
            raise ConfigurationError(
                f"Chunk {chunk.id} has dimension {len(chunk.embedding)}, "
                f"store expects {self._dimension}"
            )

    def _insert(self, chunks: list[Chunk]) -> list[str]:
        for chunk in chunks:
            self._check_vector(chunk)

        ids = []
        for chunk in chunks:
            if chunk.document_id not in self._doc_order:
                self._doc_order[chunk.document_id] = next(self._order_counter)
            self._chunks[chunk.id] = chunk
            ids.append(chunk.id)

        logger.debug(f"Added {len(ids)} chunks to memory store")
        return ids

    def _delete(self, document_id: str) -> int:
        doomed = [cid for cid, chunk in self._chunks.items() if chunk.document_id == document_id]
        for chunk_id in doomed:
            del self._chunks[chunk_id]
        self._documents.pop(document_id, None)
        self._doc_order.pop(document_id, None)
        return len(doomed)

    async def insert_chunks(self, chunks: list[Chunk]) -> list[str]:
        async with self._lock:
            return self._insert(chunks)

    async def similarity_search(
        self,
        domain_tag: DomainTag,
        query_vector: list[float],
        k: int = 5,
    ) -> list[RetrievalResult]:
        """Score every chunk of the domain against the query vector."""
        if k <= 0 or not self._chunks:
            return []

        scored = []
        for chunk in list(self._chunks.values()):
            if chunk.domain_tag != domain_tag:
                continue
            score = _clamp_score(cosine_similarity(query_vector, chunk.embedding))
            scored.append((score, chunk))

        scored.sort(
            key=lambda item: (
                -item[0],
                self._doc_order.get(item[1].document_id, 0),
                item[1].sequence_index,
            )
        )

        return [
            RetrievalResult(
                chunk_id=chunk.id,
                chunk_text=chunk.text,
                similarity_score=score,
                domain_tag=chunk.domain_tag,
                source_metadata=dict(chunk.metadata),
                document_id=chunk.document_id,
                sequence_index=chunk.sequence_index,
            )
            for score, chunk in scored[:k]
        ]

    async def delete_by_document(self, document_id: str) -> int:
        async with self._lock:
            removed = self._delete(document_id)
        logger.debug(f"Deleted {removed} chunks of document {document_id}")
        return removed

    async def replace_document(self, document: Document, chunks: list[Chunk]) -> list[str]:
        """Swap a document's chunks in one step under the store lock."""
        for chunk in chunks:
            self._check_vector(chunk)

        async with self._lock:
            self._delete(document.id)
            self._documents[document.id] = document
            return self._insert(chunks)

    async def has_document(self, document_id: str) -> bool:
        return any(chunk.document_id == document_id for chunk in self._chunks.values())

    async def count(self) -> int:
        """Return the number of chunks."""
        return len(self._chunks)

    def get_document(self, document_id: str) -> Optional[Document]:
        """Get a stored document record by ID."""
        return self._documents.get(document_id)


class ChromaKnowledgeStore(BaseKnowledgeStore):
    """ChromaDB knowledge store.

    Uses a cosine-space ChromaDB collection. Every chunk carries its domain,
    parent document and position as metadata so searches can be filtered by
    domain and ordered deterministically. Requires the 'vector' extra.
    """

    def __init__(
        self,
        collection_name: str = "contract_knowledge",
        persist_directory: Optional[str] = None,
        dimension: Optional[int] = None,
        client: Any = None,
    ):
        """Initialize the ChromaDB knowledge store.

        Args:
            collection_name: Name of the ChromaDB collection
            persist_directory: Directory for persistent storage (None for in-memory)
            dimension: Dimension of embeddings, if known up front
            client: Existing ChromaDB client to use instead of creating one
        """
        self.collection_name = collection_name
        self.persist_directory = persist_directory
        self._dimension = dimension
        self._client = client
        self._collection = None
        self._lock = asyncio.Lock()

    @property
    def dimension(self) -> Optional[int]:
        return self._dimension

    def _get_client(self):
        """Get or create the ChromaDB client."""
        if self._client is None:
            try:
                import chromadb
            except ImportError:
                raise ImportError(
                    "ChromaDB knowledge store requires 'chromadb'. "
                    "Install it with: pip install contractrag[vector]"
                )

            if self.persist_directory:
                self._client = chromadb.PersistentClient(path=self.persist_directory)
            else:
                self._client = chromadb.Client()
        return self._client

    def _get_collection(self):
        """Get or create the collection."""
        if self._collection is None:
            client = self._get_client()
            self._collection = client.get_or_create_collection(
                name=self.collection_name,
                metadata={"hnsw:space": "cosine"},
            )
        return self._collection

    async def _run(self, operation: str, func):
        """Run a blocking collection call in a thread, wrapping its failures."""
        loop = asyncio.get_event_loop()
        try:
            return await loop.run_in_executor(None, func)
        except ImportError:
            raise
        except Exception as e:
            raise StoreUnavailable(operation, repr(e)) from e

    @staticmethod
    def _flatten_metadata(chunk: Chunk, ingest_order: int) -> dict[str, Any]:
        # Chroma only accepts scalar metadata values
        metadata: dict[str, Any] = {}
        for key, value in chunk.metadata.items():
            if value is None:
                continue
            if isinstance(value, (str, int, float, bool)):
                metadata[key] = value
            else:
                metadata[key] = str(value)

        metadata.update(
            document_id=chunk.document_id,
            domain_tag=chunk.domain_tag.value,
            sequence_index=chunk.sequence_index,
            char_start=chunk.char_start,
            char_end=chunk.char_end,
            ingest_order=ingest_order,
        )
        return metadata

    async def insert_chunks(self, chunks: list[Chunk]) -> list[str]:
        async with self._lock:
            return await self._insert(chunks)

    async def _insert(self, chunks: list[Chunk]) -> list[str]:
        if not chunks:
            return []

        for chunk in chunks:
            if chunk.embedding is None:
                raise ValueError(f"Chunk {chunk.id} has no embedding")
            if self._dimension is not None and len(chunk.embedding) != self._dimension:
                raise ConfigurationError(
                    f"Chunk {chunk.id} has dimension {len(chunk.embedding)}, "
                    f"store expects {self._dimension}"
                )

        collection = self._get_collection()
        ingest_order = time.time_ns()

        ids = [chunk.id for chunk in chunks]
        await self._run(
            "insert",
            lambda: collection.upsert(
                ids=ids,
                documents=[chunk.text for chunk in chunks],
                embeddings=[chunk.embedding for chunk in chunks],
                metadatas=[self._flatten_metadata(chunk, ingest_order) for chunk in chunks],
            ),
        )

        if self._dimension is None:
            self._dimension = len(chunks[0].embedding)

        logger.debug(f"Added {len(ids)} chunks to ChromaDB collection '{self.collection_name}'")
        return ids

    async def similarity_search(
        self,
        domain_tag: DomainTag,
        query_vector: list[float],
        k: int = 5,
    ) -> list[RetrievalResult]:
        """Search one domain of the collection."""
        if k <= 0:
            return []

        collection = self._get_collection()
        total = await self._run("count", collection.count)
        if total == 0:
            return []

        results = await self._run(
            "search",
            lambda: collection.query(
                query_embeddings=[query_vector],
                n_results=min(k, total),
                where={"domain_tag": domain_tag.value},
                include=["documents", "metadatas", "distances"],
            ),
        )

        hits = []
        if results and results["ids"] and results["ids"][0]:
            for i, chunk_id in enumerate(results["ids"][0]):
                metadata = dict(results["metadatas"][0][i]) if results["metadatas"] else {}
                distance = results["distances"][0][i] if results["distances"] else 1.0
                order = metadata.pop("ingest_order", 0)
                document_id = metadata.pop("document_id", "")
                sequence_index = metadata.pop("sequence_index", 0)
                metadata.pop("domain_tag", None)
                score = _clamp_score(1 - distance)  # Cosine distance to similarity

                hits.append((
                    score,
                    order,
                    RetrievalResult(
                        chunk_id=chunk_id,
                        chunk_text=results["documents"][0][i],
                        similarity_score=score,
                        domain_tag=domain_tag,
                        source_metadata=metadata,
                        document_id=document_id,
                        sequence_index=sequence_index,
                    ),
                ))

        hits.sort(key=lambda hit: (-hit[0], hit[1], hit[2].sequence_index))
        return [hit[2] for hit in hits]

    async def _chunk_ids(self, document_id: str) -> list[str]:
        collection = self._get_collection()
        found = await self._run(
            "lookup",
            lambda: collection.get(where={"document_id": document_id}, include=[]),
        )
        return list(found["ids"]) if found else []

    async def _delete_ids(self, ids: list[str]) -> None:
        if ids:
            collection = self._get_collection()
            await self._run("delete", lambda: collection.delete(ids=ids))

    async def _delete(self, document_id: str) -> int:
        ids = await self._chunk_ids(document_id)
        await self._delete_ids(ids)
        return len(ids)

    async def delete_by_document(self, document_id: str) -> int:
        async with self._lock:
            removed = await self._delete(document_id)
        logger.debug(f"Deleted {removed} chunks of document {document_id}")
        return removed

    async def replace_document(self, document: Document, chunks: list[Chunk]) -> list[str]:
        """Upsert the new chunks, then drop the old ones they did not overwrite.

        A failed write leaves the previous version searchable.
        """
        async with self._lock:
            ids = await self._insert(chunks)
            kept = set(ids)
            stale = [cid for cid in await self._chunk_ids(document.id) if cid not in kept]
            await self._delete_ids(stale)
            return ids

    async def has_document(self, document_id: str) -> bool:
        collection = self._get_collection()
        found = await self._run(
            "lookup",
            lambda: collection.get(where={"document_id": document_id}, limit=1, include=[]),
        )
        return bool(found and found["ids"])

    async def count(self) -> int:
        """Return the number of chunks in the collection."""
        collection = self._get_collection()
        return await self._run("count", collection.count)
