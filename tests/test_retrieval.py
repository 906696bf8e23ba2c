"""Tests for the knowledge store and retriever."""

import pytest

from conftest import FlakyEmbedding, make_chunk
from contractrag.exceptions import ConfigurationError
from contractrag.rag import (
    Document,
    DomainTag,
    EmbeddingClient,
    MemoryKnowledgeStore,
    Probe,
    RetrievalResult,
    Retriever,
    cosine_similarity,
)


def make_result(chunk_id: str, score: float) -> RetrievalResult:
    return RetrievalResult(
        chunk_id=chunk_id,
        chunk_text=chunk_id,
        similarity_score=score,
        domain_tag=DomainTag.POLICY,
    )


class TestCosineSimilarity:
    """Tests for cosine_similarity."""

    def test_basic_values(self):
        """Test identical, orthogonal and zero vectors."""
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0

    def test_dimension_mismatch(self):
        """Test vectors of different length are rejected."""
        with pytest.raises(ConfigurationError):
            cosine_similarity([1.0], [1.0, 0.0])


class TestMemoryKnowledgeStore:
    """Tests for MemoryKnowledgeStore."""

    @pytest.mark.asyncio
    async def test_search_filters_by_domain(self):
        """Test searches only return chunks of the requested domain."""
        store = MemoryKnowledgeStore()
        await store.insert_chunks([
            make_chunk("reg", "far", [1.0, 0.0], DomainTag.REGULATORY),
            make_chunk("pol", "policy", [1.0, 0.0], DomainTag.POLICY),
        ])

        results = await store.similarity_search(DomainTag.REGULATORY, [1.0, 0.0], k=5)

        assert [r.chunk_id for r in results] == ["reg"]
        assert results[0].similarity_score == pytest.approx(1.0)
        assert results[0].title == "far"

    @pytest.mark.asyncio
    async def test_ordering_and_ties(self):
        """Test score order with ties broken by insertion then sequence."""
        store = MemoryKnowledgeStore()
        await store.insert_chunks([
            make_chunk("b-1", "doc-b", [1.0, 0.0], index=1),
            make_chunk("b-0", "doc-b", [1.0, 0.0], index=0),
        ])
        await store.insert_chunks([
            make_chunk("a-0", "doc-a", [1.0, 0.0]),
            make_chunk("best", "doc-c", [1.0, 1.0]),
        ])

        results = await store.similarity_search(DomainTag.POLICY, [1.0, 1.0], k=4)

        assert [r.chunk_id for r in results] == ["best", "b-0", "b-1", "a-0"]
        again = await store.similarity_search(DomainTag.POLICY, [1.0, 1.0], k=4)
        assert [r.chunk_id for r in again] == [r.chunk_id for r in results]

    @pytest.mark.asyncio
    async def test_empty_store_and_k(self):
        """Test an empty store or non-positive k returns nothing."""
        store = MemoryKnowledgeStore()
        assert await store.similarity_search(DomainTag.POLICY, [1.0], k=5) == []

        await store.insert_chunks([make_chunk("c", "d", [1.0])])
        assert await store.similarity_search(DomainTag.POLICY, [1.0], k=0) == []

    @pytest.mark.asyncio
    async def test_replace_and_delete(self):
        """Test replacing and deleting a document's chunks."""
        store = MemoryKnowledgeStore()
        doc = Document(id="d", title="Doc", domain_tag=DomainTag.POLICY, raw_text="x")

        await store.replace_document(doc, [make_chunk("d_0", "d", [1.0, 0.0]), make_chunk("d_1", "d", [0.0, 1.0])])
        await store.replace_document(doc, [make_chunk("d_new", "d", [1.0, 0.0])])

        assert await store.count() == 1
        assert await store.has_document("d")
        assert store.get_document("d") == doc

        assert await store.delete_by_document("d") == 1
        assert not await store.has_document("d")
        assert await store.delete_by_document("d") == 0

    @pytest.mark.asyncio
    async def test_dimension_checks(self):
        """Test vectors must match the store dimension and be present."""
        store = MemoryKnowledgeStore(dimension=2)

        with pytest.raises(ConfigurationError):
            await store.insert_chunks([make_chunk("c", "d", [1.0, 0.0, 0.0])])
        with pytest.raises(ValueError):
            await store.insert_chunks([make_chunk("c", "d", None)])

        await store.insert_chunks([make_chunk("c", "d", [1.0, 0.0])])
        assert store.dimension == 2


class TestRetriever:
    """Tests for the domain-scoped retriever."""

    @pytest.mark.asyncio
    async def test_retrieve_relevant_chunk_first(self, embedding_client, store):
        """Test the chunk sharing the query vocabulary ranks first."""
        texts = {
            "indemnity": "The University may not indemnify or hold harmless any party.",
            "payment": "Invoices are paid net thirty days after receipt.",
        }
        vectors = await embedding_client.embed_batch(list(texts.values()))
        await store.insert_chunks([
            make_chunk(cid, cid, vector, text=text)
            for (cid, text), vector in zip(texts.items(), vectors)
        ])

        results = await Retriever(embedding_client, store).retrieve(
            "indemnify hold harmless", DomainTag.POLICY, k=2
        )

        assert results[0].chunk_id == "indemnity"
        assert results[0].similarity_score > results[1].similarity_score

    @pytest.mark.asyncio
    async def test_blank_query(self, embedding_client, store):
        """Test blank queries return nothing without embedding."""
        retriever = Retriever(embedding_client, store)

        assert await retriever.retrieve("   ", DomainTag.POLICY) == []
        assert await retriever.retrieve("indemnify", DomainTag.POLICY, k=0) == []

    @pytest.mark.asyncio
    async def test_retrieve_domains_embeds_once(self, store):
        """Test several domains are searched with a single query embedding."""
        embedding = FlakyEmbedding(dimension=64)
        client = EmbeddingClient(embedding, batch_delay=0)
        vectors = await client.embed_batch(["export controls apply", "no indemnification"])
        await store.insert_chunks([
            make_chunk("reg", "far", vectors[0], DomainTag.REGULATORY, text="export controls apply"),
            make_chunk("pol", "policy", vectors[1], DomainTag.POLICY, text="no indemnification"),
            make_chunk("alt", "alt", vectors[1], DomainTag.ALTERNATIVE, text="no indemnification"),
        ])
        embedding.calls.clear()

        results = await Retriever(client, store).retrieve_domains(
            "no indemnification", [DomainTag.REGULATORY, DomainTag.POLICY], k=2
        )

        assert len(embedding.calls) == 1
        assert {r.chunk_id for r in results} == {"reg", "pol"}
        assert results[0].chunk_id == "pol"

    @pytest.mark.asyncio
    async def test_probes_tag_category(self, embedding_client, store):
        """Test probe hits remember the category that asked for them."""
        vector = await embedding_client.embed("self insurance certificate")
        await store.insert_chunks([make_chunk("ins", "ins", vector, text="self insurance certificate")])

        results = await Retriever(embedding_client, store).retrieve_probes(
            [Probe("self insurance", DomainTag.POLICY, "insurance")], k=1
        )

        assert results[0].source_metadata["probe_category"] == "insurance"

    def test_merge_results(self):
        """Test merging keeps the best score per chunk in first-seen order."""
        merged = Retriever.merge_results(
            [make_result("a", 0.5), make_result("b", 0.7)],
            [make_result("a", 0.9), make_result("c", 0.7)],
        )

        assert [r.chunk_id for r in merged] == ["a", "b", "c"]
        assert merged[0].similarity_score == 0.9
