"""Domain-scoped vector retrieval."""

import asyncio
import logging
from typing import NamedTuple, Optional

from contractrag.utils.logging import preview

from .base import BaseKnowledgeStore
from .document import DomainTag, RetrievalResult
from .embeddings import EmbeddingClient

logger = logging.getLogger(__name__)


class Probe(NamedTuple):
    """A targeted query against one knowledge domain."""

    query: str
    domain_tag: DomainTag
    category: Optional[str] = None


class Retriever:
    """Vector similarity retriever over a knowledge store.

    Embeds the query text and asks the store for the closest chunks of a
    single domain. Embedding and store failures propagate unchanged
    (EmbeddingUnavailable, StoreUnavailable); callers decide whether to
    degrade.
    """

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        store: BaseKnowledgeStore,
    ):
        """Initialize the retriever.

        Args:
            embedding_client: Client used to embed queries
            store: Knowledge store to search
        """
        self.embedding_client = embedding_client
        self.store = store

    async def retrieve(
        self,
        query_text: str,
        domain_tag: DomainTag,
        k: int = 5,
    ) -> list[RetrievalResult]:
        """Retrieve the k chunks of a domain most similar to the query.

        Args:
            query_text: Text to search with
            domain_tag: Knowledge domain to search
            k: Number of results to return

        Returns:
            Results highest similarity first; empty for an empty store
        """
        if k <= 0 or not query_text.strip():
            return []

        query_vector = await self.embedding_client.embed(query_text)
        results = await self.store.similarity_search(domain_tag, query_vector, k)

        logger.debug(
            f"Retrieved {len(results)} {domain_tag.value} chunks for '{preview(query_text)}'"
        )
        return results

    async def retrieve_domains(
        self,
        query_text: str,
        domain_tags: list[DomainTag],
        k: int = 5,
    ) -> list[RetrievalResult]:
        """Retrieve the k best chunks of each domain with one query embedding.

        Args:
            query_text: Text to search with
            domain_tags: Knowledge domains to search
            k: Number of results per domain

        Returns:
            Merged results of every domain, highest similarity first
        """
        if k <= 0 or not domain_tags or not query_text.strip():
            return []

        query_vector = await self.embedding_client.embed(query_text)
        batches = await asyncio.gather(
            *(self.store.similarity_search(domain, query_vector, k) for domain in domain_tags)
        )

        logger.debug(
            f"Retrieved {sum(len(b) for b in batches)} chunks from "
            f"{', '.join(d.value for d in domain_tags)} for '{preview(query_text)}'"
        )
        return self.merge_results(*batches)

    async def retrieve_probes(
        self,
        probes: list[Probe],
        k: int = 3,
    ) -> list[RetrievalResult]:
        """Run several independent probe queries and merge their hits."""
        if not probes:
            return []

        batches = await asyncio.gather(
            *(self.retrieve(probe.query, probe.domain_tag, k) for probe in probes)
        )

        # Remember which category asked for each hit
        tagged = []
        for probe, results in zip(probes, batches):
            tagged.append([
                self._tag_category(result, probe.category)
                for result in results
            ])

        return self.merge_results(*tagged)

    @staticmethod
    def _tag_category(result: RetrievalResult, category: Optional[str]) -> RetrievalResult:
        if category is None or result.source_metadata.get("category"):
            return result
        return result.model_copy(
            update={"source_metadata": {**result.source_metadata, "probe_category": category}}
        )

    @staticmethod
    def merge_results(*result_lists: list[RetrievalResult]) -> list[RetrievalResult]:
        """Merge result lists from separate queries.

        Duplicate chunks keep their highest score. Output is sorted by score
        descending, ties keeping the order in which chunks were first seen.
        """
        best: dict[str, RetrievalResult] = {}
        first_seen: dict[str, int] = {}

        for results in result_lists:
            for result in results:
                current = best.get(result.chunk_id)
                if current is None:
                    first_seen[result.chunk_id] = len(first_seen)
                    best[result.chunk_id] = result
                elif result.similarity_score > current.similarity_score:
                    best[result.chunk_id] = result

        return sorted(
            best.values(),
            key=lambda r: (-r.similarity_score, first_seen[r.chunk_id]),
        )
