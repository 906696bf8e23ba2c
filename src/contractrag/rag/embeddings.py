"""Embedding providers and the batching, retrying embedding client."""

import asyncio
import hashlib
import logging
import math
import re
from typing import Optional

from tenacity import (
    AsyncRetrying,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from contractrag.exceptions import ConfigurationError, EmbeddingUnavailable

from .base import BaseEmbedding

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9]+")


class OpenAIEmbedding(BaseEmbedding):
    """OpenAI embedding model.

    Uses OpenAI's embedding API (text-embedding-3-small/large). Any
    OpenAI-compatible endpoint works through ``base_url``.
    """

    # Known model dimensions
    MODEL_DIMENSIONS = {
        "text-embedding-3-small": 1536,
        "text-embedding-3-large": 3072,
        "text-embedding-ada-002": 1536,
    }

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        dimension: Optional[int] = None,
    ):
        """Initialize the OpenAI embedding model.

        Args:
            model: Model name (text-embedding-3-small, text-embedding-3-large)
            api_key: OpenAI API key (optional, uses env var if not provided)
            base_url: Optional base URL for API
            dimension: Declared dimension for models not in MODEL_DIMENSIONS
        """
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self._dimension = dimension
        self._client = None

    @property
    def dimension(self) -> int:
        if self._dimension is not None:
            return self._dimension
        return self.MODEL_DIMENSIONS.get(self.model, 1536)

    def _get_client(self):
        """Get or create the OpenAI client."""
        if self._client is None:
            from openai import AsyncOpenAI

            kwargs = {}
            if self.api_key:
                kwargs["api_key"] = self.api_key
            if self.base_url:
                kwargs["base_url"] = self.base_url

            self._client = AsyncOpenAI(**kwargs)
        return self._client

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed one provider-side batch using the OpenAI API."""
        client = self._get_client()

        response = await client.embeddings.create(
            model=self.model,
            input=texts,
            encoding_format="float",
        )

        return [item.embedding for item in response.data]

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single query using the OpenAI API."""
        embeddings = await self.embed_documents([text])
        return embeddings[0]


class LocalEmbedding(BaseEmbedding):
    """Local embedding model using sentence-transformers.

    Runs entirely on the local machine. Requires the 'vector' extra.
    """

    # Known model dimensions
    MODEL_DIMENSIONS = {
        "all-MiniLM-L6-v2": 384,
        "all-mpnet-base-v2": 768,
        "multi-qa-mpnet-base-dot-v1": 768,
    }

    def __init__(
        self,
        model_name: str = "all-MiniLM-L6-v2",
        device: Optional[str] = None,
        normalize: bool = True,
    ):
        """Initialize the local embedding model.

        Args:
            model_name: Name of the sentence-transformers model
            device: Device to run on (cuda, cpu, mps). Auto-detected if None.
            normalize: Whether to normalize embeddings
        """
        self.model_name = model_name
        self.device = device
        self.normalize = normalize
        self._model = None

    @property
    def dimension(self) -> int:
        if self._model is not None:
            return self._model.get_sentence_embedding_dimension()
        return self.MODEL_DIMENSIONS.get(self.model_name, 384)

    def _get_model(self):
        """Get or load the sentence-transformers model."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer

            self._model = SentenceTransformer(self.model_name, device=self.device)
            logger.info(f"Loaded embedding model: {self.model_name}")
        return self._model

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed a list of documents using the local model."""
        model = self._get_model()

        # Run in thread pool to avoid blocking
        loop = asyncio.get_event_loop()
        embeddings = await loop.run_in_executor(
            None,
            lambda: model.encode(
                texts,
                normalize_embeddings=self.normalize,
                convert_to_numpy=True,
            ),
        )

        return embeddings.tolist()

    async def embed_query(self, text: str) -> list[float]:
        """Embed a single query using the local model."""
        embeddings = await self.embed_documents([text])
        return embeddings[0]


class HashEmbedding(BaseEmbedding):
    """Deterministic bag-of-words embedding built with the hashing trick.

    Texts sharing vocabulary get similar vectors, which makes retrieval
    meaningful without any model or network. Used for tests and offline
    deployments.
    """

    def __init__(self, dimension: int = 256):
        """Initialize the hash embedding.

        Args:
            dimension: Dimension of the embedding vectors
        """
        if dimension <= 0:
            raise ConfigurationError(f"dimension must be positive, got {dimension}")
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    def _vectorize(self, text: str) -> list[float]:
        vector = [0.0] * self._dimension
        for token in _TOKEN_RE.findall(text.lower()):
            digest = hashlib.md5(token.encode("utf-8")).digest()
            slot = int.from_bytes(digest[:8], "big") % self._dimension
            vector[slot] += 1.0

        norm = math.sqrt(sum(v * v for v in vector))
        if norm == 0:
            return vector
        return [v / norm for v in vector]

    async def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return [self._vectorize(text) for text in texts]

    async def embed_query(self, text: str) -> list[float]:
        return self._vectorize(text)


class EmbeddingClient:
    """Truncating, batching, retrying front-end for an embedding provider.

    Transient provider failures and timeouts are retried with exponential
    backoff. Once attempts are exhausted the client raises
    EmbeddingUnavailable, which callers treat as recoverable.

    Example:
        ```python
        client = EmbeddingClient(OpenAIEmbedding(), batch_size=100)
        vector = await client.embed("indemnification hold harmless")
        vectors = await client.embed_batch(chunk_texts)
        ```
    """

    def __init__(
        self,
        provider: BaseEmbedding,
        max_chars: int = 8000,
        batch_size: int = 100,
        max_attempts: int = 3,
        batch_delay: float = 0.1,
        timeout: Optional[float] = 30.0,
        backoff: float = 0.5,
        max_concurrency: int = 1,
    ):
        """Initialize the embedding client.

        Args:
            provider: Underlying embedding provider
            max_chars: Inputs longer than this are truncated
            batch_size: Texts per provider request
            max_attempts: Attempts per call or batch before giving up
            batch_delay: Seconds to wait between batches
            timeout: Per-call timeout in seconds (None disables it)
            backoff: Base of the exponential wait between retries
            max_concurrency: Batches allowed in flight at once
        """
        if batch_size <= 0:
            raise ConfigurationError(f"batch_size must be positive, got {batch_size}")
        if max_attempts <= 0:
            raise ConfigurationError(f"max_attempts must be positive, got {max_attempts}")
        if max_concurrency <= 0:
            raise ConfigurationError(f"max_concurrency must be positive, got {max_concurrency}")

        self.provider = provider
        self.max_chars = max_chars
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.batch_delay = batch_delay
        self.timeout = timeout
        self.backoff = backoff
        self.max_concurrency = max_concurrency

    @property
    def dimension(self) -> int:
        return self.provider.dimension

    def check_dimension(self, expected: Optional[int]) -> None:
        """Fail fast when the provider does not match the store's vectors."""
        if expected is not None and expected != self.dimension:
            raise ConfigurationError(
                f"Embedding dimension {self.dimension} does not match "
                f"knowledge store dimension {expected}"
            )

    def _truncate(self, text: str) -> str:
        if len(text) > self.max_chars:
            logger.warning(
                f"Truncating embedding input from {len(text)} to {self.max_chars} characters"
            )
            return text[: self.max_chars]
        return text

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff, max=10),
            retry=retry_if_not_exception_type(ConfigurationError),
            before_sleep=lambda state: logger.warning(
                f"Embedding attempt {state.attempt_number}/{self.max_attempts} failed: "
                f"{state.outcome.exception()!r}"
            ),
            reraise=True,
        )

    async def _call(self, texts: list[str]) -> list[list[float]]:
        """One provider request for a batch, with retries and timeout."""
        try:
            async for attempt in self._retrying():
                with attempt:
                    vectors = await asyncio.wait_for(
                        self.provider.embed_documents(texts),
                        timeout=self.timeout,
                    )
                    if len(vectors) != len(texts):
                        raise RuntimeError(
                            f"Provider returned {len(vectors)} vectors for {len(texts)} texts"
                        )
                    return vectors
        except ConfigurationError:
            raise
        except Exception as e:
            raise EmbeddingUnavailable(
                f"Embedding failed after {self.max_attempts} attempts: {e!r}"
            ) from e
        raise EmbeddingUnavailable("Embedding produced no result")

    async def embed(self, text: str) -> list[float]:
        """Embed a single text.

        Raises:
            EmbeddingUnavailable: If the provider keeps failing
        """
        vectors = await self._call([self._truncate(text)])
        return vectors[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts in provider-side batches.

        A failing batch is retried as a whole. Batches are separated by
        ``batch_delay`` to respect provider rate limits, and results keep
        the input order.

        Raises:
            EmbeddingUnavailable: If any batch exhausts its attempts
        """
        if not texts:
            return []

        prepared = [self._truncate(text) for text in texts]
        batches = [
            prepared[i : i + self.batch_size]
            for i in range(0, len(prepared), self.batch_size)
        ]

        if self.max_concurrency == 1:
            results: list[list[list[float]]] = []
            for index, batch in enumerate(batches):
                if index > 0 and self.batch_delay > 0:
                    await asyncio.sleep(self.batch_delay)
                logger.debug(f"Embedding batch {index + 1}/{len(batches)} ({len(batch)} texts)")
                results.append(await self._call(batch))
        else:
            semaphore = asyncio.Semaphore(self.max_concurrency)

            async def run(batch: list[str]) -> list[list[float]]:
                async with semaphore:
                    vectors = await self._call(batch)
                    if self.batch_delay > 0:
                        await asyncio.sleep(self.batch_delay)
                    return vectors

            results = list(await asyncio.gather(*(run(batch) for batch in batches)))

        return [vector for batch_vectors in results for vector in batch_vectors]
