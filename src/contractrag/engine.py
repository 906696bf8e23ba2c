"""
ComplianceEngine - the public entry point for ingestion and analysis.
"""

import uuid
from pathlib import Path
from typing import Any, Optional

from contractrag.compliance.analyzer import ComplianceAnalyzer
from contractrag.compliance.fuzzy import FuzzyMatcher
from contractrag.compliance.llm import LLMSynthesisStage
from contractrag.compliance.models import AnalysisOptions, ComplianceReport
from contractrag.compliance.registry import RuleRegistry, load_registry
from contractrag.compliance.rules import RuleDetector
from contractrag.compliance.synthesizer import ComplianceSynthesizer
from contractrag.exceptions import ConfigurationError
from contractrag.providers.base import LLMProvider
from contractrag.rag.base import BaseChunker, BaseEmbedding, BaseKnowledgeStore
from contractrag.rag.chunking import FixedSizeChunker
from contractrag.rag.document import Document, DomainTag
from contractrag.rag.embeddings import (
    EmbeddingClient,
    HashEmbedding,
    LocalEmbedding,
    OpenAIEmbedding,
)
from contractrag.rag.pipeline import IngestionPipeline, IngestionRecord
from contractrag.rag.retriever import Retriever
from contractrag.rag.vectorstore import ChromaKnowledgeStore, MemoryKnowledgeStore
from contractrag.utils.config import EngineConfig, load_config
from contractrag.utils.logging import get_logger

logger = get_logger(__name__)


class ComplianceEngine:
    """
    Retrieval-augmented contract compliance engine.

    Wires chunking, embedding, the knowledge store, the three detection
    channels and the synthesizer together.

    Example:
        ```python
        engine = ComplianceEngine.from_config("contractrag.yaml")
        await engine.initialize()

        await engine.ingest("FAR 28.106", far_text, DomainTag.REGULATORY)
        report = await engine.analyze(contract_text, AnalysisOptions(min_confidence=0.5))
        ```
    """

    def __init__(
        self,
        embedding_client: EmbeddingClient,
        store: BaseKnowledgeStore,
        *,
        llm_provider: Optional[LLMProvider] = None,
        registry: Optional[RuleRegistry] = None,
        config: Optional[EngineConfig] = None,
        chunker: Optional[BaseChunker] = None,
    ):
        """
        Initialize the engine.

        Args:
            embedding_client: Client wrapping the embedding provider
            store: Knowledge store
            llm_provider: Chat provider for the model channel (None disables it)
            registry: Rule registry (default: config.rules_path or bundled rules)
            config: Engine configuration (default: EngineConfig())
            chunker: Document chunker (default: FixedSizeChunker from config)

        Raises:
            ConfigurationError: If the embedding and store dimensions differ,
                or any setting is invalid
        """
        self.config = config or EngineConfig()
        embedding_client.check_dimension(store.dimension)

        self.embedding_client = embedding_client
        self.store = store
        self.registry = registry or load_registry(self.config.rules_path)

        self.pipeline = IngestionPipeline(
            embedding_client,
            store,
            chunker or FixedSizeChunker(
                target_size=self.config.chunking.target_size,
                overlap=self.config.chunking.overlap,
            ),
        )
        self.retriever = Retriever(embedding_client, store)

        llm = self.config.llm
        self.analyzer = ComplianceAnalyzer(
            registry=self.registry,
            retriever=self.retriever,
            rule_detector=RuleDetector(self.registry),
            fuzzy_matcher=FuzzyMatcher(
                threshold=self.config.fuzzy.threshold,
                confidence_floor=self.config.fuzzy.confidence_floor,
                registry=self.registry,
            ),
            llm_stage=LLMSynthesisStage(
                llm_provider,
                model=llm.model,
                registry=self.registry,
                temperature=llm.temperature,
                max_tokens=llm.max_tokens,
                max_contract_chars=llm.max_contract_chars,
                max_attempts=llm.max_attempts,
                timeout=llm.timeout,
                fallback_confidence=llm.fallback_confidence,
            ),
            synthesizer=ComplianceSynthesizer(
                self.registry,
                weights=self.config.scoring.weights,
                risk_thresholds=self.config.scoring.risk_thresholds,
            ),
            k=self.config.retrieval.k,
            probe_k=self.config.retrieval.probe_k,
            alternatives_k=self.config.retrieval.alternatives_k,
        )

    @classmethod
    def from_config(
        cls,
        config: EngineConfig | str | Path | None = None,
        llm_provider: Optional[LLMProvider] = None,
    ) -> "ComplianceEngine":
        """
        Build an engine, its providers and its store from configuration.

        Args:
            config: EngineConfig, or a path to a YAML/JSON config file
            llm_provider: Overrides the provider built from config.llm

        Returns:
            Configured ComplianceEngine
        """
        if config is None or isinstance(config, (str, Path)):
            config = load_config(config or "contractrag.yaml")

        embedding = cls._build_embedding(config)
        client = EmbeddingClient(
            embedding,
            max_chars=config.embedding.max_chars,
            batch_size=config.embedding.batch_size,
            max_attempts=config.embedding.max_attempts,
            batch_delay=config.embedding.batch_delay,
            timeout=config.embedding.timeout,
            max_concurrency=config.embedding.max_concurrency,
        )

        if config.store.backend == "memory":
            store: BaseKnowledgeStore = MemoryKnowledgeStore(dimension=config.embedding.dimension)
        elif config.store.backend == "chroma":
            store = ChromaKnowledgeStore(
                collection_name=config.store.collection_name,
                persist_directory=config.store.persist_directory,
                dimension=config.embedding.dimension,
            )
        else:
            raise ConfigurationError(f"Unknown store backend: {config.store.backend}")

        if llm_provider is None and config.llm.enabled:
            from contractrag.providers.openai import OpenAIProvider

            llm_provider = OpenAIProvider(
                api_key=config.llm.api_key,
                base_url=config.llm.base_url,
            )

        return cls(client, store, llm_provider=llm_provider, config=config)

    @staticmethod
    def _build_embedding(config: EngineConfig) -> BaseEmbedding:
        settings = config.embedding

        if settings.provider == "openai":
            declared = None if settings.model in OpenAIEmbedding.MODEL_DIMENSIONS else settings.dimension
            return OpenAIEmbedding(
                model=settings.model,
                api_key=settings.api_key,
                base_url=settings.base_url,
                dimension=declared,
            )
        if settings.provider == "local":
            return LocalEmbedding(model_name=settings.model)
        if settings.provider == "hash":
            return HashEmbedding(dimension=settings.dimension)

        raise ConfigurationError(f"Unknown embedding provider: {settings.provider}")

    async def initialize(self) -> list[IngestionRecord]:
        """Seed the default corpus when configured to and the store is empty."""
        if not self.config.bootstrap_default_corpus:
            return []
        return await self.bootstrap()

    async def bootstrap(
        self,
        corpus_path: Optional[str | Path] = None,
        only_if_empty: bool = True,
    ) -> list[IngestionRecord]:
        """
        Load a seed corpus into the knowledge store.

        Args:
            corpus_path: Corpus YAML (default: bundled FAR/policy/alternatives corpus)
            only_if_empty: Skip when the store already holds chunks

        Returns:
            One record per seeded document
        """
        return await self.pipeline.bootstrap(corpus_path, only_if_empty=only_if_empty)

    def _document(
        self,
        title: str,
        raw_text: str,
        domain_tag: DomainTag | str,
        metadata: Optional[dict[str, Any]],
        document_id: Optional[str],
    ) -> Document:
        try:
            domain = DomainTag(domain_tag)
        except ValueError:
            raise ConfigurationError(f"Unknown domain tag: {domain_tag}")

        return Document(
            id=document_id or uuid.uuid4().hex,
            title=title,
            domain_tag=domain,
            raw_text=raw_text,
            metadata=metadata or {},
        )

    async def ingest(
        self,
        title: str,
        raw_text: str,
        domain_tag: DomainTag | str,
        metadata: Optional[dict[str, Any]] = None,
        document_id: Optional[str] = None,
    ) -> str:
        """
        Ingest a reference document, replacing any earlier version.

        Returns:
            The document ID

        Raises:
            EmbeddingUnavailable: If chunks cannot be embedded
            StoreUnavailable: If the store cannot be written
        """
        document = self._document(title, raw_text, domain_tag, metadata, document_id)
        await self.pipeline.ingest(document)
        return document.id

    async def ingest_if_missing(
        self,
        title: str,
        raw_text: str,
        domain_tag: DomainTag | str,
        metadata: Optional[dict[str, Any]] = None,
        document_id: Optional[str] = None,
    ) -> str:
        """Ingest unless chunks already exist for the document ID."""
        document = self._document(title, raw_text, domain_tag, metadata, document_id)
        await self.pipeline.ingest_if_missing(document)
        return document.id

    async def ingest_many(self, documents: list[Document]) -> list[IngestionRecord]:
        """Ingest documents in order, recording each success or failure."""
        return await self.pipeline.ingest_many(documents)

    async def delete_document(self, document_id: str) -> int:
        """Delete a document and its chunks; returns the chunks removed."""
        return await self.pipeline.delete(document_id)

    async def analyze(
        self,
        contract_text: str,
        options: Optional[AnalysisOptions] = None,
    ) -> ComplianceReport:
        """
        Analyze contract text for compliance violations.

        Args:
            contract_text: Plain contract text
            options: Request options (default: from config.analysis)

        Returns:
            ComplianceReport
        """
        if options is None:
            defaults = self.config.analysis
            options = AnalysisOptions(
                check_regulatory=defaults.check_regulatory,
                check_policy=defaults.check_policy,
                include_alternatives=defaults.include_alternatives,
                min_confidence=defaults.min_confidence,
            )
        return await self.analyzer.analyze(contract_text, options)
