"""
ContractRAG - Retrieval-augmented compliance analysis for research contracts.
"""

from contractrag.engine import ComplianceEngine
from contractrag.exceptions import (
    ConfigurationError,
    ContractRAGError,
    EmbeddingUnavailable,
    MalformedModelResponse,
    ModelUnavailable,
    StoreUnavailable,
)
from contractrag.compliance import (
    AnalysisOptions,
    Category,
    ChannelStatus,
    ComplianceReport,
    DetectionChannel,
    RiskLevel,
    Severity,
    Violation,
    ViolationKind,
    RuleRegistry,
    load_registry,
)
from contractrag.providers import LLMProvider, LLMResponse, OpenAIProvider
from contractrag.rag import (
    # Knowledge base
    Document,
    Chunk,
    DomainTag,
    RetrievalResult,
    # Embeddings
    EmbeddingClient,
    HashEmbedding,
    LocalEmbedding,
    OpenAIEmbedding,
    # Knowledge stores
    MemoryKnowledgeStore,
    ChromaKnowledgeStore,
    # Chunking
    FixedSizeChunker,
)
from contractrag.utils import EngineConfig, load_config

__version__ = "0.1.0"
__all__ = [
    # Engine
    "ComplianceEngine",
    "EngineConfig",
    "load_config",
    # Exceptions
    "ConfigurationError",
    "ContractRAGError",
    "EmbeddingUnavailable",
    "MalformedModelResponse",
    "ModelUnavailable",
    "StoreUnavailable",
    # Compliance
    "AnalysisOptions",
    "Category",
    "ChannelStatus",
    "ComplianceReport",
    "DetectionChannel",
    "RiskLevel",
    "Severity",
    "Violation",
    "ViolationKind",
    "RuleRegistry",
    "load_registry",
    # Providers
    "LLMProvider",
    "LLMResponse",
    "OpenAIProvider",
    # Knowledge base
    "Document",
    "Chunk",
    "DomainTag",
    "RetrievalResult",
    "EmbeddingClient",
    "HashEmbedding",
    "LocalEmbedding",
    "OpenAIEmbedding",
    "MemoryKnowledgeStore",
    "ChromaKnowledgeStore",
    "FixedSizeChunker",
]
