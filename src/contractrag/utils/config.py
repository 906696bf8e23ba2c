"""
Configuration utilities.
"""

import json
from pathlib import Path

import yaml

from pydantic import BaseModel, Field

from contractrag.exceptions import ConfigurationError


class Config(BaseModel):
    """Base configuration class."""

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load configuration from YAML file."""
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    @classmethod
    def from_file(cls, path: str | Path) -> "Config":
        """Load configuration from file (YAML or JSON)."""
        path = Path(path)

        if path.suffix in (".yaml", ".yml"):
            return cls.from_yaml(path)
        elif path.suffix == ".json":
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
            return cls(**data)
        else:
            raise ConfigurationError(f"Unsupported config file format: {path.suffix}")


class ChunkingSettings(BaseModel):
    """Sliding-window geometry, in characters."""
    target_size: int = 1000
    overlap: int = 200


class EmbeddingSettings(BaseModel):
    """Embedding provider and client behaviour."""
    provider: str = "openai"  # openai | local | hash
    model: str = "text-embedding-3-small"
    dimension: int = 1536
    api_key: str | None = None
    base_url: str | None = None
    max_chars: int = 8000
    batch_size: int = 100
    max_attempts: int = 3
    batch_delay: float = 0.1
    max_concurrency: int = 1
    timeout: float = 30.0


class LLMSettings(BaseModel):
    """Generative model used by the synthesis stage."""
    enabled: bool = True
    model: str = "gpt-4o-mini"
    api_key: str | None = None
    base_url: str | None = None
    temperature: float = 0.3
    max_tokens: int = 4000
    max_contract_chars: int = 8000
    max_attempts: int = 2
    timeout: float = 60.0
    fallback_confidence: float = 0.8


class StoreSettings(BaseModel):
    """Knowledge store adapter selection."""
    backend: str = "memory"  # memory | chroma
    collection_name: str = "contract_knowledge"
    persist_directory: str | None = None


class RetrievalSettings(BaseModel):
    """How much context is pulled per knowledge domain."""
    k: int = 8
    probe_k: int = 3
    alternatives_k: int = 5


class FuzzySettings(BaseModel):
    """Fuzzy matcher thresholds on a 0..1 scale."""
    threshold: float = 0.35
    confidence_floor: float = 0.3


class ScoringSettings(BaseModel):
    """Severity weights and the score cut-offs for each risk label."""
    weights: dict[str, float] = Field(default_factory=lambda: {
        "CRITICAL": 30.0,
        "HIGH": 15.0,
        "MEDIUM": 5.0,
        "LOW": 2.0,
    })
    risk_thresholds: dict[str, float] = Field(default_factory=lambda: {
        "low": 90.0,
        "medium": 75.0,
        "high": 50.0,
    })


class AnalysisSettings(BaseModel):
    """Defaults for analysis requests."""
    min_confidence: float = 0.0
    check_regulatory: bool = True
    check_policy: bool = True
    include_alternatives: bool = True


class EngineConfig(Config):
    """Top-level configuration for a ComplianceEngine."""
    chunking: ChunkingSettings = Field(default_factory=ChunkingSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)
    fuzzy: FuzzySettings = Field(default_factory=FuzzySettings)
    scoring: ScoringSettings = Field(default_factory=ScoringSettings)
    analysis: AnalysisSettings = Field(default_factory=AnalysisSettings)

    # Custom rule registry; the bundled one is used when unset
    rules_path: str | None = None
    bootstrap_default_corpus: bool = False


def load_config(path: str | Path = "contractrag.yaml") -> EngineConfig:
    """
    Load engine configuration from file.

    Args:
        path: Path to config file

    Returns:
        EngineConfig instance (defaults when the file does not exist)
    """
    path = Path(path)

    if not path.exists():
        return EngineConfig()

    return EngineConfig.from_file(path)
