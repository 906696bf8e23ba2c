"""Shared configuration and logging helpers."""

from contractrag.utils.config import (
    AnalysisSettings,
    ChunkingSettings,
    Config,
    EmbeddingSettings,
    EngineConfig,
    FuzzySettings,
    LLMSettings,
    RetrievalSettings,
    ScoringSettings,
    StoreSettings,
    load_config,
)
from contractrag.utils.logging import get_logger, preview, set_log_level

__all__ = [
    "AnalysisSettings",
    "ChunkingSettings",
    "Config",
    "EmbeddingSettings",
    "EngineConfig",
    "FuzzySettings",
    "LLMSettings",
    "RetrievalSettings",
    "ScoringSettings",
    "StoreSettings",
    "load_config",
    "get_logger",
    "preview",
    "set_log_level",
]
