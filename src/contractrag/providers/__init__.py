"""
LLM Providers module.
"""

from contractrag.providers.base import LLMProvider, LLMResponse
from contractrag.providers.openai import OpenAIProvider

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "OpenAIProvider",
]
