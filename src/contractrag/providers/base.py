"""
Base LLM Provider interface.
"""

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, Field


class LLMResponse(BaseModel):
    """Response from an LLM."""
    content: str | None = None
    usage: dict[str, int] = Field(default_factory=dict)
    finish_reason: str = "stop"
    model: str | None = None


class LLMProvider(ABC):
    """
    Abstract base class for chat-completion providers.
    """

    @abstractmethod
    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str,
        temperature: float = 0.3,
        max_tokens: int = 4000,
        json_mode: bool = False,
        **kwargs: Any
    ) -> LLMResponse:
        """
        Get a completion from the LLM.

        Args:
            messages: List of messages in API format (system + user)
            model: Model identifier
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            json_mode: Ask the provider for a JSON object response
            **kwargs: Additional provider-specific options

        Returns:
            LLMResponse with the generated text
        """
        pass
