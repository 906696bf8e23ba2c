"""
OpenAI LLM Provider.
"""

import logging
from typing import Any

from contractrag.providers.base import LLMProvider, LLMResponse

logger = logging.getLogger(__name__)


class OpenAIProvider(LLMProvider):
    """
    LLM Provider for the OpenAI API and OpenAI-compatible gateways
    such as OpenRouter (set ``base_url``).
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        organization: str | None = None
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.organization = organization
        self._client = None

    def _get_client(self):
        """Get or create OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError:
                raise ImportError(
                    "openai package not installed. "
                    "Install with: pip install openai"
                )

            self._client = AsyncOpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                organization=self.organization
            )
        return self._client

    async def complete(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str = "gpt-4o-mini",
        temperature: float = 0.3,
        max_tokens: int = 4000,
        json_mode: bool = False,
        **kwargs: Any
    ) -> LLMResponse:
        """Get a completion from OpenAI."""
        client = self._get_client()

        params: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        if json_mode:
            params["response_format"] = {"type": "json_object"}

        params.update(kwargs)

        response = await client.chat.completions.create(**params)

        choice = response.choices[0]
        usage = {
            "prompt_tokens": response.usage.prompt_tokens if response.usage else 0,
            "completion_tokens": response.usage.completion_tokens if response.usage else 0,
            "total_tokens": response.usage.total_tokens if response.usage else 0
        }
        logger.debug(f"Completion from {model}: {usage['total_tokens']} tokens")

        return LLMResponse(
            content=choice.message.content,
            usage=usage,
            finish_reason=choice.finish_reason or "stop",
            model=response.model,
        )
