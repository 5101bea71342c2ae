"""
ContextRAG - OpenAI Generation Service
======================================

Text and structured generation through the OpenAI Chat Completions API.
No document-grounded capability: pair it with a document-capable provider
through CompositeLLMService for ingestion.
"""

import logging
from typing import Dict, List, Optional

import openai

from contextrag.providers.base import BaseLLMService, LLMResponse
from contextrag.providers.errors import translate_sdk_error
from contextrag.shared.exceptions import ConfigurationError, ContentPolicyError
from contextrag.shared.models import TokenUsage

logger = logging.getLogger(__name__)


class OpenAIService(BaseLLMService):
    """OpenAI provider: text and structured capabilities."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o",
        max_tokens: int = 8192,
        temperature: float = 0.3,
        timeout: float = 600.0,
        client: Optional[openai.AsyncOpenAI] = None
    ):
        super().__init__(model=model, max_tokens=max_tokens, temperature=temperature)
        if client is None and not api_key:
            raise ConfigurationError("OPENAI_API_KEY is required for the openai provider")
        self._client = client or openai.AsyncOpenAI(
            api_key=api_key, max_retries=0, timeout=timeout
        )
        logger.info(f"Initialized OpenAI client with model: {self.model}")

    @property
    def provider_name(self) -> str:
        return "openai"

    async def _complete(
        self,
        messages: List[Dict[str, str]],
        system: Optional[str],
        max_tokens: int,
        temperature: float,
        document: Optional[bytes] = None,
        mime_type: str = "application/pdf"
    ) -> LLMResponse:
        if document is not None:
            raise ConfigurationError("openai provider does not support document-grounded generation")

        chat = []
        if system:
            chat.append({"role": "system", "content": system})
        chat.extend({"role": m["role"], "content": m["content"]} for m in messages)

        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=chat,
                max_tokens=max_tokens,
                temperature=temperature,
            )
        except openai.OpenAIError as e:
            raise translate_sdk_error(e, openai, self.provider_name) from e

        choice = response.choices[0]
        if choice.finish_reason == "content_filter":
            raise ContentPolicyError(
                "openai content filter blocked the response",
                details={"provider": self.provider_name, "model": self.model},
            )

        usage = TokenUsage()
        if response.usage is not None:
            usage = TokenUsage(
                input_tokens=response.usage.prompt_tokens or 0,
                output_tokens=response.usage.completion_tokens or 0,
            )

        return LLMResponse(
            text=choice.message.content or "",
            usage=usage,
            model=response.model or self.model,
            stop_reason=choice.finish_reason,
        )
